from pydantic_settings import BaseSettings

from railnav.schemas.location import LocationAccuracy


class Settings(BaseSettings):
    redis_url: str = "redis://localhost:6379/0"
    mirroring_key_prefix: str = "railnav:mirroring"
    station_api_url: str = "http://localhost:50051"
    topology_path: str | None = None

    location_interval_seconds: int = 1
    location_accuracy: LocationAccuracy = LocationAccuracy.BALANCED
    last_known_max_age_seconds: float = 1.0

    bad_accuracy_threshold_m: float = 1000.0
    accuracy_absent_timeout_seconds: float = 30.0

    arrived_threshold_m: float = 150.0
    approaching_threshold_m: float = 600.0
    # Scale applied to both arrived and approaching thresholds per line type
    bullet_train_threshold_factor: float = 2.0
    subway_threshold_factor: float = 2.0
    tram_threshold_factor: float = 0.5

    tie_epsilon_m: float = 5.0
    backtrack_tolerance_m: float = 50.0
    min_heading_distance_m: float = 30.0

    theme: str = "TOKYO"

    model_config = {"env_prefix": "RAILNAV_", "case_sensitive": False}


settings = Settings()
