import datetime
from enum import Enum

from pydantic import BaseModel, Field


class LocationAccuracy(str, Enum):
    """Accuracy hint passed to the location provider."""

    LOWEST = "LOWEST"
    LOW = "LOW"
    BALANCED = "BALANCED"
    HIGH = "HIGH"
    HIGHEST = "HIGHEST"
    BEST_FOR_NAVIGATION = "BEST_FOR_NAVIGATION"


class PermissionStatus(str, Enum):
    GRANTED = "GRANTED"
    DENIED = "DENIED"
    UNDETERMINED = "UNDETERMINED"


class LocationSample(BaseModel):
    latitude: float
    longitude: float
    accuracy: float | None = None  # meters; None = unknown, never zero
    speed: float | None = None
    timestamp: datetime.datetime = Field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )

    model_config = {"frozen": True}


class LocationStatus(BaseModel):
    degraded: bool = False
    unavailable: bool = False

    model_config = {"frozen": True}
