from enum import Enum

from pydantic import BaseModel

from railnav.schemas.navigation import Direction
from railnav.schemas.topology import Line, Station, TrainType

STORE_SCHEMA_VERSION = 1


class MirroringRole(str, Enum):
    NONE = "NONE"
    PUBLISHER = "PUBLISHER"
    SUBSCRIBER = "SUBSCRIBER"


class MirroringSession(BaseModel):
    token: str | None = None
    role: MirroringRole = MirroringRole.NONE


class StorePayload(BaseModel):
    """Flat snapshot written to the shared document on every publish."""

    schema_version: int = STORE_SCHEMA_VERSION
    latitude: float | None = None
    longitude: float | None = None
    accuracy: float | None = None
    selected_line: Line | None = None
    selected_bound: Station | None = None
    train_type: TrainType | None = None
    selected_direction: Direction | None = None
    stations: list[Station] = []
    left_stations: list[Station] = []
    raw_stations: list[Station] = []
    theme: str = "TOKYO"

    @property
    def is_ready(self) -> bool:
        return self.selected_line is not None and self.selected_bound is not None
