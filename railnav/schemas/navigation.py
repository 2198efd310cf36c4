from enum import Enum

from pydantic import BaseModel

from railnav.schemas.location import LocationSample
from railnav.schemas.topology import Line, Station, TrainType


class Direction(str, Enum):
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"

    @property
    def opposite(self) -> "Direction":
        return Direction.OUTBOUND if self is Direction.INBOUND else Direction.INBOUND


class HeaderState(str, Enum):
    CURRENT = "CURRENT"
    NEXT = "NEXT"
    ARRIVING = "ARRIVING"


class NavigationState(BaseModel):
    """Rider-facing resolved journey state.

    Replaced as a whole on every transition; never mutated in place.
    """

    header_state: HeaderState = HeaderState.CURRENT
    selected_line: Line | None = None
    bound_station: Station | None = None
    selected_direction: Direction | None = None
    heading: Direction | None = None  # selected direction, or inferred from movement
    current_station: Station | None = None
    next_station: Station | None = None
    left_stations: tuple[Station, ...] = ()
    stations: tuple[Station, ...] = ()
    raw_stations: tuple[Station, ...] = ()
    train_type: TrainType | None = None
    auto_mode: bool = False
    arrived: bool = False
    approaching: bool = False
    journey_complete: bool = False
    nearest_station: Station | None = None
    location: LocationSample | None = None
    theme: str = "TOKYO"
    muted: bool = False

    model_config = {"frozen": True}
