from enum import Enum

from pydantic import BaseModel


class LineType(str, Enum):
    NORMAL = "NORMAL"
    SUBWAY = "SUBWAY"
    BULLET_TRAIN = "BULLET_TRAIN"
    TRAM = "TRAM"
    MONORAIL = "MONORAIL"
    OTHER = "OTHER"


class Station(BaseModel):
    id: int
    group_id: int
    name: str
    name_roman: str | None = None
    latitude: float
    longitude: float
    lines: frozenset[int] = frozenset()  # ids of every line stopping here
    train_types: frozenset[str] = frozenset()  # empty = served by all

    model_config = {"frozen": True}


class Line(BaseModel):
    id: int
    name: str
    name_roman: str | None = None
    color: str = "#000000"
    line_type: LineType = LineType.NORMAL
    stations: tuple[Station, ...] = ()
    loop: bool = False
    # OUTBOUND runs towards increasing station index when True
    outbound_ascending: bool = True

    model_config = {"frozen": True}


class TrainType(BaseModel):
    code: str
    name: str = ""
    station_ids: tuple[int, ...] | None = None  # None = minimal, stop list unknown

    model_config = {"frozen": True}

    @property
    def is_minimal(self) -> bool:
        return self.station_ids is None

    def serves(self, station: Station) -> bool:
        if self.station_ids is None:
            return True
        return station.id in self.station_ids
