"""Read-only line/station topology, loaded once per process.

Orientation convention: every line declares ``outbound_ascending``. When it is
true (the default) OUTBOUND walks the station sequence towards increasing
index and INBOUND towards decreasing index; when false the mapping is
reversed. The convention is logged per line at load time and is the only
place direction is translated into an index step.
"""

import logging
from collections.abc import Iterable
from pathlib import Path

import orjson

from railnav.core.errors import TopologyError
from railnav.core.line_matcher import LineMatcher
from railnav.schemas.navigation import Direction
from railnav.schemas.topology import Line, Station, TrainType

logger = logging.getLogger(__name__)


class TopologyStore:
    """Immutable per-line ordered station sequences with coordinates."""

    def __init__(
        self,
        lines: Iterable[Line],
        train_types: dict[int, list[TrainType]] | None = None,
    ) -> None:
        self._lines: dict[int, Line] = {}
        # line_id -> {station_id -> index}
        self._index: dict[int, dict[int, int]] = {}
        self._train_types: dict[int, tuple[TrainType, ...]] = {}
        self.matcher = LineMatcher()

        for line in lines:
            if line.id in self._lines:
                raise TopologyError(f"Duplicate line id {line.id}")
            if not line.stations:
                logger.warning("Line %s (%s) has no stations", line.id, line.name)
            self._lines[line.id] = line
            self._index[line.id] = {s.id: i for i, s in enumerate(line.stations)}
            self.matcher.load_line(line)
            logger.debug(
                "Line %s (%s): %d stations, OUTBOUND runs %s index%s",
                line.id, line.name, len(line.stations),
                "ascending" if line.outbound_ascending else "descending",
                " (loop)" if line.loop else "",
            )

        for line_id, types in (train_types or {}).items():
            if line_id not in self._lines:
                raise TopologyError(f"Train types given for unknown line {line_id}")
            self._train_types[line_id] = tuple(types)

        logger.info(
            "Loaded topology: %d lines, %d stations",
            len(self._lines), len(self.all_stations()),
        )

    @classmethod
    def from_json(cls, path: str | Path) -> "TopologyStore":
        """Load ``{"lines": [...], "train_types": {"<line_id>": [...]}}``."""
        data = orjson.loads(Path(path).read_bytes())
        lines = [Line.model_validate(item) for item in data.get("lines", [])]
        train_types = {
            int(line_id): [TrainType.model_validate(t) for t in types]
            for line_id, types in data.get("train_types", {}).items()
        }
        return cls(lines, train_types)

    @property
    def lines(self) -> list[Line]:
        return list(self._lines.values())

    def get_line(self, line_id: int) -> Line | None:
        return self._lines.get(line_id)

    def stations(self, line_id: int) -> tuple[Station, ...]:
        line = self._lines.get(line_id)
        return line.stations if line else ()

    def all_stations(self) -> list[Station]:
        """Every station of every line, first occurrence of each id only."""
        seen: set[int] = set()
        result = []
        for line in self._lines.values():
            for s in line.stations:
                if s.id not in seen:
                    seen.add(s.id)
                    result.append(s)
        return result

    def index_of(self, line_id: int, station_id: int) -> int | None:
        return self._index.get(line_id, {}).get(station_id)

    def lines_at(self, station: Station) -> list[Line]:
        """Lines stopping at the same physical station (same group id)."""
        return [
            line for line in self._lines.values()
            if any(s.group_id == station.group_id for s in line.stations)
        ]

    def station_on_line(self, line_id: int, station: Station) -> Station | None:
        """The given station's counterpart on another line, matched by group id."""
        for s in self.stations(line_id):
            if s.group_id == station.group_id:
                return s
        return None

    def train_types(self, line_id: int) -> tuple[TrainType, ...]:
        return self._train_types.get(line_id, ())

    @staticmethod
    def step(line: Line, direction: Direction) -> int:
        """Index increment for travelling along ``line`` in ``direction``."""
        ascending = direction is Direction.OUTBOUND
        if not line.outbound_ascending:
            ascending = not ascending
        return 1 if ascending else -1

    @staticmethod
    def direction_for_step(line: Line, step: int) -> Direction:
        ascending = step > 0
        if line.outbound_ascending:
            return Direction.OUTBOUND if ascending else Direction.INBOUND
        return Direction.INBOUND if ascending else Direction.OUTBOUND

    def expand_train_type(self, line_id: int, train_type: TrainType | None) -> TrainType | None:
        """Fill a minimal train type's stop list from the stations' serving sets.

        Left minimal when no station on the line declares a serving set.
        """
        if train_type is None or not train_type.is_minimal:
            return train_type
        stations = self.stations(line_id)
        if not any(s.train_types for s in stations):
            return train_type
        stops = tuple(
            s.id for s in stations
            if not s.train_types or train_type.code in s.train_types
        )
        return train_type.model_copy(update={"station_ids": stops})

    def stations_for_train_type(
        self, line_id: int, train_type: TrainType | None,
    ) -> tuple[Station, ...]:
        """Line stations within the span between the train type's first and last stop."""
        stations = self.stations(line_id)
        if train_type is None or train_type.is_minimal:
            return stations
        served = [i for i, s in enumerate(stations) if train_type.serves(s)]
        if not served:
            return ()
        return stations[served[0]: served[-1] + 1]
