"""Location-to-station resolution along the selected line.

Finds the station nearest to a location sample, then walks the line's
station sequence in the direction of travel to find the next stop the
active train type actually serves and the stations left until the bound.
"""

import logging
import math
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

from railnav.config import settings
from railnav.core.geo import station_distance_m
from railnav.core.topology import TopologyStore
from railnav.schemas.location import LocationSample
from railnav.schemas.navigation import Direction
from railnav.schemas.topology import Line, Station, TrainType

logger = logging.getLogger(__name__)


@dataclass
class Resolution:
    current_station: Station | None
    next_station: Station | None = None
    left_stations: list[Station] = field(default_factory=list)
    distance_m: float = math.inf  # sample -> current_station
    direction: Direction | None = None


class StationResolver:
    """Resolves current/next station for a sample on the active line."""

    def __init__(
        self,
        topology: TopologyStore,
        tie_epsilon_m: float | None = None,
        backtrack_tolerance_m: float | None = None,
        min_heading_distance_m: float | None = None,
    ) -> None:
        self.topology = topology
        self.tie_epsilon_m = (
            settings.tie_epsilon_m if tie_epsilon_m is None else tie_epsilon_m
        )
        self.backtrack_tolerance_m = (
            settings.backtrack_tolerance_m if backtrack_tolerance_m is None
            else backtrack_tolerance_m
        )
        self.min_heading_distance_m = (
            settings.min_heading_distance_m if min_heading_distance_m is None
            else min_heading_distance_m
        )

    def resolve(
        self,
        sample: LocationSample,
        line: Line | None,
        train_type: TrainType | None = None,
        direction: Direction | None = None,
        bound: Station | None = None,
        previous: Station | None = None,
    ) -> Resolution:
        """Resolve the sample against ``line``, or against every station when no
        line is selected yet (initial acquisition: only the nearest station)."""
        candidates: Sequence[Station] = line.stations if line else self.topology.all_stations()
        if not candidates:
            return Resolution(current_station=None, direction=direction)

        idx, dist = self._find_nearest(candidates, sample, line, direction, previous)
        current = candidates[idx]
        if line is None or direction is None:
            return Resolution(current_station=current, distance_m=dist, direction=direction)

        return Resolution(
            current_station=current,
            next_station=self.next_stop(line, current, direction, train_type, bound),
            left_stations=self.left_stations(line, current, direction, train_type, bound),
            distance_m=dist,
            direction=direction,
        )

    def next_stop(
        self,
        line: Line,
        current: Station,
        direction: Direction,
        train_type: TrainType | None = None,
        bound: Station | None = None,
    ) -> Station | None:
        """First station ahead of ``current`` served by ``train_type``.

        None when nothing is served before the bound station (inclusive) or
        the end of the line.
        """
        if bound is not None and bound.id == current.id:
            return None
        idx = self._index(line, current)
        if idx is None:
            return None
        for j in self._walk(line, idx, self.topology.step(line, direction)):
            s = line.stations[j]
            if _serves(train_type, s):
                return s
            if bound is not None and s.id == bound.id:
                return None
        return None

    def left_stations(
        self,
        line: Line,
        current: Station,
        direction: Direction,
        train_type: TrainType | None = None,
        bound: Station | None = None,
    ) -> list[Station]:
        """Served stations after ``current`` up to ``bound`` (or the line end), in travel order."""
        if bound is not None and bound.id == current.id:
            return []
        idx = self._index(line, current)
        if idx is None:
            return []
        result = []
        for j in self._walk(line, idx, self.topology.step(line, direction)):
            s = line.stations[j]
            if _serves(train_type, s):
                result.append(s)
            if bound is not None and s.id == bound.id:
                break
        return result

    def infer_direction(
        self, line: Line, previous: LocationSample, sample: LocationSample,
    ) -> Direction | None:
        """Direction of travel from two samples projected onto the line polyline.

        None while the movement along the line is too small to be reliable.
        """
        p0 = self.topology.matcher.project(line.id, previous.latitude, previous.longitude)
        p1 = self.topology.matcher.project(line.id, sample.latitude, sample.longitude)
        if p0 is None or p1 is None:
            return None
        delta = p1.progress - p0.progress
        if line.loop:
            if delta > 0.5:
                delta -= 1.0
            elif delta < -0.5:
                delta += 1.0
        moved_m = abs(delta) * self.topology.matcher.length_m(line.id)
        if moved_m < self.min_heading_distance_m:
            return None
        return self.topology.direction_for_step(line, 1 if delta > 0 else -1)

    def direction_towards(self, line: Line, origin: Station, bound: Station) -> Direction | None:
        """Direction in which ``bound`` lies ahead of ``origin``."""
        i0 = self._index(line, origin)
        i1 = self._index(line, bound)
        if i0 is None or i1 is None or i0 == i1:
            return None
        if line.loop:
            n = len(line.stations)
            forward = (i1 - i0) % n
            step = 1 if forward <= n - forward else -1
        else:
            step = 1 if i1 > i0 else -1
        return self.topology.direction_for_step(line, step)

    # ------------------------------------------------------------------

    def _find_nearest(
        self,
        stations: Sequence[Station],
        sample: LocationSample,
        line: Line | None,
        direction: Direction | None,
        previous: Station | None,
    ) -> tuple[int, float]:
        dists = [station_distance_m(sample.latitude, sample.longitude, s) for s in stations]
        best_dist = min(dists)
        tied = [i for i, d in enumerate(dists) if d - best_dist <= self.tie_epsilon_m]

        prev_idx = None
        if previous is not None:
            prev_idx = next((i for i, s in enumerate(stations) if s.id == previous.id), None)
        if prev_idx is None:
            return tied[0], dists[tied[0]]
        if prev_idx in tied:
            return prev_idx, dists[prev_idx]

        if line is None or direction is None:
            return tied[0], dists[tied[0]]

        # Among equally near candidates prefer the first one ahead of the previous station
        step = self.topology.step(line, direction)
        offsets = {i: _offset(line, prev_idx, i, step) for i in tied}
        ahead = [i for i in tied if offsets[i] > 0]
        chosen = min(ahead, key=lambda i: offsets[i]) if ahead else tied[0]

        # Hold the previous station rather than jump backwards on jitter
        if offsets.get(chosen, 0) < 0 and dists[prev_idx] - dists[chosen] < self.backtrack_tolerance_m:
            logger.debug(
                "Line %s: suppressed backward jump %s -> %s (%.0fm vs %.0fm)",
                line.id, stations[prev_idx].id, stations[chosen].id,
                dists[prev_idx], dists[chosen],
            )
            return prev_idx, dists[prev_idx]
        return chosen, dists[chosen]

    def _index(self, line: Line, station: Station) -> int | None:
        idx = self.topology.index_of(line.id, station.id)
        if idx is None:
            # Line not in this topology, e.g. mirrored from a publisher
            idx = next((i for i, s in enumerate(line.stations) if s.id == station.id), None)
        return idx

    @staticmethod
    def _walk(line: Line, idx: int, step: int) -> Iterator[int]:
        """Indexes after ``idx`` in travel order; loop lines wrap around once."""
        n = len(line.stations)
        if line.loop:
            for k in range(1, n):
                yield (idx + k * step) % n
            return
        j = idx + step
        while 0 <= j < n:
            yield j
            j += step


def _serves(train_type: TrainType | None, station: Station) -> bool:
    return train_type is None or train_type.serves(station)


def _offset(line: Line, from_idx: int, to_idx: int, step: int) -> int:
    """Signed number of stations from ``from_idx`` to ``to_idx`` in travel order."""
    offset = (to_idx - from_idx) * step
    if line.loop:
        n = len(line.stations)
        offset %= n
        if offset > n // 2:
            offset -= n
    return offset
