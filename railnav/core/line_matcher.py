"""Project GPS samples onto line polylines using Shapely linear referencing."""

import logging
import math
from dataclasses import dataclass

from shapely.geometry import LineString, Point

from railnav.schemas.topology import Line

logger = logging.getLogger(__name__)

LAT_M_PER_DEG = 111_320.0


@dataclass
class Projection:
    progress: float  # 0.0–1.0 along the station sequence, ascending index
    distance_m: float  # perpendicular distance from the polyline in meters


class LineMatcher:
    """Matches GPS coordinates to the polyline through a line's stations."""

    def __init__(self) -> None:
        # line_id -> (LineString in degrees, meters per degree of longitude)
        self._lines: dict[int, tuple[LineString, float]] = {}

    def load_line(self, line: Line) -> None:
        coords = [(s.longitude, s.latitude) for s in line.stations]
        if len(coords) < 2:
            return
        if line.loop:
            coords.append(coords[0])
        mean_lat = sum(c[1] for c in coords) / len(coords)
        lon_m = LAT_M_PER_DEG * math.cos(math.radians(mean_lat))
        self._lines[line.id] = (LineString(coords), lon_m)

    def has_line(self, line_id: int) -> bool:
        return line_id in self._lines

    def project(self, line_id: int, lat: float, lon: float) -> Projection | None:
        """Snap a point to a line, returning progress and distance."""
        if line_id not in self._lines:
            return None
        line, lon_m = self._lines[line_id]
        point = Point(lon, lat)
        progress = line.project(point, normalized=True)
        # Distance in degrees, converted with the line's longitude scale
        dist_m = line.distance(point) * lon_m
        return Projection(progress=progress, distance_m=dist_m)

    def length_m(self, line_id: int) -> float:
        if line_id not in self._lines:
            return 0.0
        line, lon_m = self._lines[line_id]
        total = 0.0
        coords = list(line.coords)
        for i in range(1, len(coords)):
            dlon = (coords[i][0] - coords[i - 1][0]) * lon_m
            dlat = (coords[i][1] - coords[i - 1][1]) * LAT_M_PER_DEG
            total += math.sqrt(dlat * dlat + dlon * dlon)
        return total
