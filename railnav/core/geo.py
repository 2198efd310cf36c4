"""Great-circle helpers shared by the resolver and the state machine."""

import math
from collections.abc import Sequence

from railnav.schemas.topology import Station

EARTH_RADIUS_M = 6_371_000


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance in meters between two lat/lon points."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlon / 2) ** 2)
    return EARTH_RADIUS_M * 2 * math.asin(math.sqrt(a))


def station_distance_m(lat: float, lon: float, station: Station) -> float:
    return haversine_m(lat, lon, station.latitude, station.longitude)


def average_spacing_m(stations: Sequence[Station]) -> float | None:
    """Mean distance between consecutive stations, None for fewer than two."""
    if len(stations) < 2:
        return None
    total = 0.0
    for prev, cur in zip(stations, stations[1:]):
        total += haversine_m(prev.latitude, prev.longitude, cur.latitude, cur.longitude)
    return total / (len(stations) - 1)
