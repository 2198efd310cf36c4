"""Async client loading line/station topology from the station API."""

import asyncio
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from railnav.config import settings
from railnav.core.errors import TopologyError
from railnav.core.topology import TopologyStore
from railnav.schemas.topology import Line, LineType, Station, TrainType

logger = logging.getLogger(__name__)

ATTEMPTS = 4
BACKOFF_SECONDS = (1, 2, 4)  # sleep before the 2nd, 3rd and 4th attempt

_TRANSIENT = (httpx.ReadTimeout, httpx.ConnectTimeout, httpx.ConnectError)


class StationApiClient:
    """Fetches lines, their ordered stations, and train types."""

    def __init__(
        self,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.station_api_url,
            timeout=30.0,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _fetch_json(self, path: str, what: str) -> Any | None:
        """Decoded JSON body, or None once retries are exhausted or on a 4xx."""
        for attempt in range(1, ATTEMPTS + 1):
            try:
                response = await self._client.get(path)
                response.raise_for_status()
                return response.json()
            except _TRANSIENT as e:
                reason = type(e).__name__
            except httpx.HTTPStatusError as e:
                if e.response.status_code < 500:
                    logger.error("Station API refused %s: HTTP %d", what, e.response.status_code)
                    return None
                reason = f"HTTP {e.response.status_code}"
            if attempt == ATTEMPTS:
                logger.error("Giving up on %s after %d attempts (%s)", what, ATTEMPTS, reason)
                return None
            delay = BACKOFF_SECONDS[attempt - 1]
            logger.warning("Fetching %s failed (%s), attempt %d/%d, retry in %ds",
                           what, reason, attempt, ATTEMPTS, delay)
            await asyncio.sleep(delay)
        return None

    async def fetch_lines(self) -> list[dict]:
        """Fetch line headers (without stations)."""
        data = await self._fetch_json("/lines", "lines")
        if data is None:
            return []
        return data if isinstance(data, list) else data.get("lines", [])

    async def fetch_stations(self, line_id: int) -> list[Station]:
        """Fetch a line's stations in canonical order."""
        data = await self._fetch_json(f"/lines/{line_id}/stations", f"stations of line {line_id}")
        if data is None:
            return []
        items = data if isinstance(data, list) else data.get("stations", [])
        stations = []
        for item in items:
            try:
                stations.append(Station(
                    id=int(item["id"]),
                    group_id=int(item.get("groupId", item.get("group_id", item["id"]))),
                    name=str(item.get("name", "")),
                    name_roman=item.get("nameRoman", item.get("name_roman")),
                    latitude=float(item["latitude"]),
                    longitude=float(item["longitude"]),
                    lines=frozenset(int(x) for x in item.get("lines", [line_id])),
                    train_types=frozenset(str(x) for x in item.get("trainTypes", item.get("train_types", []))),
                ))
            except (KeyError, ValueError, TypeError, ValidationError) as e:
                logger.debug("Skipping malformed station record on line %s: %s", line_id, e)
        return stations

    async def fetch_train_types(self, line_id: int) -> list[TrainType]:
        data = await self._fetch_json(f"/lines/{line_id}/train_types", f"train types of line {line_id}")
        if data is None:
            return []
        items = data if isinstance(data, list) else data.get("trainTypes", [])
        types = []
        for item in items:
            try:
                stops = item.get("stationIds", item.get("station_ids"))
                types.append(TrainType(
                    code=str(item["code"]),
                    name=str(item.get("name", "")),
                    station_ids=tuple(int(s) for s in stops) if stops is not None else None,
                ))
            except (KeyError, ValueError, TypeError) as e:
                logger.debug("Skipping malformed train type on line %s: %s", line_id, e)
        return types

    async def load_topology(self) -> TopologyStore:
        """Fetch every line with its stations and train types into a TopologyStore."""
        headers = await self.fetch_lines()
        if not headers:
            raise TopologyError("Station API returned no lines")

        lines = []
        train_types: dict[int, list[TrainType]] = {}
        for item in headers:
            try:
                line_id = int(item["id"])
                line_type = LineType(item.get("lineType", item.get("line_type", "NORMAL")))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning("Skipping malformed line record: %s", e)
                continue
            stations = await self.fetch_stations(line_id)
            if not stations:
                logger.warning("Line %s: 0 stations fetched, skipping", line_id)
                continue
            lines.append(Line(
                id=line_id,
                name=str(item.get("name", "")),
                name_roman=item.get("nameRoman", item.get("name_roman")),
                color=str(item.get("color", "#000000")),
                line_type=line_type,
                stations=tuple(stations),
                loop=bool(item.get("loop", False)),
                outbound_ascending=bool(item.get("outboundAscending", item.get("outbound_ascending", True))),
            ))
            types = await self.fetch_train_types(line_id)
            if types:
                train_types[line_id] = types

        logger.info("Fetched %d lines from station API", len(lines))
        return TopologyStore(lines, train_types)
