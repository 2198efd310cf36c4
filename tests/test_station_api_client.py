"""Tests for StationApiClient using httpx.MockTransport."""

import asyncio

import httpx
import pytest

from railnav.core.errors import TopologyError
from railnav.core.station_api_client import StationApiClient
from railnav.schemas.topology import LineType

LINES = [
    {"id": 11302, "name": "山手線", "nameRoman": "Yamanote Line", "color": "#80C241",
     "lineType": "NORMAL", "loop": True},
    {"id": 99, "name": "Empty Line"},
]

STATIONS = {
    11302: [
        {"id": 1130201, "groupId": 1130201, "name": "大崎", "nameRoman": "Osaki",
         "latitude": 35.619772, "longitude": 139.728439, "lines": [11302], "trainTypes": ["local"]},
        {"id": 1130202, "groupId": 1130202, "name": "五反田", "nameRoman": "Gotanda",
         "latitude": 35.626446, "longitude": 139.723444},
        {"id": 1130203, "name": "broken record"},
    ],
}

TRAIN_TYPES = {
    11302: [{"code": "local", "name": "各駅停車"}, {"code": "rapid", "stationIds": [1130201]}],
}


def handler(request: httpx.Request) -> httpx.Response:
    parts = request.url.path.strip("/").split("/")
    if parts == ["lines"]:
        return httpx.Response(200, json=LINES)
    line_id = int(parts[1])
    if parts[2] == "stations":
        return httpx.Response(200, json={"stations": STATIONS.get(line_id, [])})
    if parts[2] == "train_types" and line_id in TRAIN_TYPES:
        return httpx.Response(200, json=TRAIN_TYPES[line_id])
    return httpx.Response(404)


def make_client(fn=handler) -> StationApiClient:
    return StationApiClient(base_url="http://stations.test", transport=httpx.MockTransport(fn))


def test_load_topology():
    async def scenario():
        client = make_client()
        try:
            return await client.load_topology()
        finally:
            await client.close()

    store = asyncio.run(scenario())
    assert [line.id for line in store.lines] == [11302]
    line = store.get_line(11302)
    assert line.loop
    assert line.line_type is LineType.NORMAL
    assert line.name_roman == "Yamanote Line"
    assert [s.name_roman for s in line.stations] == ["Osaki", "Gotanda"]
    assert line.stations[0].train_types == frozenset({"local"})
    assert line.stations[1].lines == frozenset({11302})

    local, rapid = store.train_types(11302)
    assert local.is_minimal
    assert rapid.station_ids == (1130201,)


def test_missing_resource_is_empty():
    async def scenario():
        client = make_client()
        try:
            return await client.fetch_train_types(99), await client.fetch_stations(99)
        finally:
            await client.close()

    assert asyncio.run(scenario()) == ([], [])


def test_no_lines_raises():
    async def scenario():
        client = make_client(lambda request: httpx.Response(200, json=[]))
        try:
            await client.load_topology()
        finally:
            await client.close()

    with pytest.raises(TopologyError):
        asyncio.run(scenario())
