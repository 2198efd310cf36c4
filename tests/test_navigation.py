"""Tests for NavigationStateMachine (header transitions, terminal and reset states)."""

import asyncio

from railnav.core.navigation import (
    AutoModeToggled,
    BoundSelected,
    JourneyReset,
    LineSelected,
    LocationLost,
    LocationUpdated,
    NavigationStateMachine,
    RemoteEnded,
    StationPinned,
    ThemeChanged,
    TrainTypeSelected,
)
from railnav.core.topology import TopologyStore
from railnav.schemas.location import LocationSample
from railnav.schemas.navigation import Direction, HeaderState
from railnav.schemas.topology import Line, LineType, Station, TrainType


def make_line(line_type: LineType = LineType.NORMAL) -> Line:
    """A, B, C ~445m apart: arrived below ~111m, approaching below ~222m."""
    return Line(
        id=1,
        name="Test Line",
        line_type=line_type,
        stations=(
            Station(id=1, group_id=1, name="A", latitude=35.680, longitude=139.700),
            Station(id=2, group_id=2, name="B", latitude=35.684, longitude=139.700),
            Station(id=3, group_id=3, name="C", latitude=35.688, longitude=139.700),
        ),
    )


def at(lat: float, lon: float = 139.700) -> LocationUpdated:
    return LocationUpdated(LocationSample(latitude=lat, longitude=lon, accuracy=10))


def make_machine(line: Line | None = None) -> NavigationStateMachine:
    line = line or make_line()
    return NavigationStateMachine(
        TopologyStore([line]), arrived_threshold_m=150, approaching_threshold_m=600,
    )


def start_journey(machine: NavigationStateMachine, line: Line) -> None:
    machine.dispatch(LineSelected(line))
    machine.dispatch(BoundSelected(line.stations[2], Direction.OUTBOUND))


def test_header_transitions_along_journey():
    line = make_line()
    machine = make_machine(line)
    start_journey(machine, line)

    machine.dispatch(at(35.680))
    state = machine.state
    assert state.current_station.id == 1
    assert state.next_station.id == 2
    assert [s.id for s in state.left_stations] == [2, 3]
    assert state.header_state is HeaderState.CURRENT

    # ~167m past A, ~278m before B
    machine.dispatch(at(35.6815))
    state = machine.state
    assert state.current_station.id == 1
    assert state.header_state is HeaderState.NEXT

    # ~167m before B
    machine.dispatch(at(35.6825))
    state = machine.state
    assert state.current_station.id == 1
    assert state.nearest_station.id == 2
    assert state.approaching
    assert state.header_state is HeaderState.ARRIVING

    machine.dispatch(at(35.684))
    state = machine.state
    assert state.current_station.id == 2
    assert state.next_station.id == 3
    assert state.header_state is HeaderState.CURRENT


def test_terminal_state_holds():
    line = make_line()
    machine = make_machine(line)
    start_journey(machine, line)

    machine.dispatch(at(35.684))
    machine.dispatch(at(35.688))
    state = machine.state
    assert state.current_station.id == 3
    assert state.next_station is None
    assert state.journey_complete
    assert state.header_state is HeaderState.CURRENT

    machine.dispatch(at(35.680))
    after = machine.state
    assert after.current_station.id == 3
    assert after.journey_complete
    assert after.location.latitude == 35.680


def test_train_type_skips_station():
    line = make_line()
    machine = make_machine(line)
    start_journey(machine, line)
    machine.dispatch(TrainTypeSelected(TrainType(code="rapid", station_ids=(1, 3))))

    machine.dispatch(at(35.680))
    assert machine.state.next_station.id == 3
    assert [s.id for s in machine.state.left_stations] == [3]


def test_heading_inferred_from_movement():
    line = make_line()
    machine = make_machine(line)
    machine.dispatch(LineSelected(line))

    machine.dispatch(at(35.680))
    assert machine.state.current_station.id == 1
    assert machine.state.next_station is None

    machine.dispatch(at(35.6825))
    state = machine.state
    assert state.heading is Direction.OUTBOUND
    assert state.next_station.id == 2
    assert state.header_state is HeaderState.ARRIVING


def test_bound_direction_derived_from_current_station():
    line = make_line()
    machine = make_machine(line)
    machine.dispatch(LineSelected(line))
    machine.dispatch(at(35.688))
    machine.dispatch(BoundSelected(line.stations[0]))

    state = machine.state
    assert state.selected_direction is Direction.INBOUND
    assert state.next_station.id == 2


def test_nearest_station_before_line_selection():
    line = make_line()
    machine = make_machine(line)

    machine.dispatch(at(35.6841))
    assert machine.state.nearest_station.id == 2
    assert machine.state.current_station is None

    machine.dispatch(LineSelected(line))
    assert machine.state.current_station.id == 2


def test_location_lost_holds_state():
    line = make_line()
    machine = make_machine(line)
    start_journey(machine, line)
    machine.dispatch(at(35.680))
    before = machine.state

    assert machine.dispatch(LocationLost("timeout"))
    assert machine.state == before
    assert machine.status.unavailable

    machine.dispatch(at(35.680))
    assert not machine.status.unavailable


def test_degraded_flag_is_side_channel():
    line = make_line()
    machine = make_machine(line)
    start_journey(machine, line)

    machine.dispatch(LocationUpdated(LocationSample(latitude=35.680, longitude=139.700, accuracy=2000), degraded=True))
    assert machine.status.degraded
    assert machine.state.current_station.id == 1


def test_no_topology_holds_state():
    machine = NavigationStateMachine(TopologyStore([]))
    machine.dispatch(at(35.680))
    assert machine.state.nearest_station is None
    assert machine.state.location is not None


def test_journey_reset():
    line = make_line()
    machine = make_machine(line)
    start_journey(machine, line)
    machine.dispatch(ThemeChanged("JR_WEST"))
    machine.dispatch(at(35.680))

    machine.dispatch(JourneyReset())
    state = machine.state
    assert state.selected_line is None
    assert state.bound_station is None
    assert state.stations == ()
    assert state.theme == "JR_WEST"
    assert state.nearest_station.id == 1


def test_remote_ended_resets_once():
    line = make_line()
    machine = make_machine(line)
    start_journey(machine, line)

    assert machine.dispatch(RemoteEnded("tok"))
    state = machine.state
    assert state.selected_line is None
    assert state.left_stations == ()
    assert state.muted

    assert not machine.dispatch(RemoteEnded("tok"))
    assert machine.state == state


def test_pinned_station_ignored_in_auto_mode():
    line = make_line()
    machine = make_machine(line)
    start_journey(machine, line)

    machine.dispatch(StationPinned(line.stations[1]))
    assert machine.state.current_station.id == 2
    assert machine.state.next_station.id == 3

    machine.dispatch(AutoModeToggled(True))
    machine.dispatch(StationPinned(line.stations[0]))
    assert machine.state.current_station.id == 2


def test_bullet_train_thresholds_clamped_to_spacing():
    machine = make_machine(make_line(LineType.BULLET_TRAIN))
    arrived, approaching = machine._line_thresholds(make_line(LineType.BULLET_TRAIN))
    assert approaching < 300
    assert arrived <= approaching / 2


def test_listeners_notified_on_change():
    async def scenario():
        line = make_line()
        machine = make_machine(line)
        seen = []

        async def listener(state, status):
            seen.append(state.selected_line)

        remove = machine.add_listener(listener)
        machine.start()
        try:
            await machine.submit(LineSelected(line))
            await machine.submit(LineSelected(line))
            remove()
            await machine.submit(JourneyReset())
        finally:
            await machine.stop()
        return seen

    seen = asyncio.run(scenario())
    assert len(seen) == 1
    assert seen[0].id == 1


def test_events_applied_in_arrival_order():
    async def scenario():
        line = make_line()
        machine = make_machine(line)
        machine.start()
        try:
            machine.post(LineSelected(line))
            machine.post(BoundSelected(line.stations[2], Direction.OUTBOUND))
            machine.post(at(35.680))
            await machine.join()
        finally:
            await machine.stop()
        return machine.state

    state = asyncio.run(scenario())
    assert state.bound_station.id == 3
    assert state.next_station.id == 2


def make_wide_line(line_type: LineType) -> Line:
    """Stations ~5km apart so spacing does not clamp the thresholds."""
    return Line(
        id=2,
        name="Wide Line",
        line_type=line_type,
        stations=tuple(
            Station(id=10 + i, group_id=10 + i, name=f"W{i}", latitude=35.600 + 0.045 * i, longitude=139.700)
            for i in range(3)
        ),
    )


def test_thresholds_scaled_per_line_type():
    expected = {
        LineType.NORMAL: (150, 600),
        LineType.SUBWAY: (300, 1200),
        LineType.TRAM: (75, 300),
    }
    for line_type, thresholds in expected.items():
        line = make_wide_line(line_type)
        assert make_machine(line)._line_thresholds(line) == thresholds


def test_passing_unserved_station_keeps_last_stop():
    line = make_line()
    machine = make_machine(line)
    start_journey(machine, line)
    machine.dispatch(TrainTypeSelected(TrainType(code="rapid", station_ids=(1, 3))))
    machine.dispatch(at(35.680))

    # Running through B, which the rapid does not serve
    machine.dispatch(at(35.684))
    state = machine.state
    assert state.current_station.id == 1
    assert state.nearest_station.id == 2
    assert not state.arrived
    assert state.next_station.id == 3
    assert state.header_state is HeaderState.ARRIVING


def test_passing_unserved_station_on_bullet_train_is_next():
    line = make_line(LineType.BULLET_TRAIN)
    machine = make_machine(line)
    start_journey(machine, line)
    machine.dispatch(TrainTypeSelected(TrainType(code="nozomi", station_ids=(1, 3))))
    machine.dispatch(at(35.680))

    machine.dispatch(at(35.684))
    state = machine.state
    assert state.current_station.id == 1
    assert state.header_state is HeaderState.NEXT


def test_bound_before_first_fix_derives_direction():
    line = make_line()
    machine = make_machine(line)
    machine.dispatch(LineSelected(line))
    machine.dispatch(BoundSelected(line.stations[2]))
    assert machine.state.selected_direction is None

    machine.dispatch(at(35.680))
    state = machine.state
    assert state.selected_direction is Direction.OUTBOUND
    assert state.next_station.id == 2
    assert [s.id for s in state.left_stations] == [2, 3]
