"""Single owner of the rider-facing navigation state.

Every input (location sample, mirrored update, rider command) is an event.
Events are applied one at a time, in arrival order, by ``dispatch``; each
application replaces the frozen ``NavigationState`` as a whole, so observers
never see a partially applied update.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass

from railnav.config import settings
from railnav.core.geo import average_spacing_m, station_distance_m
from railnav.core.station_resolver import StationResolver
from railnav.core.topology import TopologyStore
from railnav.schemas.location import LocationSample, LocationStatus
from railnav.schemas.mirroring import StorePayload
from railnav.schemas.navigation import Direction, HeaderState, NavigationState
from railnav.schemas.topology import Line, LineType, Station, TrainType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineSelected:
    line: Line


@dataclass(frozen=True)
class BoundSelected:
    station: Station
    direction: Direction | None = None


@dataclass(frozen=True)
class TrainTypeSelected:
    train_type: TrainType | None


@dataclass(frozen=True)
class AutoModeToggled:
    enabled: bool


@dataclass(frozen=True)
class ThemeChanged:
    theme: str


@dataclass(frozen=True)
class StationPinned:
    """Rider picked the current station by hand (no usable fix)."""

    station: Station


@dataclass(frozen=True)
class LocationUpdated:
    sample: LocationSample
    degraded: bool = False


@dataclass(frozen=True)
class LocationLost:
    reason: str = ""


@dataclass(frozen=True)
class JourneyReset:
    pass


@dataclass(frozen=True)
class RemoteSnapshot:
    payload: StorePayload


@dataclass(frozen=True)
class RemoteEnded:
    token: str | None = None


Event = (
    LineSelected | BoundSelected | TrainTypeSelected | AutoModeToggled | ThemeChanged
    | StationPinned | LocationUpdated | LocationLost | JourneyReset
    | RemoteSnapshot | RemoteEnded
)
Listener = Callable[[NavigationState, LocationStatus], object]


class NavigationStateMachine:
    """Applies navigation events serially and notifies listeners of changes."""

    def __init__(
        self,
        topology: TopologyStore,
        resolver: StationResolver | None = None,
        arrived_threshold_m: float | None = None,
        approaching_threshold_m: float | None = None,
    ) -> None:
        self.topology = topology
        self.resolver = resolver or StationResolver(topology)
        self.arrived_threshold_m = (
            settings.arrived_threshold_m if arrived_threshold_m is None
            else arrived_threshold_m
        )
        self.approaching_threshold_m = (
            settings.approaching_threshold_m if approaching_threshold_m is None
            else approaching_threshold_m
        )
        self._state = NavigationState(theme=settings.theme)
        self._status = LocationStatus()
        self._listeners: list[Listener] = []
        self._queue: asyncio.Queue[tuple[Event, asyncio.Future | None]] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        # line_id -> (arrived, approaching) thresholds in meters
        self._thresholds: dict[int, tuple[float, float]] = {}

        self._handlers: dict[type, Callable] = {
            LineSelected: self._on_line_selected,
            BoundSelected: self._on_bound_selected,
            TrainTypeSelected: self._on_train_type_selected,
            AutoModeToggled: self._on_auto_mode_toggled,
            ThemeChanged: self._on_theme_changed,
            StationPinned: self._on_station_pinned,
            LocationUpdated: self._on_location_updated,
            LocationLost: self._on_location_lost,
            JourneyReset: self._on_journey_reset,
            RemoteSnapshot: self._on_remote_snapshot,
            RemoteEnded: self._on_remote_ended,
        }

    @property
    def state(self) -> NavigationState:
        return self._state

    @property
    def status(self) -> LocationStatus:
        return self._status

    # -- observers ------------------------------------------------------

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener(state, status)``; returns a function removing it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def _notify(self) -> None:
        state, status = self._state, self._status
        for listener in list(self._listeners):
            try:
                result = listener(state, status)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Navigation listener %r failed", listener)

    # -- event queue ----------------------------------------------------

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="navigation-state-machine")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def post(self, event: Event) -> None:
        """Enqueue an event without waiting for it to be applied."""
        self._queue.put_nowait((event, None))

    async def submit(self, event: Event) -> NavigationState:
        """Enqueue an event and wait until it is applied and listeners ran."""
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((event, future))
        return await future

    async def join(self) -> None:
        """Wait until every queued event has been applied."""
        await self._queue.join()

    async def run(self) -> None:
        """Single consumer applying queued events in arrival order."""
        while True:
            event, future = await self._queue.get()
            try:
                if self.dispatch(event):
                    await self._notify()
                if future is not None and not future.done():
                    future.set_result(self._state)
            except Exception as e:
                logger.exception("Failed to apply %s", type(event).__name__)
                if future is not None and not future.done():
                    future.set_exception(e)
            finally:
                self._queue.task_done()

    def dispatch(self, event: Event) -> bool:
        """Apply one event synchronously. Returns True when state or status changed."""
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"Unsupported navigation event {event!r}")
        state, status = handler(event)
        changed = state != self._state or status != self._status
        self._state, self._status = state, status
        return changed

    # -- handlers -------------------------------------------------------

    def _on_line_selected(self, event: LineSelected) -> tuple[NavigationState, LocationStatus]:
        line = event.line
        prev = self._state
        current = None
        if prev.nearest_station is not None:
            current = _station_on_line(line, prev.nearest_station)
        state = NavigationState(
            selected_line=line,
            current_station=current,
            arrived=current is not None,
            stations=self.topology.stations_for_train_type(line.id, None) or line.stations,
            raw_stations=line.stations,
            nearest_station=prev.nearest_station,
            location=prev.location,
            auto_mode=prev.auto_mode,
            theme=prev.theme,
        )
        logger.info("Selected line %s (%s)", line.id, line.name)
        return state, self._status

    def _on_bound_selected(self, event: BoundSelected) -> tuple[NavigationState, LocationStatus]:
        state = self._state
        line = state.selected_line
        if line is None:
            logger.warning("Bound %s selected without a line, ignoring", event.station.id)
            return state, self._status
        bound = _station_on_line(line, event.station)
        if bound is None:
            logger.warning("Bound %s is not on line %s, ignoring", event.station.id, line.id)
            return state, self._status

        direction = event.direction
        if direction is None and state.current_station is not None:
            direction = self.resolver.direction_towards(line, state.current_station, bound)
        state = state.model_copy(update={
            "bound_station": bound,
            "selected_direction": direction,
            "heading": direction or state.heading,
            "journey_complete": False,
            "muted": False,
        })
        return self._with_header(self._refresh(state)), self._status

    def _on_train_type_selected(
        self, event: TrainTypeSelected,
    ) -> tuple[NavigationState, LocationStatus]:
        state = self._state
        train_type = event.train_type
        stations = state.stations
        if state.selected_line is not None:
            line_id = state.selected_line.id
            train_type = self.topology.expand_train_type(line_id, train_type)
            stations = (
                self.topology.stations_for_train_type(line_id, train_type)
                or state.selected_line.stations
            )
        state = state.model_copy(update={"train_type": train_type, "stations": stations})
        return self._with_header(self._refresh(state)), self._status

    def _on_auto_mode_toggled(
        self, event: AutoModeToggled,
    ) -> tuple[NavigationState, LocationStatus]:
        return self._state.model_copy(update={"auto_mode": event.enabled}), self._status

    def _on_theme_changed(self, event: ThemeChanged) -> tuple[NavigationState, LocationStatus]:
        return self._state.model_copy(update={"theme": event.theme}), self._status

    def _on_station_pinned(self, event: StationPinned) -> tuple[NavigationState, LocationStatus]:
        state = self._state
        if state.auto_mode:
            logger.info("Auto mode is on, ignoring pinned station %s", event.station.id)
            return state, self._status
        if state.selected_line is None:
            return state, self._status
        station = _station_on_line(state.selected_line, event.station)
        if station is None:
            return state, self._status
        state = state.model_copy(update={"current_station": station, "arrived": True})
        return self._with_header(self._refresh(self._with_derived_direction(state))), self._status

    def _on_location_updated(
        self, event: LocationUpdated,
    ) -> tuple[NavigationState, LocationStatus]:
        status = LocationStatus(degraded=event.degraded, unavailable=False)
        return self._advance(self._state, event.sample), status

    def _on_location_lost(self, event: LocationLost) -> tuple[NavigationState, LocationStatus]:
        # Hold the last valid state; only the side-channel flag changes
        if not self._status.unavailable:
            logger.warning("Location unavailable: %s", event.reason or "unknown reason")
        return self._state, self._status.model_copy(update={"unavailable": True})

    def _on_journey_reset(self, event: JourneyReset) -> tuple[NavigationState, LocationStatus]:
        prev = self._state
        state = NavigationState(
            nearest_station=prev.nearest_station,
            location=prev.location,
            auto_mode=prev.auto_mode,
            theme=prev.theme,
            muted=prev.muted,
        )
        return state, self._status

    def _on_remote_snapshot(
        self, event: RemoteSnapshot,
    ) -> tuple[NavigationState, LocationStatus]:
        p = event.payload
        prev = self._state
        location = prev.location
        if p.latitude is not None and p.longitude is not None:
            location = LocationSample(
                latitude=p.latitude, longitude=p.longitude, accuracy=p.accuracy,
            )
        line = p.selected_line or prev.selected_line
        direction = p.selected_direction or prev.selected_direction
        if line is not None and prev.selected_line is not None and line.id != prev.selected_line.id:
            prev = prev.model_copy(update={"current_station": None})
        state = prev.model_copy(update={
            "selected_line": line,
            "bound_station": p.selected_bound or prev.bound_station,
            "selected_direction": direction,
            "heading": direction or prev.heading,
            "train_type": p.train_type,
            "stations": tuple(p.stations),
            "raw_stations": tuple(p.raw_stations),
            "theme": p.theme,
            "muted": False,
            "journey_complete": False,
        })
        if location is not None:
            state = self._advance(state, location, infer_heading=False)
        # The publisher's remaining stations are authoritative
        state = state.model_copy(update={"left_stations": tuple(p.left_stations)})
        status = self._status
        if location is not None:
            status = LocationStatus(degraded=False, unavailable=False)
        return state, status

    def _on_remote_ended(self, event: RemoteEnded) -> tuple[NavigationState, LocationStatus]:
        prev = self._state
        state = NavigationState(
            location=prev.location,
            nearest_station=prev.nearest_station,
            auto_mode=prev.auto_mode,
            theme=prev.theme,
            muted=True,
        )
        if state != prev:
            logger.info("Mirroring session %s ended, journey reset", event.token)
        return state, self._status

    # -- transitions ----------------------------------------------------

    def _advance(
        self, state: NavigationState, sample: LocationSample, infer_heading: bool = True,
    ) -> NavigationState:
        """Move the journey forward for a new sample."""
        prev_location = state.location
        state = state.model_copy(update={"location": sample})
        if state.journey_complete:
            return state

        line = state.selected_line
        if line is None:
            if not self.topology.lines:
                logger.debug("No topology loaded, holding state")
                return state
            res = self.resolver.resolve(sample, None)
            return state.model_copy(update={"nearest_station": res.current_station})
        if not line.stations:
            return state

        heading = state.selected_direction or state.heading
        if state.selected_direction is None and infer_heading and prev_location is not None:
            heading = self.resolver.infer_direction(line, prev_location, sample) or heading

        res = self.resolver.resolve(
            sample, line, state.train_type, heading, state.bound_station,
            previous=state.current_station,
        )
        nearest = res.current_station
        arrived_m, approaching_m = self._line_thresholds(line)
        # The train runs through stations its type does not serve
        passing = state.train_type is not None and not state.train_type.serves(nearest)
        arrived = res.distance_m < arrived_m and not passing
        current = state.current_station
        if arrived or current is None:
            current = nearest

        state = self._refresh(self._with_derived_direction(state.model_copy(update={
            "current_station": current,
            "nearest_station": nearest,
            "heading": heading,
            "arrived": arrived,
        })))

        next_station = state.next_station
        approaching = not arrived and next_station is not None and (
            (
                passing
                and nearest.id != next_station.id
                and line.line_type is not LineType.BULLET_TRAIN
            )
            or station_distance_m(sample.latitude, sample.longitude, next_station)
            < approaching_m
        )
        return self._with_header(state.model_copy(update={"approaching": approaching}))

    def _refresh(self, state: NavigationState) -> NavigationState:
        """Recompute next/left stations and terminal flag from the current station."""
        line = state.selected_line
        current = state.current_station
        heading = state.heading
        if line is None or current is None or heading is None:
            return state.model_copy(update={
                "next_station": None, "left_stations": (), "journey_complete": False,
            })
        bound = state.bound_station
        next_station = self.resolver.next_stop(line, current, heading, state.train_type, bound)
        left = self.resolver.left_stations(line, current, heading, state.train_type, bound)
        complete = bound is not None and current.id == bound.id and next_station is None
        if complete and not state.journey_complete:
            logger.info("Journey complete at %s (%s)", current.id, current.name)
        return state.model_copy(update={
            "next_station": next_station,
            "left_stations": tuple(left),
            "journey_complete": complete,
        })

    def _with_derived_direction(self, state: NavigationState) -> NavigationState:
        """Fix the direction towards the bound once the current station is known."""
        line, current, bound = state.selected_line, state.current_station, state.bound_station
        if state.selected_direction is not None or line is None or current is None or bound is None:
            return state
        direction = self.resolver.direction_towards(line, current, bound)
        if direction is None:
            return state
        logger.debug("Direction towards bound %s derived as %s", bound.id, direction.value)
        return state.model_copy(update={"selected_direction": direction, "heading": direction})

    @staticmethod
    def _with_header(state: NavigationState) -> NavigationState:
        if state.journey_complete or state.arrived or state.next_station is None:
            header = HeaderState.CURRENT
        elif state.approaching:
            header = HeaderState.ARRIVING
        else:
            header = HeaderState.NEXT
        return state.model_copy(update={"header_state": header})

    def _line_thresholds(self, line: Line) -> tuple[float, float]:
        """(arrived, approaching) distances, scaled to the line's station spacing."""
        cached = self._thresholds.get(line.id)
        if cached is not None:
            return cached
        arrived = self.arrived_threshold_m
        approaching = self.approaching_threshold_m
        factor = {
            LineType.BULLET_TRAIN: settings.bullet_train_threshold_factor,
            LineType.SUBWAY: settings.subway_threshold_factor,
            LineType.TRAM: settings.tram_threshold_factor,
        }.get(line.line_type, 1.0)
        arrived *= factor
        approaching *= factor
        avg = average_spacing_m(line.stations)
        if avg is not None:
            approaching = min(approaching, avg / 2)
            arrived = min(arrived, approaching / 2)
        self._thresholds[line.id] = (arrived, approaching)
        return arrived, approaching


def _station_on_line(line: Line, station: Station) -> Station | None:
    """The line's own record for ``station``: same id, else same group."""
    for s in line.stations:
        if s.id == station.id:
            return s
    for s in line.stations:
        if s.group_id == station.group_id:
            return s
    return None
