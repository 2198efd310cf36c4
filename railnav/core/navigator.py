"""Orchestrator and presentation boundary of the navigation core.

Wires sampler -> accuracy monitor -> state machine (which drives the
resolver) and keeps mirroring in sync with the resolved state.
"""

import logging
from collections.abc import Callable

from railnav.core.accuracy_monitor import AccuracyMonitor
from railnav.core.document_store import DocumentStore
from railnav.core.errors import LocationUnavailableError
from railnav.core.location_sampler import LocationSampler
from railnav.core.mirroring import MirroringSync
from railnav.core.navigation import (
    AutoModeToggled,
    BoundSelected,
    JourneyReset,
    LineSelected,
    LocationLost,
    LocationUpdated,
    NavigationStateMachine,
    StationPinned,
    ThemeChanged,
    TrainTypeSelected,
)
from railnav.core.topology import TopologyStore
from railnav.schemas.location import LocationStatus
from railnav.schemas.mirroring import MirroringRole, MirroringSession, StorePayload
from railnav.schemas.navigation import Direction, NavigationState
from railnav.schemas.topology import Line, Station, TrainType

logger = logging.getLogger(__name__)


class Navigator:
    """Commands and read access offered to the UI shell."""

    def __init__(
        self,
        topology: TopologyStore,
        sampler: LocationSampler,
        store: DocumentStore,
        accuracy_monitor: AccuracyMonitor | None = None,
        on_session_ended: Callable[[], None] | None = None,
    ) -> None:
        self.topology = topology
        self.sampler = sampler
        self.accuracy_monitor = accuracy_monitor or AccuracyMonitor()
        self.machine = NavigationStateMachine(topology)
        self.mirroring = MirroringSync(store, self.machine, on_ended=self._on_session_ended)
        self.on_session_ended = on_session_ended
        self._remove_listener = self.machine.add_listener(self._on_state_changed)

    async def __aenter__(self) -> "Navigator":
        self.machine.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        self.mirroring.unsubscribe()
        await self.mirroring.stop_publishing()
        await self.machine.stop()

    # -- read access ----------------------------------------------------

    @property
    def state(self) -> NavigationState:
        return self.machine.state

    @property
    def status(self) -> LocationStatus:
        return self.machine.status

    @property
    def degraded(self) -> bool:
        return self.machine.status.degraded

    @property
    def location_unavailable(self) -> bool:
        return self.machine.status.unavailable

    @property
    def session(self) -> MirroringSession:
        return self.mirroring.session

    def add_listener(self, listener) -> Callable[[], None]:
        return self.machine.add_listener(listener)

    # -- location -------------------------------------------------------

    async def poll_location(self) -> None:
        """One sample -> resolve cycle; subscribers mirror instead of sampling."""
        if self.mirroring.role is MirroringRole.SUBSCRIBER:
            return
        try:
            sample = await self.sampler.sample()
        except LocationUnavailableError as e:
            await self.machine.submit(LocationLost(reason=str(e)))
            return
        self.accuracy_monitor.classify(sample)
        await self.machine.submit(
            LocationUpdated(sample=sample, degraded=self.accuracy_monitor.degraded)
        )

    # -- journey commands -----------------------------------------------

    async def select_line(self, line: Line) -> NavigationState:
        return await self.machine.submit(LineSelected(line))

    async def select_bound(
        self, station: Station, direction: Direction | None = None,
    ) -> NavigationState:
        return await self.machine.submit(BoundSelected(station, direction))

    async def set_train_type(self, train_type: TrainType | None) -> NavigationState:
        return await self.machine.submit(TrainTypeSelected(train_type))

    async def set_auto_mode(self, enabled: bool) -> NavigationState:
        return await self.machine.submit(AutoModeToggled(enabled))

    async def set_theme(self, theme: str) -> NavigationState:
        return await self.machine.submit(ThemeChanged(theme))

    async def pin_station(self, station: Station) -> NavigationState:
        """Manual fallback when no location fix is available."""
        return await self.machine.submit(StationPinned(station))

    async def reset_journey(self) -> NavigationState:
        self.accuracy_monitor.reset()
        return await self.machine.submit(JourneyReset())

    # -- mirroring commands ---------------------------------------------

    async def start_publishing(self) -> str:
        token = self.mirroring.start_publishing()
        await self.mirroring.publish(self.machine.state)
        return token

    async def stop_publishing(self) -> None:
        await self.mirroring.stop_publishing()

    async def start_subscribing(self, token: str) -> StorePayload:
        """Raises PublisherNotFoundError, PublisherNotReadyError or RoleConflictError."""
        payload = await self.mirroring.subscribe(token)
        await self.machine.join()
        return payload

    async def stop_subscribing(self) -> None:
        self.mirroring.unsubscribe()

    # ------------------------------------------------------------------

    async def _on_state_changed(self, state: NavigationState, status: LocationStatus) -> None:
        await self.mirroring.publish(state)

    def _on_session_ended(self, token: str) -> None:
        if self.on_session_ended is not None:
            try:
                self.on_session_ended()
            except Exception:
                logger.exception("Session-ended handler failed for %s", token)
