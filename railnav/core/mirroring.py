"""Live journey mirroring between a publisher device and its subscribers."""

import logging
import secrets
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from railnav.core.document_store import DocumentStore
from railnav.core.errors import PublisherNotFoundError, PublisherNotReadyError, RoleConflictError
from railnav.core.navigation import NavigationStateMachine, RemoteEnded, RemoteSnapshot
from railnav.schemas.mirroring import (
    STORE_SCHEMA_VERSION,
    MirroringRole,
    MirroringSession,
    StorePayload,
)
from railnav.schemas.navigation import NavigationState

logger = logging.getLogger(__name__)


def build_payload(state: NavigationState) -> StorePayload:
    """Project the navigation state onto the shared document schema."""
    location = state.location
    return StorePayload(
        latitude=location.latitude if location else None,
        longitude=location.longitude if location else None,
        accuracy=location.accuracy if location else None,
        selected_line=state.selected_line,
        selected_bound=state.bound_station,
        train_type=state.train_type,
        selected_direction=state.selected_direction,
        stations=list(state.stations),
        left_stations=list(state.left_stations),
        raw_stations=list(state.raw_stations),
        theme=state.theme,
    )


class MirroringSync:
    """Publishes the local projection, or mirrors a remote one into the state machine.

    A device holds at most one role; the caller must stop one before
    starting the other.
    """

    def __init__(
        self,
        store: DocumentStore,
        machine: NavigationStateMachine,
        on_ended: Callable[[str], None] | None = None,
    ) -> None:
        self.store = store
        self.machine = machine
        self.on_ended = on_ended
        self._session = MirroringSession()
        self._unsubscribe: Callable[[], None] | None = None
        self._last_published: dict[str, Any] | None = None

    @property
    def session(self) -> MirroringSession:
        return self._session.model_copy()

    @property
    def role(self) -> MirroringRole:
        return self._session.role

    @property
    def token(self) -> str | None:
        return self._session.token

    # -- publisher ------------------------------------------------------

    def start_publishing(self) -> str:
        """Switch to PUBLISHER; the token is kept across publish toggles."""
        if self._session.role is MirroringRole.SUBSCRIBER:
            raise RoleConflictError("Stop subscribing before publishing")
        token = self._session.token or secrets.token_urlsafe(16)
        self._session = MirroringSession(token=token, role=MirroringRole.PUBLISHER)
        self._last_published = None
        logger.info("Publishing mirroring session %s", token)
        return token

    async def stop_publishing(self) -> None:
        if self._session.role is not MirroringRole.PUBLISHER:
            return
        token = self._session.token
        self._session = MirroringSession(token=token, role=MirroringRole.NONE)
        self._last_published = None
        try:
            await self.store.delete(token)
        except Exception:
            logger.exception("Failed to delete mirroring document %s", token)
        logger.info("Stopped publishing mirroring session %s", token)

    async def publish(self, state: NavigationState) -> None:
        """Upsert the full projection while publishing; failures retry on the next change."""
        if self._session.role is not MirroringRole.PUBLISHER:
            return
        payload = build_payload(state).model_dump(mode="json")
        if payload == self._last_published:
            return
        try:
            await self.store.set(self._session.token, payload)
        except Exception:
            logger.exception("Failed to publish mirroring document %s", self._session.token)
            return
        self._last_published = payload

    # -- subscriber -----------------------------------------------------

    async def subscribe(self, token: str) -> StorePayload:
        """Validate the publisher's document, mirror it, and follow its changes.

        Raises PublisherNotFoundError / PublisherNotReadyError.
        """
        if self._session.role is MirroringRole.PUBLISHER:
            raise RoleConflictError("Stop publishing before subscribing")
        self._detach()

        doc = await self.store.get(token)
        if doc is None:
            raise PublisherNotFoundError(token)
        payload = self._validate(token, doc)
        if payload is None or not payload.is_ready:
            raise PublisherNotReadyError(token)

        self._session = MirroringSession(token=token, role=MirroringRole.SUBSCRIBER)
        try:
            unsubscribe = await self.store.on_change(token, self._make_handler(token))
        except Exception:
            self._session = MirroringSession()
            raise
        if self._session.role is not MirroringRole.SUBSCRIBER or self._session.token != token:
            # Unsubscribed while the feed was starting
            unsubscribe()
            return payload
        self._unsubscribe = unsubscribe
        # Posted before the feed task first runs, so it precedes every update
        self.machine.post(RemoteSnapshot(payload))
        logger.info("Subscribed to mirroring session %s", token)
        return payload

    def unsubscribe(self) -> None:
        """Detach the change feed synchronously and drop the subscriber role."""
        self._detach()
        if self._session.role is MirroringRole.SUBSCRIBER:
            logger.info("Unsubscribed from mirroring session %s", self._session.token)
            self._session = MirroringSession()

    def _make_handler(self, token: str) -> Callable[[dict[str, Any] | None], None]:
        def handle(doc: dict[str, Any] | None) -> None:
            if self._session.role is not MirroringRole.SUBSCRIBER or self._session.token != token:
                return  # stale feed
            if doc is None:
                self._on_remote_deleted(token)
                return
            payload = self._validate(token, doc)
            if payload is not None:
                self.machine.post(RemoteSnapshot(payload))

        return handle

    def _on_remote_deleted(self, token: str) -> None:
        # Runs once: the role check in the handler drops repeated deletions
        self._detach()
        self._session = MirroringSession()
        logger.info("Mirroring session %s was ended by the publisher", token)
        self.machine.post(RemoteEnded(token=token))
        if self.on_ended is not None:
            self.on_ended(token)

    def _detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @staticmethod
    def _validate(token: str, doc: dict[str, Any]) -> StorePayload | None:
        try:
            payload = StorePayload.model_validate(doc)
        except ValidationError as e:
            logger.warning("Ignoring malformed mirroring document %s: %s", token, e)
            return None
        if payload.schema_version != STORE_SCHEMA_VERSION:
            logger.warning(
                "Ignoring mirroring document %s with schema version %d",
                token, payload.schema_version,
            )
            return None
        return payload
