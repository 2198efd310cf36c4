"""Entry point wiring the navigation core for an embedding UI shell."""

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from railnav.config import settings
from railnav.core.document_store import RedisDocumentStore
from railnav.core.location_sampler import LocationProvider, LocationSampler
from railnav.core.navigator import Navigator
from railnav.core.scheduler import create_scheduler
from railnav.core.station_api_client import StationApiClient
from railnav.core.topology import TopologyStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def load_topology() -> TopologyStore:
    """Bundled topology file if configured, otherwise the station API."""
    if settings.topology_path:
        return TopologyStore.from_json(settings.topology_path)
    client = StationApiClient()
    try:
        return await client.load_topology()
    finally:
        await client.close()


@asynccontextmanager
async def run_navigator(
    provider: LocationProvider,
    topology: TopologyStore | None = None,
    on_session_ended: Callable[[], None] | None = None,
) -> AsyncIterator[Navigator]:
    """Start the navigation core and stop it on exit."""
    if topology is None:
        try:
            topology = await load_topology()
        except Exception:
            logger.exception("Failed to load topology - starting without stations")
            topology = TopologyStore([])

    store = RedisDocumentStore()
    await store.connect()

    navigator = Navigator(
        topology,
        LocationSampler(provider),
        store,
        on_session_ended=on_session_ended,
    )
    scheduler = create_scheduler(navigator)

    try:
        async with navigator:
            scheduler.start()
            logger.info(
                "Navigation core started - sampling location every %ds",
                settings.location_interval_seconds,
            )
            try:
                yield navigator
            finally:
                scheduler.shutdown(wait=False)
    finally:
        await store.close()
        logger.info("Navigation core shut down")
