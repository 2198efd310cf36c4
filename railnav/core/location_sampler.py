"""Location acquisition with last-known fallback."""

import datetime
import logging
from typing import Protocol

from railnav.config import settings
from railnav.core.errors import LocationPermissionError, LocationUnavailableError
from railnav.schemas.location import LocationAccuracy, LocationSample, PermissionStatus

logger = logging.getLogger(__name__)


class LocationProvider(Protocol):
    """Port to the platform's location services."""

    async def get_current_sample(self, accuracy_hint: LocationAccuracy) -> LocationSample:
        """Obtain a fresh fix; may suspend until the OS reports one."""
        ...

    async def get_last_known_sample(self, max_age: float) -> LocationSample | None:
        """Most recent cached fix not older than ``max_age`` seconds."""
        ...

    async def get_permission_status(self) -> PermissionStatus:
        ...


class LocationSampler:
    """Produces timestamped samples, falling back to the last known fix."""

    def __init__(
        self,
        provider: LocationProvider,
        accuracy_hint: LocationAccuracy | None = None,
        last_known_max_age: float | None = None,
    ) -> None:
        self.provider = provider
        self.accuracy_hint = accuracy_hint or settings.location_accuracy
        self.last_known_max_age = (
            settings.last_known_max_age_seconds if last_known_max_age is None
            else last_known_max_age
        )

    async def sample(self) -> LocationSample:
        """Fresh sample, or the last known one within the fallback window.

        Raises LocationUnavailableError when neither is available.
        """
        try:
            status = await self.provider.get_permission_status()
        except Exception as e:
            raise LocationUnavailableError(f"Location permission status unknown: {e}") from e
        if status is not PermissionStatus.GRANTED:
            raise LocationPermissionError(f"Location permission is {status.value}")

        try:
            return await self.provider.get_current_sample(self.accuracy_hint)
        except Exception as e:
            logger.warning("Fresh location fix failed (%s), trying last known", e)
            fallback = await self.last_known(self.last_known_max_age)
            if fallback is not None:
                return fallback
            raise LocationUnavailableError("No location fix available") from e

    async def last_known(self, max_age: float) -> LocationSample | None:
        """Last known sample if it is not older than ``max_age`` seconds."""
        try:
            sample = await self.provider.get_last_known_sample(max_age)
        except Exception:
            logger.exception("Failed to read last known location")
            return None
        if sample is None:
            return None
        age = (datetime.datetime.now(datetime.timezone.utc) - sample.timestamp).total_seconds()
        if age > max_age:
            logger.debug("Last known location is %.1fs old, discarding", age)
            return None
        return sample
