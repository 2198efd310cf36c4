"""Degraded-accuracy signal derived from location samples."""

import datetime
import logging
from enum import Enum

from railnav.config import settings
from railnav.schemas.location import LocationSample

logger = logging.getLogger(__name__)


class AccuracyLevel(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"


class AccuracyMonitor:
    """Level-triggered classifier: degraded for as long as the condition holds.

    A sample is degraded when its accuracy is known and worse than the
    threshold, or when accuracy has been unknown for longer than the
    configured timeout. Advisory only.
    """

    def __init__(
        self,
        threshold_m: float | None = None,
        absent_timeout_seconds: float | None = None,
    ) -> None:
        self.threshold_m = (
            settings.bad_accuracy_threshold_m if threshold_m is None else threshold_m
        )
        self.absent_timeout_seconds = (
            settings.accuracy_absent_timeout_seconds if absent_timeout_seconds is None
            else absent_timeout_seconds
        )
        self._level = AccuracyLevel.OK
        self._absent_since: datetime.datetime | None = None

    @property
    def level(self) -> AccuracyLevel:
        return self._level

    @property
    def degraded(self) -> bool:
        return self._level is AccuracyLevel.DEGRADED

    def classify(self, sample: LocationSample) -> AccuracyLevel:
        if sample.accuracy is None:
            if self._absent_since is None:
                self._absent_since = sample.timestamp
            absent_for = (sample.timestamp - self._absent_since).total_seconds()
            level = (
                AccuracyLevel.DEGRADED if absent_for > self.absent_timeout_seconds
                else AccuracyLevel.OK
            )
        else:
            self._absent_since = None
            level = (
                AccuracyLevel.DEGRADED if sample.accuracy > self.threshold_m
                else AccuracyLevel.OK
            )

        if level is not self._level:
            logger.info("Location accuracy %s (accuracy=%s)", level.value, sample.accuracy)
        self._level = level
        return level

    def reset(self) -> None:
        self._level = AccuracyLevel.OK
        self._absent_since = None
