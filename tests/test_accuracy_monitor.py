"""Tests for AccuracyMonitor."""

import datetime

from railnav.core.accuracy_monitor import AccuracyLevel, AccuracyMonitor
from railnav.schemas.location import LocationSample

T0 = datetime.datetime(2024, 4, 1, 8, 0, tzinfo=datetime.timezone.utc)


def sample(accuracy: float | None, seconds: float = 0) -> LocationSample:
    return LocationSample(
        latitude=35.68,
        longitude=139.70,
        accuracy=accuracy,
        timestamp=T0 + datetime.timedelta(seconds=seconds),
    )


def test_degraded_clears_immediately():
    monitor = AccuracyMonitor(threshold_m=50)

    assert monitor.classify(sample(80)) is AccuracyLevel.DEGRADED
    assert monitor.degraded
    assert monitor.classify(sample(20, 1)) is AccuracyLevel.OK
    assert not monitor.degraded


def test_threshold_is_exclusive():
    monitor = AccuracyMonitor(threshold_m=50)
    assert monitor.classify(sample(50)) is AccuracyLevel.OK


def test_absent_accuracy_degrades_after_timeout():
    monitor = AccuracyMonitor(threshold_m=50, absent_timeout_seconds=30)

    assert monitor.classify(sample(None, 0)) is AccuracyLevel.OK
    assert monitor.classify(sample(None, 20)) is AccuracyLevel.OK
    assert monitor.classify(sample(None, 31)) is AccuracyLevel.DEGRADED
    # A known good accuracy restarts the absence window
    assert monitor.classify(sample(10, 32)) is AccuracyLevel.OK
    assert monitor.classify(sample(None, 40)) is AccuracyLevel.OK


def test_reset():
    monitor = AccuracyMonitor(threshold_m=50)
    monitor.classify(sample(500))
    monitor.reset()
    assert monitor.level is AccuracyLevel.OK
