"""
Shared pytest fixtures for StraightBar tests.
"""

import os
import sys

import pytest

# Add project root (for imports) and tests dir (for fixtures.*) to path
TESTS_ROOT = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(TESTS_ROOT)
sys.path.insert(0, PROJECT_ROOT)
sys.path.insert(0, TESTS_ROOT)

from guidance.data.models import GeoPoint, PositionErrorCode, PositionSample  # noqa: E402
from utils.hardware_base import PositionSource  # noqa: E402
from utils.timers import TimerScheduler  # noqa: E402
from fixtures.gps_test_data import FIELD_A, FIELD_B_EAST, FIELD_P_NORTH  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeSource(PositionSource):
    """
    Records start/stop calls and lets the test push events into whichever
    subscription it likes (including stale ones).
    """

    def __init__(self):
        self.subscriptions = []
        self.stopped = []
        self.fail_with = None

    def start_updates(self, subscription):
        self.subscriptions.append(subscription)
        if self.fail_with is not None:
            raise self.fail_with

    def stop_updates(self, subscription):
        self.stopped.append(subscription)

    @property
    def current(self):
        return self.subscriptions[-1]

    def push_sample(self, lat, lon, subscription=None, **fields):
        sub = subscription or self.current
        return sub.deliver_sample(PositionSample(latitude=lat, longitude=lon, **fields))

    def push_error(self, code: PositionErrorCode, message="", subscription=None):
        sub = subscription or self.current
        return sub.deliver_error(code, message)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return TimerScheduler(clock=clock)


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def run_for(clock, scheduler):
    """Advance time in small steps, firing timers as the main loop would."""
    def _run(seconds, step=0.5):
        elapsed = 0.0
        while elapsed < seconds - 1e-9:
            delta = min(step, seconds - elapsed)
            clock.advance(delta)
            elapsed += delta
            scheduler.run_due()
    return _run


@pytest.fixture
def field_points():
    """A, B (east of A) and P (north of the line) from the worked example."""
    return {
        'a': GeoPoint(*FIELD_A),
        'b': GeoPoint(*FIELD_B_EAST),
        'p': GeoPoint(*FIELD_P_NORTH),
    }
