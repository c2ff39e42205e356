"""
Unit tests for NMEA log replay.
"""

import queue
from unittest.mock import patch

import pytest

from guidance.data.models import PositionErrorCode, WatchOptions
from hardware.replay_source import NMEAReplaySource
from utils.hardware_base import FeedSubscription
from fixtures.gps_test_data import gga_sentence, rmc_sentence


@pytest.fixture
def nmea_log(tmp_path):
    path = tmp_path / "drive.nmea"
    path.write_text("\n".join([
        gga_sentence(35.0, 135.0, hdop=0.8),
        rmc_sentence(35.0, 135.0),
        "$GPGSV,3,1,11,03,03,111,00*74",
        rmc_sentence(35.0, 135.0005, valid=False),
        rmc_sentence(35.0, 135.0005),
        "not nmea at all",
        rmc_sentence(35.0, 135.001),
    ]) + "\n")
    return path


def _drain(inbox):
    events = []
    while not inbox.empty():
        events.append(inbox.get_nowait())
    return events


class TestNMEAReplaySource:
    """Tests for playing an NMEA log as a position feed."""

    @pytest.mark.unit
    def test_plays_valid_fixes_then_times_out(self, nmea_log):
        """Test that only valid fixes are played, then a timeout at end of file."""
        inbox = queue.Queue()
        sub = FeedSubscription(1, inbox, WatchOptions(timeout_s=0.01))
        NMEAReplaySource(str(nmea_log), rate_hz=1000.0)._worker_loop(sub)

        events = _drain(inbox)
        samples = [e.sample for e in events if e.sample is not None]
        assert [s.longitude for s in samples] == pytest.approx([135.0, 135.0005, 135.001], abs=1e-6)
        assert samples[0].accuracy == pytest.approx(4.0)
        assert events[-1].error.code == PositionErrorCode.TIMEOUT

    @pytest.mark.unit
    def test_missing_file_unavailable(self, tmp_path):
        """Test that a missing log reports POSITION_UNAVAILABLE."""
        inbox = queue.Queue()
        sub = FeedSubscription(1, inbox)
        NMEAReplaySource(str(tmp_path / "nope.nmea"))._worker_loop(sub)

        assert inbox.get_nowait().error.code == PositionErrorCode.POSITION_UNAVAILABLE

    @pytest.mark.unit
    def test_unreadable_file_permission_denied(self, nmea_log):
        """Test that an unreadable log reports PERMISSION_DENIED."""
        inbox = queue.Queue()
        sub = FeedSubscription(1, inbox)
        with patch('hardware.replay_source.open', side_effect=PermissionError("denied"), create=True):
            NMEAReplaySource(str(nmea_log))._worker_loop(sub)

        assert inbox.get_nowait().error.code == PositionErrorCode.PERMISSION_DENIED

    @pytest.mark.unit
    def test_cancel_stops_playback(self, nmea_log):
        """Test that a cancelled subscription plays nothing."""
        inbox = queue.Queue()
        sub = FeedSubscription(1, inbox)
        sub.cancel()
        NMEAReplaySource(str(nmea_log))._worker_loop(sub)
        assert inbox.empty()

    @pytest.mark.unit
    def test_loop_replays_from_top(self, nmea_log):
        """Test that looping starts again from the first fix."""
        inbox = queue.Queue()
        sub = FeedSubscription(1, inbox)
        source = NMEAReplaySource(str(nmea_log), rate_hz=200.0, loop=True)
        source.start_updates(sub)
        try:
            events = [inbox.get(timeout=2.0) for _ in range(5)]
        finally:
            source.stop_updates(sub)

        assert all(e.sample is not None for e in events)
        assert pytest.approx(events[3].sample.longitude, abs=1e-6) == 135.0

    @pytest.mark.unit
    @pytest.mark.parametrize("rate", [0, -1.0])
    def test_rate_must_be_positive(self, nmea_log, rate):
        """Test that a non-positive replay rate is rejected."""
        with pytest.raises(ValueError):
            NMEAReplaySource(str(nmea_log), rate_hz=rate)
