"""
Unit tests for the serial GPS position source.
Serial I/O is replaced with a scripted fake; workers run synchronously.
"""

import errno
import queue
from unittest.mock import patch

import pytest
import serial

from guidance.data.models import PositionErrorCode, WatchOptions
from hardware.gps_handler import MTK_DGPS_SBAS, MTK_ENABLE_SBAS, GPSHandler, classify_open_error
from utils.hardware_base import FeedSubscription
from fixtures.gps_test_data import gga_sentence, rmc_sentence


class FakeSerial:
    """
    Returns scripted chunks from read(). Once the script runs out the
    subscription is cancelled so the worker loop exits.
    """

    def __init__(self, chunks, subscription, clock=None, tick=0.0):
        self.chunks = list(chunks)
        self.subscription = subscription
        self.clock = clock
        self.tick = tick
        self.in_waiting = 0
        self.written = []
        self.closed = False

    def read(self, size=1):
        if self.clock is not None:
            self.clock.advance(self.tick)
        if not self.chunks:
            self.subscription.cancel()
            return b""
        chunk = self.chunks.pop(0)
        if isinstance(chunk, Exception):
            raise chunk
        return chunk

    def write(self, data):
        self.written.append(data)

    def close(self):
        self.closed = True


def _lines(*sentences):
    return "".join(s + "\r\n" for s in sentences).encode('ascii')


def _drain(inbox):
    events = []
    while not inbox.empty():
        events.append(inbox.get_nowait())
    return events


@pytest.fixture
def inbox():
    return queue.Queue()


@pytest.fixture
def make_subscription(inbox):
    def _make(**options):
        return FeedSubscription(1, inbox, WatchOptions(**options))
    return _make


@pytest.fixture
def handler(clock):
    return GPSHandler(port="/dev/ttyTEST", clock=clock)


class TestGPSHandlerReading:
    """Tests for reading fixes from the serial port."""

    @pytest.mark.unit
    def test_rmc_fix_delivered_as_sample(self, handler, inbox, make_subscription):
        """Test that a valid RMC line is delivered as a sample."""
        sub = make_subscription()
        data = _lines(gga_sentence(35.0, 135.0, hdop=1.0), rmc_sentence(35.0, 135.0005, speed_knots=5.0, course=90.0))
        fake = FakeSerial([data], sub)

        with patch.object(handler, '_open_port', return_value=fake):
            handler._worker_loop(sub)

        events = _drain(inbox)
        assert len(events) == 1
        sample = events[0].sample
        assert pytest.approx(sample.longitude, abs=1e-6) == 135.0005
        assert sample.accuracy == pytest.approx(5.0)
        assert sample.heading == 90.0
        assert fake.closed

    @pytest.mark.unit
    def test_sentence_split_across_reads(self, handler, inbox, make_subscription):
        """Test that a sentence split over two reads is reassembled."""
        sub = make_subscription()
        data = _lines(rmc_sentence(35.0, 135.0))
        fake = FakeSerial([data[:20], data[20:]], sub)

        with patch.object(handler, '_open_port', return_value=fake):
            handler._worker_loop(sub)

        assert len(_drain(inbox)) == 1

    @pytest.mark.unit
    def test_invalid_fix_not_delivered(self, handler, inbox, make_subscription):
        """Test that a status V fix is not delivered."""
        sub = make_subscription()
        fake = FakeSerial([_lines(rmc_sentence(35.0, 135.0, valid=False))], sub)

        with patch.object(handler, '_open_port', return_value=fake):
            handler._worker_loop(sub)

        assert _drain(inbox) == []

    @pytest.mark.unit
    def test_high_accuracy_enables_sbas(self, handler, make_subscription):
        """Test that high accuracy sends the SBAS enable commands."""
        sub = make_subscription(high_accuracy=True)
        fake = FakeSerial([], sub)
        with patch.object(handler, '_open_port', return_value=fake):
            handler._worker_loop(sub)
        assert fake.written == [MTK_ENABLE_SBAS, MTK_DGPS_SBAS]

    @pytest.mark.unit
    def test_low_accuracy_sends_nothing(self, handler, make_subscription):
        """Test that low accuracy leaves the receiver configuration alone."""
        sub = make_subscription(high_accuracy=False)
        fake = FakeSerial([], sub)
        with patch.object(handler, '_open_port', return_value=fake):
            handler._worker_loop(sub)
        assert fake.written == []

    @pytest.mark.unit
    def test_cached_fix_delivered_within_maximum_age(self, handler, inbox, clock, make_subscription):
        """Test that a recent cached fix is delivered straight away."""
        first = make_subscription()
        with patch.object(handler, '_open_port', return_value=FakeSerial([_lines(rmc_sentence(35.0, 135.0))], first)):
            handler._worker_loop(first)
        _drain(inbox)

        clock.advance(2.0)
        second = FeedSubscription(2, inbox, WatchOptions(maximum_age_s=5.0))
        with patch.object(handler, '_open_port', return_value=FakeSerial([], second)):
            handler._worker_loop(second)

        events = _drain(inbox)
        assert len(events) == 1
        assert events[0].subscription_id == 2

    @pytest.mark.unit
    def test_old_cached_fix_not_delivered(self, handler, inbox, clock, make_subscription):
        """Test that a cached fix older than maximum age is not delivered."""
        first = make_subscription()
        with patch.object(handler, '_open_port', return_value=FakeSerial([_lines(rmc_sentence(35.0, 135.0))], first)):
            handler._worker_loop(first)
        _drain(inbox)

        clock.advance(10.0)
        second = make_subscription(maximum_age_s=5.0)
        with patch.object(handler, '_open_port', return_value=FakeSerial([], second)):
            handler._worker_loop(second)

        assert _drain(inbox) == []


class TestGPSHandlerErrors:
    """Tests for serial errors and timeouts."""

    @pytest.mark.unit
    def test_silence_reports_timeout_once(self, handler, inbox, clock, make_subscription):
        """Test that silence past the timeout reports TIMEOUT once."""
        sub = make_subscription(timeout_s=20.0)
        fake = FakeSerial([b"", b"", b"", b""], sub, clock=clock, tick=8.0)

        with patch.object(handler, '_open_port', return_value=fake):
            handler._worker_loop(sub)

        errors = [e.error for e in _drain(inbox)]
        assert [e.code for e in errors] == [PositionErrorCode.TIMEOUT]

    @pytest.mark.unit
    def test_repeated_read_errors_report_unavailable(self, handler, inbox, make_subscription):
        """Test that repeated serial read errors report POSITION_UNAVAILABLE."""
        sub = make_subscription()
        failures = [serial.SerialException("device reports readiness to read but returned no data")] * 10
        fake = FakeSerial(failures, sub)

        with patch.object(handler, '_open_port', return_value=fake), \
                patch.object(FeedSubscription, 'wait', return_value=False):
            handler._worker_loop(sub)

        events = _drain(inbox)
        assert len(events) == 1
        assert events[0].error.code == PositionErrorCode.POSITION_UNAVAILABLE
        assert fake.closed

    @pytest.mark.unit
    def test_open_permission_denied(self, handler, inbox, make_subscription):
        """Test that a port we may not open reports PERMISSION_DENIED."""
        sub = make_subscription()
        exc = serial.SerialException(errno.EACCES, "could not open port /dev/ttyTEST: Permission denied")

        with patch('hardware.gps_handler.serial.Serial', side_effect=exc):
            handler._worker_loop(sub)

        event = inbox.get_nowait()
        assert event.error.code == PositionErrorCode.PERMISSION_DENIED
        assert "/dev/ttyTEST" in event.error.message

    @pytest.mark.unit
    def test_open_missing_port_unavailable(self, handler, inbox, make_subscription):
        """Test that a missing port reports POSITION_UNAVAILABLE."""
        sub = make_subscription()
        exc = serial.SerialException(errno.ENOENT, "could not open port /dev/ttyTEST: No such file")

        with patch('hardware.gps_handler.serial.Serial', side_effect=exc):
            handler._worker_loop(sub)

        assert inbox.get_nowait().error.code == PositionErrorCode.POSITION_UNAVAILABLE

    @pytest.mark.unit
    @pytest.mark.parametrize("exc,expected", [
        (serial.SerialException(errno.EACCES, "denied"), PositionErrorCode.PERMISSION_DENIED),
        (serial.SerialException(errno.EPERM, "not permitted"), PositionErrorCode.PERMISSION_DENIED),
        (serial.SerialException(errno.ENOENT, "missing"), PositionErrorCode.POSITION_UNAVAILABLE),
        (serial.SerialException("no errno"), PositionErrorCode.POSITION_UNAVAILABLE),
    ])
    def test_classify_open_error(self, exc, expected):
        """Test mapping serial open exceptions to error codes."""
        assert classify_open_error(exc) == expected
