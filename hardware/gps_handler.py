"""
GPS Handler for StraightBar.
Reads NMEA data directly from a serial GPS receiver (e.g. MTK3339 / PA1616S)
and delivers fixes to the guidance core as a cancellable feed.
"""

import errno
import logging
import time
from typing import Callable, Optional

import serial

from config import (
    GPS_BAUD_RATE,
    GPS_MAX_CONSECUTIVE_ERRORS,
    GPS_SERIAL_PORT,
    GPS_SERIAL_TIMEOUT_S,
)
from guidance.data.models import PositionErrorCode, PositionSample
from hardware.nmea import NMEAParser, pmtk_command
from utils.hardware_base import FeedSubscription, ThreadedPositionSource

logger = logging.getLogger('straightbar.gps')

# MTK3339 PMTK commands for high accuracy mode
MTK_ENABLE_SBAS = pmtk_command("PMTK313,1")  # Search for SBAS satellites
MTK_DGPS_SBAS = pmtk_command("PMTK301,2")  # Use SBAS as DGPS correction source


class GPSHandler(ThreadedPositionSource):
    """
    Serial NMEA position source.

    Thread Model
    ------------
    Each subscription gets its own worker thread that:
    1. Opens the serial port
    2. Optionally enables SBAS/DGPS (high accuracy)
    3. Delivers a cached fix if it is younger than maximum_age_s
    4. Reads NMEA, publishing a sample after every valid RMC sentence

    Error Mapping
    -------------
    - Port open refused (EACCES/EPERM) -> PERMISSION_DENIED
    - Port missing or other open failure -> POSITION_UNAVAILABLE
    - GPS_MAX_CONSECUTIVE_ERRORS read errors in a row -> POSITION_UNAVAILABLE
    - No valid fix for timeout_s -> TIMEOUT (reported once per silence)

    The worker never reconnects on its own; the stream controller's backoff
    restart reopens the port.
    """

    def __init__(
        self,
        port: str = GPS_SERIAL_PORT,
        baud_rate: int = GPS_BAUD_RATE,
        serial_timeout: float = GPS_SERIAL_TIMEOUT_S,
        clock: Optional[Callable[[], float]] = None,
    ):
        super().__init__()
        self.port = port
        self.baud_rate = baud_rate
        self.serial_timeout = serial_timeout
        self.clock = clock or time.monotonic
        self.max_consecutive_errors = GPS_MAX_CONSECUTIVE_ERRORS

        # Last fix from any subscription, for maximum_age_s
        self._cached_sample: Optional[PositionSample] = None

    def _open_port(self):
        return serial.Serial(port=self.port, baudrate=self.baud_rate, timeout=self.serial_timeout)

    def _worker_loop(self, subscription: FeedSubscription):
        try:
            serial_port = self._open_port()
        except serial.SerialException as e:
            code = classify_open_error(e)
            logger.warning("GPS: Failed to open %s: %s", self.port, e)
            subscription.deliver_error(code, f"could not open {self.port}: {e}")
            return

        logger.info("GPS: Connected to %s at %s baud", self.port, self.baud_rate)
        try:
            self._read_loop(serial_port, subscription)
        finally:
            try:
                serial_port.close()
            except serial.SerialException as e:
                logger.debug("GPS: close failed: %s", e)

    def _read_loop(self, serial_port, subscription: FeedSubscription):
        options = subscription.options
        if options.high_accuracy:
            self._enable_high_accuracy(serial_port)

        cached = self._cached_sample
        if cached is not None and self.clock() - cached.timestamp <= options.maximum_age_s:
            subscription.deliver_sample(cached)

        parser = NMEAParser()
        buffer = ""
        last_fix = self.clock()
        timeout_reported = False
        consecutive_errors = 0

        while not subscription.cancelled:
            try:
                data = serial_port.read(serial_port.in_waiting or 1)
                consecutive_errors = 0
            except serial.SerialException as e:
                consecutive_errors += 1
                if consecutive_errors == 3:
                    logger.warning("GPS: Serial error: %s", e)
                if consecutive_errors >= self.max_consecutive_errors:
                    subscription.deliver_error(
                        PositionErrorCode.POSITION_UNAVAILABLE, f"serial read failed: {e}"
                    )
                    return
                subscription.wait(0.1)
                continue

            if data:
                buffer += data.decode('ascii', errors='ignore')
                # Process complete sentences
                while '\n' in buffer:
                    line, buffer = buffer.split('\n', 1)
                    rmc = parser.feed_line(line)
                    if rmc is None:
                        continue
                    if not rmc.valid:
                        logger.debug("GPS: RMC without fix")
                        continue
                    now = self.clock()
                    sample = parser.to_sample(rmc, now)
                    self._cached_sample = sample
                    subscription.deliver_sample(sample)
                    last_fix = now
                    timeout_reported = False

            silence = self.clock() - last_fix
            if not timeout_reported and silence > options.timeout_s:
                subscription.deliver_error(PositionErrorCode.TIMEOUT, f"no fix for {silence:.0f}s")
                timeout_reported = True

    def _enable_high_accuracy(self, serial_port):
        try:
            serial_port.write(MTK_ENABLE_SBAS)
            serial_port.write(MTK_DGPS_SBAS)
        except serial.SerialException as e:
            logger.warning("GPS: Could not enable SBAS: %s", e)


def classify_open_error(exc: Exception) -> PositionErrorCode:
    """Map a serial open failure onto the feed error taxonomy."""
    code = getattr(exc, 'errno', None)
    if code is None and exc.args and isinstance(exc.args[0], int):
        code = exc.args[0]
    if code in (errno.EACCES, errno.EPERM):
        return PositionErrorCode.PERMISSION_DENIED
    return PositionErrorCode.POSITION_UNAVAILABLE
