"""
NMEA log replay source.

Plays back a recorded NMEA file as if it came from a receiver, one RMC fix
per 1/rate_hz seconds. When the log runs out the source goes silent and
reports TIMEOUT after timeout_s, so the controller's restart path replays it
from the top.
"""

import logging
import time
from typing import Callable, Optional

from config import REPLAY_RATE_HZ
from guidance.data.models import PositionErrorCode
from hardware.nmea import NMEAParser
from utils.hardware_base import FeedSubscription, ThreadedPositionSource

logger = logging.getLogger('straightbar.replay')


class NMEAReplaySource(ThreadedPositionSource):

    def __init__(
        self,
        path: str,
        rate_hz: float = REPLAY_RATE_HZ,
        loop: bool = False,
        clock: Optional[Callable[[], float]] = None,
    ):
        super().__init__()
        if rate_hz <= 0:
            raise ValueError(f"replay rate must be positive, got {rate_hz}")
        self.path = path
        self.rate_hz = rate_hz
        self.loop = loop
        self.clock = clock or time.monotonic

    def _worker_loop(self, subscription: FeedSubscription):
        try:
            with open(self.path, 'r', encoding='ascii', errors='ignore') as f:
                lines = f.read().splitlines()
        except PermissionError as e:
            subscription.deliver_error(PositionErrorCode.PERMISSION_DENIED, str(e))
            return
        except OSError as e:
            logger.warning("Replay: cannot read %s: %s", self.path, e)
            subscription.deliver_error(PositionErrorCode.POSITION_UNAVAILABLE, str(e))
            return

        interval = 1.0 / self.rate_hz
        parser = NMEAParser()
        played = 0
        logger.info("Replay: %s (%d lines) at %.1f Hz", self.path, len(lines), self.rate_hz)

        while True:
            for line in lines:
                rmc = parser.feed_line(line)
                if rmc is None or not rmc.valid:
                    continue
                subscription.deliver_sample(parser.to_sample(rmc, self.clock()))
                played += 1
                if subscription.wait(interval):
                    return
            if not self.loop or played == 0:
                break

        logger.info("Replay: end of log after %d fixes", played)
        if not subscription.wait(subscription.options.timeout_s):
            subscription.deliver_error(PositionErrorCode.TIMEOUT, "end of replay log")
