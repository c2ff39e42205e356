"""
Position stream controller - lifecycle of the continuous position feed.

States:
    STOPPED     no feed; only start() leaves this state
    ACTIVE      feed requested, samples accepted
    RESTARTING  a transient error scheduled a retry; the old feed stays
                subscribed until the retry timer fires

Recovery:
    - POSITION_UNAVAILABLE / TIMEOUT schedule one retry with exponential
      backoff (3 s, x1.5, max 30 s). Only a user stop/start resets the delay.
    - PERMISSION_DENIED releases the feed and stops. No retry: it cannot
      succeed without the user changing something.
    - A watchdog polled every 5 s restarts a feed that has gone silent for
      more than 15 s without reporting any error.

Every feed request gets a new subscription id. Events still queued from an
older subscription are discarded when drained, so a stop or restart can never
be undone by a late callback.
"""

import itertools
import logging
import math
import queue
from typing import Callable, Optional

from config import (
    FEED_QUEUE_DEPTH,
    RETRY_BASE_DELAY_S,
    RETRY_MAX_DELAY_S,
    RETRY_MULTIPLIER,
    UPDATE_RATE_MAX_INTERVAL_S,
    WATCH_HIGH_ACCURACY,
    WATCH_MAXIMUM_AGE_S,
    WATCH_TIMEOUT_S,
    WATCHDOG_POLL_INTERVAL_S,
    WATCHDOG_STALE_AFTER_S,
)
from guidance.data.models import (
    FeedEvent,
    PositionErrorCode,
    PositionFeedError,
    PositionSample,
    StreamState,
    WatchOptions,
    finite_or_none,
)
from utils.conversions import mps_to_kmh
from utils.hardware_base import ExponentialBackoff, FeedSubscription, PositionSource
from utils.timers import TimerHandle, TimerScheduler

logger = logging.getLogger('straightbar.stream')


class PositionStreamController:
    """
    Owns the feed subscription and all stream state.

    Nothing here is thread-safe and nothing needs to be: sources only put
    events into the inbox, and pump() plus the timer callbacks run on the
    main loop thread.

    Usage:
        controller = PositionStreamController(source, scheduler, on_sample=handle)
        controller.start()
        while running:
            controller.pump()
            scheduler.run_due()
    """

    def __init__(
        self,
        source: PositionSource,
        scheduler: TimerScheduler,
        on_sample: Optional[Callable[[PositionSample], None]] = None,
        on_error: Optional[Callable[[PositionFeedError], None]] = None,
        options: Optional[WatchOptions] = None,
        queue_depth: int = FEED_QUEUE_DEPTH,
    ):
        self.source = source
        self.scheduler = scheduler
        self.on_sample = on_sample
        self.on_error = on_error
        self.options = options or WatchOptions(
            high_accuracy=WATCH_HIGH_ACCURACY,
            maximum_age_s=WATCH_MAXIMUM_AGE_S,
            timeout_s=WATCH_TIMEOUT_S,
        )
        self.inbox: queue.Queue = queue.Queue(maxsize=queue_depth)
        self.backoff = ExponentialBackoff(
            initial_delay=RETRY_BASE_DELAY_S,
            multiplier=RETRY_MULTIPLIER,
            max_delay=RETRY_MAX_DELAY_S,
        )

        self.state = StreamState.STOPPED
        self._subscription: Optional[FeedSubscription] = None
        self._ids = itertools.count(1)
        self._retry_timer: Optional[TimerHandle] = None
        self._watchdog_timer: Optional[TimerHandle] = None

        # Last accepted sample and values derived from it
        self.last_sample: Optional[PositionSample] = None
        self.last_sample_time: Optional[float] = None
        self.sample_interval: Optional[float] = None  # gap between the last two samples
        self.speed_kmh = 0.0
        self.heading: Optional[int] = None
        self.satellites: Optional[int] = None
        self.accuracy: Optional[float] = None

        # Time of last sample or feed request, for the watchdog
        self._last_activity = 0.0

        self.last_error: Optional[PositionFeedError] = None

        # Counters
        self.restart_count = 0
        self.malformed_count = 0
        self.stale_events_dropped = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        """True while a feed is subscribed (ACTIVE or RESTARTING)."""
        return self.state != StreamState.STOPPED

    @property
    def subscription_id(self) -> Optional[int]:
        return self._subscription.subscription_id if self._subscription else None

    @property
    def retry_delay(self) -> float:
        """Delay the next transient error will wait before restarting."""
        return self.backoff.next_delay

    @property
    def retry_pending(self) -> bool:
        return self._retry_timer is not None and self._retry_timer.pending

    def start(self):
        """User start. Resets the backoff delay to its base value."""
        if self.state != StreamState.STOPPED:
            return

        self.backoff.reset()
        self.last_error = None
        self.state = StreamState.ACTIVE
        logger.info("GPS: starting feed")
        self._schedule_watchdog()
        self._request_feed()

    def stop(self):
        """User stop. Releases the feed and cancels every pending timer."""
        if self.state == StreamState.STOPPED:
            return

        self._cancel_retry()
        self._cancel_watchdog()
        self._release_feed()
        self.state = StreamState.STOPPED
        logger.info("GPS: feed stopped")

    def pump(self) -> int:
        """
        Drain the inbox and handle every event in arrival order.

        Returns:
            Number of events taken from the inbox (including discarded ones)
        """
        count = 0
        while True:
            try:
                event = self.inbox.get_nowait()
            except queue.Empty:
                break
            self.handle_event(event)
            count += 1
        return count

    def handle_event(self, event: FeedEvent):
        """Dispatch one event, ignoring anything from a released subscription."""
        current = self._subscription
        if current is None or event.subscription_id != current.subscription_id:
            self.stale_events_dropped += 1
            logger.debug("GPS: dropped event from stale feed %d", event.subscription_id)
            return

        if event.error is not None:
            self._handle_error(event.error)
        elif event.sample is not None:
            self._handle_sample(event.sample)

    def update_rate(self, now: Optional[float] = None) -> Optional[float]:
        """
        Approximate update rate in Hz from the gap between the last two samples.

        A feed that has since gone quiet reads from the time since the last
        sample instead, so it decays rather than freezing at the old rate.
        The interval is capped at UPDATE_RATE_MAX_INTERVAL_S (0.2 Hz floor).
        """
        if self.sample_interval is None:
            return None
        if now is None:
            now = self.scheduler.now()
        interval = max(self.sample_interval, now - self.last_sample_time)
        if interval <= 0:
            return None
        return 1.0 / min(interval, UPDATE_RATE_MAX_INTERVAL_S)

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def _handle_sample(self, sample: PositionSample):
        if not sample.has_position():
            self.malformed_count += 1
            logger.debug("GPS: sample without a usable position ignored (%d so far)", self.malformed_count)
            return

        now = self.scheduler.now()
        if self.last_sample_time is not None:
            self.sample_interval = now - self.last_sample_time
        self.last_sample = sample
        self.last_sample_time = now
        self._last_activity = now

        # Missing speed/heading/satellites keep the previous value
        speed = finite_or_none(sample.speed)
        if speed is not None:
            self.speed_kmh = mps_to_kmh(speed)
        heading = finite_or_none(sample.heading)
        if heading is not None:
            # Halves round up (2.5 -> 3), not to even
            self.heading = int(math.floor(heading + 0.5))
        if sample.satellites is not None:
            self.satellites = sample.satellites
        self.accuracy = finite_or_none(sample.accuracy)

        if self.on_sample:
            self.on_sample(sample)

    def _handle_error(self, error: PositionFeedError):
        self.last_error = error
        if self.on_error:
            self.on_error(error)

        if error.code == PositionErrorCode.PERMISSION_DENIED:
            logger.error("GPS: permission denied (%s), feed stopped until restarted by the user", error.message)
            self._cancel_retry()
            self._cancel_watchdog()
            self._release_feed()
            self.state = StreamState.STOPPED
        elif error.code.is_transient:
            self._schedule_retry(error)
        else:
            logger.warning("GPS: feed error %s: %s", error.code.name, error.message)

    # ------------------------------------------------------------------
    # Restart machinery
    # ------------------------------------------------------------------

    def _schedule_retry(self, error: PositionFeedError):
        if self.retry_pending:
            logger.debug("GPS: %s while retry already pending", error.code.name)
            return

        delay = self.backoff.record_failure()
        self.state = StreamState.RESTARTING
        self._retry_timer = self.scheduler.call_later(delay, self._on_retry_timer, name="gps-retry")
        logger.warning("GPS: %s (%s), restarting feed in %.1fs", error.code.name, error.message, delay)

    def _on_retry_timer(self):
        self._retry_timer = None
        if self.state == StreamState.STOPPED:
            return
        self._restart("retry")

    def _schedule_watchdog(self):
        self._watchdog_timer = self.scheduler.call_later(
            WATCHDOG_POLL_INTERVAL_S, self._on_watchdog, name="gps-watchdog"
        )

    def _on_watchdog(self):
        self._watchdog_timer = None
        if self.state == StreamState.STOPPED:
            return

        age = self.scheduler.now() - self._last_activity
        if self.state == StreamState.ACTIVE and age > WATCHDOG_STALE_AFTER_S:
            logger.warning("GPS: no update for %.1fs, restarting feed", age)
            self._restart("watchdog")

        if self.state != StreamState.STOPPED:
            self._schedule_watchdog()

    def _restart(self, reason: str):
        self.restart_count += 1
        logger.info("GPS: restarting feed (%s, #%d)", reason, self.restart_count)
        self._release_feed()
        self.state = StreamState.ACTIVE
        self._request_feed()

    def _request_feed(self):
        subscription = FeedSubscription(next(self._ids), self.inbox, self.options)
        self._subscription = subscription
        self._last_activity = self.scheduler.now()
        try:
            self.source.start_updates(subscription)
        except PositionFeedError as e:
            # Synchronous failure goes through the same path as a queued one
            self._handle_error(e)

    def _release_feed(self):
        subscription, self._subscription = self._subscription, None
        if subscription is None:
            return
        subscription.cancel()
        self.source.stop_updates(subscription)

    def _cancel_retry(self):
        if self._retry_timer:
            self._retry_timer.cancel()
            self._retry_timer = None

    def _cancel_watchdog(self):
        if self._watchdog_timer:
            self._watchdog_timer.cancel()
            self._watchdog_timer = None
