"""
Base classes for positioning sources with bounded queue delivery.

Sources read hardware or files on a worker thread and hand sample/error
events to the core through a FeedSubscription. The core drains the inbox on
the main thread, so no lock is ever taken in the guidance path.
"""

import logging
import queue
import threading
from typing import Optional

from guidance.data.models import (
    FeedEvent,
    PositionErrorCode,
    PositionFeedError,
    PositionSample,
    WatchOptions,
)

logger = logging.getLogger('straightbar.feed')


class ExponentialBackoff:
    """
    Growing delay for repeated failures.

    The first failure yields initial_delay; each later one multiplies the
    previous delay, capped at max_delay.
    """

    def __init__(self, initial_delay: float = 1.0, multiplier: float = 2.0, max_delay: float = 64.0):
        self.initial_delay = initial_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self._consecutive_failures = 0
        self._current_delay = 0.0

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def current_delay(self) -> float:
        return self._current_delay

    @property
    def next_delay(self) -> float:
        """Delay the next record_failure() would return."""
        if self._consecutive_failures == 0:
            return min(self.initial_delay, self.max_delay)
        return min(self._current_delay * self.multiplier, self.max_delay)

    def record_failure(self) -> float:
        """Record a failure and return the delay to wait before retrying."""
        self._current_delay = self.next_delay
        self._consecutive_failures += 1
        return self._current_delay

    def reset(self):
        self._consecutive_failures = 0
        self._current_delay = 0.0


class FeedSubscription:
    """
    One continuous-feed request, identified by a unique id.

    Events go into a bounded inbox shared with the consumer. When the inbox
    is full the oldest queued sample is dropped; error events are only
    dropped when nothing but errors is queued. After cancel() nothing more is
    delivered; events already queued still carry the old id so the consumer
    can discard them.
    """

    def __init__(self, subscription_id: int, inbox: queue.Queue, options: Optional[WatchOptions] = None):
        self.subscription_id = subscription_id
        self.inbox = inbox
        self.options = options or WatchOptions()
        self._cancelled = threading.Event()

        self.delivered = 0
        self.dropped = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self):
        self._cancelled.set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to timeout seconds. Returns True early if cancelled."""
        return self._cancelled.wait(timeout)

    def deliver_sample(self, sample: PositionSample) -> bool:
        return self._put(FeedEvent(self.subscription_id, sample=sample))

    def deliver_error(self, code: PositionErrorCode, message: str = "") -> bool:
        return self._put(FeedEvent(self.subscription_id, error=PositionFeedError(code, message)))

    def _put(self, event: FeedEvent) -> bool:
        if self.cancelled:
            return False

        # Non-blocking put - make room by dropping a sample if inbox full
        try:
            self.inbox.put_nowait(event)
        except queue.Full:
            if self._make_room(event):
                try:
                    self.inbox.put_nowait(event)
                except queue.Full:
                    pass
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.warning("Feed %d: inbox full, %d events dropped", self.subscription_id, self.dropped)
        self.delivered += 1
        return True

    def _make_room(self, event: FeedEvent) -> bool:
        """
        Remove one queued event so that event fits.

        Returns:
            False if event itself should be dropped (a sample arriving while
            only errors are queued)
        """
        with self.inbox.mutex:
            pending = self.inbox.queue
            for i, queued in enumerate(pending):
                if queued.error is None:
                    del pending[i]
                    return True
            if event.error is None:
                return False
            if pending:
                pending.popleft()
            return True

    def __repr__(self):
        state = "cancelled" if self.cancelled else "live"
        return f"FeedSubscription({self.subscription_id}, {state})"


class PositionSource:
    """
    Interface for anything that can deliver a continuous position feed.

    start_updates() begins delivering into the subscription; stop_updates()
    releases it. Both are called from the main thread.
    """

    def start_updates(self, subscription: FeedSubscription):
        raise NotImplementedError

    def stop_updates(self, subscription: FeedSubscription):
        raise NotImplementedError


class ThreadedPositionSource(PositionSource):
    """
    Position source running one worker thread per subscription.

    Subclasses implement _worker_loop(subscription) and keep reading until
    subscription.cancelled is set.
    """

    join_timeout_s = 2.0

    def __init__(self):
        self._threads = {}

    def start_updates(self, subscription: FeedSubscription):
        thread = threading.Thread(
            target=self._run_worker,
            args=(subscription,),
            name=f"{self.__class__.__name__}-{subscription.subscription_id}",
            daemon=True,
        )
        self._threads[subscription.subscription_id] = thread
        thread.start()
        logger.debug("%s: feed %d started", self.__class__.__name__, subscription.subscription_id)

    def stop_updates(self, subscription: FeedSubscription):
        subscription.cancel()
        thread = self._threads.pop(subscription.subscription_id, None)
        if thread and thread is not threading.current_thread():
            thread.join(timeout=self.join_timeout_s)
            if thread.is_alive():
                logger.warning("%s: feed %d worker did not exit in %.1fs",
                               self.__class__.__name__, subscription.subscription_id, self.join_timeout_s)
        logger.debug("%s: feed %d stopped", self.__class__.__name__, subscription.subscription_id)

    def _run_worker(self, subscription: FeedSubscription):
        try:
            self._worker_loop(subscription)
        except Exception as e:
            logger.exception("%s: worker crashed", self.__class__.__name__)
            subscription.deliver_error(PositionErrorCode.POSITION_UNAVAILABLE, str(e))

    def _worker_loop(self, subscription: FeedSubscription):
        """
        Worker thread loop - handles all I/O and parsing.
        Override this method in subclasses.
        """
        raise NotImplementedError("Subclasses must implement _worker_loop")
