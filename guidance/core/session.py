"""
Guidance session - the single owned aggregate for one run.

Holds the AB line, the smoother, the stream controller and the display
scale, and is the only thing the presentation layer talks to. Several
sessions can exist side by side (tests do this); there is no module state.
"""

import logging
from typing import Optional

from config import (
    POINT_CAPTURE_MAX_AGE_S,
    SMOOTHING_FACTOR_DEFAULT,
    VISUAL_RANGE_DEFAULT_M,
)
from guidance.core.reference_line import ReferenceLineModel
from guidance.core.smoother import DeviationSmoother
from guidance.core.stream_controller import PositionStreamController
from guidance.data.models import (
    Deviation,
    GeoPoint,
    GuidanceSnapshot,
    LineDefined,
    PositionErrorCode,
    PositionFeedError,
    PositionSample,
)
from utils.hardware_base import PositionSource
from utils.timers import TimerScheduler

logger = logging.getLogger('straightbar.session')


class GuidanceSession:
    """
    Usage:
        session = GuidanceSession(GPSHandler())
        session.start()
        session.mark_point_a()      # walk to A
        session.mark_point_b()      # walk to B
        while running:
            session.pump()
            draw(session.snapshot())
    """

    def __init__(
        self,
        source: PositionSource,
        scheduler: Optional[TimerScheduler] = None,
        smoothing_factor: float = SMOOTHING_FACTOR_DEFAULT,
        visual_range_m: float = VISUAL_RANGE_DEFAULT_M,
    ):
        self.scheduler = scheduler or TimerScheduler()
        self.lines = ReferenceLineModel()
        self.smoother = DeviationSmoother(smoothing_factor)
        self.controller = PositionStreamController(
            source,
            self.scheduler,
            on_sample=self._on_sample,
            on_error=self._on_error,
        )
        self.visual_range_m = self._validate_range(visual_range_m)

        self.last_deviation = Deviation()
        self.debug_text = ""

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------

    def set_point_a(self, point: Optional[GeoPoint]):
        self.lines.set_point_a(point)

    def set_point_b(self, point: Optional[GeoPoint]):
        self.lines.set_point_b(point)

    def mark_point_a(self) -> GeoPoint:
        """Set A from the last accepted fix."""
        point = self._current_fix()
        self.set_point_a(point)
        return point

    def mark_point_b(self) -> GeoPoint:
        """Set B from the last accepted fix."""
        point = self._current_fix()
        self.set_point_b(point)
        return point

    def clear_points(self):
        """Forget A and B and zero the smoothed deviation."""
        self.lines.clear()
        self.smoother.reset()
        self.last_deviation = Deviation()
        logger.info("AB line cleared")

    def set_smoothing_factor(self, factor: float):
        """Takes effect on the next sample; the accumulated value is kept."""
        self.smoother.factor = factor
        logger.debug("Smoothing factor set to %.2f", self.smoother.factor)

    def set_visual_scale(self, range_m: float):
        self.visual_range_m = self._validate_range(range_m)
        logger.debug("Visual range set to +/-%.1fm", self.visual_range_m)

    def start(self):
        self.controller.start()

    def stop(self):
        self.controller.stop()

    def toggle_stream(self):
        if self.controller.is_active:
            self.stop()
        else:
            self.start()

    def pump(self):
        """Process queued feed events, then any timers that are due."""
        self.controller.pump()
        self.scheduler.run_due()

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    def snapshot(self) -> GuidanceSnapshot:
        controller = self.controller
        smoothed = self.smoother.value
        line = self.lines.line
        error = controller.last_error
        return GuidanceSnapshot(
            smoothed_deviation=smoothed,
            side=(smoothed > 0) - (smoothed < 0),
            raw_deviation=self.last_deviation.value,
            accuracy=controller.accuracy,
            link_active=controller.is_active,
            stream_state=controller.state,
            speed_kmh=controller.speed_kmh,
            heading=controller.heading,
            satellites=controller.satellites,
            update_rate_hz=controller.update_rate(),
            last_error_code=error.code if error else None,
            last_error_message=error.message if error else "",
            point_a=self.lines.point_a,
            point_b=self.lines.point_b,
            line_kind=self.lines.line_kind,
            line_length_m=line.length_m if isinstance(line, LineDefined) else None,
            smoothing_factor=self.smoother.factor,
            visual_range_m=self.visual_range_m,
            debug_text=self.debug_text,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _on_sample(self, sample: PositionSample):
        if self.lines.line is None:
            return

        dev = self.lines.deviation(sample.to_geo_point())
        smoothed = self.smoother.update(dev.value)
        self.last_deviation = dev
        self.debug_text = f"raw={dev.value:.2f}, smooth={smoothed:.2f}, acc={self.controller.accuracy or 0:.1f}"

    def _on_error(self, error: PositionFeedError):
        self.debug_text = f"error code={error.code.name} message={error.message}"

    def _current_fix(self) -> GeoPoint:
        controller = self.controller
        if controller.last_sample is None:
            raise PositionFeedError(PositionErrorCode.POSITION_UNAVAILABLE, "No fix yet")
        age = self.scheduler.now() - controller.last_sample_time
        if age > POINT_CAPTURE_MAX_AGE_S:
            raise PositionFeedError(
                PositionErrorCode.POSITION_UNAVAILABLE, f"Last fix is {age:.0f}s old"
            )
        return controller.last_sample.to_geo_point()

    @staticmethod
    def _validate_range(range_m: float) -> float:
        range_m = float(range_m)
        if not range_m > 0:
            raise ValueError(f"visual range must be positive, got {range_m}")
        return range_m
