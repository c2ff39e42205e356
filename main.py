#!/usr/bin/env python3
"""
StraightBar - GPS light-bar for driving or walking a straight AB line
Shows the lateral offset from a reference line set at points A and B.

Keys:
    A / B       mark point A / B at the current position
    C           clear A and B
    G           start / stop GPS
    UP / DOWN   visual range +/- 1 m
    LEFT/RIGHT  smoothing -/+ 0.05
    ESC         quit
"""

import argparse
import logging
import sys

import pygame

from config import (
    APP_VERSION,
    BACKGROUND_COLOUR,
    DIM_TEXT_COLOUR,
    DISPLAY_HEIGHT,
    DISPLAY_WIDTH,
    ERROR_TEXT_COLOUR,
    FPS_TARGET,
    GPS_BAUD_RATE,
    GPS_SERIAL_PORT,
    REPLAY_RATE_HZ,
    SMOOTHING_FACTOR_DEFAULT,
    SMOOTHING_FACTOR_MAX,
    SMOOTHING_FACTOR_MIN,
    SMOOTHING_FACTOR_STEP,
    TEXT_COLOUR,
    VISUAL_RANGE_DEFAULT_M,
    VISUAL_RANGE_MAX_M,
    VISUAL_RANGE_MIN_M,
    VISUAL_RANGE_STEP_M,
)
from guidance.core.session import GuidanceSession
from guidance.data.models import PositionFeedError
from hardware.gps_handler import GPSHandler
from hardware.replay_source import NMEAReplaySource
from ui.widgets.deviation_bar import (
    DeviationBar,
    direction_label,
    format_line_info,
    format_status,
)

logger = logging.getLogger('straightbar')


class StraightBarApp:
    def __init__(self, args):
        self.args = args
        if args.replay:
            source = NMEAReplaySource(args.replay, rate_hz=args.replay_rate, loop=args.loop)
        else:
            source = GPSHandler(port=args.serial, baud_rate=args.baud)

        self.session = GuidanceSession(
            source,
            smoothing_factor=args.smoothing,
            visual_range_m=args.visual_range,
        )
        self.running = False
        self.notice = ""

        self._init_display()

    def _init_display(self):
        pygame.init()
        flags = 0 if self.args.windowed else pygame.FULLSCREEN
        self.screen = pygame.display.set_mode((DISPLAY_WIDTH, DISPLAY_HEIGHT), flags)
        pygame.display.set_caption(f"StraightBar {APP_VERSION}")
        self.clock = pygame.time.Clock()

        self.font_large = pygame.font.Font(None, 160)
        self.font_medium = pygame.font.Font(None, 56)
        self.font_small = pygame.font.Font(None, 26)

        margin = 40
        self.bar = DeviationBar(margin, 250, DISPLAY_WIDTH - 2 * margin, 60, self.font_small)

    def run(self):
        """Run the main application loop."""
        self.running = True
        self.session.start()

        try:
            while self.running:
                self._handle_events()
                self.session.pump()
                self._render()
                self.clock.tick(FPS_TARGET)
        except KeyboardInterrupt:
            logger.info("Exiting gracefully...")
        finally:
            self._cleanup()

    def _handle_events(self):
        """Handle pygame events."""
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                self.running = False
            elif event.type == pygame.KEYDOWN:
                self._handle_key(event.key)

    def _handle_key(self, key):
        session = self.session
        snapshot = session.snapshot()

        if key == pygame.K_ESCAPE:
            self.running = False
        elif key in (pygame.K_a, pygame.K_b):
            try:
                if key == pygame.K_a:
                    point = session.mark_point_a()
                    label = "A"
                else:
                    point = session.mark_point_b()
                    label = "B"
                self.notice = f"{label} set: {point.latitude:.6f}, {point.longitude:.6f}"
            except PositionFeedError as e:
                self.notice = f"Cannot mark point: {e.message}"
                logger.warning("Mark point failed: %s", e.message)
        elif key == pygame.K_c:
            session.clear_points()
            self.notice = "AB line cleared"
        elif key == pygame.K_g:
            session.toggle_stream()
        elif key in (pygame.K_UP, pygame.K_DOWN):
            step = VISUAL_RANGE_STEP_M if key == pygame.K_UP else -VISUAL_RANGE_STEP_M
            session.set_visual_scale(
                max(VISUAL_RANGE_MIN_M, min(VISUAL_RANGE_MAX_M, snapshot.visual_range_m + step))
            )
        elif key in (pygame.K_LEFT, pygame.K_RIGHT):
            step = SMOOTHING_FACTOR_STEP if key == pygame.K_RIGHT else -SMOOTHING_FACTOR_STEP
            factor = round(snapshot.smoothing_factor + step, 2)
            session.set_smoothing_factor(max(SMOOTHING_FACTOR_MIN, min(SMOOTHING_FACTOR_MAX, factor)))

    def _render(self):
        snapshot = self.session.snapshot()
        dev = snapshot.smoothed_deviation
        self.screen.fill(BACKGROUND_COLOUR)

        # Big absolute deviation and arrow
        value = self.font_large.render(f"{abs(dev):.1f}", True, TEXT_COLOUR)
        self.screen.blit(value, value.get_rect(center=(DISPLAY_WIDTH // 2, 90)))
        if snapshot.line_kind == "defined":
            arrow_text = direction_label(dev)
        else:
            arrow_text = "set A and B"
        arrow = self.font_medium.render(arrow_text, True, TEXT_COLOUR)
        self.screen.blit(arrow, arrow.get_rect(center=(DISPLAY_WIDTH // 2, 190)))

        self.bar.set_value(dev, snapshot.visual_range_m)
        self.bar.draw(self.screen)

        lines = [
            (f"offset {dev:+.2f} m / range ±{snapshot.visual_range_m:.0f} m"
             f" / smoothing {snapshot.smoothing_factor:.2f}", TEXT_COLOUR),
            (format_line_info(snapshot), DIM_TEXT_COLOUR),
            (format_status(snapshot), TEXT_COLOUR),
        ]
        if snapshot.last_error_code is not None:
            lines.append(
                (f"GPS error: {snapshot.last_error_message} ({snapshot.last_error_code.name})",
                 ERROR_TEXT_COLOUR)
            )
        lines.append((snapshot.debug_text, DIM_TEXT_COLOUR))
        if self.notice:
            lines.append((self.notice, DIM_TEXT_COLOUR))

        y = 345
        for text, colour in lines:
            surface = self.font_small.render(text, True, colour)
            self.screen.blit(surface, (40, y))
            y += 22

        pygame.display.flip()

    def _cleanup(self):
        self.session.stop()
        pygame.quit()
        logger.info("Shutdown complete")


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="StraightBar - lateral offset light-bar for straight AB lines"
    )
    parser.add_argument(
        "--windowed",
        action="store_true",
        help="Run in windowed mode instead of fullscreen",
    )
    parser.add_argument("--serial", default=GPS_SERIAL_PORT, help="GPS serial port")
    parser.add_argument("--baud", type=int, default=GPS_BAUD_RATE, help="GPS baud rate")
    parser.add_argument("--replay", metavar="FILE", help="Replay an NMEA log instead of reading the GPS")
    parser.add_argument("--replay-rate", type=float, default=REPLAY_RATE_HZ,
                        help="Replay fixes per second")
    parser.add_argument("--loop", action="store_true", help="Loop the replay log")
    parser.add_argument("--smoothing", type=float, default=SMOOTHING_FACTOR_DEFAULT,
                        help="EMA smoothing factor (0-0.95)")
    parser.add_argument("--visual-range", type=float, default=VISUAL_RANGE_DEFAULT_M,
                        help="Light-bar half width in metres")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        app = StraightBarApp(args)
    except ValueError as e:
        logger.error("Invalid setting: %s", e)
        return 2
    app.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
