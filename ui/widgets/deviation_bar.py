"""
Light-bar widget for lateral deviation.
A cursor slides left/right of a centre line; the bar edges are +/- the
visual range in metres.
"""

from typing import Optional

import pygame

from config import (
    BAR_BACKGROUND_COLOUR,
    BAR_BORDER_COLOUR,
    CENTRE_LINE_COLOUR,
    CURSOR_COLOUR,
    TEXT_COLOUR,
)
from guidance.data.models import GuidanceSnapshot, StreamState


def cursor_x(deviation_m: float, visual_range_m: float, width: int) -> float:
    """
    Map a deviation onto a horizontal pixel offset inside the bar.

    0 m sits at the centre, +/- visual_range_m at the edges; anything
    further out is pinned to the edge.
    """
    offset = (deviation_m / visual_range_m) * (width / 2)
    return max(0.0, min(float(width), width / 2 + offset))


def direction_label(deviation_m: float) -> str:
    """Arrow text for the smoothed deviation (0 counts as right)."""
    return "RIGHT →" if deviation_m >= 0 else "← LEFT"


def _fmt(value: Optional[float], fmt: str) -> str:
    return "--" if value is None else format(value, fmt)


def format_status(snapshot: GuidanceSnapshot) -> str:
    """One-line link status with "--" for anything not yet known."""
    link = "active" if snapshot.link_active else "stopped"
    if snapshot.stream_state == StreamState.RESTARTING:
        link = "restarting"
    return (
        f"GPS: {link} / acc: {_fmt(snapshot.accuracy, '.0f')}m"
        f" / speed: {snapshot.speed_kmh:.1f}km/h"
        f" / heading: {_fmt(snapshot.heading, 'd')}°"
        f" / sats: {_fmt(snapshot.satellites, 'd')}"
        f" / rate: {_fmt(snapshot.update_rate_hz, '.1f')}Hz"
    )


def format_line_info(snapshot: GuidanceSnapshot) -> str:
    a, b = snapshot.point_a, snapshot.point_b
    a_text = f"{a.latitude:.6f}, {a.longitude:.6f}" if a else "not set"
    b_text = f"{b.latitude:.6f}, {b.longitude:.6f}" if b else "not set"
    text = f"A: {a_text} / B: {b_text}"
    if snapshot.line_kind == "degenerate":
        text += " (A = B)"
    elif snapshot.line_length_m is not None:
        text += f" ({snapshot.line_length_m:.1f}m)"
    return text


class DeviationBar:
    """Horizontal light-bar with a deviation cursor."""

    def __init__(self, x, y, width, height, font=None):
        """
        Args:
            x: X position (left edge)
            y: Y position (top edge)
            width: Total width of bar
            height: Height of bar
            font: Pygame font for the range labels (optional)
        """
        self.x = x
        self.y = y
        self.width = width
        self.height = height
        self.font = font

        self.value = 0.0
        self.visual_range = 15.0
        self.cursor_width = 8

    def set_value(self, value, visual_range):
        self.value = value
        self.visual_range = visual_range

    def draw(self, surface):
        bg_rect = pygame.Rect(self.x, self.y, self.width, self.height)
        pygame.draw.rect(surface, BAR_BACKGROUND_COLOUR, bg_rect)

        # Centre line marker
        centre_x = self.x + self.width // 2
        pygame.draw.line(
            surface,
            CENTRE_LINE_COLOUR,
            (centre_x, self.y),
            (centre_x, self.y + self.height),
            3
        )

        # Cursor
        cx = self.x + int(cursor_x(self.value, self.visual_range, self.width))
        cursor_rect = pygame.Rect(cx - self.cursor_width // 2, self.y, self.cursor_width, self.height)
        pygame.draw.rect(surface, CURSOR_COLOUR, cursor_rect)

        # Border
        pygame.draw.rect(surface, BAR_BORDER_COLOUR, bg_rect, 2)

        # Range labels under each end
        if self.font:
            for text, anchor in (
                (f"-{self.visual_range:.0f}m", "topleft"),
                (f"+{self.visual_range:.0f}m", "topright"),
            ):
                label = self.font.render(text, True, TEXT_COLOUR)
                pos = (self.x, self.y + self.height + 4) if anchor == "topleft" \
                    else (self.x + self.width, self.y + self.height + 4)
                surface.blit(label, label.get_rect(**{anchor: pos}))
