"""
Reference line model - the AB line and signed lateral deviation from it.

Sign convention (fixed, the display arrow depends on it):
    value = dot(P, normal), normal = direction rotated 90 degrees CCW.
    For an A->B line heading east, points north of the line are positive.
"""

import logging
from typing import Optional

from guidance.data.models import (
    Deviation,
    GeoPoint,
    LineDefined,
    LineDegenerate,
    ReferenceLine,
)
from guidance.utils.geometry import (
    dot,
    haversine_distance,
    magnitude,
    normalize,
    project,
    rotate_ccw,
)

logger = logging.getLogger('straightbar.line')


def define_line(a: Optional[GeoPoint], b: Optional[GeoPoint]) -> Optional[ReferenceLine]:
    """
    Build the reference line from A to B.

    Returns:
        None if either endpoint is missing, LineDegenerate if B projects
        onto A, otherwise LineDefined.
    """
    if a is None or b is None:
        return None

    # A is the origin of the frame, so B's projection is the A->B vector
    pb = project(b, a)
    if magnitude(pb) == 0:
        return LineDegenerate(origin=a, target=b)

    direction = normalize(pb)
    return LineDefined(
        origin=a,
        target=b,
        direction=direction,
        normal=rotate_ccw(direction),
        length_m=haversine_distance(a.latitude, a.longitude, b.latitude, b.longitude),
    )


def deviation(point: GeoPoint, line: Optional[ReferenceLine]) -> Deviation:
    """
    Signed perpendicular distance from point to the line, in metres.

    Deviation(0, 0) for a missing or degenerate line means "no signal",
    not "on the line".
    """
    if not isinstance(line, LineDefined):
        return Deviation(0.0, 0)

    p = project(point, line.origin)
    value = dot(p, line.normal)
    side = (value > 0) - (value < 0)
    return Deviation(value, side)


class ReferenceLineModel:
    """Holds A and B and keeps the derived line in sync with them."""

    def __init__(self):
        self.point_a: Optional[GeoPoint] = None
        self.point_b: Optional[GeoPoint] = None
        self.line: Optional[ReferenceLine] = None

    def set_point_a(self, point: Optional[GeoPoint]):
        self.point_a = point
        self._recompute()

    def set_point_b(self, point: Optional[GeoPoint]):
        self.point_b = point
        self._recompute()

    def clear(self):
        self.point_a = None
        self.point_b = None
        self.line = None

    @property
    def line_kind(self) -> str:
        if isinstance(self.line, LineDefined):
            return "defined"
        if isinstance(self.line, LineDegenerate):
            return "degenerate"
        return "none"

    def deviation(self, point: GeoPoint) -> Deviation:
        return deviation(point, self.line)

    def _recompute(self):
        self.line = define_line(self.point_a, self.point_b)
        if isinstance(self.line, LineDegenerate):
            logger.warning(
                "AB line is degenerate (A == B at %.6f, %.6f); deviation stays 0 until B moves",
                self.point_a.latitude, self.point_a.longitude
            )
        elif isinstance(self.line, LineDefined):
            logger.info(
                "AB line set: A %.6f, %.6f / B %.6f, %.6f (%.1fm)",
                self.point_a.latitude, self.point_a.longitude,
                self.point_b.latitude, self.point_b.longitude,
                self.line.length_m
            )
