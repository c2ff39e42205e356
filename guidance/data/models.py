"""
Core data structures for the guidance system.

Unit Conventions
----------------
All measurements in this module use SI units unless otherwise noted:

- Time: seconds (float, time.monotonic() values)
- Distance: metres
- Speed: metres per second (m/s)
- Angles: degrees (0-360 for headings, 0=North, 90=East)
- Coordinates: decimal degrees (WGS84)

The display converts speed to km/h; everything else stays in these units.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


@dataclass(frozen=True)
class GeoPoint:
    """A captured geographic position. Immutable once captured."""
    latitude: float
    longitude: float


@dataclass(frozen=True)
class PlanarVector:
    """Local east/north offset in metres."""
    x: float
    y: float


@dataclass
class PositionSample:
    """
    Single fix delivered by a positioning source.

    Attributes:
        latitude: Latitude in decimal degrees.
        longitude: Longitude in decimal degrees.
        accuracy: Horizontal accuracy radius in metres, None if unknown.
        speed: Ground speed in m/s, None if the source did not report it.
        heading: Course over ground in degrees, None if not reported.
        satellites: Satellites used in the fix, None if not reported.
        timestamp: time.monotonic() when the fix was produced.
    """
    latitude: Optional[float]
    longitude: Optional[float]
    accuracy: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None
    satellites: Optional[int] = None
    timestamp: float = 0.0

    def has_position(self) -> bool:
        """True if both coordinates are present and finite."""
        return _finite(self.latitude) and _finite(self.longitude)

    def to_geo_point(self) -> GeoPoint:
        return GeoPoint(self.latitude, self.longitude)


def _finite(value) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value)


def finite_or_none(value) -> Optional[float]:
    """Return value as float if finite, else None (NaN and inf count as missing)."""
    return float(value) if _finite(value) else None


@dataclass(frozen=True)
class LineDefined:
    """
    Reference line with a usable orientation.

    direction and normal are unit vectors in A's local planar frame;
    normal is direction rotated 90 degrees counter-clockwise.
    """
    origin: GeoPoint
    target: GeoPoint
    direction: PlanarVector
    normal: PlanarVector
    length_m: float


@dataclass(frozen=True)
class LineDegenerate:
    """A and B project to the same planar point, so there is no orientation."""
    origin: GeoPoint
    target: GeoPoint


ReferenceLine = Union[LineDefined, LineDegenerate]


@dataclass(frozen=True)
class Deviation:
    """Signed lateral offset in metres and its sign (-1, 0 or 1)."""
    value: float = 0.0
    side: int = 0


class PositionErrorCode(Enum):
    """Feed failure categories, numbered as the W3C geolocation codes."""
    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3
    OTHER = 0

    @property
    def is_transient(self) -> bool:
        """Transient failures are retried with backoff."""
        return self in (PositionErrorCode.POSITION_UNAVAILABLE, PositionErrorCode.TIMEOUT)


class PositionFeedError(Exception):
    """Categorised positioning failure."""

    def __init__(self, code: PositionErrorCode, message: str = ""):
        super().__init__(message or code.name)
        self.code = code
        self.message = message or code.name

    def __repr__(self):
        return f"PositionFeedError({self.code.name}, {self.message!r})"


@dataclass(frozen=True)
class WatchOptions:
    """Options requested from a positioning source for a continuous feed."""
    high_accuracy: bool = True
    maximum_age_s: float = 5.0
    timeout_s: float = 20.0


@dataclass(frozen=True)
class FeedEvent:
    """A sample or an error, stamped with the subscription that produced it."""
    subscription_id: int
    sample: Optional[PositionSample] = None
    error: Optional[PositionFeedError] = None


class StreamState(Enum):
    STOPPED = "stopped"
    ACTIVE = "active"
    RESTARTING = "restarting"


@dataclass(frozen=True)
class GuidanceSnapshot:
    """
    Everything the presentation layer reads in one frame.

    smoothed_deviation and side are 0 when no line is defined; check
    line_kind before treating 0 as "on the line".
    """
    smoothed_deviation: float
    side: int
    raw_deviation: float
    accuracy: Optional[float]
    link_active: bool
    stream_state: StreamState
    speed_kmh: float
    heading: Optional[int]
    satellites: Optional[int]
    update_rate_hz: Optional[float]
    last_error_code: Optional[PositionErrorCode]
    last_error_message: str
    point_a: Optional[GeoPoint]
    point_b: Optional[GeoPoint]
    line_kind: str  # "none", "defined" or "degenerate"
    line_length_m: Optional[float]
    smoothing_factor: float
    visual_range_m: float
    debug_text: str
