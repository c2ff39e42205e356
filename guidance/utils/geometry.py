"""
Shared geometry functions for GPS calculations.

Positions are projected into a local flat frame around a reference point
(equirectangular approximation). Good to centimetres over field-sized
baselines; error grows with distance and latitude.
"""

import math

from config import EARTH_RADIUS_M
from guidance.data.models import GeoPoint, PlanarVector


def project(point: GeoPoint, reference: GeoPoint) -> PlanarVector:
    """
    Project a geographic point into metres relative to a reference point.

    Args:
        point: Point to project
        reference: Origin of the local frame

    Returns:
        PlanarVector with x east and y north, in metres
    """
    x = (math.radians(point.longitude - reference.longitude)
         * math.cos(math.radians(reference.latitude)) * EARTH_RADIUS_M)
    y = math.radians(point.latitude - reference.latitude) * EARTH_RADIUS_M
    return PlanarVector(x, y)


def magnitude(v: PlanarVector) -> float:
    return math.hypot(v.x, v.y)


def normalize(v: PlanarVector) -> PlanarVector:
    """Scale to unit length. A zero vector is returned unchanged."""
    n = magnitude(v) or 1.0
    return PlanarVector(v.x / n, v.y / n)


def dot(a: PlanarVector, b: PlanarVector) -> float:
    return a.x * b.x + a.y * b.y


def rotate_ccw(v: PlanarVector) -> PlanarVector:
    """Rotate 90 degrees counter-clockwise."""
    return PlanarVector(-v.y, v.x)


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate great circle distance between two GPS points in meters.

    Args:
        lat1, lon1: First point (decimal degrees)
        lat2, lon2: Second point (decimal degrees)

    Returns:
        Distance in meters
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (math.sin(delta_phi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c
