"""
Unit conversion utilities for StraightBar.

Provides speed conversions between the units GPS receivers report (knots),
the units used internally (m/s) and the units shown on screen (km/h).
"""

KNOTS_TO_MPS = 1852.0 / 3600.0


def mps_to_kmh(mps):
    """Convert metres per second to km/h."""
    return mps * 3.6


def knots_to_mps(knots):
    """Convert knots to metres per second."""
    return knots * KNOTS_TO_MPS
