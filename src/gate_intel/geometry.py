"""Geometry utilities over (latitude, longitude) pairs.

Two concerns:
- Great-circle distance in meters (haversine).
- Running mean/variance of positions (Welford), plus the parallel combine
  step (Chan et al.) that makes the fold associative. A numpy two-pass
  summary is provided for batch rebuilds and cross-checks.

Latitude and longitude are accumulated independently. The scalar spatial
variance combines the per-axis standard deviations, sqrt(sd_lat² + sd_lon²),
in degrees.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass

import numpy as np

Position = tuple[float, float]
"""(latitude, longitude) in decimal degrees."""

EARTH_RADIUS_M = 6_371_000.0


def haversine_m(a: Position, b: Position) -> float:
    """Great-circle distance between two positions in meters.

    Args:
        a: (latitude, longitude) in degrees
        b: (latitude, longitude) in degrees

    Returns:
        Distance in meters. Symmetric; zero when a == b.
    """
    if a == b:
        return 0.0

    lat1, lon1 = math.radians(a[0]), math.radians(a[1])
    lat2, lon2 = math.radians(b[0]), math.radians(b[1])

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    # Clamp: rounding can push h fractionally above 1 for antipodal points
    c = 2 * math.asin(math.sqrt(min(1.0, h)))

    return EARTH_RADIUS_M * c


@dataclass(frozen=True)
class PositionMoments:
    """Running first and second moments of a set of positions."""

    count: int = 0
    mean_lat: float = 0.0
    mean_lon: float = 0.0
    m2_lat: float = 0.0
    """Sum of squared deviations from the latitude mean."""

    m2_lon: float = 0.0
    """Sum of squared deviations from the longitude mean."""

    @property
    def centroid(self) -> Position | None:
        if self.count == 0:
            return None
        return (self.mean_lat, self.mean_lon)

    @property
    def var_lat(self) -> float:
        """Sample variance of latitude (0 for fewer than two points)."""
        return self.m2_lat / (self.count - 1) if self.count > 1 else 0.0

    @property
    def var_lon(self) -> float:
        """Sample variance of longitude (0 for fewer than two points)."""
        return self.m2_lon / (self.count - 1) if self.count > 1 else 0.0

    @property
    def sd_lat(self) -> float:
        return math.sqrt(max(0.0, self.var_lat))

    @property
    def sd_lon(self) -> float:
        return math.sqrt(max(0.0, self.var_lon))

    @property
    def spatial_variance(self) -> float:
        """Scalar spread combining both axes, in degrees."""
        return math.hypot(self.sd_lat, self.sd_lon)


def fold_position(moments: PositionMoments, position: Position) -> PositionMoments:
    """Fold one position into running moments (Welford's update)."""
    lat, lon = position
    n = moments.count + 1

    d_lat = lat - moments.mean_lat
    d_lon = lon - moments.mean_lon
    mean_lat = moments.mean_lat + d_lat / n
    mean_lon = moments.mean_lon + d_lon / n

    return PositionMoments(
        count=n,
        mean_lat=mean_lat,
        mean_lon=mean_lon,
        m2_lat=moments.m2_lat + d_lat * (lat - mean_lat),
        m2_lon=moments.m2_lon + d_lon * (lon - mean_lon),
    )


def combine_moments(a: PositionMoments, b: PositionMoments) -> PositionMoments:
    """Combine two independently accumulated moment sets.

    combine_moments(fold(A), fold(B)) equals fold(A + B) up to floating-point
    rounding, regardless of how the points were split.
    """
    if a.count == 0:
        return b
    if b.count == 0:
        return a

    n = a.count + b.count
    d_lat = b.mean_lat - a.mean_lat
    d_lon = b.mean_lon - a.mean_lon
    weight = a.count * b.count / n

    return PositionMoments(
        count=n,
        mean_lat=a.mean_lat + d_lat * b.count / n,
        mean_lon=a.mean_lon + d_lon * b.count / n,
        m2_lat=a.m2_lat + b.m2_lat + d_lat * d_lat * weight,
        m2_lon=a.m2_lon + b.m2_lon + d_lon * d_lon * weight,
    )


def summarize_positions(positions: Iterable[Position]) -> PositionMoments:
    """Compute moments for a full set of positions in one batch.

    Two-pass over a numpy array. Equivalent to folding every position, but
    needs the whole history in memory; used for rebuilds, never for streaming.
    """
    arr = np.asarray(list(positions), dtype=np.float64)
    if arr.size == 0:
        return PositionMoments()

    arr = arr.reshape(-1, 2)
    mean = arr.mean(axis=0)
    m2 = ((arr - mean) ** 2).sum(axis=0)

    return PositionMoments(
        count=int(arr.shape[0]),
        mean_lat=float(mean[0]),
        mean_lon=float(mean[1]),
        m2_lat=float(m2[0]),
        m2_lon=float(m2[1]),
    )
