"""
Geometry Module
Great-circle distance, local planar projection and straight-line obstacle tests
Points are any objects exposing .lat and .lon in degrees
"""

import math
from typing import Tuple

import config


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate great circle distance between two points on Earth

    Args:
        lat1, lon1: First point coordinates
        lat2, lon2: Second point coordinates

    Returns:
        Distance in kilometers
    """
    R = config.EARTH_RADIUS_KM

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (math.sin(delta_phi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return R * c


def distance_km(a, b) -> float:
    """Haversine distance between two points, in kilometers"""
    return haversine_distance(a.lat, a.lon, b.lat, b.lon)


def project_equirectangular(lat: float, lon: float) -> Tuple[float, float]:
    """
    Project a point onto a flat plane in kilometers

    Only valid for short, city-scale segments; no spherical correction is
    applied beyond the cos(lat) scaling of longitude.
    """
    R = config.EARTH_RADIUS_KM
    phi = math.radians(lat)
    x = math.radians(lon) * R * math.cos(phi)
    y = phi * R
    return x, y


def segment_intersects_circle(p1, p2, circle) -> bool:
    """
    Check whether the straight segment p1-p2 passes within a circle

    Args:
        p1, p2: Segment end points (.lat, .lon)
        circle: Circle with .lat, .lon and .radius_km

    Returns:
        True if the closest point of the segment to the circle centre is
        within radius_km, False otherwise
    """
    ax, ay = project_equirectangular(p1.lat, p1.lon)
    bx, by = project_equirectangular(p2.lat, p2.lon)
    cx, cy = project_equirectangular(circle.lat, circle.lon)

    abx = bx - ax
    aby = by - ay
    ab_len2 = abx * abx + aby * aby

    if ab_len2 == 0:
        # degenerate segment: point-to-centre distance
        return math.hypot(ax - cx, ay - cy) <= circle.radius_km

    # projection parameter of the centre onto the segment, clamped to its ends
    t = ((cx - ax) * abx + (cy - ay) * aby) / ab_len2
    t = max(0.0, min(1.0, t))

    px = ax + t * abx
    py = ay + t * aby

    return math.hypot(px - cx, py - cy) <= circle.radius_km


def interpolate(a, b, fraction: float) -> Tuple[float, float]:
    """
    Linearly interpolate (lat, lon) between two points

    Args:
        a, b: Start and end points (.lat, .lon)
        fraction: Position along the segment, clamped to [0, 1]

    Returns:
        (lat, lon) tuple
    """
    f = max(0.0, min(1.0, fraction))
    lat = a.lat + f * (b.lat - a.lat)
    lon = a.lon + f * (b.lon - a.lon)
    return lat, lon
