"""
Geofencing Module
Handles circular no-fly obstacles and straight-line route blocking
"""

import logging
from typing import List, Optional

from errors import InvalidShape
from models import Obstacle, ObstacleRequest
import geometry

logger = logging.getLogger(__name__)

SUPPORTED_SHAPES = ("circle",)


def build_obstacle(request: ObstacleRequest) -> Obstacle:
    """
    Validate an obstacle request and build the stored obstacle

    Args:
        request: Parsed obstacle payload

    Returns:
        Obstacle ready to be stored

    Raises:
        InvalidShape: unsupported type or non-positive radius
    """
    if request.type not in SUPPORTED_SHAPES:
        raise InvalidShape(f"Unsupported obstacle type '{request.type}' (only circle)",
                           type=request.type)

    if request.radius_km <= 0:
        raise InvalidShape("radiusKm must be a positive number", radiusKm=request.radius_km)

    if not (-90 <= request.lat <= 90 and -180 <= request.lon <= 180):
        raise InvalidShape("Obstacle centre outside valid lat/lon range",
                           lat=request.lat, lon=request.lon)

    return Obstacle(
        id=request.id,
        type="circle",
        lat=request.lat,
        lon=request.lon,
        radius_km=request.radius_km,
    )


def find_blocking_obstacle(pickup, dropoff, obstacles: List[Obstacle]) -> Optional[Obstacle]:
    """
    Find the first obstacle whose circle the straight route crosses

    Args:
        pickup: Route start (.lat, .lon)
        dropoff: Route end (.lat, .lon)
        obstacles: Obstacles to test

    Returns:
        Blocking obstacle or None if the route is clear
    """
    for obstacle in obstacles:
        if obstacle.type != "circle":
            continue
        if geometry.segment_intersects_circle(pickup, dropoff, obstacle):
            logger.debug("Route blocked by obstacle %s", obstacle.id)
            return obstacle

    return None


def is_route_blocked(pickup, dropoff, obstacles: List[Obstacle]) -> bool:
    """True if any obstacle blocks the straight pickup -> dropoff route"""
    return find_blocking_obstacle(pickup, dropoff, obstacles) is not None
