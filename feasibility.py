"""
Feasibility Module
Decides which drones can physically fly a delivery and what battery it costs them
"""

import logging
import math
from typing import List

from errors import NoCarrierCapacity, NoFeasibleDrone, RouteBlocked
from models import Delivery, Drone, FlightCandidate, Obstacle
import config
import geofencing
import geometry

logger = logging.getLogger(__name__)


def required_battery(distance_km: float, max_range_km: float) -> int:
    """
    Battery percentage needed to fly a distance, safety margin included

    Args:
        distance_km: Straight-line mission distance
        max_range_km: Drone range on a full charge

    Returns:
        min(100, ceil(distance / range * 100 * margin))
    """
    naive = distance_km / max_range_km * 100
    return min(config.MAX_BATTERY_PERCENT, math.ceil(naive * config.BATTERY_SAFETY_MARGIN))


def available_battery(drone: Drone) -> float:
    if config.SUBTRACT_RESERVED_BATTERY:
        return drone.battery_percent - drone.reserved_battery_percent
    return drone.battery_percent


def capable_drones(delivery: Delivery, drones: List[Drone]) -> List[Drone]:
    """Drones whose payload limit covers the delivery weight"""
    return [d for d in drones if d.max_weight_kg >= delivery.weight_kg]


def is_structurally_possible(delivery: Delivery, drones: List[Drone]) -> bool:
    """
    Cheap capacity + range pre-check

    Battery and obstacles are ignored; used only to skip hopeless deliveries
    during automatic queue picks.
    """
    distance = geometry.distance_km(delivery.pickup, delivery.dropoff)
    return any(distance <= d.max_range_km for d in capable_drones(delivery, drones))


def evaluate(delivery: Delivery, drones: List[Drone],
             obstacles: List[Obstacle]) -> List[FlightCandidate]:
    """
    Rank the drones able to fly a delivery

    Args:
        delivery: Delivery to fly
        drones: Whole fleet, in registry order
        obstacles: Known no-fly circles

    Returns:
        Feasible candidates, best first: most battery left after the flight,
        ties in fleet order

    Raises:
        RouteBlocked: the straight route crosses an obstacle
        NoCarrierCapacity: no drone can lift the weight
        NoFeasibleDrone: capable drones lack range or battery
    """
    blocking = geofencing.find_blocking_obstacle(delivery.pickup, delivery.dropoff, obstacles)
    if blocking is not None:
        raise RouteBlocked("Route blocked by obstacle",
                           deliveryId=delivery.id, obstacleId=blocking.id)

    carriers = capable_drones(delivery, drones)
    if not carriers:
        raise NoCarrierCapacity("No drone can carry this weight",
                                deliveryId=delivery.id, weightKg=delivery.weight_kg)

    distance = geometry.distance_km(delivery.pickup, delivery.dropoff)

    candidates: List[FlightCandidate] = []
    any_in_range = False
    for drone in carriers:
        within_range = distance <= drone.max_range_km
        cost = required_battery(distance, drone.max_range_km)
        has_battery = available_battery(drone) >= cost
        any_in_range = any_in_range or within_range

        if within_range and has_battery:
            candidates.append(FlightCandidate(
                drone=drone,
                required_battery=cost,
                residual_battery=drone.battery_percent - cost,
            ))

    if not candidates:
        reason = "battery" if any_in_range else "range"
        raise NoFeasibleDrone("No feasible drone available (range/battery)",
                              deliveryId=delivery.id, reason=reason,
                              distanceKm=round(distance, config.DISTANCE_DECIMALS))

    # sorted() is stable, so equal residuals keep fleet order
    ranked = sorted(candidates, key=lambda c: -c.residual_battery)
    logger.debug("Delivery %s: %d feasible drones, best %s",
                 delivery.id, len(ranked), ranked[0].drone.id)
    return ranked
