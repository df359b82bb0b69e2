"""
Dispatcher Module
Picks a pending delivery and the best drone for it, then commits a new flight
"""

import logging
import uuid
from typing import Optional

from errors import DeliveryNotPending, NoSchedulableDelivery
from models import Delivery, DeliveryStatus, Flight, FlightStatus, utc_now
from registry import FleetRegistry, display_id_for
import config
import feasibility
import geometry

logger = logging.getLogger(__name__)


def estimated_duration_sec(distance_km: float,
                           speed_kmh: float = config.DRONE_CRUISE_SPEED_KMH) -> float:
    """Flight time at cruise speed, in seconds"""
    return distance_km / speed_kmh * 3600.0


class Dispatcher:
    """Matches deliveries to drones and creates flights"""

    def __init__(self, speed_kmh: float = config.DRONE_CRUISE_SPEED_KMH):
        self.speed_kmh = speed_kmh

    def pick_delivery(self, registry: FleetRegistry,
                      delivery_id: Optional[str] = None) -> Delivery:
        """
        Choose the delivery to schedule

        Args:
            registry: Registry handle for this operation
            delivery_id: Explicit delivery, or None for the priority queue pick

        Raises:
            DeliveryNotFound: explicit id unknown
            DeliveryNotPending: explicit delivery is not pending
            NoSchedulableDelivery: no queued delivery has a capable, in-range drone
        """
        if delivery_id:
            delivery = registry.get_delivery(delivery_id)
            if delivery.status != DeliveryStatus.PENDING:
                raise DeliveryNotPending("Delivery not pending",
                                         deliveryId=delivery_id, status=delivery.status.value)
            return delivery

        queue = registry.list_pending()
        if not queue:
            raise NoSchedulableDelivery("No pending deliveries")

        for delivery in queue:
            if feasibility.is_structurally_possible(delivery, registry.drones):
                return delivery

        raise NoSchedulableDelivery("No feasible delivery for any drone", pending=len(queue))

    def schedule(self, registry: FleetRegistry, delivery_id: Optional[str] = None) -> Flight:
        """
        Schedule one delivery onto one drone

        Args:
            registry: Registry handle for this operation
            delivery_id: Explicit delivery, or None to take the queue head

        Returns:
            The committed flight (status scheduled)

        Raises:
            Any error from pick_delivery or feasibility.evaluate, unchanged
        """
        delivery = self.pick_delivery(registry, delivery_id)
        candidates = feasibility.evaluate(delivery, registry.drones, registry.obstacles)
        chosen = candidates[0]

        distance = geometry.distance_km(delivery.pickup, delivery.dropoff)
        order_number = registry.allocate_order_number()

        flight = Flight(
            id=f"{config.FLIGHT_ID_PREFIX}-{uuid.uuid4().hex[:8]}",
            delivery_id=delivery.id,
            drone_id=chosen.drone.id,
            distance_km=round(distance, config.DISTANCE_DECIMALS),
            required_battery=chosen.required_battery,
            status=FlightStatus.SCHEDULED,
            scheduled_at=utc_now(),
            progress=0.0,
            order_number=order_number,
            display_id=display_id_for(order_number),
            estimated_duration_sec=round(estimated_duration_sec(distance, self.speed_kmh), 1),
        )

        registry.commit_flight(flight, chosen.required_battery, DeliveryStatus.IN_TRANSIT)

        logger.info("Scheduled %s (%s): delivery %s -> drone %s, %.3f km, battery cost %d%%",
                    flight.id, flight.display_id, delivery.id, chosen.drone.id,
                    flight.distance_km, flight.required_battery)
        return flight
