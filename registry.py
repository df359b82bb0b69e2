"""
Fleet/Delivery Registry
Holds the canonical drones, deliveries, obstacles, flights and flight history
of one FleetDocument and enforces their invariants on every mutation.

Each mutation validates everything it needs before writing, so a raised error
leaves the document untouched. FleetStore adds the outer guarantee: a
transaction that raises is never saved.
"""

import logging
import uuid
from typing import List, Optional, Set, Tuple

from errors import (
    AlreadyCancelled, DeliveryNotFound, DeliveryNotPending, DroneNotFound,
    DuplicateId, FlightNotFound, HasActiveFlight, IntegrityError, ObstacleNotFound,
)
from models import (
    ArchivedFlight, Delivery, DeliveryRequest, DeliveryStatus, DeliveryUpdate,
    Drone, DroneRegistration, DroneState, DroneStatusSnapshot, DroneUpdate,
    FleetDocument, Flight, FlightStatus, Obstacle, Priority, utc_now,
)
import config

logger = logging.getLogger(__name__)


def display_id_for(order_number: int) -> str:
    return config.DISPLAY_ID_TEMPLATE.format(order_number=order_number)


class FleetRegistry:
    """Query and mutation primitives over one FleetDocument"""

    def __init__(self, document: FleetDocument):
        self.document = document

    # ========================================================================
    # COLLECTIONS
    # ========================================================================

    @property
    def drones(self) -> List[Drone]:
        return self.document.drones

    @property
    def deliveries(self) -> List[Delivery]:
        return self.document.deliveries

    @property
    def flights(self) -> List[Flight]:
        return self.document.flights

    @property
    def flight_history(self) -> List[ArchivedFlight]:
        return self.document.flight_history

    @property
    def obstacles(self) -> List[Obstacle]:
        return self.document.obstacles

    # ========================================================================
    # QUERIES
    # ========================================================================

    def list_pending(self) -> List[Delivery]:
        """
        Pending deliveries in dispatch order

        Returns:
            Deliveries sorted by priority weight (highest first), then by
            creation time (oldest first); ties keep insertion order
        """
        pending = [d for d in self.deliveries if d.status == DeliveryStatus.PENDING]
        return sorted(pending, key=lambda d: (-d.priority.weight, d.created_at))

    def find_drone(self, drone_id: str) -> Optional[Drone]:
        return next((d for d in self.drones if d.id == drone_id), None)

    def find_delivery(self, delivery_id: str) -> Optional[Delivery]:
        return next((d for d in self.deliveries if d.id == delivery_id), None)

    def find_flight(self, flight_id: str) -> Optional[Flight]:
        return next((f for f in self.flights if f.id == flight_id), None)

    def find_obstacle(self, obstacle_id: str) -> Optional[Obstacle]:
        return next((o for o in self.obstacles if o.id == obstacle_id), None)

    def get_drone(self, drone_id: str) -> Drone:
        drone = self.find_drone(drone_id)
        if drone is None:
            raise DroneNotFound("Drone not found", droneId=drone_id)
        return drone

    def get_delivery(self, delivery_id: str) -> Delivery:
        delivery = self.find_delivery(delivery_id)
        if delivery is None:
            raise DeliveryNotFound("Delivery not found", deliveryId=delivery_id)
        return delivery

    def get_flight(self, flight_id: str) -> Flight:
        flight = self.find_flight(flight_id)
        if flight is None:
            raise FlightNotFound("Flight not found", flightId=flight_id)
        return flight

    def flights_for_delivery(self, delivery_id: str) -> List[Flight]:
        return [f for f in self.flights if f.delivery_id == delivery_id]

    def active_flight_for(self, delivery_id: str) -> Optional[Flight]:
        """Non-archived, non-cancelled flight owning the delivery, if any"""
        return next(
            (f for f in self.flights
             if f.delivery_id == delivery_id and f.status != FlightStatus.CANCELLED),
            None,
        )

    def related_entities(self, flight: Flight) -> Tuple[Drone, Delivery]:
        """
        Resolve the drone and delivery of a flight

        Raises:
            IntegrityError: the flight points at a missing drone or delivery
        """
        drone = self.find_drone(flight.drone_id)
        delivery = self.find_delivery(flight.delivery_id)
        if drone is None or delivery is None:
            logger.warning("Flight %s references missing drone=%s or delivery=%s",
                           flight.id, flight.drone_id, flight.delivery_id)
            raise IntegrityError("Related drone or delivery missing", flightId=flight.id)
        return drone, delivery

    def drone_status_snapshot(self) -> List[DroneStatusSnapshot]:
        return [
            DroneStatusSnapshot(
                id=d.id,
                model=d.model,
                battery_percent=d.battery_percent,
                state=d.state,
                current_lat=d.current_lat,
                current_lon=d.current_lon,
            )
            for d in self.drones
        ]

    # ========================================================================
    # BATTERY
    # ========================================================================

    @staticmethod
    def set_battery(drone: Drone, value: float) -> None:
        """Set battery clamped to [0, 100], keeping reserved <= battery"""
        value = max(config.MIN_BATTERY_PERCENT, min(config.MAX_BATTERY_PERCENT, value))
        drone.battery_percent = value
        if drone.reserved_battery_percent > value:
            drone.reserved_battery_percent = value

    def debit_battery(self, drone: Drone, amount: float) -> None:
        self.set_battery(drone, drone.battery_percent - amount)

    def credit_battery(self, drone: Drone, amount: float) -> None:
        self.set_battery(drone, drone.battery_percent + amount)

    def release_drone(self, drone: Drone) -> None:
        """
        Recompute drone state from its remaining live flights

        in_flight while any of them is in progress, loading while one is
        still scheduled, idle otherwise.
        """
        live = {f.status for f in self.flights
                if f.drone_id == drone.id and not f.status.is_terminal}
        if FlightStatus.IN_PROGRESS in live:
            drone.state = DroneState.IN_FLIGHT
        elif FlightStatus.SCHEDULED in live:
            drone.state = DroneState.LOADING
        else:
            drone.state = DroneState.IDLE

    # ========================================================================
    # DRONES
    # ========================================================================

    def _new_id(self, prefix: str, taken: Set[str]) -> str:
        while True:
            candidate = f"{prefix}-{uuid.uuid4().hex[:8]}"
            if candidate not in taken:
                return candidate

    def add_drone(self, registration: DroneRegistration) -> Drone:
        taken = {d.id for d in self.drones}
        if registration.id and registration.id in taken:
            raise DuplicateId("Drone id already exists", droneId=registration.id)

        battery = registration.battery_percent
        drone = Drone(
            id=registration.id or self._new_id(config.DRONE_ID_PREFIX, taken),
            model=registration.model,
            max_weight_kg=registration.max_weight_kg,
            max_range_km=registration.max_range_km,
            battery_percent=config.MAX_BATTERY_PERCENT if battery is None else battery,
        )
        self.drones.append(drone)
        logger.info("Drone %s registered (%s, %.1f kg, %.1f km)",
                    drone.id, drone.model, drone.max_weight_kg, drone.max_range_km)
        return drone

    def update_drone(self, drone_id: str, update: DroneUpdate) -> Drone:
        drone = self.get_drone(drone_id)
        changes = {k: v for k, v in update.model_dump(exclude_unset=True).items() if v is not None}

        for field, value in changes.items():
            if field == "battery_percent":
                self.set_battery(drone, value)
            else:
                setattr(drone, field, value)

        logger.info("Drone %s updated: %s", drone_id, sorted(changes))
        return drone

    def remove_drone(self, drone_id: str) -> Drone:
        """
        Remove a drone and cascade to its flights

        Every flight flown by the drone is archived with reason
        drone-deleted:<id>; deliveries left in transit revert to pending.
        """
        drone = self.get_drone(drone_id)
        self.drones.remove(drone)

        reason = f"{config.REASON_DRONE_DELETED}:{drone_id}"
        for flight in [f for f in self.flights if f.drone_id == drone_id]:
            self._move_to_history(flight, reason)
            self._revert_delivery_if_orphaned(flight.delivery_id)

        logger.info("Drone %s removed", drone_id)
        return drone

    # ========================================================================
    # DELIVERIES
    # ========================================================================

    def add_delivery(self, request: DeliveryRequest) -> Delivery:
        taken = {d.id for d in self.deliveries}
        if request.id and request.id in taken:
            raise DuplicateId("Delivery id already exists", deliveryId=request.id)

        delivery = Delivery(
            id=request.id or self._new_id(config.DELIVERY_ID_PREFIX, taken),
            weight_kg=request.weight_kg,
            priority=Priority.normalize(request.priority),
            pickup=request.pickup,
            dropoff=request.dropoff,
        )
        self.deliveries.append(delivery)
        logger.info("Delivery %s created (%.2f kg, priority %s)",
                    delivery.id, delivery.weight_kg, delivery.priority.value)
        return delivery

    def update_delivery(self, delivery_id: str, update: DeliveryUpdate) -> Delivery:
        delivery = self.get_delivery(delivery_id)
        if delivery.status != DeliveryStatus.PENDING:
            raise DeliveryNotPending("Only pending deliveries can be edited",
                                     deliveryId=delivery_id, status=delivery.status.value)

        changes = update.model_dump(exclude_unset=True)
        if changes.get("weight_kg") is not None:
            delivery.weight_kg = update.weight_kg
        if changes.get("priority") is not None:
            delivery.priority = Priority.normalize(update.priority)
        if update.pickup is not None:
            delivery.pickup = update.pickup
        if update.dropoff is not None:
            delivery.dropoff = update.dropoff

        return delivery

    def remove_delivery(self, delivery_id: str) -> Delivery:
        delivery = self.get_delivery(delivery_id)
        if delivery.status != DeliveryStatus.PENDING:
            raise DeliveryNotPending("Only pending deliveries can be removed",
                                     deliveryId=delivery_id, status=delivery.status.value)

        active = self.active_flight_for(delivery_id)
        if active is not None:
            raise HasActiveFlight("Cannot remove delivery with active flight",
                                  deliveryId=delivery_id, flightId=active.id)

        # cancelled flights left in place would dangle once the delivery is gone
        reason = f"{config.REASON_DELIVERY_DELETED}:{delivery_id}"
        for flight in self.flights_for_delivery(delivery_id):
            self._move_to_history(flight, reason)

        self.deliveries.remove(delivery)
        logger.info("Delivery %s removed", delivery_id)
        return delivery

    def cancel_delivery(self, delivery_id: str) -> Tuple[Delivery, Optional[ArchivedFlight]]:
        """
        Cancel a delivery, archiving its flight

        Returns:
            (cancelled delivery, archived flight or None)
        """
        delivery = self.get_delivery(delivery_id)
        if delivery.status == DeliveryStatus.CANCELLED:
            raise AlreadyCancelled("Delivery already cancelled", deliveryId=delivery_id)
        if delivery.status == DeliveryStatus.DELIVERED:
            raise DeliveryNotPending("Delivered deliveries cannot be cancelled",
                                     deliveryId=delivery_id, status=delivery.status.value)

        archived: Optional[ArchivedFlight] = None
        reason = f"{config.REASON_DELIVERY_CANCELLED}:{delivery_id}"
        for flight in self.flights_for_delivery(delivery_id):
            entry = self.archive_flight(flight, reason)
            if archived is None or entry.status != FlightStatus.CANCELLED:
                archived = entry

        delivery.status = DeliveryStatus.CANCELLED
        logger.info("Delivery %s cancelled (archived flight: %s)",
                    delivery_id, archived.id if archived else None)
        return delivery, archived

    def purge_cancelled_deliveries(self) -> int:
        before = len(self.deliveries)
        self.document.deliveries = [d for d in self.deliveries if d.status != DeliveryStatus.CANCELLED]
        removed = before - len(self.deliveries)
        if removed:
            logger.info("Purged %d cancelled deliveries", removed)
        return removed

    def _revert_delivery_if_orphaned(self, delivery_id: str) -> None:
        delivery = self.find_delivery(delivery_id)
        if delivery is None or delivery.status != DeliveryStatus.IN_TRANSIT:
            return
        if self.active_flight_for(delivery_id) is None:
            delivery.status = DeliveryStatus.PENDING

    # ========================================================================
    # OBSTACLES
    # ========================================================================

    def add_obstacle(self, obstacle: Obstacle) -> Obstacle:
        if self.find_obstacle(obstacle.id) is not None:
            raise DuplicateId("Obstacle id already exists", obstacleId=obstacle.id)
        self.obstacles.append(obstacle)
        logger.info("Obstacle %s added at (%.4f, %.4f) r=%.3f km",
                    obstacle.id, obstacle.lat, obstacle.lon, obstacle.radius_km)
        return obstacle

    def remove_obstacle(self, obstacle_id: str) -> Obstacle:
        obstacle = self.find_obstacle(obstacle_id)
        if obstacle is None:
            raise ObstacleNotFound("Obstacle not found", obstacleId=obstacle_id)
        self.obstacles.remove(obstacle)
        return obstacle

    # ========================================================================
    # FLIGHTS
    # ========================================================================

    def allocate_order_number(self) -> int:
        """Next value of the process-wide monotonic order counter"""
        number = self.document.next_order_number
        self.document.next_order_number = number + 1
        return number

    def commit_flight(self, flight: Flight, drone_debit: int,
                      delivery_status: DeliveryStatus) -> Flight:
        """
        Store a new flight together with its drone and delivery side effects

        Debits the drone battery (floor 0), puts the drone in loading state at
        the pickup point and sets the delivery status. Validation happens
        before any write.

        Raises:
            IntegrityError: drone or delivery missing
            DuplicateId: flight id already stored
            HasActiveFlight: delivery already owned by a live flight
        """
        drone, delivery = self.related_entities(flight)

        if self.find_flight(flight.id) is not None:
            raise DuplicateId("Flight id already exists", flightId=flight.id)

        active = self.active_flight_for(delivery.id)
        if active is not None:
            raise HasActiveFlight("Delivery already has an active flight",
                                  deliveryId=delivery.id, flightId=active.id)

        # a cancelled flight kept in place gives way to the new one
        for stale in self.flights_for_delivery(delivery.id):
            self._move_to_history(stale, f"{config.REASON_RESCHEDULED}:{flight.id}")

        self.debit_battery(drone, drone_debit)
        drone.state = DroneState.LOADING
        drone.current_lat = delivery.pickup.lat
        drone.current_lon = delivery.pickup.lon
        delivery.status = delivery_status
        self.flights.append(flight)
        return flight

    def archive_flight(self, flight: Flight, reason: str) -> ArchivedFlight:
        """
        Move a flight to history and undo its live side effects

        Credits requiredBattery back to the drone (cap 100) and releases it.
        A cancelled flight was already refunded when it was cancelled.
        An in-transit delivery left without a live flight reverts to pending.
        """
        if self.find_flight(flight.id) is None:
            raise FlightNotFound("Flight not found", flightId=flight.id)

        drone = self.find_drone(flight.drone_id)
        refund = flight.status != FlightStatus.CANCELLED

        archived = self._move_to_history(flight, reason)

        if drone is not None and refund:
            self.credit_battery(drone, flight.required_battery)
            self.release_drone(drone)
        self._revert_delivery_if_orphaned(flight.delivery_id)

        return archived

    def _move_to_history(self, flight: Flight, reason: str) -> ArchivedFlight:
        self.document.flights = [f for f in self.flights if f.id != flight.id]
        archived = ArchivedFlight(
            **flight.model_dump(),
            removed_at=utc_now(),
            removed_reason=reason,
        )
        self.flight_history.append(archived)
        logger.info("Flight %s archived (%s)", flight.id, reason)
        return archived

    def clear_flight_history(self) -> int:
        """Drop the archive; the order counter keeps its value"""
        count = len(self.flight_history)
        self.document.flight_history = []
        return count

    # ========================================================================
    # MIGRATION
    # ========================================================================

    def migrate(self) -> int:
        """
        Bring a loaded document up to date

        Bumps nextOrderNumber past every known order number and numbers any
        flight or archived flight that lacks one.

        Returns:
            Number of flights that received a new order number
        """
        every_flight = list(self.flights) + list(self.flight_history)
        max_order = max(
            (f.order_number for f in every_flight if f.order_number is not None),
            default=0,
        )
        if self.document.next_order_number <= max_order:
            self.document.next_order_number = max_order + 1

        migrated = 0
        for flight in every_flight:
            if flight.order_number is None:
                flight.order_number = self.allocate_order_number()
                migrated += 1
            if not flight.display_id:
                flight.display_id = display_id_for(flight.order_number)

        return migrated
