"""
Flight State Machine
Drives flights through scheduled -> in_progress -> completed, or to cancelled,
applying the drone and delivery side effects of each transition
"""

import logging
from datetime import datetime
from typing import Optional

from errors import InvalidStatus, InvalidTransition
from models import (
    ArchivedFlight, DeliveryStatus, DroneState, Flight, FlightStatus, utc_now,
)
from registry import FleetRegistry
import config

logger = logging.getLogger(__name__)

# legal targets of advance()
ADVANCE_TRANSITIONS = {
    FlightStatus.SCHEDULED: FlightStatus.IN_PROGRESS,
    FlightStatus.IN_PROGRESS: FlightStatus.COMPLETED,
}


def parse_status(value) -> FlightStatus:
    try:
        return FlightStatus(value)
    except ValueError:
        raise InvalidStatus("Invalid status", status=value,
                            allowed=[s.value for s in FlightStatus]) from None


class FlightStateMachine:
    """Flight lifecycle transitions over a registry handle"""

    def advance(self, registry: FleetRegistry, flight_id: str) -> Flight:
        """
        Move a flight one step forward

        scheduled -> in_progress puts the drone in flight; in_progress ->
        completed delivers the package and parks the drone at the dropoff.

        Raises:
            FlightNotFound: unknown flight
            IntegrityError: drone or delivery missing
            InvalidTransition: flight is completed or cancelled
        """
        flight = registry.get_flight(flight_id)
        registry.related_entities(flight)

        target = ADVANCE_TRANSITIONS.get(flight.status)
        if target is None:
            raise InvalidTransition("Cannot advance from current status",
                                    flightId=flight_id, status=flight.status.value)

        if target == FlightStatus.IN_PROGRESS:
            self._start(registry, flight)
        else:
            self._complete(registry, flight)

        logger.info("Flight %s advanced to %s", flight_id, flight.status.value)
        return flight

    def set_status(self, registry: FleetRegistry, flight_id: str,
                   status: Optional[str] = None,
                   scheduled_at: Optional[datetime] = None) -> Flight:
        """
        Explicit status override for manual correction

        Args:
            registry: Registry handle for this operation
            flight_id: Flight to update
            status: New status value, or None to leave it
            scheduled_at: Replacement schedule time, or None

        Raises:
            FlightNotFound: unknown flight
            InvalidStatus: status is not a known flight status
            InvalidTransition: flight is already completed or cancelled
        """
        flight = registry.get_flight(flight_id)
        target = parse_status(status) if status is not None else None

        if target is not None and target != flight.status:
            if flight.status.is_terminal:
                raise InvalidTransition(f"Flight is already {flight.status.value}",
                                        flightId=flight_id, status=flight.status.value,
                                        requested=target.value)

            if target == FlightStatus.CANCELLED:
                self._cancel(registry, flight)
            elif target == FlightStatus.COMPLETED:
                self._complete(registry, flight)
            elif target == FlightStatus.IN_PROGRESS:
                self._start(registry, flight)
            else:
                drone, _ = registry.related_entities(flight)
                flight.status = FlightStatus.SCHEDULED
                flight.started_at = None
                flight.progress = 0.0
                drone.state = DroneState.LOADING

            logger.info("Flight %s status set to %s", flight_id, flight.status.value)

        if scheduled_at is not None:
            flight.scheduled_at = scheduled_at

        return flight

    def remove(self, registry: FleetRegistry, flight_id: str) -> ArchivedFlight:
        """
        Archive a flight on manual deletion

        The delivery goes back to pending so it can be retried; battery still
        held by the flight returns to the drone.
        """
        flight = registry.get_flight(flight_id)
        return registry.archive_flight(flight, f"{config.REASON_MANUAL_DELETE}:{flight_id}")

    # ========================================================================
    # TRANSITIONS
    # ========================================================================

    def _start(self, registry: FleetRegistry, flight: Flight) -> None:
        drone, _ = registry.related_entities(flight)
        flight.status = FlightStatus.IN_PROGRESS
        flight.started_at = utc_now()
        drone.state = DroneState.IN_FLIGHT

    def _complete(self, registry: FleetRegistry, flight: Flight) -> None:
        drone, delivery = registry.related_entities(flight)
        flight.status = FlightStatus.COMPLETED
        flight.progress = 1.0
        flight.completed_at = utc_now()
        if flight.started_at is None:
            flight.started_at = flight.completed_at

        delivery.status = DeliveryStatus.DELIVERED
        registry.release_drone(drone)
        drone.current_lat = delivery.dropoff.lat
        drone.current_lon = delivery.dropoff.lon

    def _cancel(self, registry: FleetRegistry, flight: Flight) -> None:
        flight.status = FlightStatus.CANCELLED

        drone = registry.find_drone(flight.drone_id)
        if drone is not None:
            registry.credit_battery(drone, flight.required_battery)
            registry.release_drone(drone)

        delivery = registry.find_delivery(flight.delivery_id)
        if delivery is not None and delivery.status == DeliveryStatus.IN_TRANSIT:
            delivery.status = DeliveryStatus.PENDING
