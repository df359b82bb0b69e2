"""
Fleet Service
Operation contracts exposed to the API layer. Each call is one store
transaction: it either applies every write or none.
"""

import logging
from typing import Any, Dict, List, Optional

from dispatcher import Dispatcher
from flight_state import FlightStateMachine
from models import (
    ArchivedFlight, Delivery, DeliveryRequest, DeliveryUpdate, Drone,
    DroneRegistration, DroneStatusSnapshot, DroneUpdate, Flight, FlightUpdate,
    Obstacle, ObstacleRequest,
)
from storage import FleetStore
import geofencing

logger = logging.getLogger(__name__)


class FleetService:
    """Facade over the registry, dispatcher and flight state machine"""

    def __init__(self, store: FleetStore,
                 dispatcher: Optional[Dispatcher] = None,
                 state_machine: Optional[FlightStateMachine] = None):
        self.store = store
        self.dispatcher = dispatcher or Dispatcher()
        self.state_machine = state_machine or FlightStateMachine()

    # ========================================================================
    # DRONES
    # ========================================================================

    def list_drones(self) -> List[Drone]:
        with self.store.snapshot() as registry:
            return list(registry.drones)

    def create_drone(self, registration: DroneRegistration) -> Drone:
        with self.store.transaction() as registry:
            return registry.add_drone(registration)

    def update_drone(self, drone_id: str, update: DroneUpdate) -> Drone:
        with self.store.transaction() as registry:
            return registry.update_drone(drone_id, update)

    def remove_drone(self, drone_id: str) -> Drone:
        with self.store.transaction() as registry:
            return registry.remove_drone(drone_id)

    def drone_status_snapshot(self) -> List[DroneStatusSnapshot]:
        with self.store.snapshot() as registry:
            return registry.drone_status_snapshot()

    # ========================================================================
    # DELIVERIES
    # ========================================================================

    def list_deliveries(self) -> List[Delivery]:
        with self.store.snapshot() as registry:
            return list(registry.deliveries)

    def create_delivery(self, request: DeliveryRequest) -> Delivery:
        with self.store.transaction() as registry:
            return registry.add_delivery(request)

    def update_delivery(self, delivery_id: str, update: DeliveryUpdate) -> Delivery:
        with self.store.transaction() as registry:
            return registry.update_delivery(delivery_id, update)

    def remove_delivery(self, delivery_id: str) -> Delivery:
        with self.store.transaction() as registry:
            return registry.remove_delivery(delivery_id)

    def cancel_delivery(self, delivery_id: str) -> Dict[str, Any]:
        with self.store.transaction() as registry:
            delivery, archived = registry.cancel_delivery(delivery_id)
            return {"delivery": delivery, "archived": archived}

    def purge_cancelled_deliveries(self) -> int:
        with self.store.transaction() as registry:
            return registry.purge_cancelled_deliveries()

    # ========================================================================
    # FLIGHTS
    # ========================================================================

    def list_flights(self) -> List[Flight]:
        with self.store.snapshot() as registry:
            return list(registry.flights)

    def schedule_flight(self, delivery_id: Optional[str] = None) -> Flight:
        with self.store.transaction() as registry:
            return self.dispatcher.schedule(registry, delivery_id)

    def advance_flight(self, flight_id: str) -> Dict[str, Any]:
        with self.store.transaction() as registry:
            flight = self.state_machine.advance(registry, flight_id)
            return {"flight": flight, "drone": registry.find_drone(flight.drone_id)}

    def update_flight(self, flight_id: str, update: FlightUpdate) -> Flight:
        with self.store.transaction() as registry:
            return self.state_machine.set_status(
                registry, flight_id, update.status, update.scheduled_at
            )

    def remove_flight(self, flight_id: str) -> ArchivedFlight:
        with self.store.transaction() as registry:
            return self.state_machine.remove(registry, flight_id)

    def list_flight_history(self) -> List[ArchivedFlight]:
        with self.store.snapshot() as registry:
            return list(registry.flight_history)

    def clear_flight_history(self) -> int:
        with self.store.transaction() as registry:
            count = registry.clear_flight_history()
        logger.info("Flight history cleared (%d entries)", count)
        return count

    # ========================================================================
    # OBSTACLES
    # ========================================================================

    def list_obstacles(self) -> List[Obstacle]:
        with self.store.snapshot() as registry:
            return list(registry.obstacles)

    def create_obstacle(self, request: ObstacleRequest) -> Obstacle:
        obstacle = geofencing.build_obstacle(request)
        with self.store.transaction() as registry:
            return registry.add_obstacle(obstacle)

    def remove_obstacle(self, obstacle_id: str) -> Obstacle:
        with self.store.transaction() as registry:
            return registry.remove_obstacle(obstacle_id)

    # ========================================================================
    # SYSTEM
    # ========================================================================

    def health(self) -> Dict[str, Any]:
        with self.store.snapshot() as registry:
            return {
                "ok": True,
                "drones": len(registry.drones),
                "pendingDeliveries": len(registry.list_pending()),
                "activeFlights": len([f for f in registry.flights if not f.status.is_terminal]),
            }
