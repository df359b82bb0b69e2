from datetime import datetime, timedelta, timezone

from dispatcher import Dispatcher
from errors import (
    AlreadyCancelled, DeliveryNotPending, DroneNotFound, DuplicateId,
    HasActiveFlight, IntegrityError, ObstacleNotFound,
)
from models import (
    Coordinate, Delivery, DeliveryStatus, DeliveryUpdate, Drone, DroneRegistration,
    DroneState, DroneUpdate, FleetDocument, Flight, FlightStatus, Obstacle, Priority,
)
from registry import FleetRegistry, display_id_for
import pytest


PICKUP = Coordinate(lat=-22.90, lon=-43.20)
DROPOFF = Coordinate(lat=-22.91, lon=-43.21)
T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _make_drone(drone_id: str = "drone-1", battery: float = 100.0) -> Drone:
    return Drone(id=drone_id, model="Courier Q2", max_weight_kg=10.0,
                 max_range_km=100.0, battery_percent=battery)


def _make_delivery(delivery_id: str, priority: str = "normal", minutes: int = 0,
                   status: DeliveryStatus = DeliveryStatus.PENDING) -> Delivery:
    return Delivery(
        id=delivery_id,
        weight_kg=2.0,
        priority=priority,
        pickup=PICKUP,
        dropoff=DROPOFF,
        status=status,
        created_at=T0 + timedelta(minutes=minutes),
    )


def _make_flight(flight_id: str, delivery_id: str, drone_id: str = "drone-1",
                 status: FlightStatus = FlightStatus.SCHEDULED,
                 order_number=None, required_battery: int = 10) -> Flight:
    return Flight(
        id=flight_id,
        delivery_id=delivery_id,
        drone_id=drone_id,
        distance_km=1.5,
        required_battery=required_battery,
        status=status,
        order_number=order_number,
    )


def _make_registry(**collections) -> FleetRegistry:
    return FleetRegistry(FleetDocument(**collections))


def test_pending_queue_orders_by_priority_then_age():
    registry = _make_registry(deliveries=[
        _make_delivery("old-low", "low", minutes=0),
        _make_delivery("new-high", "high", minutes=30),
        _make_delivery("old-high", "alta", minutes=10),
        _make_delivery("medium", "medium", minutes=5),
        _make_delivery("done", "high", status=DeliveryStatus.DELIVERED),
    ])

    queue = [d.id for d in registry.list_pending()]
    assert queue == ["old-high", "new-high", "medium", "old-low"]


def test_same_priority_is_first_in_first_out():
    registry = _make_registry(deliveries=[
        _make_delivery("b", minutes=2),
        _make_delivery("a", minutes=1),
        _make_delivery("c", minutes=3),
    ])
    assert [d.id for d in registry.list_pending()] == ["a", "b", "c"]


def test_unknown_priority_falls_back_to_normal():
    assert Priority.normalize("urgentissimo") == Priority.NORMAL
    assert Priority.normalize(None) == Priority.NORMAL
    assert Priority.normalize(" Baixa ") == Priority.LOW


def test_legacy_delivery_status_reads_as_in_transit():
    delivery = Delivery.model_validate({
        "id": "legacy",
        "weightKg": 1.0,
        "pickup": {"lat": 0, "lon": 0},
        "dropoff": {"lat": 0, "lon": 0.01},
        "status": "scheduled",
        "createdAt": "2023-01-01T00:00:00",
    })
    assert delivery.status == DeliveryStatus.IN_TRANSIT
    assert delivery.created_at.tzinfo is not None


def test_add_drone_defaults_and_duplicates():
    registry = _make_registry()
    drone = registry.add_drone(DroneRegistration(model="Lifter", max_weight_kg=8, max_range_km=30))

    assert drone.id.startswith("drone-")
    assert drone.battery_percent == 100
    assert drone.state == DroneState.IDLE

    registry.add_drone(DroneRegistration(id="fixed", model="Lifter", max_weight_kg=8, max_range_km=30))
    with pytest.raises(DuplicateId):
        registry.add_drone(DroneRegistration(id="fixed", model="Other", max_weight_kg=1, max_range_km=1))


def test_update_drone_only_touches_given_fields():
    registry = _make_registry(drones=[_make_drone(battery=80.0)])
    drone = registry.update_drone("drone-1", DroneUpdate(max_range_km=45.0))

    assert drone.max_range_km == 45.0
    assert drone.battery_percent == 80.0
    assert drone.model == "Courier Q2"

    with pytest.raises(DroneNotFound):
        registry.update_drone("ghost", DroneUpdate(model="x"))


def test_battery_is_clamped_and_reserved_follows():
    drone = _make_drone(battery=50.0)
    drone.reserved_battery_percent = 40.0

    FleetRegistry.set_battery(drone, 130.0)
    assert drone.battery_percent == 100

    FleetRegistry.set_battery(drone, 20.0)
    assert drone.reserved_battery_percent == 20.0

    FleetRegistry.set_battery(drone, -5.0)
    assert drone.battery_percent == 0
    assert drone.reserved_battery_percent == 0


def test_cancel_delivery_twice_is_rejected():
    registry = _make_registry(deliveries=[_make_delivery("d1")])

    delivery, archived = registry.cancel_delivery("d1")
    assert delivery.status == DeliveryStatus.CANCELLED
    assert archived is None

    with pytest.raises(AlreadyCancelled):
        registry.cancel_delivery("d1")


def test_cancel_delivered_delivery_is_rejected():
    registry = _make_registry(deliveries=[_make_delivery("d1", status=DeliveryStatus.DELIVERED)])
    with pytest.raises(DeliveryNotPending):
        registry.cancel_delivery("d1")


def test_remove_delivery_requires_pending():
    registry = _make_registry(deliveries=[_make_delivery("d1", status=DeliveryStatus.IN_TRANSIT)])
    with pytest.raises(DeliveryNotPending):
        registry.remove_delivery("d1")


def test_remove_delivery_with_live_flight_is_rejected():
    registry = _make_registry(
        drones=[_make_drone()],
        deliveries=[_make_delivery("d1")],
        flights=[_make_flight("f1", "d1")],
    )
    with pytest.raises(HasActiveFlight):
        registry.remove_delivery("d1")
    assert registry.find_delivery("d1") is not None


def test_remove_delivery_archives_cancelled_flights():
    registry = _make_registry(
        drones=[_make_drone()],
        deliveries=[_make_delivery("d1")],
        flights=[_make_flight("f1", "d1", status=FlightStatus.CANCELLED)],
    )
    registry.remove_delivery("d1")

    assert registry.flights == []
    assert registry.flight_history[0].removed_reason == "delivery-deleted:d1"
    assert registry.find_delivery("d1") is None


def test_purge_cancelled_deliveries():
    registry = _make_registry(deliveries=[
        _make_delivery("keep"),
        _make_delivery("drop-1", status=DeliveryStatus.CANCELLED),
        _make_delivery("drop-2", status=DeliveryStatus.CANCELLED),
    ])
    assert registry.purge_cancelled_deliveries() == 2
    assert [d.id for d in registry.deliveries] == ["keep"]
    assert registry.purge_cancelled_deliveries() == 0


def test_removing_drone_requeues_its_delivery():
    registry = _make_registry(drones=[_make_drone("d-a")], deliveries=[_make_delivery("job")])
    flight = Dispatcher().schedule(registry, "job")
    assert registry.find_delivery("job").status == DeliveryStatus.IN_TRANSIT

    registry.remove_drone("d-a")

    assert registry.find_flight(flight.id) is None
    archived = registry.flight_history[-1]
    assert archived.id == flight.id
    assert archived.removed_reason == "drone-deleted:d-a"
    assert registry.find_delivery("job").status == DeliveryStatus.PENDING


def test_release_keeps_drone_busy_with_another_live_flight():
    drone = _make_drone()
    drone.state = DroneState.LOADING
    registry = _make_registry(
        drones=[drone],
        deliveries=[_make_delivery("d1"), _make_delivery("d2")],
        flights=[_make_flight("f1", "d1"), _make_flight("f2", "d2")],
    )

    registry.archive_flight(registry.get_flight("f1"), "manual-delete:f1")
    assert drone.state == DroneState.LOADING

    registry.archive_flight(registry.get_flight("f2"), "manual-delete:f2")
    assert drone.state == DroneState.IDLE


def test_archiving_completed_flight_refunds_battery():
    drone = _make_drone(battery=60.0)
    registry = _make_registry(
        drones=[drone],
        deliveries=[_make_delivery("d1", status=DeliveryStatus.DELIVERED)],
        flights=[_make_flight("f1", "d1", status=FlightStatus.COMPLETED, required_battery=25)],
    )
    registry.archive_flight(registry.get_flight("f1"), "manual-delete:f1")
    assert drone.battery_percent == 85.0
    assert registry.find_delivery("d1").status == DeliveryStatus.DELIVERED


def test_archiving_cancelled_flight_does_not_refund_twice():
    drone = _make_drone(battery=60.0)
    registry = _make_registry(
        drones=[drone],
        deliveries=[_make_delivery("d1")],
        flights=[_make_flight("f1", "d1", status=FlightStatus.CANCELLED, required_battery=25)],
    )
    registry.archive_flight(registry.get_flight("f1"), "manual-delete:f1")
    assert drone.battery_percent == 60.0
    assert registry.find_delivery("d1").status == DeliveryStatus.PENDING


def test_related_entities_detects_dangling_flight():
    registry = _make_registry(
        deliveries=[_make_delivery("d1")],
        flights=[_make_flight("f1", "d1", drone_id="gone")],
    )
    with pytest.raises(IntegrityError):
        registry.related_entities(registry.get_flight("f1"))


def test_order_numbers_are_monotonic():
    registry = _make_registry()
    assert [registry.allocate_order_number() for _ in range(3)] == [1, 2, 3]
    assert registry.document.next_order_number == 4


def test_migration_numbers_legacy_flights():
    registry = _make_registry(
        drones=[_make_drone()],
        deliveries=[_make_delivery("d1"), _make_delivery("d2")],
        flights=[
            _make_flight("f1", "d1", order_number=7),
            _make_flight("f2", "d2"),
        ],
    )

    assert registry.migrate() == 1
    f1, f2 = registry.flights
    assert f2.order_number == 8
    assert f1.display_id == display_id_for(7) == "Service order 7"
    assert f2.display_id == "Service order 8"
    assert registry.document.next_order_number == 9

    # idempotent
    assert registry.migrate() == 0
    assert registry.document.next_order_number == 9


def test_clear_history_keeps_order_counter():
    registry = _make_registry(
        drones=[_make_drone()],
        deliveries=[_make_delivery("d1")],
        flights=[_make_flight("f1", "d1", order_number=1)],
        next_order_number=2,
    )
    registry.archive_flight(registry.get_flight("f1"), "manual-delete:f1")

    assert registry.clear_flight_history() == 1
    assert registry.flight_history == []
    assert registry.document.next_order_number == 2


def test_update_delivery_only_while_pending():
    registry = _make_registry(deliveries=[
        _make_delivery("open"),
        _make_delivery("flying", status=DeliveryStatus.IN_TRANSIT),
    ])

    updated = registry.update_delivery("open", DeliveryUpdate(weight_kg=4.5, priority="média"))
    assert updated.weight_kg == 4.5
    assert updated.priority == Priority.MEDIUM
    assert updated.pickup == PICKUP

    with pytest.raises(DeliveryNotPending):
        registry.update_delivery("flying", DeliveryUpdate(weight_kg=1.0))


def test_update_delivery_ignores_null_fields():
    registry = _make_registry(deliveries=[_make_delivery("open", "high")])

    updated = registry.update_delivery("open", DeliveryUpdate(priority=None, weight_kg=None))

    assert updated.priority == Priority.HIGH
    assert updated.weight_kg == 2.0


def test_obstacles_are_unique_and_removable():
    registry = _make_registry(obstacles=[Obstacle(id="hill", lat=0, lon=0, radius_km=1)])

    with pytest.raises(DuplicateId):
        registry.add_obstacle(Obstacle(id="hill", lat=1, lon=1, radius_km=1))

    assert registry.remove_obstacle("hill").id == "hill"
    with pytest.raises(ObstacleNotFound):
        registry.remove_obstacle("hill")
