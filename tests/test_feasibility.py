from feasibility import evaluate, is_structurally_possible, required_battery
from errors import NoCarrierCapacity, NoFeasibleDrone, RouteBlocked
from models import Coordinate, Delivery, Drone, Obstacle
import config
import geometry
import pytest


PICKUP = (-22.90, -43.20)
DROPOFF = (-22.91, -43.21)


def _make_drone(drone_id: str, max_weight_kg: float = 10.0, max_range_km: float = 100.0,
                battery: float = 100.0, reserved: float = 0.0) -> Drone:
    return Drone(
        id=drone_id,
        model="Courier Q2",
        max_weight_kg=max_weight_kg,
        max_range_km=max_range_km,
        battery_percent=battery,
        reserved_battery_percent=reserved,
    )


def _make_delivery(weight_kg: float = 3.0, pickup=PICKUP, dropoff=DROPOFF) -> Delivery:
    return Delivery(
        id="delivery-1",
        weight_kg=weight_kg,
        pickup=Coordinate(lat=pickup[0], lon=pickup[1]),
        dropoff=Coordinate(lat=dropoff[0], lon=dropoff[1]),
    )


def test_required_battery_applies_safety_margin_and_rounds_up():
    # 7.3 / 20 = 36.5% naive, 43.8% with margin
    assert required_battery(7.3, 20.0) == 44


def test_required_battery_is_capped_at_full_charge():
    assert required_battery(30.0, 20.0) == 100


def test_evaluate_ranks_by_residual_battery():
    drones = [
        _make_drone("low", battery=40.0),
        _make_drone("high", battery=90.0),
        _make_drone("mid", battery=70.0),
    ]
    ranked = evaluate(_make_delivery(), drones, [])
    assert [c.drone.id for c in ranked] == ["high", "mid", "low"]
    assert all(c.feasible for c in ranked)
    assert ranked[0].residual_battery == 90.0 - ranked[0].required_battery


def test_evaluate_keeps_fleet_order_on_ties():
    drones = [_make_drone("first"), _make_drone("second"), _make_drone("third")]
    ranked = evaluate(_make_delivery(), drones, [])
    assert [c.drone.id for c in ranked] == ["first", "second", "third"]


def test_evaluate_prefers_longer_range_when_battery_is_equal():
    # same charge, but the longer range drone spends less of it
    drones = [_make_drone("short", max_range_km=10.0), _make_drone("long", max_range_km=200.0)]
    ranked = evaluate(_make_delivery(), drones, [])
    assert ranked[0].drone.id == "long"
    assert ranked[0].required_battery < ranked[1].required_battery


def test_evaluate_without_carrier_capacity():
    with pytest.raises(NoCarrierCapacity):
        evaluate(_make_delivery(weight_kg=25.0), [_make_drone("small", max_weight_kg=5.0)], [])


def test_evaluate_out_of_range_reports_range_reason():
    far = _make_delivery(dropoff=(-23.90, -43.20))
    with pytest.raises(NoFeasibleDrone) as excinfo:
        evaluate(far, [_make_drone("d1", max_range_km=100.0)], [])
    assert excinfo.value.details["reason"] == "range"


def test_evaluate_low_battery_reports_battery_reason():
    with pytest.raises(NoFeasibleDrone) as excinfo:
        evaluate(_make_delivery(), [_make_drone("d1", battery=1.0)], [])
    assert excinfo.value.details["reason"] == "battery"


def test_evaluate_filters_infeasible_drones_out():
    drones = [_make_drone("empty", battery=0.0), _make_drone("full", battery=100.0)]
    ranked = evaluate(_make_delivery(), drones, [])
    assert [c.drone.id for c in ranked] == ["full"]


def test_route_block_wins_regardless_of_drone_availability():
    obstacle = Obstacle(id="stadium", lat=-22.905, lon=-43.205, radius_km=0.3)

    with pytest.raises(RouteBlocked) as excinfo:
        evaluate(_make_delivery(), [_make_drone("d1")], [obstacle])
    assert excinfo.value.details["obstacleId"] == "stadium"

    with pytest.raises(RouteBlocked):
        evaluate(_make_delivery(), [], [obstacle])


def test_reserved_battery_is_ignored_by_default(monkeypatch):
    delivery = _make_delivery()
    cost = required_battery(geometry.distance_km(delivery.pickup, delivery.dropoff), 100.0)
    drone = _make_drone("d1", battery=float(cost), reserved=float(cost))

    assert evaluate(delivery, [drone], [])[0].drone.id == "d1"

    monkeypatch.setattr(config, "SUBTRACT_RESERVED_BATTERY", True)
    with pytest.raises(NoFeasibleDrone):
        evaluate(delivery, [drone], [])


def test_structural_precheck_ignores_battery_but_not_range():
    delivery = _make_delivery()
    assert is_structurally_possible(delivery, [_make_drone("flat", battery=0.0)])
    assert not is_structurally_possible(delivery, [_make_drone("tiny", max_range_km=0.5)])
    assert not is_structurally_possible(delivery, [_make_drone("weak", max_weight_kg=1.0)])
