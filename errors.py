"""
Error Taxonomy for the Drone Dispatch System
Every domain failure is a DispatchError carrying a kind, a stable code and the
HTTP status the API layer maps it to
"""

from typing import Any, Dict


class DispatchError(Exception):
    """Base class for all domain errors"""

    kind = "error"
    code = "error"
    status_code = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        payload = {"ok": False, "error": self.message, "code": self.code, "kind": self.kind}
        payload.update(self.details)
        return payload


# ============================================================================
# KINDS
# ============================================================================

class ValidationFailed(DispatchError):
    kind = "validation"
    code = "validation_failed"
    status_code = 400


class NotFoundError(DispatchError):
    kind = "not_found"
    code = "not_found"
    status_code = 404


class ConflictError(DispatchError):
    kind = "conflict"
    code = "conflict"
    status_code = 409


class InfeasibleError(DispatchError):
    kind = "infeasible"
    code = "infeasible"
    status_code = 422


class IntegrityError(DispatchError):
    """A flight references a drone or delivery that no longer exists"""
    kind = "integrity"
    code = "integrity"
    status_code = 500


# ============================================================================
# VALIDATION
# ============================================================================

class InvalidStatus(ValidationFailed):
    code = "invalid_status"


class InvalidShape(ValidationFailed):
    code = "invalid_shape"


# ============================================================================
# NOT FOUND
# ============================================================================

class DroneNotFound(NotFoundError):
    code = "drone_not_found"


class DeliveryNotFound(NotFoundError):
    code = "delivery_not_found"


class FlightNotFound(NotFoundError):
    code = "flight_not_found"


class ObstacleNotFound(NotFoundError):
    code = "obstacle_not_found"


# ============================================================================
# CONFLICT / PRECONDITION
# ============================================================================

class DeliveryNotPending(ConflictError):
    code = "delivery_not_pending"


class DuplicateId(ConflictError):
    code = "duplicate_id"


class HasActiveFlight(ConflictError):
    code = "has_active_flight"


class AlreadyCancelled(ConflictError):
    code = "already_cancelled"


class InvalidTransition(ConflictError):
    code = "invalid_transition"


# ============================================================================
# INFEASIBILITY
# ============================================================================

class NoCarrierCapacity(InfeasibleError):
    code = "no_carrier_capacity"


class NoFeasibleDrone(InfeasibleError):
    code = "no_feasible_drone"


class RouteBlocked(InfeasibleError):
    code = "route_blocked"


class NoSchedulableDelivery(InfeasibleError):
    code = "no_schedulable_delivery"
