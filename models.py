"""
Data Models for the Drone Dispatch System
Uses Pydantic for validation and serialization

Attributes are snake_case in Python; the JSON wire format and the persisted
document use camelCase aliases (maxWeightKg, batteryPercent, ...).
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

import config

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model serializing to camelCase and accepting either spelling"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# ENUMS
# ============================================================================

class DroneState(str, Enum):
    """Drone operational states"""
    IDLE = "idle"
    LOADING = "loading"
    IN_FLIGHT = "in_flight"


class DeliveryStatus(str, Enum):
    """Delivery lifecycle; IN_TRANSIT marks a delivery owned by an active flight"""
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# older documents used these spellings for the in-transit marker
LEGACY_DELIVERY_STATUS = {
    "scheduled": DeliveryStatus.IN_TRANSIT.value,
    "in_progress": DeliveryStatus.IN_TRANSIT.value,
}


class FlightStatus(str, Enum):
    """Flight lifecycle states"""
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (FlightStatus.COMPLETED, FlightStatus.CANCELLED)


class Priority(str, Enum):
    """Delivery urgency tiers"""
    LOW = "low"
    NORMAL = "normal"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def weight(self) -> int:
        return config.PRIORITY_WEIGHTS[self.value]

    @classmethod
    def normalize(cls, value) -> "Priority":
        """
        Map a raw priority input onto a canonical tier

        Args:
            value: Priority member, accepted synonym (any case) or None

        Returns:
            Canonical Priority; unknown inputs fall back to the default tier
        """
        if isinstance(value, cls):
            return value
        if value is None or (isinstance(value, str) and not value.strip()):
            return cls(config.DEFAULT_PRIORITY)

        key = str(value).strip().lower()
        canonical = config.PRIORITY_ALIASES.get(key)
        if canonical is None:
            logger.warning("Unrecognized priority %r, using %s", value, config.DEFAULT_PRIORITY)
            return cls(config.DEFAULT_PRIORITY)
        return cls(canonical)


# ============================================================================
# ENTITIES
# ============================================================================

class Coordinate(CamelModel):
    """Geocoded point (lat, lon) in degrees"""
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class Drone(CamelModel):
    """Registered drone and its live state"""
    id: str
    model: str
    max_weight_kg: float = Field(..., gt=0)
    max_range_km: float = Field(..., gt=0)
    battery_percent: float = Field(config.MAX_BATTERY_PERCENT, ge=0, le=100)
    reserved_battery_percent: float = Field(0, ge=0, le=100)
    state: DroneState = DroneState.IDLE
    current_lat: Optional[float] = None
    current_lon: Optional[float] = None

    @model_validator(mode="after")
    def _clamp_reserved(self) -> "Drone":
        if self.reserved_battery_percent > self.battery_percent:
            self.reserved_battery_percent = self.battery_percent
        return self


class Delivery(CamelModel):
    """Delivery job waiting for, or owned by, a flight"""
    id: str
    weight_kg: float = Field(..., gt=0)
    priority: Priority = Priority.NORMAL
    pickup: Coordinate
    dropoff: Coordinate
    status: DeliveryStatus = DeliveryStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("priority", mode="before")
    @classmethod
    def _normalize_priority(cls, value):
        return Priority.normalize(value)

    @field_validator("status", mode="before")
    @classmethod
    def _read_legacy_status(cls, value):
        if isinstance(value, str):
            return LEGACY_DELIVERY_STATUS.get(value, value)
        return value

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # naive timestamps from older documents would not compare with aware ones
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Obstacle(CamelModel):
    """Circular no-fly zone"""
    id: str
    type: Literal["circle"] = "circle"
    lat: float
    lon: float
    radius_km: float = Field(..., gt=0)


class Flight(CamelModel):
    """Assignment of one delivery to one drone"""
    id: str
    delivery_id: str
    drone_id: str
    distance_km: float = Field(..., ge=0)
    required_battery: int = Field(..., ge=0, le=100)
    status: FlightStatus = FlightStatus.SCHEDULED
    scheduled_at: datetime = Field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    progress: float = Field(0.0, ge=0, le=1)
    # optional so legacy documents load; filled in by FleetRegistry.migrate()
    order_number: Optional[int] = None
    display_id: Optional[str] = None
    estimated_duration_sec: Optional[float] = None


class ArchivedFlight(Flight):
    """Flight moved to the append-only history"""
    removed_at: datetime = Field(default_factory=utc_now)
    removed_reason: str


class FleetDocument(CamelModel):
    """Complete persisted state; optional collections default on first load"""
    drones: List[Drone] = Field(default_factory=list)
    deliveries: List[Delivery] = Field(default_factory=list)
    flights: List[Flight] = Field(default_factory=list)
    flight_history: List[ArchivedFlight] = Field(default_factory=list)
    obstacles: List[Obstacle] = Field(default_factory=list)
    next_order_number: int = Field(1, ge=1)


# ============================================================================
# REQUESTS
# ============================================================================

class DroneRegistration(CamelModel):
    """User request to register a drone"""
    id: Optional[str] = None
    model: str = Field(..., min_length=1)
    max_weight_kg: float = Field(..., gt=0)
    max_range_km: float = Field(..., gt=0)
    battery_percent: Optional[float] = Field(None, ge=0, le=100)


class DroneUpdate(CamelModel):
    """Partial drone update; unset fields are left untouched"""
    model: Optional[str] = Field(None, min_length=1)
    max_weight_kg: Optional[float] = Field(None, gt=0)
    max_range_km: Optional[float] = Field(None, gt=0)
    battery_percent: Optional[float] = Field(None, ge=0, le=100)


class DeliveryRequest(CamelModel):
    """User request to create a delivery"""
    id: Optional[str] = None
    weight_kg: float = Field(..., gt=0)
    priority: Optional[str] = None
    pickup: Coordinate
    dropoff: Coordinate


class DeliveryUpdate(CamelModel):
    """Partial delivery update, allowed while the delivery is pending"""
    weight_kg: Optional[float] = Field(None, gt=0)
    priority: Optional[str] = None
    pickup: Optional[Coordinate] = None
    dropoff: Optional[Coordinate] = None


class FlightRequest(CamelModel):
    """Schedule request; no delivery id means automatic queue pick"""
    delivery_id: Optional[str] = None


class FlightUpdate(CamelModel):
    """Manual flight correction"""
    # kept as str so unknown values surface as InvalidStatus
    status: Optional[str] = None
    scheduled_at: Optional[datetime] = None


class ObstacleRequest(CamelModel):
    """User request to create an obstacle"""
    id: str = Field(..., min_length=1)
    type: str = "circle"
    lat: float
    lon: float
    radius_km: float


# ============================================================================
# RESULTS
# ============================================================================

class FlightCandidate(BaseModel):
    """Drone able to fly a delivery, with its battery cost"""
    drone: Drone
    required_battery: int
    residual_battery: float
    feasible: bool = True


class DroneStatusSnapshot(CamelModel):
    """Live drone status for polling clients"""
    id: str
    model: str
    battery_percent: float
    state: DroneState
    current_lat: Optional[float] = None
    current_lon: Optional[float] = None


class TickReport(BaseModel):
    """Outcome of one simulation clock tick"""
    advanced: List[str] = Field(default_factory=list)
    completed: List[str] = Field(default_factory=list)
    recharged: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
