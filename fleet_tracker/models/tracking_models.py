"""
Fleet Tracking Data Models
==========================

Dataclasses and enums shared by the derived-state engine, the record store
and the API layer.

Truck status is deliberately NOT a field of Truck: it is a projection of the
latest position sample plus context and is recomputed on every read.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from fleet_tracker.exceptions import InvalidInputError
from timezone_utils import ensure_utc


# ══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ══════════════════════════════════════════════════════════════════════════════


class TruckStatus(str, Enum):
    """Derived operating state of a truck"""
    EN_ROUTE = "en_route"
    STOPPED = "stopped"
    AT_CUSTOMER = "at_customer"
    OFFLINE = "offline"


class ServiceType(str, Enum):
    """Maintenance service kinds a rule can track"""
    OIL = "oil"
    TIRES = "tires"
    INSPECTION = "inspection"
    BRAKES = "brakes"
    FILTERS = "filters"
    TRANSMISSION = "transmission"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


class MaintenanceStatus(str, Enum):
    """Outcome of evaluating one maintenance rule"""
    OK = "ok"
    DUE_SOON = "due_soon"
    OVERDUE = "overdue"


class AlertSeverity(str, Enum):
    """Severity tiers of a persisted maintenance alert"""
    DUE_SOON = "due_soon"
    OVERDUE = "overdue"


class AlertAction(str, Enum):
    """What alert reconciliation did for a rule"""
    CREATED = "created"
    ESCALATED = "escalated"
    UNCHANGED = "unchanged"


class EpisodeTransition(str, Enum):
    """What the episode tracker did for a (truck, route) pair"""
    OPENED = "opened"
    UPDATED = "updated"
    CLOSED = "closed"
    UNCHANGED = "unchanged"


class DeliveryStatus(str, Enum):
    """Lifecycle of one delivery stop"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.COMPLETED, DeliveryStatus.FAILED)


class IssueCategory(str, Enum):
    """Why a delivery stop failed"""
    DAMAGE = "damage"
    REFUSED = "refused"
    MISSING_ITEMS = "missing_items"
    OTHER = "other"


class DelayReason(str, Enum):
    """Driver-reported cause of a delay at a stop"""
    TRAFFIC = "traffic"
    QUEUE = "queue"
    LOADING = "loading"
    ROADWORK = "roadwork"
    OTHER = "other"


class ChangeEntity(str, Enum):
    """Entity types the store publishes change notifications for"""
    TRUCKS = "trucks"
    GPS_EVENTS = "gps_events"
    ROUTE_DEVIATIONS = "route_deviation_events"
    MAINTENANCE_ALERTS = "maintenance_alerts"
    DELIVERIES = "deliveries"


# ══════════════════════════════════════════════════════════════════════════════
# VALIDATION HELPERS
# ══════════════════════════════════════════════════════════════════════════════


def _require_id(value: Any, name: str) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidInputError(f"{name} is required")


def _require_number(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInputError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise InvalidInputError(f"{name} must be finite, got {value!r}")
    return float(value)


def validate_coordinates(latitude: Any, longitude: Any) -> None:
    """Raise InvalidInputError unless latitude/longitude are in range."""
    lat = _require_number(latitude, "latitude")
    lng = _require_number(longitude, "longitude")
    if not -90.0 <= lat <= 90.0:
        raise InvalidInputError(f"latitude out of range: {lat}")
    if not -180.0 <= lng <= 180.0:
        raise InvalidInputError(f"longitude out of range: {lng}")


def _non_negative(value: Any, name: str) -> None:
    if _require_number(value, name) < 0:
        raise InvalidInputError(f"{name} must be >= 0, got {value}")


def _positive(value: Any, name: str) -> None:
    if _require_number(value, name) <= 0:
        raise InvalidInputError(f"{name} must be > 0, got {value}")


def _iso(value: Optional[Union[date, datetime]]) -> Optional[str]:
    return value.isoformat() if value is not None else None


# ══════════════════════════════════════════════════════════════════════════════
# GEOGRAPHY
# ══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Position:
    """A WGS84 point in decimal degrees"""
    latitude: float
    longitude: float

    def __post_init__(self):
        validate_coordinates(self.latitude, self.longitude)

    def to_dict(self) -> Dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass(frozen=True)
class PositionSample:
    """
    One GPS report from a truck. Immutable once recorded.

    odometer_km is optional: trackers that report an odometer reading
    override distance accrual from consecutive positions. fuel_used_l is the
    tracker's cumulative fuel counter, when it has one.
    """
    truck_id: str
    latitude: float
    longitude: float
    speed_kmh: float
    timestamp: datetime
    odometer_km: Optional[float] = None
    fuel_used_l: Optional[float] = None

    def __post_init__(self):
        _require_id(self.truck_id, "truck_id")
        validate_coordinates(self.latitude, self.longitude)
        _non_negative(self.speed_kmh, "speed_kmh")
        if not isinstance(self.timestamp, datetime):
            raise InvalidInputError("timestamp must be a datetime")
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))
        if self.odometer_km is not None:
            _non_negative(self.odometer_km, "odometer_km")
        if self.fuel_used_l is not None:
            _non_negative(self.fuel_used_l, "fuel_used_l")

    @property
    def position(self) -> Position:
        return Position(self.latitude, self.longitude)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "truck_id": self.truck_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "speed_kmh": self.speed_kmh,
            "timestamp": _iso(self.timestamp),
            "odometer_km": self.odometer_km,
            "fuel_used_l": self.fuel_used_l,
        }


@dataclass
class Customer:
    """Customer location with its circular geofence"""
    id: str
    name: str
    latitude: float
    longitude: float
    geofence_radius_m: float = 100.0
    address: Optional[str] = None

    def __post_init__(self):
        _require_id(self.id, "customer id")
        validate_coordinates(self.latitude, self.longitude)
        _non_negative(self.geofence_radius_m, "geofence_radius_m")

    @property
    def center(self) -> Position:
        return Position(self.latitude, self.longitude)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "geofence_radius_m": self.geofence_radius_m,
            "address": self.address,
        }


# ══════════════════════════════════════════════════════════════════════════════
# FLEET
# ══════════════════════════════════════════════════════════════════════════════


@dataclass
class Truck:
    """Fleet registry entry. Latest-position fields are null until first report."""
    id: str
    name: str
    plate: str = ""
    driver_id: Optional[str] = None
    last_latitude: Optional[float] = None
    last_longitude: Optional[float] = None
    last_speed_kmh: Optional[float] = None
    last_update: Optional[datetime] = None
    odometer_km: float = 0.0
    fuel_used_l: float = 0.0

    def __post_init__(self):
        _require_id(self.id, "truck id")
        _non_negative(self.odometer_km, "odometer_km")
        _non_negative(self.fuel_used_l, "fuel_used_l")
        if self.last_latitude is not None and self.last_longitude is not None:
            validate_coordinates(self.last_latitude, self.last_longitude)

    @property
    def position(self) -> Optional[Position]:
        if self.last_latitude is None or self.last_longitude is None:
            return None
        return Position(self.last_latitude, self.last_longitude)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "plate": self.plate,
            "driver_id": self.driver_id,
            "last_latitude": self.last_latitude,
            "last_longitude": self.last_longitude,
            "last_speed_kmh": self.last_speed_kmh,
            "last_update": _iso(self.last_update),
            "odometer_km": round(self.odometer_km, 3),
            "fuel_used_l": self.fuel_used_l,
        }


@dataclass
class Checkpoint:
    """One waypoint of a planned route"""
    latitude: float
    longitude: float
    order: int
    customer_id: Optional[str] = None

    def __post_init__(self):
        validate_coordinates(self.latitude, self.longitude)

    @property
    def position(self) -> Position:
        return Position(self.latitude, self.longitude)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "order": self.order,
            "customer_id": self.customer_id,
        }


@dataclass
class PlannedRoute:
    """A truck's planned path for one date. Checkpoints are kept sorted by order."""
    id: str
    truck_id: str
    route_date: date
    checkpoints: List[Checkpoint] = field(default_factory=list)

    def __post_init__(self):
        _require_id(self.id, "route id")
        _require_id(self.truck_id, "truck_id")
        self.checkpoints = sorted(self.checkpoints, key=lambda cp: cp.order)

    @property
    def customer_ids(self) -> List[str]:
        return [cp.customer_id for cp in self.checkpoints if cp.customer_id]

    @property
    def path(self) -> List[Position]:
        return [cp.position for cp in self.checkpoints]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "truck_id": self.truck_id,
            "date": _iso(self.route_date),
            "checkpoints": [cp.to_dict() for cp in self.checkpoints],
        }


@dataclass
class DeviationEpisode:
    """Interval during which a truck stayed outside its route threshold"""
    id: str
    truck_id: str
    route_id: str
    start_ts: datetime
    max_distance_m: float
    end_ts: Optional[datetime] = None
    notes: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.end_ts is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "truck_id": self.truck_id,
            "route_id": self.route_id,
            "start_ts": _iso(self.start_ts),
            "end_ts": _iso(self.end_ts),
            "max_distance_m": round(self.max_distance_m, 1),
            "is_open": self.is_open,
            "notes": self.notes,
        }


# ══════════════════════════════════════════════════════════════════════════════
# DELIVERIES
# ══════════════════════════════════════════════════════════════════════════════


@dataclass
class Delivery:
    """
    One stop of a route where the driver hands over goods.

    completed_ts is set when the stop reaches a terminal status (completed or
    failed). A failed stop always carries an issue_category.
    """
    id: str
    route_id: str
    customer_id: str
    truck_id: str
    stop_order: int
    created_ts: datetime
    status: DeliveryStatus = DeliveryStatus.PENDING
    driver_id: Optional[str] = None
    completed_ts: Optional[datetime] = None
    signature_url: Optional[str] = None
    issue_category: Optional[IssueCategory] = None
    issue_notes: Optional[str] = None
    delay_reason: Optional[DelayReason] = None

    def __post_init__(self):
        _require_id(self.id, "delivery id")
        _require_id(self.route_id, "route_id")
        _require_id(self.customer_id, "customer_id")
        _require_id(self.truck_id, "truck_id")
        _non_negative(self.stop_order, "stop_order")
        if not isinstance(self.created_ts, datetime):
            raise InvalidInputError("created_ts must be a datetime")
        self.created_ts = ensure_utc(self.created_ts)
        try:
            self.status = DeliveryStatus(self.status)
            if self.issue_category is not None:
                self.issue_category = IssueCategory(self.issue_category)
            if self.delay_reason is not None:
                self.delay_reason = DelayReason(self.delay_reason)
        except ValueError as e:
            raise InvalidInputError(str(e))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "route_id": self.route_id,
            "customer_id": self.customer_id,
            "truck_id": self.truck_id,
            "driver_id": self.driver_id,
            "status": self.status.value,
            "stop_order": self.stop_order,
            "created_ts": _iso(self.created_ts),
            "completed_ts": _iso(self.completed_ts),
            "signature_url": self.signature_url,
            "issue_category": self.issue_category.value if self.issue_category else None,
            "issue_notes": self.issue_notes,
            "delay_reason": self.delay_reason.value if self.delay_reason else None,
        }


# ══════════════════════════════════════════════════════════════════════════════
# MAINTENANCE
# ══════════════════════════════════════════════════════════════════════════════


@dataclass
class MaintenanceRule:
    """Service interval policy for one truck and one service type"""
    id: str
    truck_id: str
    service_type: ServiceType
    interval_km: float
    interval_days: int
    last_service_km: float
    last_service_date: Union[date, datetime]

    def __post_init__(self):
        _require_id(self.id, "rule id")
        _require_id(self.truck_id, "truck_id")
        try:
            self.service_type = ServiceType(self.service_type)
        except ValueError:
            raise InvalidInputError(f"Unknown service type: {self.service_type!r}")
        _positive(self.interval_km, "interval_km")
        _positive(self.interval_days, "interval_days")
        _non_negative(self.last_service_km, "last_service_km")
        if not isinstance(self.last_service_date, (date, datetime)):
            raise InvalidInputError("last_service_date must be a date")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "truck_id": self.truck_id,
            "service_type": self.service_type.value,
            "interval_km": self.interval_km,
            "interval_days": self.interval_days,
            "last_service_km": self.last_service_km,
            "last_service_date": _iso(self.last_service_date),
        }


@dataclass
class MaintenanceAlert:
    """Persisted maintenance alert. At most one unresolved per rule."""
    id: str
    truck_id: str
    rule_id: str
    severity: AlertSeverity
    message: str
    created_ts: datetime
    resolved_ts: Optional[datetime] = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_ts is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "truck_id": self.truck_id,
            "rule_id": self.rule_id,
            "severity": AlertSeverity(self.severity).value,
            "message": self.message,
            "created_ts": _iso(self.created_ts),
            "resolved_ts": _iso(self.resolved_ts),
        }


# ══════════════════════════════════════════════════════════════════════════════
# EVALUATION RESULTS
# ══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class DeviationResult:
    is_deviating: bool
    distance_from_route_m: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_deviating": self.is_deviating,
            "distance_from_route_m": round(self.distance_from_route_m, 1),
        }


@dataclass(frozen=True)
class MaintenanceEvaluation:
    status: MaintenanceStatus
    km_remaining: float
    days_remaining: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "km_remaining": round(self.km_remaining, 1),
            "days_remaining": self.days_remaining,
        }


@dataclass(frozen=True)
class EpisodePlan:
    """Decision for one (truck, route) pair, applied atomically by the store"""
    transition: EpisodeTransition
    distance_m: float = 0.0


@dataclass(frozen=True)
class AlertPlan:
    """Decision for one rule, applied atomically by the store"""
    action: AlertAction
    severity: Optional[AlertSeverity] = None
    message: Optional[str] = None


@dataclass
class FleetStats:
    """Dashboard KPI counters"""
    total_trucks: int = 0
    en_route: int = 0
    stopped: int = 0
    at_customer: int = 0
    offline: int = 0
    maintenance_alerts: int = 0
    active_deviations: int = 0
    pending_deliveries: int = 0
    completed_today: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_trucks": self.total_trucks,
            "en_route": self.en_route,
            "stopped": self.stopped,
            "at_customer": self.at_customer,
            "offline": self.offline,
            "maintenance_alerts": self.maintenance_alerts,
            "active_deviations": self.active_deviations,
            "pending_deliveries": self.pending_deliveries,
            "completed_today": self.completed_today,
        }


@dataclass(frozen=True)
class ChangeEvent:
    """Published by the store after each committed write"""
    entity: ChangeEntity
    action: str  # insert | update
    record_id: str
