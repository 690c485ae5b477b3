"""
Fleet Router - trucks, KPIs, maintenance alerts, route deviations, telemetry,
delivery stops

Endpoints:
- GET  /trucks                       - fleet snapshot with derived status
- GET  /trucks/{truck_id}            - truck detail
- GET  /stats                        - fleet KPI counters
- GET  /alerts?resolved=             - maintenance alerts
- POST /alerts/{alert_id}/resolve    - resolve an alert
- GET  /deviations?active=           - route deviation episodes
- POST /telemetry                    - ingest one GPS sample
- GET  /deliveries?truck_id=&status= - delivery stops in stop order
- POST /deliveries/{id}/arrive       - driver reached the stop
- POST /deliveries/{id}/complete     - stop delivered (optional signature URL)
- POST /deliveries/{id}/issue        - stop failed (409 once completed/failed)
- POST /deliveries/{id}/delay        - record a delay reason

Store calls are blocking, so handlers are plain functions (FastAPI runs them
in its threadpool).
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from fleet_tracker.exceptions import (
    InvalidInputError,
    InvalidTransitionError,
    RecordNotFoundError,
    StoreError,
)
from fleet_tracker.models import DelayReason, DeliveryStatus, IssueCategory, PositionSample
from timezone_utils import utc_now

logger = logging.getLogger("fleet_tracker.api")

router = APIRouter(prefix="/fleet/api", tags=["Fleet"])


class TelemetryIn(BaseModel):
    """GPS report posted by a tracker"""

    truck_id: str = Field(..., min_length=1)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    speed_kmh: float = Field(..., ge=0)
    timestamp: Optional[datetime] = Field(None, description="Defaults to server time")
    odometer_km: Optional[float] = Field(None, ge=0)
    fuel_used_l: Optional[float] = Field(None, ge=0, description="Cumulative fuel counter")


def _orchestrators(request: Request) -> Dict[str, Any]:
    orchestrators = getattr(request.app.state, "orchestrators", None)
    if orchestrators is None:
        raise HTTPException(status_code=503, detail="Fleet services not initialized")
    return orchestrators


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, RecordNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, InvalidInputError):
        return HTTPException(status_code=422, detail=str(e))
    logger.error(f"Fleet store error: {e}")
    return HTTPException(status_code=503, detail=f"Record store unavailable: {e}")


@router.get("/trucks")
def get_trucks(request: Request):
    """Every truck with its status computed at request time."""
    try:
        trucks = _orchestrators(request)["fleet"].get_fleet_snapshot()
    except StoreError as e:
        raise _http_error(e)
    return {"trucks": trucks, "total": len(trucks), "timestamp": utc_now().isoformat()}


@router.get("/trucks/{truck_id}")
def get_truck(truck_id: str, request: Request):
    try:
        return _orchestrators(request)["fleet"].get_truck_detail(truck_id)
    except (RecordNotFoundError, StoreError) as e:
        raise _http_error(e)


@router.get("/stats")
def get_stats(request: Request):
    try:
        return _orchestrators(request)["fleet"].get_fleet_stats().to_dict()
    except StoreError as e:
        raise _http_error(e)


@router.get("/alerts")
def get_alerts(
    request: Request,
    resolved: Optional[bool] = Query(None, description="true/false; omit for all"),
    truck_id: Optional[str] = Query(None, description="Filter by truck ID"),
):
    try:
        alerts = _orchestrators(request)["fleet"].list_alerts(resolved=resolved, truck_id=truck_id)
    except StoreError as e:
        raise _http_error(e)
    return {"alerts": [a.to_dict() for a in alerts]}


@router.post("/alerts/{alert_id}/resolve")
def resolve_alert(alert_id: str, request: Request):
    try:
        alert = _orchestrators(request)["fleet"].resolve_alert(alert_id)
    except (RecordNotFoundError, StoreError) as e:
        raise _http_error(e)
    return alert.to_dict()


@router.get("/deviations")
def get_deviations(
    request: Request,
    active: Optional[bool] = Query(None, description="true = open episodes only"),
    truck_id: Optional[str] = Query(None, description="Filter by truck ID"),
):
    try:
        episodes = _orchestrators(request)["fleet"].list_deviations(
            active=active, truck_id=truck_id
        )
    except StoreError as e:
        raise _http_error(e)
    return {"deviations": [ep.to_dict() for ep in episodes]}


@router.post("/telemetry")
def post_telemetry(payload: TelemetryIn, request: Request):
    """Run one telemetry cycle for the reporting truck."""
    pipeline = _orchestrators(request)["pipeline"]
    try:
        sample = PositionSample(
            truck_id=payload.truck_id,
            latitude=payload.latitude,
            longitude=payload.longitude,
            speed_kmh=payload.speed_kmh,
            timestamp=payload.timestamp or utc_now(),
            odometer_km=payload.odometer_km,
            fuel_used_l=payload.fuel_used_l,
        )
        result = pipeline.ingest(sample)
    except (InvalidInputError, RecordNotFoundError, StoreError) as e:
        raise _http_error(e)
    return result.to_dict()


# ═══════════════════════════════════════════════════════════════════════════════
# DELIVERY STOPS
# ═══════════════════════════════════════════════════════════════════════════════


class CompletionIn(BaseModel):
    signature_url: Optional[str] = None


class IssueIn(BaseModel):
    category: IssueCategory
    notes: Optional[str] = None


class DelayIn(BaseModel):
    reason: DelayReason


@router.get("/deliveries")
def get_deliveries(
    request: Request,
    truck_id: Optional[str] = Query(None, description="Filter by truck ID"),
    status: Optional[DeliveryStatus] = Query(None, description="pending, in_progress, ..."),
):
    try:
        deliveries = _orchestrators(request)["fleet"].list_deliveries(
            truck_id=truck_id, status=status
        )
    except StoreError as e:
        raise _http_error(e)
    return {"deliveries": [d.to_dict() for d in deliveries]}


@router.post("/deliveries/{delivery_id}/arrive")
def arrive_at_delivery(delivery_id: str, request: Request):
    try:
        delivery = _orchestrators(request)["fleet"].mark_delivery_arrived(delivery_id)
    except (InvalidInputError, RecordNotFoundError, StoreError) as e:
        raise _http_error(e)
    return delivery.to_dict()


@router.post("/deliveries/{delivery_id}/complete")
def complete_delivery(delivery_id: str, request: Request, payload: Optional[CompletionIn] = None):
    signature_url = payload.signature_url if payload else None
    try:
        delivery = _orchestrators(request)["fleet"].complete_delivery(
            delivery_id, signature_url=signature_url
        )
    except (InvalidInputError, RecordNotFoundError, StoreError) as e:
        raise _http_error(e)
    return delivery.to_dict()


@router.post("/deliveries/{delivery_id}/issue")
def report_delivery_issue(delivery_id: str, payload: IssueIn, request: Request):
    try:
        delivery = _orchestrators(request)["fleet"].report_delivery_issue(
            delivery_id, payload.category, notes=payload.notes
        )
    except (InvalidInputError, RecordNotFoundError, StoreError) as e:
        raise _http_error(e)
    return delivery.to_dict()


@router.post("/deliveries/{delivery_id}/delay")
def add_delivery_delay(delivery_id: str, payload: DelayIn, request: Request):
    try:
        delivery = _orchestrators(request)["fleet"].add_delivery_delay(delivery_id, payload.reason)
    except (InvalidInputError, RecordNotFoundError, StoreError) as e:
        raise _http_error(e)
    return delivery.to_dict()
