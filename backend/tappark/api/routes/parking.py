"""
Parking: capacity views, booking (spot or section slot), attendant and guest assignment,
release, and manual spot / section availability.
"""
import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tappark.api.deps import get_identity, hub_dependency, require_privileged
from tappark.core.errors import TapparkError, domain_error_to_http
from tappark.core.identity import Identity
from tappark.db.session import get_db
from tappark.realtime.hub import RealtimeHub
from tappark.services import capacity_service
from tappark.services.capacity_service import GuestDetails, StatusTarget
from tappark.services.user_log_service import get_user_logs

router = APIRouter()
logger = logging.getLogger(__name__)


# --- Read models ---


@router.get("/areas/{area_id}/capacity")
def area_capacity(
    area_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
) -> dict[str, Any]:
    """Per-section counters for an area and the caller's own reservation there, if any."""
    try:
        return capacity_service.get_capacity_status(db, area_id, identity.user_id)
    except TapparkError as e:
        raise domain_error_to_http(e) from e


@router.get("/sections/{section_id}/spots")
def section_spots(
    section_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
) -> dict[str, Any]:
    try:
        return capacity_service.list_section_spots(db, section_id, identity.user_id)
    except TapparkError as e:
        raise domain_error_to_http(e) from e


# --- Booking ---


class SpotReservationRequest(BaseModel):
    spot_id: int = Field(..., gt=0)
    vehicle_id: int = Field(..., gt=0)


class SectionReservationRequest(BaseModel):
    vehicle_id: int = Field(..., gt=0)
    spot_number: str | None = Field(None, max_length=100, description="Virtual spot; lowest free when omitted")


@router.post("/reservations")
def reserve_spot(
    body: SpotReservationRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    hub: RealtimeHub = Depends(hub_dependency),
) -> dict[str, Any]:
    try:
        receipt = capacity_service.reserve_individual_spot(
            db, spot_id=body.spot_id, user_id=identity.user_id, vehicle_id=body.vehicle_id, hub=hub
        )
    except TapparkError as e:
        raise domain_error_to_http(e) from e
    return {"success": True, "reservation": receipt.to_dict()}


@router.post("/sections/{section_id}/reserve")
def reserve_section(
    section_id: int,
    body: SectionReservationRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    hub: RealtimeHub = Depends(hub_dependency),
) -> dict[str, Any]:
    try:
        receipt = capacity_service.reserve_section_slot(
            db,
            section_id=section_id,
            user_id=identity.user_id,
            vehicle_id=body.vehicle_id,
            spot_number=body.spot_number,
            hub=hub,
        )
    except TapparkError as e:
        raise domain_error_to_http(e) from e
    return {"success": True, "reservation": receipt.to_dict()}


# --- Attendant assignment ---


class AssignRequest(BaseModel):
    user_id: int = Field(..., gt=0)
    vehicle_id: int = Field(..., gt=0)


@router.post("/sections/{section_id}/spots/{spot_number}/assign")
def assign_spot(
    section_id: int,
    spot_number: str,
    body: AssignRequest,
    db: Session = Depends(get_db),
    actor: Identity = Depends(require_privileged),
    hub: RealtimeHub = Depends(hub_dependency),
) -> dict[str, Any]:
    try:
        receipt = capacity_service.assign_motorcycle_spot(
            db,
            actor=actor,
            section_id=section_id,
            spot_number=spot_number,
            user_id=body.user_id,
            vehicle_id=body.vehicle_id,
            hub=hub,
        )
    except TapparkError as e:
        raise domain_error_to_http(e) from e
    return {"success": True, "reservation": receipt.to_dict()}


class GuestAssignRequest(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    plate_number: str = Field(..., min_length=1, max_length=20)
    vehicle_type: str = Field(..., min_length=1, max_length=32)
    brand: str | None = Field(None, max_length=50)
    color: str | None = Field(None, max_length=30)
    spot_id: int | None = Field(None, gt=0)
    section_id: int | None = Field(None, gt=0)
    spot_number: str | None = Field(None, max_length=100)


@router.post("/guest-assign")
def guest_assign(
    body: GuestAssignRequest,
    db: Session = Depends(get_db),
    actor: Identity = Depends(require_privileged),
    hub: RealtimeHub = Depends(hub_dependency),
) -> dict[str, Any]:
    """Park a walk-in guest: creates the guest user/vehicle and an already-active reservation."""
    guest = GuestDetails(
        first_name=body.first_name,
        last_name=body.last_name,
        plate_number=body.plate_number,
        vehicle_type=body.vehicle_type,
        brand=body.brand,
        color=body.color,
    )
    try:
        receipt = capacity_service.assign_spot_guest(
            db,
            actor=actor,
            guest=guest,
            spot_id=body.spot_id,
            section_id=body.section_id,
            spot_number=body.spot_number,
            hub=hub,
        )
    except TapparkError as e:
        raise domain_error_to_http(e) from e
    return {"success": True, "reservation": receipt.to_dict()}


# --- Release ---


class ReleaseRequest(BaseModel):
    spot_id: int | None = Field(None, gt=0)
    section_id: int | None = Field(None, gt=0)
    spot_number: str | None = Field(None, max_length=100)


@router.post("/release")
def release(
    body: ReleaseRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    hub: RealtimeHub = Depends(hub_dependency),
) -> dict[str, Any]:
    """Release whatever holds the spot. Releasing a free spot succeeds with released=false."""
    try:
        result = capacity_service.release_spot(
            db,
            actor=identity,
            spot_id=body.spot_id,
            section_id=body.section_id,
            spot_number=body.spot_number,
            hub=hub,
        )
    except TapparkError as e:
        raise domain_error_to_http(e) from e
    return {
        "success": True,
        "released": result.released,
        "reservation_id": result.reservation_id,
        "booking_status": result.booking_status,
        "charged_hours": round(result.charged_hours, 4),
    }


# --- Manual availability ---


class StatusRequest(BaseModel):
    status: Literal["available", "unavailable"]
    reason: str | None = Field(None, max_length=256)


def _apply_status(db: Session, actor: Identity, target: StatusTarget, body: StatusRequest, hub) -> dict[str, Any]:
    try:
        if body.status == "unavailable":
            change = capacity_service.set_unavailable(db, actor=actor, target=target, reason=body.reason, hub=hub)
        else:
            change = capacity_service.set_available(db, actor=actor, target=target, hub=hub)
    except TapparkError as e:
        raise domain_error_to_http(e) from e
    return {"success": True, "changed": change.changed, "status": change.status, "target": change.target}


@router.put("/spots/{spot_id}/status")
def spot_status(
    spot_id: int,
    body: StatusRequest,
    db: Session = Depends(get_db),
    actor: Identity = Depends(require_privileged),
    hub: RealtimeHub = Depends(hub_dependency),
) -> dict[str, Any]:
    return _apply_status(db, actor, StatusTarget(spot_id=spot_id), body, hub)


@router.put("/sections/{section_id}/spots/{spot_number}/status")
def virtual_spot_status(
    section_id: int,
    spot_number: str,
    body: StatusRequest,
    db: Session = Depends(get_db),
    actor: Identity = Depends(require_privileged),
    hub: RealtimeHub = Depends(hub_dependency),
) -> dict[str, Any]:
    return _apply_status(db, actor, StatusTarget(section_id=section_id, spot_number=spot_number), body, hub)


@router.put("/sections/{section_id}/status")
def section_status(
    section_id: int,
    body: StatusRequest,
    db: Session = Depends(get_db),
    actor: Identity = Depends(require_privileged),
    hub: RealtimeHub = Depends(hub_dependency),
) -> dict[str, Any]:
    return _apply_status(db, actor, StatusTarget(section_id=section_id), body, hub)


@router.get("/logs")
def my_logs(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
) -> dict[str, Any]:
    return {"logs": get_user_logs(db, identity.user_id, limit)}
