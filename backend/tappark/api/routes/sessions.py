"""
Check-in / checkout by QR scan (attendant) or reservation id (owner), and cancel.
The QR code carries only {"qr_key": ...}; either the raw payload or the bare key is accepted.
"""
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tappark.api.deps import get_identity, hub_dependency
from tappark.core.errors import ReservationNotFound, TapparkError, domain_error_to_http
from tappark.core.identity import Identity
from tappark.db.session import get_db
from tappark.realtime.hub import RealtimeHub
from tappark.services.parking_session_service import cancel_reservation, end_session, start_session
from tappark.services.qr import parse_qr_payload

router = APIRouter()


class ScanRequest(BaseModel):
    qr: str | None = Field(None, description='Scanned QR payload, e.g. {"qr_key":"..."}')
    qr_key: str | None = Field(None, max_length=64)
    reservation_id: int | None = Field(None, gt=0)

    def lookup(self) -> dict[str, Any]:
        key = self.qr_key or (parse_qr_payload(self.qr) if self.qr else None)
        if key:
            return {"qr_key": key}
        if self.reservation_id:
            return {"reservation_id": self.reservation_id}
        raise ReservationNotFound("Scan a QR code or give a reservation id")


@router.post("/start")
def start(
    body: ScanRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    hub: RealtimeHub = Depends(hub_dependency),
) -> dict[str, Any]:
    try:
        result = start_session(db, actor=identity, hub=hub, **body.lookup())
    except TapparkError as e:
        raise domain_error_to_http(e) from e
    return {"success": True, "session": result.to_dict()}


@router.post("/end")
def end(
    body: ScanRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    hub: RealtimeHub = Depends(hub_dependency),
) -> dict[str, Any]:
    """Checkout: bills the parked time (at least one minute) from the holder's subscriptions."""
    try:
        result = end_session(db, actor=identity, hub=hub, **body.lookup())
    except TapparkError as e:
        raise domain_error_to_http(e) from e
    return {"success": True, "session": result.to_dict()}


@router.post("/reservations/{reservation_id}/cancel")
def cancel(
    reservation_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    hub: RealtimeHub = Depends(hub_dependency),
) -> dict[str, Any]:
    try:
        result = cancel_reservation(db, actor=identity, reservation_id=reservation_id, hub=hub)
    except TapparkError as e:
        raise domain_error_to_http(e) from e
    return {"success": True, "session": result.to_dict()}
