"""
Hour balance: the caller's subscriptions, outstanding penalties and booking eligibility, plus the
credit endpoint the payment capture service calls after a successful purchase.
"""
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tappark.api.deps import get_identity, require_privileged
from tappark.core.errors import TapparkError, domain_error_to_http
from tappark.core.identity import Identity
from tappark.db.session import get_db
from tappark.services.billing_service import add_subscription, get_balance_summary, get_booking_eligibility

router = APIRouter()


@router.get("/balance")
def balance(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
) -> dict[str, Any]:
    try:
        out = get_balance_summary(db, identity.user_id)
    except TapparkError as e:
        raise domain_error_to_http(e) from e
    eligibility = get_booking_eligibility(db, identity.user_id)
    out["can_book"] = eligibility.allowed
    out["blocked_reason"] = eligibility.reason
    return out


class CreditRequest(BaseModel):
    hours: float = Field(..., gt=0, le=10000)


@router.post("/users/{user_id}/subscriptions")
def credit_hours(
    user_id: int,
    body: CreditRequest,
    db: Session = Depends(get_db),
    _actor: Identity = Depends(require_privileged),
) -> dict[str, Any]:
    """Credit purchased hours. Outstanding penalties are settled first, oldest first."""
    try:
        result = add_subscription(db, user_id, body.hours)
    except TapparkError as e:
        raise domain_error_to_http(e) from e
    return {
        "success": True,
        "subscription_id": result.subscription_id,
        "hours_purchased": result.hours_purchased,
        "penalty_applied_hours": round(result.penalty_applied_hours, 4),
        "hours_credited": round(result.hours_credited, 4),
        "outstanding_penalty_hours": round(result.outstanding_penalty_hours, 4),
        "new_balance": round(result.new_balance, 4),
    }
