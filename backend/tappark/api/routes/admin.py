"""
Operations: counter reconciliation, sweeper heartbeat, and a manual sweep trigger.
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tappark.api.deps import require_privileged
from tappark.core.errors import TapparkError, domain_error_to_http
from tappark.core.identity import Identity
from tappark.db.session import get_db
from tappark.realtime.hub import get_hub
from tappark.scheduler.grace_period_job import get_grace_job_heartbeat, get_sweeper
from tappark.services.reconcile_service import reconcile_all

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/reconcile")
def reconcile(
    fix: bool = Query(True, description="Write corrections; false only reports drift"),
    db: Session = Depends(get_db),
    actor: Identity = Depends(require_privileged),
) -> dict[str, Any]:
    logger.info("Reconcile requested by user %s (fix=%s)", actor.user_id, fix)
    try:
        return reconcile_all(db, fix=fix).to_dict()
    except TapparkError as e:
        raise domain_error_to_http(e) from e


@router.get("/sweeper")
def sweeper_status(_actor: Identity = Depends(require_privileged)) -> dict[str, Any]:
    return get_grace_job_heartbeat()


@router.post("/sweeper/run")
def run_sweeper(_actor: Identity = Depends(require_privileged)) -> dict[str, Any]:
    """Run one sweep now. Returns skipped=true if a scheduled sweep is in progress."""
    result = get_sweeper().run_sweep()
    return {
        "skipped": result.skipped,
        "found": result.found,
        "expired": result.expired,
        "failed": result.failed,
        "expired_ids": result.expired_ids,
    }


@router.get("/realtime")
def realtime_stats(_actor: Identity = Depends(require_privileged)) -> dict[str, Any]:
    return get_hub().stats()
