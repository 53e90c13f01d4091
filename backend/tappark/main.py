"""
FastAPI app entrypoint.

Parking reservations, capacity sections, hour billing, realtime updates. The grace-period
sweeper runs on a BackgroundScheduler interval job plus one tick shortly after startup.
"""
import logging
import threading
import time
from contextlib import asynccontextmanager
from pathlib import Path

from apscheduler.schedulers.background import BackgroundScheduler
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Load .env from backend/ before any app code
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from tappark.api.routes import admin, billing, parking, realtime, sessions
from tappark.config import settings
from tappark.core.constants import GRACE_PERIOD_JOB_ID
from tappark.core.errors import InvariantViolation, TapparkError, error_body
from tappark.realtime.hub import get_hub
from tappark.scheduler.grace_period_job import get_grace_job_heartbeat, run_grace_period_job

logger = logging.getLogger(__name__)

_scheduler = BackgroundScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    get_hub().set_reservation_authorizer(realtime.authorize_reservation_room)

    if settings.sweeper_enabled:
        _scheduler.add_job(
            run_grace_period_job,
            "interval",
            seconds=settings.grace_check_interval_ms / 1000.0,
            id=GRACE_PERIOD_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        _scheduler.start()
        app.state.scheduler = _scheduler
        logger.info(
            "Grace period sweeper: grace=%s min, every %s ms, first run after %s ms, batch=%s",
            settings.grace_period_minutes,
            settings.grace_check_interval_ms,
            settings.grace_check_initial_delay_ms,
            settings.sweep_batch_limit,
        )

        def startup_background():
            # One sweep shortly after startup so reservations that expired while we were down go first.
            time.sleep(settings.grace_check_initial_delay_ms / 1000.0)
            try:
                run_grace_period_job()
            except Exception as e:
                logger.warning("Grace period sweep on startup failed: %s", e, exc_info=True)

        threading.Thread(target=startup_background, daemon=True).start()
    else:
        logger.info("Grace period sweeper disabled (SWEEPER_ENABLED=false)")

    logger.info("Backend ready")
    yield
    if _scheduler.running:
        _scheduler.shutdown(wait=False)
    get_hub().close()


app = FastAPI(title="TapPark", version="0.1.0", lifespan=lifespan)

# CORS: dev origins + optional CORS_ORIGINS env (comma-separated) for the deployed app
_cors_origins = [
    "http://localhost:8081",
    "http://127.0.0.1:8081",
    "http://localhost:19006",
    "http://127.0.0.1:19006",
]
if settings.cors_origins:
    _cors_origins.extend(o.strip() for o in settings.cors_origins.split(",") if o.strip())
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TapparkError)
async def tappark_error_handler(request: Request, exc: TapparkError):
    if isinstance(exc, InvariantViolation):
        logger.error("Invariant violation on %s: %s %s", request.url.path, exc.message, exc.data)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc))


app.include_router(parking.router, prefix="/parking", tags=["parking"])
app.include_router(sessions.router, prefix="/sessions", tags=["sessions"])
app.include_router(billing.router, prefix="/billing", tags=["billing"])
app.include_router(admin.router, prefix="/admin", tags=["admin"])
app.include_router(realtime.router, prefix="/realtime", tags=["realtime"])


@app.get("/", include_in_schema=False)
def root():
    return {"message": "TapPark API", "docs": "/docs", "health": "/health"}


@app.get("/health")
def health() -> dict:
    return {
        "status": "ok",
        "sweeper": get_grace_job_heartbeat(),
        "realtime": get_hub().stats(),
    }
