"""
Realtime WebSocket gateway: /realtime/ws?token=<jwt>&session_id=<resume id>.

On connect the server sends {"type": "session", "sessionId", "rooms"}; the socket is already in
its user room. Client messages (JSON):
  {"action": "subscribe", "areaId": 3, "reservationId": 42}
  {"action": "unsubscribe", "areaId": 3}
  {"action": "ping"}                       -> {"type": "pong"}
Silence for REALTIME_PING_TIMEOUT_SECONDS closes the socket; reconnecting with the same
session_id inside the resume window gets the missed events.
"""
import asyncio
import json
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from tappark.api.deps import InvalidToken, decode_token
from tappark.config import settings
from tappark.core.identity import Identity
from tappark.db.session import SessionLocal
from tappark.models.reservation import Reservation
from tappark.realtime.hub import get_hub

router = APIRouter()
logger = logging.getLogger(__name__)

CLOSE_POLICY_VIOLATION = 1008
CLOSE_PING_TIMEOUT = 4408


def authorize_reservation_room(identity: Identity, reservation_id: int) -> bool:
    """Reservation rooms are for the reservation's holder (privileged roles are let in by the hub)."""
    db = SessionLocal()
    try:
        owner = db.query(Reservation.user_id).filter(Reservation.id == reservation_id).scalar()
        return owner is not None and owner == identity.user_id
    finally:
        db.close()


@router.websocket("/ws")
async def realtime_socket(
    websocket: WebSocket,
    token: str | None = Query(None),
    session_id: str | None = Query(None),
):
    try:
        identity = decode_token(token)
    except InvalidToken as e:
        logger.debug("Realtime connect rejected: %s", e)
        await websocket.close(code=CLOSE_POLICY_VIOLATION)
        return

    await websocket.accept()
    hub = get_hub()
    loop = asyncio.get_running_loop()
    outbox: asyncio.Queue = asyncio.Queue()

    def deliver(payload: dict) -> None:
        # Called from request / scheduler threads; hand off to this socket's loop.
        loop.call_soon_threadsafe(outbox.put_nowait, payload)

    sid = hub.connect(identity, deliver, session_id=session_id)
    outbox.put_nowait({"type": "session", "sessionId": sid, "rooms": sorted(hub.rooms_for(sid))})

    async def pump() -> None:
        while True:
            payload = await outbox.get()
            await websocket.send_json(payload)

    sender = asyncio.create_task(pump())
    try:
        while True:
            try:
                raw = await asyncio.wait_for(websocket.receive_text(), timeout=settings.realtime_ping_timeout_seconds)
            except asyncio.TimeoutError:
                logger.debug("Realtime session %s timed out", sid)
                await websocket.close(code=CLOSE_PING_TIMEOUT)
                break
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if not isinstance(msg, dict):
                continue
            action = msg.get("action") or msg.get("type")
            if action == "ping":
                outbox.put_nowait({"type": "pong"})
            elif action == "subscribe":
                joined = await run_in_threadpool(hub.subscribe, sid, msg.get("areaId"), msg.get("reservationId"))
                outbox.put_nowait({"type": "subscribed", "rooms": [str(r) for r in joined]})
            elif action == "unsubscribe":
                hub.unsubscribe(sid, msg.get("areaId"), msg.get("reservationId"))
                outbox.put_nowait({"type": "unsubscribed", "rooms": sorted(hub.rooms_for(sid))})
    except WebSocketDisconnect:
        pass
    finally:
        sender.cancel()
        hub.disconnect(sid)
