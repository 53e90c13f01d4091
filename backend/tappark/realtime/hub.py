"""
Realtime fanout hub: sessions join rooms, published events go to every session in the target rooms.

- user:{id} is joined on connect from the authenticated identity; clients never choose it.
- area:{id} is opt-in for any session.
- reservation:{id} is opt-in behind the reservation authorizer (owner or privileged role).
  Rejected or failing checks are dropped silently so existence is not leaked.

Delivery is at most once per session per event, even when a session sits in several target
rooms. A disconnected session keeps its rooms for resume_window_seconds and buffers up to
queue_max events (oldest dropped); reconnecting with the same session id resumes it.

Publishing goes through a Broker. LocalBroker delivers in-process. A shared broker (one per
deployment, e.g. Redis pub/sub) lets a publish in one process reach sockets held by another;
if it fails the hub logs and falls back to local delivery only.
"""
import logging
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from tappark.core.identity import Identity
from tappark.realtime.events import RealtimeEvent
from tappark.realtime.rooms import Room, RoomKind, normalize_positive_int

logger = logging.getLogger(__name__)

Deliver = Callable[[dict[str, Any]], None]
ReservationAuthorizer = Callable[[Identity, int], bool]
BrokerHandler = Callable[[list[str], dict[str, Any]], None]


class Broker(Protocol):
    """Transport between hub instances. Rooms travel as their string keys."""

    def attach(self, on_message: BrokerHandler) -> None:
        ...

    def publish(self, rooms: list[str], payload: dict[str, Any]) -> None:
        ...

    def close(self) -> None:
        ...


class LocalBroker:
    """Single-process broker: publish calls straight back into the attached hub."""

    def __init__(self) -> None:
        self._handler: BrokerHandler | None = None

    def attach(self, on_message: BrokerHandler) -> None:
        self._handler = on_message

    def publish(self, rooms: list[str], payload: dict[str, Any]) -> None:
        if self._handler is not None:
            self._handler(rooms, payload)

    def close(self) -> None:
        self._handler = None


@dataclass
class _Session:
    session_id: str
    identity: Identity
    deliver: Deliver | None
    buffer: deque
    rooms: set[Room] = field(default_factory=set)
    detached_at: float | None = None


class RealtimeHub:
    def __init__(
        self,
        broker: Broker | None = None,
        reservation_authorizer: ReservationAuthorizer | None = None,
        resume_window_seconds: float = 120,
        queue_max: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._broker = broker or LocalBroker()
        self._authorizer = reservation_authorizer
        self.resume_window_seconds = resume_window_seconds
        self.queue_max = max(1, queue_max)
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: dict[str, _Session] = {}
        self._members: dict[Room, set[str]] = {}
        self._stats = {
            "connected_total": 0,
            "resumed_total": 0,
            "subscribe_requests": 0,
            "rejected_subscriptions": 0,
            "subscription_errors": 0,
            "published_total": 0,
            "delivered_total": 0,
            "buffered_dropped": 0,
            "broker_failures": 0,
        }
        self._broker.attach(self._on_broker_message)

    def set_reservation_authorizer(self, authorizer: ReservationAuthorizer | None) -> None:
        self._authorizer = authorizer

    # --- membership ---

    def _join_locked(self, session: _Session, room: Room) -> None:
        session.rooms.add(room)
        self._members.setdefault(room, set()).add(session.session_id)

    def _leave_locked(self, session: _Session, room: Room) -> None:
        session.rooms.discard(room)
        members = self._members.get(room)
        if members is not None:
            members.discard(session.session_id)
            if not members:
                del self._members[room]

    def _drop_locked(self, session: _Session) -> None:
        for room in list(session.rooms):
            self._leave_locked(session, room)
        self._sessions.pop(session.session_id, None)

    def _prune_locked(self, now: float) -> None:
        expired = [
            s for s in self._sessions.values()
            if s.detached_at is not None and now - s.detached_at > self.resume_window_seconds
        ]
        for s in expired:
            self._drop_locked(s)

    def connect(self, identity: Identity, deliver: Deliver, session_id: str | None = None) -> str:
        """
        Register a socket. Joins user:{identity.user_id}. With a known session_id of the same user
        (inside the resume window) the old session is resumed: rooms kept, buffered events flushed.
        """
        now = self._clock()
        with self._lock:
            self._prune_locked(now)
            existing = self._sessions.get(session_id) if session_id else None
            if existing is not None and existing.identity.user_id == identity.user_id:
                existing.identity = identity
                existing.deliver = deliver
                existing.detached_at = None
                pending = list(existing.buffer)
                existing.buffer.clear()
                self._stats["resumed_total"] += 1
                sid = existing.session_id
            else:
                sid = uuid.uuid4().hex
                session = _Session(session_id=sid, identity=identity, deliver=deliver, buffer=deque(maxlen=self.queue_max))
                self._sessions[sid] = session
                self._join_locked(session, Room.for_user(identity.user_id))
                self._stats["connected_total"] += 1
                pending = []
        for payload in pending:
            self._safe_deliver(sid, deliver, payload)
        return sid

    def disconnect(self, session_id: str) -> None:
        """Detach the socket; the session stays resumable for resume_window_seconds."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return
            session.deliver = None
            session.detached_at = self._clock()

    def close_session(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                self._drop_locked(session)

    def subscribe(self, session_id: str, area_id=None, reservation_id=None) -> list[Room]:
        """Join area and/or reservation rooms. Returns the rooms actually joined."""
        area_id = normalize_positive_int(area_id)
        reservation_id = normalize_positive_int(reservation_id)
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return []
            self._stats["subscribe_requests"] += 1
            identity = session.identity
            joined = []
            if area_id:
                room = Room.for_area(area_id)
                self._join_locked(session, room)
                joined.append(room)

        if reservation_id and self._may_join_reservation(identity, reservation_id):
            room = Room.for_reservation(reservation_id)
            with self._lock:
                session = self._sessions.get(session_id)
                if session is not None:
                    self._join_locked(session, room)
                    joined.append(room)
        return joined

    def _may_join_reservation(self, identity: Identity, reservation_id: int) -> bool:
        if identity.is_privileged:
            return True
        allowed = False
        try:
            allowed = bool(self._authorizer and self._authorizer(identity, reservation_id))
        except Exception as e:
            with self._lock:
                self._stats["subscription_errors"] += 1
            logger.debug("Reservation room auth check failed for user %s: %s", identity.user_id, e)
            return False
        if not allowed:
            with self._lock:
                self._stats["rejected_subscriptions"] += 1
            logger.debug("Rejected reservation room subscribe user=%s reservation=%s", identity.user_id, reservation_id)
        return allowed

    def unsubscribe(self, session_id: str, area_id=None, reservation_id=None) -> None:
        area_id = normalize_positive_int(area_id)
        reservation_id = normalize_positive_int(reservation_id)
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return
            if area_id:
                self._leave_locked(session, Room.for_area(area_id))
            if reservation_id:
                self._leave_locked(session, Room.for_reservation(reservation_id))

    def rooms_for(self, session_id: str) -> set[str]:
        with self._lock:
            session = self._sessions.get(session_id)
            return {str(r) for r in session.rooms} if session else set()

    # --- publish / deliver ---

    def publish(self, event: RealtimeEvent) -> None:
        """Fire-and-forget. Call only after the causing transaction committed."""
        rooms = [str(r) for r in event.rooms()]
        payload = event.to_payload()
        with self._lock:
            self._stats["published_total"] += 1
        try:
            self._broker.publish(rooms, payload)
        except Exception as e:
            with self._lock:
                self._stats["broker_failures"] += 1
            logger.warning("Realtime broker publish failed (delivering locally only): %s", e)
            self._on_broker_message(rooms, payload)

    def _on_broker_message(self, rooms: list[str], payload: dict[str, Any]) -> None:
        targets: list[tuple[str, Deliver]] = []
        with self._lock:
            self._prune_locked(self._clock())
            if rooms:
                session_ids: set[str] = set()
                for key in rooms:
                    try:
                        room = Room.parse(key)
                    except (ValueError, KeyError):
                        continue
                    session_ids |= self._members.get(room, set())
            else:
                session_ids = set(self._sessions)
            for sid in session_ids:
                session = self._sessions.get(sid)
                if session is None:
                    continue
                if session.deliver is None:
                    if len(session.buffer) == session.buffer.maxlen:
                        self._stats["buffered_dropped"] += 1
                    session.buffer.append(payload)
                else:
                    targets.append((sid, session.deliver))
        for sid, deliver in targets:
            self._safe_deliver(sid, deliver, payload)

    def _safe_deliver(self, session_id: str, deliver: Deliver, payload: dict[str, Any]) -> None:
        try:
            deliver(payload)
        except Exception as e:
            logger.warning("Realtime delivery to session %s failed, detaching: %s", session_id, e)
            self.disconnect(session_id)
            return
        with self._lock:
            self._stats["delivered_total"] += 1

    def stats(self) -> dict[str, Any]:
        with self._lock:
            attached = sum(1 for s in self._sessions.values() if s.deliver is not None)
            out = dict(self._stats)
            out["current_connections"] = attached
            out["detached_sessions"] = len(self._sessions) - attached
            out["rooms"] = {kind.value: sum(1 for r in self._members if r.kind == kind) for kind in RoomKind}
        return out

    def close(self) -> None:
        self._broker.close()
        with self._lock:
            self._sessions.clear()
            self._members.clear()


_hub: RealtimeHub | None = None
_hub_lock = threading.Lock()


def get_hub() -> RealtimeHub:
    """Process-wide hub used by routes, services and the sweeper."""
    global _hub
    with _hub_lock:
        if _hub is None:
            from tappark.config import settings

            _hub = RealtimeHub(
                resume_window_seconds=settings.realtime_resume_window_seconds,
                queue_max=settings.realtime_queue_max,
            )
        return _hub
