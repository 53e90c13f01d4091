import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import make_token
from tappark.core.constants import ROLE_ADMIN
from tappark.core.identity import Identity
from tappark.realtime import LocalBroker, RealtimeHub, Room, capacity_updated, reservation_updated, spots_updated
from tappark.realtime.hub import get_hub


class Inbox:
    def __init__(self):
        self.payloads = []

    def __call__(self, payload):
        self.payloads.append(payload)

    def types(self):
        return [p["type"] for p in self.payloads]


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _booking(reservation_id=5, user_id=1, area_id=3):
    return reservation_updated(reservation_id=reservation_id, status="reserved", source="booking", user_id=user_id, area_id=area_id)


def test_user_room_is_joined_on_connect():
    hub = RealtimeHub()
    mine, theirs = Inbox(), Inbox()
    sid = hub.connect(Identity(1), mine)
    hub.connect(Identity(2), theirs)

    hub.publish(_booking(user_id=1))

    assert hub.rooms_for(sid) == {"user:1"}
    assert mine.types() == ["reservation:updated"]
    assert theirs.payloads == []


def test_area_room_is_opt_in():
    hub = RealtimeHub()
    watcher = Inbox()
    sid = hub.connect(Identity(2), watcher)
    event = spots_updated(spot_id=8, status="reserved", source="booking", area_id=3)

    hub.publish(event)
    assert watcher.payloads == []

    assert hub.subscribe(sid, area_id=3) == [Room.for_area(3)]
    hub.publish(event)
    assert watcher.payloads == [{"type": "spots:updated", "status": "reserved", "source": "booking", "areaId": 3, "spotId": 8}]

    hub.unsubscribe(sid, area_id=3)
    hub.publish(event)
    assert len(watcher.payloads) == 1


def test_one_delivery_per_session_even_in_several_target_rooms():
    hub = RealtimeHub(reservation_authorizer=lambda identity, rid: True)
    inbox = Inbox()
    sid = hub.connect(Identity(1), inbox)
    hub.subscribe(sid, area_id=3, reservation_id=5)

    hub.publish(_booking(reservation_id=5, user_id=1, area_id=3))

    assert len(inbox.payloads) == 1


def test_reservation_room_needs_authorization():
    hub = RealtimeHub(reservation_authorizer=lambda identity, rid: rid == 7)
    sid = hub.connect(Identity(1), Inbox())

    assert hub.subscribe(sid, reservation_id=8) == []
    assert hub.subscribe(sid, reservation_id=7) == [Room.for_reservation(7)]
    assert hub.stats()["rejected_subscriptions"] == 1


def test_privileged_roles_skip_the_authorizer():
    hub = RealtimeHub(reservation_authorizer=lambda identity, rid: False)
    sid = hub.connect(Identity(9, ROLE_ADMIN), Inbox())
    assert hub.subscribe(sid, reservation_id=8) == [Room.for_reservation(8)]


def test_no_authorizer_denies_reservation_rooms():
    hub = RealtimeHub()
    sid = hub.connect(Identity(1), Inbox())
    assert hub.subscribe(sid, reservation_id=8) == []


def test_failing_authorizer_is_a_silent_rejection():
    def authorizer(identity, rid):
        raise RuntimeError("db down")

    hub = RealtimeHub(reservation_authorizer=authorizer)
    sid = hub.connect(Identity(1), Inbox())
    assert hub.subscribe(sid, reservation_id=8) == []
    assert hub.stats()["subscription_errors"] == 1


def test_bad_ids_are_ignored():
    hub = RealtimeHub()
    sid = hub.connect(Identity(1), Inbox())
    assert hub.subscribe(sid, area_id="abc") == []
    assert hub.subscribe(sid, area_id=-4) == []
    assert hub.subscribe("no-such-session", area_id=3) == []


def test_resume_delivers_missed_events_in_order():
    hub = RealtimeHub()
    sid = hub.connect(Identity(1), Inbox())
    hub.subscribe(sid, area_id=3)
    hub.disconnect(sid)

    for status in ("reserved", "occupied", "available"):
        hub.publish(spots_updated(spot_id=8, status=status, source="booking", area_id=3))

    inbox = Inbox()
    assert hub.connect(Identity(1), inbox, session_id=sid) == sid
    assert [p["status"] for p in inbox.payloads] == ["reserved", "occupied", "available"]
    assert hub.rooms_for(sid) == {"user:1", "area:3"}
    assert hub.stats()["resumed_total"] == 1


def test_resume_buffer_drops_oldest():
    hub = RealtimeHub(queue_max=2)
    sid = hub.connect(Identity(1), Inbox())
    hub.disconnect(sid)
    for n in (1, 2, 3):
        hub.publish(_booking(reservation_id=n, user_id=1))

    inbox = Inbox()
    hub.connect(Identity(1), inbox, session_id=sid)

    assert [p["reservationId"] for p in inbox.payloads] == [2, 3]
    assert hub.stats()["buffered_dropped"] == 1


def test_session_is_gone_after_the_resume_window():
    clock = FakeClock()
    hub = RealtimeHub(resume_window_seconds=120, clock=clock)
    sid = hub.connect(Identity(1), Inbox())
    hub.subscribe(sid, area_id=3)
    hub.disconnect(sid)

    clock.now += 121
    new_sid = hub.connect(Identity(1), Inbox(), session_id=sid)

    assert new_sid != sid
    assert hub.rooms_for(new_sid) == {"user:1"}
    assert hub.rooms_for(sid) == set()


def test_session_id_of_another_user_is_not_resumed():
    hub = RealtimeHub()
    sid = hub.connect(Identity(1), Inbox())
    hub.disconnect(sid)
    assert hub.connect(Identity(2), Inbox(), session_id=sid) != sid


def test_event_without_rooms_is_broadcast():
    hub = RealtimeHub()
    inboxes = [Inbox() for _ in range(3)]
    for n, inbox in enumerate(inboxes, start=1):
        hub.connect(Identity(n), inbox)

    hub.publish(capacity_updated(section_id=4, status="available", source="status-update"))

    assert all(inbox.types() == ["capacity:updated"] for inbox in inboxes)


def test_failing_socket_is_detached_and_buffers():
    hub = RealtimeHub()

    def broken(payload):
        raise ConnectionError("socket closed")

    healthy = Inbox()
    sid = hub.connect(Identity(1), broken)
    hub.connect(Identity(1), healthy)

    hub.publish(_booking(user_id=1))
    assert healthy.types() == ["reservation:updated"]
    stats = hub.stats()
    assert stats["current_connections"] == 1
    assert stats["detached_sessions"] == 1

    hub.publish(_booking(reservation_id=6, user_id=1))
    resumed = Inbox()
    hub.connect(Identity(1), resumed, session_id=sid)
    assert [p["reservationId"] for p in resumed.payloads] == [6]


class BrokenBroker(LocalBroker):
    def publish(self, rooms, payload):
        raise ConnectionError("broker unreachable")


def test_broker_failure_falls_back_to_local_delivery():
    hub = RealtimeHub(broker=BrokenBroker())
    inbox = Inbox()
    hub.connect(Identity(1), inbox)

    hub.publish(_booking(user_id=1))

    assert inbox.types() == ["reservation:updated"]
    assert hub.stats()["broker_failures"] == 1


def test_payload_shape():
    payload = _booking(reservation_id=5, user_id=1, area_id=3).to_payload()
    assert payload == {
        "type": "reservation:updated",
        "status": "reserved",
        "source": "booking",
        "areaId": 3,
        "reservationId": 5,
        "userId": 1,
    }


def test_stats_count_rooms_by_kind():
    hub = RealtimeHub(reservation_authorizer=lambda identity, rid: True)
    sid = hub.connect(Identity(1), Inbox())
    hub.subscribe(sid, area_id=3, reservation_id=5)
    assert hub.stats()["rooms"] == {"user": 1, "area": 1, "reservation": 1}
    hub.close_session(sid)
    assert hub.stats()["rooms"] == {"user": 0, "area": 0, "reservation": 0}


# --- websocket gateway ---


@pytest.fixture
def client():
    from tappark.main import app

    return TestClient(app)


def test_socket_rejects_bad_token(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/realtime/ws?token=garbage") as ws:
            ws.receive_json()
    assert exc.value.code == 1008


def test_socket_session_ping_and_area_events(client):
    with client.websocket_connect(f"/realtime/ws?token={make_token(501)}") as ws:
        hello = ws.receive_json()
        assert hello["type"] == "session"
        assert hello["rooms"] == ["user:501"]

        ws.send_json({"action": "ping"})
        assert ws.receive_json() == {"type": "pong"}

        ws.send_json({"action": "subscribe", "areaId": 77})
        assert ws.receive_json() == {"type": "subscribed", "rooms": ["area:77"]}

        get_hub().publish(spots_updated(spot_id=3, status="reserved", source="booking", area_id=77))
        assert ws.receive_json() == {
            "type": "spots:updated",
            "status": "reserved",
            "source": "booking",
            "areaId": 77,
            "spotId": 3,
        }

        ws.send_json({"action": "unsubscribe", "areaId": 77})
        assert ws.receive_json() == {"type": "unsubscribed", "rooms": ["user:501"]}
