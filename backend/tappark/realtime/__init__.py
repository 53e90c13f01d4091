from tappark.realtime.events import EventType, RealtimeEvent, capacity_updated, reservation_updated, spots_updated
from tappark.realtime.hub import Broker, LocalBroker, RealtimeHub, get_hub
from tappark.realtime.rooms import Room, RoomKind

__all__ = [
    "Broker",
    "EventType",
    "LocalBroker",
    "RealtimeEvent",
    "RealtimeHub",
    "Room",
    "RoomKind",
    "capacity_updated",
    "get_hub",
    "reservation_updated",
    "spots_updated",
]
