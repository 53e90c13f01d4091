"""State-change events fanned out to realtime rooms. Subscribers treat them as refetch hints."""
from dataclasses import dataclass
from enum import Enum
from typing import Any

from tappark.realtime.rooms import Room


class EventType(str, Enum):
    RESERVATION_UPDATED = "reservation:updated"
    SPOTS_UPDATED = "spots:updated"
    CAPACITY_UPDATED = "capacity:updated"


@dataclass(frozen=True)
class RealtimeEvent:
    type: EventType
    status: str
    source: str
    area_id: int | None = None
    reservation_id: int | None = None
    spot_id: int | None = None
    section_id: int | None = None
    user_id: int | None = None

    def rooms(self) -> list[Room]:
        """Target rooms; empty means broadcast to every session."""
        out = []
        if self.area_id:
            out.append(Room.for_area(self.area_id))
        if self.reservation_id:
            out.append(Room.for_reservation(self.reservation_id))
        if self.user_id:
            out.append(Room.for_user(self.user_id))
        return out

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type.value, "status": self.status, "source": self.source}
        for key, value in (
            ("areaId", self.area_id),
            ("reservationId", self.reservation_id),
            ("spotId", self.spot_id),
            ("sectionId", self.section_id),
            ("userId", self.user_id),
        ):
            if value is not None:
                payload[key] = value
        return payload


def reservation_updated(reservation_id: int, status: str, source: str, *, user_id=None, area_id=None,
                        spot_id=None, section_id=None) -> RealtimeEvent:
    return RealtimeEvent(
        EventType.RESERVATION_UPDATED,
        status=status,
        source=source,
        reservation_id=reservation_id,
        user_id=user_id,
        area_id=area_id,
        spot_id=spot_id,
        section_id=section_id,
    )


def spots_updated(spot_id: int, status: str, source: str, *, area_id=None, reservation_id=None) -> RealtimeEvent:
    return RealtimeEvent(
        EventType.SPOTS_UPDATED,
        status=status,
        source=source,
        spot_id=spot_id,
        area_id=area_id,
        reservation_id=reservation_id,
    )


def capacity_updated(section_id: int, status: str, source: str, *, area_id=None) -> RealtimeEvent:
    return RealtimeEvent(EventType.CAPACITY_UPDATED, status=status, source=source, section_id=section_id, area_id=area_id)
