"""
Typed realtime room keys. Publish and subscribe both build rooms through these constructors,
so a key mismatch between the two sides cannot happen.
"""
from dataclasses import dataclass
from enum import Enum


class RoomKind(str, Enum):
    USER = "user"
    AREA = "area"
    RESERVATION = "reservation"


@dataclass(frozen=True)
class Room:
    kind: RoomKind
    id: int

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"

    @classmethod
    def for_user(cls, user_id: int) -> "Room":
        return cls(RoomKind.USER, int(user_id))

    @classmethod
    def for_area(cls, area_id: int) -> "Room":
        return cls(RoomKind.AREA, int(area_id))

    @classmethod
    def for_reservation(cls, reservation_id: int) -> "Room":
        return cls(RoomKind.RESERVATION, int(reservation_id))

    @classmethod
    def parse(cls, key: str) -> "Room":
        kind, _, raw_id = key.partition(":")
        return cls(RoomKind(kind), int(raw_id))


def normalize_positive_int(value) -> int | None:
    """Client-supplied ids: positive integers only, anything else is ignored."""
    try:
        n = int(value)
    except (TypeError, ValueError):
        return None
    return n if n > 0 else None
