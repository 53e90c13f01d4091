"""
Virtual spot numbers inside capacity sections.

A capacity section has no spot rows; its spots are the labels "{section_name}-{n}" for n in
1..total_capacity. A number is taken when a reserved/active reservation or a manual status row
references it. Allocation always returns the lowest free number, so two allocators working from
the same snapshot pick the same number and the loser fails on the unique slot index instead of
silently double-booking.
"""
from typing import Iterable


def spot_label(section_name: str, number: int) -> str:
    return f"{section_name}-{number}"


def parse_spot_number(label: str | None, section_name: str | None = None) -> int | None:
    """Return n from "{section_name}-{n}" (or any "...-n" when section_name is None); None if not a slot label."""
    if not label:
        return None
    label = label.strip()
    if section_name is not None:
        prefix = f"{section_name}-"
        if not label.startswith(prefix):
            return None
        tail = label[len(prefix):]
    else:
        _, sep, tail = label.rpartition("-")
        if not sep:
            return None
    if not tail.isdigit():
        return None
    n = int(tail)
    return n if n > 0 else None


def allocate_spot_number(total_capacity: int, taken: Iterable[int]) -> int | None:
    """Lowest n in 1..total_capacity not in taken; None when every number is taken."""
    taken_set = set(taken)
    for n in range(1, max(0, total_capacity) + 1):
        if n not in taken_set:
            return n
    return None


def taken_numbers(labels: Iterable[str | None], section_name: str, total_capacity: int) -> set[int]:
    """Numbers referenced by labels, ignoring labels outside 1..total_capacity."""
    out = set()
    for label in labels:
        n = parse_spot_number(label, section_name)
        if n is not None and n <= total_capacity:
            out.add(n)
    return out
