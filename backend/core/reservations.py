"""
Stock holds for checkout sessions.

A candy record carries ``stock`` plus a ``reservations`` map shaped like

    {"cs_test_123": {"quantity": 2, "timestamp": 1700000000000}, ...}

with timestamps in epoch milliseconds. Everything here is pure: callers
load the record inside a store transaction, run these functions, and
write back what they return. Inputs are never mutated.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Mapping, Tuple

from core.errors import InsufficientStockError

RESERVATION_TTL = timedelta(minutes=10)

Reservations = Dict[str, Dict[str, int]]


def to_epoch_ms(when: datetime) -> int:
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return int(when.timestamp() * 1000)


def _as_int(x) -> int:
    try:
        return int(x or 0)
    except (TypeError, ValueError):
        return 0


def is_live(entry: Mapping, now: datetime, ttl: timedelta = RESERVATION_TTL) -> bool:
    """
    True while ``now`` is strictly before ``timestamp + ttl``. Anything that
    is not a hold mapping counts as expired.
    """
    if not entry or not isinstance(entry, Mapping):
        return False
    age_ms = to_epoch_ms(now) - _as_int(entry.get("timestamp"))
    return age_ms < ttl.total_seconds() * 1000


def sweep(
    reservations: Mapping, now: datetime, ttl: timedelta = RESERVATION_TTL
) -> Tuple[Reservations, int]:
    """Drop expired holds. Returns (live holds, total held quantity)."""
    live: Reservations = {}
    reserved = 0
    for key, entry in (reservations or {}).items():
        if is_live(entry, now, ttl):
            live[key] = dict(entry)
            reserved += _as_int(entry.get("quantity"))
    return live, reserved


def available(
    stock, reservations: Mapping, now: datetime, ttl: timedelta = RESERVATION_TTL
) -> int:
    _, reserved = sweep(reservations, now, ttl)
    return _as_int(stock) - reserved


def check_available(
    item: str,
    stock,
    reservations: Mapping,
    requested: int,
    now: datetime,
    ttl: timedelta = RESERVATION_TTL,
) -> Reservations:
    """
    Raise InsufficientStockError if ``requested`` does not fit next to the
    live holds. Returns the swept reservations map.
    """
    live, reserved = sweep(reservations, now, ttl)
    free = _as_int(stock) - reserved
    if free < requested:
        raise InsufficientStockError(item, requested=requested, available=free)
    return live


def reserve(
    item: str,
    stock,
    reservations: Mapping,
    session_id: str,
    requested: int,
    now: datetime,
    ttl: timedelta = RESERVATION_TTL,
) -> Reservations:
    """
    Add ``requested`` units to the session's hold.

    The session's existing quantity is carried over (it survived the sweep
    above, so it is live) and its timestamp refreshed to ``now``.
    """
    live = check_available(item, stock, reservations, requested, now, ttl)
    current = live.get(session_id) or {"quantity": 0}
    live[session_id] = {
        "quantity": _as_int(current.get("quantity")) + int(requested),
        "timestamp": to_epoch_ms(now),
    }
    return live


def release(reservations: Mapping, session_id: str) -> Tuple[Reservations, bool]:
    """Copy of ``reservations`` without the session's hold; flag says whether one existed."""
    remaining = {
        k: dict(v) if isinstance(v, Mapping) else v for k, v in (reservations or {}).items()
    }
    removed = remaining.pop(session_id, None) is not None
    return remaining, removed
