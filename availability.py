"""Time-window conflict checks for a single table.

Windows are half-open: ``[start, end)``. A booking that ends at 21:00 does
not collide with one that starts at 21:00.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from errors import InvalidRequestError, NotFoundError
from models import (
    ACTIVE_STATUSES,
    OUT_OF_SERVICE_STATES,
    DiningTable,
    Reservation,
    TableState,
)

logger = logging.getLogger(__name__)

DEFAULT_OCCUPANCY_HOLD_MINUTES = 120


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Stored timestamps are naive UTC; convert aware values to match."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def window_end(start: datetime, duration_minutes: int) -> datetime:
    if duration_minutes <= 0:
        raise InvalidRequestError(f"duration_minutes must be positive, got {duration_minutes}")
    return start + timedelta(minutes=duration_minutes)


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and start_b < end_a


def is_window_free(
    start: datetime,
    end: datetime,
    reservations: Iterable[Reservation],
    exclude_id: Optional[int] = None,
) -> bool:
    for reservation in reservations:
        if exclude_id is not None and reservation.id == exclude_id:
            continue
        if reservation.status not in ACTIVE_STATUSES:
            continue
        if overlaps(start, end, reservation.start_time, reservation.end_time):
            return False
    return True


def is_available(
    table: DiningTable,
    start: datetime,
    duration_minutes: int,
    reservations: Iterable[Reservation],
    exclude_id: Optional[int] = None,
    now: Optional[datetime] = None,
    occupancy_hold_minutes: int = DEFAULT_OCCUPANCY_HOLD_MINUTES,
) -> bool:
    start = to_naive_utc(start)
    end = window_end(start, duration_minutes)

    if table.state in OUT_OF_SERVICE_STATES:
        return False

    # A seated party keeps the table for the hold period from now
    if table.state == TableState.OCCUPIED:
        now = to_naive_utc(now) if now is not None else utcnow()
        if overlaps(start, end, now, now + timedelta(minutes=occupancy_hold_minutes)):
            return False

    return is_window_free(start, end, reservations, exclude_id)


async def check_availability(
    tables,
    reservations,
    table_id: int,
    start: datetime,
    duration_minutes: int,
    exclude_reservation_id: Optional[int] = None,
    now: Optional[datetime] = None,
    occupancy_hold_minutes: int = DEFAULT_OCCUPANCY_HOLD_MINUTES,
) -> bool:
    """Decide whether ``table_id`` can take the window.

    ``tables`` and ``reservations`` are a TableStore and ReservationStore.
    Raises NotFoundError for an unknown table; an occupied window is a plain
    ``False``.
    """
    start = to_naive_utc(start)
    end = window_end(start, duration_minutes)

    table = await tables.get(table_id)
    if table is None:
        raise NotFoundError(f"Table {table_id} not found")

    candidates = await reservations.list_for_table(
        table_id, ACTIVE_STATUSES, window_start=start, window_end=end
    )
    available = is_available(
        table,
        start,
        duration_minutes,
        candidates,
        exclude_id=exclude_reservation_id,
        now=now,
        occupancy_hold_minutes=occupancy_hold_minutes,
    )
    logger.debug(
        "Availability table=%s window=%s..%s exclude=%s -> %s",
        table_id, start, end, exclude_reservation_id, available,
    )
    return available
