import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence

from availability import (
    DEFAULT_OCCUPANCY_HOLD_MINUTES,
    is_available,
    to_naive_utc,
    window_end,
)
from errors import InvalidRequestError
from models import ACTIVE_STATUSES, OUT_OF_SERVICE_STATES, DiningTable

logger = logging.getLogger(__name__)

# Nearby start times tried when the requested slot is full
ALTERNATIVE_OFFSETS_MINUTES = (-120, -60, 60, 120)


@dataclass(frozen=True)
class Alternative:
    start: datetime
    table: DiningTable


def rank_tables(tables: Iterable[DiningTable]) -> List[DiningTable]:
    # Tightest fit first, table number breaks ties
    return sorted(tables, key=lambda t: (t.capacity, t.number))


async def find_available_tables(
    tables,
    reservations,
    party_size: int,
    start: datetime,
    duration_minutes: int,
    location: Optional[str] = None,
    now: Optional[datetime] = None,
    occupancy_hold_minutes: int = DEFAULT_OCCUPANCY_HOLD_MINUTES,
) -> List[DiningTable]:
    if party_size <= 0:
        raise InvalidRequestError(f"party_size must be positive, got {party_size}")
    start = to_naive_utc(start)
    end = window_end(start, duration_minutes)

    # Step 1: capacity and service-state filter
    candidates = await tables.list_tables(
        min_capacity=party_size,
        exclude_states=OUT_OF_SERVICE_STATES,
        location=location,
    )

    # Step 2: per-table window check
    available = []
    for table in candidates:
        booked = await reservations.list_for_table(
            table.id, ACTIVE_STATUSES, window_start=start, window_end=end
        )
        if is_available(
            table,
            start,
            duration_minutes,
            booked,
            now=now,
            occupancy_hold_minutes=occupancy_hold_minutes,
        ):
            available.append(table)

    # Step 3: ranking
    ranked = rank_tables(available)
    logger.debug(
        "Found %d/%d tables for party of %d at %s",
        len(ranked), len(candidates), party_size, start,
    )
    return ranked


async def suggest_alternatives(
    tables,
    reservations,
    party_size: int,
    start: datetime,
    duration_minutes: int,
    location: Optional[str] = None,
    now: Optional[datetime] = None,
    offsets_minutes: Sequence[int] = ALTERNATIVE_OFFSETS_MINUTES,
    limit: int = 5,
    occupancy_hold_minutes: int = DEFAULT_OCCUPANCY_HOLD_MINUTES,
) -> List[Alternative]:
    start = to_naive_utc(start)
    suggestions = []
    for offset in offsets_minutes:
        candidate_start = start + timedelta(minutes=offset)
        found = await find_available_tables(
            tables,
            reservations,
            party_size,
            candidate_start,
            duration_minutes,
            location=location,
            now=now,
            occupancy_hold_minutes=occupancy_hold_minutes,
        )
        for table in found:
            suggestions.append(Alternative(start=candidate_start, table=table))
            if len(suggestions) >= limit:
                return suggestions
    return suggestions
