from collections import Counter
from datetime import datetime
from typing import Dict, Iterable

from pydantic import BaseModel

from availability import to_naive_utc
from models import DiningTable, Reservation, ReservationStatus, TableState


class OccupancyStats(BaseModel):
    total_tables: int
    free: int
    occupied: int
    reserved: int
    maintenance: int
    blocked: int
    total_seats: int
    occupied_seats: int
    occupancy_percent: float


class ReservationStats(BaseModel):
    start: datetime
    end: datetime
    total: int
    pending: int
    confirmed: int
    cancelled: int
    completed: int
    completion_percent: float
    average_completed_minutes: float
    by_hour: Dict[str, int]


def _percent(part: int, whole: int) -> float:
    return round(part * 100.0 / whole, 2) if whole else 0.0


def occupancy_stats(tables: Iterable[DiningTable]) -> OccupancyStats:
    tables = list(tables)
    states = Counter(t.state for t in tables)
    occupied_seats = sum(t.capacity for t in tables if t.state == TableState.OCCUPIED)
    return OccupancyStats(
        total_tables=len(tables),
        free=states[TableState.FREE],
        occupied=states[TableState.OCCUPIED],
        reserved=states[TableState.RESERVED],
        maintenance=states[TableState.MAINTENANCE],
        blocked=states[TableState.BLOCKED],
        total_seats=sum(t.capacity for t in tables),
        occupied_seats=occupied_seats,
        occupancy_percent=_percent(states[TableState.OCCUPIED], len(tables)),
    )


def reservation_stats(
    reservations: Iterable[Reservation], start: datetime, end: datetime
) -> ReservationStats:
    reservations = list(reservations)
    statuses = Counter(r.status for r in reservations)
    completed = [r for r in reservations if r.status == ReservationStatus.COMPLETED]
    average = (
        sum(r.duration_minutes for r in completed) / len(completed) if completed else 0.0
    )
    by_hour = Counter(f"{r.start_time.hour:02d}:00" for r in reservations)
    return ReservationStats(
        start=start,
        end=end,
        total=len(reservations),
        pending=statuses[ReservationStatus.PENDING],
        # Confirmed bookings that went on to be served still count as confirmed
        confirmed=statuses[ReservationStatus.CONFIRMED] + statuses[ReservationStatus.COMPLETED],
        cancelled=statuses[ReservationStatus.CANCELLED],
        completed=statuses[ReservationStatus.COMPLETED],
        completion_percent=_percent(statuses[ReservationStatus.COMPLETED], len(reservations)),
        average_completed_minutes=round(average, 2),
        by_hour=dict(sorted(by_hour.items())),
    )


async def collect_occupancy_stats(tables) -> OccupancyStats:
    return occupancy_stats(await tables.list_tables())


async def collect_reservation_stats(reservations, start: datetime, end: datetime) -> ReservationStats:
    start, end = to_naive_utc(start), to_naive_utc(end)
    return reservation_stats(await reservations.list_in_range(start, end), start, end)
