"""Reservation lifecycle and the table-state side effects it drives.

Every legal reservation transition and its effect on the table is declared
once in ``TRANSITIONS``; table-only moves (walk-in seating, billing, upkeep)
are declared in ``TABLE_TRANSITIONS``.

Each write runs as one unit of work on the session: load the rows fresh,
validate, claim the affected tables (see ``TableStore.claim``), mutate,
commit. Any failure rolls the whole unit back.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from availability import check_availability, is_available, to_naive_utc, utcnow, window_end
from config import Settings, load_settings
from errors import (
    CapacityExceededError,
    ConflictError,
    InvalidRequestError,
    InvalidTransitionError,
    NotFoundError,
    UnavailableError,
)
from models import ACTIVE_STATUSES, DiningTable, Reservation, ReservationStatus, TableState
from stores import ReservationStore, TableStore
from table_finder import Alternative, find_available_tables, suggest_alternatives

logger = logging.getLogger(__name__)


class TableEffect(str, Enum):
    NONE = "none"
    RESERVE = "reserve"  # Free -> Reserved for this booking
    RELEASE = "release"  # Reserved for this booking -> Free


@dataclass(frozen=True)
class Transition:
    sources: FrozenSet[ReservationStatus]
    target: ReservationStatus
    table_effect: TableEffect
    note: str


TRANSITIONS: Dict[str, Transition] = {
    "confirm": Transition(
        frozenset({ReservationStatus.PENDING}),
        ReservationStatus.CONFIRMED,
        TableEffect.RESERVE,
        "Confirmed",
    ),
    "cancel": Transition(
        frozenset({ReservationStatus.PENDING, ReservationStatus.CONFIRMED}),
        ReservationStatus.CANCELLED,
        TableEffect.RELEASE,
        "Cancelled",
    ),
    "complete": Transition(
        frozenset({ReservationStatus.CONFIRMED}),
        ReservationStatus.COMPLETED,
        TableEffect.RELEASE,
        "Completed",
    ),
    "modify": Transition(
        frozenset({ReservationStatus.PENDING}),
        ReservationStatus.PENDING,
        TableEffect.RELEASE,
        "Modified",
    ),
    "expire": Transition(
        frozenset({ReservationStatus.PENDING}),
        ReservationStatus.CANCELLED,
        TableEffect.NONE,
        "Expired without confirmation",
    ),
}

# Target table state -> states it may be entered from by an external event.
# Reserved is only ever entered through a reservation confirmation.
TABLE_TRANSITIONS: Dict[TableState, FrozenSet[TableState]] = {
    TableState.OCCUPIED: frozenset({TableState.FREE, TableState.RESERVED}),
    TableState.FREE: frozenset(
        {TableState.OCCUPIED, TableState.RESERVED, TableState.MAINTENANCE, TableState.BLOCKED}
    ),
    TableState.MAINTENANCE: frozenset({TableState.FREE, TableState.BLOCKED}),
    TableState.BLOCKED: frozenset({TableState.FREE, TableState.MAINTENANCE}),
    TableState.RESERVED: frozenset(),
}


class ReservationManager:
    def __init__(
        self,
        session: AsyncSession,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.settings = settings or load_settings()
        self.clock = clock
        self.tables = TableStore(session)
        self.reservations = ReservationStore(session)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def check_availability(
        self,
        table_id: int,
        start: datetime,
        duration_minutes: int,
        exclude_id: Optional[int] = None,
    ) -> bool:
        return await check_availability(
            self.tables,
            self.reservations,
            table_id,
            start,
            duration_minutes,
            exclude_reservation_id=exclude_id,
            now=self.clock(),
            occupancy_hold_minutes=self.settings.occupancy_hold_minutes,
        )

    async def find_available_tables(
        self,
        party_size: int,
        start: datetime,
        duration_minutes: Optional[int] = None,
        location: Optional[str] = None,
    ) -> List[DiningTable]:
        return await find_available_tables(
            self.tables,
            self.reservations,
            party_size,
            start,
            self._duration_or_default(duration_minutes),
            location=location,
            now=self.clock(),
            occupancy_hold_minutes=self.settings.occupancy_hold_minutes,
        )

    async def suggest_alternatives(
        self,
        party_size: int,
        start: datetime,
        duration_minutes: Optional[int] = None,
        location: Optional[str] = None,
        limit: int = 5,
    ) -> List[Alternative]:
        return await suggest_alternatives(
            self.tables,
            self.reservations,
            party_size,
            start,
            self._duration_or_default(duration_minutes),
            location=location,
            now=self.clock(),
            limit=limit,
            occupancy_hold_minutes=self.settings.occupancy_hold_minutes,
        )

    async def get_reservation(self, reservation_id: int) -> Reservation:
        return await self._require_reservation(reservation_id)

    async def get_table(self, table_id: int) -> DiningTable:
        return await self._require_table(table_id)

    async def list_reservations(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        status: Optional[ReservationStatus] = None,
        customer_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Reservation]:
        statuses = [ReservationStatus(status)] if status is not None else None
        return await self.reservations.list_reservations(
            start=start, end=end, statuses=statuses, customer_id=customer_id, limit=limit
        )

    async def upcoming_reservations(self, hours: Optional[int] = None) -> List[Reservation]:
        """Bookings starting within the next ``hours`` that have not been cancelled."""
        if hours is None:
            hours = self.settings.upcoming_hours
        if hours <= 0:
            raise InvalidRequestError(f"hours must be positive, got {hours}")
        now = self.clock()
        return await self.reservations.list_reservations(
            start=now,
            end=now + timedelta(hours=hours),
            statuses=[s for s in ReservationStatus if s != ReservationStatus.CANCELLED],
        )

    # ------------------------------------------------------------------
    # Reservation lifecycle
    # ------------------------------------------------------------------

    async def create_reservation(
        self,
        table_id: int,
        start: datetime,
        party_size: int,
        duration_minutes: Optional[int] = None,
        customer_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Reservation:
        duration = self._duration_or_default(duration_minutes)
        start = to_naive_utc(start)
        window_end(start, duration)
        self._check_party_size(party_size)
        self._check_booking_window(start)

        async with self._unit_of_work():
            table = await self._require_table(table_id)
            _check_capacity(table, party_size)
            await self._require_free_window(table, start, duration)
            await self.tables.claim(table)

            now = self.clock()
            reservation = Reservation(
                table_id=table.id,
                customer_id=customer_id,
                start_time=start,
                duration_minutes=duration,
                party_size=party_size,
                status=ReservationStatus.PENDING,
                notes=notes or "",
                created_at=now,
            )
            reservation.append_note(
                f"Created for party of {party_size} at table {table.number}", now
            )
            self.reservations.add(reservation)

        logger.info(
            "Reservation %s created: table=%s start=%s duration=%s party=%s",
            reservation.id, table.number, start, duration, party_size,
        )
        return reservation

    async def confirm_reservation(self, reservation_id: int) -> Reservation:
        return await self._transition("confirm", reservation_id)

    async def cancel_reservation(self, reservation_id: int, reason: Optional[str] = None) -> Reservation:
        return await self._transition("cancel", reservation_id, detail=reason)

    async def complete_reservation(self, reservation_id: int) -> Reservation:
        return await self._transition("complete", reservation_id)

    async def modify_reservation(
        self,
        reservation_id: int,
        new_start: Optional[datetime] = None,
        new_table_id: Optional[int] = None,
        new_party_size: Optional[int] = None,
        new_duration_minutes: Optional[int] = None,
    ) -> Reservation:
        transition = TRANSITIONS["modify"]

        async with self._unit_of_work():
            reservation = await self._require_reservation(reservation_id)
            _check_source(reservation, "modify", transition)

            start = to_naive_utc(new_start) if new_start is not None else reservation.start_time
            duration = (
                new_duration_minutes
                if new_duration_minutes is not None
                else reservation.duration_minutes
            )
            party_size = new_party_size if new_party_size is not None else reservation.party_size
            window_end(start, duration)
            self._check_party_size(party_size)
            if new_start is not None:
                self._check_booking_window(start)

            old_table = await self._require_table(reservation.table_id)
            if new_table_id is None or new_table_id == old_table.id:
                new_table = old_table
            else:
                new_table = await self._require_table(new_table_id)

            # Validate everything before touching any row
            _check_capacity(new_table, party_size)
            await self._require_free_window(new_table, start, duration, exclude_id=reservation.id)
            await self._claim_all([old_table, new_table])

            now = self.clock()
            changes = _describe_changes(reservation, old_table, new_table, start, duration, party_size)
            _apply_table_effect(transition.table_effect, old_table, reservation)
            reservation.table_id = new_table.id
            reservation.start_time = start
            reservation.duration_minutes = duration
            reservation.party_size = party_size
            reservation.updated_at = now
            reservation.append_note(f"{transition.note}: {changes}", now)

        logger.info("Reservation %s modified: %s", reservation_id, changes)
        return reservation

    async def expire_stale_reservations(self, grace_minutes: Optional[int] = None) -> int:
        """Cancel Pending reservations whose start passed more than the grace period ago."""
        transition = TRANSITIONS["expire"]
        if grace_minutes is None:
            grace_minutes = self.settings.expiry_grace_minutes

        async with self._unit_of_work():
            now = self.clock()
            stale = await self.reservations.list_pending_started_before(
                now - timedelta(minutes=grace_minutes)
            )
            tables = []
            for table_id in sorted({r.table_id for r in stale}):
                tables.append(await self._require_table(table_id))
            await self._claim_all(tables)

            for reservation in stale:
                reservation.status = transition.target
                reservation.updated_at = now
                reservation.append_note(transition.note, now)

        if stale:
            logger.info("Expired %d unconfirmed reservations", len(stale))
        return len(stale)

    # ------------------------------------------------------------------
    # Table events from seating and billing
    # ------------------------------------------------------------------

    async def seat_walk_in(self, party_size: int, location: Optional[str] = None) -> DiningTable:
        """Seat a party without a booking at the best-fitting free table."""
        now = self.clock()
        async with self._unit_of_work():
            candidates = await find_available_tables(
                self.tables,
                self.reservations,
                party_size,
                now,
                self.settings.occupancy_hold_minutes,
                location=location,
                now=now,
                occupancy_hold_minutes=self.settings.occupancy_hold_minutes,
            )
            free = [t for t in candidates if t.state == TableState.FREE]
            if not free:
                logger.warning("No free table for walk-in party of %d", party_size)
                raise UnavailableError(f"No free table for a party of {party_size}")
            table = free[0]
            await self.tables.claim(table)
            table.state = TableState.OCCUPIED
            table.reserved_for_id = None

        logger.info("Walk-in party of %d seated at table %s", party_size, table.number)
        return table

    async def occupy_table(self, table_id: int) -> DiningTable:
        return await self.set_table_state(table_id, TableState.OCCUPIED)

    async def release_table(self, table_id: int) -> DiningTable:
        return await self.set_table_state(table_id, TableState.FREE)

    async def set_table_state(self, table_id: int, state: TableState) -> DiningTable:
        state = TableState(state)
        async with self._unit_of_work():
            table = await self._require_table(table_id)
            if table.state not in TABLE_TRANSITIONS[state]:
                raise InvalidTransitionError(
                    f"Table {table.number} cannot go from {table.state.value} to {state.value}"
                )
            await self.tables.claim(table)
            previous = table.state
            table.state = state
            table.reserved_for_id = None

        logger.info("Table %s: %s -> %s", table.number, previous.value, state.value)
        return table

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _unit_of_work(self):
        try:
            yield
            await self.session.commit()
        except IntegrityError as exc:
            # Constraint violation at commit time: another writer got there first
            await self.session.rollback()
            raise ConflictError("The write conflicted with concurrent changes, retry the operation") from exc
        except Exception:
            await self.session.rollback()
            raise

    async def _transition(self, event: str, reservation_id: int, detail: Optional[str] = None) -> Reservation:
        transition = TRANSITIONS[event]
        async with self._unit_of_work():
            reservation = await self._require_reservation(reservation_id)
            _check_source(reservation, event, transition)
            table = await self._require_table(reservation.table_id)
            await self.tables.claim(table)

            now = self.clock()
            _apply_table_effect(transition.table_effect, table, reservation)
            reservation.status = transition.target
            reservation.updated_at = now
            note = f"{transition.note}: {detail}" if detail else transition.note
            reservation.append_note(note, now)

        logger.info("Reservation %s -> %s", reservation_id, transition.target.value)
        return reservation

    async def _require_table(self, table_id: int) -> DiningTable:
        table = await self.tables.get(table_id)
        if table is None:
            raise NotFoundError(f"Table {table_id} not found")
        return table

    async def _require_reservation(self, reservation_id: int) -> Reservation:
        reservation = await self.reservations.get(reservation_id)
        if reservation is None:
            raise NotFoundError(f"Reservation {reservation_id} not found")
        return reservation

    async def _require_free_window(
        self,
        table: DiningTable,
        start: datetime,
        duration_minutes: int,
        exclude_id: Optional[int] = None,
    ) -> None:
        end = window_end(start, duration_minutes)
        booked = await self.reservations.list_for_table(
            table.id, ACTIVE_STATUSES, window_start=start, window_end=end
        )
        if not is_available(
            table,
            start,
            duration_minutes,
            booked,
            exclude_id=exclude_id,
            now=self.clock(),
            occupancy_hold_minutes=self.settings.occupancy_hold_minutes,
        ):
            logger.warning(
                "Table %s unavailable for %s..%s", table.number, start, end
            )
            raise UnavailableError(
                f"Table {table.number} is not available from {start:%Y-%m-%d %H:%M} "
                f"for {duration_minutes} minutes"
            )

    async def _claim_all(self, tables: List[DiningTable]) -> None:
        # Fixed order so two writers never claim the same pair in reverse
        unique = {t.id: t for t in tables}
        for table_id in sorted(unique):
            await self.tables.claim(unique[table_id])

    def _check_party_size(self, party_size: int) -> None:
        if party_size <= 0:
            raise InvalidRequestError(f"party_size must be positive, got {party_size}")
        if party_size > self.settings.max_party_size:
            raise InvalidRequestError(
                f"Reservations take at most {self.settings.max_party_size} guests, "
                f"party of {party_size} requested"
            )

    def _check_booking_window(self, start: datetime) -> None:
        now = self.clock()
        if start < now + timedelta(minutes=self.settings.min_lead_minutes):
            logger.warning("Rejected booking at %s, too close to %s", start, now)
            raise InvalidRequestError(
                f"Reservations must start at least {self.settings.min_lead_minutes} "
                f"minutes ahead, got {start:%Y-%m-%d %H:%M}"
            )
        if start > now + timedelta(days=self.settings.max_advance_days):
            logger.warning("Rejected booking at %s, too far from %s", start, now)
            raise InvalidRequestError(
                f"Reservations can be made at most {self.settings.max_advance_days} "
                f"days ahead, got {start:%Y-%m-%d %H:%M}"
            )

    def _duration_or_default(self, duration_minutes: Optional[int]) -> int:
        if duration_minutes is None:
            return self.settings.default_duration_minutes
        return duration_minutes


def _check_capacity(table: DiningTable, party_size: int) -> None:
    if party_size > table.capacity:
        raise CapacityExceededError(
            f"Table {table.number} seats {table.capacity}, party of {party_size} requested"
        )


def _check_source(reservation: Reservation, event: str, transition: Transition) -> None:
    if reservation.status not in transition.sources:
        logger.warning(
            "Rejected %s on reservation %s in status %s",
            event, reservation.id, reservation.status.value,
        )
        raise InvalidTransitionError(
            f"Cannot {event} reservation {reservation.id} in status {reservation.status.value}"
        )


def _apply_table_effect(effect: TableEffect, table: DiningTable, reservation: Reservation) -> None:
    if effect == TableEffect.RESERVE:
        if table.state == TableState.FREE:
            table.state = TableState.RESERVED
            table.reserved_for_id = reservation.id
    elif effect == TableEffect.RELEASE:
        if table.is_reserved_for(reservation.id):
            table.state = TableState.FREE
            table.reserved_for_id = None


def _describe_changes(
    reservation: Reservation,
    old_table: DiningTable,
    new_table: DiningTable,
    start: datetime,
    duration: int,
    party_size: int,
) -> str:
    changes = []
    if new_table.id != old_table.id:
        changes.append(f"table {old_table.number} -> {new_table.number}")
    if start != reservation.start_time:
        changes.append(f"start {reservation.start_time:%Y-%m-%d %H:%M} -> {start:%Y-%m-%d %H:%M}")
    if duration != reservation.duration_minutes:
        changes.append(f"duration {reservation.duration_minutes} -> {duration} min")
    if party_size != reservation.party_size:
        changes.append(f"party {reservation.party_size} -> {party_size}")
    return ", ".join(changes) or "no changes"
