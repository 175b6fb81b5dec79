import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from availability import to_naive_utc
from errors import ConflictError
from models import DiningTable, Reservation, ReservationStatus, TableState

logger = logging.getLogger(__name__)


class TableStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, table_id: int) -> Optional[DiningTable]:
        # Always re-read so decisions never rest on a stale identity-map copy
        return await self.session.get(DiningTable, table_id, populate_existing=True)

    async def list_tables(
        self,
        min_capacity: Optional[int] = None,
        exclude_states: Iterable[TableState] = (),
        location: Optional[str] = None,
    ) -> List[DiningTable]:
        statement = select(DiningTable)
        if min_capacity is not None:
            statement = statement.where(DiningTable.capacity >= min_capacity)
        exclude_states = list(exclude_states)
        if exclude_states:
            statement = statement.where(DiningTable.state.not_in(exclude_states))
        if location is not None:
            statement = statement.where(DiningTable.location == location)
        statement = statement.order_by(DiningTable.capacity, DiningTable.number)
        statement = statement.execution_options(populate_existing=True)
        result = await self.session.execute(statement)
        return list(result.scalars().all())

    async def claim(self, table: DiningTable) -> None:
        """Bump the table version if nobody else has since we read it.

        Every write that depends on a table's reservations or state claims
        the table inside its transaction, so two racing writers on the same
        table cannot both commit.
        """
        statement = (
            update(DiningTable)
            .where(DiningTable.id == table.id, DiningTable.version == table.version)
            .values(version=table.version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(statement)
        if result.rowcount != 1:
            logger.warning("Concurrent write detected on table %s (version %s)", table.id, table.version)
            raise ConflictError(f"Table {table.number} was modified concurrently, retry the operation")
        set_committed_value(table, "version", table.version + 1)


class ReservationStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, reservation_id: int) -> Optional[Reservation]:
        return await self.session.get(Reservation, reservation_id, populate_existing=True)

    def add(self, reservation: Reservation) -> None:
        self.session.add(reservation)

    async def list_for_table(
        self,
        table_id: int,
        statuses: Iterable[ReservationStatus],
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> List[Reservation]:
        statement = select(Reservation).where(
            Reservation.table_id == table_id,
            Reservation.status.in_(list(statuses)),
        )
        # End time is derived, so only the start bound can be pushed into SQL
        if window_end is not None:
            statement = statement.where(Reservation.start_time < window_end)
        statement = statement.order_by(Reservation.start_time)
        statement = statement.execution_options(populate_existing=True)
        result = await self.session.execute(statement)
        reservations = list(result.scalars().all())
        if window_start is not None:
            reservations = [r for r in reservations if r.end_time > window_start]
        return reservations

    async def list_pending_started_before(self, cutoff: datetime) -> List[Reservation]:
        statement = (
            select(Reservation)
            .where(
                Reservation.status == ReservationStatus.PENDING,
                Reservation.start_time < cutoff,
            )
            .order_by(Reservation.start_time)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(statement)
        return list(result.scalars().all())

    async def list_reservations(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        statuses: Optional[Iterable[ReservationStatus]] = None,
        customer_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Reservation]:
        """Reservations starting in ``[start, end)``, earliest first.

        Every filter is optional; bounds may be aware and are compared in UTC.
        """
        statement = select(Reservation)
        if start is not None:
            statement = statement.where(Reservation.start_time >= to_naive_utc(start))
        if end is not None:
            statement = statement.where(Reservation.start_time < to_naive_utc(end))
        if statuses is not None:
            statement = statement.where(Reservation.status.in_(list(statuses)))
        if customer_id is not None:
            statement = statement.where(Reservation.customer_id == customer_id)
        statement = statement.order_by(Reservation.start_time, Reservation.id)
        if limit is not None:
            statement = statement.limit(limit)
        statement = statement.execution_options(populate_existing=True)
        result = await self.session.execute(statement)
        return list(result.scalars().all())

    async def list_in_range(self, start: datetime, end: datetime) -> List[Reservation]:
        return await self.list_reservations(start=start, end=end)
