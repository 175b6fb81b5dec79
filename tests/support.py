import unittest
from datetime import datetime

from sqlalchemy.pool import StaticPool

from config import Settings
from database import build_engine, build_session_factory, init_db, seed_tables
from models import Reservation, ReservationStatus
from reservations import ReservationManager

NOW = datetime(2024, 1, 1, 12, 0)

DEFAULT_SEED = [
    {"number": 1, "capacity": 2, "location": "terraza"},
    {"number": 2, "capacity": 4, "location": "interior"},
    {"number": 3, "capacity": 4, "location": "interior"},
    {"number": 4, "capacity": 6, "location": "terraza"},
    {"number": 5, "capacity": 8, "location": "interior"},
]


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 1, 1, hour, minute)


def make_reservation(
    reservation_id,
    start,
    duration_minutes=120,
    status=ReservationStatus.CONFIRMED,
    table_id=1,
    party_size=2,
):
    return Reservation(
        id=reservation_id,
        table_id=table_id,
        start_time=start,
        duration_minutes=duration_minutes,
        party_size=party_size,
        status=status,
        created_at=NOW,
    )


class SchedulingTestCase(unittest.IsolatedAsyncioTestCase):
    """Fresh in-memory database per test, seeded with ``tables_seed``."""

    tables_seed = DEFAULT_SEED

    async def asyncSetUp(self):
        self.engine = build_engine("sqlite+aiosqlite://", poolclass=StaticPool, echo=False)
        await init_db(self.engine)
        self.session_factory = build_session_factory(self.engine)
        self.session = self.session_factory()
        await seed_tables(self.session, self.tables_seed)
        self.now = NOW
        self.manager = ReservationManager(self.session, settings=Settings(), clock=lambda: self.now)
        tables = await self.manager.tables.list_tables()
        self.table_ids = {t.number: t.id for t in tables}

    async def asyncTearDown(self):
        await self.session.close()
        await self.engine.dispose()

    def table_id(self, number: int) -> int:
        return self.table_ids[number]

    async def table(self, number: int):
        return await self.manager.get_table(self.table_id(number))
