import unittest
from datetime import datetime, timedelta, timezone

from sqlalchemy import DateTime

from models import Reservation
from tests.support import NOW, SchedulingTestCase, at


class TestReservationColumns(unittest.TestCase):
    def test_timestamps_are_plain_naive_columns(self):
        for name in ("start_time", "created_at", "updated_at"):
            column = Reservation.__table__.c[name]
            self.assertIs(type(column.type), DateTime, name)
            self.assertFalse(column.type.timezone, name)


class TestTimestampStorage(SchedulingTestCase):
    async def test_naive_utc_round_trip(self):
        reservation_id = (
            await self.manager.create_reservation(self.table_id(2), at(19), 2, 60)
        ).id

        async with self.session_factory() as other:
            stored = await other.get(Reservation, reservation_id)

        self.assertEqual(stored.start_time, at(19))
        self.assertIsNone(stored.start_time.tzinfo)
        self.assertEqual(stored.created_at, NOW)

    async def test_aware_start_is_stored_as_utc(self):
        eastern = timezone(timedelta(hours=-4))
        reservation = await self.manager.create_reservation(
            self.table_id(2), datetime(2024, 1, 1, 15, 0, tzinfo=eastern), 2, 60
        )
        self.assertEqual(reservation.start_time, at(19))
        self.assertFalse(await self.manager.check_availability(self.table_id(2), at(19, 30), 30))


if __name__ == "__main__":
    unittest.main()
