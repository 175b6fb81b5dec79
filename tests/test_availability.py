import unittest
from datetime import datetime, timedelta, timezone

from availability import is_available, is_window_free, overlaps, to_naive_utc, window_end
from errors import NotFoundError
from models import DiningTable, ReservationStatus, TableState
from tests.support import NOW, SchedulingTestCase, at, make_reservation


class TestOverlap(unittest.TestCase):
    def test_overlap_is_symmetric(self):
        windows = [
            (at(18), at(19)),
            (at(18, 30), at(20)),
            (at(19), at(21)),
            (at(20), at(21)),
            (at(21), at(22)),
            (at(17), at(23)),
        ]
        for a in windows:
            for b in windows:
                self.assertEqual(overlaps(*a, *b), overlaps(*b, *a), (a, b))

    def test_touching_windows_do_not_overlap(self):
        self.assertFalse(overlaps(at(19), at(21), at(21), at(22)))
        self.assertFalse(overlaps(at(21), at(22), at(19), at(21)))

    def test_starts_during_ends_during_and_envelops(self):
        existing = (at(19), at(21))
        self.assertTrue(overlaps(at(20), at(22), *existing))
        self.assertTrue(overlaps(at(18), at(19, 30), *existing))
        self.assertTrue(overlaps(at(18), at(22), *existing))
        self.assertTrue(overlaps(at(19, 30), at(20), *existing))

    def test_window_end_rejects_non_positive_duration(self):
        self.assertEqual(window_end(at(19), 90), at(20, 30))
        with self.assertRaises(ValueError):
            window_end(at(19), 0)
        with self.assertRaises(ValueError):
            window_end(at(19), -15)

    def test_aware_datetimes_are_normalized_to_naive_utc(self):
        aware = datetime(2024, 1, 1, 15, 0, tzinfo=timezone(timedelta(hours=-4)))
        self.assertEqual(to_naive_utc(aware), at(19))
        self.assertEqual(to_naive_utc(at(19)), at(19))


class TestWindowScan(unittest.TestCase):
    def test_cancelled_and_completed_never_conflict(self):
        reservations = [
            make_reservation(1, at(19), status=ReservationStatus.CANCELLED),
            make_reservation(2, at(19), status=ReservationStatus.COMPLETED),
        ]
        self.assertTrue(is_window_free(at(19), at(21), reservations))

    def test_pending_conflicts(self):
        reservations = [make_reservation(1, at(19), status=ReservationStatus.PENDING)]
        self.assertFalse(is_window_free(at(20), at(21), reservations))

    def test_excluded_reservation_is_skipped(self):
        reservations = [make_reservation(7, at(19))]
        self.assertFalse(is_window_free(at(19), at(21), reservations))
        self.assertTrue(is_window_free(at(19), at(21), reservations, exclude_id=7))


class TestTableStates(unittest.TestCase):
    def test_out_of_service_tables_never_available(self):
        for state in (TableState.MAINTENANCE, TableState.BLOCKED):
            table = DiningTable(id=1, number=1, capacity=4, state=state)
            self.assertFalse(is_available(table, at(19), 60, [], now=NOW))

    def test_occupied_table_is_busy_for_the_hold_period(self):
        table = DiningTable(id=1, number=1, capacity=4, state=TableState.OCCUPIED)
        self.assertFalse(is_available(table, at(12, 30), 60, [], now=NOW, occupancy_hold_minutes=120))
        self.assertFalse(is_available(table, at(11, 30), 60, [], now=NOW, occupancy_hold_minutes=120))
        self.assertTrue(is_available(table, at(14), 60, [], now=NOW, occupancy_hold_minutes=120))
        self.assertTrue(is_available(table, at(19), 60, [], now=NOW, occupancy_hold_minutes=120))

    def test_reserved_table_still_accepts_other_windows(self):
        table = DiningTable(id=1, number=1, capacity=4, state=TableState.RESERVED, reserved_for_id=3)
        reservations = [make_reservation(3, at(19))]
        self.assertTrue(is_available(table, at(13), 60, reservations, now=NOW))
        self.assertFalse(is_available(table, at(20), 60, reservations, now=NOW))


class TestCheckAvailability(SchedulingTestCase):
    async def test_empty_table_is_available(self):
        self.assertTrue(await self.manager.check_availability(self.table_id(5), at(19), 120))

    async def test_overlapping_and_abutting_requests(self):
        reservation = await self.manager.create_reservation(self.table_id(5), at(19), 4, 120)
        await self.manager.confirm_reservation(reservation.id)

        self.assertFalse(await self.manager.check_availability(self.table_id(5), at(20), 60))
        self.assertTrue(await self.manager.check_availability(self.table_id(5), at(21), 60))
        self.assertTrue(await self.manager.check_availability(self.table_id(5), at(17), 120))

    async def test_no_self_conflict_after_exclusion(self):
        reservation = await self.manager.create_reservation(self.table_id(2), at(19), 2, 90)
        self.assertFalse(await self.manager.check_availability(self.table_id(2), at(19), 90))
        self.assertTrue(
            await self.manager.check_availability(
                self.table_id(2), at(19), 90, exclude_id=reservation.id
            )
        )

    async def test_cancelled_reservation_frees_the_window(self):
        reservation = await self.manager.create_reservation(self.table_id(2), at(19), 2, 90)
        await self.manager.cancel_reservation(reservation.id, "guest called")
        self.assertTrue(await self.manager.check_availability(self.table_id(2), at(19), 90))

    async def test_unknown_table_raises_not_found(self):
        with self.assertRaises(NotFoundError):
            await self.manager.check_availability(999, at(19), 60)

    async def test_non_positive_duration_is_rejected(self):
        with self.assertRaises(ValueError):
            await self.manager.check_availability(self.table_id(2), at(19), 0)


if __name__ == "__main__":
    unittest.main()
