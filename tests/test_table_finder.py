import unittest

from models import DiningTable, TableState
from table_finder import rank_tables
from tests.support import SchedulingTestCase, at


class TestRanking(unittest.TestCase):
    def test_tightest_fit_first_then_number(self):
        tables = [
            DiningTable(id=1, number=9, capacity=6),
            DiningTable(id=2, number=3, capacity=4),
            DiningTable(id=3, number=1, capacity=6),
            DiningTable(id=4, number=2, capacity=8),
        ]
        self.assertEqual([t.number for t in rank_tables(tables)], [3, 1, 9, 2])


class TestFindAvailableTables(SchedulingTestCase):
    tables_seed = [
        {"number": 10, "capacity": 2},
        {"number": 11, "capacity": 4},
        {"number": 12, "capacity": 6},
        {"number": 13, "capacity": 8},
    ]

    async def numbers(self, party_size, start=None, duration=120, location=None):
        found = await self.manager.find_available_tables(
            party_size, start or at(19), duration, location=location
        )
        return [t.number for t in found]

    async def test_party_of_six_gets_six_then_eight(self):
        self.assertEqual(await self.numbers(6), [12, 13])

    async def test_nothing_fits_returns_empty_list(self):
        self.assertEqual(await self.numbers(9), [])

    async def test_capacity_monotonicity(self):
        self.assertNotIn(11, await self.numbers(5))
        for party_size in range(5, 10):
            self.assertNotIn(11, await self.numbers(party_size))
        self.assertIn(11, await self.numbers(4))

    async def test_booked_table_is_filtered_out(self):
        await self.manager.create_reservation(self.table_id(12), at(18, 30), 5, 120)
        self.assertEqual(await self.numbers(6), [13])
        self.assertEqual(await self.numbers(6, start=at(20, 30)), [12, 13])

    async def test_out_of_service_tables_are_never_candidates(self):
        await self.manager.set_table_state(self.table_id(12), TableState.MAINTENANCE)
        await self.manager.set_table_state(self.table_id(13), TableState.BLOCKED)
        self.assertEqual(await self.numbers(6), [])

    async def test_ranking_is_deterministic(self):
        first = await self.numbers(2)
        second = await self.numbers(2)
        self.assertEqual(first, [10, 11, 12, 13])
        self.assertEqual(first, second)

    async def test_non_positive_party_is_rejected(self):
        with self.assertRaises(ValueError):
            await self.numbers(0)

    async def test_find_does_not_write(self):
        before = [(t.number, t.state, t.version) for t in await self.manager.tables.list_tables()]
        await self.numbers(2)
        after = [(t.number, t.state, t.version) for t in await self.manager.tables.list_tables()]
        self.assertEqual(before, after)


class TestLocationAndAlternatives(SchedulingTestCase):
    async def test_location_filter(self):
        found = await self.manager.find_available_tables(2, at(19), 120, location="terraza")
        self.assertEqual([t.number for t in found], [1, 4])

    async def test_alternatives_offered_around_a_full_slot(self):
        await self.manager.create_reservation(self.table_id(5), at(19), 8, 120)
        self.assertEqual(await self.manager.find_available_tables(7, at(19), 120), [])

        alternatives = await self.manager.suggest_alternatives(7, at(19), 120)
        self.assertEqual(
            [(a.start, a.table.number) for a in alternatives], [(at(17), 5), (at(21), 5)]
        )

    async def test_alternatives_are_capped(self):
        alternatives = await self.manager.suggest_alternatives(2, at(19), 60, limit=3)
        self.assertEqual(len(alternatives), 3)
        self.assertEqual([a.start for a in alternatives], [at(17)] * 3)


if __name__ == "__main__":
    unittest.main()
