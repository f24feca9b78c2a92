import unittest
from datetime import date

import pandas as pd

import date_engine


class TestParsing(unittest.TestCase):

    def test_iso(self):
        self.assertEqual(date_engine.parse_local_date("2024-01-05"), date(2024, 1, 5))

    def test_thai_long_and_short(self):
        self.assertEqual(date_engine.parse_local_date("05/01/2024"), date(2024, 1, 5))
        # 2-digit year reads as 20YY
        self.assertEqual(date_engine.parse_local_date("05/01/24"), date(2024, 1, 5))

    def test_unparseable_returns_none(self):
        self.assertIsNone(date_engine.parse_local_date("hello"))
        self.assertIsNone(date_engine.parse_local_date(""))
        self.assertIsNone(date_engine.parse_local_date(None))
        # Fields that do not form a real date
        self.assertIsNone(date_engine.parse_local_date("2024-02-30"))
        self.assertIsNone(date_engine.parse_local_date("31/13/2024"))

    def test_round_trip(self):
        for d in [date(2024, 1, 1), date(2024, 2, 29), date(2025, 12, 31)]:
            self.assertEqual(date_engine.parse_local_date(date_engine.format_iso(d)), d)
            self.assertEqual(date_engine.parse_local_date(date_engine.format_date_long(d)), d)
            self.assertEqual(date_engine.parse_local_date(date_engine.format_date_short(d)), d)

    def test_to_local_date_coercion(self):
        self.assertEqual(date_engine.to_local_date(pd.Timestamp("2024-03-01")), date(2024, 3, 1))
        self.assertEqual(date_engine.to_local_date(date(2024, 3, 1)), date(2024, 3, 1))
        self.assertIsNone(date_engine.to_local_date(float("nan")))
        self.assertIsNone(date_engine.to_local_date(pd.NaT))

    def test_require_date(self):
        self.assertEqual(date_engine.require_date("2024-01-01"), date(2024, 1, 1))
        with self.assertRaises(ValueError):
            date_engine.require_date("not a date", "plan_start_date")


class TestArithmetic(unittest.TestCase):

    def test_duration_inclusive(self):
        d = date(2024, 1, 1)
        self.assertEqual(date_engine.duration_days(d, d), 1)
        self.assertEqual(date_engine.duration_days(d, date(2024, 1, 5)), 5)

    def test_duration_inverted_clamps_to_zero(self):
        self.assertEqual(date_engine.duration_days(date(2024, 1, 5), date(2024, 1, 1)), 0)

    def test_calc_duration_days_strings(self):
        self.assertEqual(date_engine.calc_duration_days("2024-01-01", "2024-01-10"), 10)
        self.assertEqual(date_engine.calc_duration_days("2024-01-01", None), 0)
        self.assertEqual(date_engine.calc_duration_days("bad", "2024-01-10"), 0)

    def test_add_days(self):
        self.assertEqual(date_engine.add_days(date(2024, 1, 31), 1), date(2024, 2, 1))
        self.assertEqual(date_engine.add_days_to_iso("2024-01-31", 1), "2024-02-01")
        self.assertEqual(date_engine.add_days_to_iso("2024-03-01", -1), "2024-02-29")
        # Unparseable input comes back unchanged
        self.assertEqual(date_engine.add_days_to_iso("bad", 3), "bad")

    def test_weekend(self):
        self.assertTrue(date_engine.is_weekend(date(2024, 1, 6)))  # Sat
        self.assertTrue(date_engine.is_weekend(date(2024, 1, 7)))  # Sun
        self.assertFalse(date_engine.is_weekend(date(2024, 1, 8)))  # Mon

    def test_today_comparisons(self):
        today = date(2024, 2, 1)
        self.assertTrue(date_engine.is_today(date(2024, 2, 1), today=today))
        self.assertTrue(date_engine.is_iso_today("2024-02-01", today=today))
        self.assertFalse(date_engine.is_iso_today(None, today=today))

    def test_today_iso(self):
        self.assertEqual(
            date_engine.parse_local_date(date_engine.today_iso()), date_engine.today_local()
        )

    def test_overdue(self):
        today = date(2024, 2, 1)
        self.assertTrue(date_engine.is_overdue("2024-01-01", 50, today=today))
        self.assertFalse(date_engine.is_overdue("2024-01-01", 100, today=today))
        self.assertFalse(date_engine.is_overdue("2024-03-01", 0, today=today))
        self.assertFalse(date_engine.is_overdue(None, today=today))


class TestFormatting(unittest.TestCase):

    def test_short_and_long(self):
        self.assertEqual(date_engine.format_date_short("2024-01-05"), "05/01/24")
        self.assertEqual(date_engine.format_date_long("2024-01-05"), "05/01/2024")
        self.assertEqual(date_engine.format_date_short(None), "-")
        self.assertEqual(date_engine.format_date_long("garbage"), "-")

    def test_thai_buddhist_era(self):
        self.assertEqual(date_engine.format_date_thai("2025-01-15"), "15 มกราคม 2568")
        self.assertEqual(date_engine.format_date_thai(None), "-")

    def test_range(self):
        self.assertEqual(
            date_engine.format_date_range("2024-01-01", "2024-01-05"),
            "01/01/24 - 05/01/24 (5d)",
        )
        self.assertEqual(date_engine.format_date_range("2024-01-01", None), "-")

    def test_format_iso_none(self):
        self.assertEqual(date_engine.format_iso(None), "")


if __name__ == '__main__':
    unittest.main()
