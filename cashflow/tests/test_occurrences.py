import unittest
from datetime import date, datetime
from decimal import Decimal

from cashflow.errors import ForecastError, InvalidItemConfiguration, WindowExceeded
from cashflow.items import DisplayType, RecurringItem
from cashflow.occurrences import (
    default_window,
    generate_occurrences,
    generate_occurrences_partial,
    occurrence_id,
)


class OccurrenceGenerationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.rent = RecurringItem(
            id="rent",
            name="Rent",
            display_type="fixed-expense",
            amount=Decimal("1200"),
            frequency="monthly",
            start_date=date(2024, 1, 1),
        )

    def test_monthly_item_over_four_months(self) -> None:
        occurrences = generate_occurrences([self.rent], date(2024, 1, 1), date(2024, 4, 30))

        self.assertEqual(
            [occ.occurrence_id for occ in occurrences],
            ["rent::2024-01-01", "rent::2024-02-01", "rent::2024-03-01", "rent::2024-04-01"],
        )
        self.assertTrue(all(occ.amount == Decimal("1200") for occ in occurrences))
        self.assertTrue(all(occ.display_type is DisplayType.FIXED_EXPENSE for occ in occurrences))
        self.assertFalse(any(occ.is_overridden for occ in occurrences))

    def test_semi_monthly_in_date_order(self) -> None:
        item = RecurringItem(
            id="pay",
            name="Paycheck",
            display_type="income",
            amount=Decimal("1500"),
            frequency="semi-monthly",
            start_date=date(2024, 1, 1),
            semi_monthly_days=(1, 15),
        )

        occurrences = generate_occurrences([item], date(2024, 1, 1), date(2024, 2, 28))

        self.assertEqual(
            [occ.occurrence_date for occ in occurrences],
            [date(2024, 1, 1), date(2024, 1, 15), date(2024, 2, 1), date(2024, 2, 15)],
        )

    def test_generation_is_repeatable(self) -> None:
        first = generate_occurrences([self.rent], date(2024, 1, 1), date(2024, 6, 30))
        second = generate_occurrences([self.rent], date(2024, 1, 1), date(2024, 6, 30))

        self.assertEqual(first, second)

    def test_narrower_window_is_a_subset(self) -> None:
        wide = generate_occurrences([self.rent], date(2024, 1, 1), date(2024, 12, 31))
        narrow = generate_occurrences([self.rent], date(2024, 3, 1), date(2024, 5, 31))

        expected = [
            occ for occ in wide if date(2024, 3, 1) <= occ.occurrence_date <= date(2024, 5, 31)
        ]
        self.assertEqual(narrow, expected)

    def test_respects_end_date_and_tracking_floor(self) -> None:
        item = RecurringItem(
            id="gym",
            name="Gym",
            display_type="subscription",
            amount=Decimal("40"),
            frequency="monthly",
            start_date=date(2024, 1, 1),
            end_date=date(2024, 5, 15),
        )

        occurrences = generate_occurrences(
            [item], date(2024, 1, 1), date(2024, 12, 31), tracking_floor=date(2024, 2, 15)
        )

        self.assertEqual(
            [occ.occurrence_date for occ in occurrences],
            [date(2024, 3, 1), date(2024, 4, 1), date(2024, 5, 1)],
        )

    def test_window_errors(self) -> None:
        with self.assertRaises(WindowExceeded):
            generate_occurrences([self.rent], date(2024, 1, 1), None)
        with self.assertRaises(ForecastError):
            generate_occurrences([self.rent], date(2024, 2, 1), date(2024, 1, 1))
        with self.assertRaises(WindowExceeded):
            generate_occurrences(
                [self.rent], date(2024, 1, 1), date(2024, 3, 1), max_window_days=30
            )

    def test_strict_generation_fails_on_invalid_item(self) -> None:
        broken = RecurringItem(
            id="broken",
            name="Broken",
            display_type="subscription",
            amount=Decimal("-5"),
            frequency="monthly",
            start_date=date(2024, 1, 1),
        )

        with self.assertRaises(InvalidItemConfiguration):
            generate_occurrences([self.rent, broken], date(2024, 1, 1), date(2024, 1, 31))

    def test_partial_generation_reports_failures(self) -> None:
        broken = RecurringItem(
            id="broken",
            name="Broken",
            display_type="subscription",
            amount=Decimal("10"),
            frequency="monthly",
            start_date=date(2024, 2, 1),
            end_date=date(2024, 1, 1),
        )

        with self.assertLogs("cashflow.occurrences", level="WARNING"):
            result = generate_occurrences_partial(
                [broken, self.rent], date(2024, 1, 1), date(2024, 1, 31)
            )

        self.assertEqual([occ.occurrence_id for occ in result.occurrences], ["rent::2024-01-01"])
        self.assertEqual(len(result.failures), 1)
        self.assertEqual(result.failures[0].item_id, "broken")

    def test_partial_generation_strips_time_and_reports_bad_dates(self) -> None:
        timed = RecurringItem(
            id="timed",
            name="Timed",
            display_type="subscription",
            amount=Decimal("15"),
            frequency="monthly",
            start_date=datetime(2024, 1, 1, 9, 30),
            end_date=datetime(2024, 2, 1, 23, 0),
        )
        garbled = RecurringItem(
            id="garbled",
            name="Garbled",
            display_type="subscription",
            amount=Decimal("15"),
            frequency="monthly",
            start_date=date(2024, 1, 1),
            anchor_date=20240101,
        )

        with self.assertLogs("cashflow.occurrences", level="WARNING"):
            result = generate_occurrences_partial(
                [timed, garbled, self.rent], date(2024, 1, 1), date(2024, 3, 31)
            )

        self.assertEqual(
            [occ.occurrence_id for occ in result.occurrences if occ.item_id == "timed"],
            ["timed::2024-01-01", "timed::2024-02-01"],
        )
        self.assertEqual([failure.item_id for failure in result.failures], ["garbled"])
        self.assertIn("anchor_date", result.failures[0].reason)

    def test_income_moves_to_previous_business_day(self) -> None:
        salary = RecurringItem(
            id="salary",
            name="Salary",
            display_type="income",
            amount=Decimal("3000"),
            frequency="monthly",
            start_date=date(2024, 5, 1),
        )
        expense = RecurringItem(
            id="phone",
            name="Phone",
            display_type="subscription",
            amount=Decimal("50"),
            frequency="monthly",
            start_date=date(2024, 5, 1),
        )

        occurrences = generate_occurrences(
            [salary, expense],
            date(2024, 5, 1),
            date(2024, 7, 31),
            adjust_income_to_business_day=True,
        )

        salary_dates = [occ.occurrence_date for occ in occurrences if occ.item_id == "salary"]
        phone_dates = [occ.occurrence_date for occ in occurrences if occ.item_id == "phone"]
        self.assertEqual(salary_dates, [date(2024, 5, 1), date(2024, 5, 31), date(2024, 7, 1)])
        self.assertEqual(phone_dates, [date(2024, 5, 1), date(2024, 6, 1), date(2024, 7, 1)])
        self.assertIn("salary::2024-05-31", [occ.occurrence_id for occ in occurrences])

    def test_occurrence_id_format(self) -> None:
        self.assertEqual(occurrence_id("abc", date(2024, 3, 5)), "abc::2024-03-05")

    def test_default_window(self) -> None:
        self.assertEqual(
            default_window(date(2024, 5, 31)),
            (date(2024, 2, 29), date(2024, 8, 29)),
        )


if __name__ == "__main__":
    unittest.main()
