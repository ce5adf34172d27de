import unittest
from datetime import date
from decimal import Decimal

from cashflow.errors import InvalidItemConfiguration
from cashflow.forecast import run_forecast
from cashflow.items import RecurringItem
from cashflow.overrides import Override
from cashflow.pay_periods import PaySchedule, pay_dates


class RunForecastTests(unittest.TestCase):
    def setUp(self) -> None:
        self.items = [
            RecurringItem(
                id="salary",
                name="Salary",
                display_type="income",
                amount=Decimal("2000"),
                frequency="bi-weekly",
                start_date=date(2024, 1, 5),
            ),
            RecurringItem(
                id="rent",
                name="Rent",
                display_type="fixed-expense",
                amount=Decimal("1200"),
                frequency="monthly",
                start_date=date(2024, 1, 1),
            ),
            RecurringItem(
                id="phone",
                name="Phone",
                display_type="subscription",
                amount=Decimal("50"),
                frequency="monthly",
                start_date=date(2024, 1, 20),
            ),
        ]
        self.pay_dates = pay_dates(
            PaySchedule(frequency="bi-weekly", anchor_date=date(2024, 1, 5)),
            date(2024, 1, 1),
            date(2024, 1, 31),
        )

    def test_full_pipeline(self) -> None:
        forecast = run_forecast(
            self.items,
            date(2024, 1, 1),
            date(2024, 1, 31),
            overrides=[Override(item_id="rent", month_year="2024-01", override_amount=Decimal("1000"))],
            completed_ids={"rent::2024-01-01"},
            pay_dates=self.pay_dates,
            starting_balance=Decimal("100"),
        )

        self.assertEqual(
            [occ.occurrence_id for occ in forecast.occurrences],
            ["rent::2024-01-01", "salary::2024-01-05", "salary::2024-01-19", "phone::2024-01-20"],
        )
        self.assertEqual(forecast.occurrences[0].amount, Decimal("1000"))
        self.assertTrue(forecast.occurrences[0].is_overridden)
        self.assertEqual([occ.item_id for occ in forecast.done], ["rent"])
        self.assertEqual(len(forecast.pending), 3)

        opening, first, second = forecast.periods
        self.assertEqual((opening.period_start, opening.period_end), (date(2024, 1, 1), date(2024, 1, 4)))
        self.assertEqual(opening.committed_outflows, Decimal("0"))
        self.assertEqual(opening.final_remaining, Decimal("100"))
        self.assertEqual(first.period_start, date(2024, 1, 5))
        self.assertEqual(first.final_remaining, Decimal("2100"))
        self.assertEqual(second.period_end, date(2024, 1, 31))
        self.assertEqual(second.committed_outflows, Decimal("50"))
        self.assertEqual(second.final_remaining, Decimal("4050"))
        self.assertEqual(forecast.failures, [])

    def test_bills_due_before_next_payday_are_counted(self) -> None:
        rent = RecurringItem(
            id="rent",
            name="Rent",
            display_type="fixed-expense",
            amount=Decimal("1200"),
            frequency="monthly",
            start_date=date(2024, 1, 10),
        )
        salary = RecurringItem(
            id="salary",
            name="Salary",
            display_type="income",
            amount=Decimal("1000"),
            frequency="bi-weekly",
            start_date=date(2024, 1, 15),
        )

        forecast = run_forecast(
            [rent, salary],
            date(2024, 1, 8),
            date(2024, 1, 31),
            pay_dates=[date(2024, 1, 15), date(2024, 1, 29)],
            starting_balance=Decimal("500"),
        )

        self.assertEqual(
            [(period.period_start, period.committed_outflows, period.final_remaining) for period in forecast.periods],
            [
                (date(2024, 1, 8), Decimal("1200"), Decimal("-700")),
                (date(2024, 1, 15), Decimal("0"), Decimal("300")),
                (date(2024, 1, 29), Decimal("0"), Decimal("1300")),
            ],
        )
        self.assertTrue(forecast.periods[0].is_deficit)

    def test_partial_run_keeps_valid_items(self) -> None:
        broken = RecurringItem(
            id="broken",
            name="Broken",
            display_type="loan",
            amount=Decimal("10"),
            frequency="monthly",
            start_date=date(2024, 1, 1),
        )

        forecast = run_forecast(
            self.items + [broken], date(2024, 1, 1), date(2024, 1, 31), partial=True
        )

        self.assertEqual([failure.item_id for failure in forecast.failures], ["broken"])
        self.assertEqual(len(forecast.occurrences), 4)
        self.assertEqual(len(forecast.periods), 1)
        self.assertEqual(forecast.periods[0].period_start, date(2024, 1, 1))
        self.assertEqual(forecast.periods[0].committed_outflows, Decimal("1250"))

    def test_strict_run_raises(self) -> None:
        broken = RecurringItem(
            id="broken",
            name="Broken",
            display_type="loan",
            amount=Decimal("10"),
            frequency="monthly",
            start_date=date(2024, 1, 1),
        )

        with self.assertRaises(InvalidItemConfiguration):
            run_forecast(self.items + [broken], date(2024, 1, 1), date(2024, 1, 31))


if __name__ == "__main__":
    unittest.main()
