import unittest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from cashflow.items import RecurringItem
from cashflow.occurrences import generate_occurrences
from cashflow.overrides import (
    Override,
    apply_overrides,
    overrides_from_month_map,
    resolve_overrides,
    validate_override_amount,
)


class OverrideTests(unittest.TestCase):
    def setUp(self) -> None:
        item = RecurringItem(
            id="utilities",
            name="Utilities",
            display_type="fixed-expense",
            amount=Decimal("100"),
            frequency="monthly",
            start_date=date(2024, 1, 10),
        )
        self.occurrences = generate_occurrences([item], date(2024, 1, 1), date(2024, 4, 30))

    def test_override_replaces_amount_for_month(self) -> None:
        overrides = [Override(item_id="utilities", month_year="2024-03", override_amount=Decimal("50"))]

        adjusted = apply_overrides(self.occurrences, overrides)

        self.assertEqual(
            [occ.amount for occ in adjusted],
            [Decimal("100"), Decimal("100"), Decimal("50"), Decimal("100")],
        )
        self.assertEqual([occ.is_overridden for occ in adjusted], [False, False, True, False])
        self.assertEqual(
            [occ.occurrence_id for occ in adjusted],
            [occ.occurrence_id for occ in self.occurrences],
        )

    def test_zero_override_is_kept(self) -> None:
        overrides = overrides_from_month_map("2024-02", {"utilities": 0})

        adjusted = apply_overrides(self.occurrences, overrides)

        self.assertEqual(adjusted[1].amount, Decimal("0"))
        self.assertTrue(adjusted[1].is_overridden)

    def test_override_for_other_item_is_ignored(self) -> None:
        overrides = overrides_from_month_map("2024-02", {"internet": "80"})

        self.assertEqual(apply_overrides(self.occurrences, overrides), self.occurrences)

    def test_negative_override_rejected(self) -> None:
        self.assertEqual(validate_override_amount("12.5"), Decimal("12.5"))
        with self.assertRaises(ValueError):
            validate_override_amount(Decimal("-1"))
        with self.assertRaises(ValueError):
            validate_override_amount("NaN")

    def test_duplicate_overrides_prefer_latest_update(self) -> None:
        older = Override(
            item_id="utilities",
            month_year="2024-03",
            override_amount=Decimal("75"),
            updated_at=datetime(2024, 3, 1, 9, 0),
        )
        newer = Override(
            item_id="utilities",
            month_year="2024-03",
            override_amount=Decimal("60"),
            updated_at=datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc) + timedelta(minutes=5),
        )

        with self.assertLogs("cashflow.overrides", level="WARNING"):
            resolved = resolve_overrides([newer, older])

        self.assertEqual(resolved[("utilities", "2024-03")].override_amount, Decimal("60"))


if __name__ == "__main__":
    unittest.main()
