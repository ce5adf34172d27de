from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum

from cashflow.dates import to_calendar_date
from cashflow.errors import InvalidItemConfiguration

ZERO = Decimal("0")


class DisplayType(str, Enum):
    INCOME = "income"
    SUBSCRIPTION = "subscription"
    FIXED_EXPENSE = "fixed-expense"
    DEBT_PAYMENT = "debt-payment"

    @classmethod
    def parse(cls, value: "DisplayType | str") -> "DisplayType":
        if isinstance(value, cls):
            return value
        normalized = _normalize_token(value)
        for member in cls:
            if _normalize_token(member.value) == normalized:
                return member
        raise ValueError(f"Unsupported display type: {value}")


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "bi-weekly"
    SEMI_MONTHLY = "semi-monthly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"

    @classmethod
    def parse(cls, value: "Frequency | str") -> "Frequency":
        if isinstance(value, cls):
            return value
        normalized = _normalize_token(value)
        normalized = FREQUENCY_ALIASES.get(normalized, normalized)
        for member in cls:
            if _normalize_token(member.value) == normalized:
                return member
        raise ValueError(f"Unsupported frequency: {value}")


FREQUENCY_ALIASES = {
    "byweekly": "biweekly",
    "fortnightly": "biweekly",
    "twicemonthly": "semimonthly",
    "annually": "yearly",
    "annual": "yearly",
}

MONTH_STEPS = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.YEARLY: 12,
}
DAY_STEPS = {
    Frequency.DAILY: 1,
    Frequency.WEEKLY: 7,
    Frequency.BIWEEKLY: 14,
}


@dataclass(frozen=True)
class RecurringItem:
    id: str
    name: str
    display_type: DisplayType | str
    amount: Decimal
    frequency: Frequency | str
    start_date: date
    end_date: date | None = None
    anchor_date: date | None = None
    semi_monthly_days: tuple[int, int] | None = None
    notes: str | None = None


@dataclass(frozen=True)
class CheckedItem:
    """A RecurringItem whose invariants hold and whose enums are resolved."""

    item: RecurringItem
    display_type: DisplayType
    frequency: Frequency
    amount: Decimal
    start_date: date
    end_date: date | None
    anchor_date: date
    semi_monthly_days: tuple[int, int] | None

    @property
    def id(self) -> str:
        return self.item.id


def check_item(item: RecurringItem) -> CheckedItem:
    item_id = str(item.id)
    if not item_id:
        raise InvalidItemConfiguration(item_id, "id is required.")
    try:
        frequency = Frequency.parse(item.frequency)
        display_type = DisplayType.parse(item.display_type)
    except ValueError as exc:
        raise InvalidItemConfiguration(item_id, str(exc)) from exc
    start_date = _calendar_date(item_id, "start_date", item.start_date)
    if start_date is None:
        raise InvalidItemConfiguration(item_id, "start_date is required.")
    end_date = _calendar_date(item_id, "end_date", item.end_date)
    anchor_date = _calendar_date(item_id, "anchor_date", item.anchor_date)
    try:
        amount = coerce_amount(item.amount)
    except (InvalidOperation, ValueError) as exc:
        raise InvalidItemConfiguration(item_id, "amount is not a number.") from exc
    if not amount.is_finite() or amount <= ZERO:
        raise InvalidItemConfiguration(item_id, "amount must be greater than zero.")
    if end_date is not None and end_date < start_date:
        raise InvalidItemConfiguration(item_id, "end_date must be on or after start_date.")

    semi_monthly_days = None
    if frequency is Frequency.SEMI_MONTHLY:
        days = tuple(item.semi_monthly_days or ())
        if len(days) != 2:
            raise InvalidItemConfiguration(
                item_id, "semi-monthly items require exactly two anchor days."
            )
        if any(not isinstance(day, int) or not 1 <= day <= 31 for day in days):
            raise InvalidItemConfiguration(item_id, "semi-monthly anchor days must be in 1..31.")
        semi_monthly_days = (min(days), max(days))

    return CheckedItem(
        item=item,
        display_type=display_type,
        frequency=frequency,
        amount=amount,
        start_date=start_date,
        end_date=end_date,
        anchor_date=anchor_date or start_date,
        semi_monthly_days=semi_monthly_days,
    )


def is_outflow(display_type: DisplayType) -> bool:
    if display_type is DisplayType.INCOME:
        return False
    elif display_type is DisplayType.SUBSCRIPTION:
        return True
    elif display_type is DisplayType.FIXED_EXPENSE:
        return True
    elif display_type is DisplayType.DEBT_PAYMENT:
        return True
    raise ValueError(f"Unsupported display type: {display_type}")


def coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))


def _normalize_token(value: str) -> str:
    return "".join(ch for ch in str(value).strip().lower() if ch.isalnum())


def _calendar_date(item_id: str, field_name: str, value) -> date | None:
    # datetimes and ISO strings are reduced to their calendar date
    if value is None:
        return None
    try:
        return to_calendar_date(value)
    except (TypeError, ValueError) as exc:
        raise InvalidItemConfiguration(item_id, f"{field_name} must be a calendar date.") from exc
