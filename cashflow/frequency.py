from __future__ import annotations

from datetime import date, timedelta

from cashflow.dates import add_months, clamp_day, months_between, shift_month
from cashflow.items import (
    DAY_STEPS,
    MONTH_STEPS,
    CheckedItem,
    Frequency,
    RecurringItem,
    check_item,
)


def next_occurrence(item: RecurringItem | CheckedItem, after_date: date) -> date | None:
    """Return the first occurrence of ``item`` on or after ``after_date``.

    Occurrences never precede the item's start date. ``None`` means the item
    has ended: its next date would fall after ``end_date``.
    """
    checked = item if isinstance(item, CheckedItem) else check_item(item)
    minimum_date = max(after_date, checked.start_date)
    if checked.end_date is not None and minimum_date > checked.end_date:
        return None

    frequency = checked.frequency
    if frequency is Frequency.DAILY:
        candidate = minimum_date
    elif frequency in (Frequency.WEEKLY, Frequency.BIWEEKLY):
        candidate = _first_interval_on_or_after(
            checked.anchor_date, minimum_date, DAY_STEPS[frequency]
        )
    elif frequency in (Frequency.MONTHLY, Frequency.QUARTERLY, Frequency.YEARLY):
        candidate = _first_month_step_on_or_after(
            checked.anchor_date, minimum_date, MONTH_STEPS[frequency]
        )
    elif frequency is Frequency.SEMI_MONTHLY:
        candidate = _first_semi_monthly_on_or_after(
            checked.semi_monthly_days, minimum_date
        )
    else:
        raise ValueError(f"Unsupported frequency: {frequency}")

    if checked.end_date is not None and candidate > checked.end_date:
        return None
    return candidate


def _first_interval_on_or_after(
    anchor_date: date, minimum_date: date, interval_days: int
) -> date:
    # ceil((minimum - anchor) / interval), also valid when the anchor is later
    intervals = -((anchor_date - minimum_date).days // interval_days)
    return anchor_date + timedelta(days=interval_days * intervals)


def _first_month_step_on_or_after(
    anchor_date: date, minimum_date: date, step_months: int
) -> date:
    offset = -(-months_between(anchor_date, minimum_date) // step_months) * step_months
    candidate = add_months(anchor_date, offset, anchor_date.day)
    if candidate < minimum_date:
        offset += step_months
        candidate = add_months(anchor_date, offset, anchor_date.day)
    return candidate


def _first_semi_monthly_on_or_after(
    anchor_days: tuple[int, int], minimum_date: date
) -> date:
    first_day, second_day = anchor_days
    candidates = sorted(
        {
            clamp_day(minimum_date.year, minimum_date.month, first_day),
            clamp_day(minimum_date.year, minimum_date.month, second_day),
        }
    )
    for candidate in candidates:
        if candidate >= minimum_date:
            return candidate
    following = shift_month(minimum_date, 1)
    return clamp_day(following.year, following.month, first_day)
