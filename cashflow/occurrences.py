from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, List

from cashflow.dates import previous_business_day, shift_month_keep_day
from cashflow.errors import ForecastError, InvalidItemConfiguration, WindowExceeded
from cashflow.frequency import next_occurrence
from cashflow.items import CheckedItem, DisplayType, Frequency, RecurringItem, check_item

logger = logging.getLogger(__name__)

DEFAULT_MAX_WINDOW_DAYS = 5 * 366
DEFAULT_LOOKBACK_MONTHS = 3
DEFAULT_DAYS_AHEAD = 90
OCCURRENCE_ID_SEPARATOR = "::"


@dataclass(frozen=True)
class Occurrence:
    item_id: str
    name: str
    occurrence_date: date
    amount: Decimal
    display_type: DisplayType
    occurrence_id: str
    is_overridden: bool = False


@dataclass(frozen=True)
class ItemFailure:
    item_id: str
    reason: str


@dataclass(frozen=True)
class GenerationResult:
    occurrences: List[Occurrence] = field(default_factory=list)
    failures: List[ItemFailure] = field(default_factory=list)


def occurrence_id(item_id: str, occurrence_date: date) -> str:
    return (
        f"{item_id}{OCCURRENCE_ID_SEPARATOR}"
        f"{occurrence_date.year:04d}-{occurrence_date.month:02d}-{occurrence_date.day:02d}"
    )


def default_window(
    today: date,
    lookback_months: int = DEFAULT_LOOKBACK_MONTHS,
    days_ahead: int = DEFAULT_DAYS_AHEAD,
) -> tuple[date, date]:
    return shift_month_keep_day(today, -lookback_months), today + timedelta(days=days_ahead)


def generate_occurrences(
    items: Iterable[RecurringItem],
    window_start: date,
    window_end: date | None,
    tracking_floor: date | None = None,
    *,
    max_window_days: int = DEFAULT_MAX_WINDOW_DAYS,
    adjust_income_to_business_day: bool = False,
) -> List[Occurrence]:
    """Project every item into ``[window_start, window_end]``.

    Any invalid item fails the whole call with ``InvalidItemConfiguration``.
    Use ``generate_occurrences_partial`` to collect per-item failures instead.
    """
    validate_window(window_start, window_end, max_window_days)
    occurrences: List[Occurrence] = []
    for item in items:
        occurrences.extend(
            _generate_for_item(
                check_item(item),
                window_start,
                window_end,
                tracking_floor,
                adjust_income_to_business_day,
            )
        )
    logger.debug(
        "Generated %d occurrences between %s and %s",
        len(occurrences),
        window_start,
        window_end,
    )
    return occurrences


def generate_occurrences_partial(
    items: Iterable[RecurringItem],
    window_start: date,
    window_end: date | None,
    tracking_floor: date | None = None,
    *,
    max_window_days: int = DEFAULT_MAX_WINDOW_DAYS,
    adjust_income_to_business_day: bool = False,
) -> GenerationResult:
    validate_window(window_start, window_end, max_window_days)
    result = GenerationResult()
    for item in items:
        try:
            checked = check_item(item)
        except InvalidItemConfiguration as exc:
            logger.warning("Skipping recurring item %s: %s", exc.item_id, exc.reason)
            result.failures.append(ItemFailure(item_id=exc.item_id, reason=exc.reason))
            continue
        result.occurrences.extend(
            _generate_for_item(
                checked,
                window_start,
                window_end,
                tracking_floor,
                adjust_income_to_business_day,
            )
        )
    return result


def sort_occurrences(occurrences: Iterable[Occurrence]) -> List[Occurrence]:
    return sorted(occurrences, key=lambda occ: (occ.occurrence_date, occ.item_id))


def validate_window(window_start: date, window_end: date | None, max_window_days: int) -> None:
    if window_end is None:
        raise WindowExceeded("window_end is required.")
    if window_start > window_end:
        raise ForecastError("window_start must be on or before window_end.")
    if (window_end - window_start).days > max_window_days:
        raise WindowExceeded(
            f"Forecast window may span at most {max_window_days} days."
        )


def _generate_for_item(
    checked: CheckedItem,
    window_start: date,
    window_end: date,
    tracking_floor: date | None,
    adjust_income_to_business_day: bool,
) -> List[Occurrence]:
    lower_bound = max(checked.start_date, window_start)
    if tracking_floor is not None:
        lower_bound = max(lower_bound, tracking_floor)
    upper_bound = window_end
    if checked.end_date is not None:
        upper_bound = min(upper_bound, checked.end_date)

    adjust = (
        adjust_income_to_business_day
        and checked.display_type is DisplayType.INCOME
        and checked.frequency is not Frequency.DAILY
    )
    occurrences: List[Occurrence] = []
    cursor = lower_bound
    while cursor <= upper_bound:
        current_date = next_occurrence(checked, cursor)
        if current_date is None or current_date > upper_bound:
            break
        if current_date < cursor:
            raise RuntimeError(
                f"Frequency {checked.frequency.value} did not advance past {cursor}."
            )
        occurrence_date = current_date
        if adjust:
            adjusted = previous_business_day(current_date)
            previous_date = occurrences[-1].occurrence_date if occurrences else None
            if adjusted >= lower_bound and (previous_date is None or adjusted > previous_date):
                occurrence_date = adjusted
        occurrences.append(
            Occurrence(
                item_id=checked.id,
                name=checked.item.name,
                occurrence_date=occurrence_date,
                amount=checked.amount,
                display_type=checked.display_type,
                occurrence_id=occurrence_id(checked.id, occurrence_date),
            )
        )
        cursor = current_date + timedelta(days=1)
    return occurrences
