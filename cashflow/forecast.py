from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import AbstractSet, Iterable, List

from cashflow.completions import partition_by_completion
from cashflow.items import ZERO, RecurringItem
from cashflow.occurrences import (
    DEFAULT_MAX_WINDOW_DAYS,
    ItemFailure,
    Occurrence,
    generate_occurrences,
    generate_occurrences_partial,
    sort_occurrences,
)
from cashflow.overrides import Override, apply_overrides
from cashflow.pay_periods import PeriodBreakdown, allocate


@dataclass(frozen=True)
class Forecast:
    occurrences: List[Occurrence] = field(default_factory=list)
    pending: List[Occurrence] = field(default_factory=list)
    done: List[Occurrence] = field(default_factory=list)
    periods: List[PeriodBreakdown] = field(default_factory=list)
    failures: List[ItemFailure] = field(default_factory=list)


def run_forecast(
    items: Iterable[RecurringItem],
    window_start: date,
    window_end: date,
    *,
    overrides: Iterable[Override] = (),
    completed_ids: AbstractSet[str] = frozenset(),
    pay_dates: Iterable[date] = (),
    starting_balance: Decimal | int | float | str = ZERO,
    tracking_floor: date | None = None,
    partial: bool = False,
    adjust_income_to_business_day: bool = False,
    max_window_days: int = DEFAULT_MAX_WINDOW_DAYS,
) -> Forecast:
    """Generate, override, filter and allocate over one snapshot of inputs.

    With ``partial=True`` invalid items are reported in ``failures`` and the
    rest are still forecast; otherwise the first invalid item fails the call.
    """
    if partial:
        generated = generate_occurrences_partial(
            items,
            window_start,
            window_end,
            tracking_floor,
            max_window_days=max_window_days,
            adjust_income_to_business_day=adjust_income_to_business_day,
        )
        occurrences, failures = generated.occurrences, generated.failures
    else:
        occurrences = generate_occurrences(
            items,
            window_start,
            window_end,
            tracking_floor,
            max_window_days=max_window_days,
            adjust_income_to_business_day=adjust_income_to_business_day,
        )
        failures = []

    occurrences = sort_occurrences(apply_overrides(occurrences, overrides))
    partition = partition_by_completion(occurrences, completed_ids)
    in_window_pay_dates = [pay_date for pay_date in pay_dates if pay_date <= window_end]
    periods = allocate(
        in_window_pay_dates,
        occurrences,
        starting_balance,
        completed_ids=completed_ids,
        horizon_end=window_end,
        opening_date=window_start,
    )
    return Forecast(
        occurrences=occurrences,
        pending=partition.pending,
        done=partition.done,
        periods=periods,
        failures=list(failures),
    )
