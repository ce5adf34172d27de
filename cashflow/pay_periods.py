from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import AbstractSet, Iterable, List, Tuple

from cashflow.items import ZERO, DisplayType, Frequency, RecurringItem, coerce_amount, is_outflow
from cashflow.occurrences import (
    DEFAULT_MAX_WINDOW_DAYS,
    Occurrence,
    generate_occurrences,
    sort_occurrences,
)

PAY_SCHEDULE_ITEM_ID = "pay-schedule"


@dataclass(frozen=True)
class PaySchedule:
    frequency: Frequency | str
    anchor_date: date
    semi_monthly_days: tuple[int, int] | None = None


@dataclass(frozen=True)
class PeriodBreakdown:
    period_start: date
    period_end: date | None
    opening_balance: Decimal
    gross_income: Decimal
    committed_outflows: Decimal
    final_remaining: Decimal
    income: Tuple[Occurrence, ...] = ()
    obligations: Tuple[Occurrence, ...] = ()

    @property
    def net_change(self) -> Decimal:
        return self.gross_income - self.committed_outflows

    @property
    def is_deficit(self) -> bool:
        return self.final_remaining < ZERO


def pay_dates(
    schedule: PaySchedule,
    window_start: date,
    window_end: date,
    *,
    max_window_days: int = DEFAULT_MAX_WINDOW_DAYS,
) -> List[date]:
    item = RecurringItem(
        id=PAY_SCHEDULE_ITEM_ID,
        name="Paycheck",
        display_type=DisplayType.INCOME,
        amount=Decimal("1"),
        frequency=schedule.frequency,
        start_date=schedule.anchor_date,
        semi_monthly_days=schedule.semi_monthly_days,
    )
    occurrences = generate_occurrences(
        [item], window_start, window_end, max_window_days=max_window_days
    )
    return [occurrence.occurrence_date for occurrence in occurrences]


def allocate(
    pay_dates: Iterable[date],
    occurrences: Iterable[Occurrence],
    starting_balance: Decimal | int | float | str = ZERO,
    completed_ids: AbstractSet[str] = frozenset(),
    horizon_end: date | None = None,
    opening_date: date | None = None,
) -> List[PeriodBreakdown]:
    """Split occurrences into pay periods and carry the balance forward.

    Each pay date opens a half-open period ``[pay_date, next_pay_date)``; the
    last one is open-ended unless ``horizon_end`` closes it.

    Anything due before the first pay date lands in an opening period that
    starts at ``opening_date``, or at the earliest such occurrence when no
    opening date is given. Completed outflows are excluded because they are
    already reflected in the real balance.
    """
    occurrences = list(occurrences)
    boundaries = sorted(set(pay_dates))
    if opening_date is None:
        opening_date = min(
            (
                occ.occurrence_date
                for occ in occurrences
                if (not boundaries or occ.occurrence_date < boundaries[0])
                and (horizon_end is None or occ.occurrence_date <= horizon_end)
            ),
            default=None,
        )
    if opening_date is not None and (not boundaries or opening_date < boundaries[0]):
        boundaries.insert(0, opening_date)
    if not boundaries:
        return []
    if horizon_end is not None and horizon_end < boundaries[-1]:
        raise ValueError("horizon_end must be on or after the last pay date.")

    income_buckets: List[List[Occurrence]] = [[] for _ in boundaries]
    obligation_buckets: List[List[Occurrence]] = [[] for _ in boundaries]
    for occurrence in occurrences:
        index = bisect_right(boundaries, occurrence.occurrence_date) - 1
        if index < 0:
            continue
        if horizon_end is not None and occurrence.occurrence_date > horizon_end:
            continue
        if not is_outflow(occurrence.display_type):
            income_buckets[index].append(occurrence)
        elif occurrence.occurrence_id not in completed_ids:
            obligation_buckets[index].append(occurrence)

    breakdowns: List[PeriodBreakdown] = []
    running_balance = coerce_amount(starting_balance)
    for index, period_start in enumerate(boundaries):
        if index + 1 < len(boundaries):
            period_end = boundaries[index + 1] - timedelta(days=1)
        else:
            period_end = horizon_end
        income = tuple(sort_occurrences(income_buckets[index]))
        obligations = tuple(sort_occurrences(obligation_buckets[index]))
        gross_income = sum((coerce_amount(occ.amount) for occ in income), ZERO)
        committed_outflows = sum((coerce_amount(occ.amount) for occ in obligations), ZERO)
        opening_balance = running_balance
        running_balance = opening_balance + gross_income - committed_outflows
        breakdowns.append(
            PeriodBreakdown(
                period_start=period_start,
                period_end=period_end,
                opening_balance=opening_balance,
                gross_income=gross_income,
                committed_outflows=committed_outflows,
                final_remaining=running_balance,
                income=income,
                obligations=obligations,
            )
        )
    return breakdowns

