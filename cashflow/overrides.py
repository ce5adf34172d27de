from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Tuple

from cashflow.dates import month_key, parse_month_value
from cashflow.items import ZERO, coerce_amount
from cashflow.occurrences import Occurrence

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1)


@dataclass(frozen=True)
class Override:
    item_id: str
    month_year: str
    override_amount: Decimal
    updated_at: datetime = EPOCH


def validate_override_amount(amount: Decimal | int | float | str) -> Decimal:
    coerced = coerce_amount(amount)
    if not coerced.is_finite() or coerced < ZERO:
        raise ValueError("Override amount must be zero or greater.")
    return coerced


def overrides_from_month_map(
    month_year: str, amounts: Mapping[str, Decimal | int | float | str]
) -> List[Override]:
    normalized_month = parse_month_value(month_year)
    return [
        Override(
            item_id=item_id,
            month_year=normalized_month,
            override_amount=coerce_amount(amount),
        )
        for item_id, amount in amounts.items()
    ]


def resolve_overrides(overrides: Iterable[Override]) -> Dict[Tuple[str, str], Override]:
    """Index overrides by ``(item_id, month_year)``.

    Storage guarantees one override per key; if it ever returns more, the most
    recently updated one wins and the duplicate is logged.
    """
    resolved: Dict[Tuple[str, str], Override] = {}
    for override in overrides:
        key = (override.item_id, parse_month_value(override.month_year))
        current = resolved.get(key)
        if current is None:
            resolved[key] = override
            continue
        logger.warning(
            "Inconsistent override: more than one override for item %s in %s",
            key[0],
            key[1],
        )
        if override_precedence(override) > override_precedence(current):
            resolved[key] = override
    return resolved


def apply_overrides(
    occurrences: Iterable[Occurrence], overrides: Iterable[Override]
) -> List[Occurrence]:
    resolved = resolve_overrides(overrides)
    adjusted: List[Occurrence] = []
    for occurrence in occurrences:
        override = resolved.get((occurrence.item_id, month_key(occurrence.occurrence_date)))
        if override is None:
            adjusted.append(occurrence)
            continue
        adjusted.append(
            replace(
                occurrence,
                amount=coerce_amount(override.override_amount),
                is_overridden=True,
            )
        )
    return adjusted


def override_precedence(override: Override) -> tuple[datetime, Decimal]:
    # amount breaks updated_at ties so the result never depends on input order
    updated_at = override.updated_at
    if updated_at.tzinfo is not None:
        updated_at = updated_at.astimezone(timezone.utc).replace(tzinfo=None)
    return updated_at, coerce_amount(override.override_amount)
