from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import AbstractSet, Dict, Iterable, List

from cashflow.occurrences import Occurrence, sort_occurrences


@dataclass(frozen=True)
class CompletionPartition:
    pending: List[Occurrence] = field(default_factory=list)
    done: List[Occurrence] = field(default_factory=list)


@dataclass(frozen=True)
class OverdueOccurrence:
    occurrence: Occurrence
    days_past_due: int


def partition_by_completion(
    occurrences: Iterable[Occurrence], completed_ids: AbstractSet[str]
) -> CompletionPartition:
    pending: List[Occurrence] = []
    done: List[Occurrence] = []
    for occurrence in occurrences:
        if occurrence.occurrence_id in completed_ids:
            done.append(occurrence)
        else:
            pending.append(occurrence)
    return CompletionPartition(pending=pending, done=done)


def overdue_occurrences(pending: Iterable[Occurrence], today: date) -> List[OverdueOccurrence]:
    return [
        OverdueOccurrence(
            occurrence=occurrence,
            days_past_due=(today - occurrence.occurrence_date).days,
        )
        for occurrence in sort_occurrences(pending)
        if occurrence.occurrence_date < today
    ]


def next_open_occurrences(
    occurrences: Iterable[Occurrence],
    completed_ids: AbstractSet[str],
    today: date,
) -> List[Occurrence]:
    """Pick the most relevant unsettled occurrence for each item.

    That is the oldest past-due occurrence when one exists, otherwise the
    soonest upcoming one. Items with nothing open are omitted.
    """
    partition = partition_by_completion(occurrences, completed_ids)
    past_due: Dict[str, Occurrence] = {}
    upcoming: Dict[str, Occurrence] = {}
    for occurrence in sort_occurrences(partition.pending):
        bucket = past_due if occurrence.occurrence_date < today else upcoming
        bucket.setdefault(occurrence.item_id, occurrence)
    for item_id, occurrence in upcoming.items():
        past_due.setdefault(item_id, occurrence)
    return sort_occurrences(past_due.values())
