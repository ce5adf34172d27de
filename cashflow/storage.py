"""
Data-access collaborators for the forecast engine.

Each store reads or writes one table and hands the engine plain snapshots
(RecurringItem lists, Override lists, completed-id sets, pay dates). The
engine never talks to the database itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from cashflow.dates import parse_month_value
from cashflow.errors import OverrideStorageUnavailable
from cashflow.items import DisplayType, Frequency, RecurringItem
from cashflow.occurrences import DEFAULT_MAX_WINDOW_DAYS, generate_occurrences_partial
from cashflow.overrides import Override, override_precedence, validate_override_amount
from cashflow.pay_periods import PaySchedule, pay_dates

logger = logging.getLogger(__name__)

metadata = MetaData()

recurring_items = Table(
    "recurring_items",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("user_id", String(255), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("display_type", String(20), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("frequency", String(20), nullable=False),
    Column("start_date", Date, nullable=False),
    Column("end_date", Date),
    Column("anchor_date", Date),
    Column("semi_monthly_first_day", Integer),
    Column("semi_monthly_second_day", Integer),
    Column("notes", String(500)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

forecast_overrides = Table(
    "forecast_overrides",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(255), nullable=False),
    Column("item_id", String(64), nullable=False),
    Column("month_year", String(7), nullable=False),
    Column("override_amount", Numeric(12, 2), nullable=False),
    Column("updated_at", DateTime, nullable=False),
    UniqueConstraint("user_id", "item_id", "month_year", name="uq_forecast_overrides_key"),
)

recurring_completions = Table(
    "recurring_completions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(255), nullable=False),
    Column("occurrence_id", String(100), nullable=False),
    Column("transaction_id", String(64)),
    Column("settled_at", DateTime, nullable=False),
    UniqueConstraint("user_id", "occurrence_id", name="uq_recurring_completions_occurrence"),
)

paycheck_preferences = Table(
    "paycheck_preferences",
    metadata,
    Column("user_id", String(255), primary_key=True),
    Column("frequency", String(20), nullable=False),
    Column("anchor_date", Date, nullable=False),
    Column("semi_monthly_first_day", Integer),
    Column("semi_monthly_second_day", Integer),
    Column("financial_tracking_start_date", Date),
    Column("updated_at", DateTime, nullable=False),
)


@dataclass(frozen=True)
class CompletionRecord:
    occurrence_id: str
    settled_at: datetime
    transaction_id: str | None = None


@dataclass(frozen=True)
class PaycheckPreferences:
    frequency: Frequency | str
    anchor_date: date
    semi_monthly_days: tuple[int, int] | None = None
    financial_tracking_start_date: date | None = None

    def schedule(self) -> PaySchedule:
        return PaySchedule(
            frequency=self.frequency,
            anchor_date=self.anchor_date,
            semi_monthly_days=self.semi_monthly_days,
        )


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def upsert(
    conn: Connection,
    table: Table,
    values: dict,
    key_columns: List[str],
    update_columns: List[str],
) -> None:
    """Insert ``values`` or overwrite ``update_columns`` on a key conflict."""
    dialect = conn.dialect.name
    if dialect in ("postgresql", "sqlite"):
        insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = insert_fn(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=key_columns,
            set_={column: stmt.excluded[column] for column in update_columns},
        )
        conn.execute(stmt)
        return

    key_filter = [table.c[column] == values[column] for column in key_columns]
    existing = conn.execute(select(*[table.c[c] for c in key_columns]).where(*key_filter)).first()
    if existing:
        conn.execute(
            update(table)
            .where(*key_filter)
            .values({column: values[column] for column in update_columns})
        )
    else:
        conn.execute(insert(table).values(**values))


def _is_income(item: RecurringItem) -> bool:
    try:
        return DisplayType.parse(item.display_type) is DisplayType.INCOME
    except ValueError:
        return False


def _semi_monthly_days(row) -> tuple[int, int] | None:
    first = row["semi_monthly_first_day"]
    second = row["semi_monthly_second_day"]
    if first is None or second is None:
        return None
    return first, second


@dataclass
class SqlItemSource:
    engine: Engine

    def fetch_recurring_items(self, user_id: str) -> List[RecurringItem]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(recurring_items)
                .where(recurring_items.c.user_id == user_id)
                .order_by(recurring_items.c.start_date, recurring_items.c.id)
            ).mappings().all()
        return [
            RecurringItem(
                id=row["id"],
                name=row["name"],
                display_type=row["display_type"],
                amount=row["amount"],
                frequency=row["frequency"],
                start_date=row["start_date"],
                end_date=row["end_date"],
                anchor_date=row["anchor_date"],
                semi_monthly_days=_semi_monthly_days(row),
                notes=row["notes"],
            )
            for row in rows
        ]

    def add_item(self, user_id: str, item: RecurringItem) -> None:
        first_day, second_day = item.semi_monthly_days or (None, None)
        with self.engine.begin() as conn:
            conn.execute(
                insert(recurring_items).values(
                    id=item.id,
                    user_id=user_id,
                    name=item.name,
                    display_type=DisplayType.parse(item.display_type).value,
                    amount=item.amount,
                    frequency=Frequency.parse(item.frequency).value,
                    start_date=item.start_date,
                    end_date=item.end_date,
                    anchor_date=item.anchor_date,
                    semi_monthly_first_day=first_day,
                    semi_monthly_second_day=second_day,
                    notes=item.notes,
                )
            )
        logger.info("Stored recurring item %s for user %s", item.id, user_id)

    def delete_item(self, user_id: str, item_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(recurring_items).where(
                    recurring_items.c.id == item_id,
                    recurring_items.c.user_id == user_id,
                )
            )
        return result.rowcount > 0


@dataclass
class SqlOverrideStore:
    engine: Engine

    def get_overrides_for_month(self, user_id: str, month_year: str) -> Dict[str, Decimal]:
        return {
            override.item_id: override.override_amount
            for override in self.list_overrides(user_id, [month_year])
        }

    def list_overrides(
        self, user_id: str, month_years: Optional[Iterable[str]] = None
    ) -> List[Override]:
        query = select(forecast_overrides).where(forecast_overrides.c.user_id == user_id)
        if month_years is not None:
            months = [parse_month_value(value) for value in month_years]
            query = query.where(forecast_overrides.c.month_year.in_(months))
        try:
            with self.engine.begin() as conn:
                rows = conn.execute(
                    query.order_by(forecast_overrides.c.month_year, forecast_overrides.c.item_id)
                ).mappings().all()
        except SQLAlchemyError as exc:
            raise OverrideStorageUnavailable("Override table unavailable") from exc
        return [
            Override(
                item_id=row["item_id"],
                month_year=row["month_year"],
                override_amount=row["override_amount"],
                updated_at=row["updated_at"],
            )
            for row in rows
        ]

    def upsert_override(
        self,
        user_id: str,
        item_id: str,
        month_year: str,
        amount: Decimal,
        updated_at: datetime | None = None,
    ) -> None:
        values = {
            "user_id": user_id,
            "item_id": item_id,
            "month_year": parse_month_value(month_year),
            "override_amount": validate_override_amount(amount),
            "updated_at": updated_at or utcnow(),
        }
        try:
            with self.engine.begin() as conn:
                upsert(
                    conn,
                    forecast_overrides,
                    values,
                    key_columns=["user_id", "item_id", "month_year"],
                    update_columns=["override_amount", "updated_at"],
                )
        except SQLAlchemyError as exc:
            raise OverrideStorageUnavailable("Override table unavailable") from exc
        logger.info("Saved override for item %s in %s", item_id, values["month_year"])

    def delete_override(self, user_id: str, item_id: str, month_year: str) -> bool:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    delete(forecast_overrides).where(
                        forecast_overrides.c.user_id == user_id,
                        forecast_overrides.c.item_id == item_id,
                        forecast_overrides.c.month_year == parse_month_value(month_year),
                    )
                )
        except SQLAlchemyError as exc:
            raise OverrideStorageUnavailable("Override table unavailable") from exc
        return result.rowcount > 0


@dataclass
class LocalOverrideCache:
    """Process-local override store with the same contract as SqlOverrideStore."""

    _overrides: Dict[str, Dict[Tuple[str, str], Override]] = field(default_factory=dict)

    def get_overrides_for_month(self, user_id: str, month_year: str) -> Dict[str, Decimal]:
        return {
            override.item_id: override.override_amount
            for override in self.list_overrides(user_id, [month_year])
        }

    def list_overrides(
        self, user_id: str, month_years: Optional[Iterable[str]] = None
    ) -> List[Override]:
        overrides = self._overrides.get(user_id, {}).values()
        if month_years is not None:
            months = {parse_month_value(value) for value in month_years}
            overrides = [override for override in overrides if override.month_year in months]
        return sorted(overrides, key=lambda override: (override.month_year, override.item_id))

    def upsert_override(
        self,
        user_id: str,
        item_id: str,
        month_year: str,
        amount: Decimal,
        updated_at: datetime | None = None,
    ) -> None:
        normalized_month = parse_month_value(month_year)
        self._overrides.setdefault(user_id, {})[(item_id, normalized_month)] = Override(
            item_id=item_id,
            month_year=normalized_month,
            override_amount=validate_override_amount(amount),
            updated_at=updated_at or utcnow(),
        )

    def delete_override(self, user_id: str, item_id: str, month_year: str) -> bool:
        key = (item_id, parse_month_value(month_year))
        return self._overrides.get(user_id, {}).pop(key, None) is not None


@dataclass
class FallbackOverrideStore:
    """Use the primary store, degrading to the local cache when it is down.

    Overrides written to the cache during an outage stay visible after the
    primary recovers: reads merge them over the primary's rows, the newer
    ``updated_at`` winning per (item, month).
    """

    primary: SqlOverrideStore | LocalOverrideCache
    fallback: LocalOverrideCache

    def get_overrides_for_month(self, user_id: str, month_year: str) -> Dict[str, Decimal]:
        return {
            override.item_id: override.override_amount
            for override in self.list_overrides(user_id, [month_year])
        }

    def list_overrides(
        self, user_id: str, month_years: Optional[Iterable[str]] = None
    ) -> List[Override]:
        months = list(month_years) if month_years is not None else None
        try:
            stored = self.primary.list_overrides(user_id, months)
        except OverrideStorageUnavailable as exc:
            self._log_fallback(exc)
            return self.fallback.list_overrides(user_id, months)
        return _merge_overrides(stored, self.fallback.list_overrides(user_id, months))

    def upsert_override(
        self,
        user_id: str,
        item_id: str,
        month_year: str,
        amount: Decimal,
        updated_at: datetime | None = None,
    ) -> None:
        try:
            self.primary.upsert_override(user_id, item_id, month_year, amount, updated_at)
        except OverrideStorageUnavailable as exc:
            self._log_fallback(exc)
            self.fallback.upsert_override(user_id, item_id, month_year, amount, updated_at)
            return
        self.fallback.delete_override(user_id, item_id, month_year)

    def delete_override(self, user_id: str, item_id: str, month_year: str) -> bool:
        try:
            deleted = self.primary.delete_override(user_id, item_id, month_year)
        except OverrideStorageUnavailable as exc:
            self._log_fallback(exc)
            return self.fallback.delete_override(user_id, item_id, month_year)
        return self.fallback.delete_override(user_id, item_id, month_year) or deleted

    @staticmethod
    def _log_fallback(exc: OverrideStorageUnavailable) -> None:
        logger.warning("Override storage unavailable, using local cache: %s", exc.__cause__ or exc)


def _merge_overrides(stored: Iterable[Override], local: Iterable[Override]) -> List[Override]:
    merged: Dict[Tuple[str, str], Override] = {
        (override.item_id, override.month_year): override for override in stored
    }
    for override in local:
        key = (override.item_id, override.month_year)
        current = merged.get(key)
        if current is None or override_precedence(override) > override_precedence(current):
            merged[key] = override
    return sorted(merged.values(), key=lambda override: (override.month_year, override.item_id))


@dataclass
class SqlCompletionStore:
    engine: Engine

    def get_completed_occurrence_ids(self, user_id: str) -> Set[str]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(recurring_completions.c.occurrence_id).where(
                    recurring_completions.c.user_id == user_id
                )
            ).all()
        return {row[0] for row in rows}

    def list_completions(self, user_id: str) -> List[CompletionRecord]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(recurring_completions)
                .where(recurring_completions.c.user_id == user_id)
                .order_by(recurring_completions.c.occurrence_id)
            ).mappings().all()
        return [
            CompletionRecord(
                occurrence_id=row["occurrence_id"],
                settled_at=row["settled_at"],
                transaction_id=row["transaction_id"],
            )
            for row in rows
        ]

    def mark_completed(
        self,
        user_id: str,
        occurrence_id: str,
        transaction_id: str | None = None,
        settled_at: datetime | None = None,
    ) -> CompletionRecord:
        record = CompletionRecord(
            occurrence_id=occurrence_id,
            settled_at=settled_at or utcnow(),
            transaction_id=transaction_id,
        )
        with self.engine.begin() as conn:
            upsert(
                conn,
                recurring_completions,
                {
                    "user_id": user_id,
                    "occurrence_id": record.occurrence_id,
                    "transaction_id": record.transaction_id,
                    "settled_at": record.settled_at,
                },
                key_columns=["user_id", "occurrence_id"],
                update_columns=["transaction_id", "settled_at"],
            )
        return record

    def unmark_completed(self, user_id: str, occurrence_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(recurring_completions).where(
                    recurring_completions.c.user_id == user_id,
                    recurring_completions.c.occurrence_id == occurrence_id,
                )
            )
        return result.rowcount > 0

    def remove_by_transaction_id(self, user_id: str, transaction_id: str) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(recurring_completions).where(
                    recurring_completions.c.user_id == user_id,
                    recurring_completions.c.transaction_id == transaction_id,
                )
            )
        logger.info(
            "Removed %d completions linked to transaction %s", result.rowcount, transaction_id
        )
        return result.rowcount


@dataclass
class SqlPayScheduleSource:
    engine: Engine
    item_source: SqlItemSource

    def get_preferences(self, user_id: str) -> PaycheckPreferences | None:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(paycheck_preferences).where(paycheck_preferences.c.user_id == user_id)
            ).mappings().first()
        if not row:
            return None
        return PaycheckPreferences(
            frequency=row["frequency"],
            anchor_date=row["anchor_date"],
            semi_monthly_days=_semi_monthly_days(row),
            financial_tracking_start_date=row["financial_tracking_start_date"],
        )

    def save_preferences(self, user_id: str, preferences: PaycheckPreferences) -> None:
        first_day, second_day = preferences.semi_monthly_days or (None, None)
        with self.engine.begin() as conn:
            upsert(
                conn,
                paycheck_preferences,
                {
                    "user_id": user_id,
                    "frequency": Frequency.parse(preferences.frequency).value,
                    "anchor_date": preferences.anchor_date,
                    "semi_monthly_first_day": first_day,
                    "semi_monthly_second_day": second_day,
                    "financial_tracking_start_date": preferences.financial_tracking_start_date,
                    "updated_at": utcnow(),
                },
                key_columns=["user_id"],
                update_columns=[
                    "frequency",
                    "anchor_date",
                    "semi_monthly_first_day",
                    "semi_monthly_second_day",
                    "financial_tracking_start_date",
                    "updated_at",
                ],
            )

    def get_tracking_floor(self, user_id: str) -> date | None:
        preferences = self.get_preferences(user_id)
        return preferences.financial_tracking_start_date if preferences else None

    def get_pay_dates(
        self,
        user_id: str,
        window_start: date,
        window_end: date,
        *,
        max_window_days: int = DEFAULT_MAX_WINDOW_DAYS,
    ) -> List[date]:
        preferences = self.get_preferences(user_id)
        if preferences is not None:
            return pay_dates(
                preferences.schedule(), window_start, window_end, max_window_days=max_window_days
            )

        income_items = [
            item
            for item in self.item_source.fetch_recurring_items(user_id)
            if _is_income(item)
        ]
        generated = generate_occurrences_partial(
            income_items, window_start, window_end, max_window_days=max_window_days
        )
        return sorted({occurrence.occurrence_date for occurrence in generated.occurrences})
