import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError

from cashflow.cache import CachedItemSource, CacheOptions, ExpiringCache
from cashflow.completions import next_open_occurrences
from cashflow.config import configure_logging, load_settings
from cashflow.dates import iter_month_keys, parse_month_value, to_calendar_date
from cashflow.forecast import Forecast, run_forecast
from cashflow.items import DisplayType, Frequency, RecurringItem, check_item
from cashflow.occurrences import Occurrence, default_window, validate_window
from cashflow.overrides import validate_override_amount
from cashflow.storage import (
    FallbackOverrideStore,
    LocalOverrideCache,
    PaycheckPreferences,
    SqlCompletionStore,
    SqlItemSource,
    SqlOverrideStore,
    SqlPayScheduleSource,
    metadata,
)

settings = load_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

connect_args = {}
if settings.database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(settings.database_url, connect_args=connect_args)

item_store = SqlItemSource(engine)
item_source = CachedItemSource(
    source=item_store,
    cache=ExpiringCache(default_ttl=timedelta(seconds=settings.cache_ttl_seconds)),
    options=CacheOptions(
        ttl=timedelta(seconds=settings.cache_ttl_seconds),
        key="recurring-items",
    ),
)
override_store = FallbackOverrideStore(
    primary=SqlOverrideStore(engine),
    fallback=LocalOverrideCache(),
)
completion_store = SqlCompletionStore(engine)
pay_schedule_source = SqlPayScheduleSource(engine, item_store)

MAX_USER_ID_LENGTH = 255


@app.on_event("startup")
def init_db() -> None:
    metadata.create_all(engine)


class RecurringItemPayload(BaseModel):
    name: str
    display_type: str
    amount: Decimal
    frequency: str
    start_date: date
    end_date: date | None = None
    anchor_date: date | None = None
    semi_monthly_days: list[int] | None = None
    notes: str | None = None

    def to_item(self, item_id: str) -> RecurringItem:
        name = self.name.strip()
        if not name:
            raise ValueError("Recurring item name required.")
        item = RecurringItem(
            id=item_id,
            name=name,
            display_type=self.display_type,
            amount=self.amount,
            frequency=self.frequency,
            start_date=self.start_date,
            end_date=self.end_date,
            anchor_date=self.anchor_date,
            semi_monthly_days=tuple(self.semi_monthly_days) if self.semi_monthly_days else None,
            notes=self.notes.strip() if self.notes else None,
        )
        check_item(item)
        return item


class RecurringItemResponse(BaseModel):
    id: str
    name: str
    display_type: str
    amount: Decimal
    frequency: str
    start_date: date
    end_date: date | None = None
    anchor_date: date | None = None
    semi_monthly_days: list[int] | None = None
    notes: str | None = None


class OccurrenceResponse(BaseModel):
    occurrence_id: str
    item_id: str
    name: str
    occurrence_date: date
    amount: Decimal
    display_type: str
    is_overridden: bool
    is_completed: bool


class ItemFailureResponse(BaseModel):
    item_id: str
    reason: str


class OccurrenceListResponse(BaseModel):
    start_date: date
    end_date: date
    occurrences: list[OccurrenceResponse]
    failures: list[ItemFailureResponse]


class UpcomingOccurrenceResponse(OccurrenceResponse):
    is_overdue: bool
    days_past_due: int | None = None


class PeriodBreakdownResponse(BaseModel):
    period_start: date
    period_end: date | None = None
    opening_balance: Decimal
    gross_income: Decimal
    committed_outflows: Decimal
    final_remaining: Decimal
    is_deficit: bool
    income: list[OccurrenceResponse]
    obligations: list[OccurrenceResponse]


class PayPeriodListResponse(BaseModel):
    start_date: date
    end_date: date
    periods: list[PeriodBreakdownResponse]
    failures: list[ItemFailureResponse]


class OverridePayload(BaseModel):
    item_id: str
    month_year: str
    override_amount: Decimal


class OverrideResponse(BaseModel):
    item_id: str
    month_year: str
    override_amount: Decimal
    updated_at: datetime | None = None


class CompletionPayload(BaseModel):
    occurrence_id: str
    transaction_id: str | None = None
    settled_at: datetime | None = None


class CompletionResponse(BaseModel):
    occurrence_id: str
    settled_at: datetime
    transaction_id: str | None = None


class PaycheckPreferencesPayload(BaseModel):
    frequency: str
    anchor_date: date
    semi_monthly_days: list[int] | None = None
    financial_tracking_start_date: date | None = None

    def to_preferences(self) -> PaycheckPreferences:
        preferences = PaycheckPreferences(
            frequency=Frequency.parse(self.frequency),
            anchor_date=self.anchor_date,
            semi_monthly_days=tuple(self.semi_monthly_days) if self.semi_monthly_days else None,
            financial_tracking_start_date=self.financial_tracking_start_date,
        )
        check_item(
            RecurringItem(
                id="paycheck",
                name="Paycheck",
                display_type=DisplayType.INCOME,
                amount=Decimal("1"),
                frequency=preferences.frequency,
                start_date=preferences.anchor_date,
                semi_monthly_days=preferences.semi_monthly_days,
            )
        )
        return preferences


class PaycheckPreferencesResponse(BaseModel):
    frequency: str
    anchor_date: date
    semi_monthly_days: list[int] | None = None
    financial_tracking_start_date: date | None = None


def get_user_id(x_user_id: str | None) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    user_id = x_user_id.strip()
    if not user_id or len(user_id) > MAX_USER_ID_LENGTH:
        raise HTTPException(status_code=400, detail="Invalid user identity.")
    return user_id


def today() -> date:
    return to_calendar_date(datetime.now(timezone.utc), settings.reference_zone)


def resolve_window(start_date: date | None, end_date: date | None) -> tuple[date, date]:
    default_start, default_end = default_window(
        today(), settings.lookback_months, settings.default_window_days
    )
    return start_date or default_start, end_date or default_end


def build_forecast(
    user_id: str,
    start_date: date,
    end_date: date,
    starting_balance: Decimal = Decimal("0"),
    business_days: bool = False,
) -> tuple[Forecast, set[str]]:
    try:
        validate_window(start_date, end_date, settings.max_window_days)
    except ValueError as exc:
        logger.info("Rejected forecast window for user %s: %s", user_id, exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    items = item_source.fetch_recurring_items(user_id)
    overrides = override_store.list_overrides(user_id, iter_month_keys(start_date, end_date))
    completed_ids = completion_store.get_completed_occurrence_ids(user_id)
    try:
        forecast = run_forecast(
            items,
            start_date,
            end_date,
            overrides=overrides,
            completed_ids=completed_ids,
            pay_dates=pay_schedule_source.get_pay_dates(
                user_id, start_date, end_date, max_window_days=settings.max_window_days
            ),
            starting_balance=starting_balance,
            tracking_floor=pay_schedule_source.get_tracking_floor(user_id),
            partial=True,
            adjust_income_to_business_day=business_days,
            max_window_days=settings.max_window_days,
        )
    except ValueError as exc:
        logger.info("Rejected forecast for user %s: %s", user_id, exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return forecast, completed_ids


def occurrence_response(occurrence: Occurrence, completed_ids: set[str]) -> OccurrenceResponse:
    return OccurrenceResponse(
        occurrence_id=occurrence.occurrence_id,
        item_id=occurrence.item_id,
        name=occurrence.name,
        occurrence_date=occurrence.occurrence_date,
        amount=occurrence.amount,
        display_type=occurrence.display_type.value,
        is_overridden=occurrence.is_overridden,
        is_completed=occurrence.occurrence_id in completed_ids,
    )


def item_response(item: RecurringItem) -> RecurringItemResponse:
    return RecurringItemResponse(
        id=item.id,
        name=item.name,
        display_type=DisplayType.parse(item.display_type).value,
        amount=item.amount,
        frequency=Frequency.parse(item.frequency).value,
        start_date=item.start_date,
        end_date=item.end_date,
        anchor_date=item.anchor_date,
        semi_monthly_days=list(item.semi_monthly_days) if item.semi_monthly_days else None,
        notes=item.notes,
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/recurring-items", response_model=list[RecurringItemResponse])
def list_recurring_items(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[RecurringItemResponse]:
    user_id = get_user_id(x_user_id)
    return [item_response(item) for item in item_store.fetch_recurring_items(user_id)]


@app.post("/recurring-items", response_model=RecurringItemResponse)
def create_recurring_item(
    payload: RecurringItemPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> RecurringItemResponse:
    user_id = get_user_id(x_user_id)
    try:
        item = payload.to_item(uuid4().hex)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        item_store.add_item(user_id, item)
    except IntegrityError as exc:
        raise HTTPException(status_code=500, detail="Failed to create recurring item.") from exc
    item_source.invalidate(user_id)
    return item_response(item)


@app.delete("/recurring-items/{item_id}")
def delete_recurring_item(
    item_id: str,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    user_id = get_user_id(x_user_id)
    if not item_store.delete_item(user_id, item_id):
        raise HTTPException(status_code=404, detail="Recurring item not found.")
    item_source.invalidate(user_id)
    return {"status": "deleted"}


@app.get("/forecast/occurrences", response_model=OccurrenceListResponse)
def forecast_occurrences(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    status: str = Query("all"),
    business_days: bool = Query(False),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> OccurrenceListResponse:
    user_id = get_user_id(x_user_id)
    normalized_status = status.strip().lower()
    if normalized_status not in {"all", "pending", "done"}:
        raise HTTPException(status_code=400, detail="Status must be all, pending, or done.")
    start_date, end_date = resolve_window(start_date, end_date)
    forecast, completed_ids = build_forecast(
        user_id, start_date, end_date, business_days=business_days
    )
    selected = {
        "all": forecast.occurrences,
        "pending": forecast.pending,
        "done": forecast.done,
    }[normalized_status]
    return OccurrenceListResponse(
        start_date=start_date,
        end_date=end_date,
        occurrences=[occurrence_response(occ, completed_ids) for occ in selected],
        failures=[
            ItemFailureResponse(item_id=failure.item_id, reason=failure.reason)
            for failure in forecast.failures
        ],
    )


@app.get("/forecast/upcoming", response_model=list[UpcomingOccurrenceResponse])
def upcoming_occurrences(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[UpcomingOccurrenceResponse]:
    user_id = get_user_id(x_user_id)
    current_day = today()
    start_date, end_date = resolve_window(None, None)
    forecast, completed_ids = build_forecast(user_id, start_date, end_date)
    entries: list[UpcomingOccurrenceResponse] = []
    for occurrence in next_open_occurrences(forecast.occurrences, completed_ids, current_day):
        is_overdue = occurrence.occurrence_date < current_day
        entries.append(
            UpcomingOccurrenceResponse(
                **occurrence_response(occurrence, completed_ids).model_dump(),
                is_overdue=is_overdue,
                days_past_due=(current_day - occurrence.occurrence_date).days if is_overdue else None,
            )
        )
    return entries


@app.get("/forecast/pay-periods", response_model=PayPeriodListResponse)
def forecast_pay_periods(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    starting_balance: Decimal = Query(Decimal("0")),
    business_days: bool = Query(False),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> PayPeriodListResponse:
    user_id = get_user_id(x_user_id)
    if start_date is None:
        start_date = today()
    if end_date is None:
        end_date = start_date + timedelta(days=settings.default_window_days)
    forecast, completed_ids = build_forecast(
        user_id, start_date, end_date, starting_balance, business_days
    )
    return PayPeriodListResponse(
        start_date=start_date,
        end_date=end_date,
        periods=[
            PeriodBreakdownResponse(
                period_start=period.period_start,
                period_end=period.period_end,
                opening_balance=period.opening_balance,
                gross_income=period.gross_income,
                committed_outflows=period.committed_outflows,
                final_remaining=period.final_remaining,
                is_deficit=period.is_deficit,
                income=[occurrence_response(occ, completed_ids) for occ in period.income],
                obligations=[
                    occurrence_response(occ, completed_ids) for occ in period.obligations
                ],
            )
            for period in forecast.periods
        ],
        failures=[
            ItemFailureResponse(item_id=failure.item_id, reason=failure.reason)
            for failure in forecast.failures
        ],
    )


@app.get("/forecast/overrides", response_model=list[OverrideResponse])
def list_forecast_overrides(
    month: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[OverrideResponse]:
    user_id = get_user_id(x_user_id)
    try:
        months = [parse_month_value(month)] if month else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [
        OverrideResponse(
            item_id=override.item_id,
            month_year=override.month_year,
            override_amount=override.override_amount,
            updated_at=override.updated_at,
        )
        for override in override_store.list_overrides(user_id, months)
    ]


@app.put("/forecast/overrides", response_model=OverrideResponse)
def upsert_forecast_override(
    payload: OverridePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> OverrideResponse:
    user_id = get_user_id(x_user_id)
    try:
        month_year = parse_month_value(payload.month_year)
        amount = validate_override_amount(payload.override_amount)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    updated_at = datetime.now(timezone.utc).replace(tzinfo=None)
    override_store.upsert_override(user_id, payload.item_id, month_year, amount, updated_at)
    return OverrideResponse(
        item_id=payload.item_id,
        month_year=month_year,
        override_amount=amount,
        updated_at=updated_at,
    )


@app.delete("/forecast/overrides/{item_id}/{month_year}")
def delete_forecast_override(
    item_id: str,
    month_year: str,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    user_id = get_user_id(x_user_id)
    try:
        deleted = override_store.delete_override(user_id, item_id, month_year)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="Override not found.")
    return {"status": "deleted"}


@app.get("/completions", response_model=list[CompletionResponse])
def list_completions(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[CompletionResponse]:
    user_id = get_user_id(x_user_id)
    return [
        CompletionResponse(
            occurrence_id=record.occurrence_id,
            settled_at=record.settled_at,
            transaction_id=record.transaction_id,
        )
        for record in completion_store.list_completions(user_id)
    ]


@app.post("/completions", response_model=CompletionResponse)
def mark_completion(
    payload: CompletionPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> CompletionResponse:
    user_id = get_user_id(x_user_id)
    occurrence_id = payload.occurrence_id.strip()
    if not occurrence_id:
        raise HTTPException(status_code=400, detail="Occurrence id required.")
    record = completion_store.mark_completed(
        user_id, occurrence_id, payload.transaction_id, payload.settled_at
    )
    return CompletionResponse(
        occurrence_id=record.occurrence_id,
        settled_at=record.settled_at,
        transaction_id=record.transaction_id,
    )


@app.delete("/completions/{occurrence_id}")
def unmark_completion(
    occurrence_id: str,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    user_id = get_user_id(x_user_id)
    if not completion_store.unmark_completed(user_id, occurrence_id):
        raise HTTPException(status_code=404, detail="Completion not found.")
    return {"status": "deleted"}


@app.delete("/completions/by-transaction/{transaction_id}")
def remove_completions_for_transaction(
    transaction_id: str,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    user_id = get_user_id(x_user_id)
    removed = completion_store.remove_by_transaction_id(user_id, transaction_id)
    return {"status": "deleted", "removed": removed}


@app.get("/paycheck-preferences", response_model=PaycheckPreferencesResponse)
def get_paycheck_preferences(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> PaycheckPreferencesResponse:
    user_id = get_user_id(x_user_id)
    preferences = pay_schedule_source.get_preferences(user_id)
    if preferences is None:
        raise HTTPException(status_code=404, detail="Paycheck preferences not found.")
    return PaycheckPreferencesResponse(
        frequency=Frequency.parse(preferences.frequency).value,
        anchor_date=preferences.anchor_date,
        semi_monthly_days=list(preferences.semi_monthly_days)
        if preferences.semi_monthly_days
        else None,
        financial_tracking_start_date=preferences.financial_tracking_start_date,
    )


@app.put("/paycheck-preferences", response_model=PaycheckPreferencesResponse)
def update_paycheck_preferences(
    payload: PaycheckPreferencesPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> PaycheckPreferencesResponse:
    user_id = get_user_id(x_user_id)
    try:
        preferences = payload.to_preferences()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    pay_schedule_source.save_preferences(user_id, preferences)
    return PaycheckPreferencesResponse(
        frequency=preferences.frequency.value,
        anchor_date=preferences.anchor_date,
        semi_monthly_days=list(preferences.semi_monthly_days)
        if preferences.semi_monthly_days
        else None,
        financial_tracking_start_date=preferences.financial_tracking_start_date,
    )
