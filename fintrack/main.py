from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from typing import Literal, Union

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from fintrack.budget_engine import BudgetLine
from fintrack.currency_conversion import (
    ExchangeRateIntegrityError,
    RateCache,
    load_monthly_rates,
)
from fintrack.dashboard import DashboardInputs, build_dashboard, required_months
from fintrack.expense_sharing import (
    ParticipantShare,
    PendingShare,
    SharedExpense,
    SplitParticipant,
    calculate_shares,
    filter_shared_expenses,
    net_settlements,
    owner_share,
    summarize_shared_expense,
    validate_split,
)
from fintrack.holdings import Holding, PriceQuote
from fintrack.income_projection import IncomeGoal
from fintrack.logging_config import configure_logging
from fintrack.months import normalize_month_key
from fintrack.recurring_projection import RecurringTemplate
from fintrack.rollup import TransactionRecord
from fintrack.settings import build_rate_provider, get_settings

settings = get_settings()

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

FX_PROVIDER = build_rate_provider(settings)


@app.on_event("startup")
def init_logging() -> None:
    configure_logging(settings.log_level, settings.log_json)


class TransactionRow(BaseModel):
    type: str
    amount: Decimal
    currency: str
    category_id: str
    month: str
    recurring_template_id: str | None = None


class BudgetRow(BaseModel):
    budget_id: str
    account_id: str
    category_id: str
    category_type: str
    planned: Decimal
    currency: str
    month: str
    category_name: str | None = None
    account_name: str | None = None


class RecurringTemplateRow(BaseModel):
    template_id: str
    type: str
    amount: Decimal
    currency: str
    is_active: bool = True
    day_of_month: int = 1
    start_month_key: str | None = None
    end_month_key: str | None = None
    description: str | None = None


class IncomeGoalRow(BaseModel):
    amount: Decimal
    currency: str
    is_default: bool = False
    month_key: str | None = None


class ShareRow(BaseModel):
    counterparty_id: str
    currency: str
    amount: Decimal
    status: str = "PENDING"
    counterparty_email: str | None = None
    counterparty_name: str | None = None


class HoldingRow(BaseModel):
    holding_id: str
    symbol: str
    quantity: Decimal
    average_cost: Decimal
    currency: str


class QuoteRow(BaseModel):
    price: Decimal
    change_percent: Decimal | None = None
    fetched_at: datetime | None = None
    is_stale: bool = False


class RateSnapshotPayload(BaseModel):
    base_currency: str = "USD"
    rates: dict[str, Decimal]


class DashboardPayload(BaseModel):
    account_id: str
    month: str
    preferred_currency: str | None = None
    transactions: list[TransactionRow] = []
    budgets: list[BudgetRow] = []
    recurring_templates: list[RecurringTemplateRow] = []
    income_goals: list[IncomeGoalRow] = []
    previous_transactions: list[TransactionRow] = []
    history_transactions: list[TransactionRow] = []
    owed_to_me: list[ShareRow] = []
    i_owe: list[ShareRow] = []
    holdings: list[HoldingRow] = []
    quotes: dict[str, QuoteRow] = {}
    rates: dict[str, RateSnapshotPayload] = {}
    history_months: int | None = None


class NetThisMonthBreakdownResponse(BaseModel):
    type: Literal["net-this-month"]
    income: Decimal
    expense: Decimal
    net: Decimal


class OnTrackForBreakdownResponse(BaseModel):
    type: Literal["on-track-for"]
    actual_income: Decimal
    actual_expense: Decimal
    expected_remaining_income: Decimal
    remaining_budgeted_expense: Decimal
    income_source: str
    projected: Decimal


class LeftToSpendCategoryResponse(BaseModel):
    id: str
    name: str | None = None
    planned: Decimal
    actual: Decimal
    remaining: Decimal


class LeftToSpendBreakdownResponse(BaseModel):
    type: Literal["left-to-spend"]
    total_planned: Decimal
    total_actual: Decimal
    total_remaining: Decimal
    categories: list[LeftToSpendCategoryResponse]


class MonthlyTargetBreakdownResponse(BaseModel):
    type: Literal["monthly-target"]
    planned_income: Decimal
    income_source: str
    planned_expense: Decimal
    target: Decimal


class MonetaryStatResponse(BaseModel):
    label: str
    amount: Decimal
    variant: str
    helper: str
    breakdown: Union[
        NetThisMonthBreakdownResponse,
        OnTrackForBreakdownResponse,
        LeftToSpendBreakdownResponse,
        MonthlyTargetBreakdownResponse,
    ]


class CategoryBudgetSummaryResponse(BaseModel):
    budget_id: str
    account_id: str
    account_name: str | None = None
    category_id: str
    category_name: str | None = None
    category_type: str
    planned: Decimal
    actual: Decimal
    remaining: Decimal
    month: str


class BudgetHighlightResponse(BaseModel):
    budget_id: str
    category_id: str
    category_name: str | None = None
    planned: Decimal
    actual: Decimal
    remaining: Decimal
    progress: Decimal


class MonthlyHistoryPointResponse(BaseModel):
    month: str
    income: Decimal
    expense: Decimal
    net: Decimal


class MonthComparisonResponse(BaseModel):
    previous_month: str
    previous_net: Decimal
    change: Decimal


class SettlementBalanceResponse(BaseModel):
    counterparty_id: str
    currency: str
    you_owe: Decimal
    they_owe: Decimal
    net_balance: Decimal
    counterparty_email: str | None = None
    counterparty_name: str | None = None


class HoldingValuationResponse(BaseModel):
    holding_id: str
    symbol: str
    currency: str
    quantity: Decimal
    average_cost: Decimal
    current_price: Decimal | None = None
    cost_basis: Decimal
    market_value: Decimal
    gain_loss: Decimal
    gain_loss_percent: Decimal
    is_stale: bool
    display_currency: str
    current_price_converted: Decimal | None = None
    cost_basis_converted: Decimal
    market_value_converted: Decimal
    gain_loss_converted: Decimal


class IncomeGoalResponse(BaseModel):
    amount: Decimal
    currency: str
    is_default: bool
    month_key: str | None = None


class DashboardResponse(BaseModel):
    month: str
    account_id: str
    preferred_currency: str | None = None
    stats: list[MonetaryStatResponse]
    budgets: list[CategoryBudgetSummaryResponse]
    highlighted_budgets: list[BudgetHighlightResponse]
    history: list[MonthlyHistoryPointResponse]
    comparison: MonthComparisonResponse
    settlement_balances: list[SettlementBalanceResponse]
    holdings: list[HoldingValuationResponse]
    actual_income: Decimal
    actual_expense: Decimal
    actual_net: Decimal
    planned_income: Decimal
    planned_expense: Decimal
    planned_net: Decimal
    projected_net: Decimal
    expected_remaining_income: Decimal
    income_source: str
    income_goal: IncomeGoalResponse | None = None
    exchange_rate_last_update: datetime | None = None


class SplitParticipantPayload(BaseModel):
    email: str
    share_amount: Decimal | None = None
    share_percentage: Decimal | None = None


class SplitPayload(BaseModel):
    split_type: str
    total_amount: Decimal
    participants: list[SplitParticipantPayload]
    valid_participant_ids: list[str] | None = None
    owner_email: str | None = None


class ShareAllocationResponse(BaseModel):
    amount: Decimal
    percentage: Decimal | None = None


class SplitResponse(BaseModel):
    split_type: str
    total_amount: Decimal
    shares: dict[str, ShareAllocationResponse]
    owner_share: Decimal


class SettlementPayload(BaseModel):
    owed_to_me: list[ShareRow] = []
    i_owe: list[ShareRow] = []


class ParticipantShareRow(BaseModel):
    participant_id: str
    share_amount: Decimal
    status: str = "PENDING"
    share_percentage: Decimal | None = None


class SharedExpenseRow(BaseModel):
    expense_id: str
    total_amount: Decimal
    currency: str
    split_type: str
    participants: list[ParticipantShareRow] = []


class SharedExpenseSummaryResponse(BaseModel):
    expense_id: str
    total_amount: Decimal
    currency: str
    split_type: str
    total_owed: Decimal
    total_paid: Decimal
    owner_share: Decimal
    all_settled: bool


def _pending_shares(rows: list[ShareRow]) -> list[PendingShare]:
    return [PendingShare(**row.model_dump()) for row in rows]


async def _dashboard_inputs(payload: DashboardPayload) -> DashboardInputs:
    month = normalize_month_key(payload.month)
    history_months = payload.history_months or settings.history_months
    preloaded = {
        key: RateCache(as_of=key, base_currency=snapshot.base_currency, rates=snapshot.rates)
        for key, snapshot in payload.rates.items()
    }
    rates = await load_monthly_rates(
        FX_PROVIDER,
        required_months(month, history_months),
        month,
        preloaded=preloaded,
    )
    return DashboardInputs(
        account_id=payload.account_id,
        month=month,
        preferred_currency=payload.preferred_currency or settings.default_currency,
        rates=rates,
        transactions=[TransactionRecord(**row.model_dump()) for row in payload.transactions],
        budgets=[BudgetLine(**row.model_dump()) for row in payload.budgets],
        recurring_templates=[
            RecurringTemplate(**row.model_dump()) for row in payload.recurring_templates
        ],
        income_goals=[IncomeGoal(**row.model_dump()) for row in payload.income_goals],
        previous_transactions=[
            TransactionRecord(**row.model_dump()) for row in payload.previous_transactions
        ],
        history_transactions=[
            TransactionRecord(**row.model_dump()) for row in payload.history_transactions
        ],
        owed_to_me=_pending_shares(payload.owed_to_me),
        i_owe=_pending_shares(payload.i_owe),
        holdings=[Holding(**row.model_dump()) for row in payload.holdings],
        quotes={
            symbol.upper(): PriceQuote(**quote.model_dump())
            for symbol, quote in payload.quotes.items()
        },
        history_months=history_months,
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/dashboard", response_model=DashboardResponse)
async def dashboard(payload: DashboardPayload) -> DashboardResponse:
    try:
        result = build_dashboard(await _dashboard_inputs(payload))
    except ExchangeRateIntegrityError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return DashboardResponse.model_validate(asdict(result))


@app.post("/expenses/shares", response_model=SplitResponse)
def expense_shares(payload: SplitPayload) -> SplitResponse:
    participants = [SplitParticipant(**row.model_dump()) for row in payload.participants]
    valid_ids = payload.valid_participant_ids
    if valid_ids is None:
        valid_ids = [participant.email for participant in participants]
    try:
        validate_split(
            payload.split_type,
            payload.total_amount,
            participants,
            owner_email=payload.owner_email,
        )
        shares = calculate_shares(
            payload.split_type,
            payload.total_amount,
            participants,
            valid_ids,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return SplitResponse(
        split_type=payload.split_type.strip().upper(),
        total_amount=payload.total_amount,
        shares={
            email: ShareAllocationResponse(amount=share.amount, percentage=share.percentage)
            for email, share in shares.items()
        },
        owner_share=owner_share(payload.total_amount, shares),
    )


@app.post("/settlements", response_model=list[SettlementBalanceResponse])
def settlements(payload: SettlementPayload) -> list[SettlementBalanceResponse]:
    try:
        balances = net_settlements(
            _pending_shares(payload.owed_to_me),
            _pending_shares(payload.i_owe),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [SettlementBalanceResponse.model_validate(asdict(balance)) for balance in balances]


@app.post("/shared-expenses/summary", response_model=list[SharedExpenseSummaryResponse])
def shared_expense_summary(
    payload: list[SharedExpenseRow],
    status: str = Query("all"),
) -> list[SharedExpenseSummaryResponse]:
    try:
        summaries = [
            summarize_shared_expense(
                SharedExpense(
                    expense_id=row.expense_id,
                    total_amount=row.total_amount,
                    currency=row.currency,
                    split_type=row.split_type,
                    participants=tuple(
                        ParticipantShare(**participant.model_dump())
                        for participant in row.participants
                    ),
                )
            )
            for row in payload
        ]
        filtered = filter_shared_expenses(summaries, status)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [SharedExpenseSummaryResponse.model_validate(asdict(summary)) for summary in filtered]
