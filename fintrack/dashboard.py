from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Mapping, Optional, Sequence, Union

import structlog

from fintrack.budget_engine import (
    BudgetHighlight,
    BudgetLine,
    CategoryBudgetSummary,
    budget_totals,
    highlighted_budgets,
    reconcile_budgets,
)
from fintrack.currency_conversion import MonthlyRates, normalize_currency
from fintrack.expense_sharing import PendingShare, SettlementBalance, net_settlements
from fintrack.history import DEFAULT_HISTORY_MONTHS, MonthlyHistoryPoint, build_history
from fintrack.holdings import Holding, HoldingValuation, PriceQuote, value_holdings
from fintrack.income_projection import (
    IncomeGoal,
    project_income,
    projected_net,
    resolve_income_goal,
)
from fintrack.money import ZERO, non_negative
from fintrack.months import normalize_month_key, shift_month_key, trailing_month_keys
from fintrack.recurring_projection import RecurringTemplate
from fintrack.rollup import (
    TransactionRecord,
    TransactionType,
    convert_transactions,
    group_by_category,
    sum_by_type,
)

logger = structlog.get_logger(__name__)

NET_THIS_MONTH = "Net this month"
ON_TRACK_FOR = "On track for"
LEFT_TO_SPEND = "Left to spend"
MONTHLY_TARGET = "Monthly target"


class StatVariant:
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"

    @classmethod
    def for_net(cls, value: Decimal) -> str:
        return cls.POSITIVE if value >= ZERO else cls.NEGATIVE


@dataclass(frozen=True)
class NetThisMonthBreakdown:
    income: Decimal
    expense: Decimal
    net: Decimal
    type: str = "net-this-month"


@dataclass(frozen=True)
class OnTrackForBreakdown:
    actual_income: Decimal
    actual_expense: Decimal
    expected_remaining_income: Decimal
    remaining_budgeted_expense: Decimal
    income_source: str
    projected: Decimal
    type: str = "on-track-for"


@dataclass(frozen=True)
class LeftToSpendCategory:
    id: str
    name: Optional[str]
    planned: Decimal
    actual: Decimal
    remaining: Decimal


@dataclass(frozen=True)
class LeftToSpendBreakdown:
    total_planned: Decimal
    total_actual: Decimal
    total_remaining: Decimal
    categories: List[LeftToSpendCategory]
    type: str = "left-to-spend"


@dataclass(frozen=True)
class MonthlyTargetBreakdown:
    planned_income: Decimal
    income_source: str
    planned_expense: Decimal
    target: Decimal
    type: str = "monthly-target"


StatBreakdown = Union[
    NetThisMonthBreakdown,
    OnTrackForBreakdown,
    LeftToSpendBreakdown,
    MonthlyTargetBreakdown,
]


@dataclass(frozen=True)
class MonetaryStat:
    label: str
    amount: Decimal
    variant: str
    helper: str
    breakdown: StatBreakdown


@dataclass(frozen=True)
class MonthComparison:
    previous_month: str
    previous_net: Decimal
    change: Decimal


@dataclass(frozen=True)
class DashboardInputs:
    """Everything the aggregation needs, fetched ahead of time."""

    account_id: str
    month: str
    preferred_currency: Optional[str]
    rates: MonthlyRates
    transactions: Sequence[TransactionRecord] = ()
    budgets: Sequence[BudgetLine] = ()
    recurring_templates: Sequence[RecurringTemplate] = ()
    income_goals: Sequence[IncomeGoal] = ()
    previous_transactions: Sequence[TransactionRecord] = ()
    history_transactions: Sequence[TransactionRecord] = ()
    owed_to_me: Sequence[PendingShare] = ()
    i_owe: Sequence[PendingShare] = ()
    holdings: Sequence[Holding] = ()
    quotes: Mapping[str, PriceQuote] = field(default_factory=dict)
    history_months: int = DEFAULT_HISTORY_MONTHS


@dataclass(frozen=True)
class DashboardResult:
    month: str
    account_id: str
    preferred_currency: Optional[str]
    stats: List[MonetaryStat]
    budgets: List[CategoryBudgetSummary]
    highlighted_budgets: List[BudgetHighlight]
    history: List[MonthlyHistoryPoint]
    comparison: MonthComparison
    settlement_balances: List[SettlementBalance]
    holdings: List[HoldingValuation]
    actual_income: Decimal
    actual_expense: Decimal
    actual_net: Decimal
    planned_income: Decimal
    planned_expense: Decimal
    planned_net: Decimal
    projected_net: Decimal
    expected_remaining_income: Decimal
    income_source: str
    income_goal: Optional[IncomeGoal]
    exchange_rate_last_update: Optional[datetime]


def required_months(month: str, history_months: int = DEFAULT_HISTORY_MONTHS) -> List[str]:
    """Distinct month keys whose rate snapshots a dashboard needs."""
    keys = set(trailing_month_keys(month, history_months))
    keys.add(normalize_month_key(month))
    keys.add(shift_month_key(month, -1))
    return sorted(keys)


def build_dashboard(inputs: DashboardInputs) -> DashboardResult:
    month = normalize_month_key(inputs.month)
    previous_month = shift_month_key(month, -1)
    target = normalize_currency(inputs.preferred_currency) if inputs.preferred_currency else None
    rates = inputs.rates

    current = convert_transactions(inputs.transactions, target, rates)
    actual_income = sum_by_type(current, TransactionType.INCOME)
    actual_expense = sum_by_type(current, TransactionType.EXPENSE)
    actual_net = actual_income - actual_expense
    by_category = group_by_category(current)

    budgets = reconcile_budgets(inputs.budgets, by_category, target, rates)
    totals = budget_totals(budgets)
    remaining_expense = totals.expense_remaining

    goal = resolve_income_goal(inputs.income_goals, month)
    income = project_income(
        month=month,
        actual_income=actual_income,
        goal=goal,
        templates=inputs.recurring_templates,
        transactions=current,
        budgeted_income=totals.income_planned,
        target_currency=target,
        rates=rates,
    )
    projected = projected_net(
        actual_income,
        income.expected_remaining,
        actual_expense,
        remaining_expense,
    )
    planned_net = income.planned_income - totals.expense_planned

    previous = convert_transactions(inputs.previous_transactions, target, rates)
    previous_net = sum_by_type(previous, TransactionType.INCOME) - sum_by_type(
        previous, TransactionType.EXPENSE
    )
    comparison = MonthComparison(
        previous_month=previous_month,
        previous_net=previous_net,
        change=actual_net - previous_net,
    )

    history = build_history(
        inputs.history_transactions,
        month,
        target,
        rates,
        months=inputs.history_months,
    )
    settlements = net_settlements(inputs.owed_to_me, inputs.i_owe)
    holdings = value_holdings(inputs.holdings, inputs.quotes, target, rates)

    stats = [
        MonetaryStat(
            label=NET_THIS_MONTH,
            amount=actual_net,
            variant=StatVariant.for_net(actual_net),
            helper="Income minus expenses this month",
            breakdown=NetThisMonthBreakdown(
                income=actual_income,
                expense=actual_expense,
                net=actual_net,
            ),
        ),
        MonetaryStat(
            label=ON_TRACK_FOR,
            amount=projected,
            variant=StatVariant.for_net(projected),
            helper="Where you'll be at month end",
            breakdown=OnTrackForBreakdown(
                actual_income=actual_income,
                actual_expense=actual_expense,
                expected_remaining_income=income.expected_remaining,
                remaining_budgeted_expense=non_negative(remaining_expense),
                income_source=income.source,
                projected=projected,
            ),
        ),
        MonetaryStat(
            label=LEFT_TO_SPEND,
            amount=non_negative(remaining_expense),
            variant=StatVariant.NEUTRAL if remaining_expense <= ZERO else StatVariant.NEGATIVE,
            helper="Budget not yet used",
            breakdown=LeftToSpendBreakdown(
                total_planned=totals.expense_planned,
                total_actual=totals.expense_actual,
                total_remaining=remaining_expense,
                categories=[
                    LeftToSpendCategory(
                        id=summary.category_id,
                        name=summary.category_name,
                        planned=summary.planned,
                        actual=summary.actual,
                        remaining=summary.remaining,
                    )
                    for summary in budgets
                    if summary.category_type == TransactionType.EXPENSE
                ],
            ),
        ),
        MonetaryStat(
            label=MONTHLY_TARGET,
            amount=planned_net,
            variant=StatVariant.for_net(planned_net),
            helper="Expected income minus budgeted expenses",
            breakdown=MonthlyTargetBreakdown(
                planned_income=income.planned_income,
                income_source=income.source,
                planned_expense=totals.expense_planned,
                target=planned_net,
            ),
        ),
    ]

    logger.info(
        "dashboard_built",
        account_id=inputs.account_id,
        month=month,
        income_source=income.source,
        budgets=len(budgets),
        settlements=len(settlements),
    )
    return DashboardResult(
        month=month,
        account_id=inputs.account_id,
        preferred_currency=target,
        stats=stats,
        budgets=budgets,
        highlighted_budgets=highlighted_budgets(budgets),
        history=history,
        comparison=comparison,
        settlement_balances=settlements,
        holdings=holdings,
        actual_income=actual_income,
        actual_expense=actual_expense,
        actual_net=actual_net,
        planned_income=income.planned_income,
        planned_expense=totals.expense_planned,
        planned_net=planned_net,
        projected_net=projected,
        expected_remaining_income=income.expected_remaining,
        income_source=income.source,
        income_goal=goal,
        exchange_rate_last_update=rates.last_updated,
    )
