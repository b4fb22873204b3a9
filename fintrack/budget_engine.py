from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional

from fintrack.currency_conversion import MonthlyRates
from fintrack.money import ZERO, round_money
from fintrack.months import normalize_month_key
from fintrack.rollup import CategoryTotals, TransactionType


@dataclass(frozen=True)
class BudgetLine:
    budget_id: str
    account_id: str
    category_id: str
    category_type: str
    planned: Decimal
    currency: str
    month: str
    category_name: Optional[str] = None
    account_name: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "category_type", TransactionType.validate(self.category_type))
        object.__setattr__(self, "planned", round_money(self.planned))
        object.__setattr__(self, "month", normalize_month_key(self.month))


@dataclass(frozen=True)
class CategoryBudgetSummary:
    budget_id: str
    account_id: str
    account_name: Optional[str]
    category_id: str
    category_name: Optional[str]
    category_type: str
    planned: Decimal
    actual: Decimal
    remaining: Decimal
    month: str


@dataclass(frozen=True)
class BudgetHighlight:
    budget_id: str
    category_id: str
    category_name: Optional[str]
    planned: Decimal
    actual: Decimal
    remaining: Decimal
    progress: Decimal


@dataclass(frozen=True)
class BudgetTotals:
    expense_planned: Decimal = ZERO
    expense_actual: Decimal = ZERO
    income_planned: Decimal = ZERO
    income_actual: Decimal = ZERO

    @property
    def expense_remaining(self) -> Decimal:
        return self.expense_planned - self.expense_actual

    @property
    def income_remaining(self) -> Decimal:
        return self.income_planned - self.income_actual


def reconcile_budgets(
    budgets: Iterable[BudgetLine],
    totals: CategoryTotals,
    target_currency: Optional[str],
    rates: MonthlyRates,
) -> List[CategoryBudgetSummary]:
    """One summary row per budget line, planned converted with its own month's rates."""
    summaries: List[CategoryBudgetSummary] = []
    for budget in budgets:
        planned = rates.convert(
            budget.planned,
            budget.currency,
            target_currency,
            month=budget.month,
        )
        actual = totals.for_type(budget.category_type, budget.category_id)
        summaries.append(
            CategoryBudgetSummary(
                budget_id=budget.budget_id,
                account_id=budget.account_id,
                account_name=budget.account_name,
                category_id=budget.category_id,
                category_name=budget.category_name,
                category_type=budget.category_type,
                planned=planned,
                actual=actual,
                remaining=planned - actual,
                month=budget.month,
            )
        )
    return summaries


def budget_totals(summaries: Iterable[CategoryBudgetSummary]) -> BudgetTotals:
    expense_planned = expense_actual = income_planned = income_actual = ZERO
    for summary in summaries:
        if summary.category_type == TransactionType.EXPENSE:
            expense_planned += summary.planned
            expense_actual += summary.actual
        else:
            income_planned += summary.planned
            income_actual += summary.actual
    return BudgetTotals(
        expense_planned=expense_planned,
        expense_actual=expense_actual,
        income_planned=income_planned,
        income_actual=income_actual,
    )


def budget_progress(summary: CategoryBudgetSummary) -> Decimal:
    """Share of the plan already used, clamped to 0..1."""
    if summary.planned <= ZERO:
        return Decimal("1") if summary.actual > ZERO else ZERO
    ratio = summary.actual / summary.planned
    return min(max(ratio, ZERO), Decimal("1"))


def highlighted_budgets(
    summaries: Iterable[CategoryBudgetSummary], limit: int = 3
) -> List[BudgetHighlight]:
    """Expense budgets closest to (or past) their plan, busiest first."""
    expense = [s for s in summaries if s.category_type == TransactionType.EXPENSE]
    ranked = sorted(expense, key=budget_progress, reverse=True)[:limit]
    return [
        BudgetHighlight(
            budget_id=summary.budget_id,
            category_id=summary.category_id,
            category_name=summary.category_name,
            planned=summary.planned,
            actual=summary.actual,
            remaining=summary.remaining,
            progress=budget_progress(summary),
        )
        for summary in ranked
    ]
