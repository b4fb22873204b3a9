from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Iterable, Optional, Sequence, Tuple

from fintrack.currency_conversion import MonthlyRates
from fintrack.money import ZERO, non_negative, round_money
from fintrack.months import normalize_month_key
from fintrack.recurring_projection import (
    RecurringTemplate,
    active_templates,
    project_recurring_templates,
    sum_templates,
)
from fintrack.rollup import ConvertedTransaction, TransactionType


class IncomeSource:
    GOAL = "goal"
    RECURRING = "recurring"
    BUDGET = "budget"
    NONE = "none"


@dataclass(frozen=True)
class IncomeGoal:
    amount: Decimal
    currency: str
    is_default: bool = False
    month_key: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", round_money(self.amount))
        if self.month_key:
            object.__setattr__(self, "month_key", normalize_month_key(self.month_key))


@dataclass(frozen=True)
class IncomeProjection:
    source: str
    planned_income: Decimal
    expected_remaining: Decimal
    goal_income: Decimal
    recurring_income: Decimal
    budgeted_income: Decimal


PriorityStep = Tuple[str, Callable[[], Decimal]]


def resolve_income_goal(goals: Iterable[IncomeGoal], month: str) -> Optional[IncomeGoal]:
    """A goal pinned to ``month`` overrides the account's default goal."""
    month = normalize_month_key(month)
    default_goal: Optional[IncomeGoal] = None
    for goal in goals:
        if goal.month_key == month and not goal.is_default:
            return goal
        if goal.is_default or goal.month_key is None:
            default_goal = default_goal or goal
    return default_goal


def resolve_priority(steps: Sequence[PriorityStep]) -> Tuple[str, Decimal]:
    """Evaluate steps in order; the first strictly positive value wins."""
    for source, produce in steps:
        value = produce()
        if value > ZERO:
            return source, value
    return IncomeSource.NONE, ZERO


def project_income(
    *,
    month: str,
    actual_income: Decimal,
    goal: Optional[IncomeGoal],
    templates: Iterable[RecurringTemplate],
    transactions: Iterable[ConvertedTransaction],
    budgeted_income: Decimal,
    target_currency: Optional[str],
    rates: MonthlyRates,
) -> IncomeProjection:
    month = normalize_month_key(month)
    templates = list(templates)
    goal_income = (
        rates.convert(goal.amount, goal.currency, target_currency, month=month)
        if goal
        else ZERO
    )
    recurring_income = sum_templates(
        active_templates(templates, month, TransactionType.INCOME),
        target_currency,
        rates,
        month,
    )

    source, planned_income = resolve_priority(
        (
            (IncomeSource.GOAL, lambda: goal_income),
            (IncomeSource.RECURRING, lambda: recurring_income),
            (IncomeSource.BUDGET, lambda: budgeted_income),
        )
    )

    if source == IncomeSource.GOAL:
        expected_remaining = non_negative(goal_income - actual_income)
    elif source == IncomeSource.RECURRING:
        pending = project_recurring_templates(
            templates,
            month,
            transactions,
            target_currency,
            rates,
            txn_type=TransactionType.INCOME,
        )
        expected_remaining = sum((entry.amount for entry in pending), ZERO)
    else:
        expected_remaining = non_negative(budgeted_income - actual_income)

    return IncomeProjection(
        source=source,
        planned_income=planned_income,
        expected_remaining=expected_remaining,
        goal_income=goal_income,
        recurring_income=recurring_income,
        budgeted_income=budgeted_income,
    )


def projected_net(
    actual_income: Decimal,
    expected_remaining_income: Decimal,
    actual_expense: Decimal,
    remaining_expense: Decimal,
) -> Decimal:
    return actual_income + expected_remaining_income - (
        actual_expense + non_negative(remaining_expense)
    )
