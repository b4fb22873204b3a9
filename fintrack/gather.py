from __future__ import annotations

import asyncio
from typing import Optional, Protocol, Sequence

import structlog

from fintrack.budget_engine import BudgetLine
from fintrack.currency_conversion import RateProvider, load_monthly_rates
from fintrack.dashboard import DashboardInputs, required_months
from fintrack.expense_sharing import PendingShare
from fintrack.history import DEFAULT_HISTORY_MONTHS
from fintrack.income_projection import IncomeGoal
from fintrack.months import normalize_month_key, shift_month_key
from fintrack.recurring_projection import RecurringTemplate
from fintrack.rollup import TransactionRecord

logger = structlog.get_logger(__name__)


class DashboardSources(Protocol):
    """Storage-side collaborators. Implementations own querying and retries."""

    async def transactions_for_month(
        self, account_id: str, month: str
    ) -> Sequence[TransactionRecord]: ...

    async def transactions_between(
        self, account_id: str, start_month: str, end_month: str
    ) -> Sequence[TransactionRecord]: ...

    async def budgets_for_month(self, account_id: str, month: str) -> Sequence[BudgetLine]: ...

    async def recurring_templates(self, account_id: str) -> Sequence[RecurringTemplate]: ...

    async def income_goals(self, account_id: str, month: str) -> Sequence[IncomeGoal]: ...

    async def shares_owed_to_user(self, user_id: str) -> Sequence[PendingShare]: ...

    async def shares_owed_by_user(self, user_id: str) -> Sequence[PendingShare]: ...


async def _no_shares() -> Sequence[PendingShare]:
    return ()


async def gather_dashboard_inputs(
    sources: DashboardSources,
    provider: RateProvider,
    *,
    account_id: str,
    month: str,
    preferred_currency: Optional[str],
    user_id: Optional[str] = None,
    history_months: int = DEFAULT_HISTORY_MONTHS,
) -> DashboardInputs:
    """Fetch every input concurrently.

    Any failing fetch propagates and abandons the whole request; a partial
    dashboard is never assembled.
    """
    month = normalize_month_key(month)
    previous_month = shift_month_key(month, -1)
    window_start = shift_month_key(month, -(history_months - 1))

    (
        transactions,
        budgets,
        templates,
        goals,
        previous_transactions,
        history_transactions,
        owed_to_me,
        i_owe,
        rates,
    ) = await asyncio.gather(
        sources.transactions_for_month(account_id, month),
        sources.budgets_for_month(account_id, month),
        sources.recurring_templates(account_id),
        sources.income_goals(account_id, month),
        sources.transactions_for_month(account_id, previous_month),
        sources.transactions_between(account_id, window_start, month),
        sources.shares_owed_to_user(user_id) if user_id else _no_shares(),
        sources.shares_owed_by_user(user_id) if user_id else _no_shares(),
        load_monthly_rates(provider, required_months(month, history_months), month),
    )
    logger.debug(
        "dashboard_inputs_gathered",
        account_id=account_id,
        month=month,
        transactions=len(transactions),
        history_transactions=len(history_transactions),
        rate_months=sorted(rates.caches),
    )
    return DashboardInputs(
        account_id=account_id,
        month=month,
        preferred_currency=preferred_currency,
        rates=rates,
        transactions=tuple(transactions),
        budgets=tuple(budgets),
        recurring_templates=tuple(templates),
        income_goals=tuple(goals),
        previous_transactions=tuple(previous_transactions),
        history_transactions=tuple(history_transactions),
        owed_to_me=tuple(owed_to_me),
        i_owe=tuple(i_owe),
        history_months=history_months,
    )
