from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from fintrack.currency_conversion import MonthlyRates
from fintrack.money import ZERO, round_money
from fintrack.months import normalize_month_key


class TransactionType:
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    values = {INCOME, EXPENSE}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in cls.values:
            raise ValueError("Invalid transaction type.")
        return normalized


@dataclass(frozen=True)
class TransactionRecord:
    type: str
    amount: Decimal
    currency: str
    category_id: str
    month: str
    recurring_template_id: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", TransactionType.validate(self.type))
        object.__setattr__(self, "amount", round_money(self.amount))
        object.__setattr__(self, "month", normalize_month_key(self.month))


@dataclass(frozen=True)
class ConvertedTransaction:
    type: str
    amount: Decimal
    category_id: str
    month: str
    recurring_template_id: Optional[str] = None


@dataclass(frozen=True)
class CategoryTotals:
    """Converted totals keyed by category id, split by transaction type.

    Lookups for categories without transactions return zero.
    """

    income: Mapping[str, Decimal]
    expense: Mapping[str, Decimal]

    def for_type(self, txn_type: str, category_id: str) -> Decimal:
        totals = self.expense if txn_type == TransactionType.EXPENSE else self.income
        return totals.get(category_id, ZERO)

    def expense_for(self, category_id: str) -> Decimal:
        return self.expense.get(category_id, ZERO)

    def income_for(self, category_id: str) -> Decimal:
        return self.income.get(category_id, ZERO)


def convert_transactions(
    rows: Iterable[TransactionRecord],
    target_currency: Optional[str],
    rates: MonthlyRates,
) -> list[ConvertedTransaction]:
    return [
        ConvertedTransaction(
            type=row.type,
            amount=rates.convert(row.amount, row.currency, target_currency, month=row.month),
            category_id=row.category_id,
            month=row.month,
            recurring_template_id=row.recurring_template_id,
        )
        for row in rows
    ]


def sum_by_type(rows: Iterable[ConvertedTransaction], txn_type: str) -> Decimal:
    total = ZERO
    for row in rows:
        if row.type != txn_type:
            continue
        total += row.amount
    return total


def group_by_category(rows: Iterable[ConvertedTransaction]) -> CategoryTotals:
    income: dict[str, Decimal] = {}
    expense: dict[str, Decimal] = {}
    for row in rows:
        totals = expense if row.type == TransactionType.EXPENSE else income
        totals[row.category_id] = totals.get(row.category_id, ZERO) + row.amount
    return CategoryTotals(
        income=MappingProxyType(income),
        expense=MappingProxyType(expense),
    )
