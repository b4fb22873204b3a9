from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Set

from fintrack.currency_conversion import MonthlyRates
from fintrack.money import ZERO, round_money
from fintrack.months import normalize_month_key, parse_month_value, clamp_day
from fintrack.rollup import ConvertedTransaction, TransactionRecord, TransactionType


@dataclass(frozen=True)
class RecurringTemplate:
    template_id: str
    type: str
    amount: Decimal
    currency: str
    is_active: bool = True
    day_of_month: int = 1
    start_month_key: Optional[str] = None
    end_month_key: Optional[str] = None
    description: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", TransactionType.validate(self.type))
        object.__setattr__(self, "amount", round_money(self.amount))
        if self.start_month_key:
            object.__setattr__(self, "start_month_key", normalize_month_key(self.start_month_key))
        if self.end_month_key:
            object.__setattr__(self, "end_month_key", normalize_month_key(self.end_month_key))

    def is_active_for(self, month: str) -> bool:
        month = normalize_month_key(month)
        if not self.is_active:
            return False
        if self.start_month_key and self.start_month_key > month:
            return False
        if self.end_month_key and self.end_month_key < month:
            return False
        return True


@dataclass(frozen=True)
class ProjectedEntry:
    template_id: str
    date: date
    amount: Decimal
    transaction_type: str
    source: str = "projected"
    description: Optional[str] = None


def active_templates(
    templates: Iterable[RecurringTemplate],
    month: str,
    txn_type: Optional[str] = None,
) -> List[RecurringTemplate]:
    return [
        template
        for template in templates
        if template.is_active_for(month)
        and (txn_type is None or template.type == txn_type)
    ]


def sum_templates(
    templates: Iterable[RecurringTemplate],
    target_currency: Optional[str],
    rates: MonthlyRates,
    month: str,
) -> Decimal:
    total = ZERO
    for template in templates:
        total += rates.convert(template.amount, template.currency, target_currency, month=month)
    return total


def project_recurring_templates(
    templates: Iterable[RecurringTemplate],
    month: str,
    existing_transactions: Iterable[TransactionRecord | ConvertedTransaction],
    target_currency: Optional[str],
    rates: MonthlyRates,
    txn_type: Optional[str] = None,
) -> List[ProjectedEntry]:
    """Occurrences still expected this month.

    Templates already applied (a transaction this month carries their id)
    are skipped so they are not counted twice.
    """
    month_key = normalize_month_key(month)
    month_date = parse_month_value(month_key)
    applied = _applied_template_ids(existing_transactions, month_key)

    projections: List[ProjectedEntry] = []
    for template in active_templates(templates, month_key, txn_type):
        if template.template_id in applied:
            continue
        projections.append(
            ProjectedEntry(
                template_id=template.template_id,
                date=clamp_day(month_date.year, month_date.month, template.day_of_month),
                amount=rates.convert(
                    template.amount, template.currency, target_currency, month=month_key
                ),
                transaction_type=template.type,
                description=template.description,
            )
        )
    projections.sort(key=lambda entry: (entry.date, entry.template_id))
    return projections


def _applied_template_ids(
    existing_transactions: Iterable[TransactionRecord | ConvertedTransaction],
    month: str,
) -> Set[str]:
    return {
        txn.recurring_template_id
        for txn in existing_transactions
        if txn.recurring_template_id and txn.month == month
    }
