from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional

from fintrack.currency_conversion import MonthlyRates
from fintrack.money import ZERO
from fintrack.months import trailing_month_keys
from fintrack.rollup import TransactionRecord, TransactionType

DEFAULT_HISTORY_MONTHS = 6


@dataclass(frozen=True)
class MonthlyHistoryPoint:
    month: str
    income: Decimal
    expense: Decimal
    net: Decimal


def build_history(
    rows: Iterable[TransactionRecord],
    end_month: str,
    target_currency: Optional[str],
    rates: MonthlyRates,
    months: int = DEFAULT_HISTORY_MONTHS,
) -> List[MonthlyHistoryPoint]:
    """Gap-free trailing window ending at ``end_month``, oldest month first.

    Each row is converted with the rate snapshot of its own month.
    """
    window = trailing_month_keys(end_month, months)
    buckets = {key: {"income": ZERO, "expense": ZERO} for key in window}
    for row in rows:
        bucket = buckets.get(row.month)
        if bucket is None:
            continue
        amount = rates.convert(row.amount, row.currency, target_currency, month=row.month)
        if row.type == TransactionType.INCOME:
            bucket["income"] += amount
        else:
            bucket["expense"] += amount

    return [
        MonthlyHistoryPoint(
            month=key,
            income=buckets[key]["income"],
            expense=buckets[key]["expense"],
            net=buckets[key]["income"] - buckets[key]["expense"],
        )
        for key in sorted(buckets)
    ]
