from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from fintrack.currency_conversion import normalize_currency
from fintrack.money import ZERO, coerce_decimal, round_money

HUNDRED = Decimal("100")


class SplitType:
    EQUAL = "EQUAL"
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"
    values = {EQUAL, PERCENTAGE, FIXED}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in cls.values:
            raise ValueError("Invalid split type.")
        return normalized


class PaymentStatus:
    PENDING = "PENDING"
    PAID = "PAID"
    DECLINED = "DECLINED"
    values = {PENDING, PAID, DECLINED}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in cls.values:
            raise ValueError("Invalid payment status.")
        return normalized


class SplitValidationError(ValueError):
    """Raised when a requested split cannot reconcile with the expense total."""


@dataclass(frozen=True)
class SplitParticipant:
    email: str
    share_amount: Optional[Decimal] = None
    share_percentage: Optional[Decimal] = None


@dataclass(frozen=True)
class ShareAllocation:
    amount: Decimal
    percentage: Optional[Decimal] = None


def calculate_shares(
    split_type: str,
    total_amount: Decimal,
    participants: Iterable[SplitParticipant],
    valid_participant_ids: Iterable[str],
) -> Dict[str, ShareAllocation]:
    """Compute each participant's share of an expense.

    Keys are lower-cased emails. Participants missing from
    ``valid_participant_ids`` are skipped. For EQUAL splits the owner holds
    an implicit extra share that is not part of the result; see
    ``owner_share``. Input is assumed to have passed ``validate_split``.
    """
    split_type = SplitType.validate(split_type)
    total = coerce_decimal(total_amount)
    valid_ids = list(dict.fromkeys(email.lower() for email in valid_participant_ids))
    valid_set = set(valid_ids)
    shares: Dict[str, ShareAllocation] = {}

    if split_type == SplitType.EQUAL:
        equal_share = round_money(total / (len(valid_ids) + 1))
        for email in valid_ids:
            shares[email] = ShareAllocation(amount=equal_share)
    elif split_type == SplitType.PERCENTAGE:
        for participant in participants:
            email = participant.email.lower()
            if email not in valid_set:
                continue
            percentage = coerce_decimal(participant.share_percentage)
            shares[email] = ShareAllocation(
                amount=round_money(total * percentage / HUNDRED),
                percentage=percentage,
            )
    else:
        for participant in participants:
            email = participant.email.lower()
            if email not in valid_set:
                continue
            shares[email] = ShareAllocation(amount=coerce_decimal(participant.share_amount))

    return shares


def owner_share(total_amount: Decimal, shares: Dict[str, ShareAllocation]) -> Decimal:
    """The owner's implicit share: whatever the participants do not cover."""
    return coerce_decimal(total_amount) - sum((share.amount for share in shares.values()), ZERO)


def validate_split(
    split_type: str,
    total_amount: Decimal,
    participants: Sequence[SplitParticipant],
    owner_email: Optional[str] = None,
) -> None:
    split_type = SplitType.validate(split_type)
    total = coerce_decimal(total_amount)
    if total <= ZERO:
        raise SplitValidationError("Total amount must be greater than zero.")
    if not participants:
        raise SplitValidationError("At least one participant is required.")

    emails = [participant.email.strip().lower() for participant in participants]
    if len(set(emails)) != len(emails):
        raise SplitValidationError("Each participant can only appear once.")
    if owner_email and owner_email.strip().lower() in emails:
        raise SplitValidationError("Expenses can only be shared with others.")

    if split_type == SplitType.PERCENTAGE:
        total_percentage = ZERO
        for participant in participants:
            if participant.share_percentage is None:
                raise SplitValidationError(f"Missing percentage for {participant.email}.")
            percentage = coerce_decimal(participant.share_percentage)
            if percentage < ZERO or percentage > HUNDRED:
                raise SplitValidationError("Percentages must be between 0 and 100.")
            total_percentage += percentage
        if total_percentage > HUNDRED:
            raise SplitValidationError(
                f"Total percentage ({total_percentage}%) cannot exceed 100%."
            )
    elif split_type == SplitType.FIXED:
        total_shares = ZERO
        for participant in participants:
            if participant.share_amount is None:
                raise SplitValidationError(f"Missing share amount for {participant.email}.")
            amount = coerce_decimal(participant.share_amount)
            if amount < ZERO:
                raise SplitValidationError("Share amounts cannot be negative.")
            total_shares += amount
        if total_shares > total:
            raise SplitValidationError(
                f"Total share amounts ({round_money(total_shares)}) cannot exceed "
                f"transaction total ({round_money(total)})."
            )


@dataclass(frozen=True)
class PendingShare:
    counterparty_id: str
    currency: str
    amount: Decimal
    status: str = PaymentStatus.PENDING
    counterparty_email: Optional[str] = None
    counterparty_name: Optional[str] = None


@dataclass(frozen=True)
class SettlementBalance:
    counterparty_id: str
    currency: str
    you_owe: Decimal
    they_owe: Decimal
    net_balance: Decimal
    counterparty_email: Optional[str] = None
    counterparty_name: Optional[str] = None


@dataclass
class _BalanceAccumulator:
    counterparty_id: str
    currency: str
    counterparty_email: Optional[str] = None
    counterparty_name: Optional[str] = None
    you_owe: Decimal = field(default=ZERO)
    they_owe: Decimal = field(default=ZERO)


def net_settlements(
    owed_to_me: Iterable[PendingShare],
    i_owe: Iterable[PendingShare],
) -> List[SettlementBalance]:
    """Net pending shares into one balance per (counterparty, currency).

    Positive ``net_balance`` means the counterparty owes the current user.
    Currencies are never merged. Largest absolute balances come first.
    """
    balances: Dict[Tuple[str, str], _BalanceAccumulator] = {}

    def accumulator_for(share: PendingShare) -> _BalanceAccumulator:
        currency = normalize_currency(share.currency)
        key = (share.counterparty_id, currency)
        existing = balances.get(key)
        if existing is None:
            existing = _BalanceAccumulator(
                counterparty_id=share.counterparty_id,
                currency=currency,
                counterparty_email=share.counterparty_email,
                counterparty_name=share.counterparty_name,
            )
            balances[key] = existing
        return existing

    for share in owed_to_me:
        if PaymentStatus.validate(share.status) != PaymentStatus.PENDING:
            continue
        accumulator_for(share).they_owe += coerce_decimal(share.amount)

    for share in i_owe:
        if PaymentStatus.validate(share.status) != PaymentStatus.PENDING:
            continue
        accumulator_for(share).you_owe += coerce_decimal(share.amount)

    results = [
        SettlementBalance(
            counterparty_id=entry.counterparty_id,
            currency=entry.currency,
            you_owe=round_money(entry.you_owe),
            they_owe=round_money(entry.they_owe),
            net_balance=round_money(entry.they_owe - entry.you_owe),
            counterparty_email=entry.counterparty_email,
            counterparty_name=entry.counterparty_name,
        )
        for entry in balances.values()
    ]
    results.sort(key=lambda balance: (str(balance.counterparty_id), balance.currency))
    results.sort(key=lambda balance: abs(balance.net_balance), reverse=True)
    return results


@dataclass(frozen=True)
class ParticipantShare:
    participant_id: str
    share_amount: Decimal
    status: str = PaymentStatus.PENDING
    share_percentage: Optional[Decimal] = None


@dataclass(frozen=True)
class SharedExpense:
    expense_id: str
    total_amount: Decimal
    currency: str
    split_type: str
    participants: Tuple[ParticipantShare, ...] = ()


@dataclass(frozen=True)
class SharedExpenseSummary:
    expense_id: str
    total_amount: Decimal
    currency: str
    split_type: str
    total_owed: Decimal
    total_paid: Decimal
    owner_share: Decimal
    all_settled: bool


def summarize_shared_expense(expense: SharedExpense) -> SharedExpenseSummary:
    total_owed = total_paid = allocated = ZERO
    all_settled = True
    for participant in expense.participants:
        status = PaymentStatus.validate(participant.status)
        amount = coerce_decimal(participant.share_amount)
        allocated += amount
        if status == PaymentStatus.PENDING:
            total_owed += amount
            all_settled = False
        elif status == PaymentStatus.PAID:
            total_paid += amount
    total = coerce_decimal(expense.total_amount)
    return SharedExpenseSummary(
        expense_id=expense.expense_id,
        total_amount=total,
        currency=normalize_currency(expense.currency),
        split_type=SplitType.validate(expense.split_type),
        total_owed=total_owed,
        total_paid=total_paid,
        owner_share=total - allocated,
        all_settled=all_settled,
    )


def filter_shared_expenses(
    summaries: Iterable[SharedExpenseSummary], status: str = "all"
) -> List[SharedExpenseSummary]:
    normalized = status.strip().lower()
    if normalized == "all":
        return list(summaries)
    if normalized == "pending":
        return [summary for summary in summaries if not summary.all_settled]
    if normalized == "settled":
        return [summary for summary in summaries if summary.all_settled]
    raise ValueError("Status filter must be one of: pending, settled, all.")
