from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Mapping, Optional

from fintrack.currency_conversion import MonthlyRates, normalize_currency
from fintrack.money import ZERO, coerce_decimal, round_money

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class Holding:
    holding_id: str
    symbol: str
    quantity: Decimal
    average_cost: Decimal
    currency: str


@dataclass(frozen=True)
class PriceQuote:
    price: Decimal
    change_percent: Optional[Decimal] = None
    fetched_at: Optional[datetime] = None
    is_stale: bool = False


@dataclass(frozen=True)
class HoldingValuation:
    holding_id: str
    symbol: str
    currency: str
    quantity: Decimal
    average_cost: Decimal
    current_price: Optional[Decimal]
    cost_basis: Decimal
    market_value: Decimal
    gain_loss: Decimal
    gain_loss_percent: Decimal
    is_stale: bool
    display_currency: str
    current_price_converted: Optional[Decimal]
    cost_basis_converted: Decimal
    market_value_converted: Decimal
    gain_loss_converted: Decimal


def value_holding(
    holding: Holding,
    quote: Optional[PriceQuote],
    target_currency: Optional[str],
    rates: MonthlyRates,
) -> HoldingValuation:
    """Value a position at the quoted price, or at cost when no quote exists."""
    currency = normalize_currency(holding.currency)
    quantity = coerce_decimal(holding.quantity)
    average_cost = coerce_decimal(holding.average_cost)
    current_price = coerce_decimal(quote.price) if quote else None

    cost_basis = round_money(quantity * average_cost)
    market_value = (
        round_money(quantity * current_price) if current_price is not None else cost_basis
    )
    gain_loss = market_value - cost_basis
    gain_loss_percent = (
        round_money(gain_loss / cost_basis * HUNDRED) if cost_basis > ZERO else ZERO
    )

    cost_basis_converted = rates.convert(cost_basis, currency, target_currency)
    market_value_converted = rates.convert(market_value, currency, target_currency)
    return HoldingValuation(
        holding_id=holding.holding_id,
        symbol=holding.symbol.upper(),
        currency=currency,
        quantity=quantity,
        average_cost=average_cost,
        current_price=current_price,
        cost_basis=cost_basis,
        market_value=market_value,
        gain_loss=gain_loss,
        gain_loss_percent=gain_loss_percent,
        is_stale=quote.is_stale if quote else False,
        display_currency=normalize_currency(target_currency) if target_currency else currency,
        current_price_converted=(
            rates.convert(current_price, currency, target_currency)
            if current_price is not None
            else None
        ),
        cost_basis_converted=cost_basis_converted,
        market_value_converted=market_value_converted,
        gain_loss_converted=market_value_converted - cost_basis_converted,
    )


def value_holdings(
    holdings: Iterable[Holding],
    quotes: Mapping[str, PriceQuote],
    target_currency: Optional[str],
    rates: MonthlyRates,
) -> List[HoldingValuation]:
    valuations = [
        value_holding(holding, quotes.get(holding.symbol.upper()), target_currency, rates)
        for holding in holdings
    ]
    valuations.sort(key=lambda valuation: valuation.symbol)
    return valuations
