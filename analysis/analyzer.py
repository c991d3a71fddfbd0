#!/usr/bin/env python3
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Optional

from analysis.models import ArbitrageOpportunity, ArbitrageStep, PriceResult


def to_smallest_unit(amount: Decimal, decimals: int) -> int:
    """Converts a human amount to integer smallest units, truncating past `decimals`."""
    try:
        scaled = (Decimal(amount) * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid token amount: {amount!r}") from exc
    if not scaled.is_finite():
        raise ValueError(f"Invalid token amount: {amount!r}")
    return int(scaled)


def from_smallest_unit(raw_amount: int | str, decimals: int) -> Decimal:
    """Exact inverse of to_smallest_unit for integer inputs."""
    return Decimal(int(raw_amount)).scaleb(-decimals)


class OpportunityAnalyzer:
    """Profit model for a base -> intermediate -> base round trip."""

    def evaluate(
        self,
        base_symbol: str,
        intermediate_symbol: str,
        probe_amount: Decimal,
        leg1: PriceResult,
        leg2: PriceResult,
    ) -> ArbitrageOpportunity:
        profit = leg2.amount - probe_amount
        profit_percentage = profit / probe_amount * 100 if probe_amount else Decimal(0)
        route = f"{base_symbol} -> {intermediate_symbol} -> {base_symbol}"

        return ArbitrageOpportunity(
            route=route,
            steps=(
                ArbitrageStep(from_token=base_symbol, to_token=intermediate_symbol, dex=leg1.dex, amount=leg1.amount),
                ArbitrageStep(from_token=intermediate_symbol, to_token=base_symbol, dex=leg2.dex, amount=leg2.amount),
            ),
            profit=profit,
            profit_percentage=profit_percentage,
            flash_loan_amount=probe_amount,
            total_value_moved=probe_amount + leg2.amount,
            gas_fee=leg1.gas_cost_usd + leg2.gas_cost_usd,
        )

    @staticmethod
    def is_profitable(opportunity: ArbitrageOpportunity, min_profit_pct: Optional[float] = None) -> bool:
        if opportunity.profit <= 0:
            return False
        if min_profit_pct is None:
            return True
        return opportunity.profit_percentage >= Decimal(str(min_profit_pct))
