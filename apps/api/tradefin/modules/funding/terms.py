"""Investor-facing terms and a simple returns calculator.

Terms are advisory display values derived from the credit rating and risk
score. The yield actually booked on an investment is the opportunity's
``apr_basis_points`` (see pricing.py).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

# rating -> (expected return %, risk level, investor protection %)
_RATING_TERMS: dict[str, tuple[Decimal, str, int]] = {
    "A": (Decimal("6"), "Low", 95),
    "B": (Decimal("8"), "Medium", 85),
    "C": (Decimal("12"), "High", 70),
}
_DEFAULT_TERMS = (Decimal("10"), "Medium", 75)

MIN_INVESTMENT_FLOOR = Decimal("100")
MIN_INVESTMENT_SHARE = Decimal("0.10")
MAX_INVESTMENT_SHARE = Decimal("0.80")
PROTECTION_BOUNDS = (50, 95)


@dataclass(frozen=True)
class InvestmentTerms:
    minimum_investment: Decimal
    maximum_investment: Decimal
    expected_return_pct: Decimal
    investment_period_days: int
    risk_level: str
    investor_protection_pct: int


@dataclass(frozen=True)
class ReturnsEstimate:
    total_return: Decimal
    net_profit: Decimal
    daily_return: Decimal
    annualized_return_pct: Decimal


def _whole(value: Decimal) -> Decimal:
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def _cents(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def investment_terms(credit_rating: str, risk_score: int, invoice_amount: Decimal) -> InvestmentTerms:
    expected, risk_level, protection = _RATING_TERMS.get(credit_rating, _DEFAULT_TERMS)

    if risk_score < 30:
        expected -= 1
        protection += 5
    elif risk_score > 60:
        expected += 2
        protection -= 10

    if risk_score < 40:
        period = 30
    elif risk_score < 60:
        period = 60
    else:
        period = 90

    low, high = PROTECTION_BOUNDS
    return InvestmentTerms(
        minimum_investment=_whole(max(MIN_INVESTMENT_FLOOR, invoice_amount * MIN_INVESTMENT_SHARE)),
        maximum_investment=_whole(invoice_amount * MAX_INVESTMENT_SHARE),
        expected_return_pct=_cents(expected),
        investment_period_days=period,
        risk_level=risk_level,
        investor_protection_pct=max(low, min(high, protection)),
    )


def estimate_returns(investment_amount: Decimal, terms: InvestmentTerms) -> ReturnsEstimate:
    rate = terms.expected_return_pct / 100
    total = investment_amount * (1 + rate)
    profit = total - investment_amount
    return ReturnsEstimate(
        total_return=_cents(total),
        net_profit=_cents(profit),
        daily_return=_cents(profit / terms.investment_period_days),
        annualized_return_pct=_cents(terms.expected_return_pct / terms.investment_period_days * 365),
    )
