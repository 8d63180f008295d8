"""Yield and funding arithmetic. All money is Decimal; nothing here does I/O."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from tradefin.models.enums import OpportunityStatus

BASE_APR_BP = 800          # 8.00%
RISK_PREMIUM_MAX_BP = 1200  # added in full at risk score 100
MAX_APR_BP = 2000          # 20.00%
BP_DENOMINATOR = 10_000

ADVANCE_RATE = Decimal("0.80")

CENTS = Decimal("0.01")
MICROS = Decimal("0.000001")
HUNDRED = Decimal(100)


def apr_basis_points(risk_score: int) -> int:
    if not 0 <= risk_score <= 100:
        raise ValueError(f"risk_score must be within [0, 100], got {risk_score}")
    return min(BASE_APR_BP + risk_score * RISK_PREMIUM_MAX_BP // 100, MAX_APR_BP)


def target_funding(amount: Decimal) -> Decimal:
    return (amount * ADVANCE_RATE).quantize(CENTS, rounding=ROUND_HALF_UP)


def expected_return(amount_invested: Decimal, apr_bp: int) -> Decimal:
    gross = amount_invested * (1 + Decimal(apr_bp) / BP_DENOMINATOR)
    return gross.quantize(MICROS, rounding=ROUND_HALF_UP)


def funding_percentage(current: Decimal, target: Decimal) -> Decimal:
    """current / target * 100, clamped to 100."""
    if target <= 0:
        return HUNDRED
    pct = min(current / target * HUNDRED, HUNDRED)
    return pct.quantize(CENTS, rounding=ROUND_HALF_UP)


def remaining_funding(current: Decimal, target: Decimal) -> Decimal:
    return max(target - current, Decimal("0"))


def status_for(current: Decimal, target: Decimal) -> OpportunityStatus:
    if current >= target:
        return OpportunityStatus.FUNDED
    if current > 0:
        return OpportunityStatus.FUNDING
    return OpportunityStatus.AVAILABLE
