"""PortfolioView: read-only aggregation of one investor's positions."""

from __future__ import annotations

from decimal import Decimal

from tradefin.models.enums import InvestmentStatus
from tradefin.models.funding import Investment
from tradefin.modules.funding import pricing
from tradefin.modules.funding.service import FundingLedger
from tradefin.modules.portfolio.schemas import PortfolioPosition, PortfolioResponse


class PortfolioView:
    def __init__(self, funding: FundingLedger) -> None:
        self._funding = funding

    async def for_investor(self, investor_address: str) -> PortfolioResponse:
        investments = await self._funding.investments_for(investor_address)
        positions = [_position(inv) for inv in investments]

        total_invested = sum((p.amount_invested for p in positions), Decimal("0"))
        total_expected = sum((p.expected_return for p in positions), Decimal("0"))
        return PortfolioResponse(
            investor_address=investor_address,
            total_invested=total_invested,
            total_expected=total_expected,
            total_returns=total_expected - total_invested,
            active_investments=sum(1 for p in positions if p.status == InvestmentStatus.ACTIVE),
            investments=positions,
        )


def _position(investment: Investment) -> PortfolioPosition:
    opportunity = investment.opportunity
    invoice = opportunity.invoice
    return PortfolioPosition(
        investment_id=investment.id,
        invoice_id=investment.invoice_id,
        commodity=invoice.commodity,
        exporter_name=invoice.exporter_name,
        amount_invested=investment.amount_invested,
        expected_return=investment.expected_return,
        apr_basis_points=opportunity.apr_basis_points,
        invested_at_epoch=investment.invested_at_epoch,
        maturity_epoch=investment.maturity_epoch,
        status=investment.status,
        tx_ref=investment.tx_ref,
        opportunity_status=opportunity.status,
        funding_percentage=pricing.funding_percentage(
            opportunity.current_funding, opportunity.target_funding
        ),
    )
