"""Portfolio: Pydantic schemas."""

from __future__ import annotations

import uuid
from decimal import Decimal

from pydantic import BaseModel

from tradefin.models.enums import InvestmentStatus, OpportunityStatus


class PortfolioPosition(BaseModel):
    investment_id: uuid.UUID
    invoice_id: str
    commodity: str
    exporter_name: str
    amount_invested: Decimal
    expected_return: Decimal
    apr_basis_points: int
    invested_at_epoch: int
    maturity_epoch: int
    status: InvestmentStatus
    tx_ref: str | None
    opportunity_status: OpportunityStatus
    funding_percentage: Decimal


class PortfolioResponse(BaseModel):
    investor_address: str
    total_invested: Decimal
    total_expected: Decimal
    total_returns: Decimal  # projected profit: expected return minus principal
    active_investments: int
    investments: list[PortfolioPosition]
