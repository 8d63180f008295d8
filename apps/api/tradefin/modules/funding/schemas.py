"""Funding: Pydantic schemas."""

from __future__ import annotations

import uuid
from decimal import Decimal

from pydantic import BaseModel, Field

from tradefin.models.enums import InvestmentStatus, OpportunityStatus


class InvestRequest(BaseModel):
    investor_address: str
    amount: Decimal = Field(gt=0)
    idempotency_key: str | None = Field(default=None, max_length=100)


class InvestResult(BaseModel):
    investment_id: uuid.UUID
    invoice_id: str
    investor_address: str
    amount_invested: Decimal
    expected_return: Decimal
    invested_at_epoch: int
    maturity_epoch: int
    investment_status: InvestmentStatus
    tx_ref: str | None
    current_funding: Decimal
    target_funding: Decimal
    funding_percentage: Decimal
    opportunity_status: OpportunityStatus
    replayed: bool = False  # True when an earlier request with the same idempotency key is returned


class InvestmentTermsResponse(BaseModel):
    minimum_investment: Decimal
    maximum_investment: Decimal
    expected_return_pct: Decimal
    investment_period_days: int
    risk_level: str
    investor_protection_pct: int


class OpportunityResponse(BaseModel):
    invoice_id: str
    commodity: str
    exporter_name: str
    buyer_name: str
    supplier_country: str
    buyer_country: str
    supplier_address: str
    invoice_amount: Decimal
    due_date_epoch: int
    risk_score: int
    credit_rating: str
    target_funding: Decimal
    current_funding: Decimal
    remaining_funding: Decimal
    funding_percentage: Decimal
    apr_basis_points: int
    status: OpportunityStatus
    ledger_anchored: bool
    ledger_tx_ref: str | None


class OpportunityDetailResponse(OpportunityResponse):
    investor_count: int
    terms: InvestmentTermsResponse


class OpportunityListResponse(BaseModel):
    items: list[OpportunityResponse]
    total: int


class ReturnsEstimateResponse(BaseModel):
    investment_amount: Decimal
    total_return: Decimal
    net_profit: Decimal
    daily_return: Decimal
    annualized_return_pct: Decimal
