"""Funding API router: investment opportunities and investing."""

from dataclasses import asdict
from decimal import Decimal

import structlog
from fastapi import APIRouter, Depends, Query, status

from tradefin.core.services import Services, get_services
from tradefin.models.enums import OpportunityStatus
from tradefin.models.funding import Opportunity
from tradefin.modules.funding import pricing
from tradefin.modules.funding.schemas import (
    InvestmentTermsResponse,
    InvestRequest,
    InvestResult,
    OpportunityDetailResponse,
    OpportunityListResponse,
    OpportunityResponse,
    ReturnsEstimateResponse,
)
from tradefin.modules.funding.terms import estimate_returns, investment_terms

logger = structlog.get_logger()

router = APIRouter(prefix="/opportunities", tags=["funding"])


# ── Helpers ─────────────────────────────────────────────────────────────────


def _opportunity_fields(opportunity: Opportunity) -> dict:
    invoice = opportunity.invoice
    return {
        "invoice_id": opportunity.invoice_id,
        "commodity": invoice.commodity,
        "exporter_name": invoice.exporter_name,
        "buyer_name": invoice.buyer_name,
        "supplier_country": invoice.supplier_country,
        "buyer_country": invoice.buyer_country,
        "supplier_address": invoice.supplier_address,
        "invoice_amount": invoice.amount,
        "due_date_epoch": invoice.due_date_epoch,
        "risk_score": invoice.risk_score,
        "credit_rating": invoice.credit_rating,
        "target_funding": opportunity.target_funding,
        "current_funding": opportunity.current_funding,
        "remaining_funding": pricing.remaining_funding(
            opportunity.current_funding, opportunity.target_funding
        ),
        "funding_percentage": pricing.funding_percentage(
            opportunity.current_funding, opportunity.target_funding
        ),
        "apr_basis_points": opportunity.apr_basis_points,
        "status": opportunity.status,
        "ledger_anchored": invoice.ledger_anchored,
        "ledger_tx_ref": invoice.ledger_tx_ref,
    }


def _terms_for(opportunity: Opportunity):
    invoice = opportunity.invoice
    return investment_terms(invoice.credit_rating, invoice.risk_score, invoice.amount)


# ── Endpoints ───────────────────────────────────────────────────────────────


@router.get("", response_model=OpportunityListResponse)
async def list_opportunities(
    status_filter: OpportunityStatus | None = Query(None, alias="status"),
    services: Services = Depends(get_services),
):
    opportunities = await services.funding.list_opportunities(status_filter)
    items = [OpportunityResponse(**_opportunity_fields(o)) for o in opportunities]
    return OpportunityListResponse(items=items, total=len(items))


@router.get("/{invoice_id}", response_model=OpportunityDetailResponse)
async def get_opportunity(
    invoice_id: str,
    services: Services = Depends(get_services),
):
    opportunity = await services.funding.get(invoice_id)
    return OpportunityDetailResponse(
        **_opportunity_fields(opportunity),
        investor_count=await services.funding.investor_count(invoice_id),
        terms=InvestmentTermsResponse(**asdict(_terms_for(opportunity))),
    )


@router.get("/{invoice_id}/estimate", response_model=ReturnsEstimateResponse)
async def estimate_opportunity_returns(
    invoice_id: str,
    amount: Decimal = Query(..., gt=0),
    services: Services = Depends(get_services),
):
    """Advisory returns for ``amount`` under the opportunity's display terms."""
    opportunity = await services.funding.get(invoice_id)
    estimate = estimate_returns(amount, _terms_for(opportunity))
    return ReturnsEstimateResponse(investment_amount=amount, **asdict(estimate))


@router.post(
    "/{invoice_id}/invest",
    response_model=InvestResult,
    status_code=status.HTTP_201_CREATED,
)
async def invest(
    invoice_id: str,
    body: InvestRequest,
    services: Services = Depends(get_services),
):
    return await services.funding.invest(
        invoice_id,
        body.investor_address,
        body.amount,
        idempotency_key=body.idempotency_key,
    )
