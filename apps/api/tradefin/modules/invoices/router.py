"""Invoices API router: submit, read, list, re-anchor, reconcile."""

import structlog
from fastapi import APIRouter, Depends, Query, status

from tradefin.core.services import Services, get_services
from tradefin.modules.invoices.schemas import (
    InvoiceDraft,
    InvoiceResponse,
    ReconcileResult,
    SubmissionOutcome,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.post("", response_model=SubmissionOutcome, status_code=status.HTTP_201_CREATED)
async def submit_invoice(
    body: InvoiceDraft,
    services: Services = Depends(get_services),
):
    """Validate, verify, persist and anchor an invoice in one call.

    A ledger failure does not fail the request: the invoice is stored and
    ``ledger_anchored`` is false with the failure in ``ledger_error``.
    """
    return await services.orchestrator.submit(body)


@router.get("", response_model=list[InvoiceResponse])
async def list_invoices(
    supplier: str | None = Query(None, description="Only invoices submitted by this address"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    if supplier:
        return await services.store.list_by_supplier(supplier)
    return await services.store.list(limit=limit, offset=offset)


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: str,
    services: Services = Depends(get_services),
):
    return await services.store.get(invoice_id)


@router.post("/{invoice_id}/reanchor", response_model=SubmissionOutcome)
async def reanchor_invoice(
    invoice_id: str,
    services: Services = Depends(get_services),
):
    return await services.orchestrator.reanchor(invoice_id)


@router.post("/reconcile", response_model=ReconcileResult)
async def reconcile_invoices(
    limit: int = Query(100, ge=1, le=1000),
    services: Services = Depends(get_services),
):
    """Re-attempt anchoring for valid invoices the ledger does not know yet."""
    return await services.orchestrator.reconcile_unanchored(limit)
