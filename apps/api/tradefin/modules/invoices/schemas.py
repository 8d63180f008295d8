"""Invoices: Pydantic schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from tradefin.models.enums import DocumentType, VerificationSource
from tradefin.modules.verification.schemas import VerificationResult


class InvoiceDraft(BaseModel):
    """Exporter-entered invoice facts. Completeness is checked by validate_draft."""

    supplier_address: str = ""
    buyer_address: str = ""
    amount: Decimal | None = None
    commodity: str = ""
    supplier_country: str = ""
    buyer_country: str = ""
    exporter_name: str = ""
    buyer_name: str = ""
    due_date_epoch: int | None = None
    document_hash: str = ""
    documents: dict[DocumentType, str] = Field(default_factory=dict)  # type -> content hash


class SubmissionOutcome(BaseModel):
    invoice_id: str
    success: bool = True
    verification: VerificationResult | None = None  # None while asynchronous verification is pending
    verification_pending: bool = False
    verification_ref: str | None = None
    ledger_anchored: bool = False
    tx_ref: str | None = None
    block_ref: str | None = None
    ledger_invoice_ref: str | None = None
    ledger_error: str | None = None
    ledger_attempts: int = 0
    pending_tx_ref: str | None = None  # broadcast anchoring still awaiting a receipt


class InvoiceDocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    doc_type: DocumentType
    content_hash: str


class InvoiceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    supplier_address: str
    buyer_address: str
    amount: Decimal
    commodity: str
    supplier_country: str
    buyer_country: str
    exporter_name: str
    buyer_name: str
    due_date_epoch: int
    document_hash: str
    created_at_epoch: int

    is_valid: bool | None
    risk_score: int | None
    credit_rating: str | None
    evaluated_at_epoch: int | None
    verification_source: VerificationSource
    verification_ref: str | None

    ledger_anchored: bool
    ledger_tx_ref: str | None
    ledger_block_ref: str | None
    ledger_invoice_ref: str | None
    ledger_error: str | None
    ledger_attempts: int
    ledger_pending_tx_ref: str | None

    documents: list[InvoiceDocumentResponse]
    created_at: datetime
    updated_at: datetime


class ReconcileResult(BaseModel):
    checked: int
    anchored: int
    failed: int
