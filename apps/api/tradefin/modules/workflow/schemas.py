"""Workflow: Pydantic schemas."""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from tradefin.modules.invoices.schemas import InvoiceDraft, SubmissionOutcome
from tradefin.modules.verification.schemas import VerificationResult
from tradefin.modules.workflow.machine import SubmissionWorkflow, WorkflowState


class FormUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    supplier_address: str | None = None
    buyer_address: str | None = None
    amount: Decimal | None = None
    commodity: str | None = None
    supplier_country: str | None = None
    buyer_country: str | None = None
    exporter_name: str | None = None
    buyer_name: str | None = None
    due_date_epoch: int | None = None
    document_hash: str | None = None


class DocumentAttach(BaseModel):
    content_hash: str


class WorkflowResponse(BaseModel):
    workflow_id: str
    invoice_id: str
    state: WorkflowState
    progress: int
    draft: InvoiceDraft
    verification: VerificationResult | None
    outcome: SubmissionOutcome | None
    verification_timed_out: bool
    last_error: str | None
    listing_tx_ref: str | None

    @classmethod
    def of(cls, workflow: SubmissionWorkflow) -> "WorkflowResponse":
        return cls(
            workflow_id=workflow.id,
            invoice_id=workflow.invoice_id,
            state=workflow.state,
            progress=workflow.progress,
            draft=workflow.draft,
            verification=workflow.verification,
            outcome=workflow.outcome,
            verification_timed_out=workflow.verification_timed_out,
            last_error=workflow.last_error,
            listing_tx_ref=workflow.listing_tx_ref,
        )
