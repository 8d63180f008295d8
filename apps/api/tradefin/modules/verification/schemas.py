"""Verification: wire and domain schemas."""

from __future__ import annotations

import time

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tradefin.models.enums import VerificationSource

# Substituted whenever the verification service cannot be reached or decoded
DEFAULT_IS_VALID = True
DEFAULT_RISK_SCORE = 35
DEFAULT_CREDIT_RATING = "B"


class _CamelModel(BaseModel):
    """The verification service speaks camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Domain ────────────────────────────────────────────────────────────────────


class VerificationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    risk_score: int = Field(ge=0, le=100)
    credit_rating: str = Field(min_length=1, max_length=8)
    evaluated_at_epoch: int
    source: VerificationSource = VerificationSource.SERVICE
    verification_ref: str | None = None


def conservative_default(evaluated_at_epoch: int | None = None) -> VerificationResult:
    return VerificationResult(
        is_valid=DEFAULT_IS_VALID,
        risk_score=DEFAULT_RISK_SCORE,
        credit_rating=DEFAULT_CREDIT_RATING,
        evaluated_at_epoch=evaluated_at_epoch if evaluated_at_epoch is not None else int(time.time()),
        source=VerificationSource.FALLBACK,
    )


# ── verify-minimal ────────────────────────────────────────────────────────────


class MinimalVerificationRequest(_CamelModel):
    invoice_id: str
    document_hash: str
    commodity: str | None = None
    amount: int | None = None
    supplier_country: str | None = None
    buyer_country: str | None = None
    exporter_name: str | None = None
    buyer_name: str | None = None


class MinimalVerificationResponse(BaseModel):
    result: str  # "<0|1>,<riskScore>,<rating>"


# ── verify-documents (asynchronous path) ──────────────────────────────────────


class InvoiceDetails(_CamelModel):
    commodity: str
    amount: str
    supplier_country: str
    buyer_country: str
    exporter_name: str
    buyer_name: str


class DocumentVerificationRequest(_CamelModel):
    invoice_id: str
    document_hash: str
    document_type: str = "commercial_invoice"
    invoice_details: InvoiceDetails


class VerificationAccepted(_CamelModel):
    verification_id: str
    invoice_id: str
    status: str = "pending"


class VerificationRecord(_CamelModel):
    verification_id: str
    invoice_id: str
    status: str  # pending, completed
    is_valid: bool | None = None
    risk_score: int | None = None
    credit_rating: str | None = None
    timestamp: int | None = None
