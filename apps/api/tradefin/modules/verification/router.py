"""Reference verification service API.

Served under the same paths as the hosted service. Asynchronous records are
kept in process memory; they exist for development and end-to-end tests.
"""

from __future__ import annotations

import time
import uuid
from decimal import Decimal, InvalidOperation

import structlog
from fastapi import APIRouter, BackgroundTasks, HTTPException, status

from tradefin.modules.verification.schemas import (
    DocumentVerificationRequest,
    MinimalVerificationRequest,
    MinimalVerificationResponse,
    VerificationAccepted,
    VerificationRecord,
)
from tradefin.modules.verification.scoring import score_minimal

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/verification", tags=["verification"])

_records: dict[str, VerificationRecord] = {}


@router.post("/verify-minimal", response_model=MinimalVerificationResponse)
async def verify_minimal(body: MinimalVerificationRequest):
    result = score_minimal(body)
    logger.info("verification.minimal_scored", invoice_id=body.invoice_id, result=result)
    return MinimalVerificationResponse(result=result)


def _complete(verification_id: str, body: DocumentVerificationRequest) -> None:
    try:
        amount = int(Decimal(body.invoice_details.amount))
    except InvalidOperation:
        amount = None
    triple = score_minimal(
        MinimalVerificationRequest(
            invoice_id=body.invoice_id,
            document_hash=body.document_hash,
            commodity=body.invoice_details.commodity,
            amount=amount,
            supplier_country=body.invoice_details.supplier_country,
            buyer_country=body.invoice_details.buyer_country,
            exporter_name=body.invoice_details.exporter_name,
            buyer_name=body.invoice_details.buyer_name,
        )
    )
    flag, risk, rating = triple.split(",")
    _records[verification_id] = VerificationRecord(
        verification_id=verification_id,
        invoice_id=body.invoice_id,
        status="completed",
        is_valid=flag == "1",
        risk_score=int(risk),
        credit_rating=rating,
        timestamp=int(time.time()),
    )
    logger.info("verification.documents_scored", verification_id=verification_id, result=triple)


@router.post(
    "/verify-documents",
    response_model=VerificationAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def verify_documents(body: DocumentVerificationRequest, background_tasks: BackgroundTasks):
    """Accept a verification request; the result is fetched from /status/{id}."""
    verification_id = str(uuid.uuid4())
    _records[verification_id] = VerificationRecord(
        verification_id=verification_id,
        invoice_id=body.invoice_id,
        status="pending",
    )
    background_tasks.add_task(_complete, verification_id, body)
    return VerificationAccepted(verification_id=verification_id, invoice_id=body.invoice_id)


@router.get("/status/{verification_id}", response_model=VerificationRecord)
async def verification_status(verification_id: str):
    record = _records.get(verification_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Verification record not found")
    return record
