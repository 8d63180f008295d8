"""Submission saga: identify → verify → persist off-chain → anchor on the ledger.

The off-chain write is the commit point. Verification outages degrade to the
conservative default and ledger failures are recorded on the invoice instead
of failing the submission; the reconciliation job re-attempts anchoring later.
"""

from __future__ import annotations

import asyncio
import secrets
import time
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import Any

import structlog

from tradefin.core.errors import (
    InvalidTransition,
    LedgerError,
    LedgerPending,
    StoreUnavailable,
    VerificationUnavailable,
)
from tradefin.models.invoices import Invoice
from tradefin.modules.invoices.schemas import InvoiceDraft, ReconcileResult, SubmissionOutcome
from tradefin.modules.invoices.store import OffChainInvoiceStore
from tradefin.modules.invoices.validation import document_hash_for, validate_draft
from tradefin.modules.ledger.port import AnchorRequest, LedgerGateway, TxStatus
from tradefin.modules.ledger.retry import FreshAttemptRetry
from tradefin.modules.verification.client import VerificationClient
from tradefin.modules.verification.schemas import (
    DocumentVerificationRequest,
    InvoiceDetails,
    MinimalVerificationRequest,
    VerificationResult,
    conservative_default,
)

logger = structlog.get_logger()

VerifiedHook = Callable[[Invoice], Awaitable[Any]]


def new_invoice_id(clock: Callable[[], float] = time.time) -> str:
    """Millisecond timestamp followed by three uniformly random digits."""
    return f"{int(clock() * 1000)}{secrets.randbelow(1000):03d}"


class SubmissionOrchestrator:
    def __init__(
        self,
        store: OffChainInvoiceStore,
        verifier: VerificationClient,
        gateway: LedgerGateway,
        *,
        verification_mode: str = "sync",
        max_attempts: int = 3,
        retry_delay: float = 2.0,
        min_amount: Decimal = Decimal("1000"),
        max_amount: Decimal = Decimal("10000000"),
        on_verified: VerifiedHook | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.verifier = verifier
        self.gateway = gateway
        self.verification_mode = verification_mode
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.min_amount = min_amount
        self.max_amount = max_amount
        self.on_verified = on_verified
        self._sleep = sleep
        self._clock = clock

    # ── Public operations ────────────────────────────────────────────────────

    async def submit(self, draft: InvoiceDraft, invoice_id: str | None = None) -> SubmissionOutcome:
        now = int(self._clock())
        self.validate(draft)

        invoice_id = invoice_id or new_invoice_id(self._clock)
        document_hash = draft.document_hash.strip() or document_hash_for(draft.documents)
        log = logger.bind(invoice_id=invoice_id)
        log.info("invoice.submission_started", amount=str(draft.amount), commodity=draft.commodity)

        verification: VerificationResult | None
        verification_ref: str | None = None
        if self.verification_mode == "async":
            verification, verification_ref = await self._request_async_verification(
                invoice_id, draft, document_hash
            )
        else:
            verification = await self.verifier.verify(
                self._minimal_request(invoice_id, draft, document_hash)
            )

        invoice = await self.store.save(
            invoice_id,
            draft,
            document_hash=document_hash,
            created_at_epoch=now,
            verification=verification,
            verification_ref=verification_ref,
        )

        if verification is None:
            log.info("invoice.verification_pending", verification_ref=verification_ref)
            return SubmissionOutcome(
                invoice_id=invoice_id,
                verification_pending=True,
                verification_ref=verification_ref,
            )

        return await self._after_verification(invoice, verification)

    def validate(self, draft: InvoiceDraft) -> None:
        validate_draft(draft, int(self._clock()), self.min_amount, self.max_amount)

    async def complete_verification(self, invoice_id: str, result: VerificationResult) -> SubmissionOutcome:
        """Attach an asynchronously delivered result, then anchor if valid."""
        invoice = await self.store.get(invoice_id)
        if invoice.is_valid is not None:
            raise InvalidTransition(f"Invoice {invoice_id} already has a verification result")
        invoice = await self.store.attach_verification(invoice_id, result)
        return await self._after_verification(invoice, result)

    async def reanchor(self, invoice_id: str) -> SubmissionOutcome:
        """Anchor a valid invoice the ledger does not know yet, settling any pending broadcast first."""
        invoice = await self.store.get(invoice_id)
        if invoice.is_valid is not True:
            raise InvalidTransition(f"Invoice {invoice_id} is not a valid, verified invoice")
        if invoice.ledger_anchored:
            return self._outcome(invoice)
        return await self._anchor(invoice)

    async def reconcile_unanchored(self, limit: int = 100) -> ReconcileResult:
        pending = await self.store.list_unanchored(limit)
        anchored = 0
        for invoice in pending:
            outcome = await self._anchor(invoice)
            if outcome.ledger_anchored:
                anchored += 1
        result = ReconcileResult(checked=len(pending), anchored=anchored, failed=len(pending) - anchored)
        logger.info("ledger.reconciled", **result.model_dump())
        return result

    # ── Steps ────────────────────────────────────────────────────────────────

    async def _after_verification(self, invoice: Invoice, verification: VerificationResult) -> SubmissionOutcome:
        if not verification.is_valid:
            logger.info(
                "invoice.rejected",
                invoice_id=invoice.id,
                risk_score=verification.risk_score,
                credit_rating=verification.credit_rating,
            )
            return self._outcome(invoice)

        if self.on_verified is not None:
            try:
                await self.on_verified(invoice)
            except StoreUnavailable as exc:
                # Opportunities are also created on first read.
                logger.error("invoice.on_verified_failed", invoice_id=invoice.id, error=exc.message)
        return await self._anchor(invoice)

    async def _request_async_verification(
        self, invoice_id: str, draft: InvoiceDraft, document_hash: str
    ) -> tuple[VerificationResult | None, str | None]:
        request = DocumentVerificationRequest(
            invoice_id=invoice_id,
            document_hash=document_hash,
            invoice_details=InvoiceDetails(
                commodity=draft.commodity,
                amount=str(draft.amount),
                supplier_country=draft.supplier_country,
                buyer_country=draft.buyer_country,
                exporter_name=draft.exporter_name,
                buyer_name=draft.buyer_name,
            ),
        )
        try:
            return None, await self.verifier.request_verification(request)
        except VerificationUnavailable as exc:
            logger.warning("verification.fallback", invoice_id=invoice_id, error=exc.message)
            return conservative_default(int(self._clock())), None

    async def _anchor(self, invoice: Invoice) -> SubmissionOutcome:
        if invoice.ledger_pending_tx_ref:
            resolved = await self._resolve_pending(invoice, invoice.ledger_pending_tx_ref)
            if resolved is not None:
                return resolved

        request = AnchorRequest(
            invoice_id=invoice.id,
            supplier_address=invoice.supplier_address,
            buyer_address=invoice.buyer_address,
            amount=invoice.amount,
            commodity=invoice.commodity,
            supplier_country=invoice.supplier_country,
            buyer_country=invoice.buyer_country,
            exporter_name=invoice.exporter_name,
            buyer_name=invoice.buyer_name,
            due_date_epoch=invoice.due_date_epoch,
            document_hash=invoice.document_hash,
        )
        retry = FreshAttemptRetry(self.max_attempts, self.retry_delay, sleep=self._sleep)
        try:
            receipt = await retry.run(
                lambda: self.gateway.anchor_invoice(request),
                op="anchor_invoice",
                invoice_id=invoice.id,
            )
        except LedgerError as exc:
            logger.warning(
                "ledger.anchor_failed",
                invoice_id=invoice.id,
                attempts=retry.attempts_made,
                error_type=exc.error,
                reason=exc.reason,
            )
            return await self._record(
                invoice,
                anchored=False,
                attempts=retry.attempts_made,
                error=f"{exc.error}: {exc.reason}",
                pending_tx_ref=exc.tx_ref if isinstance(exc, LedgerPending) else None,
            )

        return await self._record(
            invoice,
            anchored=True,
            attempts=retry.attempts_made,
            tx_ref=receipt.tx_ref,
            block_ref=receipt.block_ref,
            invoice_ref=receipt.invoice_ref,
        )

    async def _resolve_pending(self, invoice: Invoice, tx_ref: str) -> SubmissionOutcome | None:
        """Settle an earlier broadcast before sending anything new.

        Returns None when the earlier transaction reverted or was dropped, so a
        fresh attempt may follow.
        """
        try:
            status = await self.gateway.anchor_status(tx_ref)
        except LedgerError as exc:
            logger.warning("ledger.pending_lookup_failed", invoice_id=invoice.id, tx_ref=tx_ref, error=exc.reason)
            return await self._record(
                invoice,
                anchored=False,
                attempts=0,
                error=f"{exc.error}: {exc.reason}",
                pending_tx_ref=tx_ref,
            )

        logger.info("ledger.pending_checked", invoice_id=invoice.id, tx_ref=tx_ref, status=status.status.value)
        if status.status is TxStatus.MINED and status.receipt is not None:
            return await self._record(
                invoice,
                anchored=True,
                attempts=0,
                tx_ref=status.receipt.tx_ref,
                block_ref=status.receipt.block_ref,
                invoice_ref=status.receipt.invoice_ref,
            )
        if status.status is TxStatus.PENDING:
            return await self._record(
                invoice,
                anchored=False,
                attempts=0,
                error=f"ledger_pending: {tx_ref} not mined yet",
                pending_tx_ref=tx_ref,
            )
        return None

    async def _record(self, invoice: Invoice, *, anchored: bool, attempts: int, **fields: Any) -> SubmissionOutcome:
        try:
            updated = await self.store.record_ledger_result(
                invoice.id, anchored=anchored, attempts=attempts, **fields
            )
        except StoreUnavailable:
            # The invoice itself is durable; report what happened on the ledger.
            logger.error("invoice.ledger_result_unrecorded", invoice_id=invoice.id, anchored=anchored)
            outcome = self._outcome(invoice)
            return outcome.model_copy(
                update={
                    "ledger_anchored": anchored,
                    "ledger_attempts": invoice.ledger_attempts + attempts,
                    "tx_ref": fields.get("tx_ref"),
                    "block_ref": fields.get("block_ref"),
                    "ledger_invoice_ref": fields.get("invoice_ref"),
                    "ledger_error": fields.get("error"),
                    "pending_tx_ref": fields.get("pending_tx_ref"),
                }
            )
        return self._outcome(updated)

    # ── Helpers ──────────────────────────────────────────────────────────────

    @staticmethod
    def _minimal_request(invoice_id: str, draft: InvoiceDraft, document_hash: str) -> MinimalVerificationRequest:
        return MinimalVerificationRequest(
            invoice_id=invoice_id,
            document_hash=document_hash,
            commodity=draft.commodity,
            amount=int(draft.amount),
            supplier_country=draft.supplier_country,
            buyer_country=draft.buyer_country,
            exporter_name=draft.exporter_name,
            buyer_name=draft.buyer_name,
        )

    @staticmethod
    def _outcome(invoice: Invoice) -> SubmissionOutcome:
        verification = None
        if invoice.is_valid is not None:
            verification = VerificationResult(
                is_valid=invoice.is_valid,
                risk_score=invoice.risk_score,
                credit_rating=invoice.credit_rating,
                evaluated_at_epoch=invoice.evaluated_at_epoch,
                source=invoice.verification_source,
                verification_ref=invoice.verification_ref,
            )
        return SubmissionOutcome(
            invoice_id=invoice.id,
            verification=verification,
            verification_pending=verification is None,
            verification_ref=invoice.verification_ref,
            ledger_anchored=invoice.ledger_anchored,
            tx_ref=invoice.ledger_tx_ref,
            block_ref=invoice.ledger_block_ref,
            ledger_invoice_ref=invoice.ledger_invoice_ref,
            ledger_error=invoice.ledger_error,
            ledger_attempts=invoice.ledger_attempts,
            pending_tx_ref=invoice.ledger_pending_tx_ref,
        )
