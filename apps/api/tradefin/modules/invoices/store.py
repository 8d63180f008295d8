"""Off-chain invoice store: the durable record and source of truth."""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradefin.core.errors import InvoiceNotFound, StoreUnavailable
from tradefin.models.enums import VerificationSource
from tradefin.models.invoices import Invoice, InvoiceDocument
from tradefin.modules.invoices.schemas import InvoiceDraft
from tradefin.modules.verification.schemas import VerificationResult

logger = structlog.get_logger()


class OffChainInvoiceStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def save(
        self,
        invoice_id: str,
        draft: InvoiceDraft,
        document_hash: str,
        created_at_epoch: int,
        verification: VerificationResult | None = None,
        verification_ref: str | None = None,
    ) -> Invoice:
        """Insert the invoice with its verification result. This is the durability point."""
        invoice = Invoice(
            id=invoice_id,
            supplier_address=draft.supplier_address,
            buyer_address=draft.buyer_address,
            amount=draft.amount,
            commodity=draft.commodity,
            supplier_country=draft.supplier_country,
            buyer_country=draft.buyer_country,
            exporter_name=draft.exporter_name,
            buyer_name=draft.buyer_name,
            due_date_epoch=draft.due_date_epoch,
            document_hash=document_hash,
            created_at_epoch=created_at_epoch,
            verification_ref=verification_ref,
            ledger_anchored=False,
            ledger_attempts=0,
            documents=[
                InvoiceDocument(doc_type=doc_type, content_hash=content_hash)
                for doc_type, content_hash in sorted(draft.documents.items())
            ],
        )
        if verification is not None:
            _apply_verification(invoice, verification)
        else:
            invoice.verification_source = VerificationSource.PENDING

        try:
            async with self._session_factory() as db:
                db.add(invoice)
                await db.commit()
        except SQLAlchemyError as exc:
            logger.error("invoice.store_failed", invoice_id=invoice_id, error=str(exc))
            raise StoreUnavailable(f"Could not persist invoice {invoice_id}") from exc

        logger.info("invoice.stored", invoice_id=invoice_id, is_valid=invoice.is_valid)
        return invoice

    async def get(self, invoice_id: str) -> Invoice:
        async with self._session_factory() as db:
            invoice = await db.get(Invoice, invoice_id)
        if invoice is None:
            raise InvoiceNotFound(f"Invoice {invoice_id} not found")
        return invoice

    async def list(self, limit: int = 100, offset: int = 0) -> list[Invoice]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Invoice).order_by(Invoice.created_at_epoch.desc(), Invoice.id.desc()).limit(limit).offset(offset)
            )
            return list(result.scalars().all())

    async def list_by_supplier(self, supplier_address: str) -> list[Invoice]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Invoice)
                .where(Invoice.supplier_address == supplier_address)
                .order_by(Invoice.created_at_epoch.desc(), Invoice.id.desc())
            )
            return list(result.scalars().all())

    async def attach_verification(self, invoice_id: str, result: VerificationResult) -> Invoice:
        """Attach a verification result that arrived after the invoice was stored."""
        return await self._update(invoice_id, lambda invoice: _apply_verification(invoice, result))

    async def record_ledger_result(
        self,
        invoice_id: str,
        *,
        anchored: bool,
        attempts: int,
        tx_ref: str | None = None,
        block_ref: str | None = None,
        invoice_ref: str | None = None,
        error: str | None = None,
        pending_tx_ref: str | None = None,
    ) -> Invoice:
        def apply(invoice: Invoice) -> None:
            invoice.ledger_anchored = anchored
            invoice.ledger_attempts = invoice.ledger_attempts + attempts
            invoice.ledger_error = None if anchored else error
            invoice.ledger_pending_tx_ref = None if anchored else pending_tx_ref
            if anchored:
                invoice.ledger_tx_ref = tx_ref
                invoice.ledger_block_ref = block_ref
                invoice.ledger_invoice_ref = invoice_ref

        return await self._update(invoice_id, apply)

    async def list_unanchored(self, limit: int = 100) -> list[Invoice]:
        """Valid invoices whose ledger anchoring has not succeeded yet, oldest first."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(Invoice)
                .where(Invoice.is_valid.is_(True), Invoice.ledger_anchored.is_(False))
                .order_by(Invoice.created_at_epoch.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def _update(self, invoice_id: str, apply: Any) -> Invoice:
        try:
            async with self._session_factory() as db:
                invoice = await db.get(Invoice, invoice_id, with_for_update=True)
                if invoice is None:
                    raise InvoiceNotFound(f"Invoice {invoice_id} not found")
                apply(invoice)
                await db.commit()
        except SQLAlchemyError as exc:
            logger.error("invoice.update_failed", invoice_id=invoice_id, error=str(exc))
            raise StoreUnavailable(f"Could not update invoice {invoice_id}") from exc
        return invoice


def _apply_verification(invoice: Invoice, result: VerificationResult) -> None:
    invoice.is_valid = result.is_valid
    invoice.risk_score = result.risk_score
    invoice.credit_rating = result.credit_rating
    invoice.evaluated_at_epoch = result.evaluated_at_epoch
    invoice.verification_source = result.source
    if result.verification_ref:
        invoice.verification_ref = result.verification_ref
