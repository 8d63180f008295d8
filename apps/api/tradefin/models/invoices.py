"""Off-chain invoice record: Invoice ⊕ VerificationResult ⊕ ledger anchoring status."""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tradefin.core.database import Base
from tradefin.models.base import BaseModel, ModelMixin, TimestampMixin
from tradefin.models.enums import DocumentType, VerificationSource


class Invoice(Base, ModelMixin, TimestampMixin):
    """Source of truth for a submitted invoice, keyed by its time-derived id."""

    __tablename__ = "invoices"
    __table_args__ = (
        Index("ix_invoices_supplier", "supplier_address"),
        Index("ix_invoices_ledger_pending", "is_valid", "ledger_anchored"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)

    # Invoice facts (immutable after creation)
    supplier_address: Mapped[str] = mapped_column(String(42), nullable=False)
    buyer_address: Mapped[str] = mapped_column(String(42), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    commodity: Mapped[str] = mapped_column(String(200), nullable=False)
    supplier_country: Mapped[str] = mapped_column(String(100), nullable=False)
    buyer_country: Mapped[str] = mapped_column(String(100), nullable=False)
    exporter_name: Mapped[str] = mapped_column(String(300), nullable=False)
    buyer_name: Mapped[str] = mapped_column(String(300), nullable=False)
    due_date_epoch: Mapped[int] = mapped_column(BigInteger, nullable=False)
    document_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at_epoch: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Verification result (null while an asynchronous verification is pending)
    is_valid: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    risk_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    credit_rating: Mapped[str | None] = mapped_column(String(8), nullable=True)
    evaluated_at_epoch: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    verification_source: Mapped[VerificationSource] = mapped_column(
        nullable=False, default=VerificationSource.PENDING
    )
    verification_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Ledger anchoring (best-effort side effect of the off-chain commit)
    ledger_anchored: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ledger_tx_ref: Mapped[str | None] = mapped_column(String(66), nullable=True)
    ledger_block_ref: Mapped[str | None] = mapped_column(String(32), nullable=True)
    ledger_invoice_ref: Mapped[str | None] = mapped_column(String(78), nullable=True)
    ledger_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    ledger_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ledger_pending_tx_ref: Mapped[str | None] = mapped_column(String(66), nullable=True)

    documents: Mapped[list[InvoiceDocument]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class InvoiceDocument(BaseModel):
    """Content-address of one supporting trade document."""

    __tablename__ = "invoice_documents"
    __table_args__ = (
        UniqueConstraint("invoice_id", "doc_type", name="uq_invoice_documents_type"),
    )

    invoice_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False
    )
    doc_type: Mapped[DocumentType] = mapped_column(nullable=False)
    content_hash: Mapped[str] = mapped_column(String(128), nullable=False)

    invoice: Mapped[Invoice] = relationship(back_populates="documents")
