"""Funding ledger models: Opportunity (one per verified invoice) and Investment rows."""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import BigInteger, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tradefin.core.database import Base
from tradefin.models.base import BaseModel, ModelMixin, TimestampMixin
from tradefin.models.enums import InvestmentStatus, OpportunityStatus
from tradefin.models.invoices import Invoice


class Opportunity(Base, ModelMixin, TimestampMixin):
    """Investable projection of a verified invoice.

    ``version`` is the optimistic-concurrency counter: every funding update
    bumps it and a stale update fails instead of silently overwriting.
    """

    __tablename__ = "opportunities"
    __table_args__ = (
        Index("ix_opportunities_status", "status"),
    )

    invoice_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("invoices.id", ondelete="CASCADE"), primary_key=True
    )
    target_funding: Mapped[Decimal] = mapped_column(nullable=False)
    current_funding: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    apr_basis_points: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[OpportunityStatus] = mapped_column(
        nullable=False, default=OpportunityStatus.AVAILABLE
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    invoice: Mapped[Invoice] = relationship(lazy="selectin")

    __mapper_args__ = {"version_id_col": version}


class Investment(BaseModel):
    """One investor's position in one opportunity."""

    __tablename__ = "investments"
    __table_args__ = (
        Index("ix_investments_investor", "investor_address"),
        Index("ix_investments_invoice", "invoice_id"),
    )

    investor_address: Mapped[str] = mapped_column(String(42), nullable=False)
    invoice_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("opportunities.invoice_id", ondelete="CASCADE"), nullable=False
    )
    amount_invested: Mapped[Decimal] = mapped_column(nullable=False)
    expected_return: Mapped[Decimal] = mapped_column(nullable=False)
    invested_at_epoch: Mapped[int] = mapped_column(BigInteger, nullable=False)
    maturity_epoch: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[InvestmentStatus] = mapped_column(
        nullable=False, default=InvestmentStatus.ACTIVE
    )
    tx_ref: Mapped[str | None] = mapped_column(String(66), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(100), nullable=True, unique=True)

    opportunity: Mapped[Opportunity] = relationship(lazy="selectin")
