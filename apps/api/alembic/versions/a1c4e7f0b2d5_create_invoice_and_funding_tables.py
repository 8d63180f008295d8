"""create_invoice_and_funding_tables

Revision ID: a1c4e7f0b2d5
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "a1c4e7f0b2d5"
down_revision = None
branch_labels = None
depends_on = None

# Enum columns store member names, matching SQLAlchemy's default for Mapped[Enum]
verification_source = sa.Enum("SERVICE", "FALLBACK", "POLL", "PENDING", name="verificationsource")
document_type = sa.Enum(
    "COMMERCIAL_INVOICE",
    "EXPORT_DECLARATION",
    "CERTIFICATE_ORIGIN",
    "BILL_OF_LADING",
    "PACKING_LIST",
    "PHYTOSANITARY",
    name="documenttype",
)
opportunity_status = sa.Enum("AVAILABLE", "FUNDING", "FUNDED", "COMPLETED", name="opportunitystatus")
investment_status = sa.Enum("ACTIVE", "COMPLETED", "DEFAULTED", name="investmentstatus")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    # ── invoices ──────────────────────────────────────────────────────────────
    op.create_table(
        "invoices",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column("supplier_address", sa.String(42), nullable=False),
        sa.Column("buyer_address", sa.String(42), nullable=False),
        sa.Column("amount", sa.Numeric(24, 6), nullable=False),
        sa.Column("commodity", sa.String(200), nullable=False),
        sa.Column("supplier_country", sa.String(100), nullable=False),
        sa.Column("buyer_country", sa.String(100), nullable=False),
        sa.Column("exporter_name", sa.String(300), nullable=False),
        sa.Column("buyer_name", sa.String(300), nullable=False),
        sa.Column("due_date_epoch", sa.BigInteger(), nullable=False),
        sa.Column("document_hash", sa.String(128), nullable=False),
        sa.Column("created_at_epoch", sa.BigInteger(), nullable=False),
        sa.Column("is_valid", sa.Boolean(), nullable=True),
        sa.Column("risk_score", sa.Integer(), nullable=True),
        sa.Column("credit_rating", sa.String(8), nullable=True),
        sa.Column("evaluated_at_epoch", sa.BigInteger(), nullable=True),
        sa.Column("verification_source", verification_source, nullable=False),
        sa.Column("verification_ref", sa.String(100), nullable=True),
        sa.Column("ledger_anchored", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("ledger_tx_ref", sa.String(66), nullable=True),
        sa.Column("ledger_block_ref", sa.String(32), nullable=True),
        sa.Column("ledger_invoice_ref", sa.String(78), nullable=True),
        sa.Column("ledger_error", sa.Text(), nullable=True),
        sa.Column("ledger_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ledger_pending_tx_ref", sa.String(66), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_invoices_supplier", "invoices", ["supplier_address"])
    op.create_index("ix_invoices_ledger_pending", "invoices", ["is_valid", "ledger_anchored"])

    # ── invoice_documents ─────────────────────────────────────────────────────
    op.create_table(
        "invoice_documents",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("invoice_id", sa.String(32), nullable=False),
        sa.Column("doc_type", document_type, nullable=False),
        sa.Column("content_hash", sa.String(128), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("invoice_id", "doc_type", name="uq_invoice_documents_type"),
    )

    # ── opportunities ─────────────────────────────────────────────────────────
    op.create_table(
        "opportunities",
        sa.Column("invoice_id", sa.String(32), nullable=False),
        sa.Column("target_funding", sa.Numeric(24, 6), nullable=False),
        sa.Column("current_funding", sa.Numeric(24, 6), nullable=False, server_default="0"),
        sa.Column("apr_basis_points", sa.Integer(), nullable=False),
        sa.Column("status", opportunity_status, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("invoice_id"),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_opportunities_status", "opportunities", ["status"])

    # ── investments ───────────────────────────────────────────────────────────
    op.create_table(
        "investments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("investor_address", sa.String(42), nullable=False),
        sa.Column("invoice_id", sa.String(32), nullable=False),
        sa.Column("amount_invested", sa.Numeric(24, 6), nullable=False),
        sa.Column("expected_return", sa.Numeric(24, 6), nullable=False),
        sa.Column("invested_at_epoch", sa.BigInteger(), nullable=False),
        sa.Column("maturity_epoch", sa.BigInteger(), nullable=False),
        sa.Column("status", investment_status, nullable=False),
        sa.Column("tx_ref", sa.String(66), nullable=True),
        sa.Column("idempotency_key", sa.String(100), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["invoice_id"], ["opportunities.invoice_id"], ondelete="CASCADE"),
        sa.UniqueConstraint("idempotency_key"),
    )
    op.create_index("ix_investments_investor", "investments", ["investor_address"])
    op.create_index("ix_investments_invoice", "investments", ["invoice_id"])


def downgrade() -> None:
    op.drop_index("ix_investments_invoice", table_name="investments")
    op.drop_index("ix_investments_investor", table_name="investments")
    op.drop_table("investments")
    op.drop_index("ix_opportunities_status", table_name="opportunities")
    op.drop_table("opportunities")
    op.drop_table("invoice_documents")
    op.drop_index("ix_invoices_ledger_pending", table_name="invoices")
    op.drop_index("ix_invoices_supplier", table_name="invoices")
    op.drop_table("invoices")
    for enum_type in (investment_status, opportunity_status, document_type, verification_source):
        enum_type.drop(op.get_bind(), checkfirst=True)
