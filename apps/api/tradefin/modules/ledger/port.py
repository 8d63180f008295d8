"""Distributed ledger port (abstract interface).

Defines the contract every ledger adapter implements so the orchestrator and
the funding ledger can run against the web3 adapter (production) or the
in-memory fake (development and tests) without change.

Every mutating call is one fresh attempt: adapters never resend a pending
transaction. Failures are raised as the LedgerError subclasses from
``tradefin.core.errors``.
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal


class TxStatus(str, enum.Enum):
    PENDING = "pending"  # known to the node, not mined yet
    MINED = "mined"
    REVERTED = "reverted"
    DROPPED = "dropped"  # unknown to the node; safe to send a fresh attempt


@dataclass(frozen=True)
class AnchorRequest:
    """Invoice facts as ``submitInvoice`` takes them."""

    invoice_id: str
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


@dataclass(frozen=True)
class AnchorReceipt:
    tx_ref: str
    block_ref: str
    invoice_ref: str | None = None  # id assigned by the protocol contract


@dataclass(frozen=True)
class AnchorStatus:
    status: TxStatus
    receipt: AnchorReceipt | None = None  # set when MINED


@dataclass(frozen=True)
class TxReceipt:
    tx_ref: str
    block_ref: str | None = None


@dataclass(frozen=True)
class LedgerInvoiceRecord:
    """Read-only view of an invoice as the protocol contract stores it."""

    invoice_ref: str
    supplier_address: str
    buyer_address: str
    amount: Decimal
    commodity: str
    due_date_epoch: int
    document_hash: str
    target_funding: Decimal
    current_funding: Decimal
    apr_basis_points: int
    risk_score: int
    credit_rating: str
    status: int


class LedgerGateway(ABC):
    """Abstract distributed-ledger gateway."""

    @abstractmethod
    async def anchor_invoice(self, request: AnchorRequest) -> AnchorReceipt:
        """Submit one ``submitInvoice`` transaction and wait for its receipt."""
        ...

    @abstractmethod
    async def anchor_status(self, tx_ref: str) -> AnchorStatus:
        """Look up an earlier ``submitInvoice`` transaction without sending anything."""
        ...

    @abstractmethod
    async def invest(self, invoice_ref: str, investor_address: str, amount: Decimal) -> TxReceipt:
        """Submit one ``investInInvoice`` transaction from ``investor_address``."""
        ...

    @abstractmethod
    async def get_invoice(self, invoice_ref: str) -> LedgerInvoiceRecord | None:
        ...

    @abstractmethod
    async def approve(self, owner_address: str, spender_address: str, amount: Decimal) -> TxReceipt:
        """Grant ``spender_address`` a stablecoin allowance of ``amount``."""
        ...

    @abstractmethod
    async def allowance(self, owner_address: str, spender_address: str) -> Decimal:
        ...

    @abstractmethod
    async def balance_of(self, address: str) -> Decimal:
        ...
