"""Configurable in-memory ledger for development and testing.

Simulates the protocol and stablecoin contracts without any network calls:
- queued failures per operation (``fail_anchor`` / ``fail_invest``) to drive
  the retry and degradation paths
- anchoring broadcasts whose receipt never comes back (``lose_next_receipt``)
- balances and allowances enforced the way the contracts enforce them
- every call recorded in ``calls``
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import replace
from decimal import Decimal
from uuid import uuid4

from tradefin.core.errors import InsufficientFunds, LedgerError, LedgerPending, LedgerReverted
from tradefin.modules.funding import pricing
from tradefin.modules.ledger.port import (
    AnchorReceipt,
    AnchorRequest,
    AnchorStatus,
    LedgerGateway,
    LedgerInvoiceRecord,
    TxReceipt,
    TxStatus,
)

FAKE_PROTOCOL_ADDRESS = "0x" + "f0" * 20


class FakeLedgerGateway(LedgerGateway):
    def __init__(
        self,
        protocol_address: str = FAKE_PROTOCOL_ADDRESS,
        default_balance: Decimal = Decimal("0"),
        latency: float = 0.0,
    ) -> None:
        self.protocol_address = protocol_address
        self.default_balance = default_balance
        self.latency = latency
        self.calls: list[dict] = []
        self.invoices: dict[str, LedgerInvoiceRecord] = {}
        self.transactions: dict[str, AnchorStatus] = {}
        self.balances: dict[str, Decimal] = {}
        self.allowances: dict[tuple[str, str], Decimal] = defaultdict(Decimal)
        self._anchor_failures: list[LedgerError] = []
        self._invest_failures: list[LedgerError] = []
        self._lost_receipts: list[bool] = []
        self._block = 1_000_000
        self._counter = 0

    # ── Configuration ────────────────────────────────────────────────────────

    def fail_anchor(self, *errors: LedgerError) -> None:
        """Queue errors raised by the next anchoring attempts, one per attempt."""
        self._anchor_failures.extend(errors)

    def fail_invest(self, *errors: LedgerError) -> None:
        self._invest_failures.extend(errors)

    def lose_next_receipt(self, mined: bool = True) -> None:
        """Broadcast the next anchoring but raise LedgerPending instead of returning its receipt.

        With ``mined`` the transaction lands anyway; otherwise it stays pending
        in ``transactions`` until a test changes its status.
        """
        self._lost_receipts.append(mined)

    def fund(self, address: str, amount: Decimal) -> None:
        self.balances[address.lower()] = self._balance(address) + amount

    # ── LedgerGateway ────────────────────────────────────────────────────────

    async def anchor_invoice(self, request: AnchorRequest) -> AnchorReceipt:
        self.calls.append({"method": "anchor_invoice", "invoice_id": request.invoice_id})
        await self._tick()
        if self._anchor_failures:
            raise self._anchor_failures.pop(0)

        tx_ref = self._tx_ref()
        if self._lost_receipts:
            if self._lost_receipts.pop(0):
                self._mine_anchor(request, tx_ref)
            else:
                self.transactions[tx_ref] = AnchorStatus(TxStatus.PENDING)
            raise LedgerPending(f"No receipt for {tx_ref}", tx_ref=tx_ref)
        return self._mine_anchor(request, tx_ref)

    async def anchor_status(self, tx_ref: str) -> AnchorStatus:
        self.calls.append({"method": "anchor_status", "tx_ref": tx_ref})
        await self._tick()
        return self.transactions.get(tx_ref, AnchorStatus(TxStatus.DROPPED))

    async def invest(self, invoice_ref: str, investor_address: str, amount: Decimal) -> TxReceipt:
        self.calls.append(
            {
                "method": "invest",
                "invoice_ref": invoice_ref,
                "investor_address": investor_address,
                "amount": amount,
            }
        )
        await self._tick()
        if self._invest_failures:
            raise self._invest_failures.pop(0)

        record = self.invoices.get(invoice_ref)
        if record is None:
            raise LedgerReverted("Invoice does not exist")
        if record.supplier_address.lower() == investor_address.lower():
            raise LedgerReverted("Supplier cannot invest in own invoice")
        if self._balance(investor_address) < amount:
            raise InsufficientFunds("Insufficient USDC balance")
        key = (investor_address.lower(), self.protocol_address.lower())
        if self.allowances[key] < amount:
            raise LedgerReverted("insufficient allowance")
        if record.current_funding + amount > record.target_funding:
            raise LedgerReverted("Investment exceeds remaining funding")

        self.allowances[key] -= amount
        self.balances[investor_address.lower()] = self._balance(investor_address) - amount
        self.invoices[invoice_ref] = replace(record, current_funding=record.current_funding + amount)
        return TxReceipt(tx_ref=self._tx_ref(), block_ref=self._next_block())

    async def get_invoice(self, invoice_ref: str) -> LedgerInvoiceRecord | None:
        return self.invoices.get(invoice_ref)

    async def approve(self, owner_address: str, spender_address: str, amount: Decimal) -> TxReceipt:
        self.calls.append(
            {"method": "approve", "owner": owner_address, "spender": spender_address, "amount": amount}
        )
        await self._tick()
        self.allowances[(owner_address.lower(), spender_address.lower())] = amount
        return TxReceipt(tx_ref=self._tx_ref(), block_ref=self._next_block())

    async def allowance(self, owner_address: str, spender_address: str) -> Decimal:
        return self.allowances[(owner_address.lower(), spender_address.lower())]

    async def balance_of(self, address: str) -> Decimal:
        return self._balance(address)

    # ── Internals ────────────────────────────────────────────────────────────

    def _balance(self, address: str) -> Decimal:
        return self.balances.get(address.lower(), self.default_balance)

    def _mine_anchor(self, request: AnchorRequest, tx_ref: str) -> AnchorReceipt:
        self._counter += 1
        invoice_ref = str(self._counter)
        self.invoices[invoice_ref] = LedgerInvoiceRecord(
            invoice_ref=invoice_ref,
            supplier_address=request.supplier_address,
            buyer_address=request.buyer_address,
            amount=request.amount,
            commodity=request.commodity,
            due_date_epoch=request.due_date_epoch,
            document_hash=request.document_hash,
            target_funding=pricing.target_funding(request.amount),
            current_funding=Decimal("0"),
            apr_basis_points=0,
            risk_score=0,
            credit_rating="",
            status=0,
        )
        receipt = AnchorReceipt(tx_ref=tx_ref, block_ref=self._next_block(), invoice_ref=invoice_ref)
        self.transactions[tx_ref] = AnchorStatus(TxStatus.MINED, receipt)
        return receipt

    async def _tick(self) -> None:
        # Yield so concurrent callers interleave as they would on a real node
        await asyncio.sleep(self.latency)

    def _tx_ref(self) -> str:
        return "0x" + uuid4().hex + uuid4().hex

    def _next_block(self) -> str:
        self._block += 1
        return str(self._block)
