"""web3.py adapter for the invoice protocol and stablecoin contracts."""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal
from typing import Any

import structlog
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import TransactionNotFound
from web3.logs import DISCARD

from tradefin.core.errors import InsufficientFunds, LedgerReverted
from tradefin.modules.ledger.abi import PROTOCOL_ABI, STABLECOIN_ABI, STABLECOIN_DECIMALS
from tradefin.modules.ledger.classify import classify_ledger_error
from tradefin.modules.ledger.port import (
    AnchorReceipt,
    AnchorRequest,
    AnchorStatus,
    LedgerGateway,
    LedgerInvoiceRecord,
    TxReceipt,
    TxStatus,
)

logger = structlog.get_logger()

_SCALE = Decimal(10) ** STABLECOIN_DECIMALS


def to_units(amount: Decimal) -> int:
    return int((amount * _SCALE).to_integral_value(rounding=ROUND_DOWN))


def from_units(units: int) -> Decimal:
    return (Decimal(units) / _SCALE).quantize(Decimal(1) / _SCALE)


class Web3LedgerGateway(LedgerGateway):
    """Talks JSON-RPC to the ledger node.

    Transactions from the operator account are signed locally with
    ``private_key``; any other sender must be an account the node manages.
    Anchoring always uses the fixed ``anchor_gas_limit`` and skips estimation.
    """

    def __init__(
        self,
        rpc_url: str,
        chain_id: int,
        protocol_address: str,
        stablecoin_address: str,
        operator_address: str = "",
        private_key: str = "",
        anchor_gas_limit: int = 850_000_000,
        receipt_timeout: float = 60.0,
        w3: AsyncWeb3 | None = None,
    ) -> None:
        self._w3 = w3 or AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._chain_id = chain_id
        self._protocol = self._w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(protocol_address), abi=PROTOCOL_ABI
        )
        self._stablecoin = self._w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(stablecoin_address), abi=STABLECOIN_ABI
        )
        self._account = self._w3.eth.account.from_key(private_key) if private_key else None
        if self._account is not None:
            self._operator = self._account.address
        else:
            self._operator = AsyncWeb3.to_checksum_address(operator_address) if operator_address else ""
        self._anchor_gas_limit = anchor_gas_limit
        self._receipt_timeout = receipt_timeout

    # ── Mutating calls ───────────────────────────────────────────────────────

    async def anchor_invoice(self, request: AnchorRequest) -> AnchorReceipt:
        if not self._operator:
            raise LedgerReverted("No operator account configured for anchoring")

        call = self._protocol.functions.submitInvoice(
            AsyncWeb3.to_checksum_address(request.buyer_address),
            to_units(request.amount),
            request.commodity,
            request.supplier_country,
            request.buyer_country,
            request.exporter_name,
            request.buyer_name,
            request.due_date_epoch,
            request.document_hash,
        )
        receipt, tx_ref = await self._transact(call, self._operator, gas=self._anchor_gas_limit)

        invoice_ref = await self._submitted_invoice_ref(receipt)
        logger.info(
            "ledger.anchored",
            invoice_id=request.invoice_id,
            tx_ref=tx_ref,
            block=receipt["blockNumber"],
            invoice_ref=invoice_ref,
            gas_used=receipt.get("gasUsed"),
        )
        return AnchorReceipt(tx_ref=tx_ref, block_ref=str(receipt["blockNumber"]), invoice_ref=invoice_ref)

    async def anchor_status(self, tx_ref: str) -> AnchorStatus:
        try:
            try:
                receipt = await self._w3.eth.get_transaction_receipt(tx_ref)
            except TransactionNotFound:
                try:
                    await self._w3.eth.get_transaction(tx_ref)
                except TransactionNotFound:
                    return AnchorStatus(TxStatus.DROPPED)
                return AnchorStatus(TxStatus.PENDING)
        except Exception as exc:
            raise classify_ledger_error(exc) from exc

        if receipt["status"] != 1:
            return AnchorStatus(TxStatus.REVERTED)
        invoice_ref = await self._submitted_invoice_ref(receipt)
        return AnchorStatus(
            TxStatus.MINED,
            AnchorReceipt(tx_ref=tx_ref, block_ref=str(receipt["blockNumber"]), invoice_ref=invoice_ref),
        )

    async def invest(self, invoice_ref: str, investor_address: str, amount: Decimal) -> TxReceipt:
        investor = AsyncWeb3.to_checksum_address(investor_address)

        balance = await self.balance_of(investor)
        if balance < amount:
            raise InsufficientFunds(f"Stablecoin balance {balance} is below {amount}")

        allowance = await self.allowance(investor, self._protocol.address)
        if allowance < amount:
            raise LedgerReverted(f"insufficient allowance: approved {allowance}, need {amount}")

        record = await self.get_invoice(invoice_ref)
        if record is not None and record.supplier_address.lower() == investor.lower():
            raise LedgerReverted("Supplier cannot invest in own invoice")

        call = self._protocol.functions.investInInvoice(int(invoice_ref), to_units(amount))
        receipt, tx_ref = await self._transact(call, investor)
        logger.info("ledger.invested", invoice_ref=invoice_ref, investor=investor, tx_ref=tx_ref)
        return TxReceipt(tx_ref=tx_ref, block_ref=str(receipt["blockNumber"]))

    async def approve(self, owner_address: str, spender_address: str, amount: Decimal) -> TxReceipt:
        owner = AsyncWeb3.to_checksum_address(owner_address)
        call = self._stablecoin.functions.approve(
            AsyncWeb3.to_checksum_address(spender_address), to_units(amount)
        )
        receipt, tx_ref = await self._transact(call, owner)
        logger.info("ledger.approved", owner=owner, spender=spender_address, amount=str(amount), tx_ref=tx_ref)
        return TxReceipt(tx_ref=tx_ref, block_ref=str(receipt["blockNumber"]))

    # ── Reads ────────────────────────────────────────────────────────────────

    async def get_invoice(self, invoice_ref: str) -> LedgerInvoiceRecord | None:
        raw = await self._read(self._protocol.functions.getInvoice(int(invoice_ref)))
        if not raw or int(raw[0]) == 0:
            return None
        return LedgerInvoiceRecord(
            invoice_ref=str(raw[0]),
            supplier_address=raw[1],
            buyer_address=raw[2],
            amount=from_units(raw[3]),
            commodity=raw[4],
            due_date_epoch=int(raw[9]),
            apr_basis_points=int(raw[10]),
            status=int(raw[11]),
            target_funding=from_units(raw[14]),
            current_funding=from_units(raw[15]),
            document_hash=raw[16],
            risk_score=int(raw[17]),
            credit_rating=raw[18],
        )

    async def allowance(self, owner_address: str, spender_address: str) -> Decimal:
        units = await self._read(
            self._stablecoin.functions.allowance(
                AsyncWeb3.to_checksum_address(owner_address),
                AsyncWeb3.to_checksum_address(spender_address),
            )
        )
        return from_units(units)

    async def balance_of(self, address: str) -> Decimal:
        units = await self._read(
            self._stablecoin.functions.balanceOf(AsyncWeb3.to_checksum_address(address))
        )
        return from_units(units)

    # ── Internals ────────────────────────────────────────────────────────────

    async def _read(self, call: Any) -> Any:
        try:
            return await call.call()
        except Exception as exc:
            raise classify_ledger_error(exc) from exc

    async def _transact(self, call: Any, sender: str, gas: int | None = None) -> tuple[Any, str]:
        """Send one new transaction and wait for its receipt."""
        params: dict[str, Any] = {"from": sender, "chainId": self._chain_id}
        if gas is not None:
            params["gas"] = gas

        try:
            if self._account is not None and sender.lower() == self._account.address.lower():
                params["nonce"] = await self._w3.eth.get_transaction_count(sender, "pending")
                params["gasPrice"] = await self._w3.eth.gas_price
                tx = await call.build_transaction(params)
                signed = self._account.sign_transaction(tx)
                tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
            else:
                tx_hash = await call.transact(params)
        except Exception as exc:
            raise classify_ledger_error(exc) from exc

        tx_ref = self._w3.to_hex(tx_hash)
        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._receipt_timeout
            )
        except Exception as exc:
            raise classify_ledger_error(exc, tx_ref=tx_ref) from exc

        if receipt["status"] != 1:
            raise LedgerReverted(
                f"Transaction reverted in block {receipt['blockNumber']}", tx_ref=tx_ref
            )
        return receipt, tx_ref

    async def _submitted_invoice_ref(self, receipt: Any) -> str | None:
        events = self._protocol.events.InvoiceSubmitted().process_receipt(receipt, errors=DISCARD)
        if events:
            return str(events[0]["args"]["invoiceId"])
        try:
            counter = await self._protocol.functions.invoiceCounter().call()
        except Exception as exc:  # noqa: BLE001
            logger.warning("ledger.invoice_ref_unknown", tx_ref=self._w3.to_hex(receipt["transactionHash"]), error=str(exc))
            return None
        return str(counter)
