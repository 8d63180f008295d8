"""Tests for ledger error classification, fresh-attempt retry and the ledger adapters."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

from tests.conftest import BUYER, INVESTOR, SUPPLIER, fund_investor, no_sleep
from tradefin.core.errors import (
    InsufficientFunds,
    LedgerPending,
    LedgerReverted,
    LedgerUnreachable,
    UserCancelled,
)
from tradefin.modules.ledger.classify import classify_ledger_error, revert_reason
from tradefin.modules.ledger.fake_adapter import FakeLedgerGateway
from tradefin.modules.ledger.port import AnchorRequest, TxStatus
from tradefin.modules.ledger.retry import FreshAttemptRetry
from tradefin.modules.ledger.web3_adapter import Web3LedgerGateway, from_units, to_units

pytestmark = pytest.mark.anyio


def _anchor_request(amount: Decimal = Decimal("50000")) -> AnchorRequest:
    return AnchorRequest(
        invoice_id="1700000000000123",
        supplier_address=SUPPLIER,
        buyer_address=BUYER,
        amount=amount,
        commodity="Coffee",
        supplier_country="Kenya",
        buyer_country="Germany",
        exporter_name="Exporter",
        buyer_name="Buyer",
        due_date_epoch=1_900_000_000,
        document_hash="abc",
    )


# ── Classification ───────────────────────────────────────────────────────────


def test_user_rejection_by_code() -> None:
    error = classify_ledger_error(Exception({"code": 4001, "message": "nope"}))
    assert isinstance(error, UserCancelled)


def test_user_rejection_by_message() -> None:
    assert isinstance(classify_ledger_error(Exception("User rejected the request")), UserCancelled)


def test_insufficient_funds() -> None:
    error = classify_ledger_error(ValueError("insufficient funds for gas * price + value"))
    assert isinstance(error, InsufficientFunds)


def test_contract_revert_keeps_reason() -> None:
    error = classify_ledger_error(ContractLogicError("execution reverted: Invoice already funded"))
    assert isinstance(error, LedgerReverted)
    assert "Invoice already funded" in error.reason


def test_missing_receipt_after_broadcast_is_pending() -> None:
    error = classify_ledger_error(
        TimeExhausted("Transaction 0xabc is not in the chain after 60 seconds"), tx_ref="0xabc"
    )
    assert isinstance(error, LedgerPending)
    assert error.tx_ref == "0xabc"


def test_transport_failure_after_broadcast_is_pending() -> None:
    error = classify_ledger_error(ConnectionResetError("connection reset"), tx_ref="0xabc")
    assert isinstance(error, LedgerPending)


def test_timeout_without_broadcast_is_unreachable() -> None:
    error = classify_ledger_error(TimeExhausted("Transaction is not in the chain after 60 seconds"))
    assert isinstance(error, LedgerUnreachable)


@pytest.mark.parametrize(
    "exc",
    [
        ConnectionRefusedError("connection refused"),
        asyncio.TimeoutError(),
        httpx.ConnectError("boom"),
    ],
)
def test_transport_failures_are_unreachable(exc: Exception) -> None:
    assert isinstance(classify_ledger_error(exc), LedgerUnreachable)


def test_unknown_node_error_is_reverted() -> None:
    assert isinstance(classify_ledger_error(RuntimeError("nonce too low")), LedgerReverted)


def test_revert_after_broadcast_keeps_tx_ref() -> None:
    error = classify_ledger_error(ContractLogicError("execution reverted: Not supplier"), tx_ref="0xabc")
    assert isinstance(error, LedgerReverted)
    assert error.tx_ref == "0xabc"


def test_classified_errors_pass_through() -> None:
    original = InsufficientFunds("broke")
    assert classify_ledger_error(original) is original


def test_revert_reason_without_message() -> None:
    assert revert_reason("execution reverted") == "execution reverted"
    assert revert_reason("execution reverted: 'Not supplier'") == "Not supplier"


def test_stablecoin_units() -> None:
    assert to_units(Decimal("12.3456789")) == 12_345_678
    assert from_units(12_345_678) == Decimal("12.345678")


# ── Retry ────────────────────────────────────────────────────────────────────


async def test_retry_recovers_on_later_attempt() -> None:
    calls = 0

    async def flaky() -> str:
        nonlocal calls
        calls += 1
        if calls < 3:
            raise ConnectionResetError("connection reset")
        return "ok"

    retry = FreshAttemptRetry(3, 2.0, sleep=no_sleep)
    assert await retry.run(flaky, op="test") == "ok"
    assert retry.attempts_made == 3
    assert all(isinstance(e, LedgerUnreachable) for e in retry.errors)


async def test_retry_raises_last_error_when_exhausted() -> None:
    slept: list[float] = []

    async def record_sleep(seconds: float) -> None:
        slept.append(seconds)

    async def always_down() -> None:
        raise LedgerUnreachable("node down")

    retry = FreshAttemptRetry(3, 2.0, sleep=record_sleep)
    with pytest.raises(LedgerUnreachable):
        await retry.run(always_down, op="test")
    assert retry.attempts_made == 3
    assert slept == [2.0, 2.0]


@pytest.mark.parametrize(
    "terminal",
    [InsufficientFunds("broke"), UserCancelled("declined"), LedgerPending("no receipt", tx_ref="0xabc")],
)
async def test_retry_stops_on_terminal_error(terminal) -> None:
    async def fail() -> None:
        raise terminal

    retry = FreshAttemptRetry(3, 0, sleep=no_sleep)
    with pytest.raises(type(terminal)):
        await retry.run(fail, op="test")
    assert retry.attempts_made == 1


async def test_retry_classifies_raw_exceptions() -> None:
    async def revert() -> None:
        raise ContractLogicError("execution reverted: Invalid amount")

    retry = FreshAttemptRetry(2, 0, sleep=no_sleep)
    with pytest.raises(LedgerReverted) as info:
        await retry.run(revert, op="test")
    assert "Invalid amount" in info.value.reason
    assert isinstance(info.value.__cause__, ContractLogicError)


# ── In-memory ledger ─────────────────────────────────────────────────────────


async def test_fake_anchor_assigns_sequential_refs() -> None:
    ledger = FakeLedgerGateway()
    first = await ledger.anchor_invoice(_anchor_request())
    second = await ledger.anchor_invoice(_anchor_request())
    assert (first.invoice_ref, second.invoice_ref) == ("1", "2")
    record = await ledger.get_invoice("1")
    assert record is not None
    assert record.target_funding == Decimal("40000.00")


async def test_fake_anchor_consumes_queued_failures() -> None:
    ledger = FakeLedgerGateway()
    ledger.fail_anchor(LedgerUnreachable("down"))
    with pytest.raises(LedgerUnreachable):
        await ledger.anchor_invoice(_anchor_request())
    receipt = await ledger.anchor_invoice(_anchor_request())
    assert receipt.invoice_ref == "1"


async def test_fake_invest_enforces_balance_and_allowance() -> None:
    ledger = FakeLedgerGateway()
    receipt = await ledger.anchor_invoice(_anchor_request())

    with pytest.raises(InsufficientFunds):
        await ledger.invest(receipt.invoice_ref, INVESTOR, Decimal("1000"))

    ledger.fund(INVESTOR, Decimal("1000"))
    with pytest.raises(LedgerReverted, match="allowance"):
        await ledger.invest(receipt.invoice_ref, INVESTOR, Decimal("1000"))

    await ledger.approve(INVESTOR, ledger.protocol_address, Decimal("1000"))
    await ledger.invest(receipt.invoice_ref, INVESTOR, Decimal("1000"))
    assert await ledger.balance_of(INVESTOR) == Decimal("0")
    assert await ledger.allowance(INVESTOR, ledger.protocol_address) == Decimal("0")
    record = await ledger.get_invoice(receipt.invoice_ref)
    assert record.current_funding == Decimal("1000")


async def test_fake_invest_rejects_supplier_and_overfunding() -> None:
    ledger = FakeLedgerGateway()
    receipt = await ledger.anchor_invoice(_anchor_request(Decimal("1000")))

    await fund_investor(ledger, SUPPLIER, Decimal("100"))
    with pytest.raises(LedgerReverted, match="Supplier"):
        await ledger.invest(receipt.invoice_ref, SUPPLIER, Decimal("100"))

    await fund_investor(ledger, INVESTOR, Decimal("5000"))
    with pytest.raises(LedgerReverted, match="remaining"):
        await ledger.invest(receipt.invoice_ref, INVESTOR, Decimal("900"))


async def test_fake_target_rounds_half_cent_up() -> None:
    ledger = FakeLedgerGateway()
    receipt = await ledger.anchor_invoice(_anchor_request(Decimal("1000.00625")))
    record = await ledger.get_invoice(receipt.invoice_ref)
    assert record.target_funding == Decimal("800.01")


async def test_fake_lost_receipt_reports_pending() -> None:
    ledger = FakeLedgerGateway()
    ledger.lose_next_receipt(mined=False)
    with pytest.raises(LedgerPending) as info:
        await ledger.anchor_invoice(_anchor_request())

    tx_ref = info.value.tx_ref
    assert (await ledger.anchor_status(tx_ref)).status is TxStatus.PENDING
    assert ledger.invoices == {}
    assert (await ledger.anchor_status("0xunknown")).status is TxStatus.DROPPED


async def test_fake_lost_receipt_can_still_be_mined() -> None:
    ledger = FakeLedgerGateway()
    ledger.lose_next_receipt()
    with pytest.raises(LedgerPending) as info:
        await ledger.anchor_invoice(_anchor_request())

    status = await ledger.anchor_status(info.value.tx_ref)
    assert status.status is TxStatus.MINED
    assert status.receipt.invoice_ref == "1"


# ── web3 adapter ─────────────────────────────────────────────────────────────


def _web3_gateway(w3: MagicMock) -> Web3LedgerGateway:
    return Web3LedgerGateway(
        rpc_url="http://node.test",
        chain_id=1337,
        protocol_address="0x" + "a1" * 20,
        stablecoin_address="0x" + "b2" * 20,
        w3=w3,
    )


def _mock_w3() -> MagicMock:
    w3 = MagicMock()
    w3.eth.get_transaction_receipt = AsyncMock()
    w3.eth.get_transaction = AsyncMock()
    return w3


async def test_web3_anchor_status_mined() -> None:
    w3 = _mock_w3()
    w3.eth.get_transaction_receipt.return_value = {"status": 1, "blockNumber": 42}
    protocol = w3.eth.contract.return_value
    protocol.events.InvoiceSubmitted.return_value.process_receipt.return_value = [{"args": {"invoiceId": 7}}]

    status = await _web3_gateway(w3).anchor_status("0xabc")
    assert status.status is TxStatus.MINED
    assert (status.receipt.tx_ref, status.receipt.block_ref, status.receipt.invoice_ref) == ("0xabc", "42", "7")


async def test_web3_anchor_status_reverted() -> None:
    w3 = _mock_w3()
    w3.eth.get_transaction_receipt.return_value = {"status": 0, "blockNumber": 42}
    assert (await _web3_gateway(w3).anchor_status("0xabc")).status is TxStatus.REVERTED


async def test_web3_anchor_status_pending_or_dropped() -> None:
    w3 = _mock_w3()
    w3.eth.get_transaction_receipt.side_effect = TransactionNotFound("no receipt")
    w3.eth.get_transaction.return_value = {"hash": "0xabc"}
    assert (await _web3_gateway(w3).anchor_status("0xabc")).status is TxStatus.PENDING

    w3.eth.get_transaction.side_effect = TransactionNotFound("unknown")
    assert (await _web3_gateway(w3).anchor_status("0xabc")).status is TxStatus.DROPPED


async def test_web3_anchor_status_node_down_is_unreachable() -> None:
    w3 = _mock_w3()
    w3.eth.get_transaction_receipt.side_effect = ConnectionRefusedError("connection refused")
    with pytest.raises(LedgerUnreachable):
        await _web3_gateway(w3).anchor_status("0xabc")
