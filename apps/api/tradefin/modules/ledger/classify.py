"""Map raw provider / contract exceptions onto the ledger error taxonomy."""

from __future__ import annotations

import asyncio
import re

import httpx
from web3.exceptions import ContractLogicError, TimeExhausted

from tradefin.core.errors import (
    InsufficientFunds,
    LedgerError,
    LedgerPending,
    LedgerReverted,
    LedgerUnreachable,
    UserCancelled,
)

USER_REJECTED_CODE = 4001

_REVERT_REASON = re.compile(r"execution reverted:?\s*(?P<reason>.*)", re.IGNORECASE | re.DOTALL)
_USER_REJECTED = ("user rejected", "user denied", "rejected by user")
_INSUFFICIENT_FUNDS = ("insufficient funds", "exceeds balance")
_TRANSPORT = (
    "connection refused",
    "connection reset",
    "connection aborted",
    "timed out",
    "timeout",
    "could not connect",
    "network is unreachable",
    "name or service not known",
)


def _error_code(exc: BaseException) -> int | None:
    for arg in getattr(exc, "args", ()):
        if isinstance(arg, dict) and isinstance(arg.get("code"), int):
            return arg["code"]
    code = getattr(exc, "code", None)
    return code if isinstance(code, int) else None


def revert_reason(message: str) -> str:
    """Extract the contract's revert string from a provider message."""
    match = _REVERT_REASON.search(message)
    if match and match.group("reason").strip():
        return match.group("reason").strip().strip("'\"")
    return message or "execution reverted"


def classify_ledger_error(exc: BaseException, tx_ref: str | None = None) -> LedgerError:
    """Return the LedgerError subclass describing ``exc``.

    Already-classified errors pass through unchanged. A ``tx_ref`` means the
    transaction was already broadcast, so anything short of a revert is
    LedgerPending rather than a retryable failure.
    """
    if isinstance(exc, LedgerError):
        return exc

    message = str(exc)
    lowered = message.lower()

    if _error_code(exc) == USER_REJECTED_CODE or any(s in lowered for s in _USER_REJECTED):
        return UserCancelled("Transaction was rejected by user", tx_ref=tx_ref)

    if any(s in lowered for s in _INSUFFICIENT_FUNDS):
        return InsufficientFunds("Insufficient funds for transaction", tx_ref=tx_ref)

    if isinstance(exc, ContractLogicError) or "revert" in lowered:
        return LedgerReverted(revert_reason(message), tx_ref=tx_ref)

    # Past broadcast the transaction may still be mined
    if tx_ref is not None:
        return LedgerPending(f"No receipt for {tx_ref}: {message or type(exc).__name__}", tx_ref=tx_ref)

    if isinstance(exc, TimeExhausted):
        return LedgerUnreachable(f"No receipt within timeout: {message}")

    if isinstance(exc, (OSError, asyncio.TimeoutError, httpx.TransportError)) or any(
        s in lowered for s in _TRANSPORT
    ):
        return LedgerUnreachable(f"Ledger unreachable: {message or type(exc).__name__}", tx_ref=tx_ref)

    # Anything else came back from the node; it reached the network.
    return LedgerReverted(message or type(exc).__name__, tx_ref=tx_ref)

