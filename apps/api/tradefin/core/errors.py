"""Domain error taxonomy and standardized error responses."""
from typing import Any

import sentry_sdk
import structlog
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error envelope returned by all API error handlers."""
    error: str
    message: str
    detail: Any = None
    request_id: str = "unknown"

logger = structlog.get_logger()


# ── Domain errors ────────────────────────────────────────────────────────────


class FundingEngineError(Exception):
    """Base for every error the invoice lifecycle and funding engine raises."""

    error = "funding_engine_error"
    status_code = 500

    def __init__(self, message: str, detail: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class InputError(FundingEngineError):
    """Missing or invalid draft fields / documents. Raised before any I/O."""

    error = "input_error"
    status_code = 422

    def __init__(self, errors: dict[str, str]) -> None:
        super().__init__("Invoice draft is incomplete or invalid", detail=errors)
        self.errors = errors


class VerificationUnavailable(FundingEngineError):
    """Verification service unreachable or payload undecodable.

    Never escapes VerificationClient; the conservative default is used instead.
    """

    error = "verification_unavailable"
    status_code = 503


class StoreUnavailable(FundingEngineError):
    """The off-chain store write failed. Fatal for a submission."""

    error = "store_unavailable"
    status_code = 503


class LedgerError(FundingEngineError):
    error = "ledger_error"
    status_code = 502

    def __init__(self, reason: str, tx_ref: str | None = None) -> None:
        super().__init__(reason, detail={"tx_ref": tx_ref} if tx_ref else None)
        self.reason = reason
        self.tx_ref = tx_ref


class LedgerUnreachable(LedgerError):
    """The call never reached the network. Retryable."""

    error = "ledger_unreachable"
    status_code = 503


class LedgerPending(LedgerError):
    """Broadcast as ``tx_ref`` but no receipt came back. Resolved by lookup, never by resending."""

    error = "ledger_pending"
    status_code = 504


class LedgerReverted(LedgerError):
    """Mined but rejected by contract logic. Only a fresh attempt may follow."""

    error = "ledger_reverted"
    status_code = 409


class InsufficientFunds(LedgerError):
    error = "insufficient_funds"
    status_code = 402


class UserCancelled(LedgerError):
    """The signing party declined. Benign, shown as a cancellation."""

    error = "user_cancelled"
    status_code = 409


class FundingExceeded(FundingEngineError):
    error = "funding_exceeded"
    status_code = 409


class InvoiceNotFound(FundingEngineError, LookupError):
    error = "invoice_not_found"
    status_code = 404


class OpportunityNotFound(FundingEngineError, LookupError):
    error = "opportunity_not_found"
    status_code = 404


class WorkflowNotFound(FundingEngineError, LookupError):
    error = "workflow_not_found"
    status_code = 404


class InvalidTransition(FundingEngineError):
    error = "invalid_transition"
    status_code = 409


# ── Handlers ─────────────────────────────────────────────────────────────────


async def domain_exception_handler(request: Request, exc: FundingEngineError) -> JSONResponse:
    """Render domain errors into the standard envelope."""
    request_id = request.headers.get("x-request-id", "unknown")

    log = logger.info if isinstance(exc, UserCancelled) else logger.warning
    log(
        "domain_error",
        error=exc.error,
        message=exc.message,
        path=request.url.path,
        request_id=request_id,
    )

    envelope = ErrorResponse(
        error=exc.error,
        message=exc.message,
        detail=exc.detail,
        request_id=request_id,
    )
    return JSONResponse(status_code=exc.status_code, content=envelope.model_dump(mode="json"))


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch unhandled exceptions and return a consistent JSON envelope."""
    request_id = request.headers.get("x-request-id", "unknown")

    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        request_id=request_id,
    )

    sentry_sdk.capture_exception(exc)

    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred. Our team has been notified.",
            "request_id": request_id,
        },
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Standardize HTTPException responses into the same JSON envelope."""
    request_id = request.headers.get("x-request-id", "unknown")

    if isinstance(exc.detail, dict):
        error = exc.detail.get("error", f"http_{exc.status_code}")
        message = exc.detail.get("message", str(exc.detail))
        detail: Any = exc.detail.get("detail")
    else:
        error = f"http_{exc.status_code}"
        message = str(exc.detail)
        detail = exc.detail

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": error,
            "message": message,
            "detail": detail,
            "request_id": request_id,
        },
        headers=dict(exc.headers or {}),
    )
