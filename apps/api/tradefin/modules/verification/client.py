"""HTTP client for the external risk-scoring service.

``verify`` never raises: transport failures and undecodable payloads are
logged and replaced by the conservative default (valid, risk 35, rating B).
The lower-level calls raise ``VerificationUnavailable`` so callers that poll
can count a failed attempt.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from tradefin.core.errors import VerificationUnavailable
from tradefin.models.enums import VerificationSource
from tradefin.modules.verification.schemas import (
    DocumentVerificationRequest,
    MinimalVerificationRequest,
    MinimalVerificationResponse,
    VerificationAccepted,
    VerificationRecord,
    VerificationResult,
    conservative_default,
)

logger = structlog.get_logger()

VERIFY_MINIMAL_PATH = "/api/v1/verification/verify-minimal"
VERIFY_DOCUMENTS_PATH = "/api/v1/verification/verify-documents"
STATUS_PATH = "/api/v1/verification/status/{verification_id}"


def decode_minimal_result(
    payload: Any,
    evaluated_at_epoch: int,
    source: VerificationSource = VerificationSource.SERVICE,
) -> VerificationResult:
    """Decode ``{"result": "<0|1>,<risk>,<rating>"}`` into a VerificationResult."""
    try:
        body = MinimalVerificationResponse.model_validate(payload)
    except ValidationError as exc:
        raise VerificationUnavailable("Verification payload has no result field") from exc

    parts = [p.strip() for p in body.result.split(",")]
    if len(parts) != 3:
        raise VerificationUnavailable(f"Expected 3 fields in verification result, got {len(parts)}")

    flag, risk, rating = parts
    if flag not in ("0", "1"):
        raise VerificationUnavailable(f"Invalid validity flag {flag!r}")
    try:
        return VerificationResult(
            is_valid=flag == "1",
            risk_score=int(risk),
            credit_rating=rating,
            evaluated_at_epoch=evaluated_at_epoch,
            source=source,
        )
    except (ValueError, ValidationError) as exc:
        raise VerificationUnavailable(f"Undecodable verification result {body.result!r}") from exc


class VerificationClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._clock = clock

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )

    def _now(self) -> int:
        return int(self._clock())

    async def verify(self, request: MinimalVerificationRequest) -> VerificationResult:
        """Score an invoice synchronously, falling back to the conservative default."""
        try:
            result = await self.verify_minimal(request)
        except VerificationUnavailable as exc:
            logger.warning(
                "verification.fallback",
                invoice_id=request.invoice_id,
                error=exc.message,
            )
            return conservative_default(self._now())

        logger.info(
            "verification.completed",
            invoice_id=request.invoice_id,
            is_valid=result.is_valid,
            risk_score=result.risk_score,
            credit_rating=result.credit_rating,
        )
        return result

    async def verify_minimal(self, request: MinimalVerificationRequest) -> VerificationResult:
        payload = await self._request(
            "POST",
            VERIFY_MINIMAL_PATH,
            json=request.model_dump(by_alias=True, exclude_none=True),
        )
        return decode_minimal_result(payload, self._now())

    async def request_verification(self, request: DocumentVerificationRequest) -> str:
        """Start an asynchronous verification and return its verification id."""
        payload = await self._request(
            "POST",
            VERIFY_DOCUMENTS_PATH,
            json=request.model_dump(by_alias=True),
        )
        try:
            accepted = VerificationAccepted.model_validate(payload)
        except ValidationError as exc:
            raise VerificationUnavailable("Verification service returned no verificationId") from exc
        logger.info(
            "verification.requested",
            invoice_id=request.invoice_id,
            verification_id=accepted.verification_id,
        )
        return accepted.verification_id

    async def get_status(self, verification_id: str) -> VerificationResult | None:
        """Return the finished result, or ``None`` while the record is still pending."""
        try:
            payload = await self._request(
                "GET", STATUS_PATH.format(verification_id=verification_id)
            )
        except _NotFound:
            return None

        try:
            record = VerificationRecord.model_validate(payload)
        except ValidationError as exc:
            raise VerificationUnavailable("Undecodable verification status") from exc

        if record.status != "completed" or record.is_valid is None or record.risk_score is None:
            return None
        try:
            return VerificationResult(
                is_valid=record.is_valid,
                risk_score=record.risk_score,
                credit_rating=record.credit_rating or "",
                evaluated_at_epoch=record.timestamp or self._now(),
                source=VerificationSource.POLL,
                verification_ref=record.verification_id,
            )
        except ValidationError as exc:
            raise VerificationUnavailable("Verification status out of range") from exc

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            async with self._client() as client:
                resp = await client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise VerificationUnavailable(f"Verification service unreachable: {exc}") from exc

        if resp.status_code == 404 and method == "GET":
            raise _NotFound(path)
        if resp.is_error:
            raise VerificationUnavailable(
                f"Verification service returned HTTP {resp.status_code}"
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise VerificationUnavailable("Verification service returned non-JSON body") from exc


class _NotFound(Exception):
    pass
