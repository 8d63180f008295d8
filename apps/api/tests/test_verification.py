"""Tests for the verification client, result decoding and the reference scorer."""

import httpx
import pytest

from tests.conftest import VERIFIER_URL, StubVerificationService
from tradefin.core.errors import VerificationUnavailable
from tradefin.models.enums import VerificationSource
from tradefin.modules.verification.client import VerificationClient, decode_minimal_result
from tradefin.modules.verification.schemas import (
    DocumentVerificationRequest,
    InvoiceDetails,
    MinimalVerificationRequest,
)
from tradefin.modules.verification.scoring import ERROR_RESULT, score_minimal

pytestmark = pytest.mark.anyio


def _request(invoice_id: str = "1700000000000123", **overrides) -> MinimalVerificationRequest:
    fields = {
        "invoice_id": invoice_id,
        "document_hash": "abc",
        "commodity": "Coffee",
        "amount": 50000,
        "supplier_country": "Kenya",
        "buyer_country": "Germany",
        "exporter_name": "Exporter",
        "buyer_name": "Buyer",
    }
    fields.update(overrides)
    return MinimalVerificationRequest(**fields)


# ── Decoding ─────────────────────────────────────────────────────────────────


def test_decode_valid_result() -> None:
    result = decode_minimal_result({"result": "1,25,A"}, evaluated_at_epoch=1_700_000_000)
    assert result.is_valid is True
    assert result.risk_score == 25
    assert result.credit_rating == "A"
    assert result.source == VerificationSource.SERVICE


def test_decode_rejected_result() -> None:
    result = decode_minimal_result({"result": "0, 75, C"}, evaluated_at_epoch=1)
    assert result.is_valid is False
    assert result.risk_score == 75


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"result": "1,25"},
        {"result": "2,25,A"},
        {"result": "1,abc,A"},
        {"result": "1,150,A"},
        {"result": "1,25,"},
        "not-an-object",
    ],
)
def test_decode_rejects_malformed_payloads(payload) -> None:
    with pytest.raises(VerificationUnavailable):
        decode_minimal_result(payload, evaluated_at_epoch=1)


# ── Client ───────────────────────────────────────────────────────────────────


async def test_verify_returns_service_result(
    verifier: VerificationClient, verification_service: StubVerificationService
) -> None:
    verification_service.result = "1,20,A"
    result = await verifier.verify(_request())
    assert (result.is_valid, result.risk_score, result.credit_rating) == (True, 20, "A")
    sent = verification_service.requests[0]
    assert sent.url.path == "/api/v1/verification/verify-minimal"
    assert b'"invoiceId"' in sent.content


async def test_verify_falls_back_when_service_errors(
    verifier: VerificationClient, verification_service: StubVerificationService
) -> None:
    verification_service.status_code = 503
    result = await verifier.verify(_request())
    assert (result.is_valid, result.risk_score, result.credit_rating) == (True, 35, "B")
    assert result.source == VerificationSource.FALLBACK


async def test_verify_falls_back_on_undecodable_result(
    verifier: VerificationClient, verification_service: StubVerificationService
) -> None:
    verification_service.result = "garbage"
    result = await verifier.verify(_request())
    assert result.source == VerificationSource.FALLBACK


async def test_verify_falls_back_when_unreachable() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = VerificationClient(VERIFIER_URL, transport=httpx.MockTransport(refuse))
    result = await client.verify(_request())
    assert result.source == VerificationSource.FALLBACK
    assert result.risk_score == 35


async def test_verify_minimal_raises_when_unreachable() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = VerificationClient(VERIFIER_URL, transport=httpx.MockTransport(refuse))
    with pytest.raises(VerificationUnavailable):
        await client.verify_minimal(_request())


async def test_request_and_poll_status(
    verifier: VerificationClient, verification_service: StubVerificationService
) -> None:
    request = DocumentVerificationRequest(
        invoice_id="1700000000000123",
        document_hash="abc",
        invoice_details=InvoiceDetails(
            commodity="Coffee",
            amount="50000",
            supplier_country="Kenya",
            buyer_country="Germany",
            exporter_name="Exporter",
            buyer_name="Buyer",
        ),
    )
    verification_id = await verifier.request_verification(request)
    assert await verifier.get_status(verification_id) is None

    verification_service.complete(verification_id, "1,40,B")
    result = await verifier.get_status(verification_id)
    assert result is not None
    assert result.source == VerificationSource.POLL
    assert result.verification_ref == verification_id
    assert result.risk_score == 40


async def test_status_of_unknown_record_is_not_ready(verifier: VerificationClient) -> None:
    assert await verifier.get_status("missing") is None


# ── Reference scorer ─────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("last_digit", "expected"),
    [("0", "1,25,A"), ("2", "1,25,A"), ("3", "1,35,B"), ("6", "1,35,B"), ("7", "0,75,C"), ("9", "0,75,C")],
)
def test_score_by_last_digit(last_digit: str, expected: str) -> None:
    assert score_minimal(_request(invoice_id="170000000000012" + last_digit)) == expected


def test_score_high_amount_adds_risk() -> None:
    assert score_minimal(_request(invoice_id="1700000000000120", amount=250_000)) == "1,35,A"


def test_score_gold_lowers_risk_and_lifts_rating() -> None:
    assert score_minimal(_request(invoice_id="1700000000000123", commodity="Gold bars")) == "1,30,B"
    assert score_minimal(_request(invoice_id="1700000000000129", commodity="gold")) == "0,70,B"
    assert score_minimal(_request(invoice_id="1700000000000120", commodity="gold")) == "1,25,A"


def test_score_unknown_supplier_country() -> None:
    assert score_minimal(_request(invoice_id="1700000000000123", supplier_country=None)) == "1,50,B"


def test_score_non_numeric_invoice_id_is_an_error() -> None:
    assert score_minimal(_request(invoice_id="INV-ABC")) == ERROR_RESULT
