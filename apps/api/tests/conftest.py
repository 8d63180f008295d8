"""Shared test fixtures for the tradefin test suite."""

import asyncio
import json
import time
from collections.abc import AsyncGenerator
from decimal import Decimal

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import tradefin.models  # noqa: F401, register all models so Base.metadata is populated
from tradefin.core.config import Settings
from tradefin.core.database import Base
from tradefin.core.services import Services, build_services
from tradefin.models.enums import REQUIRED_DOCUMENTS
from tradefin.modules.invoices.schemas import InvoiceDraft
from tradefin.modules.ledger.fake_adapter import FakeLedgerGateway
from tradefin.modules.verification.client import VerificationClient

SUPPLIER = "0x" + "1" * 40
BUYER = "0x" + "2" * 40
INVESTOR = "0x" + "3" * 40
INVESTOR_B = "0x" + "4" * 40

VERIFIER_URL = "http://verifier.test"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


async def no_sleep(_seconds: float) -> None:
    """Stand-in for asyncio.sleep that only yields to the event loop."""
    await asyncio.sleep(0)


def make_draft(**overrides) -> InvoiceDraft:
    fields = {
        "supplier_address": SUPPLIER,
        "buyer_address": BUYER,
        "amount": Decimal("50000"),
        "commodity": "Coffee",
        "supplier_country": "Kenya",
        "buyer_country": "Germany",
        "exporter_name": "Nairobi Coffee Exporters",
        "buyer_name": "Hamburg Roasters GmbH",
        "due_date_epoch": int(time.time()) + 90 * 86400,
        "documents": {doc: f"hash-{doc.value}" for doc in REQUIRED_DOCUMENTS},
    }
    fields.update(overrides)
    return InvoiceDraft(**fields)


# ── Verification service stub ─────────────────────────────────────────────────


class StubVerificationService:
    """In-process stand-in for the hosted verification API, served over httpx.MockTransport."""

    def __init__(self) -> None:
        self.result = "1,20,A"
        self.status_code = 200
        self.requests: list[httpx.Request] = []
        self.records: dict[str, dict | None] = {}

    def complete(self, verification_id: str, result: str) -> None:
        flag, risk, rating = result.split(",")
        self.records[verification_id] = {
            "verificationId": verification_id,
            "invoiceId": "",
            "status": "completed",
            "isValid": flag == "1",
            "riskScore": int(risk),
            "creditRating": rating,
            "timestamp": int(time.time()),
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": "unavailable"})

        path = request.url.path
        if path.endswith("/verify-minimal"):
            return httpx.Response(200, json={"result": self.result})
        if path.endswith("/verify-documents"):
            body = json.loads(request.content)
            verification_id = f"ver-{len(self.records) + 1}"
            self.records[verification_id] = None
            return httpx.Response(
                202,
                json={"verificationId": verification_id, "invoiceId": body["invoiceId"], "status": "pending"},
            )
        if "/status/" in path:
            verification_id = path.rsplit("/", 1)[1]
            if verification_id not in self.records:
                return httpx.Response(404, json={"error": "not found"})
            record = self.records[verification_id]
            if record is None:
                return httpx.Response(
                    200,
                    json={"verificationId": verification_id, "invoiceId": "", "status": "pending"},
                )
            return httpx.Response(200, json=record)
        return httpx.Response(404)


@pytest.fixture
def verification_service() -> StubVerificationService:
    return StubVerificationService()


@pytest.fixture
def verifier(verification_service: StubVerificationService) -> VerificationClient:
    return VerificationClient(VERIFIER_URL, transport=httpx.MockTransport(verification_service.handler))


# ── Storage and services ──────────────────────────────────────────────────────


@pytest.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tradefin.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture
def ledger() -> FakeLedgerGateway:
    return FakeLedgerGateway()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        APP_ENV="test",
        APP_DEBUG=False,
        LEDGER_BACKEND="fake",
        VERIFICATION_API_URL=VERIFIER_URL,
        VERIFICATION_MODE="sync",
        VERIFICATION_POLL_ATTEMPTS=5,
        VERIFICATION_POLL_INTERVAL_SECONDS=0,
        LEDGER_MAX_ATTEMPTS=3,
        LEDGER_RETRY_DELAY_SECONDS=0,
        WORKFLOW_ADVANCE_DELAY_SECONDS=0,
        INVESTMENT_MODULE_ADDRESS="0x" + "e0" * 20,
    )


@pytest.fixture
def services(
    session_factory: async_sessionmaker[AsyncSession],
    test_settings: Settings,
    ledger: FakeLedgerGateway,
    verifier: VerificationClient,
) -> Services:
    return build_services(
        session_factory,
        config=test_settings,
        gateway=ledger,
        verifier=verifier,
        sleep=no_sleep,
    )


async def fund_investor(ledger: FakeLedgerGateway, address: str, amount: Decimal) -> None:
    """Give ``address`` stablecoin and approve the protocol to spend it."""
    ledger.fund(address, amount)
    await ledger.approve(address, ledger.protocol_address, amount)


@pytest.fixture
async def client(
    services: Services,
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient]:
    from tradefin.main import app

    app.state.services = services
    app.state.session_factory = session_factory
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as ac:
            yield ac
    finally:
        services.workflows.teardown_all()
        app.state.services = None
        app.state.session_factory = None
