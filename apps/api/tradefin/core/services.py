"""Composition root: builds the engine's collaborators from settings."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradefin.core.config import Settings, settings as default_settings
from tradefin.modules.funding.service import FundingLedger
from tradefin.modules.invoices.orchestrator import SubmissionOrchestrator
from tradefin.modules.invoices.store import OffChainInvoiceStore
from tradefin.modules.ledger.fake_adapter import FAKE_PROTOCOL_ADDRESS, FakeLedgerGateway
from tradefin.modules.ledger.port import LedgerGateway
from tradefin.modules.portfolio.service import PortfolioView
from tradefin.modules.verification.client import VerificationClient
from tradefin.modules.workflow.machine import SubmissionWorkflow
from tradefin.modules.workflow.registry import WorkflowRegistry

# Starting stablecoin balance of every address on the in-memory ledger
FAKE_LEDGER_FAUCET = Decimal("1000000")


@dataclass
class Services:
    settings: Settings
    store: OffChainInvoiceStore
    verifier: VerificationClient
    gateway: LedgerGateway
    orchestrator: SubmissionOrchestrator
    funding: FundingLedger
    portfolio: PortfolioView
    workflows: WorkflowRegistry

    @property
    def approval_spender(self) -> str:
        """Address investors approve before investing (the protocol contract)."""
        if isinstance(self.gateway, FakeLedgerGateway):
            return self.gateway.protocol_address
        return self.settings.PROTOCOL_CONTRACT_ADDRESS


def build_gateway(config: Settings) -> LedgerGateway:
    if config.LEDGER_BACKEND == "fake":
        return FakeLedgerGateway(
            protocol_address=config.PROTOCOL_CONTRACT_ADDRESS or FAKE_PROTOCOL_ADDRESS,
            default_balance=FAKE_LEDGER_FAUCET,
        )
    config.require_ledger_contracts()
    from tradefin.modules.ledger.web3_adapter import Web3LedgerGateway

    return Web3LedgerGateway(
        rpc_url=config.LEDGER_RPC_URL,
        chain_id=config.LEDGER_CHAIN_ID,
        protocol_address=config.PROTOCOL_CONTRACT_ADDRESS,
        stablecoin_address=config.STABLECOIN_CONTRACT_ADDRESS,
        operator_address=config.LEDGER_OPERATOR_ADDRESS,
        private_key=config.LEDGER_PRIVATE_KEY,
        anchor_gas_limit=config.LEDGER_ANCHOR_GAS_LIMIT,
        receipt_timeout=config.LEDGER_RECEIPT_TIMEOUT_SECONDS,
    )


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    config: Settings = default_settings,
    gateway: LedgerGateway | None = None,
    verifier: VerificationClient | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Services:
    gateway = gateway or build_gateway(config)
    verifier = verifier or VerificationClient(
        config.VERIFICATION_API_URL, timeout=config.VERIFICATION_TIMEOUT_SECONDS
    )
    store = OffChainInvoiceStore(session_factory)
    funding = FundingLedger(session_factory, gateway)
    orchestrator = SubmissionOrchestrator(
        store,
        verifier,
        gateway,
        verification_mode=config.VERIFICATION_MODE,
        max_attempts=config.LEDGER_MAX_ATTEMPTS,
        retry_delay=config.LEDGER_RETRY_DELAY_SECONDS,
        min_amount=config.INVOICE_MIN_AMOUNT,
        max_amount=config.INVOICE_MAX_AMOUNT,
        on_verified=funding.ensure_opportunity,
        sleep=sleep,
    )

    def new_workflow() -> SubmissionWorkflow:
        return SubmissionWorkflow(
            orchestrator,
            gateway,
            investment_module_address=config.INVESTMENT_MODULE_ADDRESS or config.PROTOCOL_CONTRACT_ADDRESS,
            advance_delay=config.WORKFLOW_ADVANCE_DELAY_SECONDS,
            poll_attempts=config.VERIFICATION_POLL_ATTEMPTS,
            poll_interval=config.VERIFICATION_POLL_INTERVAL_SECONDS,
            sleep=sleep,
        )

    return Services(
        settings=config,
        store=store,
        verifier=verifier,
        gateway=gateway,
        orchestrator=orchestrator,
        funding=funding,
        portfolio=PortfolioView(funding),
        workflows=WorkflowRegistry(new_workflow, idle_ttl=config.WORKFLOW_IDLE_TTL_SECONDS),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
