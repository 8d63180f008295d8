"""Tests for the submission workflow state machine and its registry."""

import asyncio

import pytest

from tests.conftest import SUPPLIER, StubVerificationService, make_draft
from tradefin.core.errors import InputError, InvalidTransition, LedgerUnreachable, WorkflowNotFound
from tradefin.core.services import Services
from tradefin.models.enums import DocumentType
from tradefin.modules.ledger.fake_adapter import FakeLedgerGateway
from tradefin.modules.workflow.machine import SubmissionWorkflow, WorkflowState
from tradefin.modules.workflow.registry import WorkflowRegistry

pytestmark = pytest.mark.anyio


def _filled(services: Services) -> SubmissionWorkflow:
    workflow = services.workflows.create()
    draft = make_draft()
    workflow.update_form(draft.model_dump(exclude={"documents"}))
    for doc_type, content_hash in draft.documents.items():
        workflow.attach_document(doc_type, content_hash)
    return workflow


# ── Form ─────────────────────────────────────────────────────────────────────


async def test_new_workflow_starts_in_form(services: Services) -> None:
    workflow = services.workflows.create()
    assert workflow.state is WorkflowState.FORM
    assert workflow.progress == 0
    assert workflow.invoice_id.isdigit() and len(workflow.invoice_id) == 16
    assert services.workflows.get(workflow.id) is workflow


async def test_form_updates_merge(services: Services) -> None:
    workflow = services.workflows.create()
    workflow.update_form({"commodity": "Coffee"})
    workflow.update_form({"buyer_name": "Hamburg Roasters GmbH"})
    workflow.attach_document(DocumentType.PACKING_LIST, "h1")
    assert workflow.draft.commodity == "Coffee"
    assert workflow.draft.buyer_name == "Hamburg Roasters GmbH"
    assert workflow.draft.documents == {DocumentType.PACKING_LIST: "h1"}


async def test_incomplete_form_stays_in_form(services: Services, ledger: FakeLedgerGateway) -> None:
    workflow = services.workflows.create()
    workflow.update_form({"commodity": "Coffee"})
    with pytest.raises(InputError):
        await workflow.submit()
    assert workflow.state is WorkflowState.FORM
    assert ledger.calls == []


# ── Happy path ───────────────────────────────────────────────────────────────


async def test_full_lifecycle(services: Services, ledger: FakeLedgerGateway) -> None:
    workflow = _filled(services)

    outcome = await workflow.submit()
    assert outcome.invoice_id == workflow.invoice_id
    assert workflow.state is WorkflowState.VERIFIED
    assert workflow.progress == 60

    await workflow.settle()
    assert workflow.state is WorkflowState.READY_FOR_INVESTMENT
    assert workflow.progress == 75

    with pytest.raises(InvalidTransition):
        workflow.update_form({"commodity": "Tea"})

    await workflow.list_for_investment()
    assert workflow.state is WorkflowState.COMPLETED
    assert workflow.progress == 100
    assert workflow.listing_tx_ref is not None

    approval = next(c for c in ledger.calls if c["method"] == "approve")
    assert approval["owner"] == SUPPLIER
    assert approval["spender"] == services.settings.INVESTMENT_MODULE_ADDRESS
    assert approval["amount"] == make_draft().amount


async def test_rejected_invoice_completes_without_listing(
    services: Services, verification_service: StubVerificationService
) -> None:
    verification_service.result = "0,75,C"
    workflow = _filled(services)
    await workflow.submit()
    await workflow.settle()

    assert workflow.state is WorkflowState.COMPLETED
    assert workflow.verification.is_valid is False
    with pytest.raises(InvalidTransition):
        await workflow.list_for_investment()


async def test_listing_retries_anchoring_after_outage(services: Services, ledger: FakeLedgerGateway) -> None:
    ledger.fail_anchor(*(LedgerUnreachable("node down") for _ in range(6)))
    workflow = _filled(services)
    await workflow.submit()
    await workflow.settle()
    assert workflow.state is WorkflowState.READY_FOR_INVESTMENT
    assert workflow.outcome.ledger_anchored is False

    await workflow.list_for_investment()
    assert workflow.state is WorkflowState.READY_FOR_INVESTMENT
    assert workflow.last_error.startswith("ledger_unreachable")

    await workflow.list_for_investment()
    assert workflow.state is WorkflowState.COMPLETED
    assert workflow.outcome.ledger_anchored
    assert workflow.last_error is None


# ── Asynchronous verification ────────────────────────────────────────────────


async def test_async_verification_is_polled(
    services: Services, verification_service: StubVerificationService
) -> None:
    services.orchestrator.verification_mode = "async"
    workflow = _filled(services)

    outcome = await workflow.submit()
    assert outcome.verification_pending
    assert workflow.state is WorkflowState.VERIFYING
    assert workflow.progress == 40

    verification_service.complete(outcome.verification_ref, "1,30,B")
    await workflow.settle()

    assert workflow.state is WorkflowState.READY_FOR_INVESTMENT
    assert workflow.verification.risk_score == 30
    assert workflow.outcome.ledger_anchored


async def test_poll_timeout_leaves_workflow_verifying(services: Services) -> None:
    services.orchestrator.verification_mode = "async"
    workflow = _filled(services)
    await workflow.submit()
    await workflow.settle()

    assert workflow.state is WorkflowState.VERIFYING
    assert workflow.verification_timed_out
    assert workflow.verification is None


# ── Reset and teardown ───────────────────────────────────────────────────────


async def test_reset_cancels_polling_and_issues_new_id(
    services: Services, verification_service: StubVerificationService
) -> None:
    services.orchestrator.verification_mode = "async"
    workflow = _filled(services)
    outcome = await workflow.submit()
    old_invoice_id = workflow.invoice_id

    workflow.reset()
    verification_service.complete(outcome.verification_ref, "1,30,B")
    await workflow.settle()

    assert workflow.state is WorkflowState.FORM
    assert workflow.invoice_id != old_invoice_id
    assert workflow.outcome is None
    assert not workflow.has_pending_work


async def test_reset_discards_pending_auto_advance(services: Services) -> None:
    workflow = _filled(services)
    await workflow.submit()
    workflow.reset()
    await workflow.settle()
    assert workflow.state is WorkflowState.FORM


async def test_teardown_blocks_further_actions(services: Services) -> None:
    workflow = _filled(services)
    await workflow.submit()
    services.workflows.teardown(workflow.id)

    assert workflow.closed
    assert len(services.workflows) == 0
    with pytest.raises(WorkflowNotFound):
        services.workflows.get(workflow.id)
    with pytest.raises(InvalidTransition):
        workflow.reset()
    with pytest.raises(InvalidTransition):
        await workflow.list_for_investment()


async def test_teardown_stops_in_flight_anchoring(services: Services, ledger: FakeLedgerGateway) -> None:
    ledger.latency = 0.05
    ledger.fail_anchor(*(LedgerUnreachable("node down") for _ in range(3)))
    workflow = _filled(services)

    submission = asyncio.create_task(workflow.submit())
    while not any(c["method"] == "anchor_invoice" for c in ledger.calls):
        await asyncio.sleep(0.001)
    services.workflows.teardown(workflow.id)

    with pytest.raises(InvalidTransition):
        await submission
    await asyncio.sleep(0.15)

    assert [c["method"] for c in ledger.calls].count("anchor_invoice") == 1
    invoice = await services.store.get(workflow.invoice_id)
    assert invoice.ledger_anchored is False
    assert invoice.ledger_attempts == 0
    assert not workflow.has_pending_work


async def test_reset_cancels_in_flight_listing(services: Services, ledger: FakeLedgerGateway) -> None:
    ledger.fail_anchor(*(LedgerUnreachable("node down") for _ in range(3)))
    workflow = _filled(services)
    await workflow.submit()
    await workflow.settle()

    ledger.latency = 0.05
    listing = asyncio.create_task(workflow.list_for_investment())
    await asyncio.sleep(0.01)
    workflow.reset()

    with pytest.raises(InvalidTransition):
        await listing
    await asyncio.sleep(0.1)
    assert workflow.state is WorkflowState.FORM
    assert ledger.calls[-1]["method"] == "approve"
    assert [c["method"] for c in ledger.calls].count("anchor_invoice") == 3


async def test_teardown_all(services: Services) -> None:
    first = services.workflows.create()
    second = services.workflows.create()
    services.workflows.teardown_all()
    assert first.closed and second.closed
    assert len(services.workflows) == 0


def _registry(services: Services, now: list[float], **workflow_options) -> WorkflowRegistry:
    def factory() -> SubmissionWorkflow:
        return SubmissionWorkflow(
            services.orchestrator,
            services.gateway,
            investment_module_address=services.settings.INVESTMENT_MODULE_ADDRESS,
            advance_delay=0,
            **workflow_options,
        )

    return WorkflowRegistry(factory, idle_ttl=60, clock=lambda: now[0])


async def test_idle_workflows_are_evicted_on_create(services: Services) -> None:
    now = [1000.0]
    registry = _registry(services, now)
    stale = registry.create()
    touched = registry.create()

    now[0] += 30
    registry.get(touched.id)
    now[0] += 45
    fresh = registry.create()

    assert stale.closed
    with pytest.raises(WorkflowNotFound):
        registry.get(stale.id)
    assert registry.get(touched.id) is touched and not touched.closed
    assert registry.get(fresh.id) is fresh
    assert len(registry) == 2


async def test_busy_workflow_survives_eviction(services: Services) -> None:
    services.orchestrator.verification_mode = "async"
    now = [1000.0]
    registry = _registry(services, now, poll_interval=10.0)
    busy = registry.create()
    draft = make_draft()
    busy.update_form(draft.model_dump(exclude={"documents"}))
    for doc_type, content_hash in draft.documents.items():
        busy.attach_document(doc_type, content_hash)
    await busy.submit()
    assert busy.has_pending_work

    now[0] += 120
    assert registry.evict_idle() == 0
    assert not busy.closed

    registry.teardown_all()
    await busy.settle()
