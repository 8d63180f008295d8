"""Submission workflow state machine driving one invoice from draft to listing.

    form → submitting → verifying → verified → ready_for_investment → submitting → completed
                                            ↘ completed (rejected)

Every task the workflow starts (timers, polls, and the submission and listing
calls themselves) belongs to the current *generation*. ``reset`` and
``teardown`` bump the generation and cancel what is running, so a late
callback from an earlier generation can never mutate state.
"""

from __future__ import annotations

import asyncio
import enum
import uuid
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, TypeVar

import structlog

from tradefin.core.errors import FundingEngineError, InvalidTransition
from tradefin.core.polling import PollHandle, PollState
from tradefin.models.enums import DocumentType
from tradefin.modules.invoices.orchestrator import SubmissionOrchestrator, new_invoice_id
from tradefin.modules.invoices.schemas import InvoiceDraft, SubmissionOutcome
from tradefin.modules.ledger.port import LedgerGateway, TxReceipt
from tradefin.modules.verification.schemas import VerificationResult

logger = structlog.get_logger()

T = TypeVar("T")


class WorkflowState(str, enum.Enum):
    FORM = "form"
    SUBMITTING = "submitting"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    READY_FOR_INVESTMENT = "ready_for_investment"
    COMPLETED = "completed"


PROGRESS: dict[WorkflowState, int] = {
    WorkflowState.FORM: 0,
    WorkflowState.SUBMITTING: 25,
    WorkflowState.VERIFYING: 40,
    WorkflowState.VERIFIED: 60,
    WorkflowState.READY_FOR_INVESTMENT: 75,
    WorkflowState.COMPLETED: 100,
}


class SubmissionWorkflow:
    def __init__(
        self,
        orchestrator: SubmissionOrchestrator,
        gateway: LedgerGateway,
        *,
        investment_module_address: str,
        advance_delay: float = 2.0,
        poll_attempts: int = 30,
        poll_interval: float = 4.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.id = str(uuid.uuid4())
        self._orchestrator = orchestrator
        self._gateway = gateway
        self._investment_module = investment_module_address
        self._advance_delay = advance_delay
        self._poll_attempts = poll_attempts
        self._poll_interval = poll_interval
        self._sleep = sleep

        self._generation = 0
        self._tasks: set[asyncio.Task] = set()
        self._poll: PollHandle[VerificationResult] | None = None
        self.closed = False
        self._fresh()

    def _fresh(self) -> None:
        self.state = WorkflowState.FORM
        self.invoice_id = new_invoice_id()
        self.draft = InvoiceDraft()
        self.outcome: SubmissionOutcome | None = None
        self.last_error: str | None = None
        self.verification_timed_out = False
        self.listing_tx_ref: str | None = None

    # ── Introspection ────────────────────────────────────────────────────────

    @property
    def progress(self) -> int:
        return PROGRESS[self.state]

    @property
    def verification(self) -> VerificationResult | None:
        return self.outcome.verification if self.outcome else None

    @property
    def has_pending_work(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def settle(self) -> None:
        """Wait for the current timers and polls to finish (used by tests and shutdown)."""
        while self.has_pending_work:
            await asyncio.wait(set(self._tasks))

    # ── Form ─────────────────────────────────────────────────────────────────

    def update_form(self, fields: dict[str, Any]) -> None:
        self._require(WorkflowState.FORM, "edit the form")
        self.draft = InvoiceDraft.model_validate({**self.draft.model_dump(), **fields})

    def attach_document(self, doc_type: DocumentType, content_hash: str) -> None:
        self._require(WorkflowState.FORM, "attach documents")
        self.draft = self.draft.model_copy(update={"documents": {**self.draft.documents, doc_type: content_hash}})

    # ── Submission ───────────────────────────────────────────────────────────

    async def submit(self) -> SubmissionOutcome:
        self._require(WorkflowState.FORM, "submit")
        # Incomplete drafts stay in the form
        self._orchestrator.validate(self.draft)

        generation = self._generation
        self._move(WorkflowState.SUBMITTING)
        self.last_error = None
        try:
            outcome = await self._owned(
                self._orchestrator.submit(self.draft, invoice_id=self.invoice_id), generation
            )
        except FundingEngineError as exc:
            if self._current(generation):
                self.last_error = exc.message
                self._move(WorkflowState.FORM)
            raise

        if not self._current(generation):
            return outcome
        self.outcome = outcome
        self._move(WorkflowState.VERIFYING)

        if outcome.verification_pending and outcome.verification_ref:
            self._start_poll(outcome.verification_ref, generation)
        else:
            self._on_verified(generation)
        return outcome

    def _start_poll(self, verification_ref: str, generation: int) -> None:
        verifier = self._orchestrator.verifier
        self._poll = PollHandle(
            lambda: verifier.get_status(verification_ref),
            attempts=self._poll_attempts,
            interval=self._poll_interval,
            name=f"verification:{self.invoice_id}",
            sleep=self._sleep,
        ).start()
        self._spawn(self._await_poll(self._poll, generation))

    async def _await_poll(self, handle: PollHandle[VerificationResult], generation: int) -> None:
        state = await handle.wait()
        if not self._current(generation):
            return
        if state is PollState.TIMED_OUT:
            # Unknown, check later: stay in verifying
            self.verification_timed_out = True
            logger.warning("workflow.verification_timed_out", workflow_id=self.id, invoice_id=self.invoice_id)
            return
        if state is not PollState.SUCCEEDED or handle.value is None:
            return

        try:
            outcome = await self._orchestrator.complete_verification(self.invoice_id, handle.value)
        except FundingEngineError as exc:
            if self._current(generation):
                self.last_error = exc.message
            logger.error("workflow.verification_attach_failed", workflow_id=self.id, error=exc.message)
            return
        if self._current(generation):
            self.outcome = outcome
            self._on_verified(generation)

    def _on_verified(self, generation: int) -> None:
        self._move(WorkflowState.VERIFIED)
        self._spawn(self._auto_advance(generation))

    async def _auto_advance(self, generation: int) -> None:
        await self._sleep(self._advance_delay)
        if not self._current(generation) or self.state is not WorkflowState.VERIFIED:
            return
        verification = self.verification
        if verification is not None and verification.is_valid:
            self._move(WorkflowState.READY_FOR_INVESTMENT)
        else:
            self._move(WorkflowState.COMPLETED)

    # ── Listing for investment ───────────────────────────────────────────────

    async def list_for_investment(self) -> SubmissionOutcome:
        """Approve the investment module's allowance and make sure the invoice is on the ledger."""
        self._require(WorkflowState.READY_FOR_INVESTMENT, "list for investment")
        generation = self._generation
        self._move(WorkflowState.SUBMITTING)
        self.last_error = None
        try:
            approval, outcome = await self._owned(
                self._approve_and_anchor(self.invoice_id, self.draft), generation
            )
        except FundingEngineError as exc:
            if self._current(generation):
                self.last_error = exc.message
                self._move(WorkflowState.READY_FOR_INVESTMENT)
            raise

        if not self._current(generation):
            return outcome
        self.outcome = outcome
        self.listing_tx_ref = approval.tx_ref
        if outcome.ledger_anchored:
            self._move(WorkflowState.COMPLETED)
        else:
            self.last_error = outcome.ledger_error
            self._move(WorkflowState.READY_FOR_INVESTMENT)
        return outcome

    async def _approve_and_anchor(
        self, invoice_id: str, draft: InvoiceDraft
    ) -> tuple[TxReceipt, SubmissionOutcome]:
        approval = await self._gateway.approve(
            draft.supplier_address, self._investment_module, draft.amount
        )
        return approval, await self._orchestrator.reanchor(invoice_id)

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def reset(self) -> None:
        """Cancel outstanding work and start over with a fresh form and identifier."""
        if self.closed:
            raise InvalidTransition("Workflow has been torn down")
        self._cancel_all()
        self._fresh()
        logger.info("workflow.reset", workflow_id=self.id, invoice_id=self.invoice_id)

    def teardown(self) -> None:
        if self.closed:
            return
        self._cancel_all()
        self.closed = True
        logger.info("workflow.torn_down", workflow_id=self.id, state=self.state.value)

    def _cancel_all(self) -> None:
        self._generation += 1
        if self._poll is not None:
            self._poll.cancel()
            self._poll = None
        for task in self._tasks:
            task.cancel()

    # ── Internals ────────────────────────────────────────────────────────────

    def _current(self, generation: int) -> bool:
        return not self.closed and generation == self._generation

    def _require(self, state: WorkflowState, action: str) -> None:
        if self.closed:
            raise InvalidTransition("Workflow has been torn down")
        if self.state is not state:
            raise InvalidTransition(f"Cannot {action} while {self.state.value}")

    def _move(self, state: WorkflowState) -> None:
        logger.info(
            "workflow.transition",
            workflow_id=self.id,
            invoice_id=self.invoice_id,
            from_state=self.state.value,
            to_state=state.value,
        )
        self.state = state

    def _spawn(self, coro: Coroutine[Any, Any, T]) -> asyncio.Task[T]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _owned(self, coro: Coroutine[Any, Any, T], generation: int) -> T:
        """Await ``coro`` as a workflow task so reset and teardown cancel it mid-flight."""
        task = self._spawn(coro)
        try:
            return await task
        except asyncio.CancelledError:
            if task.cancelled() and not self._current(generation):
                raise InvalidTransition("Workflow was reset or torn down while submitting") from None
            raise
