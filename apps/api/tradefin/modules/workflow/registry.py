"""In-process registry of live submission workflows.

Workflows nobody has touched for ``idle_ttl`` seconds, and that have no timer
or poll still running, are torn down and dropped whenever a new one is created.
"""

from __future__ import annotations

import time
from collections.abc import Callable

import structlog

from tradefin.core.errors import WorkflowNotFound
from tradefin.modules.workflow.machine import SubmissionWorkflow

logger = structlog.get_logger()


class WorkflowRegistry:
    def __init__(
        self,
        factory: Callable[[], SubmissionWorkflow],
        idle_ttl: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._factory = factory
        self._idle_ttl = idle_ttl
        self._clock = clock
        self._workflows: dict[str, SubmissionWorkflow] = {}
        self._last_seen: dict[str, float] = {}

    def create(self) -> SubmissionWorkflow:
        self.evict_idle()
        workflow = self._factory()
        self._workflows[workflow.id] = workflow
        self._last_seen[workflow.id] = self._clock()
        logger.info("workflow.created", workflow_id=workflow.id, invoice_id=workflow.invoice_id)
        return workflow

    def get(self, workflow_id: str) -> SubmissionWorkflow:
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFound(f"Workflow {workflow_id} not found")
        self._last_seen[workflow_id] = self._clock()
        return workflow

    def teardown(self, workflow_id: str) -> None:
        self.get(workflow_id).teardown()
        self._forget(workflow_id)

    def teardown_all(self) -> None:
        for workflow in self._workflows.values():
            workflow.teardown()
        self._workflows.clear()
        self._last_seen.clear()

    def evict_idle(self) -> int:
        cutoff = self._clock() - self._idle_ttl
        idle = [
            workflow
            for workflow_id, workflow in self._workflows.items()
            if self._last_seen[workflow_id] < cutoff and not workflow.has_pending_work
        ]
        for workflow in idle:
            workflow.teardown()
            self._forget(workflow.id)
        if idle:
            logger.info("workflow.evicted", count=len(idle), remaining=len(self._workflows))
        return len(idle)

    def _forget(self, workflow_id: str) -> None:
        del self._workflows[workflow_id]
        del self._last_seen[workflow_id]

    def __len__(self) -> int:
        return len(self._workflows)
