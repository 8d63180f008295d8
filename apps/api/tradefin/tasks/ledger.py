"""Celery task: re-anchor valid invoices the ledger does not know yet.

Submissions never fail on a ledger outage; the invoice is stored with
``ledger_anchored = false``. This job gives each such invoice a fresh round
of anchoring attempts.
"""

from __future__ import annotations

import asyncio

import structlog
from celery import shared_task

logger = structlog.get_logger()


@shared_task(name="tasks.reconcile_ledger_anchors", bind=True, max_retries=3, default_retry_delay=300)
def reconcile_ledger_anchors(self, limit: int | None = None) -> dict:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
    from sqlalchemy.pool import NullPool

    from tradefin.core.config import settings
    from tradefin.core.services import build_services

    batch = limit or settings.RECONCILE_BATCH_SIZE

    async def _run() -> dict:
        # Each task run owns its event loop, so it gets its own engine.
        engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
        try:
            session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            services = build_services(session_factory)
            result = await services.orchestrator.reconcile_unanchored(batch)
            logger.info("ledger_reconcile_task.complete", **result.model_dump())
            return {"status": "ok", **result.model_dump()}
        except Exception as exc:
            logger.error("ledger_reconcile_task.failed", error=str(exc))
            raise
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_run())
    except Exception as exc:
        raise self.retry(exc=exc)
