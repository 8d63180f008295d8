"""FundingLedger: verified invoices as investable opportunities.

Investments into one opportunity are serialized in-process by a per-opportunity
asyncio.Lock. Across processes the row lock (SELECT ... FOR UPDATE) and the
opportunity's version counter make a concurrent writer fail instead of
overwriting, so ``current_funding`` never exceeds ``target_funding``.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import AsyncIterator, Callable
from decimal import Decimal

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from tradefin.core.errors import (
    FundingExceeded,
    InputError,
    LedgerReverted,
    OpportunityNotFound,
    StoreUnavailable,
)
from tradefin.models.enums import InvestmentStatus, OpportunityStatus
from tradefin.models.funding import Investment, Opportunity
from tradefin.models.invoices import Invoice
from tradefin.modules.funding import pricing
from tradefin.modules.funding.schemas import InvestResult
from tradefin.modules.invoices.validation import ADDRESS_RE
from tradefin.modules.ledger.port import LedgerGateway

logger = structlog.get_logger()

# Off-chain commit retries when another process bumped the version first
MAX_COMMIT_ATTEMPTS = 3


class FundingLedger:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: LedgerGateway,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session_factory = session_factory
        self._gateway = gateway
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def _serialized(self, invoice_id: str) -> AsyncIterator[None]:
        """Hold the opportunity's lock; the entry is dropped once nobody holds or awaits it."""
        lock = self._locks.get(invoice_id)
        if lock is None:
            lock = self._locks[invoice_id] = asyncio.Lock()
        self._lock_users[invoice_id] = self._lock_users.get(invoice_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[invoice_id] -= 1
            if not self._lock_users[invoice_id]:
                del self._lock_users[invoice_id]
                del self._locks[invoice_id]

    # ── Opportunities ────────────────────────────────────────────────────────

    async def ensure_opportunity(self, invoice: Invoice) -> Opportunity | None:
        """Create the opportunity for a valid invoice if it does not exist yet.

        Anchoring on the ledger is not required: validity alone makes an
        invoice investable.
        """
        if invoice.is_valid is not True or invoice.risk_score is None:
            return None
        try:
            async with self._session_factory() as db:
                existing = await db.get(Opportunity, invoice.id)
                if existing is not None:
                    return existing
                opportunity = _new_opportunity(invoice)
                db.add(opportunity)
                try:
                    await db.commit()
                    await db.refresh(opportunity, ["invoice"])
                except IntegrityError:
                    # Created concurrently by another caller
                    await db.rollback()
                    return await db.get(Opportunity, invoice.id)
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"Could not create opportunity for {invoice.id}") from exc

        logger.info(
            "funding.opportunity_created",
            invoice_id=invoice.id,
            target_funding=str(opportunity.target_funding),
            apr_bp=opportunity.apr_basis_points,
        )
        return opportunity

    async def sync_opportunities(self) -> int:
        """Create opportunities for every valid invoice that lacks one."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(Invoice)
                .outerjoin(Opportunity, Opportunity.invoice_id == Invoice.id)
                .where(Invoice.is_valid.is_(True), Opportunity.invoice_id.is_(None))
            )
            missing = list(result.scalars().all())
        created = 0
        for invoice in missing:
            if await self.ensure_opportunity(invoice) is not None:
                created += 1
        return created

    async def list_opportunities(self, status: OpportunityStatus | None = None) -> list[Opportunity]:
        await self.sync_opportunities()
        async with self._session_factory() as db:
            stmt = select(Opportunity).order_by(Opportunity.created_at.desc())
            if status is not None:
                stmt = stmt.where(Opportunity.status == status)
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def get(self, invoice_id: str) -> Opportunity:
        async with self._session_factory() as db:
            opportunity = await db.get(Opportunity, invoice_id)
            invoice = None if opportunity is not None else await db.get(Invoice, invoice_id)
        if opportunity is not None:
            return opportunity
        if invoice is not None:
            opportunity = await self.ensure_opportunity(invoice)
            if opportunity is not None:
                return opportunity
        raise OpportunityNotFound(f"No investment opportunity for invoice {invoice_id}")

    async def investor_count(self, invoice_id: str) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                select(func.count(func.distinct(Investment.investor_address))).where(
                    Investment.invoice_id == invoice_id
                )
            )
            return int(result.scalar_one())

    async def investments_for(self, investor_address: str) -> list[Investment]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Investment)
                .where(func.lower(Investment.investor_address) == investor_address.lower())
                .order_by(Investment.invested_at_epoch.desc(), Investment.created_at.desc())
            )
            return list(result.scalars().all())

    # ── Investing ────────────────────────────────────────────────────────────

    async def invest(
        self,
        invoice_id: str,
        investor_address: str,
        amount: Decimal,
        idempotency_key: str | None = None,
    ) -> InvestResult:
        """Record one investment into ``invoice_id`` on behalf of ``investor_address``.

        Raises FundingExceeded before any ledger call when ``amount`` does not fit
        the remaining target, LedgerReverted for self-investment, and any
        LedgerError from the on-chain call unchanged (never retried here).
        """
        errors: dict[str, str] = {}
        if amount is None or amount <= 0:
            errors["amount"] = "Amount must be greater than zero"
        if not ADDRESS_RE.match(investor_address or ""):
            errors["investor_address"] = "Must be a 0x-prefixed 20-byte hex address"
        if errors:
            raise InputError(errors)

        log = logger.bind(invoice_id=invoice_id, investor=investor_address, amount=str(amount))

        async with self._serialized(invoice_id):
            if idempotency_key:
                replay = await self._replay(idempotency_key, invoice_id, investor_address, amount)
                if replay is not None:
                    log.info("funding.invest_replayed", idempotency_key=idempotency_key)
                    return replay

            opportunity = await self.get(invoice_id)
            invoice = opportunity.invoice

            if investor_address.lower() == invoice.supplier_address.lower():
                raise LedgerReverted("Supplier cannot invest in own invoice")
            _check_capacity(opportunity, amount)

            tx_ref: str | None = None
            if invoice.ledger_anchored and invoice.ledger_invoice_ref:
                receipt = await self._gateway.invest(invoice.ledger_invoice_ref, investor_address, amount)
                tx_ref = receipt.tx_ref
            else:
                log.info("funding.invest_off_chain_only", reason="invoice not anchored")

            result = await self._commit(
                invoice, amount, investor_address, tx_ref, idempotency_key
            )

        log.info(
            "funding.invested",
            tx_ref=tx_ref,
            current_funding=str(result.current_funding),
            funding_pct=str(result.funding_percentage),
            status=result.opportunity_status.value,
        )
        return result

    async def _commit(
        self,
        invoice: Invoice,
        amount: Decimal,
        investor_address: str,
        tx_ref: str | None,
        idempotency_key: str | None,
    ) -> InvestResult:
        for attempt in range(1, MAX_COMMIT_ATTEMPTS + 1):
            try:
                async with self._session_factory() as db:
                    result = await db.execute(
                        select(Opportunity)
                        .where(Opportunity.invoice_id == invoice.id)
                        .with_for_update()
                    )
                    opportunity = result.scalar_one()
                    _check_capacity(opportunity, amount)

                    opportunity.current_funding = opportunity.current_funding + amount
                    opportunity.status = pricing.status_for(
                        opportunity.current_funding, opportunity.target_funding
                    )
                    investment = Investment(
                        investor_address=investor_address,
                        invoice_id=invoice.id,
                        amount_invested=amount,
                        expected_return=pricing.expected_return(amount, opportunity.apr_basis_points),
                        invested_at_epoch=int(self._clock()),
                        maturity_epoch=invoice.due_date_epoch,
                        status=InvestmentStatus.ACTIVE,
                        tx_ref=tx_ref,
                        idempotency_key=idempotency_key,
                    )
                    db.add(investment)
                    await db.commit()
                    return _result(investment, opportunity)
            except StaleDataError:
                logger.warning("funding.commit_conflict", invoice_id=invoice.id, attempt=attempt)
                continue
            except FundingExceeded:
                if tx_ref:
                    logger.error("funding.ledger_ahead_of_store", invoice_id=invoice.id, tx_ref=tx_ref)
                raise
            except SQLAlchemyError as exc:
                logger.error(
                    "funding.commit_failed",
                    invoice_id=invoice.id,
                    tx_ref=tx_ref,
                    error=str(exc),
                )
                raise StoreUnavailable(f"Could not record investment into {invoice.id}") from exc

        raise StoreUnavailable(f"Opportunity {invoice.id} kept changing; investment not recorded")

    async def _replay(
        self, idempotency_key: str, invoice_id: str, investor_address: str, amount: Decimal
    ) -> InvestResult | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Investment).where(Investment.idempotency_key == idempotency_key)
            )
            investment = result.scalar_one_or_none()
            if investment is None:
                return None
            opportunity = await db.get(Opportunity, investment.invoice_id)

        if (
            investment.invoice_id != invoice_id
            or investment.investor_address.lower() != investor_address.lower()
            or investment.amount_invested != amount
        ):
            raise InputError({"idempotency_key": "Key was already used for a different investment"})
        return _result(investment, opportunity, replayed=True)


def _new_opportunity(invoice: Invoice) -> Opportunity:
    return Opportunity(
        invoice_id=invoice.id,
        target_funding=pricing.target_funding(invoice.amount),
        current_funding=Decimal("0"),
        apr_basis_points=pricing.apr_basis_points(invoice.risk_score),
        status=OpportunityStatus.AVAILABLE,
    )


def _check_capacity(opportunity: Opportunity, amount: Decimal) -> None:
    remaining = pricing.remaining_funding(opportunity.current_funding, opportunity.target_funding)
    if opportunity.status == OpportunityStatus.FUNDED or amount > remaining:
        raise FundingExceeded(
            f"Investment of {amount} exceeds remaining funding of {remaining}",
            detail={"remaining_funding": str(remaining), "requested": str(amount)},
        )


def _result(investment: Investment, opportunity: Opportunity, replayed: bool = False) -> InvestResult:
    return InvestResult(
        investment_id=investment.id,
        invoice_id=investment.invoice_id,
        investor_address=investment.investor_address,
        amount_invested=investment.amount_invested,
        expected_return=investment.expected_return,
        invested_at_epoch=investment.invested_at_epoch,
        maturity_epoch=investment.maturity_epoch,
        investment_status=investment.status,
        tx_ref=investment.tx_ref,
        current_funding=opportunity.current_funding,
        target_funding=opportunity.target_funding,
        funding_percentage=pricing.funding_percentage(
            opportunity.current_funding, opportunity.target_funding
        ),
        opportunity_status=opportunity.status,
        replayed=replayed,
    )
