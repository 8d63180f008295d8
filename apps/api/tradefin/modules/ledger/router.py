"""Ledger API router: stablecoin balances and allowances."""

import structlog
from fastapi import APIRouter, Depends

from tradefin.core.errors import InputError
from tradefin.core.services import Services, get_services
from tradefin.modules.invoices.validation import ADDRESS_RE
from tradefin.modules.ledger.schemas import ApproveRequest, ApproveResponse, BalanceResponse

logger = structlog.get_logger()

router = APIRouter(prefix="/ledger", tags=["ledger"])


def _check_address(field: str, value: str) -> None:
    if not ADDRESS_RE.match(value):
        raise InputError({field: "Must be a 0x-prefixed 20-byte hex address"})


@router.get("/balances/{address}", response_model=BalanceResponse)
async def get_balance(
    address: str,
    services: Services = Depends(get_services),
):
    _check_address("address", address)
    spender = services.approval_spender
    return BalanceResponse(
        address=address,
        balance=await services.gateway.balance_of(address),
        allowance=await services.gateway.allowance(address, spender),
        spender=spender,
    )


@router.post("/approve", response_model=ApproveResponse)
async def approve(
    body: ApproveRequest,
    services: Services = Depends(get_services),
):
    """Grant the protocol (or another spender) a stablecoin allowance."""
    spender = body.spender_address or services.approval_spender
    _check_address("owner_address", body.owner_address)
    _check_address("spender_address", spender)
    receipt = await services.gateway.approve(body.owner_address, spender, body.amount)
    logger.info("ledger.approved", owner=body.owner_address, spender=spender, amount=str(body.amount))
    return ApproveResponse(
        owner_address=body.owner_address,
        spender_address=spender,
        amount=body.amount,
        tx_ref=receipt.tx_ref,
        block_ref=receipt.block_ref,
    )
