"""Ledger: Pydantic schemas."""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field


class BalanceResponse(BaseModel):
    address: str
    balance: Decimal
    allowance: Decimal  # granted to the protocol contract
    spender: str


class ApproveRequest(BaseModel):
    owner_address: str
    amount: Decimal = Field(ge=0)
    spender_address: str | None = None  # defaults to the protocol contract


class ApproveResponse(BaseModel):
    owner_address: str
    spender_address: str
    amount: Decimal
    tx_ref: str
    block_ref: str | None = None
