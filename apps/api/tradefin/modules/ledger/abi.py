"""Contract ABI fragments used by the web3 adapter."""

from __future__ import annotations

from typing import Any

# Stablecoin carries 6 decimals on chain
STABLECOIN_DECIMALS = 6

PROTOCOL_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "submitInvoice",
        "inputs": [
            {"name": "buyer", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "commodity", "type": "string"},
            {"name": "supplierCountry", "type": "string"},
            {"name": "buyerCountry", "type": "string"},
            {"name": "exporterName", "type": "string"},
            {"name": "buyerName", "type": "string"},
            {"name": "dueDate", "type": "uint256"},
            {"name": "documentHash", "type": "string"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "getInvoice",
        "inputs": [{"name": "invoiceId", "type": "uint256"}],
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "id", "type": "uint256"},
                    {"name": "supplier", "type": "address"},
                    {"name": "buyer", "type": "address"},
                    {"name": "amount", "type": "uint256"},
                    {"name": "commodity", "type": "string"},
                    {"name": "supplierCountry", "type": "string"},
                    {"name": "buyerCountry", "type": "string"},
                    {"name": "exporterName", "type": "string"},
                    {"name": "buyerName", "type": "string"},
                    {"name": "dueDate", "type": "uint256"},
                    {"name": "aprBasisPoints", "type": "uint256"},
                    {"name": "status", "type": "uint8"},
                    {"name": "createdAt", "type": "uint256"},
                    {"name": "documentVerified", "type": "bool"},
                    {"name": "targetFunding", "type": "uint256"},
                    {"name": "currentFunding", "type": "uint256"},
                    {"name": "documentHash", "type": "string"},
                    {"name": "riskScore", "type": "uint256"},
                    {"name": "creditRating", "type": "string"},
                ],
            }
        ],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "investInInvoice",
        "inputs": [
            {"name": "invoiceId", "type": "uint256"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "invoiceCounter",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
    {
        "type": "event",
        "name": "InvoiceSubmitted",
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "invoiceId", "type": "uint256"},
            {"indexed": True, "name": "supplier", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
        ],
    },
]

STABLECOIN_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "approve",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "allowance",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "balanceOf",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
]
