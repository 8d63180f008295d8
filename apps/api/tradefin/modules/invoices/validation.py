"""Draft completeness checks, run before any network or store call."""

from __future__ import annotations

import hashlib
import json
import re
from decimal import Decimal

from tradefin.core.errors import InputError
from tradefin.models.enums import REQUIRED_DOCUMENTS, DocumentType
from tradefin.modules.invoices.schemas import InvoiceDraft

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

_REQUIRED_TEXT = (
    "supplier_address",
    "buyer_address",
    "commodity",
    "supplier_country",
    "buyer_country",
    "exporter_name",
    "buyer_name",
)


def document_hash_for(documents: dict[DocumentType, str]) -> str:
    """SHA-256 over the canonicalised document map."""
    canonical = json.dumps({k.value: v for k, v in documents.items()}, sort_keys=True)
    return hashlib.sha256(canonical.encode()).hexdigest()


def validate_draft(
    draft: InvoiceDraft,
    now_epoch: int,
    min_amount: Decimal,
    max_amount: Decimal,
) -> None:
    """Raise InputError listing every problem with ``draft``."""
    errors: dict[str, str] = {}

    for field in _REQUIRED_TEXT:
        if not getattr(draft, field).strip():
            errors[field] = "This field is required"

    for field in ("supplier_address", "buyer_address"):
        value = getattr(draft, field).strip()
        if value and not ADDRESS_RE.match(value):
            errors[field] = "Must be a 0x-prefixed 20-byte hex address"

    if (
        "supplier_address" not in errors
        and "buyer_address" not in errors
        and draft.supplier_address.lower() == draft.buyer_address.lower()
    ):
        errors["buyer_address"] = "Buyer must differ from supplier"

    if draft.amount is None:
        errors["amount"] = "This field is required"
    elif draft.amount <= 0:
        errors["amount"] = "Amount must be greater than zero"
    elif draft.amount < min_amount:
        errors["amount"] = f"Minimum amount is {min_amount}"
    elif draft.amount > max_amount:
        errors["amount"] = f"Maximum amount is {max_amount}"
    elif draft.amount.as_tuple().exponent < -6:
        errors["amount"] = "At most 6 decimal places"

    if draft.due_date_epoch is None:
        errors["due_date_epoch"] = "This field is required"
    elif draft.due_date_epoch <= now_epoch:
        errors["due_date_epoch"] = "Due date must be in the future"

    missing = sorted(d.value for d in REQUIRED_DOCUMENTS if not draft.documents.get(d))
    if missing:
        errors["documents"] = "Missing required documents: " + ", ".join(missing)

    if not draft.document_hash.strip() and not draft.documents:
        errors["document_hash"] = "This field is required"

    if errors:
        raise InputError(errors)
