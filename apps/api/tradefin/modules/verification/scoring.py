"""Reference risk scorer served by the verification router.

Mirrors the minimal scoring rules of the hosted verification service so a
development deployment can point VERIFICATION_API_URL at itself.
"""

from __future__ import annotations

import structlog

from tradefin.modules.verification.schemas import MinimalVerificationRequest

logger = structlog.get_logger()

HIGH_AMOUNT_THRESHOLD = 100_000
HIGH_RISK_COUNTRIES = frozenset({"unknown"})
MAX_RISK = 99
GOLD_RISK_FLOOR = 25

ERROR_RESULT = "0,99,ERROR"


def score_minimal(request: MinimalVerificationRequest) -> str:
    """Return the comma-joined ``valid,risk,rating`` triple for an invoice."""
    try:
        return _score(request)
    except (TypeError, ValueError) as exc:
        logger.warning("verification.score_failed", invoice_id=request.invoice_id, error=str(exc))
        return ERROR_RESULT


def _score(request: MinimalVerificationRequest) -> str:
    last_digit = int(request.invoice_id) % 10
    amount = request.amount if request.amount is not None else 50_000
    commodity = (request.commodity or "").lower()
    supplier_country = (request.supplier_country or "Unknown").lower()

    if last_digit < 3:
        is_valid, risk, rating = 1, 25, "A"
    elif last_digit < 7:
        is_valid, risk, rating = 1, 35, "B"
    else:
        is_valid, risk, rating = 0, 75, "C"

    if amount > HIGH_AMOUNT_THRESHOLD:
        risk = min(risk + 10, MAX_RISK)

    if "gold" in commodity:
        risk = max(risk - 5, GOLD_RISK_FLOOR)
        if rating == "C":
            rating = "B"

    if supplier_country in HIGH_RISK_COUNTRIES:
        risk = min(risk + 15, MAX_RISK)

    return f"{is_valid},{risk},{rating}"
