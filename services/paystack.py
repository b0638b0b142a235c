import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict

import requests

from core.config import settings
from services.checkout_errors import ConfigurationError, PaymentVerificationFailed

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass
class VerifiedPayment:
    reference: str
    amount: Decimal  # major currency units
    payload: Dict[str, Any] = field(default_factory=dict)


def _headers() -> Dict[str, str]:
    if not settings.PAYSTACK_SECRET_KEY:
        raise ConfigurationError("Server misconfigured: missing Paystack keys")
    return {
        "Authorization": f"Bearer {settings.PAYSTACK_SECRET_KEY}",
        "Content-Type": "application/json",
    }


def to_major_units(minor: int | str) -> Decimal:
    """Paystack reports amounts in pesewas/kobo; convert to 2dp currency units."""
    return (Decimal(str(minor)) / 100).quantize(CENTS, rounding=ROUND_HALF_UP)


def verify_transaction(reference: str) -> Dict[str, Any]:
    """Raw verify call. Paystack answers 4xx with a JSON body for unknown references."""
    headers = _headers()
    try:
        resp = requests.get(
            f"{settings.PAYSTACK_BASE_URL}/transaction/verify/{reference}",
            headers=headers,
            timeout=settings.PAYSTACK_TIMEOUT_SECONDS,
        )
        return resp.json()
    except (requests.RequestException, ValueError) as exc:
        logger.error("Paystack verify request failed for %s: %s", reference, exc)
        raise PaymentVerificationFailed(f"Paystack verification failed: {exc}") from exc


def verify_payment(reference: str) -> VerifiedPayment:
    logger.info("Verifying reference: %s", reference)
    resp = verify_transaction(reference)
    data = resp.get("data") or {}
    if not resp.get("status") or data.get("status") != "success":
        logger.error("Paystack Verify Failed: %s", resp)
        raise PaymentVerificationFailed("Paystack verification failed: Transaction not successful")
    return VerifiedPayment(
        reference=data.get("reference") or reference,
        amount=to_major_units(data.get("amount", 0)),
        payload=data,
    )
