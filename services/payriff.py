import logging
import uuid
from decimal import Decimal
from typing import Any, Dict

import requests

from core.config import settings

logger = logging.getLogger(__name__)

SUCCESS_CODE = "00000"
# Gateway order states mapped onto the few the wallet cares about
STATUS_MAP = {
    "APPROVED": "approved",
    "PAID": "approved",
    "SUCCESS": "approved",
    "CREATED": "pending",
    "PREAUTH": "pending",
    "PENDING": "pending",
    "DECLINED": "declined",
    "REVERSED": "cancelled",
    "CANCELED": "cancelled",
    "CANCELLED": "cancelled",
    "EXPIRED": "cancelled",
}


def _headers() -> Dict[str, str]:
    return {
        "Authorization": settings.PAYRIFF_SECRET_KEY,
        "Content-Type": "application/json",
    }


def is_configured() -> bool:
    """Both merchant id and secret key are set to something other than a placeholder."""
    merchant_id = settings.PAYRIFF_MERCHANT_ID
    secret_key = settings.PAYRIFF_SECRET_KEY
    return bool(merchant_id and secret_key and "your-" not in merchant_id and "your-" not in secret_key)


def new_order_id() -> str:
    return f"topup-{uuid.uuid4().hex}"


def create_payment(amount: Decimal, currency: str, description: str, order_id: str | None = None, language: str = "AZ") -> Dict[str, Any]:
    """Open a gateway order. Returns ``{success, payment_url, order_id}`` or ``{success, error}``."""
    if not is_configured():
        logger.error("Payriff credentials not configured")
        return {"success": False, "error": "Payment gateway is not configured", "raw": {}}
    payload = {
        "amount": float(amount),  # main currency units, not qəpik
        "currency": currency,
        "description": description,
        "language": language.upper(),
        "callbackUrl": settings.PAYRIFF_CALLBACK_URL,
        "operation": "PURCHASE",
        "cardSave": False,
        "metadata": {"orderId": order_id} if order_id else {},
    }
    try:
        resp = requests.post(f"{settings.PAYRIFF_BASE_URL}/orders", json=payload, headers=_headers(), timeout=20)
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as exc:
        logger.error("Payriff order creation failed: %s", exc)
        return {"success": False, "error": str(exc), "raw": {}}

    body = data.get("payload") or {}
    if data.get("code") != SUCCESS_CODE or not body.get("paymentUrl"):
        logger.error("Payriff rejected order %s: %s", order_id, data.get("message"))
        return {"success": False, "error": data.get("message") or "Payment could not be created", "raw": data}

    logger.info(
        "Payriff order %s created for %s %s (merchant %s)",
        body.get("orderId"),
        amount,
        currency,
        settings.PAYRIFF_MERCHANT_ID,
    )
    return {
        "success": True,
        "payment_url": body["paymentUrl"],
        "order_id": str(body.get("orderId") or order_id),
        "raw": data,
    }


def check_status(order_id: str) -> str:
    """One of approved, pending, declined, cancelled or unknown."""
    if not is_configured():
        logger.error("Payriff credentials not configured")
        return "unknown"
    try:
        resp = requests.get(
            f"{settings.PAYRIFF_BASE_URL}/orders/{order_id}",
            params={"merchantId": settings.PAYRIFF_MERCHANT_ID},
            headers=_headers(),
            timeout=20,
        )
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as exc:
        logger.error("Payriff status check for %s failed: %s", order_id, exc)
        return "unknown"

    if data.get("code") != SUCCESS_CODE:
        return "unknown"
    gateway_status = str((data.get("payload") or {}).get("paymentStatus") or "").upper()
    return STATUS_MAP.get(gateway_status, "unknown")
