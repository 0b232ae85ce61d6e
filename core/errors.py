"""Domain error taxonomy.

Services raise these; the HTTP layer renders them through a single exception
handler and the purchase flow converts them into a ``PurchaseOutcome``.
"""
from decimal import Decimal
from typing import Any, Dict

from fastapi import status


class MarketplaceError(Exception):
    code = "error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **detail: Any):
        super().__init__(message)
        self.message = message
        self.detail: Dict[str, Any] = detail

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"detail": self.message, "code": self.code}
        for key, value in self.detail.items():
            payload[key] = float(value) if isinstance(value, Decimal) else value
        return payload


class ValidationError(MarketplaceError):
    code = "validation_error"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class AuthorizationError(MarketplaceError):
    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class PreconditionError(MarketplaceError):
    code = "precondition_failed"
    status_code = status.HTTP_409_CONFLICT


class NotFoundError(PreconditionError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class StoreLimitError(PreconditionError):
    code = "store_limit_reached"

    def __init__(self, limit: int, owned: int):
        super().__init__(
            f"Store limit reached ({owned}/{limit}). Manage an existing store instead.",
            limit=limit,
            owned=owned,
        )


class ActiveListingsError(PreconditionError):
    code = "active_listings_remain"

    def __init__(self, active_listings: int):
        super().__init__(
            f"Store has {active_listings} active listings. Please delete all listings first.",
            active_listings=active_listings,
        )


class QuotaExceededError(PreconditionError):
    code = "ads_quota_exceeded"

    def __init__(self, used: int, max_ads: int):
        super().__init__(f"Store listing limit reached ({used}/{max_ads})", used=used, max_ads=max_ads)


class PurchaseInProgressError(PreconditionError):
    code = "purchase_in_progress"

    def __init__(self):
        super().__init__("Another payment is already being processed. Please wait.")


class InsufficientFundsError(MarketplaceError):
    code = "insufficient_funds"
    status_code = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(self, required: Decimal, available: Decimal):
        shortfall = required - available
        super().__init__(
            f"Insufficient balance: {shortfall} more is required",
            required=required,
            available=available,
            shortfall=shortfall,
        )
        self.shortfall = shortfall


class PaymentError(MarketplaceError):
    code = "payment_failed"
    status_code = status.HTTP_402_PAYMENT_REQUIRED


class TransientError(MarketplaceError):
    code = "transient_failure"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
