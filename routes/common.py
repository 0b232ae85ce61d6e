from schemas.purchase import PurchaseOutcomeOut
from services.purchase import PromotionPurchase, PurchaseOutcome


def confirmation(confirmed: bool):
    """The client shows the confirmation dialog and reports the answer."""
    def _confirm(purchase: PromotionPurchase) -> bool:
        return confirmed
    return _confirm


def render_outcome(outcome: PurchaseOutcome) -> PurchaseOutcomeOut:
    # Failed purchases are rendered by the MarketplaceError handler
    if outcome.error is not None:
        raise outcome.error
    return PurchaseOutcomeOut(
        status=outcome.status,
        code=outcome.code,
        message=outcome.message,
        kind=outcome.purchase.kind.value if outcome.purchase else None,
        amount_charged=float(outcome.amount_charged),
        balance_after=float(outcome.balance_after) if outcome.balance_after is not None else None,
        detail=outcome.detail,
    )
