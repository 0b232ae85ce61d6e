"""Paid actions: store creation, renewal, reactivation, listing promotion and
listing discounts.

Every purchase runs the same steps in the same order::

    validate -> balance check -> confirm -> debit -> perform -> commit

The debit and the mutation share one database transaction. If anything fails
after the debit, the transaction is rolled back and the wallet is left as it
was. Errors never escape ``purchase``; they come back as a failed
``PurchaseOutcome`` carrying the typed error.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import settings
from core.errors import (
    InsufficientFundsError,
    MarketplaceError,
    PaymentError,
    TransientError,
    ValidationError,
)
from models.user import User
from services.guard import SubmissionGuard
from services.lifecycle import StoreLifecycleManager
from services.listings import ListingService
from services.plans import get_promotion_package, get_store_plan
from services.wallet import WalletLedger

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Something went wrong and your wallet was not charged. Please try again."


class PurchaseKind(str, Enum):
    STORE_CREATE = "store_create"
    STORE_RENEW = "store_renew"
    STORE_REACTIVATE = "store_reactivate"
    LISTING_PROMOTE = "listing_promote"
    LISTING_DISCOUNT = "listing_discount"


@dataclass(frozen=True)
class PromotionPurchase:
    kind: PurchaseKind
    amount: Decimal
    plan_or_tier_id: Optional[str] = None
    target_id: Optional[int] = None
    description: str = ""
    reference: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass(frozen=True)
class PurchaseQuote:
    purchase: PromotionPurchase
    balance: Decimal
    shortfall: Decimal

    @property
    def sufficient(self) -> bool:
        return self.shortfall <= 0


@dataclass
class PurchaseOutcome:
    status: str  # completed, cancelled, failed
    code: str
    message: str
    purchase: Optional[PromotionPurchase] = None
    amount_charged: Decimal = Decimal("0")
    balance_after: Optional[Decimal] = None
    detail: Dict[str, Any] = field(default_factory=dict)
    result: Any = None
    error: Optional[MarketplaceError] = None

    @property
    def ok(self) -> bool:
        return self.status == "completed"


Confirm = Callable[[PromotionPurchase], bool]
Prepared = Tuple[PromotionPurchase, Callable[[], None], Callable[[], Any]]


def always_confirm(purchase: PromotionPurchase) -> bool:
    return True


class PromotionPurchaseFlow:
    def __init__(
        self,
        db: Session,
        ledger: Optional[WalletLedger] = None,
        guard: Optional[SubmissionGuard] = None,
        lifecycle: Optional[StoreLifecycleManager] = None,
        listings: Optional[ListingService] = None,
    ):
        self.db = db
        self.ledger = ledger or WalletLedger(db)
        self.guard = guard or SubmissionGuard()
        self.lifecycle = lifecycle or StoreLifecycleManager(db)
        self.listings = listings or ListingService(db, self.lifecycle)

    # Generic flow

    def purchase(
        self,
        user: User,
        purchase: PromotionPurchase,
        validate: Callable[[], None],
        perform: Callable[[], Any],
        confirm: Confirm = always_confirm,
    ) -> PurchaseOutcome:
        return self._execute(user, lambda: (purchase, validate, perform), confirm)

    def quote(self, user: User, prepared: Prepared) -> PurchaseQuote:
        """Run validation and the balance check without moving any money."""
        purchase, validate, _ = prepared
        try:
            validate()
            balance = self.ledger.balance(user.id)
        finally:
            self.db.rollback()
        return PurchaseQuote(purchase=purchase, balance=balance, shortfall=max(purchase.amount - balance, Decimal("0")))

    def _execute(self, user: User, prepare: Callable[[], Prepared], confirm: Confirm) -> PurchaseOutcome:
        purchase = None
        try:
            with self.guard.hold(user.id):
                purchase, validate, perform = prepare()
                return self._run(user, purchase, validate, perform, confirm)
        except MarketplaceError as exc:
            self.db.rollback()
            logger.warning(
                "Purchase %s for user %s failed: %s (%s)",
                purchase.kind.value if purchase else "unknown",
                user.id,
                exc.code,
                exc.message,
            )
            return self._failed(purchase, exc)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Storage failure during purchase for user %s", user.id)
            return self._failed(purchase, TransientError(GENERIC_FAILURE, reason=exc.__class__.__name__))
        except Exception as exc:
            self.db.rollback()
            logger.exception("Unexpected failure during purchase for user %s", user.id)
            return self._failed(purchase, MarketplaceError(GENERIC_FAILURE, reason=exc.__class__.__name__))

    def _run(
        self,
        user: User,
        purchase: PromotionPurchase,
        validate: Callable[[], None],
        perform: Callable[[], Any],
        confirm: Confirm,
    ) -> PurchaseOutcome:
        validate()

        balance = self.ledger.balance(user.id)
        if balance < purchase.amount:
            raise InsufficientFundsError(required=purchase.amount, available=balance)

        if not confirm(purchase):
            self.db.rollback()
            logger.info("Purchase %s cancelled by user %s", purchase.kind.value, user.id)
            return PurchaseOutcome(
                status="cancelled",
                code="cancelled",
                message="Purchase cancelled. Your wallet was not charged.",
                purchase=purchase,
                balance_after=balance,
            )

        if not self.ledger.spend(user.id, purchase.amount, purchase.description, purchase.reference):
            raise PaymentError("Payment could not be completed. Please check your balance.", required=purchase.amount)

        result = perform()
        self.db.commit()

        balance_after = self.ledger.balance(user.id)
        logger.info(
            "Purchase %s completed for user %s: charged %s, balance %s",
            purchase.kind.value,
            user.id,
            purchase.amount,
            balance_after,
        )
        return PurchaseOutcome(
            status="completed",
            code="completed",
            message=f"{purchase.description} completed. {purchase.amount} {settings.DEFAULT_CURRENCY} charged.",
            purchase=purchase,
            amount_charged=purchase.amount,
            balance_after=balance_after,
            result=result,
        )

    def _failed(self, purchase: Optional[PromotionPurchase], exc: MarketplaceError) -> PurchaseOutcome:
        return PurchaseOutcome(
            status="failed",
            code=exc.code,
            message=exc.message,
            purchase=purchase,
            detail=exc.to_dict(),
            error=exc,
        )

    # Preparation per purchase kind

    def prepare(
        self,
        user: User,
        kind: PurchaseKind,
        plan_or_tier_id: Optional[str] = None,
        target_id: Optional[int] = None,
        data: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Prepared:
        data = data or {}
        if kind == PurchaseKind.STORE_CREATE:
            return self._prepare_store_create(user, plan_or_tier_id, data, now)
        if kind == PurchaseKind.STORE_RENEW:
            return self._prepare_store_renew(user, target_id, plan_or_tier_id, now)
        if kind == PurchaseKind.STORE_REACTIVATE:
            return self._prepare_store_reactivate(user, target_id, plan_or_tier_id, now)
        if kind == PurchaseKind.LISTING_PROMOTE:
            return self._prepare_listing_promote(user, target_id, plan_or_tier_id, now)
        if kind == PurchaseKind.LISTING_DISCOUNT:
            return self._prepare_listing_discount(user, target_id, data, now)
        raise ValidationError(f"Unknown purchase kind: {kind}")

    def _prepare_store_create(self, user: User, plan_id: Optional[str], data: Dict[str, Any], now) -> Prepared:
        plan = get_store_plan(plan_id)
        purchase = PromotionPurchase(
            kind=PurchaseKind.STORE_CREATE,
            amount=plan.price,
            plan_or_tier_id=plan.id,
            description=f"Store creation ({plan.name['en']} plan)",
        )

        def validate():
            if not (data.get("name") or "").strip():
                raise ValidationError("Store name is required")
            self.lifecycle.check_can_activate(user.id, now)

        return purchase, validate, lambda: self.lifecycle.activate_store(user, plan, data, now)

    def _prepare_store_renew(self, user: User, store_id: Optional[int], plan_id: Optional[str], now) -> Prepared:
        store = self.lifecycle.get_owned_store(user, store_id)
        plan = get_store_plan(plan_id or store.plan_id)
        purchase = PromotionPurchase(
            kind=PurchaseKind.STORE_RENEW,
            amount=plan.price,
            plan_or_tier_id=plan.id,
            target_id=store.id,
            description=f"Store renewal ({plan.name['en']} plan)",
        )
        return (
            purchase,
            lambda: self.lifecycle.check_can_renew(store, now),
            lambda: self.lifecycle.renew_store(store, plan, now),
        )

    def _prepare_store_reactivate(self, user: User, store_id: Optional[int], plan_id: Optional[str], now) -> Prepared:
        store = self.lifecycle.get_owned_store(user, store_id)
        plan = get_store_plan(plan_id or store.plan_id)
        purchase = PromotionPurchase(
            kind=PurchaseKind.STORE_REACTIVATE,
            amount=plan.price,
            plan_or_tier_id=plan.id,
            target_id=store.id,
            description=f"Store reactivation ({plan.name['en']} plan)",
        )
        return (
            purchase,
            lambda: self.lifecycle.check_can_reactivate(store, now),
            lambda: self.lifecycle.reactivate_store(store, plan, now),
        )

    def _prepare_listing_promote(self, user: User, listing_id: Optional[int], package_id: Optional[str], now) -> Prepared:
        listing = self.listings.get_owned_listing(user, listing_id)
        package = get_promotion_package(package_id)
        purchase = PromotionPurchase(
            kind=PurchaseKind.LISTING_PROMOTE,
            amount=package.price,
            plan_or_tier_id=package.id,
            target_id=listing.id,
            description=f"Listing promotion ({package.name['en']})",
        )
        return (
            purchase,
            lambda: self.listings.check_promotable(listing, now),
            lambda: self.listings.promote(listing, package, now),
        )

    def _prepare_listing_discount(self, user: User, listing_id: Optional[int], data: Dict[str, Any], now) -> Prepared:
        listing = self.listings.get_owned_listing(user, listing_id)
        purchase = PromotionPurchase(
            kind=PurchaseKind.LISTING_DISCOUNT,
            amount=settings.LISTING_DISCOUNT_FEE,
            target_id=listing.id,
            description="Listing discount",
        )
        cleaned: Dict[str, Any] = {}

        def validate():
            cleaned.update(self.listings.validate_discount(listing, data, now))

        return purchase, validate, lambda: self.listings.apply_discount(listing, cleaned)

    # Typed entry points

    def create_store(self, user: User, plan_id: Optional[str], store_data: Dict[str, Any], confirm: Confirm = always_confirm, now: Optional[datetime] = None) -> PurchaseOutcome:
        return self._execute(user, lambda: self._prepare_store_create(user, plan_id, store_data, now), confirm)

    def renew_store(self, user: User, store_id: int, plan_id: Optional[str] = None, confirm: Confirm = always_confirm, now: Optional[datetime] = None) -> PurchaseOutcome:
        return self._execute(user, lambda: self._prepare_store_renew(user, store_id, plan_id, now), confirm)

    def reactivate_store(self, user: User, store_id: int, plan_id: Optional[str] = None, confirm: Confirm = always_confirm, now: Optional[datetime] = None) -> PurchaseOutcome:
        return self._execute(user, lambda: self._prepare_store_reactivate(user, store_id, plan_id, now), confirm)

    def promote_listing(self, user: User, listing_id: int, package_id: Optional[str], confirm: Confirm = always_confirm, now: Optional[datetime] = None) -> PurchaseOutcome:
        return self._execute(user, lambda: self._prepare_listing_promote(user, listing_id, package_id, now), confirm)

    def apply_listing_discount(self, user: User, listing_id: int, data: Dict[str, Any], confirm: Confirm = always_confirm, now: Optional[datetime] = None) -> PurchaseOutcome:
        return self._execute(user, lambda: self._prepare_listing_discount(user, listing_id, data, now), confirm)
