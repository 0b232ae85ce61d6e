import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from core.config import settings
from core.errors import AuthorizationError, NotFoundError, PreconditionError, ValidationError
from models.listing import Listing
from models.user import User
from services.catalog import DiscountCatalog, MAX_FIXED_AMOUNT
from services.lifecycle import StoreLifecycleManager
from services.plans import PromotionPackage
from services.pricing import (
    FIXED_AMOUNT,
    HUNDRED,
    PERCENTAGE,
    ListingPresentation,
    as_datetime,
    present_listing,
    round_money,
    to_decimal,
)

logger = logging.getLogger(__name__)

MAX_LISTING_TITLE_LENGTH = 200
MAX_DISCOUNT_DURATION = timedelta(days=365)
MAX_TIMER_DURATION = timedelta(days=30)
MAX_TIMER_TITLE_LENGTH = 50
DEFAULT_TIMER_COLOR = "#FF6B6B"


def _clear_timer(listing: Listing) -> None:
    listing.timer_bar_enabled = False
    listing.timer_bar_title = None
    listing.timer_bar_color = None
    listing.timer_bar_end_date = None


class ListingService:
    def __init__(self, db: Session, lifecycle: Optional[StoreLifecycleManager] = None):
        self.db = db
        self.lifecycle = lifecycle or StoreLifecycleManager(db)

    def get_listing(self, listing_id: int) -> Listing:
        listing = self.db.get(Listing, listing_id)
        if listing is None or listing.deleted_at is not None:
            raise NotFoundError("Listing not found", listing_id=listing_id)
        return listing

    def get_owned_listing(self, user: User, listing_id: int) -> Listing:
        listing = self.get_listing(listing_id)
        if listing.user_id != user.id and not user.is_superadmin:
            raise AuthorizationError("You do not own this listing")
        return listing

    def create_listing(self, user: User, data: Dict[str, Any], now: Optional[datetime] = None) -> Listing:
        now = now or datetime.utcnow()
        title = (data.get("title") or "").strip()
        if not title:
            raise ValidationError("Title is required")
        if len(title) > MAX_LISTING_TITLE_LENGTH:
            raise ValidationError(f"Title must be at most {MAX_LISTING_TITLE_LENGTH} characters")
        price = to_decimal(data.get("price"))
        if price is None or price <= 0:
            raise ValidationError("Price must be greater than 0")

        store = None
        if data.get("store_id") is not None:
            store = self.lifecycle.get_owned_store(user, data["store_id"])

        listing = Listing(
            user_id=user.id,
            title=title,
            description=data.get("description"),
            price=round_money(price),
            currency=data.get("currency") or settings.DEFAULT_CURRENCY,
            has_discount=False,
            timer_bar_enabled=False,
            expires_at=as_datetime(data.get("expires_at")) or now + timedelta(days=30),
        )
        self.db.add(listing)
        self.db.flush()
        if store is not None:
            self.lifecycle.attach_listing(store, listing, now)
        self.db.commit()
        self.db.refresh(listing)
        logger.info("Listing %s created by user %s (store %s)", listing.id, user.id, listing.store_id)
        return listing

    def delete_listing(self, user: User, listing: Listing, now: Optional[datetime] = None) -> Listing:
        if listing.user_id != user.id and not user.is_superadmin:
            raise AuthorizationError("You do not own this listing")
        if listing.store is not None:
            return self.lifecycle.delete_listing(listing.store, listing, now)
        listing.deleted_at = now or datetime.utcnow()
        self.db.commit()
        logger.info("Listing %s deleted by user %s", listing.id, user.id)
        return listing

    def present(self, listing: Listing, now: Optional[datetime] = None) -> ListingPresentation:
        now = now or datetime.utcnow()
        catalog = DiscountCatalog(self.db)
        return present_listing(
            listing,
            catalog.active_discounts_for_listing(listing.id, now, listing.store_id),
            catalog.active_campaigns_for_listing(listing.id, now, listing.store_id),
            now,
        )

    # Promotion packages

    def check_promotable(self, listing: Listing, now: Optional[datetime] = None) -> None:
        now = now or datetime.utcnow()
        if listing.deleted_at is not None:
            raise PreconditionError("Deleted listings cannot be promoted", listing_id=listing.id)
        if listing.expires_at is not None and listing.expires_at <= now:
            raise PreconditionError("Expired listings cannot be promoted", listing_id=listing.id)

    def promote(self, listing: Listing, package: PromotionPackage, now: Optional[datetime] = None) -> Listing:
        now = now or datetime.utcnow()
        self.check_promotable(listing, now)
        listing.promotion_type = package.type
        listing.promotion_end_date = now + timedelta(days=package.duration_days)
        self.db.flush()
        logger.info("Listing %s promoted as %s until %s", listing.id, package.type, listing.promotion_end_date)
        return listing

    # Listing-level discount

    def validate_discount(self, listing: Listing, data: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.utcnow()
        self.check_promotable(listing, now)
        base = to_decimal(listing.original_price) if listing.has_discount and listing.original_price else None
        base = base or to_decimal(listing.price)

        discount_type = data.get("discount_type")
        value = to_decimal(data.get("discount_value"))
        if discount_type not in (PERCENTAGE, FIXED_AMOUNT):
            raise ValidationError("Discount type must be percentage or fixed_amount")
        if value is None:
            raise ValidationError("Enter a valid discount value")
        if discount_type == PERCENTAGE and (value < 1 or value > 99):
            raise ValidationError("Percentage must be between 1 and 99")
        if discount_type == FIXED_AMOUNT:
            if value <= 0:
                raise ValidationError("Discount amount must be greater than 0")
            if value > MAX_FIXED_AMOUNT:
                raise ValidationError(f"Discount amount cannot exceed {MAX_FIXED_AMOUNT}")
            if value >= base:
                raise ValidationError("Discount amount must be less than the price")

        end_date = as_datetime(data.get("end_date"))
        if end_date is None or end_date <= now:
            raise ValidationError("End date must be in the future")
        if end_date - now > MAX_DISCOUNT_DURATION:
            raise ValidationError("A discount can run for at most one year")

        cleaned: Dict[str, Any] = {
            "discount_type": discount_type,
            "discount_value": value,
            "end_date": end_date,
            "base": base,
            "timer_bar_enabled": bool(data.get("timer_bar_enabled")),
        }
        if cleaned["timer_bar_enabled"]:
            title = (data.get("timer_bar_title") or "").strip()
            if not title:
                raise ValidationError("Timer title is required")
            if len(title) > MAX_TIMER_TITLE_LENGTH:
                raise ValidationError(f"Timer title must be at most {MAX_TIMER_TITLE_LENGTH} characters")
            timer_end = as_datetime(data.get("timer_bar_end_date"))
            if timer_end is None or timer_end <= now:
                raise ValidationError("Timer end date must be in the future")
            if timer_end - now > MAX_TIMER_DURATION:
                raise ValidationError("A timer can run for at most 30 days")
            cleaned.update(
                timer_bar_title=title,
                timer_bar_color=data.get("timer_bar_color") or DEFAULT_TIMER_COLOR,
                timer_bar_end_date=timer_end,
            )
        return cleaned

    def apply_discount(self, listing: Listing, cleaned: Dict[str, Any]) -> Listing:
        base: Decimal = cleaned["base"]
        value: Decimal = cleaned["discount_value"]
        if cleaned["discount_type"] == PERCENTAGE:
            final_price = round_money(base * (HUNDRED - value) / HUNDRED)
        else:
            final_price = round_money(max(base - value, Decimal("0")))

        listing.original_price = base
        listing.price = final_price
        listing.has_discount = True
        listing.discount_type = cleaned["discount_type"]
        listing.discount_value = value
        listing.discount_percentage = float(round_money((base - final_price) / base * HUNDRED)) if base > 0 else 0.0
        listing.discount_end_date = cleaned["end_date"]
        if cleaned["timer_bar_enabled"]:
            listing.timer_bar_enabled = True
            listing.timer_bar_title = cleaned["timer_bar_title"]
            listing.timer_bar_color = cleaned["timer_bar_color"]
            listing.timer_bar_end_date = cleaned["timer_bar_end_date"]
        else:
            _clear_timer(listing)
        self.db.flush()
        logger.info(
            "Listing %s discounted %s %s: %s -> %s",
            listing.id,
            cleaned["discount_type"],
            value,
            base,
            final_price,
        )
        return listing

    def remove_discount(self, user: User, listing: Listing) -> Listing:
        if listing.user_id != user.id and not user.is_superadmin:
            raise AuthorizationError("You do not own this listing")
        if not listing.has_discount:
            return listing
        if listing.original_price is not None:
            listing.price = listing.original_price
        listing.original_price = None
        listing.has_discount = False
        listing.discount_type = None
        listing.discount_value = None
        listing.discount_percentage = None
        listing.discount_end_date = None
        _clear_timer(listing)
        self.db.commit()
        logger.info("Listing %s discount removed, price restored to %s", listing.id, listing.price)
        return listing
