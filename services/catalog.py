import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Type

from sqlalchemy.orm import Session

from core.errors import AuthorizationError, NotFoundError, PreconditionError, ValidationError
from models.discount import Discount, Campaign, DISCOUNT_TYPES, CAMPAIGN_TYPES
from models.listing import Listing
from models.store import Store
from models.user import User
from services.pricing import applies_to, as_datetime, is_running, to_decimal

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500
MAX_FIXED_AMOUNT = Decimal("10000")
MAX_DURATION = timedelta(days=365)
DEFAULT_SHORTCUT_DURATION = timedelta(days=30)
STORE_WIDE_TITLE = "Store-wide discount"
LISTING_DISCOUNT_TITLE = "Listing discount"

_EDITABLE_FIELDS = (
    "title",
    "description",
    "type",
    "value",
    "min_purchase_amount",
    "max_discount_amount",
    "applicable_listings",
    "applies_to_all",
    "excluded_listings",
    "start_date",
    "end_date",
    "usage_limit",
    "priority",
)


class DiscountCatalog:
    """Store-level discounts and campaigns, and which of them apply to a listing."""

    def __init__(self, db: Session):
        self.db = db

    # Queries

    def store_discounts(self, store_id: int) -> List[Discount]:
        return self.db.query(Discount).filter(Discount.store_id == store_id).order_by(Discount.id).all()

    def store_campaigns(self, store_id: int) -> List[Campaign]:
        return self.db.query(Campaign).filter(Campaign.store_id == store_id).order_by(Campaign.id).all()

    def active_discounts(self, store_id: int, now: Optional[datetime] = None) -> List[Discount]:
        now = now or datetime.utcnow()
        return [discount for discount in self.store_discounts(store_id) if is_running(discount, now)]

    def active_discounts_for_listing(
        self, listing_id: int, now: Optional[datetime] = None, store_id: Optional[int] = None
    ) -> List[Discount]:
        now = now or datetime.utcnow()
        store_id = store_id if store_id is not None else self._listing_store(listing_id)
        candidates = (
            self.db.query(Discount)
            .filter(Discount.is_active.is_(True), Discount.start_date <= now, Discount.end_date >= now)
            .order_by(Discount.id)
            .all()
        )
        return [discount for discount in candidates if applies_to(discount, listing_id, store_id)]

    def active_campaigns_for_listing(
        self, listing_id: int, now: Optional[datetime] = None, store_id: Optional[int] = None
    ) -> List[Campaign]:
        now = now or datetime.utcnow()
        store_id = store_id if store_id is not None else self._listing_store(listing_id)
        candidates = (
            self.db.query(Campaign)
            .filter(Campaign.is_active.is_(True), Campaign.start_date <= now, Campaign.end_date >= now)
            .order_by(Campaign.priority.desc(), Campaign.id)
            .all()
        )
        return [campaign for campaign in candidates if applies_to(campaign, listing_id, store_id)]

    # Discounts

    def create_discount(self, user: User, store_id: int, data: Dict[str, Any]) -> Discount:
        return self._create(Discount, DISCOUNT_TYPES, user, store_id, data)

    def update_discount(self, user: User, discount_id: int, data: Dict[str, Any]) -> Discount:
        return self._update(Discount, DISCOUNT_TYPES, user, discount_id, data)

    def toggle_discount(self, user: User, discount_id: int) -> Discount:
        return self._toggle(Discount, user, discount_id)

    def delete_discount(self, user: User, discount_id: int) -> None:
        self._delete(Discount, user, discount_id)

    # Campaigns

    def create_campaign(self, user: User, store_id: int, data: Dict[str, Any]) -> Campaign:
        return self._create(Campaign, CAMPAIGN_TYPES, user, store_id, data)

    def update_campaign(self, user: User, campaign_id: int, data: Dict[str, Any]) -> Campaign:
        return self._update(Campaign, CAMPAIGN_TYPES, user, campaign_id, data)

    def toggle_campaign(self, user: User, campaign_id: int) -> Campaign:
        return self._toggle(Campaign, user, campaign_id)

    def delete_campaign(self, user: User, campaign_id: int) -> None:
        self._delete(Campaign, user, campaign_id)

    # Owner shortcuts: a percentage off the whole store or a single listing

    def apply_store_wide_discount(
        self,
        user: User,
        store_id: int,
        percentage: Any,
        exclude_listing_ids: Iterable[int] = (),
        end_date: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Discount:
        """Discount every listing of the store except ``exclude_listing_ids``.

        Replaces any store-wide discount the store already runs.
        """
        now = now or datetime.utcnow()
        store = self._owned_store(user, store_id)
        excluded = {int(listing_id) for listing_id in exclude_listing_ids}
        covered = [listing_id for listing_id in self._store_listing_ids(store.id) if listing_id not in excluded]
        if not covered:
            raise PreconditionError("The store has no listings to discount")

        fields = self._validate(
            DISCOUNT_TYPES,
            store,
            {
                "title": STORE_WIDE_TITLE,
                "type": "percentage",
                "value": percentage,
                "applies_to_all": True,
                "excluded_listings": sorted(excluded),
                "start_date": now,
                "end_date": end_date or now + DEFAULT_SHORTCUT_DURATION,
            },
        )
        replaced = self._store_wide(store.id)
        for previous in replaced:
            self.db.delete(previous)

        discount = self._add(Discount, store, fields)
        logger.info(
            "Store-wide %s%% discount %s for store %s covers %s listings (%s excluded, %s replaced)",
            fields["value"],
            discount.id,
            store.id,
            len(covered),
            len(excluded),
            len(replaced),
        )
        return discount

    def remove_store_wide_discount(self, user: User, store_id: int) -> int:
        store = self._owned_store(user, store_id)
        removed = self._store_wide(store.id)
        for discount in removed:
            self.db.delete(discount)
        self.db.commit()
        logger.info("Removed %s store-wide discounts from store %s", len(removed), store.id)
        return len(removed)

    def apply_discount_to_listing(
        self,
        user: User,
        store_id: int,
        listing_id: int,
        percentage: Any,
        end_date: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Discount:
        """Discount one store listing, replacing whatever store discount covered it."""
        now = now or datetime.utcnow()
        store = self._owned_store(user, store_id)
        fields = self._validate(
            DISCOUNT_TYPES,
            store,
            {
                "title": LISTING_DISCOUNT_TITLE,
                "type": "percentage",
                "value": percentage,
                "applicable_listings": [listing_id],
                "start_date": now,
                "end_date": end_date or now + DEFAULT_SHORTCUT_DURATION,
            },
        )
        self._detach_listing(store.id, int(listing_id), now)
        discount = self._add(Discount, store, fields)
        logger.info("Listing %s in store %s discounted %s%%", listing_id, store.id, fields["value"])
        return discount

    def remove_discount_from_listing(self, user: User, store_id: int, listing_id: int, now: Optional[datetime] = None) -> int:
        """Stop every running store discount from covering the listing. Returns how many changed."""
        store = self._owned_store(user, store_id)
        self._check_listings(store, [int(listing_id)])
        changed = self._detach_listing(store.id, int(listing_id), now or datetime.utcnow())
        self.db.commit()
        logger.info("Listing %s detached from %s discounts in store %s", listing_id, changed, store.id)
        return changed

    # Internals

    def _listing_store(self, listing_id: int) -> Optional[int]:
        return self.db.query(Listing.store_id).filter(Listing.id == listing_id).scalar()

    def _store_listing_ids(self, store_id: int) -> List[int]:
        rows = self.db.query(Listing.id).filter(Listing.store_id == store_id, Listing.deleted_at.is_(None))
        return [row.id for row in rows]

    def _store_wide(self, store_id: int) -> List[Discount]:
        return (
            self.db.query(Discount)
            .filter(Discount.store_id == store_id, Discount.applies_to_all.is_(True))
            .order_by(Discount.id)
            .all()
        )

    def _detach_listing(self, store_id: int, listing_id: int, now: datetime) -> int:
        changed = 0
        for discount in self.active_discounts(store_id, now):
            if not applies_to(discount, listing_id, store_id):
                continue
            if discount.applies_to_all:
                discount.excluded_listings = sorted({int(i) for i in discount.excluded_listings or []} | {listing_id})
            else:
                remaining = [int(i) for i in discount.applicable_listings or [] if int(i) != listing_id]
                if remaining:
                    discount.applicable_listings = remaining
                else:
                    self.db.delete(discount)
            changed += 1
        self.db.flush()
        return changed

    def _check_listings(self, store: Store, listing_ids: List[int], live_only: bool = True) -> None:
        if not listing_ids:
            return
        query = self.db.query(Listing.id).filter(Listing.id.in_(listing_ids), Listing.store_id == store.id)
        if live_only:
            query = query.filter(Listing.deleted_at.is_(None))
        foreign = sorted(set(listing_ids) - {row.id for row in query})
        if foreign:
            raise ValidationError("Some listings do not belong to this store", listing_ids=foreign)

    def _owned_store(self, user: User, store_id: int) -> Store:
        store = self.db.get(Store, store_id)
        if store is None or store.deleted_at is not None:
            raise NotFoundError("Store not found")
        if store.user_id != user.id and not user.is_superadmin:
            raise AuthorizationError("Only the store owner can manage its promotions")
        return store

    def _owned(self, model: Type, user: User, promo_id: int):
        promo = self.db.get(model, promo_id)
        if promo is None:
            raise NotFoundError(f"{model.__name__} not found")
        self._owned_store(user, promo.store_id)
        return promo

    def _validate(self, types: tuple, store: Store, fields: Dict[str, Any]) -> Dict[str, Any]:
        title = (fields.get("title") or "").strip()
        if not title:
            raise ValidationError("Title is required")
        if len(title) > MAX_TITLE_LENGTH:
            raise ValidationError(f"Title must be at most {MAX_TITLE_LENGTH} characters")
        description = (fields.get("description") or "").strip()
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters")

        promo_type = fields.get("type")
        if promo_type not in types:
            raise ValidationError(f"Type must be one of: {', '.join(types)}")

        value = to_decimal(fields.get("value"))
        if value is None:
            raise ValidationError("Discount value is required")
        if promo_type == "fixed_amount":
            if value <= 0 or value > MAX_FIXED_AMOUNT:
                raise ValidationError(f"Fixed amount must be between 0 and {MAX_FIXED_AMOUNT}")
        elif value < 1 or value > 99:
            raise ValidationError("Percentage must be between 1 and 99")

        for cap_field in ("min_purchase_amount", "max_discount_amount"):
            cap = fields.get(cap_field)
            if cap is not None and (to_decimal(cap) is None or to_decimal(cap) < 0):
                raise ValidationError(f"{cap_field} must be a non-negative amount")

        start = as_datetime(fields.get("start_date"))
        end = as_datetime(fields.get("end_date"))
        if start is None or end is None:
            raise ValidationError("Start and end dates are required")
        if start >= end:
            raise ValidationError("End date must be after the start date")
        if end - start > MAX_DURATION:
            raise ValidationError("A discount can run for at most one year")

        applies_to_all = bool(fields.get("applies_to_all"))
        listing_ids = [int(listing_id) for listing_id in fields.get("applicable_listings") or []]
        excluded_ids = [int(listing_id) for listing_id in fields.get("excluded_listings") or []]
        if applies_to_all:
            # Exclusions may name listings deleted since
            self._check_listings(store, excluded_ids, live_only=False)
            listing_ids = []
        else:
            self._check_listings(store, listing_ids)
            excluded_ids = []

        usage_limit = fields.get("usage_limit")
        if usage_limit is not None and int(usage_limit) < 1:
            raise ValidationError("Usage limit must be at least 1")

        cleaned = dict(fields)
        cleaned.update(
            title=title,
            description=description,
            value=value,
            start_date=start,
            end_date=end,
            applicable_listings=listing_ids,
            applies_to_all=applies_to_all,
            excluded_listings=excluded_ids,
        )
        return cleaned

    def _create(self, model: Type, types: tuple, user: User, store_id: int, data: Dict[str, Any]):
        store = self._owned_store(user, store_id)
        fields = self._validate(types, store, data)
        promo = self._add(model, store, fields)
        logger.info("%s %s created for store %s by user %s", model.__name__, promo.id, store.id, user.id)
        return promo

    def _add(self, model: Type, store: Store, fields: Dict[str, Any]):
        columns = {key: fields[key] for key in _EDITABLE_FIELDS if key in fields and hasattr(model, key)}
        promo = model(store_id=store.id, used_count=0, is_active=True, **columns)
        self.db.add(promo)
        self.db.commit()
        self.db.refresh(promo)
        return promo

    def _update(self, model: Type, types: tuple, user: User, promo_id: int, data: Dict[str, Any]):
        promo = self._owned(model, user, promo_id)
        merged = {key: getattr(promo, key) for key in _EDITABLE_FIELDS if hasattr(promo, key)}
        merged.update({key: value for key, value in data.items() if value is not None})
        fields = self._validate(types, promo.store, merged)
        for key in _EDITABLE_FIELDS:
            if key in fields and hasattr(promo, key):
                setattr(promo, key, fields[key])
        self.db.commit()
        self.db.refresh(promo)
        logger.info("%s %s updated by user %s", model.__name__, promo.id, user.id)
        return promo

    def _toggle(self, model: Type, user: User, promo_id: int):
        promo = self._owned(model, user, promo_id)
        promo.is_active = not promo.is_active
        self.db.commit()
        self.db.refresh(promo)
        logger.info("%s %s is_active=%s", model.__name__, promo.id, promo.is_active)
        return promo

    def _delete(self, model: Type, user: User, promo_id: int) -> None:
        promo = self._owned(model, user, promo_id)
        self.db.delete(promo)
        self.db.commit()
        logger.info("%s %s deleted by user %s", model.__name__, promo_id, user.id)
