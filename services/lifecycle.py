"""Store lifecycle: derived status, plan windows, quota and ownership limits.

Status is never stored. It is derived from ``expires_at`` whenever it is read::

    now < expiry                          active
    expiry <= now < expiry + grace        grace_period
    expiry + grace <= now < + archive     deactivated
    beyond that                           archived

Only renewal and reactivation move a store back to ``active``. Deletion is
terminal and recorded separately in ``deleted_at``.

Paid transitions (activate, renew, reactivate) and ``attach_listing`` only
flush; the caller owns the transaction so a wallet debit and the mutation
commit or roll back together. Free operations commit themselves.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.config import settings
from core.errors import (
    ActiveListingsError,
    AuthorizationError,
    NotFoundError,
    PreconditionError,
    QuotaExceededError,
    StoreLimitError,
    ValidationError,
)
from models.listing import Listing
from models.store import Store
from models.user import User
from services.notifications import NotificationService
from services.plans import StorePlan

logger = logging.getLogger(__name__)

ACTIVE = "active"
GRACE_PERIOD = "grace_period"
DEACTIVATED = "deactivated"
ARCHIVED = "archived"
DELETED = "deleted"

STATUS_SEVERITY = {ACTIVE: 0, GRACE_PERIOD: 1, DEACTIVATED: 2, ARCHIVED: 3, DELETED: 4}
LISTABLE_STATUSES = (ACTIVE, GRACE_PERIOD)

MAX_STORE_NAME_LENGTH = 150


def grace_period() -> timedelta:
    return timedelta(days=settings.STORE_GRACE_PERIOD_DAYS)


def archive_period() -> timedelta:
    return timedelta(days=settings.STORE_GRACE_PERIOD_DAYS + settings.STORE_ARCHIVE_AFTER_DAYS)


def derive_status(expires_at: datetime, now: datetime) -> str:
    if now < expires_at:
        return ACTIVE
    if now < expires_at + grace_period():
        return GRACE_PERIOD
    if now < expires_at + archive_period():
        return DEACTIVATED
    return ARCHIVED


def store_status(store: Store, now: Optional[datetime] = None) -> str:
    if store.deleted_at is not None:
        return DELETED
    return derive_status(store.expires_at, now or datetime.utcnow())


@dataclass(frozen=True)
class StoreUsage:
    used: int
    max_ads: int
    remaining: int
    deleted: int


@dataclass(frozen=True)
class ExpirationInfo:
    status: str
    expires_at: datetime
    days_until_expiration: int
    grace_period_ends_at: datetime
    archived_at: datetime
    can_renew: bool
    can_reactivate: bool


def _days_until(moment: datetime, now: datetime) -> int:
    return math.ceil((moment - now).total_seconds() / 86400)


class StoreLifecycleManager:
    def __init__(self, db: Session, notifier: Optional[NotificationService] = None):
        self.db = db
        self.notifier = notifier or NotificationService(db)

    # Lookups

    def get_store(self, store_id: int) -> Store:
        store = self.db.get(Store, store_id)
        if store is None or store.deleted_at is not None:
            raise NotFoundError("Store not found", store_id=store_id)
        return store

    def get_owned_store(self, user: User, store_id: int) -> Store:
        store = self.get_store(store_id)
        if store.user_id != user.id and not user.is_superadmin:
            raise AuthorizationError("You do not own this store")
        return store

    def user_stores(self, user_id: int, now: Optional[datetime] = None) -> List[Store]:
        """Non-deleted stores, healthiest first, newest first within a status."""
        now = now or datetime.utcnow()
        stores = self.db.query(Store).filter(Store.user_id == user_id, Store.deleted_at.is_(None)).all()
        stores.sort(key=lambda s: s.created_at or datetime.min, reverse=True)
        stores.sort(key=lambda s: STATUS_SEVERITY[store_status(s, now)])
        return stores

    def owned_store_count(self, user_id: int, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        stores = self.db.query(Store).filter(Store.user_id == user_id, Store.deleted_at.is_(None)).all()
        return sum(1 for store in stores if store_status(store, now) != ARCHIVED)

    def can_create_store(self, user_id: int, now: Optional[datetime] = None) -> bool:
        return self.owned_store_count(user_id, now) < settings.MAX_STORES_PER_USER

    def active_listing_count(self, store_id: int) -> int:
        return (
            self.db.query(func.count(Listing.id))
            .filter(Listing.store_id == store_id, Listing.deleted_at.is_(None))
            .scalar()
        )

    # Preconditions, checked before any money moves

    def check_can_activate(self, user_id: int, now: Optional[datetime] = None) -> None:
        owned = self.owned_store_count(user_id, now)
        if owned >= settings.MAX_STORES_PER_USER:
            logger.warning("User %s hit the store limit (%s)", user_id, owned)
            raise StoreLimitError(limit=settings.MAX_STORES_PER_USER, owned=owned)

    def check_can_renew(self, store: Store, now: Optional[datetime] = None) -> None:
        status = store_status(store, now)
        if status not in (ACTIVE, GRACE_PERIOD):
            raise PreconditionError(
                "Only active stores or stores in their grace period can be renewed; reactivate it instead",
                status=status,
            )

    def check_can_reactivate(self, store: Store, now: Optional[datetime] = None) -> None:
        status = store_status(store, now)
        if status not in (DEACTIVATED, ARCHIVED):
            raise PreconditionError("Only deactivated or archived stores can be reactivated", status=status)
        if status == ARCHIVED:
            self.check_can_activate(store.user_id, now)

    # Paid transitions

    def activate_store(self, user: User, plan: StorePlan, data: Dict[str, Any], now: Optional[datetime] = None) -> Store:
        now = now or datetime.utcnow()
        self.check_can_activate(user.id, now)
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Store name is required")
        if len(name) > MAX_STORE_NAME_LENGTH:
            raise ValidationError(f"Store name must be at most {MAX_STORE_NAME_LENGTH} characters")

        store = Store(
            user_id=user.id,
            name=name,
            category_name=data.get("category_name"),
            description=data.get("description"),
            address=data.get("address"),
            ads_used=0,
            deleted_listing_ids=[],
            rating=0.0,
            total_ratings=0,
            expires_at=now + timedelta(days=plan.duration_days),
        )
        self._apply_plan(store, plan)
        self.db.add(store)
        self.db.flush()
        logger.info("Store %s activated for user %s on plan %s until %s", store.id, user.id, plan.id, store.expires_at)
        return store

    def renew_store(self, store: Store, plan: StorePlan, now: Optional[datetime] = None) -> Store:
        now = now or datetime.utcnow()
        self.check_can_renew(store, now)
        # Unused days carry over
        store.expires_at = max(now, store.expires_at) + timedelta(days=plan.duration_days)
        self._apply_plan(store, plan)
        store.last_payment_reminder = None
        self.db.flush()
        self.notifier.notify_owner(store, "store_renewed")
        logger.info("Store %s renewed on plan %s until %s", store.id, plan.id, store.expires_at)
        return store

    def reactivate_store(self, store: Store, plan: StorePlan, now: Optional[datetime] = None) -> Store:
        now = now or datetime.utcnow()
        self.check_can_reactivate(store, now)
        previous = store_status(store, now)
        # Followers, rating and listing history stay attached to the row
        store.expires_at = now + timedelta(days=plan.duration_days)
        store.reactivated_at = now
        store.last_payment_reminder = None
        self._apply_plan(store, plan)
        self.db.flush()
        self.notifier.notify_owner(store, "store_renewed")
        logger.info(
            "Store %s reactivated from %s on plan %s, %s followers retained",
            store.id,
            previous,
            plan.id,
            store.follower_count,
        )
        return store

    def _apply_plan(self, store: Store, plan: StorePlan) -> None:
        store.plan_id = plan.id
        store.plan_price = plan.price
        store.max_ads = plan.max_ads
        store.duration_days = plan.duration_days

    # Free transitions

    def delete_store(self, user: User, store: Store, now: Optional[datetime] = None) -> Store:
        now = now or datetime.utcnow()
        if store.user_id != user.id and not user.is_superadmin:
            raise AuthorizationError("You do not own this store")
        if store.deleted_at is not None:
            raise NotFoundError("Store not found", store_id=store.id)
        if store_status(store, now) == ARCHIVED:
            raise PreconditionError("Store is already archived", status=ARCHIVED)
        active_listings = self.active_listing_count(store.id)
        if active_listings > 0:
            logger.warning("Refusing to delete store %s with %s active listings", store.id, active_listings)
            raise ActiveListingsError(active_listings)

        store.deleted_at = now
        self.notifier.notify_followers(store, "store_deleted")
        self.db.commit()
        logger.info("Store %s deleted by user %s", store.id, user.id)
        return store

    # Quota

    def can_add_listing(self, store: Store, now: Optional[datetime] = None) -> bool:
        return store_status(store, now) in LISTABLE_STATUSES and store.ads_used < store.max_ads

    def attach_listing(self, store: Store, listing: Listing, now: Optional[datetime] = None) -> Store:
        status = store_status(store, now)
        if status not in LISTABLE_STATUSES:
            raise PreconditionError("Store must be active to add listings", status=status)

        # Conditional increment keeps ads_used <= max_ads under concurrent attaches
        updated = (
            self.db.query(Store)
            .filter(Store.id == store.id, Store.ads_used < Store.max_ads)
            .update({Store.ads_used: Store.ads_used + 1}, synchronize_session=False)
        )
        if updated != 1:
            self.db.refresh(store)
            logger.warning("Store %s quota exhausted (%s/%s)", store.id, store.ads_used, store.max_ads)
            raise QuotaExceededError(used=store.ads_used, max_ads=store.max_ads)
        self.db.expire(store, ["ads_used"])

        listing.store_id = store.id
        self.db.flush()
        self.notifier.notify_followers(store, "new_listing", {"listing_title": listing.title}, listing_id=listing.id)
        logger.info("Listing %s attached to store %s (%s/%s)", listing.id, store.id, store.ads_used, store.max_ads)
        return store

    def delete_listing(self, store: Store, listing: Listing, now: Optional[datetime] = None) -> Listing:
        """Remove a listing early. The consumed quota slot is not given back."""
        if listing.store_id != store.id:
            raise NotFoundError("Listing not found in this store", listing_id=listing.id)
        if listing.deleted_at is not None:
            return listing
        listing.deleted_at = now or datetime.utcnow()
        store.deleted_listing_ids = [*(store.deleted_listing_ids or []), listing.id]
        self.db.commit()
        logger.info("Listing %s deleted early from store %s", listing.id, store.id)
        return listing

    def usage(self, store: Store) -> StoreUsage:
        return StoreUsage(
            used=store.ads_used,
            max_ads=store.max_ads,
            remaining=max(store.max_ads - store.ads_used, 0),
            deleted=len(store.deleted_listing_ids or []),
        )

    def expiration_info(self, store: Store, now: Optional[datetime] = None) -> ExpirationInfo:
        now = now or datetime.utcnow()
        status = store_status(store, now)
        return ExpirationInfo(
            status=status,
            expires_at=store.expires_at,
            days_until_expiration=_days_until(store.expires_at, now),
            grace_period_ends_at=store.expires_at + grace_period(),
            archived_at=store.expires_at + archive_period(),
            can_renew=status in (ACTIVE, GRACE_PERIOD),
            can_reactivate=status in (DEACTIVATED, ARCHIVED),
        )

    def is_listing_visible(self, listing: Listing, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        if listing.deleted_at is not None:
            return False
        if listing.expires_at is not None and listing.expires_at <= now:
            return False
        if listing.store is None:
            return True
        return store_status(listing.store, now) in LISTABLE_STATUSES

    # Followers

    def follow(self, user: User, store: Store) -> Store:
        if store.user_id == user.id:
            raise ValidationError("You cannot follow your own store")
        if any(follower.id == user.id for follower in store.followers):
            return store
        store.followers.append(user)
        self.notifier.notify_owner(
            store, "new_follower", {"follower_name": f"{user.first_name} {user.last_name}".strip()}
        )
        self.db.commit()
        logger.info("User %s followed store %s", user.id, store.id)
        return store

    def unfollow(self, user: User, store: Store) -> Store:
        for follower in list(store.followers):
            if follower.id == user.id:
                store.followers.remove(follower)
                self.db.commit()
                logger.info("User %s unfollowed store %s", user.id, store.id)
                break
        return store

    # Scheduled

    def send_expiration_notices(self, now: Optional[datetime] = None) -> int:
        """Warn owners before expiry, on entering grace and on deactivation.

        Each notice is sent once per phase and never twice inside the
        cooldown window.
        """
        now = now or datetime.utcnow()
        cooldown = timedelta(hours=settings.NOTIFICATION_COOLDOWN_HOURS)
        sent = 0
        for store in self.db.query(Store).filter(Store.deleted_at.is_(None)).all():
            last = store.last_payment_reminder
            if last is not None and now - last < cooldown:
                continue

            status = store_status(store, now)
            kind = None
            context: Dict[str, Any] = {"expires_at": store.expires_at}
            if status == ACTIVE:
                days_left = _days_until(store.expires_at, now)
                phase_start = store.expires_at - timedelta(days=days_left)
                if days_left in settings.EXPIRY_WARNING_DAYS and (last is None or last <= phase_start):
                    kind = "store_expiring"
                    context["days_left"] = days_left
            elif status == GRACE_PERIOD and (last is None or last < store.expires_at):
                kind = "store_grace_period"
                context["grace_ends_at"] = store.expires_at + grace_period()
            elif status == DEACTIVATED and (last is None or last < store.expires_at + grace_period()):
                kind = "store_deactivated"
                context["archive_at"] = store.expires_at + archive_period()

            if kind is None:
                continue
            self.notifier.notify_owner(store, kind, context)
            store.last_payment_reminder = now
            sent += 1

        self.db.commit()
        if sent:
            logger.info("Sent %s store expiration notices", sent)
        return sent
