from datetime import datetime, timedelta

import pytest

from core.errors import (
    ActiveListingsError,
    AuthorizationError,
    NotFoundError,
    PreconditionError,
    QuotaExceededError,
    StoreLimitError,
    ValidationError,
)
from models.notification import Notification
from services.lifecycle import STATUS_SEVERITY, StoreLifecycleManager, derive_status, store_status
from services.plans import get_store_plan

NOW = datetime(2026, 3, 1, 12, 0, 0)


class TestDeriveStatus:
    """Status derived from the plan expiry"""

    def test_boundaries(self):
        expiry = NOW

        assert derive_status(expiry, expiry - timedelta(seconds=1)) == "active"
        assert derive_status(expiry, expiry) == "grace_period"
        assert derive_status(expiry, expiry + timedelta(days=7) - timedelta(seconds=1)) == "grace_period"
        assert derive_status(expiry, expiry + timedelta(days=7)) == "deactivated"
        assert derive_status(expiry, expiry + timedelta(days=37) - timedelta(seconds=1)) == "deactivated"
        assert derive_status(expiry, expiry + timedelta(days=37)) == "archived"

    def test_expired_five_days_ago_is_in_grace_period(self):
        assert derive_status(NOW - timedelta(days=5), NOW) == "grace_period"

    def test_expired_ten_days_ago_is_deactivated(self):
        assert derive_status(NOW - timedelta(days=10), NOW) == "deactivated"

    def test_expired_forty_days_ago_is_archived(self):
        assert derive_status(NOW - timedelta(days=40), NOW) == "archived"

    def test_status_never_improves_with_time(self):
        expiry = NOW
        previous = STATUS_SEVERITY["active"]
        moment = expiry - timedelta(days=3)
        while moment < expiry + timedelta(days=45):
            severity = STATUS_SEVERITY[derive_status(expiry, moment)]
            assert severity >= previous
            previous = severity
            moment += timedelta(hours=6)

    def test_deleted_store_reports_deleted(self, make_store, test_user):
        store = make_store(test_user)
        store.deleted_at = NOW

        assert store_status(store, NOW) == "deleted"


class TestActivation:
    """Store creation and the per-user store limit"""

    def test_activate_store(self, db, test_user):
        plan = get_store_plan("premium")
        store = StoreLifecycleManager(db).activate_store(test_user, plan, {"name": "  Gadget Hub "}, NOW)

        assert store.id is not None
        assert store.name == "Gadget Hub"
        assert store.ads_used == 0
        assert store.max_ads == 350
        assert store.expires_at == NOW + timedelta(days=30)
        assert store_status(store, NOW) == "active"

    def test_store_name_required(self, db, test_user):
        with pytest.raises(ValidationError):
            StoreLifecycleManager(db).activate_store(test_user, get_store_plan("basic"), {"name": " "}, NOW)

    def test_store_limit(self, db, make_store, test_user):
        for i in range(3):
            make_store(test_user, name=f"Store {i}", expires_at=NOW + timedelta(days=10))
        manager = StoreLifecycleManager(db)

        assert manager.can_create_store(test_user.id, NOW) is False
        with pytest.raises(StoreLimitError) as exc:
            manager.activate_store(test_user, get_store_plan("basic"), {"name": "Fourth"}, NOW)
        assert exc.value.detail == {"limit": 3, "owned": 3}

    def test_archived_and_deleted_stores_do_not_count(self, db, make_store, test_user):
        make_store(test_user, expires_at=NOW - timedelta(days=60))
        deleted = make_store(test_user, expires_at=NOW + timedelta(days=10))
        deleted.deleted_at = NOW
        make_store(test_user, expires_at=NOW + timedelta(days=10))
        db.commit()

        assert StoreLifecycleManager(db).owned_store_count(test_user.id, NOW) == 1

    def test_user_stores_sorted_by_status(self, db, make_store, test_user):
        archived = make_store(test_user, name="Old", expires_at=NOW - timedelta(days=60))
        active = make_store(test_user, name="Live", expires_at=NOW + timedelta(days=5))
        grace = make_store(test_user, name="Late", expires_at=NOW - timedelta(days=2))

        stores = StoreLifecycleManager(db).user_stores(test_user.id, NOW)
        assert [s.id for s in stores] == [active.id, grace.id, archived.id]


class TestRenewal:
    """Renewal and reactivation"""

    def test_renewal_extends_from_current_expiry(self, db, make_store, test_user):
        store = make_store(test_user, expires_at=NOW + timedelta(days=5))
        StoreLifecycleManager(db).renew_store(store, get_store_plan("basic"), NOW)

        assert store.expires_at == NOW + timedelta(days=35)

    def test_renewal_in_grace_period_starts_now(self, db, make_store, test_user):
        store = make_store(test_user, expires_at=NOW - timedelta(days=3))
        StoreLifecycleManager(db).renew_store(store, get_store_plan("business"), NOW)

        assert store.expires_at == NOW + timedelta(days=30)
        assert store.max_ads == 500
        assert store_status(store, NOW) == "active"

    def test_deactivated_store_cannot_be_renewed(self, db, make_store, test_user):
        store = make_store(test_user, expires_at=NOW - timedelta(days=10))

        with pytest.raises(PreconditionError):
            StoreLifecycleManager(db).renew_store(store, get_store_plan("basic"), NOW)

    def test_reactivation_keeps_followers_and_rating(self, db, make_store, make_user, test_user):
        store = make_store(test_user, expires_at=NOW - timedelta(days=20))
        follower = make_user("Fan")
        store.followers.append(follower)
        store.rating = 4.5
        store.total_ratings = 12
        db.commit()

        StoreLifecycleManager(db).reactivate_store(store, get_store_plan("basic"), NOW)

        assert store_status(store, NOW) == "active"
        assert store.reactivated_at == NOW
        assert store.follower_count == 1
        assert store.rating == 4.5
        assert store.total_ratings == 12

    def test_archived_store_can_be_reactivated(self, db, make_store, test_user):
        store = make_store(test_user, expires_at=NOW - timedelta(days=40))
        StoreLifecycleManager(db).reactivate_store(store, get_store_plan("basic"), NOW)

        assert store_status(store, NOW) == "active"

    def test_active_store_cannot_be_reactivated(self, db, make_store, test_user):
        store = make_store(test_user, expires_at=NOW + timedelta(days=1))

        with pytest.raises(PreconditionError):
            StoreLifecycleManager(db).reactivate_store(store, get_store_plan("basic"), NOW)

    def test_archived_reactivation_respects_store_limit(self, db, make_store, test_user):
        archived = make_store(test_user, expires_at=NOW - timedelta(days=40))
        for i in range(3):
            make_store(test_user, name=f"Store {i}", expires_at=NOW + timedelta(days=10))

        with pytest.raises(StoreLimitError):
            StoreLifecycleManager(db).reactivate_store(archived, get_store_plan("basic"), NOW)


class TestDeletion:
    """Store deletion"""

    def test_delete_fails_with_active_listing_count(self, db, make_store, make_listing, test_user):
        store = make_store(test_user)
        make_listing(test_user, store)
        make_listing(test_user, store)

        with pytest.raises(ActiveListingsError) as exc:
            StoreLifecycleManager(db).delete_store(test_user, store)

        assert exc.value.detail["active_listings"] == 2
        assert "2 active listings" in exc.value.message
        assert store.deleted_at is None

    def test_delete_after_listings_removed(self, db, make_store, make_listing, make_user, test_user):
        store = make_store(test_user)
        listing = make_listing(test_user, store)
        follower = make_user("Fan")
        store.followers.append(follower)
        db.commit()
        manager = StoreLifecycleManager(db)
        manager.delete_listing(store, listing)

        manager.delete_store(test_user, store)

        assert store.deleted_at is not None
        assert store_status(store) == "deleted"
        notices = db.query(Notification).filter(Notification.kind == "store_deleted").all()
        assert [n.user_id for n in notices] == [follower.id]
        with pytest.raises(NotFoundError):
            manager.get_store(store.id)

    def test_archived_store_cannot_be_deleted(self, db, make_store, test_user):
        store = make_store(test_user, expires_at=datetime.utcnow() - timedelta(days=40))

        with pytest.raises(PreconditionError):
            StoreLifecycleManager(db).delete_store(test_user, store)

    def test_only_owner_can_delete(self, db, make_store, make_user, test_user):
        store = make_store(test_user)

        with pytest.raises(AuthorizationError):
            StoreLifecycleManager(db).delete_store(make_user("Other"), store)

    def test_new_store_allowed_after_deletion(self, db, make_store, test_user):
        stores = [make_store(test_user, name=f"Store {i}") for i in range(3)]
        manager = StoreLifecycleManager(db)
        assert manager.can_create_store(test_user.id) is False

        manager.delete_store(test_user, stores[0])

        assert manager.can_create_store(test_user.id) is True


class TestQuota:
    """Listing quota"""

    def test_attach_increments_usage(self, db, make_store, make_listing, test_user):
        store = make_store(test_user, max_ads=2)
        listing = make_listing(test_user)
        manager = StoreLifecycleManager(db)

        manager.attach_listing(store, listing)
        db.commit()

        assert store.ads_used == 1
        assert listing.store_id == store.id
        assert manager.usage(store).remaining == 1

    def test_attach_beyond_quota_is_rejected(self, db, make_store, make_listing, test_user):
        store = make_store(test_user, max_ads=1, ads_used=1)
        listing = make_listing(test_user)

        with pytest.raises(QuotaExceededError) as exc:
            StoreLifecycleManager(db).attach_listing(store, listing)

        assert exc.value.detail == {"used": 1, "max_ads": 1}
        assert listing.store_id is None
        assert store.ads_used == 1

    def test_attach_requires_listable_status(self, db, make_store, make_listing, test_user):
        store = make_store(test_user, expires_at=datetime.utcnow() - timedelta(days=10))

        with pytest.raises(PreconditionError):
            StoreLifecycleManager(db).attach_listing(store, make_listing(test_user))

    def test_grace_period_store_still_accepts_listings(self, db, make_store, make_listing, test_user):
        store = make_store(test_user, expires_at=datetime.utcnow() - timedelta(days=2))
        StoreLifecycleManager(db).attach_listing(store, make_listing(test_user))

        assert store.ads_used == 1

    def test_early_deletion_does_not_refund_quota(self, db, make_store, make_listing, test_user):
        store = make_store(test_user, ads_used=1)
        listing = make_listing(test_user, store)
        manager = StoreLifecycleManager(db)

        manager.delete_listing(store, listing)
        manager.delete_listing(store, listing)

        usage = manager.usage(store)
        assert usage.used == 1
        assert usage.deleted == 1
        assert store.deleted_listing_ids == [listing.id]
        assert manager.active_listing_count(store.id) == 0


class TestVisibilityAndFollowers:
    """Listing visibility and store followers"""

    def test_listings_hidden_while_store_deactivated(self, db, make_store, make_listing, test_user):
        store = make_store(test_user, expires_at=datetime.utcnow() - timedelta(days=10))
        listing = make_listing(test_user, store)

        assert StoreLifecycleManager(db).is_listing_visible(listing) is False

    def test_standalone_listing_visible(self, db, make_listing, test_user):
        assert StoreLifecycleManager(db).is_listing_visible(make_listing(test_user)) is True

    def test_follow_notifies_owner_once(self, db, make_store, make_user, test_user):
        store = make_store(test_user)
        fan = make_user("Fan")
        manager = StoreLifecycleManager(db)

        manager.follow(fan, store)
        manager.follow(fan, store)

        assert store.follower_count == 1
        notices = db.query(Notification).filter(Notification.kind == "new_follower").all()
        assert len(notices) == 1
        assert notices[0].user_id == test_user.id

    def test_owner_cannot_follow_own_store(self, db, make_store, test_user):
        with pytest.raises(ValidationError):
            StoreLifecycleManager(db).follow(test_user, make_store(test_user))

    def test_unfollow(self, db, make_store, make_user, test_user):
        store = make_store(test_user)
        fan = make_user("Fan")
        manager = StoreLifecycleManager(db)
        manager.follow(fan, store)

        manager.unfollow(fan, store)

        assert store.follower_count == 0


class TestExpirationNotices:
    """Scheduled expiry warnings"""

    def _notices(self, db, kind):
        return db.query(Notification).filter(Notification.kind == kind).all()

    def test_warning_sent_once_per_threshold(self, db, make_store, test_user):
        make_store(test_user, expires_at=NOW + timedelta(days=7) - timedelta(hours=1))
        manager = StoreLifecycleManager(db)

        assert manager.send_expiration_notices(NOW) == 1
        assert manager.send_expiration_notices(NOW + timedelta(hours=13)) == 0
        # Three days out is a new threshold
        assert manager.send_expiration_notices(NOW + timedelta(days=4)) == 1
        assert len(self._notices(db, "store_expiring")) == 2

    def test_no_warning_between_thresholds(self, db, make_store, test_user):
        make_store(test_user, expires_at=NOW + timedelta(days=5, hours=-1))

        assert StoreLifecycleManager(db).send_expiration_notices(NOW) == 0

    def test_grace_and_deactivation_notices(self, db, make_store, test_user):
        store = make_store(test_user, expires_at=NOW - timedelta(days=1))
        manager = StoreLifecycleManager(db)

        assert manager.send_expiration_notices(NOW) == 1
        assert manager.send_expiration_notices(NOW + timedelta(days=1)) == 0
        assert manager.send_expiration_notices(NOW + timedelta(days=7)) == 1

        assert len(self._notices(db, "store_grace_period")) == 1
        assert len(self._notices(db, "store_deactivated")) == 1
        assert "deactivated" in self._notices(db, "store_deactivated")[0].message
        assert store.last_payment_reminder == NOW + timedelta(days=7)

    def test_cooldown_blocks_repeat_notice(self, db, make_store, test_user):
        store = make_store(test_user, expires_at=NOW - timedelta(days=1))
        store.last_payment_reminder = NOW - timedelta(hours=2)
        db.commit()

        assert StoreLifecycleManager(db).send_expiration_notices(NOW) == 0
