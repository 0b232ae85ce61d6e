from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch

from models.notification import Notification
from models.payment import Payment
from models.wallet import WalletTransaction
from services.notifications import NotificationService
from services.wallet import WalletLedger


class TestHealthRoutes:
    """Test cases for service endpoints"""

    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_auth_required(self, client):
        response = client.get("/wallet")
        assert response.status_code == 401

    def test_invalid_token(self, client):
        response = client.get("/wallet", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401


class TestStoreRoutes:
    """Test cases for store endpoints"""

    def test_list_plans(self, client):
        response = client.get("/stores/plans")
        assert response.status_code == 200
        assert [plan["id"] for plan in response.json()] == ["basic", "premium", "business"]

    def test_create_store(self, client, auth_headers):
        response = client.post(
            "/stores",
            json={"name": "Gadget Hub", "plan_id": "basic", "confirmed": True},
            headers=auth_headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["purchase"]["status"] == "completed"
        assert data["purchase"]["balance_after"] == 400.0
        assert data["store"]["name"] == "Gadget Hub"
        assert data["store"]["status"] == "active"

    def test_create_store_not_confirmed(self, client, auth_headers):
        response = client.post("/stores", json={"name": "Gadget Hub", "plan_id": "basic"}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["purchase"]["status"] == "cancelled"
        assert response.json()["store"] is None

    def test_create_store_insufficient_funds(self, client, make_user, auth_headers_for):
        user = make_user(balance=50)

        response = client.post(
            "/stores",
            json={"name": "Gadget Hub", "plan_id": "basic", "confirmed": True},
            headers=auth_headers_for(user),
        )

        assert response.status_code == 402
        body = response.json()
        assert body["code"] == "insufficient_funds"
        assert body["shortfall"] == 50.0

    def test_quote(self, client, auth_headers):
        response = client.post(
            "/stores/quote",
            json={"kind": "store_create", "plan_id": "business", "name": "Shop"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json() == {
            "kind": "store_create",
            "description": "Store creation (Business plan)",
            "amount": 200.0,
            "balance": 500.0,
            "shortfall": 0.0,
            "sufficient": True,
        }

    def test_store_detail(self, client, make_listing, test_store, test_user):
        make_listing(test_user, test_store)

        response = client.get(f"/stores/{test_store.id}")

        assert response.status_code == 200
        data = response.json()
        assert data["active_listings"] == 1
        assert data["usage"]["max_ads"] == 200
        assert data["expiration"]["status"] == "active"
        assert data["expiration"]["can_renew"] is True

    def test_my_stores(self, client, auth_headers, make_store, test_user):
        make_store(test_user, name="First")

        response = client.get("/stores/mine", headers=auth_headers)

        assert [store["name"] for store in response.json()] == ["First"]

    def test_reactivate(self, client, auth_headers, make_store, test_user):
        store = make_store(test_user, expires_at=datetime.utcnow() - timedelta(days=12))

        response = client.post(f"/stores/{store.id}/reactivate", json={"confirmed": True}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["store"]["status"] == "active"

    def test_delete_store_with_listings(self, client, auth_headers, make_listing, test_store, test_user):
        make_listing(test_user, test_store)
        make_listing(test_user, test_store)

        response = client.delete(f"/stores/{test_store.id}", headers=auth_headers)

        assert response.status_code == 409
        assert response.json()["code"] == "active_listings_remain"
        assert response.json()["active_listings"] == 2

    def test_delete_store(self, client, auth_headers, test_store):
        response = client.delete(f"/stores/{test_store.id}", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"status": "deleted", "store_id": test_store.id}
        assert client.get(f"/stores/{test_store.id}").status_code == 404

    def test_delete_someone_elses_store(self, client, make_user, auth_headers_for, test_store):
        response = client.delete(f"/stores/{test_store.id}", headers=auth_headers_for(make_user("Other")))

        assert response.status_code == 403

    def test_follow_and_unfollow(self, client, make_user, auth_headers_for, test_store):
        headers = auth_headers_for(make_user("Fan"))

        response = client.post(f"/stores/{test_store.id}/follow", headers=headers)
        assert response.json() == {"following": True, "follower_count": 1}

        response = client.delete(f"/stores/{test_store.id}/follow", headers=headers)
        assert response.json() == {"following": False, "follower_count": 0}


class TestDiscountRoutes:
    """Test cases for discount and campaign endpoints"""

    def _payload(self, **overrides):
        now = datetime.utcnow()
        data = {
            "title": "Spring sale",
            "type": "percentage",
            "value": 15,
            "start_date": (now - timedelta(days=1)).isoformat(),
            "end_date": (now + timedelta(days=7)).isoformat(),
        }
        data.update(overrides)
        return data

    def test_create_and_list(self, client, auth_headers, test_store):
        response = client.post(f"/stores/{test_store.id}/discounts", json=self._payload(), headers=auth_headers)
        assert response.status_code == 201
        discount_id = response.json()["id"]

        response = client.get(f"/stores/{test_store.id}/discounts?active_only=true")
        assert [d["id"] for d in response.json()] == [discount_id]

    def test_validation_error_rendered(self, client, auth_headers, test_store):
        response = client.post(f"/stores/{test_store.id}/discounts", json=self._payload(value=150), headers=auth_headers)

        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

    def test_toggle_and_delete(self, client, auth_headers, test_store):
        discount_id = client.post(
            f"/stores/{test_store.id}/discounts", json=self._payload(), headers=auth_headers
        ).json()["id"]

        response = client.patch(f"/discounts/{discount_id}/toggle", headers=auth_headers)
        assert response.json()["is_active"] is False

        response = client.delete(f"/discounts/{discount_id}", headers=auth_headers)
        assert response.status_code == 204

    def test_campaign_priority(self, client, auth_headers, test_store):
        response = client.post(
            f"/stores/{test_store.id}/campaigns",
            json=self._payload(type="flash_sale", priority=3),
            headers=auth_headers,
        )

        assert response.status_code == 201
        assert response.json()["priority"] == 3

    def test_store_wide_discount(self, client, auth_headers, make_listing, test_store, test_user):
        listing = make_listing(test_user, test_store, price="80")
        excluded = make_listing(test_user, test_store, price="80")

        response = client.post(
            f"/stores/{test_store.id}/store-wide-discount",
            json={"percentage": 25, "exclude_listing_ids": [excluded.id]},
            headers=auth_headers,
        )
        assert response.status_code == 201
        assert response.json()["applies_to_all"] is True
        assert response.json()["excluded_listings"] == [excluded.id]

        assert client.get(f"/listings/{listing.id}").json()["presentation"]["price"]["discounted_price"] == 60.0
        assert client.get(f"/listings/{excluded.id}").json()["presentation"]["price"]["discounted_price"] == 80.0

        response = client.delete(f"/stores/{test_store.id}/store-wide-discount", headers=auth_headers)
        assert response.json() == {"removed": 1}
        assert client.get(f"/listings/{listing.id}").json()["presentation"]["price"]["discounted_price"] == 80.0

    def test_store_wide_discount_on_empty_store(self, client, auth_headers, test_store):
        response = client.post(f"/stores/{test_store.id}/store-wide-discount", json={"percentage": 25}, headers=auth_headers)

        assert response.status_code == 409

    def test_listing_store_discount(self, client, auth_headers, make_listing, test_store, test_user):
        listing = make_listing(test_user, test_store, price="50")

        response = client.post(
            f"/stores/{test_store.id}/listings/{listing.id}/discount", json={"percentage": 10}, headers=auth_headers
        )
        assert response.status_code == 201
        assert response.json()["applicable_listings"] == [listing.id]
        assert client.get(f"/listings/{listing.id}").json()["presentation"]["price"]["discounted_price"] == 45.0

        response = client.delete(f"/stores/{test_store.id}/listings/{listing.id}/discount", headers=auth_headers)
        assert response.json() == {"updated": 1}
        assert client.get(f"/listings/{listing.id}").json()["presentation"]["price"]["discounted_price"] == 50.0


class TestListingRoutes:
    """Test cases for listing endpoints"""

    def test_create_listing_in_store(self, client, auth_headers, test_store):
        response = client.post(
            "/listings",
            json={"title": "Phone", "price": 250, "store_id": test_store.id},
            headers=auth_headers,
        )

        assert response.status_code == 201
        assert response.json()["store_id"] == test_store.id
        detail = client.get(f"/stores/{test_store.id}").json()
        assert detail["usage"]["used"] == 1

    def test_listing_detail_presentation(self, client, auth_headers, make_listing, test_store, test_user):
        listing = make_listing(test_user, test_store, price="200")
        now = datetime.utcnow()
        client.post(
            f"/stores/{test_store.id}/campaigns",
            json={
                "title": "Clearance",
                "type": "clearance",
                "value": 25,
                "applicable_listings": [listing.id],
                "start_date": (now - timedelta(days=1)).isoformat(),
                "end_date": (now + timedelta(days=3)).isoformat(),
            },
            headers=auth_headers,
        )

        response = client.get(f"/listings/{listing.id}")

        assert response.status_code == 200
        presentation = response.json()["presentation"]
        assert presentation["price"]["discounted_price"] == 150.0
        assert presentation["price"]["badge_percentage"] == 25
        assert presentation["badge_kind"] == "clearance"
        assert response.json()["visible"] is True

    def test_promote(self, client, auth_headers, make_listing, test_user):
        listing = make_listing(test_user)

        response = client.post(
            f"/listings/{listing.id}/promote",
            json={"package_id": "premium-7", "confirmed": True},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["listing"]["promotion_type"] == "premium"
        assert response.json()["purchase"]["amount_charged"] == 5.0

    def test_discount_and_remove(self, client, auth_headers, make_listing, test_user):
        listing = make_listing(test_user, price="100")

        response = client.post(
            f"/listings/{listing.id}/discount",
            json={
                "discount_type": "fixed_amount",
                "discount_value": 30,
                "end_date": (datetime.utcnow() + timedelta(days=3)).isoformat(),
                "confirmed": True,
            },
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["listing"]["price"] == 70.0
        assert response.json()["listing"]["original_price"] == 100.0

        response = client.delete(f"/listings/{listing.id}/discount", headers=auth_headers)
        assert response.json()["price"] == 100.0
        assert response.json()["has_discount"] is False

    def test_promotion_packages(self, client):
        response = client.get("/listings/promotion-packages")
        assert response.status_code == 200
        assert response.json()[0]["id"] == "featured-7"


class TestWalletRoutes:
    """Test cases for wallet and payment endpoints"""

    def test_wallet_balance(self, client, auth_headers, test_user):
        response = client.get("/wallet", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"user_id": test_user.id, "balance": 500.0, "currency": "AZN"}

    def test_transactions(self, client, auth_headers):
        response = client.get("/wallet/transactions", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()[0]["kind"] == "credit"
        assert response.json()[0]["amount"] == 500.0

    @patch("routes.payments.create_payment")
    def test_topup(self, mock_create, client, db, auth_headers):
        mock_create.return_value = {
            "success": True,
            "payment_url": "https://pay.example/PR-9",
            "order_id": "PR-9",
            "raw": {"code": "00000"},
        }

        response = client.post("/payments/topup", json={"amount": 20}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["payment_url"] == "https://pay.example/PR-9"
        assert db.query(Payment).filter_by(order_id="PR-9").one().status == "initialized"

    @patch("routes.payments.create_payment")
    def test_topup_gateway_failure(self, mock_create, client, auth_headers):
        mock_create.return_value = {"success": False, "error": "Gateway down", "raw": {}}

        response = client.post("/payments/topup", json={"amount": 20}, headers=auth_headers)

        assert response.status_code == 402
        assert response.json()["detail"] == "Gateway down"

    @patch("routes.payments.check_status", return_value="approved")
    def test_verify_credits_once(self, mock_status, client, db, auth_headers, test_user):
        db.add(Payment(user_id=test_user.id, order_id="PR-10", amount=Decimal("20"), status="initialized"))
        db.commit()

        first = client.post("/payments/verify", json={"order_id": "PR-10"}, headers=auth_headers)
        second = client.post("/payments/verify", json={"order_id": "PR-10"}, headers=auth_headers)

        assert first.json()["status"] == "approved"
        assert first.json()["balance"] == 520.0
        assert second.json()["balance"] == 520.0
        mock_status.assert_called_once_with("PR-10")
        assert WalletLedger(db).balance(test_user.id) == Decimal("520.00")

    def test_verify_skips_credit_when_already_claimed(self, client, db, auth_headers, test_user):
        db.add(Payment(user_id=test_user.id, order_id="PR-11", amount=Decimal("20"), status="initialized"))
        db.commit()

        def approved_elsewhere(order_id):
            # A parallel verify flips the row while this request waits on the gateway
            db.query(Payment).filter(Payment.order_id == order_id).update(
                {Payment.status: "approved"}, synchronize_session=False
            )
            return "approved"

        with patch("routes.payments.check_status", side_effect=approved_elsewhere):
            response = client.post("/payments/verify", json={"order_id": "PR-11"}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "approved"
        assert response.json()["balance"] == 500.0
        assert db.query(WalletTransaction).filter(WalletTransaction.reference == "PR-11").count() == 0

    @patch("routes.payments.check_status", return_value="declined")
    def test_verify_records_gateway_status(self, mock_status, client, db, auth_headers, test_user):
        db.add(Payment(user_id=test_user.id, order_id="PR-12", amount=Decimal("20"), status="initialized"))
        db.commit()

        response = client.post("/payments/verify", json={"order_id": "PR-12"}, headers=auth_headers)

        assert response.json()["status"] == "declined"
        assert response.json()["balance"] == 500.0

    def test_verify_unknown_order(self, client, auth_headers):
        response = client.post("/payments/verify", json={"order_id": "nope"}, headers=auth_headers)

        assert response.status_code == 404


class TestNotificationRoutes:
    """Test cases for the notification inbox"""

    def test_unread_and_mark_read(self, client, db, auth_headers, test_store):
        NotificationService(db).notify_owner(test_store, "store_renewed")
        NotificationService(db).notify_owner(test_store, "store_expiring", {"days_left": 3, "expires_at": test_store.expires_at})
        db.commit()

        response = client.get("/notifications", headers=auth_headers)
        assert response.status_code == 200
        assert len(response.json()) == 2
        notice_id = response.json()[0]["id"]

        response = client.post(f"/notifications/{notice_id}/read", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["is_read"] is True
        assert len(client.get("/notifications", headers=auth_headers).json()) == 1

        response = client.post("/notifications/read-all", headers=auth_headers)
        assert response.json() == {"updated": 1}
        assert client.get("/notifications", headers=auth_headers).json() == []

    def test_cannot_read_someone_elses_notification(self, client, db, make_user, auth_headers_for, test_store):
        NotificationService(db).notify_owner(test_store, "store_renewed")
        db.commit()
        notice = db.query(Notification).one()

        response = client.post(f"/notifications/{notice.id}/read", headers=auth_headers_for(make_user("Other")))

        assert response.status_code == 404

    def test_requires_auth(self, client):
        assert client.get("/notifications").status_code == 401
