from __future__ import annotations

import unittest
from datetime import datetime, timedelta
from unittest.mock import patch

from sqlalchemy.exc import SQLAlchemyError

from helpers import (
    ADDRESS,
    BOOTSTRAP_SECRET,
    MarketplaceAppTestCase,
    auth_headers,
    seed_connect_account,
    seed_listing,
    seed_order,
    seed_profile,
)
from marketplace.extensions import db
from marketplace.models import Ban, Listing, ListingStatus, OrderStatus, Profile, ProfileRole


class AdminActionsTestCase(MarketplaceAppTestCase):
    def setUp(self):
        super().setUp()
        with self.app.app_context():
            self.admin_id = seed_profile("admin-1", role=ProfileRole.ADMIN)
            self.user_id = seed_profile("user-1")
            self.seller_id = seed_profile("seller-1")
            self.listing_id = seed_listing(self.seller_id)

    def _act(self, user_id: str | None, body: dict):
        headers = auth_headers(user_id) if user_id else {}
        return self.client.post("/api/admin/actions", json=body, headers=headers)

    def _role(self, user_id: str) -> str:
        with self.app.app_context():
            return db.session.get(Profile, user_id).role

    def _listing_status(self) -> str:
        with self.app.app_context():
            return db.session.get(Listing, self.listing_id).status

    def test_requires_identity(self):
        res = self._act(None, {"action": "metrics"})
        self.assertEqual(res.status_code, 401)

    def test_non_admin_is_forbidden_even_for_unknown_action(self):
        for action in ("ban_user", "metrics", "drop_tables"):
            with self.subTest(action=action):
                res = self._act(self.user_id, {"action": action, "user_id": self.seller_id})
                self.assertEqual(res.status_code, 403)
                self.assertEqual(res.get_json()["message"], "Admin access required")
        self.assertEqual(self._role(self.seller_id), ProfileRole.USER)

    def test_unknown_action_is_invalid_for_admin(self):
        res = self._act(self.admin_id, {"action": "drop_tables"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["message"], "Invalid action")

    def test_ban_sets_role_and_records_ban(self):
        res = self._act(self.admin_id, {"action": "ban_user", "user_id": self.user_id, "reason": "fraudulent listings"})
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))
        self.assertEqual(res.get_json(), {"success": True, "message": "User banned successfully"})
        self.assertEqual(self._role(self.user_id), ProfileRole.BANNED)
        with self.app.app_context():
            ban = Ban.query.one()
            self.assertEqual(ban.user_id, self.user_id)
            self.assertEqual(ban.banned_by, self.admin_id)
            self.assertEqual(ban.reason, "fraudulent listings")

        # A banned user can no longer start a checkout.
        with self.app.app_context():
            seed_connect_account(self.seller_id)
        res = self.client.post(
            "/api/checkout",
            json={"listing_id": self.listing_id, "shipping_address": ADDRESS},
            headers=auth_headers(self.user_id),
        )
        self.assertEqual(res.status_code, 403)

    def test_ban_survives_failed_ban_record(self):
        with patch("marketplace.services.admin_action_service.Ban", side_effect=SQLAlchemyError("insert failed")):
            res = self._act(self.admin_id, {"action": "ban_user", "user_id": self.user_id})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(self._role(self.user_id), ProfileRole.BANNED)

    def test_ban_validation(self):
        self.assertEqual(self._act(self.admin_id, {"action": "ban_user"}).status_code, 400)
        self.assertEqual(self._act(self.admin_id, {"action": "ban_user", "user_id": "ghost"}).status_code, 404)
        self.assertEqual(self._act(self.admin_id, {"action": "ban_user", "user_id": self.admin_id}).status_code, 400)

    def test_unban_restores_user_role(self):
        self._act(self.admin_id, {"action": "ban_user", "user_id": self.user_id})
        res = self._act(self.admin_id, {"action": "unban_user", "user_id": self.user_id})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["message"], "User unbanned successfully")
        self.assertEqual(self._role(self.user_id), ProfileRole.USER)

    def test_unban_does_not_demote_admins(self):
        with self.app.app_context():
            seed_profile("admin-2", role=ProfileRole.ADMIN)
        res = self._act(self.admin_id, {"action": "unban_user", "user_id": "admin-2"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(self._role("admin-2"), ProfileRole.ADMIN)

    def test_hide_and_unhide_listing(self):
        res = self._act(self.admin_id, {"action": "hide_listing", "listing_id": self.listing_id})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(self._listing_status(), ListingStatus.HIDDEN)

        self.assertEqual(self._act(self.admin_id, {"action": "hide_listing", "listing_id": self.listing_id}).status_code, 400)

        res = self._act(self.admin_id, {"action": "unhide_listing", "listing_id": self.listing_id})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(self._listing_status(), ListingStatus.ACTIVE)

    def test_unhide_never_resurrects_sold_listing(self):
        with self.app.app_context():
            listing = db.session.get(Listing, self.listing_id)
            listing.status = ListingStatus.SOLD
            db.session.commit()
        res = self._act(self.admin_id, {"action": "unhide_listing", "listing_id": self.listing_id})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(self._listing_status(), ListingStatus.SOLD)

    def test_hide_missing_listing_is_not_found(self):
        res = self._act(self.admin_id, {"action": "hide_listing", "listing_id": "missing"})
        self.assertEqual(res.status_code, 404)

    def test_metrics(self):
        with self.app.app_context():
            sold = seed_listing(self.seller_id, status=ListingStatus.SOLD)
            seed_listing(self.seller_id, status=ListingStatus.HIDDEN)
            seed_order(sold, self.user_id, payment_ref="pi_m_1", amount=1000, status=OrderStatus.PAID)
            seed_order(
                sold,
                self.user_id,
                payment_ref="pi_m_2",
                amount=2500,
                status=OrderStatus.PAID,
                created_at=datetime.utcnow() - timedelta(days=45),
            )
            seed_order(self.listing_id, self.user_id, payment_ref="pi_m_3", amount=9999)
        res = self._act(self.admin_id, {"action": "metrics"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(
            res.get_json(),
            {
                "total_sales": 3500,
                "total_orders": 2,
                "recent_sales_30_days": 1000,
                "active_listings": 1,
                "sold_listings": 1,
                "total_users": 3,
            },
        )


class AdminBootstrapTestCase(MarketplaceAppTestCase):
    def setUp(self):
        super().setUp()
        with self.app.app_context():
            self.user_id = seed_profile("user-1")

    def _bootstrap(self, user_id: str, secret: str | None):
        body = {"action": "bootstrap_admin"}
        if secret is not None:
            body["bootstrap_secret"] = secret
        return self.client.post("/api/admin/actions", json=body, headers=auth_headers(user_id))

    def _role(self, user_id: str) -> str:
        with self.app.app_context():
            return db.session.get(Profile, user_id).role

    def test_bootstrap_promotes_first_admin(self):
        res = self._bootstrap(self.user_id, BOOTSTRAP_SECRET)
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))
        self.assertEqual(res.get_json(), {"success": True, "message": "User promoted to admin"})
        self.assertEqual(self._role(self.user_id), ProfileRole.ADMIN)

    def test_bootstrap_after_admin_exists_is_forbidden(self):
        with self.app.app_context():
            seed_profile("admin-1", role=ProfileRole.ADMIN)
        res = self._bootstrap(self.user_id, BOOTSTRAP_SECRET)
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.get_json()["message"], "Admin already exists")
        self.assertEqual(self._role(self.user_id), ProfileRole.USER)

    def test_bootstrap_is_single_use(self):
        self.assertEqual(self._bootstrap(self.user_id, BOOTSTRAP_SECRET).status_code, 200)
        with self.app.app_context():
            seed_profile("user-2")
        self.assertEqual(self._bootstrap("user-2", BOOTSTRAP_SECRET).status_code, 403)
        self.assertEqual(self._role("user-2"), ProfileRole.USER)

    def test_bootstrap_rejects_wrong_or_missing_secret(self):
        for secret in (None, "", "wrong-secret-value-000"):
            with self.subTest(secret=secret):
                res = self._bootstrap(self.user_id, secret)
                self.assertEqual(res.status_code, 403)
                self.assertEqual(res.get_json()["message"], "Invalid bootstrap secret")
        self.assertEqual(self._role(self.user_id), ProfileRole.USER)

    def test_bootstrap_disabled_without_configured_secret(self):
        with patch.dict(self.app.config, self.settings_patch(admin_bootstrap_secret="")):
            res = self._bootstrap(self.user_id, BOOTSTRAP_SECRET)
        self.assertEqual(res.status_code, 403)
        self.assertEqual(self._role(self.user_id), ProfileRole.USER)


if __name__ == "__main__":
    unittest.main()
