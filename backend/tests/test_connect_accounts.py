from __future__ import annotations

import unittest
from unittest.mock import patch

from helpers import MarketplaceAppTestCase, auth_headers, seed_connect_account, seed_profile
from marketplace.extensions import db
from marketplace.integrations.payments.base import PaymentProviderError
from marketplace.integrations.payments.mock_provider import MockPaymentsProvider
from marketplace.models import ConnectAccount, ProfileRole


class ConnectOnboardingTestCase(MarketplaceAppTestCase):
    def setUp(self):
        super().setUp()
        with self.app.app_context():
            self.seller_id = seed_profile("seller-1")

    def _link(self, user_id: str, body: dict | None = None):
        return self.client.post("/api/connect/onboarding-link", json=body or {}, headers=auth_headers(user_id))

    def test_first_call_creates_account_with_charges_disabled(self):
        res = self._link(self.seller_id)
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))
        data = res.get_json()
        self.assertTrue(data["account_id"].startswith("acct_mock_"))
        self.assertIn(data["account_id"], data["url"])

        with self.app.app_context():
            account = db.session.get(ConnectAccount, self.seller_id)
            self.assertEqual(account.external_account_ref, data["account_id"])
            self.assertFalse(account.charges_enabled)

        created = MockPaymentsProvider.accounts()
        self.assertEqual(len(created), 1)
        self.assertEqual(created[0]["country"], "DK")
        self.assertEqual(created[0]["business_type"], "individual")

    def test_repeated_calls_return_same_account(self):
        first = self._link(self.seller_id).get_json()
        second = self._link(self.seller_id, {"return_url": "https://shop.example.dk/account"}).get_json()
        self.assertEqual(first["account_id"], second["account_id"])
        self.assertNotEqual(first["url"], second["url"])
        self.assertEqual(len(MockPaymentsProvider.accounts()), 1)
        with self.app.app_context():
            self.assertEqual(ConnectAccount.query.count(), 1)

    def test_link_requires_identity_and_rejects_banned(self):
        res = self.client.post("/api/connect/onboarding-link", json={})
        self.assertEqual(res.status_code, 401)

        with self.app.app_context():
            seed_profile("banned-1", role=ProfileRole.BANNED)
        res = self._link("banned-1")
        self.assertEqual(res.status_code, 403)
        self.assertEqual(MockPaymentsProvider.accounts(), [])

    def test_non_http_return_url_is_rejected(self):
        res = self._link(self.seller_id, {"return_url": "javascript:alert(1)"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(MockPaymentsProvider.accounts(), [])

    def test_platform_failure_is_internal_error(self):
        with patch(
            "marketplace.integrations.payments.mock_provider.MockPaymentsProvider.create_connect_account",
            side_effect=PaymentProviderError("STRIPE_ACCOUNT_CREATE_FAILED:down"),
        ):
            res = self._link(self.seller_id)
        self.assertEqual(res.status_code, 500)
        self.assertEqual(res.get_json()["message"], "Failed to create payment account")
        with self.app.app_context():
            self.assertIsNone(db.session.get(ConnectAccount, self.seller_id))


class ConnectStatusTestCase(MarketplaceAppTestCase):
    def setUp(self):
        super().setUp()
        with self.app.app_context():
            self.seller_id = seed_profile("seller-1")

    def test_status_without_account_is_not_found(self):
        res = self.client.post("/api/connect/status", headers=auth_headers(self.seller_id))
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.get_json()["error"], "NOT_FOUND")

    def test_status_requires_identity(self):
        self.assertEqual(self.client.get("/api/connect/status").status_code, 401)

    def test_status_refresh_writes_through_platform_state(self):
        account_id = self.client.post(
            "/api/connect/onboarding-link", json={}, headers=auth_headers(self.seller_id)
        ).get_json()["account_id"]

        res = self.client.get("/api/connect/status", headers=auth_headers(self.seller_id))
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertFalse(body["charges_enabled"])
        self.assertEqual(body["account_status"], "incomplete")

        MockPaymentsProvider.set_account_state(account_id, charges_enabled=True)
        res = self.client.post("/api/connect/status", headers=auth_headers(self.seller_id))
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertTrue(body["charges_enabled"])
        self.assertEqual(body["account_status"], "completed")
        with self.app.app_context():
            self.assertTrue(db.session.get(ConnectAccount, self.seller_id).charges_enabled)

        MockPaymentsProvider.set_account_state(account_id, charges_enabled=False, details_submitted=True)
        body = self.client.post("/api/connect/status", headers=auth_headers(self.seller_id)).get_json()
        self.assertFalse(body["charges_enabled"])
        self.assertEqual(body["account_status"], "completed")
        with self.app.app_context():
            self.assertFalse(db.session.get(ConnectAccount, self.seller_id).charges_enabled)

    def test_sync_command_updates_account(self):
        with self.app.app_context():
            ref = seed_connect_account(self.seller_id, charges_enabled=False, ref="acct_mock_cli0001")
        MockPaymentsProvider.set_account_state(ref, charges_enabled=True)

        result = self.app.test_cli_runner().invoke(args=["sync-connect-account", "--user-id", self.seller_id])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("charges_enabled=true", result.output)
        with self.app.app_context():
            self.assertTrue(db.session.get(ConnectAccount, self.seller_id).charges_enabled)

    def test_sync_command_reports_missing_account(self):
        result = self.app.test_cli_runner().invoke(args=["sync-connect-account", "--user-id", "nobody"])
        self.assertNotEqual(result.exit_code, 0)
        self.assertIn("NOT_FOUND", result.output)


if __name__ == "__main__":
    unittest.main()
