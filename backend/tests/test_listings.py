from __future__ import annotations

import unittest

from helpers import MarketplaceAppTestCase, auth_headers, seed_profile
from marketplace.extensions import db
from marketplace.models import Listing, ListingStatus, ProfileRole


class CreateListingTestCase(MarketplaceAppTestCase):
    def setUp(self):
        super().setUp()
        with self.app.app_context():
            self.seller_id = seed_profile("seller-1")

    def _post(self, user_id: str, body: dict):
        return self.client.post("/api/listings", json=body, headers=auth_headers(user_id))

    def test_creates_active_listing_for_caller(self):
        res = self._post(
            self.seller_id,
            {
                "title": "  Racing bicycle ",
                "description": "Steel frame",
                "price_amount": 275000,
                "currency": "dkk",
                "images": ["listings/bike-1.jpg", "listings/bike-2.jpg"],
                "seller_id": "someone-else",
            },
        )
        self.assertEqual(res.status_code, 201, res.get_data(as_text=True))
        listing = res.get_json()["listing"]
        self.assertEqual(listing["title"], "Racing bicycle")
        self.assertEqual(listing["currency"], "DKK")
        self.assertEqual(listing["status"], ListingStatus.ACTIVE)
        self.assertEqual(listing["seller_id"], self.seller_id)
        with self.app.app_context():
            row = db.session.get(Listing, listing["id"])
            self.assertEqual(row.price_amount, 275000)
            self.assertEqual(row.images, ["listings/bike-1.jpg", "listings/bike-2.jpg"])

    def test_first_request_creates_profile(self):
        res = self._post("fresh-user", {"title": "Lamp", "price_amount": 100})
        self.assertEqual(res.status_code, 201)
        self.assertEqual(res.get_json()["listing"]["currency"], "DKK")

    def test_rejects_invalid_fields(self):
        cases = [
            {"price_amount": 100},
            {"title": "Lamp", "price_amount": 0},
            {"title": "Lamp", "price_amount": -5},
            {"title": "Lamp", "price_amount": 10.5},
            {"title": "Lamp", "price_amount": "100"},
            {"title": "Lamp", "price_amount": True},
            {"title": "Lamp", "price_amount": 100, "currency": "KRONER"},
            {"title": "Lamp", "price_amount": 100, "images": "one.jpg"},
        ]
        for body in cases:
            with self.subTest(body=body):
                self.assertEqual(self._post(self.seller_id, body).status_code, 400)
        with self.app.app_context():
            self.assertEqual(Listing.query.count(), 0)

    def test_price_must_fit_integer_column(self):
        res = self._post(self.seller_id, {"title": "Lamp", "price_amount": 2**31})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "INVALID_REQUEST")
        res = self._post(self.seller_id, {"title": "Lamp", "price_amount": 2**31 - 1})
        self.assertEqual(res.status_code, 201)

    def test_banned_user_cannot_list(self):
        with self.app.app_context():
            seed_profile("banned-1", role=ProfileRole.BANNED)
        res = self._post("banned-1", {"title": "Lamp", "price_amount": 100})
        self.assertEqual(res.status_code, 403)


if __name__ == "__main__":
    unittest.main()
