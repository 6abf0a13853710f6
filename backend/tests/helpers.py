from __future__ import annotations

import hashlib
import hmac
import json
import os
import time
import unittest
import uuid
from dataclasses import replace
from datetime import datetime

from marketplace import create_app
from marketplace.extensions import db
from marketplace.integrations.payments.mock_provider import MockPaymentsProvider
from marketplace.models import ConnectAccount, Listing, ListingStatus, Order, OrderStatus, Profile, ProfileRole
from marketplace.utils.jwt_utils import create_access_token
from marketplace.utils.rate_limit import reset_limits
from marketplace.utils.settings import SETTINGS_KEY

WEBHOOK_SECRET = "whsec_test_0123456789abcdef"
BOOTSTRAP_SECRET = "bootstrap-secret-for-tests-0001"

ADDRESS = {
    "name": "Karen Blixen",
    "line1": "Rungstedlund 111",
    "postal_code": "2960",
    "city": "Rungsted Kyst",
    "country": "DK",
}


def auth_headers(user_id: str, **extra) -> dict:
    headers = {"Authorization": f"Bearer {create_access_token(user_id, email=f'{user_id}@example.test')}"}
    headers.update(extra)
    return headers


def sign_payload(payload: bytes, *, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    ts = int(time.time()) if timestamp is None else int(timestamp)
    signed = f"{ts}.".encode("utf-8") + payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def event_body(event_type: str, obj: dict, *, event_id: str | None = None) -> bytes:
    payload = {
        "id": event_id or f"evt_{uuid.uuid4().hex[:24]}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }
    return json.dumps(payload).encode("utf-8")


def seed_profile(user_id: str, *, role: str = ProfileRole.USER) -> str:
    db.session.add(Profile(id=user_id, email=f"{user_id}@example.test", role=role))
    db.session.commit()
    return user_id


def seed_listing(
    seller_id: str,
    *,
    price_amount: int = 150000,
    currency: str = "DKK",
    status: str = ListingStatus.ACTIVE,
) -> str:
    row = Listing(
        seller_id=seller_id,
        title="Teak sideboard",
        description="Mid-century, lightly used",
        price_amount=price_amount,
        currency=currency,
        images=["listings/sideboard-1.jpg"],
        status=status,
    )
    db.session.add(row)
    db.session.commit()
    return row.id


def seed_connect_account(user_id: str, *, charges_enabled: bool = True, ref: str | None = None) -> str:
    ref = ref or f"acct_test_{uuid.uuid4().hex[:12]}"
    db.session.add(ConnectAccount(user_id=user_id, external_account_ref=ref, charges_enabled=charges_enabled))
    db.session.commit()
    return ref


def seed_order(
    listing_id: str,
    buyer_id: str,
    *,
    payment_ref: str,
    amount: int = 150000,
    status: str = OrderStatus.REQUIRES_PAYMENT,
    created_at: datetime | None = None,
) -> str:
    row = Order(
        listing_id=listing_id,
        buyer_id=buyer_id,
        amount=amount,
        currency="DKK",
        payment_ref=payment_ref,
        status=status,
    )
    if created_at is not None:
        row.created_at = created_at
    db.session.add(row)
    db.session.commit()
    return row.id


class MarketplaceAppTestCase(unittest.TestCase):
    """Fresh in-memory database per test, mock payment platform, signed webhooks."""

    @classmethod
    def setUpClass(cls):
        cls._prev_db_uri = os.getenv("SQLALCHEMY_DATABASE_URI")
        cls._prev_db_url = os.getenv("DATABASE_URL")
        db_uri = "sqlite:///:memory:"
        os.environ["SQLALCHEMY_DATABASE_URI"] = db_uri
        os.environ["DATABASE_URL"] = db_uri

        cls.app = create_app()
        cls.app.config.update(TESTING=True)
        cls.app.config[SETTINGS_KEY] = replace(
            cls.app.config[SETTINGS_KEY],
            payments_provider="mock",
            stripe_webhook_secret=WEBHOOK_SECRET,
            admin_bootstrap_secret=BOOTSTRAP_SECRET,
            application_fee_percent=0.0,
        )
        cls.client = cls.app.test_client()

    @classmethod
    def tearDownClass(cls):
        for key, prev in (("SQLALCHEMY_DATABASE_URI", cls._prev_db_uri), ("DATABASE_URL", cls._prev_db_url)):
            if prev is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = prev

    def setUp(self):
        MockPaymentsProvider.reset()
        reset_limits()
        with self.app.app_context():
            db.drop_all()
            db.create_all()

    def settings_patch(self, **changes) -> dict:
        """Config mapping for patch.dict(self.app.config, ...) with adjusted settings."""
        return {SETTINGS_KEY: replace(self.app.config[SETTINGS_KEY], **changes)}
