from __future__ import annotations

import unittest
from types import SimpleNamespace
from unittest.mock import patch

import stripe

from marketplace.integrations.payments.base import PaymentProviderError
from marketplace.integrations.payments.stripe_provider import StripePaymentsProvider


class StripePaymentsProviderTestCase(unittest.TestCase):
    def setUp(self):
        self.provider = StripePaymentsProvider(secret_key="sk_test_123")

    def test_payment_intent_routes_funds_to_seller(self):
        intent = SimpleNamespace(id="pi_1", client_secret="pi_1_secret_x", amount=150000, currency="dkk", status="requires_payment_method")
        with patch("stripe.PaymentIntent.create", return_value=intent) as create:
            result = self.provider.create_payment_intent(
                amount=150000,
                currency="DKK",
                destination_account="acct_seller",
                metadata={"listing_id": "l-1", "buyer_id": "b-1", "seller_id": "s-1"},
                application_fee_amount=3750,
                idempotency_key="checkout:b-1:l-1:k",
            )
        kwargs = create.call_args.kwargs
        self.assertEqual(kwargs["api_key"], "sk_test_123")
        self.assertEqual(kwargs["currency"], "dkk")
        self.assertEqual(kwargs["transfer_data"], {"destination": "acct_seller"})
        self.assertEqual(kwargs["application_fee_amount"], 3750)
        self.assertEqual(kwargs["idempotency_key"], "checkout:b-1:l-1:k")
        self.assertEqual(result.id, "pi_1")
        self.assertEqual(result.client_secret, "pi_1_secret_x")

    def test_fee_and_idempotency_omitted_when_absent(self):
        intent = SimpleNamespace(id="pi_2", client_secret="s", amount=100, currency="dkk", status="requires_payment_method")
        with patch("stripe.PaymentIntent.create", return_value=intent) as create:
            self.provider.create_payment_intent(amount=100, currency="dkk", destination_account="acct_x", metadata={})
        self.assertNotIn("application_fee_amount", create.call_args.kwargs)
        self.assertNotIn("idempotency_key", create.call_args.kwargs)

    def test_account_creation_uses_individual_standard_account(self):
        account = SimpleNamespace(id="acct_new", charges_enabled=False, details_submitted=False)
        with patch("stripe.Account.create", return_value=account) as create:
            result = self.provider.create_connect_account(email="seller@example.test", country="DK")
        kwargs = create.call_args.kwargs
        self.assertEqual(kwargs["type"], "standard")
        self.assertEqual(kwargs["business_type"], "individual")
        self.assertEqual(kwargs["country"], "DK")
        self.assertEqual(result.id, "acct_new")
        self.assertFalse(result.charges_enabled)

    def test_platform_errors_are_wrapped(self):
        with patch("stripe.Account.retrieve", side_effect=stripe.InvalidRequestError("No such account", "account")):
            with self.assertRaises(PaymentProviderError) as ctx:
                self.provider.retrieve_account("acct_missing")
        self.assertIn("STRIPE_ACCOUNT_RETRIEVE_FAILED", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
