from __future__ import annotations

import stripe

from marketplace.integrations.payments.base import (
    AccountLinkResult,
    ConnectAccountResult,
    PaymentIntentResult,
    PaymentProviderError,
    PaymentsProvider,
)


def _raw(obj) -> dict:
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return {"id": getattr(obj, "id", None)}


def _error_message(exc: Exception) -> str:
    msg = getattr(exc, "user_message", None) or str(exc) or type(exc).__name__
    return str(msg).strip()


class StripePaymentsProvider(PaymentsProvider):
    name = "stripe"

    def __init__(self, secret_key: str):
        self.secret_key = secret_key

    def create_payment_intent(
        self,
        *,
        amount: int,
        currency: str,
        destination_account: str,
        metadata: dict,
        application_fee_amount: int | None = None,
        idempotency_key: str | None = None,
    ) -> PaymentIntentResult:
        params = {
            "amount": int(amount),
            "currency": (currency or "").lower(),
            "transfer_data": {"destination": destination_account},
            "metadata": {str(k): str(v) for k, v in (metadata or {}).items()},
        }
        if application_fee_amount:
            params["application_fee_amount"] = int(application_fee_amount)
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        try:
            intent = stripe.PaymentIntent.create(api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            raise PaymentProviderError(f"STRIPE_INTENT_CREATE_FAILED:{_error_message(e)}") from e
        return PaymentIntentResult(
            id=intent.id,
            client_secret=getattr(intent, "client_secret", None) or "",
            amount=int(getattr(intent, "amount", None) or amount),
            currency=(getattr(intent, "currency", None) or currency).lower(),
            status=getattr(intent, "status", None) or "",
            raw=_raw(intent),
        )

    def create_connect_account(self, *, email: str, country: str) -> ConnectAccountResult:
        try:
            account = stripe.Account.create(
                api_key=self.secret_key,
                type="standard",
                country=country,
                email=email or None,
                business_type="individual",
            )
        except stripe.StripeError as e:
            raise PaymentProviderError(f"STRIPE_ACCOUNT_CREATE_FAILED:{_error_message(e)}") from e
        return _account_result(account)

    def create_account_link(self, *, account_id: str, refresh_url: str, return_url: str) -> AccountLinkResult:
        try:
            link = stripe.AccountLink.create(
                api_key=self.secret_key,
                account=account_id,
                refresh_url=refresh_url,
                return_url=return_url,
                type="account_onboarding",
            )
        except stripe.StripeError as e:
            raise PaymentProviderError(f"STRIPE_ACCOUNT_LINK_FAILED:{_error_message(e)}") from e
        return AccountLinkResult(
            url=(getattr(link, "url", None) or "").strip(),
            expires_at=getattr(link, "expires_at", None),
            raw=_raw(link),
        )

    def retrieve_account(self, account_id: str) -> ConnectAccountResult:
        try:
            account = stripe.Account.retrieve(account_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            raise PaymentProviderError(f"STRIPE_ACCOUNT_RETRIEVE_FAILED:{_error_message(e)}") from e
        return _account_result(account)


def _account_result(account) -> ConnectAccountResult:
    return ConnectAccountResult(
        id=account.id,
        charges_enabled=bool(getattr(account, "charges_enabled", False)),
        details_submitted=bool(getattr(account, "details_submitted", False)),
        raw=_raw(account),
    )
