from __future__ import annotations

from dataclasses import dataclass


@dataclass
class PaymentIntentResult:
    id: str
    client_secret: str
    amount: int
    currency: str
    status: str
    raw: dict | None = None


@dataclass
class ConnectAccountResult:
    id: str
    charges_enabled: bool
    details_submitted: bool
    raw: dict | None = None


@dataclass
class AccountLinkResult:
    url: str
    expires_at: int | None = None
    raw: dict | None = None


class PaymentProviderError(RuntimeError):
    pass


class PaymentsProvider:
    name = "unknown"

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
        raise NotImplementedError

    def create_connect_account(self, *, email: str, country: str) -> ConnectAccountResult:
        raise NotImplementedError

    def create_account_link(self, *, account_id: str, refresh_url: str, return_url: str) -> AccountLinkResult:
        raise NotImplementedError

    def retrieve_account(self, account_id: str) -> ConnectAccountResult:
        raise NotImplementedError
