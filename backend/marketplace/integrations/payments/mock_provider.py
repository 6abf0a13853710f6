from __future__ import annotations

import threading
import uuid

from marketplace.integrations.payments.base import (
    AccountLinkResult,
    ConnectAccountResult,
    PaymentIntentResult,
    PaymentProviderError,
    PaymentsProvider,
)

_LOCK = threading.Lock()
_INTENTS: dict[str, dict] = {}
_ACCOUNTS: dict[str, dict] = {}
_IDEMPOTENT_INTENTS: dict[str, str] = {}


class MockPaymentsProvider(PaymentsProvider):
    """In-process stand-in for the payment platform.

    State lives at module level so every provider instance built for a request
    sees the same intents and accounts, the way a remote platform would.
    """

    name = "mock"

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
        with _LOCK:
            if idempotency_key and idempotency_key in _IDEMPOTENT_INTENTS:
                return _intent_result(_INTENTS[_IDEMPOTENT_INTENTS[idempotency_key]])
            intent_id = f"pi_mock_{uuid.uuid4().hex[:24]}"
            row = {
                "id": intent_id,
                "client_secret": f"{intent_id}_secret_{uuid.uuid4().hex[:16]}",
                "amount": int(amount),
                "currency": (currency or "").lower(),
                "status": "requires_payment_method",
                "transfer_data": {"destination": destination_account},
                "application_fee_amount": application_fee_amount,
                "metadata": dict(metadata or {}),
            }
            _INTENTS[intent_id] = row
            if idempotency_key:
                _IDEMPOTENT_INTENTS[idempotency_key] = intent_id
        return _intent_result(row)

    def create_connect_account(self, *, email: str, country: str) -> ConnectAccountResult:
        account_id = f"acct_mock_{uuid.uuid4().hex[:16]}"
        row = {
            "id": account_id,
            "type": "standard",
            "business_type": "individual",
            "country": country,
            "email": email,
            "charges_enabled": False,
            "details_submitted": False,
        }
        with _LOCK:
            _ACCOUNTS[account_id] = row
        return _account_result(row)

    def create_account_link(self, *, account_id: str, refresh_url: str, return_url: str) -> AccountLinkResult:
        with _LOCK:
            known = account_id in _ACCOUNTS
        if not known:
            raise PaymentProviderError(f"MOCK_ACCOUNT_NOT_FOUND:{account_id}")
        url = f"https://example.com/mock/onboarding?account={account_id}&nonce={uuid.uuid4().hex[:8]}"
        return AccountLinkResult(
            url=url,
            raw={"account": account_id, "refresh_url": refresh_url, "return_url": return_url},
        )

    def retrieve_account(self, account_id: str) -> ConnectAccountResult:
        with _LOCK:
            row = _ACCOUNTS.get(account_id)
        if row is None:
            raise PaymentProviderError(f"MOCK_ACCOUNT_NOT_FOUND:{account_id}")
        return _account_result(row)

    # Helpers for dev tooling and tests.

    @staticmethod
    def set_account_state(account_id: str, *, charges_enabled: bool, details_submitted: bool | None = None) -> None:
        with _LOCK:
            row = _ACCOUNTS.setdefault(account_id, {"id": account_id})
            row["charges_enabled"] = bool(charges_enabled)
            row["details_submitted"] = bool(charges_enabled if details_submitted is None else details_submitted)

    @staticmethod
    def intents() -> list[dict]:
        with _LOCK:
            return [dict(row) for row in _INTENTS.values()]

    @staticmethod
    def accounts() -> list[dict]:
        with _LOCK:
            return [dict(row) for row in _ACCOUNTS.values()]

    @staticmethod
    def reset() -> None:
        with _LOCK:
            _INTENTS.clear()
            _ACCOUNTS.clear()
            _IDEMPOTENT_INTENTS.clear()


def _intent_result(row: dict) -> PaymentIntentResult:
    return PaymentIntentResult(
        id=row["id"],
        client_secret=row["client_secret"],
        amount=int(row["amount"]),
        currency=row["currency"],
        status=row["status"],
        raw=dict(row),
    )


def _account_result(row: dict) -> ConnectAccountResult:
    return ConnectAccountResult(
        id=row["id"],
        charges_enabled=bool(row.get("charges_enabled")),
        details_submitted=bool(row.get("details_submitted")),
        raw=dict(row),
    )
