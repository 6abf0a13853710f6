from __future__ import annotations

from marketplace.integrations.common import IntegrationMisconfiguredError
from marketplace.integrations.payments.base import PaymentsProvider
from marketplace.integrations.payments.mock_provider import MockPaymentsProvider
from marketplace.integrations.payments.stripe_provider import StripePaymentsProvider
from marketplace.utils.settings import RuntimeSettings


def build_payments_provider(settings: RuntimeSettings) -> PaymentsProvider:
    if settings.payments_provider == "mock":
        return MockPaymentsProvider()
    if settings.payments_provider != "stripe":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:payments_provider={settings.payments_provider}")
    if not settings.stripe_secret_key:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing STRIPE_SECRET_KEY")
    return StripePaymentsProvider(secret_key=settings.stripe_secret_key)


def missing_credentials(settings: RuntimeSettings) -> list[str]:
    if settings.payments_provider != "stripe":
        return []
    required = (("STRIPE_SECRET_KEY", settings.stripe_secret_key), ("STRIPE_WEBHOOK_SECRET", settings.stripe_webhook_secret))
    return [name for name, value in required if not value]


def payment_health(settings: RuntimeSettings) -> dict:
    missing = missing_credentials(settings)
    if missing:
        status = "misconfigured"
    elif settings.payments_provider == "mock":
        status = "mock"
    else:
        status = "configured"
    return {
        "status": status,
        "provider": settings.payments_provider,
        "missing": missing,
        "application_fee_percent": float(settings.application_fee_percent),
    }
