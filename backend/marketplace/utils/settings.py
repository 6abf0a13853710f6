from __future__ import annotations

import os
from dataclasses import dataclass

from flask import current_app

SETTINGS_KEY = "MARKETPLACE_SETTINGS"

_PROD_ENVS = ("prod", "production")


@dataclass(frozen=True)
class RuntimeSettings:
    env: str = "dev"
    payments_provider: str = "mock"
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_webhook_tolerance_seconds: int = 300
    application_fee_percent: float = 0.0
    admin_bootstrap_secret: str = ""
    connect_account_country: str = "DK"
    site_url: str = "http://localhost:5173"

    @property
    def is_production(self) -> bool:
        return self.env in _PROD_ENVS

    def default_return_url(self) -> str:
        return f"{self.site_url.rstrip('/')}/account"


def env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in ("1", "true", "yes", "on")


def env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        value = int(default)
    else:
        try:
            value = int(raw)
        except Exception:
            value = int(default)
    if value < minimum:
        value = minimum
    if value > maximum:
        value = maximum
    return value


def _application_fee_percent() -> float:
    raw = (os.getenv("STRIPE_CONNECT_APPLICATION_FEE_PERCENT") or "").strip()
    if not raw:
        return 0.0
    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"STRIPE_CONNECT_APPLICATION_FEE_PERCENT must be a number, got {raw!r}")
    if value != value or value < 0 or value >= 100:
        raise RuntimeError("STRIPE_CONNECT_APPLICATION_FEE_PERCENT must be >= 0 and < 100")
    return value


def _admin_bootstrap_secret() -> str:
    secret = (os.getenv("ADMIN_BOOTSTRAP_SECRET") or "").strip()
    if secret and len(secret) < 16:
        raise RuntimeError("ADMIN_BOOTSTRAP_SECRET must be at least 16 chars when set")
    return secret


def load_settings() -> RuntimeSettings:
    """Read and validate runtime configuration from the environment.

    Raises RuntimeError for values that would otherwise fail later inside a
    request (fee percentage out of range, weak bootstrap secret, missing
    payment credentials in production).
    """
    env = (os.getenv("MARKETPLACE_ENV", "dev") or "dev").strip().lower()
    default_provider = "stripe" if env in _PROD_ENVS else "mock"
    provider = (os.getenv("PAYMENTS_PROVIDER") or default_provider).strip().lower()
    if provider not in ("stripe", "mock"):
        raise RuntimeError(f"PAYMENTS_PROVIDER must be stripe|mock, got {provider!r}")

    settings = RuntimeSettings(
        env=env,
        payments_provider=provider,
        stripe_secret_key=(os.getenv("STRIPE_SECRET_KEY") or "").strip(),
        stripe_webhook_secret=(os.getenv("STRIPE_WEBHOOK_SECRET") or "").strip(),
        stripe_webhook_tolerance_seconds=env_int("STRIPE_WEBHOOK_TOLERANCE_SECONDS", 300, minimum=1, maximum=86400),
        application_fee_percent=_application_fee_percent(),
        admin_bootstrap_secret=_admin_bootstrap_secret(),
        connect_account_country=(os.getenv("CONNECT_ACCOUNT_COUNTRY") or "DK").strip().upper(),
        site_url=(os.getenv("SITE_URL") or "http://localhost:5173").strip(),
    )

    if settings.is_production:
        if settings.payments_provider != "stripe":
            raise RuntimeError("PAYMENTS_PROVIDER must be stripe in production")
        if not settings.stripe_secret_key:
            raise RuntimeError("STRIPE_SECRET_KEY must be set in production")
        if not settings.stripe_webhook_secret:
            raise RuntimeError("STRIPE_WEBHOOK_SECRET must be set in production")
    return settings


def get_settings() -> RuntimeSettings:
    settings = current_app.config.get(SETTINGS_KEY)
    if settings is None:
        settings = load_settings()
        current_app.config[SETTINGS_KEY] = settings
    return settings
