from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from marketplace.errors import InternalError, InvalidRequest, NotFound
from marketplace.extensions import db
from marketplace.integrations.common import IntegrationMisconfiguredError
from marketplace.integrations.payments.base import ConnectAccountResult, PaymentProviderError, PaymentsProvider
from marketplace.integrations.payments.factory import build_payments_provider
from marketplace.models import ConnectAccount, Profile
from marketplace.services.identity_service import require_not_banned, resolve_identity
from marketplace.utils.settings import get_settings


@dataclass
class OnboardingLink:
    url: str
    account_id: str
    created: bool = False


@dataclass
class AccountStatus:
    account_id: str
    charges_enabled: bool
    details_submitted: bool

    @property
    def account_status(self) -> str:
        return "completed" if self.details_submitted else "incomplete"

    @property
    def message(self) -> str:
        if self.charges_enabled:
            return "Payment account is active"
        if self.details_submitted:
            return "Payment account is under review"
        return "Payment account setup is incomplete"

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "charges_enabled": bool(self.charges_enabled),
            "account_status": self.account_status,
            "message": self.message,
        }


def _provider() -> PaymentsProvider:
    try:
        return build_payments_provider(get_settings())
    except IntegrationMisconfiguredError as e:
        current_app.logger.error("payout_provider_misconfigured err=%s", e)
        raise InternalError() from e


def _validate_return_url(return_url: str | None) -> str:
    if return_url is None or (isinstance(return_url, str) and not return_url.strip()):
        return get_settings().default_return_url()
    if not isinstance(return_url, str):
        raise InvalidRequest("return_url must be a string")
    cleaned = return_url.strip()
    if not cleaned.startswith(("http://", "https://")) or len(cleaned) > 2048:
        raise InvalidRequest("return_url must be an absolute http(s) URL")
    return cleaned


def _create_account(profile: Profile, provider: PaymentsProvider) -> ConnectAccount:
    settings = get_settings()
    try:
        created = provider.create_connect_account(email=profile.email or "", country=settings.connect_account_country)
    except PaymentProviderError as e:
        current_app.logger.exception("payout_account_create_failed user_id=%s", profile.id)
        raise InternalError("Failed to create payment account") from e

    account = ConnectAccount(
        user_id=profile.id,
        external_account_ref=created.id,
        charges_enabled=False,
        updated_at=datetime.utcnow(),
    )
    try:
        db.session.add(account)
        db.session.commit()
    except IntegrityError:
        # Another request for the same seller won the insert; keep its account.
        db.session.rollback()
        existing = db.session.get(ConnectAccount, profile.id)
        if existing is None:
            current_app.logger.exception("payout_account_persist_failed user_id=%s", profile.id)
            raise InternalError("Failed to save payment account")
        current_app.logger.warning(
            "payout_account_create_race user_id=%s orphan_ref=%s", profile.id, created.id
        )
        return existing
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception("payout_account_persist_failed user_id=%s ref=%s", profile.id, created.id)
        raise InternalError("Failed to save payment account") from e

    current_app.logger.info("payout_account_created user_id=%s ref=%s", profile.id, created.id)
    return account


def ensure_onboarding_link(auth_header: str | None, return_url: str | None = None) -> OnboardingLink:
    """Return a fresh onboarding link, creating the caller's payout account on first use.

    The stored account reference never changes once written, so repeated calls
    for the same seller always report the same account id.
    """
    profile = require_not_banned(resolve_identity(auth_header))
    target_url = _validate_return_url(return_url)
    provider = _provider()

    try:
        account = db.session.get(ConnectAccount, profile.id)
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception("payout_account_lookup_failed user_id=%s", profile.id)
        raise InternalError() from e

    created = account is None
    if created:
        account = _create_account(profile, provider)
    account_ref = account.external_account_ref

    try:
        link = provider.create_account_link(account_id=account_ref, refresh_url=target_url, return_url=target_url)
    except PaymentProviderError as e:
        current_app.logger.exception("payout_account_link_failed user_id=%s ref=%s", profile.id, account_ref)
        raise InternalError("Failed to create onboarding link") from e

    return OnboardingLink(url=link.url, account_id=account_ref, created=created)


def _write_through(account: ConnectAccount, remote: ConnectAccountResult) -> None:
    account.charges_enabled = bool(remote.charges_enabled)
    account.updated_at = datetime.utcnow()
    try:
        db.session.add(account)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception("payout_account_status_persist_failed user_id=%s", account.user_id)
        raise InternalError("Failed to update payment account") from e


def sync_account(user_id: str) -> AccountStatus:
    """Re-read a seller's payout account from the platform and store the result."""
    try:
        account = db.session.get(ConnectAccount, user_id)
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception("payout_account_lookup_failed user_id=%s", user_id)
        raise InternalError() from e
    if account is None:
        raise NotFound("No payment account found")

    account_ref = account.external_account_ref
    try:
        remote = _provider().retrieve_account(account_ref)
    except PaymentProviderError as e:
        current_app.logger.exception("payout_account_retrieve_failed user_id=%s ref=%s", user_id, account_ref)
        raise InternalError("Failed to check account status") from e

    previous = bool(account.charges_enabled)
    _write_through(account, remote)
    if previous != bool(remote.charges_enabled):
        current_app.logger.info(
            "payout_account_charges_changed user_id=%s ref=%s charges_enabled=%s",
            user_id,
            account_ref,
            bool(remote.charges_enabled),
        )
    return AccountStatus(
        account_id=account_ref,
        charges_enabled=bool(remote.charges_enabled),
        details_submitted=bool(remote.details_submitted),
    )


def refresh_account_status(auth_header: str | None) -> AccountStatus:
    profile = resolve_identity(auth_header)
    return sync_account(profile.id)
