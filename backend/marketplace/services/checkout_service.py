from __future__ import annotations

from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from marketplace.errors import (
    InternalError,
    InvalidRequest,
    NotFound,
    SellerNotOnboarded,
)
from marketplace.extensions import db
from marketplace.integrations.common import IntegrationMisconfiguredError, IntegrationResult
from marketplace.integrations.payments.base import PaymentIntentResult, PaymentProviderError
from marketplace.integrations.payments.factory import build_payments_provider
from marketplace.models import ConnectAccount, Listing, ListingStatus, Order, OrderStatus, ShippingAddress
from marketplace.services.identity_service import require_not_banned, resolve_identity
from marketplace.utils.observability import annotate
from marketplace.utils.settings import get_settings

_ADDRESS_LIMITS = {
    "name": 200,
    "line1": 255,
    "line2": 255,
    "postal_code": 32,
    "city": 120,
    "country": 120,
}
_REQUIRED_ADDRESS_FIELDS = ("name", "line1", "postal_code", "city", "country")


@dataclass(frozen=True)
class ShippingAddressInput:
    name: str
    line1: str
    postal_code: str
    city: str
    country: str
    line2: str | None = None


@dataclass(frozen=True)
class CheckoutRequest:
    listing_id: str
    shipping_address: ShippingAddressInput


@dataclass
class CheckoutResult:
    client_secret: str
    order_id: str
    payment_ref: str
    amount: int
    currency: str
    reused: bool = False


def _clean_str(value, *, field: str, limit: int, required: bool) -> str | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise InvalidRequest(f"{field} is required")
        return None
    if not isinstance(value, str):
        raise InvalidRequest(f"{field} must be a string")
    cleaned = value.strip()
    if len(cleaned) > limit:
        raise InvalidRequest(f"{field} must be at most {limit} characters")
    return cleaned


def parse_checkout_request(data) -> CheckoutRequest:
    """Validate the checkout body. Any client-supplied price fields are ignored."""
    if not isinstance(data, dict):
        raise InvalidRequest("Missing required fields")
    listing_raw = data.get("listing_id")
    address_raw = data.get("shipping_address")
    if not listing_raw or not address_raw:
        raise InvalidRequest("Missing required fields")
    if not isinstance(address_raw, dict):
        raise InvalidRequest("shipping_address must be an object")

    listing_id = _clean_str(listing_raw, field="listing_id", limit=64, required=True)
    fields = {}
    for name, limit in _ADDRESS_LIMITS.items():
        fields[name] = _clean_str(
            address_raw.get(name),
            field=f"shipping_address.{name}",
            limit=limit,
            required=name in _REQUIRED_ADDRESS_FIELDS,
        )
    return CheckoutRequest(listing_id=listing_id, shipping_address=ShippingAddressInput(**fields))


def compute_application_fee(price_amount: int, percent: float) -> int | None:
    if not percent or percent <= 0:
        return None
    fee = (Decimal(int(price_amount)) * Decimal(str(percent)) / Decimal("100")).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return int(fee) or None


def _load_active_listing(listing_id: str) -> Listing:
    try:
        listing = Listing.query.filter_by(id=listing_id, status=ListingStatus.ACTIVE).first()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception("checkout_listing_lookup_failed listing_id=%s", listing_id)
        raise InternalError() from e
    if listing is None:
        raise NotFound("Listing not found or not active")
    return listing


def _load_payout_account(seller_id: str) -> ConnectAccount:
    try:
        account = db.session.get(ConnectAccount, seller_id)
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception("checkout_payout_account_lookup_failed seller_id=%s", seller_id)
        raise InternalError() from e
    if account is None:
        raise SellerNotOnboarded("Seller has not set up payment account")
    if not account.charges_enabled:
        raise SellerNotOnboarded("Seller payment account not ready")
    return account


def _persist_order(*, listing_id: str, buyer_id: str, amount: int, currency: str, intent: PaymentIntentResult) -> IntegrationResult:
    order = Order(
        listing_id=listing_id,
        buyer_id=buyer_id,
        amount=amount,
        currency=currency,
        payment_ref=intent.id,
        status=OrderStatus.REQUIRES_PAYMENT,
    )
    try:
        db.session.add(order)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception(
            "checkout_order_persist_failed listing_id=%s buyer_id=%s payment_ref=%s",
            listing_id,
            buyer_id,
            intent.id,
        )
        return IntegrationResult(ok=False, code="ORDER_PERSIST_FAILED", message=type(e).__name__, raw={"payment_ref": intent.id})
    return IntegrationResult(ok=True, code="ORDER_CREATED", raw={"order_id": order.id})


def _persist_shipping_address(*, order_id: str, buyer_id: str, address: ShippingAddressInput) -> IntegrationResult:
    row = ShippingAddress(order_id=order_id, buyer_id=buyer_id, **asdict(address))
    try:
        db.session.add(row)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception("checkout_shipping_address_persist_failed order_id=%s", order_id)
        return IntegrationResult(ok=False, code="SHIPPING_ADDRESS_PERSIST_FAILED", message=type(e).__name__, raw={"order_id": order_id})
    return IntegrationResult(ok=True, code="SHIPPING_ADDRESS_SAVED", raw={"shipping_address_id": row.id})


def _resume_existing_order(existing: Order, *, buyer_id: str, intent: PaymentIntentResult, address: ShippingAddressInput) -> CheckoutResult:
    """A retried checkout reused a payment intent that already has an order."""
    if existing.buyer_id != buyer_id:
        current_app.logger.error(
            "checkout_intent_owner_mismatch payment_ref=%s order_id=%s", intent.id, existing.id
        )
        raise InternalError()
    order_id = existing.id
    has_address = ShippingAddress.query.filter_by(order_id=order_id).first() is not None
    if not has_address:
        step = _persist_shipping_address(order_id=order_id, buyer_id=buyer_id, address=address)
        if not step.ok:
            raise InternalError("Failed to save shipping address", extra={"order_id": order_id})
    return CheckoutResult(
        client_secret=intent.client_secret,
        order_id=order_id,
        payment_ref=intent.id,
        amount=int(existing.amount),
        currency=existing.currency,
        reused=True,
    )


def initiate_checkout(auth_header: str | None, data, *, idempotency_key: str | None = None) -> CheckoutResult:
    """Start a purchase of one listing for the authenticated buyer.

    Preconditions are checked in a fixed order and the first failure wins:
    identity, ban state, request shape, listing availability, self-purchase,
    seller onboarding. On success the steps run as a best-effort sequence:

    1. payment intent at the platform (exact listing amount, routed to the
       seller's payout account, tagged with listing/buyer/seller ids);
    2. order row in ``requires_payment`` keyed on the intent id;
    3. shipping address row for that order.

    A failure in step 2 leaves the intent live at the platform and a failure in
    step 3 leaves the order in ``requires_payment``; both surface as
    InternalError. Neither state affects settlement, which keys on the intent.
    """
    buyer = require_not_banned(resolve_identity(auth_header))
    buyer_id = buyer.id
    req = parse_checkout_request(data)

    listing = _load_active_listing(req.listing_id)
    annotate(listing_id=listing.id, seller_id=listing.seller_id)
    # Snapshot pricing now; the order must carry exactly these values.
    listing_id = listing.id
    seller_id = listing.seller_id
    amount = int(listing.price_amount)
    currency = (listing.currency or "").upper()

    if seller_id == buyer_id:
        raise InvalidRequest("Cannot buy your own listing")

    account = _load_payout_account(seller_id)
    destination = account.external_account_ref

    settings = get_settings()
    try:
        provider = build_payments_provider(settings)
    except IntegrationMisconfiguredError as e:
        current_app.logger.error("checkout_provider_misconfigured err=%s", e)
        raise InternalError() from e

    fee = compute_application_fee(amount, settings.application_fee_percent)
    try:
        intent = provider.create_payment_intent(
            amount=amount,
            currency=currency,
            destination_account=destination,
            metadata={"listing_id": listing_id, "buyer_id": buyer_id, "seller_id": seller_id},
            application_fee_amount=fee,
            idempotency_key=f"checkout:{buyer_id}:{listing_id}:{idempotency_key}" if idempotency_key else None,
        )
    except PaymentProviderError as e:
        current_app.logger.exception("checkout_intent_create_failed listing_id=%s buyer_id=%s", listing_id, buyer_id)
        raise InternalError("Failed to create payment") from e

    existing = Order.query.filter_by(payment_ref=intent.id).first()
    if existing is not None:
        return _resume_existing_order(existing, buyer_id=buyer_id, intent=intent, address=req.shipping_address)

    order_step = _persist_order(listing_id=listing_id, buyer_id=buyer_id, amount=amount, currency=currency, intent=intent)
    if not order_step.ok:
        raise InternalError("Failed to create order")
    order_id = order_step.raw["order_id"]

    address_step = _persist_shipping_address(order_id=order_id, buyer_id=buyer_id, address=req.shipping_address)
    if not address_step.ok:
        raise InternalError("Failed to save shipping address", extra={"order_id": order_id})

    current_app.logger.info(
        "checkout_created order_id=%s listing_id=%s payment_ref=%s amount=%s currency=%s fee=%s",
        order_id,
        listing_id,
        intent.id,
        amount,
        currency,
        fee or 0,
    )
    return CheckoutResult(
        client_secret=intent.client_secret,
        order_id=order_id,
        payment_ref=intent.id,
        amount=amount,
        currency=currency,
    )
