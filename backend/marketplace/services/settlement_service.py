from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from marketplace.errors import InternalError, InvalidRequest, InvalidSignature
from marketplace.extensions import db
from marketplace.integrations.common import IntegrationResult
from marketplace.models import (
    ConnectAccount,
    Listing,
    ListingStatus,
    Order,
    OrderStatus,
    WebhookEvent,
    WebhookEventStatus,
)
from marketplace.utils.observability import annotate, get_request_id
from marketplace.utils.settings import get_settings
from marketplace.utils.webhook_signature import verify_signature

PROVIDER = "stripe"


# Recognized event kinds. Anything else becomes UnknownEvent and is acked.


@dataclass(frozen=True)
class PaymentSucceeded:
    event_id: str
    payment_ref: str
    listing_id: str
    buyer_id: str
    seller_id: str


@dataclass(frozen=True)
class PaymentFailed:
    event_id: str
    payment_ref: str


@dataclass(frozen=True)
class PaymentCanceled:
    event_id: str
    payment_ref: str


@dataclass(frozen=True)
class AccountUpdated:
    event_id: str
    account_ref: str
    charges_enabled: bool | None


@dataclass(frozen=True)
class MalformedEvent:
    event_id: str
    event_type: str
    reason: str


@dataclass(frozen=True)
class UnknownEvent:
    event_id: str
    event_type: str


def _payload_hash(raw: bytes) -> str:
    return hashlib.sha256(raw or b"").hexdigest()


def _data_object(payload: dict) -> dict:
    data = payload.get("data")
    if not isinstance(data, dict):
        return {}
    obj = data.get("object")
    return obj if isinstance(obj, dict) else {}


def _str_or_empty(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def parse_event(payload, *, raw: bytes = b""):
    """Convert a verified platform event into one of the tagged event kinds."""
    if not isinstance(payload, dict):
        raise InvalidRequest("Event payload must be an object")
    event_type = _str_or_empty(payload.get("type"))
    if not event_type:
        raise InvalidRequest("Event type is required")
    event_id = _str_or_empty(payload.get("id")) or f"sha256:{_payload_hash(raw)[:48]}"
    obj = _data_object(payload)

    if event_type.startswith("payment_intent."):
        payment_ref = _str_or_empty(obj.get("id"))
        if event_type not in ("payment_intent.succeeded", "payment_intent.payment_failed", "payment_intent.canceled"):
            return UnknownEvent(event_id=event_id, event_type=event_type)
        if not payment_ref:
            return MalformedEvent(event_id=event_id, event_type=event_type, reason="missing payment intent id")
        if event_type == "payment_intent.payment_failed":
            return PaymentFailed(event_id=event_id, payment_ref=payment_ref)
        if event_type == "payment_intent.canceled":
            return PaymentCanceled(event_id=event_id, payment_ref=payment_ref)
        meta = obj.get("metadata") if isinstance(obj.get("metadata"), dict) else {}
        listing_id = _str_or_empty(meta.get("listing_id"))
        buyer_id = _str_or_empty(meta.get("buyer_id"))
        seller_id = _str_or_empty(meta.get("seller_id"))
        if not (listing_id and buyer_id and seller_id):
            return MalformedEvent(event_id=event_id, event_type=event_type, reason="missing metadata")
        return PaymentSucceeded(
            event_id=event_id,
            payment_ref=payment_ref,
            listing_id=listing_id,
            buyer_id=buyer_id,
            seller_id=seller_id,
        )

    if event_type == "account.updated":
        account_ref = _str_or_empty(obj.get("id"))
        if not account_ref:
            return MalformedEvent(event_id=event_id, event_type=event_type, reason="missing account id")
        charges = obj.get("charges_enabled")
        return AccountUpdated(
            event_id=event_id,
            account_ref=account_ref,
            charges_enabled=charges if isinstance(charges, bool) else None,
        )

    return UnknownEvent(event_id=event_id, event_type=event_type)


def _event_type(event) -> str:
    if isinstance(event, (UnknownEvent, MalformedEvent)):
        return event.event_type
    return {
        PaymentSucceeded: "payment_intent.succeeded",
        PaymentFailed: "payment_intent.payment_failed",
        PaymentCanceled: "payment_intent.canceled",
        AccountUpdated: "account.updated",
    }[type(event)]


def _event_reference(event) -> str:
    if isinstance(event, (PaymentSucceeded, PaymentFailed, PaymentCanceled)):
        return event.payment_ref
    if isinstance(event, AccountUpdated):
        return event.account_ref
    return ""


# Mutation steps. Each is a conditional UPDATE, so repeating one reasserts the
# same target state and never moves a row backwards.


def _mark_order_paid(payment_ref: str) -> IntegrationResult:
    try:
        updated = (
            Order.query.filter(Order.payment_ref == payment_ref, Order.status.in_(OrderStatus.SETTLEABLE))
            .update({Order.status: OrderStatus.PAID}, synchronize_session=False)
        )
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception("settlement_order_paid_failed payment_ref=%s", payment_ref)
        return IntegrationResult.failure("ORDER_UPDATE_FAILED", e)
    if not updated:
        current_app.logger.warning("settlement_order_paid_noop payment_ref=%s", payment_ref)
    return IntegrationResult(ok=True, code="ORDER_PAID", raw={"updated": int(updated or 0)})


def _mark_listing_sold(listing_id: str) -> IntegrationResult:
    try:
        updated = (
            Listing.query.filter(Listing.id == listing_id, Listing.status != ListingStatus.SOLD)
            .update({Listing.status: ListingStatus.SOLD}, synchronize_session=False)
        )
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception("settlement_listing_sold_failed listing_id=%s", listing_id)
        return IntegrationResult.failure("LISTING_UPDATE_FAILED", e)
    return IntegrationResult(ok=True, code="LISTING_SOLD", raw={"updated": int(updated or 0)})


def _reset_order(payment_ref: str) -> IntegrationResult:
    try:
        updated = (
            Order.query.filter(Order.payment_ref == payment_ref, Order.status.in_(OrderStatus.SETTLEABLE))
            .update({Order.status: OrderStatus.REQUIRES_PAYMENT}, synchronize_session=False)
        )
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception("settlement_order_reset_failed payment_ref=%s", payment_ref)
        return IntegrationResult.failure("ORDER_UPDATE_FAILED", e)
    return IntegrationResult(ok=True, code="ORDER_REQUIRES_PAYMENT", raw={"updated": int(updated or 0)})


def _apply_account_update(account_ref: str, charges_enabled: bool) -> IntegrationResult:
    try:
        updated = (
            ConnectAccount.query.filter(ConnectAccount.external_account_ref == account_ref)
            .update(
                {ConnectAccount.charges_enabled: bool(charges_enabled), ConnectAccount.updated_at: datetime.utcnow()},
                synchronize_session=False,
            )
        )
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception("settlement_account_update_failed account_ref=%s", account_ref)
        return IntegrationResult.failure("ACCOUNT_UPDATE_FAILED", e)
    if not updated:
        current_app.logger.info("settlement_account_unknown account_ref=%s", account_ref)
    return IntegrationResult(ok=True, code="ACCOUNT_UPDATED", raw={"updated": int(updated or 0)})


def apply_event(event) -> tuple[str, list[IntegrationResult]]:
    """Run the mutations for one event; returns (journal status, step results).

    A succeeded payment attempts both the order and listing steps even when the
    first one fails.
    """
    if isinstance(event, PaymentSucceeded):
        steps = [_mark_order_paid(event.payment_ref), _mark_listing_sold(event.listing_id)]
    elif isinstance(event, (PaymentFailed, PaymentCanceled)):
        steps = [_reset_order(event.payment_ref)]
    elif isinstance(event, AccountUpdated):
        if event.charges_enabled is None:
            return WebhookEventStatus.IGNORED, []
        steps = [_apply_account_update(event.account_ref, event.charges_enabled)]
    elif isinstance(event, MalformedEvent):
        current_app.logger.warning(
            "settlement_event_malformed event_id=%s type=%s reason=%s", event.event_id, event.event_type, event.reason
        )
        return WebhookEventStatus.IGNORED, []
    else:
        current_app.logger.info("settlement_event_ignored event_id=%s type=%s", event.event_id, _event_type(event))
        return WebhookEventStatus.IGNORED, []

    if all(step.ok for step in steps):
        return WebhookEventStatus.PROCESSED, steps
    return WebhookEventStatus.FAILED, steps


def _claim_event(event, *, payload_hash: str) -> WebhookEvent | None:
    """Fetch or insert the journal row. None means the event was already handled."""
    row = WebhookEvent.query.filter_by(provider=PROVIDER, event_id=event.event_id).first()
    if row is not None:
        return None if row.is_done else row
    row = WebhookEvent(
        provider=PROVIDER,
        event_id=event.event_id,
        event_type=_event_type(event),
        reference=_event_reference(event) or None,
        status=WebhookEventStatus.RECEIVED,
        request_id=get_request_id() or None,
        payload_hash=payload_hash,
    )
    try:
        db.session.add(row)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        row = WebhookEvent.query.filter_by(provider=PROVIDER, event_id=event.event_id).first()
        if row is None or row.is_done:
            return None
    return row


def _finish_event(row: WebhookEvent, status: str, steps: list[IntegrationResult]) -> None:
    row.record_outcome(status, [s.detail for s in steps if not s.ok])
    try:
        db.session.add(row)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("settlement_journal_update_failed event_id=%s", row.event_id)


def handle_webhook(raw_body: bytes, signature_header: str | None) -> dict:
    """Verify and apply one payment-platform delivery.

    Nothing is parsed or written before the signature checks out. Every
    recognized kind maps onto conditional updates keyed on the platform's own
    references (payment intent id, account id), so the same event can be
    delivered any number of times. Unknown kinds are acknowledged untouched.
    """
    raw = raw_body or b""
    if not signature_header:
        raise InvalidSignature("Missing signature")

    settings = get_settings()
    secret = settings.stripe_webhook_secret
    if not secret:
        current_app.logger.error("settlement_webhook_secret_missing")
        raise InternalError("Webhook secret not configured")

    if not verify_signature(raw, signature_header, secret, tolerance=settings.stripe_webhook_tolerance_seconds):
        raise InvalidSignature("Invalid signature")

    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise InvalidRequest("Event payload is not valid JSON") from e
    event = parse_event(payload, raw=raw)
    annotate(webhook_event_id=event.event_id, webhook_event_type=_event_type(event))

    try:
        row = _claim_event(event, payload_hash=_payload_hash(raw))
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception("settlement_journal_claim_failed event_id=%s", event.event_id)
        raise InternalError("Webhook processing failed") from e
    if row is None:
        current_app.logger.info("settlement_event_replayed event_id=%s", event.event_id)
        return {"received": True, "replayed": True}

    status, steps = apply_event(event)
    _finish_event(row, status, steps)
    if status == WebhookEventStatus.FAILED:
        raise InternalError("Webhook processing failed", extra={"event_id": event.event_id})

    current_app.logger.info(
        "settlement_event_handled event_id=%s type=%s status=%s", event.event_id, _event_type(event), status
    )
    return {"received": True}
