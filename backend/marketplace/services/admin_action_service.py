from __future__ import annotations

import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from marketplace.errors import Forbidden, InternalError, InvalidRequest, NotFound
from marketplace.extensions import db
from marketplace.models import Ban, Listing, ListingStatus, Order, OrderStatus, Profile, ProfileRole
from marketplace.services.identity_service import resolve_identity
from marketplace.utils.settings import get_settings


@dataclass(frozen=True)
class BanUser:
    user_id: str
    reason: str


@dataclass(frozen=True)
class UnbanUser:
    user_id: str


@dataclass(frozen=True)
class HideListing:
    listing_id: str


@dataclass(frozen=True)
class UnhideListing:
    listing_id: str


@dataclass(frozen=True)
class Metrics:
    pass


@dataclass(frozen=True)
class BootstrapAdmin:
    secret: str


@dataclass(frozen=True)
class UnknownAction:
    name: str


def _field(data: dict, name: str, *, limit: int = 64) -> str:
    value = data.get(name)
    if not isinstance(value, str) or not value.strip():
        raise InvalidRequest(f"{name} is required")
    value = value.strip()
    if len(value) > limit:
        raise InvalidRequest(f"{name} must be at most {limit} characters")
    return value


def parse_admin_action(data):
    """Map an admin request body onto one action kind.

    Unknown names come back as UnknownAction so the caller can reject them after
    the role check; per-action fields are validated here.
    """
    if not isinstance(data, dict):
        raise InvalidRequest("Invalid action")
    name = data.get("action")
    name = name.strip() if isinstance(name, str) else ""

    if name == "bootstrap_admin":
        secret = data.get("bootstrap_secret")
        return BootstrapAdmin(secret=secret if isinstance(secret, str) else "")
    if name == "ban_user":
        reason = data.get("reason")
        reason = reason.strip()[:1000] if isinstance(reason, str) else ""
        return BanUser(user_id=_field(data, "user_id"), reason=reason)
    if name == "unban_user":
        return UnbanUser(user_id=_field(data, "user_id"))
    if name == "hide_listing":
        return HideListing(listing_id=_field(data, "listing_id"))
    if name == "unhide_listing":
        return UnhideListing(listing_id=_field(data, "listing_id"))
    if name == "metrics":
        return Metrics()
    return UnknownAction(name=name)


def _action_name(data) -> str:
    if isinstance(data, dict) and isinstance(data.get("action"), str):
        return data["action"].strip()
    return ""


def _commit(event: str, **context) -> None:
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception(
            "%s %s", event, " ".join(f"{k}={v}" for k, v in context.items())
        )
        raise InternalError() from e


def bootstrap_admin(caller: Profile, action: BootstrapAdmin) -> dict:
    """Promote the caller to admin once, guarded by a configured secret.

    Whether an admin exists is a fresh query every call, so bootstrap stays
    closed across processes once any admin has been created.
    """
    expected = get_settings().admin_bootstrap_secret
    if not expected or not action.secret or not hmac.compare_digest(
        action.secret.encode("utf-8"), expected.encode("utf-8")
    ):
        current_app.logger.warning("admin_bootstrap_rejected user_id=%s reason=secret", caller.id)
        raise Forbidden("Invalid bootstrap secret")

    try:
        admin_exists = db.session.query(Profile.id).filter(Profile.role == ProfileRole.ADMIN).first() is not None
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception("admin_bootstrap_check_failed user_id=%s", caller.id)
        raise InternalError("Failed to check existing admins") from e
    if admin_exists:
        current_app.logger.warning("admin_bootstrap_rejected user_id=%s reason=admin_exists", caller.id)
        raise Forbidden("Admin already exists")

    caller.role = ProfileRole.ADMIN
    db.session.add(caller)
    _commit("admin_bootstrap_failed", user_id=caller.id)
    current_app.logger.info("admin_bootstrapped user_id=%s", caller.id)
    return {"success": True, "message": "User promoted to admin"}


def _get_profile(user_id: str) -> Profile:
    profile = db.session.get(Profile, user_id)
    if profile is None:
        raise NotFound("User not found")
    return profile


def _get_listing(listing_id: str) -> Listing:
    listing = db.session.get(Listing, listing_id)
    if listing is None:
        raise NotFound("Listing not found")
    return listing


def ban_user(admin: Profile, action: BanUser) -> dict:
    if action.user_id == admin.id:
        raise InvalidRequest("Cannot ban yourself")
    target = _get_profile(action.user_id)
    target.role = ProfileRole.BANNED
    db.session.add(target)
    _commit("admin_ban_failed", user_id=action.user_id)

    # The role change above is the ban; the audit row is best effort.
    try:
        db.session.add(Ban(user_id=action.user_id, reason=action.reason or None, banned_by=admin.id))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("admin_ban_record_failed user_id=%s admin_id=%s", action.user_id, admin.id)

    current_app.logger.info("admin_user_banned user_id=%s admin_id=%s", action.user_id, admin.id)
    return {"success": True, "message": "User banned successfully"}


def unban_user(admin: Profile, action: UnbanUser) -> dict:
    target = _get_profile(action.user_id)
    if not target.is_banned:
        return {"success": True, "message": "User is not banned"}
    target.role = ProfileRole.USER
    db.session.add(target)
    _commit("admin_unban_failed", user_id=action.user_id)
    current_app.logger.info("admin_user_unbanned user_id=%s admin_id=%s", action.user_id, admin.id)
    return {"success": True, "message": "User unbanned successfully"}


def _move_listing(listing_id: str, *, from_status: str, to_status: str) -> None:
    listing = _get_listing(listing_id)
    if listing.status != from_status:
        raise InvalidRequest(f"Listing is {listing.status}, expected {from_status}")
    listing.status = to_status
    db.session.add(listing)
    _commit("admin_listing_update_failed", listing_id=listing_id, to_status=to_status)


def hide_listing(admin: Profile, action: HideListing) -> dict:
    _move_listing(action.listing_id, from_status=ListingStatus.ACTIVE, to_status=ListingStatus.HIDDEN)
    current_app.logger.info("admin_listing_hidden listing_id=%s admin_id=%s", action.listing_id, admin.id)
    return {"success": True, "message": "Listing hidden successfully"}


def unhide_listing(admin: Profile, action: UnhideListing) -> dict:
    _move_listing(action.listing_id, from_status=ListingStatus.HIDDEN, to_status=ListingStatus.ACTIVE)
    current_app.logger.info("admin_listing_unhidden listing_id=%s admin_id=%s", action.listing_id, admin.id)
    return {"success": True, "message": "Listing unhidden successfully"}


def metrics(admin: Profile, action: Metrics) -> dict:
    since = datetime.utcnow() - timedelta(days=30)
    try:
        total_sales, total_orders = (
            db.session.query(func.coalesce(func.sum(Order.amount), 0), func.count(Order.id))
            .filter(Order.status == OrderStatus.PAID)
            .one()
        )
        recent_sales = (
            db.session.query(func.coalesce(func.sum(Order.amount), 0))
            .filter(Order.status == OrderStatus.PAID, Order.created_at >= since)
            .scalar()
        )
        listing_counts = dict(
            db.session.query(Listing.status, func.count(Listing.id)).group_by(Listing.status).all()
        )
        total_users = db.session.query(func.count(Profile.id)).scalar()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception("admin_metrics_failed admin_id=%s", admin.id)
        raise InternalError("Failed to load metrics") from e
    return {
        "total_sales": int(total_sales or 0),
        "total_orders": int(total_orders or 0),
        "recent_sales_30_days": int(recent_sales or 0),
        "active_listings": int(listing_counts.get(ListingStatus.ACTIVE, 0)),
        "sold_listings": int(listing_counts.get(ListingStatus.SOLD, 0)),
        "total_users": int(total_users or 0),
    }


_HANDLERS = {
    BanUser: ban_user,
    UnbanUser: unban_user,
    HideListing: hide_listing,
    UnhideListing: unhide_listing,
    Metrics: metrics,
}


def handle_admin_action(auth_header: str | None, data) -> dict:
    caller = resolve_identity(auth_header)

    # Bootstrap is the only action open to non-admins.
    if _action_name(data) == "bootstrap_admin":
        return bootstrap_admin(caller, parse_admin_action(data))

    if not caller.is_admin:
        raise Forbidden("Admin access required")

    action = parse_admin_action(data)
    handler = _HANDLERS.get(type(action))
    if handler is None:
        raise InvalidRequest("Invalid action")
    return handler(caller, action)
