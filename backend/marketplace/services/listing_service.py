from __future__ import annotations

import re

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from marketplace.errors import InternalError, InvalidRequest
from marketplace.extensions import db
from marketplace.models import Listing, ListingStatus
from marketplace.services.identity_service import require_not_banned, resolve_identity

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
_MAX_IMAGES = 12
# price_amount is a 32-bit INTEGER column on Postgres.
_MAX_PRICE_AMOUNT = 2_147_483_647


def _parse_price(value) -> int:
    # bool is an int subclass; reject it along with floats and strings.
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRequest("price_amount must be an integer in minor currency units")
    if value <= 0:
        raise InvalidRequest("price_amount must be greater than 0")
    if value > _MAX_PRICE_AMOUNT:
        raise InvalidRequest(f"price_amount must be at most {_MAX_PRICE_AMOUNT}")
    return value


def _parse_images(value) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(x, str) and x.strip() for x in value):
        raise InvalidRequest("images must be a list of strings")
    if len(value) > _MAX_IMAGES:
        raise InvalidRequest(f"images must contain at most {_MAX_IMAGES} entries")
    return [x.strip() for x in value]


def create_listing(auth_header: str | None, data) -> Listing:
    seller = require_not_banned(resolve_identity(auth_header))
    if not isinstance(data, dict):
        raise InvalidRequest("Missing required fields")

    title = data.get("title")
    if not isinstance(title, str) or not title.strip():
        raise InvalidRequest("title is required")
    if len(title.strip()) > 200:
        raise InvalidRequest("title must be at most 200 characters")
    description = data.get("description")
    if description is not None and not isinstance(description, str):
        raise InvalidRequest("description must be a string")
    currency = data.get("currency") or "DKK"
    if not isinstance(currency, str) or not _CURRENCY_RE.match(currency.strip().upper()):
        raise InvalidRequest("currency must be a 3-letter code")

    listing = Listing(
        seller_id=seller.id,
        title=title.strip(),
        description=(description or "").strip() or None,
        price_amount=_parse_price(data.get("price_amount")),
        currency=currency.strip().upper(),
        images=_parse_images(data.get("images")),
        status=ListingStatus.ACTIVE,
    )
    try:
        db.session.add(listing)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception("listing_create_failed seller_id=%s", seller.id)
        raise InternalError("Failed to create listing") from e
    current_app.logger.info("listing_created listing_id=%s seller_id=%s", listing.id, seller.id)
    return listing
