from __future__ import annotations

from flask import Blueprint, jsonify, request

from marketplace.services.checkout_service import initiate_checkout
from marketplace.utils.idempotency import get_idempotency_key
from marketplace.utils.rate_limit import rate_limit

checkout_bp = Blueprint("checkout_bp", __name__, url_prefix="/api/checkout")


@checkout_bp.post("")
@rate_limit("checkout", per_seconds=60, limit=20, scope="user")
def create_checkout():
    result = initiate_checkout(
        request.headers.get("Authorization"),
        request.get_json(silent=True),
        idempotency_key=get_idempotency_key(),
    )
    return jsonify({"client_secret": result.client_secret, "order_id": result.order_id}), 200
