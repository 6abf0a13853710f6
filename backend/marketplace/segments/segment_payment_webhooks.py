from __future__ import annotations

from flask import Blueprint, jsonify, request

from marketplace.services.settlement_service import handle_webhook

webhooks_bp = Blueprint("webhooks_bp", __name__, url_prefix="/api/webhooks")


@webhooks_bp.post("/stripe")
def stripe_webhook():
    # Signature covers the exact bytes; read them before anything parses the body.
    raw = request.get_data(cache=False) or b""
    body = handle_webhook(raw, request.headers.get("Stripe-Signature"))
    return jsonify(body), 200
