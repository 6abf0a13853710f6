from __future__ import annotations

from flask import Blueprint, jsonify, request

from marketplace.services.payout_account_service import ensure_onboarding_link, refresh_account_status

connect_bp = Blueprint("connect_bp", __name__, url_prefix="/api/connect")


@connect_bp.post("/onboarding-link")
def onboarding_link():
    data = request.get_json(silent=True) or {}
    return_url = data.get("return_url") if isinstance(data, dict) else None
    link = ensure_onboarding_link(request.headers.get("Authorization"), return_url)
    return jsonify({"url": link.url, "account_id": link.account_id}), 200


@connect_bp.route("/status", methods=["GET", "POST"])
def account_status():
    status = refresh_account_status(request.headers.get("Authorization"))
    return jsonify(status.to_dict()), 200
