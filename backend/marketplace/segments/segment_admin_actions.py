from __future__ import annotations

from flask import Blueprint, jsonify, request

from marketplace.services.admin_action_service import handle_admin_action
from marketplace.utils.rate_limit import rate_limit

admin_actions_bp = Blueprint("admin_actions_bp", __name__, url_prefix="/api/admin")


@admin_actions_bp.post("/actions")
@rate_limit("admin_actions", per_seconds=60, limit=30, scope="user")
def admin_actions():
    body = handle_admin_action(request.headers.get("Authorization"), request.get_json(silent=True))
    return jsonify(body), 200
