from __future__ import annotations

from flask import Blueprint, jsonify, request

from marketplace.services.listing_service import create_listing

listings_bp = Blueprint("listings_bp", __name__, url_prefix="/api/listings")


@listings_bp.post("")
def post_listing():
    listing = create_listing(request.headers.get("Authorization"), request.get_json(silent=True))
    return jsonify({"ok": True, "listing": listing.to_dict()}), 201
