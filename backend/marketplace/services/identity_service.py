from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from marketplace.errors import Forbidden, InternalError, Unauthenticated
from marketplace.extensions import db
from marketplace.models import Profile, ProfileRole
from marketplace.utils.jwt_utils import decode_token, get_bearer_token


def _load_or_create_profile(user_id: str, email: str) -> Profile:
    profile = db.session.get(Profile, user_id)
    if profile is not None:
        return profile
    profile = Profile(id=user_id, email=email, role=ProfileRole.USER)
    db.session.add(profile)
    try:
        db.session.commit()
    except IntegrityError:
        # Concurrent first request for the same identity already inserted it.
        db.session.rollback()
        profile = db.session.get(Profile, user_id)
        if profile is None:
            raise
        return profile
    current_app.logger.info("profile_created user_id=%s", user_id)
    return profile


def resolve_identity(auth_header: str | None) -> Profile:
    """Exchange an Authorization header for the caller's Profile.

    Raises Unauthenticated for a missing or invalid bearer token. The profile is
    created with the ordinary role on first authentication.
    """
    token = get_bearer_token(auth_header or "")
    if not token:
        raise Unauthenticated("Missing authorization header")
    payload = decode_token(token)
    if not payload:
        raise Unauthenticated("Invalid token")
    user_id = str(payload.get("sub") or "").strip()
    if not user_id:
        raise Unauthenticated("Invalid token")
    email = str(payload.get("email") or "").strip().lower()
    try:
        return _load_or_create_profile(user_id[:64], email[:255])
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception("profile_lookup_failed user_id=%s", user_id)
        raise InternalError("Could not determine user role") from e


def require_not_banned(profile: Profile) -> Profile:
    if profile.is_banned:
        raise Forbidden("User is banned")
    return profile
