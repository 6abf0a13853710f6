import logging
import os
import time
from typing import Any, Dict, Optional

import jwt

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
ACCESS_TOKEN_TTL_SECONDS = 60 * 60 * 24 * 7


def _secret() -> str:
    return os.getenv("AUTH_JWT_SECRET") or os.getenv("SECRET_KEY") or "dev-secret-change-me"


def _audience() -> Optional[str]:
    return (os.getenv("AUTH_JWT_AUDIENCE") or "").strip() or None


def create_access_token(user_id: str, email: Optional[str] = None, ttl_seconds: int = ACCESS_TOKEN_TTL_SECONDS) -> str:
    """Mint a token the way the identity provider does; used by dev tooling and tests."""
    now = int(time.time())
    claims = {"sub": str(user_id), "iat": now, "exp": now + int(ttl_seconds)}
    if email:
        claims["email"] = email
    aud = _audience()
    if aud:
        claims["aud"] = aud
    return jwt.encode(claims, _secret(), algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    """Verified claims, or None for an expired, forged or malformed token."""
    aud = _audience()
    options = {"require": ["sub", "exp"]}
    if not aud:
        options["verify_aud"] = False
    try:
        return jwt.decode(token, _secret(), algorithms=[ALGORITHM], audience=aud, options=options)
    except jwt.PyJWTError as e:
        logger.info("token_rejected reason=%s", type(e).__name__)
        return None


def get_bearer_token(auth_header: Optional[str]) -> Optional[str]:
    scheme, _, token = (auth_header or "").strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
