from __future__ import annotations

import logging

import stripe

logger = logging.getLogger(__name__)


def verify_signature(raw: bytes | str, signature_header: str | None, secret: str, *, tolerance: int = 300) -> bool:
    """Check a `t=...,v1=...` HMAC-SHA256 signature header against the raw body.

    Uses the payment platform's own verifier, so clock tolerance and multiple
    v1 signatures (secret rotation) behave exactly as on the platform side.
    """
    if not signature_header or not secret:
        return False
    try:
        payload = raw.decode("utf-8") if isinstance(raw, bytes) else (raw or "")
    except UnicodeDecodeError:
        # The platform only signs UTF-8 JSON.
        logger.warning("webhook_signature_rejected reason=body_not_utf8")
        return False
    try:
        stripe.WebhookSignature.verify_header(payload, signature_header, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        logger.warning("webhook_signature_rejected reason=%s", str(e)[:120])
        return False
    return True
