from __future__ import annotations


class MarketplaceError(Exception):
    """Base for failures that map onto an HTTP response.

    Services raise these; the app-level error handler renders them as the JSON
    error shape shared by every /api route.
    """

    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "Internal server error"

    def __init__(self, message: str = "", *, extra: dict | None = None):
        self.message = message or self.default_message
        self.extra = dict(extra or {})
        super().__init__(self.message)

    def to_dict(self) -> dict:
        payload = {
            "ok": False,
            "error": self.code,
            "message": self.message,
            "status": int(self.status_code),
        }
        payload.update(self.extra)
        return payload

    def headers(self) -> dict:
        return {}


class Unauthenticated(MarketplaceError):
    status_code = 401
    code = "UNAUTHENTICATED"
    default_message = "Unauthorized"


class Forbidden(MarketplaceError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "Forbidden"


class InvalidRequest(MarketplaceError):
    status_code = 400
    code = "INVALID_REQUEST"
    default_message = "Invalid request"


class NotFound(MarketplaceError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Not found"


class SellerNotOnboarded(MarketplaceError):
    status_code = 400
    code = "SELLER_NOT_ONBOARDED"
    default_message = "Seller payment account not ready"

    def __init__(self, message: str = "", *, extra: dict | None = None):
        super().__init__(message, extra={"needs_onboarding": True, **(extra or {})})


class InvalidSignature(MarketplaceError):
    status_code = 400
    code = "INVALID_SIGNATURE"
    default_message = "Invalid signature"


class InternalError(MarketplaceError):
    pass


class RateLimited(MarketplaceError):
    status_code = 429
    code = "RATE_LIMITED"
    default_message = "Too many requests. Please retry later."

    def __init__(self, retry_after: int, message: str = ""):
        self.retry_after = int(max(1, retry_after or 1))
        super().__init__(message, extra={"retry_after": self.retry_after})

    def headers(self) -> dict:
        return {"Retry-After": str(self.retry_after)}
