"""Error taxonomy for role mutation, accounts and password resets.

Every error carries a stable ``kind`` (returned to API clients as ``error``)
and the HTTP status the API layer maps it to.
"""


class RbacError(Exception):
    """Base exception for all portal operations."""

    kind = "Error"
    status = 500

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    default_message = "Operation failed"

    def to_dict(self) -> dict:
        return {"ok": False, "error": self.kind, "message": self.message}


class Forbidden(RbacError):
    """Caller lacks the privilege for this action."""

    kind = "Forbidden"
    status = 403
    default_message = "Admin privileges required"


class Unauthorized(RbacError):
    """No session, or credentials did not match."""

    kind = "Unauthorized"
    status = 401
    default_message = "Authentication required"


class InvalidInput(RbacError):
    kind = "InvalidInput"
    status = 400
    default_message = "Invalid request"


class SelfDemotionForbidden(RbacError):
    kind = "SelfDemotionForbidden"
    status = 400
    default_message = "Admins cannot demote themselves"


class LastAdminProtected(RbacError):
    kind = "LastAdminProtected"
    status = 400
    default_message = "Cannot demote the last remaining admin"


class NotFound(RbacError):
    kind = "NotFound"
    status = 404
    default_message = "User not found"


class Conflict(RbacError):
    """Unique constraint hit (e.g. email already registered)."""

    kind = "Conflict"
    status = 409
    default_message = "Email already exists"


class Expired(RbacError):
    """Reset token absent or past its TTL (the two cases are indistinguishable)."""

    kind = "Expired"
    status = 400
    default_message = "Token invalid or expired"


class AlreadyConsumed(RbacError):
    kind = "AlreadyConsumed"
    status = 400
    default_message = "Token already used"


class ServiceUnavailable(RbacError):
    """Storage (or another hard dependency) unreachable."""

    kind = "ServiceUnavailable"
    status = 503
    default_message = "Service temporarily unavailable. Please try again later."
