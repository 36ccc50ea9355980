"""
Guard Error Taxonomy

Every guard failure is a typed exception carrying its HTTP status.
The response mapper is the only place these are turned into responses.
"""

from typing import Any


class GuardError(Exception):
    """Base class for all authorization and request errors."""

    status_code: int = 500
    code: str = "internal_error"
    public_message: str = "Internal server error"

    def __init__(self, message: str | None = None, **details: Any):
        self.message = message or self.public_message
        self.details = details
        super().__init__(self.message)

    @property
    def client_message(self) -> str:
        """Message that is safe to send to the client."""
        if self.status_code >= 500:
            return InternalError.public_message
        return self.message


class AuthenticationError(GuardError):
    """No valid, non-expired session or credential."""

    status_code = 401
    code = "unauthenticated"
    public_message = "Unauthorized: Invalid or expired session"


class RoleMismatchError(GuardError):
    """Principal's role is not allowed on this route."""

    status_code = 403
    code = "role_mismatch"
    public_message = "Forbidden: Insufficient role permissions"


class ApprovalPendingError(GuardError):
    """Doctor role matches but the account is not approved yet."""

    status_code = 403
    code = "approval_pending"
    public_message = "Doctor account pending approval"


class TenantMismatchError(GuardError):
    """
    Resource belongs to another clinic (or has none).

    Reported exactly like NotFoundError so a caller cannot tell a foreign
    clinic's resource from one that does not exist.
    """

    status_code = 404
    code = "not_found"
    public_message = "Resource not found"


class OwnershipMismatchError(GuardError):
    """Tenant matches but no ownership or relationship was established."""

    status_code = 403
    code = "ownership_mismatch"
    public_message = "Forbidden: You do not have access to this patient's data"


class PermissionDeniedError(GuardError):
    """Capability matrix check failed."""

    status_code = 403
    code = "permission_denied"
    public_message = "Forbidden: Missing required permission"


class ValidationError(GuardError):
    """Malformed input. The message carries the first violation."""

    status_code = 400
    code = "validation_error"
    public_message = "Invalid request"


class NotFoundError(GuardError):
    """Resource genuinely does not exist."""

    status_code = 404
    code = "not_found"
    public_message = "Resource not found"


class InternalError(GuardError):
    """Unexpected failure. Detail is kept server side."""

    status_code = 500
    code = "internal_error"
    public_message = "Internal server error"
