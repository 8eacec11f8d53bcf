"""
Application error taxonomy.

Services raise these typed errors; the FastAPI exception handlers in
app.main translate them into HTTP responses with a human-readable message.
"""
from fastapi import status


class AppError(Exception):
    """Base class for errors that map to a user-visible failure."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "An unexpected error occurred"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    """Malformed input. The caller fixes the input and retries."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid input"


class Unauthorized(AppError):
    """The caller has no valid identity at all."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class PermissionDenied(AppError):
    """A valid identity lacks the grant. Never says which grant is missing."""

    status_code = status.HTTP_403_FORBIDDEN
    default_message = "You do not have permission to perform this action"


class NotFoundError(AppError):
    """Referenced record does not exist or is soft-deleted."""

    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ConflictError(AppError):
    """A uniqueness or business invariant would be violated."""

    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


class InvitationDeliveryError(AppError):
    """The invitation row exists but the notification could not be delivered."""

    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "The invitation was created but could not be delivered"

    def __init__(self, invitation_id: str, message: str | None = None):
        self.invitation_id = invitation_id
        super().__init__(
            message or f"Invitation {invitation_id} was created but the notification could not be delivered"
        )
