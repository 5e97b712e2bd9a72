"""
Domain exceptions for the messaging core.

Services raise these at the service boundary; the API layer renders them
as JSON error bodies (see main.py) with the HTTP status carried here.
"""
from typing import Optional


class SocialError(Exception):
    """Base exception for messaging and notification domain errors."""

    status_code: int = 500
    error_code: str = "InternalError"
    default_detail: str = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class Unauthenticated(SocialError):
    """Raised when a bearer credential is missing, malformed, forged or expired."""

    status_code = 401
    error_code = "Unauthenticated"
    default_detail = "Invalid or expired token"


class NotParticipant(SocialError):
    """Raised when a user acts on a conversation they are not a member of."""

    status_code = 403
    error_code = "NotParticipant"
    default_detail = "You are not a participant of this conversation"


class InvalidParticipants(SocialError):
    """Raised when a conversation would end up with fewer than two valid participants."""

    status_code = 400
    error_code = "InvalidParticipants"
    default_detail = "A conversation needs at least two existing participants"


class InvalidContent(SocialError):
    """Raised when message content is empty or too long."""

    status_code = 400
    error_code = "InvalidContent"
    default_detail = "Message content is empty or too long"


class NotFound(SocialError):
    """Raised when a referenced conversation or notification does not exist."""

    status_code = 404
    error_code = "NotFound"
    default_detail = "Resource not found"
