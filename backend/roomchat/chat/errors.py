"""Chat error hierarchy.

Every handler converts these into an ``error`` event (or ``joinRoomError``
for joins) on the originating connection. ``error_type`` is the
machine-readable code sent to the client.
"""
from typing import Optional


class ChatError(Exception):
    """Base exception for chat errors."""
    error_type = "CHAT_ERROR"

    def __init__(self, message: str, error_type: Optional[str] = None):
        self.message = message
        if error_type is not None:
            self.error_type = error_type
        super().__init__(message)

    def to_payload(self) -> dict:
        return {"type": self.error_type, "message": self.message}


class AuthenticationError(ChatError):
    """Raised when a connection cannot be authenticated."""
    error_type = "AUTHENTICATION_ERROR"


class AuthorizationError(ChatError):
    """Raised when a user acts on a room they are not in."""
    error_type = "AUTHORIZATION_ERROR"


class NotFoundError(ChatError):
    error_type = "NOT_FOUND"


class ValidationError(ChatError):
    error_type = "VALIDATION_ERROR"


class UnsupportedMessageTypeError(ChatError):
    error_type = "UNSUPPORTED_MESSAGE_TYPE"

    def __init__(self, message_type: str):
        self.message_type = message_type
        super().__init__("unsupported message type")


class HistoryTimeoutError(ChatError):
    """Raised when a single history fetch exceeds its time limit."""
    error_type = "LOAD_TIMEOUT"

    def __init__(self, message: str = "Message loading timed out"):
        super().__init__(message)


class HistoryLoadError(ChatError):
    """Raised when history loading fails after the retry budget is spent."""
    error_type = "LOAD_ERROR"

    def __init__(self, message: str = "Failed to load previous messages"):
        super().__init__(message)


class TransientStoreError(ChatError):
    """Raised when the shared store is unreachable or a command fails."""
    error_type = "TRANSIENT_STORE_ERROR"

    def __init__(self, message: str = "Temporary storage failure, please retry"):
        super().__init__(message)


INTERNAL_ERROR = "INTERNAL_ERROR"
