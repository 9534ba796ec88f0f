"""Error types raised by mailmirror.

Every error derives from ``MailMirrorError`` and carries a category, a
message, and a ``details`` dict suitable for structured logging. What the
sync engine does with each kind:

- ``AuthenticationFailure`` and ``ServerConnectionError`` count against the
  rate limiter; the next poll retries.
- ``RateLimitedError`` is raised instead of connecting while backing off.
- ``FolderNotFoundError`` is informational and never counted.
- ``PersistenceError`` aborts one save; the poller carries on.
- ``MoveFailure`` makes a server move report ``False``.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(Enum):
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    MAILBOX = "mailbox"
    STORAGE = "storage"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class MailMirrorError(Exception):
    """Base exception for all mailmirror errors."""

    category = ErrorCategory.UNKNOWN
    user_message = "An error occurred"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.user_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
        }


## Network


class NetworkError(MailMirrorError):
    category = ErrorCategory.NETWORK
    user_message = "A network error occurred"


class IMAPError(NetworkError):
    """A command was answered with NO/BAD, or the reply could not be read."""

    user_message = "The mail server rejected a request"


class ServerConnectionError(NetworkError):
    """The server could not be reached or dropped the session."""

    user_message = "Failed to connect to the mail server"


class NetworkTimeoutError(ServerConnectionError):
    user_message = "The connection timed out"


class RateLimitedError(NetworkError):
    """Connection refused locally while the account is backing off."""

    user_message = "Too many failed attempts, try again later"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        wait_seconds: int = 0,
    ):
        super().__init__(message, details)
        self.wait_seconds = wait_seconds


## Authentication


class AuthenticationError(MailMirrorError):
    category = ErrorCategory.AUTHENTICATION
    user_message = "An authentication error occurred"


class AuthenticationFailure(AuthenticationError):
    """The server refused the supplied credentials."""

    user_message = "Authentication failed, check your username and password"


class MissingCredentialsError(AuthenticationError):
    user_message = "No password stored for this account"


## Mailbox


class MailboxError(MailMirrorError):
    category = ErrorCategory.MAILBOX
    user_message = "A mailbox error occurred"


class FolderNotFoundError(MailboxError):
    """Neither the canonical folder nor any of its aliases exist."""

    user_message = "Folder not found on the server"


class MoveFailure(MailboxError):
    user_message = "Message could not be moved on the server"


## Storage


class StorageError(MailMirrorError):
    category = ErrorCategory.STORAGE
    user_message = "A storage error occurred"


class PersistenceError(StorageError):
    """A mirror bucket could not be read or written."""

    user_message = "Failed to read or write the local mail copy"


## Validation and configuration


class ValidationError(MailMirrorError):
    category = ErrorCategory.VALIDATION
    user_message = "Invalid input"


class ConfigurationError(MailMirrorError):
    category = ErrorCategory.CONFIGURATION
    user_message = "A configuration error occurred"


class MissingConfigError(ConfigurationError):
    user_message = "Missing configuration settings"


class InvalidConfigError(ConfigurationError):
    user_message = "Invalid configuration settings"


_HINTS = {
    AuthenticationFailure: "check the account's username and password",
    RateLimitedError: "mailmirror will retry automatically",
    ServerConnectionError: "mailmirror will retry on the next check",
}


def format_error_message(error: Optional[Exception]) -> str:
    """Text to show a user for ``error``, with a hint where one helps."""

    if not isinstance(error, MailMirrorError):
        return "An unexpected error occurred, check the logs for details."

    for error_type, hint in _HINTS.items():
        if isinstance(error, error_type):
            return f"{error.message} ({hint})"
    return error.message
