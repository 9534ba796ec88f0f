"""Shared constants for the IMAP layer.

Centralised configuration for:
- IMAP response codes
- Timeout settings
- Batch sizes for bulk fetches

Timeouts bound every network round trip so that a stalled server cannot
hang the poller. The configured ``network.timeout`` replaces the 10 second
defaults; bulk fetches get a longer timeout.
"""

from enum import Enum


class IMAPResponse(str, Enum):
    "IMAP server response codes."

    OK = "OK"
    NO = "NO"
    BAD = "BAD"


class Timeouts:
    """Timeout settings for IMAP operations (in seconds)."""

    IMAP_CONNECT = 10.0
    IMAP_LOGIN = 10.0
    IMAP_SELECT = 10.0
    IMAP_SEARCH = 10.0
    IMAP_FETCH = 30.0
    IMAP_STORE = 10.0
    IMAP_COPY = 10.0
    IMAP_CREATE = 10.0
    IMAP_EXPUNGE = 10.0
    IMAP_LIST = 10.0
    IMAP_STATUS = 10.0
    IMAP_LOGOUT = 5.0


class BatchSizes:
    """Batch sizes for IMAP operations."""

    IMAP_FETCH_BATCH = 25


class IMAPFlags:
    """Standard IMAP flags."""

    SEEN = "\\Seen"
    DELETED = "\\Deleted"
    NOSELECT = "\\Noselect"


DEFAULT_SUBJECT = "(No subject)"
