"""Remote mailbox access over IMAP, and MIME parsing.

Fetch recent mail:
    >>> from mailmirror.core.email import IMAPClient
    >>>
    >>> client = IMAPClient(rate_limiter)
    >>> messages = await client.fetch(account, FolderName.INBOX, max_count=50)

Parse a raw message:
    >>> from mailmirror.core.email import EmailParser
    >>>
    >>> message = EmailParser.parse_from_bytes(raw_bytes)
    >>> print(message.subject)

Notes
-----
- Every IMAP command is bounded by a timeout (see ``constants.Timeouts``)
- Connections are gated by the rate limiter and closed after each operation
- Malformed messages are logged and skipped
"""

from .imap import IMAPClient
from .parser import EmailParser

__all__ = ["EmailParser", "IMAPClient"]
