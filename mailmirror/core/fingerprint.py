"""Message identity and ordering.

A message is identified by ``from|subject|sentDate``. Two messages with the
same fingerprint are the same message for merge purposes, whatever their
bodies or attachments say; the first copy seen wins.

Mail without a ``Date`` header has no send date. Such messages fall back to
their ``Message-ID`` in the third slot (and to the literal ``null`` when that
is missing too), so repeated fetches of the same malformed message do not
pile up as duplicates and merging stays idempotent.
"""

from datetime import datetime, timezone
from typing import Iterable, List, Tuple

from .models import Message

NULL_DATE = "null"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def fingerprint(message: Message) -> str:
    """Return the deduplication key for ``message``."""

    sender = message.sender or ""
    subject = message.subject or ""

    if message.sent_date is not None:
        sent = message.sent_date.isoformat()
    elif message.message_id:
        sent = f"{NULL_DATE}:{message.message_id.strip()}"
    else:
        sent = NULL_DATE

    return f"{sender}|{subject}|{sent}"


def contains(messages: Iterable[Message], target: Message) -> bool:
    """True if any element of ``messages`` has the same fingerprint as ``target``."""

    key = fingerprint(target)
    return any(fingerprint(m) == key for m in messages)


def same_headers(message: Message, reference: Message) -> bool:
    """Plain ``(from, subject, sentDate)`` equality used when scanning a server folder."""

    return (
        message.sender == reference.sender
        and message.subject == reference.subject
        and message.sent_date == reference.sent_date
    )


def sort_key(message: Message) -> Tuple[bool, datetime]:
    """Key for newest-first ordering; missing received dates sort last."""

    received = message.received_date
    return (received is not None, received or _EPOCH)


def sort_messages(messages: Iterable[Message]) -> List[Message]:
    """Return ``messages`` ordered by received date, newest first (stable)."""

    return sorted(messages, key=sort_key, reverse=True)
