"""Conversion of raw RFC 822 messages into mirror ``Message`` objects."""

from datetime import datetime
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import parsedate_to_datetime
from typing import Iterable, List, Optional

from mailmirror.core.models import Attachment, Message
from mailmirror.utils.errors import ValidationError
from mailmirror.utils.logging import get_logger

from .constants import DEFAULT_SUBJECT, IMAPFlags

logger = get_logger(__name__)

_bytes_parser = BytesParser(policy=policy.default)


class EmailParser:
    """Parse MIME messages into structured ``Message`` objects.

    Body selection walks the MIME tree depth first: the first ``text/plain``
    part becomes the body if nothing was set yet, any ``text/html`` part
    replaces it and marks the message as HTML, parts with an attachment
    disposition are recorded as metadata only, and nested multiparts are
    recursed into.
    """

    @staticmethod
    def parse_from_bytes(
        raw_email: bytes,
        received_date: Optional[datetime] = None,
        flags: Iterable[str] = (),
    ) -> Message:
        """Parse raw message bytes.

        Args:
            raw_email: Full message (or just its header block)
            received_date: Server arrival time (IMAP INTERNALDATE), if known
            flags: IMAP flags reported for the message

        Returns:
            Message

        Raises:
            ValidationError: If the bytes cannot be parsed at all
        """
        try:
            mime = _bytes_parser.parsebytes(bytes(raw_email))
        except Exception as e:
            raise ValidationError("Failed to parse email bytes") from e

        message = Message(
            sender=EmailParser._first_address(mime, "From"),
            to=EmailParser._addresses(mime, "To"),
            cc=EmailParser._addresses(mime, "Cc"),
            bcc=EmailParser._addresses(mime, "Bcc"),
            subject=EmailParser._header_text(mime, "Subject") or DEFAULT_SUBJECT,
            sent_date=EmailParser._sent_date(mime),
            received_date=received_date,
            message_id=EmailParser._header_text(mime, "Message-ID"),
            read=IMAPFlags.SEEN in set(flags),
        )

        EmailParser._process_part(mime, message)
        return message

    ## Headers

    @staticmethod
    def _header(mime: EmailMessage, name: str):
        try:
            return mime.get(name)
        except Exception as e:
            logger.debug(f"Unreadable {name} header: {e}")
            return None

    @staticmethod
    def _header_text(mime: EmailMessage, name: str) -> Optional[str]:
        header = EmailParser._header(mime, name)
        if header is None:
            return None
        text = str(header).strip()
        return text or None

    @staticmethod
    def _addresses(mime: EmailMessage, name: str) -> List[str]:
        header = EmailParser._header(mime, name)
        if header is None:
            return []

        try:
            return [str(address) for address in header.addresses]
        except (AttributeError, TypeError, ValueError):
            return [part.strip() for part in str(header).split(",") if part.strip()]

    @staticmethod
    def _first_address(mime: EmailMessage, name: str) -> Optional[str]:
        addresses = EmailParser._addresses(mime, name)
        return addresses[0] if addresses else None

    @staticmethod
    def _sent_date(mime: EmailMessage) -> Optional[datetime]:
        header = EmailParser._header(mime, "Date")
        if header is None:
            return None

        value = getattr(header, "datetime", None)
        if value is not None:
            return value

        try:
            return parsedate_to_datetime(str(header))
        except (TypeError, ValueError, IndexError):
            logger.debug("Unparseable Date header")
            return None

    ## Body and attachments

    @staticmethod
    def _process_part(part: EmailMessage, message: Message) -> None:
        content_type = part.get_content_type()
        disposition = part.get_content_disposition()

        if content_type.startswith("multipart/"):
            for sub_part in part.iter_parts():
                EmailParser._process_part(sub_part, message)

        elif disposition == "attachment":
            message.attachments.append(EmailParser._attachment(part, inline=False))

        elif content_type == "text/plain":
            if message.body is None:
                message.body = EmailParser._text(part)
                message.is_html = False

        elif content_type == "text/html":
            message.body = EmailParser._text(part)
            message.is_html = True

        elif part.get_filename() or part.get("Content-ID"):
            message.attachments.append(EmailParser._attachment(part, inline=True))

    @staticmethod
    def _attachment(part: EmailMessage, inline: bool) -> Attachment:
        content_id = part.get("Content-ID")
        if content_id:
            content_id = str(content_id).strip().strip("<>")

        payload = part.get_payload(decode=True)
        if payload is None:
            payload = part.as_bytes()

        return Attachment(
            name=part.get_filename(),
            mime_type=part.get_content_type(),
            size=len(payload),
            inline=inline,
            content_id=content_id or None,
        )

    @staticmethod
    def _text(part: EmailMessage) -> str:
        try:
            return part.get_content()
        except (LookupError, UnicodeError, AttributeError):
            payload = part.get_payload(decode=True) or b""
            try:
                return payload.decode(part.get_content_charset() or "utf-8", errors="replace")
            except LookupError:
                return payload.decode("utf-8", errors="replace")
