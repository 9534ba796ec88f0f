"""
Test helper functions and fakes shared across test modules
"""
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage
from email.parser import BytesParser
from email import policy
from email.utils import format_datetime

from mailmirror.core.email.constants import IMAPFlags
from mailmirror.core.email.imap.protocol import FetchedMessage
from mailmirror.core.models import Attachment, Message
from mailmirror.security.credentials import Account
from mailmirror.utils.errors import AuthenticationFailure, IMAPError, ServerConnectionError

BASE_DATE = datetime(2025, 10, 2, 10, 30, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock for rate limiter and highlight tests"""

    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class MessageTestHelper:
    """Builders for messages, raw RFC 822 bytes and accounts"""

    @staticmethod
    def create_account(**kwargs):
        defaults = {
            "email": "test@example.com",
            "imap_server": "imap.test.com",
            "username": "test@example.com",
            "password": "testpass",
        }
        defaults.update(kwargs)
        return Account(**defaults)

    @staticmethod
    def create_message(index=0, **kwargs):
        """Create a Message whose dates move forward with ``index``"""
        defaults = {
            "sender": "sender@example.com",
            "to": ["test@example.com"],
            "subject": f"Test Subject {index}",
            "body": f"Body {index}",
            "sent_date": BASE_DATE + timedelta(hours=index),
            "received_date": BASE_DATE + timedelta(hours=index, minutes=1),
            "message_id": f"<msg-{index}@example.com>",
        }
        defaults.update(kwargs)
        return Message(**defaults)

    @staticmethod
    def create_messages(count=2, start=0, **kwargs):
        return [MessageTestHelper.create_message(i, **kwargs) for i in range(start, start + count)]

    @staticmethod
    def build_raw(message=None, body="Hello there", html=None, attachments=(), **kwargs):
        """Build real RFC 822 bytes for ``message`` (or for a default one)"""
        message = message or MessageTestHelper.create_message(**kwargs)

        mime = EmailMessage()
        if message.sender:
            mime["From"] = message.sender
        if message.to:
            mime["To"] = ", ".join(message.to)
        if message.subject:
            mime["Subject"] = message.subject
        if message.sent_date:
            mime["Date"] = format_datetime(message.sent_date)
        if message.message_id:
            mime["Message-ID"] = message.message_id

        mime.set_content(message.body or body)
        if html:
            mime.add_alternative(html, subtype="html")
        for name, data, maintype, subtype in attachments:
            mime.add_attachment(data, maintype=maintype, subtype=subtype, filename=name)

        return mime.as_bytes()


class FakeServer:
    """In-memory IMAP server state shared by every session"""

    def __init__(self, folders=("INBOX",)):
        self.folders = {name: [] for name in folders}
        self.fail_login = False
        self.fail_connect = False
        self.fail_fetch = False
        self.create_fails = False
        self.sessions = 0
        self.logouts = 0

    def deliver(self, folder, message=None, raw=None, flags=(), internal_date=None, **kwargs):
        """Append a message to ``folder``; return the Message it encodes"""
        message = message or MessageTestHelper.create_message(**kwargs)
        self.folders[folder].append(
            {
                "raw": raw if raw is not None else MessageTestHelper.build_raw(message),
                "flags": set(flags),
                "internal_date": internal_date or message.received_date,
            }
        )
        return message

    def subjects(self, folder):
        parser = BytesParser(policy=policy.default)
        return [str(parser.parsebytes(entry["raw"])["Subject"]) for entry in self.folders[folder]]


class FakeProtocol:
    """Speaks the IMAPProtocol interface against a FakeServer"""

    def __init__(self, server):
        self.server = server
        self.selected = None

    def _entries(self):
        if self.selected is None:
            raise IMAPError("No folder selected")
        return self.server.folders[self.selected]

    async def list_folders(self):
        return list(self.server.folders)

    async def folder_exists(self, name):
        if name.upper() == "INBOX":
            return any(f.upper() == "INBOX" for f in self.server.folders)
        return name in self.server.folders

    async def create(self, name):
        if self.server.create_fails:
            raise IMAPError(f"Cannot create {name}")
        self.server.folders[name] = []

    async def examine(self, name):
        self.selected = name
        return len(self.server.folders[name])

    async def select(self, name):
        return await self.examine(name)

    async def close_folder(self):
        self.selected = None

    async def unseen_count(self, name):
        return sum(1 for e in self.server.folders[name] if IMAPFlags.SEEN not in e["flags"])

    async def fetch_messages(self, start, end, headers_only=False):
        if self.server.fail_fetch:
            raise IMAPError("FETCH failed")

        fetched = []
        entries = self._entries()
        for sequence in range(max(1, start), min(end, len(entries)) + 1):
            entry = entries[sequence - 1]
            raw = entry["raw"]
            if headers_only:
                raw = raw.split(b"\n\n", 1)[0] + b"\n\n"
            fetched.append(
                FetchedMessage(
                    sequence=sequence,
                    raw=raw,
                    flags=tuple(entry["flags"]),
                    internal_date=entry["internal_date"],
                )
            )
        return fetched

    async def search_header(self, header, value):
        parser = BytesParser(policy=policy.default)
        return [
            index
            for index, entry in enumerate(self._entries(), start=1)
            if str(parser.parsebytes(entry["raw"]).get(header, "")).strip() == value
        ]

    async def copy(self, sequence, target):
        entry = self._entries()[sequence - 1]
        self.server.folders[target].append(
            {"raw": entry["raw"], "flags": set(), "internal_date": entry["internal_date"]}
        )

    async def mark_deleted(self, sequence):
        self._entries()[sequence - 1]["flags"].add(IMAPFlags.DELETED)

    async def expunge(self):
        self.server.folders[self.selected] = [
            e for e in self._entries() if IMAPFlags.DELETED not in e["flags"]
        ]


class FakeSession:
    """Async context manager standing in for IMAPConnection"""

    def __init__(self, server, account):
        self.server = server
        self.account = account

    async def __aenter__(self):
        if self.server.fail_connect:
            raise ServerConnectionError("Connection refused")
        if self.server.fail_login:
            raise AuthenticationFailure("Invalid credentials")
        self.server.sessions += 1
        return FakeProtocol(self.server)

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.server.logouts += 1


def session_factory(server):
    return lambda account: FakeSession(server, account)


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    def notify(self, account, new_count, message):
        self.calls.append((account, new_count, message))


class RecordingListener:
    def __init__(self):
        self.changes = []

    def folder_changed(self, account, folder):
        self.changes.append((account, folder))


def attachment(name="report.pdf", mime_type="application/pdf", size=10):
    return Attachment(name=name, mime_type=mime_type, size=size)
