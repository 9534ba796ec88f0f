"""IMAP protocol operations - low-level IMAP command interface."""

import asyncio
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Set, Tuple

from mailmirror.utils.errors import IMAPError, NetworkTimeoutError
from mailmirror.utils.logging import get_logger

from ..constants import IMAPFlags, IMAPResponse, Timeouts

logger = get_logger(__name__)

_LIST_LINE = re.compile(r'\((?P<flags>[^)]*)\)\s+(?P<delimiter>"[^"]*"|NIL)\s+(?P<name>.+)$')
_FETCH_LINE = re.compile(r"^(?P<seq>\d+) FETCH \((?P<meta>.*)$")
_FLAGS = re.compile(r"FLAGS \((?P<flags>[^)]*)\)")
_INTERNALDATE = re.compile(r'INTERNALDATE "(?P<date>[^"]+)"')
_EXISTS = re.compile(r"^(?P<count>\d+) EXISTS")
_UNSEEN = re.compile(r"UNSEEN (?P<count>\d+)")
_NEEDS_QUOTING = re.compile(r'[\s"\\(){%*\]]')

INTERNALDATE_FORMAT = "%d-%b-%Y %H:%M:%S %z"


@dataclass
class FetchedMessage:
    """One message as returned by a FETCH command."""

    sequence: int
    raw: bytes = b""
    flags: Tuple[str, ...] = field(default_factory=tuple)
    internal_date: Optional[datetime] = None


def quote_mailbox(name: str) -> str:
    """Quote a mailbox name when it contains characters IMAP treats specially."""

    if name and not _NEEDS_QUOTING.search(name):
        return name
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return value


def _text(line) -> str:
    if isinstance(line, (bytes, bytearray)):
        return bytes(line).decode("utf-8", errors="replace")
    return str(line)


def parse_internal_date(value: str) -> Optional[datetime]:
    """Parse an IMAP INTERNALDATE such as ``17-Jul-1996 02:44:25 -0700``."""

    try:
        return datetime.strptime(value.strip(), INTERNALDATE_FORMAT)
    except ValueError:
        logger.debug(f"Unparseable INTERNALDATE: {value}")
        return None


def parse_fetch_lines(lines) -> List[FetchedMessage]:
    """Group FETCH response lines into messages.

    aioimaplib returns the metadata line of each message as ``bytes`` and the
    literal (the message body) as a ``bytearray``; data items that follow the
    literal arrive on the closing line.
    """

    messages: List[FetchedMessage] = []
    current: Optional[FetchedMessage] = None
    meta = ""

    def finish():
        if current is not None and current.raw:
            flags = _FLAGS.search(meta)
            if flags:
                current.flags = tuple(flags.group("flags").split())
            date = _INTERNALDATE.search(meta)
            if date:
                current.internal_date = parse_internal_date(date.group("date"))
            messages.append(current)

    for line in lines:
        if isinstance(line, bytearray):
            if current is not None:
                current.raw = bytes(line)
            continue

        text = _text(line)
        match = _FETCH_LINE.match(text)
        if match:
            finish()
            current = FetchedMessage(sequence=int(match.group("seq")))
            meta = match.group("meta")
        elif current is not None:
            meta = f"{meta} {text}"

    finish()
    return messages


class IMAPProtocol:
    """Low-level IMAP commands over one authenticated aioimaplib client.

    Every command is bounded by a timeout and every non-OK answer raises
    ``IMAPError``; turning those into higher level outcomes is the job of
    ``IMAPClient``.
    """

    def __init__(self, client, timeout: float = Timeouts.IMAP_SELECT):
        self.client = client
        self.timeout = timeout
        self.fetch_timeout = max(timeout, Timeouts.IMAP_FETCH)
        self._selected_folder: Optional[str] = None
        self._folders: Optional[List[str]] = None

    async def _command(self, operation: str, awaitable, timeout: Optional[float] = None):
        try:
            response = await asyncio.wait_for(awaitable, timeout=timeout or self.timeout)
        except asyncio.TimeoutError as e:
            raise NetworkTimeoutError(
                f"IMAP {operation} timed out", details={"operation": operation}
            ) from e

        self._check_response(response, operation)
        return response

    @staticmethod
    def _check_response(response, operation: str) -> None:
        """Raise IMAPError unless the server answered OK."""

        if response.result != IMAPResponse.OK:
            error_msg = _text(response.lines[-1]) if response.lines else "No response"
            raise IMAPError(
                f"IMAP operation failed: {operation}",
                details={"response": error_msg, "operation": operation},
            )

    ## Folders

    async def list_folders(self) -> List[str]:
        """Full names of every selectable folder, at any depth."""

        response = await self._command("list", self.client.list('""', "*"))

        folders = []
        for line in response.lines:
            if isinstance(line, bytearray):
                continue
            match = _LIST_LINE.search(_text(line))
            if not match:
                continue
            if IMAPFlags.NOSELECT.lower() in match.group("flags").lower():
                continue
            folders.append(_unquote(match.group("name")))

        self._folders = folders
        logger.debug(f"Retrieved {len(folders)} folders")
        return list(folders)

    async def folder_exists(self, name: str) -> bool:
        if self._folders is None:
            await self.list_folders()
        if name.upper() == "INBOX":
            return any(f.upper() == "INBOX" for f in self._folders)
        return name in self._folders

    async def create(self, name: str) -> None:
        await self._command("create", self.client.create(quote_mailbox(name)))
        if self._folders is not None:
            self._folders.append(name)
        logger.info("Created IMAP folder", extra={"folder": name})

    async def _open(self, name: str, read_only: bool) -> int:
        mailbox = quote_mailbox(name)
        if read_only:
            response = await self._command("examine", self.client.examine(mailbox))
        else:
            response = await self._command("select", self.client.select(mailbox))

        self._selected_folder = name
        for line in response.lines:
            match = _EXISTS.match(_text(line))
            if match:
                return int(match.group("count"))
        return 0

    async def examine(self, name: str) -> int:
        """Open ``name`` read-only; return its message count."""
        return await self._open(name, read_only=True)

    async def select(self, name: str) -> int:
        """Open ``name`` read-write; return its message count."""
        return await self._open(name, read_only=False)

    async def close_folder(self) -> None:
        """Close the selected folder, if any. Never raises."""

        if self._selected_folder is None:
            return
        try:
            await asyncio.wait_for(self.client.close(), timeout=self.timeout)
        except Exception as e:
            logger.debug(f"Error closing folder {self._selected_folder}: {e}")
        finally:
            self._selected_folder = None

    async def unseen_count(self, name: str) -> int:
        response = await self._command(
            "status", self.client.status(quote_mailbox(name), "(UNSEEN)")
        )
        for line in response.lines:
            match = _UNSEEN.search(_text(line))
            if match:
                return int(match.group("count"))
        return 0

    ## Messages

    async def fetch_messages(
        self, start: int, end: int, headers_only: bool = False
    ) -> List[FetchedMessage]:
        """Fetch messages ``start..end`` (sequence numbers, inclusive).

        Bodies are fetched with ``BODY.PEEK`` so the \\Seen flag is left
        untouched.
        """
        if start < 1 or end < start:
            return []

        section = "BODY.PEEK[HEADER]" if headers_only else "BODY.PEEK[]"
        response = await self._command(
            "fetch",
            self.client.fetch(f"{start}:{end}", f"(FLAGS INTERNALDATE {section})"),
            timeout=self.fetch_timeout,
        )

        messages = parse_fetch_lines(response.lines)
        logger.debug(
            "Fetched messages",
            extra={"requested": end - start + 1, "received": len(messages)},
        )
        return messages

    async def search_header(self, header: str, value: str) -> List[int]:
        """Sequence numbers of messages whose ``header`` contains ``value``."""

        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        response = await self._command(
            "search",
            self.client.search("HEADER", header, f'"{escaped}"', charset=None),
        )

        found: Set[int] = set()
        for line in response.lines:
            for token in _text(line).split():
                if token.isdigit():
                    found.add(int(token))
        return sorted(found)

    async def copy(self, sequence: int, target: str) -> None:
        await self._command("copy", self.client.copy(str(sequence), quote_mailbox(target)))

    async def mark_deleted(self, sequence: int) -> None:
        await self._command(
            "store",
            self.client.store(str(sequence), "+FLAGS", f"({IMAPFlags.DELETED})"),
        )

    async def expunge(self) -> None:
        await self._command("expunge", self.client.expunge())
