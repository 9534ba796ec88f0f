"""IMAP client: the remote side of the mirror (fetch, list, move)."""

import time
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Callable, List, Optional

from mailmirror.core.fingerprint import same_headers
from mailmirror.core.models import FolderName, Message
from mailmirror.security.credentials import Account
from mailmirror.security.rate_limit import RateLimiter
from mailmirror.utils.errors import (
    AuthenticationError,
    FolderNotFoundError,
    IMAPError,
    MoveFailure,
    RateLimitedError,
    ServerConnectionError,
    ValidationError,
)
from mailmirror.utils.logging import get_logger, log_event

from ..constants import BatchSizes, Timeouts
from ..parser import EmailParser
from .connection import IMAPConnection
from .folders import FALLBACK_TARGET, NotFound, resolve_folder
from .protocol import FetchedMessage, IMAPProtocol

logger = get_logger(__name__)

SessionFactory = Callable[[Account], AsyncContextManager[IMAPProtocol]]


def _descending_batches(start: int, end: int, size: int):
    """Yield ``(low, high)`` sequence ranges from ``end`` down to ``start``."""

    high = end
    while high >= start:
        low = max(start, high - size + 1)
        yield low, high
        high = low - 1


class IMAPClient:
    """Remote connector used by the sync engine.

    Every operation opens its own session, gated by the rate limiter: a
    blocked resource fails fast with ``RateLimitedError``, a failed connect
    or login counts as a failure, a successful login clears the record.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        session_factory: Optional[SessionFactory] = None,
        timeout: float = Timeouts.IMAP_CONNECT,
    ):
        self.rate_limiter = rate_limiter
        self.timeout = timeout
        self._session_factory = session_factory or self._connect

    def _connect(self, account: Account) -> IMAPConnection:
        return IMAPConnection(account, timeout=self.timeout)

    @asynccontextmanager
    async def _session(self, account: Account) -> AsyncIterator[IMAPProtocol]:
        resource = account.rate_limit_key

        if self.rate_limiter.is_blocked(resource):
            wait = self.rate_limiter.wait_seconds(resource)
            raise RateLimitedError(
                f"Too many failed attempts for {account.email}, retry in {wait}s",
                details={"account": account.email, "server": account.imap_server},
                wait_seconds=wait,
            )

        async with AsyncExitStack() as stack:
            try:
                protocol = await stack.enter_async_context(self._session_factory(account))
            except (AuthenticationError, ServerConnectionError):
                self.rate_limiter.record_failure(resource)
                raise

            self.rate_limiter.record_success(resource)
            yield protocol

    def _protocol_failure(self, account: Account, operation: str, error: Exception):
        """Count ``error`` against the limiter and wrap it as a connection error."""

        self.rate_limiter.record_failure(account.rate_limit_key)
        if isinstance(error, ServerConnectionError):
            return error
        return ServerConnectionError(
            f"IMAP {operation} failed: {error}",
            details={"account": account.email, "operation": operation},
        )

    ## Folders

    async def list_folders(self, account: Account) -> List[str]:
        """Every selectable folder name on the server."""

        async with self._session(account) as protocol:
            try:
                return await protocol.list_folders()
            except (IMAPError, ServerConnectionError) as e:
                raise self._protocol_failure(account, "list", e) from e

    async def unread_count(self, account: Account, folder: FolderName = FolderName.INBOX) -> int:
        """Unseen messages in ``folder`` according to the server; 0 on any error."""

        try:
            async with self._session(account) as protocol:
                resolution = await resolve_folder(protocol, folder)
                if isinstance(resolution, NotFound):
                    return 0
                return await protocol.unseen_count(resolution.name)
        except Exception as e:
            logger.debug(f"Unread count unavailable for {folder.value}: {e}")
            return 0

    ## Fetch

    async def fetch(
        self,
        account: Account,
        folder: FolderName = FolderName.INBOX,
        max_count: int = 50,
    ) -> List[Message]:
        """Fetch up to ``max_count`` of the most recent messages in ``folder``.

        Args:
            account: Account to connect with
            folder: Canonical folder to read
            max_count: Upper bound on the number of messages returned

        Returns:
            Messages, newest server index first

        Raises:
            RateLimitedError: If the account is currently backing off
            AuthenticationFailure: If the server rejects the credentials
            FolderNotFoundError: If no alias of ``folder`` exists (not counted)
            ServerConnectionError: On any other protocol or network failure
        """
        start_time = time.time()

        async with self._session(account) as protocol:
            try:
                resolution = await resolve_folder(protocol, folder)
                if isinstance(resolution, NotFound):
                    raise FolderNotFoundError(
                        f"Folder {folder.value} not found on server",
                        details={"account": account.email, "folder": folder.value},
                    )

                total = await protocol.examine(resolution.name)
                fetched = await self._fetch_recent(protocol, total, max_count)

            except (IMAPError, ServerConnectionError) as e:
                raise self._protocol_failure(account, "fetch", e) from e

            finally:
                await protocol.close_folder()

        messages = self._convert(fetched)
        logger.info(
            "Fetched messages from server",
            extra={
                "folder": folder.value,
                "count": len(messages),
                "duration_seconds": round(time.time() - start_time, 2),
            },
        )
        return messages

    async def _fetch_recent(
        self, protocol: IMAPProtocol, total: int, max_count: int
    ) -> List[FetchedMessage]:
        if total <= 0 or max_count <= 0:
            return []

        start = max(1, total - max_count + 1)
        fetched: List[FetchedMessage] = []
        for low, high in _descending_batches(start, total, BatchSizes.IMAP_FETCH_BATCH):
            batch = await protocol.fetch_messages(low, high)
            fetched.extend(sorted(batch, key=lambda m: m.sequence, reverse=True))
        return fetched

    @staticmethod
    def _convert(fetched: List[FetchedMessage]) -> List[Message]:
        messages = []
        for item in fetched:
            try:
                messages.append(
                    EmailParser.parse_from_bytes(
                        item.raw, received_date=item.internal_date, flags=item.flags
                    )
                )
            except ValidationError as e:
                logger.warning(
                    "Skipping unparseable message",
                    extra={"sequence": item.sequence, "error": str(e)},
                )
        return messages

    ## Move

    async def move_to_folder(
        self,
        account: Account,
        source: FolderName,
        target: FolderName,
        reference: Message,
    ) -> bool:
        """Best-effort server side move of ``reference`` from ``source`` to ``target``.

        The message is located by its Message-ID header when it has one, and
        otherwise by scanning ``source`` newest first for the same sender,
        subject and sent date. It is then copied, flagged deleted and the
        source expunged. Never raises: any failure is logged and reported
        as ``False``.
        """
        try:
            async with self._session(account) as protocol:
                try:
                    source_resolution = await resolve_folder(protocol, source)
                    if isinstance(source_resolution, NotFound):
                        raise FolderNotFoundError(
                            f"Source folder {source.value} not found",
                            details={"folder": source.value},
                        )
                    target_name = await self._resolve_or_create(protocol, target)

                    total = await protocol.select(source_resolution.name)
                    sequence = await self._locate(protocol, total, reference)
                    if sequence is None:
                        logger.info(
                            "Message to move not found on server",
                            extra={"folder": source.value, "subject": reference.subject},
                        )
                        return False

                    await protocol.copy(sequence, target_name)
                    await protocol.mark_deleted(sequence)
                    await protocol.expunge()

                finally:
                    await protocol.close_folder()

        except Exception as e:
            logger.warning(
                "Server move failed",
                extra={
                    "source": source.value,
                    "target": target.value,
                    "error": str(e),
                },
            )
            return False

        log_event(
            "message_moved",
            "Message moved on server",
            source=source.value,
            target=target_name,
        )
        return True

    async def move_to_trash(self, account: Account, source: FolderName, reference: Message) -> bool:
        return await self.move_to_folder(account, source, FolderName.TRASH, reference)

    async def _resolve_or_create(self, protocol: IMAPProtocol, target: FolderName) -> str:
        resolution = await resolve_folder(protocol, target)
        if not isinstance(resolution, NotFound):
            return resolution.name

        try:
            await protocol.create(target.value)
            return target.value
        except IMAPError as e:
            logger.warning(f"Could not create folder {target.value}: {e}")

        if await protocol.folder_exists(FALLBACK_TARGET):
            return FALLBACK_TARGET

        raise MoveFailure(
            f"No usable target folder for {target.value}",
            details={"folder": target.value},
        )

    async def _locate(
        self, protocol: IMAPProtocol, total: int, reference: Message
    ) -> Optional[int]:
        """Sequence number of the message matching ``reference``, if any."""

        if reference.message_id:
            matches = await protocol.search_header("Message-ID", reference.message_id)
            if matches:
                return matches[-1]
            logger.debug("Message-ID search found nothing, scanning headers")

        for low, high in _descending_batches(1, total, BatchSizes.IMAP_FETCH_BATCH):
            batch = await protocol.fetch_messages(low, high, headers_only=True)
            for item in sorted(batch, key=lambda m: m.sequence, reverse=True):
                try:
                    candidate = EmailParser.parse_from_bytes(item.raw)
                except ValidationError:
                    continue
                if same_headers(candidate, reference):
                    return item.sequence

        return None
