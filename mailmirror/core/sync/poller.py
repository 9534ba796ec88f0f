"""Periodic and on-demand mail checks for every configured account."""

import asyncio
from typing import Dict, List, Optional, Protocol, Set

from mailmirror.core.fingerprint import sort_messages
from mailmirror.core.highlight import HighlightTracker
from mailmirror.core.models import FolderName, Message
from mailmirror.security.credentials import Account, CredentialProvider
from mailmirror.utils.errors import MailMirrorError, RateLimitedError, ValidationError
from mailmirror.utils.logging import get_logger, log_event

from .service import SyncResult, SyncService
from .ticker import Ticker

logger = get_logger(__name__)


class Notifier(Protocol):
    """Notification collaborator (tray balloon, desktop toast, ...)."""

    def notify(self, account: str, new_count: int, message: str) -> None: ...


def human_message(new_items: List[Message]) -> str:
    """Short notification text, e.g. ``You have 2 new messages: Lunch?``."""

    count = len(new_items)
    text = "You have 1 new message" if count == 1 else f"You have {count} new messages"

    if new_items:
        newest = sort_messages(new_items)[0]
        if newest.subject:
            text = f"{text}: {newest.subject}"
    return text


class Poller:
    """One recurring check task per process.

    Each tick checks every account in turn: sync INBOX, register the new
    messages with the highlight tracker and notify. A failing account is
    logged and skipped; the loop itself never dies of an account error.
    """

    def __init__(
        self,
        sync_service: SyncService,
        credentials: CredentialProvider,
        tracker: HighlightTracker,
        notifier: Optional[Notifier] = None,
        interval_minutes: float = 5,
        fetch_limit: int = 50,
        notifications_enabled: bool = True,
    ):
        self.sync_service = sync_service
        self.credentials = credentials
        self.tracker = tracker
        self.notifier = notifier
        self.interval_minutes = interval_minutes
        self.fetch_limit = fetch_limit
        self.notifications_enabled = notifications_enabled

        self._task: Optional[asyncio.Task] = None
        self._cancel_token: Optional[asyncio.Event] = None
        self._background: Set[asyncio.Task] = set()
        self._check_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    ## Checks

    async def check_now(self) -> Dict[str, int]:
        """Check every account once; return new message counts by account.

        Accounts that failed are missing from the result.
        """
        async with self._check_lock:
            try:
                accounts = await self.credentials.accounts()
            except MailMirrorError as e:
                logger.error(f"Could not load accounts: {e.message}")
                return {}
            except Exception:
                logger.exception("Credential provider failed, skipping this check")
                return {}

            results = {}
            for account in accounts:
                try:
                    results[account.email] = await self._check_account(account)

                except RateLimitedError as e:
                    logger.info(
                        "Skipping account while rate limited",
                        extra={"account": account.email, "wait_seconds": e.wait_seconds},
                    )
                except MailMirrorError as e:
                    logger.warning(
                        f"Mail check failed: {e.message}",
                        extra={"account": account.email, "error": e.to_dict()},
                    )
                except Exception:
                    logger.exception(f"Unexpected error checking {account.email}")

            return results

    async def _check_account(self, account: Account) -> int:
        result = await self.sync_service.sync_folder(
            account, FolderName.INBOX, self.fetch_limit
        )
        if not result.new_items:
            return 0

        self.tracker.add_new(account.email, result.new_items)
        log_event(
            "new_mail",
            "New mail received",
            account=account.email,
            count=result.new_count,
        )
        self._notify(account, result)
        return result.new_count

    def _notify(self, account: Account, result: SyncResult) -> None:
        if self.notifier is None or not self.notifications_enabled:
            return
        try:
            self.notifier.notify(account.email, result.new_count, human_message(result.new_items))
        except Exception as e:
            logger.error(f"Notifier failed: {e}")

    def refresh_folder(
        self,
        account: Account,
        folder: FolderName = FolderName.INBOX,
        limit: Optional[int] = None,
    ) -> asyncio.Task:
        """Sync one folder on a short-lived background task (manual refresh, folder switch)."""

        task = asyncio.create_task(
            self._refresh(account, folder, limit or self.fetch_limit),
            name=f"refresh-{folder.value}",
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _refresh(self, account: Account, folder: FolderName, limit: int) -> Optional[SyncResult]:
        try:
            return await self.sync_service.sync_folder(account, folder, limit)
        except MailMirrorError as e:
            logger.warning(
                f"Folder refresh failed: {e.message}",
                extra={"account": account.email, "folder": folder.value},
            )
        except Exception:
            logger.exception(f"Unexpected error refreshing {folder.value}")
        return None

    ## Lifecycle

    def start(self) -> None:
        """Start the periodic task; the first check runs immediately."""

        if self.running:
            logger.info("Poller is already running")
            return

        self._cancel_token = asyncio.Event()
        ticker = Ticker(self.interval_minutes * 60, self._cancel_token, immediate=True)
        self._task = asyncio.create_task(self._run(ticker), name="mailmirror-poller")

    async def _run(self, ticker: Ticker) -> None:
        logger.info("Poller started", extra={"interval_minutes": self.interval_minutes})
        async for _ in ticker:
            try:
                await self.check_now()
            except Exception:
                logger.exception("Mail check failed, retrying on the next tick")
        logger.info("Poller stopped")

    def request_stop(self) -> None:
        """Signal the periodic task to end after the current check. Never blocks."""
        if self._cancel_token is not None:
            self._cancel_token.set()

    async def stop(self) -> None:
        """Stop the periodic task and wait for it and any refreshes to finish."""

        self.request_stop()
        task, self._task = self._task, None
        if task is not None:
            await task

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def restart(self, interval_minutes: float) -> None:
        """Apply a new interval by stopping and starting the periodic task."""

        if interval_minutes <= 0:
            raise ValidationError(f"Invalid check interval: {interval_minutes}")

        await self.stop()
        self.interval_minutes = interval_minutes
        self.start()
