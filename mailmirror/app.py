"""Application entry point: builds and owns every long-lived service."""

import asyncio
from pathlib import Path
from typing import Optional

from mailmirror.core.email.imap import IMAPClient
from mailmirror.core.highlight import HighlightTracker
from mailmirror.core.mailbox import MailboxService
from mailmirror.core.reconciler import Reconciler
from mailmirror.core.storage import MirrorStore
from mailmirror.core.sync import Notifier, Poller, RefreshListener, SyncService
from mailmirror.security.credentials import CredentialProvider, KeyringCredentialProvider
from mailmirror.security.rate_limit import RateLimiter
from mailmirror.utils.config import ConfigManager
from mailmirror.utils.logging import get_logger, init_logging
from mailmirror.utils.scheduler import HousekeepingScheduler

logger = get_logger(__name__)


class MailMirrorApp:
    """Explicitly constructed service graph with a start/stop lifecycle.

    Usage:
        >>> async with MailMirrorApp() as app:
        ...     await app.poller.check_now()
    """

    def __init__(
        self,
        config_manager: Optional[ConfigManager] = None,
        credentials: Optional[CredentialProvider] = None,
        notifier: Optional[Notifier] = None,
        refresh_listener: Optional[RefreshListener] = None,
        session_factory=None,
    ):
        self.config_manager = config_manager or ConfigManager()
        config = self.config_manager.config
        init_logging(config.logging.log_level)

        self.rate_limiter = RateLimiter(
            max_attempts=config.rate_limit.max_attempts,
            base_delay=config.rate_limit.base_delay,
            max_delay=config.rate_limit.max_delay,
        )
        self.store = MirrorStore(Path(config.storage.mirror_path).expanduser())
        self.reconciler = Reconciler(self.store)
        self.tracker = HighlightTracker(
            ttl_seconds=config.features.highlight_ttl_seconds or None
        )
        self.credentials = credentials or KeyringCredentialProvider(self.config_manager)

        self.connector = IMAPClient(
            self.rate_limiter,
            session_factory=session_factory,
            timeout=config.network.timeout,
        )
        self.sync_service = SyncService(
            self.connector, self.store, self.reconciler, refresh_listener
        )
        self.mailbox = MailboxService(self.store, self.connector)
        self.poller = Poller(
            self.sync_service,
            self.credentials,
            self.tracker,
            notifier=notifier,
            interval_minutes=config.features.check_interval_minutes,
            fetch_limit=config.features.fetch_limit,
            notifications_enabled=config.features.notifications,
        )
        self.housekeeping = HousekeepingScheduler(
            self.config_manager, self.rate_limiter, self.tracker
        )

    async def start(self) -> None:
        """Start housekeeping and either the periodic poll or a single check."""

        self.housekeeping.start()

        if self.config_manager.config.features.auto_check:
            self.poller.start()
        else:
            logger.info("Automatic checks disabled, running a single check")
            await self.poller.check_now()

    async def stop(self) -> None:
        self.housekeeping.stop()
        await self.poller.stop()
        logger.info("Application stopped")

    async def run_forever(self) -> None:
        """Run until cancelled (Ctrl+C under ``asyncio.run``)."""

        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()

    async def set_check_interval(self, minutes: int) -> None:
        """Persist a new poll interval and apply it to the running poller."""

        self.config_manager.set_config("features.check_interval_minutes", minutes)
        if self.poller.running:
            await self.poller.restart(minutes)
        else:
            self.poller.interval_minutes = minutes

    def set_notifications(self, enabled: bool) -> None:
        self.config_manager.set_config("features.notifications", enabled)
        self.poller.notifications_enabled = enabled

    async def __aenter__(self) -> "MailMirrorApp":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
