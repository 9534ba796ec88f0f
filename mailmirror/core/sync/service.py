"""Fetch, reconcile and persist one folder bucket."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from mailmirror.core.models import FolderName, Message
from mailmirror.core.reconciler import Reconciler, ReconcileResult
from mailmirror.core.storage import MirrorStore
from mailmirror.security.credentials import Account
from mailmirror.utils.logging import async_log_call, get_logger

logger = get_logger(__name__)


class RefreshListener(Protocol):
    """UI collaborator told which bucket changed so it can re-render."""

    def folder_changed(self, account: str, folder: FolderName) -> None: ...


@dataclass
class SyncResult:
    """Summary of one folder sync."""

    account: str
    folder: FolderName
    fetched: int = 0
    excluded: int = 0
    total: int = 0
    new_items: List[Message] = field(default_factory=list)
    duration: float = 0.0

    @property
    def new_count(self) -> int:
        return len(self.new_items)


class SyncService:
    """Service for syncing one (account, folder) bucket with the server.

    The network fetch runs without holding any lock. The bucket is then
    re-loaded, reconciled and saved under its lock in a worker thread, so a
    local delete made while the fetch was in flight is not overwritten by a
    stale copy.
    """

    def __init__(
        self,
        connector,
        store: MirrorStore,
        reconciler: Optional[Reconciler] = None,
        refresh_listener: Optional[RefreshListener] = None,
    ):
        """Initialise sync service.

        Args:
            connector: Remote connector with an async ``fetch(account, folder, max_count)``
            store: Local mirror store
            reconciler: Reconciler bound to ``store`` (created if omitted)
            refresh_listener: Optional UI collaborator notified on change
        """
        self.connector = connector
        self.store = store
        self.reconciler = reconciler or Reconciler(store)
        self.refresh_listener = refresh_listener

    @async_log_call
    async def sync_folder(
        self,
        account: Account,
        folder: FolderName = FolderName.INBOX,
        limit: int = 50,
    ) -> SyncResult:
        """Fetch up to ``limit`` recent messages and merge them into the mirror.

        Raises:
            MailMirrorError: Any connector or persistence error, unchanged
        """
        start_time = time.time()

        remote = await self.connector.fetch(account, folder, limit)
        result = await asyncio.to_thread(self._reconcile_and_save, account.email, folder, remote)

        sync_result = SyncResult(
            account=account.email,
            folder=folder,
            fetched=len(remote),
            excluded=result.excluded,
            total=len(result.merged),
            new_items=result.new_items,
            duration=time.time() - start_time,
        )

        logger.info(
            "Folder sync completed",
            extra={
                "folder": folder.value,
                "fetched": sync_result.fetched,
                "new": sync_result.new_count,
                "excluded": sync_result.excluded,
                "duration_seconds": round(sync_result.duration, 2),
            },
        )

        if sync_result.new_items and self.refresh_listener is not None:
            try:
                self.refresh_listener.folder_changed(account.email, folder)
            except Exception as e:
                logger.error(f"Refresh listener failed: {e}")

        return sync_result

    def _reconcile_and_save(
        self, account: str, folder: FolderName, remote: List[Message]
    ) -> ReconcileResult:
        with self.store.locked(account, folder):
            local = self.store.load(account, folder)
            result = self.reconciler.reconcile(account, folder, local, remote)
            if result.new_items:
                self.store.save(account, folder, result.merged)
        return result
