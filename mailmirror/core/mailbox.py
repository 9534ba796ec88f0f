"""User-initiated mailbox actions on the local mirror, mirrored to the server."""

import asyncio
from enum import Enum
from typing import Iterable

from mailmirror.security.credentials import Account
from mailmirror.utils.logging import get_logger, log_event

from .models import FolderName, Message
from .storage import MirrorStore

logger = get_logger(__name__)


class MoveStatus(str, Enum):
    """Outcome of a delete or restore."""

    MOVED = "moved"  # local and server
    LOCAL_ONLY = "local_only"  # server move failed
    DELETED = "deleted"  # removed from local Trash for good
    NOT_FOUND = "not_found"


class MailboxService:
    """Delete, restore and flag messages.

    The local mirror is always updated first; the server side move is best
    effort, and its failure leaves the message "moved locally only".
    """

    def __init__(self, store: MirrorStore, connector):
        self.store = store
        self.connector = connector

    async def delete_message(
        self, account: Account, folder: FolderName, message: Message
    ) -> MoveStatus:
        """Move ``message`` to Trash, or drop it for good when it is already there."""

        if folder == FolderName.TRASH:
            removed = await asyncio.to_thread(
                self.store.remove_local, account.email, FolderName.TRASH, message
            )
            if removed is None:
                return MoveStatus.NOT_FOUND
            logger.info("Message permanently deleted from local trash")
            return MoveStatus.DELETED

        return await self._move(account, folder, FolderName.TRASH, message)

    async def restore_message(self, account: Account, message: Message) -> MoveStatus:
        """Move ``message`` from Trash back to INBOX."""
        return await self._move(account, FolderName.TRASH, FolderName.INBOX, message)

    async def _move(
        self, account: Account, source: FolderName, target: FolderName, message: Message
    ) -> MoveStatus:
        moved = await asyncio.to_thread(
            self.store.move_local, account.email, source, target, message
        )
        if not moved:
            logger.warning(
                "Message not found in local folder",
                extra={"folder": source.value, "subject": message.subject},
            )
            return MoveStatus.NOT_FOUND

        if await self.connector.move_to_folder(account, source, target, message):
            status = MoveStatus.MOVED
        else:
            status = MoveStatus.LOCAL_ONLY

        log_event(
            "local_move",
            "Message moved in local mirror",
            source=source.value,
            target=target.value,
            status=status.value,
        )
        return status

    async def empty_trash(self, account: Account) -> int:
        """Empty the local Trash bucket; return how many messages were dropped."""
        return await asyncio.to_thread(self.store.empty_trash, account.email)

    def mark_read(
        self, account: Account, folder: FolderName, message: Message, read: bool = True
    ) -> bool:
        if read:
            message.mark_as_read()
        else:
            message.mark_as_unread()
        return self.store.update_message(account.email, folder, message)

    def set_tags(
        self, account: Account, folder: FolderName, message: Message, tags: Iterable[str]
    ) -> bool:
        """Replace the message's tags and persist it."""
        message.tags = set(tags)
        return self.store.update_message(account.email, folder, message)
