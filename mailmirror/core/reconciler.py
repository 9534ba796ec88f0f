"""Reconcile a remote fetch against the local mirror."""

from dataclasses import dataclass, field
from typing import List

from mailmirror.utils.logging import get_logger

from .fingerprint import fingerprint
from .models import FolderName, Message
from .storage import MirrorStore, merge

logger = get_logger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of merging one remote fetch into one bucket."""

    merged: List[Message] = field(default_factory=list)
    new_items: List[Message] = field(default_factory=list)
    excluded: int = 0

    @property
    def new_count(self) -> int:
        return len(self.new_items)


class Reconciler:
    """Combine remote fetches with the mirror, skipping locally trashed mail."""

    def __init__(self, store: MirrorStore):
        self._store = store

    def reconcile(
        self,
        account: str,
        folder: FolderName,
        local: List[Message],
        remote: List[Message],
    ) -> ReconcileResult:
        """Merge ``remote`` into ``local``.

        Messages already present in the account's local Trash are dropped
        from ``remote`` first, so a message deleted here does not come back
        before the server-side move has gone through.

        Args:
            account: Account email
            folder: Canonical folder the fetch came from
            local: Current content of the local bucket
            remote: Messages returned by the server

        Returns:
            ReconcileResult with the merged bucket and the new messages
        """

        if folder == FolderName.TRASH:
            accepted = list(remote)
        else:
            trashed = {fingerprint(m) for m in self._store.load(account, FolderName.TRASH)}
            accepted = [m for m in remote if fingerprint(m) not in trashed]

        known = {fingerprint(m) for m in local}
        new_items = []
        for message in accepted:
            key = fingerprint(message)
            if key not in known:
                known.add(key)
                new_items.append(message)

        result = ReconcileResult(
            merged=merge(local, accepted),
            new_items=new_items,
            excluded=len(remote) - len(accepted),
        )

        logger.debug(
            "Reconciled remote fetch",
            extra={
                "folder": folder.value,
                "remote": len(remote),
                "excluded": result.excluded,
                "new": result.new_count,
                "merged": len(result.merged),
            },
        )
        return result
