"""Local mirror store: one JSON document per (account, folder) bucket."""

import os
import re
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from mailmirror.utils.errors import PersistenceError
from mailmirror.utils.logging import get_logger, log_call

from .fingerprint import fingerprint, sort_messages
from .models import FolderName, Message

logger = get_logger(__name__)

_MESSAGES = TypeAdapter(List[Message])

_UNSAFE_ACCOUNT_CHARS = re.compile(r"[^a-zA-Z0-9@._-]")
_UNSAFE_FOLDER_CHARS = re.compile(r"[^a-zA-Z0-9_-]")

BucketKey = Tuple[str, str]


def merge(existing: Iterable[Message], incoming: Iterable[Message]) -> List[Message]:
    """Append every incoming message whose fingerprint is not present yet.

    The first copy of a fingerprint wins, duplicates inside ``incoming`` are
    dropped too, and the result is ordered newest first.
    """

    merged = list(existing)
    seen = {fingerprint(m) for m in merged}

    for message in incoming:
        key = fingerprint(message)
        if key not in seen:
            seen.add(key)
            merged.append(message)

    return sort_messages(merged)


def _account_key(account: str) -> str:
    """Addresses are case-insensitive; one account maps to one set of buckets."""
    return account.strip().lower()


def _folder_value(folder) -> str:
    return folder.value if isinstance(folder, FolderName) else str(folder)


class MirrorStore:
    """Persisted, per-bucket ordered message collections.

    Every read and write of a bucket happens under that bucket's re-entrant
    lock; writes go to a temporary file that replaces the document in one
    ``os.replace`` call, so a concurrent reader sees either the old or the
    new content.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self._locks: Dict[BucketKey, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    ## Paths and locks

    def bucket_path(self, account: str, folder) -> Path:
        """Document path for a bucket, keyed by sanitised account and folder names."""

        safe_account = _UNSAFE_ACCOUNT_CHARS.sub("_", _account_key(account))
        safe_folder = _UNSAFE_FOLDER_CHARS.sub("_", _folder_value(folder))
        return self.root / f"{safe_account}_{safe_folder}.json"

    def _lock_for(self, account: str, folder) -> threading.RLock:
        key = (_account_key(account), _folder_value(folder))
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @contextmanager
    def locked(self, account: str, folder) -> Iterator[None]:
        """Hold the bucket lock across a load/modify/save sequence."""

        lock = self._lock_for(account, folder)
        with lock:
            yield

    ## Core operations

    def load(self, account: str, folder) -> List[Message]:
        """Return the bucket's messages, or an empty list if it was never saved.

        Raises:
            PersistenceError: If the document exists but cannot be read or parsed
        """

        path = self.bucket_path(account, folder)

        with self.locked(account, folder):
            if not path.exists():
                return []

            try:
                raw = path.read_bytes()
            except OSError as e:
                raise PersistenceError(
                    f"Failed to read mirror bucket: {path.name}",
                    details={"account": account, "folder": _folder_value(folder)},
                ) from e

        if not raw.strip():
            return []

        try:
            messages = _MESSAGES.validate_json(raw)
        except PydanticValidationError as e:
            raise PersistenceError(
                f"Mirror bucket is corrupted: {path.name}",
                details={"account": account, "folder": _folder_value(folder)},
            ) from e

        logger.debug(
            "Loaded mirror bucket",
            extra={"folder": _folder_value(folder), "count": len(messages)},
        )
        return messages

    def save(self, account: str, folder, messages: List[Message]) -> None:
        """Replace the bucket's content atomically.

        Raises:
            PersistenceError: If the document cannot be written
        """

        path = self.bucket_path(account, folder)
        payload = _MESSAGES.dump_json(messages, by_alias=True, indent=2)

        with self.locked(account, folder):
            tmp_name = None
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                with tempfile.NamedTemporaryFile(
                    "wb", dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp", delete=False
                ) as tmp:
                    tmp_name = tmp.name
                    tmp.write(payload)
                    tmp.flush()
                    os.fsync(tmp.fileno())
                os.replace(tmp_name, path)

            except OSError as e:
                if tmp_name is not None and os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise PersistenceError(
                    f"Failed to write mirror bucket: {path.name}",
                    details={"account": account, "folder": _folder_value(folder)},
                ) from e

        logger.debug(
            "Saved mirror bucket",
            extra={"folder": _folder_value(folder), "count": len(messages)},
        )

    @staticmethod
    def merge(existing: Iterable[Message], incoming: Iterable[Message]) -> List[Message]:
        """See :func:`merge`."""
        return merge(existing, incoming)

    ## Housekeeping

    def count(self, account: str, folder) -> int:
        """Number of messages stored in a bucket."""
        return len(self.load(account, folder))

    @log_call
    def prune(self, account: str, folder, max_messages: int) -> int:
        """Keep only the newest ``max_messages`` messages; return how many were dropped."""

        with self.locked(account, folder):
            messages = self.load(account, folder)
            if len(messages) <= max_messages:
                return 0

            kept = sort_messages(messages)[:max_messages]
            self.save(account, folder, kept)

        dropped = len(messages) - len(kept)
        logger.info(
            "Pruned old messages from mirror",
            extra={"folder": _folder_value(folder), "dropped": dropped, "kept": len(kept)},
        )
        return dropped

    @log_call
    def empty_trash(self, account: str) -> int:
        """Replace the Trash bucket with an empty collection; return how many were removed."""

        with self.locked(account, FolderName.TRASH):
            removed = len(self.load(account, FolderName.TRASH))
            self.save(account, FolderName.TRASH, [])

        logger.info("Emptied local trash", extra={"removed": removed})
        return removed

    @log_call
    def delete_account(self, account: str) -> int:
        """Remove every bucket document for ``account``; return how many files went."""

        removed = 0
        for folder in FolderName:
            path = self.bucket_path(account, folder)
            with self.locked(account, folder):
                try:
                    path.unlink()
                    removed += 1
                except FileNotFoundError:
                    continue
                except OSError as e:
                    raise PersistenceError(
                        f"Failed to delete mirror bucket: {path.name}",
                        details={"folder": folder.value},
                    ) from e

        logger.info("Deleted mirrored mail for account", extra={"buckets": removed})
        return removed

    ## Moves between buckets

    def remove_local(self, account: str, folder, message: Message) -> Optional[Message]:
        """Drop the message with ``message``'s fingerprint from a bucket and return it."""

        key = fingerprint(message)

        with self.locked(account, folder):
            messages = self.load(account, folder)
            for index, candidate in enumerate(messages):
                if fingerprint(candidate) == key:
                    removed = messages.pop(index)
                    self.save(account, folder, messages)
                    return removed

        return None

    def move_local(self, account: str, source, target, message: Message) -> bool:
        """Move one message between two buckets of the same account.

        Both bucket locks are taken in a fixed order so two opposite moves
        cannot deadlock. Returns False if the message is not in ``source``.
        """

        first, second = sorted((_folder_value(source), _folder_value(target)))

        with self.locked(account, first), self.locked(account, second):
            moved = self.remove_local(account, source, message)
            if moved is None:
                return False

            existing = self.load(account, target)
            self.save(account, target, merge(existing, [moved]))

        logger.debug(
            "Moved message between local buckets",
            extra={"source": _folder_value(source), "target": _folder_value(target)},
        )
        return True

    def update_message(self, account: str, folder, message: Message) -> bool:
        """Replace the stored copy that shares ``message``'s fingerprint."""

        key = fingerprint(message)

        with self.locked(account, folder):
            messages = self.load(account, folder)
            for index, candidate in enumerate(messages):
                if fingerprint(candidate) == key:
                    messages[index] = message
                    self.save(account, folder, messages)
                    return True

        return False
