"""Mapping of canonical folders onto vendor specific server names."""

from dataclasses import dataclass
from typing import Dict, Tuple, Union

from mailmirror.core.models import FolderName
from mailmirror.utils.logging import get_logger

logger = get_logger(__name__)

ALIASES: Dict[FolderName, Tuple[str, ...]] = {
    FolderName.INBOX: (),
    FolderName.TRASH: (
        "[Gmail]/Papelera",
        "[Gmail]/Trash",
        "Deleted",
        "Deleted Items",
        "Deleted Messages",
        "Papelera",
        "INBOX.Trash",
        "INBOX/Trash",
        "[Google Mail]/Papelera",
        "[Google Mail]/Trash",
    ),
    FolderName.SENT: (
        "[Gmail]/Enviados",
        "[Gmail]/Sent Mail",
        "Sent Items",
        "Sent Mail",
        "Enviados",
    ),
    FolderName.DRAFTS: (
        "[Gmail]/Borradores",
        "[Gmail]/Drafts",
        "Draft",
        "Drafts",
        "Borradores",
    ),
    FolderName.JUNK: (
        "[Gmail]/Spam",
        "Spam",
        "Correo no deseado",
        "Junk",
        "Junk Mail",
    ),
}

# Last resort target when the requested folder can neither be found nor created.
FALLBACK_TARGET = "Trash"


@dataclass(frozen=True)
class Resolved:
    """A canonical folder found on the server under ``name``."""

    name: str


@dataclass(frozen=True)
class NotFound:
    """Neither the canonical name nor any alias exists on the server."""

    canonical: FolderName


FolderResolution = Union[Resolved, NotFound]


async def resolve_folder(protocol, canonical: FolderName) -> FolderResolution:
    """Find the server folder for ``canonical``.

    The canonical name is tried first, then each alias in order; the first
    one the server knows wins.
    """

    for candidate in (canonical.value,) + ALIASES.get(canonical, ()):
        if await protocol.folder_exists(candidate):
            if candidate != canonical.value:
                logger.debug(
                    "Resolved folder alias",
                    extra={"canonical": canonical.value, "folder": candidate},
                )
            return Resolved(candidate)

    logger.info("Folder not found on server", extra={"canonical": canonical.value})
    return NotFound(canonical)
