from .client import IMAPClient
from .connection import IMAPConnection
from .folders import ALIASES, NotFound, Resolved, resolve_folder
from .protocol import FetchedMessage, IMAPProtocol

__all__ = [
    "ALIASES",
    "FetchedMessage",
    "IMAPClient",
    "IMAPConnection",
    "IMAPProtocol",
    "NotFound",
    "Resolved",
    "resolve_folder",
]
