from .poller import Notifier, Poller, human_message
from .service import RefreshListener, SyncResult, SyncService
from .ticker import Ticker

__all__ = [
    "Notifier",
    "Poller",
    "RefreshListener",
    "SyncResult",
    "SyncService",
    "Ticker",
    "human_message",
]
