"""Connection gating and credential access."""

from .credentials import (
    Account,
    CredentialProvider,
    KeyringCredentialProvider,
    StaticCredentialProvider,
)
from .rate_limit import RateLimiter

__all__ = [
    "Account",
    "CredentialProvider",
    "KeyringCredentialProvider",
    "StaticCredentialProvider",
    "RateLimiter",
]
