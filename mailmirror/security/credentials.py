"""Credential collaborator: hands out accounts with decrypted passwords."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from mailmirror.utils.config import AccountConfig, ConfigManager
from mailmirror.utils.errors import MissingCredentialsError
from mailmirror.utils.logging import get_logger

logger = get_logger(__name__)

KEYRING_SERVICE = "mailmirror"


@dataclass
class Account:
    """Everything the sync engine needs to reach one mailbox."""

    email: str
    imap_server: str
    username: str
    password: str = field(repr=False)
    imap_port: int = 993
    use_ssl: bool = True
    use_auth: bool = True
    display_name: str = ""

    @property
    def rate_limit_key(self) -> str:
        """Resource key used by the rate limiter (account + host)."""
        return f"{self.email}@{self.imap_server}"

    @classmethod
    def from_config(cls, config: AccountConfig, password: str) -> "Account":
        return cls(
            email=config.email,
            imap_server=config.imap_server,
            username=config.username or config.email,
            password=password,
            imap_port=config.imap_port,
            use_ssl=config.use_ssl,
            use_auth=config.use_auth,
            display_name=config.display_name,
        )


class CredentialProvider(ABC):
    """Source of ready-to-use accounts."""

    @abstractmethod
    async def accounts(self) -> List[Account]:
        """Return every configured account with its password."""
        pass

    async def account(self, email: str) -> Account:
        """Return one account by email.

        Raises:
            MissingCredentialsError: If no usable account matches
        """
        for account in await self.accounts():
            if account.email.lower() == email.lower():
                return account
        raise MissingCredentialsError(
            f"No credentials available for {email}", details={"account": email}
        )


class StaticCredentialProvider(CredentialProvider):
    """Fixed list of accounts, for embedding and tests."""

    def __init__(self, accounts: Iterable[Account]):
        self._accounts = list(accounts)

    async def accounts(self) -> List[Account]:
        return list(self._accounts)


class KeyringCredentialProvider(CredentialProvider):
    """Accounts from the config file, passwords from the system keyring."""

    def __init__(self, config_manager: ConfigManager, service: str = KEYRING_SERVICE):
        self.config_manager = config_manager
        self.service = service

    async def _password(self, email: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(keyring.get_password, self.service, email)
        except KeyringError as e:
            logger.error(f"Keyring retrieval failed: {e}")
            return None

    async def accounts(self) -> List[Account]:
        """Accounts with a stored password; the rest are skipped with a warning."""

        resolved = []
        for config in self.config_manager.config.accounts:
            if not config.use_auth:
                resolved.append(Account.from_config(config, ""))
                continue

            password = await self._password(config.email)
            if not password:
                logger.warning(
                    "Password not found in keyring, skipping account",
                    extra={"account": config.email},
                )
                continue

            resolved.append(Account.from_config(config, password))

        return resolved

    async def store_password(self, email: str, password: str) -> None:
        """Save a password for ``email`` in the keyring."""
        await asyncio.to_thread(keyring.set_password, self.service, email, password)
        logger.info("Password stored in keyring", extra={"account": email})

    async def delete_password(self, email: str) -> None:
        try:
            await asyncio.to_thread(keyring.delete_password, self.service, email)
        except PasswordDeleteError:
            logger.debug("No keyring entry to delete", extra={"account": email})
