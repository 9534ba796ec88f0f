"""IMAP connection management - session setup, login and cleanup."""

import asyncio
import time
from typing import Optional

import aioimaplib

from mailmirror.security.credentials import Account
from mailmirror.utils.errors import (
    AuthenticationFailure,
    NetworkTimeoutError,
    ServerConnectionError,
)
from mailmirror.utils.logging import async_log_call, get_logger

from ..constants import IMAPResponse, Timeouts
from .protocol import IMAPProtocol

logger = get_logger(__name__)


class IMAPConnection:
    """One authenticated IMAP session for one account.

    Used as an async context manager: entering connects and logs in and
    yields an ``IMAPProtocol`` bound to the session; leaving closes any
    selected folder and logs out, whatever happened in between.
    """

    def __init__(self, account: Account, timeout: float = Timeouts.IMAP_CONNECT):
        self.account = account
        self.timeout = timeout
        self._client: Optional[aioimaplib.IMAP4] = None
        self._protocol: Optional[IMAPProtocol] = None

    def _create_client(self) -> aioimaplib.IMAP4:
        if self.account.use_ssl:
            return aioimaplib.IMAP4_SSL(
                host=self.account.imap_server,
                port=self.account.imap_port,
                timeout=self.timeout,
            )
        return aioimaplib.IMAP4(
            host=self.account.imap_server,
            port=self.account.imap_port,
            timeout=self.timeout,
        )

    async def connect(self) -> IMAPProtocol:
        """Connect and authenticate.

        Returns:
            IMAPProtocol bound to the new session

        Raises:
            AuthenticationFailure: If the server rejects the credentials
            NetworkTimeoutError: If the greeting or login times out
            ServerConnectionError: If the server cannot be reached
        """
        server = self.account.imap_server
        start_time = time.time()

        logger.info(
            "Connecting to IMAP server",
            extra={"server": server, "port": self.account.imap_port},
        )

        try:
            self._client = self._create_client()
            await asyncio.wait_for(
                self._client.wait_hello_from_server(), timeout=self.timeout
            )

            if self.account.use_auth:
                response = await asyncio.wait_for(
                    self._client.login(self.account.username, self.account.password),
                    timeout=self.timeout,
                )
                if response.result != IMAPResponse.OK:
                    raise AuthenticationFailure(
                        "IMAP authentication failed",
                        details={"server": server, "username": self.account.username},
                    )

        except AuthenticationFailure:
            logger.warning(
                "IMAP authentication failed",
                extra={"server": server, "username": self.account.username},
            )
            await self._abandon()
            raise

        except asyncio.TimeoutError as e:
            logger.error(f"IMAP connection timed out after {time.time() - start_time:.2f}s")
            await self._abandon()
            raise NetworkTimeoutError(
                "IMAP connection timeout", details={"server": server}
            ) from e

        except Exception as e:
            await self._abandon()
            raise ServerConnectionError(
                f"Failed to connect to IMAP server: {e}", details={"server": server}
            ) from e

        logger.info(
            "IMAP connection established",
            extra={
                "server": server,
                "username": self.account.username,
                "duration_seconds": round(time.time() - start_time, 2),
            },
        )

        self._protocol = IMAPProtocol(self._client, timeout=self.timeout)
        return self._protocol

    async def _abandon(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await asyncio.wait_for(client.logout(), timeout=Timeouts.IMAP_LOGOUT)
        except Exception as e:
            logger.debug(f"Error dropping half-open IMAP connection: {e}")

    @async_log_call
    async def close(self) -> None:
        """Close the selected folder (if any) and log out."""

        if self._client is None:
            return

        try:
            if self._protocol is not None:
                await self._protocol.close_folder()

            await asyncio.wait_for(self._client.logout(), timeout=Timeouts.IMAP_LOGOUT)
            logger.debug("IMAP connection closed successfully")

        except Exception as e:
            logger.debug(f"Error closing IMAP connection: {e}")

        finally:
            self._client = None
            self._protocol = None

    ## Context Manager Helpers

    async def __aenter__(self) -> IMAPProtocol:
        return await self.connect()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
