"""
Tests for low-level IMAP commands over a mocked aioimaplib client

Tests cover:
- FETCH response grouping
- LIST, EXISTS, STATUS and SEARCH parsing
- Error and timeout handling
- Connection login outcomes
"""
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mailmirror.core.email.imap.connection import IMAPConnection
from mailmirror.core.email.imap.protocol import (
    IMAPProtocol,
    parse_fetch_lines,
    quote_mailbox,
)
from mailmirror.utils.errors import (
    AuthenticationFailure,
    IMAPError,
    NetworkTimeoutError,
    ServerConnectionError,
)

from .helpers import MessageTestHelper


def response(result="OK", lines=()):
    return SimpleNamespace(result=result, lines=list(lines))


def mock_client(**responses):
    client = MagicMock()
    for name, value in responses.items():
        setattr(client, name, AsyncMock(return_value=value))
    return client


class TestParseFetchLines:
    """Tests for grouping FETCH output into messages"""

    def test_metadata_before_literal(self):
        lines = [
            b'2 FETCH (FLAGS (\\Seen) INTERNALDATE "02-Oct-2025 10:30:00 +0200" BODY[] {5}',
            bytearray(b"hello"),
            b")",
            b"1 FETCH (FLAGS () INTERNALDATE \"01-Oct-2025 09:00:00 +0000\" BODY[] {3}",
            bytearray(b"abc"),
            b")",
            b"FETCH completed.",
        ]

        messages = parse_fetch_lines(lines)

        assert [m.sequence for m in messages] == [2, 1]
        assert messages[0].raw == b"hello"
        assert messages[0].flags == ("\\Seen",)
        assert messages[0].internal_date.isoformat() == "2025-10-02T10:30:00+02:00"
        assert messages[1].flags == ()

    def test_metadata_after_literal(self):
        lines = [
            b"7 FETCH (BODY[] {5}",
            bytearray(b"hello"),
            b' INTERNALDATE "02-Oct-2025 10:30:00 +0000" FLAGS (\\Seen \\Answered))',
        ]

        messages = parse_fetch_lines(lines)

        assert messages[0].flags == ("\\Seen", "\\Answered")
        assert messages[0].internal_date is not None

    def test_entries_without_literal_are_dropped(self):
        assert parse_fetch_lines([b"3 FETCH (FLAGS (\\Seen))", b"FETCH completed."]) == []


class TestQuoting:
    """Tests for mailbox name quoting"""

    def test_simple_name_is_not_quoted(self):
        assert quote_mailbox("INBOX") == "INBOX"

    def test_names_with_spaces_are_quoted(self):
        assert quote_mailbox("Deleted Items") == '"Deleted Items"'

    def test_gmail_names_are_quoted(self):
        assert quote_mailbox("[Gmail]/Trash") == '"[Gmail]/Trash"'


class TestIMAPProtocol:
    """Tests for IMAPProtocol commands"""

    @pytest.mark.asyncio
    async def test_list_folders(self):
        client = mock_client(
            list=response(
                lines=[
                    b'(\\HasNoChildren) "/" "INBOX"',
                    b'(\\HasChildren \\Noselect) "/" "[Gmail]"',
                    b'(\\HasNoChildren \\Trash) "/" "[Gmail]/Papelera"',
                    b'(\\HasNoChildren) "." Archive',
                    b"LIST completed.",
                ]
            )
        )

        folders = await IMAPProtocol(client).list_folders()

        assert folders == ["INBOX", "[Gmail]/Papelera", "Archive"]

    @pytest.mark.asyncio
    async def test_folder_exists_uses_cached_listing(self):
        client = mock_client(list=response(lines=[b'() "/" "Inbox"', b'() "/" "Sent Items"']))
        protocol = IMAPProtocol(client)

        assert await protocol.folder_exists("INBOX")
        assert await protocol.folder_exists("Sent Items")
        assert not await protocol.folder_exists("Trash")
        client.list.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_examine_returns_message_count(self):
        client = mock_client(
            examine=response(lines=[b"FLAGS (\\Seen)", b"42 EXISTS", b"0 RECENT", b"EXAMINE completed."])
        )

        assert await IMAPProtocol(client).examine("INBOX") == 42

    @pytest.mark.asyncio
    async def test_select_quotes_mailbox(self):
        client = mock_client(select=response(lines=[b"3 EXISTS"]))

        await IMAPProtocol(client).select("Deleted Items")

        client.select.assert_awaited_once_with('"Deleted Items"')

    @pytest.mark.asyncio
    async def test_rejected_command_raises_imap_error(self):
        client = mock_client(examine=response("NO", [b"Mailbox doesn't exist"]))

        with pytest.raises(IMAPError):
            await IMAPProtocol(client).examine("Nope")

    @pytest.mark.asyncio
    async def test_stalled_command_times_out(self):
        async def never_answers(*args, **kwargs):
            await asyncio.sleep(10)

        client = MagicMock()
        client.examine = never_answers

        with pytest.raises(NetworkTimeoutError):
            await IMAPProtocol(client, timeout=0.01).examine("INBOX")

    @pytest.mark.asyncio
    async def test_fetch_messages_uses_peek(self):
        raw = MessageTestHelper.build_raw()
        client = mock_client(
            fetch=response(lines=[b"1 FETCH (FLAGS () BODY[] {%d}" % len(raw), bytearray(raw), b")"])
        )

        messages = await IMAPProtocol(client).fetch_messages(1, 1)

        assert messages[0].raw == raw
        client.fetch.assert_awaited_once_with("1:1", "(FLAGS INTERNALDATE BODY.PEEK[])")

    @pytest.mark.asyncio
    async def test_fetch_empty_range(self):
        client = mock_client()

        assert await IMAPProtocol(client).fetch_messages(1, 0) == []

    @pytest.mark.asyncio
    async def test_search_header(self):
        client = mock_client(search=response(lines=[b"4 9", b"SEARCH completed."]))

        found = await IMAPProtocol(client).search_header("Message-ID", "<a@b>")

        assert found == [4, 9]
        client.search.assert_awaited_once_with("HEADER", "Message-ID", '"<a@b>"', charset=None)

    @pytest.mark.asyncio
    async def test_unseen_count(self):
        client = mock_client(status=response(lines=[b"INBOX (UNSEEN 7)", b"STATUS completed."]))

        assert await IMAPProtocol(client).unseen_count("INBOX") == 7

    @pytest.mark.asyncio
    async def test_close_folder_swallows_errors(self):
        client = mock_client(examine=response(lines=[b"1 EXISTS"]))
        client.close = AsyncMock(side_effect=ConnectionResetError())
        protocol = IMAPProtocol(client)
        await protocol.examine("INBOX")

        await protocol.close_folder()

        client.close.assert_awaited_once()


class TestIMAPConnection:
    """Tests for session setup"""

    def _patched_client(self, login_result="OK"):
        client = MagicMock()
        client.wait_hello_from_server = AsyncMock()
        client.login = AsyncMock(return_value=response(login_result))
        client.logout = AsyncMock(return_value=response())
        return client

    @pytest.mark.asyncio
    async def test_connect_success(self):
        account = MessageTestHelper.create_account()
        client = self._patched_client()

        with patch("mailmirror.core.email.imap.connection.aioimaplib.IMAP4_SSL", return_value=client):
            async with IMAPConnection(account) as protocol:
                assert isinstance(protocol, IMAPProtocol)

        client.login.assert_awaited_once_with("test@example.com", "testpass")
        client.logout.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rejected_login_raises_authentication_failure(self):
        account = MessageTestHelper.create_account()
        client = self._patched_client(login_result="NO")

        with patch("mailmirror.core.email.imap.connection.aioimaplib.IMAP4_SSL", return_value=client):
            with pytest.raises(AuthenticationFailure):
                await IMAPConnection(account).connect()

    @pytest.mark.asyncio
    async def test_unreachable_server_raises_connection_error(self):
        account = MessageTestHelper.create_account()
        client = self._patched_client()
        client.wait_hello_from_server = AsyncMock(side_effect=ConnectionRefusedError())

        with patch("mailmirror.core.email.imap.connection.aioimaplib.IMAP4_SSL", return_value=client):
            with pytest.raises(ServerConnectionError):
                await IMAPConnection(account).connect()

    @pytest.mark.asyncio
    async def test_plain_connection_without_auth(self):
        account = MessageTestHelper.create_account(use_ssl=False, use_auth=False)
        client = self._patched_client()

        with patch("mailmirror.core.email.imap.connection.aioimaplib.IMAP4", return_value=client):
            await IMAPConnection(account).connect()

        client.login.assert_not_awaited()
