"""
Tests for application wiring and the command line

Tests cover:
- Service graph construction from config
- Start/stop lifecycle and interval changes
- CLI dispatch and error exit codes
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mailmirror.app import MailMirrorApp
from mailmirror.cli import main
from mailmirror.core.models import FolderName
from mailmirror.security.credentials import StaticCredentialProvider
from mailmirror.utils.config import ConfigManager
from mailmirror.utils.errors import MissingConfigError

from .helpers import MessageTestHelper, RecordingNotifier, session_factory


@pytest.fixture
def config_manager(tmp_path):
    manager = ConfigManager(tmp_path / "config.json")
    manager.set_config("storage.mirror_path", str(tmp_path / "mirror"))
    manager.set_config("features.check_interval_minutes", 60)
    return manager


@pytest.fixture
def app(config_manager, server, account):
    return MailMirrorApp(
        config_manager=config_manager,
        credentials=StaticCredentialProvider([account]),
        notifier=RecordingNotifier(),
        session_factory=session_factory(server),
    )


class TestMailMirrorApp:
    """Tests for the application service graph"""

    def test_services_follow_config(self, app, config_manager, tmp_path):
        assert app.store.root == tmp_path / "mirror"
        assert app.poller.interval_minutes == 60
        assert app.rate_limiter.max_attempts == config_manager.config.rate_limit.max_attempts
        assert app.tracker.ttl_seconds == config_manager.config.features.highlight_ttl_seconds

    @pytest.mark.asyncio
    async def test_start_and_stop(self, app):
        await app.start()

        assert app.poller.running
        assert app.housekeeping.running

        await app.stop()
        await asyncio.sleep(0)

        assert not app.poller.running
        assert not app.housekeeping.running

    @pytest.mark.asyncio
    async def test_single_check_when_auto_check_disabled(self, app, config_manager, server, account):
        config_manager.set_config("features.auto_check", False)
        server.deliver("INBOX", index=0)

        async with app:
            assert not app.poller.running
            assert app.tracker.badge(account.email) == 1
            assert app.store.count(account.email, FolderName.INBOX) == 1

    @pytest.mark.asyncio
    async def test_set_check_interval_persists(self, app, config_manager):
        await app.set_check_interval(10)

        assert app.poller.interval_minutes == 10
        assert config_manager.config.features.check_interval_minutes == 10

    @pytest.mark.asyncio
    async def test_set_check_interval_restarts_running_poller(self, app):
        await app.start()

        await app.set_check_interval(20)

        assert app.poller.running
        assert app.poller.interval_minutes == 20
        await app.stop()

    def test_set_notifications(self, app, config_manager):
        app.set_notifications(False)

        assert app.poller.notifications_enabled is False
        assert config_manager.config.features.notifications is False


@pytest.fixture
def cli_app():
    with patch("mailmirror.cli.MailMirrorApp") as app_class:
        app = app_class.return_value
        app.poller.check_now = AsyncMock(return_value={"test@example.com": 2})
        yield app


class TestCli:
    """Tests for command dispatch"""

    def test_check(self, cli_app):
        assert main(["check"]) == 0
        cli_app.poller.check_now.assert_awaited_once()

    def test_list_reads_local_mirror(self, cli_app):
        cli_app.store.load.return_value = MessageTestHelper.create_messages(3)

        assert main(["list", "test@example.com", "--folder", "trash", "--limit", "2"]) == 0
        cli_app.store.load.assert_called_once_with("test@example.com", FolderName.TRASH)

    def test_list_unknown_folder_fails(self, cli_app):
        assert main(["list", "test@example.com", "--folder", "Archive"]) == 1

    def test_empty_trash(self, cli_app):
        cli_app.store.empty_trash.return_value = 4

        assert main(["empty-trash", "test@example.com"]) == 0
        cli_app.store.empty_trash.assert_called_once_with("test@example.com")

    def test_folders(self, cli_app, account):
        cli_app.credentials.account = AsyncMock(return_value=account)
        cli_app.connector.list_folders = AsyncMock(return_value=["INBOX", "Sent"])

        assert main(["folders", "test@example.com"]) == 0
        cli_app.connector.list_folders.assert_awaited_once_with(account)

    def test_application_error_exit_code(self, cli_app):
        cli_app.store.empty_trash.side_effect = MissingConfigError("No account configured")

        assert main(["empty-trash", "test@example.com"]) == 1

    def test_command_required(self):
        with pytest.raises(SystemExit):
            main([])
