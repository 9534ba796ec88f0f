"""
Tests for the housekeeping scheduler
"""
import asyncio

import pytest

from mailmirror.core.highlight import HighlightTracker
from mailmirror.utils.config import ConfigManager
from mailmirror.utils.errors import ValidationError
from mailmirror.utils.scheduler import HousekeepingScheduler, _validate_interval


@pytest.fixture
def config_manager(tmp_path):
    return ConfigManager(tmp_path / "config.json")


class TestValidateInterval:
    """Tests for interval validation"""

    def test_valid_interval(self):
        assert _validate_interval("job", (10, "minutes")) is True

    @pytest.mark.parametrize(
        "interval",
        [(0, "minutes"), (-1, "seconds"), (True, "minutes"), (1.5, "hours"), (5, "fortnights"), 5, (5,)],
    )
    def test_invalid_interval(self, interval):
        with pytest.raises(ValidationError):
            _validate_interval("job", interval)


class TestHousekeepingScheduler:
    """Tests for job registration and lifecycle"""

    def test_registry_uses_config(self, config_manager, rate_limiter, tracker):
        config_manager.set_config("rate_limit.cleanup_interval_minutes", 7, persist=False)
        scheduler = HousekeepingScheduler(config_manager, rate_limiter, tracker)

        registry = scheduler._build_jobs_registry()

        assert registry["rate_limit_cleanup"]["interval"] == (7, "minutes")
        assert registry["highlight_expiry"]["enabled"] is False

    def test_highlight_expiry_enabled_with_ttl(self, config_manager, rate_limiter):
        scheduler = HousekeepingScheduler(
            config_manager, rate_limiter, HighlightTracker(ttl_seconds=60)
        )

        assert scheduler._build_jobs_registry()["highlight_expiry"]["enabled"] is True

    @pytest.mark.asyncio
    async def test_start_and_stop(self, config_manager, rate_limiter):
        scheduler = HousekeepingScheduler(
            config_manager, rate_limiter, HighlightTracker(ttl_seconds=60)
        )

        enabled = scheduler.start()

        assert scheduler.running
        assert [name for name, _ in enabled] == ["rate_limit_cleanup", "highlight_expiry"]
        assert {job.id for job in scheduler.scheduler.get_jobs()} == {
            "rate_limit_cleanup",
            "highlight_expiry",
        }

        scheduler.stop()
        await asyncio.sleep(0)

        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_invalid_job_is_skipped(self, config_manager, rate_limiter, tracker):
        config_manager.set_config("rate_limit.cleanup_interval_minutes", 0, persist=False)
        scheduler = HousekeepingScheduler(config_manager, rate_limiter, tracker)

        enabled = scheduler.start()

        assert enabled == []
        scheduler.stop()

    def test_stop_when_not_running(self, config_manager, rate_limiter, tracker):
        scheduler = HousekeepingScheduler(config_manager, rate_limiter, tracker)

        scheduler.stop()

        assert not scheduler.running
