"""Scheduler for housekeeping jobs (rate limiter cleanup, highlight expiry)."""

from typing import Callable, Dict, List, Optional, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .config import ConfigManager
from .errors import ConfigurationError, MailMirrorError, ValidationError
from .logging import get_logger, log_call

# Constants
VALID_INTERVAL_UNITS = ["seconds", "minutes", "hours", "days", "weeks"]
HIGHLIGHT_EXPIRY_CHECK_SECONDS = 30

logger = get_logger(__name__)


def _validate_interval(job_name: str, interval_tuple: tuple) -> bool:
    """Validate interval tuple format (value, unit)."""

    if not isinstance(interval_tuple, tuple) or len(interval_tuple) != 2:
        raise ValidationError(
            f"Invalid interval format for {job_name}: {interval_tuple} (must be tuple of (value, unit))"
        )

    value, unit = interval_tuple

    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValidationError(
            f"Invalid interval value for {job_name}: {value} (must be positive integer)"
        )

    if unit not in VALID_INTERVAL_UNITS:
        raise ValidationError(
            f"Invalid interval unit for {job_name}: {unit} (must be one of {VALID_INTERVAL_UNITS})"
        )

    return True


class HousekeepingScheduler:
    """Periodic maintenance jobs on an APScheduler ``AsyncIOScheduler``.

    The mail poll itself does not run here; it has its own ticker so it
    can be stopped and awaited.
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        rate_limiter,
        tracker,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.config_manager = config_manager
        self.rate_limiter = rate_limiter
        self.tracker = tracker
        self.scheduler = scheduler or AsyncIOScheduler()

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def _build_jobs_registry(self) -> Dict[str, dict]:
        """Build registry of scheduled jobs from config."""

        config = self.config_manager.config

        return {
            "rate_limit_cleanup": {
                "enabled": True,
                "interval": (config.rate_limit.cleanup_interval_minutes, "minutes"),
                "func": self.rate_limiter.cleanup,
                "id": "rate_limit_cleanup",
            },
            "highlight_expiry": {
                "enabled": self.tracker.ttl_seconds is not None,
                "interval": (HIGHLIGHT_EXPIRY_CHECK_SECONDS, "seconds"),
                "func": self.tracker.expire,
                "id": "highlight_expiry",
            },
        }

    def _add_job_if_enabled(
        self, job_func: Callable, job_name: str, job_id: str, enabled: bool, interval: tuple
    ) -> bool:
        """Add job to scheduler if enabled and validated."""

        if not enabled:
            return False

        _validate_interval(job_name, interval)

        try:
            value, unit = interval
            self.scheduler.add_job(
                job_func,
                "interval",
                **{unit: value},
                id=job_id,
                replace_existing=True,
            )
            logger.info(f"Added job: {job_name} (interval: {value} {unit})")
            return True
        except Exception as e:
            raise ConfigurationError(f"Failed to add job {job_name}: {e}") from e

    @log_call
    def start(self) -> List[Tuple[str, tuple]]:
        """Start scheduler with all configured jobs; return the enabled ones.

        Must be called from a running event loop.
        """
        logger.info("Initialising scheduler with configured jobs...")

        enabled_jobs = []
        for job_name, job in self._build_jobs_registry().items():
            try:
                if self._add_job_if_enabled(
                    job["func"], job_name, job["id"], job["enabled"], job["interval"]
                ):
                    enabled_jobs.append((job_name, job["interval"]))
            except ValidationError as e:
                logger.warning(f"Skipping job {job_name}: {e.message}")

        try:
            if not self.scheduler.running:
                self.scheduler.start()
                logger.info(f"Scheduler started with {len(enabled_jobs)} job(s)")
            else:
                logger.info("Scheduler is already running")
        except MailMirrorError:
            raise
        except Exception as e:
            logger.exception(f"Error starting scheduler: {e}")
            raise ConfigurationError(f"Failed to start scheduler: {e}") from e

        return enabled_jobs

    @log_call
    def stop(self) -> None:
        """Stop scheduler without waiting for running jobs.

        Under asyncio the shutdown completes on the next loop iteration.
        """
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
        else:
            logger.info("Scheduler is not running")
