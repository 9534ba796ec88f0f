"""Persistent settings, stored as one JSON document validated by pydantic.

Usage:
    >>> manager = ConfigManager()
    >>> manager.config.features.check_interval_minutes
    5
    >>> manager.set_config("features.check_interval_minutes", 10)

Passwords are never written here; see ``mailmirror.security.credentials``.
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import InvalidConfigError, MissingConfigError, StorageError
from .logging import get_logger, log_call
from .paths import CONFIG_PATH, MIRROR_DIR

logger = get_logger(__name__)


class _Section(BaseModel):
    model_config = ConfigDict(validate_assignment=True)


class AccountConfig(_Section):
    """One mail account. ``username`` defaults to the email address."""

    email: str
    display_name: str = ""
    imap_server: str = ""
    imap_port: int = 993
    username: str = ""
    use_ssl: bool = True
    use_auth: bool = True
    default_account: bool = False


class FeaturesConfig(_Section):
    auto_check: bool = True
    check_interval_minutes: int = 5
    fetch_limit: int = 50
    notifications: bool = True
    highlight_ttl_seconds: int = 300  # 0 keeps highlights until cleared


class NetworkConfig(_Section):
    timeout: float = 10.0  # seconds, per IMAP round trip


class RateLimitConfig(_Section):
    max_attempts: int = 3
    base_delay: int = 5  # seconds
    max_delay: int = 300  # seconds
    cleanup_interval_minutes: int = 10


class StorageConfig(_Section):
    mirror_path: str = str(MIRROR_DIR)


class LoggingConfig(_Section):
    log_level: str = "INFO"


class AppConfig(_Section):
    version: str = "0.1.0"
    accounts: list[AccountConfig] = Field(default_factory=list)
    features: FeaturesConfig = Field(default_factory=FeaturesConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class ConfigManager:
    """Loads, updates and saves ``AppConfig``.

    A missing file is created with defaults. An unreadable or invalid file
    raises ``InvalidConfigError`` rather than being silently replaced.
    """

    def __init__(self, config_path: Optional[Path] = None):
        self.path = Path(config_path) if config_path else CONFIG_PATH
        self.config = self._load()
        logger.info(f"Configuration loaded from {self.path}")

    def _load(self) -> AppConfig:
        if not self.path.exists():
            logger.info("No config file found, writing defaults")
            config = AppConfig()
            self._write(config)
            return config

        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Failed to read configuration file: {self.path}") from e

        try:
            return AppConfig.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.error(f"Rejected config file {self.path}: {e}")
            raise InvalidConfigError(
                f"Configuration file is invalid: {self.path}",
                details={"errors": e.error_count()},
            ) from e

    def _write(self, config: AppConfig) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(config.model_dump_json(indent=2), encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Failed to write configuration file: {e}") from e

    def save(self) -> None:
        self._write(self.config)

    ## Accounts

    def get_account(self, email: str) -> AccountConfig:
        """Account configured for ``email`` (case-insensitive).

        Raises:
            MissingConfigError: If there is none
        """
        for account in self.config.accounts:
            if account.email.lower() == email.lower():
                return account
        raise MissingConfigError(f"No account configured for {email}")

    def default_account(self) -> Optional[AccountConfig]:
        accounts = self.config.accounts
        if not accounts:
            return None
        return next((a for a in accounts if a.default_account), accounts[0])

    @log_call
    def add_account(self, account: AccountConfig, persist: bool = True) -> None:
        """Add ``account``, replacing any account with the same email."""

        others = [a for a in self.config.accounts if a.email.lower() != account.email.lower()]
        self.config.accounts = others + [account]
        if persist:
            self.save()
        logger.info("Account saved", extra={"account": account.email})

    ## Settings

    def _resolve(self, key_path: str) -> Tuple[BaseModel, str]:
        *parents, leaf = key_path.split(".")
        section: Any = self.config
        for key in parents:
            section = getattr(section, key, None)
            if not isinstance(section, BaseModel):
                raise MissingConfigError(f"Configuration path '{key_path}' is invalid: '{key}' not found")
        if leaf not in type(section).model_fields:
            raise MissingConfigError(f"Configuration key '{leaf}' does not exist in path '{key_path}'")
        return section, leaf

    @log_call
    def set_config(self, key_path: str, value: Any, persist: bool = True) -> None:
        """Set one value by dotted path, e.g. ``features.fetch_limit``.

        Raises:
            MissingConfigError: If the path does not name a setting
            InvalidConfigError: If ``value`` has the wrong type
        """
        section, leaf = self._resolve(key_path)
        try:
            setattr(section, leaf, value)
        except PydanticValidationError as e:
            raise InvalidConfigError(f"Invalid value for '{key_path}': {value!r}") from e

        if persist:
            self.save()
        logger.info(f"Config key '{key_path}' updated")

    @log_call
    def reset_to_defaults(self) -> None:
        """Restore default settings; configured accounts are kept."""

        logger.warning("Resetting configuration to default values")
        self.config = AppConfig(accounts=self.config.accounts)
        self.save()

    @log_call
    def backup_config(self) -> Path:
        """Write a timestamped copy of the current settings next to the config file."""

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        backup_path = self.path.with_name(f"config_backup_{timestamp}.json")
        try:
            backup_path.write_text(self.config.model_dump_json(indent=2), encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Failed to write backup file: {e}") from e

        logger.info(f"Configuration backup created at {backup_path}")
        return backup_path
