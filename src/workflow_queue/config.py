"""Configuration for the workflow queue.

Usage:
    from workflow_queue.config import Config

    # Access config values
    database_url = Config.database_url()
    lock_key = Config.lock_key()
"""

import os

from .errors import ConfigurationError


class Config:
    """Centralized configuration for the workflow queue.

    Values are loaded from environment variables with sensible defaults.
    Settings that a pipeline step may override per invocation are exposed as
    static methods so they are read at call time rather than at import.

    Example:
        from workflow_queue.config import Config

        print(Config.database_url())
        print(Config.LOG_LEVEL)
    """

    # ========================================================================
    # Helper methods (static)
    # ========================================================================

    @staticmethod
    def _get_value(key: str, default: str) -> str:
        """Get configuration value from environment with optional default."""
        return os.getenv(key, default)

    @staticmethod
    def _get_int(key: str, default: int) -> int:
        """Get integer configuration value."""
        raw = os.getenv(key, str(default))
        try:
            return int(raw)
        except ValueError as exc:
            raise ConfigurationError(f"{key} must be an integer: {raw!r}") from exc

    @staticmethod
    def _get_bool(key: str, default: bool = False) -> bool:
        """Get boolean configuration value."""
        return os.getenv(key, str(default)).lower() in ("true", "1", "yes")

    # ========================================================================
    # Queue Configuration
    # ========================================================================

    @staticmethod
    def lock_key() -> str:
        """Partition key shared by runs that must serialize; empty disables the queue."""
        return Config._get_value("WORKFLOW_LOCK_KEY", "")

    @staticmethod
    def database_url() -> str:
        """Store shared by every run of the pipeline; empty means unconfigured."""
        return Config._get_value("WORKFLOW_DATABASE_URL", "")

    @staticmethod
    def workspace_dir() -> str:
        return Config._get_value("WORKFLOW_WORKSPACE_DIR", "/tmp/workspace")

    # ========================================================================
    # Admission Defaults
    # ========================================================================

    @staticmethod
    def wait_for() -> int:
        """Minutes to wait for the lock before giving up."""
        return Config._get_int("WORKFLOW_WAIT_FOR", 240)

    @staticmethod
    def poll_interval() -> int:
        return Config._get_int("WORKFLOW_POLL_INTERVAL", 10)

    @staticmethod
    def ttl() -> str:
        return Config._get_value("WORKFLOW_TTL", "7 days")

    @staticmethod
    def check_previous_commit() -> bool:
        return Config._get_bool("WORKFLOW_CHECK_PREVIOUS_COMMIT", False)

    @staticmethod
    def cancel_grace_period() -> int:
        """Seconds to wait for the platform to terminate a cancelled run."""
        return Config._get_int("WORKFLOW_CANCEL_GRACE_PERIOD", 60)

    # ========================================================================
    # Platform Configuration
    # ========================================================================

    @staticmethod
    def circle_api_url() -> str:
        return Config._get_value("CIRCLE_API_URL", "https://circleci.com/api/v1.1")

    @staticmethod
    def circle_api_token() -> str:
        return Config._get_value("CIRCLE_API_USER_TOKEN", "")

    @staticmethod
    def github_api_url() -> str:
        return Config._get_value("GITHUB_API_URL", "https://api.github.com")

    @staticmethod
    def github_credentials() -> tuple[str, str] | None:
        username = Config._get_value("GITHUB_USERNAME", "")
        password = Config._get_value("GITHUB_PASSWORD", "")
        if not username or not password:
            return None
        return username, password

    # ========================================================================
    # Logging
    # ========================================================================

    LOG_LEVEL: str = _get_value("LOG_LEVEL", "INFO")
