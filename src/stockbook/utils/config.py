"""
Configuration management for the Stockbook application.

This module handles:
- Database path configuration
- Environment-specific configuration (development vs. production)
- Ledger defaults (payment method, low stock threshold)
"""

import logging
import os
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

from .constants import (
    APP_NAME,
    APP_VERSION,
    DATABASE_FILENAME,
    DATABASE_VERSION,
    DEFAULT_LOW_STOCK_THRESHOLD,
    DEFAULT_PAYMENT_METHOD,
    PAYMENT_METHODS,
)

logger = logging.getLogger(__name__)

ENV_ENVIRONMENT = "STOCKBOOK_ENV"
ENV_DATA_DIR = "STOCKBOOK_DATA_DIR"
ENV_PAYMENT_METHOD = "STOCKBOOK_PAYMENT_METHOD"
ENV_LOW_STOCK_THRESHOLD = "STOCKBOOK_LOW_STOCK_THRESHOLD"


class Config:
    """
    Application configuration manager.

    Handles all configuration settings including database paths,
    environment settings, and ledger defaults.
    """

    def __init__(self, environment: str = "production"):
        """
        Initialize configuration.

        Args:
            environment: Environment mode - 'production' or 'development'
        """
        self.environment = environment
        self._app_name = APP_NAME
        self._app_version = APP_VERSION
        self._database_version = DATABASE_VERSION

        override = os.environ.get(ENV_DATA_DIR)
        if override:
            self._base_dir = Path(override).expanduser().resolve()
        elif environment == "development":
            # Use project data/ directory for development
            self._base_dir = self._get_project_data_dir()
        else:
            self._base_dir = self._get_user_data_dir()

        self._database_dir = self._base_dir
        self._database_path = self._database_dir / DATABASE_FILENAME

    def _get_project_data_dir(self) -> Path:
        """
        Get the project's data directory for development.

        Returns:
            Path to project data/ directory
        """
        project_root = Path(__file__).parent.parent.parent.parent
        return project_root / "data"

    def _get_user_data_dir(self) -> Path:
        """
        Get the per-user data directory for production.

        Returns:
            Path to ~/.stockbook
        """
        return Path.home() / ".stockbook"

    def ensure_directories(self):
        """Create necessary directories if they don't exist."""
        self._database_dir.mkdir(parents=True, exist_ok=True)

    @property
    def app_name(self) -> str:
        """Application name."""
        return self._app_name

    @property
    def app_version(self) -> str:
        """Application version."""
        return self._app_version

    @property
    def database_version(self) -> str:
        """Database schema version."""
        return self._database_version

    @property
    def data_dir(self) -> Path:
        """Directory holding the database and snapshots."""
        return self._base_dir

    @property
    def database_path(self) -> Path:
        """Full path to the database file."""
        return self._database_path

    @property
    def database_url(self) -> str:
        """
        SQLAlchemy database URL.

        Returns:
            Database URL string for SQLAlchemy
        """
        # Use forward slashes for SQLite URL
        db_path_str = str(self._database_path).replace("\\", "/")
        return f"sqlite:///{db_path_str}"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    @property
    def default_payment_method(self) -> str:
        """Payment method used when an operation does not name one."""
        value = os.environ.get(ENV_PAYMENT_METHOD)
        if value is None:
            return DEFAULT_PAYMENT_METHOD
        value = value.strip().upper()
        if value not in PAYMENT_METHODS:
            logger.warning(
                f"Invalid {ENV_PAYMENT_METHOD}={value!r}, using {DEFAULT_PAYMENT_METHOD}"
            )
            return DEFAULT_PAYMENT_METHOD
        return value

    @property
    def low_stock_threshold(self) -> Decimal:
        """Remaining quantity below which a batch counts as low stock."""
        value = os.environ.get(ENV_LOW_STOCK_THRESHOLD)
        if value is None:
            return DEFAULT_LOW_STOCK_THRESHOLD
        try:
            threshold = Decimal(value)
        except InvalidOperation:
            threshold = None
        if threshold is None or threshold < 0:
            logger.warning(
                f"Invalid {ENV_LOW_STOCK_THRESHOLD}={value!r}, "
                f"using {DEFAULT_LOW_STOCK_THRESHOLD}"
            )
            return DEFAULT_LOW_STOCK_THRESHOLD
        return threshold

    def database_exists(self) -> bool:
        """
        Check if database file exists.

        Returns:
            True if database file exists, False otherwise
        """
        return self._database_path.exists()

    def __repr__(self) -> str:
        """String representation of config."""
        return f"Config(environment='{self.environment}', database_path='{self._database_path}')"


# Global configuration instance
_config_instance: Optional[Config] = None


def get_config(environment: Optional[str] = None) -> Config:
    """
    Get the global configuration instance.

    Once created, the singleton's environment cannot be changed by passing
    a different environment argument.

    Args:
        environment: Optional environment for initial creation. If None, uses
                    STOCKBOOK_ENV or defaults to production. Ignored if
                    singleton already exists.

    Returns:
        Config instance
    """
    global _config_instance

    if _config_instance is None:
        if environment is None:
            environment = os.environ.get(ENV_ENVIRONMENT, "production")
        _config_instance = Config(environment)
    elif environment is not None and environment != _config_instance.environment:
        logger.warning(
            f"get_config() called with environment='{environment}' but singleton "
            f"already exists with environment='{_config_instance.environment}'. "
            f"Returning existing singleton to prevent database switching."
        )

    return _config_instance


def reset_config():
    """
    Reset the global configuration instance.

    Useful for testing.
    """
    global _config_instance
    _config_instance = None
