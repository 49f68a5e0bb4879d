"""
Configuration management for the Plate Cost engine.

This module handles:
- Database URL configuration
- Environment-specific configuration (production, development, test)
- Data directory location
"""

import logging
import os
from pathlib import Path
from typing import Optional

from .constants import (
    APP_NAME,
    APP_VERSION,
    DATABASE_FILENAME,
    DATABASE_VERSION,
)

logger = logging.getLogger(__name__)

ENV_VAR_ENVIRONMENT = "PLATECOST_ENV"
ENV_VAR_DATABASE_URL = "PLATECOST_DATABASE_URL"
ENV_VAR_DATA_DIR = "PLATECOST_DATA_DIR"
ENV_VAR_SQL_ECHO = "PLATECOST_SQL_ECHO"

ENVIRONMENTS = ("production", "development", "test")


class Config:
    """
    Engine configuration manager.

    Resolves the database location for the current environment. An explicit
    ``PLATECOST_DATABASE_URL`` always wins; otherwise a SQLite file inside
    the data directory is used, except in the ``test`` environment which
    defaults to an in-memory database.
    """

    def __init__(self, environment: str = "production"):
        """
        Initialize configuration.

        Args:
            environment: 'production', 'development' or 'test'

        Raises:
            ValueError: If environment is not recognised
        """
        if environment not in ENVIRONMENTS:
            raise ValueError(
                f"Unknown environment '{environment}'. Expected one of {', '.join(ENVIRONMENTS)}"
            )
        self.environment = environment
        self._app_name = APP_NAME
        self._app_version = APP_VERSION
        self._database_version = DATABASE_VERSION

        data_dir = os.environ.get(ENV_VAR_DATA_DIR)
        if data_dir:
            self._base_dir = Path(data_dir)
        elif environment == "development":
            self._base_dir = self._get_project_data_dir()
        else:
            self._base_dir = Path.home() / ".platecost"

        self._database_path = self._base_dir / DATABASE_FILENAME
        self._database_url_override = os.environ.get(ENV_VAR_DATABASE_URL)
        self._sql_echo = os.environ.get(ENV_VAR_SQL_ECHO, "").lower() in ("1", "true", "yes")

    def _get_project_data_dir(self) -> Path:
        """
        Get the project's data directory for development.

        Returns:
            Path to project data/ directory
        """
        project_root = Path(__file__).parent.parent.parent.parent
        return project_root / "data"

    def ensure_directories(self) -> None:
        """Create the data directory if a file database is in use."""
        if self.uses_file_database:
            self._base_dir.mkdir(parents=True, exist_ok=True)

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
    def database_path(self) -> Path:
        """Full path to the SQLite database file."""
        return self._database_path

    @property
    def database_url(self) -> str:
        """
        SQLAlchemy database URL.

        Returns:
            Database URL string for SQLAlchemy
        """
        if self._database_url_override:
            return self._database_url_override
        if self.environment == "test":
            return "sqlite:///:memory:"
        return self._file_database_url

    @property
    def _file_database_url(self) -> str:
        # Use forward slashes for SQLite URL
        db_path_str = str(self._database_path).replace("\\", "/")
        return f"sqlite:///{db_path_str}"

    @property
    def uses_file_database(self) -> bool:
        """True when the resolved URL points at the default SQLite file."""
        return self.database_url == self._file_database_url

    @property
    def sql_echo(self) -> bool:
        """Whether SQLAlchemy should log every statement."""
        return self._sql_echo

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    def database_exists(self) -> bool:
        """
        Check if the database file exists.

        Returns:
            True if the SQLite file exists (always False for non-file URLs)
        """
        return self.uses_file_database and self._database_path.exists()

    def __repr__(self) -> str:
        """String representation of config."""
        return f"Config(environment='{self.environment}', database_url='{self.database_url}')"


# Global configuration instance
_config_instance: Optional[Config] = None


def get_config(environment: Optional[str] = None) -> Config:
    """
    Get the global configuration instance.

    Once created, the singleton's environment cannot be changed by passing
    a different environment argument; this prevents switching databases
    mid-session.

    Args:
        environment: Optional environment for initial creation. If None, uses
                    PLATECOST_ENV or defaults to production. Ignored if the
                    singleton already exists.

    Returns:
        Config instance
    """
    global _config_instance

    if _config_instance is None:
        if environment is None:
            environment = os.environ.get(ENV_VAR_ENVIRONMENT, "production")
        _config_instance = Config(environment)
    elif environment is not None and environment != _config_instance.environment:
        logger.warning(
            f"get_config() called with environment='{environment}' but singleton "
            f"already exists with environment='{_config_instance.environment}'. "
            f"Returning existing singleton to prevent database switching."
        )

    return _config_instance


def reset_config() -> None:
    """
    Reset the global configuration instance.

    Useful for testing.
    """
    global _config_instance
    _config_instance = None


def get_database_url() -> str:
    """
    Get the database URL.

    Returns:
        SQLAlchemy database URL string
    """
    return get_config().database_url
