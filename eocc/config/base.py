"""
Base configuration for eocc-monitor.

Shared settings and helper functions for the monitor and its command line.
"""

from __future__ import annotations

import os
import pathlib
from typing import TypeVar

import lazy_object_proxy
import pydantic
import pydantic_settings

T = TypeVar('T', bound='BaseMonitorSettings')


class BaseMonitorSettings(pydantic_settings.BaseSettings):
    """Shared configuration, read from EOCC_* environment variables."""

    model_config = pydantic_settings.SettingsConfigDict(
        env_prefix='EOCC_',
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=True,  # Fail fast on misconfiguration
        extra='forbid',  # Reject unknown settings in the .env file
    )

    # Application metadata
    APP_NAME: str = 'eocc-monitor'
    VERSION: str = '0.1.0'

    # Root of everything the monitor and hook script share (~/.eocc)
    HOME_DIR: pathlib.Path = pathlib.Path.home() / '.eocc'

    # Queue polling
    POLL_INTERVAL: float = 0.5  # Seconds between drain cycles

    # Event history
    HISTORY_LIMIT: int = 50  # Events retained in history and runtime_state.json
    RECENT_EVENTS_LIMIT: int = 10  # Events shown by default

    @pydantic.field_validator('POLL_INTERVAL')
    @classmethod
    def validate_poll_interval(cls, v: float) -> float:
        """Polling is meant to feel live: require a sub-second interval."""
        if not 0 < v < 1:
            raise ValueError('POLL_INTERVAL must be between 0 and 1 second (exclusive)')
        return v

    @pydantic.field_validator('HISTORY_LIMIT', 'RECENT_EVENTS_LIMIT')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError('must be at least 1')
        return v

    @property
    def log_dir(self) -> pathlib.Path:
        return self.HOME_DIR.expanduser() / 'logs'

    @property
    def events_file(self) -> pathlib.Path:
        """Queue file the hook script appends to."""
        return self.log_dir / 'events.jsonl'

    @property
    def runtime_state_file(self) -> pathlib.Path:
        return self.HOME_DIR.expanduser() / 'runtime_state.json'

    @property
    def lock_file(self) -> pathlib.Path:
        """Held by the one process allowed to drain the queue."""
        return self.HOME_DIR.expanduser() / 'monitor.lock'


def get_settings(settings_class: type[T], env_file: str | None = None) -> T:
    """
    Factory for creating settings with dynamic .env file loading.

    LOAD_ENV_FILE environment variable specifies custom .env file path.
    When unset, loads from environment variables (and ./.env if present).

    Args:
        settings_class: Settings class to instantiate
        env_file: Optional path to .env file (overrides LOAD_ENV_FILE)

    Returns:
        Settings instance

    Raises:
        FileNotFoundError: If specified .env file doesn't exist
    """
    env_file_path = env_file or os.getenv('LOAD_ENV_FILE')

    if not env_file_path:
        return settings_class()

    resolved_path = pathlib.Path(env_file_path).resolve()
    if not resolved_path.exists():
        raise FileNotFoundError(f'Environment file not found: {resolved_path}')

    return settings_class(_env_file=resolved_path)


def lazy_settings(settings_class: type[T]) -> T:
    """
    Lazy settings - defers instantiation until first access.

    Args:
        settings_class: Settings class to instantiate

    Returns:
        Proxy that instantiates settings on first access
    """
    return lazy_object_proxy.Proxy(lambda: get_settings(settings_class))
