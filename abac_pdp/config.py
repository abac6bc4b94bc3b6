# -*- coding: utf-8 -*-
"""Location: ./abac_pdp/config.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Policy decision point configuration.
This module defines configuration settings for the PDP using Pydantic.
It loads configuration from environment variables (prefix ``PDP_``) or a
``.env`` file with sensible defaults.

Environment variables:
- PDP_LOG_LEVEL: Logging level (default: "INFO")
- PDP_DEFAULT_PRIORITY: Priority for policy records without one (default: 100)
- PDP_CASCADE_TO_DESCENDANTS: Organization policies apply to descendant orgs unless the policy says otherwise (default: True)
- PDP_PRENARROW_CANDIDATES: Drop inactive / out-of-scope policies before evaluation (default: False)
- PDP_CACHE_ENABLED: Cache decisions per policy snapshot (default: False)
- PDP_CACHE_TTL_SECONDS: Decision cache TTL (default: 300)
- PDP_CACHE_MAX_ENTRIES: Decision cache capacity (default: 10000)
- PDP_POLICIES_FILE: JSON/YAML policy file used by the CLI (default: None)
- PDP_HIERARCHY_FILE: JSON/YAML organization hierarchy file used by the CLI (default: None)

Examples:
    >>> from abac_pdp.config import Settings
    >>> s = Settings()
    >>> s.default_priority
    100
    >>> s.cascade_to_descendants
    True
    >>> Settings(log_level="debug").log_level
    'DEBUG'
    >>> try:
    ...     Settings(log_level="chatty")
    ... except ValueError:
    ...     print('error')
    error
"""

# Standard
from functools import lru_cache
import logging
from pathlib import Path
from typing import Any, Optional

# Third-Party
from pydantic import Field, field_validator, PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict

# Only configure basic logging if no handlers exist yet
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

logger = logging.getLogger(__name__)

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class Settings(BaseSettings):
    """PDP configuration settings."""

    log_level: str = Field(default="INFO", description="Logging level for the abac_pdp loggers")

    default_priority: int = Field(default=100, ge=0, description="Priority given to policy records that do not declare one")
    cascade_to_descendants: bool = Field(
        default=True,
        description="Organization-scoped policies apply to descendant organizations when the policy leaves appliesToDescendants unset",
    )
    prenarrow_candidates: bool = Field(
        default=False,
        description="Drop inactive and out-of-scope policies before evaluation (they then do not appear on the evaluation path)",
    )

    cache_enabled: bool = Field(default=False, description="Cache decisions keyed on policy snapshot version and context")
    cache_ttl_seconds: PositiveInt = Field(default=300, description="Decision cache entry lifetime")
    cache_max_entries: PositiveInt = Field(default=10_000, description="Decision cache capacity (LRU eviction)")

    policies_file: Optional[Path] = Field(default=None, description="Policy document (JSON or YAML) used by the CLI")
    hierarchy_file: Optional[Path] = Field(default=None, description="Organization hierarchy document (JSON or YAML) used by the CLI")

    model_config = SettingsConfigDict(env_prefix="PDP_", env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore")

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: Any) -> str:
        """Normalise and validate the log level.

        Args:
            v: Level name.

        Returns:
            str: Upper-cased level name.

        Raises:
            ValueError: For an unknown level name.
        """
        level = str(v).upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level

    def configure_logging(self) -> None:
        """Apply ``log_level`` to the package logger."""
        logging.getLogger("abac_pdp").setLevel(self.log_level)

    def log_summary(self) -> None:
        """Log the active configuration."""
        logger.info("PDP settings summary: %s", self.model_dump())


@lru_cache()
def get_settings(**kwargs: Any) -> Settings:
    """Get cached settings instance.

    Args:
        **kwargs: Keyword arguments to pass to the Settings setup.

    Returns:
        Settings: A cached instance of the Settings class.

    Examples:
        >>> settings = get_settings()
        >>> isinstance(settings, Settings)
        True
        >>> settings is get_settings()
        True
    """
    return Settings(**kwargs)


# Lazy "instance" of settings
class LazySettingsWrapper:
    """Lazily initialize settings singleton on getattr"""

    def __getattr__(self, key: str) -> Any:
        """Get the real settings object and forward to it

        Args:
            key: The key to fetch from settings

        Returns:
            Any: The value of the attribute on the settings
        """
        return getattr(get_settings(), key)


settings = LazySettingsWrapper()
