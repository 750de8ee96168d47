"""
Configuration Management for MentorSync

Provides validated configuration with sensible defaults.
Supports environment variable overrides.

Design:
- Immutable after validation
- Fail-fast on invalid configuration
- Type-safe with dataclasses
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from mentorsync.core.types import Result, Ok, Err
from mentorsync.core import constants as C
from mentorsync.storage.config import StorageConfig


_TRUTHY = ("true", "1", "yes")


def _env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None or val == "":
        return default
    return val.lower() in _TRUTHY


@dataclass(frozen=True)
class SessionConfig:
    """Per-connection session behaviour."""

    # Allow clients to opt into testing mode via connection options.
    allow_testing_mode: bool = False
    max_bio_length: int = C.MAX_BIO_LENGTH
    min_profile_item_length: int = C.MIN_PROFILE_ITEM_LENGTH
    # Run a reconciliation sweep over every user during startup.
    reconcile_on_startup: bool = True


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging and metrics configuration."""

    metrics_enabled: bool = True
    log_level: str = "INFO"
    log_json: bool = True


@dataclass(frozen=True)
class MentorSyncConfig:
    """Root configuration for a MentorSync process."""

    storage: StorageConfig = field(default_factory=StorageConfig.for_development)
    session: SessionConfig = field(default_factory=SessionConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> Result[MentorSyncConfig, str]:
        """
        Load configuration from environment variables.

        Environment variables are prefixed with MENTORSYNC_.
        Example: MENTORSYNC_STORAGE_BACKEND, MENTORSYNC_LOG_LEVEL
        """
        try:
            storage = StorageConfig.from_env()

            session = SessionConfig(
                allow_testing_mode=_env_bool("MENTORSYNC_ALLOW_TESTING_MODE", False),
                max_bio_length=int(
                    os.getenv("MENTORSYNC_MAX_BIO_LENGTH", str(C.MAX_BIO_LENGTH))
                ),
                reconcile_on_startup=_env_bool("MENTORSYNC_RECONCILE_ON_STARTUP", True),
            )

            observability = ObservabilityConfig(
                metrics_enabled=_env_bool("MENTORSYNC_METRICS_ENABLED", True),
                log_level=os.getenv("MENTORSYNC_LOG_LEVEL", "INFO").upper(),
                log_json=_env_bool("MENTORSYNC_LOG_JSON", True),
            )

            return Ok(cls(storage=storage, session=session, observability=observability))
        except (ValueError, TypeError) as e:
            return Err(f"Configuration error: {e}")

    def validate(self) -> Result[None, str]:
        """Validate configuration invariants."""
        if self.session.max_bio_length <= 0:
            return Err("max_bio_length must be > 0")
        if self.session.min_profile_item_length < 0:
            return Err("min_profile_item_length must be >= 0")
        if self.observability.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            return Err(f"Unknown log level: {self.observability.log_level}")
        return Ok(None)
