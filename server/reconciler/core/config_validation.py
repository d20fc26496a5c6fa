"""Configuration validation utilities."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Set

from .config import (
    settings,
    set_config_validation_result,
    get_config_validation_result,
)
from .models import StateCollectionFailurePolicy

# Pools larger than this trigger a configuration warning.
LARGE_POOL_WARNING_THRESHOLD = 256


@dataclass
class ConfigIssue:
    """Represents a single configuration issue."""

    message: str
    hint: Optional[str] = None


@dataclass
class ConfigValidationResult:
    """Outcome of running configuration checks."""

    checked_at: datetime
    errors: List[ConfigIssue] = field(default_factory=list)
    warnings: List[ConfigIssue] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)


def _warn(result: ConfigValidationResult, message: str, hint: Optional[str] = None) -> None:
    result.warnings.append(ConfigIssue(message=message, hint=hint))


def _error(result: ConfigValidationResult, message: str, hint: Optional[str] = None) -> None:
    result.errors.append(ConfigIssue(message=message, hint=hint))


def _field_was_provided(provided_fields: Set[str], field_name: str) -> bool:
    """Return True if the setting was explicitly provided via environment variables."""

    return field_name in provided_fields


def run_config_checks(force: bool = False) -> ConfigValidationResult:
    """Validate configuration combinations and cache the result."""

    if not force:
        cached = get_config_validation_result()
        if cached is not None:
            return cached

    result = ConfigValidationResult(checked_at=datetime.now(timezone.utc))
    provided_fields = settings.model_fields_set

    if (
        not _field_was_provided(provided_fields, "environment_name")
        or not str(settings.environment_name).strip()
    ):
        _warn(
            result,
            "ENVIRONMENT_NAME is not set.",
            "Set ENVIRONMENT_NAME to the friendly display name for this deployment.",
        )

    if settings.max_threads < 1:
        _error(
            result,
            f"MAX_THREADS must be at least 1 (got {settings.max_threads}).",
            "Set MAX_THREADS to the number of agents that may be queried in parallel.",
        )
    elif settings.max_threads > LARGE_POOL_WARNING_THRESHOLD:
        _warn(
            result,
            f"MAX_THREADS is set to {settings.max_threads}.",
            "Very large pools rarely speed up state collection; consider lowering it.",
        )

    if settings.release_lock_timeout_seconds <= 0:
        _error(
            result,
            "RELEASE_LOCK_TIMEOUT_SECONDS must be positive.",
            "Set RELEASE_LOCK_TIMEOUT_SECONDS to the number of seconds to wait for release locks.",
        )

    if settings.state_collection_failure_policy == StateCollectionFailurePolicy.ABORT:
        _warn(
            result,
            "STATE_COLLECTION_FAILURE_POLICY is 'abort'.",
            "Current-state queries fail as a whole when a single agent cannot be verified.",
        )

    if settings.dummy_data:
        _warn(
            result,
            "DUMMY_DATA is enabled.",
            "Disable DUMMY_DATA outside of development environments.",
        )

    set_config_validation_result(result)
    return result
