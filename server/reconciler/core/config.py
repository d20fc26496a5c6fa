"""Configuration management using Pydantic settings."""

from typing import Optional, TYPE_CHECKING

from pydantic_settings import BaseSettings

from .models import StateCollectionFailurePolicy


APP_VERSION = "0.4.0"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application settings
    app_name: str = "Fleet Reconciler"
    debug: bool = False
    environment_name: str = "Production Environment"

    # Agent state collection settings
    max_threads: int = 32  # Maximum concurrent agent state fetches
    # What to do when a single VM fails to report a verified state
    state_collection_failure_policy: StateCollectionFailurePolicy = (
        StateCollectionFailurePolicy.OMIT
    )

    # Lock settings
    release_lock_timeout_seconds: float = 10.0  # seconds to wait for release locks

    # Development settings
    dummy_data: bool = False  # Enable dummy data for development/testing

    @property
    def app_version(self) -> str:
        return APP_VERSION

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()


if TYPE_CHECKING:  # pragma: no cover - only for type hints
    from .config_validation import ConfigValidationResult

# Cache of the configuration validation result so it can be reused across modules
_config_validation_result: Optional["ConfigValidationResult"] = None


def set_config_validation_result(result: "ConfigValidationResult") -> None:
    """Persist the configuration validation result for reuse."""

    global _config_validation_result
    _config_validation_result = result


def get_config_validation_result() -> Optional["ConfigValidationResult"]:
    """Return the cached configuration validation result, if available."""

    return _config_validation_result
