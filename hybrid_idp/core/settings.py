"""
Centralized engine settings using Pydantic.

Environment variables are read once and validated. Every variable carries
the ``HYBRID_IDP_`` prefix, e.g. ``HYBRID_IDP_ASSISTED_ENDPOINT_URL``.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

from hybrid_idp.core import config


class EngineSettings(BaseSettings):
    """Runtime configuration for the hybrid extraction engine."""

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    ASSISTED_ENDPOINT_URL: str = "http://localhost:8080/analyze"
    ASSISTED_TIMEOUT_SECONDS: float = config.ASSISTED_TIMEOUT_SECONDS
    ASSISTED_CLIENT_TIMEOUT_SECONDS: float = config.ASSISTED_CLIENT_TIMEOUT_SECONDS
    ASSISTED_MAX_ATTEMPTS: int = config.ASSISTED_MAX_ATTEMPTS
    ASSISTED_VERIFY_SSL: bool = True

    CIRCUIT_FAILURE_THRESHOLD: int = config.CIRCUIT_FAILURE_THRESHOLD
    CIRCUIT_RESET_SECONDS: int = config.CIRCUIT_RESET_SECONDS

    STORE_DIR: str = "./store"

    model_config = {
        "case_sensitive": True,
        "env_prefix": "HYBRID_IDP_",
        "env_file": ".env",
        "extra": "ignore",
    }

    @property
    def store_dir(self) -> Path:
        """Resolve the JSON store directory."""
        return Path(self.STORE_DIR.strip() or "./store").resolve()


@lru_cache
def get_settings() -> EngineSettings:
    """Return cached settings instance."""
    return EngineSettings()
