"""Configuration for the coordinator."""

import logging

from pydantic_settings import BaseSettings, SettingsConfigDict


class RMFConfig(BaseSettings):
    """Coordinator configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="RMF_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # API settings
    api_title: str = "RMF Compliance Manager"
    api_version: str = "0.1.0"
    host: str = "0.0.0.0"
    port: int = 8000

    # Storage settings
    data_dir: str = "./data"
    persist: bool = True

    # Risk defaults when impact or likelihood is missing
    default_impact: int = 3
    default_likelihood: int = 3

    # Logging
    log_level: str = "INFO"


def get_config() -> RMFConfig:
    """Get coordinator configuration."""
    return RMFConfig()


def configure_logging(level: str = "INFO") -> None:
    """Configure the ``rmf_manager`` logger hierarchy."""
    logger = logging.getLogger("rmf_manager")
    logger.setLevel(level.upper())
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )
        logger.addHandler(handler)
