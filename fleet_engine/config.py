# fleet_engine/config.py

from pydantic_settings import BaseSettings, SettingsConfigDict


class FleetSettings(BaseSettings):
    """Control-plane settings from FLEET_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FLEET_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Job poll
    job_poll_limit: int = 20

    # Port allocation retries on concurrent writers
    port_allocation_attempts: int = 5

    # GitHub "owner/name" publishing agent releases
    agent_release_repository: str = ""

    log_level: str = "INFO"


settings = FleetSettings()
