"""
Configuration settings for the sync pipeline.

Environment variables:
    EPISTEMIC_QUERY_RESULT_LIMIT   Rows fetched per {{QUERY: ...}} command
    EPISTEMIC_WRITE_BLOCK          Rewrite the trailing semantic block on save
    EPISTEMIC_OUTBOX_ENABLED       Record assigned ids in the injection outbox
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Sync pipeline settings."""

    model_config = SettingsConfigDict(env_prefix="EPISTEMIC_", extra="ignore", env_file=".env")

    query_result_limit: int = 20

    write_block: bool = True
    outbox_enabled: bool = True


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
