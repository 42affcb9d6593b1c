"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class LedgerConfig(BaseSettings):
    """Family ledger configuration"""

    model_config = SettingsConfigDict(
        env_prefix="FAMILY_LEDGER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage configuration
    database_path: str = "family_ledger.db"
    storage_namespace: str = "family_ledger_v1"

    # Session configuration
    session_duration_hours: int = 24
    session_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"

    # Credential hashing (scrypt cost parameters)
    scrypt_n: int = 16384
    scrypt_r: int = 8
    scrypt_p: int = 1

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Narrative insight service
    insight_url: str = ""  # Empty = disabled
    insight_timeout: float = 5.0
    insight_api_key: Optional[str] = None


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
