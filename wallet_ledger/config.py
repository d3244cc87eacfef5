"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class WalletConfig(BaseSettings):
    """Wallet ledger service configuration"""

    # Database configuration
    database_url: str = "sqlite:///wallet.db"  # memory://, sqlite:///path or postgresql://...
    database_pool_size: int = 5
    lock_timeout_seconds: float = 5.0
    serialization_retries: int = 3
    auto_create_schema: bool = True  # CREATE TABLE IF NOT EXISTS on startup

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Security configuration
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24
    password_min_length: int = 8

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    model_config = SettingsConfigDict(
        env_prefix="WALLET_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )


# Global configuration instance
config = WalletConfig()


def get_config() -> WalletConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> WalletConfig:
    """Reload configuration from environment"""
    global config
    config = WalletConfig()
    return config
