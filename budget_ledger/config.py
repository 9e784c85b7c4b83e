"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class LedgerConfig(BaseSettings):
    """Budget ledger configuration"""

    # Database configuration
    database_url: str = "sqlite:///budget_ledger.db"  # memory:// for an in-process store

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    api_workers: int = 1

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    low_balance_threshold: float = 20.0  # Percent of allocation remaining
    recent_transactions_limit: int = 10
    sequence_max_retries: int = 5

    # Office identity printed on reports
    office_name: str = "Barangay Office"

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "BUDGET_LEDGER_"
        env_file = ".env"
        case_sensitive = False


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
