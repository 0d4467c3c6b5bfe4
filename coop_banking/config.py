"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class CoopConfig(BaseSettings):
    """Cooperative back-office configuration"""

    model_config = SettingsConfigDict(
        env_prefix="COOP_",
        env_file=".env",
        case_sensitive=False,
    )

    # Database configuration
    database_url: str = "sqlite:///coop_backoffice.db"  # "memory" for in-process storage

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    currency: str = "PHP"
    dormancy_threshold_months: int = 6
    rlpf_rate_per_thousand: str = "1.00"  # Charged per 1,000 of principal per month of term

    # Default interest setting used until one is recorded
    default_interest_rate: str = "2.50"
    default_minimum_balance: str = "500.00"
    default_computation_basis: str = "Monthly"

    # Batch processing configuration
    batch_workers: int = 4


# Global configuration instance
config = CoopConfig()


def get_config() -> CoopConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> CoopConfig:
    """Reload configuration from environment"""
    global config
    config = CoopConfig()
    return config
