"""
Configuration Management Module

Centralized configuration using pydantic-settings for environment-based
configuration. Every field can be overridden with a COOP_-prefixed
environment variable or a .env file.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class LendingConfig(BaseSettings):
    """Cooperative lending engine configuration"""

    model_config = SettingsConfigDict(
        env_prefix="COOP_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    database_url: str = "memory://"  # or sqlite:///coop_lending.db

    # Loan book rules
    default_currency: str = "IDR"
    contract_prefix: str = "KOP"
    max_term_months: int = 60
    max_annual_rate_percent: str = "100"  # Decimal as string
    single_active_loan_per_customer: bool = True

    # Default policy: dpd_threshold, consecutive_overdue or never
    default_policy: str = "dpd_threshold"
    default_dpd_threshold: int = 90
    default_consecutive_overdue: int = 3

    # Delinquency sweep job
    sweep_interval_seconds: int = 3600
    timezone: str = "Asia/Jakarta"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Feature flags
    enable_audit_logging: bool = True


# Global configuration instance
config = LendingConfig()


def get_config() -> LendingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LendingConfig:
    """Reload configuration from environment"""
    global config
    config = LendingConfig()
    return config
