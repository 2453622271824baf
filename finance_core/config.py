"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class FinanceConfig(BaseSettings):
    """Finance core engine configuration"""

    model_config = SettingsConfigDict(
        env_prefix="FINANCE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    database_url: str = "sqlite:///finance_core.db"  # or memory:// for tests

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    api_reload: bool = False

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Scheduler configuration
    scheduler_enabled: bool = True
    scheduler_interval_seconds: int = 600  # 10 minutes
    scheduler_run_on_start: bool = True

    # Business rules configuration
    due_window_days: int = 7
    max_repeat_count: int = 100
    max_occurrences: int = 100
    max_loan_principal: str = "10000000.00"
    max_loan_duration_months: int = 600
    duplicate_guard_same_day: bool = True  # heuristic check next to the occurrence token


# Global configuration instance
config = FinanceConfig()


def get_config() -> FinanceConfig:
    """Get global configuration instance"""
    return config
