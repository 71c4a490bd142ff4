"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class LedgerConfig(BaseSettings):
    """Collection ledger configuration"""
    
    # Storage configuration
    storage_backend: str = "sqlite"  # memory or sqlite
    database_path: str = "microledger.db"
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    
    # Audit configuration
    enable_audit_logging: bool = True
    audit_table: str = "audit_events"
    
    # Concurrency configuration
    lock_timeout_seconds: Optional[float] = None  # None waits forever
    
    # Loan number generation
    loan_number_prefix: str = "LN-"
    loan_number_width: int = 5
    
    class Config:
        env_prefix = "MICROLEDGER_"
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
