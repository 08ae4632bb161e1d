"""
config.py

Centralized configuration management using pydantic-settings.
All modules must import settings from this file.
Direct os.getenv() calls are prohibited elsewhere.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings loaded from .env file."""

    # Database
    mysql_host: str = "127.0.0.1"
    mysql_port: int = 3306
    mysql_user: str = "guardian"
    mysql_password: str = ""
    mysql_db: str = "safety_guardian"
    persist_incidents: bool = False

    # Engine inputs
    thresholds_file: str = ""
    contacts_file: str = ""
    incident_capacity: int = 50
    history_size: int = 240
    pattern_interval_seconds: float = 300.0

    # Notification dispatch
    notification_webhook_url: str = ""
    dispatch_timeout_seconds: float = 5.0
    dispatch_max_attempts: int = 3
    dispatch_backoff_seconds: float = 1.0

    # Demo sensor source
    simulate_sensors: bool = False
    simulation_seed: int = 7

    # Logging
    log_level: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


settings = Settings()
