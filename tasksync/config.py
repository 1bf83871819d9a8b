"""
Application configuration management.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Task Sync Backend"
    environment: str = "development"
    debug: bool = False
    log_level: str = "info"

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    api_prefix: str = "/api"

    # Storage
    database_path: str = "./data/tasksync.db"

    # Authentication
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 30

    # Web Push
    vapid_subject: str = "mailto:admin@example.com"
    push_ttl_seconds: int = 60 * 60
    push_timeout_seconds: float = 10.0

    # Reminder scheduler
    scheduler_enabled: bool = True
    reminder_scan_interval_seconds: float = 60.0
    reminder_window_seconds: int = 60
    reminder_write_attempts: int = 3

    # Sync limits
    max_tasks_per_sync: int = 10000

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
