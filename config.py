"""Configuration module for Necessity Reminder.

This module provides configuration settings using Pydantic Settings.
Environment variables can be used to override default values.
"""

from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings for Necessity Reminder.

    All settings can be overridden via environment variables.
    Example: export DATABASE_URL="mysql+pymysql://..."
    """

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./necessity_reminder.db"
    """Database connection URL. Default: SQLite file in current directory"""

    # API Server Configuration
    API_HOST: str = "0.0.0.0"
    """API server host address"""

    API_PORT: int = 3000
    """API server port"""

    CORS_ORIGINS: List[str] = ["http://localhost", "http://localhost:3000"]
    """Frontend origins allowed to call the API"""

    # Auth Configuration
    JWT_SECRET: str = "your-secret-key-change-this"
    """Secret used to sign access tokens. Override in production!"""

    JWT_ALGORITHM: str = "HS256"

    ACCESS_TOKEN_EXPIRE_DAYS: int = 7
    """Lifetime of tokens issued at login"""

    # Scheduler Configuration
    SCHEDULER_ENABLED: bool = True
    """Enable/disable the background reminder scheduler"""

    SCHEDULER_INTERVAL_SECONDS: int = 60
    """Interval in seconds between scans for due reminders"""

    NOTIFY_LOOKAHEAD_MINUTES: int = 5
    """Reminders due within this many minutes from now are notified"""

    SCAN_CATCH_UP: bool = False
    """Also pick up overdue reminders that were never notified (e.g. after downtime)"""

    MAX_CONSECUTIVE_SCAN_FAILURES: int = 0
    """Stop the worker after this many failed scans in a row (0 = never stop)"""

    # Delivery Configuration
    DELIVERY_CHANNEL: str = "email"
    """How notifications are delivered: 'email', 'webhook' or 'log'"""

    DELIVERY_TIMEOUT_SECONDS: float = 30.0
    """Upper bound for a single delivery attempt; a timeout counts as a failure"""

    DISPATCH_CONCURRENCY: int = 5
    """Maximum number of notifications sent in parallel within one scan"""

    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""

    EMAIL_FROM: str = "Necessity Reminder"
    """From header for reminder e-mails (defaults to SMTP_USERNAME when it has no address)"""

    WEBHOOK_URL: str = ""
    """Endpoint receiving notifications when DELIVERY_CHANNEL is 'webhook'"""

    DASHBOARD_URL: str = "http://localhost/necessity-reminder/dashboard.html"
    """Link rendered into notifications"""

    LOGIN_URL: str = "http://localhost/necessity-reminder/login.html"
    """Link rendered into the welcome e-mail sent after signup"""

    # Logging
    LOG_LEVEL: str = "INFO"
    """Level for all service loggers (DEBUG shows the scheduler heartbeat)"""

    @property
    def email_configured(self) -> bool:
        return bool(self.SMTP_USERNAME and self.SMTP_PASSWORD)

    class Config:
        """Pydantic config"""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()
