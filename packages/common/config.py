"""
Application configuration using Pydantic Settings
Reads from environment variables and .env file
"""
from functools import lru_cache
from typing import Optional

from pydantic import Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Database
    db_user: str = Field(default="covrily", alias="DB_USER")
    db_password: Optional[str] = Field(default=None, alias="DB_PASSWORD")
    db_name: str = Field(default="covrily", alias="DB_NAME")
    db_host: str = Field(default="postgres", alias="DB_HOST")
    db_port: int = Field(default=5432, alias="DB_PORT")
    database_url_override: Optional[str] = Field(default=None, alias="DATABASE_URL")
    sql_echo: bool = Field(default=False, alias="SQL_ECHO")

    @property
    def database_url(self) -> str:
        """Construct database URL (DATABASE_URL wins when set)"""
        if self.database_url_override:
            return self.database_url_override
        return f"postgresql://{self.db_user}:{self.db_password or ''}@{self.db_host}:{self.db_port}/{self.db_name}"

    # Redis / Celery
    celery_broker_url: str = Field(default="redis://redis:6379/1", alias="CELERY_BROKER_URL")
    celery_result_backend: str = Field(default="redis://redis:6379/2", alias="CELERY_RESULT_BACKEND")

    # Application
    environment: str = Field(default="production", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    admin_token: Optional[str] = Field(default=None, alias="ADMIN_TOKEN")
    http_timeout_seconds: float = Field(default=10.0, alias="HTTP_TIMEOUT_SECONDS")

    # Google OAuth connector
    google_client_id: Optional[str] = Field(default=None, alias="GOOGLE_CLIENT_ID")
    google_client_secret: Optional[str] = Field(default=None, alias="GOOGLE_CLIENT_SECRET")
    google_redirect_uri: Optional[str] = Field(default=None, alias="GOOGLE_REDIRECT_URI")
    google_token_endpoint: str = Field(default="https://oauth2.googleapis.com/token", alias="GOOGLE_TOKEN_ENDPOINT")
    google_auth_endpoint: str = Field(default="https://accounts.google.com/o/oauth2/v2/auth", alias="GOOGLE_AUTH_ENDPOINT")
    google_scopes: str = Field(
        default="https://www.googleapis.com/auth/gmail.readonly openid email",
        alias="GOOGLE_SCOPES",
    )
    token_refresh_skew_seconds: int = Field(default=60, alias="TOKEN_REFRESH_SKEW_SECONDS")

    # Postmark (outbound email)
    postmark_server_token: Optional[str] = Field(default=None, alias="POSTMARK_SERVER_TOKEN")
    postmark_from: Optional[str] = Field(default=None, alias="POSTMARK_FROM")
    postmark_api_url: str = Field(default="https://api.postmarkapp.com/email", alias="POSTMARK_API_URL")
    postmark_message_stream: str = Field(default="outbound", alias="POSTMARK_MESSAGE_STREAM")

    # Notifications
    notify_to: Optional[str] = Field(default=None, alias="NOTIFY_TO")
    use_notify_to_fallback: bool = Field(default=False, alias="USE_NOTIFY_TO_FALLBACK")
    notification_claim_lease_seconds: int = Field(default=900, alias="NOTIFICATION_CLAIM_LEASE_SECONDS")
    notification_batch_limit: int = Field(default=500, alias="NOTIFICATION_BATCH_LIMIT")
    due_today_schedule_hour: int = Field(default=13, alias="DUE_TODAY_SCHEDULE_HOUR")
    heads_up_schedule_hour: int = Field(default=13, alias="HEADS_UP_SCHEDULE_HOUR")

    # Retry policy for upstream calls
    retry_max_attempts: int = Field(default=5, alias="RETRY_MAX_ATTEMPTS")
    retry_base_delay_seconds: float = Field(default=1.0, alias="RETRY_BASE_DELAY_SECONDS")

    # Merchant policies (JSON file with overrides, optional)
    merchant_policies_file: Optional[str] = Field(default=None, alias="MERCHANT_POLICIES_FILE")

    # Monitoring
    metrics_enabled: bool = Field(default=True, alias="METRICS_ENABLED")

    @property
    def notification_fallback_address(self) -> Optional[str]:
        """Fallback recipient, only when explicitly enabled"""
        if self.use_notify_to_fallback and self.notify_to:
            return self.notify_to
        return None

    @validator("log_level")
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @validator("environment")
    def validate_environment(cls, v):
        """Validate environment"""
        valid_envs = ["development", "test", "staging", "production"]
        if v.lower() not in valid_envs:
            raise ValueError(f"ENVIRONMENT must be one of {valid_envs}")
        return v.lower()


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
