"""
Core configuration module using Pydantic Settings.
Loads configuration from environment variables with validation.
"""
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = "sqlite:///./social_realtime.db"
    db_pool_size: int = 20
    db_max_overflow: int = 10

    # Security Configuration
    jwt_secret_key: str = "changeme-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    bcrypt_rounds: int = 12

    # Messaging Configuration
    message_max_length: int = 2000
    notification_page_size: int = 50
    notification_max_page_size: int = 100
    ws_send_timeout_seconds: float = 5.0

    # Application Configuration
    service_name: str = "social-realtime-api"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"
    log_json: bool = True
    cors_origins: List[str] = ["*"]

    # Tracing Configuration
    tracing_enabled: bool = False
    otlp_endpoint: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Global settings instance
settings = Settings()
