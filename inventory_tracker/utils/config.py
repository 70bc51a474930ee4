"""Configuration management using pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class APIConfig(BaseModel):
    """HTTP client settings for the remote store."""
    timeout: int = 30
    max_retries: int = 3
    retry_delay: int = 1
    exponential_backoff: bool = True


class StoreConfig(BaseModel):
    """Remote store (PostgREST) settings."""
    rest_path: str = "/rest/v1"
    schema_name: str = "public"
    items_table: str = "inventory_items"
    categories_table: str = "categories"


class LoggingFilesConfig(BaseModel):
    """Log file paths."""
    inventory: str = "logs/inventory.log"
    webhook: str = "logs/webhook.log"
    error: str = "logs/error.log"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    max_bytes: int = 10485760  # 10MB
    backup_count: int = 5
    files: LoggingFilesConfig = LoggingFilesConfig()


class WebhookConfig(BaseModel):
    """Change webhook configuration."""
    validate_signature: bool = True
    signature_header: str = "X-Webhook-Signature"


class YAMLConfig(BaseModel):
    """Configuration loaded from YAML file."""
    api: APIConfig = APIConfig()
    store: StoreConfig = StoreConfig()
    logging: LoggingConfig = LoggingConfig()
    webhook: WebhookConfig = WebhookConfig()


class Settings(BaseSettings):
    """Application settings from environment variables."""

    # Remote store settings
    supabase_url: str = Field(..., description="Base URL of the hosted database project")
    supabase_key: str = Field(..., description="API key for the hosted database project")

    # Change webhook settings
    webhook_secret: Optional[str] = Field(default=None, description="Shared secret for change webhooks")

    # Application settings
    environment: str = Field(default="development", description="Environment (development/production)")
    log_level: Optional[str] = Field(default=None, description="Override log level")
    port: int = Field(default=8000, description="Server port")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


class AppConfig:
    """Combined application configuration."""

    def __init__(self):
        try:
            self.env = Settings()
        except ValidationError as e:
            missing = [".".join(str(part) for part in err["loc"]).upper() for err in e.errors()]
            raise ConfigurationError(
                "Database configuration missing. Please check your environment variables.",
                details={"missing": missing}
            )

        if not self.env.supabase_url.strip() or not self.env.supabase_key.strip():
            raise ConfigurationError(
                "Database configuration missing. Please check your environment variables.",
                details={"missing": ["SUPABASE_URL", "SUPABASE_KEY"]}
            )

        # Load YAML config
        config_path = Path(__file__).parent.parent.parent / "config" / "config.yml"
        if config_path.exists():
            with open(config_path, "r") as f:
                yaml_data = yaml.safe_load(f) or {}
                self.yaml = YAMLConfig(**yaml_data)
        else:
            self.yaml = YAMLConfig()

        # Override log level if specified in env
        if self.env.log_level:
            self.yaml.logging.level = self.env.log_level

    @property
    def api(self) -> APIConfig:
        return self.yaml.api

    @property
    def store(self) -> StoreConfig:
        return self.yaml.store

    @property
    def logging(self) -> LoggingConfig:
        return self.yaml.logging

    @property
    def webhook(self) -> WebhookConfig:
        return self.yaml.webhook

    @property
    def is_production(self) -> bool:
        return self.env.environment.lower() == "production"


@lru_cache()
def get_config() -> AppConfig:
    """Get cached configuration instance."""
    return AppConfig()
