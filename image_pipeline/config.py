"""Configuration settings for the item image pipeline."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


DEFAULT_REPLICATE_MODEL = (
    "cjwbw/rembg:fb8af171cfa1616ddcf1242c093f9c46bcada5ad4cf6f2fbe8b81b330ec5c003"
)


class ConfigurationError(Exception):
    """Raised when required service configuration is missing."""

    def __init__(self, missing: List[str]):
        self.missing = missing
        super().__init__(f"Missing service configuration: {', '.join(missing)}")


class Settings(BaseSettings):
    """Application settings."""

    # Database Configuration
    database_url: Optional[str] = None
    auto_create_schema: bool = False

    # Blob Storage Configuration (S3 compatible)
    s3_endpoint_url: Optional[str] = None
    s3_region: str = "us-east-1"
    s3_bucket: str = "wardrobe-items"
    s3_access_key: Optional[str] = None
    s3_secret_key: Optional[str] = None

    # Background Removal Provider
    replicate_api_key: Optional[str] = None
    replicate_api_url: str = "https://api.replicate.com/v1"
    replicate_model_version: str = DEFAULT_REPLICATE_MODEL
    replicate_poll_interval_ms: int = 1000

    # Image Processing
    image_processing_timeout_ms: int = 120000
    thumbnail_size: int = 200
    clean_image_max_dimension: int = 1600
    clean_image_jpeg_quality: int = 85
    thumbnail_jpeg_quality: int = 90
    image_cleanup_enabled: bool = True

    # Retry Configuration
    default_max_attempts: int = 3
    retry_base_delay_ms: int = 1000
    retry_max_delay_ms: int = 60000
    stale_job_threshold_ms: int = 600000  # 10 minutes

    # Queue Configuration
    default_batch_size: int = 10
    max_batch_size: int = 10
    max_concurrent_jobs: int = 5

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Monitoring
    environment: str = "development"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    def missing_service_config(self) -> List[str]:
        """Names of required credentials that are not set."""
        required = {
            "DATABASE_URL": self.database_url,
            "S3_ACCESS_KEY": self.s3_access_key,
            "S3_SECRET_KEY": self.s3_secret_key,
            "REPLICATE_API_KEY": self.replicate_api_key,
        }
        return [name for name, value in required.items() if not (value or "").strip()]


def require_service_config(config: Settings) -> Settings:
    """Return the settings or raise when database, storage or provider credentials are absent."""
    missing = config.missing_service_config()
    if missing:
        raise ConfigurationError(missing)
    return config


settings = Settings()
