"""Configuration management for the chunkup upload service."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    ENV: str = "local"
    SERVICE_NAME: str = "chunkup"
    SERVICE_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Storage Configuration
    STORAGE_BACKEND: str = "local"  # "local", "s3" or "gcs"
    LOCAL_STORAGE_PATH: str = "data/uploads"

    # S3 / S3-compatible object storage
    S3_BUCKET: str = ""
    S3_REGION: str = "us-east-1"
    S3_ENDPOINT_URL: str = ""
    S3_ACCESS_KEY_ID: str = ""
    S3_SECRET_ACCESS_KEY: str = ""
    S3_FORCE_PATH_STYLE: bool = False

    # Google Cloud Storage
    GCP_PROJECT_ID: str = ""
    GCS_BUCKET_NAME: str = ""

    # Auth Configuration
    AUTH_ENABLED: bool = True
    API_KEY: str = "default-dev-key"
    JWT_SECRET: str = "change-me-upload-token-signing-secret"
    JWT_ALGORITHM: str = "HS256"
    TOKEN_TTL_SECONDS: int = 3600

    # Upload Constraints
    MAX_CHUNK_MB: int = 64
    SESSION_TTL_SECONDS: int = 24 * 3600
    SESSION_SWEEP_INTERVAL_SECONDS: int = 15 * 60

    # Client defaults
    DEFAULT_CHUNK_SIZE: int = 1024 * 1024
    DEFAULT_MAX_PARALLEL: int = 3
    DEFAULT_COMPRESSION_MODE: str = "auto"
    DEFAULT_MAX_RETRIES: int = 3
    COMPRESSION_THRESHOLD: float = 0.75
    CLIENT_REQUEST_TIMEOUT: int = 60  # seconds per chunk round trip

    @property
    def max_chunk_bytes(self) -> int:
        """Convert MAX_CHUNK_MB to bytes."""
        return self.MAX_CHUNK_MB * 1024 * 1024

    @property
    def s3_endpoint(self) -> str | None:
        """Custom S3 endpoint, or None for AWS."""
        return self.S3_ENDPOINT_URL or None


# Singleton settings instance
settings = Settings()
