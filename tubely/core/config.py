"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Tubely API"
    VERSION: str = "0.1.0"
    API_PREFIX: str = "/api"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Database - REQUIRED
    DATABASE_URL: str

    # Security - REQUIRED (no defaults for sensitive values)
    JWT_SECRET: str

    # CORS
    CORS_ORIGINS: list[str] = []

    # Storage Configuration
    # STORAGE_BACKEND: s3 (also accepts minio, aws) or local
    STORAGE_BACKEND: str = "s3"

    # S3/Compatible Storage (when STORAGE_BACKEND=s3)
    S3_BUCKET: str = ""
    S3_REGION: str = "us-east-1"
    S3_ACCESS_KEY: str = ""
    S3_SECRET_KEY: str = ""
    S3_ENDPOINT_URL: Optional[str] = None
    # Host part of public object URLs; defaults to s3.<region>.amazonaws.com
    S3_STORE_HOST: Optional[str] = None

    # Local Storage (when STORAGE_BACKEND=local)
    ASSETS_ROOT: str = "./assets"
    ASSETS_BASE_URL: str = "http://localhost:8091"

    # Media tools
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"

    # Upload handling
    UPLOAD_TEMP_DIR: Optional[str] = None  # system temp dir when unset
    MAX_VIDEO_UPLOAD_BYTES: int = 1 << 30  # 1 GiB
    UPLOAD_TIMEOUT_SECONDS: float = 600.0

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    @property
    def store_host(self) -> str:
        """Host used when deriving public object URLs."""
        return self.S3_STORE_HOST or f"s3.{self.S3_REGION}.amazonaws.com"


settings = Settings()
