from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    # App
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite://./imagestore.db"

    # Storage
    STORAGE_DIR: str = "./data/uploads"
    BACKUP_DIR: str = "./data/backups"
    CONTENT_DOCUMENT_PATH: str = "./data/landing-page-content.json"

    # Redis (distributed locks, RQ)
    REDIS_URL: str = "redis://127.0.0.1:6379/0"
    LOCK_TTL_MS: int = 60000
    LOCK_RETRY_INTERVAL_MS: int = 100
    DELETE_LOCK_WAIT_MS: int = 30000

    # Image processing
    MIN_IMAGE_DIMENSION: int = 16
    MAX_IMAGE_DIMENSION: int = 10000
    JPEG_QUALITY: int = 90
    WEBP_QUALITY: int = 80
    CODEC_TIMEOUT_SECONDS: float = 60.0

    # Deletion
    METADATA_DELETE_ATTEMPTS: int = 3
    METADATA_RETRY_DELAY_SECONDS: float = 0.5

    # Retention sweep
    RETENTION_DAYS: int = 30
    BACKUP_RETENTION_DAYS: int = 90

    # Metrics
    METRICS_ENABLED: bool = False

    @field_validator("MIN_IMAGE_DIMENSION", "MAX_IMAGE_DIMENSION", "METADATA_DELETE_ATTEMPTS")
    @classmethod
    def _positive(cls, v):
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _upper_level(cls, v):
        return str(v).strip().upper()

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
