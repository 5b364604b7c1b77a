import math
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


class Settings(BaseSettings):
    ENV: Optional[str] = None
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    REDIS_HOST: Optional[str] = None
    REDIS_PORT: Optional[int] = None
    REDIS_USERNAME: Optional[str] = None
    REDIS_PASSWORD: Optional[str] = None
    SESSION_COOKIE_NAME: str = "session_id"

    GEMINI_API_KEY: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("GEMINI_API_KEY", "GOOGLE_API_KEY")
    )
    GEMINI_VIDEO_MODEL: str = "gemini-2.0-flash-exp"

    OPENAI_API_KEY: Optional[str] = None
    FIREWORKS_API_KEY: Optional[str] = None
    FIREWORKS_BASE_URL: str = "https://api.fireworks.ai/inference/v1"

    # Google Cloud Storage
    GCS_BUCKET_NAME: Optional[str] = None
    GCS_CREDENTIALS_JSON_PATH: Optional[str] = None
    GC_PROJECT_ID: Optional[str] = None
    GCS_PATH_PREFIX: str = "uploads"

    # Uploads
    UPLOAD_TMP_DIR: str = "uploads_tmp"
    MAX_UPLOAD_BYTES: int = 50 * 1024 * 1024
    ALLOWED_CONTENT_TYPES: List[str] = ["image/jpeg", "image/png", "video/mp4"]
    UPLOAD_SESSION_TTL_SECONDS: int = 3600

    # Remote job polling
    JOB_POLL_INTERVAL_SECONDS: float = 2.0
    JOB_POLL_MAX_ATTEMPTS: int = 10
    JOB_POLL_MAX_WAIT_SECONDS: Optional[float] = None

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def job_poll_attempts(self) -> int:
        """Attempt budget, derived from the max wait when one is configured."""
        if self.JOB_POLL_MAX_WAIT_SECONDS is not None and self.JOB_POLL_INTERVAL_SECONDS > 0:
            return max(1, math.ceil(self.JOB_POLL_MAX_WAIT_SECONDS / self.JOB_POLL_INTERVAL_SECONDS))
        return max(1, self.JOB_POLL_MAX_ATTEMPTS)


def get_settings() -> Settings:
    return Settings()
