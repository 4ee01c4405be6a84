# backend/config.py
import logging
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings read from the environment (and .env)."""

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    database_url: str = Field(..., description="Async SQLAlchemy database URL")

    # required
    access_token_secret: str = Field(..., min_length=1)
    access_token_expire_minutes: int = Field(default=60, gt=0)
    refresh_token_secret: str = Field(..., min_length=1)
    refresh_token_expire_days: int = Field(default=10, gt=0)
    jwt_algorithm: str = Field(default="HS256")

    cors_origin: str = Field(default="http://localhost:3000")

    media_root: str = Field(default="public/media", description="Directory uploaded media is written to")
    media_base_url: str = Field(default="/media", description="URL prefix media is served from")

    environment: str = Field(default="production")
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning("Invalid log level '%s', defaulting to INFO", v)
            return "INFO"
        return v_upper

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
