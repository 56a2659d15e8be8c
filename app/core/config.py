"""Core application configuration and settings.

Handles environment variables, storage backend selection, matcher tuning
and per-student locking.
"""
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings


# Load environment variables
ROOT = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=ROOT / ".env", override=True)
load_dotenv(override=True)

SUPPORTED_BACKENDS = ("memory", "redis")
SUPPORTED_MATCH_STRATEGIES = ("prefix", "exact", "edit_distance")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Profile storage
    profile_backend: str = Field(default="memory", alias="PROFILE_BACKEND")

    # Redis Configuration
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_password: Optional[str] = Field(default=None, alias="REDIS_PASSWORD")
    redis_db: int = Field(default=0, alias="REDIS_DB")
    redis_key_prefix: str = Field(default="profile:", alias="REDIS_KEY_PREFIX")

    # Matching
    concept_match_prefix: int = Field(default=10, alias="CONCEPT_MATCH_PREFIX")
    pattern_match_prefix: int = Field(default=20, alias="PATTERN_MATCH_PREFIX")
    match_strategy: str = Field(default="prefix", alias="MATCH_STRATEGY")
    edit_distance_cutoff: float = Field(default=0.8, alias="EDIT_DISTANCE_CUTOFF")

    # Per-student serialization
    student_lock_timeout_seconds: float = Field(default=30.0, alias="STUDENT_LOCK_TIMEOUT_SECONDS")
    student_lock_wait_seconds: float = Field(default=10.0, alias="STUDENT_LOCK_WAIT_SECONDS")

    # Application Settings
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # API Settings
    api_prefix: str = Field(default="", alias="API_PREFIX")
    cors_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000"
        ],
        alias="CORS_ORIGINS"
    )

    class Config:
        case_sensitive = False
        env_file = ".env"
        populate_by_name = True

    def validate_required_settings(self):
        """Validate that settings hold usable values."""
        if self.profile_backend not in SUPPORTED_BACKENDS:
            raise ValueError(
                f"PROFILE_BACKEND must be one of {', '.join(SUPPORTED_BACKENDS)} "
                f"(got '{self.profile_backend}')."
            )
        if self.match_strategy not in SUPPORTED_MATCH_STRATEGIES:
            raise ValueError(
                f"MATCH_STRATEGY must be one of {', '.join(SUPPORTED_MATCH_STRATEGIES)} "
                f"(got '{self.match_strategy}')."
            )
        if self.concept_match_prefix < 1 or self.pattern_match_prefix < 1:
            raise ValueError(
                "CONCEPT_MATCH_PREFIX and PATTERN_MATCH_PREFIX must be positive."
            )
        if not 0 < self.edit_distance_cutoff <= 1:
            raise ValueError("EDIT_DISTANCE_CUTOFF must be in (0, 1].")


# Global settings instance
settings = Settings()


# Validate settings on module import (only in non-test environments)
if settings.environment != "test":
    try:
        settings.validate_required_settings()
    except ValueError as e:
        print(f"Configuration Error: {e}")
        # Don't raise in development to allow partial setup
        if settings.environment == "production":
            raise
