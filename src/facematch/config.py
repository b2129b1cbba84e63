"""Environment-based configuration for FaceMatch."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from FACEMATCH_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FACEMATCH_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8080
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Matching
    similarity_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    max_channel_value: float = Field(default=255.0, gt=0.0)
    strict_length: bool = False
    clamp_similarity: bool = False

    # Feature extraction
    face_size: int = Field(default=100, ge=1)

    # Detection (None = OpenCV's bundled frontal face cascade)
    cascade_path: str | None = None
    scale_factor: float = Field(default=1.1, gt=1.0)
    min_neighbors: int = Field(default=3, ge=0)
    min_face_size: int = Field(default=30, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0.0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=20_971_520, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
