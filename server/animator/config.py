"""Configuration helpers for the animator service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


def _optional_int(value: Optional[str]) -> Optional[int]:
    if value is None or not value.strip():
        return None
    return int(value)


def _optional_float(value: Optional[str]) -> Optional[float]:
    if value is None or not value.strip():
        return None
    return float(value)


@dataclass
class Settings:
    """Centralized environment-driven configuration.

    Poll bounds are unset by default, so a job waits as long as the upstream
    operation keeps reporting not-done.
    """

    gemini_api_key: Optional[str] = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
    gemini_base_url: str = os.getenv(
        "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
    )
    veo_model: str = os.getenv("VEO_MODEL", "veo-3.1-fast-generate-preview")
    poll_interval_seconds: float = float(os.getenv("VEO_POLL_INTERVAL_SECONDS", "10"))
    max_polls: Optional[int] = _optional_int(os.getenv("VEO_MAX_POLLS"))
    poll_timeout_seconds: Optional[float] = _optional_float(os.getenv("VEO_POLL_TIMEOUT_SECONDS"))
    http_timeout_seconds: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "60"))
    # Decoded size limit for uploaded images.
    max_image_bytes: int = int(os.getenv("MAX_IMAGE_BYTES", str(5 * 1024 * 1024)))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance to avoid repeated environment reads."""

    return Settings()


settings = get_settings()
