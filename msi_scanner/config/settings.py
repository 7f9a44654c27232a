"""
==============================================================================
Application Settings Module
==============================================================================

Configuration management using Pydantic Settings.

The detection and binarization thresholds are empirically tuned values.
They are exposed here as configuration so deployments can adjust them
without touching the pipeline code.

Configuration Priority (highest to lowest):
------------------------------------------
1. Environment variables
2. .env file
3. Default values

Setting Groups:
--------------
- Application: name, environment, server binding, CORS
- Detector: gradient mask, morphology kernel, geometric filters
- Binarizer: margin, extraction minimum, normalization size
- Arbitrator: fallback budget, stale frame policy, REST wait timeout
- Recognizer: external recognizer format whitelist
- Debounce: result publication intervals (calling layer)

==============================================================================
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Module logger
logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Service settings loaded from environment variables.

    Example:
        >>> settings = Settings()
        >>> settings.detector_gradient_threshold
        30.0
        >>> settings.debounce_min_interval_ms
        750
    """

    # =========================================================================
    # PYDANTIC SETTINGS CONFIGURATION
    # =========================================================================
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True,
    )

    # =========================================================================
    # APPLICATION SETTINGS
    # =========================================================================
    app_name: str = Field(
        default="MSI Fallback Scanner",
        description="Display name for the application"
    )

    app_env: str = Field(
        default="development",
        description="Environment mode: development, staging, production"
    )

    debug: bool = Field(
        default=False,
        description="Enable debug mode for verbose logging"
    )

    host: str = Field(
        default="0.0.0.0",
        description="Server bind address"
    )

    port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Server port number"
    )

    cors_origins: str = Field(
        default='["*"]',
        description="Allowed CORS origins as JSON array string"
    )

    # =========================================================================
    # ROI DETECTOR SETTINGS
    # =========================================================================
    detector_gradient_threshold: float = Field(
        default=30.0,
        ge=0.0,
        description="Minimum Sobel magnitude for the gradient mask"
    )

    detector_min_gradient_ratio: float = Field(
        default=3.0,
        gt=0.0,
        description="Minimum |gradX| / (|gradY| + 1) for horizontal bars"
    )

    detector_kernel_width: int = Field(
        default=21,
        ge=1,
        description="Morphology kernel width (connects bars)"
    )

    detector_kernel_height: int = Field(
        default=7,
        ge=1,
        description="Morphology kernel height"
    )

    detector_min_roi_width: int = Field(default=100, ge=1)
    detector_min_roi_height: int = Field(default=30, ge=1)
    detector_min_aspect_ratio: float = Field(default=2.5, gt=0.0)
    detector_max_aspect_ratio: float = Field(default=15.0, gt=0.0)
    detector_min_area: int = Field(default=3000, ge=0)
    detector_min_density: float = Field(default=0.3, ge=0.0, le=1.0)
    detector_min_convexity: float = Field(default=0.7, ge=0.0, le=1.0)

    detector_high_confidence: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Candidates at or above this are preferred"
    )

    detector_medium_confidence: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Fallback confidence when no candidate is high confidence"
    )

    detector_max_candidates: int = Field(default=3, ge=1, le=20)

    detector_budget_ms: float = Field(
        default=50.0,
        gt=0.0,
        description="Advisory processing budget, overruns are logged"
    )

    # =========================================================================
    # ROI BINARIZER SETTINGS
    # =========================================================================
    binarizer_margin_percent: float = Field(default=0.15, ge=0.0, le=1.0)
    binarizer_min_extract_width: int = Field(default=80, ge=1)
    binarizer_min_extract_height: int = Field(default=25, ge=1)
    binarizer_target_height: int = Field(default=60, ge=8)
    binarizer_max_width: int = Field(default=800, ge=20)

    # =========================================================================
    # ARBITRATOR SETTINGS
    # =========================================================================
    arbitrator_fallback_budget_ms: float = Field(
        default=50.0,
        gt=0.0,
        description="Soft budget for the local fallback, overruns are logged"
    )

    arbitrator_drop_stale_frames: bool = Field(
        default=True,
        description="Skip queued fallbacks superseded by a newer frame"
    )

    arbitrator_request_timeout_s: float = Field(
        default=2.0,
        gt=0.0,
        le=60.0,
        description="How long REST callers wait for a scan result"
    )

    arbitrator_scan_source_timeout_ms: float = Field(
        default=1000.0,
        ge=0.0,
        description="Age after which the last scan source reads as none"
    )

    # =========================================================================
    # RECOGNIZER SETTINGS
    # =========================================================================
    recognizer_formats: str = Field(
        default='["EAN_13", "EAN_8", "CODE_128", "QR_CODE"]',
        description="Accepted external recognizer formats as JSON array string"
    )

    # =========================================================================
    # DEBOUNCE SETTINGS (calling layer)
    # =========================================================================
    debounce_min_interval_ms: int = Field(
        default=750,
        ge=0,
        description="Minimum interval between accepted results"
    )

    debounce_republish_window_ms: int = Field(
        default=800,
        ge=0,
        description="Identical payloads inside this window are suppressed"
    )

    # =========================================================================
    # VALIDATORS
    # =========================================================================
    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, value: str) -> str:
        """
        Validate and normalize application environment.

        Unknown values fall back to 'development' with a warning.
        """
        valid_envs = {"development", "staging", "production"}
        normalized = value.lower().strip()

        if normalized not in valid_envs:
            logger.warning(
                f"Unknown environment '{value}', defaulting to 'development'"
            )
            return "development"

        return normalized

    @field_validator("detector_kernel_width", "detector_kernel_height")
    @classmethod
    def validate_kernel_size(cls, value: int) -> int:
        """Structuring element sizes must be odd so the anchor is centred."""
        if value % 2 == 0:
            raise ValueError(f"Kernel size must be odd, got {value}")
        return value

    # =========================================================================
    # COMPUTED PROPERTIES
    # =========================================================================
    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Parse CORS origins from JSON string to list.

        Returns:
            List of allowed origin strings
        """
        try:
            origins = json.loads(self.cors_origins)
            if isinstance(origins, list):
                return origins
            return ["*"]
        except json.JSONDecodeError:
            logger.warning(
                f"Invalid CORS origins JSON: {self.cors_origins}, "
                "defaulting to ['*']"
            )
            return ["*"]

    @property
    def recognizer_formats_list(self) -> List[str]:
        """
        Parse the recognizer whitelist from its JSON string.

        Returns:
            Upper-case format names
        """
        try:
            formats = json.loads(self.recognizer_formats)
        except json.JSONDecodeError:
            logger.warning(
                f"Invalid recognizer formats JSON: {self.recognizer_formats}, "
                "using defaults"
            )
            return ["EAN_13", "EAN_8", "CODE_128", "QR_CODE"]

        if not isinstance(formats, list):
            return ["EAN_13", "EAN_8", "CODE_128", "QR_CODE"]

        return [str(f).upper() for f in formats]

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"Settings(app_name={self.app_name!r}, "
            f"app_env={self.app_env!r}, "
            f"debug={self.debug})"
        )


# =============================================================================
# SINGLETON INSTANCE MANAGEMENT
# =============================================================================

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get the global Settings instance (singleton pattern).

    Uses lru_cache so only one Settings instance is created for the
    process lifetime.

    Returns:
        Global Settings instance
    """
    settings = Settings()

    if settings.debug:
        logger.info(f"Configuration loaded: {settings}")

    return settings
