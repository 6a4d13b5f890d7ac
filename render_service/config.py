"""
Render Service Configuration Module

Centralized configuration management with Pydantic validation.
All environment variables are validated at startup to catch misconfigurations early.
"""

import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .engine import LaunchConfig, WaitPolicy

logger = logging.getLogger(__name__)


class RenderSettings(BaseSettings):
    """
    Render service configuration with validation.

    All settings can be overridden via environment variables.
    Validation happens at startup to fail fast on misconfiguration.
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # === Server ===
    environment: str = Field(
        default="development",
        description="Environment: development, staging, production"
    )
    host: str = Field(default="0.0.0.0", description="Interface to bind")
    port: int = Field(default=3000, ge=1, le=65535, description="Port to listen on")
    log_level: str = Field(default="INFO", description="Root log level")

    # === HTTP limits ===
    cors_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins"
    )
    rate_limit_enabled: bool = Field(default=True, description="Rate limit /api/ routes")
    rate_limit: str = Field(
        default="100/15 minutes",
        description="Per-client rate limit for /api/ routes (slowapi syntax)"
    )
    max_body_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1024,
        description="Largest accepted request body in bytes"
    )

    # === Engine ===
    engine_headless: bool = Field(default=True, description="Run Chromium headless")
    engine_executable_path: Optional[str] = Field(
        default=None,
        description="Chromium binary to use instead of Playwright's bundled one"
    )
    engine_launch_timeout_ms: int = Field(
        default=30000,
        ge=1000,
        le=300000,
        description="Chromium launch timeout in milliseconds"
    )
    engine_extra_args: str = Field(
        default="",
        description="Comma-separated extra Chromium command line flags"
    )
    engine_launch_on_startup: bool = Field(
        default=True,
        description="Launch Chromium when the service starts instead of on the first request"
    )

    # === Rendering ===
    navigation_timeout_ms: int = Field(
        default=30000,
        ge=1000,
        le=600000,
        description="Upper bound for loading a URL or HTML document"
    )
    render_timeout_seconds: float = Field(
        default=60,
        gt=0,
        le=600,
        description="Upper bound for a whole render, load plus PDF printing"
    )
    network_idle_ms: int = Field(
        default=500,
        ge=0,
        le=10000,
        description="Quiet period that counts as network idle"
    )
    network_idle_max_inflight: int = Field(
        default=2,
        ge=0,
        le=50,
        description="Open requests still tolerated while network idle"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is a known value."""
        allowed = {"development", "staging", "production"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"environment must be one of: {', '.join(sorted(allowed))}")
        return v_lower

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v_upper = v.upper()
        if v_upper not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return v_upper

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list."""
        return _split_csv(self.cors_origins)

    @property
    def engine_extra_args_list(self) -> List[str]:
        return _split_csv(self.engine_extra_args)

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    def launch_config(self) -> LaunchConfig:
        return LaunchConfig(
            headless=self.engine_headless,
            executable_path=self.engine_executable_path,
            timeout_ms=self.engine_launch_timeout_ms,
            extra_args=self.engine_extra_args_list,
        )

    def wait_policy(self) -> WaitPolicy:
        return WaitPolicy(
            max_inflight=self.network_idle_max_inflight,
            idle_ms=self.network_idle_ms,
            timeout_ms=self.navigation_timeout_ms,
        )

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration is suitable for production.

        Returns list of warning/error messages.
        """
        issues = []

        if self.is_production:
            if "*" in self.cors_origins_list:
                issues.append("WARNING: CORS_ORIGINS allows every origin")
            if not self.rate_limit_enabled:
                issues.append("WARNING: rate limiting is disabled")
            if not self.engine_headless:
                issues.append("CRITICAL: ENGINE_HEADLESS must be true in production")

        return issues


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@lru_cache()
def get_settings() -> RenderSettings:
    """
    Get cached settings instance.

    Settings are loaded once and cached for performance.
    Use this function to access configuration throughout the app.
    """
    return RenderSettings()


def validate_config_on_startup(settings: Optional[RenderSettings] = None) -> RenderSettings:
    """
    Validate configuration at application startup.

    Raises ValueError with details if config is invalid.
    Logs warnings for non-critical issues.
    """
    if settings is None:
        try:
            settings = get_settings()
        except Exception as e:
            raise ValueError(f"Configuration validation failed: {e}")

    for issue in settings.validate_production_config():
        if issue.startswith("CRITICAL"):
            raise ValueError(issue)
        logger.warning(issue)

    logger.info(f"Configuration loaded: environment={settings.environment}")
    logger.info(f"  engine_headless={settings.engine_headless}")
    logger.info(f"  engine_executable_path={settings.engine_executable_path or '<bundled>'}")
    logger.info(f"  navigation_timeout={settings.navigation_timeout_ms}ms")
    logger.info(f"  render_timeout={settings.render_timeout_seconds}s")
    logger.info(f"  rate_limit={settings.rate_limit if settings.rate_limit_enabled else 'disabled'}")
    return settings
