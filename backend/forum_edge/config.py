"""
Forum Edge — Application Configuration
========================================

What:  Centralized configuration management using Pydantic Settings.
Why:   Every branch the edge gate takes (development relaxations, rate-limit
       bypasses, CORS origin, auth service location) must be decided by one
       configuration object, not by ad hoc environment reads at each branch.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and provides a default `settings` object.
Who:   Passed explicitly to `create_app()` and from there to the edge gate.
When:  Loaded once at import time; tests build their own `Settings(...)`.

Design Decision:
    The middleware never imports the module-level `settings` directly.
    It receives a Settings instance at construction, so the same code
    behaves identically for a given configuration object regardless of
    process environment.
"""

from typing import Optional
from urllib.parse import urlparse

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Edge gate settings loaded from environment variables.

    All settings have defaults that are safe for production (rate limiting
    on, strict CSP). Development must be opted into with APP_ENV=development.
    """

    # ── Environment ───────────────────────────────────────────────────────
    # What: Deployment environment name
    # development → relaxed CSP for hot reload, rate limiting skipped
    app_env: str = Field(default="production")

    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        """Restricts the environment to the names the gate understands."""
        valid = {"development", "production", "test"}
        lower = v.lower()
        if lower not in valid:
            raise ValueError(f"Invalid app_env '{v}'. Must be one of: {valid}")
        return lower

    # ── Rate Limiting ─────────────────────────────────────────────────────
    # What: Global kill switch for the in-process limiter
    disable_rate_limit: bool = Field(default=False)

    # What: The hosting platform already provides equivalent protection
    # Why VERCEL alias: the platform sets VERCEL=1 in every deployment, and an
    # in-memory store is meaningless across isolated serverless instances
    platform_rate_limiting: bool = Field(
        default=False,
        validation_alias=AliasChoices("platform_rate_limiting", "vercel"),
    )

    # What: Upper bound on tracked client identities (LRU eviction beyond it)
    rate_limit_max_clients: int = Field(default=10_000, ge=100, le=1_000_000)

    # What: Sweep idle clients every N admitted requests (amortized cleanup)
    rate_limit_sweep_interval: int = Field(default=1_000, ge=10, le=100_000)

    # ── CORS ──────────────────────────────────────────────────────────────
    # What: The single origin allowed to call /api/* from a browser
    app_url: str = Field(default="http://localhost:3000")

    # ── Auth Service (Supabase) ───────────────────────────────────────────
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_anon_key: str = Field(default="", description="Supabase anon (public) key")

    # What: Overrides the session cookie name derived from the project ref
    auth_cookie_name: Optional[str] = Field(default=None)

    # What: Hard upper bound for the whole session refresh exchange (seconds)
    # Trade-off: every page request waits on this; keep it short
    session_refresh_timeout: float = Field(default=5.0, gt=0, le=30)

    # ── Content Security Policy ───────────────────────────────────────────
    csp_report_uri: Optional[str] = Field(default=None)

    # ── Static Assets ─────────────────────────────────────────────────────
    static_root: str = Field(default="./static")

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=8000, ge=1024, le=65535)

    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "populate_by_name": True,
        "extra": "ignore",
    }

    # ── Derived Values ────────────────────────────────────────────────────

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def rate_limiting_enabled(self) -> bool:
        """
        What: Whether the limiter runs at all in this deployment.
        Note: Per-path exemptions (framework paths) are decided by the gate.
        """
        return not (
            self.is_development
            or self.disable_rate_limit
            or self.platform_rate_limiting
        )

    @property
    def supabase_project_ref(self) -> str:
        """First host label of the Supabase URL (e.g. 'abcd' for abcd.supabase.co)."""
        host = urlparse(self.supabase_url).hostname or ""
        return host.split(".")[0] if host else ""

    @property
    def session_cookie_name(self) -> str:
        if self.auth_cookie_name:
            return self.auth_cookie_name
        ref = self.supabase_project_ref
        return f"sb-{ref}-auth-token" if ref else "sb-auth-token"

    def validate_required_for_production(self) -> None:
        """
        What:  Validates that the auth service is configured.
        When:  Called during app startup (lifespan).
        Why:   Without it every session refresh silently degrades to anonymous.
        """
        errors = []
        if not self.supabase_url:
            errors.append("SUPABASE_URL is not set.")
        if not self.supabase_anon_key:
            errors.append("SUPABASE_ANON_KEY is not set.")
        if errors:
            raise ValueError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )


# Default instance for `uvicorn forum_edge.main:app`
settings = Settings()
