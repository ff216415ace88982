"""Portfolio API configuration, loaded from the environment."""

from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

# Secrets shorter than this are accepted but flagged at startup
_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings.

    Every field maps to an upper-case environment variable of the same name
    (JWT_SECRET_KEY, ADMIN_EMAIL, ...). A missing JWT_SECRET_KEY is not a
    validation error here: the token codec refuses to start without it, which
    keeps the failure at app construction rather than at import time.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "Portfolio API"
    app_version: str = "1.0.0"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # Token signing (HS256 only, see services.tokens)
    jwt_secret_key: str | None = None
    jwt_issuer: str = "portfolio-app"
    jwt_audience: str = "portfolio-app-users"
    token_lifetime_hours: int = Field(default=24, gt=0)
    token_max_age_hours: int = Field(default=24, gt=0)

    # The single admin identity
    admin_email: str | None = None
    admin_password: str | None = None
    admin_password_hash: str | None = None

    # Failed-login tracking, per client IP
    login_max_attempts: int = Field(default=5, gt=0)
    login_window_seconds: int = Field(default=900, gt=0)
    login_delay_min_seconds: float = Field(default=1.0, ge=0)
    login_delay_max_seconds: float = Field(default=2.0, ge=0)

    # General request rate limiting
    rate_limit_requests_per_minute: int = Field(default=100, gt=0)
    trusted_proxy_ips: str = ""

    blacklist_sweep_interval_seconds: int = Field(default=60, gt=0)
    enable_metrics: bool = False

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {sorted(_LOG_LEVELS)}")
        return level

    @field_validator("admin_email")
    @classmethod
    def normalize_admin_email(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip().lower() or None

    @model_validator(mode="after")
    def validate_bounds(self) -> "Settings":
        if self.token_lifetime_hours > self.token_max_age_hours:
            raise ValueError("TOKEN_LIFETIME_HOURS must not exceed TOKEN_MAX_AGE_HOURS")
        if self.login_delay_min_seconds > self.login_delay_max_seconds:
            raise ValueError("LOGIN_DELAY_MIN_SECONDS must not exceed LOGIN_DELAY_MAX_SECONDS")
        return self

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def trusted_proxy_ip_set(self) -> set[str]:
        return {ip.strip() for ip in self.trusted_proxy_ips.split(",") if ip.strip()}

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def admin_configured(self) -> bool:
        return bool(self.admin_email and (self.admin_password or self.admin_password_hash))

    def check_security_configuration(self) -> list[str]:
        """Return human-readable warnings about risky settings."""
        warnings: list[str] = []
        if not self.jwt_secret_key:
            warnings.append("JWT_SECRET_KEY is not set; the API cannot issue tokens")
        elif len(self.jwt_secret_key) < _MIN_SECRET_LENGTH:
            warnings.append(
                f"JWT_SECRET_KEY is shorter than {_MIN_SECRET_LENGTH} characters. "
                'Generate one with: python -c "import secrets; print(secrets.token_hex(32))"'
            )
        if not self.admin_configured:
            warnings.append(
                "ADMIN_EMAIL and ADMIN_PASSWORD (or ADMIN_PASSWORD_HASH) are not set; "
                "admin login will fail"
            )
        elif self.admin_password and not self.admin_password_hash and self.is_production:
            warnings.append("ADMIN_PASSWORD is stored in plain text; prefer ADMIN_PASSWORD_HASH")
        if self.debug and self.is_production:
            warnings.append("DEBUG is enabled in production")
        return warnings


@lru_cache
def get_settings() -> Settings:
    """Get the cached settings instance."""
    return Settings()


