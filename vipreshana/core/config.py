from functools import lru_cache
from secrets import token_urlsafe
from typing import List

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    api_prefix: str = "/api"
    project_name: str = "Vipreshana Logistics API"
    cors_origins_raw: str = Field(
        default="http://localhost:3000,https://vipreshana-2.vercel.app",
        alias="CORS_ORIGINS",
    )
    secret_key: str | None = Field(
        default=None,
        description=(
            "Key used to digest one-time codes before they are stored; required when "
            "a database or Redis is shared between processes"
        ),
    )

    database_url: str | None = Field(
        default=None,
        description="SQLAlchemy async connection string; in-memory stores are used when unset",
    )
    redis_url: str | None = Field(
        default=None,
        description="Redis connection string used for rate limiting when set",
    )

    otp_code_length: int = Field(default=6, ge=4, le=8)
    otp_ttl_seconds: int = Field(default=300, ge=30)
    otp_max_attempts: int = Field(default=5, ge=1)

    otp_send_limit: int = Field(default=5, ge=1)
    otp_send_window_seconds: int = Field(default=900, ge=1)
    otp_verify_limit: int = Field(default=10, ge=1)
    otp_verify_window_seconds: int = Field(default=300, ge=1)
    otp_send_client_limit: int = Field(
        default=20, ge=1, description="Sends allowed per client address per window"
    )
    otp_verify_client_limit: int = Field(
        default=30, ge=1, description="Verifications allowed per client address per window"
    )

    registration_requires_otp: bool = Field(
        default=False,
        description="Require a verification code in the registration payload",
    )

    sms_gateway_url: str | None = Field(
        default=None,
        description="HTTP endpoint of the SMS provider; messages are only logged when unset",
    )
    sms_api_key: str | None = None
    sms_sender_id: str = "VIPRSH"
    sms_timeout_seconds: float = Field(default=10.0, gt=0)
    booking_notifications_enabled: bool = Field(
        default=True,
        description="Text the customer when a booking is accepted, completed or cancelled",
    )

    sweep_interval_seconds: int = Field(
        default=300,
        ge=0,
        description="Seconds between expired OTP/rate window sweeps (0 disables the sweeper)",
    )

    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False, description="Render structured logs as JSON lines")

    enable_prometheus_metrics: bool = Field(
        default=True, description="Expose Prometheus metrics endpoint when true"
    )
    prometheus_metrics_path: str = Field(
        default="/metrics/prometheus",
        description="Path where scraped Prometheus metrics are served",
    )
    otel_exporter_otlp_endpoint: str | None = Field(
        default=None,
        description="OTLP HTTP endpoint for exporting traces",
    )
    otel_exporter_otlp_headers: str | None = Field(
        default=None,
        description="Comma separated key=value pairs added to OTLP requests",
    )
    otel_service_name: str | None = Field(
        default=None, description="Optional override for OpenTelemetry service.name"
    )

    @model_validator(mode="after")
    def _require_shared_secret(self) -> "Settings":
        if self.secret_key:
            return self
        if self.database_url or self.redis_url:
            raise ValueError("SECRET_KEY must be set when DATABASE_URL or REDIS_URL is configured")
        # In-memory challenges never outlive this process.
        self.secret_key = token_urlsafe(32)
        return self

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins_raw.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()
