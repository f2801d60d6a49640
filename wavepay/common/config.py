"""Central environment-driven settings for the monetization service.

The service process loads this once at startup. Behavior is controlled by
environment variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict

SECRET_FIELD_MARKERS = ("key", "secret", "password", "token", "dsn")


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "monetization"
    log_level: str = "INFO"
    kafka_bootstrap_servers: str = "kafka:9092"
    redis_url: str = "redis://redis:6379/0"
    postgres_dsn: str
    api_key: str
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    rate_limit_per_minute: int = 30

    paystack_secret_key: str
    paystack_base_url: str = "https://api.paystack.co"
    gateway_timeout_seconds: float = 10.0
    frontend_url: str = "http://localhost:3000"

    quota_timezone: str = "Africa/Lagos"

    boost_pool_size: int = 50
    boost_top_n: int = 10
    boost_max_per_window: int = 2
    boost_window_hours: int = 24
    spam_queue_maxsize: int = 1000

    subscription_batch_size: int = 50
    subscription_reminder_days: int = 3
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def redacted(self) -> dict[str, object]:
        """Settings for the startup log line, with credential-like fields masked."""

        return {
            name: "<redacted>" if any(marker in name for marker in SECRET_FIELD_MARKERS) else value
            for name, value in self.model_dump().items()
        }


settings = CommonSettings()
