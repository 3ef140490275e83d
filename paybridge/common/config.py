"""Central environment-driven settings shared by the checkout and webhook services.

Each service process loads this once at startup. Service-specific behavior is
controlled by environment variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "unknown-service"
    log_level: str = "INFO"
    database_url: str
    api_key: str
    redis_url: str = ""
    checkout_guard_ttl_seconds: int = 120
    gateway_base_url: str = "https://api.pagar.me/core/v5"
    gateway_secret_key: str
    gateway_public_key: str
    gateway_test_secret_key: str = ""
    gateway_test_public_key: str = ""
    gateway_test_mode: bool = True
    gateway_timeout_seconds: float = 15.0
    tokenize_max_attempts: int = 3
    tokenize_backoff_seconds: float = 0.5
    pix_expires_in_seconds: int = 3600
    statement_descriptor: str = "PAYBRIDGE"
    webhook_username: str = ""
    webhook_password: str = ""
    tracing_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def gateway_keys(self) -> tuple[str, str, str]:
        """Return `(secret_key, public_key, environment)` for the active gateway mode."""

        if self.gateway_test_mode and self.gateway_test_secret_key and self.gateway_test_public_key:
            return self.gateway_test_secret_key, self.gateway_test_public_key, "test"
        return self.gateway_secret_key, self.gateway_public_key, "live"


settings = CommonSettings()
