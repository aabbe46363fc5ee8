"""Central environment-driven settings for the proxy process.

Settings are loaded once at startup (see `.env.example`). Business code never
reads them directly: `GatewayConfig.from_settings` freezes the values it needs
and that object is injected into the client and orchestrator.
"""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


PESAPAL_BASE_URLS: dict[str, str] = {
    "sandbox": "https://cybqa.pesapal.com/pesapalv3",
    "live": "https://pay.pesapal.com/v3",
}


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "pesaproxy"
    log_level: str = "INFO"
    port: int = 3001
    pesapal_consumer_key: str
    pesapal_consumer_secret: str
    pesapal_env: str = "sandbox"
    pesapal_notification_id: str | None = None
    proxy_base_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("PROXY_BASE_URL", "REACT_APP_PROXY_URL"),
    )
    frontend_return_url: str | None = None
    gateway_timeout_seconds: float = Field(default=30.0, ge=10.0, le=30.0)
    redis_url: str | None = None
    notification_dedupe_ttl_seconds: int = 86400
    tracing_enabled: bool = False
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


class GatewayConfig(BaseModel):
    """Immutable gateway configuration handed to the payment flow."""

    model_config = ConfigDict(frozen=True)

    consumer_key: str
    consumer_secret: str
    environment: str = "sandbox"
    notification_id: str | None = None
    proxy_base_url: str | None = None
    timeout_seconds: float = 30.0

    @property
    def base_url(self) -> str:
        return PESAPAL_BASE_URLS.get(self.environment, PESAPAL_BASE_URLS["sandbox"])

    @property
    def ipn_url(self) -> str | None:
        if not self.proxy_base_url:
            return None
        return f"{self.proxy_base_url.rstrip('/')}/api/pesapal/ipn"

    @property
    def default_callback_url(self) -> str | None:
        if not self.proxy_base_url:
            return None
        return f"{self.proxy_base_url.rstrip('/')}/api/pesapal/callback"

    @classmethod
    def from_settings(cls, source: CommonSettings) -> "GatewayConfig":
        environment = "live" if source.pesapal_env.lower() == "live" else "sandbox"
        return cls(
            consumer_key=source.pesapal_consumer_key,
            consumer_secret=source.pesapal_consumer_secret,
            environment=environment,
            notification_id=source.pesapal_notification_id or None,
            proxy_base_url=source.proxy_base_url,
            timeout_seconds=source.gateway_timeout_seconds,
        )


settings = CommonSettings()
