"""Process entrypoint: config, logging, tracing and service wiring.

Run with `uvicorn pesaproxy.services.api.main:app` or the `pesaproxy`
console script.
"""

from pesaproxy.common.config import GatewayConfig, settings
from pesaproxy.common.logging import configure_logging
from pesaproxy.common.startup import log_startup_config
from pesaproxy.common.store import build_store
from pesaproxy.common.tracing import instrument_app, setup_tracing
from pesaproxy.services.api.routes import create_app
from pesaproxy.services.notification.service import NotificationService
from pesaproxy.services.orchestrator.service import PaymentOrchestrator

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings,
    [
        "pesapal_env",
        "pesapal_consumer_key",
        "pesapal_consumer_secret",
        "pesapal_notification_id",
        "proxy_base_url",
        "frontend_return_url",
        "gateway_timeout_seconds",
        "redis_url",
    ],
)
gateway_config = GatewayConfig.from_settings(settings)
store = build_store(settings.redis_url)
orchestrator = PaymentOrchestrator(gateway_config, store, service_name=settings.service_name)
notifications = NotificationService(
    orchestrator,
    store,
    dedupe_ttl_seconds=settings.notification_dedupe_ttl_seconds,
    service_name=settings.service_name,
)
app = create_app(
    orchestrator,
    notifications,
    frontend_return_url=settings.frontend_return_url,
    service_name=settings.service_name,
)
instrument_app(app)


def run() -> None:
    """Console entrypoint: serve the app with uvicorn."""

    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)
