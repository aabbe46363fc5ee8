"""Payment orchestration: token -> order -> status.

Each flow re-authenticates; tokens are never cached. Steps run sequentially
because each one needs the previous step's output (bearer token, then tracking
id). Nothing here is retried: order submission is not idempotent at the
gateway, so a blind retry could create a second transaction.
"""

from pesaproxy.common.config import GatewayConfig
from pesaproxy.common.errors import InvalidNotificationIdError, OrderError, StatusError
from pesaproxy.common.logging import bind_order, logger
from pesaproxy.common.metrics import (
    payment_status_observed_total,
    payments_created_total,
    status_mismatch_total,
)
from pesaproxy.common.status import PaymentStatus, StatusObservation, classify_status, reconcile
from pesaproxy.common.store import ReconciliationStore
from pesaproxy.services.gateway.client import PesapalClient, build_payment_url
from pesaproxy.services.orchestrator.schemas import PaymentCreated, StatusResult, normalize_order


def _as_float(value) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _as_int(value) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class PaymentOrchestrator:
    """Runs the payment flow against an injected, immutable gateway config."""

    def __init__(
        self,
        config: GatewayConfig,
        store: ReconciliationStore,
        client: PesapalClient | None = None,
        service_name: str = "pesaproxy",
    ) -> None:
        self.config = config
        self.store = store
        self.client = client or PesapalClient(config, service_name=service_name)
        self.service_name = service_name

    async def _resolve_notification_id(self, token: str) -> str:
        if self.config.notification_id:
            return self.config.notification_id
        logger.info("registering ipn url=%s", self.config.ipn_url)
        return await self.client.register_ipn(token, self.config.ipn_url)

    async def create_payment(self, raw: dict) -> PaymentCreated:
        """Validate, authenticate, submit, and build the payment page URL."""

        order = normalize_order(raw, self.config)
        if not self.config.notification_id and not self.config.ipn_url:
            raise InvalidNotificationIdError(
                "No notification id configured; set PESAPAL_NOTIFICATION_ID or PROXY_BASE_URL"
            )
        bind_order(merchant_reference=order.merchant_reference)

        logger.info("requesting gateway token")
        token = await self.client.request_token()
        notification_id = await self._resolve_notification_id(token)

        logger.info("submitting order amount=%s currency=%s", order.amount, order.currency)
        response = await self.client.submit_order(token, order.to_gateway_payload(notification_id))

        tracking_id = response.get("order_tracking_id") if isinstance(response, dict) else None
        if not tracking_id:
            raise OrderError("Gateway response did not include order_tracking_id", details=response)
        bind_order(tracking_id=tracking_id)

        merchant_reference = response.get("merchant_reference") or order.merchant_reference
        redirect_url = response.get("redirect_url") or None
        payment_url = redirect_url or build_payment_url(self.config.environment, tracking_id, merchant_reference)

        self.observe(tracking_id, PaymentStatus.CREATED, source="submit")
        payments_created_total.labels(service=self.service_name).inc()
        logger.info("order submitted order_tracking_id=%s", tracking_id)
        return PaymentCreated(
            order_tracking_id=tracking_id,
            merchant_reference=merchant_reference,
            redirect_url=redirect_url,
            payment_url=payment_url,
        )

    async def check_status(self, tracking_id: str) -> StatusResult:
        """Query the gateway and classify, without touching reconciliation state."""

        bind_order(tracking_id=tracking_id)
        token = await self.client.request_token()
        payload = await self.client.get_transaction_status(token, tracking_id)
        if not isinstance(payload, dict):
            raise StatusError("Gateway status response was not an object", details=payload)
        description = payload.get("payment_status_description")
        classified = classify_status(description)
        return StatusResult(
            order_tracking_id=tracking_id,
            status=classified.value,
            gateway_status=classified.value,
            payment_status_description=description,
            payment_method=payload.get("payment_method"),
            amount=_as_float(payload.get("amount")),
            currency=payload.get("currency"),
            confirmation_code=payload.get("confirmation_code"),
            merchant_reference=payload.get("merchant_reference"),
            payment_account=payload.get("payment_account"),
            status_code=_as_int(payload.get("status_code")),
        )

    async def poll_status(self, tracking_id: str) -> StatusResult:
        """Poll path: gateway status merged with what IPN pushes already reported."""

        result = await self.check_status(tracking_id)
        effective, mismatch = self.observe(
            tracking_id,
            PaymentStatus(result.gateway_status),
            source="poll",
            description=result.payment_status_description,
        )
        return result.model_copy(update={"status": effective.status.value, "status_mismatch": mismatch})

    def observe(
        self,
        tracking_id: str,
        status: PaymentStatus,
        source: str,
        description: str | None = None,
    ) -> tuple[StatusObservation, bool]:
        """Record one observation; terminal states are never overwritten."""

        incoming = StatusObservation(tracking_id=tracking_id, status=status, source=source, description=description)
        previous = self.store.get_observation(tracking_id)
        effective, mismatch = reconcile(previous, incoming)
        payment_status_observed_total.labels(service=self.service_name, source=source, status=status.value).inc()
        if mismatch:
            status_mismatch_total.labels(service=self.service_name, source=source).inc()
            logger.warning(
                "status_mismatch order_tracking_id=%s kept=%s(%s) observed=%s(%s)",
                tracking_id,
                previous.status.value,
                previous.source,
                status.value,
                source,
            )
        if effective is incoming:
            self.store.put_observation(incoming)
        return effective, mismatch
