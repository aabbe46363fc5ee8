"""IPN receiver.

The gateway retries a notification until it gets HTTP 200, so `acknowledge`
is an error boundary: every outcome (processed, duplicate, malformed, failed)
produces the same success acknowledgment and differs only in logs/metrics.
"""

from typing import Any, Mapping

from pesaproxy.common.logging import bind_order, logger
from pesaproxy.common.metrics import ipn_received_total
from pesaproxy.common.status import classify_status
from pesaproxy.common.store import ReconciliationStore
from pesaproxy.services.notification.schemas import (
    NotificationParseError,
    PaymentNotification,
    acknowledgment,
    parse_notification,
)
from pesaproxy.services.orchestrator.service import PaymentOrchestrator


class NotificationService:
    """Records IPN deliveries once and feeds them into status reconciliation."""

    def __init__(
        self,
        orchestrator: PaymentOrchestrator,
        store: ReconciliationStore,
        dedupe_ttl_seconds: int = 86400,
        service_name: str = "pesaproxy",
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.dedupe_ttl_seconds = dedupe_ttl_seconds
        self.service_name = service_name

    def _count(self, outcome: str) -> None:
        ipn_received_total.labels(service=self.service_name, outcome=outcome).inc()

    async def acknowledge(self, query: Mapping[str, Any], body: bytes) -> dict[str, Any]:
        """Parse and process one delivery; never raises."""

        try:
            notification = parse_notification(query, body)
        except NotificationParseError as exc:
            logger.warning("ipn_malformed error=%s body=%r", exc, body[:500])
            self._count("malformed")
            return acknowledgment(None)
        except Exception as exc:
            # Decoder blowups (e.g. RecursionError on deeply nested JSON) are still malformed input.
            logger.warning("ipn_malformed error_type=%s body=%r", type(exc).__name__, body[:200])
            self._count("malformed")
            return acknowledgment(None)

        try:
            bind_order(notification.tracking_id, notification.merchant_reference)
            processed = await self.process(notification)
            self._count("processed" if processed else "duplicate")
        except Exception:
            logger.exception("ipn_processing_failed payload=%s", notification.model_dump())
            self._count("failed")
        return acknowledgment(notification)

    async def process(self, notification: PaymentNotification) -> bool:
        """Record a notification; returns False when it was already handled.

        Pesapal IPNs carry only identifiers, so the outcome is looked up with a
        status query when the payload does not include it.
        """

        logger.info(
            "ipn_received type=%s order_tracking_id=%s",
            notification.notification_type,
            notification.tracking_id,
        )
        if notification.payment_status_description is None:
            result = await self.orchestrator.check_status(notification.tracking_id)
            notification = notification.model_copy(
                update={
                    "payment_status_description": result.payment_status_description or "",
                    "payment_method": notification.payment_method or result.payment_method,
                    "amount": notification.amount if notification.amount is not None else result.amount,
                    "account": notification.account or result.payment_account,
                    "merchant_reference": notification.merchant_reference or result.merchant_reference,
                }
            )

        if not self.store.claim(notification.dedupe_key(), self.dedupe_ttl_seconds):
            logger.info("duplicate ipn skipped key=%s", notification.dedupe_key())
            return False

        self.store.append_notification(notification.model_dump())
        effective, mismatch = self.orchestrator.observe(
            notification.tracking_id,
            classify_status(notification.payment_status_description),
            source="ipn",
            description=notification.payment_status_description,
        )
        logger.info(
            "ipn_recorded order_tracking_id=%s status=%s mismatch=%s",
            notification.tracking_id,
            effective.status.value,
            mismatch,
        )
        return True
