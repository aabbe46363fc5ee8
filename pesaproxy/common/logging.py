"""Structured JSON logging with request and order context fields.

Every record carries the trace id of the inbound request plus the tracking id
and merchant reference of the order being worked on, so one payment can be
followed across pay, poll, callback and IPN requests.
"""

import logging
import sys
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from pesaproxy.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
order_tracking_id_ctx: ContextVar[str] = ContextVar("order_tracking_id", default="")
merchant_reference_ctx: ContextVar[str] = ContextVar("merchant_reference", default="")


def bind_order(tracking_id: str | None = None, merchant_reference: str | None = None) -> None:
    """Attach order identifiers to log records for the rest of this request."""

    if tracking_id:
        order_tracking_id_ctx.set(tracking_id)
    if merchant_reference:
        merchant_reference_ctx.set(merchant_reference)


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.pesapal_env = settings.pesapal_env
        record.trace_id = trace_id_ctx.get()
        record.order_tracking_id = order_tracking_id_ctx.get()
        record.merchant_reference = merchant_reference_ctx.get()
        return True


def configure_logging() -> None:
    """Send JSON lines to stdout; call once at process start."""

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    handler.setFormatter(
        JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(service_name)s %(pesapal_env)s %(trace_id)s "
            "%(order_tracking_id)s %(merchant_reference)s %(message)s"
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    # httpx logs every request line at INFO, including gateway URLs with query strings.
    logging.getLogger("httpx").setLevel(logging.WARNING)


logger = logging.getLogger("pesaproxy")
