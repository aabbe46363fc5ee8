"""IPN payload parsing and acknowledgment shape."""

import json
from typing import Any, Mapping

from pydantic import BaseModel


DEFAULT_NOTIFICATION_TYPE = "IPNCHANGE"

# Gateway (PascalCase/camelCase) and snake_case spellings of each field.
_ALIASES: dict[str, tuple[str, ...]] = {
    "tracking_id": ("OrderTrackingId", "orderTrackingId", "order_tracking_id", "tracking_id"),
    "merchant_reference": (
        "OrderMerchantReference",
        "orderMerchantReference",
        "merchant_reference",
    ),
    "notification_type": ("OrderNotificationType", "orderNotificationType", "notification_type"),
    "payment_status_description": ("payment_status_description", "paymentStatusDescription"),
    "payment_method": ("payment_method", "paymentMethod"),
    "amount": ("amount",),
    "account": ("account", "payment_account"),
}


class NotificationParseError(ValueError):
    """IPN payload could not be understood."""


class PaymentNotification(BaseModel):
    tracking_id: str
    merchant_reference: str | None = None
    notification_type: str = DEFAULT_NOTIFICATION_TYPE
    payment_status_description: str | None = None
    payment_method: str | None = None
    amount: float | None = None
    account: str | None = None

    def dedupe_key(self) -> str:
        return ":".join(
            (self.tracking_id, self.notification_type, (self.payment_status_description or "").lower())
        )


def _pick(data: Mapping[str, Any], field: str) -> Any:
    for alias in _ALIASES[field]:
        value = data.get(alias)
        if value not in (None, ""):
            return value
    return None


def parse_notification(query: Mapping[str, Any], body: bytes) -> PaymentNotification:
    """Build a notification from query params and/or a JSON body (body wins)."""

    data: dict[str, Any] = dict(query)
    if body and body.strip():
        try:
            decoded = json.loads(body)
        except ValueError as exc:
            raise NotificationParseError(f"IPN body is not valid JSON: {exc}") from exc
        if not isinstance(decoded, dict):
            raise NotificationParseError("IPN body must be a JSON object")
        data.update(decoded)

    tracking_id = _pick(data, "tracking_id")
    if not tracking_id:
        raise NotificationParseError("IPN payload has no OrderTrackingId")

    amount = _pick(data, "amount")
    try:
        amount = float(amount) if amount is not None else None
    except (TypeError, ValueError):
        amount = None

    return PaymentNotification(
        tracking_id=str(tracking_id),
        merchant_reference=_str_or_none(_pick(data, "merchant_reference")),
        notification_type=str(_pick(data, "notification_type") or DEFAULT_NOTIFICATION_TYPE),
        payment_status_description=_str_or_none(_pick(data, "payment_status_description")),
        payment_method=_str_or_none(_pick(data, "payment_method")),
        amount=amount,
        account=_str_or_none(_pick(data, "account")),
    )


def _str_or_none(value: Any) -> str | None:
    return None if value is None else str(value)


def acknowledgment(notification: PaymentNotification | None) -> dict[str, Any]:
    """Body the gateway expects back; always reports success."""

    return {
        "orderNotificationType": notification.notification_type if notification else DEFAULT_NOTIFICATION_TYPE,
        "orderTrackingId": notification.tracking_id if notification else None,
        "orderMerchantReference": notification.merchant_reference if notification else None,
        "status": 200,
    }
