"""Order request/response schemas and gateway payload normalisation."""

from decimal import Decimal, InvalidOperation
from time import time
from typing import Any

from pydantic import BaseModel, Field

from pesaproxy.common.config import GatewayConfig
from pesaproxy.common.errors import ValidationError


MAX_DESCRIPTION_LENGTH = 100
DEFAULT_CURRENCY = "KES"

# Flat caller keys accepted as billing fields, mapped to gateway names.
_FLAT_BILLING_FIELDS = {
    "email": "email_address",
    "email_address": "email_address",
    "phone": "phone_number",
    "phone_number": "phone_number",
    "country_code": "country_code",
    "first_name": "first_name",
    "middle_name": "middle_name",
    "last_name": "last_name",
}


class BillingAddress(BaseModel):
    """Billing block; absent fields fall back to placeholders instead of failing."""

    email_address: str = ""
    phone_number: str = ""
    country_code: str = "KE"
    first_name: str = "Customer"
    middle_name: str = ""
    last_name: str = "Customer"
    line_1: str = ""
    line_2: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    zip_code: str = ""


class OrderRequest(BaseModel):
    """Normalised order as submitted to `SubmitOrderRequest`."""

    id: str = Field(min_length=1)
    currency: str = Field(min_length=3, max_length=3)
    amount: Decimal = Field(gt=0)
    description: str = Field(min_length=1, max_length=MAX_DESCRIPTION_LENGTH)
    callback_url: str = Field(min_length=1)
    notification_id: str | None = None
    billing_address: BillingAddress = Field(default_factory=BillingAddress)

    @property
    def merchant_reference(self) -> str:
        return self.id

    def to_gateway_payload(self, notification_id: str) -> dict[str, Any]:
        payload = self.model_dump(mode="json")
        payload["amount"] = float(self.amount)
        payload["notification_id"] = notification_id
        return payload


class PaymentCreated(BaseModel):
    """Response for `POST /api/pesapal/pay`."""

    order_tracking_id: str
    merchant_reference: str
    redirect_url: str | None = None
    payment_url: str
    status: str = "created"


class StatusResult(BaseModel):
    """Classified gateway status for one tracking id."""

    order_tracking_id: str
    status: str
    gateway_status: str
    status_mismatch: bool = False
    payment_status_description: str | None = None
    payment_method: str | None = None
    amount: float | None = None
    currency: str | None = None
    confirmation_code: str | None = None
    merchant_reference: str | None = None
    payment_account: str | None = None
    status_code: int | None = None


def generate_merchant_reference() -> str:
    return f"ORDER-{int(time() * 1000)}"


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def normalize_order(raw: dict[str, Any], config: GatewayConfig) -> OrderRequest:
    """Validate caller input and fill defaults.

    Accepts the order flat or wrapped as `{"orderData": {...}}`. Raises
    `ValidationError` naming every missing/invalid field; nothing is sent to
    the gateway for a partial order.
    """

    if not isinstance(raw, dict):
        raise ValidationError("order body must be a JSON object", fields=["orderData"])
    data = raw.get("orderData", raw)
    if not isinstance(data, dict):
        raise ValidationError("orderData must be a JSON object", fields=["orderData"])

    missing: list[str] = []
    invalid: list[str] = []

    amount = None
    if _blank(data.get("amount")):
        missing.append("amount")
    else:
        try:
            amount = Decimal(str(data["amount"]))
        except InvalidOperation:
            invalid.append("amount")
        else:
            # The gateway takes a JSON number, so the float form must be finite and positive too.
            if not amount.is_finite() or amount <= 0 or not 0 < float(amount) < float("inf"):
                invalid.append("amount")

    currency = data.get("currency", DEFAULT_CURRENCY)
    if _blank(currency):
        missing.append("currency")
    elif not isinstance(currency, str) or len(currency.strip()) != 3 or not currency.strip().isalpha():
        invalid.append("currency")

    description = data.get("description")
    if _blank(description):
        missing.append("description")

    callback_url = data.get("callback_url")
    if "callback_url" not in data:
        callback_url = config.default_callback_url
    if _blank(callback_url):
        missing.append("callback_url")

    if missing or invalid:
        parts = []
        if missing:
            parts.append(f"missing required fields: {', '.join(missing)}")
        if invalid:
            parts.append(f"invalid fields: {', '.join(invalid)}")
        raise ValidationError("; ".join(parts), fields=missing + invalid)

    billing: dict[str, Any] = {}
    nested = data.get("billing_address")
    if isinstance(nested, dict):
        billing.update({k: str(v) for k, v in nested.items() if not _blank(v)})
    for caller_key, gateway_key in _FLAT_BILLING_FIELDS.items():
        value = data.get(caller_key)
        if not _blank(value) and gateway_key not in billing:
            billing[gateway_key] = str(value)

    merchant_reference = data.get("merchant_reference") or data.get("id")
    return OrderRequest(
        id=str(merchant_reference) if not _blank(merchant_reference) else generate_merchant_reference(),
        currency=str(currency).strip().upper(),
        amount=amount,
        description=str(description).strip()[:MAX_DESCRIPTION_LENGTH],
        callback_url=str(callback_url),
        notification_id=config.notification_id,
        billing_address=BillingAddress.model_validate(billing),
    )
