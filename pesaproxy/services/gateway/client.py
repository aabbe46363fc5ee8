"""Async client for the Pesapal v3 REST API.

One short-lived `httpx.AsyncClient` per call, an explicit timeout on every
request, and no retries: a failed call surfaces to the caller as a typed
`GatewayError`. Pesapal frequently reports failures inside an HTTP 200 body
(`{"error": {...}, "status": "500"}`), so bodies are inspected as well as
status codes.
"""

import json
import re
from time import perf_counter
from typing import Any
from urllib.parse import urlencode

import httpx

from pesaproxy.common.config import PESAPAL_BASE_URLS, GatewayConfig
from pesaproxy.common.errors import (
    AuthError,
    GatewayError,
    GatewayTimeoutError,
    InvalidNotificationIdError,
    NetworkError,
    OrderError,
    StatusError,
)
from pesaproxy.common.logging import logger
from pesaproxy.common.metrics import gateway_request_duration_seconds, gateway_requests_total
from pesaproxy.common.tracing import gateway_span


TOKEN_PATH = "/api/Auth/RequestToken"
REGISTER_IPN_PATH = "/api/URLSetup/RegisterIPN"
LIST_IPN_PATH = "/api/URLSetup/GetIpnList"
SUBMIT_ORDER_PATH = "/api/Transactions/SubmitOrderRequest"
TRANSACTION_STATUS_PATH = "/api/Transactions/GetTransactionStatus"
PAYMENT_PAGE_PATH = "/api/Transactions/Redirect"

# Checked in order; the gateway has used more than one name for the token.
TOKEN_FIELDS = ("token", "access_token", "accessToken")
# Fallback: any string at least this long is treated as a token candidate.
MIN_FALLBACK_TOKEN_LENGTH = 40
_NON_TOKEN_FIELDS = {"message", "error", "status", "expiryDate", "expires_in"}

_NOTIFICATION_ID_PATTERN = re.compile(r"notification[_ ]?id|ipn", re.IGNORECASE)


def extract_token(payload: Any) -> str | None:
    """Pull a bearer token out of a token response.

    Known field names win. Failing those, the longest string value of at least
    `MIN_FALLBACK_TOKEN_LENGTH` characters is used, which keeps working if the
    gateway renames the field again.
    """

    if not isinstance(payload, dict):
        return None
    for name in TOKEN_FIELDS:
        value = payload.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    candidates = [
        value.strip()
        for key, value in payload.items()
        if key not in _NON_TOKEN_FIELDS and isinstance(value, str)
    ]
    candidates = [value for value in candidates if len(value) >= MIN_FALLBACK_TOKEN_LENGTH and " " not in value]
    if not candidates:
        return None
    return max(candidates, key=len)


def build_payment_url(environment: str, tracking_id: str, merchant_reference: str | None = None) -> str:
    """Hosted payment page URL for a submitted order; no network call needed."""

    base = PESAPAL_BASE_URLS.get(environment, PESAPAL_BASE_URLS["sandbox"])
    params = {"OrderTrackingId": tracking_id}
    if merchant_reference:
        params["OrderMerchantReference"] = merchant_reference
    return f"{base}{PAYMENT_PAGE_PATH}?{urlencode(params)}"


def _gateway_error(payload: Any) -> dict | None:
    """Return the error object embedded in a gateway body, if it carries one."""

    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict) and any(error.get(k) for k in ("message", "code", "error_type")):
        return error
    if isinstance(error, str) and error.strip():
        return {"message": error}
    if _body_status(payload) is not None:
        return {"message": payload.get("message") or "gateway reported failure"}
    return None


def _body_status(payload: Any) -> int | None:
    """Status code the gateway put in the body, when it signals a failure."""

    if not isinstance(payload, dict):
        return None
    try:
        value = int(payload.get("status"))
    except (TypeError, ValueError):
        return None
    return value if 400 <= value < 600 else None


class PesapalClient:
    """Thin wrapper over the five Pesapal endpoints this proxy uses."""

    def __init__(
        self,
        config: GatewayConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        service_name: str = "pesaproxy",
    ) -> None:
        self.config = config
        self.transport = transport
        self.service_name = service_name

    async def _call(
        self,
        endpoint: str,
        method: str,
        path: str,
        error_cls: type[GatewayError],
        token: str | None = None,
        json_body: dict | None = None,
        params: dict | None = None,
    ) -> Any:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        outcome = "ok"
        start = perf_counter()
        try:
            with gateway_span(endpoint, env=self.config.environment) as span:
                try:
                    async with httpx.AsyncClient(
                        base_url=self.config.base_url,
                        timeout=self.config.timeout_seconds,
                        transport=self.transport,
                    ) as client:
                        resp = await client.request(method, path, headers=headers, json=json_body, params=params)
                except httpx.TimeoutException as exc:
                    outcome = "timeout"
                    logger.warning("gateway_timeout endpoint=%s timeout_s=%s", endpoint, self.config.timeout_seconds)
                    raise GatewayTimeoutError(
                        f"{endpoint} timed out after {self.config.timeout_seconds:g}s"
                    ) from exc
                except httpx.TransportError as exc:
                    outcome = "network_error"
                    logger.warning("gateway_unreachable endpoint=%s error=%s", endpoint, exc)
                    raise NetworkError(f"{endpoint} failed: {exc}") from exc
                span.set_attribute("http.status_code", resp.status_code)

            try:
                payload = resp.json()
            except ValueError:
                payload = {"raw": resp.text}

            error = _gateway_error(payload)
            if resp.status_code >= 400 or error is not None:
                outcome = "rejected"
                status_code = resp.status_code if resp.status_code >= 400 else _body_status(payload)
                message = (error or {}).get("message") or f"{endpoint} failed with HTTP {resp.status_code}"
                logger.error(
                    "gateway_rejected endpoint=%s http_status=%s body=%s",
                    endpoint,
                    resp.status_code,
                    json.dumps(payload, default=str)[:1000],
                )
                raise error_cls(message, status_code=status_code, details=payload)
            return payload
        finally:
            gateway_request_duration_seconds.labels(service=self.service_name, endpoint=endpoint).observe(
                max(0.0, perf_counter() - start)
            )
            gateway_requests_total.labels(service=self.service_name, endpoint=endpoint, outcome=outcome).inc()

    async def request_token(self) -> str:
        """Exchange the credential pair for a short-lived bearer token."""

        payload = await self._call(
            "RequestToken",
            "POST",
            TOKEN_PATH,
            AuthError,
            json_body={
                "consumer_key": self.config.consumer_key,
                "consumer_secret": self.config.consumer_secret,
            },
        )
        token = extract_token(payload)
        if not token:
            raise AuthError(
                "Gateway token response did not contain a token",
                status_code=_body_status(payload),
                details=payload,
            )
        return token

    async def register_ipn(self, token: str, url: str, notification_type: str = "POST") -> str:
        """Register an IPN URL and return the gateway's `ipn_id`."""

        payload = await self._call(
            "RegisterIPN",
            "POST",
            REGISTER_IPN_PATH,
            OrderError,
            token=token,
            json_body={"url": url, "ipn_notification_type": notification_type},
        )
        ipn_id = payload.get("ipn_id") if isinstance(payload, dict) else None
        if not ipn_id:
            raise InvalidNotificationIdError("Gateway did not return an ipn_id", details=payload)
        logger.info("ipn_registered url=%s ipn_id=%s", url, ipn_id)
        return ipn_id

    async def list_ipns(self, token: str) -> list[dict]:
        payload = await self._call("GetIpnList", "GET", LIST_IPN_PATH, OrderError, token=token)
        return payload if isinstance(payload, list) else []

    async def submit_order(self, token: str, order: dict) -> dict:
        """Submit a normalised order; each call may create a new gateway transaction."""

        try:
            return await self._call(
                "SubmitOrderRequest",
                "POST",
                SUBMIT_ORDER_PATH,
                OrderError,
                token=token,
                json_body=order,
            )
        except OrderError as exc:
            if _NOTIFICATION_ID_PATTERN.search(json.dumps(exc.details, default=str)):
                raise InvalidNotificationIdError(
                    "Gateway rejected the notification id; register the IPN URL and update "
                    "PESAPAL_NOTIFICATION_ID",
                    status_code=exc.status_code,
                    details=exc.details,
                ) from exc
            raise

    async def get_transaction_status(self, token: str, tracking_id: str) -> dict:
        """Fetch the status descriptor for one tracking id."""

        try:
            return await self._call(
                "GetTransactionStatus",
                "GET",
                TRANSACTION_STATUS_PATH,
                StatusError,
                token=token,
                params={"orderTrackingId": tracking_id},
            )
        except StatusError as exc:
            # Failed and reversed payments come back with an error object next to
            # a valid descriptor; that is a status, not a failed query.
            if isinstance(exc.details, dict) and exc.details.get("payment_status_description"):
                return exc.details
            raise
