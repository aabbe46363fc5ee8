"""Routes for the caller-facing HTTP surface of the proxy.

Frontends create payments and poll status here; the gateway posts IPNs and
redirects users back through the callback route.
"""

from time import perf_counter
from urllib.parse import urlencode
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse

from pesaproxy.common.errors import GatewayError, ValidationError
from pesaproxy.common.logging import logger, trace_id_ctx
from pesaproxy.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from pesaproxy.services.notification.service import NotificationService
from pesaproxy.services.orchestrator.service import PaymentOrchestrator


def create_app(
    orchestrator: PaymentOrchestrator,
    notifications: NotificationService,
    frontend_return_url: str | None = None,
    service_name: str = "pesaproxy",
) -> FastAPI:
    """Build the FastAPI app around already-configured services."""

    app = FastAPI(title="Pesapal Proxy")
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=".*",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Record request count/latency and bind a trace id for log correlation."""

        trace_id_ctx.set(request.headers.get("x-correlation-id") or str(uuid4()))
        start = perf_counter()
        route = request.url.path
        method = request.method
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            route_obj = request.scope.get("route")
            if route_obj is not None and getattr(route_obj, "path", None):
                route = route_obj.path
            return response
        finally:
            http_request_duration_seconds.labels(service=service_name, route=route, method=method).observe(
                max(0.0, perf_counter() - start)
            )
            http_requests_total.labels(
                service=service_name,
                route=route,
                method=method,
                status_code=str(status_code),
            ).inc()

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(_: Request, exc: GatewayError):
        logger.warning("request_failed code=%s status=%s message=%s", exc.code, exc.status_code, exc.message)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.get("/")
    def root():
        return PlainTextResponse("Pesapal proxy running")

    @app.post("/api/pesapal/pay")
    async def create_payment(request: Request):
        """Create a payment and return its tracking id and payment page URL."""

        try:
            raw = await request.json()
        except ValueError as exc:
            raise ValidationError("request body must be JSON", fields=["orderData"]) from exc
        created = await orchestrator.create_payment(raw)
        return created.model_dump()

    @app.get("/api/pesapal/status")
    async def payment_status_by_query(request: Request):
        tracking_id = request.query_params.get("orderTrackingId") or request.query_params.get("OrderTrackingId")
        if not tracking_id:
            raise ValidationError("orderTrackingId query parameter is required", fields=["orderTrackingId"])
        result = await orchestrator.poll_status(tracking_id)
        return result.model_dump()

    @app.get("/api/pesapal/status/{tracking_id}")
    async def payment_status(tracking_id: str):
        """Poll gateway status, reconciled against IPN pushes already seen."""

        result = await orchestrator.poll_status(tracking_id)
        return result.model_dump()

    @app.get("/api/pesapal/callback")
    def payment_callback(request: Request):
        """User returns here from the hosted payment page."""

        params = {
            "OrderTrackingId": request.query_params.get("OrderTrackingId", ""),
            "OrderMerchantReference": request.query_params.get("OrderMerchantReference", ""),
        }
        logger.info(
            "payment_callback order_tracking_id=%s merchant_reference=%s",
            params["OrderTrackingId"],
            params["OrderMerchantReference"],
        )
        if not frontend_return_url:
            return params
        separator = "&" if "?" in frontend_return_url else "?"
        return RedirectResponse(f"{frontend_return_url}{separator}{urlencode(params)}", status_code=302)

    @app.api_route("/api/pesapal/ipn", methods=["GET", "POST"])
    async def ipn(request: Request):
        """IPN receiver: always HTTP 200 so the gateway stops retrying."""

        try:
            body = await request.body()
        except Exception:
            logger.exception("ipn_body_read_failed")
            body = b""
        ack = await notifications.acknowledge(request.query_params, body)
        return JSONResponse(ack, status_code=200)

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    @app.get("/health")
    def health():
        """Container health probe endpoint."""

        return {"ok": True}

    return app
