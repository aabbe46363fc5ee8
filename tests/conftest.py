"""Shared fixtures: a scripted Pesapal gateway behind `httpx.MockTransport`."""

import json
import os

os.environ.setdefault("PESAPAL_CONSUMER_KEY", "K")
os.environ.setdefault("PESAPAL_CONSUMER_SECRET", "S")

import httpx
import pytest
from fastapi.testclient import TestClient

from pesaproxy.common.config import GatewayConfig
from pesaproxy.common.store import MemoryStore
from pesaproxy.services.api.routes import create_app
from pesaproxy.services.gateway.client import PesapalClient
from pesaproxy.services.notification.service import NotificationService
from pesaproxy.services.orchestrator.service import PaymentOrchestrator


TOKEN = "/api/Auth/RequestToken"
REGISTER_IPN = "/api/URLSetup/RegisterIPN"
SUBMIT_ORDER = "/api/Transactions/SubmitOrderRequest"
TRANSACTION_STATUS = "/api/Transactions/GetTransactionStatus"


class FakeGateway:
    """Answers gateway paths from a script and records every request."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[str, tuple[int, object, type[Exception] | None]] = {}

    def on(self, path: str, body=None, status_code: int = 200, raises: type[Exception] | None = None):
        self.routes[path] = (status_code, body, raises)
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path.replace("/pesapalv3", "", 1).replace("/v3", "", 1))
        if route is None:
            return httpx.Response(404, json={"error": {"message": "no route"}})
        status_code, body, raises = route
        if raises is not None:
            raise raises("scripted failure", request=request)
        return httpx.Response(status_code, json=body)

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(path)]

    def sent_json(self, path: str) -> dict:
        return json.loads(self.calls(path)[-1].content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway().on(TOKEN, {"token": "T", "expiryDate": "2026-10-19T12:00:00Z", "status": "200"})


@pytest.fixture
def config() -> GatewayConfig:
    return GatewayConfig(
        consumer_key="K",
        consumer_secret="S",
        environment="sandbox",
        notification_id="IPN-1",
        proxy_base_url="https://proxy.test",
        timeout_seconds=10,
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def client(config, gateway) -> PesapalClient:
    return PesapalClient(config, transport=gateway.transport)


@pytest.fixture
def orchestrator(config, store, client) -> PaymentOrchestrator:
    return PaymentOrchestrator(config, store, client=client)


@pytest.fixture
def notifications(orchestrator, store) -> NotificationService:
    return NotificationService(orchestrator, store, dedupe_ttl_seconds=60)


@pytest.fixture
def api(orchestrator, notifications) -> TestClient:
    return TestClient(create_app(orchestrator, notifications, frontend_return_url="https://app.test/done"))
