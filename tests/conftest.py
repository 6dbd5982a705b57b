"""Pytest configuration + fakes for the external APIs."""

import json
import os
import tempfile

# Ensure test environment
os.environ.setdefault("PAYLINK_DEBUG", "true")
os.environ.setdefault("PAYLINK_DATA_DIR", tempfile.mkdtemp(prefix="paylink-test-"))
for _var in ("PAYLINK_PAGARME_API_KEY", "PAYLINK_WEBHOOK_SECRET", "PAYLINK_META_PIXEL_ID", "PAYLINK_META_ACCESS_TOKEN"):
    os.environ.pop(_var, None)

import httpx
import pytest

from paylink.config import Settings
from paylink.middleware.rate_limit import reset_rate_limits
from paylink.models.store import CappedJsonLog, FileLinkMappingStore


class FakePagarme:
    """In-memory stand-in for the payment-link API."""

    def __init__(self):
        self.links: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.created_payloads: list[dict] = []
        self.create_errors: list[tuple[int, dict]] = []
        self.lookup_status = 200
        self.unreachable = False

    def add_link(self, link_id: str, amount: int, status: str = "active", name: str = "manual"):
        self.links[link_id] = {
            "id": link_id,
            "name": name,
            "status": status,
            "url": f"https://payment-link-v3.pagar.me/{link_id}",
            "amount": amount,
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path
        if request.method == "GET" and path.endswith("/paymentlinks"):
            if self.lookup_status != 200:
                return httpx.Response(self.lookup_status, json={"message": "lookup failed"})
            name = request.url.params.get("name")
            items = [l for l in self.links.values() if l["name"] == name and l["status"] == "active"]
            return httpx.Response(200, json={"data": items})

        if request.method == "GET" and "/paymentlinks/" in path:
            link = self.links.get(path.rsplit("/", 1)[-1])
            if link is None:
                return httpx.Response(404, json={"message": "not found"})
            return httpx.Response(200, json=link)

        if request.method == "POST" and path.endswith("/paymentlinks"):
            payload = json.loads(request.content)
            self.created_payloads.append(payload)
            if self.create_errors:
                status, body = self.create_errors.pop(0)
                return httpx.Response(status, json=body)
            item = payload["cart_settings"]["items"][0]
            link_id = f"pl_created{len(self.links) + 1}"
            self.add_link(link_id, item.get("amount") or item.get("unit_price"), name=payload["name"])
            return httpx.Response(200, json=self.links[link_id])

        return httpx.Response(404, json={"message": "no route"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class FakeMeta:
    """Records Conversions API deliveries; answers with queued statuses."""

    def __init__(self, statuses: list[int] | None = None):
        self.statuses = list(statuses or [])
        self.requests: list[httpx.Request] = []
        self.raise_errors = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_errors:
            self.raise_errors -= 1
            raise httpx.ReadTimeout("timed out", request=request)
        status = self.statuses.pop(0) if self.statuses else 200
        return httpx.Response(status, json={"events_received": 1} if status == 200 else {"error": "nope"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides) -> Settings:
        overrides.setdefault("data_dir", str(tmp_path))
        return Settings(_env_file=None, **overrides)
    return _make


@pytest.fixture
def link_store(tmp_path):
    return FileLinkMappingStore(tmp_path / "paymentlinks.json")


@pytest.fixture
def conversion_log(tmp_path):
    return CappedJsonLog(tmp_path / "conversions.json", 1000)


@pytest.fixture
def webhook_log(tmp_path):
    return CappedJsonLog(tmp_path / "webhooks.json", 200)


@pytest.fixture
def fake_pagarme():
    return FakePagarme()


@pytest.fixture
def fake_meta():
    return FakeMeta()


@pytest.fixture(autouse=True)
def _clear_rate_limits():
    reset_rate_limits()
    yield
    reset_rate_limits()
