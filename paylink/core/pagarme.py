"""
Pagar.me payment-link API client.

Auth: HTTP Basic with the secret key as username and an empty password.
Endpoints used:
  GET  /paymentlinks/{id}                    → status / amount of one link
  GET  /paymentlinks?name=...&status=active  → reuse lookup
  POST /paymentlinks                         → create

Responses come back in more than one shape depending on API version, so
everything goes through `decode_link` / `decode_link_list`.
"""

import base64
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from paylink.core.catalog import Plan, PrecreatedLinks
from paylink.models.records import TrackingContext

import structlog

logger = structlog.get_logger()

SHIPPING_DESCRIPTION = "Frete Grátis — Melhor Envio"
MAX_INSTALLMENTS = 6
PIX_EXPIRES_IN_SECONDS = 86400


class ProviderError(Exception):
    """Non-2xx or unparseable response from the provider."""

    def __init__(self, status_code: int, body: Any, endpoint: str):
        super().__init__(f"{endpoint} returned {status_code}")
        self.status_code = status_code
        self.body = body
        self.endpoint = endpoint

    @property
    def is_validation_error(self) -> bool:
        return 400 <= self.status_code < 500

    def mentions_fields(self, *fields: str) -> bool:
        """True if the `errors` section names any of `fields` (case/underscore-insensitive)."""
        if not isinstance(self.body, Mapping):
            return False
        errors = self.body.get("errors")
        if isinstance(errors, Mapping):
            names = [str(k) for k in errors]
        elif isinstance(errors, list):
            names = [str(e) for e in errors]
        else:
            return False
        wanted = [f.replace("_", "").lower() for f in fields]
        for name in names:
            normalized = name.replace("_", "").lower()
            if any(w in normalized for w in wanted):
                return True
        return False


@dataclass(frozen=True)
class LinkInfo:
    id: str | None
    url: str | None
    status: str | None = None
    amount: int | None = None

    @property
    def is_active(self) -> bool:
        return (self.status or "").lower() == "active"


# ---------------------------------------------------------------------------
# Response decoding
# ---------------------------------------------------------------------------

def _first_str(obj: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _link_amount(obj: Mapping[str, Any]) -> int | None:
    """Amount charged by a link: top-level, then first order item, then first cart item."""
    amount = obj.get("amount")
    if isinstance(amount, int) and not isinstance(amount, bool):
        return amount
    for container, price_key in (("order", "unit_price"), ("cart_settings", "amount")):
        section = obj.get(container)
        if not isinstance(section, Mapping):
            continue
        items = section.get("items")
        if isinstance(items, list) and items and isinstance(items[0], Mapping):
            value = items[0].get(price_key)
            if isinstance(value, int) and not isinstance(value, bool):
                return value
    return None


def _decode_object(obj: Mapping[str, Any]) -> LinkInfo | None:
    link_id = _first_str(obj, "id", "payment_link_id")
    url = _first_str(obj, "url", "short_url")
    if link_id is None and url is None:
        return None
    return LinkInfo(
        id=link_id,
        url=url,
        status=_first_str(obj, "status"),
        amount=_link_amount(obj),
    )


def decode_link(body: Any) -> LinkInfo | None:
    """
    Single-link response. Tried in order:
      1. the top-level object  {"id", "url" | "short_url", "status"}
      2. a nested data object  {"data": {...}}
    The first branch yielding a URL wins; otherwise the first with an id.
    """
    if not isinstance(body, Mapping):
        return None
    candidates = [body]
    if isinstance(body.get("data"), Mapping):
        candidates.append(body["data"])

    decoded = [info for info in map(_decode_object, candidates) if info is not None]
    for info in decoded:
        if info.url:
            return info
    return decoded[0] if decoded else None


def decode_link_list(body: Any) -> list[LinkInfo]:
    """List response: a bare JSON array, or {"data": [...]}."""
    if isinstance(body, list):
        items = body
    elif isinstance(body, Mapping) and isinstance(body.get("data"), list):
        items = body["data"]
    else:
        return []
    decoded = (_decode_object(item) for item in items if isinstance(item, Mapping))
    return [info for info in decoded if info is not None]


# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------

def link_name(namespace: str, plan: Plan) -> str:
    """Deterministic name so repeated provisioning converges on one link."""
    return f"{namespace}-{plan.id}-{plan.amount}"


def tracking_metadata(tracking: TrackingContext | None) -> dict[str, str]:
    if tracking is None:
        return {}
    meta = {}
    for field, key in (("leadId", "lead_id"), ("fbclid", "fbclid"), ("fbp", "fbp")):
        value = tracking.text(field)
        if value:
            meta[key] = value
    return meta


def primary_link_payload(plan: Plan, name: str, order_code: str, tracking: TrackingContext | None) -> dict:
    payload = {
        "type": "order",
        "name": name,
        "order_code": order_code,
        "payment_settings": {
            "accepted_payment_methods": ["pix", "credit_card"],
            "credit_card_settings": {
                "operation_type": "auth_and_capture",
                "max_installments": MAX_INSTALLMENTS,
                "installments": [
                    {"number": n, "total": plan.amount} for n in range(1, MAX_INSTALLMENTS + 1)
                ],
                "use_brand_interest_rate": False,
                "customer_fee": False,
            },
            "pix_settings": {
                "expires_in": PIX_EXPIRES_IN_SECONDS,
                "discount": 0,
                "discount_percentage": 0,
            },
        },
        "cart_settings": {
            "items": [
                {
                    "name": plan.name,
                    "description": f"{plan.name} — {SHIPPING_DESCRIPTION}",
                    "amount": plan.amount,
                    "default_quantity": 1,
                    "shipping_cost": 0,
                }
            ],
            "shipping_cost": 0,
            "shipping_total_cost": 0,
        },
        "layout_settings": {"hide_shipping_selector": True},
    }
    meta = tracking_metadata(tracking)
    if meta:
        payload["metadata"] = meta
    return payload


def alternate_link_payload(plan: Plan, name: str, order_code: str, tracking: TrackingContext | None) -> dict:
    """Older cart/payment schema (item title/unit_price + payment_config)."""
    payload = {
        "type": "order",
        "name": name,
        "order_code": order_code,
        "cart_settings": {
            "items": [
                {
                    "id": plan.id,
                    "title": f"{plan.name} — {SHIPPING_DESCRIPTION}",
                    "unit_price": plan.amount,
                    "quantity": 1,
                    "tangible": True,
                }
            ],
            "shipping_cost": 0,
        },
        "payment_config": {
            "credit_card": {"enabled": True, "max_installments": MAX_INSTALLMENTS},
            "boleto": {"enabled": True, "expires_in": 3},
            "default_payment_method": "credit_card",
        },
    }
    meta = tracking_metadata(tracking)
    if meta:
        payload["metadata"] = meta
    return payload


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class PagarmeClient:
    def __init__(self, http: httpx.AsyncClient, api_key: str, api_base: str, timeout: float = 10.0):
        token = base64.b64encode(f"{api_key}:".encode()).decode()
        self.http = http
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.headers = {
            "Authorization": f"Basic {token}",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, str] | None = None,
        json: dict | None = None,
    ) -> Any:
        """Raises ProviderError on non-2xx / non-JSON; httpx.HTTPError propagates."""
        resp = await self.http.request(
            method,
            f"{self.api_base}/{endpoint}",
            headers=self.headers,
            params=params,
            json=json,
            timeout=self.timeout,
        )
        try:
            body = resp.json()
        except ValueError:
            body = resp.text[:500]
            if resp.is_success:
                raise ProviderError(resp.status_code, body, endpoint)

        if not resp.is_success:
            raise ProviderError(resp.status_code, body, endpoint)
        return body

    async def get_link(self, link_id: str) -> LinkInfo | None:
        body = await self._request("GET", f"paymentlinks/{link_id}")
        return decode_link(body)

    async def find_active_link(self, name: str) -> LinkInfo | None:
        body = await self._request("GET", "paymentlinks", params={"name": name, "status": "active"})
        for info in decode_link_list(body):
            # Older API versions ignore the status filter
            if info.url and info.is_active:
                return info
        return None

    async def create_link(self, payload: dict) -> LinkInfo | None:
        body = await self._request("POST", "paymentlinks", json=payload)
        return decode_link(body)


async def fetch_link_amounts(client: PagarmeClient, links: PrecreatedLinks) -> dict[str, int | None]:
    """Provider-reported amount per configured link id; None when it can't be read."""
    amounts: dict[str, int | None] = {}
    for plan_id, link in links.items():
        try:
            info = await client.get_link(link.link_id)
        except ProviderError as e:
            logger.warning("precreated_link_check_failed", plan_id=plan_id, link_id=link.link_id, status=e.status_code)
            amounts[link.link_id] = None
            continue
        except httpx.HTTPError as e:
            logger.warning("precreated_link_check_error", plan_id=plan_id, link_id=link.link_id, error=str(e))
            amounts[link.link_id] = None
            continue
        amounts[link.link_id] = info.amount if info else None
    return amounts
