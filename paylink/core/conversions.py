"""
Server-side conversion events (Meta Conversions API).

Flow per purchase-completion notification:
  1. amount   → searched in the payload (minor-unit fields / 100),
                falling back to the amount stored with the checkout mapping
  2. event    → Purchase / Other, dedup event_id, hashed user data
  3. persist  → appended to the local conversion log, always
  4. deliver  → up to 3 attempts, sleeping attempt × 0.5s between failures

event_id priority lets the ad platform dedupe this event against the
browser pixel: client eventId > provider event id > order code > synthetic.

user_data only ever holds SHA-256 of the trimmed, lower-cased email/phone.
The untouched payload is kept under "raw" for the local log and stripped
before delivery. Click/browser identifiers (fbp, fbc) pass through as-is.
"""

import asyncio
import hashlib
import re
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

import httpx

from paylink.config import Settings
from paylink.core.payload_search import walk_payload
from paylink.models.records import LinkMappingRecord
from paylink.models.store import CappedJsonLog

import structlog

logger = structlog.get_logger()

ACTION_SOURCE = "website"

# Candidate amount fields, in priority order
AMOUNT_FIELDS = ("paid_amount", "amount", "total_amount", "amount_cents", "value", "total")
# Integer values under these names are centavos
MINOR_UNIT_FIELDS = {"paid_amount", "amount", "total_amount", "amount_cents"}

# Keys stripped before sending (local-only context)
LOCAL_ONLY_KEYS = ("source_event", "raw")

DELIVERED = "delivered"
SKIPPED = "skipped"
FAILED_AFTER_RETRIES = "failed_after_retries"


@dataclass(frozen=True)
class DeliveryOutcome:
    status: str
    attempts: int = 0
    event_id: str | None = None
    reason: str | None = None


# ---------------------------------------------------------------------------
# Payload extraction
# ---------------------------------------------------------------------------

def _as_number(value: Any) -> float | int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def extract_amount(payload: Any) -> float | None:
    """Monetary value in major units (reais), or None."""
    for node in walk_payload(payload):
        for field in AMOUNT_FIELDS:
            value = _as_number(node.get(field))
            if value is None:
                continue
            if field in MINOR_UNIT_FIELDS and isinstance(value, int):
                return round(value / 100, 2)
            return float(value)
    return None


def _phone_from(customer: Mapping[str, Any]) -> str | None:
    phone = customer.get("phone")
    if isinstance(phone, str) and phone.strip():
        return phone
    phones = customer.get("phones")
    if isinstance(phones, Mapping):
        for kind in ("mobile_phone", "home_phone"):
            parts = phones.get(kind)
            if isinstance(parts, Mapping):
                digits = "".join(
                    str(parts.get(k) or "") for k in ("country_code", "area_code", "number")
                )
                if digits:
                    return digits
    return None


def extract_customer(payload: Any) -> dict[str, str]:
    """Raw email/phone from the first `customer` object found."""
    for node in walk_payload(payload):
        customer = node.get("customer")
        if not isinstance(customer, Mapping):
            continue
        found = {}
        email = customer.get("email")
        if isinstance(email, str) and email.strip():
            found["email"] = email
        phone = _phone_from(customer)
        if phone:
            found["phone"] = phone
        return found
    return {}


def provider_event_id(payload: Any) -> str | None:
    if not isinstance(payload, Mapping):
        return None
    event_id = payload.get("id")
    if isinstance(event_id, (str, int)) and not isinstance(event_id, bool) and str(event_id):
        return str(event_id)
    data = payload.get("data")
    if isinstance(data, Mapping):
        event_id = data.get("id")
        if isinstance(event_id, (str, int)) and not isinstance(event_id, bool) and str(event_id):
            return str(event_id)
    return None


def hash_identity(value: str) -> str:
    return hashlib.sha256(value.strip().lower().encode("utf-8")).hexdigest()


def _normalize_phone(value: str) -> str:
    return re.sub(r"\D", "", value)


# ---------------------------------------------------------------------------
# Event building
# ---------------------------------------------------------------------------

def resolve_event_id(
    source_event: str,
    payload: Any,
    record: LinkMappingRecord | None,
    now: float,
) -> str:
    tracking = record.tracking_context() if record else None
    client_id = tracking.text("eventId") if tracking else None
    if client_id:
        return client_id
    provider_id = provider_event_id(payload)
    if provider_id:
        return provider_id
    if record and record.order_code:
        return record.order_code
    return f"{source_event}-{int(now)}-{uuid.uuid4().hex[:8]}"


def build_user_data(payload: Any, record: LinkMappingRecord | None, now: float) -> dict[str, Any]:
    user_data: dict[str, Any] = {}

    customer = extract_customer(payload)
    if "email" in customer:
        user_data["em"] = [hash_identity(customer["email"])]
    if "phone" in customer:
        phone = _normalize_phone(customer["phone"])
        if phone:
            user_data["ph"] = [hash_identity(phone)]

    tracking = record.tracking_context() if record else None
    if tracking:
        fbp = tracking.text("fbp")
        fbc = tracking.text("fbc")
        fbclid = tracking.text("fbclid")
        lead_id = tracking.text("leadId")
        if fbp:
            user_data["fbp"] = fbp
        if fbc:
            user_data["fbc"] = fbc
        elif fbclid:
            user_data["fbc"] = f"fb.1.{int(now * 1000)}.{fbclid}"
        if lead_id:
            user_data["external_id"] = lead_id

    return user_data


def build_conversion_event(
    source_event: str,
    payload: Any,
    record: LinkMappingRecord | None,
    settings: Settings,
    now: float | None = None,
) -> dict[str, Any]:
    now = time.time() if now is None else now

    value = extract_amount(payload)
    if value is None and record is not None and record.amount is not None:
        value = round(record.amount / 100, 2)

    custom_data: dict[str, Any] = {
        "currency": settings.currency,
        "value": value,
        "order_code": record.order_code if record else None,
        "payment_link_id": record.payment_link_id if record else None,
    }

    event: dict[str, Any] = {
        "event_name": "Purchase" if source_event in settings.purchase_event_names else "Other",
        "event_time": int(now),
        "event_id": resolve_event_id(source_event, payload, record, now),
        "action_source": ACTION_SOURCE,
        "user_data": build_user_data(payload, record, now),
        "custom_data": custom_data,
        "source_event": source_event,
        "raw": payload,
    }
    if record and record.url:
        event["event_source_url"] = record.url
    return event


def delivery_payload(event: Mapping[str, Any], settings: Settings) -> dict[str, Any]:
    data = {k: v for k, v in event.items() if k not in LOCAL_ONLY_KEYS}
    body: dict[str, Any] = {"data": [data], "access_token": settings.meta_access_token}
    if settings.meta_test_event_code:
        body["test_event_code"] = settings.meta_test_event_code
    return body


# ---------------------------------------------------------------------------
# Reporter
# ---------------------------------------------------------------------------

class ConversionReporter:
    def __init__(
        self,
        settings: Settings,
        http: httpx.AsyncClient,
        log: CappedJsonLog,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings
        self.http = http
        self.log = log
        self.sleep = sleep

    @property
    def endpoint(self) -> str:
        s = self.settings
        return f"{s.meta_api_base.rstrip('/')}/{s.meta_api_version}/{s.meta_pixel_id}/events"

    async def build_and_send(
        self,
        source_event: str,
        payload: Any,
        record: LinkMappingRecord | None,
    ) -> DeliveryOutcome:
        event = build_conversion_event(source_event, payload, record, self.settings)
        self.log.append(event)
        logger.info(
            "conversion_event_recorded",
            event_name=event["event_name"],
            event_id=event["event_id"],
            value=event["custom_data"]["value"],
        )

        if not self.settings.meta_configured:
            logger.info("conversion_delivery_skipped", event_id=event["event_id"], reason="not_configured")
            return DeliveryOutcome(status=SKIPPED, event_id=event["event_id"], reason="not_configured")

        return await self._deliver(event)

    async def _deliver(self, event: Mapping[str, Any]) -> DeliveryOutcome:
        body = delivery_payload(event, self.settings)
        max_attempts = self.settings.conversion_max_attempts

        for attempt in range(1, max_attempts + 1):
            try:
                resp = await self.http.post(
                    self.endpoint,
                    json=body,
                    timeout=self.settings.http_timeout_seconds,
                )
                if resp.is_success:
                    logger.info("conversion_delivered", event_id=event["event_id"], attempt=attempt)
                    return DeliveryOutcome(status=DELIVERED, attempts=attempt, event_id=event["event_id"])
                logger.warning(
                    "conversion_delivery_rejected",
                    event_id=event["event_id"],
                    attempt=attempt,
                    status=resp.status_code,
                    body=resp.text[:500],
                )
            except httpx.HTTPError as e:
                logger.warning(
                    "conversion_delivery_error",
                    event_id=event["event_id"],
                    attempt=attempt,
                    error=str(e),
                )

            if attempt < max_attempts:
                await self.sleep(attempt * self.settings.conversion_backoff_seconds)

        logger.error("conversion_delivery_failed", event_id=event["event_id"], attempts=max_attempts)
        return DeliveryOutcome(
            status=FAILED_AFTER_RETRIES,
            attempts=max_attempts,
            event_id=event["event_id"],
        )
