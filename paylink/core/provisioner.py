"""
Checkout provisioning: plan id → payable link.

Steps, each only reached when the previous one produced nothing usable:
  1. operator pre-provisioned link (verified active when a key exists,
     trusted blindly when it doesn't)
  2. no provider key → static fallback, no network
  3. reuse an active link with the deterministic name
  4. create a link (primary payload, then the alternate payload once if
     the provider rejects payment/cart settings)
  5. anything failing → static fallback, flagged

Provider calls are never retried within one provisioning attempt.
"""

import time
from dataclasses import dataclass

import httpx

from paylink.config import Settings
from paylink.core.catalog import Plan, PrecreatedLinks
from paylink.core.pagarme import (
    LinkInfo,
    PagarmeClient,
    ProviderError,
    alternate_link_payload,
    link_name,
    primary_link_payload,
)
from paylink.models.records import LinkMappingRecord, TrackingContext
from paylink.models.store import LinkMappingStore

import structlog

logger = structlog.get_logger()

SOURCE_PRECREATED = "precreated"
SOURCE_NAME_LOOKUP = "name_lookup"
SOURCE_CREATED = "created"


@dataclass(frozen=True)
class CheckoutResult:
    url: str
    ok: bool = True
    reused: bool = False
    source: str | None = None
    fallback: bool = False
    error: str | None = None
    payment_link_id: str | None = None
    order_code: str | None = None

    def to_response(self, shipping_carrier: str = "") -> dict:
        body: dict = {"ok": self.ok, "url": self.url}
        if self.reused:
            body["reused"] = True
        if self.source:
            body["source"] = self.source
        if self.fallback:
            body["fallback"] = True
        if self.error:
            body["error"] = self.error
        if shipping_carrier:
            body["shippingCarrier"] = shipping_carrier
        return body


def make_order_code(namespace: str, plan: Plan) -> str:
    return f"{namespace}_{plan.id}_{int(time.time() * 1000)}"


def _fallback(plan: Plan, error: str) -> CheckoutResult:
    return CheckoutResult(url=plan.static_fallback_url, ok=False, fallback=True, error=error)


def _record_mapping(
    store: LinkMappingStore,
    result: CheckoutResult,
    plan: Plan,
    tracking: TrackingContext | None,
) -> None:
    if tracking is None:
        return
    key = result.payment_link_id or result.order_code
    store.put(
        key,
        LinkMappingRecord(
            order_code=result.order_code,
            payment_link_id=result.payment_link_id,
            url=result.url,
            tracking=tracking.passthrough(),
            plan_id=plan.id,
            amount=plan.amount,
        ),
    )


async def _check_precreated(
    client: PagarmeClient | None,
    plan: Plan,
    links: PrecreatedLinks,
    order_code: str,
) -> CheckoutResult | None:
    link = links.get(plan.id)
    if link is None:
        return None

    precreated = CheckoutResult(
        url=link.url,
        reused=True,
        source=SOURCE_PRECREATED,
        payment_link_id=link.link_id,
        order_code=order_code,
    )

    if client is None:
        logger.warning("precreated_link_unverified", plan_id=plan.id, link_id=link.link_id)
        return precreated

    try:
        info = await client.get_link(link.link_id)
    except ProviderError as e:
        logger.warning("precreated_link_check_failed", plan_id=plan.id, link_id=link.link_id, status=e.status_code)
        return None
    except httpx.HTTPError as e:
        logger.warning("precreated_link_check_error", plan_id=plan.id, link_id=link.link_id, error=str(e))
        return None

    if info is not None and info.is_active:
        return precreated

    logger.warning(
        "precreated_link_inactive",
        plan_id=plan.id,
        link_id=link.link_id,
        status=info.status if info else None,
    )
    return None


async def _create(
    client: PagarmeClient,
    plan: Plan,
    name: str,
    order_code: str,
    tracking: TrackingContext | None,
) -> LinkInfo | None:
    try:
        return await client.create_link(primary_link_payload(plan, name, order_code, tracking))
    except ProviderError as e:
        if not (e.is_validation_error and e.mentions_fields("payment_settings", "cart_settings")):
            raise
        logger.info("payment_link_alternate_payload", plan_id=plan.id, status=e.status_code)

    return await client.create_link(alternate_link_payload(plan, name, order_code, tracking))


async def provision_checkout(
    plan: Plan,
    tracking: TrackingContext | None,
    *,
    settings: Settings,
    links: PrecreatedLinks,
    http: httpx.AsyncClient,
    store: LinkMappingStore,
) -> CheckoutResult:
    order_code = make_order_code(settings.app_namespace, plan)
    client = None
    if settings.provider_configured:
        client = PagarmeClient(
            http,
            settings.pagarme_api_key,
            settings.pagarme_api_base,
            timeout=settings.http_timeout_seconds,
        )

    # --- 1. Pre-provisioned link ---
    result = await _check_precreated(client, plan, links, order_code)
    if result is not None:
        _record_mapping(store, result, plan, tracking)
        return result

    # --- 2. No credential: static link, no network ---
    if client is None:
        logger.warning("provider_not_configured", plan_id=plan.id)
        return _fallback(plan, "provider_not_configured")

    name = link_name(settings.app_namespace, plan)
    try:
        # --- 3. Reuse by deterministic name ---
        try:
            existing = await client.find_active_link(name)
        except ProviderError as e:
            logger.warning("payment_link_lookup_failed", plan_id=plan.id, status=e.status_code)
            existing = None

        if existing is not None:
            result = CheckoutResult(
                url=existing.url,
                reused=True,
                source=SOURCE_NAME_LOOKUP,
                payment_link_id=existing.id,
                order_code=order_code,
            )
            logger.info("payment_link_reused", plan_id=plan.id, link_id=existing.id)
            _record_mapping(store, result, plan, tracking)
            return result

        # --- 4. Create ---
        created = await _create(client, plan, name, order_code, tracking)
    except ProviderError as e:
        logger.error(
            "payment_link_create_failed",
            plan_id=plan.id,
            status=e.status_code,
            body=str(e.body)[:500],
        )
        return _fallback(plan, "provider_error")
    except httpx.HTTPError as e:
        logger.error("payment_provider_unreachable", plan_id=plan.id, error=str(e))
        return _fallback(plan, "provider_unreachable")

    if created is None or not created.url:
        logger.error("payment_link_malformed_response", plan_id=plan.id)
        return _fallback(plan, "malformed_provider_response")

    result = CheckoutResult(
        url=created.url,
        source=SOURCE_CREATED,
        payment_link_id=created.id,
        order_code=order_code,
    )
    logger.info("payment_link_created", plan_id=plan.id, link_id=created.id, order_code=order_code)
    _record_mapping(store, result, plan, tracking)
    return result
