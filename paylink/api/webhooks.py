"""
Payment notification receiver — POST /api/webhook/{provider}

Flow:
  1. Verify HMAC on the raw body (401 on failure, nothing else happens)
  2. Parse JSON, pick the event name (event → type → "unknown")
  3. Append to the webhook audit log
  4. Purchase-completion events: correlate → conversion event
  5. Always 200 {"ok": true}, so the provider never retry-storms us
"""

import json

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from paylink.api.deps import get_http_client
from paylink.config import Settings, get_settings
from paylink.core.conversions import ConversionReporter
from paylink.core.correlator import correlate
from paylink.core.webhook_signature import SIGNATURE_HEADERS, verify_signature
from paylink.models.store import (
    CappedJsonLog,
    LinkMappingStore,
    get_conversion_log,
    get_link_store,
    get_webhook_log,
    webhook_entry,
)

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/api/webhook", tags=["webhooks"])

SUPPORTED_PROVIDERS = {"pagarme"}


def _signature_header(request: Request) -> str | None:
    for name in SIGNATURE_HEADERS:
        value = request.headers.get(name)
        if value:
            return value
    return None


def _event_name(payload) -> str:
    if isinstance(payload, dict):
        for key in ("event", "type"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return "unknown"


def get_conversion_reporter(
    settings: Settings = Depends(get_settings),
    http: httpx.AsyncClient = Depends(get_http_client),
    log: CappedJsonLog = Depends(get_conversion_log),
) -> ConversionReporter:
    return ConversionReporter(settings, http, log)


@router.post("/{provider}", status_code=200)
async def receive_webhook(
    provider: str,
    request: Request,
    settings: Settings = Depends(get_settings),
    store: LinkMappingStore = Depends(get_link_store),
    audit_log: CappedJsonLog = Depends(get_webhook_log),
    reporter: ConversionReporter = Depends(get_conversion_reporter),
):
    if provider not in SUPPORTED_PROVIDERS:
        return JSONResponse(status_code=404, content={"ok": False, "error": "unknown_provider"})

    body = await request.body()

    # --- Verify signature on the exact wire bytes ---
    verdict = verify_signature(body, _signature_header(request), settings.webhook_secret)
    if not verdict.authentic:
        logger.warning("webhook_rejected", provider=provider, reason=verdict.reason)
        return JSONResponse(status_code=401, content={"ok": False, "error": verdict.reason})
    if verdict.skipped:
        logger.warning("webhook_signature_skipped", provider=provider, detail="no webhook secret configured; not for production")

    # --- Parse ---
    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        logger.warning("webhook_invalid_json", provider=provider)
        return JSONResponse(status_code=400, content={"ok": False, "error": "invalid_json"})

    event = _event_name(payload)
    logger.info("webhook_received", provider=provider, webhook_event=event)

    # --- Audit trail ---
    audit_log.append(webhook_entry(event, payload))

    # --- Conversion reporting ---
    if event in settings.conversion_event_names:
        record = correlate(payload, store)
        if record is not None:
            outcome = await reporter.build_and_send(event, payload, record)
            logger.info(
                "webhook_conversion_outcome",
                webhook_event=event,
                status=outcome.status,
                attempts=outcome.attempts,
                event_id=outcome.event_id,
            )

    return {"ok": True}
