"""
Checkout API.

POST /api/checkout              → payable URL for a plan (real or fallback)
GET  /api/paymentlink-lookup    → stored mapping by payment_link_id or order_code
"""

import httpx
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from paylink.api.deps import get_http_client, get_precreated_links
from paylink.config import Settings, get_settings
from paylink.core.catalog import PrecreatedLinks, get_plan
from paylink.core.provisioner import provision_checkout
from paylink.middleware.rate_limit import rate_limit_checkout
from paylink.models.records import TrackingContext
from paylink.models.store import LinkMappingStore, get_link_store

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["checkout"])


class CheckoutRequest(BaseModel):
    planId: str | None = None
    tracking: TrackingContext | None = None


def _error(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": error})


@router.post("/checkout", dependencies=[Depends(rate_limit_checkout)])
async def create_checkout(
    payload: CheckoutRequest | None = None,
    settings: Settings = Depends(get_settings),
    links: PrecreatedLinks = Depends(get_precreated_links),
    http: httpx.AsyncClient = Depends(get_http_client),
    store: LinkMappingStore = Depends(get_link_store),
):
    if payload is None or not payload.planId:
        return _error(400, "plan_id_required")

    plan = get_plan(payload.planId)
    if plan is None:
        logger.info("checkout_unknown_plan", plan_id=payload.planId)
        return _error(404, "plan_not_found")

    logger.info("checkout_requested", plan_id=plan.id, has_tracking=payload.tracking is not None)
    result = await provision_checkout(
        plan,
        payload.tracking,
        settings=settings,
        links=links,
        http=http,
        store=store,
    )
    logger.info(
        "checkout_resolved",
        plan_id=plan.id,
        source=result.source,
        reused=result.reused,
        fallback=result.fallback,
        error=result.error,
    )
    return result.to_response(settings.shipping_carrier)


@router.get("/paymentlink-lookup")
async def lookup_payment_link(
    payment_link_id: str | None = None,
    order_code: str | None = None,
    store: LinkMappingStore = Depends(get_link_store),
):
    if not payment_link_id and not order_code:
        return _error(400, "missing_query")

    mappings = store.all()
    if not mappings:
        return _error(404, "no_mappings")

    if payment_link_id:
        record = mappings.get(payment_link_id)
        if record is not None:
            return {"ok": True, "mapping": record.model_dump(mode="json")}

    if order_code:
        for record in mappings.values():
            if record.order_code == order_code:
                return {"ok": True, "mapping": record.model_dump(mode="json")}

    return _error(404, "not_found")
