"""
Paylink: checkout provisioning + payment-event correlation.
Main application entry point.
"""

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from paylink import __version__
from paylink.api.checkout import router as checkout_router
from paylink.api.plans import router as plans_router
from paylink.api.webhooks import router as webhooks_router
from paylink.config import Settings, get_settings
from paylink.core.catalog import PrecreatedLinks, configured_links, reconcile_links
from paylink.core.pagarme import PagarmeClient, fetch_link_amounts
from paylink.middleware.security import SecurityHeadersMiddleware

import structlog

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.dev.ConsoleRenderer() if get_settings().debug else structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()


async def resolve_precreated_links(settings: Settings, http: httpx.AsyncClient) -> PrecreatedLinks:
    """Configured links, cross-checked against provider amounts when a key exists."""
    links = configured_links(settings)
    if not links or not settings.provider_configured:
        return links
    client = PagarmeClient(
        http,
        settings.pagarme_api_key,
        settings.pagarme_api_base,
        timeout=settings.http_timeout_seconds,
    )
    amounts = await fetch_link_amounts(client, links)
    return reconcile_links(links, amounts)


def production_warnings(settings: Settings, links: PrecreatedLinks) -> list[str]:
    if settings.environment != "production":
        return []
    missing = []
    if not settings.pagarme_api_key:
        missing.append("PAYLINK_PAGARME_API_KEY")
    if not settings.webhook_secret:
        missing.append("PAYLINK_WEBHOOK_SECRET")
    for plan_id in ("experience", "transformation"):
        if plan_id not in links:
            missing.append(f"PAYLINK_PAYMENTLINK_{plan_id.upper()}")
    return missing


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as http:
        app.state.precreated_links = await resolve_precreated_links(settings, http)

    missing = production_warnings(settings, app.state.precreated_links)
    if missing:
        logger.warning("production_config_incomplete", missing=missing)

    logger.info(
        "paylink_starting",
        environment=settings.environment,
        provider_configured=settings.provider_configured,
        precreated_links=sorted(app.state.precreated_links),
    )
    yield
    logger.info("paylink_shutting_down")


app = FastAPI(
    title="Paylink",
    description="Checkout links for the landing page, and payment webhooks back to ad attribution.",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if get_settings().debug else None,
    redoc_url="/redoc" if get_settings().debug else None,
    openapi_url="/openapi.json" if get_settings().debug else None,
)

app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)

# --- Routes ---
app.include_router(plans_router)
app.include_router(checkout_router)
app.include_router(webhooks_router)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "paylink", "version": __version__}
