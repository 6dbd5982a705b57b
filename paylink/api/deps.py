"""Shared FastAPI dependencies."""

from typing import AsyncIterator

import httpx
from fastapi import Depends, Request

from paylink.config import Settings, get_settings
from paylink.core.catalog import PrecreatedLinks, configured_links


async def get_http_client(settings: Settings = Depends(get_settings)) -> AsyncIterator[httpx.AsyncClient]:
    """One outbound client per request, closed when the response is sent."""
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
        yield client


def get_precreated_links(request: Request, settings: Settings = Depends(get_settings)) -> PrecreatedLinks:
    """Links frozen at startup; unverified config when startup hasn't run."""
    links = getattr(request.app.state, "precreated_links", None)
    if links is None:
        links = configured_links(settings)
    return links
