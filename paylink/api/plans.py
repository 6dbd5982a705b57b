"""Plan listing for the landing page."""

from fastapi import APIRouter, Depends

from paylink.api.deps import get_precreated_links
from paylink.core.catalog import PrecreatedLinks, list_plans, plan_payload

router = APIRouter(prefix="/api", tags=["plans"])


@router.get("/plans")
async def get_plans(links: PrecreatedLinks = Depends(get_precreated_links)):
    return {"ok": True, "plans": [plan_payload(plan, links) for plan in list_plans()]}
