"""Persisted record shapes."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrackingContext(BaseModel):
    """
    Client-supplied ad-attribution bundle. Never validated: any field may hold
    any JSON value (or be missing), and unknown keys are kept.
    """

    model_config = ConfigDict(extra="allow")

    leadId: Any = None
    fbclid: Any = None
    fbp: Any = None
    fbc: Any = None
    eventId: Any = None
    utm: Any = None

    def text(self, field: str) -> str | None:
        """Field value only when it is a non-empty string."""
        value = getattr(self, field, None)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    def passthrough(self) -> dict[str, Any]:
        """The bundle exactly as the client sent it."""
        return self.model_dump(exclude_unset=True)


class LinkMappingRecord(BaseModel):
    order_code: str
    payment_link_id: str | None = None
    url: str
    tracking: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=utcnow)
    plan_id: str | None = None
    amount: int | None = None

    def tracking_context(self) -> TrackingContext | None:
        if not self.tracking:
            return None
        return TrackingContext.model_validate(self.tracking)
