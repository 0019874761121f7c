"""
DocDigest Backend: Processing Request/Response Schemas
========================================================

What:  The API contract of POST /api/process and POST /api/process-guest.
Who:   Built by the ProcessingOrchestrator; rendered by the process routes.

Two successful shapes share ProcessResponse:
    authenticated  summary_id, usage and limits are set; requires_auth=False
    guest          summary_id/usage/limits are null; requires_auth=True and
                   upgrade_message invites the caller to sign in

A denial is not an error body: it is EntitlementDeniedResponse with 403.
"""

import uuid
from typing import List, Optional

from pydantic import BaseModel, Field

from app.plans import SummaryTier


class SummaryBody(BaseModel):
    """Sectioned summary as returned to clients and stored in history."""

    executive_summary: str
    key_points: List[str] = Field(default_factory=list)
    action_items: List[str] = Field(default_factory=list)
    important_dates: List[str] = Field(default_factory=list)
    relevant_names: List[str] = Field(default_factory=list)
    places: List[str] = Field(default_factory=list)


class UsageBody(BaseModel):
    period: str = Field(description="Billing period, YYYY-MM (UTC)")
    documents: int = Field(ge=0, description="Documents processed this period")
    pages: int = Field(ge=0, description="Pages processed this period")


class LimitsBody(BaseModel):
    documents: Optional[int] = Field(default=None, description="Monthly document limit; null = unbounded")
    pages: Optional[int] = Field(default=None, description="Monthly page limit; null = unbounded")


class ProcessResponse(BaseModel):
    """
    Successful processing result.

    summary_tier is the *effective* tier. When it is lower than
    requested_tier, `downgraded` is true; the request still succeeded.
    """
    message: str = Field(default="Document processed successfully")
    summary_id: Optional[uuid.UUID] = Field(default=None, description="Stored summary id (authenticated only)")
    filename: str
    file_type: str
    page_count: int = Field(ge=1)
    page_count_estimated: bool
    extraction_degraded: bool = Field(
        default=False,
        description="True when the document was read through the plain-text fallback",
    )
    summary_tier: SummaryTier = Field(description="Effective tier used for the summary")
    requested_tier: SummaryTier
    downgraded: bool = False
    summary: SummaryBody
    plan: str = Field(description="free, premium, pro or guest")
    export_watermark: bool = Field(description="Exports of this summary must carry a watermark")
    usage: Optional[UsageBody] = None
    limits: Optional[LimitsBody] = None
    requires_auth: bool = False
    upgrade_message: Optional[str] = None


class EntitlementDeniedResponse(BaseModel):
    """
    403 body for a request the caller's plan does not allow.

    Example:
        {
            "error": "entitlement_denied",
            "reason": "document_limit",
            "message": "You have reached your monthly limit of 5 documents ...",
            "current": 5,
            "limit": 5,
            "page_count": null,
            "max_pages": null,
            "plan": "free"
        }
    """
    error: str = Field(default="entitlement_denied")
    reason: str = Field(description="document_limit, page_limit or document_too_large")
    message: str
    current: Optional[int] = None
    limit: Optional[int] = None
    page_count: Optional[int] = None
    max_pages: Optional[int] = None
    plan: Optional[str] = None
    request_id: Optional[str] = None
