"""
DocDigest Backend: Usage and Plan Schemas
===========================================

What:  Responses of GET /api/usage and GET /api/plans.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from app.schemas.processing import LimitsBody, UsageBody


class RemainingBody(BaseModel):
    documents: Optional[int] = Field(default=None, description="Null when unbounded")
    pages: Optional[int] = Field(default=None, description="Null when unbounded")


class UsageResponse(BaseModel):
    """
    Read-only snapshot of the caller's ledger for the current period.

    A point-in-time read: another request may change it a moment later.
    """
    user_id: str
    plan: str
    max_summary_tier: str
    capabilities: List[str]
    export_watermark: bool
    usage: UsageBody
    limits: LimitsBody
    remaining: RemainingBody


class PlanInfo(BaseModel):
    name: str
    max_documents_per_period: Optional[int] = Field(description="Null = unbounded")
    max_pages_per_period: Optional[int] = Field(description="Null = unbounded")
    max_summary_tier: str
    history_limit: int
    capabilities: List[str]
    export_watermark: bool


class PlansResponse(BaseModel):
    plans: List[PlanInfo]
    guest_max_pages: int = Field(description="Per-document page ceiling for guest uploads")
