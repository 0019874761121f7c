"""
DocDigest Backend: Summary History Schemas
============================================

What:  Responses of GET /api/summaries and GET /api/summaries/{id}.
How:   Built from SummaryRecord rows via from_attributes.
"""

import uuid
from datetime import datetime
from typing import List

from pydantic import BaseModel, Field

from app.schemas.processing import SummaryBody


class SummaryListItem(BaseModel):
    """Compact history entry; the preview is the first 200 characters."""

    id: uuid.UUID
    original_filename: str
    file_type: str
    page_count: int
    summary_tier: str
    preview: str = Field(description="First 200 characters of the executive summary")
    created_at: datetime

    model_config = {"from_attributes": True}


class SummaryDetail(BaseModel):
    id: uuid.UUID
    original_filename: str
    file_type: str
    file_size: int
    page_count: int
    extraction_degraded: bool
    summary_tier: str = Field(description="Effective tier the summary was produced at")
    summary: SummaryBody
    export_watermark: bool = Field(description="Exports of this summary must carry a watermark")
    created_at: datetime


class SummaryListResponse(BaseModel):
    summaries: List[SummaryListItem]
    total_count: int = Field(description="All summaries owned by the caller")
    history_limit: int = Field(description="Most recent entries the caller's plan may list")
