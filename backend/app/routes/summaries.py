"""
DocDigest Backend: Summary History Routes
===========================================

What:  GET /api/summaries and GET /api/summaries/{id}.
How:   Thin wrappers over SummaryService; every query is scoped to the
       caller, and another user's summary answers 404 like a missing one.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.dependencies import get_auth_context
from app.schemas.common import ErrorResponse
from app.schemas.summary import SummaryDetail, SummaryListResponse
from app.services.entitlement_gate import AuthenticatedContext
from app.services.summary_service import summary_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Summaries"])


@router.get(
    "/summaries",
    response_model=SummaryListResponse,
    responses={
        401: {"description": "No identity", "model": ErrorResponse},
        500: {"description": "Database error", "model": ErrorResponse},
    },
    summary="List the caller's summaries",
    description="Newest first, capped at the plan's history limit (free: 5, premium/pro: 50).",
)
async def list_summaries(
    auth: AuthenticatedContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db_session),
) -> SummaryListResponse:
    return await summary_service.list_summaries(db, auth.user_id, auth.plan)


@router.get(
    "/summaries/{summary_id}",
    response_model=SummaryDetail,
    responses={
        401: {"description": "No identity", "model": ErrorResponse},
        404: {"description": "Summary not found", "model": ErrorResponse},
        422: {"description": "Invalid UUID format"},
    },
    summary="Get one summary",
)
async def get_summary(
    summary_id: UUID = Path(..., description="Summary UUID"),
    auth: AuthenticatedContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db_session),
) -> SummaryDetail:
    return await summary_service.get_summary(db, auth.user_id, summary_id, auth.plan)
