"""
DocDigest Backend: Usage Route
================================

GET /api/usage: the caller's ledger snapshot for the current period, the
limits of their plan and what remains. Read-only; never creates a ledger row.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from app.dependencies import get_auth_context, get_usage_ledger
from app.schemas.account import RemainingBody, UsageResponse
from app.schemas.common import ErrorResponse
from app.schemas.processing import LimitsBody, UsageBody
from app.services.entitlement_gate import AuthenticatedContext
from app.services.usage_ledger import UsageLedger

router = APIRouter(prefix="/api", tags=["Usage"])


def _remaining(limit: Optional[int], used: int) -> Optional[int]:
    if limit is None:
        return None
    return max(0, limit - used)


@router.get(
    "/usage",
    response_model=UsageResponse,
    responses={401: {"description": "No identity", "model": ErrorResponse}},
    summary="Current period usage and plan limits",
)
async def get_usage(
    auth: AuthenticatedContext = Depends(get_auth_context),
    ledger: UsageLedger = Depends(get_usage_ledger),
) -> UsageResponse:
    snapshot = await ledger.get_current_usage(auth.user_id)
    limits = ledger.get_limits(auth.plan)

    return UsageResponse(
        user_id=auth.user_id,
        plan=auth.plan.name.value,
        max_summary_tier=auth.plan.max_summary_tier.value,
        capabilities=[capability.value for capability in auth.plan.granted_capabilities],
        export_watermark=auth.plan.export_watermark,
        usage=UsageBody(
            period=snapshot.period,
            documents=snapshot.document_count,
            pages=snapshot.page_count,
        ),
        limits=LimitsBody(documents=limits.documents, pages=limits.pages),
        remaining=RemainingBody(
            documents=_remaining(limits.documents, snapshot.document_count),
            pages=_remaining(limits.pages, snapshot.page_count),
        ),
    )
