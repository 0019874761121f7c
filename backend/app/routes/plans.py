"""
DocDigest Backend: Plans Route
================================

GET /api/plans: the in-code plan table, for pricing and upgrade screens.
No identity required.
"""

from fastapi import APIRouter

from app.config import settings
from app.plans import PLANS
from app.schemas.account import PlanInfo, PlansResponse

router = APIRouter(prefix="/api", tags=["Plans"])


@router.get("/plans", response_model=PlansResponse, summary="Subscription plans and their limits")
async def list_plans() -> PlansResponse:
    return PlansResponse(
        plans=[
            PlanInfo(
                name=plan.name.value,
                max_documents_per_period=plan.max_documents_per_period,
                max_pages_per_period=plan.max_pages_per_period,
                max_summary_tier=plan.max_summary_tier.value,
                history_limit=plan.history_limit,
                capabilities=[capability.value for capability in plan.granted_capabilities],
                export_watermark=plan.export_watermark,
            )
            for plan in PLANS.values()
        ],
        guest_max_pages=settings.guest_max_pages,
    )
