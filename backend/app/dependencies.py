"""
DocDigest Backend: Request Dependencies
=========================================

What:  FastAPI dependencies that turn an HTTP request into an AuthContext and
       hand out the service singletons.
How:   Identity arrives from the authenticating gateway in a trusted header
       (settings.identity_header, default X-User-ID). The plan is looked up
       per request, so a subscription change applies to the next request.

Services are provided through functions rather than imported directly in
route bodies so tests can swap them with app.dependency_overrides.
"""

from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db_session
from app.exceptions import AuthenticationError
from app.services.entitlement_gate import AuthenticatedContext, GuestContext
from app.services.processing_service import ProcessingOrchestrator, processing_orchestrator
from app.services.subscription_service import subscription_service
from app.services.usage_ledger import UsageLedger, usage_ledger


def get_optional_user_id(request: Request) -> Optional[str]:
    user_id = request.headers.get(settings.identity_header, "").strip()
    return user_id or None


def require_user_id(user_id: Optional[str] = Depends(get_optional_user_id)) -> str:
    """Raises AuthenticationError (401) when no identity was forwarded."""
    if not user_id:
        raise AuthenticationError(context={"header": settings.identity_header})
    return user_id


async def get_auth_context(
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db_session),
) -> AuthenticatedContext:
    plan = await subscription_service.get_plan(db, user_id)
    return AuthenticatedContext(user_id=user_id, plan=plan)


def get_guest_context() -> GuestContext:
    return GuestContext(max_pages=settings.guest_max_pages)


def get_processing_orchestrator() -> ProcessingOrchestrator:
    return processing_orchestrator


def get_usage_ledger() -> UsageLedger:
    return usage_ledger
