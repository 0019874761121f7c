"""
DocDigest Backend: Document Processing Routes
===============================================

What:  POST /api/process (authenticated) and POST /api/process-guest.
How:   Both read the multipart upload and hand it to the one
       ProcessingOrchestrator; only the AuthContext differs.
Who:   The upload screen of the frontend.

Responses:
    200  ProcessResponse (summary_tier is the effective tier)
    403  EntitlementDeniedResponse, an upgrade prompt rather than an error
    400/401/422/429/502/503/504  ErrorResponse via the global handlers
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.dependencies import get_auth_context, get_guest_context, get_processing_orchestrator
from app.exceptions import ValidationError
from app.middleware.request_id import request_id_var
from app.plans import SummaryTier
from app.schemas.common import ErrorResponse
from app.schemas.processing import EntitlementDeniedResponse, ProcessResponse
from app.services.entitlement_gate import AuthContext, AuthenticatedContext, GuestContext
from app.services.processing_service import ProcessingOrchestrator, ProcessingOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Processing"])

_PROCESS_RESPONSES = {
    200: {"description": "Document summarized", "model": ProcessResponse},
    400: {"description": "Invalid upload or summary tier", "model": ErrorResponse},
    403: {"description": "Plan does not allow this request", "model": EntitlementDeniedResponse},
    422: {"description": "Document could not be read", "model": ErrorResponse},
    429: {"description": "Rate limited (ours or the summarizer's)", "model": ErrorResponse},
    502: {"description": "Summarizer rejected the request", "model": ErrorResponse},
    503: {"description": "Summarizer unavailable or out of quota", "model": ErrorResponse},
    504: {"description": "Summarizer timed out", "model": ErrorResponse},
}


def parse_summary_tier(value: Optional[str]) -> SummaryTier:
    """Raises ValidationError (400) for anything but short/medium/long."""
    if not value:
        return SummaryTier.MEDIUM
    try:
        return SummaryTier.parse(value)
    except ValueError:
        allowed = ", ".join(tier.value for tier in SummaryTier)
        raise ValidationError(
            message=f"Invalid summary tier '{value}'. Must be one of: {allowed}",
            field="summary_tier",
        )


def render_outcome(outcome: ProcessingOutcome):
    if outcome.denied:
        denial = outcome.denial
        body = EntitlementDeniedResponse(
            reason=denial.reason.value,
            message=denial.message,
            current=denial.current,
            limit=denial.limit,
            page_count=denial.page_count,
            max_pages=denial.max_pages,
            plan=denial.plan,
            request_id=request_id_var.get() or None,
        )
        return JSONResponse(status_code=403, content=body.model_dump(mode="json"))
    return outcome.response


async def _run(
    orchestrator: ProcessingOrchestrator,
    db: AsyncSession,
    auth: AuthContext,
    file: UploadFile,
    tier: SummaryTier,
):
    try:
        content = await file.read()
        logger.info(
            "Received %s upload: filename=%s, size=%d bytes, tier=%s",
            "guest" if isinstance(auth, GuestContext) else "authenticated",
            file.filename or "unknown",
            len(content),
            tier.value,
        )
        outcome = await orchestrator.process(
            db=db,
            auth=auth,
            filename=file.filename or "",
            content=content,
            requested_tier=tier,
            content_length=file.size,
        )
    finally:
        await file.close()
    return render_outcome(outcome)


@router.post(
    "/process",
    response_model=ProcessResponse,
    responses={**_PROCESS_RESPONSES, 401: {"description": "No identity", "model": ErrorResponse}},
    summary="Summarize a document",
    description=(
        "Upload a PDF, DOCX, TXT, RTF or ODT document and receive a sectioned summary. "
        "The requested tier is lowered silently to the plan's maximum. "
        "Counts against the caller's monthly document and page quota."
    ),
)
async def process_document(
    file: UploadFile = File(..., description="Document to summarize (pdf, docx, txt, rtf, odt)"),
    summary_tier: Optional[str] = Form(default="medium", description="short, medium or long"),
    auth: AuthenticatedContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db_session),
    orchestrator: ProcessingOrchestrator = Depends(get_processing_orchestrator),
):
    tier = parse_summary_tier(summary_tier)
    return await _run(orchestrator, db, auth, file, tier)


@router.post(
    "/process-guest",
    response_model=ProcessResponse,
    responses=_PROCESS_RESPONSES,
    summary="Summarize a small document without signing in",
    description=(
        "Guest path: short summaries only, limited to a few pages per document, "
        "nothing is stored and no quota is consumed."
    ),
)
async def process_document_guest(
    file: UploadFile = File(..., description="Document to summarize (pdf, docx, txt, rtf, odt)"),
    summary_tier: Optional[str] = Form(default="short", description="Ignored beyond validation; guests get short"),
    auth: GuestContext = Depends(get_guest_context),
    db: AsyncSession = Depends(get_db_session),
    orchestrator: ProcessingOrchestrator = Depends(get_processing_orchestrator),
):
    tier = parse_summary_tier(summary_tier)
    return await _run(orchestrator, db, auth, file, tier)
