"""
DocDigest Backend: Processing Orchestrator
============================================

What:  The single upload → summary workflow, shared by authenticated and
       guest callers through an AuthContext.
Why:   Authenticated and guest uploads share one code path, so their
       extraction, gating and cleanup cannot drift apart.
How:   Composes FileService, TextExtractor, EntitlementGate, the Summarizer,
       SummaryService and UsageLedger.
Who:   POST /api/process and POST /api/process-guest.

Orchestration Flow:
    ┌──────────┐   ┌──────────┐   ┌──────────┐   ┌───────────┐   ┌──────────┐   ┌───────────┐
    │  Store   │──▶│ Extract  │──▶│   Gate   │──▶│ Summarize │──▶│ Persist  │──▶│ Increment │
    │ (temp)   │   │          │   │          │   │ (timeout) │   │ (auth)   │   │  (auth)   │
    └──────────┘   └──────────┘   └──────────┘   └───────────┘   └──────────┘   └───────────┘

    Store fails      → ValidationError / FileStorageError
    Extract fails    → UnsupportedFormatError / ExtractionError / NoExtractableTextError
    Gate denies      → ProcessingOutcome(denial=...), not an exception
    Summarize fails  → UpstreamSummarizationError(reason)
    Persist fails    → DatabaseError
    Increment fails  → logged at CRITICAL, success still returned

    The ledger is touched only after the summary is committed, so every
    failure above leaves usage unchanged. The temporary upload is deleted on
    every one of these paths.

    For an authenticated user, Gate through Increment holds a per-user lock:
    two uploads racing at N-1 of N documents cannot both be approved. The
    lock is per process, matching a single-worker deployment.
"""

import logging
import time
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import LedgerWriteError, NoExtractableTextError
from app.plans import SummaryTier
from app.schemas.processing import LimitsBody, ProcessResponse, SummaryBody, UsageBody
from app.services.entitlement_gate import (
    AuthContext,
    AuthenticatedContext,
    EntitlementDecision,
    EntitlementDenial,
    EntitlementGate,
    GuestContext,
    entitlement_gate,
)
from app.services.file_service import FileService, StoredUpload, file_service
from app.services.gemini_service import gemini_summarizer
from app.services.summarizer_base import Summarizer, SummaryContent
from app.services.summary_service import SummaryService, summary_service
from app.services.text_extractor import ExtractionResult, TextExtractor, text_extractor
from app.services.usage_ledger import UsageLedger, UserLocks, usage_ledger

logger = logging.getLogger(__name__)

GUEST_UPGRADE_MESSAGE = (
    "Sign in to keep a history of your summaries and to unlock longer summaries "
    "for larger documents."
)


@dataclass(frozen=True)
class ProcessingOutcome:
    """Exactly one of `response` / `denial` is set."""

    response: Optional[ProcessResponse] = None
    denial: Optional[EntitlementDenial] = None

    @property
    def denied(self) -> bool:
        return self.denial is not None


class ProcessingOrchestrator:
    """
    Runs one processing request end to end.

    Collaborators are injectable so tests can substitute the summarizer and
    point the ledger at a throwaway database.
    """

    def __init__(
        self,
        files: FileService = file_service,
        extractor: TextExtractor = text_extractor,
        gate: EntitlementGate = entitlement_gate,
        summarizer: Summarizer = gemini_summarizer,
        ledger: UsageLedger = usage_ledger,
        summaries: SummaryService = summary_service,
    ):
        self.files = files
        self.extractor = extractor
        self.gate = gate
        self.summarizer = summarizer
        self.ledger = ledger
        self.summaries = summaries
        self.user_locks = UserLocks()

    async def process(
        self,
        db: AsyncSession,
        auth: AuthContext,
        filename: str,
        content: bytes,
        requested_tier: SummaryTier,
        content_length: Optional[int] = None,
    ) -> ProcessingOutcome:
        """
        Args:
            db: Request session; only used on the authenticated path.
            auth: AuthenticatedContext(user_id, plan) or GuestContext(max_pages)
            filename: Client filename; only its extension and basename are used
            content: Raw upload bytes
            requested_tier: Tier the client asked for; the gate may lower it
            content_length: Content-Length header, checked before the body

        Returns:
            ProcessingOutcome with a ProcessResponse, or with the denial.

        Raises:
            ValidationError, UnsupportedFormatError, ExtractionError,
            NoExtractableTextError, UpstreamSummarizationError,
            FileStorageError, DatabaseError
        """
        start_time = time.time()
        caller = "guest" if isinstance(auth, GuestContext) else f"user={auth.user_id}"

        async with self.files.temporary_upload(filename, content, content_length) as upload:
            extraction = await self.extractor.extract_file(upload.path, upload.file_format)
            if extraction.is_empty:
                raise NoExtractableTextError(filename=upload.original_filename)

            # Gate through increment runs one at a time per user, so the limit
            # read by the gate is still true when usage is charged.
            serial = nullcontext() if isinstance(auth, GuestContext) else self.user_locks(auth.user_id)
            async with serial:
                decision = await self.gate.evaluate(auth, requested_tier, extraction.page_count)
                if not decision.approved:
                    return ProcessingOutcome(denial=decision.denial)

                summary = await self.summarizer.summarize(extraction.text, decision.effective_tier)

                if isinstance(auth, GuestContext):
                    response = self._guest_response(upload, extraction, decision, summary)
                else:
                    response = await self._complete_authenticated(
                        db, auth, upload, extraction, decision, summary
                    )

        logger.info(
            "Processed %s for %s: %d pages, tier %s (requested %s) in %.0fms",
            upload.file_format,
            caller,
            extraction.page_count,
            decision.effective_tier.value,
            requested_tier.value,
            (time.time() - start_time) * 1000,
        )
        return ProcessingOutcome(response=response)

    # ── Authenticated completion ──────────────────────────────────────────

    async def _complete_authenticated(
        self,
        db: AsyncSession,
        auth: AuthenticatedContext,
        upload: StoredUpload,
        extraction: ExtractionResult,
        decision: EntitlementDecision,
        summary: SummaryContent,
    ) -> ProcessResponse:
        # Persist first: a committed record is what the increment pays for.
        record = await self.summaries.save_summary(
            db,
            user_id=auth.user_id,
            original_filename=upload.original_filename,
            file_size=upload.size,
            extraction=extraction,
            tier=decision.effective_tier,
            content=summary,
        )
        usage = await self._record_usage(auth.user_id, extraction.page_count, str(record.id))
        limits = self.ledger.get_limits(auth.plan)

        return ProcessResponse(
            summary_id=record.id,
            filename=upload.original_filename,
            file_type=extraction.file_format,
            page_count=extraction.page_count,
            page_count_estimated=extraction.page_count_estimated,
            extraction_degraded=extraction.degraded,
            summary_tier=decision.effective_tier,
            requested_tier=decision.requested_tier,
            downgraded=decision.downgraded,
            summary=_summary_body(summary),
            plan=auth.plan.name.value,
            export_watermark=auth.plan.export_watermark,
            usage=usage,
            limits=LimitsBody(documents=limits.documents, pages=limits.pages),
        )

    async def _record_usage(self, user_id: str, page_count: int, summary_id: str) -> Optional[UsageBody]:
        try:
            record = await self.ledger.increment_usage(user_id, page_count)
            return UsageBody(period=record.period, documents=record.document_count, pages=record.page_count)
        except LedgerWriteError as e:
            # The user keeps the summary; usage is under-counted instead.
            logger.critical(
                "USAGE NOT RECORDED: user=%s summary=%s pages=%d context=%s",
                user_id,
                summary_id,
                page_count,
                e.context,
                exc_info=True,
            )

        try:
            before = await self.ledger.get_current_usage(user_id)
        except SQLAlchemyError as e:
            logger.error("Could not read usage after failed increment for user=%s: %s", user_id, str(e))
            return None
        return UsageBody(
            period=before.period,
            documents=before.document_count + 1,
            pages=before.page_count + page_count,
        )

    # ── Guest completion ──────────────────────────────────────────────────

    @staticmethod
    def _guest_response(
        upload: StoredUpload,
        extraction: ExtractionResult,
        decision: EntitlementDecision,
        summary: SummaryContent,
    ) -> ProcessResponse:
        return ProcessResponse(
            filename=upload.original_filename,
            file_type=extraction.file_format,
            page_count=extraction.page_count,
            page_count_estimated=extraction.page_count_estimated,
            extraction_degraded=extraction.degraded,
            summary_tier=decision.effective_tier,
            requested_tier=decision.requested_tier,
            downgraded=decision.downgraded,
            summary=_summary_body(summary),
            plan="guest",
            export_watermark=True,
            requires_auth=True,
            upgrade_message=GUEST_UPGRADE_MESSAGE,
        )


def _summary_body(summary: SummaryContent) -> SummaryBody:
    return SummaryBody(
        executive_summary=summary.executive_summary,
        key_points=summary.key_points,
        action_items=summary.action_items,
        important_dates=summary.important_dates,
        relevant_names=summary.relevant_names,
        places=summary.places,
    )


# ── Singleton Instance ────────────────────────────────────────────────────
processing_orchestrator = ProcessingOrchestrator()
