"""
DocDigest Backend: Summary Persistence and History
====================================================

What:  Writes SummaryRecord rows and reads them back for their owner.
Why:   Ownership checks live in the queries themselves, not in each route.
How:   Plain SQLAlchemy queries on the request session. Every read filters by
       user_id, so another user's summary is indistinguishable from a
       missing one (404 either way).
Who:   ProcessingOrchestrator (save), history routes (get, list).

Query plan (list):
    SELECT ... FROM summaries WHERE user_id = :uid
    ORDER BY created_at DESC LIMIT :history_limit
    → idx_summaries_user_created_at
"""

import logging
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import DatabaseError, NotFoundError
from app.models.summary import SummaryRecord
from app.plans import Plan, SummaryTier
from app.schemas.processing import SummaryBody
from app.schemas.summary import SummaryDetail, SummaryListItem, SummaryListResponse
from app.services.summarizer_base import SummaryContent
from app.services.text_extractor import ExtractionResult

logger = logging.getLogger(__name__)


def summary_body(record: SummaryRecord) -> SummaryBody:
    return SummaryBody(
        executive_summary=record.executive_summary,
        key_points=record.key_points or [],
        action_items=record.action_items or [],
        important_dates=record.important_dates or [],
        relevant_names=record.relevant_names or [],
        places=record.places or [],
    )


class SummaryService:
    """Stateless; receives the session on every call."""

    async def save_summary(
        self,
        db: AsyncSession,
        user_id: str,
        original_filename: str,
        file_size: int,
        extraction: ExtractionResult,
        tier: SummaryTier,
        content: SummaryContent,
    ) -> SummaryRecord:
        """
        Insert and commit one immutable summary.

        The commit happens here, not at the end of the request, because the
        ledger increment that follows must only run once the record is durable.

        Raises:
            DatabaseError: insert or commit failed
        """
        record = SummaryRecord(
            user_id=user_id,
            original_filename=original_filename,
            file_type=extraction.file_format,
            file_size=file_size,
            page_count=extraction.page_count,
            extraction_degraded=extraction.degraded,
            summary_tier=tier.value,
            executive_summary=content.executive_summary,
            key_points=content.key_points,
            action_items=content.action_items,
            important_dates=content.important_dates,
            relevant_names=content.relevant_names,
            places=content.places,
            raw_response=content.raw_response,
        )
        try:
            db.add(record)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("Failed to save summary for user=%s: %s", user_id, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not save the summary. Your usage was not charged. Please try again.",
                context={"error_type": type(e).__name__},
            ) from e

        logger.info(
            "Summary %s saved for user=%s (%s, %d pages, tier=%s)",
            record.id,
            user_id,
            record.file_type,
            record.page_count,
            record.summary_tier,
        )
        return record

    async def get_summary(
        self,
        db: AsyncSession,
        user_id: str,
        summary_id: UUID,
        plan: Plan,
    ) -> SummaryDetail:
        """
        Raises:
            NotFoundError: unknown id, or owned by someone else
            DatabaseError: query failed
        """
        try:
            result = await db.execute(
                select(SummaryRecord).where(
                    SummaryRecord.id == summary_id,
                    SummaryRecord.user_id == user_id,
                )
            )
            record = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database error fetching summary %s: %s", summary_id, str(e))
            raise DatabaseError(
                message="Could not retrieve the summary. Please try again.",
                context={"summary_id": str(summary_id)},
            ) from e

        if record is None:
            raise NotFoundError(resource="summary", resource_id=str(summary_id))

        return SummaryDetail(
            id=record.id,
            original_filename=record.original_filename,
            file_type=record.file_type,
            file_size=record.file_size,
            page_count=record.page_count,
            extraction_degraded=record.extraction_degraded,
            summary_tier=record.summary_tier,
            summary=summary_body(record),
            export_watermark=plan.export_watermark,
            created_at=record.created_at,
        )

    async def list_summaries(
        self,
        db: AsyncSession,
        user_id: str,
        plan: Plan,
    ) -> SummaryListResponse:
        """The caller's newest summaries, capped at the plan's history_limit."""
        try:
            result = await db.execute(
                select(SummaryRecord)
                .where(SummaryRecord.user_id == user_id)
                .order_by(SummaryRecord.created_at.desc())
                .limit(plan.history_limit)
            )
            records = list(result.scalars().all())

            count_result = await db.execute(
                select(func.count(SummaryRecord.id)).where(SummaryRecord.user_id == user_id)
            )
            total_count = count_result.scalar() or 0
        except SQLAlchemyError as e:
            logger.error("Database error listing summaries: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve summaries. Please try again.",
                context={"error_type": type(e).__name__},
            ) from e

        return SummaryListResponse(
            summaries=[
                SummaryListItem(
                    id=record.id,
                    original_filename=record.original_filename,
                    file_type=record.file_type,
                    page_count=record.page_count,
                    summary_tier=record.summary_tier,
                    preview=record.executive_summary[:200],
                    created_at=record.created_at,
                )
                for record in records
            ],
            total_count=total_count,
            history_limit=plan.history_limit,
        )


# ── Singleton Instance ────────────────────────────────────────────────────
summary_service = SummaryService()
