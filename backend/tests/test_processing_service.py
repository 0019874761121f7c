"""
DocDigest Backend: Processing Orchestrator Tests
==================================================

What:  End-to-end tests of ProcessingOrchestrator.process() below the HTTP layer.
How:   Real extractor, gate, ledger and summary persistence on a SQLite file;
       only the summarizer is an AsyncMock.

What we test:
    ✅ Free user, short TXT, long requested → medium summary, usage {1, 1}
    ✅ Five documents succeed, the sixth is denied (document_limit 5/5)
    ✅ Upstream failures, save failures and empty documents never touch usage
    ✅ Guests: page ceiling, short tier, nothing persisted or metered
    ✅ A failed ledger write is logged CRITICAL and the summary still returned
    ✅ The temporary upload is always removed
    ✅ Concurrent uploads at N-1 of N: exactly one succeeds
"""

import asyncio
import gc
import logging
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from app.exceptions import (
    DatabaseError,
    ExtractionError,
    LedgerWriteError,
    NoExtractableTextError,
    UpstreamFailureReason,
    UpstreamSummarizationError,
)
from app.models.summary import SummaryRecord
from app.plans import PLANS, PlanName, SummaryTier
from app.services.entitlement_gate import AuthenticatedContext, DenialReason, GuestContext
from app.services.processing_service import GUEST_UPGRADE_MESSAGE


def free_user(user_id: str = "user-1") -> AuthenticatedContext:
    return AuthenticatedContext(user_id=user_id, plan=PLANS[PlanName.FREE])


def stored_files(orchestrator):
    return [path for path in orchestrator.files.upload_root.rglob("*") if path.is_file()]


async def summary_count(db_session) -> int:
    result = await db_session.execute(select(func.count(SummaryRecord.id)))
    return result.scalar()


class TestAuthenticatedProcessing:

    @pytest.mark.asyncio
    async def test_free_user_long_request_gets_medium(self, orchestrator, db_session, sample_txt_bytes, fake_summarizer):
        outcome = await orchestrator.process(
            db_session, free_user(), "memo.txt", sample_txt_bytes, SummaryTier.LONG
        )

        assert not outcome.denied
        response = outcome.response
        assert response.summary_tier == SummaryTier.MEDIUM
        assert response.requested_tier == SummaryTier.LONG
        assert response.downgraded is True
        assert response.page_count == 1
        assert response.page_count_estimated is True
        assert response.plan == "free"
        assert response.export_watermark is True
        assert response.requires_auth is False
        assert (response.usage.documents, response.usage.pages) == (1, 1)
        assert (response.limits.documents, response.limits.pages) == (5, 100)
        assert response.summary.places == ["Berlin"]

        fake_summarizer.summarize.assert_awaited_once()
        assert fake_summarizer.summarize.await_args.args[1] == SummaryTier.MEDIUM

    @pytest.mark.asyncio
    async def test_summary_persisted_with_effective_tier(self, orchestrator, db_session, sample_txt_bytes):
        outcome = await orchestrator.process(
            db_session, free_user(), "memo.txt", sample_txt_bytes, SummaryTier.LONG
        )

        record = await db_session.get(SummaryRecord, outcome.response.summary_id)
        assert record.user_id == "user-1"
        assert record.summary_tier == "medium"
        assert record.original_filename == "memo.txt"
        assert record.file_type == "txt"
        assert record.page_count == 1
        assert record.relevant_names == ["Alice Chen"]

    @pytest.mark.asyncio
    async def test_sixth_document_denied(self, orchestrator, db_session, sample_txt_bytes, fake_summarizer, ledger):
        for _ in range(5):
            outcome = await orchestrator.process(
                db_session, free_user(), "memo.txt", sample_txt_bytes, SummaryTier.SHORT
            )
            assert not outcome.denied

        outcome = await orchestrator.process(
            db_session, free_user(), "memo.txt", sample_txt_bytes, SummaryTier.SHORT
        )

        assert outcome.denied
        assert outcome.denial.reason == DenialReason.DOCUMENT_LIMIT
        assert (outcome.denial.current, outcome.denial.limit) == (5, 5)
        assert fake_summarizer.summarize.await_count == 5

        usage = await ledger.get_current_usage("user-1")
        assert usage.document_count == 5
        assert stored_files(orchestrator) == []

    @pytest.mark.asyncio
    async def test_pdf_charges_exact_pages(self, orchestrator, db_session, three_page_pdf_bytes):
        outcome = await orchestrator.process(
            db_session, free_user(), "report.pdf", three_page_pdf_bytes, SummaryTier.SHORT
        )

        assert outcome.response.page_count == 3
        assert outcome.response.page_count_estimated is False
        assert outcome.response.usage.pages == 3

    @pytest.mark.asyncio
    async def test_degraded_odt_flagged(self, orchestrator, db_session):
        outcome = await orchestrator.process(
            db_session, free_user(), "notes.odt", b"Flat text saved as odt", SummaryTier.SHORT
        )
        assert outcome.response.extraction_degraded is True


class TestFailuresLeaveUsageUnchanged:

    @pytest.mark.asyncio
    async def test_upstream_failure(self, orchestrator, db_session, sample_txt_bytes, fake_summarizer, ledger):
        fake_summarizer.summarize.side_effect = UpstreamSummarizationError(UpstreamFailureReason.TIMEOUT)

        with pytest.raises(UpstreamSummarizationError) as exc_info:
            await orchestrator.process(db_session, free_user(), "memo.txt", sample_txt_bytes, SummaryTier.SHORT)

        assert exc_info.value.reason == UpstreamFailureReason.TIMEOUT
        usage = await ledger.get_current_usage("user-1")
        assert (usage.document_count, usage.page_count) == (0, 0)
        assert await summary_count(db_session) == 0
        assert stored_files(orchestrator) == []

    @pytest.mark.asyncio
    async def test_empty_document(self, orchestrator, db_session, fake_summarizer, ledger):
        with pytest.raises(NoExtractableTextError):
            await orchestrator.process(db_session, free_user(), "blank.txt", b"  \n\n  ", SummaryTier.SHORT)

        fake_summarizer.summarize.assert_not_awaited()
        assert (await ledger.get_current_usage("user-1")).document_count == 0

    @pytest.mark.asyncio
    async def test_extraction_failure(self, orchestrator, db_session, fake_summarizer, ledger):
        with pytest.raises(ExtractionError):
            await orchestrator.process(db_session, free_user(), "broken.pdf", b"not a pdf", SummaryTier.SHORT)

        fake_summarizer.summarize.assert_not_awaited()
        assert (await ledger.get_current_usage("user-1")).document_count == 0
        assert stored_files(orchestrator) == []

    @pytest.mark.asyncio
    async def test_save_failure(self, orchestrator, db_session, sample_txt_bytes, ledger):
        with patch.object(orchestrator.summaries, "save_summary", AsyncMock(side_effect=DatabaseError())):
            with pytest.raises(DatabaseError):
                await orchestrator.process(
                    db_session, free_user(), "memo.txt", sample_txt_bytes, SummaryTier.SHORT
                )

        assert (await ledger.get_current_usage("user-1")).document_count == 0


class TestLedgerWriteFailure:

    @pytest.mark.asyncio
    async def test_summary_returned_and_failure_logged(
        self, orchestrator, db_session, sample_txt_bytes, ledger, caplog
    ):
        failing = AsyncMock(side_effect=LedgerWriteError(user_id="user-1", page_count=1))

        with patch.object(ledger, "increment_usage", failing):
            with caplog.at_level(logging.CRITICAL, logger="app.services.processing_service"):
                outcome = await orchestrator.process(
                    db_session, free_user(), "memo.txt", sample_txt_bytes, SummaryTier.SHORT
                )

        assert not outcome.denied
        assert outcome.response.summary_id is not None
        # Usage reported as it would stand had the write succeeded
        assert (outcome.response.usage.documents, outcome.response.usage.pages) == (1, 1)
        assert any(
            record.levelno == logging.CRITICAL and "USAGE NOT RECORDED" in record.getMessage()
            for record in caplog.records
        )
        assert await summary_count(db_session) == 1


class TestGuestProcessing:

    @pytest.mark.asyncio
    async def test_guest_over_page_ceiling(self, orchestrator, db_session, three_page_pdf_bytes, fake_summarizer, ledger):
        with patch.object(ledger, "increment_usage", AsyncMock()) as increment:
            outcome = await orchestrator.process(
                db_session, GuestContext(max_pages=2), "report.pdf", three_page_pdf_bytes, SummaryTier.SHORT
            )

        assert outcome.denied
        assert outcome.denial.reason == DenialReason.DOCUMENT_TOO_LARGE
        assert (outcome.denial.page_count, outcome.denial.max_pages) == (3, 2)
        increment.assert_not_awaited()
        fake_summarizer.summarize.assert_not_awaited()
        assert stored_files(orchestrator) == []

    @pytest.mark.asyncio
    async def test_guest_success(self, orchestrator, db_session, sample_txt_bytes, fake_summarizer, ledger):
        with patch.object(ledger, "increment_usage", AsyncMock()) as increment:
            outcome = await orchestrator.process(
                db_session, GuestContext(max_pages=2), "memo.txt", sample_txt_bytes, SummaryTier.LONG
            )

        response = outcome.response
        assert response.summary_tier == SummaryTier.SHORT
        assert response.downgraded is True
        assert response.summary_id is None
        assert response.usage is None
        assert response.plan == "guest"
        assert response.requires_auth is True
        assert response.upgrade_message == GUEST_UPGRADE_MESSAGE
        increment.assert_not_awaited()
        assert fake_summarizer.summarize.await_args.args[1] == SummaryTier.SHORT
        assert await summary_count(db_session) == 0


class TestConcurrentUploads:

    @pytest.mark.asyncio
    async def test_race_at_last_document_admits_one(
        self, orchestrator, session_factory, sample_txt_bytes, fake_summarizer, summary_content, ledger
    ):
        """Two uploads at 4/5 with a slow summarizer: one succeeds, one is denied."""
        for _ in range(4):
            await ledger.increment_usage("user-1", 1)

        async def slow_summarize(text, tier):
            await asyncio.sleep(0.1)
            return summary_content

        fake_summarizer.summarize.side_effect = slow_summarize

        async def upload():
            async with session_factory() as session:
                return await orchestrator.process(
                    session, free_user(), "memo.txt", sample_txt_bytes, SummaryTier.SHORT
                )

        outcomes = await asyncio.gather(upload(), upload())

        assert sorted(outcome.denied for outcome in outcomes) == [False, True]
        denial = next(outcome.denial for outcome in outcomes if outcome.denied)
        assert denial.reason == DenialReason.DOCUMENT_LIMIT
        assert (denial.current, denial.limit) == (5, 5)
        assert fake_summarizer.summarize.await_count == 1

        usage = await ledger.get_current_usage("user-1")
        assert usage.document_count == 5

    @pytest.mark.asyncio
    async def test_different_users_not_serialized(self, orchestrator, session_factory, sample_txt_bytes, ledger):
        async def upload(user_id):
            async with session_factory() as session:
                return await orchestrator.process(
                    session, free_user(user_id), "memo.txt", sample_txt_bytes, SummaryTier.SHORT
                )

        outcomes = await asyncio.gather(upload("user-a"), upload("user-b"))

        assert not any(outcome.denied for outcome in outcomes)
        assert (await ledger.get_current_usage("user-a")).document_count == 1
        assert (await ledger.get_current_usage("user-b")).document_count == 1
        gc.collect()
        assert len(orchestrator.user_locks) == 0
