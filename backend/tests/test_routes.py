"""
DocDigest Backend: API Route Tests
====================================

What:  HTTP-level tests for every router through httpx.AsyncClient.
How:   The test_client fixture builds a fresh app whose session, orchestrator
       and ledger point at the per-test SQLite database. The summarizer is
       an AsyncMock, so no request leaves the process.

What we test:
    ✅ Status codes and body shapes for success, denial and each error family
    ✅ Identity via X-User-ID; plan resolved from the subscriptions table
    ✅ Usage, plans and history endpoints
    ✅ Request ID propagation and the per-caller rate limit
"""

from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest

from app.config import settings
from app.exceptions import UpstreamFailureReason, UpstreamSummarizationError
from app.models.subscription import Subscription
from app.models.summary import SummaryRecord
from app.services.gemini_service import gemini_summarizer

USER = {"X-User-ID": "user-1"}


def upload(filename: str, content: bytes, tier: str = None):
    kwargs = {"files": {"file": (filename, content, "application/octet-stream")}}
    if tier is not None:
        kwargs["data"] = {"summary_tier": tier}
    return kwargs


async def add_subscription(session_factory, user_id: str, plan: str, status: str = "active"):
    async with session_factory() as session:
        session.add(Subscription(user_id=user_id, plan=plan, status=status))
        await session.commit()


class TestProcessRoute:

    @pytest.mark.asyncio
    async def test_requires_identity(self, test_client, sample_txt_bytes):
        response = await test_client.post("/api/process", **upload("memo.txt", sample_txt_bytes))

        assert response.status_code == 401
        assert response.json()["error"] == "authentication_required"

    @pytest.mark.asyncio
    async def test_free_user_success(self, test_client, sample_txt_bytes):
        response = await test_client.post(
            "/api/process", headers=USER, **upload("memo.txt", sample_txt_bytes, "long")
        )

        assert response.status_code == 200
        body = response.json()
        assert body["summary_tier"] == "medium"
        assert body["requested_tier"] == "long"
        assert body["downgraded"] is True
        assert body["usage"]["documents"] == 1
        assert body["usage"]["pages"] == 1
        assert body["limits"] == {"documents": 5, "pages": 100}
        assert body["summary"]["executive_summary"].startswith("The memo plans")
        assert body["summary_id"]

    @pytest.mark.asyncio
    async def test_default_tier_is_medium(self, test_client, sample_txt_bytes):
        response = await test_client.post("/api/process", headers=USER, **upload("memo.txt", sample_txt_bytes))
        assert response.json()["requested_tier"] == "medium"

    @pytest.mark.asyncio
    async def test_premium_subscription_gets_long(self, test_client, session_factory, sample_txt_bytes):
        await add_subscription(session_factory, "user-p", "premium")

        response = await test_client.post(
            "/api/process", headers={"X-User-ID": "user-p"}, **upload("memo.txt", sample_txt_bytes, "long")
        )

        body = response.json()
        assert body["summary_tier"] == "long"
        assert body["plan"] == "premium"
        assert body["export_watermark"] is False
        assert body["limits"] == {"documents": 50, "pages": 1000}

    @pytest.mark.asyncio
    async def test_inactive_subscription_is_free(self, test_client, session_factory, sample_txt_bytes):
        await add_subscription(session_factory, "user-p", "premium", status="past_due")

        response = await test_client.post(
            "/api/process", headers={"X-User-ID": "user-p"}, **upload("memo.txt", sample_txt_bytes, "long")
        )

        assert response.json()["plan"] == "free"
        assert response.json()["summary_tier"] == "medium"

    @pytest.mark.asyncio
    async def test_invalid_tier(self, test_client, sample_txt_bytes):
        response = await test_client.post(
            "/api/process", headers=USER, **upload("memo.txt", sample_txt_bytes, "huge")
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["details"]["field"] == "summary_tier"

    @pytest.mark.asyncio
    async def test_unsupported_format(self, test_client):
        response = await test_client.post("/api/process", headers=USER, **upload("scan.png", b"\x89PNG"))

        assert response.status_code == 400
        assert "not supported" in response.json()["message"]

    @pytest.mark.asyncio
    async def test_missing_file(self, test_client):
        response = await test_client.post("/api/process", headers=USER, data={"summary_tier": "short"})

        assert response.status_code == 422
        assert response.json()["error"] == "request_validation_error"

    @pytest.mark.asyncio
    async def test_corrupt_document(self, test_client):
        response = await test_client.post("/api/process", headers=USER, **upload("broken.docx", b"garbage"))

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "extraction_failed"
        assert body["details"] == {"format": "docx"}

    @pytest.mark.asyncio
    async def test_empty_text(self, test_client):
        response = await test_client.post("/api/process", headers=USER, **upload("blank.txt", b"   \n  "))

        assert response.status_code == 422
        assert response.json()["error"] == "no_extractable_text"

    @pytest.mark.asyncio
    async def test_document_limit_denial(self, test_client, ledger, sample_txt_bytes):
        for _ in range(5):
            await ledger.increment_usage("user-1", 1)

        response = await test_client.post("/api/process", headers=USER, **upload("memo.txt", sample_txt_bytes))

        assert response.status_code == 403
        body = response.json()
        assert body["error"] == "entitlement_denied"
        assert body["reason"] == "document_limit"
        assert (body["current"], body["limit"]) == (5, 5)
        assert body["plan"] == "free"
        assert body["request_id"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "reason, status, retryable",
        [
            (UpstreamFailureReason.TIMEOUT, 504, True),
            (UpstreamFailureReason.RATE_LIMITED, 429, True),
            (UpstreamFailureReason.QUOTA_EXCEEDED, 503, False),
            (UpstreamFailureReason.INVALID_CREDENTIAL, 502, False),
        ],
    )
    async def test_upstream_failures_keep_reason(
        self, test_client, fake_summarizer, ledger, sample_txt_bytes, reason, status, retryable
    ):
        fake_summarizer.summarize.side_effect = UpstreamSummarizationError(reason)

        response = await test_client.post("/api/process", headers=USER, **upload("memo.txt", sample_txt_bytes))

        assert response.status_code == status
        body = response.json()
        assert body["error"] == f"upstream_{reason.value}"
        assert body["details"] == {"reason": reason.value, "retryable": retryable}
        assert (await ledger.get_current_usage("user-1")).document_count == 0

    @pytest.mark.asyncio
    async def test_retry_after_header(self, test_client, fake_summarizer, sample_txt_bytes):
        fake_summarizer.summarize.side_effect = UpstreamSummarizationError(
            UpstreamFailureReason.RATE_LIMITED, retry_after=30
        )

        response = await test_client.post("/api/process", headers=USER, **upload("memo.txt", sample_txt_bytes))

        assert response.headers["Retry-After"] == "30"


class TestGuestRoute:

    @pytest.mark.asyncio
    async def test_guest_success(self, test_client, sample_txt_bytes):
        response = await test_client.post("/api/process-guest", **upload("memo.txt", sample_txt_bytes, "long"))

        assert response.status_code == 200
        body = response.json()
        assert body["summary_tier"] == "short"
        assert body["requires_auth"] is True
        assert body["summary_id"] is None
        assert body["usage"] is None
        assert body["upgrade_message"]

    @pytest.mark.asyncio
    async def test_guest_large_document_denied(self, test_client, three_page_pdf_bytes):
        response = await test_client.post("/api/process-guest", **upload("report.pdf", three_page_pdf_bytes))

        assert response.status_code == 403
        body = response.json()
        assert body["reason"] == "document_too_large"
        assert (body["page_count"], body["max_pages"]) == (3, 2)
        assert body["plan"] == "guest"

    @pytest.mark.asyncio
    async def test_guest_tier_still_validated(self, test_client, sample_txt_bytes):
        response = await test_client.post("/api/process-guest", **upload("memo.txt", sample_txt_bytes, "huge"))
        assert response.status_code == 400


class TestUsageRoute:

    @pytest.mark.asyncio
    async def test_fresh_user(self, test_client):
        response = await test_client.get("/api/usage", headers=USER)

        assert response.status_code == 200
        body = response.json()
        assert body["plan"] == "free"
        assert body["usage"]["documents"] == 0
        assert body["remaining"] == {"documents": 5, "pages": 100}
        assert "long_summary" not in body["capabilities"]

    @pytest.mark.asyncio
    async def test_after_processing(self, test_client, sample_txt_bytes):
        await test_client.post("/api/process", headers=USER, **upload("memo.txt", sample_txt_bytes))

        body = (await test_client.get("/api/usage", headers=USER)).json()
        assert body["usage"]["documents"] == 1
        assert body["remaining"] == {"documents": 4, "pages": 99}

    @pytest.mark.asyncio
    async def test_pro_is_unbounded(self, test_client, session_factory):
        await add_subscription(session_factory, "user-pro", "pro")

        body = (await test_client.get("/api/usage", headers={"X-User-ID": "user-pro"})).json()
        assert body["limits"] == {"documents": None, "pages": None}
        assert body["remaining"] == {"documents": None, "pages": None}
        assert "white_label" in body["capabilities"]

    @pytest.mark.asyncio
    async def test_requires_identity(self, test_client):
        assert (await test_client.get("/api/usage")).status_code == 401


class TestPlansRoute:

    @pytest.mark.asyncio
    async def test_plan_table(self, test_client):
        response = await test_client.get("/api/plans")

        assert response.status_code == 200
        body = response.json()
        plans = {plan["name"]: plan for plan in body["plans"]}
        assert set(plans) == {"free", "premium", "pro"}
        assert plans["free"]["max_summary_tier"] == "medium"
        assert plans["free"]["export_watermark"] is True
        assert plans["pro"]["max_documents_per_period"] is None
        assert body["guest_max_pages"] == settings.guest_max_pages


class TestSummaryRoutes:

    @pytest.mark.asyncio
    async def test_list_and_detail(self, test_client, sample_txt_bytes):
        created = (
            await test_client.post("/api/process", headers=USER, **upload("memo.txt", sample_txt_bytes))
        ).json()

        listing = (await test_client.get("/api/summaries", headers=USER)).json()
        assert listing["total_count"] == 1
        assert listing["history_limit"] == 5
        assert listing["summaries"][0]["id"] == created["summary_id"]
        assert listing["summaries"][0]["preview"].startswith("The memo plans")

        detail = await test_client.get(f"/api/summaries/{created['summary_id']}", headers=USER)
        assert detail.status_code == 200
        assert detail.json()["summary"]["key_points"] == ["Billing dashboard ships March 15"]
        assert detail.json()["summary_tier"] == "medium"

    @pytest.mark.asyncio
    async def test_other_users_summary_is_not_found(self, test_client, sample_txt_bytes):
        created = (
            await test_client.post("/api/process", headers=USER, **upload("memo.txt", sample_txt_bytes))
        ).json()

        response = await test_client.get(
            f"/api/summaries/{created['summary_id']}", headers={"X-User-ID": "someone-else"}
        )
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_unknown_and_malformed_ids(self, test_client):
        assert (await test_client.get(f"/api/summaries/{uuid4()}", headers=USER)).status_code == 404
        assert (await test_client.get("/api/summaries/not-a-uuid", headers=USER)).status_code == 422

    @pytest.mark.asyncio
    async def test_history_capped_by_plan(self, test_client, session_factory):
        async with session_factory() as session:
            for i in range(7):
                session.add(SummaryRecord(
                    user_id="user-1",
                    original_filename=f"doc-{i}.txt",
                    file_type="txt",
                    file_size=10,
                    page_count=1,
                    summary_tier="short",
                    executive_summary=f"Summary {i}",
                ))
            await session.commit()

        listing = (await test_client.get("/api/summaries", headers=USER)).json()
        assert len(listing["summaries"]) == 5
        assert listing["total_count"] == 7


class TestPlumbing:

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, test_client):
        response = await test_client.get("/api/plans", headers={"X-Request-ID": "abc12345"})
        assert response.headers["X-Request-ID"] == "abc12345"

    @pytest.mark.asyncio
    async def test_request_id_generated(self, test_client):
        response = await test_client.get("/api/plans")
        assert len(response.headers["X-Request-ID"]) == 8

    @pytest.mark.asyncio
    async def test_rate_limit_per_caller(self, test_client, monkeypatch):
        monkeypatch.setattr(settings, "rate_limit_requests", 2)

        for _ in range(2):
            assert (await test_client.get("/api/plans", headers=USER)).status_code == 200
        limited = await test_client.get("/api/plans", headers=USER)

        assert limited.status_code == 429
        assert limited.json()["error"] == "rate_limit_exceeded"
        assert int(limited.headers["Retry-After"]) > 0
        # A different caller has its own window
        assert (await test_client.get("/api/plans", headers={"X-User-ID": "user-2"})).status_code == 200

    @pytest.mark.asyncio
    async def test_health(self, test_client):
        with patch.object(gemini_summarizer, "health_check", AsyncMock(return_value=True)):
            response = await test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["database"] == "connected"
        assert body["summarizer"] == "available"
        assert body["status"] == "healthy"
