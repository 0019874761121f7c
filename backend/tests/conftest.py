"""
DocDigest Backend: Test Configuration (conftest.py)
=====================================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── session_factory: throwaway SQLite database (aiosqlite) with all tables
    │   ├── db_session: one AsyncSession on it
    │   └── ledger: UsageLedger writing to it
    ├── upload_service: FileService rooted in tmp_path
    ├── fake_summarizer: AsyncMock returning a fixed SummaryContent
    ├── orchestrator: ProcessingOrchestrator wired to all of the above
    ├── sample documents: txt / pdf / docx / rtf / odt bytes built in memory
    └── test_client: HTTPX AsyncClient against a fresh app with overrides
"""

import io
import os
import tempfile
import zipfile
from typing import List
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

# Override settings for testing BEFORE any app imports
_TEST_DIR = tempfile.mkdtemp(prefix="docdigest_test_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/health.db"
os.environ["GEMINI_API_KEY"] = "test-key-not-real"
os.environ["UPLOAD_TMP_DIR"] = os.path.join(_TEST_DIR, "uploads")
os.environ["LOG_LEVEL"] = "WARNING"

import docx  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from app.config import settings  # noqa: E402
from app.database import Base, get_db_session  # noqa: E402
from app.models.subscription import Subscription  # noqa: E402,F401
from app.models.summary import SummaryRecord  # noqa: E402,F401
from app.models.usage import UsageRecord  # noqa: E402,F401
from app.services.entitlement_gate import EntitlementGate  # noqa: E402
from app.services.file_service import FileService  # noqa: E402
from app.services.processing_service import ProcessingOrchestrator  # noqa: E402
from app.services.summarizer_base import SummaryContent  # noqa: E402
from app.services.summary_service import SummaryService  # noqa: E402
from app.services.text_extractor import TextExtractor  # noqa: E402
from app.services.usage_ledger import UsageLedger  # noqa: E402


# ══════════════════════════════════════════════════════════════════════════
# Document builders
# ══════════════════════════════════════════════════════════════════════════

def build_pdf(page_texts: List[str]) -> bytes:
    """
    Hand-assemble a minimal PDF with one Helvetica text line per page.

    Object layout: 1 catalog, 2 page tree, 3 font, then (page, content)
    pairs. The xref offsets are computed, so the file is well formed.
    Texts must not contain parentheses or backslashes.
    """
    count = len(page_texts)
    page_ids = [4 + 2 * i for i in range(count)]
    kids = " ".join(f"{pid} 0 R" for pid in page_ids)

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{kids}] /Count {count} >>".encode(),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    for page_id, text in zip(page_ids, page_texts):
        objects.append(
            f"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
            f"/Resources << /Font << /F1 3 0 R >> >> /Contents {page_id + 1} 0 R >>".encode()
        )
        stream = f"BT /F1 12 Tf 72 720 Td ({text}) Tj ET".encode()
        objects.append(b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream")

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"

    xref_at = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref_at)
    return bytes(out)


def build_docx(paragraphs: List[str], table_rows: List[List[str]] = ()) -> bytes:
    document = docx.Document()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    if table_rows:
        table = document.add_table(rows=len(table_rows), cols=len(table_rows[0]))
        for r, row in enumerate(table_rows):
            for c, value in enumerate(row):
                table.cell(r, c).text = value
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


ODT_CONTENT_TEMPLATE = (
    '<?xml version="1.0" encoding="UTF-8"?>'
    '<office:document-content '
    'xmlns:office="urn:oasis:names:tc:opendocument:xmlns:office:1.0" '
    'xmlns:text="urn:oasis:names:tc:opendocument:xmlns:text:1.0">'
    "<office:body><office:text>{body}</office:text></office:body>"
    "</office:document-content>"
)


def build_odt(body_xml: str) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("mimetype", "application/vnd.oasis.opendocument.text")
        archive.writestr("content.xml", ODT_CONTENT_TEMPLATE.format(body=body_xml))
    return buffer.getvalue()


# ══════════════════════════════════════════════════════════════════════════
# Sample documents
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def sample_txt_bytes():
    """A short plain-text memo, well under one estimated page."""
    return (
        b"Quarterly planning memo.\n\n"
        b"The team will ship the billing dashboard by March 15.\n"
        b"Alice Chen owns the rollout in Berlin."
    )


@pytest.fixture
def three_page_pdf_bytes():
    return build_pdf(["Quarterly report page one", "Revenue grew in page two", "Outlook on page three"])


@pytest.fixture
def sample_rtf_bytes():
    return (
        b"{\\rtf1\\ansi\\deff0{\\fonttbl{\\f0 Times New Roman;}}"
        b"{\\colortbl;\\red0\\green0\\blue0;}"
        b"\\f0\\fs24 Project {\\b kickoff} notes\\par\n"
        b"Budget review\\tab scheduled\\par\n"
        b"Caf\\'e9 meeting\\par}"
    )


@pytest.fixture
def sample_odt_bytes():
    return build_odt(
        "<text:h>Minutes</text:h>"
        "<text:p>Decision:<text:s/>approve<text:s text:c=\"2\"/>the budget</text:p>"
        "<text:p>Owner: <text:span>Dana</text:span></text:p>"
    )


@pytest.fixture
def summary_content():
    return SummaryContent(
        executive_summary="The memo plans the billing dashboard rollout for March.",
        key_points=["Billing dashboard ships March 15"],
        action_items=["Alice Chen to lead the rollout"],
        important_dates=["March 15"],
        relevant_names=["Alice Chen"],
        places=["Berlin"],
        raw_response="EXECUTIVE SUMMARY:\nThe memo plans the billing dashboard rollout for March.",
    )


# ══════════════════════════════════════════════════════════════════════════
# Database and services
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """
    A fresh SQLite file per test with every table created.

    A file (not :memory:) so that the ledger's own sessions and the request
    session see the same data.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def ledger(session_factory, monkeypatch):
    monkeypatch.setattr(settings, "ledger_retry_wait", 0)
    return UsageLedger(session_factory=session_factory)


@pytest.fixture
def upload_service(tmp_path):
    return FileService(upload_root=str(tmp_path / "uploads"))


@pytest.fixture
def fake_summarizer(summary_content):
    summarizer = AsyncMock()
    summarizer.summarize.return_value = summary_content
    summarizer.health_check.return_value = True
    return summarizer


@pytest.fixture
def orchestrator(upload_service, fake_summarizer, ledger):
    return ProcessingOrchestrator(
        files=upload_service,
        extractor=TextExtractor(words_per_page=500),
        gate=EntitlementGate(ledger=ledger),
        summarizer=fake_summarizer,
        ledger=ledger,
        summaries=SummaryService(),
    )


# ══════════════════════════════════════════════════════════════════════════
# API client
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def test_client(session_factory, orchestrator, ledger):
    """
    HTTPX AsyncClient talking to a freshly built app.

    A new app per test keeps the in-memory rate limiter isolated. The
    request session, orchestrator and ledger all point at the test database.

    Usage:
        async def test_plans(test_client):
            response = await test_client.get("/api/plans")
    """
    from app.dependencies import get_processing_orchestrator, get_usage_ledger
    from app.main import create_app

    app = create_app()

    async def override_db_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_processing_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_usage_ledger] = lambda: ledger

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
