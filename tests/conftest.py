# tests/conftest.py
import pytest
import sys
import os

# Add project root to Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Keep tests off the log file and analytics before anything is imported
os.environ["LOG_FILE"] = ""
os.environ.pop("POSTHOG_API_KEY", None)

from fastapi.testclient import TestClient

from docvector.api import routes
from docvector.main import create_app
from docvector.memory.embedder import HashEmbedder
from docvector.memory.records import build_record
from docvector.memory.retriever import RetrievalService
from docvector.memory.store import InMemoryVectorStore
from docvector.memory.types import RECORD_TYPE_DOCUMENT, TextChunk
from docvector.observability.metrics import metrics_tracker


DIMENSION = 64

GUIDE_TEXT = "Setup is easy. Configuration is optional. Troubleshooting is rare."


def build_pdf(text: str, title: str = None) -> bytes:
    """
    Build a minimal single-page PDF whose page draws `text`.

    Offsets in the xref table are computed, so parsers read it without
    falling back to repair mode.
    """

    content = f"BT /F1 12 Tf 72 720 Td ({text}) Tj ET".encode("latin-1")

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        b"/Contents 4 0 R /Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length %d >>\nstream\n" % len(content) + content + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]

    if title:
        objects.append(b"<< /Title (%s) >>" % title.encode("latin-1"))

    out = bytearray(b"%PDF-1.4\n")
    offsets = []

    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"

    xref_offset = len(out)

    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"

    for offset in offsets:
        out += b"%010d 00000 n \n" % offset

    trailer = b"<< /Size %d /Root 1 0 R" % (len(objects) + 1)

    if title:
        trailer += b" /Info %d 0 R" % len(objects)

    out += b"trailer\n" + trailer + b" >>\n"
    out += b"startxref\n%d\n%%%%EOF\n" % xref_offset

    return bytes(out)


def make_record(record_id, embedding, owner_id="u1", source_name="doc", record_type=RECORD_TYPE_DOCUMENT):
    """Record with a hand-picked embedding, for store-level tests."""

    return build_record(
        TextChunk(index=0, text=f"text of {record_id}", source_span=(0, 0)),
        embedding,
        owner_id=owner_id,
        source_name=source_name,
        record_type=record_type,
        record_id=record_id,
    )


@pytest.fixture
def embedder():
    return HashEmbedder(DIMENSION)


@pytest.fixture
def store():
    return InMemoryVectorStore(DIMENSION)


@pytest.fixture
def service(store, embedder):
    """
    Retrieval service over a fresh in-memory store.

    Retry delay is zero so failure paths do not slow the suite down.
    """
    return RetrievalService(store=store, embedder=embedder, retry_delay=0)


@pytest.fixture
def client(service):
    """
    FastAPI test client around the in-memory service.

    Used to make requests to the API in tests.
    """
    return TestClient(create_app(service))


@pytest.fixture
def sample_pdf_content():
    """Valid PDF with known sentences and a title."""
    return build_pdf(GUIDE_TEXT, title="Getting Started Guide")


@pytest.fixture
def pdf_file(tmp_path, sample_pdf_content):
    path = tmp_path / "guide.pdf"
    path.write_bytes(sample_pdf_content)
    return path


@pytest.fixture
def large_pdf_content():
    """
    Generate a PDF larger than the size limit for testing.
    """
    return b"%PDF-1.4\n" + b"x" * (11 * 1024 * 1024) + b"\n%%EOF"


@pytest.fixture
def corrupt_pdf_content():
    return b"This is a plain text file, not a PDF."


@pytest.fixture(autouse=True)
def isolated_app_state(tmp_path, monkeypatch):
    """
    Reset process-wide state between tests.

    Uploads land in a temporary folder and metrics start from zero.
    """
    monkeypatch.setattr(routes, "UPLOAD_DIR", str(tmp_path / "uploads"))

    metrics_tracker.reset()

    yield

    metrics_tracker.reset()
