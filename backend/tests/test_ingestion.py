"""Tests for the fetch, parse, chunk and index pipeline."""

import asyncio
import logging
import os
import sys

import httpx
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app.errors import (
    FetchError,
    IndexingInProgressError,
    InvalidRequestError,
    NoContentError,
    NotFoundError,
    UnsupportedFormatError,
)
from app.models.course_material import CourseMaterial
from app.models.material_chunk import MaterialChunk
from app.services.ingestion import fetch_document, run_to_completion

URL = "https://storage.example.edu/course-a/week1.pdf"


def _ingest(services, material_id, url=URL):
    return asyncio.run(services.ingestion.ingest(material_id, url))


def _rows(session_factory, material_id):
    db = session_factory()
    try:
        return db.query(MaterialChunk).filter(MaterialChunk.material_id == material_id).all()
    finally:
        db.close()


@pytest.fixture
def week1_pdf(pdf_builder, remote_files):
    remote_files[URL] = pdf_builder(
        ["Variables hold values.", "Primitive types table below.", "Summary of the week."],
        tables={2: [["Type", "Bytes", "Signed"], ["int", "4", "yes"]]},
    )
    return URL


class TestIngest:
    """End-to-end ingestion of a stored PDF."""

    def test_three_page_pdf_with_table(self, services, make_material, session_factory, week1_pdf):
        material_id = make_material(file_name="week1.pdf")
        report = _ingest(services, material_id).to_dict()

        rows = _rows(session_factory, material_id)
        info = report["parsing_info"]
        assert report["chunks_stored"] == len(rows)
        assert info["total_pages"] == 3
        assert info["parsed_pages"] == 3
        assert info["skipped_pages"] == 0
        assert info["total_tables"] == 1
        assert info["vectors_stored"] == len(rows)
        assert info["chunk_types"] == {"text": 3, "table": 1}
        assert report["file_info"]["original_filename"] == "week1.pdf"

        tables = [r for r in rows if r.chunk_type == "table"]
        assert len(tables) == 1
        assert tables[0].page_number == 2
        assert tables[0].chunk_metadata["rows"] == 2
        assert tables[0].chunk_metadata["columns"] == 3
        assert len([r for r in rows if r.chunk_type != "table"]) >= 3

    def test_blank_document_is_not_indexed(self, services, make_material, session_factory, remote_files):
        url = "https://storage.example.edu/course-a/blank.txt"
        remote_files[url] = b"   \n\n   "
        material_id = make_material(file_name="blank.txt", content_type="notes")

        with pytest.raises(NoContentError, match="No extractable text"):
            _ingest(services, material_id, url)

        assert _rows(session_factory, material_id) == []
        db = session_factory()
        try:
            material = db.get(CourseMaterial, material_id)
            assert material.is_indexed is False
            assert material.chunk_count == 0
            assert material.index_error == "No extractable text in blank.txt"
        finally:
            db.close()
        assert not services.ingestion.is_running(material_id)

    def test_material_marked_indexed(self, services, make_material, session_factory, week1_pdf):
        material_id = make_material(file_name="week1.pdf")
        _ingest(services, material_id)
        db = session_factory()
        try:
            material = db.get(CourseMaterial, material_id)
            assert material.is_indexed is True
            assert material.indexed_at is not None
        finally:
            db.close()

    def test_unsupported_type_rejected_before_download(self, services, make_material, fetched_urls):
        material_id = make_material(file_name="slides.pptx", content_type="pptx")
        with pytest.raises(UnsupportedFormatError):
            _ingest(services, material_id, "https://storage.example.edu/slides.pptx")
        assert fetched_urls == []
        assert not services.ingestion.is_running(material_id)

    def test_missing_file_is_a_fetch_error(self, services, make_material, session_factory):
        material_id = make_material()
        with pytest.raises(FetchError):
            _ingest(services, material_id, "https://storage.example.edu/missing.pdf")
        assert _rows(session_factory, material_id) == []
        db = session_factory()
        try:
            assert db.get(CourseMaterial, material_id).index_error == "Failed to download file"
        finally:
            db.close()

    def test_unknown_material(self, services):
        with pytest.raises(NotFoundError):
            _ingest(services, "no-such-material")

    def test_non_http_url(self, services, make_material):
        with pytest.raises(InvalidRequestError):
            _ingest(services, make_material(), "file:///etc/passwd")

    def test_concurrent_run_refused(self, services, make_material, pdf_builder):
        """A second run for the same material is refused while the first is downloading."""
        material_id = make_material(file_name="week1.pdf")
        pdf = pdf_builder(["Variables hold values."])
        downloads = []

        async def scenario():
            started = asyncio.Event()
            release = asyncio.Event()

            async def slow_server(request):
                downloads.append(str(request.url))
                started.set()
                await release.wait()
                return httpx.Response(200, content=pdf)

            services.ingestion.transport = httpx.MockTransport(slow_server)

            async def second_run():
                await started.wait()
                try:
                    return await services.ingestion.ingest(material_id, URL)
                finally:
                    release.set()
                    assert services.ingestion.is_running(material_id)

            first, second = await asyncio.gather(
                services.ingestion.ingest(material_id, URL),
                second_run(),
                return_exceptions=True,
            )
            assert not services.ingestion.is_running(material_id)
            third = await services.ingestion.ingest(material_id, URL)
            return first, second, third

        first, second, third = asyncio.run(scenario())
        assert isinstance(second, IndexingInProgressError)
        assert first.index.chunk_count == 1
        assert third.index.chunk_count == 1
        assert downloads == [URL, URL]


class TestFetch:
    """Downloads through httpx."""

    def test_body_returned(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"%PDF-1.4 data"))
        data = asyncio.run(fetch_document("https://x/a.pdf", 5.0, 1024, transport))
        assert data == b"%PDF-1.4 data"

    def test_oversized_body_rejected(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"x" * 2048))
        with pytest.raises(InvalidRequestError, match="too large"):
            asyncio.run(fetch_document("https://x/a.pdf", 5.0, 1024, transport))

    def test_server_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        with pytest.raises(FetchError) as excinfo:
            asyncio.run(fetch_document("https://x/a.pdf", 5.0, 1024, transport))
        assert "503" in excinfo.value.detail

    def test_network_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(FetchError):
            asyncio.run(fetch_document("https://x/a.pdf", 5.0, 1024, httpx.MockTransport(refuse)))


class TestDetachedRuns:
    """Runs outlive a disconnected caller and still report failures."""

    def test_result_returned_to_caller(self):
        async def work():
            return 42

        assert asyncio.run(run_to_completion(work(), "Ingestion of material m1")) == 42

    def test_failure_after_caller_left_is_logged(self, caplog):
        async def failing():
            await asyncio.sleep(0.01)
            raise FetchError("Failed to download file", detail="HTTP 503")

        async def scenario():
            caller = asyncio.ensure_future(run_to_completion(failing(), "Ingestion of material m1"))
            await asyncio.sleep(0)
            caller.cancel()
            with pytest.raises(asyncio.CancelledError):
                await caller
            await asyncio.sleep(0.05)

        with caplog.at_level(logging.WARNING, logger="app.services.ingestion"):
            asyncio.run(scenario())
        assert "Ingestion of material m1 failed: Failed to download file (HTTP 503)" in caplog.text

    def test_unexpected_error_logged_with_traceback(self, caplog):
        async def scenario():
            async def broken():
                raise RuntimeError("disk full")

            caller = asyncio.ensure_future(run_to_completion(broken(), "Re-embedding of material m2"))
            await asyncio.sleep(0)
            caller.cancel()
            with pytest.raises(asyncio.CancelledError):
                await caller
            await asyncio.sleep(0.01)

        with caplog.at_level(logging.WARNING, logger="app.services.ingestion"):
            asyncio.run(scenario())
        record = next(r for r in caplog.records if "Re-embedding of material m2 failed" in r.getMessage())
        assert record.levelno == logging.ERROR
        assert record.exc_info is not None
