"""Tests for course-scoped retrieval."""

import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app.errors import ConfigurationError, InvalidRequestError
from app.services.document_parser import ParsedPage
from app.services.retriever import RetrievalFilters


def _retrieve(services, query, top_k=None, **filters):
    return asyncio.run(services.retriever.retrieve(query, RetrievalFilters(**filters), top_k))


@pytest.fixture
def seeded(make_material, index_pages):
    """Two courses, theory and lab materials, one code page."""
    theory = make_material(course_id="course-a", title="Control Flow", category="theory", week_number=2)
    lab = make_material(course_id="course-a", title="Lab 2", category="lab", week_number=2)
    other = make_material(course_id="course-b", title="Other Course", category="theory", week_number=2)

    index_pages(theory, [
        ParsedPage(1, "Conditionals choose between branches of a program."),
        ParsedPage(2, "Loops repeat statements until a condition fails."),
    ])
    index_pages(lab, [
        ParsedPage(i, f"Lab setup instructions part {i}.") for i in range(1, 5)
    ] + [ParsedPage(5, "Explain loops: for (i = 0; i < 10; i++) { total += i; } loops loops")])
    index_pages(other, [ParsedPage(1, "Loops repeat statements until a condition fails.")])
    return {"theory": theory, "lab": lab, "other": other}


class TestScoping:
    """Namespace isolation and filters."""

    def test_results_never_leave_course(self, services, seeded):
        for query in ("loops", "conditionals", "lab setup", "program"):
            results = _retrieve(services, query, top_k=20, course_id="course-a")
            assert results
            assert all(r.metadata["course_id"] == "course-a" for r in results)
            assert seeded["other"] not in {r.material_id for r in results}

    def test_category_filter(self, services, seeded):
        results = _retrieve(services, "loops", top_k=20, course_id="course-a", category="lab")
        assert results
        assert all(r.category == "lab" for r in results)

    def test_filters_are_conjunctive(self, services, seeded):
        results = _retrieve(
            services, "loops", top_k=20,
            course_id="course-a", material_id=seeded["theory"], week_number=2,
        )
        assert {r.material_id for r in results} == {seeded["theory"]}

    def test_code_only(self, services, seeded):
        results = _retrieve(services, "loops", top_k=20, course_id="course-a", is_code=True)
        assert [r.page_number for r in results] == [5]

    def test_course_required(self, services, seeded):
        with pytest.raises(InvalidRequestError):
            _retrieve(services, "loops")

    def test_blank_query_rejected(self, services, seeded):
        with pytest.raises(InvalidRequestError):
            _retrieve(services, "   ", course_id="course-a")


class TestRanking:
    """Ordering and result shape."""

    def test_explain_loops_finds_code_page(self, services, seeded):
        top = _retrieve(services, "explain loops", course_id="course-a", material_id=seeded["lab"])[0]
        assert top.is_code is True
        assert top.language == "c"
        assert top.page_number == 5

    def test_scores_descend_with_deterministic_ties(self, services, seeded):
        results = _retrieve(services, "unrelated zebra", top_k=20, course_id="course-a")
        keys = [(-r.score, r.chunk_order) for r in results]
        assert keys == sorted(keys)
        again = _retrieve(services, "unrelated zebra", top_k=20, course_id="course-a")
        assert [r.chunk_id for r in again] == [r.chunk_id for r in results]

    def test_top_k_respected(self, services, seeded):
        assert len(_retrieve(services, "lab", top_k=2, course_id="course-a")) == 2

    def test_content_and_text(self, services, seeded):
        top = _retrieve(services, "conditionals branches", course_id="course-a", category="theory")[0]
        assert top.content.startswith("[Control Flow - THEORY - Page 1]\n")
        assert top.text == "Conditionals choose between branches of a program."
        assert top.material_title == "Control Flow"


class TestEmptyAndErrors:
    """No data is an empty list, missing configuration is an error."""

    def test_empty_course_returns_empty_list(self, services):
        assert _retrieve(services, "loops", course_id="course-empty") == []

    def test_query_uses_query_mode(self, services, embedder):
        _retrieve(services, "loops", course_id="course-empty")
        assert embedder.calls[-1] == (["loops"], True)

    def test_unconfigured_embedder(self, services, embedder):
        embedder.configured = False
        with pytest.raises(ConfigurationError):
            _retrieve(services, "loops", course_id="course-a")
        assert embedder.calls == []
