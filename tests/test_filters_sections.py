"""Tests for element filtering and heading breadcrumbs."""
from __future__ import annotations

import pytest

from lexqa.ingest.filters import is_content, should_skip
from lexqa.ingest.models import DocumentElement, DocumentFormatError
from lexqa.ingest.sections import ElementGraph, resolve_doc_title


def _el(element_id: str, type_: str, text: str, parent_id: str | None = None) -> DocumentElement:
    return DocumentElement(element_id=element_id, type=type_, text=text, page_number=1, parent_id=parent_id)


@pytest.mark.parametrize(
    "type_, text",
    [
        ("NarrativeText", ""),
        ("NarrativeText", "   \n"),
        ("Footer", "Page 3 of 10"),
        ("PageBreak", "---"),
        ("NarrativeText", "Downloaded: 12 March 2024"),
        ("NarrativeText", "downloaded: yesterday"),
        ("NarrativeText", "© 2023 Acme Legal"),
        ("NarrativeText", "Â© 2021 Acme Legal"),
    ],
)
def test_noise_elements_are_skipped(type_: str, text: str) -> None:
    assert should_skip(_el("e1", type_, text))


def test_headings_survive_filtering_but_are_not_content() -> None:
    title = _el("t", "Title", "Lease Agreement")
    header = _el("h", "Header", "1. Parties")

    assert not should_skip(title)
    assert not should_skip(header)
    assert not is_content(title)
    assert not is_content(header)
    assert is_content(_el("p", "NarrativeText", "The tenant shall pay rent."))
    assert is_content(_el("tb", "Table", "Rent | 1000"))


def test_copyright_sign_mid_sentence_is_content() -> None:
    assert is_content(_el("p", "NarrativeText", "Works marked © 2020 remain protected."))


def test_section_path_joins_heading_ancestors_outermost_first() -> None:
    elements = [
        _el("t", "Title", "Lease  Agreement"),
        _el("h1", "Header", "1. Rent", parent_id="t"),
        _el("list", "ListItem", "grouping node", parent_id="h1"),
        _el("p", "NarrativeText", "Rent is due monthly.", parent_id="list"),
    ]
    graph = ElementGraph(elements)

    assert graph.section_path(elements[-1], "fallback") == "Lease Agreement > 1. Rent"


def test_section_path_falls_back_without_heading_ancestors() -> None:
    elements = [
        _el("p", "NarrativeText", "Orphan paragraph.", parent_id="missing"),
        _el("q", "NarrativeText", "Root paragraph."),
    ]
    graph = ElementGraph(elements)

    assert graph.section_path(elements[0], "Doc Title") == "Doc Title"
    assert graph.section_path(elements[1], "Doc Title") == "Doc Title"


def test_section_path_stops_on_parent_cycle() -> None:
    elements = [
        _el("a", "Header", "A", parent_id="b"),
        _el("b", "Header", "B", parent_id="a"),
        _el("p", "NarrativeText", "Body", parent_id="a"),
    ]
    graph = ElementGraph(elements)

    assert graph.section_path(elements[2], "fallback") == "B > A"


def test_resolve_doc_title_uses_first_non_empty_title() -> None:
    elements = [
        _el("x", "Title", "  "),
        _el("y", "Header", "Preamble"),
        _el("z", "Title", "Share  Purchase\nAgreement"),
    ]

    assert resolve_doc_title(elements) == "Share Purchase Agreement"
    assert resolve_doc_title([_el("y", "Header", "Preamble")]) is None


def test_element_from_dict_reads_parser_shape() -> None:
    element = DocumentElement.from_dict(
        {
            "element_id": "abc",
            "type": "NarrativeText",
            "text": "Body",
            "metadata": {"page_number": 4, "parent_id": "root", "filename": "deed.pdf"},
        }
    )

    assert element.page_number == 4
    assert element.parent_id == "root"
    assert element.filename == "deed.pdf"


def test_element_from_dict_rejects_non_objects() -> None:
    with pytest.raises(DocumentFormatError):
        DocumentElement.from_dict(["not", "an", "object"])  # type: ignore[arg-type]


@pytest.mark.parametrize(
    "metadata",
    [
        {"filename": 123},
        {"filename": ["deed.pdf"]},
        {"page_number": float("nan")},
        {"page_number": float("inf")},
        {"page_number": 2.5},
        {"page_number": "3"},
        {"page_number": True},
    ],
)
def test_element_from_dict_rejects_malformed_metadata(metadata) -> None:
    with pytest.raises(DocumentFormatError):
        DocumentElement.from_dict({"element_id": "abc", "type": "NarrativeText", "text": "Body", "metadata": metadata})


def test_element_from_dict_accepts_whole_float_page() -> None:
    element = DocumentElement.from_dict({"element_id": "abc", "text": "Body", "metadata": {"page_number": 3.0}})

    assert element.page_number == 3
    assert element.filename is None
