"""Tests for incremental answer extraction and citation-marker stripping."""
from __future__ import annotations

import pytest

from lexqa.streaming import AnswerStreamExtractor, CitationMarkerFilter, strip_citation_markers

RAW = r'{"citations":["a"],"answer":"He said \"hi\"\u2014bye"}'
EXPECTED = 'He said "hi"\u2014bye'


def _extract(fragments) -> str:
    extractor = AnswerStreamExtractor()
    return "".join(extractor.feed(fragment) for fragment in fragments)


def _filter(fragments, **kwargs) -> str:
    marker_filter = CitationMarkerFilter(**kwargs)
    return "".join(marker_filter.feed(fragment) for fragment in fragments) + marker_filter.flush()


def test_extractor_handles_whole_payload() -> None:
    extractor = AnswerStreamExtractor()

    assert extractor.feed(RAW) == EXPECTED
    assert extractor.done


@pytest.mark.parametrize("split", range(1, len(RAW)))
def test_extractor_is_independent_of_split_point(split: int) -> None:
    assert _extract([RAW[:split], RAW[split:]]) == EXPECTED


def test_extractor_handles_single_character_fragments() -> None:
    assert _extract(list(RAW)) == EXPECTED


def test_extractor_handles_three_way_splits_inside_escape() -> None:
    start = RAW.index("\\u")
    for first in range(start, start + 6):
        for second in range(first + 1, start + 7):
            assert _extract([RAW[:first], RAW[first:second], RAW[second:]]) == EXPECTED


def test_extractor_ignores_answer_inside_other_values() -> None:
    assert _extract(['{"citations":["answer"],', '"answer": "ok"}']) == "ok"


def test_extractor_emits_nothing_before_answer_value() -> None:
    extractor = AnswerStreamExtractor()

    assert extractor.feed('{"answ') == ""
    assert extractor.feed('er" : "') == ""
    assert extractor.feed("Yes") == "Yes"
    assert not extractor.done
    assert extractor.feed('", "citations": []}') == ""
    assert extractor.done


def test_extractor_joins_surrogate_pairs() -> None:
    assert _extract([r'{"answer":"\ud83d', r'\ude00!"}']) == "\U0001F600!"


@pytest.mark.parametrize(
    "raw, expected",
    [
        (r'{"answer":"a\ude00b"}', "a\ufffdb"),
        (r'{"answer":"\ud83dx"}', "\ufffdx"),
        (r'{"answer":"x\ud83d"}', "x\ufffd"),
    ],
)
def test_extractor_replaces_lone_surrogates(raw: str, expected: str) -> None:
    assert _extract([raw]) == expected


def test_marker_split_between_fragments_is_removed() -> None:
    assert _filter(["See [", "[c1]] now"]) == "See  now"
    assert _filter(["a[[c1]", "]b"]) == "ab"
    assert _filter(["a[", "[", "c1", "]", "]", "b"]) == "ab"


def test_filter_holds_back_only_a_possible_marker_start() -> None:
    marker_filter = CitationMarkerFilter()

    assert marker_filter.feed("Rent [") == "Rent "
    assert marker_filter.feed("x") == "[x"
    assert marker_filter.feed("end [") == "end "
    assert marker_filter.flush() == "["


def test_unterminated_marker_is_released_on_flush() -> None:
    assert _filter(["x[[abc"]) == "x[[abc"


def test_oversized_marker_is_released_as_text() -> None:
    assert _filter(["x[[abcdefgh"], max_marker_chars=5) == "x[[abcdefgh"
    assert _filter(["x[[abcdefgh]] y"], max_marker_chars=5) == "x[[abcdefgh]] y"


def test_custom_marker_tokens() -> None:
    assert _filter(["Rule <ci", "te>c9</cite> applies"], start="<cite>", end="</cite>") == "Rule  applies"


def test_strip_citation_markers() -> None:
    assert strip_citation_markers("Rent is due [[c1]] monthly [[c2]].") == "Rent is due  monthly ."


def test_filter_rejects_empty_tokens() -> None:
    with pytest.raises(ValueError):
        CitationMarkerFilter("", "]]")
