"""Incremental extraction of the ``answer`` string from a streamed JSON completion.

The answering model streams one object shaped ``{"answer": str, "citations": [str]}``.
:class:`AnswerStreamExtractor` scans the raw fragments once, keeps a handful of
flags instead of a parse tree, and returns the decoded characters of the
``answer`` value as soon as each one is known. It depends on that two-key
schema: the value is recognised by a completed ``"answer"`` string literal
followed by a colon, so arbitrary nested JSON is out of its scope.

:class:`CitationMarkerFilter` then removes inline citation markers such as
``[[chunk-id]]`` from the decoded text, holding back only the characters that
could still turn into a marker.

Both objects carry state across fragments and must be fed in arrival order.
The live output is a preview; the final answer comes from parsing the full
accumulated completion.
"""
from __future__ import annotations

from typing import List, Optional

ANSWER_KEY = "answer"
DEFAULT_MARKER_START = "[["
DEFAULT_MARKER_END = "]]"
DEFAULT_MAX_MARKER_CHARS = 256

REPLACEMENT_CHAR = "\ufffd"

_SIMPLE_ESCAPES = {
    '"': '"',
    "\\": "\\",
    "/": "/",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "b": "\b",
    "f": "\f",
}


def _is_high_surrogate(code: int) -> bool:
    return 0xD800 <= code <= 0xDBFF


def _is_low_surrogate(code: int) -> bool:
    return 0xDC00 <= code <= 0xDFFF


class AnswerStreamExtractor:
    """Single-pass scanner emitting the decoded ``answer`` value of a JSON stream."""

    def __init__(self, key: str = ANSWER_KEY) -> None:
        self._key = key
        self._in_string = False
        self._in_answer = False
        self._escape = False
        self._unicode: Optional[str] = None
        self._high_surrogate: Optional[int] = None
        # Decoded text of the current non-answer string, capped just past the key length.
        self._literal: List[str] = []
        self._literal_overflow = False
        self._expect_colon = False
        self._awaiting_value = False
        self._answer_done = False
        self._out: List[str] = []

    @property
    def done(self) -> bool:
        """``True`` once the closing quote of the answer value has been seen."""

        return self._answer_done

    def feed(self, fragment: str) -> str:
        """Consume *fragment* and return the newly decoded answer characters."""

        for char in fragment:
            if self._in_string:
                self._scan_string_char(char)
            else:
                self._scan_structural_char(char)
        emitted = "".join(self._out)
        self._out.clear()
        return emitted

    def _scan_structural_char(self, char: str) -> None:
        if char == '"':
            self._in_string = True
            self._in_answer = self._awaiting_value and not self._answer_done
            self._awaiting_value = False
            self._expect_colon = False
            self._literal.clear()
            self._literal_overflow = False
        elif char.isspace():
            return
        elif char == ":" and self._expect_colon:
            self._expect_colon = False
            self._awaiting_value = True
        else:
            self._expect_colon = False
            self._awaiting_value = False

    def _scan_string_char(self, char: str) -> None:
        if self._unicode is not None:
            self._unicode += char
            if len(self._unicode) == 4:
                digits, self._unicode = self._unicode, None
                try:
                    code = int(digits, 16)
                except ValueError:
                    self._emit_text("\\u" + digits)
                else:
                    self._emit_code_point(code)
            return

        if self._escape:
            self._escape = False
            if char == "u":
                self._unicode = ""
                return
            self._emit_text(_SIMPLE_ESCAPES.get(char, char))
            return

        if char == "\\":
            self._escape = True
        elif char == '"':
            self._close_string()
        else:
            self._emit_text(char)

    def _close_string(self) -> None:
        self._in_string = False
        if self._in_answer:
            self._release_high_surrogate()
            self._in_answer = False
            self._answer_done = True
            return
        if not self._literal_overflow and "".join(self._literal) == self._key:
            self._expect_colon = True
        self._literal.clear()

    def _emit_code_point(self, code: int) -> None:
        if not self._in_answer:
            self._emit_text(chr(code))
            return
        if _is_high_surrogate(code):
            self._release_high_surrogate()
            self._high_surrogate = code
        elif _is_low_surrogate(code):
            if self._high_surrogate is None:
                self._out.append(REPLACEMENT_CHAR)
                return
            combined = 0x10000 + ((self._high_surrogate - 0xD800) << 10) + (code - 0xDC00)
            self._high_surrogate = None
            self._out.append(chr(combined))
        else:
            self._emit_text(chr(code))

    def _emit_text(self, text: str) -> None:
        if self._in_answer:
            self._release_high_surrogate()
            self._out.append(text)
            return
        if self._literal_overflow:
            return
        self._literal.append(text)
        if sum(len(part) for part in self._literal) > len(self._key):
            self._literal_overflow = True
            self._literal.clear()

    def _release_high_surrogate(self) -> None:
        if self._high_surrogate is not None:
            self._high_surrogate = None
            self._out.append(REPLACEMENT_CHAR)


def _partial_suffix_length(text: str, token: str) -> int:
    """Length of the longest proper prefix of *token* that *text* ends with."""

    for length in range(min(len(text), len(token) - 1), 0, -1):
        if text.endswith(token[:length]):
            return length
    return 0


class CitationMarkerFilter:
    """Strip ``start ... end`` marker spans from a stream of decoded text.

    Outside a marker at most ``len(start) - 1`` characters are held back. A
    marker whose body grows past ``max_marker_chars`` is not a marker and is
    released as literal text, as is a marker still open when :meth:`flush`
    is called.
    """

    def __init__(
        self,
        start: str = DEFAULT_MARKER_START,
        end: str = DEFAULT_MARKER_END,
        *,
        max_marker_chars: int = DEFAULT_MAX_MARKER_CHARS,
    ) -> None:
        if not start or not end:
            raise ValueError("Citation marker tokens must be non-empty")
        self.start = start
        self.end = end
        self.max_marker_chars = max_marker_chars
        self._pending = ""
        self._in_marker = False
        self._marker = ""

    def feed(self, text: str) -> str:
        data = self._pending + text
        self._pending = ""
        out: List[str] = []
        pos = 0

        while True:
            if not self._in_marker:
                index = data.find(self.start, pos)
                if index == -1:
                    tail = data[pos:]
                    hold = _partial_suffix_length(tail, self.start)
                    out.append(tail[: len(tail) - hold])
                    self._pending = tail[len(tail) - hold :]
                    break
                out.append(data[pos:index])
                self._in_marker = True
                self._marker = ""
                pos = index + len(self.start)
                continue

            index = data.find(self.end, pos)
            if index == -1:
                tail = data[pos:]
                hold = _partial_suffix_length(tail, self.end)
                body = self._marker + tail[: len(tail) - hold]
                if len(body) > self.max_marker_chars:
                    out.append(self.start)
                    data, pos = self._release(body) + tail[len(tail) - hold :], 0
                    continue
                self._marker = body
                self._pending = tail[len(tail) - hold :]
                break

            body = self._marker + data[pos:index]
            if len(body) > self.max_marker_chars:
                out.append(self.start)
                data, pos = self._release(body) + data[index:], 0
                continue
            self._in_marker = False
            self._marker = ""
            pos = index + len(self.end)

        return "".join(out)

    def flush(self) -> str:
        """Release everything still held back, including an unterminated marker."""

        if self._in_marker:
            released = self.start + self._marker + self._pending
        else:
            released = self._pending
        self._pending = ""
        self._marker = ""
        self._in_marker = False
        return released

    def _release(self, body: str) -> str:
        self._in_marker = False
        self._marker = ""
        return body


def strip_citation_markers(
    text: str,
    start: str = DEFAULT_MARKER_START,
    end: str = DEFAULT_MARKER_END,
    *,
    max_marker_chars: int = DEFAULT_MAX_MARKER_CHARS,
) -> str:
    marker_filter = CitationMarkerFilter(start, end, max_marker_chars=max_marker_chars)
    return marker_filter.feed(text) + marker_filter.flush()


__all__ = [
    "AnswerStreamExtractor",
    "CitationMarkerFilter",
    "DEFAULT_MARKER_END",
    "DEFAULT_MARKER_START",
    "DEFAULT_MAX_MARKER_CHARS",
    "strip_citation_markers",
]
