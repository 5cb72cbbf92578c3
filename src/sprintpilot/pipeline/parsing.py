"""JSON extraction from free-form LLM output.

Models are asked for bare JSON but routinely wrap it in markdown fences or
prose. ``extract_json`` tries, in order:

1. fenced code blocks (```json ... ``` or bare ``` ... ```)
2. balanced ``{...}`` / ``[...]`` spans found by a string-aware bracket scan
3. the raw text itself

and returns a tagged ``ParseResult`` instead of raising.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Iterator, Literal

from sprintpilot.errors import JsonExtractionError

Expect = Literal["object", "array"] | None

_FENCE_RE = re.compile(r"```[ \t]*(?:json|JSON)?[ \t]*\r?\n?(.*?)```", re.DOTALL)
_OPENERS = {"object": "{", "array": "["}
_CLOSERS = {"{": "}", "[": "]"}
_MAX_SPAN_ATTEMPTS = 20


@dataclass(frozen=True)
class ParseResult:
    """Outcome of an extraction attempt."""

    ok: bool
    value: Any = None
    error: str | None = None
    strategy: str = ""  # fenced | balanced | raw
    candidate: str = ""

    def unwrap(self) -> Any:
        if not self.ok:
            raise JsonExtractionError(self.error or "no JSON found")
        return self.value


def _fenced_blocks(text: str) -> Iterator[str]:
    for match in _FENCE_RE.finditer(text):
        body = match.group(1).strip()
        if body:
            yield body


def _balanced_span(text: str, start: int) -> str | None:
    """Return the balanced bracket span starting at ``text[start]``, or None.

    Brackets inside JSON strings are ignored.
    """
    stack: list[str] = []
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]"):
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return text[start:i + 1]
    return None


def _balanced_spans(text: str, expect: Expect) -> Iterator[str]:
    if expect is not None:
        preferred = _OPENERS[expect]
        order = [preferred] + [o for o in ("{", "[") if o != preferred]
    else:
        order = []

    if order:
        positions = [i for opener in order for i, ch in enumerate(text) if ch == opener]
    else:
        positions = [i for i, ch in enumerate(text) if ch in _CLOSERS]

    for attempts, pos in enumerate(positions):
        if attempts >= _MAX_SPAN_ATTEMPTS:
            return
        span = _balanced_span(text, pos)
        if span is not None:
            yield span


def _candidates(text: str, expect: Expect) -> Iterator[tuple[str, str]]:
    for block in _fenced_blocks(text):
        yield "fenced", block
    for span in _balanced_spans(text, expect):
        yield "balanced", span
    yield "raw", text.strip()


def extract_json(text: str, expect: Expect = None) -> ParseResult:
    """Extract the first parseable JSON value from ``text``.

    ``expect`` only changes which bracket kind is scanned first; it does not
    reject values of the other kind.
    """
    if not text or not text.strip():
        return ParseResult(ok=False, error="empty response", strategy="raw")

    first_error: ParseResult | None = None
    for strategy, candidate in _candidates(text, expect):
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError as exc:
            if first_error is None:
                first_error = ParseResult(
                    ok=False, error=f"invalid JSON ({strategy}): {exc}",
                    strategy=strategy, candidate=candidate,
                )
            continue
        return ParseResult(ok=True, value=value, strategy=strategy, candidate=candidate)

    assert first_error is not None
    return first_error
