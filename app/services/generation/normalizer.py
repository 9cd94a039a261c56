"""
Response normalization for raw model output.

Model text is treated as untrusted input. It may arrive wrapped in markdown
code fences, surrounded by commentary, carry trailing commas, or be cut off
mid-array when the provider hits its token budget. ``normalize`` escalates
through progressively more invasive strategies and only accepts a value
that matches the expected shape:

1. Direct ``json.loads`` of the raw text.
2. Strip the outer code fence and decode the first JSON value that opens
   with the shape's delimiter. Each top-level opener is tried in turn, so
   commentary before or after the payload is ignored even when it carries
   brackets of its own.
3. Structural repair: drop trailing separators and, for an unterminated
   root, truncate to the last complete element and close it.
"""
import json
import logging
import re
from typing import Any, Iterator, List, Optional

from pydantic import ValidationError

from app.core.exceptions import ParseError
from app.schemas.generation import ConceptExplanation, ExpectedShape, QuestionAnswer

logger = logging.getLogger(__name__)

EXCERPT_LIMIT = 200

_OPEN_FENCE = re.compile(r"```[\w+-]*[ \t]*\r?\n?")
_CLOSERS = {"[": "]", "{": "}"}
_ROOT_OPENER = {
    ExpectedShape.QUESTION_ARRAY: "[",
    ExpectedShape.EXPLANATION_OBJECT: "{",
}

_decoder = json.JSONDecoder()


class ShapeMismatch(ValueError):
    """Decoded JSON does not have the expected structure."""


def excerpt(text: str, limit: int = EXCERPT_LIMIT) -> str:
    """Bounded, single-line preview of model output for diagnostics."""
    flat = " ".join(text.split())
    return flat if len(flat) <= limit else flat[:limit] + "..."


# ---------------------------------------------------------------------------
# Shape validation
# ---------------------------------------------------------------------------

def _check(model, value: Any, prefix: str = "") -> None:
    try:
        model.model_validate(value)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or "value"
        raise ShapeMismatch(f"{prefix}{location}: {first['msg']}") from e


def validate_shape(value: Any, shape: ExpectedShape) -> Any:
    """Return ``value`` unchanged if it conforms to ``shape``, else raise ShapeMismatch."""
    if shape is ExpectedShape.QUESTION_ARRAY:
        if not isinstance(value, list):
            raise ShapeMismatch(f"expected an array, got {type(value).__name__}")
        if not value:
            raise ShapeMismatch("expected at least one question")
        for index, item in enumerate(value):
            _check(QuestionAnswer, item, prefix=f"item {index} ")
        return value

    if shape is ExpectedShape.EXPLANATION_OBJECT:
        if not isinstance(value, dict):
            raise ShapeMismatch(f"expected an object, got {type(value).__name__}")
        _check(ConceptExplanation, value)
        return value

    raise ShapeMismatch(f"unknown shape {shape}")


# ---------------------------------------------------------------------------
# Text repair helpers (all string-literal aware)
# ---------------------------------------------------------------------------

def _structural_chars(text: str) -> Iterator[tuple]:
    """
    Yield (index, char) for every character outside JSON string literals.

    The opening quote of each string is yielded so callers can see that a
    value started; the string body and closing quote are skipped.
    """
    in_string = False
    escaped = False
    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        yield index, char


def strip_wrappers(text: str, opener: str) -> str:
    """Remove an outer code fence and any commentary before the root delimiter."""
    stripped = text.strip()
    first_opener = stripped.find(opener)
    fence = _OPEN_FENCE.search(stripped)
    if fence and (first_opener == -1 or fence.start() < first_opener):
        body = stripped[fence.end():]
        closing = body.rfind("```")
        if closing != -1:
            body = body[:closing]
        stripped = body.strip()
        first_opener = stripped.find(opener)
    if first_opener == -1:
        return stripped
    return stripped[first_opener:]


def remove_trailing_separators(text: str) -> str:
    """Drop commas that sit directly (modulo whitespace) before a closing bracket/brace."""
    drop: List[int] = []
    last_comma: Optional[int] = None
    for index, char in _structural_chars(text):
        if char == ",":
            last_comma = index
        elif char in "]}":
            if last_comma is not None:
                drop.append(last_comma)
            last_comma = None
        elif not char.isspace():
            last_comma = None
    if not drop:
        return text
    dropped = set(drop)
    return "".join(char for index, char in enumerate(text) if index not in dropped)


def close_truncated(text: str) -> Optional[str]:
    """
    Recover an unterminated root array/object.

    Truncates to the last element that is structurally complete at the top
    level and appends the root closer. Returns None when the root is already
    closed, the nesting is inconsistent, or no complete element exists.
    """
    if not text or text[0] not in _CLOSERS:
        return None
    stack: List[str] = []
    cut: Optional[int] = None
    for index, char in _structural_chars(text):
        if char in _CLOSERS:
            stack.append(char)
        elif char in "]}":
            if not stack or _CLOSERS[stack[-1]] != char:
                return None
            stack.pop()
            if not stack:
                return None
            if len(stack) == 1:
                cut = index + 1
        elif char == "," and len(stack) == 1:
            cut = index
    if not stack or cut is None:
        return None
    return text[:cut].rstrip() + _CLOSERS[stack[0]]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def _decode_prefix(text: str) -> Any:
    """Decode the first JSON value in ``text``, ignoring anything after it."""
    value, _ = _decoder.raw_decode(text)
    return value


def root_candidates(text: str, opener: str) -> List[int]:
    """
    Offsets of every ``opener`` that sits at nesting depth zero.

    Commentary may contain its own brackets ("Here are [2] questions:"), so
    each top-level opener is a possible start of the payload. Openers nested
    inside an earlier bracket are skipped.
    """
    offsets: List[int] = []
    depth = 0
    for index, char in _structural_chars(text):
        if char in _CLOSERS:
            if depth == 0 and char == opener:
                offsets.append(index)
            depth += 1
        elif char in "]}":
            depth = max(0, depth - 1)
    return offsets


def normalize(raw_text: Optional[str], expected_shape: ExpectedShape) -> Any:
    """
    Coerce raw model output into a value of ``expected_shape``.

    Args:
        raw_text: Text exactly as returned by the provider.
        expected_shape: Structure the decoded value must match.

    Returns:
        The decoded value (clean input is returned as parsed, unmodified).

    Raises:
        ParseError: When no strategy yields a value of the expected shape.
    """
    if not raw_text or not raw_text.strip():
        raise ParseError("Empty model response", excerpt="")

    opener = _ROOT_OPENER[expected_shape]
    shape_error: Optional[ShapeMismatch] = None

    def _repairs(candidate: str) -> Iterator[tuple]:
        yield "unwrapped", lambda: _decode_prefix(candidate)
        repaired = remove_trailing_separators(candidate)
        if repaired != candidate:
            yield "separators", lambda: _decode_prefix(repaired)
        closed = close_truncated(repaired)
        if closed is not None:
            yield "truncated", lambda: json.loads(remove_trailing_separators(closed))

    def _attempts() -> Iterator[tuple]:
        yield "direct", lambda: json.loads(raw_text)
        unwrapped = strip_wrappers(raw_text, opener)
        offsets = root_candidates(unwrapped, opener) or [0]
        for offset in offsets:
            yield from _repairs(unwrapped[offset:])

    for strategy, decode in _attempts():
        try:
            value = decode()
        except (json.JSONDecodeError, RecursionError):
            continue
        try:
            validate_shape(value, expected_shape)
        except ShapeMismatch as e:
            shape_error = e
            continue
        if strategy != "direct":
            logger.info(f"Model output recovered via '{strategy}' strategy")
        return value

    preview = excerpt(raw_text)
    if shape_error is not None:
        logger.warning(f"Model output has wrong shape ({shape_error}): {preview}")
        raise ParseError(f"Response does not match expected {expected_shape.value}: {shape_error}",
                         excerpt=preview)
    logger.warning(f"Model output is not valid JSON after repair: {preview}")
    raise ParseError("Failed to parse AI response as JSON", excerpt=preview)
