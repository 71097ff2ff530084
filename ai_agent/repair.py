"""Recovery of structured data from near-valid model output.

Models frequently wrap JSON in prose or markdown fences, leave trailing
commas, switch to single quotes or stop mid-document when they hit the
output budget.  :func:`parse` recovers from these shallow syntactic defects
with a fixed, ordered sequence of local repairs and reports every repair it
applied.  Semantic problems are left to the schema validator.

Usage::

    result = parse(response.text)
    if result.success:
        data = result.data
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

_OPENERS = {"{": "}", "[": "]"}
_CLOSERS = {"}": "{", "]": "["}

_FENCE_OPEN_RE = re.compile(r"```[a-zA-Z0-9_-]*[ \t]*\n?")

# How many candidate opening brackets to try when extracting a JSON block.
_MAX_BLOCK_CANDIDATES = 20


@dataclass
class RepairResult:
    """Outcome of :func:`parse`.

    ``repairs`` lists, in order, the name of every step that changed the
    text.  ``error_offset`` is the byte offset of the parse failure in the
    final candidate text, when one could be determined.
    """

    success: bool
    data: Any = None
    error: str | None = None
    repaired: bool = False
    repairs: list[str] = field(default_factory=list)
    error_offset: int | None = None


# ---------------------------------------------------------------------------
# Scanning helpers
# ---------------------------------------------------------------------------


def _try_loads(text: str) -> tuple[bool, Any, json.JSONDecodeError | None]:
    try:
        return True, json.loads(text), None
    except json.JSONDecodeError as exc:
        return False, None, exc


def _matching_close(text: str, start: int) -> int:
    """Index of the bracket closing the one at *start*, or ``-1`` if unbalanced."""
    depth = 0
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
        elif ch in _OPENERS:
            depth += 1
        elif ch in _CLOSERS:
            depth -= 1
            if depth == 0:
                return i
    return -1


# ---------------------------------------------------------------------------
# Unwrapping
# ---------------------------------------------------------------------------


def strip_code_fences(text: str) -> str:
    """Return the body of a markdown code fence, or *text* unchanged.

    The body runs from the end of the first fence line to the last fence
    in the text, so fences quoted inside generated file contents survive.
    An unclosed fence runs to the end of the text.  A fence that sits
    inside a JSON value opened before it is file content, not a wrapper,
    and is left alone.
    """
    opening = _FENCE_OPEN_RE.search(text)
    if not opening:
        return text
    first = next((i for i in range(opening.start()) if text[i] in _OPENERS), -1)
    if first != -1:
        end = _matching_close(text, first)
        if end == -1 or end > opening.start():
            return text
    body_start = opening.end()
    closing = text.rfind("```")
    if closing < body_start:
        return text[body_start:].strip()
    return text[body_start:closing].strip()


def extract_json_block(text: str) -> str:
    """Cut the JSON object or array out of surrounding prose.

    Tries top-level bracketed blocks left to right and returns the first
    one that parses strictly.  Brackets nested inside an earlier block are
    never candidates.  If no block parses, returns the first block (running
    to the end of the text when it is unbalanced) so later repairs can work
    on it.
    """
    first_block: str | None = None
    pos = 0
    for _ in range(_MAX_BLOCK_CANDIDATES):
        start = next((i for i in range(pos, len(text)) if text[i] in _OPENERS), -1)
        if start == -1:
            break
        end = _matching_close(text, start)
        if end == -1:
            block = text[start:].strip()
            return block if first_block is None else first_block
        block = text[start : end + 1]
        ok, _, _ = _try_loads(block)
        if ok:
            return block
        if first_block is None:
            first_block = block
        pos = end + 1
    return first_block if first_block is not None else text.strip()


# ---------------------------------------------------------------------------
# Repairs
# ---------------------------------------------------------------------------


def remove_comments(text: str) -> str:
    """Drop ``//`` line comments and ``/* */`` block comments outside strings.

    Both double- and single-quoted strings are skipped, so a URL in a
    single-quoted value survives until :func:`convert_single_quotes` runs.
    """
    out: list[str] = []
    i = 0
    quote: str | None = None
    escaped = False
    n = len(text)
    while i < n:
        ch = text[i]
        if quote is not None:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            i += 1
            continue
        if ch in "\"'":
            quote = ch
            out.append(ch)
            i += 1
        elif text.startswith("//", i):
            newline = text.find("\n", i)
            i = n if newline == -1 else newline
        elif text.startswith("/*", i):
            close = text.find("*/", i + 2)
            i = n if close == -1 else close + 2
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def remove_trailing_commas(text: str) -> str:
    """Remove commas that directly precede a closing bracket."""
    out: list[str] = []
    in_string = False
    escaped = False
    n = len(text)
    for i, ch in enumerate(text):
        if in_string:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == ",":
            j = i + 1
            while j < n and text[j].isspace():
                j += 1
            if j < n and text[j] in _CLOSERS:
                continue
        out.append(ch)
    return "".join(out)


def convert_single_quotes(text: str) -> str:
    """Rewrite single-quoted keys and values as double-quoted JSON strings.

    Apostrophes inside double-quoted strings are left alone.
    """
    out: list[str] = []
    i = 0
    n = len(text)
    in_double = False
    escaped = False
    while i < n:
        ch = text[i]
        if in_double:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_double = False
            i += 1
            continue
        if ch == '"':
            in_double = True
            out.append(ch)
            i += 1
            continue
        if ch != "'":
            out.append(ch)
            i += 1
            continue
        # Single-quoted string: copy up to the closing quote.
        out.append('"')
        i += 1
        while i < n:
            c = text[i]
            if c == "\\" and i + 1 < n:
                nxt = text[i + 1]
                out.append("'" if nxt == "'" else c + nxt)
                i += 2
                continue
            if c == "'":
                i += 1
                break
            out.append('\\"' if c == '"' else c)
            i += 1
        out.append('"')
    return "".join(out)


def close_unterminated_string(text: str) -> str:
    """Terminate a string left open at the end of the text."""
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
    if not in_string:
        return text
    if escaped:
        text = text[:-1]
    return text + '"'


def truncate_to_valid_prefix(text: str) -> str:
    """Balance brackets, truncating to the last structurally valid prefix.

    * An unmatched or mismatched closing bracket ends the document there.
    * Text after a complete top-level value is dropped.
    * Brackets left open are closed; if the dangling tail cannot be closed
      as-is, the text is cut back to the last completed element first.
    """
    stack: list[str] = []
    in_string = False
    escaped = False
    # (end index, stack snapshot) of the last point where an element completed.
    safe_end = 0
    safe_stack: list[str] = []
    cut = len(text)
    for i, ch in enumerate(text):
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
        elif ch in _OPENERS:
            stack.append(ch)
            safe_end, safe_stack = i + 1, list(stack)
        elif ch in _CLOSERS:
            if not stack or stack[-1] != _CLOSERS[ch]:
                cut = i
                break
            stack.pop()
            safe_end, safe_stack = i + 1, list(stack)
            if not stack:
                cut = i + 1
                break
        elif ch == "," and stack:
            safe_end, safe_stack = i, list(stack)

    if in_string:
        return text
    prefix = text[:cut]
    if not stack:
        return prefix

    closing = "".join(_OPENERS[b] for b in reversed(stack))
    direct = prefix.rstrip().rstrip(",").rstrip()
    if not direct.endswith(":"):
        ok, _, _ = _try_loads(direct + closing)
        if ok:
            return direct + closing

    trimmed = text[:safe_end].rstrip().rstrip(",").rstrip()
    return trimmed + "".join(_OPENERS[b] for b in reversed(safe_stack))


# Applied in order; the text is re-parsed after each repair that changes it.
REPAIRS: list[tuple[str, Callable[[str], str]]] = [
    ("remove_comments", remove_comments),
    ("remove_trailing_commas", remove_trailing_commas),
    ("convert_single_quotes", convert_single_quotes),
    ("close_unterminated_string", close_unterminated_string),
    ("truncate_to_valid_prefix", truncate_to_valid_prefix),
]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _failure(text: str, exc: json.JSONDecodeError | None, repairs: list[str]) -> RepairResult:
    if exc is None:
        return RepairResult(success=False, error="No JSON value found", repairs=repairs)
    offset = len(text[: exc.pos].encode("utf-8"))
    return RepairResult(
        success=False,
        error=f"{exc.msg} at line {exc.lineno} column {exc.colno} (byte {offset})",
        repairs=repairs,
        error_offset=offset,
    )


def parse(raw_text: str) -> RepairResult:
    """Parse model output into JSON data, repairing shallow syntax errors.

    Steps, stopping at the first success: strict parse; strip fences and
    prose; incremental repairs.  Well-formed input is returned untouched
    with ``repaired=False``.
    """
    if raw_text is None or not raw_text.strip():
        return RepairResult(success=False, error="Empty response")

    ok, data, exc = _try_loads(raw_text)
    if ok:
        return RepairResult(success=True, data=data)

    repairs: list[str] = []
    candidate = raw_text.strip()

    unfenced = strip_code_fences(candidate)
    if unfenced != candidate:
        candidate = unfenced
        repairs.append("strip_code_fences")

    block = extract_json_block(candidate)
    if block != candidate:
        candidate = block
        repairs.append("extract_json_block")

    if repairs:
        ok, data, exc = _try_loads(candidate)
        if ok:
            return RepairResult(success=True, data=data, repaired=True, repairs=repairs)

    for name, repair in REPAIRS:
        fixed = repair(candidate)
        if fixed == candidate:
            continue
        candidate = fixed
        repairs.append(name)
        ok, data, exc = _try_loads(candidate)
        if ok:
            return RepairResult(success=True, data=data, repaired=True, repairs=repairs)

    # A final trailing-comma pass catches commas exposed by truncation.
    fixed = remove_trailing_commas(candidate)
    if fixed != candidate:
        candidate = fixed
        repairs.append("remove_trailing_commas")
        ok, data, exc = _try_loads(candidate)
        if ok:
            return RepairResult(success=True, data=data, repaired=True, repairs=repairs)

    _, _, exc = _try_loads(candidate)
    return _failure(candidate, exc, repairs)
