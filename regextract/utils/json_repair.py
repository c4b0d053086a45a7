"""Best-effort recovery of JSON payloads from model output.

Completion text may arrive fenced in markdown, wrapped in prose, carrying
trailing commas, or cut off mid-value when the model runs out of output
tokens. ``repair_json`` tries progressively more aggressive strategies and
returns either text that ``json.loads`` accepts or the input unchanged:

1. strip markdown code fences,
2. parse directly,
3. strip trailing commas,
4. slice out the outermost ``{...}`` / ``[...]`` span,
5. repair truncation by cutting back to the last complete value and
   closing the open brackets,
6. salvage every top-level object that parses on its own into an array.

All functions here are pure; nothing is logged.
"""

from __future__ import annotations

import json
import re
from typing import Any, List, Literal, Optional, Tuple

from regextract.errors import MalformedOutputError

Shape = Literal["object", "array"]

FENCE_OPEN_PATTERN = re.compile(r"^```[a-zA-Z0-9_-]*[ \t]*\n?")
FENCE_CLOSE_PATTERN = re.compile(r"\n?[ \t]*```$")
TRAILING_COMMA_PATTERN = re.compile(r",\s*([}\]])")

MAX_TRUNCATION_CANDIDATES = 500

_CLOSERS = {"{": "}", "[": "]"}


def _loads_ok(text: str) -> bool:
    try:
        json.loads(text)
    except (ValueError, RecursionError):
        return False
    return True


def strip_code_fences(text: str) -> str:
    """Remove a leading/trailing markdown fence, with or without a language tag."""
    clean = text.strip()
    if clean.startswith("```"):
        clean = FENCE_OPEN_PATTERN.sub("", clean, count=1)
    if clean.endswith("```"):
        clean = FENCE_CLOSE_PATTERN.sub("", clean, count=1)
    return clean.strip()


def strip_trailing_commas(text: str) -> str:
    return TRAILING_COMMA_PATTERN.sub(r"\1", text)


def _detect_shape(text: str) -> Optional[Shape]:
    obj_at = text.find("{")
    arr_at = text.find("[")
    if obj_at == -1 and arr_at == -1:
        return None
    if arr_at == -1 or (obj_at != -1 and obj_at < arr_at):
        return "object"
    return "array"


def _balanced_span(text: str, start: int) -> Optional[str]:
    """Return the bracket-balanced span opening at ``start``, string aware."""
    stack: List[str] = []
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
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
        elif ch in "}]":
            if not stack or stack[-1] != ch:
                return None
            stack.pop()
            if not stack:
                return text[start : idx + 1]
    return None


def _extract_span(text: str, shape: Shape) -> Optional[str]:
    opener, closer = ("{", "}") if shape == "object" else ("[", "]")
    start = text.find(opener)
    if start == -1:
        return None
    candidates: List[str] = []
    end = text.rfind(closer)
    if end > start:
        candidates.append(text[start : end + 1])
    balanced = _balanced_span(text, start)
    if balanced is not None and balanced not in candidates:
        candidates.append(balanced)
    for candidate in candidates:
        for attempt in (candidate, strip_trailing_commas(candidate)):
            if _loads_ok(attempt):
                return attempt
    return None


def _cut_points(text: str) -> List[Tuple[int, str]]:
    """Positions where a complete value ends, paired with the closers still owed.

    A cut is recorded right after every ``}``/``]`` and right before every
    ``,`` outside of string literals, plus the end of the text when it stops
    outside a string.
    """
    points: List[Tuple[int, str]] = []
    stack: List[str] = []
    in_string = False
    escaped = False
    for idx, ch in enumerate(text):
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
        elif ch in "}]":
            if not stack or stack[-1] != ch:
                break
            stack.pop()
            points.append((idx + 1, "".join(reversed(stack))))
            if not stack:
                break
        elif ch == "," and stack:
            points.append((idx, "".join(reversed(stack))))
    else:
        if stack and not in_string:
            points.append((len(text), "".join(reversed(stack))))
    return points


def _repair_truncated_array(text: str) -> Optional[str]:
    start = text.find("[")
    if start == -1:
        return None
    body = text[start:]
    last_complete = body.rfind("},")
    if last_complete > 0:
        candidate = body[: last_complete + 1] + "]"
        if _loads_ok(candidate):
            return candidate
    last_brace = body.rfind("}")
    if last_brace > 0:
        candidate = body[: last_brace + 1] + "]"
        if _loads_ok(candidate):
            return candidate
    return _close_at_cut_points(body)


def _repair_truncated_object(text: str) -> Optional[str]:
    start = text.find("{")
    if start == -1:
        return None
    body = text[start:]
    tried = 0
    idx = body.rfind("}")
    while idx > 0 and tried < MAX_TRUNCATION_CANDIDATES:
        candidate = body[: idx + 1]
        if _loads_ok(candidate):
            return candidate
        tried += 1
        idx = body.rfind("}", 0, idx)
    return _close_at_cut_points(body)


def _close_at_cut_points(body: str) -> Optional[str]:
    points = _cut_points(body)
    for cut, closers in reversed(points[-MAX_TRUNCATION_CANDIDATES:]):
        candidate = strip_trailing_commas(body[:cut].rstrip()) + closers
        if _loads_ok(candidate):
            return candidate
    return None


def salvage_objects(text: str) -> Optional[str]:
    """Collect every top-level ``{...}`` that parses independently.

    Quotes are only tracked inside an object so stray quotation marks in
    surrounding prose do not derail the scan.
    """
    found: List[str] = []
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for idx, ch in enumerate(text):
        if depth > 0 and in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"' and depth > 0:
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = idx
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start >= 0:
                candidate = text[start : idx + 1]
                if _loads_ok(candidate):
                    found.append(candidate)
                start = -1
    if not found:
        return None
    return "[" + ",".join(found) + "]"


def repair_json(text: str, shape: Optional[Shape] = None) -> str:
    """Return parseable JSON text recovered from ``text``, or ``text`` itself."""
    if not isinstance(text, str):
        raise TypeError("repair_json expects a string")
    clean = strip_code_fences(text)
    if _loads_ok(clean):
        return clean

    without_commas = strip_trailing_commas(clean)
    if _loads_ok(without_commas):
        return without_commas

    shape = shape or _detect_shape(clean)
    if shape is None:
        return text

    span = _extract_span(clean, shape)
    if span is not None:
        return span

    if shape == "array":
        truncated = _repair_truncated_array(clean)
    else:
        truncated = _repair_truncated_object(clean)
    if truncated is not None:
        return truncated

    salvaged = salvage_objects(clean)
    if salvaged is not None:
        return salvaged
    return text


def repair_json_object(text: str) -> str:
    return repair_json(text, shape="object")


def repair_json_array(text: str) -> str:
    return repair_json(text, shape="array")


def parse_json(text: str, shape: Optional[Shape] = None) -> Any:
    """Repair and decode ``text``; raise ``MalformedOutputError`` when hopeless."""
    repaired = repair_json(text, shape=shape)
    try:
        return json.loads(repaired)
    except (ValueError, RecursionError) as exc:
        raise MalformedOutputError(f"Unrepairable JSON output: {exc}", raw_text=text) from exc


def parse_json_array(text: str, key: Optional[str] = None) -> List[Any]:
    """Decode a list, unwrapping ``{key: [...]}`` envelopes the model sometimes adds."""
    data = parse_json(text, shape="array")
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        if key is not None and isinstance(data.get(key), list):
            return data[key]
        for value in data.values():
            if isinstance(value, list):
                return value
        return [data]
    raise MalformedOutputError("Expected a JSON array", raw_text=text)
