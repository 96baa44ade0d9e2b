"""Turns raw model output into a structured value.

The strict pass is a plain ``json.loads`` of the fence-stripped text. Only
when that fails and the text mentions a ``"cases"`` field do we try to
salvage a truncated test suite: the span inside the ``cases`` array is cut
after its last complete element and re-wrapped as ``{"cases": [...]}``.
Nothing else is repaired.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

from . import logging as core_logging
from .errors import ParseError

LOGGER = core_logging.get_logger("agents")

_LEADING_FENCE = re.compile(r"^\s*```(?:json)?", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"```\s*$")
_CASES_OPEN = re.compile(r'"cases"\s*:\s*\[')
_DANGLING_CLOSE = re.compile(r"\},?\s*$")
_SALVAGE_MARKER = '"cases"'


def normalize(raw_text: str) -> str:
    text = raw_text or ""
    text = _LEADING_FENCE.sub("", text, count=1)
    text = _TRAILING_FENCE.sub("", text, count=1)
    return text.strip()


def parse_result(raw_text: str) -> Any:
    cleaned = normalize(raw_text)
    if not cleaned:
        raise ParseError("empty", raw_text or "", detail="Empty JSON string")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        strict_error = exc
    if _SALVAGE_MARKER in cleaned:
        salvaged = salvage_cases(cleaned)
        if salvaged is not None:
            LOGGER.warning(
                "result_salvaged",
                kept_cases=len(salvaged.get("cases", [])),
                strict_error=str(strict_error),
            )
            return salvaged
    LOGGER.error(
        "result_parse_failed",
        stage="unrecoverable",
        error=str(strict_error),
        raw_text=core_logging.truncate(raw_text),
    )
    raise ParseError("unrecoverable", raw_text, detail="Model returned invalid JSON")


def salvage_cases(text: str) -> Optional[dict]:
    inner = _cases_span(text)
    if inner is None:
        return None
    inner = inner.strip()
    last_closed = inner.rfind("},")
    if last_closed != -1:
        inner = inner[: last_closed + 1]
    else:
        inner = _DANGLING_CLOSE.sub("", inner)
    repaired = f'{{"cases":[{inner}]}}'
    try:
        payload = json.loads(repaired)
    except json.JSONDecodeError as exc:
        LOGGER.error("result_salvage_failed", error=str(exc), repaired=core_logging.truncate(repaired))
        return None
    return payload if isinstance(payload, dict) else None


def _cases_span(text: str) -> Optional[str]:
    match = _CASES_OPEN.search(text)
    if match is None:
        return None
    start = match.end()
    depth = 1
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
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
        elif char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
            if depth == 0:
                return text[start:index]
    # Truncated output: the array never closes, so keep everything to the end.
    return text[start:]
