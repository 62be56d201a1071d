"""
Parsing of completion output.

Completion models are asked for JSON but reply with whatever they like:
prose around the object, fenced code blocks, single quotes, trailing
commas. ``parse_completion`` tries increasingly forgiving readings and
returns the first one that parses.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, List, Optional, Tuple

from loguru import logger

from ..core.errors import ExtractionParseError


_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)```")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_BARE_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)\s*:")
_SMART_QUOTES = str.maketrans({
    "“": '"',
    "”": '"',
    "‘": "'",
    "’": "'",
})


def _direct(text: str) -> Optional[str]:
    return text


def _fenced_block(text: str) -> Optional[str]:
    match = _FENCE_RE.search(text)
    return match.group(1).strip() if match else None


def first_object_span(text: str) -> Optional[str]:
    """The first balanced top-level ``{...}`` span, ignoring braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
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
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start:index + 1]
        # Unbalanced from here on; try a later opening brace
        start = text.find("{", start + 1)
    return None


def repair_json(text: str) -> str:
    """
    Apply conservative repairs to almost-JSON.

    Removes trailing commas, normalizes quote characters and quotes bare
    keys. Keys are only quoted right after ``{`` or ``,`` so values such
    as "10:30" are left alone.
    """
    candidate = first_object_span(text) or text
    candidate = candidate.translate(_SMART_QUOTES)
    if '"' not in candidate:
        candidate = candidate.replace("'", '"')
    else:
        candidate = re.sub(r"(?<=[{\[,:])\s*'([^'\"]*)'", r' "\1"', candidate)
        candidate = re.sub(r"'([^'\"]*)'\s*(?=[:,}\]])", r'"\1"', candidate)
    candidate = _BARE_KEY_RE.sub(r'\1"\2":', candidate)
    candidate = _TRAILING_COMMA_RE.sub(r"\1", candidate)
    candidate = re.sub(r"\bTrue\b", "true", candidate)
    candidate = re.sub(r"\bFalse\b", "false", candidate)
    candidate = re.sub(r"\bNone\b", "null", candidate)
    return candidate.strip()


PARSE_STEPS: List[Tuple[str, Callable[[str], Optional[str]]]] = [
    ("direct", _direct),
    ("code_block", _fenced_block),
    ("object_span", first_object_span),
    ("repaired", repair_json),
]


def parse_completion(text: Any) -> Any:
    """
    Parse completion output into a JSON value.

    Raises:
        ExtractionParseError: if no reading parses.
    """
    if not isinstance(text, str) or not text.strip():
        raise ExtractionParseError("Empty or non-text completion output")

    cleaned = text.strip()
    for name, step in PARSE_STEPS:
        candidate = step(cleaned)
        if not candidate:
            continue
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if name != "direct":
            logger.debug(f"Completion output parsed via {name}")
        return value

    raise ExtractionParseError(f"Could not parse completion output: {cleaned[:80]!r}")
