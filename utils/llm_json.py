"""Lenient JSON extraction from language-model output."""

from __future__ import annotations

import json
import re
from typing import Any, Iterator, Optional

_FENCE_PATTERN = re.compile(r"```(?:json|JSON)?\s*\n?([\s\S]*?)```")
_THINK_PATTERN = re.compile(r"<think>[\s\S]*?(?:</think>|$)")


def strip_fences(text: str) -> str:
    """Return the body of the first fenced code block, or the text itself."""
    match = _FENCE_PATTERN.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def find_balanced_literal(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` or ``[...]`` literal in ``text``.

    Brackets inside JSON strings are ignored.
    """
    return next(iter_balanced_literals(text), None)


def iter_balanced_literals(text: str) -> Iterator[str]:
    """Yield every balanced literal in ``text``, outermost first.

    Nested literals are yielded too, after their enclosing one.
    """
    for start, ch in enumerate(text):
        if ch not in "{[":
            continue
        end = _scan_literal(text, start)
        if end is not None:
            yield text[start:end + 1]


def _scan_literal(text: str, start: int) -> Optional[int]:
    stack = []
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
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]":
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return i
    return None


def _has_object(value: Any) -> bool:
    return isinstance(value, dict) or (isinstance(value, list) and any(isinstance(v, dict) for v in value))


def loads_lenient(text: str) -> Optional[Any]:
    """Parse JSON out of a model reply. Returns None when nothing parses.

    The whole reply (or its fenced block) is tried first. Otherwise the
    embedded literals are tried in order and the first one holding an
    object wins, so bracketed prose such as ``[3]`` is skipped.
    """
    if not text:
        return None
    cleaned = strip_fences(_THINK_PATTERN.sub("", text).strip())
    try:
        return json.loads(cleaned)
    except (json.JSONDecodeError, ValueError):
        pass

    fallback = None
    for literal in iter_balanced_literals(cleaned):
        try:
            value = json.loads(literal)
        except (json.JSONDecodeError, ValueError):
            continue
        if _has_object(value):
            return value
        if fallback is None:
            fallback = value
    return fallback
