"""
Pull a JSON value out of free-form model output.

Models wrap JSON in prose, markdown fences, or trailing commentary. The
scanner walks the text looking for a balanced ``{...}`` or ``[...]`` span,
honouring string literals and escapes so brackets inside strings do not
confuse the depth count.
"""

import json
from typing import Any, Optional

_OPENERS = {"{": "}", "[": "]"}


def _balanced_span_end(text: str, start: int) -> int:
    """Return the index one past the bracket closing ``text[start]``, or -1."""
    stack = [_OPENERS[text[start]]]
    in_string = False
    escaped = False

    for i in range(start + 1, len(text)):
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
            stack.append(_OPENERS[ch])
        elif ch in ("}", "]"):
            if ch != stack[-1]:
                return -1
            stack.pop()
            if not stack:
                return i + 1
    return -1


def extract_json(raw_text: Optional[str]) -> Optional[Any]:
    """Return the first parseable JSON object or array in *raw_text*.

    Never raises. Returns None when the text holds no balanced span that
    parses as JSON.
    """
    if not raw_text:
        return None

    text = raw_text if isinstance(raw_text, str) else str(raw_text)
    pos = 0
    while True:
        starts = [i for i in (text.find("{", pos), text.find("[", pos)) if i != -1]
        if not starts:
            return None
        start = min(starts)

        end = _balanced_span_end(text, start)
        if end != -1:
            try:
                return json.loads(text[start:end])
            except (json.JSONDecodeError, ValueError):
                pass
        pos = start + 1
