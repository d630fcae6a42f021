"""Text-level repair of non-standard numeric literals in usage JSON.

The machine export writes ``NaN``, ``Infinity`` and ``-Infinity`` as bare
tokens, which strict JSON parsers reject.  ``sanitize`` rewrites exactly those
tokens to ``null`` when they sit in value position (followed by ``,``, ``}``
or ``]``) and leaves string literals untouched.  Nothing else is repaired.
"""
from __future__ import annotations

import json
import re
from typing import Any

from toolmanager.core.errors import ParseFatal

_TOKEN_PATTERN = re.compile(
    r'(?P<string>"(?:[^"\\]|\\.)*")'
    r"|(?<![\w.\-])(?P<literal>-Infinity|Infinity|NaN)(?=\s*[,}\]])"
)


def _replace(match: re.Match[str]) -> str:
    if match.group("literal") is not None:
        return "null"
    return match.group(0)


def sanitize(raw_text: str) -> str:
    """Return ``raw_text`` with bare NaN/Infinity values replaced by ``null``."""

    if not raw_text or ("NaN" not in raw_text and "Infinity" not in raw_text):
        return raw_text
    return _TOKEN_PATTERN.sub(_replace, raw_text)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard literal {name} outside value position")


def parse_sanitized(raw_text: str) -> Any:
    """Sanitise and parse ``raw_text``; invalid JSON raises :class:`ParseFatal`."""

    text = sanitize(raw_text)
    try:
        return json.loads(text, parse_constant=_reject_constant)
    except json.JSONDecodeError as exc:
        raise ParseFatal(f"invalid JSON after sanitising: {exc.msg}", line=exc.lineno, column=exc.colno) from exc
    except ValueError as exc:
        raise ParseFatal(str(exc)) from exc
