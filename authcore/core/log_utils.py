# authcore/core/log_utils.py
"""Helpers for logging attacker-controlled values.

Identifiers, IP addresses and User-Agent strings arrive straight from login
requests, so anything written to a log or stored in an event payload passes
through here first:
- ANSI escape sequences are removed
- newlines/tabs are escaped, other control characters dropped
- bidirectional and zero-width characters are stripped
- lengths, nesting depth and collection sizes are capped

Use ``logger.info("%s", value)``; this module does not guard format strings.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

_ANSI_RE = re.compile(
    r"""
    \x1B
    (?:
        [@-Z\\-_]
      | \[ [0-?]* [ -/]* [@-~]
      | \] (?: [^\x07\x1B]* (?:\x07|\x1B\\))
    )
    """,
    re.VERBOSE,
)

# Control characters other than \t \n \r, which are escaped instead.
_UNSAFE_CTRL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")

_BIDI_RE = re.compile(r"[\u202A-\u202E\u2066-\u2069\u200E\u200F]")

_INVISIBLE_RE = re.compile(r"[\u200B-\u200D\u2060\u00AD]")

_TRUNCATED_SUFFIX = "...[truncated]"


def sanitize_for_log(value: Any, max_length: int | None = 255) -> str:
    """Return a single-line, printable rendering of ``value``.

    Examples:
        >>> sanitize_for_log("a@b.c\\nFAKE ENTRY")
        'a@b.c\\\\nFAKE ENTRY'
        >>> sanitize_for_log(None)
        '<None>'
    """
    if value is None:
        return "<None>"

    try:
        text = str(value)
    except Exception:
        return f"<unprintable {type(value).__name__}>"

    text = _ANSI_RE.sub("", text)
    text = (
        text.replace("\\", "\\\\")
        .replace("\r", "\\r")
        .replace("\n", "\\n")
        .replace("\t", "\\t")
        .replace("\u2028", "\\u2028")
        .replace("\u2029", "\\u2029")
    )
    text = _UNSAFE_CTRL_RE.sub("", text)
    text = _BIDI_RE.sub("", text)
    text = _INVISIBLE_RE.sub("", text)

    if max_length is not None and len(text) > max_length:
        keep = max(0, max_length - len(_TRUNCATED_SUFFIX))
        text = text[:keep] + _TRUNCATED_SUFFIX

    return text


def sanitize_for_structured_log(
    value: Any,
    *,
    max_str_len: int = 1000,
    max_depth: int = 6,
    max_items: int = 100,
    _depth: int = 0,
    _seen: set[int] | None = None,
) -> Any:
    """Recursively sanitize a JSON-bound payload.

    Strings (including keys) go through :func:`sanitize_for_log`, cycles are
    replaced by ``"[circular]"`` and anything that is not a primitive,
    mapping or sequence is rendered as a string.
    """
    if _depth > max_depth:
        return "[max_depth]"
    if _seen is None:
        _seen = set()

    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return sanitize_for_log(value, max_length=max_str_len)
    if isinstance(value, (bytes, bytearray)):
        return sanitize_for_log(
            value.decode("utf-8", errors="backslashreplace"), max_length=max_str_len
        )

    obj_id = id(value)
    if obj_id in _seen:
        return "[circular]"
    _seen.add(obj_id)

    kwargs = {
        "max_str_len": max_str_len,
        "max_depth": max_depth,
        "max_items": max_items,
        "_depth": _depth + 1,
        "_seen": _seen,
    }
    try:
        if isinstance(value, Mapping):
            out: dict[str, Any] = {}
            for i, (k, v) in enumerate(value.items()):
                if i >= max_items:
                    out["[truncated_items]"] = True
                    break
                key = sanitize_for_log(k, max_length=200)
                base_key, n = key, 1
                while key in out:
                    key = f"{base_key}#{n}"
                    n += 1
                out[key] = sanitize_for_structured_log(v, **kwargs)
            return out

        if isinstance(value, (list, tuple, set, frozenset)):
            items = list(value)
            out_list = [sanitize_for_structured_log(item, **kwargs) for item in items[:max_items]]
            if len(items) > max_items:
                out_list.append("[truncated_items]")
            return out_list

        return sanitize_for_log(value, max_length=max_str_len)
    finally:
        _seen.discard(obj_id)
