"""Query-string encoding for libpod endpoints."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote


def _encode(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Mapping):
        # filters and labels travel as JSON
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def build_query(params: Mapping[str, Any] | None = None) -> str:
    """Encode parameters as ``?k=v&...``, or "" when there is nothing to send.

    None values are dropped, lists and tuples repeat the key
    (``names=a&names=b``) and mappings are JSON-encoded.
    """
    if not params:
        return ""

    parts: list[str] = []
    for key, value in params.items():
        if value is None:
            continue
        name = quote(str(key), safe="")
        if isinstance(value, list | tuple):
            for item in value:
                parts.append(f"{name}={quote(_encode(item), safe='')}")
        else:
            parts.append(f"{name}={quote(_encode(value), safe='')}")

    return f"?{'&'.join(parts)}" if parts else ""
