"""Safe static-asset lookup for files that sit next to the UI index page."""

from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Optional


def resolve_static_file(static_root: Path, request_path: str) -> Optional[Path]:
    """Return the file for `request_path` inside `static_root`, or None if unsafe/missing."""
    relative = (request_path or "").lstrip("/")
    if not relative:
        return None

    root = static_root.resolve()
    candidate = (root / relative).resolve()
    if root not in candidate.parents or not candidate.is_file():
        return None
    return candidate


def guess_content_type(path: Path) -> str:
    mime_type, _ = mimetypes.guess_type(str(path))
    if not mime_type:
        return "application/octet-stream"
    if mime_type.startswith("text/") or mime_type in {
        "application/javascript",
        "application/json",
    }:
        return f"{mime_type}; charset=utf-8"
    return mime_type
