"""Utilities for serializing UI events, parsing client commands, and sticky state."""

from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from contracts.ui_protocol import STICKY_EVENT_ORDER, STICKY_EVENT_TYPES, UI_COMMANDS


class ClientCommandError(ValueError):
    """Raised when a websocket client sends a message that is not a known command."""


def make_event(
    event_type: str,
    *,
    now_fn: Callable[[], datetime] | None = None,
    **payload: Any,
) -> str:
    """Serialize an event payload with type and timestamp for websocket delivery."""
    now = now_fn() if now_fn is not None else datetime.now(timezone.utc)
    return json.dumps(
        {
            "type": event_type,
            "timestamp": now.isoformat(),
            **payload,
        }
    )


def parse_client_command(message: str | bytes) -> dict[str, Any]:
    """Decode a client message such as `{"command": "start_study", "subjectId": "math"}`."""
    try:
        raw = json.loads(message)
    except (TypeError, ValueError) as error:
        raise ClientCommandError(f"Invalid JSON: {error}") from error

    if not isinstance(raw, dict):
        raise ClientCommandError("Command message must be a JSON object")

    command = raw.get("command")
    if command not in UI_COMMANDS:
        raise ClientCommandError(f"Unknown command: {command!r}")

    subject_id: Optional[Any] = raw.get("subjectId")
    if subject_id is not None and not isinstance(subject_id, str):
        raise ClientCommandError("subjectId must be a string")

    parsed: dict[str, Any] = {"command": command}
    if subject_id:
        parsed["subject_id"] = subject_id
    return parsed


class StickyEventStore:
    """Thread-safe cache of sticky events replayed to new websocket clients."""
    def __init__(self):
        self._events: dict[str, str] = {}
        self._lock = threading.Lock()

    def remember(self, event_type: str, message: str) -> None:
        if event_type not in STICKY_EVENT_TYPES:
            return
        with self._lock:
            self._events[event_type] = message

    def snapshot(self) -> list[str]:
        with self._lock:
            return [self._events[key] for key in STICKY_EVENT_ORDER if key in self._events]
