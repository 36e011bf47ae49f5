"""Web UI websocket event, command, and state constants."""

from __future__ import annotations

# Websocket event types
EVENT_HELLO = "hello"
EVENT_STATE_UPDATE = "state_update"
EVENT_TIMER = "timer"
EVENT_COMMAND_RESULT = "command_result"
EVENT_SESSION_FINISHED = "session_finished"
EVENT_ERROR = "error"

# UI runtime states
STATE_IDLE = "idle"
STATE_RUNNING = "running"
STATE_ERROR = "error"

# Commands accepted from websocket clients
UI_COMMAND_START_STUDY = "start_study"
UI_COMMAND_START_BREAK = "start_break"
UI_COMMAND_PAUSE = "pause"
UI_COMMAND_RESUME = "resume"
UI_COMMAND_STOP = "stop"
UI_COMMAND_RESET = "reset"
UI_COMMAND_GET_STATUS = "get_status"

UI_COMMANDS: frozenset[str] = frozenset(
    {
        UI_COMMAND_START_STUDY,
        UI_COMMAND_START_BREAK,
        UI_COMMAND_PAUSE,
        UI_COMMAND_RESUME,
        UI_COMMAND_STOP,
        UI_COMMAND_RESET,
        UI_COMMAND_GET_STATUS,
    }
)

STICKY_EVENT_TYPES: frozenset[str] = frozenset(
    {
        EVENT_STATE_UPDATE,
        EVENT_TIMER,
        EVENT_SESSION_FINISHED,
        EVENT_ERROR,
    }
)

STICKY_EVENT_ORDER: tuple[str, ...] = (
    EVENT_TIMER,
    EVENT_SESSION_FINISHED,
    EVENT_ERROR,
    EVENT_STATE_UPDATE,
)
