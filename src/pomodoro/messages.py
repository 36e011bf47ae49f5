"""Command and event payloads exchanged between the state machine and timer worker.

Commands travel from the owning thread to the worker; events travel back. Events
have a `to_dict()` wire form, forwarded to the browser UI inside `timer` updates,
that keeps the field names the page expects (`timeRemaining`, `overtimeElapsed`, ...).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

from .constants import (
    COMMAND_GET_STATUS,
    COMMAND_PAUSE,
    COMMAND_RESET,
    COMMAND_RESUME,
    COMMAND_START,
    COMMAND_STOP,
    EVENT_ERROR,
    EVENT_OVERTIME_STARTED,
    EVENT_OVERTIME_TICK,
    EVENT_PAUSED,
    EVENT_RESET,
    EVENT_RESUMED,
    EVENT_STARTED,
    EVENT_STATUS,
    EVENT_STOPPED,
    EVENT_TICK,
    STATE_COUNTDOWN,
)


@dataclass(frozen=True)
class StartCommand:
    duration_seconds: int
    session_type: str
    command: str = COMMAND_START


@dataclass(frozen=True)
class PauseCommand:
    command: str = COMMAND_PAUSE


@dataclass(frozen=True)
class ResumeCommand:
    command: str = COMMAND_RESUME


@dataclass(frozen=True)
class ResetCommand:
    command: str = COMMAND_RESET


@dataclass(frozen=True)
class StopCommand:
    command: str = COMMAND_STOP


@dataclass(frozen=True)
class GetStatusCommand:
    command: str = COMMAND_GET_STATUS


TimerCommand = Union[
    StartCommand,
    PauseCommand,
    ResumeCommand,
    ResetCommand,
    StopCommand,
    GetStatusCommand,
]


@dataclass(frozen=True)
class StartedEvent:
    time_remaining: int
    session_type: str
    type: str = EVENT_STARTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "data": {
                "timeRemaining": self.time_remaining,
                "sessionType": self.session_type,
            },
        }


@dataclass(frozen=True)
class TickEvent:
    time_remaining: int
    session_type: str
    status: str = STATE_COUNTDOWN
    type: str = EVENT_TICK

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "data": {
                "timeRemaining": self.time_remaining,
                "sessionType": self.session_type,
                "status": self.status,
            },
        }


@dataclass(frozen=True)
class PausedEvent:
    time_remaining: int
    session_type: str
    type: str = EVENT_PAUSED

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "data": {
                "timeRemaining": self.time_remaining,
                "sessionType": self.session_type,
            },
        }


@dataclass(frozen=True)
class ResumedEvent:
    time_remaining: int
    session_type: str
    type: str = EVENT_RESUMED

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "data": {
                "timeRemaining": self.time_remaining,
                "sessionType": self.session_type,
            },
        }


@dataclass(frozen=True)
class OvertimeStartedEvent:
    session_type: str
    type: str = EVENT_OVERTIME_STARTED

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": {"sessionType": self.session_type}}


@dataclass(frozen=True)
class OvertimeTickEvent:
    overtime_elapsed: int
    session_type: str
    status: str
    type: str = EVENT_OVERTIME_TICK

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "data": {
                "overtimeElapsed": self.overtime_elapsed,
                "sessionType": self.session_type,
                "status": self.status,
            },
        }


@dataclass(frozen=True)
class StoppedEvent:
    session_type: Optional[str]
    total_duration: int
    overtime_elapsed: int
    reached_overtime: bool = False
    clock_anomaly: bool = False
    type: str = EVENT_STOPPED

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "data": {
                "sessionType": self.session_type,
                "totalDuration": self.total_duration,
                "overtimeElapsed": self.overtime_elapsed,
            },
        }


@dataclass(frozen=True)
class ResetEvent:
    session_type: Optional[str]
    type: str = EVENT_RESET

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": {"sessionType": self.session_type}}


@dataclass(frozen=True)
class StatusEvent:
    status: str
    session_type: Optional[str]
    time_remaining: int
    overtime_elapsed: int
    is_running: bool
    is_paused: bool
    type: str = EVENT_STATUS

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "data": {
                "status": self.status,
                "sessionType": self.session_type,
                "timeRemaining": self.time_remaining,
                "overtimeElapsed": self.overtime_elapsed,
                "isRunning": self.is_running,
                "isPaused": self.is_paused,
            },
        }


@dataclass(frozen=True)
class ErrorEvent:
    command: Optional[str]
    reason: str
    message: str
    type: str = EVENT_ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "data": {
                "command": self.command,
                "reason": self.reason,
                "message": self.message,
            },
        }


TimerEvent = Union[
    StartedEvent,
    TickEvent,
    PausedEvent,
    ResumedEvent,
    OvertimeStartedEvent,
    OvertimeTickEvent,
    StoppedEvent,
    ResetEvent,
    StatusEvent,
    ErrorEvent,
]

TIMER_EVENT_TYPES: tuple[type, ...] = (
    StartedEvent,
    TickEvent,
    PausedEvent,
    ResumedEvent,
    OvertimeStartedEvent,
    OvertimeTickEvent,
    StoppedEvent,
    ResetEvent,
    StatusEvent,
    ErrorEvent,
)
