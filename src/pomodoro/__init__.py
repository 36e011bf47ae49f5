from .clock import Clock, ManualClock, MonotonicClock
from .dial import DialProjection, RingProgress, format_display_time, project_dial, project_ring
from .engine import TimingEngine
from .errors import (
    ClockAnomalyError,
    EngineClosedError,
    InvalidTransitionError,
    PomodoroError,
    RecorderError,
)
from .machine import (
    MachineEvent,
    SessionDurations,
    SessionStateMachine,
    TimerContext,
    TransitionResult,
)
from .messages import TimerCommand, TimerEvent
from .recorder import (
    InMemorySessionRecorder,
    JsonlSessionRecorder,
    SessionRecord,
    SessionRecorder,
)
from .worker import TimerWorker

__all__ = [
    "Clock",
    "ClockAnomalyError",
    "DialProjection",
    "EngineClosedError",
    "InMemorySessionRecorder",
    "InvalidTransitionError",
    "JsonlSessionRecorder",
    "MachineEvent",
    "ManualClock",
    "MonotonicClock",
    "PomodoroError",
    "RecorderError",
    "RingProgress",
    "SessionDurations",
    "SessionRecord",
    "SessionRecorder",
    "SessionStateMachine",
    "TimerCommand",
    "TimerContext",
    "TimerEvent",
    "TimerWorker",
    "TimingEngine",
    "TransitionResult",
    "format_display_time",
    "project_dial",
    "project_ring",
]
