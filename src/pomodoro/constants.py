"""State, command, event, and reason constants used by the pomodoro timing core."""

from __future__ import annotations

DEFAULT_STUDY_SECONDS = 25 * 60
DEFAULT_SHORT_BREAK_SECONDS = 5 * 60
DEFAULT_LONG_BREAK_SECONDS = 15 * 60
DEFAULT_LONG_BREAK_INTERVAL = 4

TICK_INTERVAL_MS = 250
RING_PERIOD_SECONDS = 60 * 60

SESSION_STUDY = "study"
SESSION_BREAK = "break"

SESSION_TYPES: frozenset[str] = frozenset({SESSION_STUDY, SESSION_BREAK})

STATE_IDLE = "idle"
STATE_COUNTDOWN = "countdown"
STATE_PAUSED = "paused"
STATE_OVERTIME = "overtime"
STATE_BREAK_OVERTIME = "breakOvertime"

OVERTIME_STATES: frozenset[str] = frozenset({STATE_OVERTIME, STATE_BREAK_OVERTIME})
RUNNING_STATES: frozenset[str] = frozenset({STATE_COUNTDOWN}) | OVERTIME_STATES
ACTIVE_STATES: frozenset[str] = RUNNING_STATES | {STATE_PAUSED}

DIAL_CLOCKWISE = "cw"
DIAL_COUNTER_CLOCKWISE = "ccw"

COMMAND_START = "start"
COMMAND_PAUSE = "pause"
COMMAND_RESUME = "resume"
COMMAND_RESET = "reset"
COMMAND_STOP = "stop"
COMMAND_GET_STATUS = "get_status"

EVENT_STARTED = "started"
EVENT_TICK = "tick"
EVENT_PAUSED = "paused"
EVENT_RESUMED = "resumed"
EVENT_OVERTIME_STARTED = "overtime_started"
EVENT_OVERTIME_TICK = "overtime_tick"
EVENT_STOPPED = "stopped"
EVENT_RESET = "reset"
EVENT_STATUS = "status"
EVENT_ERROR = "error"

RECORD_COMPLETED = "completed"
RECORD_INTERRUPTED = "interrupted"

REASON_STARTED = "started"
REASON_PAUSED = "paused"
REASON_RESUMED = "resumed"
REASON_STOPPED = "stopped"
REASON_RESET = "reset"
REASON_ALREADY_IDLE = "already_idle"
REASON_NOT_IDLE = "not_idle"
REASON_NOT_COUNTING_DOWN = "not_counting_down"
REASON_NOT_PAUSED = "not_paused"
REASON_NOT_ACTIVE = "not_active"
REASON_INVALID_DURATION = "invalid_duration"
REASON_INVALID_SESSION_TYPE = "invalid_session_type"
REASON_CLOCK_ANOMALY = "clock_anomaly"
REASON_RECORDER_FAILED = "recorder_failed"
REASON_ENGINE_CLOSED = "engine_closed"
