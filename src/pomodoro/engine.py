"""Thread-safe timestamp-based timing engine.

The engine never counts ticks. Every derived value is recomputed from absolute
millisecond anchors (`target_time`, `overtime_start`, `start_time`) and the
current clock reading, so late or missed ticks cannot accumulate drift.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import Callable, Optional

from .clock import Clock, MonotonicClock
from .constants import (
    COMMAND_PAUSE,
    COMMAND_RESUME,
    COMMAND_START,
    COMMAND_STOP,
    OVERTIME_STATES,
    REASON_CLOCK_ANOMALY,
    REASON_INVALID_DURATION,
    REASON_INVALID_SESSION_TYPE,
    REASON_NOT_ACTIVE,
    REASON_NOT_COUNTING_DOWN,
    REASON_NOT_PAUSED,
    RUNNING_STATES,
    SESSION_STUDY,
    SESSION_TYPES,
    STATE_BREAK_OVERTIME,
    STATE_COUNTDOWN,
    STATE_IDLE,
    STATE_OVERTIME,
    STATE_PAUSED,
)
from .errors import ClockAnomalyError
from .messages import (
    ErrorEvent,
    OvertimeStartedEvent,
    OvertimeTickEvent,
    PausedEvent,
    ResetEvent,
    ResumedEvent,
    StartedEvent,
    StatusEvent,
    StoppedEvent,
    TickEvent,
    TimerEvent,
)


@dataclass
class EngineState:
    """Mutable per-run timing anchors; all timestamps are clock milliseconds."""
    status: str = STATE_IDLE
    session_type: Optional[str] = None
    target_time: int = 0
    start_time: int = 0
    paused_at: int = 0
    paused_duration: int = 0
    overtime_start: int = 0
    last_tick_remaining: Optional[int] = None
    last_overtime_elapsed: Optional[int] = None


class TimingEngine:
    """Countdown/overtime engine whose operations return the events they produce."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ):
        self._clock = clock or MonotonicClock()
        self._logger = logger or logging.getLogger("pomodoro.engine")
        self._lock = threading.Lock()
        self._state = EngineState()
        self._last_now: Optional[int] = None

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._state.status in RUNNING_STATES

    @property
    def is_idle(self) -> bool:
        with self._lock:
            return self._state.status == STATE_IDLE

    def start(self, duration_seconds: int, session_type: str) -> list[TimerEvent]:
        if isinstance(duration_seconds, bool) or not isinstance(duration_seconds, int):
            return [self._error(COMMAND_START, REASON_INVALID_DURATION, "duration must be an integer")]
        if duration_seconds <= 0:
            return [
                self._error(
                    COMMAND_START,
                    REASON_INVALID_DURATION,
                    f"duration must be greater than zero, got {duration_seconds}",
                )
            ]
        if session_type not in SESSION_TYPES:
            return [
                self._error(
                    COMMAND_START,
                    REASON_INVALID_SESSION_TYPE,
                    f"unknown session type: {session_type!r}",
                )
            ]

        return self._guarded(lambda now: self._start_locked(now, duration_seconds, session_type))

    def pause(self) -> list[TimerEvent]:
        return self._guarded(self._pause_locked)

    def resume(self) -> list[TimerEvent]:
        return self._guarded(self._resume_locked)

    def stop(self) -> list[TimerEvent]:
        return self._guarded(self._stop_locked)

    def reset(self) -> list[TimerEvent]:
        with self._lock:
            session_type = self._state.session_type
            if self._state.status != STATE_IDLE:
                self._logger.info("Timer reset: session_type=%s", session_type)
            self._state = EngineState()
            return [ResetEvent(session_type=session_type)]

    def tick(self) -> list[TimerEvent]:
        """Advance derived values; returns at most one event, none while idle or paused."""
        with self._lock:
            if self._state.status not in RUNNING_STATES:
                return []
        return self._guarded(self._tick_locked)

    def status(self) -> StatusEvent:
        """Side-effect free snapshot, safe to call from any thread at any time."""
        with self._lock:
            now = self._clock.now_ms()
            if self._last_now is not None:
                now = max(now, self._last_now)
            state = self._state
            return StatusEvent(
                status=state.status,
                session_type=state.session_type,
                time_remaining=self._remaining_seconds_locked(now),
                overtime_elapsed=self._overtime_seconds_locked(now),
                is_running=state.status in RUNNING_STATES,
                is_paused=state.status == STATE_PAUSED,
            )

    def _guarded(self, handler: Callable[[int], list[TimerEvent]]) -> list[TimerEvent]:
        with self._lock:
            try:
                now = self._observe_now_locked()
            except ClockAnomalyError as error:
                # The command still runs on the new reading and gets its own reply.
                events = self._abort_on_anomaly_locked(error)
                return events + handler(error.current_ms)
            return handler(now)

    def _observe_now_locked(self) -> int:
        now = self._clock.now_ms()
        if self._last_now is not None and now < self._last_now:
            raise ClockAnomalyError(self._last_now, now)
        self._last_now = now
        return now

    def _abort_on_anomaly_locked(self, error: ClockAnomalyError) -> list[TimerEvent]:
        self._logger.error("Clock anomaly detected: %s", error)
        events: list[TimerEvent] = [
            ErrorEvent(command=None, reason=REASON_CLOCK_ANOMALY, message=str(error))
        ]
        if self._state.status != STATE_IDLE:
            # Finalize with the last reading that was known to be good.
            stopped = self._stop_locked(error.previous_ms)[0]
            events.append(replace(stopped, clock_anomaly=True))
        self._last_now = error.current_ms
        return events

    def _start_locked(self, now: int, duration_seconds: int, session_type: str) -> list[TimerEvent]:
        if self._state.status != STATE_IDLE:
            self._logger.warning(
                "Discarding in-flight %s run on start", self._state.status
            )
        self._state = EngineState(
            status=STATE_COUNTDOWN,
            session_type=session_type,
            target_time=now + duration_seconds * 1000,
            start_time=now,
        )
        self._logger.info(
            "Timer started: session_type=%s duration=%ss",
            session_type,
            duration_seconds,
        )
        return [StartedEvent(time_remaining=duration_seconds, session_type=session_type)]

    def _pause_locked(self, now: int) -> list[TimerEvent]:
        state = self._state
        if state.status != STATE_COUNTDOWN:
            return [
                self._error(
                    COMMAND_PAUSE,
                    REASON_NOT_COUNTING_DOWN,
                    f"cannot pause while {state.status}",
                )
            ]

        remaining = self._remaining_seconds_locked(now)
        state.paused_at = now
        state.status = STATE_PAUSED
        self._logger.info(
            "Timer paused: session_type=%s remaining=%ss",
            state.session_type,
            remaining,
        )
        return [PausedEvent(time_remaining=remaining, session_type=state.session_type)]

    def _resume_locked(self, now: int) -> list[TimerEvent]:
        state = self._state
        if state.status != STATE_PAUSED:
            return [
                self._error(
                    COMMAND_RESUME,
                    REASON_NOT_PAUSED,
                    f"cannot resume while {state.status}",
                )
            ]

        paused_for = now - state.paused_at
        state.paused_duration += paused_for
        state.target_time += paused_for
        state.paused_at = 0
        state.status = STATE_COUNTDOWN

        remaining = self._remaining_seconds_locked(now)
        state.last_tick_remaining = remaining
        self._logger.info(
            "Timer resumed: session_type=%s paused_for=%sms remaining=%ss",
            state.session_type,
            paused_for,
            remaining,
        )
        return [ResumedEvent(time_remaining=remaining, session_type=state.session_type)]

    def _stop_locked(self, now: int) -> list[TimerEvent]:
        state = self._state
        if state.status == STATE_IDLE:
            return [self._error(COMMAND_STOP, REASON_NOT_ACTIVE, "no active run to stop")]

        end = state.paused_at if state.status == STATE_PAUSED else now
        reached_overtime = state.status in OVERTIME_STATES or (
            state.status == STATE_COUNTDOWN and end >= state.target_time
        )
        if reached_overtime:
            countdown_ms = state.target_time - state.start_time - state.paused_duration
            overtime_anchor = state.overtime_start or state.target_time
            overtime_ms = end - overtime_anchor
        else:
            countdown_ms = end - state.start_time - state.paused_duration
            overtime_ms = 0

        event = StoppedEvent(
            session_type=state.session_type,
            total_duration=max(0, countdown_ms) // 1000,
            overtime_elapsed=max(0, overtime_ms) // 1000,
            reached_overtime=reached_overtime,
        )
        self._logger.info(
            "Timer stopped: session_type=%s total=%ss overtime=%ss",
            event.session_type,
            event.total_duration,
            event.overtime_elapsed,
        )
        self._state = EngineState()
        return [event]

    def _tick_locked(self, now: int) -> list[TimerEvent]:
        state = self._state
        if state.status == STATE_COUNTDOWN:
            if state.target_time - now <= 0:
                # Commit the boundary in this cycle, anchored where the countdown hit zero.
                state.status = (
                    STATE_OVERTIME if state.session_type == SESSION_STUDY else STATE_BREAK_OVERTIME
                )
                state.overtime_start = state.target_time
                state.last_overtime_elapsed = None
                self._logger.info(
                    "Overtime started: session_type=%s", state.session_type
                )
                return [OvertimeStartedEvent(session_type=state.session_type)]

            remaining = self._remaining_seconds_locked(now)
            if remaining == state.last_tick_remaining:
                return []
            state.last_tick_remaining = remaining
            return [TickEvent(time_remaining=remaining, session_type=state.session_type)]

        if state.status in OVERTIME_STATES:
            elapsed = self._overtime_seconds_locked(now)
            if elapsed == state.last_overtime_elapsed:
                return []
            state.last_overtime_elapsed = elapsed
            return [
                OvertimeTickEvent(
                    overtime_elapsed=elapsed,
                    session_type=state.session_type,
                    status=state.status,
                )
            ]

        return []

    def _remaining_seconds_locked(self, now: int) -> int:
        state = self._state
        if state.status == STATE_COUNTDOWN:
            return max(0, state.target_time - now) // 1000
        if state.status == STATE_PAUSED:
            return max(0, state.target_time - state.paused_at) // 1000
        return 0

    def _overtime_seconds_locked(self, now: int) -> int:
        state = self._state
        if state.status in OVERTIME_STATES:
            return max(0, now - state.overtime_start) // 1000
        return 0

    def _error(self, command: Optional[str], reason: str, message: str) -> ErrorEvent:
        self._logger.warning("Timer command rejected: %s (%s)", message, reason)
        return ErrorEvent(command=command, reason=reason, message=message)
