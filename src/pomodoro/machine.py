"""Session state machine that owns the timer context and drives the timer worker.

The machine is single-writer: command methods and `handle_event` must be called
from the same thread (the runtime loop). Commands are validated synchronously
and forwarded to the worker without waiting; the worker's events are fed back
through `handle_event` in arrival order.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional, Protocol

from .clock import Clock, MonotonicClock
from .constants import (
    ACTIVE_STATES,
    COMMAND_PAUSE,
    COMMAND_RESET,
    COMMAND_RESUME,
    COMMAND_START,
    COMMAND_STOP,
    DEFAULT_LONG_BREAK_INTERVAL,
    DEFAULT_LONG_BREAK_SECONDS,
    DEFAULT_SHORT_BREAK_SECONDS,
    DEFAULT_STUDY_SECONDS,
    DIAL_CLOCKWISE,
    OVERTIME_STATES,
    REASON_ALREADY_IDLE,
    REASON_ENGINE_CLOSED,
    REASON_INVALID_DURATION,
    REASON_INVALID_SESSION_TYPE,
    REASON_NOT_ACTIVE,
    REASON_NOT_COUNTING_DOWN,
    REASON_NOT_IDLE,
    REASON_NOT_PAUSED,
    REASON_PAUSED,
    REASON_RECORDER_FAILED,
    REASON_RESET,
    REASON_RESUMED,
    REASON_STARTED,
    REASON_STOPPED,
    RECORD_COMPLETED,
    RECORD_INTERRUPTED,
    SESSION_BREAK,
    SESSION_STUDY,
    SESSION_TYPES,
    STATE_BREAK_OVERTIME,
    STATE_COUNTDOWN,
    STATE_IDLE,
    STATE_OVERTIME,
    STATE_PAUSED,
)
from .dial import project_dial
from .errors import EngineClosedError, InvalidTransitionError
from .messages import (
    ErrorEvent,
    GetStatusCommand,
    OvertimeStartedEvent,
    OvertimeTickEvent,
    PauseCommand,
    PausedEvent,
    ResetCommand,
    ResetEvent,
    ResumeCommand,
    ResumedEvent,
    StartCommand,
    StartedEvent,
    StatusEvent,
    StopCommand,
    StoppedEvent,
    TickEvent,
    TimerCommand,
    TimerEvent,
)
from .recorder import SessionRecorder

MACHINE_STATE_CHANGED = "state_changed"
MACHINE_UPDATED = "updated"
MACHINE_COMPLETED = "completed"
MACHINE_ERROR = "error"


class CommandSink(Protocol):
    """Anything that accepts fire-and-forget timer commands (usually a `TimerWorker`)."""
    def send(self, command: TimerCommand) -> None:
        ...


@dataclass(frozen=True)
class SessionDurations:
    """Configured run lengths in seconds used by `start_study` / `start_break`."""
    study_seconds: int = DEFAULT_STUDY_SECONDS
    short_break_seconds: int = DEFAULT_SHORT_BREAK_SECONDS
    long_break_seconds: int = DEFAULT_LONG_BREAK_SECONDS
    long_break_interval: int = DEFAULT_LONG_BREAK_INTERVAL

    def __post_init__(self) -> None:
        for name in ("study_seconds", "short_break_seconds", "long_break_seconds"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be greater than zero")
        if self.long_break_interval <= 0:
            raise ValueError("long_break_interval must be greater than zero")

    @classmethod
    def from_settings(cls, settings) -> "SessionDurations":
        return cls(
            study_seconds=settings.study_duration_seconds,
            short_break_seconds=settings.short_break_seconds,
            long_break_seconds=settings.long_break_seconds,
            long_break_interval=settings.long_break_interval,
        )

    def preview_for(self, session_type: str) -> int:
        if session_type == SESSION_BREAK:
            return self.short_break_seconds
        return self.study_seconds


@dataclass
class TimerContext:
    """Everything the UI needs to render the timer; owned by the state machine."""
    state: str = STATE_IDLE
    session_type: str = SESSION_STUDY
    subject_id: Optional[str] = None
    current_session_id: Optional[str] = None
    session_start_time: Optional[int] = None
    setting_duration: int = DEFAULT_STUDY_SECONDS
    time_remaining: int = DEFAULT_STUDY_SECONDS
    overtime_elapsed: int = 0

    # Presentation values, recomputed from the fields above.
    dial_angle: float = 0.0
    dial_direction: str = DIAL_CLOCKWISE
    last_render_tick: int = 0
    completed_rings: int = 0
    current_ring_angle: float = 0.0

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    def snapshot(self) -> "TimerContext":
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "sessionType": self.session_type,
            "subjectId": self.subject_id,
            "currentSessionId": self.current_session_id,
            "sessionStartTime": self.session_start_time,
            "settingDuration": self.setting_duration,
            "timeRemaining": self.time_remaining,
            "overtimeElapsed": self.overtime_elapsed,
            "dialAngle": self.dial_angle,
            "dialDirection": self.dial_direction,
            "lastRenderTick": self.last_render_tick,
            "completedRings": self.completed_rings,
            "currentRingAngle": self.current_ring_angle,
        }


@dataclass(frozen=True)
class TransitionResult:
    """Synchronous outcome of a command; rejected commands leave the context untouched."""
    command: str
    accepted: bool
    reason: str
    context: TimerContext
    error: Optional[str] = None

    def raise_if_rejected(self) -> "TransitionResult":
        if not self.accepted:
            raise InvalidTransitionError(self.command, self.context.state, self.reason)
        return self


@dataclass(frozen=True)
class MachineEvent:
    """Notification delivered to machine listeners after the context changes."""
    kind: str
    context: TimerContext
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class _PendingTermination:
    command: str
    session_id: Optional[str]
    session_type: str
    subject_id: Optional[str]
    settled: bool = False


MachineListener = Callable[[MachineEvent], None]


class SessionStateMachine:
    """Idle/Countdown/Paused/Overtime state machine with session recording."""

    def __init__(
        self,
        sink: CommandSink,
        *,
        recorder: Optional[SessionRecorder] = None,
        durations: Optional[SessionDurations] = None,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._sink = sink
        self._recorder = recorder
        self._durations = durations or SessionDurations()
        self._clock = clock or MonotonicClock()
        self._logger = logger or logging.getLogger("pomodoro.machine")
        self._listeners: list[MachineListener] = []
        self._pending: deque[_PendingTermination] = deque()
        self._completed_study_sessions = 0
        self._last_error: Optional[str] = None
        self._context = self._idle_context(SESSION_STUDY)

    @property
    def context(self) -> TimerContext:
        return self._context.snapshot()

    @property
    def state(self) -> str:
        return self._context.state

    @property
    def durations(self) -> SessionDurations:
        return self._durations

    @property
    def completed_study_sessions(self) -> int:
        return self._completed_study_sessions

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def awaiting_engine(self) -> bool:
        """True while a stop/reset has been sent but not yet acknowledged."""
        return bool(self._pending)

    def subscribe(self, listener: MachineListener) -> None:
        self._listeners.append(listener)

    def start(
        self,
        session_type: str,
        duration_seconds: int,
        subject_id: Optional[str] = None,
    ) -> TransitionResult:
        if self._context.state != STATE_IDLE:
            return self._reject(COMMAND_START, REASON_NOT_IDLE)
        if session_type not in SESSION_TYPES:
            return self._reject(COMMAND_START, REASON_INVALID_SESSION_TYPE)
        if isinstance(duration_seconds, bool) or not isinstance(duration_seconds, int):
            return self._reject(COMMAND_START, REASON_INVALID_DURATION)
        if duration_seconds <= 0:
            return self._reject(COMMAND_START, REASON_INVALID_DURATION)

        if not self._send(StartCommand(duration_seconds=duration_seconds, session_type=session_type)):
            return self._reject(COMMAND_START, REASON_ENGINE_CLOSED)

        session_id, error = self._open_record(session_type, subject_id, duration_seconds)
        self._context = TimerContext(
            state=STATE_COUNTDOWN,
            session_type=session_type,
            subject_id=subject_id,
            current_session_id=session_id,
            session_start_time=self._clock.now_ms(),
            setting_duration=duration_seconds,
            time_remaining=duration_seconds,
            overtime_elapsed=0,
        )
        self._refresh_dial()
        self._logger.info(
            "Session started: type=%s duration=%ss subject=%s session_id=%s",
            session_type,
            duration_seconds,
            subject_id,
            session_id,
        )
        self._notify(MACHINE_STATE_CHANGED)
        return self._accept(COMMAND_START, REASON_STARTED, error=error)

    def start_study(self, subject_id: Optional[str] = None) -> TransitionResult:
        return self.start(SESSION_STUDY, self._durations.study_seconds, subject_id)

    def start_break(self) -> TransitionResult:
        return self.start(SESSION_BREAK, self.next_break_duration())

    def next_break_duration(self) -> int:
        completed = self._completed_study_sessions
        if completed > 0 and completed % self._durations.long_break_interval == 0:
            return self._durations.long_break_seconds
        return self._durations.short_break_seconds

    def pause(self) -> TransitionResult:
        if self._context.state != STATE_COUNTDOWN:
            return self._reject(COMMAND_PAUSE, REASON_NOT_COUNTING_DOWN)
        if not self._send(PauseCommand()):
            return self._reject(COMMAND_PAUSE, REASON_ENGINE_CLOSED)

        self._context.state = STATE_PAUSED
        self._refresh_dial()
        self._notify(MACHINE_STATE_CHANGED)
        return self._accept(COMMAND_PAUSE, REASON_PAUSED)

    def resume(self) -> TransitionResult:
        if self._context.state != STATE_PAUSED:
            return self._reject(COMMAND_RESUME, REASON_NOT_PAUSED)
        if not self._send(ResumeCommand()):
            return self._reject(COMMAND_RESUME, REASON_ENGINE_CLOSED)

        self._context.state = STATE_COUNTDOWN
        self._refresh_dial()
        self._notify(MACHINE_STATE_CHANGED)
        return self._accept(COMMAND_RESUME, REASON_RESUMED)

    def stop(self) -> TransitionResult:
        """Finish the run and save it once the worker reports the final duration."""
        return self._terminate(COMMAND_STOP, StopCommand(), REASON_STOPPED)

    def reset(self) -> TransitionResult:
        """Discard the run without saving it; a no-op while already idle."""
        if self._context.state == STATE_IDLE:
            self._context = self._idle_context(self._context.session_type)
            return self._accept(COMMAND_RESET, REASON_ALREADY_IDLE)
        return self._terminate(COMMAND_RESET, ResetCommand(), REASON_RESET)

    def request_status(self) -> bool:
        """Ask the worker for a status event, used to resynchronise after reattaching."""
        return self._send(GetStatusCommand())

    def update_durations(self, durations: SessionDurations) -> None:
        self._durations = durations
        if self._context.state == STATE_IDLE:
            self._context = self._idle_context(self._context.session_type)
            self._notify(MACHINE_UPDATED)

    def handle_event(self, event: TimerEvent) -> None:
        if isinstance(event, StoppedEvent):
            self._on_stopped(event)
            return
        if isinstance(event, ResetEvent):
            self._on_reset_ack(event)
            return
        if isinstance(event, ErrorEvent):
            self._on_error_event(event)
            return
        if self._pending:
            # Belongs to a run that is already being torn down.
            self._logger.debug("Discarding %s event from a finished run", event.type)
            return

        if isinstance(event, StatusEvent):
            self.apply_status(event)
        elif isinstance(event, (StartedEvent, TickEvent, PausedEvent, ResumedEvent)):
            self._on_countdown_value(event)
        elif isinstance(event, OvertimeStartedEvent):
            self._on_overtime_started(event)
        elif isinstance(event, OvertimeTickEvent):
            self._on_overtime_tick(event)
        else:
            self._logger.warning("Ignoring unknown event type: %s", type(event).__name__)

    def apply_status(self, status: StatusEvent) -> None:
        """Adopt the worker's view of the run, e.g. after a UI reload or missed events."""
        context = self._context
        if status.status == STATE_IDLE:
            if context.is_active:
                self._logger.warning("Worker reports idle while context is %s", context.state)
                self._context = self._idle_context(context.session_type)
                self._notify(MACHINE_STATE_CHANGED, source=status)
            return

        previous_state = context.state
        if status.session_type in SESSION_TYPES:
            context.session_type = status.session_type
        context.state = status.status
        if status.status in OVERTIME_STATES:
            context.time_remaining = 0
            context.overtime_elapsed = status.overtime_elapsed
        else:
            context.time_remaining = status.time_remaining
            context.overtime_elapsed = 0
        self._refresh_dial()
        self._notify(
            MACHINE_STATE_CHANGED if previous_state != context.state else MACHINE_UPDATED,
            source=status,
        )

    def _on_countdown_value(self, event) -> None:
        context = self._context
        if context.state not in (STATE_COUNTDOWN, STATE_PAUSED):
            return
        context.time_remaining = event.time_remaining
        context.overtime_elapsed = 0
        self._refresh_dial()
        self._notify(MACHINE_UPDATED, source=event)

    def _on_overtime_started(self, event: OvertimeStartedEvent) -> None:
        context = self._context
        # A pause that raced the boundary is rejected by the worker; overtime wins.
        if context.state not in (STATE_COUNTDOWN, STATE_PAUSED):
            return
        context.state = STATE_OVERTIME if context.session_type == SESSION_STUDY else STATE_BREAK_OVERTIME
        context.time_remaining = 0
        context.overtime_elapsed = 0
        self._refresh_dial()
        self._logger.info("Session entered %s", context.state)
        self._notify(MACHINE_STATE_CHANGED, source=event)

    def _on_overtime_tick(self, event: OvertimeTickEvent) -> None:
        context = self._context
        if context.state not in OVERTIME_STATES:
            return
        context.overtime_elapsed = event.overtime_elapsed
        self._refresh_dial()
        self._notify(MACHINE_UPDATED, source=event)

    def _on_stopped(self, event: StoppedEvent) -> None:
        if event.clock_anomaly:
            self._on_anomaly_stop(event)
            return

        pending = self._pending.popleft() if self._pending else None
        if pending is None:
            self._logger.warning("Ignoring unexpected stopped event for %s", event.session_type)
            return
        if pending.command != COMMAND_STOP or pending.settled:
            self._logger.info("Run discarded: type=%s", pending.session_type)
            return
        self._finalize(pending, event)

    def _on_anomaly_stop(self, event: StoppedEvent) -> None:
        # The worker ended the run on its own; the command that was meant to end
        # it is still answered separately and only clears the pending entry.
        if self._pending:
            head = self._pending[0]
            if head.settled:
                return
            self._pending[0] = replace(head, settled=True)
            if head.command == COMMAND_STOP:
                self._finalize(head, event)
            return

        context = self._context
        if not context.is_active:
            self._logger.debug("Ignoring stopped event while idle")
            return
        pending = _PendingTermination(
            command=COMMAND_STOP,
            session_id=context.current_session_id,
            session_type=context.session_type,
            subject_id=context.subject_id,
        )
        self._context = self._idle_context(context.session_type)
        self._notify(MACHINE_STATE_CHANGED, source=event)
        self._finalize(pending, event)

    def _on_reset_ack(self, event: ResetEvent) -> None:
        if self._pending and self._pending[0].command == COMMAND_RESET:
            pending = self._pending.popleft()
            self._logger.info("Run discarded: type=%s", pending.session_type)
            self._notify(MACHINE_UPDATED, source=event)
            return
        self._logger.debug("Ignoring reset acknowledgement for %s", event.session_type)

    def _on_error_event(self, event: ErrorEvent) -> None:
        self._logger.warning(
            "Timer worker reported error: command=%s reason=%s message=%s",
            event.command,
            event.reason,
            event.message,
        )
        self._last_error = event.message
        self._notify(MACHINE_ERROR, reason=event.reason, message=event.message, source=event)

        if event.command != COMMAND_STOP or event.reason != REASON_NOT_ACTIVE:
            return
        if not self._pending or self._pending[0].command != COMMAND_STOP:
            return
        # The worker had no run left to stop.
        pending = self._pending.popleft()
        if not pending.settled:
            self._finalize(
                pending,
                StoppedEvent(session_type=pending.session_type, total_duration=0, overtime_elapsed=0),
            )

    def _terminate(self, command: str, message: TimerCommand, reason: str) -> TransitionResult:
        context = self._context
        if context.state == STATE_IDLE:
            return self._reject(command, REASON_NOT_ACTIVE)
        if not self._send(message):
            return self._reject(command, REASON_ENGINE_CLOSED)

        self._pending.append(
            _PendingTermination(
                command=command,
                session_id=context.current_session_id,
                session_type=context.session_type,
                subject_id=context.subject_id,
            )
        )
        self._logger.info(
            "Session %s: type=%s state=%s",
            "stopping" if command == COMMAND_STOP else "reset",
            context.session_type,
            context.state,
        )
        self._context = self._idle_context(context.session_type)
        self._notify(MACHINE_STATE_CHANGED)
        return self._accept(command, reason)

    def _finalize(self, pending: _PendingTermination, event: StoppedEvent) -> None:
        status = RECORD_COMPLETED if event.reached_overtime else RECORD_INTERRUPTED
        actual = event.total_duration + event.overtime_elapsed
        if status == RECORD_COMPLETED and pending.session_type == SESSION_STUDY:
            self._completed_study_sessions += 1

        payload = {
            "session_id": pending.session_id,
            "session_type": pending.session_type,
            "subject_id": pending.subject_id,
            "status": status,
            "total_duration": event.total_duration,
            "overtime_elapsed": event.overtime_elapsed,
            "actual_duration": actual,
        }

        if self._recorder is not None and pending.session_id is not None:
            try:
                self._recorder.close_session(
                    pending.session_id,
                    status,
                    actual,
                    event.overtime_elapsed,
                )
            except Exception as error:
                message = f"Failed to save session {pending.session_id}: {error}"
                self._logger.error(message)
                self._last_error = message
                self._notify(MACHINE_ERROR, reason=REASON_RECORDER_FAILED, message=message)
        elif self._recorder is not None:
            self._logger.warning("Session finished without a record id; nothing saved")

        self._logger.info(
            "Session finished: status=%s actual=%ss overtime=%ss",
            status,
            actual,
            event.overtime_elapsed,
        )
        self._notify(MACHINE_COMPLETED, source=event, **payload)

    def _open_record(
        self,
        session_type: str,
        subject_id: Optional[str],
        duration_seconds: int,
    ) -> tuple[Optional[str], Optional[str]]:
        if self._recorder is None:
            return None, None
        try:
            return self._recorder.open_session(session_type, subject_id, duration_seconds), None
        except Exception as error:
            message = f"Failed to open session record: {error}"
            self._logger.error(message)
            self._last_error = message
            self._notify(MACHINE_ERROR, reason=REASON_RECORDER_FAILED, message=message)
            return None, message

    def _send(self, command: TimerCommand) -> bool:
        try:
            self._sink.send(command)
        except EngineClosedError as error:
            self._logger.error("Timer worker unavailable: %s", error)
            self._last_error = str(error)
            return False
        return True

    def _idle_context(self, session_type: str) -> TimerContext:
        duration = self._durations.preview_for(session_type)
        context = TimerContext(
            state=STATE_IDLE,
            session_type=session_type,
            setting_duration=duration,
            time_remaining=duration,
        )
        self._apply_dial(context)
        return context

    def _refresh_dial(self) -> None:
        self._apply_dial(self._context)

    def _apply_dial(self, context: TimerContext) -> None:
        projection = project_dial(
            context.state,
            context.setting_duration,
            context.time_remaining,
            context.overtime_elapsed,
        )
        context.dial_angle = projection.dial_angle
        context.dial_direction = projection.dial_direction
        context.completed_rings = projection.completed_rings
        context.current_ring_angle = projection.current_ring_angle
        context.last_render_tick = self._clock.now_ms()

    def _accept(self, command: str, reason: str, *, error: Optional[str] = None) -> TransitionResult:
        return TransitionResult(
            command=command,
            accepted=True,
            reason=reason,
            context=self._context.snapshot(),
            error=error,
        )

    def _reject(self, command: str, reason: str) -> TransitionResult:
        self._logger.warning(
            "Command rejected: command=%s state=%s reason=%s",
            command,
            self._context.state,
            reason,
        )
        return TransitionResult(
            command=command,
            accepted=False,
            reason=reason,
            context=self._context.snapshot(),
        )

    def _notify(self, kind: str, **payload: Any) -> None:
        if not self._listeners:
            return
        event = MachineEvent(kind=kind, context=self._context.snapshot(), payload=payload)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as error:
                self._logger.error("Machine listener failed: %s", error, exc_info=True)
