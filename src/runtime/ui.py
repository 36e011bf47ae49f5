from __future__ import annotations

from typing import Any, Optional, Protocol

from contracts.ui_protocol import (
    EVENT_COMMAND_RESULT,
    EVENT_ERROR,
    EVENT_SESSION_FINISHED,
    EVENT_TIMER,
    STATE_ERROR,
    STATE_IDLE,
    STATE_RUNNING,
)
from pomodoro import TimerContext, TimerEvent, TransitionResult, format_display_time, project_dial
from pomodoro.constants import OVERTIME_STATES, SESSION_STUDY, STATE_PAUSED


class UIServerLike(Protocol):
    def publish(self, event_type: str, **payload: Any) -> None:
        ...

    def publish_state(
        self,
        state: str,
        *,
        message: Optional[str] = None,
        **payload: Any,
    ) -> None:
        ...

    def stop(self, timeout_seconds: float = 5.0) -> None:
        ...


def timer_status_message(context: TimerContext) -> str:
    label = "Study" if context.session_type == SESSION_STUDY else "Break"
    if not context.is_active:
        return f"Ready: {label.lower()} {format_display_time(context.setting_duration)}"
    if context.state in OVERTIME_STATES:
        return f"{label} overtime +{format_display_time(context.overtime_elapsed)}"
    if context.state == STATE_PAUSED:
        return f"{label} paused at {format_display_time(context.time_remaining)}"
    return f"{label}: {format_display_time(context.time_remaining)} remaining"


class RuntimeUIPublisher:
    def __init__(self, ui_server: Optional[UIServerLike]):
        self._ui_server = ui_server

    def publish(self, event_type: str, **payload: Any) -> None:
        if self._ui_server:
            self._ui_server.publish(event_type, **payload)

    def publish_state(
        self,
        state: str,
        *,
        message: Optional[str] = None,
        **payload: Any,
    ) -> None:
        if self._ui_server:
            self._ui_server.publish_state(state, message=message, **payload)

    def publish_context_state(self, context: TimerContext) -> None:
        self.publish_state(
            STATE_RUNNING if context.is_active else STATE_IDLE,
            message=timer_status_message(context),
        )

    def publish_timer_update(
        self,
        context: TimerContext,
        *,
        action: str,
        source: Optional[TimerEvent] = None,
    ) -> None:
        projection = project_dial(
            context.state,
            context.setting_duration,
            context.time_remaining,
            context.overtime_elapsed,
        )
        payload: dict[str, Any] = {
            "action": action,
            "displayTime": projection.display_time,
            **context.to_dict(),
        }
        if source is not None:
            payload["engineEvent"] = source.to_dict()
        self.publish(EVENT_TIMER, **payload)

    def publish_command_result(self, result: TransitionResult) -> None:
        payload: dict[str, Any] = {
            "command": result.command,
            "accepted": result.accepted,
            "reason": result.reason,
            "state": result.context.state,
        }
        if result.error:
            payload["error"] = result.error
        self.publish(EVENT_COMMAND_RESULT, **payload)

    def publish_session_finished(self, payload: dict[str, Any]) -> None:
        source = payload.get("source")
        self.publish(
            EVENT_SESSION_FINISHED,
            sessionId=payload.get("session_id"),
            sessionType=payload.get("session_type"),
            subjectId=payload.get("subject_id"),
            status=payload.get("status"),
            totalDuration=payload.get("total_duration"),
            overtimeElapsed=payload.get("overtime_elapsed"),
            actualDuration=payload.get("actual_duration"),
            engineEvent=source.to_dict() if source is not None else None,
        )

    def publish_error(
        self,
        message: str,
        *,
        reason: str = "",
        source: Optional[TimerEvent] = None,
    ) -> None:
        payload: dict[str, Any] = {"state": STATE_ERROR, "message": message}
        if reason:
            payload["reason"] = reason
        if source is not None:
            payload["engineEvent"] = source.to_dict()
        self.publish(EVENT_ERROR, **payload)
