"""Runtime orchestration loop for UI commands, timer worker events, and recording."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from queue import Empty, Queue
from typing import Any, Callable, Optional

from app_config import AppConfig
from contracts.ui_protocol import (
    UI_COMMAND_GET_STATUS,
    UI_COMMAND_PAUSE,
    UI_COMMAND_RESET,
    UI_COMMAND_RESUME,
    UI_COMMAND_START_BREAK,
    UI_COMMAND_START_STUDY,
    UI_COMMAND_STOP,
)
from pomodoro import (
    Clock,
    MachineEvent,
    SessionDurations,
    SessionRecorder,
    SessionStateMachine,
    TimerWorker,
    TransitionResult,
)
from pomodoro.machine import (
    MACHINE_COMPLETED,
    MACHINE_ERROR,
    MACHINE_STATE_CHANGED,
)
from pomodoro.messages import TIMER_EVENT_TYPES

from .ui import RuntimeUIPublisher, UIServerLike

ACTION_SYNC = "sync"
ACTION_STATUS = "status"


@dataclass(frozen=True)
class RuntimeHooks:
    """Injectable lifecycle hooks used by runtime startup and shutdown flow."""
    setup_signal_handlers: Callable[["RuntimeEngine"], None]


@dataclass(frozen=True)
class RuntimeBootstrap:
    """Dependency bundle required to construct the runtime engine."""
    logger: logging.Logger
    app_config: AppConfig
    recorder: Optional[SessionRecorder]
    ui_server: Optional[UIServerLike]
    hooks: Optional[RuntimeHooks] = None
    clock: Optional[Clock] = None


@dataclass(frozen=True)
class UICommandReceived:
    """A websocket command queued for the runtime thread."""
    command: str
    subject_id: Optional[str] = None


class _ShutdownRequested:
    pass


class RuntimeEngine:
    """Main runtime loop that feeds UI commands and timer events to the state machine.

    Everything that touches the state machine happens on the thread calling
    `run`; the UI server thread and the timer worker only put items on the
    shared event queue.
    """
    def __init__(self, bootstrap: RuntimeBootstrap):
        self._bootstrap = bootstrap
        self._logger = bootstrap.logger
        self._ui = RuntimeUIPublisher(bootstrap.ui_server)

        timer_settings = bootstrap.app_config.timer
        self._event_queue: Queue[Any] = Queue()
        self._worker = TimerWorker(
            clock=bootstrap.clock,
            tick_interval_ms=timer_settings.tick_interval_ms,
            events=self._event_queue,
            logger=logging.getLogger("pomodoro.worker"),
        )
        self._machine = SessionStateMachine(
            self._worker,
            recorder=bootstrap.recorder,
            durations=SessionDurations.from_settings(timer_settings),
            clock=bootstrap.clock,
            logger=logging.getLogger("pomodoro.machine"),
        )
        self._machine.subscribe(self._on_machine_event)

    @property
    def machine(self) -> SessionStateMachine:
        return self._machine

    @property
    def worker(self) -> TimerWorker:
        return self._worker

    def submit_ui_command(self, command: dict[str, Any]) -> None:
        """Thread-safe entry point for the UI server's command handler."""
        self._event_queue.put(
            UICommandReceived(
                command=command["command"],
                subject_id=command.get("subject_id"),
            )
        )

    def request_shutdown(self) -> None:
        self._event_queue.put(_ShutdownRequested())

    def run(self) -> int:
        try:
            self._worker.start_worker()
            if self._bootstrap.hooks is not None:
                self._bootstrap.hooks.setup_signal_handlers(self)

            self._publish_startup_sync()
            self._logger.info("Ready! Waiting for timer commands ...")

            while True:
                event, loop_exit = self._poll_event()
                if loop_exit is not None:
                    return loop_exit
                if event is None:
                    continue

                event_exit = self._handle_event(event)
                if event_exit is not None:
                    return event_exit

        except KeyboardInterrupt:
            self._logger.info("Shutdown requested by keyboard interrupt.")
            return 0
        except Exception as error:
            self._logger.error("Unexpected error: %s", error, exc_info=True)
            return 1
        finally:
            self._shutdown()

    def _publish_startup_sync(self) -> None:
        context = self._machine.context
        self._ui.publish_timer_update(context, action=ACTION_SYNC)
        self._ui.publish_context_state(context)

    def _poll_event(self) -> tuple[Optional[Any], Optional[int]]:
        try:
            return self._event_queue.get(timeout=0.25), None
        except Empty:
            if not self._worker.is_running:
                self._logger.error("Timer worker stopped unexpectedly")
                self._ui.publish_error("Timer worker stopped unexpectedly")
                return None, 1
            return None, None

    def _handle_event(self, event: Any) -> Optional[int]:
        if isinstance(event, _ShutdownRequested):
            self._logger.info("Shutdown requested.")
            return 0

        if isinstance(event, UICommandReceived):
            self._handle_ui_command(event)
            return None

        if isinstance(event, TIMER_EVENT_TYPES):
            self._machine.handle_event(event)
            return None

        self._logger.warning("Ignoring unknown event type: %s", type(event).__name__)
        return None

    def _handle_ui_command(self, event: UICommandReceived) -> None:
        self._logger.info("UI command: %s", event.command)
        machine = self._machine

        if event.command == UI_COMMAND_GET_STATUS:
            machine.request_status()
            self._ui.publish_timer_update(machine.context, action=ACTION_STATUS)
            return

        result: Optional[TransitionResult] = None
        if event.command == UI_COMMAND_START_STUDY:
            result = machine.start_study(event.subject_id)
        elif event.command == UI_COMMAND_START_BREAK:
            result = machine.start_break()
        elif event.command == UI_COMMAND_PAUSE:
            result = machine.pause()
        elif event.command == UI_COMMAND_RESUME:
            result = machine.resume()
        elif event.command == UI_COMMAND_STOP:
            result = machine.stop()
        elif event.command == UI_COMMAND_RESET:
            result = machine.reset()

        if result is None:
            self._logger.warning("Ignoring unknown UI command: %s", event.command)
            return
        self._ui.publish_command_result(result)

    def _on_machine_event(self, event: MachineEvent) -> None:
        source = event.payload.get("source")
        if event.kind == MACHINE_COMPLETED:
            self._ui.publish_session_finished(event.payload)
            return

        if event.kind == MACHINE_ERROR:
            self._ui.publish_error(
                event.payload.get("message") or "Timer error",
                reason=event.payload.get("reason", ""),
                source=source,
            )
            return

        action = source.type if source is not None else event.kind
        self._ui.publish_timer_update(event.context, action=action, source=source)
        if event.kind == MACHINE_STATE_CHANGED:
            self._ui.publish_context_state(event.context)

    def _shutdown(self) -> None:
        self._logger.info("Stopping timer worker...")
        try:
            self._worker.close(timeout_seconds=5.0)
        except Exception as error:
            self._logger.error("Error stopping timer worker: %s", error, exc_info=True)

        ui_server = self._bootstrap.ui_server
        if ui_server is not None:
            self._logger.info("Stopping UI server...")
            try:
                ui_server.stop(timeout_seconds=5.0)
            except Exception as error:
                self._logger.error("Error stopping UI server: %s", error, exc_info=True)
