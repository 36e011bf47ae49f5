"""Background worker thread that owns a timing engine and its tick loop."""

from __future__ import annotations

import logging
import threading
import time
from queue import Empty, Queue
from typing import Optional

from .clock import Clock
from .constants import TICK_INTERVAL_MS
from .engine import TimingEngine
from .errors import EngineClosedError
from .messages import (
    GetStatusCommand,
    PauseCommand,
    ResetCommand,
    ResumeCommand,
    StartCommand,
    StatusEvent,
    StopCommand,
    TimerCommand,
    TimerEvent,
)

_SHUTDOWN = object()


class TimerWorker:
    """Runs a `TimingEngine` on a dedicated daemon thread.

    Commands are queued and applied in order on the worker thread; every event
    the engine produces is put on `events` in the order it was produced. Tick
    production only happens while the engine is counting down or in overtime.
    """

    def __init__(
        self,
        *,
        clock: Optional[Clock] = None,
        tick_interval_ms: int = TICK_INTERVAL_MS,
        events: Optional[Queue] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if tick_interval_ms <= 0:
            raise ValueError("tick_interval_ms must be greater than zero")

        self._logger = logger or logging.getLogger("pomodoro.worker")
        self._engine = TimingEngine(clock, logger=self._logger.getChild("engine"))
        self._tick_interval_seconds = tick_interval_ms / 1000.0
        self._commands: Queue = Queue()
        self._events: Queue = events if events is not None else Queue()
        self._thread: Optional[threading.Thread] = None
        self._running_lock = threading.Lock()
        self._closed = False

    @property
    def events(self) -> Queue:
        return self._events

    @property
    def is_running(self) -> bool:
        with self._running_lock:
            return self._thread is not None and self._thread.is_alive()

    def start_worker(self) -> None:
        with self._running_lock:
            if self._closed:
                raise EngineClosedError("Timer worker has been closed")
            if self._thread is not None and self._thread.is_alive():
                self._logger.warning("Timer worker is already running")
                return
            self._thread = threading.Thread(
                target=self._run,
                daemon=True,
                name="pomodoro-timer",
            )
            self._thread.start()

    def send(self, command: TimerCommand) -> None:
        """Queue a command for the worker thread; never blocks on the engine."""
        with self._running_lock:
            if self._closed:
                raise EngineClosedError(
                    f"Cannot send {command.command!r}: timer worker has been closed"
                )
        self._commands.put(command)

    def get_status(self) -> StatusEvent:
        """Synchronous snapshot of the engine, zeroed while idle."""
        return self._engine.status()

    def close(self, timeout_seconds: float = 5.0) -> None:
        """Cancel tick production and release the worker thread."""
        with self._running_lock:
            if self._closed:
                return
            self._closed = True
            thread = self._thread

        self._commands.put(_SHUTDOWN)
        if thread is not None:
            thread.join(timeout=timeout_seconds)
            if thread.is_alive():
                self._logger.error(
                    "Timer worker thread did not stop within %.1fs",
                    timeout_seconds,
                )
        self._engine.reset()
        self._logger.debug("Timer worker closed")

    def _run(self) -> None:
        self._logger.debug("Timer worker started")
        next_tick: Optional[float] = None
        try:
            while True:
                if not self._engine.is_running:
                    next_tick = None
                elif next_tick is None:
                    next_tick = time.monotonic() + self._tick_interval_seconds

                timeout = None if next_tick is None else max(0.0, next_tick - time.monotonic())
                try:
                    command = self._commands.get(timeout=timeout)
                except Empty:
                    command = None

                if command is _SHUTDOWN:
                    return
                if command is not None:
                    self._publish(self._apply(command))

                # Wake-up scheduling only; elapsed time always comes from the engine clock.
                if next_tick is not None and time.monotonic() >= next_tick:
                    next_tick = time.monotonic() + self._tick_interval_seconds
                    self._publish(self._engine.tick())
        except Exception as error:
            # Terminates this worker only; the owner sees is_running == False.
            self._logger.error("Timer worker failed: %s", error, exc_info=True)
        finally:
            self._logger.debug("Timer worker exiting")

    def _apply(self, command: TimerCommand) -> list[TimerEvent]:
        if isinstance(command, StartCommand):
            return self._engine.start(command.duration_seconds, command.session_type)
        if isinstance(command, PauseCommand):
            return self._engine.pause()
        if isinstance(command, ResumeCommand):
            return self._engine.resume()
        if isinstance(command, StopCommand):
            return self._engine.stop()
        if isinstance(command, ResetCommand):
            return self._engine.reset()
        if isinstance(command, GetStatusCommand):
            return [self._engine.status()]

        self._logger.warning("Ignoring unknown command type: %s", type(command).__name__)
        return []

    def _publish(self, events: list[TimerEvent]) -> None:
        for event in events:
            self._events.put(event)
