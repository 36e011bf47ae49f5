class PomodoroError(Exception):
    """Base exception for the pomodoro timing core."""


class InvalidTransitionError(PomodoroError):
    """Raised when a command is not valid in the current timer state."""

    def __init__(self, command: str, state: str, reason: str):
        super().__init__(f"Cannot {command} while {state} ({reason})")
        self.command = command
        self.state = state
        self.reason = reason


class ClockAnomalyError(PomodoroError):
    """Raised when the clock source reports a time earlier than one already seen."""

    def __init__(self, previous_ms: int, current_ms: int):
        super().__init__(
            f"Clock went backwards: {current_ms}ms after {previous_ms}ms"
        )
        self.previous_ms = previous_ms
        self.current_ms = current_ms


class RecorderError(PomodoroError):
    """Raised when the session recorder cannot open or close a record."""


class EngineClosedError(PomodoroError):
    """Raised when a command is sent to a timer worker that has been closed."""
