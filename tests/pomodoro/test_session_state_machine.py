import unittest

from pomodoro.clock import ManualClock
from pomodoro.engine import TimingEngine
from pomodoro.errors import EngineClosedError, InvalidTransitionError, RecorderError
from pomodoro.machine import (
    MACHINE_COMPLETED,
    MACHINE_ERROR,
    SessionDurations,
    SessionStateMachine,
)
from pomodoro.messages import (
    GetStatusCommand,
    PauseCommand,
    ResetCommand,
    ResumeCommand,
    StartCommand,
    StopCommand,
)
from pomodoro.recorder import InMemorySessionRecorder


class _LoopbackSink:
    """Applies commands to a real engine synchronously and buffers the events."""

    def __init__(self, clock: ManualClock):
        self.engine = TimingEngine(clock)
        self.clock = clock
        self.sent = []
        self.pending = []

    def send(self, command) -> None:
        self.sent.append(command)
        if isinstance(command, StartCommand):
            self.pending.extend(self.engine.start(command.duration_seconds, command.session_type))
        elif isinstance(command, PauseCommand):
            self.pending.extend(self.engine.pause())
        elif isinstance(command, ResumeCommand):
            self.pending.extend(self.engine.resume())
        elif isinstance(command, StopCommand):
            self.pending.extend(self.engine.stop())
        elif isinstance(command, ResetCommand):
            self.pending.extend(self.engine.reset())
        elif isinstance(command, GetStatusCommand):
            self.pending.append(self.engine.status())

    def run(self, seconds: float, step_ms: int = 250) -> None:
        end = self.clock.now_ms() + int(seconds * 1000)
        while self.clock.now_ms() < end:
            self.clock.advance(min(step_ms, end - self.clock.now_ms()))
            self.pending.extend(self.engine.tick())

    def flush(self, machine: SessionStateMachine) -> None:
        events, self.pending = self.pending, []
        for event in events:
            machine.handle_event(event)


class _ClosedSink:
    def send(self, command) -> None:
        raise EngineClosedError("closed")


class _FailingCloseRecorder(InMemorySessionRecorder):
    def close_session(self, session_id, status, actual_duration_seconds, overtime_seconds) -> None:
        raise RecorderError("disk full")


class _FailingOpenRecorder(InMemorySessionRecorder):
    def open_session(self, session_type, subject_id, setting_duration) -> str:
        raise RecorderError("database offline")


def _machine(recorder=None, durations=None):
    clock = ManualClock(start_ms=5_000)
    sink = _LoopbackSink(clock)
    recorder = recorder if recorder is not None else InMemorySessionRecorder()
    machine = SessionStateMachine(
        sink,
        recorder=recorder,
        durations=durations or SessionDurations(),
        clock=clock,
    )
    events = []
    machine.subscribe(events.append)
    return machine, sink, recorder, events


class SessionStateMachineCommandTests(unittest.TestCase):
    def test_idle_context_previews_study_duration(self) -> None:
        machine, _, _, _ = _machine()
        context = machine.context

        self.assertEqual("idle", context.state)
        self.assertEqual(1500, context.setting_duration)
        self.assertEqual(1500, context.time_remaining)
        self.assertEqual("cw", context.dial_direction)
        self.assertAlmostEqual(150.0, context.dial_angle)

    def test_start_study_opens_record_and_counts_down(self) -> None:
        machine, sink, recorder, _ = _machine()

        result = machine.start_study("math")

        self.assertTrue(result.accepted)
        self.assertEqual("started", result.reason)
        self.assertEqual("countdown", result.context.state)
        self.assertEqual("math", result.context.subject_id)
        self.assertEqual(5_000, result.context.session_start_time)
        self.assertEqual(StartCommand(duration_seconds=1500, session_type="study"), sink.sent[0])

        record = recorder.get(result.context.current_session_id)
        self.assertIsNotNone(record)
        self.assertEqual("math", record.subject_id)
        self.assertEqual(1500, record.setting_duration)
        self.assertFalse(record.is_closed)

    def test_invalid_transitions_are_rejected_without_changes(self) -> None:
        machine, sink, _, _ = _machine()

        self.assertEqual("not_counting_down", machine.pause().reason)
        self.assertEqual("not_paused", machine.resume().reason)
        self.assertEqual("not_active", machine.stop().reason)
        self.assertEqual("invalid_duration", machine.start("study", 0).reason)
        self.assertEqual("invalid_session_type", machine.start("nap", 60).reason)
        self.assertEqual([], sink.sent)

        machine.start_study()
        before = machine.context
        result = machine.start_break()
        self.assertFalse(result.accepted)
        self.assertEqual("not_idle", result.reason)
        self.assertEqual(before, machine.context)
        self.assertEqual("not_paused", machine.resume().reason)

    def test_raise_if_rejected_raises_invalid_transition(self) -> None:
        machine, _, _, _ = _machine()
        with self.assertRaises(InvalidTransitionError) as ctx:
            machine.pause().raise_if_rejected()
        self.assertEqual("pause", ctx.exception.command)
        self.assertEqual("idle", ctx.exception.state)

    def test_reset_while_idle_is_accepted_no_op(self) -> None:
        machine, sink, _, events = _machine()

        result = machine.reset()

        self.assertTrue(result.accepted)
        self.assertEqual("already_idle", result.reason)
        self.assertEqual([], sink.sent)
        self.assertEqual([], events)

    def test_pause_resume_round_trip(self) -> None:
        machine, sink, _, _ = _machine()
        machine.start("break", 300)
        sink.run(100)
        sink.flush(machine)

        self.assertEqual("paused", machine.pause().context.state)
        sink.flush(machine)
        self.assertEqual(200, machine.context.time_remaining)

        sink.clock.advance_seconds(10)
        self.assertEqual("countdown", machine.resume().context.state)
        sink.flush(machine)
        self.assertEqual(200, machine.context.time_remaining)

    def test_engine_closed_rejects_command(self) -> None:
        machine = SessionStateMachine(_ClosedSink(), clock=ManualClock())

        result = machine.start_study()

        self.assertFalse(result.accepted)
        self.assertEqual("engine_closed", result.reason)
        self.assertEqual("idle", machine.state)


class SessionStateMachineLifecycleTests(unittest.TestCase):
    def test_overtime_then_stop_records_completed_session(self) -> None:
        machine, sink, recorder, events = _machine()
        session_id = machine.start_study("physics").context.current_session_id

        sink.run(1500)
        sink.flush(machine)
        self.assertEqual("overtime", machine.state)
        self.assertEqual("ccw", machine.context.dial_direction)

        sink.run(30)
        sink.flush(machine)
        self.assertEqual(30, machine.context.overtime_elapsed)

        result = machine.stop()
        self.assertTrue(result.accepted)
        self.assertEqual("idle", machine.state)
        self.assertTrue(machine.awaiting_engine)

        sink.flush(machine)
        self.assertFalse(machine.awaiting_engine)
        record = recorder.get(session_id)
        self.assertEqual("completed", record.status)
        self.assertEqual(1530, record.duration)
        self.assertEqual(30, record.overtime_elapsed)
        self.assertEqual(1, machine.completed_study_sessions)

        completed = [event for event in events if event.kind == MACHINE_COMPLETED]
        self.assertEqual(1, len(completed))
        self.assertEqual(1500, completed[0].payload["total_duration"])
        self.assertEqual(30, completed[0].payload["overtime_elapsed"])

    def test_stop_during_countdown_records_interrupted_session(self) -> None:
        machine, sink, recorder, _ = _machine()
        session_id = machine.start_study().context.current_session_id
        sink.run(600)

        machine.stop()
        sink.flush(machine)

        record = recorder.get(session_id)
        self.assertEqual("interrupted", record.status)
        self.assertEqual(600, record.duration)
        self.assertEqual(0, machine.completed_study_sessions)

    def test_reset_discards_run_without_recording(self) -> None:
        machine, sink, recorder, events = _machine()
        session_id = machine.start_study().context.current_session_id
        sink.run(60)

        self.assertTrue(machine.reset().accepted)
        sink.flush(machine)

        self.assertEqual("idle", machine.state)
        self.assertFalse(recorder.get(session_id).is_closed)
        self.assertFalse(any(event.kind == MACHINE_COMPLETED for event in events))

    def test_late_events_from_previous_run_are_ignored(self) -> None:
        machine, sink, recorder, _ = _machine()
        first_id = machine.start_study().context.current_session_id
        sink.run(10)
        machine.stop()
        second = machine.start("break", 300)
        self.assertTrue(second.accepted)

        # Ticks of the first run, its stop, then the second run's start arrive together.
        sink.flush(machine)

        self.assertEqual("interrupted", recorder.get(first_id).status)
        context = machine.context
        self.assertEqual("countdown", context.state)
        self.assertEqual("break", context.session_type)
        self.assertEqual(300, context.time_remaining)

    def test_long_break_follows_configured_interval(self) -> None:
        durations = SessionDurations(
            study_seconds=60,
            short_break_seconds=10,
            long_break_seconds=30,
            long_break_interval=2,
        )
        machine, sink, _, _ = _machine(durations=durations)
        self.assertEqual(10, machine.next_break_duration())

        for _ in range(2):
            machine.start_study()
            sink.run(61)
            sink.flush(machine)
            machine.stop()
            sink.flush(machine)

        self.assertEqual(2, machine.completed_study_sessions)
        self.assertEqual(30, machine.next_break_duration())
        self.assertEqual(30, machine.start_break().context.setting_duration)

    def test_clock_anomaly_finalizes_active_run(self) -> None:
        machine, sink, recorder, events = _machine()
        session_id = machine.start_study().context.current_session_id
        sink.run(20)
        sink.clock.set(1_000)
        sink.pending.extend(sink.engine.tick())

        sink.flush(machine)

        self.assertEqual("idle", machine.state)
        self.assertEqual("interrupted", recorder.get(session_id).status)
        self.assertEqual(20, recorder.get(session_id).duration)
        self.assertTrue(any(event.kind == MACHINE_ERROR for event in events))
        self.assertIn("Clock went backwards", machine.last_error)


class SessionStateMachineWorkerErrorTests(unittest.TestCase):
    def test_pause_racing_overtime_boundary_ends_in_overtime(self) -> None:
        machine, sink, recorder, events = _machine()
        session_id = machine.start_study().context.current_session_id
        sink.flush(machine)
        sink.run(1500)

        # The worker already crossed zero, so it rejects the pause.
        self.assertTrue(machine.pause().accepted)
        sink.flush(machine)

        self.assertEqual("overtime", machine.state)
        self.assertFalse(machine.awaiting_engine)
        errors = [event for event in events if event.kind == MACHINE_ERROR]
        self.assertEqual("not_counting_down", errors[-1].payload["reason"])

        sink.run(10)
        machine.stop()
        sink.flush(machine)

        record = recorder.get(session_id)
        self.assertEqual("completed", record.status)
        self.assertEqual(1510, record.duration)

    def test_start_after_backwards_clock_jump_keeps_worker_in_step(self) -> None:
        machine, sink, recorder, _ = _machine()
        first_id = machine.start_study().context.current_session_id
        machine.stop()
        sink.flush(machine)

        sink.clock.set(1_000)
        second_id = machine.start_study().context.current_session_id
        sink.flush(machine)
        self.assertTrue(sink.engine.is_running)

        machine.stop()
        sink.flush(machine)
        self.assertFalse(machine.awaiting_engine)

        third_id = machine.start_study().context.current_session_id
        sink.flush(machine)
        sink.run(3)
        sink.flush(machine)

        self.assertEqual("countdown", machine.state)
        self.assertEqual(1497, machine.context.time_remaining)
        self.assertEqual(sink.engine.status().time_remaining, machine.context.time_remaining)
        self.assertEqual("interrupted", recorder.get(first_id).status)
        self.assertEqual("interrupted", recorder.get(second_id).status)
        self.assertFalse(recorder.get(third_id).is_closed)

    def test_stop_rejected_as_not_active_settles_pending_stop(self) -> None:
        machine, sink, recorder, _ = _machine()
        session_id = machine.start_study().context.current_session_id
        sink.flush(machine)
        # The worker lost the run without telling the machine.
        sink.engine.reset()

        machine.stop()
        sink.flush(machine)

        self.assertFalse(machine.awaiting_engine)
        record = recorder.get(session_id)
        self.assertEqual("interrupted", record.status)
        self.assertEqual(0, record.duration)

        machine.start_study()
        sink.run(2)
        sink.flush(machine)
        self.assertEqual(1498, machine.context.time_remaining)

    def test_stop_racing_clock_anomaly_records_run_once(self) -> None:
        machine, sink, recorder, events = _machine()
        session_id = machine.start_study().context.current_session_id
        sink.run(20)
        sink.flush(machine)

        sink.clock.set(1_000)
        sink.pending.extend(sink.engine.tick())
        # Sent before the anomaly events reach the machine.
        machine.stop()
        sink.flush(machine)

        self.assertFalse(machine.awaiting_engine)
        self.assertEqual("idle", machine.state)
        completed = [event for event in events if event.kind == MACHINE_COMPLETED]
        self.assertEqual(1, len(completed))
        self.assertEqual(session_id, completed[0].payload["session_id"])
        self.assertEqual(20, recorder.get(session_id).duration)

        machine.start_study()
        sink.flush(machine)
        self.assertEqual("countdown", machine.state)
        self.assertTrue(sink.engine.is_running)

    def test_reset_racing_clock_anomaly_records_nothing(self) -> None:
        machine, sink, recorder, events = _machine()
        session_id = machine.start_study().context.current_session_id
        sink.run(20)
        sink.flush(machine)

        sink.clock.set(1_000)
        sink.pending.extend(sink.engine.tick())
        machine.reset()
        sink.flush(machine)

        self.assertFalse(machine.awaiting_engine)
        self.assertFalse(recorder.get(session_id).is_closed)
        self.assertEqual([], [event for event in events if event.kind == MACHINE_COMPLETED])


class SessionStateMachineRecorderFailureTests(unittest.TestCase):
    def test_close_failure_is_reported_and_machine_stays_idle(self) -> None:
        machine, sink, _, events = _machine(recorder=_FailingCloseRecorder())
        machine.start_study()
        sink.run(5)
        machine.stop()

        sink.flush(machine)

        self.assertEqual("idle", machine.state)
        self.assertIn("disk full", machine.last_error)
        errors = [event for event in events if event.kind == MACHINE_ERROR]
        self.assertEqual("recorder_failed", errors[0].payload["reason"])

    def test_open_failure_still_starts_run(self) -> None:
        machine, _, _, _ = _machine(recorder=_FailingOpenRecorder())

        result = machine.start_study()

        self.assertTrue(result.accepted)
        self.assertIsNone(result.context.current_session_id)
        self.assertIn("database offline", result.error)


class SessionStateMachineStatusTests(unittest.TestCase):
    def test_status_event_resynchronises_context(self) -> None:
        machine, sink, _, _ = _machine()
        machine.start_study()
        sink.flush(machine)
        sink.clock.advance_seconds(90)

        self.assertTrue(machine.request_status())
        sink.flush(machine)

        self.assertEqual(1410, machine.context.time_remaining)

    def test_update_durations_refreshes_idle_preview(self) -> None:
        machine, _, _, _ = _machine()

        machine.update_durations(SessionDurations(study_seconds=3000))

        self.assertEqual(3000, machine.context.setting_duration)
        self.assertEqual(3000, machine.context.time_remaining)

    def test_durations_validate_values(self) -> None:
        with self.assertRaises(ValueError):
            SessionDurations(study_seconds=0)
        with self.assertRaises(ValueError):
            SessionDurations(long_break_interval=0)


if __name__ == "__main__":
    unittest.main()
