import logging
import threading
import time
import unittest

from app_config import AppConfig, LoggingSettings, RecorderSettings, TimerSettings, UIServerSettings
from pomodoro import InMemorySessionRecorder, ManualClock
from runtime import RuntimeBootstrap, RuntimeEngine


class _FakeUIServer:
    def __init__(self):
        self.events = []
        self.stopped = False
        self._lock = threading.Lock()

    def publish(self, event_type, **payload) -> None:
        with self._lock:
            self.events.append((event_type, payload))

    def publish_state(self, state, *, message=None, **payload) -> None:
        self.publish("state_update", state=state, message=message, **payload)

    def stop(self, timeout_seconds: float = 5.0) -> None:
        self.stopped = True

    def wait_for(self, predicate, timeout: float = 3.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            with self._lock:
                for event_type, payload in self.events:
                    if predicate(event_type, payload):
                        return payload
            time.sleep(0.01)
        raise AssertionError("expected UI event was not published in time")


def _app_config() -> AppConfig:
    return AppConfig(
        timer=TimerSettings(study_duration_seconds=60, tick_interval_ms=50),
        recorder=RecorderSettings(),
        ui_server=UIServerSettings(),
        logging=LoggingSettings(),
        source_file="",
    )


class RuntimeEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = ManualClock(start_ms=0)
        self.ui = _FakeUIServer()
        self.recorder = InMemorySessionRecorder()
        self.engine = RuntimeEngine(
            RuntimeBootstrap(
                logger=logging.getLogger("test.runtime"),
                app_config=_app_config(),
                recorder=self.recorder,
                ui_server=self.ui,
                clock=self.clock,
            )
        )
        self.exit_codes = []
        self.thread = threading.Thread(target=lambda: self.exit_codes.append(self.engine.run()))
        self.thread.start()

    def tearDown(self) -> None:
        self.engine.request_shutdown()
        self.thread.join(timeout=5.0)

    def test_startup_publishes_idle_preview(self) -> None:
        payload = self.ui.wait_for(lambda kind, data: kind == "timer" and data["action"] == "sync")

        self.assertEqual("idle", payload["state"])
        self.assertEqual("1:00", payload["displayTime"])

    def test_study_run_through_overtime_is_recorded(self) -> None:
        self.engine.submit_ui_command({"command": "start_study", "subject_id": "math"})
        result = self.ui.wait_for(lambda kind, data: kind == "command_result")
        self.assertTrue(result["accepted"])
        started = self.ui.wait_for(lambda kind, data: kind == "timer" and data["action"] == "started")
        self.assertEqual(
            {"type": "started", "data": {"timeRemaining": 60, "sessionType": "study"}},
            started["engineEvent"],
        )

        self.clock.advance(60_000)
        self.ui.wait_for(lambda kind, data: kind == "timer" and data["state"] == "overtime")
        self.clock.advance(5_000)
        self.ui.wait_for(lambda kind, data: kind == "timer" and data["overtimeElapsed"] == 5)

        self.engine.submit_ui_command({"command": "stop"})
        finished = self.ui.wait_for(lambda kind, data: kind == "session_finished")

        self.assertEqual("completed", finished["status"])
        self.assertEqual(60, finished["totalDuration"])
        self.assertEqual(5, finished["overtimeElapsed"])
        self.assertEqual("math", finished["subjectId"])
        self.assertEqual("stopped", finished["engineEvent"]["type"])
        record = self.recorder.get(finished["sessionId"])
        self.assertEqual(65, record.duration)

    def test_rejected_command_is_reported(self) -> None:
        self.engine.submit_ui_command({"command": "pause"})

        result = self.ui.wait_for(lambda kind, data: kind == "command_result")

        self.assertFalse(result["accepted"])
        self.assertEqual("not_counting_down", result["reason"])

    def test_shutdown_closes_worker_and_ui(self) -> None:
        self.engine.request_shutdown()
        self.thread.join(timeout=5.0)

        self.assertEqual([0], self.exit_codes)
        self.assertTrue(self.ui.stopped)
        self.assertFalse(self.engine.worker.is_running)


if __name__ == "__main__":
    unittest.main()
