import unittest

from pomodoro.messages import (
    ErrorEvent,
    OvertimeTickEvent,
    StatusEvent,
    StoppedEvent,
    TickEvent,
)


class EventWireFormTests(unittest.TestCase):
    def test_tick_uses_camel_case_fields(self) -> None:
        payload = TickEvent(time_remaining=42, session_type="study").to_dict()

        self.assertEqual("tick", payload["type"])
        self.assertEqual(42, payload["data"]["timeRemaining"])
        self.assertEqual("countdown", payload["data"]["status"])

    def test_stopped_reports_countdown_and_overtime_separately(self) -> None:
        event = StoppedEvent(
            session_type="study",
            total_duration=1500,
            overtime_elapsed=30,
            reached_overtime=True,
            clock_anomaly=False,
        )

        self.assertEqual(
            {"sessionType": "study", "totalDuration": 1500, "overtimeElapsed": 30},
            event.to_dict()["data"],
        )

    def test_overtime_tick_and_status(self) -> None:
        overtime = OvertimeTickEvent(overtime_elapsed=5, session_type="break", status="breakOvertime")
        self.assertEqual("overtime_tick", overtime.to_dict()["type"])
        self.assertEqual("breakOvertime", overtime.to_dict()["data"]["status"])

        status = StatusEvent(
            status="paused",
            session_type="study",
            time_remaining=200,
            overtime_elapsed=0,
            is_running=False,
            is_paused=True,
        ).to_dict()
        self.assertEqual("status", status["type"])
        self.assertTrue(status["data"]["isPaused"])

    def test_error_carries_command_and_reason(self) -> None:
        payload = ErrorEvent(command=None, reason="clock_anomaly", message="Clock went backwards").to_dict()

        self.assertEqual("error", payload["type"])
        self.assertEqual(
            {"command": None, "reason": "clock_anomaly", "message": "Clock went backwards"},
            payload["data"],
        )


if __name__ == "__main__":
    unittest.main()
