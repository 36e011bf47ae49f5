import asyncio
import json
import tempfile
import unittest
from pathlib import Path

from websockets.datastructures import Headers
from websockets.http11 import Request

from server.config import UIServerConfig
from server.service import UIServer


class UIServerRoutingTests(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        root = Path(self._temp_dir.name)
        self.index = root / "index.html"
        self.index.write_text("<html>timer</html>", encoding="utf-8")
        (root / "app.js").write_text("console.log(1);", encoding="utf-8")

        self.commands = []
        self.server = UIServer(
            UIServerConfig(index_file=str(self.index)),
            command_handler=self.commands.append,
        )

    def tearDown(self) -> None:
        self._temp_dir.cleanup()

    def _request(self, path: str):
        return asyncio.run(self.server._process_request(None, Request(path, Headers())))

    def test_routes_index_health_assets_and_websocket(self) -> None:
        index = self._request("/")
        self.assertEqual(200, index.status_code)
        self.assertEqual(b"<html>timer</html>", index.body)

        self.assertEqual(b"ok\n", self._request("/healthz").body)
        self.assertEqual(200, self._request("/app.js").status_code)
        self.assertEqual(404, self._request("/nope.css").status_code)
        self.assertIsNone(self._request("/ws"))

    def test_client_commands_are_forwarded(self) -> None:
        reply = self.server.handle_client_message('{"command": "start_study", "subjectId": "art"}')

        self.assertIsNone(reply)
        self.assertEqual([{"command": "start_study", "subject_id": "art"}], self.commands)

    def test_invalid_client_message_returns_error_event(self) -> None:
        reply = self.server.handle_client_message('{"command": "self_destruct"}')

        payload = json.loads(reply)
        self.assertEqual("error", payload["type"])
        self.assertIn("self_destruct", payload["message"])
        self.assertEqual([], self.commands)

    def test_publish_before_start_keeps_sticky_state(self) -> None:
        self.server.publish("timer", state="countdown", timeRemaining=12)
        self.server.publish_state("running", message="Study: 0:12 remaining")

        replay = [json.loads(item) for item in self.server._sticky.snapshot()]
        self.assertEqual(["timer", "state_update"], [item["type"] for item in replay])
        self.assertEqual(12, replay[0]["timeRemaining"])
        self.assertFalse(self.server.is_running)


if __name__ == "__main__":
    unittest.main()
