from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import urlsplit

import websockets
from websockets.asyncio.server import ServerConnection
from websockets.datastructures import Headers
from websockets.http11 import Request, Response

from contracts.ui_protocol import EVENT_ERROR, EVENT_HELLO, EVENT_STATE_UPDATE, STATE_ERROR, STATE_IDLE

from .config import HEALTHZ_PATH, INDEX_PATH, ROOT_PATH, UIServerConfig
from .events import ClientCommandError, StickyEventStore, make_event, parse_client_command
from .static_files import guess_content_type, resolve_static_file

CommandHandler = Callable[[dict[str, Any]], None]

_HTML = "text/html; charset=utf-8"
_TEXT = "text/plain; charset=utf-8"


class _ClientRegistry:
    """Websocket connections of the timer page; only touched on the server loop."""

    def __init__(self, logger: logging.Logger):
        self._clients: set[ServerConnection] = set()
        self._logger = logger

    def __len__(self) -> int:
        return len(self._clients)

    def add(self, client: ServerConnection) -> None:
        self._clients.add(client)

    def discard(self, client: ServerConnection) -> None:
        self._clients.discard(client)

    async def broadcast(self, message: str) -> None:
        clients = tuple(self._clients)
        if not clients:
            return
        results = await asyncio.gather(
            *(client.send(message) for client in clients),
            return_exceptions=True,
        )
        for client, result in zip(clients, results):
            if isinstance(result, Exception):
                self._logger.warning("Dropping client after failed send: %s", result)
                self._clients.discard(client)

    async def close_all(self) -> None:
        clients = tuple(self._clients)
        self._clients.clear()
        await asyncio.gather(
            *(client.close(code=1001, reason="Server shutting down") for client in clients),
            return_exceptions=True,
        )


class UIServer:
    """Serves the timer page and streams timer events over a websocket.

    The asyncio loop runs on its own daemon thread. `publish` may be called from
    any thread. Client commands are parsed on the server thread and handed to
    `command_handler`, which must only enqueue them.
    """

    def __init__(
        self,
        config: UIServerConfig,
        logger: Optional[logging.Logger] = None,
        *,
        command_handler: Optional[CommandHandler] = None,
    ):
        self._config = config
        self._logger = logger or logging.getLogger("ui_server")
        self._command_handler = command_handler
        self._clients = _ClientRegistry(self._logger)
        self._sticky = StickyEventStore()

        index_html = Path(config.index_file).read_bytes()
        self._routes: dict[str, tuple[bytes, str]] = {
            ROOT_PATH: (index_html, _HTML),
            INDEX_PATH: (index_html, _HTML),
            HEALTHZ_PATH: (b"ok\n", _TEXT),
        }

        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._shutdown: Optional[asyncio.Event] = None
        self._ready = threading.Event()
        self._failure: Optional[Exception] = None

    @property
    def host(self) -> str:
        return self._config.host

    @property
    def port(self) -> int:
        return self._config.port

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive() and self._failure is None

    def start(self, timeout_seconds: float = 5.0) -> None:
        if self.is_running:
            self._logger.warning("UI server is already running")
            return

        self._ready.clear()
        self._failure = None
        self._thread = threading.Thread(target=self._thread_main, daemon=True, name="ui-server")
        self._thread.start()

        if not self._ready.wait(timeout_seconds):
            raise RuntimeError(f"UI server did not start within {timeout_seconds:.1f}s")
        if self._failure is not None:
            raise RuntimeError(f"UI server startup failed: {self._failure}")

    def stop(self, timeout_seconds: float = 5.0) -> None:
        thread = self._thread
        if thread is None:
            return

        loop, shutdown = self._loop, self._shutdown
        if loop is not None and shutdown is not None:
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(shutdown.set)

        thread.join(timeout=timeout_seconds)
        if thread.is_alive():
            self._logger.error("UI server thread did not stop within %.1fs", timeout_seconds)
        self._thread = None

    def publish_state(self, state: str, *, message: Optional[str] = None, **payload) -> None:
        if message:
            payload["message"] = message
        self.publish(EVENT_STATE_UPDATE, state=state, **payload)

    def publish(self, event_type: str, **payload) -> None:
        message = make_event(event_type, **payload)
        self._sticky.remember(event_type, message)

        loop = self._loop
        if not self.is_running or loop is None:
            return
        try:
            future = asyncio.run_coroutine_threadsafe(self._clients.broadcast(message), loop)
        except RuntimeError:
            # Loop already closed during shutdown.
            return
        future.add_done_callback(_log_broadcast_failure(self._logger))

    def handle_client_message(self, message: str | bytes) -> Optional[str]:
        """Forward a client command; returns an error event for malformed input."""
        try:
            command = parse_client_command(message)
        except ClientCommandError as error:
            self._logger.warning("Rejected UI message: %s", error)
            return make_event(EVENT_ERROR, state=STATE_ERROR, message=str(error))

        if self._command_handler is None:
            self._logger.warning("No command handler; dropping %s", command["command"])
        else:
            self._command_handler(command)
        return None

    def _thread_main(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        self._shutdown = asyncio.Event()
        try:
            loop.run_until_complete(self._serve())
        except Exception as error:  # pragma: no cover - needs a real socket
            self._failure = error
            self._logger.error("UI server failed: %s", error, exc_info=True)
            self._ready.set()
        finally:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            with contextlib.suppress(Exception):
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.close()
            self._loop = None
            self._shutdown = None

    async def _serve(self) -> None:
        async with websockets.serve(
            self._session,
            host=self._config.host,
            port=self._config.port,
            process_request=self._process_request,
            logger=self._logger,
        ):
            self._logger.info(
                "UI server listening on http://%s:%d (websocket: %s)",
                self._config.host,
                self._config.port,
                self._config.websocket_path,
            )
            self._ready.set()
            await self._shutdown.wait()
            await self._clients.close_all()

    async def _session(self, websocket: ServerConnection) -> None:
        request = websocket.request
        if request is None or urlsplit(request.path).path != self._config.websocket_path:
            await websocket.close(code=1008, reason="Invalid websocket path")
            return

        self._clients.add(websocket)
        self._logger.info("Client connected: %s (%d total)", websocket.remote_address, len(self._clients))
        try:
            await websocket.send(make_event(EVENT_HELLO, state=STATE_IDLE, message="UI websocket connected"))
            # A reloaded page gets the latest timer state without waiting for the next tick.
            for message in self._sticky.snapshot():
                await websocket.send(message)
            async for message in websocket:
                reply = self.handle_client_message(message)
                if reply is not None:
                    await websocket.send(reply)
        except websockets.exceptions.ConnectionClosed:
            self._logger.info("Client disconnected: %s", websocket.remote_address)
        finally:
            self._clients.discard(websocket)

    async def _process_request(
        self,
        connection: Optional[ServerConnection],
        request: Request,
    ) -> Response | None:
        path = urlsplit(request.path).path
        if path == self._config.websocket_path:
            return None

        route = self._routes.get(path)
        if route is not None:
            return _http_response(200, "OK", *route)

        asset = resolve_static_file(self._config.static_root, path)
        if asset is not None:
            return _http_response(200, "OK", asset.read_bytes(), guess_content_type(asset))

        return _http_response(404, "Not Found", b"not found\n", _TEXT)


def _http_response(status_code: int, reason_phrase: str, body: bytes, content_type: str) -> Response:
    headers = Headers()
    headers["Content-Type"] = content_type
    headers["Content-Length"] = str(len(body))
    headers["Cache-Control"] = "no-store"
    return Response(status_code, reason_phrase, headers, body)


def _log_broadcast_failure(logger: logging.Logger):
    def _callback(future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.debug("Broadcast failed: %s", error)

    return _callback
