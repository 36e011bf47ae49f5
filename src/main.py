import logging
import signal
from typing import Optional

from app_config import (
    AppConfigurationError,
    default_app_config,
    load_app_config,
    resolve_config_path,
)
from pomodoro import InMemorySessionRecorder, JsonlSessionRecorder, SessionRecorder
from runtime import RuntimeBootstrap, RuntimeEngine, RuntimeHooks
from server import ServerConfigurationError, UIServer, UIServerConfig


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """Configure logging for the application."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return logging.getLogger("pomodoro_app")


def setup_signal_handlers(engine: RuntimeEngine) -> None:
    """Set up graceful shutdown on SIGTERM and SIGINT."""

    def signal_handler(signum: int, frame) -> None:
        del frame
        logging.getLogger("pomodoro_app").info(
            "%s received, stopping...", signal.Signals(signum).name
        )
        engine.request_shutdown()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)


def build_recorder(path: str) -> SessionRecorder:
    if path:
        return JsonlSessionRecorder(path, logger=logging.getLogger("pomodoro.recorder"))
    return InMemorySessionRecorder()


def main() -> int:
    """Run the pomodoro timer service with its web UI."""
    logger = setup_logging(level=logging.INFO)

    config_path = resolve_config_path()
    if config_path.exists():
        try:
            app_config = load_app_config(str(config_path))
            logger.info("Loaded runtime config: %s", config_path)
        except AppConfigurationError as error:
            logger.error(f"App configuration error: {error}")
            return 1
    else:
        app_config = default_app_config()
        logger.warning("Config file not found (%s); using defaults.", config_path)

    logging.getLogger().setLevel(app_config.logging.level)

    recorder = build_recorder(app_config.recorder.path)
    if app_config.recorder.path:
        logger.info("Recording sessions to %s", app_config.recorder.path)

    # Timer page and websocket stream; the timer also runs without it.
    ui_server: Optional[UIServer] = None
    ui_server_config: Optional[UIServerConfig] = None
    try:
        ui_server_config = UIServerConfig.from_settings(app_config.ui_server)
    except ServerConfigurationError as error:
        logger.error(f"UI server configuration error: {error}")
        logger.warning("Continuing without UI server.")

    engine: Optional[RuntimeEngine] = None

    def forward_command(command: dict) -> None:
        if engine is not None:
            engine.submit_ui_command(command)

    if ui_server_config is not None:
        ui_server = UIServer(
            config=ui_server_config,
            logger=logging.getLogger("ui_server"),
            command_handler=forward_command,
        )

    engine = RuntimeEngine(
        RuntimeBootstrap(
            logger=logger,
            app_config=app_config,
            recorder=recorder,
            ui_server=ui_server,
            hooks=RuntimeHooks(setup_signal_handlers=setup_signal_handlers),
        )
    )

    if ui_server is not None:
        try:
            logger.info("Starting UI server...")
            ui_server.start(timeout_seconds=5.0)
            logger.info(
                "UI server ready at http://%s:%d",
                ui_server.host,
                ui_server.port,
            )
        except Exception as error:
            logger.error(f"UI server startup failed: {error}")
            logger.warning("Continuing without UI server.")

    return engine.run()


if __name__ == "__main__":
    raise SystemExit(main())
