"""
Main Application Entry Point

Builds the ShotQueue components, wires them together, runs until a signal or
shutdown request arrives and then shuts everything down in reverse order.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from shotqueue import APP_NAME, APP_VERSION, AppState, EventTypes, get_app_data_dir
from shotqueue.controllers.event_bus import EventBus
from shotqueue.controllers.keyboard_dispatcher import KeyboardDispatcher
from shotqueue.controllers.main_controller import QueueController
from shotqueue.models.host_service import LocalCaptureService
from shotqueue.models.processing_client import ProcessingClient
from shotqueue.models.screenshot_queue import ScreenshotQueueManager
from shotqueue.models.settings_manager import SettingsManager
from shotqueue.utils.logging_config import ApplicationLogger, setup_logging
from shotqueue.views.tooltip_negotiator import TooltipNegotiator

logger = logging.getLogger(__name__)


class Application:
    """
    Main application class.

    Owns one instance of every component and passes them explicitly to the
    controller.
    """

    def __init__(
        self,
        screenshot_dir: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        enable_hotkeys: bool = True,
        log_level: Optional[str] = None,
        app_logger: Optional[ApplicationLogger] = None
    ):
        self.app_name = APP_NAME
        self.version = APP_VERSION
        self.state = AppState.STARTING

        self.screenshot_dir = screenshot_dir
        self.endpoint_url = endpoint_url
        self.enable_hotkeys = enable_hotkeys
        self.log_level = log_level
        self.app_logger = app_logger

        self.event_bus: Optional[EventBus] = None
        self.settings_manager: Optional[SettingsManager] = None
        self.host: Optional[LocalCaptureService] = None
        self.controller: Optional[QueueController] = None

        self._shutdown_event = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._reload_task: Optional[asyncio.Task] = None
        self.initialization_complete = False

    async def initialize(self) -> bool:
        """
        Initialize all application components.

        Returns:
            True if initialization was successful
        """
        try:
            logger.info("Initializing %s v%s", self.app_name, self.version)
            self._loop = asyncio.get_running_loop()

            self.event_bus = EventBus()
            await self._subscribe_to_events()

            self.settings_manager = SettingsManager(event_bus=self.event_bus)
            await self._apply_overrides()
            settings = await self.settings_manager.load_settings()
            self._apply_log_level(settings.log_level)

            self.host = LocalCaptureService(
                event_bus=self.event_bus,
                screenshot_dir=settings.screenshot.save_directory,
                image_format=settings.screenshot.image_format,
                thumbnail_size=tuple(settings.screenshot.thumbnail_size)
            )

            queue_manager = ScreenshotQueueManager(self.host, self.event_bus)
            processing_client = ProcessingClient(self.event_bus)
            dispatcher = KeyboardDispatcher(self.event_bus, self.settings_manager)
            tooltip = TooltipNegotiator(self.host, self.event_bus)

            self.controller = QueueController(
                event_bus=self.event_bus,
                settings_manager=self.settings_manager,
                queue_manager=queue_manager,
                processing_client=processing_client,
                dispatcher=dispatcher,
                tooltip=tooltip,
                enable_hotkeys=self.enable_hotkeys
            )

            if not await self.controller.initialize():
                logger.error("Queue controller initialization failed")
                return False

            self._setup_signal_handlers()

            self.initialization_complete = True
            self.state = AppState.READY
            logger.info("Application initialization complete")
            return True

        except Exception as e:
            logger.error("Application initialization failed: %s", e)
            self.state = AppState.ERROR
            return False

    async def _apply_overrides(self) -> None:
        """Command line options win over stored settings."""
        if self.log_level:
            await self.settings_manager.update_setting('log_level', self.log_level)
        if self.screenshot_dir:
            await self.settings_manager.update_setting('screenshot.save_directory', self.screenshot_dir)
        if self.endpoint_url:
            if not await self.settings_manager.update_setting('processing.endpoint_url', self.endpoint_url):
                logger.warning("Ignoring invalid endpoint URL: %s", self.endpoint_url)

    async def _subscribe_to_events(self) -> None:
        await self.event_bus.subscribe(EventTypes.APP_SHUTDOWN_REQUESTED, self._handle_shutdown_request)
        await self.event_bus.subscribe(EventTypes.APP_RELOAD_REQUESTED, self._handle_reload_request)
        await self.event_bus.subscribe(EventTypes.NOTICE_SHOWN, self._handle_notice)
        await self.event_bus.subscribe(EventTypes.SETTINGS_UPDATED, self._handle_settings_updated)

    def _setup_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)
        if sys.platform != "win32":
            signal.signal(signal.SIGHUP, self._signal_handler)

    def _signal_handler(self, signum, frame):
        logger.info("Received signal %d, initiating shutdown", signum)
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._shutdown_event.set)
        else:
            self._shutdown_event.set()

    async def _handle_shutdown_request(self, event_data) -> None:
        logger.info("Shutdown requested by %s", event_data.source)
        self._shutdown_event.set()

    async def _handle_reload_request(self, event_data) -> None:
        """Restart the controller after the host store was cleared."""
        logger.info("Reload requested by %s", event_data.source)
        if self._reload_task is None or self._reload_task.done():
            self._reload_task = asyncio.ensure_future(self._reload())

    async def _reload(self) -> None:
        await self.controller.shutdown()
        if not await self.controller.initialize():
            logger.error("Reload failed, shutting down")
            self._shutdown_event.set()

    async def _handle_settings_updated(self, event_data) -> None:
        data = event_data.data if isinstance(event_data.data, dict) else {}
        if data.get('key') == 'log_level':
            self._apply_log_level(data.get('value'))

    def _apply_log_level(self, level: Optional[str]) -> None:
        if self.app_logger is None or not level:
            return
        self.app_logger.set_log_level(level)
        logger.info("Log level set to %s", level)

    async def _handle_notice(self, event_data) -> None:
        """Without a window the notices go to the log."""
        data = event_data.data or {}
        level = logging.ERROR if data.get('level') == 'error' else logging.INFO
        logger.log(level, "[%s] %s", data.get('title', ''), data.get('message', ''))

    async def run(self) -> int:
        """
        Run until shutdown is requested.

        Returns:
            Exit code (0 for success, non-zero for error)
        """
        try:
            if not await self.initialize():
                return 1

            logger.info("Application started successfully")
            await self._shutdown_event.wait()
            logger.info("Application shutting down")
            return 0

        except Exception as e:
            logger.error("Unexpected error in main loop: %s", e)
            return 1

        finally:
            await self._shutdown()

    async def _shutdown(self) -> None:
        """Perform graceful shutdown of all components."""
        if self.state == AppState.SHUTTING_DOWN:
            return

        self.state = AppState.SHUTTING_DOWN
        logger.info("Starting application shutdown")

        try:
            if self.event_bus and not self.event_bus.is_shutdown():
                await self.event_bus.emit(EventTypes.APP_SHUTDOWN_STARTING, source="application")

            if self._reload_task is not None and not self._reload_task.done():
                self._reload_task.cancel()

            if self.controller:
                await self.controller.shutdown()

            # last, so pending notices are still delivered
            if self.event_bus:
                await self.event_bus.shutdown()

            logger.info("Application shutdown complete")

        except Exception as e:
            logger.error("Error during shutdown: %s", e)


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description=f"{APP_NAME} v{APP_VERSION} - screenshot queue with remote analysis"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"{APP_NAME} {APP_VERSION}"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set logging level (overrides the stored setting)"
    )

    parser.add_argument(
        "--log-dir",
        type=Path,
        help="Directory for log files"
    )

    parser.add_argument(
        "--screenshot-dir",
        help="Directory where screenshots are stored"
    )

    parser.add_argument(
        "--endpoint",
        help="URL of the process_images endpoint"
    )

    parser.add_argument(
        "--no-hotkeys",
        action="store_true",
        help="Do not install the global keyboard listener"
    )

    return parser.parse_args(argv)


async def main() -> int:
    """
    Main application entry point.

    Returns:
        Exit code
    """
    args = parse_arguments()

    log_level = "DEBUG" if args.debug else args.log_level
    app_logger = setup_logging(
        log_dir=args.log_dir or Path(get_app_data_dir()) / "logs",
        log_level=log_level or "INFO",
        enable_console=True,
        enable_json=True
    )

    removed = app_logger.cleanup_old_logs()
    if removed:
        logger.info("Removed %d old log files", removed)

    logger.info("Starting %s v%s", APP_NAME, APP_VERSION)

    app = Application(
        screenshot_dir=args.screenshot_dir,
        endpoint_url=args.endpoint,
        enable_hotkeys=not args.no_hotkeys,
        log_level=log_level,
        app_logger=app_logger
    )

    try:
        return await app.run()
    except Exception as e:
        logger.error("Fatal error: %s", e)
        return 1
    finally:
        logging.shutdown()


def run_app():
    """Synchronous entry point."""
    try:
        return asyncio.run(main())

    except KeyboardInterrupt:
        print("Application interrupted")
        return 0


if __name__ == "__main__":
    sys.exit(run_app())
