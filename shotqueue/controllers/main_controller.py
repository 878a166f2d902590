"""
Main Controller Module

Owns the screenshot queue, the processing client, the keyboard dispatcher
and the tooltip negotiator, wires them together and brackets their lifetime.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from .. import AppState, EventTypes
from ..models.processing_client import ProcessingClient
from ..models.screenshot_models import DeletionResult, ScreenshotEntry, SubmissionResult
from ..models.screenshot_queue import ScreenshotQueueManager
from ..models.settings_manager import SettingsManager
from ..views.queue_commands import QueueCommands
from ..views.tooltip_negotiator import TooltipNegotiator
from .event_bus import EventBus
from .keyboard_dispatcher import ACTION_CAPTURE, ACTION_PROCESS, KeyboardDispatcher

logger = logging.getLogger(__name__)


class QueueController:
    """
    Application controller for the screenshot queue.

    Every collaborator is passed in; nothing is looked up globally.
    """

    def __init__(
        self,
        event_bus: EventBus,
        settings_manager: SettingsManager,
        queue_manager: ScreenshotQueueManager,
        processing_client: ProcessingClient,
        dispatcher: Optional[KeyboardDispatcher] = None,
        tooltip: Optional[TooltipNegotiator] = None,
        commands: Optional[QueueCommands] = None,
        enable_hotkeys: bool = True
    ):
        """
        Initialize QueueController.

        Args:
            event_bus: EventBus instance for coordination
            settings_manager: SettingsManager for configuration
            queue_manager: Owner of the screenshot queue
            processing_client: Client for the analysis endpoint
            dispatcher: Optional global shortcut dispatcher
            tooltip: Optional tooltip layout negotiator
            commands: Shortcut panel actions (built from the host when omitted)
            enable_hotkeys: Whether to start the global key listener
        """
        self.event_bus = event_bus
        self.settings_manager = settings_manager
        self.queue_manager = queue_manager
        self.processing_client = processing_client
        self.dispatcher = dispatcher
        self.tooltip = tooltip
        self.commands = commands or QueueCommands(
            queue_manager.host,
            event_bus,
            screenshot_count=lambda: len(queue_manager),
            dispatcher=dispatcher
        )
        self.enable_hotkeys = enable_hotkeys

        self._initialized = False
        self._app_state = AppState.STARTING
        self._subscriptions: List[str] = []
        self._tasks: Set[asyncio.Task] = set()

        logger.debug("QueueController created")

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def state(self) -> str:
        return self._app_state

    async def initialize(self) -> bool:
        """
        Load configuration, hydrate the queue and start listening.

        Returns:
            True if initialization successful
        """
        if self._initialized:
            logger.warning("QueueController already initialized")
            return True

        try:
            logger.debug("Initializing QueueController...")

            await self.processing_client.load_settings(self.settings_manager)
            if self.tooltip is not None:
                await self.tooltip.load_settings(self.settings_manager)

            await self._subscribe_to_events()

            self.queue_manager.activate()
            await self.queue_manager.load()

            if self.dispatcher is not None:
                self.dispatcher.rebind({
                    ACTION_CAPTURE: self.capture_screenshot,
                    ACTION_PROCESS: self.process_screenshots,
                })
                if self.enable_hotkeys:
                    if not await self.dispatcher.start():
                        logger.warning("Keyboard dispatcher not running, continuing without hotkeys")

            await self._set_state(AppState.READY)
            self._initialized = True

            await self.event_bus.emit(
                EventTypes.APP_READY,
                {'screenshot_count': len(self.queue_manager)},
                source="QueueController"
            )

            logger.debug("QueueController initialization complete")
            return True

        except Exception as e:
            logger.error("QueueController initialization failed: %s", e)
            self._app_state = AppState.ERROR
            await self._release()
            return False

    async def _subscribe_to_events(self) -> None:
        self._subscriptions.append(await self.event_bus.subscribe(
            EventTypes.HOST_PROCESS_REQUESTED,
            self._handle_process_request,
            priority=100
        ))
        self._subscriptions.append(await self.event_bus.subscribe(
            EventTypes.ERROR_OCCURRED,
            self._handle_error,
            priority=50
        ))

    async def capture_screenshot(self) -> Optional[ScreenshotEntry]:
        """Capture through the host and append to the queue."""
        return await self.queue_manager.capture()

    async def process_screenshots(self) -> SubmissionResult:
        """Submit the current queue contents."""
        return await self.processing_client.submit(self.queue_manager.current_snapshot())

    async def delete_screenshot(self, index: int) -> DeletionResult:
        """Delete the screenshot at ``index`` (the per-entry delete control)."""
        return await self.queue_manager.remove_at(index)

    def current_queue(self):
        return self.queue_manager.current_snapshot()

    async def _handle_process_request(self, event_data) -> None:
        """Host asked to process; run outside the event dispatch."""
        logger.info("Processing requested by %s", event_data.source or 'host')
        task = asyncio.ensure_future(self.process_screenshots())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _handle_error(self, event_data) -> None:
        data = event_data.data or {}
        logger.error("Error reported by %s: %s",
                     data.get('original_event', event_data.source), data.get('error'))

    async def _set_state(self, new_state: str) -> None:
        old_state, self._app_state = self._app_state, new_state
        await self.event_bus.emit(
            EventTypes.APP_STATE_CHANGED,
            {
                'old_state': old_state,
                'new_state': new_state,
                'timestamp': datetime.now().isoformat()
            },
            source="QueueController"
        )

    async def get_application_status(self) -> Dict[str, Any]:
        """Snapshot of component state for diagnostics."""
        status: Dict[str, Any] = {
            'initialized': self._initialized,
            'state': self._app_state,
            'screenshot_count': len(self.queue_manager),
            'capacity': self.queue_manager.capacity,
            'processing_state': self.processing_client.state.value,
            'host_subscribed': self.queue_manager.is_active,
        }

        if self.dispatcher is not None:
            status['hotkeys'] = {
                'running': self.dispatcher.is_running,
                'bindings': {action: combo.display_name
                             for action, combo in self.dispatcher.get_bindings().items()}
            }
        if self.tooltip is not None:
            status['tooltip'] = {'visible': self.tooltip.is_visible}

        return status

    async def shutdown(self) -> None:
        """Stop listeners, cancel pending work and drop subscriptions."""
        if not self._initialized:
            return

        logger.info("Shutting down QueueController...")

        try:
            await self._set_state(AppState.SHUTTING_DOWN)

            await self._release()

            logger.info("QueueController shutdown complete")

        except Exception as e:
            logger.error("Error during QueueController shutdown: %s", e)
        finally:
            self._initialized = False

    async def _release(self) -> None:
        """Stop the listener, cancel pending work and drop every subscription."""
        if self.dispatcher is not None:
            await self.dispatcher.stop()

        self.queue_manager.deactivate()
        await self.processing_client.close()

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        for subscription_id in self._subscriptions:
            await self.event_bus.unsubscribe(subscription_id)
        self._subscriptions.clear()

    def __str__(self) -> str:
        return (f"QueueController(initialized={self._initialized}, "
                f"state={self._app_state}, "
                f"screenshots={len(self.queue_manager)})")
