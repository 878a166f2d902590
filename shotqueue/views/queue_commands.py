"""
Queue Commands Panel

Backing logic for the keyboard shortcut panel shown next to the queue:
toggle the main window, take a screenshot, solve (submit the queue) and
reset the stored API key. Every action goes through the host capture
service and turns a failure into a user-visible notice.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List

from .. import EventTypes
from ..controllers.keyboard_dispatcher import ACTION_CAPTURE, ACTION_PROCESS, resolve_primary_modifier
from ..models.screenshot_models import HostResult

logger = logging.getLogger(__name__)


@dataclass
class CommandRow:
    """One row of the shortcut panel."""
    action: str
    label: str
    shortcut: str
    hint: str
    enabled: bool = True


class QueueCommands:
    """Shortcut panel actions."""

    def __init__(
        self,
        host,
        event_bus,
        screenshot_count: Callable[[], int],
        dispatcher=None
    ):
        """
        Initialize QueueCommands.

        Args:
            host: HostCaptureService receiving the commands
            event_bus: EventBus for notices and reload requests
            screenshot_count: Returns the current queue length
            dispatcher: Optional KeyboardDispatcher used to label shortcuts
        """
        self.host = host
        self.event_bus = event_bus
        self._screenshot_count = screenshot_count
        self.dispatcher = dispatcher

    @property
    def can_solve(self) -> bool:
        return self._screenshot_count() > 0

    async def toggle_window(self) -> bool:
        return await self._run("toggle window", self.host.toggle_main_window,
                               "Failed to toggle window")

    async def take_screenshot(self) -> bool:
        """Ask the host to capture; the image arrives through the push channel."""
        return await self._run("take screenshot", self.host.trigger_screenshot,
                               "Failed to take screenshot")

    async def solve(self) -> bool:
        """Ask the host to process the queue; does nothing while it is empty."""
        if not self.can_solve:
            logger.debug("Solve ignored: no screenshots queued")
            return False
        return await self._run("process screenshots", self.host.trigger_process_screenshots,
                               "Failed to process screenshots")

    async def reset_api_key(self) -> bool:
        """Clear the host store and request an application reload."""
        ok = await self._run("reset API key", self.host.clear_store, "Failed to reset API key")
        if ok:
            await self.event_bus.emit(
                EventTypes.APP_RELOAD_REQUESTED,
                {'reason': 'api_key_reset'},
                source="QueueCommands"
            )
        return ok

    def describe(self) -> List[CommandRow]:
        """Rows of the shortcut panel in display order."""
        can_solve = self.can_solve
        return [
            CommandRow(
                action="toggle_window",
                label="Toggle Window",
                shortcut=f"{self._primary_label()}+B",
                hint="Show or hide this window."
            ),
            CommandRow(
                action=ACTION_CAPTURE,
                label="Take Screenshot",
                shortcut=self._shortcut_for(ACTION_CAPTURE, "H"),
                hint="Take a screenshot of the problem description."
            ),
            CommandRow(
                action=ACTION_PROCESS,
                label="Solve Problem",
                shortcut=self._shortcut_for(ACTION_PROCESS, "J"),
                hint=("Generate a solution based on the current problem." if can_solve
                      else "Take a screenshot first to generate a solution."),
                enabled=can_solve
            ),
        ]

    def _primary_label(self) -> str:
        if self.dispatcher is not None:
            return self.dispatcher.primary_modifier.title()
        return resolve_primary_modifier().title()

    def _shortcut_for(self, action: str, fallback_key: str) -> str:
        if self.dispatcher is not None:
            combo = self.dispatcher.get_bindings().get(action)
            if combo is not None:
                return combo.display_name
        return f"{self._primary_label()}+Shift+{fallback_key}"

    async def _run(
        self,
        description: str,
        command: Callable[[], Awaitable[HostResult]],
        failure_message: str
    ) -> bool:
        try:
            result = HostResult.from_response(await command())
        except Exception as e:
            logger.error("Error trying to %s: %s", description, e)
            await self.event_bus.notify("Error", failure_message, level="error", source="QueueCommands")
            return False

        if not result.success:
            logger.error("Failed to %s: %s", description, result.error)
            await self.event_bus.notify("Error", failure_message, level="error", source="QueueCommands")
            return False

        return True
