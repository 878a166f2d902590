"""
Screenshot Queue Manager.

Single owner of the bounded, ordered list of captured screenshots. Entries
come from keyboard-triggered captures and from the host's push channel, and
leave through user deletion or eviction when the queue is full.

Mutations never hold an index across a suspension point: each admitted entry
gets a monotonic ``entry_id`` and index-based deletions re-resolve that id
after the host call returns.
"""

import itertools
import logging
from typing import Any, List, Optional, Tuple, Union

from .. import EventTypes, MAX_SCREENSHOTS
from .host_service import HostCaptureService, Unsubscribe
from .screenshot_models import (
    CaptureError, DeletionError, DeletionResult, HostResult, IpcError,
    LoadError, ScreenshotEntry
)

logger = logging.getLogger(__name__)

EntryLike = Union[ScreenshotEntry, dict]


class ScreenshotQueueManager:
    """
    Bounded screenshot queue backed by a host capture service.

    Usable as an async context manager: entering subscribes to the host's
    ``on_screenshot_taken`` channel and leaving always unsubscribes.
    """

    def __init__(
        self,
        host: HostCaptureService,
        event_bus,
        capacity: int = MAX_SCREENSHOTS
    ):
        """
        Initialize ScreenshotQueueManager.

        Args:
            host: Host capture service used for capture, listing and deletion
            event_bus: EventBus for notices and change notifications
            capacity: Maximum number of entries kept
        """
        if capacity < 1:
            raise ValueError("Queue capacity must be at least 1")

        self.host = host
        self.event_bus = event_bus
        self._capacity = capacity

        self._entries: List[ScreenshotEntry] = []
        self._ids = itertools.count(1)
        self._unsubscribe: Optional[Unsubscribe] = None
        self._loaded = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def is_active(self) -> bool:
        """True while subscribed to host captures."""
        return self._unsubscribe is not None

    def __len__(self) -> int:
        return len(self._entries)

    def current_snapshot(self) -> Tuple[ScreenshotEntry, ...]:
        """Read-only copy of the queue, oldest first."""
        return tuple(self._entries)

    async def load(self) -> Tuple[ScreenshotEntry, ...]:
        """
        Hydrate the queue from the host's existing screenshots.

        Entries appended before the snapshot arrives stay after the hydrated
        ones. A failing host call leaves the queue as it is.

        Returns:
            The queue snapshot after hydration (empty on failure)
        """
        try:
            existing = await self.host.get_screenshots()
        except Exception as e:
            error = LoadError(f"Could not load screenshots: {e}")
            logger.error("%s", error)
            await self.event_bus.notify(
                "Error", "Failed to load existing screenshots.", level="error",
                source="ScreenshotQueueManager"
            )
            return ()

        hydrated = []
        known = {entry.path for entry in self._entries}
        for item in existing or []:
            entry = self._coerce(item)
            if entry is None or entry.path in known:
                continue
            known.add(entry.path)
            hydrated.append(entry.with_id(next(self._ids)))

        self._entries = hydrated + self._entries
        evicted = self._evict_overflow()
        self._loaded = True

        logger.info("Loaded %d screenshots from host (%d evicted)", len(hydrated), len(evicted))

        await self.event_bus.emit(
            EventTypes.SCREENSHOT_QUEUE_LOADED,
            {'count': len(self._entries)},
            source="ScreenshotQueueManager"
        )
        await self._emit_changed("load")
        return self.current_snapshot()

    async def append(self, entry: EntryLike) -> Optional[ScreenshotEntry]:
        """
        Add a capture at the tail, evicting the oldest entries past capacity.

        The mutation completes before the first suspension point, so appends
        from different trigger sources cannot interleave.

        Args:
            entry: ScreenshotEntry or ``{path, preview}`` payload

        Returns:
            The admitted entry (with its entry_id), or None when the capture
            was reported twice in a row or the payload was unusable
        """
        candidate = self._coerce(entry)
        if candidate is None:
            return None

        # keyboard result and host push report the same capture back to back
        if self._entries and self._entries[-1].path == candidate.path:
            logger.debug("Capture already at the tail, ignoring repeated report: %s", candidate.path)
            return None

        # an older occurrence of the same file moves to the tail
        self._entries = [existing for existing in self._entries if existing.path != candidate.path]

        admitted = candidate.with_id(next(self._ids))
        self._entries.append(admitted)
        evicted = self._evict_overflow()

        if evicted:
            logger.debug("Evicted %d oldest screenshots", len(evicted))

        await self.event_bus.emit(
            EventTypes.SCREENSHOT_CAPTURED,
            {'entry': admitted.to_dict(), 'evicted': [e.path for e in evicted]},
            source="ScreenshotQueueManager"
        )
        await self._emit_changed("append")
        return admitted

    async def remove_at(self, index: int) -> DeletionResult:
        """
        Delete the screenshot at ``index`` from disk, then from the queue.

        The in-memory entry is only removed once the host confirms the file
        is gone; any failure leaves the queue untouched.

        Args:
            index: Position in the current queue

        Returns:
            DeletionResult describing the outcome
        """
        if not isinstance(index, int) or not 0 <= index < len(self._entries):
            message = f"No screenshot at index {index} (queue holds {len(self._entries)})"
            logger.warning(message)
            await self.event_bus.notify(
                "Error", "That screenshot is no longer in the queue.", level="error",
                source="ScreenshotQueueManager"
            )
            return DeletionResult(success=False, index=index, error=message)

        entry = self._entries[index]

        try:
            response = HostResult.from_response(await self.host.delete_screenshot(entry.path))
        except Exception as e:
            error = IpcError(f"Delete request failed for {entry.path}: {e}")
            logger.error("Error deleting screenshot: %s", error)
            await self.event_bus.notify(
                "Error", "An unexpected error occurred while deleting the screenshot.",
                level="error", source="ScreenshotQueueManager"
            )
            return DeletionResult(success=False, index=index, entry=entry, error=str(error))

        if not response.success:
            error = DeletionError(response.error or f"Host refused to delete {entry.path}")
            logger.error("Failed to delete screenshot: %s", error)
            await self.event_bus.notify(
                "Error", "Failed to delete the screenshot file.", level="error",
                source="ScreenshotQueueManager"
            )
            return DeletionResult(success=False, index=index, entry=entry, error=str(error))

        # the queue may have shifted while the host call was pending
        current_index = self._index_of(entry)
        if current_index is None:
            logger.info("Screenshot was evicted before deletion completed: %s", entry.path)
        else:
            del self._entries[current_index]
            await self._emit_changed("remove")

        await self.event_bus.emit(
            EventTypes.SCREENSHOT_DELETED,
            {'entry': entry.to_dict(), 'index': index},
            source="ScreenshotQueueManager"
        )
        return DeletionResult(success=True, index=index, entry=entry)

    async def capture(self) -> Optional[ScreenshotEntry]:
        """
        Ask the host for a new screenshot and queue it.

        Returns:
            The admitted entry, or None if the capture failed
        """
        try:
            entry = await self.host.take_screenshot()
        except CaptureError as e:
            logger.error("Error taking screenshot: %s", e)
            await self.event_bus.notify(
                "Error", "Failed to take screenshot.", level="error",
                source="ScreenshotQueueManager"
            )
            return None
        except Exception as e:
            logger.error("Error taking screenshot: %s", IpcError(str(e)))
            await self.event_bus.notify(
                "Error", "Failed to take screenshot.", level="error",
                source="ScreenshotQueueManager"
            )
            return None

        return await self.append(entry)

    def activate(self) -> None:
        """Subscribe to host captures; calling twice keeps one subscription."""
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self.host.on_screenshot_taken(self._on_host_screenshot)
        logger.debug("Subscribed to host screenshot events")

    def deactivate(self) -> None:
        """Drop the host subscription if one is held."""
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is None:
            return
        try:
            unsubscribe()
        except Exception as e:
            logger.warning("Error unsubscribing from host screenshot events: %s", e)
        logger.debug("Unsubscribed from host screenshot events")

    async def __aenter__(self) -> 'ScreenshotQueueManager':
        self.activate()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.deactivate()

    async def _on_host_screenshot(self, payload: Any) -> None:
        """Callback for the host push channel."""
        try:
            await self.append(payload)
        except Exception as e:
            logger.error("Error handling host screenshot event: %s", e)

    def _evict_overflow(self) -> List[ScreenshotEntry]:
        overflow = len(self._entries) - self._capacity
        if overflow <= 0:
            return []
        evicted = self._entries[:overflow]
        del self._entries[:overflow]
        return evicted

    def _index_of(self, entry: ScreenshotEntry) -> Optional[int]:
        for i, current in enumerate(self._entries):
            if current.entry_id == entry.entry_id:
                return i
        return None

    def _coerce(self, item: EntryLike) -> Optional[ScreenshotEntry]:
        if isinstance(item, ScreenshotEntry):
            return item
        if isinstance(item, dict):
            try:
                return ScreenshotEntry.from_dict(item)
            except ValueError as e:
                logger.warning("Ignoring malformed screenshot payload: %s", e)
                return None
        logger.warning("Ignoring unexpected screenshot payload: %r", item)
        return None

    async def _emit_changed(self, reason: str) -> None:
        await self.event_bus.emit(
            EventTypes.SCREENSHOT_QUEUE_CHANGED,
            {
                'reason': reason,
                'count': len(self._entries),
                'paths': [entry.path for entry in self._entries]
            },
            source="ScreenshotQueueManager"
        )

    def __str__(self) -> str:
        return (f"ScreenshotQueueManager(count={len(self._entries)}, "
                f"capacity={self._capacity}, active={self.is_active})")
