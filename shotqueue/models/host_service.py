"""
Host Capture Service.

The host owns screen capture, image files on disk and the application
window. The queue core only talks to it through ``HostCaptureService``.
``LocalCaptureService`` is the in-process implementation used when the
application runs stand-alone: Pillow grabs the screen, images are written
atomically into the screenshot directory and previews are JPEG thumbnails
encoded as ``data:`` URLs.
"""

import asyncio
import base64
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime
from io import BytesIO
from pathlib import Path
from typing import Any, Callable, List, MutableMapping, Optional, Tuple

from PIL import Image

from .. import EventTypes
from .screenshot_models import CaptureError, HostResult, ScreenshotEntry

logger = logging.getLogger(__name__)

ScreenshotCallback = Callable[[ScreenshotEntry], Any]
Unsubscribe = Callable[[], None]

IMAGE_EXTENSIONS = {'.png', '.jpg', '.jpeg', '.bmp', '.tiff'}


class HostCaptureService(ABC):
    """IPC contract exposed by the host process."""

    @abstractmethod
    async def get_screenshots(self) -> List[ScreenshotEntry]:
        """Return the host's current screenshot snapshot, oldest first."""

    @abstractmethod
    async def take_screenshot(self) -> ScreenshotEntry:
        """Capture the screen; raises CaptureError on denial or I/O failure."""

    @abstractmethod
    async def delete_screenshot(self, path: str) -> HostResult:
        """Delete the file behind a screenshot."""

    @abstractmethod
    def on_screenshot_taken(self, callback: ScreenshotCallback) -> Unsubscribe:
        """Register for captures made outside the core; returns an unsubscribe handle."""

    @abstractmethod
    async def clear_store(self) -> HostResult:
        """Clear the host's persisted store (API key and preferences)."""

    @abstractmethod
    async def toggle_main_window(self) -> HostResult:
        """Show or hide the main window."""

    @abstractmethod
    async def trigger_screenshot(self) -> HostResult:
        """Ask the host to capture; the result arrives via on_screenshot_taken."""

    @abstractmethod
    async def trigger_process_screenshots(self) -> HostResult:
        """Ask the host to start processing the current queue."""

    @abstractmethod
    def update_tooltip_layout(self, visible: bool, height: float) -> None:
        """Resize the overlay window for the tooltip."""


class LocalCaptureService(HostCaptureService):
    """
    Pillow-backed host running inside the application process.

    Captures are saved under ``screenshot_dir`` using the
    ``screenshot_YYYYMMDD_HHMMSS_mmm`` naming scheme.
    """

    def __init__(
        self,
        event_bus,
        screenshot_dir: str,
        image_format: str = "PNG",
        thumbnail_size: Tuple[int, int] = (120, 120),
        grab: Optional[Callable[[], Any]] = None,
        store: Optional[MutableMapping[str, Any]] = None
    ):
        """
        Initialize LocalCaptureService.

        Args:
            event_bus: EventBus used for host window requests
            screenshot_dir: Directory holding captured images
            image_format: Pillow format name used when saving
            thumbnail_size: Bounding box of generated previews
            grab: Callable returning a PIL image (defaults to ImageGrab.grab)
            store: Mapping cleared by clear_store()
        """
        self.event_bus = event_bus
        self.screenshot_dir = Path(screenshot_dir)
        self.image_format = "JPEG" if image_format.upper() == "JPG" else image_format.upper()
        self.thumbnail_size = thumbnail_size
        self._grab = grab
        self.store: MutableMapping[str, Any] = store if store is not None else {}

        self._callbacks: List[ScreenshotCallback] = []
        self.window_visible = True
        self.tooltip_layout: Tuple[bool, float] = (False, 0.0)

    async def get_screenshots(self) -> List[ScreenshotEntry]:
        if not self.screenshot_dir.exists():
            return []

        loop = asyncio.get_running_loop()
        files = await loop.run_in_executor(None, self._list_image_files)

        entries = []
        for file_path in files:
            preview = await loop.run_in_executor(None, self._build_preview, file_path)
            entries.append(ScreenshotEntry(path=str(file_path), preview=preview))

        logger.debug("Found %d screenshots in %s", len(entries), self.screenshot_dir)
        return entries

    async def take_screenshot(self) -> ScreenshotEntry:
        loop = asyncio.get_running_loop()

        try:
            image = await loop.run_in_executor(None, self._grab_screen)
        except Exception as e:
            raise CaptureError(f"Screen capture failed: {e}") from e

        if image is None:
            raise CaptureError("Screen capture returned no image")

        try:
            self.screenshot_dir.mkdir(parents=True, exist_ok=True)
            full_path = self.screenshot_dir / self._generate_filename()
            await loop.run_in_executor(None, self._save_image_atomic, image, full_path)
            preview = await loop.run_in_executor(None, self._build_preview, full_path)
        except OSError as e:
            raise CaptureError(f"Failed to save screenshot: {e}") from e

        logger.info("Screenshot captured: %s", full_path)
        return ScreenshotEntry(path=str(full_path), preview=preview)

    async def delete_screenshot(self, path: str) -> HostResult:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, os.remove, path)
        except FileNotFoundError:
            return HostResult(success=False, error=f"File not found: {path}")
        except OSError as e:
            logger.warning("Failed to delete screenshot %s: %s", path, e)
            return HostResult(success=False, error=str(e))

        logger.debug("Deleted screenshot file: %s", path)
        return HostResult(success=True)

    def on_screenshot_taken(self, callback: ScreenshotCallback) -> Unsubscribe:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        """Number of registered capture callbacks."""
        return len(self._callbacks)

    async def clear_store(self) -> HostResult:
        self.store.clear()
        logger.info("Host store cleared")
        return HostResult(success=True)

    async def toggle_main_window(self) -> HostResult:
        self.window_visible = not self.window_visible
        await self.event_bus.emit(
            EventTypes.HOST_WINDOW_TOGGLED,
            {'visible': self.window_visible},
            source="LocalCaptureService"
        )
        return HostResult(success=True)

    async def trigger_screenshot(self) -> HostResult:
        try:
            entry = await self.take_screenshot()
        except CaptureError as e:
            return HostResult(success=False, error=str(e))

        await self._notify_screenshot_taken(entry)
        return HostResult(success=True)

    async def trigger_process_screenshots(self) -> HostResult:
        await self.event_bus.emit(
            EventTypes.HOST_PROCESS_REQUESTED,
            {'requested_at': datetime.now().isoformat()},
            source="LocalCaptureService"
        )
        return HostResult(success=True)

    def update_tooltip_layout(self, visible: bool, height: float) -> None:
        self.tooltip_layout = (visible, height)
        logger.debug("Overlay resized for tooltip: visible=%s height=%s", visible, height)

    async def _notify_screenshot_taken(self, entry: ScreenshotEntry) -> None:
        """Deliver one capture to every registered callback."""
        for callback in list(self._callbacks):
            try:
                result = callback(entry)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("Screenshot callback failed: %s", e)

    def _grab_screen(self) -> Any:
        if self._grab is not None:
            return self._grab()

        from PIL import ImageGrab
        return ImageGrab.grab()

    def _list_image_files(self) -> List[Path]:
        files = [
            p for p in self.screenshot_dir.iterdir()
            if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
        ]
        files.sort(key=lambda p: p.stat().st_mtime)
        return files

    def _save_image_atomic(self, image: Any, full_path: Path) -> None:
        """Write to a temporary file in the target directory, then rename."""
        temp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                dir=full_path.parent,
                prefix=f".{full_path.name}.",
                suffix=".tmp",
                delete=False
            ) as temp_file:
                temp_path = temp_file.name

            image.save(temp_path, self.image_format)

            if os.path.getsize(temp_path) == 0:
                raise OSError("Temporary file is empty")

            os.replace(temp_path, full_path)
            temp_path = None
        finally:
            if temp_path and os.path.exists(temp_path):
                os.remove(temp_path)

    def _build_preview(self, file_path: Path) -> str:
        """JPEG thumbnail as a data URL; empty string if the image is unreadable."""
        try:
            with Image.open(file_path) as img:
                if img.mode != 'RGB':
                    img = img.convert('RGB')
                img.thumbnail(self.thumbnail_size, Image.Resampling.LANCZOS)

                buffer = BytesIO()
                img.save(buffer, format='JPEG', quality=80, optimize=True)
        except (OSError, ValueError) as e:
            logger.debug("Could not build preview for %s: %s", file_path, e)
            return ""

        encoded = base64.b64encode(buffer.getvalue()).decode('ascii')
        return f"data:image/jpeg;base64,{encoded}"

    def _generate_filename(self) -> str:
        """Unique timestamped filename with collision resolution."""
        now = datetime.now()
        base = f"screenshot_{now.strftime('%Y%m%d_%H%M%S')}_{now.microsecond // 1000:03d}"
        extension = ".jpg" if self.image_format in ("JPEG", "JPG") else f".{self.image_format.lower()}"

        filename = f"{base}{extension}"
        counter = 1
        while (self.screenshot_dir / filename).exists():
            filename = f"{base}_{counter}{extension}"
            counter += 1
        return filename
