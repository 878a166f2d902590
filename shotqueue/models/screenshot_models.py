"""
Data models for the screenshot queue.

Entries, processing state, tooltip state, result records returned by the
host bridge and the pipeline client, and the error hierarchy shared by every
component.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ScreenshotEntry:
    """A captured image reference as reported by the host."""

    path: str
    preview: str = ""
    entry_id: Optional[int] = field(default=None, compare=False)

    @property
    def filename(self) -> str:
        """Base name of the underlying file."""
        return Path(self.path).name

    def with_id(self, entry_id: int) -> 'ScreenshotEntry':
        """Copy of this entry carrying a queue-assigned identifier."""
        return ScreenshotEntry(path=self.path, preview=self.preview, entry_id=entry_id)

    def to_dict(self) -> dict:
        """Convert to dictionary for event payloads."""
        return {
            'path': self.path,
            'preview': self.preview,
            'entry_id': self.entry_id
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScreenshotEntry':
        """
        Create from a host payload such as ``{"path": ..., "preview": ...}``.

        Raises:
            ValueError: If the payload has no usable path
        """
        path = data.get('path')
        if not path:
            raise ValueError(f"Screenshot payload without path: {data!r}")
        return cls(path=str(path), preview=str(data.get('preview') or ""))


class ProcessingState(Enum):
    """Submission lifecycle of the processing pipeline."""
    IDLE = "idle"
    IN_FLIGHT = "in_flight"


@dataclass
class TooltipState:
    """Hover tooltip visibility and its last measured height."""
    visible: bool = False
    measured_height: float = 0.0


@dataclass
class HostResult:
    """Outcome of a host bridge command."""
    success: bool
    error: Optional[str] = None

    @classmethod
    def from_response(cls, response: Any) -> 'HostResult':
        """Normalize a ``{success, error?}`` mapping or a HostResult."""
        if isinstance(response, HostResult):
            return response
        if isinstance(response, dict):
            return cls(success=bool(response.get('success')), error=response.get('error'))
        return cls(success=False, error=f"Unexpected host response: {response!r}")


@dataclass
class DeletionResult:
    """Outcome of removing one entry from the queue."""
    success: bool
    index: int
    entry: Optional[ScreenshotEntry] = None
    error: Optional[str] = None


@dataclass
class SubmissionResult:
    """Outcome of one processing submission attempt."""
    success: bool
    state: ProcessingState = ProcessingState.IDLE
    image_count: int = 0
    status_code: Optional[int] = None
    response_text: Optional[str] = None
    error: Optional[str] = None
    rejected: bool = False


class ShotQueueError(Exception):
    """Base exception for screenshot queue errors."""
    pass


class CaptureError(ShotQueueError):
    """Raised when the host denies or fails a capture."""
    pass


class DeletionError(ShotQueueError):
    """Raised when the underlying file deletion fails."""
    pass


class LoadError(ShotQueueError):
    """Raised when the initial snapshot fetch fails."""
    pass


class SubmissionError(ShotQueueError):
    """Raised on network failure or timeout while processing."""
    pass


class IpcError(ShotQueueError):
    """Raised when a host bridge call rejects."""
    pass
