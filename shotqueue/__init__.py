"""
ShotQueue Application

A small desktop helper that captures screenshots with a global shortcut,
keeps the most recent ones in a bounded queue and submits them to a remote
analysis service on demand.
"""

from pathlib import Path

__version__ = "0.1.0"
__author__ = "ShotQueue Team"
__description__ = "Screenshot queue with remote analysis submission"

# Application metadata
APP_NAME = "ShotQueue"
APP_VERSION = __version__
APP_AUTHOR = __author__
APP_DESCRIPTION = __description__


def get_app_data_dir() -> str:
    """
    Get the application data directory for logs and captured images.

    On Windows, this uses %APPDATA%\\ShotQueue
    On other platforms, this uses $XDG_CONFIG_HOME/ShotQueue or ~/.config/ShotQueue

    Returns:
        Path to the application data directory as a string
    """
    import os

    if os.name == 'nt':
        appdata = os.getenv('APPDATA')
        if appdata:
            return str(Path(appdata) / APP_NAME)
        return str(Path.home() / f".{APP_NAME.lower()}")

    xdg_config = os.getenv('XDG_CONFIG_HOME')
    if xdg_config:
        return str(Path(xdg_config) / APP_NAME)
    return str(Path.home() / ".config" / APP_NAME)


# Configuration constants
MAX_SCREENSHOTS = 10
DEFAULT_SCREENSHOT_DIR = str(Path(get_app_data_dir()) / "screenshots")
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_ENDPOINT_URL = "http://0.0.0.0:8000/process_images"
DEFAULT_TIMEOUT_SECONDS = 30.0

DEFAULT_TEXT_PROMPT = (
    "Analyze the coding problem in the images and provide three possible solutions "
    "with different approaches and trade-offs. For each solution, include: \n"
    "1. Initial thoughts: 2-3 first impressions and key observations about the problem\n"
    "2. Thought steps: A natural progression of how you would think through implementing "
    "this solution, as if explaining to an interviewer\n"
    "3. Detailed explanation of the approach and its trade-offs\n"
    "4. Complete, well-commented code implementation\n"
    "Structure the solutions from simplest/most intuitive to most optimized. "
    "Focus on clear explanation and clean code."
)


class EventTypes:
    """Central registry of event types for the EventBus system."""

    # Application lifecycle
    APP_READY = "app.ready"
    APP_SHUTDOWN_REQUESTED = "app.shutdown_requested"
    APP_SHUTDOWN_STARTING = "app.shutdown_starting"
    APP_STATE_CHANGED = "app.state_changed"
    APP_RELOAD_REQUESTED = "app.reload_requested"

    # Screenshot queue
    SCREENSHOT_CAPTURED = "screenshot.captured"
    SCREENSHOT_DELETED = "screenshot.deleted"
    SCREENSHOT_QUEUE_LOADED = "screenshot.queue.loaded"
    SCREENSHOT_QUEUE_CHANGED = "screenshot.queue.changed"

    # Processing pipeline
    PROCESSING_STARTED = "processing.started"
    PROCESSING_COMPLETED = "processing.completed"
    PROCESSING_FAILED = "processing.failed"
    PROCESSING_STATE_CHANGED = "processing.state_changed"

    # Host window requests
    HOST_PROCESS_REQUESTED = "host.process_requested"
    HOST_WINDOW_TOGGLED = "host.window_toggled"

    # Tooltip layout
    TOOLTIP_LAYOUT_CHANGED = "tooltip.layout_changed"

    # Settings events
    SETTINGS_UPDATED = "settings.updated"

    # User-visible notices and errors
    NOTICE_SHOWN = "notice.shown"
    ERROR_OCCURRED = "error.occurred"

    # Hotkey events
    HOTKEY_SCREENSHOT_CAPTURE = "hotkey.capture_screenshot"
    HOTKEY_PROCESS_SCREENSHOTS = "hotkey.process_screenshots"
    HOTKEY_HANDLER_READY = "hotkey.handler.ready"
    HOTKEY_HANDLER_ERROR = "hotkey.handler.error"
    HOTKEY_HANDLER_SHUTDOWN = "hotkey.handler.shutdown"


class AppState:
    """Application state enumeration."""
    STARTING = "starting"
    READY = "ready"
    ERROR = "error"
    SHUTTING_DOWN = "shutting_down"
