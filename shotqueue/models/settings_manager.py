"""
Settings Manager Module

Dataclass-backed application configuration with dot-notation access,
validation and change notifications. Persistence is delegated to an optional
store object (``get_all_settings()`` / ``set_setting(key, value)``); without
one, settings live in memory for the lifetime of the process.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

import httpx

from .. import (
    DEFAULT_ENDPOINT_URL, DEFAULT_SCREENSHOT_DIR, DEFAULT_TEXT_PROMPT,
    DEFAULT_TIMEOUT_SECONDS, EventTypes
)

logger = logging.getLogger(__name__)


def _is_http_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        url = httpx.URL(value)
    except httpx.InvalidURL:
        return False
    return url.scheme in ('http', 'https') and bool(url.host)


@dataclass
class HotkeyConfig:
    """Global keyboard chords."""
    capture_screenshot: str = "primary+shift+h"
    process_screenshots: str = "primary+shift+j"
    primary_modifier: str = "auto"  # "auto", "ctrl" or "cmd"
    enabled: bool = True


@dataclass
class ProcessingConfig:
    """Remote analysis endpoint."""
    endpoint_url: str = DEFAULT_ENDPOINT_URL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    text_prompt: str = DEFAULT_TEXT_PROMPT
    upload_files: bool = False


@dataclass
class ScreenshotConfig:
    """Local capture storage."""
    save_directory: str = DEFAULT_SCREENSHOT_DIR
    image_format: str = "PNG"
    thumbnail_size: Tuple[int, int] = (120, 120)


@dataclass
class TooltipConfig:
    """Tooltip layout negotiation."""
    margin: float = 10.0


@dataclass
class ApplicationSettings:
    """Complete application settings."""
    version: str = "0.1.0"
    debug_mode: bool = False
    log_level: str = "INFO"

    hotkeys: HotkeyConfig = field(default_factory=HotkeyConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    screenshot: ScreenshotConfig = field(default_factory=ScreenshotConfig)
    tooltip: TooltipConfig = field(default_factory=TooltipConfig)

    last_updated: Optional[str] = None
    update_count: int = 0


class SettingsValidationError(Exception):
    """Exception raised when settings validation fails."""
    pass


class SettingsManager:
    """
    Application settings manager.

    Settings are loaded lazily on first access, merged over the dataclass
    defaults, and every change is announced on the EventBus.
    """

    def __init__(self, event_bus=None, store=None, validate_on_load: bool = True):
        """
        Initialize SettingsManager.

        Args:
            event_bus: EventBus for SETTINGS_UPDATED notifications
            store: Optional persistence backend
            validate_on_load: Whether to validate settings when loading
        """
        self.event_bus = event_bus
        self.store = store
        self.validate_on_load = validate_on_load

        self._settings: Optional[ApplicationSettings] = None
        self._settings_lock = asyncio.Lock()
        self._validation_rules = self._setup_validation_rules()

    def _setup_validation_rules(self) -> Dict[str, Callable[[Any], bool]]:
        return {
            'log_level': lambda x: x in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'),
            'hotkeys.primary_modifier': lambda x: x in ('auto', 'ctrl', 'cmd'),
            'hotkeys.capture_screenshot': lambda x: isinstance(x, str) and '+' in x,
            'hotkeys.process_screenshots': lambda x: isinstance(x, str) and '+' in x,
            'processing.endpoint_url': _is_http_url,
            'processing.timeout_seconds': lambda x: 0 < x <= 300,
            'processing.text_prompt': lambda x: isinstance(x, str) and bool(x.strip()),
            'screenshot.image_format': lambda x: str(x).upper() in ('PNG', 'JPEG', 'JPG', 'BMP', 'TIFF'),
            'tooltip.margin': lambda x: 0 <= x <= 100,
        }

    async def load_settings(self) -> ApplicationSettings:
        """
        Load settings, merging stored overrides over defaults.

        Returns:
            ApplicationSettings instance
        """
        async with self._settings_lock:
            if self._settings is not None:
                return self._settings

            overrides: Dict[str, Any] = {}
            if self.store is not None:
                try:
                    overrides = await self.store.get_all_settings() or {}
                except Exception as e:
                    logger.error("Failed to read stored settings, using defaults: %s", e)

            self._settings = self._merge_with_defaults(overrides)

            if self.validate_on_load:
                self._validate_all(self._settings)

            logger.info("Settings loaded (%d overrides)", len(overrides))
            return self._settings

    def _merge_with_defaults(self, overrides: Dict[str, Any]) -> ApplicationSettings:
        settings = ApplicationSettings()
        for key, value in overrides.items():
            self._set_nested_value(settings, key, value)
        return settings

    def _set_nested_value(self, obj: Any, key: str, value: Any) -> bool:
        parts = key.split('.')
        current = obj

        for part in parts[:-1]:
            if not hasattr(current, part):
                logger.warning("Invalid settings key: %s", key)
                return False
            current = getattr(current, part)

        if not hasattr(current, parts[-1]):
            logger.warning("Invalid settings key: %s", key)
            return False

        setattr(current, parts[-1], value)
        return True

    def _get_nested_value(self, obj: Any, key: str) -> Any:
        current = obj
        for part in key.split('.'):
            if not hasattr(current, part):
                return None
            current = getattr(current, part)
        return current

    def _flatten_settings(self, settings: ApplicationSettings) -> Dict[str, Any]:
        flat: Dict[str, Any] = {}
        for key, value in asdict(settings).items():
            if isinstance(value, dict):
                for sub_key, sub_value in value.items():
                    flat[f"{key}.{sub_key}"] = sub_value
            else:
                flat[key] = value
        return flat

    async def get_setting(self, key: str, default: Any = None) -> Any:
        """
        Get a setting value by dot-notation key.

        Args:
            key: Setting key such as ``processing.timeout_seconds``
            default: Value returned when the key is unknown

        Returns:
            Setting value or default
        """
        settings = await self.load_settings()
        value = self._get_nested_value(settings, key)
        return value if value is not None else default

    async def update_setting(self, key: str, value: Any) -> bool:
        """
        Validate, store and announce one setting change.

        Returns:
            True if the setting was updated
        """
        if not self.validate_setting(key, value):
            logger.warning("Rejected invalid value for '%s': %r", key, value)
            return False

        settings = await self.load_settings()
        if not self._set_nested_value(settings, key, value):
            return False

        if self.store is not None:
            try:
                await self.store.set_setting(key, value)
            except Exception as e:
                logger.error("Failed to persist setting '%s': %s", key, e)

        settings.last_updated = datetime.now().isoformat()
        settings.update_count += 1

        if self.event_bus is not None:
            await self.event_bus.emit(
                EventTypes.SETTINGS_UPDATED,
                {'key': key, 'value': value, 'timestamp': settings.last_updated},
                source="SettingsManager"
            )

        logger.info("Setting updated: %s", key)
        return True

    def validate_setting(self, key: str, value: Any) -> bool:
        """Check a value against the validation rule for its key, if any."""
        rule = self._validation_rules.get(key)
        if rule is None:
            return True
        try:
            return bool(rule(value))
        except Exception as e:
            logger.warning("Validation error for '%s': %s", key, e)
            return False

    def _validate_all(self, settings: ApplicationSettings) -> None:
        errors = [
            f"Invalid value for '{key}': {value!r}"
            for key, value in self._flatten_settings(settings).items()
            if not self.validate_setting(key, value)
        ]
        if errors:
            raise SettingsValidationError(f"Settings validation failed: {'; '.join(errors)}")

    async def reset_to_defaults(self) -> None:
        """Replace every setting with its default value."""
        async with self._settings_lock:
            self._settings = ApplicationSettings()

        if self.event_bus is not None:
            await self.event_bus.emit(
                EventTypes.SETTINGS_UPDATED,
                {'full_save': True, 'timestamp': datetime.now().isoformat()},
                source="SettingsManager"
            )
        logger.info("All settings reset to defaults")

    async def export_settings(self) -> Dict[str, Any]:
        """Flat dot-notation view of the current settings."""
        settings = await self.load_settings()
        return self._flatten_settings(settings)

    def __str__(self) -> str:
        if self._settings is None:
            return "SettingsManager(not loaded)"
        return f"SettingsManager(version={self._settings.version}, updates={self._settings.update_count})"
