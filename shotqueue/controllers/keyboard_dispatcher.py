"""
Keyboard Command Dispatcher

Global key chord detection using pynput. Key events arrive on the listener
thread, are matched against the bound chords there, and every match is handed
to the asyncio loop with ``call_soon_threadsafe``. Each fired action runs as
its own task so a slow submission never delays the next capture.
"""

import asyncio
import logging
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from .. import EventTypes

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[Any]]

ACTION_CAPTURE = "capture_screenshot"
ACTION_PROCESS = "process_screenshots"

DEFAULT_CHORDS = {
    ACTION_CAPTURE: "primary+shift+h",
    ACTION_PROCESS: "primary+shift+j",
}

ACTION_EVENTS = {
    ACTION_CAPTURE: EventTypes.HOTKEY_SCREENSHOT_CAPTURE,
    ACTION_PROCESS: EventTypes.HOTKEY_PROCESS_SCREENSHOTS,
}

MODIFIER_KEYS = {'ctrl', 'alt', 'shift', 'cmd'}

MODIFIER_ALIASES = {
    'control': 'ctrl',
    'option': 'alt',
    'win': 'cmd',
    'meta': 'cmd',
    'super': 'cmd',
}


@dataclass
class HotkeyCombo:
    """A parsed key chord."""
    modifiers: Set[str] = field(default_factory=set)
    key: str = ""
    display_name: str = ""
    raw_combination: str = ""

    def __post_init__(self):
        if not self.display_name and self.raw_combination:
            self.display_name = self._format_display_name()

    def _format_display_name(self) -> str:
        if not self.modifiers or not self.key:
            return self.raw_combination

        mod_order = ['ctrl', 'cmd', 'alt', 'shift']
        sorted_mods = sorted(self.modifiers, key=lambda x: mod_order.index(x) if x in mod_order else 999)

        display_mods = [mod.title() for mod in sorted_mods]
        display_key = self.key.upper() if len(self.key) == 1 else self.key.title()

        return "+".join(display_mods + [display_key])

    def matches_event(self, pressed_keys: Set[str], key: str) -> bool:
        """Exact match: held modifiers equal the chord's, key compared case-insensitively."""
        return self.modifiers == pressed_keys and self.key.lower() == key.lower()


@dataclass
class ChordBinding:
    """An action bound to a chord."""
    action: str
    combination: HotkeyCombo
    callback: Action
    last_triggered: Optional[datetime] = None
    trigger_count: int = 0


class HotkeyValidationError(Exception):
    """Exception raised when a chord string is invalid."""
    pass


def resolve_primary_modifier(setting: str = "auto", platform: Optional[str] = None) -> str:
    """Map the ``primary`` modifier to ``cmd`` on macOS and ``ctrl`` elsewhere."""
    if setting in ('ctrl', 'cmd'):
        return setting
    platform = platform or sys.platform
    return 'cmd' if platform == 'darwin' else 'ctrl'


class KeyboardDispatcher:
    """
    Global shortcut dispatcher.

    The action table is supplied with ``rebind()``; chords come from the
    ``hotkeys`` settings section and default to ``primary+shift+h`` (capture)
    and ``primary+shift+j`` (process).
    """

    def __init__(
        self,
        event_bus,
        settings_manager=None,
        platform: Optional[str] = None,
        listener_factory: Optional[Callable[['KeyboardDispatcher'], Any]] = None
    ):
        """
        Initialize KeyboardDispatcher.

        Args:
            event_bus: EventBus for hotkey events and failure notices
            settings_manager: Optional SettingsManager providing chord settings
            platform: Platform name used to resolve ``primary`` (sys.platform by default)
            listener_factory: Builds the key listener; defaults to a pynput Listener
        """
        self.event_bus = event_bus
        self.settings_manager = settings_manager
        self.platform = platform or sys.platform
        self._listener_factory = listener_factory or self._create_listener

        self._chords: Dict[str, str] = dict(DEFAULT_CHORDS)
        self._primary_setting = "auto"
        self._enabled = True

        self._actions: Dict[str, Action] = {}
        self._bindings: Dict[str, ChordBinding] = {}

        self._listener: Optional[Any] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._settings_subscription: Optional[str] = None

        # listener thread state
        self._pressed_keys: Set[str] = set()
        self._fired_keys: Set[str] = set()

        self._tasks: Set[asyncio.Task] = set()

        logger.debug("KeyboardDispatcher created (platform=%s)", self.platform)

    @property
    def primary_modifier(self) -> str:
        return resolve_primary_modifier(self._primary_setting, self.platform)

    @property
    def is_running(self) -> bool:
        return self._listener is not None

    def parse_chord(self, combination: str) -> HotkeyCombo:
        """
        Parse a chord string such as ``primary+shift+h``.

        Raises:
            HotkeyValidationError: If the chord is malformed
        """
        if not combination or not isinstance(combination, str):
            raise HotkeyValidationError("Invalid combination format")

        parts = [part.strip().lower() for part in combination.split('+')]
        if len(parts) < 2 or not all(parts):
            raise HotkeyValidationError("Hotkey must have at least one modifier and one key")

        key = parts[-1]
        modifiers = set()
        for part in parts[:-1]:
            if part == 'primary':
                modifiers.add(self.primary_modifier)
            elif part in MODIFIER_KEYS:
                modifiers.add(part)
            elif part in MODIFIER_ALIASES:
                modifiers.add(MODIFIER_ALIASES[part])
            else:
                raise HotkeyValidationError(f"Invalid modifier: {part}")

        combo = HotkeyCombo(modifiers=modifiers, key=key, raw_combination=combination)
        self._validate_key(combo)
        return combo

    def _validate_key(self, combo: HotkeyCombo) -> None:
        if len(combo.key) == 1:
            if not combo.key.isalnum():
                raise HotkeyValidationError(f"Invalid key: {combo.key}")
            return

        allowed_special = {
            'f1', 'f2', 'f3', 'f4', 'f5', 'f6',
            'f7', 'f8', 'f9', 'f10', 'f11', 'f12',
            'esc', 'tab', 'space', 'enter', 'backspace',
            'delete', 'home', 'end', 'page_up', 'page_down',
            'up', 'down', 'left', 'right'
        }
        if combo.key not in allowed_special:
            raise HotkeyValidationError(f"Invalid key: {combo.key}")

    async def load_configuration(self) -> None:
        """Read chords and the primary modifier from settings."""
        if self.settings_manager is None:
            return

        try:
            settings = await self.settings_manager.load_settings()
        except Exception as e:
            logger.error("Failed to load hotkey configuration, using defaults: %s", e)
            return

        config = settings.hotkeys
        self._chords = {
            ACTION_CAPTURE: config.capture_screenshot,
            ACTION_PROCESS: config.process_screenshots,
        }
        self._primary_setting = config.primary_modifier
        self._enabled = config.enabled
        logger.debug("Loaded hotkey configuration: %s", self._chords)

    def rebind(self, actions: Dict[str, Action]) -> Dict[str, HotkeyCombo]:
        """
        Replace the action table.

        The new bindings are built aside and swapped in with one assignment,
        so the listener thread sees either the old table or the new one.

        Args:
            actions: Mapping of action name to coroutine function

        Returns:
            Mapping of action name to the chord it was bound to
        """
        self._actions = dict(actions)
        return self._rebuild_bindings()

    def _rebuild_bindings(self) -> Dict[str, HotkeyCombo]:
        bindings: Dict[str, ChordBinding] = {}

        for action, callback in self._actions.items():
            chord = self._chords.get(action)
            if chord is None:
                logger.warning("No chord configured for action '%s'", action)
                continue

            try:
                combo = self.parse_chord(chord)
            except HotkeyValidationError as e:
                logger.error("Invalid chord '%s' for action '%s': %s", chord, action, e)
                continue

            clash = next((b for b in bindings.values() if b.combination.modifiers == combo.modifiers
                          and b.combination.key == combo.key), None)
            if clash is not None:
                logger.error("Chord %s already bound to '%s', skipping '%s'",
                             combo.display_name, clash.action, action)
                continue

            bindings[action] = ChordBinding(action=action, combination=combo, callback=callback)
            logger.debug("Bound %s -> %s", combo.display_name, action)

        self._bindings = bindings
        return {action: binding.combination for action, binding in bindings.items()}

    def get_bindings(self) -> Dict[str, HotkeyCombo]:
        return {action: binding.combination for action, binding in self._bindings.items()}

    async def start(self) -> bool:
        """
        Load configuration and start the global listener.

        Returns:
            True if the listener is running
        """
        if self._listener is not None:
            logger.warning("Keyboard listener already active")
            return True

        self._loop = asyncio.get_running_loop()

        await self.load_configuration()
        self._rebuild_bindings()

        if self._settings_subscription is None:
            self._settings_subscription = await self.event_bus.subscribe(
                EventTypes.SETTINGS_UPDATED,
                self._handle_settings_updated,
                priority=100
            )

        if not self._enabled:
            logger.info("Global hotkeys disabled in settings")
            return False

        try:
            listener = self._listener_factory(self)
            listener.start()
        except Exception as e:
            logger.error("Failed to start keyboard listener: %s", e)
            await self.event_bus.emit(
                EventTypes.HOTKEY_HANDLER_ERROR,
                {'error_type': 'listener_failed', 'error_message': str(e)},
                source="KeyboardDispatcher"
            )
            return False

        self._listener = listener

        await self.event_bus.emit(
            EventTypes.HOTKEY_HANDLER_READY,
            {action: combo.display_name for action, combo in self.get_bindings().items()},
            source="KeyboardDispatcher"
        )
        logger.info("Keyboard listener started with %d chords", len(self._bindings))
        return True

    async def stop(self) -> None:
        """Stop the listener and wait for running actions; safe to call repeatedly."""
        listener, self._listener = self._listener, None

        if self._settings_subscription is not None:
            await self.event_bus.unsubscribe(self._settings_subscription)
            self._settings_subscription = None

        if listener is not None:
            try:
                listener.stop()
                join = getattr(listener, 'join', None)
                if join is not None:
                    await asyncio.get_running_loop().run_in_executor(None, join, 2.0)
            except Exception as e:
                logger.error("Error stopping keyboard listener: %s", e)

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        self._pressed_keys.clear()
        self._fired_keys.clear()

        if listener is not None:
            await self.event_bus.emit(EventTypes.HOTKEY_HANDLER_SHUTDOWN, source="KeyboardDispatcher")
            logger.info("Keyboard listener stopped")

    async def wait_idle(self) -> None:
        """Wait until every fired action has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _create_listener(self, dispatcher: 'KeyboardDispatcher') -> Any:
        """Create pynput keyboard listener."""
        from pynput import keyboard

        return keyboard.Listener(
            on_press=dispatcher.handle_key_press,
            on_release=dispatcher.handle_key_release,
            suppress=False
        )

    def handle_key_press(self, key) -> None:
        """Listener-thread callback for key presses."""
        try:
            key_str = self._key_to_string(key)

            if key_str in {'unknown', ''} or (len(key_str) == 1 and ord(key_str) < 32):
                return

            if key_str in MODIFIER_KEYS:
                self._pressed_keys.add(key_str)
                return

            # auto-repeat while the chord is held
            if key_str in self._fired_keys:
                return

            binding = self._match(key_str)
            if binding is not None:
                self._fired_keys.add(key_str)
                self._schedule(binding)

        except Exception as e:
            logger.error("Error handling key press: %s", e)

    def handle_key_release(self, key) -> None:
        """Listener-thread callback for key releases."""
        try:
            key_str = self._key_to_string(key)
            self._pressed_keys.discard(key_str)
            self._fired_keys.discard(key_str)
        except Exception as e:
            logger.error("Error handling key release: %s", e)

    def _key_to_string(self, key) -> str:
        """Convert a pynput key to a normalized name."""
        try:
            name = getattr(key, 'name', None)
            if name:
                key_map = {
                    'ctrl_l': 'ctrl',
                    'ctrl_r': 'ctrl',
                    'alt_l': 'alt',
                    'alt_r': 'alt',
                    'alt_gr': 'alt',
                    'shift_l': 'shift',
                    'shift_r': 'shift',
                    'cmd_l': 'cmd',
                    'cmd_r': 'cmd',
                }
                return key_map.get(name, name.lower())

            char = getattr(key, 'char', None)
            if char is not None:
                char_code = ord(char)
                # Ctrl+A arrives as \x01 on some platforms
                if 1 <= char_code <= 26:
                    return chr(char_code + 64).lower()
                if 32 <= char_code <= 126:
                    return char.lower()

            return str(key).lower()

        except Exception:
            return 'unknown'

    def _match(self, key: str) -> Optional[ChordBinding]:
        current_modifiers = set(self._pressed_keys)
        for binding in self._bindings.values():
            if binding.combination.matches_event(current_modifiers, key):
                return binding
        return None

    def _schedule(self, binding: ChordBinding) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("No event loop for chord %s, dropping", binding.combination.display_name)
            return
        loop.call_soon_threadsafe(self._fire, binding)

    def _fire(self, binding: ChordBinding) -> None:
        """Runs on the loop: start the action as its own task."""
        binding.last_triggered = datetime.now()
        binding.trigger_count += 1

        task = asyncio.ensure_future(self._run_action(binding, time.time()))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_action(self, binding: ChordBinding, timestamp: float) -> None:
        logger.debug("Chord fired: %s -> %s", binding.combination.display_name, binding.action)

        await self.event_bus.emit(
            ACTION_EVENTS[binding.action],
            {
                'action': binding.action,
                'combination': binding.combination.display_name,
                'timestamp': timestamp
            },
            source="KeyboardDispatcher"
        )

        try:
            await binding.callback()
        except Exception as e:
            logger.error("Shortcut action '%s' failed: %s", binding.action, e)
            logger.debug("Shortcut action error details:", exc_info=True)
            await self.event_bus.notify(
                "Error", f"Shortcut {binding.combination.display_name} failed.",
                level="error", source="KeyboardDispatcher"
            )

    async def _handle_settings_updated(self, event_data) -> None:
        data = event_data.data if isinstance(event_data.data, dict) else {}
        key = data.get('key') or ''
        if not (key.startswith('hotkeys.') or data.get('full_save')):
            return

        await self.load_configuration()
        self._rebuild_bindings()
        logger.info("Hotkey configuration reloaded")

    def __str__(self) -> str:
        return (f"KeyboardDispatcher(bindings={len(self._bindings)}, "
                f"running={self.is_running})")
