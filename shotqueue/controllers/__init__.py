"""
Controllers package for ShotQueue

- QueueController: Component wiring and lifecycle (main_controller)
- EventBus: Asynchronous event distribution system
- KeyboardDispatcher: Global key chord detection and dispatch
"""

from .event_bus import EventBus, EventData
from .keyboard_dispatcher import HotkeyCombo, HotkeyValidationError, KeyboardDispatcher

__all__ = [
    'EventBus',
    'EventData',
    'KeyboardDispatcher',
    'HotkeyCombo',
    'HotkeyValidationError'
]
