"""Shared fakes and fixtures for the ShotQueue test-suite."""

import asyncio
from types import SimpleNamespace
from typing import List, Optional

import pytest

from shotqueue import EventTypes
from shotqueue.controllers.event_bus import EventBus
from shotqueue.models.host_service import HostCaptureService
from shotqueue.models.screenshot_models import CaptureError, HostResult, ScreenshotEntry


class FakeHostService(HostCaptureService):
    """In-memory host; records every call."""

    def __init__(self, existing: Optional[List[ScreenshotEntry]] = None):
        self.existing = list(existing or [])
        self.calls: List[tuple] = []
        self.callbacks = []
        self.layout_reports: List[tuple] = []

        self.load_error: Optional[Exception] = None
        self.capture_error: Optional[Exception] = None
        self.delete_result = HostResult(success=True)
        self.delete_error: Optional[Exception] = None
        self.delete_gate: Optional[asyncio.Event] = None
        self.command_result = HostResult(success=True)
        self.command_error: Optional[Exception] = None
        self.layout_error: Optional[Exception] = None

        self._counter = 0

    async def get_screenshots(self):
        self.calls.append(('get_screenshots',))
        if self.load_error is not None:
            raise self.load_error
        return list(self.existing)

    async def take_screenshot(self):
        self.calls.append(('take_screenshot',))
        if self.capture_error is not None:
            raise self.capture_error
        self._counter += 1
        return ScreenshotEntry(path=f"/shots/capture_{self._counter}.png", preview="data:")

    async def delete_screenshot(self, path):
        self.calls.append(('delete_screenshot', path))
        if self.delete_gate is not None:
            await self.delete_gate.wait()
        if self.delete_error is not None:
            raise self.delete_error
        return self.delete_result

    def on_screenshot_taken(self, callback):
        self.callbacks.append(callback)

        def unsubscribe():
            if callback in self.callbacks:
                self.callbacks.remove(callback)

        return unsubscribe

    async def push(self, payload):
        """Simulate the host pushing a capture made outside the core."""
        for callback in list(self.callbacks):
            result = callback(payload)
            if asyncio.iscoroutine(result):
                await result

    async def _command(self, name):
        self.calls.append((name,))
        if self.command_error is not None:
            raise self.command_error
        return self.command_result

    async def clear_store(self):
        return await self._command('clear_store')

    async def toggle_main_window(self):
        return await self._command('toggle_main_window')

    async def trigger_screenshot(self):
        return await self._command('trigger_screenshot')

    async def trigger_process_screenshots(self):
        return await self._command('trigger_process_screenshots')

    def update_tooltip_layout(self, visible, height):
        if self.layout_error is not None:
            raise self.layout_error
        self.layout_reports.append((visible, height))

    def called(self, name):
        return [call for call in self.calls if call[0] == name]


class EventRecorder:
    """Collects events delivered by an EventBus."""

    def __init__(self, bus: EventBus):
        self.bus = bus
        self.events = []

    async def listen(self, *event_types):
        for event_type in event_types:
            await self.bus.subscribe(event_type, self.events.append)
        return self

    async def settle(self):
        """Wait until every queued event has been delivered."""
        for _ in range(1000):
            task = self.bus._drain_task
            if len(self.bus) == 0 and (task is None or task.done()):
                return
            await asyncio.sleep(0)
        raise AssertionError("event bus did not settle")

    def of(self, event_type):
        return [event.data for event in self.events if event.event_type == event_type]

    def notices(self):
        return [data['message'] for data in self.of(EventTypes.NOTICE_SHOWN)]


class FakeListener:
    """Stands in for a pynput keyboard listener."""

    def __init__(self, dispatcher=None):
        self.dispatcher = dispatcher
        self.started = False
        self.stopped = False

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        return None


def key(name):
    """pynput Key-style object (modifiers, special keys)."""
    return SimpleNamespace(name=name)


def char(value):
    """pynput KeyCode-style object."""
    return SimpleNamespace(char=value)


def entry(name):
    return ScreenshotEntry(path=f"/shots/{name}.png", preview=f"preview-{name}")


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def recorder(event_bus):
    return EventRecorder(event_bus)


@pytest.fixture
def host():
    return FakeHostService()


@pytest.fixture
def make_entry():
    return entry


@pytest.fixture
def keys():
    return SimpleNamespace(key=key, char=char)


@pytest.fixture
def listener_factory():
    listeners = []

    def factory(dispatcher):
        listener = FakeListener(dispatcher)
        listeners.append(listener)
        return listener

    factory.listeners = listeners
    return factory


@pytest.fixture
def capture_error():
    return CaptureError("screen recording permission denied")
