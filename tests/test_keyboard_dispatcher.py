"""Unit tests for KeyboardDispatcher.

Key events are fed through the same callbacks pynput would call, using
lightweight stand-ins for ``Key`` and ``KeyCode`` objects.
"""

import asyncio
import threading

import pytest

from shotqueue import EventTypes
from shotqueue.controllers.keyboard_dispatcher import (
    ACTION_CAPTURE, ACTION_PROCESS, HotkeyValidationError, KeyboardDispatcher,
    resolve_primary_modifier
)
from shotqueue.models.settings_manager import SettingsManager


class ActionLog:
    def __init__(self):
        self.calls = []

    def action(self, name, error=None):
        async def run():
            self.calls.append(name)
            if error is not None:
                raise error
        return run


async def started_dispatcher(event_bus, listener_factory, actions, platform="linux", settings_manager=None):
    dispatcher = KeyboardDispatcher(
        event_bus,
        settings_manager=settings_manager,
        platform=platform,
        listener_factory=listener_factory
    )
    dispatcher.rebind(actions)
    assert await dispatcher.start()
    return dispatcher


def press_chord(dispatcher, keys, *names, final):
    for name in names:
        dispatcher.handle_key_press(keys.key(name))
    dispatcher.handle_key_press(final)
    dispatcher.handle_key_release(final)
    for name in reversed(names):
        dispatcher.handle_key_release(keys.key(name))


async def settle(dispatcher):
    await asyncio.sleep(0.01)
    await dispatcher.wait_idle()


def test_primary_resolves_per_platform():
    assert resolve_primary_modifier("auto", "darwin") == "cmd"
    assert resolve_primary_modifier("auto", "linux") == "ctrl"
    assert resolve_primary_modifier("auto", "win32") == "ctrl"
    assert resolve_primary_modifier("cmd", "linux") == "cmd"


def test_parse_chord_expands_primary(event_bus):
    linux = KeyboardDispatcher(event_bus, platform="linux")
    mac = KeyboardDispatcher(event_bus, platform="darwin")

    assert linux.parse_chord("primary+shift+h").modifiers == {"ctrl", "shift"}
    assert mac.parse_chord("primary+shift+h").modifiers == {"cmd", "shift"}
    assert linux.parse_chord("primary+shift+h").display_name == "Ctrl+Shift+H"
    assert linux.parse_chord("win+f12").modifiers == {"cmd"}


@pytest.mark.parametrize("chord", ["h", "", "hyper+h", "ctrl+shift+#", "ctrl++h", "ctrl+shift+pause"])
def test_invalid_chords_are_rejected(event_bus, chord):
    dispatcher = KeyboardDispatcher(event_bus, platform="linux")

    with pytest.raises(HotkeyValidationError):
        dispatcher.parse_chord(chord)


@pytest.mark.asyncio
async def test_capture_chord_fires_capture_action(event_bus, recorder, listener_factory, keys):
    await recorder.listen(EventTypes.HOTKEY_SCREENSHOT_CAPTURE)
    log = ActionLog()
    dispatcher = await started_dispatcher(event_bus, listener_factory, {
        ACTION_CAPTURE: log.action("capture"),
        ACTION_PROCESS: log.action("process"),
    })

    press_chord(dispatcher, keys, "ctrl_l", "shift", final=keys.char("H"))
    await settle(dispatcher)
    await recorder.settle()

    assert log.calls == ["capture"]
    assert recorder.of(EventTypes.HOTKEY_SCREENSHOT_CAPTURE)[0]['combination'] == "Ctrl+Shift+H"

    press_chord(dispatcher, keys, "ctrl_r", "shift_r", final=keys.char("j"))
    await settle(dispatcher)

    assert log.calls == ["capture", "process"]
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_shift_h_without_primary_does_nothing(event_bus, listener_factory, keys):
    log = ActionLog()
    dispatcher = await started_dispatcher(event_bus, listener_factory, {ACTION_CAPTURE: log.action("capture")})

    press_chord(dispatcher, keys, "shift", final=keys.char("H"))
    await settle(dispatcher)

    assert log.calls == []
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_extra_modifier_prevents_match(event_bus, listener_factory, keys):
    log = ActionLog()
    dispatcher = await started_dispatcher(event_bus, listener_factory, {ACTION_CAPTURE: log.action("capture")})

    press_chord(dispatcher, keys, "ctrl", "alt", "shift", final=keys.char("h"))
    await settle(dispatcher)

    assert log.calls == []
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_cmd_is_primary_on_macos(event_bus, listener_factory, keys):
    log = ActionLog()
    dispatcher = await started_dispatcher(event_bus, listener_factory, {ACTION_CAPTURE: log.action("capture")},
                                          platform="darwin")

    press_chord(dispatcher, keys, "ctrl", "shift", final=keys.char("h"))
    press_chord(dispatcher, keys, "cmd", "shift", final=keys.char("h"))
    await settle(dispatcher)

    assert log.calls == ["capture"]
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_control_character_maps_back_to_letter(event_bus, listener_factory, keys):
    log = ActionLog()
    dispatcher = await started_dispatcher(event_bus, listener_factory, {ACTION_CAPTURE: log.action("capture")})

    # Ctrl+H arrives as backspace control code on some platforms
    press_chord(dispatcher, keys, "ctrl", "shift", final=keys.char("\x08"))
    await settle(dispatcher)

    assert log.calls == ["capture"]
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_held_chord_fires_once_until_released(event_bus, listener_factory, keys):
    log = ActionLog()
    dispatcher = await started_dispatcher(event_bus, listener_factory, {ACTION_CAPTURE: log.action("capture")})

    dispatcher.handle_key_press(keys.key("ctrl"))
    dispatcher.handle_key_press(keys.key("shift"))
    for _ in range(3):
        dispatcher.handle_key_press(keys.char("h"))
    dispatcher.handle_key_release(keys.char("h"))
    dispatcher.handle_key_press(keys.char("h"))
    await settle(dispatcher)

    assert log.calls == ["capture", "capture"]
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_failing_action_becomes_notice(event_bus, recorder, listener_factory, keys):
    await recorder.listen(EventTypes.NOTICE_SHOWN)
    log = ActionLog()
    dispatcher = await started_dispatcher(event_bus, listener_factory, {
        ACTION_CAPTURE: log.action("capture", error=RuntimeError("host gone")),
        ACTION_PROCESS: log.action("process"),
    })

    press_chord(dispatcher, keys, "ctrl", "shift", final=keys.char("h"))
    await settle(dispatcher)
    press_chord(dispatcher, keys, "ctrl", "shift", final=keys.char("j"))
    await settle(dispatcher)
    await recorder.settle()

    assert log.calls == ["capture", "process"]
    assert recorder.notices() == ["Shortcut Ctrl+Shift+H failed."]
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_actions_do_not_wait_for_each_other(event_bus, listener_factory, keys):
    release = asyncio.Event()
    calls = []

    async def slow_process():
        calls.append("process")
        await release.wait()

    async def capture():
        calls.append("capture")

    dispatcher = await started_dispatcher(event_bus, listener_factory, {
        ACTION_CAPTURE: capture,
        ACTION_PROCESS: slow_process,
    })

    press_chord(dispatcher, keys, "ctrl", "shift", final=keys.char("j"))
    await asyncio.sleep(0.01)
    press_chord(dispatcher, keys, "ctrl", "shift", final=keys.char("h"))
    await asyncio.sleep(0.01)

    assert calls == ["process", "capture"]

    release.set()
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_events_from_listener_thread_reach_the_loop(event_bus, listener_factory, keys):
    log = ActionLog()
    dispatcher = await started_dispatcher(event_bus, listener_factory, {ACTION_CAPTURE: log.action("capture")})

    thread = threading.Thread(
        target=press_chord,
        args=(dispatcher, keys, "ctrl", "shift"),
        kwargs={'final': keys.char("h")}
    )
    thread.start()
    thread.join()
    await settle(dispatcher)

    assert log.calls == ["capture"]
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_rebind_replaces_action_table(event_bus, listener_factory, keys):
    old, new = ActionLog(), ActionLog()
    dispatcher = await started_dispatcher(event_bus, listener_factory, {ACTION_CAPTURE: old.action("capture")})

    bound = dispatcher.rebind({ACTION_CAPTURE: new.action("capture")})
    press_chord(dispatcher, keys, "ctrl", "shift", final=keys.char("h"))
    await settle(dispatcher)

    assert set(bound) == {ACTION_CAPTURE}
    assert old.calls == []
    assert new.calls == ["capture"]
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_settings_override_chords(event_bus, listener_factory, keys):
    settings = SettingsManager()
    await settings.update_setting('hotkeys.capture_screenshot', 'primary+alt+s')
    log = ActionLog()
    dispatcher = await started_dispatcher(event_bus, listener_factory, {ACTION_CAPTURE: log.action("capture")},
                                          settings_manager=settings)

    press_chord(dispatcher, keys, "ctrl", "shift", final=keys.char("h"))
    press_chord(dispatcher, keys, "ctrl", "alt", final=keys.char("s"))
    await settle(dispatcher)

    assert log.calls == ["capture"]
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_disabled_hotkeys_do_not_start_listener(event_bus, listener_factory):
    settings = SettingsManager()
    await settings.update_setting('hotkeys.enabled', False)
    dispatcher = KeyboardDispatcher(event_bus, settings_manager=settings, platform="linux",
                                    listener_factory=listener_factory)

    assert not await dispatcher.start()
    assert listener_factory.listeners == []
    assert not dispatcher.is_running
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_listener_failure_is_reported(event_bus, recorder):
    await recorder.listen(EventTypes.HOTKEY_HANDLER_ERROR)

    def broken_factory(dispatcher):
        raise OSError("no display")

    dispatcher = KeyboardDispatcher(event_bus, platform="linux", listener_factory=broken_factory)

    assert not await dispatcher.start()
    await recorder.settle()
    assert recorder.of(EventTypes.HOTKEY_HANDLER_ERROR)[0]['error_message'] == "no display"


@pytest.mark.asyncio
async def test_stop_is_safe_to_repeat(event_bus, listener_factory):
    dispatcher = await started_dispatcher(event_bus, listener_factory, {})

    await dispatcher.stop()
    await dispatcher.stop()

    assert listener_factory.listeners[0].stopped
    assert not dispatcher.is_running
