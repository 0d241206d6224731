"""
Push-to-talk input handling.

Whatever the gesture (a held hotkey, a toggle command from a remote
control, a button in some front end), it is reduced here to one boolean
"PTT pressed" signal. The transmit gate only ever sees that boolean.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PttMode(Enum):
    MOMENTARY = "momentary"  # pressed while held
    TOGGLE = "toggle"        # each press flips the state


@dataclass
class HotkeyConfig:
    """Configuration for the global PTT hotkey."""
    hotkey: str = "<ctrl>+<alt>+<space>"
    toggle_mode: bool = False

    @property
    def mode(self) -> PttMode:
        return PttMode.TOGGLE if self.toggle_mode else PttMode.MOMENTARY


class PttInput:
    """
    Normalizes momentary and toggle gestures into a pressed/released signal.

    ``on_change`` is called with the new value only when it changes.
    """

    def __init__(self,
                 on_change: Optional[Callable[[bool], None]] = None,
                 mode: PttMode = PttMode.MOMENTARY):
        self.on_change = on_change
        self.mode = mode
        self._pressed = False

    @property
    def pressed(self) -> bool:
        return self._pressed

    def press(self) -> None:
        """Physical press of the PTT control."""
        if self.mode is PttMode.TOGGLE:
            self.set(not self._pressed)
        else:
            self.set(True)

    def release(self) -> None:
        """Physical release; ignored in toggle mode."""
        if self.mode is PttMode.MOMENTARY:
            self.set(False)

    def set(self, pressed: bool) -> None:
        """Explicit on/off command, valid in both modes."""
        pressed = bool(pressed)
        if pressed == self._pressed:
            return
        self._pressed = pressed
        logger.debug("PTT %s", "pressed" if pressed else "released")
        if self.on_change:
            self.on_change(pressed)

    def reset(self) -> None:
        self.set(False)


class GlobalHotkeyHandler:
    """
    Global keyboard hotkey feeding a PttInput.

    pynput delivers key events on its own listener thread; every event is
    posted to the asyncio loop so PTT changes are processed as ordinary
    control events there.
    """

    def __init__(self,
                 ptt: PttInput,
                 config: Optional[HotkeyConfig] = None,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self.ptt = ptt
        self.config = config or HotkeyConfig()
        self._loop = loop
        self._keys = set()
        self._pressed_keys = set()
        self._hotkey_active = False
        self._listener = None
        self._lock = threading.Lock()

    def start(self) -> bool:
        """
        Start the global hotkey listener.

        Returns:
            True if started successfully, False otherwise
        """
        if self._listener is not None:
            return False

        try:
            from pynput import keyboard

            if self._loop is None:
                self._loop = asyncio.get_running_loop()
            self._keys = set(keyboard.HotKey.parse(self.config.hotkey))
            self._listener = keyboard.Listener(
                on_press=self._on_key_press,
                on_release=self._on_key_release
            )
            self._listener.start()
        except Exception as e:
            logger.error(f"Error starting hotkey listener: {e}")
            self._listener = None
            return False

        logger.info("PTT hotkey listener started (%s, %s)",
                    self.config.hotkey, self.config.mode.value)
        return True

    def stop(self):
        """Stop the global hotkey listener."""
        if self._listener is None:
            return
        self._listener.stop()
        self._listener = None
        logger.info("PTT hotkey listener stopped")

    def is_running(self) -> bool:
        return self._listener is not None

    def _canonical(self, key):
        if self._listener is not None:
            return self._listener.canonical(key)
        return key

    def _on_key_press(self, key):
        with self._lock:
            self._pressed_keys.add(self._canonical(key))
            if not self._hotkey_active and self._keys <= self._pressed_keys:
                self._hotkey_active = True
                self._post(self.ptt.press)

    def _on_key_release(self, key):
        with self._lock:
            self._pressed_keys.discard(self._canonical(key))
            if self._hotkey_active and not self._keys <= self._pressed_keys:
                self._hotkey_active = False
                self._post(self.ptt.release)

    def _post(self, callback: Callable[[], None]) -> None:
        try:
            self._loop.call_soon_threadsafe(callback)
        except RuntimeError:
            logger.debug("Event loop closed, dropping hotkey event")
