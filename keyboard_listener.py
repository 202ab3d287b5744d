#!/usr/bin/env python3
"""
Global keyboard listener feeding the hotkey decoder

pynput reports keys as Key members or KeyCode objects whose virtual key
codes differ per platform. key_name() turns both into the names the decoder
matches on ("LEFT CTRL", "PAUSE", "CANCEL", "NUMPAD 7", ...).
"""

import sys
import logging
import threading
from typing import Callable, Dict, Optional

from hotkey_decoder import Command, HotkeyDecoder

logger = logging.getLogger(__name__)


_SPECIAL_KEYS = {
    "ctrl": "LEFT CTRL",
    "ctrl_l": "LEFT CTRL",
    "ctrl_r": "RIGHT CTRL",
    "alt": "LEFT ALT",
    "alt_l": "LEFT ALT",
    "alt_r": "RIGHT ALT",
    "alt_gr": "RIGHT ALT",
    "pause": "PAUSE",
}

# Virtual key codes of KeyCode objects, per platform
_WINDOWS_VK: Dict[int, str] = {0x03: "CANCEL", 0x13: "PAUSE"}
_WINDOWS_VK.update({0x60 + d: f"NUMPAD {d}" for d in range(10)})

# X11 reports keysyms; Ctrl+Pause usually arrives as Break
_X11_VK: Dict[int, str] = {0xff13: "PAUSE", 0xff6b: "CANCEL"}
_X11_VK.update({0xffb0 + d: f"NUMPAD {d}" for d in range(10)})

_DARWIN_VK: Dict[int, str] = {82 + d: f"NUMPAD {d}" for d in range(8)}
_DARWIN_VK.update({91: "NUMPAD 8", 92: "NUMPAD 9"})


def _vk_table(platform: str) -> Dict[int, str]:
    if platform.startswith('win'):
        return _WINDOWS_VK
    if platform == 'darwin':
        return _DARWIN_VK
    return _X11_VK


def key_name(key, platform: Optional[str] = None) -> str:
    """Decoder name for a pynput key object"""
    if key is None:
        return "UNKNOWN"

    name = getattr(key, 'name', None)
    if isinstance(name, str):
        if name in _SPECIAL_KEYS:
            return _SPECIAL_KEYS[name]
        return name.replace('_', ' ').upper()

    vk = getattr(key, 'vk', None)
    if vk is not None:
        mapped = _vk_table(platform or sys.platform).get(vk)
        if mapped:
            return mapped

    char = getattr(key, 'char', None)
    if char:
        return char.upper()
    if vk is not None:
        return f"VK {vk}"
    return "UNKNOWN"


class KeyboardListener:
    """Runs a pynput listener and forwards decoded commands to `on_command`"""

    def __init__(self, decoder: HotkeyDecoder, on_command: Callable[[Command], None]):
        self.decoder = decoder
        self.on_command = on_command
        self._listener = None
        self._lock = threading.Lock()

    def start(self):
        from pynput import keyboard

        if self._listener is not None:
            self.stop()

        self.decoder.reset()
        self._listener = keyboard.Listener(
            on_press=self._on_press,
            on_release=self._on_release,
        )
        self._listener.daemon = True
        self._listener.start()
        logger.info("Keyboard listener started")

    def stop(self):
        if self._listener:
            self._listener.stop()
            self._listener.join(timeout=2)
            self._listener = None
            logger.info("Keyboard listener stopped")
        self.decoder.reset()

    def _on_press(self, key):
        name = key_name(key)
        with self._lock:
            command = self.decoder.key_down(name)
        if command is not None:
            self._dispatch(command)

    def _on_release(self, key):
        with self._lock:
            self.decoder.key_up(key_name(key))

    def _dispatch(self, command: Command):
        try:
            self.on_command(command)
        except Exception:
            # Never let a consumer error kill the listener thread
            logger.exception(f"Failed to dispatch {command}")
