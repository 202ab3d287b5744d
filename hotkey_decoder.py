#!/usr/bin/env python3
"""
HotkeyDecoder - Turns raw key DOWN/UP events into AC commands

The decoder is a synchronous state machine over (modifier state, digit
buffer). Each raw event is handled to completion and yields at most one
Command. It never raises and never blocks: malformed, repeated or unpaired
events all resolve to a defined transition.
"""

import re
import time
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, List, Optional, Tuple, FrozenSet

logger = logging.getLogger(__name__)


# Seconds allowed between the two digits of a temperature
DIGIT_IDLE_THRESHOLD = 1.0

CTRL_KEYS = frozenset({"LEFT CTRL", "RIGHT CTRL"})
ALT_KEYS = frozenset({"LEFT ALT", "RIGHT ALT"})

_NUMPAD_DIGIT = re.compile(r"^NUMPAD (\d)$")


class CommandKind(Enum):
    """Semantic commands understood by the orchestrator"""
    TOGGLE = "toggle"
    SET_TEMPERATURE = "set_temperature"
    VOICE_STATUS = "voice_status"
    POWER_ON = "power_on"
    POWER_OFF = "power_off"


@dataclass(frozen=True)
class Command:
    """A decoded command; `value` is only set for SET_TEMPERATURE"""
    kind: CommandKind
    value: Optional[int] = None

    @classmethod
    def toggle(cls) -> 'Command':
        return cls(CommandKind.TOGGLE)

    @classmethod
    def set_temperature(cls, value: int) -> 'Command':
        return cls(CommandKind.SET_TEMPERATURE, value)

    @classmethod
    def voice_status(cls) -> 'Command':
        return cls(CommandKind.VOICE_STATUS)

    @classmethod
    def power_on(cls) -> 'Command':
        return cls(CommandKind.POWER_ON)

    @classmethod
    def power_off(cls) -> 'Command':
        return cls(CommandKind.POWER_OFF)

    def __str__(self) -> str:
        if self.kind == CommandKind.SET_TEMPERATURE:
            return f"{self.kind.value}({self.value})"
        return self.kind.value


class KeyAction(Enum):
    DOWN = "DOWN"
    UP = "UP"


@dataclass(frozen=True)
class KeyEvent:
    """One raw event from the input source"""
    key: str
    action: KeyAction


@dataclass
class ModifierState:
    """Modifier flags as last reported by DOWN/UP events"""
    ctrl_held: bool = False
    alt_held: bool = False

    def combination(self) -> Tuple[bool, bool]:
        return (self.ctrl_held, self.alt_held)


@dataclass
class DigitBuffer:
    """Up to two pending temperature digits"""
    digits: List[int] = field(default_factory=list)
    last_digit_time: Optional[float] = None

    def clear(self):
        self.digits.clear()

    def __len__(self) -> int:
        return len(self.digits)


@dataclass(frozen=True)
class HotkeyBinding:
    """
    A fire-once hotkey: an exact modifier combination plus a trigger key.

    `keys` holds every name the platform may report for the trigger while
    those modifiers are down (Ctrl+Pause is reported as CANCEL on Windows).
    """
    ctrl: bool
    alt: bool
    keys: FrozenSet[str]
    command: Command
    label: str = ""

    def matches(self, modifiers: ModifierState, key: str) -> bool:
        return modifiers.combination() == (self.ctrl, self.alt) and key in self.keys


DEFAULT_BINDINGS: Tuple[HotkeyBinding, ...] = (
    HotkeyBinding(ctrl=True, alt=False, keys=frozenset({"PAUSE", "CANCEL"}),
                  command=Command.toggle(), label="CTRL + Pause: Toggle AC on/off"),
    HotkeyBinding(ctrl=False, alt=True, keys=frozenset({"PAUSE"}),
                  command=Command.voice_status(), label="ALT + Pause: Voice status announcement"),
    HotkeyBinding(ctrl=True, alt=True, keys=frozenset({"NUMPAD 1"}),
                  command=Command.power_on(), label="CTRL + ALT + Numpad 1: Turn AC on"),
    HotkeyBinding(ctrl=True, alt=True, keys=frozenset({"NUMPAD 0"}),
                  command=Command.power_off(), label="CTRL + ALT + Numpad 0: Turn AC off"),
)

DIGIT_SEQUENCE_LABEL = "CTRL + Numpad digits (2 digits): Set temperature"


def normalize_key(key) -> str:
    """Upper-case key name; anything unusable becomes 'UNKNOWN'"""
    if key is None:
        return "UNKNOWN"
    name = str(key).strip().upper()
    return name or "UNKNOWN"


class HotkeyDecoder:
    """
    Finite-state decoder for the AC hotkeys.

    Rules for a DOWN event, first match wins:
    1. modifier key: set its flag
    2. exact modifier combination + trigger key of a binding: emit its command
    3. Ctrl only + numpad digit: feed the two-digit temperature sequence
    4. anything else: ignored

    Releasing Ctrl abandons a pending digit; releasing Alt does not.
    """

    def __init__(self, bindings: Iterable[HotkeyBinding] = DEFAULT_BINDINGS,
                 clock: Callable[[], float] = time.monotonic,
                 idle_threshold: float = DIGIT_IDLE_THRESHOLD):
        self.bindings: Tuple[HotkeyBinding, ...] = tuple(bindings)
        self.modifiers = ModifierState()
        self.buffer = DigitBuffer()
        self._clock = clock
        self._idle_threshold = idle_threshold

    def reset(self):
        """Forget all modifier and digit state (e.g. after the listener restarts)"""
        self.modifiers = ModifierState()
        self.buffer = DigitBuffer()

    def feed(self, event: KeyEvent) -> Optional[Command]:
        if event.action == KeyAction.DOWN:
            return self.key_down(event.key)
        if event.action == KeyAction.UP:
            self.key_up(event.key)
        return None

    def decode(self, events: Iterable[KeyEvent]) -> Iterator[Command]:
        """Lazily decode a stream of raw events into commands"""
        for event in events:
            command = self.feed(event)
            if command is not None:
                yield command

    def key_down(self, raw_key) -> Optional[Command]:
        key = normalize_key(raw_key)

        if key in CTRL_KEYS:
            self.modifiers.ctrl_held = True
            return None
        if key in ALT_KEYS:
            self.modifiers.alt_held = True
            return None

        for binding in self.bindings:
            if binding.matches(self.modifiers, key):
                logger.info(f"{binding.command} hotkey detected ({key})")
                self.buffer.clear()
                return binding.command

        if self.modifiers.ctrl_held and not self.modifiers.alt_held:
            match = _NUMPAD_DIGIT.match(key)
            if match:
                return self._accept_digit(int(match.group(1)))

        return None

    def key_up(self, raw_key):
        key = normalize_key(raw_key)

        if key in CTRL_KEYS:
            self.modifiers.ctrl_held = False
            if self.buffer.digits:
                logger.debug("CTRL released, clearing temperature buffer")
            self.buffer.clear()
        elif key in ALT_KEYS:
            self.modifiers.alt_held = False

    def _accept_digit(self, digit: int) -> Optional[Command]:
        now = self._clock()
        last = self.buffer.last_digit_time
        if last is not None and now - last > self._idle_threshold:
            if self.buffer.digits:
                logger.debug("Temperature buffer expired")
            self.buffer.clear()

        self.buffer.digits.append(digit)
        self.buffer.last_digit_time = now
        logger.debug(f"Temperature buffer: {''.join(str(d) for d in self.buffer.digits)}")

        if len(self.buffer.digits) == 2:
            first, second = self.buffer.digits
            self.buffer.clear()
            temperature = first * 10 + second
            logger.info(f"Set temperature to {temperature}°C")
            return Command.set_temperature(temperature)
        return None

    def describe_bindings(self) -> List[str]:
        """Human-readable hotkey table"""
        lines = [binding.label or f"{binding.command}" for binding in self.bindings]
        lines.insert(1, DIGIT_SEQUENCE_LABEL)
        return lines
