#!/usr/bin/env python3
"""
Voice feedback through the platform's text-to-speech command

Only one utterance is ever in flight: a new speak() kills the previous
process instead of queueing behind it, and every utterance is killed if it
runs longer than the configured timeout.
"""

import sys
import shlex
import asyncio
import logging
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)


class FeedbackError(Exception):
    """The TTS process could not be started, failed, or timed out"""


def default_command(volume: int = 100, platform: str = sys.platform) -> List[str]:
    """TTS command line reading the text from stdin"""
    if platform.startswith('win'):
        script = (
            "Add-Type -AssemblyName System.Speech; "
            "$s = New-Object System.Speech.Synthesis.SpeechSynthesizer; "
            f"$s.Volume = {volume}; "
            "$s.Speak([Console]::In.ReadToEnd())"
        )
        return ["powershell", "-NoProfile", "-NonInteractive", "-Command", script]
    if platform == 'darwin':
        return ["say"]
    # espeak amplitude goes from 0 to 200
    return ["espeak", "--stdin", "-a", str(volume * 2)]


def describe_temperatures(target_temp: Optional[float], room_temp: float) -> str:
    """Status sentence; the target is left out when the AC mode has none"""
    room = f"Current room temperature: {round(room_temp)} degrees."
    if target_temp is None:
        return room
    return f"Target temperature: {target_temp} degrees. {room}"


def describe_ac_state(on: bool, target_temp: Optional[float]) -> str:
    message = f"AC is {'on' if on else 'off'}."
    if target_temp is not None:
        message += f" Target temperature: {target_temp} degrees."
    return message


class VoiceFeedback:
    def __init__(self, volume: int = 100, timeout: float = 15.0,
                 command: Optional[Sequence[str]] = None):
        if isinstance(command, str):
            command = shlex.split(command)
        self.command: List[str] = list(command) if command else default_command(volume)
        self.timeout = timeout
        self._process: Optional[asyncio.subprocess.Process] = None
        self._superseded = set()

    @classmethod
    def from_config(cls, config) -> 'VoiceFeedback':
        return cls(volume=config.voice_volume, timeout=config.voice_timeout,
                   command=config.voice_command)

    @property
    def is_speaking(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def speak(self, text: str):
        self._interrupt()
        logger.info(f"Speaking: {text}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise FeedbackError(f"Cannot start TTS command {self.command[0]!r}: {e}") from e

        self._process = proc
        try:
            _, stderr = await asyncio.wait_for(proc.communicate(text.encode('utf-8')), self.timeout)
        except asyncio.TimeoutError:
            self._kill(proc)
            await proc.wait()
            raise FeedbackError(f"Speech timed out after {self.timeout}s")
        except asyncio.CancelledError:
            self._kill(proc)
            await proc.wait()
            raise
        finally:
            if self._process is proc:
                self._process = None
            superseded = proc in self._superseded
            self._superseded.discard(proc)

        if superseded:
            logger.debug("Speech superseded")
            return
        if proc.returncode != 0:
            detail = (stderr or b'').decode('utf-8', 'replace').strip()
            raise FeedbackError(f"TTS exited with code {proc.returncode}: {detail}")
        logger.debug("Speech completed")

    async def announce_temperatures(self, target_temp: Optional[float], room_temp: float):
        await self.speak(describe_temperatures(target_temp, room_temp))

    async def announce_ac_state(self, on: bool, target_temp: Optional[float]):
        await self.speak(describe_ac_state(on, target_temp))

    async def announce_error(self, error: str):
        await self.speak(f"Error: {error}")

    async def announce_success(self, message: str):
        await self.speak(message)

    def _interrupt(self):
        proc = self._process
        if proc is not None and proc.returncode is None:
            self._superseded.add(proc)
            self._kill(proc)

    @staticmethod
    def _kill(proc):
        try:
            proc.kill()
        except ProcessLookupError:
            pass

    def stop(self):
        """Silence any speech in progress"""
        if self.is_speaking:
            self._interrupt()
            logger.info("Voice feedback stopped")


class NullFeedback(VoiceFeedback):
    """Logs announcements instead of speaking them (quiet CLI mode)"""

    def __init__(self):
        super().__init__(command=["true"])

    async def speak(self, text: str):
        logger.info(f"(quiet) {text}")
