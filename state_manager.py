#!/usr/bin/env python3
"""
CommandStateManager - Bookkeeping for the serial command pipeline
Tracks the FIFO of pending commands and the single in-flight slot, and
notifies Qt listeners whenever either changes.
"""

import time
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any
from PyQt6.QtCore import QObject, pyqtSignal

from hotkey_decoder import Command

logger = logging.getLogger(__name__)


@dataclass
class CommandState:
    """Represents a command waiting for or undergoing processing"""
    command: Command
    sequence: int
    timestamp: float


class CommandStateManager(QObject):
    """
    Mirrors the orchestrator queue so that its state can be observed.

    Handles:
    - FIFO order of pending commands
    - The single in-flight command slot
    - Last completion result
    """

    queue_size_changed = pyqtSignal(int)  # number of pending commands, in-flight included
    status_changed = pyqtSignal(str)  # human readable status line

    def __init__(self):
        super().__init__()

        self.pending_commands: int = 0
        self.is_processing: bool = False
        self.completed_commands: int = 0
        self.failed_commands: int = 0
        self.last_message: str = ""

        self._command_queue: list[CommandState] = []
        self._current_command: Optional[CommandState] = None
        self._sequence = 0

    def queue_command(self, command: Command) -> CommandState:
        """
        Register a newly decoded command at the end of the queue.

        Decoded commands are never rejected; ordering is FIFO.
        """
        self._sequence += 1
        command_state = CommandState(command=command, sequence=self._sequence, timestamp=time.time())
        self._command_queue.append(command_state)
        self._update_pending()
        return command_state

    def start_command_processing(self, command: Command) -> Optional[CommandState]:
        """
        Move the oldest queued command into the in-flight slot.

        Args:
            command: The command the orchestrator just picked up

        Returns:
            The matching CommandState, or None if the queue is out of sync
        """
        if not self._command_queue:
            logger.warning(f"Processing {command} which was never queued")
            return None

        next_command = self._command_queue.pop(0)
        if next_command.command != command:
            logger.warning(f"Command order mismatch: expected {next_command.command}, got {command}")

        self._current_command = next_command
        self.is_processing = True
        self.status_changed.emit(f"Processing {command}")
        self._update_pending()
        return next_command

    def complete_command_processing(self, success: bool = True, message: str = ""):
        """Free the in-flight slot after feedback has been given"""
        if self._current_command is None:
            return

        completed = self._current_command
        self._current_command = None
        self.is_processing = False
        self.last_message = message

        if success:
            self.completed_commands += 1
        else:
            self.failed_commands += 1

        logger.debug(f"Command completed: {completed.command} (success: {success}, "
                     f"queue remaining: {len(self._command_queue)})")

        self.status_changed.emit(message or ("OK" if success else "Failed"))
        self._update_pending()

    def ensure_sequential_processing(self) -> bool:
        """
        Verify that queued commands are in arrival order and that the
        in-flight command is older than everything still queued.
        """
        for current_cmd, next_cmd in zip(self._command_queue, self._command_queue[1:]):
            if current_cmd.sequence > next_cmd.sequence:
                logger.warning(f"Command queue not in arrival order: {current_cmd.command} before {next_cmd.command}")
                return False

        if self._current_command and self._command_queue:
            if self._current_command.sequence > self._command_queue[0].sequence:
                logger.warning("Processing newer command before older queued command")
                return False

        return True

    def clear(self):
        """Drop everything (shutdown)"""
        self._command_queue.clear()
        self._current_command = None
        self.is_processing = False
        self._update_pending()

    def _update_pending(self):
        pending = len(self._command_queue) + (1 if self._current_command else 0)
        if pending != self.pending_commands:
            self.pending_commands = pending
            self.queue_size_changed.emit(pending)

    def get_state_info(self) -> Dict[str, Any]:
        """
        Get current state information for debugging/monitoring.
        """
        return {
            "pending_commands": self.pending_commands,
            "is_processing": self.is_processing,
            "queue_length": len(self._command_queue),
            "current_command": str(self._current_command.command) if self._current_command else None,
            "completed_commands": self.completed_commands,
            "failed_commands": self.failed_commands,
            "last_message": self.last_message,
        }
