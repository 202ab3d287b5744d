#!/usr/bin/env python3
"""
CommandOrchestrator - Executes decoded commands against the AC

Each Command becomes one Action, executed under the bounded retry policy
(exponential backoff with jitter, capped) and followed by exactly one
voice announcement: success, validation error, or final failure.
Commands are handled strictly one at a time in arrival order.
"""

import random
import asyncio
import logging
from enum import Enum
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple

from config_models import RetryPolicy, TempBounds
from hotkey_decoder import Command, CommandKind
from voice import describe_temperatures

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """A command argument is outside the configured limits; never retried"""

    def __init__(self, bound: str, limit: int, value: int):
        self.bound = bound
        self.limit = limit
        self.value = value
        if bound == "min":
            message = f"Temperature {value} is below the minimum of {limit} degrees"
        else:
            message = f"Temperature {value} is above the maximum of {limit} degrees"
        super().__init__(message)


class TransientRemoteFailure(Exception):
    """One attempt of an action failed; the action may be retried"""


class OperationFailed(Exception):
    """An action failed on every attempt"""

    def __init__(self, operation: str, attempts: int, last_error: Optional[BaseException] = None):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{operation} failed after {attempts} attempts: {last_error}")


class ActionKind(Enum):
    """Remote effects the orchestrator knows how to perform"""
    READ_STATE = "read_state"
    SET_TEMPERATURE = "set_temperature"
    TOGGLE_POWER = "toggle_power"
    POWER_ON = "power_on"
    POWER_OFF = "power_off"
    READ_STATUS = "read_status"  # AC state and room temperature together


OPERATION_NAMES = {
    ActionKind.READ_STATE: "Read AC state",
    ActionKind.SET_TEMPERATURE: "Set temperature",
    ActionKind.TOGGLE_POWER: "Toggle power",
    ActionKind.POWER_ON: "Turn on",
    ActionKind.POWER_OFF: "Turn off",
    ActionKind.READ_STATUS: "Get status",
}


@dataclass(frozen=True)
class Action:
    """Description of one remote effect"""
    kind: ActionKind
    temperature: Optional[int] = None

    @property
    def operation_name(self) -> str:
        return OPERATION_NAMES[self.kind]


@dataclass
class OperationResult:
    """Outcome of one handled command"""
    command: Optional[Command]
    success: bool
    message: str
    attempts: int = 0
    value: Any = None


def action_for(command: Command) -> Action:
    if command.kind == CommandKind.SET_TEMPERATURE:
        return Action(ActionKind.SET_TEMPERATURE, temperature=command.value)
    if command.kind == CommandKind.TOGGLE:
        return Action(ActionKind.TOGGLE_POWER)
    if command.kind == CommandKind.POWER_ON:
        return Action(ActionKind.POWER_ON)
    if command.kind == CommandKind.POWER_OFF:
        return Action(ActionKind.POWER_OFF)
    return Action(ActionKind.READ_STATUS)


def _describe(error: BaseException) -> str:
    if isinstance(error, BaseExceptionGroup) and error.exceptions:
        return _describe(error.exceptions[0])
    return str(error) or error.__class__.__name__


class CommandOrchestrator:
    """
    Turns commands into retried remote actions with spoken feedback.

    Args:
        client: Remote device client (SensiboAPI or compatible)
        feedback: Feedback sink (VoiceFeedback or compatible)
        retry_policy: RetryPolicy applied to every action
        temp_bounds: Accepted SetTemperature range
        sleep: Awaitable sleep used for backoff waits
        jitter: Callable(low, high) drawing the per-retry jitter
    """

    def __init__(self, client, feedback, retry_policy: RetryPolicy = RetryPolicy(),
                 temp_bounds: TempBounds = TempBounds(),
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 jitter: Callable[[float, float], float] = random.uniform):
        self.client = client
        self.feedback = feedback
        self.retry_policy = retry_policy
        self.temp_bounds = temp_bounds
        self._sleep = sleep
        self._jitter = jitter
        self.current_command: Optional[Command] = None

    async def run(self, queue: asyncio.Queue,
                  on_start: Optional[Callable[[Command], None]] = None,
                  on_result: Optional[Callable[[OperationResult], None]] = None):
        """
        Process commands from `queue` forever, one at a time.

        Commands put while one is being handled wait in the queue; cancelling
        the task abandons the in-flight command without feedback.
        """
        while True:
            command = await queue.get()
            try:
                if on_start is not None:
                    on_start(command)
                result = await self.handle(command)
                if on_result is not None:
                    on_result(result)
            finally:
                queue.task_done()

    async def handle(self, command: Command) -> OperationResult:
        logger.info(f"{command} command received")
        self.current_command = command
        try:
            return await self._handle(command)
        finally:
            self.current_command = None

    async def _handle(self, command: Command) -> OperationResult:
        try:
            self.validate(command)
        except ValidationError as e:
            logger.error(str(e))
            await self._announce(self.feedback.announce_error, str(e))
            return OperationResult(command, False, str(e))

        action = action_for(command)
        try:
            value, attempts = await self._execute_with_retry(action)
        except OperationFailed as e:
            message = f"{e.operation} failed"
            await self._announce(self.feedback.announce_error, message)
            return OperationResult(command, False, message, e.attempts)

        if action.kind == ActionKind.READ_STATUS:
            state, room_temp = value
            message = describe_temperatures(state.target_temperature, room_temp)
            await self._announce(self.feedback.announce_temperatures, state.target_temperature, room_temp)
        else:
            message = self._success_message(action, value)
            logger.info(message)
            await self._announce(self.feedback.announce_success, message)
        return OperationResult(command, True, message, attempts, value)

    def validate(self, command: Command):
        if command.kind != CommandKind.SET_TEMPERATURE or self.temp_bounds.contains(command.value):
            return
        if command.value < self.temp_bounds.min_temp:
            raise ValidationError("min", self.temp_bounds.min_temp, command.value)
        raise ValidationError("max", self.temp_bounds.max_temp, command.value)

    async def execute(self, action: Action) -> Any:
        """Run one action under the retry policy, without feedback"""
        value, _ = await self._execute_with_retry(action)
        return value

    async def _execute_with_retry(self, action: Action) -> Tuple[Any, int]:
        policy = self.retry_policy
        name = action.operation_name
        last_error = None

        for attempt in range(1, policy.max_attempts + 1):
            try:
                return await self._perform(action), attempt
            except TransientRemoteFailure as e:
                last_error = e
                logger.warning(f"{name} failed (attempt {attempt}/{policy.max_attempts}): {e}")

            if attempt == policy.max_attempts:
                break

            delay = policy.delay_for(attempt, self._jitter(0.0, policy.jitter))
            logger.info(f"Retrying in {delay:.2f}s...")
            await self._sleep(delay)

        logger.error(f"{name} failed after {policy.max_attempts} attempts")
        raise OperationFailed(name, policy.max_attempts, last_error)

    async def _perform(self, action: Action) -> Any:
        try:
            if action.kind == ActionKind.READ_STATE:
                return await self.client.get_current_state()
            if action.kind == ActionKind.SET_TEMPERATURE:
                return await self.client.set_temperature(action.temperature)
            if action.kind == ActionKind.TOGGLE_POWER:
                return await self.client.toggle_power()
            if action.kind == ActionKind.POWER_ON:
                return await self.client.set_power(True)
            if action.kind == ActionKind.POWER_OFF:
                return await self.client.set_power(False)
            return await self._read_status()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise TransientRemoteFailure(_describe(e)) from e

    async def _read_status(self):
        # Both reads must succeed; the first failure cancels the other
        async with asyncio.TaskGroup() as group:
            state_task = group.create_task(self.client.get_current_state())
            room_task = group.create_task(self.client.get_room_temperature())
        return state_task.result(), room_task.result()

    @staticmethod
    def _success_message(action: Action, value: Any) -> str:
        if action.kind == ActionKind.SET_TEMPERATURE:
            return f"Temperature set to {action.temperature} degrees"
        if action.kind == ActionKind.TOGGLE_POWER:
            return f"AC turned {'on' if value else 'off'}"
        if action.kind == ActionKind.POWER_ON:
            return "AC turned on"
        if action.kind == ActionKind.POWER_OFF:
            return "AC turned off"
        return f"{action.operation_name} completed"

    async def _announce(self, announce, *args) -> bool:
        try:
            await announce(*args)
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Voice feedback failed: {e}")
            return False
