#!/usr/bin/env python3
"""
Integration tests for the AC controller
Worker + orchestrator + state manager with a mocked Sensibo client and
mocked voice, plus the CLI entry points
"""

import pytest
import time
import asyncio
import logging
from unittest.mock import Mock, AsyncMock
from PyQt6.QtCore import QCoreApplication
import sys

import ac_controller
from ac_controller import (
    ACController, ControllerWorker, configure_logging, main, parse_cli_command, run_once, sync_power
)
from config_models import ACState, AppConfig, RetryPolicy
from hotkey_decoder import Command
from sensibo_api import SensiboAPIError
from state_manager import CommandStateManager

# Ensure QCoreApplication exists for Qt signals
if not QCoreApplication.instance():
    app = QCoreApplication(sys.argv)


def make_config(**overrides):
    values = dict(api_key="key", device_id="pod", retry_policy=RetryPolicy(3, 0.0, 0.0, 0.0))
    values.update(overrides)
    return AppConfig(**values)


def make_client():
    client = AsyncMock()
    client.get_current_state = AsyncMock(return_value=ACState(on=True, target_temperature=24))
    client.get_room_temperature = AsyncMock(return_value=23.4)
    client.set_temperature = AsyncMock(return_value=ACState(on=True))
    client.toggle_power = AsyncMock(return_value=False)
    client.set_power = AsyncMock(return_value=ACState(on=True))
    client.close = AsyncMock()
    return client


def make_feedback():
    feedback = AsyncMock()
    feedback.announce_success = AsyncMock()
    feedback.announce_error = AsyncMock()
    feedback.announce_temperatures = AsyncMock()
    feedback.stop = Mock()
    return feedback


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        QCoreApplication.processEvents()
        time.sleep(0.01)
    return False


class TestWorkerPipeline:
    """Commands flow from the queue through the orchestrator to feedback"""

    def setup_method(self):
        """Setup fresh components for each test"""
        self.state_manager = CommandStateManager()
        self.client = make_client()
        self.feedback = make_feedback()
        self.worker = ControllerWorker(make_config(), self.state_manager,
                                       client=self.client, feedback=self.feedback)

        self.results = []
        self.started = []
        self.connections = []
        self.queue_signals = []
        self.worker.command_completed.connect(self.results.append)
        self.worker.command_started.connect(self.started.append)
        self.worker.connection_checked.connect(lambda ok, msg: self.connections.append((ok, msg)))
        self.state_manager.queue_size_changed.connect(self.queue_signals.append)

    def run_commands(self, *commands):
        async def scenario():
            main_task = asyncio.create_task(self.worker._async_main())
            for command in commands:
                self.worker._enqueue(command)
            while not self.connections and not main_task.done():
                await asyncio.sleep(0)
            await self.worker._cmd_queue.join()
            main_task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await main_task

        asyncio.run(scenario())

    def test_connection_check_reports_state(self):
        self.run_commands()

        assert self.connections == [(True, "AC is currently ON at 24°C")]
        self.feedback.announce_ac_state.assert_awaited_once_with(True, 24)
        self.client.close.assert_awaited_once()
        self.feedback.stop.assert_called_once()

    def test_connection_check_without_target(self):
        self.client.get_current_state.return_value = ACState.from_dict({"on": False, "mode": "fan"})

        self.run_commands()

        assert self.connections == [(True, "AC is currently OFF")]
        self.feedback.announce_ac_state.assert_awaited_once_with(False, None)

    def test_startup_announcement_failure_is_not_fatal(self):
        self.feedback.announce_ac_state.side_effect = RuntimeError("espeak missing")

        self.run_commands(Command.toggle())

        assert self.connections[0][0] is True
        assert [r.message for r in self.results] == ["AC turned off"]

    def test_rapid_burst_processed_in_order(self):
        """Five hotkeys pressed at once are handled one by one"""
        in_flight = []
        max_in_flight = []

        async def tracked_set(temperature):
            in_flight.append(temperature)
            max_in_flight.append(len(in_flight))
            await asyncio.sleep(0.005)
            in_flight.remove(temperature)

        self.client.set_temperature.side_effect = tracked_set
        commands = [Command.set_temperature(t) for t in (20, 21, 22, 23, 24)]

        self.run_commands(*commands)

        assert max(max_in_flight) == 1, "Commands must never overlap"
        assert [r.command for r in self.results] == commands
        assert self.started == [str(c) for c in commands]
        assert self.state_manager.completed_commands == 5
        assert self.feedback.announce_success.await_count == 5
        assert max(self.queue_signals) == 5
        assert self.queue_signals[-1] == 0

    def test_failures_do_not_block_later_commands(self):
        self.client.toggle_power.side_effect = SensiboAPIError("offline")

        self.run_commands(Command.toggle(), Command.set_temperature(40), Command.voice_status())

        assert [r.success for r in self.results] == [False, False, True]
        assert [c.args[0] for c in self.feedback.announce_error.await_args_list] == [
            "Toggle power failed",
            "Temperature 40 is above the maximum of 30 degrees",
        ]
        self.feedback.announce_temperatures.assert_awaited_once_with(24, 23.4)
        assert self.state_manager.failed_commands == 2
        assert self.state_manager.completed_commands == 1

    def test_connection_failure_stops_worker(self):
        self.client.get_current_state.side_effect = SensiboAPIError("401 Unauthorized")

        asyncio.run(self.worker._async_main())

        assert len(self.connections) == 1
        ok, message = self.connections[0]
        assert not ok
        assert message.startswith("Failed to connect to Sensibo API")
        assert self.client.get_current_state.await_count == 3
        self.client.close.assert_awaited_once()

    def test_shutdown_abandons_in_flight_command(self):
        async def hanging(temperature):
            await asyncio.sleep(3600)

        self.client.set_temperature.side_effect = hanging

        async def scenario():
            main_task = asyncio.create_task(self.worker._async_main())
            self.worker._enqueue(Command.set_temperature(22))
            self.worker._enqueue(Command.toggle())
            await asyncio.sleep(0.05)
            main_task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await main_task

        asyncio.run(scenario())

        assert self.results == []
        assert self.feedback.announce_success.await_count == 0
        assert self.feedback.announce_error.await_count == 0
        assert self.client.toggle_power.await_count == 0, "Queued commands are dropped"
        assert self.state_manager.pending_commands == 0
        self.client.close.assert_awaited_once()

    def test_queue_command_before_start_is_dropped(self):
        self.worker.queue_command(Command.toggle())
        assert self.worker._cmd_queue.empty()


class TestWorkerThread:
    """The worker runs its own asyncio loop in a QThread"""

    def test_start_queue_stop(self):
        client = make_client()
        feedback = make_feedback()
        worker = ControllerWorker(make_config(), client=client, feedback=feedback)

        worker.start()
        try:
            assert wait_until(lambda: client.get_current_state.await_count >= 1), "Worker never connected"
            worker.queue_command(Command.power_off())
            assert wait_until(lambda: feedback.announce_success.await_count == 1), "Command never processed"
        finally:
            worker.stop()

        assert worker.isFinished()
        client.set_power.assert_awaited_once_with(False)
        feedback.announce_success.assert_awaited_once_with("AC turned off")
        client.close.assert_awaited_once()

    def test_queue_after_stop_is_dropped(self):
        worker = ControllerWorker(make_config(), client=make_client(), feedback=make_feedback())
        worker.stop()
        worker.queue_command(Command.toggle())
        assert worker._cmd_queue.empty()


class TestControllerWiring:
    def setup_method(self):
        self.app = Mock()
        self.worker = ControllerWorker(make_config(), client=make_client(), feedback=make_feedback())
        self.controller = ACController(make_config(), self.app, worker=self.worker)
        self.controller.listener.start = Mock()

    def test_listener_forwards_to_worker(self):
        assert self.controller.listener.on_command == self.worker.queue_command

    def test_connection_ok_starts_listener(self, capsys):
        self.controller.on_connection_checked(True, "AC is currently OFF at 22°C")

        self.controller.listener.start.assert_called_once()
        assert self.controller.exit_code == 0
        assert "AC is currently OFF at 22°C" in capsys.readouterr().out

    def test_connection_failure_quits(self, capsys):
        self.controller.on_connection_checked(False, "Failed to connect to Sensibo API: 401")

        self.controller.listener.start.assert_not_called()
        self.app.quit.assert_called_once()
        assert self.controller.exit_code == 1
        assert "Please check your configuration" in capsys.readouterr().out

    def test_listener_start_failure_exits_cleanly(self, capsys):
        """pynput without a display raises ImportError; the app must quit, not abort"""
        self.controller.listener.start = Mock(side_effect=ImportError("this platform is not supported"))

        self.worker.connection_checked.emit(True, "AC is currently ON at 24°C")

        self.app.quit.assert_called_once()
        assert self.controller.exit_code == 1
        assert "Keyboard listener unavailable: this platform is not supported" in capsys.readouterr().out

    def test_state_changes_are_logged(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="ac_controller"):
            self.controller.state_manager.queue_command(Command.toggle())
            self.controller.state_manager.start_command_processing(Command.toggle())

        assert "'pending_commands': 1" in caplog.text
        assert "Status: Processing toggle" in caplog.text


class FakeAPI:
    """Stands in for SensiboAPI in the one-shot CLI helpers"""
    instance = None

    def __init__(self):
        self.client = make_client()
        self.client.sync_power_state = AsyncMock()

    @classmethod
    def from_config(cls, config):
        cls.instance = cls()
        return cls.instance

    async def __aenter__(self):
        return self.client

    async def __aexit__(self, exc_type, exc, tb):
        return False


class TestCommandLine:
    @pytest.mark.parametrize("name,value,expected", [
        ("toggle", None, Command.toggle()),
        ("on", None, Command.power_on()),
        ("off", None, Command.power_off()),
        ("status", None, Command.voice_status()),
        ("set", "24", Command.set_temperature(24)),
    ])
    def test_parse_cli_command(self, name, value, expected):
        assert parse_cli_command(name, value) == expected

    @pytest.mark.parametrize("name,value", [("set", None), ("set", "warm"), ("fan", None)])
    def test_parse_cli_command_errors(self, name, value):
        with pytest.raises(ValueError):
            parse_cli_command(name, value)

    def test_keys_lists_bindings(self, capsys):
        assert main(["keys"]) == 0
        out = capsys.readouterr().out
        assert "Keyboard shortcuts" in out
        assert "CTRL" in out

    def test_run_once_quiet(self, monkeypatch, caplog):
        monkeypatch.setattr(ac_controller, "SensiboAPI", FakeAPI)

        with caplog.at_level(logging.INFO, logger="voice"):
            result = asyncio.run(run_once(make_config(), Command.set_temperature(19), quiet=True))

        assert result.success
        FakeAPI.instance.client.set_temperature.assert_awaited_once_with(19)
        assert "(quiet) Temperature set to 19 degrees" in caplog.text

    def test_sync_power(self, monkeypatch):
        monkeypatch.setattr(ac_controller, "SensiboAPI", FakeAPI)

        assert asyncio.run(sync_power(make_config(), True)) is True
        FakeAPI.instance.client.sync_power_state.assert_awaited_once_with(True)

    def test_sync_power_failure(self, monkeypatch):
        class BrokenAPI(FakeAPI):
            def __init__(self):
                super().__init__()
                self.client.sync_power_state = AsyncMock(side_effect=SensiboAPIError("404"))

        monkeypatch.setattr(ac_controller, "SensiboAPI", BrokenAPI)

        assert asyncio.run(sync_power(make_config(), False)) is False

    def test_configure_logging_writes_file(self, tmp_path):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        log_file = tmp_path / "ac.log"
        try:
            configure_logging("debug", str(log_file))
            logging.getLogger("orchestrator").debug("hello from the test")
            for handler in root.handlers:
                handler.flush()
            assert root.level == logging.DEBUG
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

        assert "[DEBUG] orchestrator: hello from the test" in log_file.read_text(encoding="utf-8")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
