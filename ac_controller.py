#!/usr/bin/env python3
"""
❄️ Sensibo AC Controller
Global hotkeys for the air conditioner, with spoken feedback
"""

import sys
import signal
import asyncio
import logging
import argparse
from typing import Optional

from PyQt6.QtCore import QCoreApplication, QObject, QThread, QTimer, pyqtSignal

from config_models import AppConfig, ConfigurationError, load_app_config
from hotkey_decoder import Command, HotkeyDecoder
from keyboard_listener import KeyboardListener
from orchestrator import Action, ActionKind, CommandOrchestrator, OperationFailed, OperationResult
from sensibo_api import SensiboAPI, SensiboAPIError
from state_manager import CommandStateManager
from voice import NullFeedback, VoiceFeedback

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Console logging plus an optional log file"""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True
    )


def build_orchestrator(config: AppConfig, client, feedback) -> CommandOrchestrator:
    return CommandOrchestrator(
        client,
        feedback,
        retry_policy=config.retry_policy,
        temp_bounds=config.temp_bounds
    )


class ControllerWorker(QThread):
    """Runs the asyncio loop that talks to Sensibo, in its own thread"""
    command_started = pyqtSignal(str)
    command_completed = pyqtSignal(object)  # OperationResult
    connection_checked = pyqtSignal(bool, str)

    def __init__(self, config: AppConfig, state_manager: Optional[CommandStateManager] = None,
                 client=None, feedback=None):
        super().__init__()
        self.config = config
        self.loop = None
        self.client = client or SensiboAPI.from_config(config)
        self.feedback = feedback or VoiceFeedback.from_config(config)
        self.orchestrator = build_orchestrator(config, self.client, self.feedback)
        self.state_manager = state_manager
        self._cmd_queue = asyncio.Queue()
        self._main_task = None
        self._stopping = False

    def run(self):
        """Runs the asyncio loop until stop() cancels it"""
        if self._stopping:
            return
        self.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.loop)
        self._main_task = self.loop.create_task(self._async_main())
        try:
            self.loop.run_until_complete(self._main_task)
        except asyncio.CancelledError:
            logger.debug("Worker cancelled")
        finally:
            self.loop.close()

    async def _async_main(self):
        try:
            if not await self.check_connection():
                return
            await self.orchestrator.run(
                self._cmd_queue,
                on_start=self._on_command_started,
                on_result=self._on_command_completed
            )
        finally:
            self.feedback.stop()
            await self.client.close()
            if self.state_manager:
                self.state_manager.clear()

    async def check_connection(self) -> bool:
        """Read the AC state once, under the retry policy"""
        try:
            state = await self.orchestrator.execute(Action(ActionKind.READ_STATE))
        except OperationFailed as e:
            message = f"Failed to connect to Sensibo API: {e}"
            logger.error(message)
            self.connection_checked.emit(False, message)
            return False

        message = f"AC is currently {'ON' if state.on else 'OFF'}"
        if state.target_temperature is not None:
            message += f" at {state.target_temperature}°C"
        logger.info(message)
        self.connection_checked.emit(True, message)
        try:
            await self.feedback.announce_ac_state(state.on, state.target_temperature)
        except Exception as e:
            logger.error(f"Voice feedback failed: {e}")
        return True

    def _enqueue(self, command: Command):
        if self.state_manager:
            self.state_manager.queue_command(command)
        self._cmd_queue.put_nowait(command)

    def _on_command_started(self, command: Command):
        if self.state_manager:
            self.state_manager.start_command_processing(command)
            self.state_manager.ensure_sequential_processing()
        self.command_started.emit(str(command))

    def _on_command_completed(self, result: OperationResult):
        if self.state_manager:
            self.state_manager.complete_command_processing(result.success, result.message)
        self.command_completed.emit(result)

    def queue_command(self, command: Command):
        """Thread-safe: called from the keyboard listener thread"""
        if self.loop and not self._stopping:
            self.loop.call_soon_threadsafe(self._enqueue, command)
        else:
            logger.warning(f"Worker not running, dropping {command}")

    def stop(self, timeout_ms: int = 3000):
        self._stopping = True
        if self.loop and self._main_task and not self.loop.is_closed():
            try:
                self.loop.call_soon_threadsafe(self._main_task.cancel)
            except RuntimeError:
                # Loop closed in the meantime
                pass
        self.wait(timeout_ms)


class ACController(QObject):
    """Wires keyboard listener → decoder → worker for the hotkey daemon"""

    def __init__(self, config: AppConfig, app: QCoreApplication, worker: Optional[ControllerWorker] = None):
        super().__init__()
        self.app = app
        self.state_manager = CommandStateManager()
        self.worker = worker or ControllerWorker(config, self.state_manager)
        self.decoder = HotkeyDecoder()
        self.listener = KeyboardListener(self.decoder, self.worker.queue_command)
        self.exit_code = 0

        self.worker.connection_checked.connect(self.on_connection_checked)
        self.worker.command_completed.connect(self.on_command_completed)
        self.state_manager.queue_size_changed.connect(self.on_queue_size_changed)
        self.state_manager.status_changed.connect(self.on_status_changed)

    def start(self):
        logger.info("Starting AC Controller...")
        logger.info("Keyboard shortcuts:")
        for line in self.decoder.describe_bindings():
            logger.info(f"  {line}")
        logger.info("Press CTRL+C to exit")
        self.worker.start()

    def on_connection_checked(self, ok: bool, message: str):
        if not ok:
            print(f"❌ {message}")
            print("   Please check your configuration.")
            self.exit_code = 1
            self.app.quit()
            return

        print(f"🟢 {message}")
        try:
            self.listener.start()
        except Exception as e:
            # An exception escaping a Qt slot aborts the process
            logger.exception("Cannot start the keyboard listener")
            print(f"❌ Keyboard listener unavailable: {e}")
            print("   Global hotkeys need a desktop session (X11, Windows or macOS).")
            self.exit_code = 1
            self.app.quit()

    def on_command_completed(self, result: OperationResult):
        icon = "✅" if result.success else "❌"
        print(f"{icon} {result.message}")

    def on_queue_size_changed(self, queue_size: int):
        if queue_size > 1:
            logger.info(f"Command queue size: {queue_size}")
        logger.debug(f"Command state: {self.state_manager.get_state_info()}")

    def on_status_changed(self, status: str):
        logger.debug(f"Status: {status}")

    def stop(self):
        logger.info("Stopping AC Controller...")
        self.listener.stop()
        self.worker.stop()
        logger.info("AC Controller stopped")


async def run_once(config: AppConfig, command: Command, quiet: bool = False) -> OperationResult:
    """Handle a single command outside the hotkey daemon"""
    feedback = NullFeedback() if quiet else VoiceFeedback.from_config(config)
    async with SensiboAPI.from_config(config) as client:
        orchestrator = build_orchestrator(config, client, feedback)
        return await orchestrator.handle(command)


async def sync_power(config: AppConfig, on: bool) -> bool:
    async with SensiboAPI.from_config(config) as client:
        try:
            await client.sync_power_state(on)
        except SensiboAPIError as e:
            logger.error(f"Failed to sync power state: {e}")
            return False
    return True


def run_listener(config: AppConfig) -> int:
    app = QCoreApplication(sys.argv)
    controller = ACController(config, app)

    def _quit(signum, frame):
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        app.quit()

    signal.signal(signal.SIGINT, _quit)
    signal.signal(signal.SIGTERM, _quit)

    # Let the Python interpreter run signal handlers while Qt's loop spins
    keepalive = QTimer()
    keepalive.timeout.connect(lambda: None)
    keepalive.start(200)

    controller.start()
    code = app.exec()
    controller.stop()
    return controller.exit_code or code


def parse_cli_command(name: str, value: Optional[str]) -> Command:
    """
    Map a CLI word to a Command

    Raises:
        ValueError: unknown command or bad temperature
    """
    simple = {
        "toggle": Command.toggle,
        "on": Command.power_on,
        "off": Command.power_off,
        "status": Command.voice_status,
    }
    if name in simple:
        return simple[name]()
    if name == "set":
        if value is None:
            raise ValueError("Specify the temperature: ac_controller.py set <temp>")
        return Command.set_temperature(int(value))
    raise ValueError(f"Unknown command '{name}'")


def load_config() -> AppConfig:
    try:
        import config
    except ImportError:
        print("❌ Configuration file 'config.py' not found.")
        print("   Please copy 'config.sample.py' to 'config.py' and fill in your Sensibo details.")
        sys.exit(1)

    try:
        return load_app_config(config)
    except ConfigurationError as e:
        for error in e.errors:
            print(f"❌ {error}")
        sys.exit(1)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="❄️ Sensibo AC Controller - global hotkeys with voice feedback",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
🎯 COMMANDS:
  ac_controller.py               Listen for hotkeys (default)
  ac_controller.py status        📊 Speak target and room temperature
  ac_controller.py toggle        🔁 Toggle AC on/off
  ac_controller.py on | off      ⚡ Turn AC on / off
  ac_controller.py set 24        🌡️  Set target temperature
  ac_controller.py sync on|off   🔧 Correct Sensibo's power state (no IR sent)
  ac_controller.py keys          ⌨️  Show hotkeys
        """
    )
    parser.add_argument('command', nargs='?', default='listen',
                        choices=['listen', 'status', 'toggle', 'on', 'off', 'set', 'sync', 'keys'])
    parser.add_argument('value', nargs='?', help='Temperature for "set", on/off for "sync"')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    parser.add_argument('-q', '--quiet', action='store_true', help='No voice feedback for one-shot commands')
    args = parser.parse_args(argv)

    if args.command == 'keys':
        print("⌨️  Keyboard shortcuts:")
        for line in HotkeyDecoder().describe_bindings():
            print(f"  {line}")
        return 0

    if args.command == 'sync' and args.value not in ('on', 'off'):
        parser.error('sync requires "on" or "off"')

    config = load_config()
    configure_logging('DEBUG' if args.verbose else config.log_level, config.log_file)

    if args.command == 'listen':
        return run_listener(config)

    if args.command == 'sync':
        ok = asyncio.run(sync_power(config, args.value == 'on'))
        print(f"🔧 Power state synchronized to {args.value.upper()}" if ok else "❌ Sync failed")
        return 0 if ok else 1

    try:
        command = parse_cli_command(args.command, args.value)
    except ValueError as e:
        parser.error(str(e))

    result = asyncio.run(run_once(config, command, quiet=args.quiet))
    print(f"✅ {result.message}" if result.success else f"❌ {result.message}")
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
