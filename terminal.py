#!/usr/bin/env python3
"""
VoxTerm - Two-party voice terminal

Main entry point wiring the call audio core to its surroundings:
- Configuration from ~/.voxterm/config.toml
- Push-to-talk via a global hotkey (⌃⌥␣ by default), momentary or toggle
- Optional VOX keying
- An echo-test station as the remote end of the call
- Status indicators (TX, RX, VOX, connection) in the log
"""

import asyncio
import logging
import signal
import sys
from typing import Optional
import argparse

from config.settings import TerminalConfig, load_config
from core.audio import (
    AudioPipelineConfig,
    AudioSetupError,
    CallAudioPipeline,
    ConnectionState,
    GlobalHotkeyHandler,
    HotkeyConfig,
    LoopbackEndpoint,
    PttInput,
    UnsupportedSampleRateError,
    VoxState,
)
from utils.events import (
    ConnectionChanged,
    DeviceError,
    EventEmitter,
    LevelChanged,
    PipelineError,
    ReceiveChanged,
    TransmitChanged,
    VoxStateChanged,
)
from utils.metrics import log_latency, clear_metrics

logger = logging.getLogger(__name__)


def setup_logging(log_file: Optional[str] = "voxterm.log", verbose: bool = False, quiet: bool = False) -> None:
    """Configure root logging to stdout plus an optional log file."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )

    if quiet:
        logging.getLogger().setLevel(logging.WARNING)
    elif verbose:
        logging.getLogger().setLevel(logging.DEBUG)


class VoiceTerminal:
    """
    Orchestrator for one voice terminal session.

    Builds the call audio pipeline against an echo-test station, feeds the
    hotkey into PTT and reports pipeline events as status indicators.
    """

    def __init__(self,
                 config: TerminalConfig,
                 quiet: bool = False,
                 emitter: Optional[EventEmitter] = None):
        self.config = config
        self.quiet = quiet
        self.emitter = emitter or EventEmitter()

        self.remote: Optional[LoopbackEndpoint] = None
        self.pipeline: Optional[CallAudioPipeline] = None
        self.hotkey_handler: Optional[GlobalHotkeyHandler] = None
        self.ptt: Optional[PttInput] = None

        self.is_running = False
        self.shutdown_event = asyncio.Event()
        self._unsubscribers = []
        self._last_level_db = None

        self._subscribe_indicators()

    def _subscribe_indicators(self) -> None:
        subscribe = self.emitter.subscribe
        self._unsubscribers = [
            subscribe(TransmitChanged, self._on_transmit_changed),
            subscribe(ReceiveChanged, self._on_receive_changed),
            subscribe(VoxStateChanged, self._on_vox_state_changed),
            subscribe(ConnectionChanged, self._on_connection_changed),
            subscribe(LevelChanged, self._on_level_changed),
            subscribe(DeviceError, self._on_device_error),
            subscribe(PipelineError, self._on_pipeline_error),
        ]

    def build_pipeline(self, capture=None, playback=None, scheduler=None) -> bool:
        """
        Create the remote endpoint and the call audio pipeline.

        Args:
            capture: Capture device override (probed when None)
            playback: Playback device override (probed when None)
            scheduler: Scheduler override (running loop when None)

        Returns:
            True if the pipeline was built, False if audio setup failed
        """
        audio_config = AudioPipelineConfig.from_config(self.config)
        self.remote = LoopbackEndpoint(
            scheduler=scheduler,
            sample_rate=audio_config.network_sample_rate,
            connect_delay=float(self.config.call.get("echo_connect_delay", 0.5)),
            block_ms=audio_config.block_ms,
        )

        try:
            self.pipeline = CallAudioPipeline(
                audio_config,
                self.remote,
                capture=capture,
                playback=playback,
                scheduler=scheduler,
                emitter=self.emitter,
            )
        except (UnsupportedSampleRateError, AudioSetupError) as e:
            self.emitter.emit(PipelineError(message=str(e), error=e))
            self.pipeline = None
            return False

        hotkey_config = HotkeyConfig(
            hotkey=self.config.ptt.get("hotkey", HotkeyConfig.hotkey),
            toggle_mode=bool(self.config.ptt.get("toggle_mode", False)),
        )
        self.ptt = PttInput(on_change=self.pipeline.set_ptt, mode=hotkey_config.mode)
        self.hotkey_handler = GlobalHotkeyHandler(self.ptt, hotkey_config)
        return True

    async def start(self) -> bool:
        """Start the terminal and place a call to the echo-test station."""
        if self.is_running:
            return True

        if self.pipeline is None and not self.build_pipeline():
            return False

        if not self.pipeline.start():
            logger.warning("Not all audio devices could be opened; continuing")

        if not self.hotkey_handler.start():
            logger.warning("PTT hotkey unavailable; VOX is the only way to transmit")

        if self.config.call.get("accept_incoming", False):
            self.remote.accept()
        else:
            self.remote.connect()

        self.is_running = True

        if not self.quiet:
            mode = "toggle" if self.config.ptt.get("toggle_mode") else "hold"
            print("\n" + "="*60)
            print("📻 VOXTERM READY")
            print("="*60)
            print(f"🎙️  {mode.capitalize()} {self.hotkey_handler.config.hotkey} to talk")
            print(f"🔁 Connected to the {self.remote.name} station")
            print("🛑 Press Ctrl+C to quit")
            print("="*60 + "\n")

        logger.info("VoxTerm started")
        return True

    async def stop(self):
        """Hang up and release all audio resources."""
        self.shutdown_event.set()
        if not self.is_running and self.pipeline is None:
            return

        logger.info("Shutting down VoxTerm...")

        if self.hotkey_handler:
            self.hotkey_handler.stop()

        if self.remote and self.remote.state is not ConnectionState.DISCONNECTED:
            self.remote.disconnect()

        if self.pipeline:
            self.pipeline.teardown()

        if not self.quiet:
            print("\n📊 Final Performance Report:")
            log_latency()

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

        self.is_running = False
        logger.info("VoxTerm stopped")

    def request_shutdown(self) -> None:
        self.shutdown_event.set()

    # Status indicators

    def _on_transmit_changed(self, event: TransmitChanged):
        logger.info("TX %s", "●" if event.active else "○")

    def _on_receive_changed(self, event: ReceiveChanged):
        logger.info("RX %s", "●" if event.active else "○")

    def _on_vox_state_changed(self, event: VoxStateChanged):
        if event.state is VoxState.HANG:
            logger.debug("VOX hang")
        else:
            logger.info("VOX %s", event.state.name)

    def _on_connection_changed(self, event: ConnectionChanged):
        logger.info("Call %s", event.state.value)
        if event.state is ConnectionState.DISCONNECTED and self.is_running:
            self.request_shutdown()

    def _on_level_changed(self, event: LevelChanged):
        # Coarse meter: only whole 6 dB steps are reported
        step = int(event.level_db // 6)
        if step != self._last_level_db:
            self._last_level_db = step
            logger.debug("VOX level %.0f dB", event.level_db)

    def _on_device_error(self, event: DeviceError):
        logger.error("Audio device error (%s %s): %s", event.role, event.device, event.message)

    def _on_pipeline_error(self, event: PipelineError):
        logger.error("Audio setup failed: %s", event.message)


# CLI and Main Entry Point

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="VoxTerm voice terminal")
    parser.add_argument("--config", "-c", help="Path to config file (default ~/.voxterm/config.toml)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    parser.add_argument("--quiet", "-q", action="store_true", help="Quiet mode")
    parser.add_argument("--full-duplex", action="store_true", default=None,
                        help="Keep microphone and speaker open at the same time")
    parser.add_argument("--vox", action="store_true", default=None, help="Enable VOX keying")
    parser.add_argument("--toggle", action="store_true", default=None,
                        help="Hotkey toggles transmit instead of hold-to-talk")
    parser.add_argument("--accept", action="store_true", default=None,
                        help="Accept the call immediately instead of dialing")
    return parser


def apply_overrides(config: TerminalConfig, args: argparse.Namespace) -> TerminalConfig:
    """Apply command line switches on top of the loaded configuration."""
    if args.full_duplex is not None:
        config.audio["full_duplex"] = args.full_duplex
    if args.vox is not None:
        config.vox["enabled"] = args.vox
    if args.toggle is not None:
        config.ptt["toggle_mode"] = args.toggle
    if args.accept is not None:
        config.call["accept_incoming"] = args.accept
    if args.verbose:
        config.ui["verbose"] = True
    if args.quiet:
        config.ui["quiet"] = True
    return config


def setup_signal_handlers(terminal: VoiceTerminal):
    """Setup graceful shutdown on SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, initiating shutdown...")
        loop.call_soon_threadsafe(terminal.request_shutdown)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


async def main(argv=None):
    """Main entry point for the voice terminal."""
    args = build_parser().parse_args(argv)

    config = apply_overrides(load_config(args.config), args)
    setup_logging(
        config.ui.get("log_file") or None,
        verbose=bool(config.ui.get("verbose")),
        quiet=bool(config.ui.get("quiet")),
    )
    clear_metrics()

    terminal = VoiceTerminal(config, quiet=bool(config.ui.get("quiet")))
    setup_signal_handlers(terminal)

    try:
        if await terminal.start():
            await terminal.shutdown_event.wait()
        else:
            logger.error("Failed to start VoxTerm")
            return 1

    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    finally:
        await terminal.stop()

    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
