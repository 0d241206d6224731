"""
Call audio pipeline.

Assembles the audio graph of one call and ties it to the call's
connection state:

    capture -> tx_chain -> tx_splitter -> vox
                                      \\-> tx_net_chain -> tx_valve -> remote

    remote -> rx_fifo -> rx_valve -> rx_net_chain -> rx_chain -> playback

``tx_chain``/``rx_chain`` convert between the sound card rate and the
internal processing rate; ``tx_net_chain``/``rx_net_chain`` convert between
the internal rate and the rate the remote endpoint speaks. All control
decisions run as discrete events on the asyncio loop.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from utils.events import (
    ConnectionChanged,
    EventEmitter,
    ReceiveChanged,
    VoxStateChanged,
)
from .capture import CaptureDevice
from .device import AudioDevice
from .duplex import DuplexArbiter
from .multirate import SampleChain
from .nodes import AudioGraph, Fifo, Splitter, Valve
from .playback import AudioChimes, PlaybackDevice
from .remote import RemoteEndpoint
from .states import ConnectionState, DuplexMode
from .transmit import TransmitGate
from .vox import VoxDetector

logger = logging.getLogger(__name__)


class AudioSetupError(RuntimeError):
    """A sound card could not be brought up at any supported rate."""


@dataclass
class AudioPipelineConfig:
    """Configuration read once when a call's pipeline is built."""
    # Devices
    mic_device: str = "default"
    spkr_device: str = "default"
    card_sample_rate: Optional[int] = 48000
    full_duplex: bool = False
    block_ms: int = 20

    # Rates
    internal_sample_rate: int = 16000
    network_sample_rate: int = 8000

    # Receive buffering
    rx_fifo_ms: int = 1000
    rx_prebuffer_ms: int = 160

    # VOX
    vox_enabled: bool = False
    vox_threshold_db: float = -30.0
    vox_delay_ms: int = 1000

    # Played into the receive path when a call connects; empty for none
    connect_sound: Optional[str] = None

    @property
    def duplex_mode(self) -> DuplexMode:
        return DuplexMode.FULL if self.full_duplex else DuplexMode.HALF

    @classmethod
    def from_config(cls, config) -> "AudioPipelineConfig":
        """Create a pipeline config from the terminal configuration."""
        audio = config.audio
        vox = config.vox
        return cls(
            mic_device=audio.get("mic_device", "default"),
            spkr_device=audio.get("spkr_device", "default"),
            card_sample_rate=audio.get("card_sample_rate") or None,
            full_duplex=bool(audio.get("full_duplex", False)),
            block_ms=int(audio.get("block_ms", 20)),
            internal_sample_rate=int(audio.get("internal_sample_rate", 16000)),
            network_sample_rate=int(audio.get("network_sample_rate", 8000)),
            rx_fifo_ms=int(audio.get("rx_fifo_ms", 1000)),
            rx_prebuffer_ms=int(audio.get("rx_prebuffer_ms", 160)),
            vox_enabled=bool(vox.get("enabled", False)),
            vox_threshold_db=float(vox.get("threshold", -30)),
            vox_delay_ms=int(vox.get("delay", 1000)),
            connect_sound=audio.get("connect_sound") or None,
        )


class CallAudioPipeline:
    """
    Audio side of one call.

    Construction probes the sound cards (unless devices are passed in) and
    builds the sample chains from the rates actually found, so a rate that
    cannot be converted fails here, before any device is opened.

    Args:
        config: Pipeline configuration
        remote: Network endpoint of the call
        capture: Capture device; probed from ``config`` when None
        playback: Playback device; probed from ``config`` when None
        scheduler: Object with ``call_soon``/``call_later``; the running
            asyncio loop by default
        emitter: Event emitter the UI layer subscribes to

    Raises:
        UnsupportedSampleRateError: if a needed rate conversion has no plan
        AudioSetupError: if a sound card accepts none of the supported rates
    """

    def __init__(self,
                 config: AudioPipelineConfig,
                 remote: RemoteEndpoint,
                 capture: Optional[AudioDevice] = None,
                 playback: Optional[AudioDevice] = None,
                 scheduler=None,
                 emitter: Optional[EventEmitter] = None):
        self.config = config
        self.remote = remote
        self.emitter = emitter or EventEmitter()
        self._scheduler = scheduler
        self._unsubscribers: List[Callable[[], None]] = []
        self._started = False
        self._torn_down = False

        # Devices first: the chains depend on the rates they really run at
        self.capture = capture or CaptureDevice.probe(
            config.mic_device, config.card_sample_rate, block_ms=config.block_ms
        )
        if self.capture is None:
            raise AudioSetupError(f"Capture device {config.mic_device!r} supports no usable sample rate")
        self.playback = playback or PlaybackDevice.probe(
            config.spkr_device, config.card_sample_rate, block_ms=config.block_ms
        )
        if self.playback is None:
            raise AudioSetupError(f"Playback device {config.spkr_device!r} supports no usable sample rate")

        internal = config.internal_sample_rate
        network = config.network_sample_rate
        self.tx_chain = SampleChain.for_rates(self.capture.sample_rate, internal)
        self.tx_net_chain = SampleChain.for_rates(internal, network)
        self.rx_net_chain = SampleChain.for_rates(network, internal)
        self.rx_chain = SampleChain.for_rates(internal, self.playback.sample_rate)

        self.rx_fifo = Fifo(
            capacity=network * config.rx_fifo_ms // 1000,
            prebuffer=network * config.rx_prebuffer_ms // 1000,
            overwrite=True,
        )
        self.rx_valve = Valve(is_open=False)
        self.tx_valve = Valve(is_open=False)
        self.tx_splitter = Splitter(max_backlog=internal)
        self.vox = VoxDetector(
            emitter=self.emitter,
            scheduler=scheduler,
            threshold_db=config.vox_threshold_db,
            delay_ms=config.vox_delay_ms,
        )

        self.graph = AudioGraph()
        self._build_graph()

        self.arbiter = DuplexArbiter(
            config.duplex_mode, self.capture, self.playback, self.rx_valve, self.emitter
        )
        self.gate = TransmitGate(self.tx_valve, self.arbiter, config.duplex_mode, self.emitter)
        self.chimes = AudioChimes(network, config.connect_sound) if config.connect_sound else None

        self.set_vox_enabled(config.vox_enabled)

        self._unsubscribers.append(self.emitter.subscribe(VoxStateChanged, self._on_vox_state_changed))
        self._unsubscribers.append(self.remote.add_state_listener(self.on_connection_state))
        self._unsubscribers.append(self.remote.add_receiving_listener(self._on_remote_receiving))

        logger.info(
            "Audio pipeline: mic %d Hz (%d:1), speaker %d Hz (1:%d), internal %d Hz, network %d Hz, %s duplex",
            self.capture.sample_rate, self.tx_chain.ratio,
            self.playback.sample_rate, self.rx_chain.ratio,
            internal, network, config.duplex_mode.value
        )

    def _build_graph(self) -> None:
        graph = self.graph
        graph.add("capture", self.capture, owned=False)
        graph.add("tx_chain", self.tx_chain)
        graph.add("tx_splitter", self.tx_splitter)
        graph.add("vox", self.vox)
        graph.add("tx_net_chain", self.tx_net_chain)
        graph.add("tx_valve", self.tx_valve)
        graph.add("remote", self.remote, owned=False)
        graph.add("rx_fifo", self.rx_fifo)
        graph.add("rx_valve", self.rx_valve)
        graph.add("rx_net_chain", self.rx_net_chain)
        graph.add("rx_chain", self.rx_chain)
        graph.add("playback", self.playback, owned=False)

        graph.connect("capture", "tx_chain")
        graph.connect("tx_chain", "tx_splitter")
        graph.connect("tx_splitter", "vox")
        graph.connect("tx_splitter", "tx_net_chain")
        graph.connect("tx_net_chain", "tx_valve")
        graph.connect("tx_valve", "remote")

        graph.connect("remote", "rx_fifo")
        graph.connect("rx_fifo", "rx_valve")
        graph.connect("rx_valve", "rx_net_chain")
        graph.connect("rx_net_chain", "rx_chain")
        graph.connect("rx_chain", "playback")

    @property
    def duplex_mode(self) -> DuplexMode:
        return self.config.duplex_mode

    @property
    def transmitting(self) -> bool:
        return self.gate.transmitting

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    def start(self) -> bool:
        """
        Open the devices for the start of the call.

        Returns:
            True if every device that should be open opened
        """
        if self._torn_down:
            raise RuntimeError("Pipeline has been torn down")
        if self._started:
            return True
        self._started = True
        ok = self.arbiter.start()
        if self.gate.transmitting:
            # Keyed up before the devices existed
            ok = self.arbiter.switch_to_transmit() and ok
        self.gate.set_connection_state(self.remote.state)
        return ok

    def set_ptt(self, pressed: bool) -> None:
        """Normalized push-to-talk signal."""
        if self._torn_down:
            return
        self.gate.set_ptt(pressed)

    def set_vox_enabled(self, enabled: bool) -> None:
        if enabled and self.duplex_mode is DuplexMode.HALF:
            # The microphone is closed while receiving, VOX only extends a PTT transmission
            logger.warning("VOX in half duplex mode cannot start a transmission on its own")
        self.vox.set_enabled(enabled)
        self._sync_vox()

    def set_vox_threshold(self, threshold_db: float) -> None:
        self.vox.set_threshold(threshold_db)

    def set_vox_delay(self, delay_ms: int) -> None:
        self.vox.set_delay(delay_ms)

    def on_connection_state(self, state: ConnectionState) -> None:
        """React to a connection state change of the remote endpoint."""
        if self._torn_down:
            return

        was_connected = self.gate.connection_state is ConnectionState.CONNECTED
        self.emitter.emit(ConnectionChanged(state))
        self.gate.set_connection_state(state)

        if state is ConnectionState.CONNECTED and self._started:
            self.arbiter.ensure_receive()
            if not was_connected and self.chimes is not None:
                self.rx_fifo.write(self.chimes.connect_chime)
                self.rx_fifo.flush_samples()

    def teardown(self) -> None:
        """
        Dismantle the pipeline at call end.

        Order: transmit forced off, devices closed, graph edges detached,
        buffers released. Safe to call more than once.
        """
        if self._torn_down:
            return
        self._torn_down = True

        self.gate.force_off()
        self.arbiter.shutdown()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self.graph.release()
        logger.info("Audio pipeline torn down")

    def status(self) -> Dict[str, Any]:
        """Snapshot of the pipeline state."""
        return {
            "connection_state": self.gate.connection_state.value,
            "transmitting": self.gate.transmitting,
            "ptt_pressed": self.gate.ptt_pressed,
            "receiving": self.remote.is_receiving,
            "duplex": self.duplex_mode.value,
            "direction": self.arbiter.direction,
            "capture_open": self.capture.is_open,
            "playback_open": self.playback.is_open,
            "rx_valve_open": self.rx_valve.is_open,
            "tx_valve_open": self.tx_valve.is_open,
            "vox": {
                "enabled": self.vox.enabled,
                "state": self.vox.state.value,
                "threshold_db": self.vox.threshold_db,
                "delay_ms": self.vox.delay_ms,
                "level_db": self.vox.level_db,
            },
            "rates": {
                "capture": self.capture.sample_rate,
                "playback": self.playback.sample_rate,
                "internal": self.config.internal_sample_rate,
                "network": self.config.network_sample_rate,
            },
            "torn_down": self._torn_down,
        }

    def _call_soon(self, callback: Callable[[], None]) -> None:
        scheduler = self._scheduler or asyncio.get_running_loop()
        scheduler.call_soon(callback)

    def _on_vox_state_changed(self, event: VoxStateChanged) -> None:
        # Raised from inside block processing; device switches wait for the next loop turn
        self._call_soon(self._sync_vox)

    def _sync_vox(self) -> None:
        if self._torn_down:
            return
        self.gate.set_vox(self.vox.enabled, self.vox.state)

    def _on_remote_receiving(self, receiving: bool) -> None:
        self.emitter.emit(ReceiveChanged(receiving))
