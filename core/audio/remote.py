"""
Remote voice endpoint.

The network side of a call is an external collaborator: it accepts the
locally captured audio (sink role), produces decoded remote audio (source
role) and reports connection state changes. RemoteEndpoint is that
interface; LoopbackEndpoint is an echo-test station that plays back what
was sent to it, useful for checking a sound setup without a peer.
"""

import asyncio
import logging
from typing import Callable, List, Optional

import numpy as np

from .nodes import AudioSink, AudioSource, as_block
from .states import ConnectionState
from utils.metrics import timer

logger = logging.getLogger(__name__)


class RemoteEndpoint(AudioSink, AudioSource):
    """Interface of the network side of a call."""

    def __init__(self, name: str = "remote", sample_rate: int = 8000):
        AudioSource.__init__(self)
        self.name = name
        self.sample_rate = sample_rate
        self._state = ConnectionState.DISCONNECTED
        self._receiving = False
        self._state_listeners: List[Callable[[ConnectionState], None]] = []
        self._receiving_listeners: List[Callable[[bool], None]] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_receiving(self) -> bool:
        return self._receiving

    def add_state_listener(self, listener: Callable[[ConnectionState], None]) -> Callable[[], None]:
        self._state_listeners.append(listener)
        return lambda: self._remove(self._state_listeners, listener)

    def add_receiving_listener(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        self._receiving_listeners.append(listener)
        return lambda: self._remove(self._receiving_listeners, listener)

    def connect(self) -> None:
        raise NotImplementedError

    def disconnect(self) -> None:
        raise NotImplementedError

    def accept(self) -> None:
        raise NotImplementedError

    def _forward(self, samples: np.ndarray) -> int:
        with timer("rx_block"):
            return super()._forward(samples)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._state = state
        logger.info("%s: connection state %s", self.name, state.name)
        for listener in list(self._state_listeners):
            listener(state)

    def _set_receiving(self, receiving: bool) -> None:
        if receiving == self._receiving:
            return
        self._receiving = receiving
        for listener in list(self._receiving_listeners):
            listener(receiving)

    @staticmethod
    def _remove(listeners: list, listener) -> None:
        if listener in listeners:
            listeners.remove(listener)


class LoopbackEndpoint(RemoteEndpoint):
    """
    Echo-test station.

    Records what the local side transmits while connected and, once the
    local transmission ends (the stream is flushed), sends it back in real
    time blocks. Starting to transmit again cuts the echo short.

    Args:
        scheduler: Object with ``call_later``; the running asyncio loop by default
        sample_rate: Network sample rate of the audio exchanged
        connect_delay: Seconds spent in CONNECTING before CONNECTED
        max_seconds: Longest recording kept for echo
        block_ms: Size of the echo blocks sent back
    """

    def __init__(self,
                 scheduler=None,
                 sample_rate: int = 8000,
                 connect_delay: float = 0.5,
                 max_seconds: float = 30.0,
                 block_ms: int = 20):
        super().__init__(name="echotest", sample_rate=sample_rate)
        self._scheduler = scheduler
        self.connect_delay = connect_delay
        self.max_samples = int(max_seconds * sample_rate)
        self.block_size = int(block_ms * sample_rate / 1000)
        self._recording: List[np.ndarray] = []
        self._recorded = 0
        self._echo: Optional[np.ndarray] = None
        self._echo_pos = 0
        self._timer = None

    def _call_later(self, delay: float, callback):
        scheduler = self._scheduler or asyncio.get_running_loop()
        return scheduler.call_later(delay, callback)

    def connect(self) -> None:
        if self._state is not ConnectionState.DISCONNECTED:
            return
        self._set_state(ConnectionState.CONNECTING)
        self._cancel_timer()
        self._timer = self._call_later(self.connect_delay, self._on_connected)

    def accept(self) -> None:
        if self._state is ConnectionState.CONNECTED:
            return
        self._cancel_timer()
        self._set_state(ConnectionState.CONNECTED)

    def disconnect(self) -> None:
        self._cancel_timer()
        self._stop_echo()
        self._reset_recording()
        self._set_state(ConnectionState.DISCONNECTED)

    def remote_hangup(self, linger: float = 0.5) -> None:
        """Simulate the far end saying goodbye."""
        if self._state is not ConnectionState.CONNECTED:
            return
        self._stop_echo()
        self._reset_recording()
        self._set_state(ConnectionState.BYE_RECEIVED)
        self._cancel_timer()
        self._timer = self._call_later(linger, self.disconnect)

    def write(self, samples: np.ndarray) -> int:
        count = len(samples)
        if self._state is not ConnectionState.CONNECTED or count == 0:
            return count
        if self._echo is not None:
            self._stop_echo()
        room = self.max_samples - self._recorded
        if room > 0:
            block = as_block(samples)[:room]
            self._recording.append(block)
            self._recorded += len(block)
        return count

    def flush_samples(self) -> None:
        if self._state is not ConnectionState.CONNECTED or not self._recording:
            return
        self._echo = np.concatenate(self._recording)
        self._echo_pos = 0
        self._reset_recording()
        logger.debug("Echoing %.1fs of audio", len(self._echo) / self.sample_rate)
        self._set_receiving(True)
        self._send_next_block()

    def release(self) -> None:
        self._cancel_timer()
        self._stop_echo()
        self._reset_recording()

    def _on_connected(self) -> None:
        self._timer = None
        self._set_state(ConnectionState.CONNECTED)

    def _send_next_block(self) -> None:
        self._timer = None
        if self._echo is None:
            return
        block = self._echo[self._echo_pos:self._echo_pos + self.block_size]
        self._echo_pos += len(block)
        if len(block):
            self._forward(block)
        if self._echo_pos >= len(self._echo):
            self._stop_echo()
            return
        self._timer = self._call_later(self.block_size / self.sample_rate, self._send_next_block)

    def _stop_echo(self) -> None:
        if self._echo is None:
            return
        self._echo = None
        self._echo_pos = 0
        self._cancel_timer()
        self._forward_flush()
        self._set_receiving(False)

    def _reset_recording(self) -> None:
        self._recording = []
        self._recorded = 0

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
