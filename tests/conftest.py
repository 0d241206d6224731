"""
Shared fixtures for the voice terminal tests.

Nothing here touches a sound card or the keyboard: devices, the remote end
and the event loop timers are replaced by recording fakes.
"""
import heapq
import itertools
from typing import List, Tuple

import numpy as np
import pytest

from core.audio.device import AudioDevice, DeviceMode
from core.audio.nodes import AudioSink, AudioSource, Valve, as_block
from core.audio.remote import RemoteEndpoint
from core.audio.states import ConnectionState
from utils.events import EventEmitter, EventRecorder
from utils.metrics import clear_metrics


class FakeHandle:
    """Cancellable timer handle, like asyncio.TimerHandle."""

    def __init__(self, when: float, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Deterministic stand-in for the event loop's call_soon/call_later."""

    def __init__(self):
        self.now = 0.0
        self._queue = []
        self._seq = itertools.count()

    def call_soon(self, callback, *args):
        return self.call_later(0.0, callback, *args)

    def call_later(self, delay, callback, *args):
        handle = FakeHandle(self.now + delay, callback, args)
        heapq.heappush(self._queue, (handle.when, next(self._seq), handle))
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for _, _, h in self._queue if not h.cancelled)

    def run_pending(self):
        """Run everything due now, including callbacks scheduled meanwhile."""
        self.advance(0.0)

    def advance(self, seconds: float):
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self.now = max(self.now, when)
            handle.callback(*handle.args)
        self.now = target


class TracingValve(Valve):
    """Valve that records open/close transitions into a shared trace."""

    def __init__(self, name: str, trace: List[Tuple[str, str]], is_open: bool = False):
        super().__init__(is_open)
        self.name = name
        self.trace = trace

    def set_open(self, is_open: bool) -> None:
        if is_open != self.is_open:
            self.trace.append(("open" if is_open else "close", self.name))
        super().set_open(is_open)


class FakeCapture(AudioDevice, AudioSource):
    role = "capture"

    def __init__(self, sample_rate: int = 48000, trace=None, fail_open: bool = False, name: str = "mic"):
        AudioSource.__init__(self)
        AudioDevice.__init__(self, name, sample_rate)
        self.trace = trace if trace is not None else []
        self.fail_open = fail_open

    def open(self, mode: DeviceMode) -> bool:
        self.trace.append(("open", self.role))
        if self.fail_open:
            return False
        self._mode = mode
        return True

    def close(self) -> None:
        self.trace.append(("close", self.role))
        self._mode = None

    def push(self, samples) -> int:
        """Deliver one captured block, as the loop would after the audio callback."""
        if not self.is_open:
            return 0
        return self._forward(as_block(samples))


class FakePlayback(AudioDevice, AudioSink):
    role = "playback"

    def __init__(self, sample_rate: int = 48000, trace=None, fail_open: bool = False, name: str = "speaker"):
        AudioDevice.__init__(self, name, sample_rate)
        self.trace = trace if trace is not None else []
        self.fail_open = fail_open
        self.blocks = []
        self.flushes = 0

    def open(self, mode: DeviceMode) -> bool:
        self.trace.append(("open", self.role))
        if self.fail_open:
            return False
        self._mode = mode
        return True

    def close(self) -> None:
        self.trace.append(("close", self.role))
        self._mode = None

    def write(self, samples) -> int:
        if self.is_open:
            self.blocks.append(as_block(samples).copy())
        return len(samples)

    def flush_samples(self) -> None:
        self.flushes += 1

    @property
    def received(self) -> np.ndarray:
        if not self.blocks:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(self.blocks)


class FakeRemote(RemoteEndpoint):
    """Remote endpoint driven by the test."""

    def __init__(self, sample_rate: int = 8000):
        super().__init__(name="fake", sample_rate=sample_rate)
        self.blocks = []
        self.flushes = 0

    def connect(self) -> None:
        self._set_state(ConnectionState.CONNECTING)

    def accept(self) -> None:
        self._set_state(ConnectionState.CONNECTED)

    def disconnect(self) -> None:
        self._set_state(ConnectionState.DISCONNECTED)

    def set_state(self, state: ConnectionState) -> None:
        self._set_state(state)

    def set_receiving(self, receiving: bool) -> None:
        self._set_receiving(receiving)

    def write(self, samples) -> int:
        self.blocks.append(as_block(samples).copy())
        return len(samples)

    def flush_samples(self) -> None:
        self.flushes += 1

    def deliver(self, samples) -> int:
        return self._forward(as_block(samples))

    @property
    def sent(self) -> np.ndarray:
        if not self.blocks:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(self.blocks)


class RecordingSink(AudioSink):
    """Sink that accepts at most ``limit`` samples per write (None for all)."""

    def __init__(self, limit=None):
        self.limit = limit
        self.blocks = []
        self.flushes = 0

    def write(self, samples) -> int:
        samples = as_block(samples)
        take = len(samples) if self.limit is None else min(self.limit, len(samples))
        if take:
            self.blocks.append(samples[:take].copy())
        return take

    def flush_samples(self) -> None:
        self.flushes += 1

    @property
    def received(self) -> np.ndarray:
        if not self.blocks:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(self.blocks)


def square_block(level_db: float, size: int = 320) -> np.ndarray:
    """Zero-mean block whose average-rectified level is exactly ``level_db``."""
    amplitude = 10.0 ** (level_db / 20.0)
    block = np.full(size, amplitude, dtype=np.float32)
    block[1::2] = -amplitude
    return block


def tone(frequency: float, sample_rate: int, duration: float, amplitude: float = 0.5) -> np.ndarray:
    t = np.arange(int(sample_rate * duration)) / sample_rate
    return (amplitude * np.sin(2 * np.pi * frequency * t)).astype(np.float32)


@pytest.fixture(autouse=True)
def reset_metrics():
    clear_metrics()
    yield
    clear_metrics()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def emitter():
    return EventEmitter()


@pytest.fixture
def recorder(emitter):
    rec = EventRecorder(emitter)
    yield rec
    rec.close()


@pytest.fixture
def trace():
    return []
