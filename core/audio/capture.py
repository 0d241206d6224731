"""
Audio capture device.

Wraps a sounddevice InputStream. The stream callback runs on PortAudio's
thread, so it only copies the block and hands it to the asyncio loop; the
audio graph is fed exclusively from the loop thread.
"""

import asyncio
import logging
from typing import Optional

import numpy as np

from utils.metrics import timer
from .device import AudioDevice, DeviceMode, probe_sample_rate, resolve_device
from .nodes import AudioSource

logger = logging.getLogger(__name__)


class CaptureDevice(AudioDevice, AudioSource):
    """
    Microphone side of the terminal (source role).

    Args:
        name: Configured device name ("default" for the host default)
        sample_rate: Rate to open at; probed when None
        block_ms: Callback block length in milliseconds
        loop: Event loop that receives blocks; the running loop by default
    """

    role = "capture"

    def __init__(self,
                 name: str = "default",
                 sample_rate: Optional[int] = None,
                 block_ms: int = 20,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        AudioSource.__init__(self)
        AudioDevice.__init__(self, name, sample_rate or 0)
        self.block_ms = block_ms
        self._loop = loop
        self._stream = None
        # Bumped on close so blocks already queued on the loop are dropped
        self._generation = 0

    @classmethod
    def probe(cls, name: str = "default", preferred_rate: Optional[int] = None, **kwargs) -> Optional["CaptureDevice"]:
        """Create a capture device at a rate the host accepts, or None."""
        rate = probe_sample_rate(name, "input", preferred_rate)
        if rate is None:
            return None
        return cls(name, rate, **kwargs)

    @property
    def block_size(self) -> int:
        return int(self.sample_rate * self.block_ms / 1000)

    def open(self, mode: DeviceMode = DeviceMode.READ) -> bool:
        if mode is not DeviceMode.READ:
            logger.error("Capture device %r can only be opened for reading", self.name)
            return False
        if self.is_open:
            return True

        try:
            import sounddevice as sd

            if self._loop is None:
                self._loop = asyncio.get_running_loop()
            self._stream = sd.InputStream(
                device=resolve_device(self.name),
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self.block_size,
                callback=self._audio_callback,
            )
            self._stream.start()
        except Exception as e:
            logger.error(f"Could not open capture device {self.name!r}: {e}")
            self._stream = None
            return False

        self._mode = mode
        logger.debug("Capture device %r open at %d Hz", self.name, self.sample_rate)
        return True

    def close(self) -> None:
        self._generation += 1
        if self._stream is not None:
            import sounddevice as sd

            try:
                self._stream.stop()
                self._stream.close()
            except sd.PortAudioError as e:
                logger.warning(f"Error closing capture device {self.name!r}: {e}")
            self._stream = None
        if self._mode is not None:
            logger.debug("Capture device %r closed", self.name)
        self._mode = None

    def _audio_callback(self, indata, frames, time, status):
        """
        Sounddevice callback, runs on the audio thread.

        Keep it short: copy the mono channel and post it to the loop.
        """
        if status:
            logger.debug(f"Capture callback status: {status}")
        block = np.array(indata[:, 0], dtype=np.float32)
        generation = self._generation
        try:
            self._loop.call_soon_threadsafe(self._deliver, generation, block)
        except RuntimeError:
            # Loop already closed during shutdown
            pass

    def _deliver(self, generation: int, block: np.ndarray) -> None:
        if generation != self._generation or not self.is_open:
            return
        with timer("tx_block"):
            self._forward(block)
