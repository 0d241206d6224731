"""
Audio playback device and the connect chime.

The graph writes blocks into a bounded buffer on the loop thread; the
sounddevice OutputStream callback drains it on the audio thread and plays
silence on underrun.
"""

import logging
import threading
from collections import deque
from pathlib import Path
from typing import Deque, Optional, Union

import numpy as np
from scipy.io import wavfile

from .device import AudioDevice, DeviceMode, probe_sample_rate, resolve_device
from .nodes import AudioSink, as_block

logger = logging.getLogger(__name__)


class PlaybackDevice(AudioDevice, AudioSink):
    """
    Speaker side of the terminal (sink role).

    Args:
        name: Configured device name ("default" for the host default)
        sample_rate: Rate to open at; probed when None
        block_ms: Callback block length in milliseconds
        buffer_ms: Maximum queued audio; older samples are dropped beyond it
    """

    role = "playback"

    def __init__(self,
                 name: str = "default",
                 sample_rate: Optional[int] = None,
                 block_ms: int = 20,
                 buffer_ms: int = 500):
        AudioDevice.__init__(self, name, sample_rate or 0)
        self.block_ms = block_ms
        self.buffer_ms = buffer_ms
        self._stream = None
        self._lock = threading.Lock()
        self._pending: Deque[np.ndarray] = deque()
        self._pending_samples = 0

    @classmethod
    def probe(cls, name: str = "default", preferred_rate: Optional[int] = None, **kwargs) -> Optional["PlaybackDevice"]:
        """Create a playback device at a rate the host accepts, or None."""
        rate = probe_sample_rate(name, "output", preferred_rate)
        if rate is None:
            return None
        return cls(name, rate, **kwargs)

    @property
    def block_size(self) -> int:
        return int(self.sample_rate * self.block_ms / 1000)

    @property
    def max_buffered(self) -> int:
        return int(self.sample_rate * self.buffer_ms / 1000)

    @property
    def buffered(self) -> int:
        with self._lock:
            return self._pending_samples

    def open(self, mode: DeviceMode = DeviceMode.WRITE) -> bool:
        if mode is not DeviceMode.WRITE:
            logger.error("Playback device %r can only be opened for writing", self.name)
            return False
        if self.is_open:
            return True

        try:
            import sounddevice as sd

            self._stream = sd.OutputStream(
                device=resolve_device(self.name),
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self.block_size,
                callback=self._audio_callback,
            )
            self._stream.start()
        except Exception as e:
            logger.error(f"Could not open playback device {self.name!r}: {e}")
            self._stream = None
            return False

        self._mode = mode
        logger.debug("Playback device %r open at %d Hz", self.name, self.sample_rate)
        return True

    def close(self) -> None:
        if self._stream is not None:
            import sounddevice as sd

            try:
                self._stream.stop()
                self._stream.close()
            except sd.PortAudioError as e:
                logger.warning(f"Error closing playback device {self.name!r}: {e}")
            self._stream = None
        self._clear()
        if self._mode is not None:
            logger.debug("Playback device %r closed", self.name)
        self._mode = None

    def write(self, samples: np.ndarray) -> int:
        count = len(samples)
        # A closed speaker is a silent direction, not backpressure
        if not self.is_open or count == 0:
            return count

        block = as_block(samples)
        with self._lock:
            self._pending.append(block)
            self._pending_samples += count
            overflow = self._pending_samples - self.max_buffered
            while overflow > 0 and self._pending:
                head = self._pending[0]
                if len(head) <= overflow:
                    self._pending.popleft()
                    self._pending_samples -= len(head)
                    overflow -= len(head)
                else:
                    self._pending[0] = head[overflow:]
                    self._pending_samples -= overflow
                    overflow = 0
        return count

    def _clear(self) -> None:
        with self._lock:
            self._pending.clear()
            self._pending_samples = 0

    def _audio_callback(self, outdata, frames, time, status):
        """Sounddevice callback, runs on the audio thread."""
        if status:
            logger.debug(f"Playback callback status: {status}")
        out = outdata[:, 0]
        filled = 0
        with self._lock:
            while filled < frames and self._pending:
                head = self._pending[0]
                take = min(len(head), frames - filled)
                out[filled:filled + take] = head[:take]
                filled += take
                if take == len(head):
                    self._pending.popleft()
                else:
                    self._pending[0] = head[take:]
                self._pending_samples -= take
        out[filled:] = 0.0


class AudioChimes:
    """Connect sound played into the receive path when a call comes up."""

    def __init__(self, sample_rate: int, connect_sound: Union[str, Path, None] = None):
        self.sample_rate = sample_rate
        self.connect_sound_path = Path(connect_sound).expanduser() if connect_sound else None
        self.connect_chime: Optional[np.ndarray] = None
        self._load_chimes()

    def _load_chimes(self):
        """Pre-load the connect sound, falling back to a generated tone."""
        if self.connect_sound_path is None:
            self.connect_chime = self._generate_default_chime(frequency=880, duration=0.15)
            return

        try:
            if self.connect_sound_path.exists():
                sample_rate, audio = wavfile.read(self.connect_sound_path)
                self.connect_chime = self._prepare_audio(audio, sample_rate)
            else:
                logger.warning(f"Connect sound not found at {self.connect_sound_path}")
                self.connect_chime = self._generate_default_chime(frequency=880, duration=0.15)
        except (OSError, ValueError) as e:
            logger.error(f"Error loading connect sound: {e}")
            self.connect_chime = self._generate_default_chime(frequency=880, duration=0.15)

    def _prepare_audio(self, audio: np.ndarray, original_sample_rate: int) -> np.ndarray:
        """Convert a WAV payload to mono float32 at the chime rate."""
        if audio.dtype == np.int16:
            audio = audio.astype(np.float32) / 32768.0
        elif audio.dtype == np.int32:
            audio = audio.astype(np.float32) / 2147483648.0
        elif audio.dtype == np.uint8:
            audio = (audio.astype(np.float32) - 128.0) / 128.0
        else:
            audio = audio.astype(np.float32)

        if len(audio.shape) > 1:
            audio = np.mean(audio, axis=1)

        # Linear interpolation is plenty for a short cue
        if original_sample_rate != self.sample_rate:
            new_length = int(len(audio) * self.sample_rate / original_sample_rate)
            audio = np.interp(
                np.linspace(0, len(audio), new_length, endpoint=False),
                np.arange(len(audio)),
                audio
            )

        return np.asarray(audio, dtype=np.float32)

    def _generate_default_chime(self, frequency: float, duration: float) -> np.ndarray:
        """Generate a sine tone with short fades as a fallback."""
        samples = int(self.sample_rate * duration)
        t = np.linspace(0, duration, samples, False)
        wave = np.sin(2 * np.pi * frequency * t)

        fade_samples = min(int(0.01 * self.sample_rate), samples // 2)
        if fade_samples > 0:
            wave[:fade_samples] *= np.linspace(0, 1, fade_samples)
            wave[-fade_samples:] *= np.linspace(1, 0, fade_samples)

        return (wave * 0.5).astype(np.float32)
