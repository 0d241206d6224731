"""
Voice Operated Transmission (VOX) detector.

Sits on the transmit path as a sink, measures each block's level and runs
the IDLE/ACTIVE/HANG state machine that keys the transmitter. The level is
an average-rectified estimate around the block's own DC offset, which is
cheap and good enough for keying; it is not an RMS or SPL measurement.
"""

import asyncio
import logging
import math
from typing import Optional

import numpy as np

from utils.events import EventEmitter, LevelChanged, VoxStateChanged
from .nodes import AudioSink
from .states import VoxState

logger = logging.getLogger(__name__)

LEVEL_FLOOR_DB = -60.0
LEVEL_CEILING_DB = 0.0


def block_level_db(samples: np.ndarray) -> float:
    """
    Average-rectified level of one block in dB, clamped to [-60, 0].

    Raises:
        ValueError: if the block holds no samples
    """
    count = len(samples)
    if count <= 0:
        raise ValueError("VOX level needs a block with at least one sample")

    block = np.asarray(samples, dtype=np.float64)
    dc_offset = block.mean()
    level = np.abs(block - dc_offset).sum() / count

    if level <= 0.001:
        return LEVEL_FLOOR_DB
    if level >= 1.0:
        return LEVEL_CEILING_DB
    return max(LEVEL_FLOOR_DB, min(LEVEL_CEILING_DB, 20.0 * math.log10(level)))


class VoxDetector(AudioSink):
    """
    VOX state machine driven by transmit-path audio.

    Args:
        emitter: Where LevelChanged and VoxStateChanged events are published
        scheduler: Object with ``call_later(seconds, callback)`` returning a
            cancellable handle; defaults to the running asyncio loop
        enabled: Initial enable state
        threshold_db: Keying threshold, clamped to [-60, 0]
        delay_ms: Hang time before returning to IDLE, clamped to >= 0
    """

    def __init__(self,
                 emitter: Optional[EventEmitter] = None,
                 scheduler=None,
                 enabled: bool = False,
                 threshold_db: float = -30.0,
                 delay_ms: int = 1000):
        self.emitter = emitter or EventEmitter()
        self._scheduler = scheduler
        self._enabled = False
        self._threshold_db = -30.0
        self._delay_ms = 1000
        self._state = VoxState.IDLE
        self._hang_timer = None
        self._level_db = LEVEL_FLOOR_DB

        self.set_threshold(threshold_db)
        self.set_delay(delay_ms)
        self.set_enabled(enabled)

    @property
    def state(self) -> VoxState:
        return self._state

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def threshold_db(self) -> float:
        return self._threshold_db

    @property
    def delay_ms(self) -> int:
        return self._delay_ms

    @property
    def level_db(self) -> float:
        """Most recently measured level."""
        return self._level_db

    @property
    def hang_pending(self) -> bool:
        return self._hang_timer is not None

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = bool(enabled)
        if not self._enabled:
            self._emit_level(LEVEL_FLOOR_DB)
            self._set_state(VoxState.IDLE)

    def set_threshold(self, threshold_db: float) -> None:
        self._threshold_db = max(LEVEL_FLOOR_DB, min(LEVEL_CEILING_DB, float(threshold_db)))

    def set_delay(self, delay_ms: int) -> None:
        self._delay_ms = max(0, int(delay_ms))

    def write(self, samples: np.ndarray) -> int:
        count = len(samples)
        if count <= 0:
            raise ValueError("VOX detector was handed an empty block")

        if not self._enabled:
            return count

        level_db = block_level_db(samples)
        self._emit_level(level_db)

        if level_db > self._threshold_db:
            self._set_state(VoxState.ACTIVE)
        elif self._state is VoxState.ACTIVE:
            self._set_state(VoxState.HANG)

        return count

    def release(self) -> None:
        self._cancel_hang_timer()

    def _emit_level(self, level_db: float) -> None:
        self._level_db = level_db
        self.emitter.emit(LevelChanged(level_db))

    def _set_state(self, new_state: VoxState) -> None:
        if new_state is self._state:
            return

        self._state = new_state
        self._cancel_hang_timer()
        if new_state is VoxState.HANG:
            scheduler = self._scheduler or asyncio.get_running_loop()
            self._hang_timer = scheduler.call_later(self._delay_ms / 1000.0, self._on_hang_timeout)

        logger.debug("VOX state -> %s", new_state.name)
        self.emitter.emit(VoxStateChanged(new_state))

    def _cancel_hang_timer(self) -> None:
        if self._hang_timer is not None:
            self._hang_timer.cancel()
            self._hang_timer = None

    def _on_hang_timeout(self) -> None:
        self._hang_timer = None
        if self._state is VoxState.HANG:
            self._set_state(VoxState.IDLE)
