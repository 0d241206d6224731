"""
Duplex arbitration: which sound card roles are open at any moment.
"""

import logging
from typing import Optional

from utils.events import DeviceError, EventEmitter
from utils.metrics import timer
from .device import AudioDevice, DeviceMode
from .nodes import Valve
from .states import DuplexMode

logger = logging.getLogger(__name__)

RECEIVE = "receive"
TRANSMIT = "transmit"


class DuplexArbiter:
    """
    Owns the capture and playback devices of a call.

    Full duplex opens both roles once at call start and never touches them
    again until shutdown. Half duplex keeps exactly one role open: playback
    while receiving, capture while transmitting. A device that fails to open
    is reported and left closed; the next switch tries again.
    """

    def __init__(self,
                 mode: DuplexMode,
                 capture: AudioDevice,
                 playback: AudioDevice,
                 rx_valve: Valve,
                 emitter: Optional[EventEmitter] = None):
        self.mode = mode
        self.capture = capture
        self.playback = playback
        self._rx_valve = rx_valve
        self.emitter = emitter or EventEmitter()
        self._direction: Optional[str] = None

    @property
    def direction(self) -> Optional[str]:
        """Current role: RECEIVE, TRANSMIT, or None before start and after shutdown."""
        return self._direction

    def start(self) -> bool:
        """
        Open the devices for call start.

        Returns:
            True if every device that should be open opened
        """
        if self.mode is DuplexMode.FULL:
            mic_ok = self._open(self.capture, DeviceMode.READ)
            spkr_ok = self._open(self.playback, DeviceMode.WRITE)
            self._rx_valve.set_open(True)
            self._direction = RECEIVE
            logger.info("Full duplex audio started (mic=%s, speaker=%s)",
                        "ok" if mic_ok else "FAILED", "ok" if spkr_ok else "FAILED")
            return mic_ok and spkr_ok

        self.capture.close()
        spkr_ok = self._open(self.playback, DeviceMode.WRITE)
        self._rx_valve.set_open(True)
        self._direction = RECEIVE
        logger.info("Half duplex audio started in receive mode (speaker=%s)",
                    "ok" if spkr_ok else "FAILED")
        return spkr_ok

    def switch_to_transmit(self) -> bool:
        if self.mode is DuplexMode.FULL or self._direction is None:
            return self.capture.is_open

        with timer("duplex_switch"):
            self._rx_valve.set_open(False)
            self.playback.close()
            self.capture.close()
            ok = self._open(self.capture, DeviceMode.READ)
        self._direction = TRANSMIT
        logger.debug("Half duplex switched to transmit")
        return ok

    def switch_to_receive(self) -> bool:
        if self.mode is DuplexMode.FULL or self._direction is None:
            return self.playback.is_open

        with timer("duplex_switch"):
            self.capture.close()
            ok = self._open(self.playback, DeviceMode.WRITE)
            self._rx_valve.set_open(True)
        self._direction = RECEIVE
        logger.debug("Half duplex switched to receive")
        return ok

    def ensure_receive(self) -> bool:
        """Make sure the receive path is live while in receive mode."""
        if self._direction != RECEIVE:
            return False
        if self.mode is DuplexMode.HALF and not self.playback.is_open:
            self._open(self.playback, DeviceMode.WRITE)
        self._rx_valve.set_open(True)
        return self.playback.is_open

    def shutdown(self) -> None:
        """Close both devices; later switch requests are ignored."""
        self._rx_valve.set_open(False)
        self.capture.close()
        self.playback.close()
        self._direction = None

    def _open(self, device: AudioDevice, mode: DeviceMode) -> bool:
        with timer("device_open"):
            ok = device.open(mode)
        if not ok:
            message = f"Could not open {device.role} audio device {device.name!r}"
            logger.warning(message)
            self.emitter.emit(DeviceError(device=device.name, role=device.role, message=message))
        return ok
