"""
Transmit gate: the one place that decides whether local audio goes out.
"""

import logging
from typing import Optional

from utils.events import EventEmitter, TransmitChanged
from .nodes import Valve
from .states import ConnectionState, DuplexMode, VoxState, transmit_decision

logger = logging.getLogger(__name__)


class TransmitGate:
    """
    Combines PTT, VOX and connection state into the transmit decision.

    The decision is recomputed from its inputs on every change and only
    edges act: a rising edge reconfigures devices (half duplex) and then
    opens the transmit valve; a falling edge closes the valve before any
    device is touched. The gate is the only writer of the transmit valve.
    """

    def __init__(self,
                 tx_valve: Valve,
                 arbiter=None,
                 duplex_mode: DuplexMode = DuplexMode.FULL,
                 emitter: Optional[EventEmitter] = None):
        self._tx_valve = tx_valve
        self._arbiter = arbiter
        self._duplex_mode = duplex_mode
        self.emitter = emitter or EventEmitter()

        self._ptt = False
        self._vox_enabled = False
        self._vox_state = VoxState.IDLE
        self._connection_state = ConnectionState.DISCONNECTED
        self._transmitting = False

        self._tx_valve.set_open(False)

    @property
    def transmitting(self) -> bool:
        return self._transmitting

    @property
    def ptt_pressed(self) -> bool:
        return self._ptt

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection_state

    def set_ptt(self, pressed: bool) -> None:
        self._ptt = bool(pressed)
        self.update()

    def set_vox(self, enabled: bool, state: VoxState) -> None:
        self._vox_enabled = bool(enabled)
        self._vox_state = state
        self.update()

    def set_connection_state(self, state: ConnectionState) -> None:
        self._connection_state = state
        self.update()

    def force_off(self) -> None:
        """Drop every transmit request, as on call teardown."""
        self._ptt = False
        self._vox_state = VoxState.IDLE
        self._connection_state = ConnectionState.DISCONNECTED
        self.update()

    def update(self) -> bool:
        """Recompute the decision and act on an edge. Returns the decision."""
        decision = transmit_decision(
            self._connection_state, self._ptt, self._vox_enabled, self._vox_state
        )
        if decision != self._transmitting:
            self._transmitting = decision
            if decision:
                self._start_transmit()
            else:
                self._stop_transmit()
            logger.info("TX: %s", "ON" if decision else "OFF")
            self.emitter.emit(TransmitChanged(decision))
        return decision

    def _start_transmit(self) -> None:
        if self._duplex_mode is DuplexMode.HALF and self._arbiter is not None:
            self._arbiter.switch_to_transmit()
        self._tx_valve.set_open(True)

    def _stop_transmit(self) -> None:
        self._tx_valve.set_open(False)
        if self._duplex_mode is DuplexMode.HALF and self._arbiter is not None:
            self._arbiter.switch_to_receive()
