"""
Shared state types for the call audio core.
"""

from enum import Enum


class ConnectionState(Enum):
    """Connection state reported by the remote endpoint."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BYE_RECEIVED = "bye_received"


class VoxState(Enum):
    """Voice activity state of the VOX detector."""
    IDLE = "idle"      # no voice, gate closed
    ACTIVE = "active"  # level above threshold
    HANG = "hang"      # below threshold, release timer running


class DuplexMode(Enum):
    """Whether capture and playback may be open at the same time."""
    FULL = "full"
    HALF = "half"


def transmit_decision(connection_state: ConnectionState,
                      ptt_pressed: bool,
                      vox_enabled: bool,
                      vox_state: VoxState) -> bool:
    """Whether the local side may transmit right now."""
    if connection_state is not ConnectionState.CONNECTED:
        return False
    return ptt_pressed or (vox_enabled and vox_state is not VoxState.IDLE)
