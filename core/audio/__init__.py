"""
Call audio core for the voice terminal.

This package provides the real-time audio side of a call:
- Audio graph primitives (fifo, valve, splitter) and their owning graph
- Multirate sample-rate conversion between sound card and internal rates
- Voice Operated Transmission (VOX) detection
- Transmit gating and full/half duplex device arbitration
- Sound card capture/playback and push-to-talk input
"""

from .states import (
    ConnectionState,
    VoxState,
    DuplexMode,
    transmit_decision
)

from .nodes import (
    AudioSink,
    AudioSource,
    AudioGraph,
    Fifo,
    Valve,
    Splitter
)

from .multirate import (
    SUPPORTED_RATES,
    SampleChain,
    Decimator,
    Interpolator,
    UnsupportedSampleRateError
)

from .vox import VoxDetector, block_level_db
from .transmit import TransmitGate
from .duplex import DuplexArbiter
from .device import AudioDevice, DeviceMode, probe_sample_rate
from .capture import CaptureDevice
from .playback import PlaybackDevice, AudioChimes
from .hotkey import HotkeyConfig, PttMode, PttInput, GlobalHotkeyHandler
from .remote import RemoteEndpoint, LoopbackEndpoint

from .pipeline import (
    AudioPipelineConfig,
    AudioSetupError,
    CallAudioPipeline
)

__all__ = [
    # States
    'ConnectionState',
    'VoxState',
    'DuplexMode',
    'transmit_decision',

    # Graph primitives
    'AudioSink',
    'AudioSource',
    'AudioGraph',
    'Fifo',
    'Valve',
    'Splitter',

    # Sample rate conversion
    'SUPPORTED_RATES',
    'SampleChain',
    'Decimator',
    'Interpolator',
    'UnsupportedSampleRateError',

    # Transmit control
    'VoxDetector',
    'block_level_db',
    'TransmitGate',
    'DuplexArbiter',

    # Devices and input
    'AudioDevice',
    'DeviceMode',
    'probe_sample_rate',
    'CaptureDevice',
    'PlaybackDevice',
    'AudioChimes',
    'HotkeyConfig',
    'PttMode',
    'PttInput',
    'GlobalHotkeyHandler',
    'RemoteEndpoint',
    'LoopbackEndpoint',

    # Integrated pipeline
    'AudioPipelineConfig',
    'AudioSetupError',
    'CallAudioPipeline'
]
