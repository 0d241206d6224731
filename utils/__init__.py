"""
Utility modules for the voice terminal.
"""

from .events import (
    EventEmitter,
    EventRecorder,
    LevelChanged,
    VoxStateChanged,
    TransmitChanged,
    ReceiveChanged,
    ConnectionChanged,
    DeviceError,
    PipelineError,
)
from .metrics import timer, get_stats, log_latency, clear_metrics

__all__ = [
    "EventEmitter",
    "EventRecorder",
    "LevelChanged",
    "VoxStateChanged",
    "TransmitChanged",
    "ReceiveChanged",
    "ConnectionChanged",
    "DeviceError",
    "PipelineError",
    "timer",
    "get_stats",
    "log_latency",
    "clear_metrics",
]
