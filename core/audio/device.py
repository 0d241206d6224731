"""
Common device-layer pieces shared by capture and playback.
"""

import logging
from enum import Enum
from typing import Iterable, Optional, Union

logger = logging.getLogger(__name__)

PROBE_RATES = (48000, 16000, 8000)


class DeviceMode(Enum):
    """Direction a device is opened in."""
    READ = "read"
    WRITE = "write"


class AudioDevice:
    """
    Base for a local sound card endpoint.

    ``open()`` reports failure by returning False and never raises, so a
    broken device leaves its direction silent instead of ending the call.
    """

    role = "device"

    def __init__(self, name: str, sample_rate: int):
        self.name = name
        self._sample_rate = sample_rate
        self._mode: Optional[DeviceMode] = None

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def is_open(self) -> bool:
        return self._mode is not None

    @property
    def mode(self) -> Optional[DeviceMode]:
        return self._mode

    def open(self, mode: DeviceMode) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        state = self._mode.value if self._mode else "closed"
        return f"{type(self).__name__}({self.name!r}, {self._sample_rate} Hz, {state})"


def resolve_device(name: Optional[str]) -> Union[int, str, None]:
    """Map a configured device name to what sounddevice expects."""
    if name is None:
        return None
    name = str(name).strip()
    if name in ("", "default"):
        return None
    if name.isdigit():
        return int(name)
    return name


def probe_sample_rate(device: Optional[str],
                      kind: str,
                      preferred: Optional[int] = None,
                      candidates: Iterable[int] = PROBE_RATES) -> Optional[int]:
    """
    Find a sample rate the host accepts for a device.

    The configured card rate is tried first, then the supported tiers from
    high to low.

    Args:
        device: Configured device name
        kind: "input" or "output"
        preferred: Configured card sample rate, if any

    Returns:
        The first accepted rate, or None if the device takes none of them
    """
    # PortAudio is loaded on first use so hosts without a sound card can still build graphs
    try:
        import sounddevice as sd
    except OSError as e:
        logger.error(f"PortAudio is not available: {e}")
        return None

    check = sd.check_input_settings if kind == "input" else sd.check_output_settings
    rates = [preferred] if preferred else []
    rates += [rate for rate in candidates if rate != preferred]

    for rate in rates:
        try:
            check(device=resolve_device(device), samplerate=rate, channels=1, dtype="float32")
        except (sd.PortAudioError, ValueError) as e:
            logger.debug("%s device %r rejects %d Hz: %s", kind, device, rate, e)
            continue
        logger.info("%s device %r runs at %d Hz", kind.capitalize(), device or "default", rate)
        return rate

    logger.error("%s device %r accepts none of %s", kind.capitalize(), device, rates)
    return None
