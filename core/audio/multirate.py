"""
Multirate sample-rate conversion between device and internal rates.

Conversions are built from cascaded integer-ratio stages, each a low-pass
FIR followed by (decimation) or preceded by (interpolation) a rate change.
Only the 8/16/48 kHz tiers are supported; the stage plan for every pair is
fixed in the tables below so a chain is fully determined by its two rates.
"""

import logging
from typing import Dict, Sequence, Tuple

import numpy as np
from scipy import signal

from .nodes import EMPTY, AudioSink, AudioSource, as_block

logger = logging.getLogger(__name__)

SUPPORTED_RATES = (8000, 16000, 48000)


def _lowpass(numtaps: int, cutoff_hz: float, fs: int) -> np.ndarray:
    coeffs = signal.firwin(numtaps, cutoff_hz, fs=fs)
    coeffs.setflags(write=False)
    return coeffs


# 16 kHz <-> 8 kHz, telephone passband
COEFF_16_8 = _lowpass(47, 3400.0, 16000)
# 16 kHz -> 48 kHz interpolation
COEFF_48_16 = _lowpass(65, 7000.0, 48000)
# 48 kHz -> 16 kHz decimation, longer filter keeps more of the 8 kHz band
COEFF_48_16_WIDE = _lowpass(95, 7600.0, 48000)
# 16 kHz -> 48 kHz interpolation when the content came from an 8 kHz source
COEFF_48_16_INT = _lowpass(65, 3600.0, 48000)

Plan = Sequence[Tuple[int, np.ndarray]]

DECIMATION_PLANS: Dict[Tuple[int, int], Plan] = {
    (48000, 16000): ((3, COEFF_48_16_WIDE),),
    (16000, 8000): ((2, COEFF_16_8),),
    (48000, 8000): ((3, COEFF_48_16_WIDE), (2, COEFF_16_8)),
}

INTERPOLATION_PLANS: Dict[Tuple[int, int], Plan] = {
    (16000, 48000): ((3, COEFF_48_16),),
    (8000, 16000): ((2, COEFF_16_8),),
    (8000, 48000): ((2, COEFF_16_8), (3, COEFF_48_16_INT)),
}


class UnsupportedSampleRateError(ValueError):
    """No stage plan exists for the requested rate conversion."""

    def __init__(self, from_rate: int, to_rate: int):
        super().__init__(
            f"Unsupported sample rate conversion {from_rate} Hz -> {to_rate} Hz "
            f"(supported rates: {', '.join(str(r) for r in SUPPORTED_RATES)})"
        )
        self.from_rate = from_rate
        self.to_rate = to_rate


class FilterStage:
    """One integer-ratio FIR stage with its own filter history."""

    def __init__(self, ratio: int, coeffs: np.ndarray):
        if ratio < 2:
            raise ValueError(f"Stage ratio must be at least 2, got {ratio}")
        self.ratio = ratio
        self.coeffs = np.asarray(coeffs, dtype=np.float64)
        self._zi = np.zeros(len(self.coeffs) - 1)

    @property
    def taps(self) -> int:
        return len(self.coeffs)

    def reset(self) -> None:
        self._zi = np.zeros(len(self.coeffs) - 1)

    def _filter(self, samples: np.ndarray) -> np.ndarray:
        out, self._zi = signal.lfilter(self.coeffs, 1.0, samples, zi=self._zi)
        return out

    def process(self, samples: np.ndarray) -> np.ndarray:
        raise NotImplementedError


class Decimator(FilterStage):
    """Low-pass filter, then keep every ``ratio``-th sample."""

    def __init__(self, ratio: int, coeffs: np.ndarray):
        super().__init__(ratio, coeffs)
        # Index in the next block of the first sample to keep
        self._phase = 0

    def reset(self) -> None:
        super().reset()
        self._phase = 0

    def process(self, samples: np.ndarray) -> np.ndarray:
        if len(samples) == 0:
            return EMPTY
        filtered = self._filter(samples)
        out = filtered[self._phase::self.ratio]
        self._phase = (self._phase - len(samples)) % self.ratio
        return out.astype(np.float32)


class Interpolator(FilterStage):
    """Zero-stuff by ``ratio``, then low-pass filter with gain ``ratio``."""

    def process(self, samples: np.ndarray) -> np.ndarray:
        if len(samples) == 0:
            return EMPTY
        stuffed = np.zeros(len(samples) * self.ratio)
        stuffed[::self.ratio] = samples
        return (self._filter(stuffed) * self.ratio).astype(np.float32)


class SampleChain(AudioSink, AudioSource):
    """
    Cascade of filter stages converting ``from_rate`` into ``to_rate``.

    The stage list is fixed at construction. An empty chain passes blocks
    through untouched. The chain always consumes its whole input; filter
    history carries over between blocks.
    """

    def __init__(self, from_rate: int, to_rate: int, stages: Sequence[FilterStage]):
        AudioSource.__init__(self)
        self.from_rate = from_rate
        self.to_rate = to_rate
        self._stages: Tuple[FilterStage, ...] = tuple(stages)

    @classmethod
    def decimating(cls, from_rate: int, to_rate: int) -> "SampleChain":
        return cls._build(from_rate, to_rate, DECIMATION_PLANS, Decimator)

    @classmethod
    def interpolating(cls, from_rate: int, to_rate: int) -> "SampleChain":
        return cls._build(from_rate, to_rate, INTERPOLATION_PLANS, Interpolator)

    @classmethod
    def for_rates(cls, from_rate: int, to_rate: int) -> "SampleChain":
        """Pick decimation or interpolation from the direction of the conversion."""
        if from_rate >= to_rate:
            return cls.decimating(from_rate, to_rate)
        return cls.interpolating(from_rate, to_rate)

    @classmethod
    def _build(cls, from_rate, to_rate, plans, stage_type) -> "SampleChain":
        if from_rate not in SUPPORTED_RATES or to_rate not in SUPPORTED_RATES:
            raise UnsupportedSampleRateError(from_rate, to_rate)
        if from_rate == to_rate:
            return cls(from_rate, to_rate, ())
        plan = plans.get((from_rate, to_rate))
        if plan is None:
            raise UnsupportedSampleRateError(from_rate, to_rate)
        chain = cls(from_rate, to_rate, [stage_type(ratio, coeffs) for ratio, coeffs in plan])
        logger.debug("Sample chain %d -> %d Hz: %s", from_rate, to_rate,
                     " x ".join(f"{type(s).__name__}({s.ratio})" for s in chain.stages))
        return chain

    @property
    def stages(self) -> Tuple[FilterStage, ...]:
        return self._stages

    @property
    def ratio(self) -> int:
        """Composed integer ratio of all stages (1 for a pass-through chain)."""
        ratio = 1
        for stage in self._stages:
            ratio *= stage.ratio
        return ratio

    @property
    def is_passthrough(self) -> bool:
        return not self._stages

    def process(self, samples: np.ndarray) -> np.ndarray:
        block = as_block(samples)
        for stage in self._stages:
            block = stage.process(block)
        return block

    def write(self, samples: np.ndarray) -> int:
        out = self.process(samples)
        if len(out):
            self._forward(out)
        return len(samples)

    def flush_samples(self) -> None:
        self._forward_flush()

    def reset(self) -> None:
        """Drop filter history so the next block starts from silence."""
        for stage in self._stages:
            stage.reset()

    def release(self) -> None:
        self.reset()
