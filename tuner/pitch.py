"""
Pitch estimation — finds the fundamental frequency of a block.

Three strategies, all with the same .estimate(block, spectrum) interface so
the session (and the app) can swap between them:
  1. YinEstimator: time-domain YIN (default, robust against octave errors)
  2. PeakPickingEstimator: loudest FFT bin (simple fallback)
  3. CrepeEstimator: pre-trained CNN, see tuner/crepe.py

Use make_estimator("yin" | "peak" | "crepe") to build one by name.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from tuner.config import (
    DEFAULT_ESTIMATOR,
    FMAX,
    FMIN,
    SILENCE_RMS,
    YIN_THRESHOLD,
)

ESTIMATORS = ("yin", "peak", "crepe")


@dataclass(frozen=True)
class PitchEstimate:
    """
    Result of one estimation: a frequency in Hz, or None for "no pitch".

    confidence is in [0, 1]. What it means depends on the strategy
    (periodicity for YIN/CREPE, always 1.0 for peak picking).
    """

    frequency: Optional[float] = None
    confidence: float = 0.0

    @classmethod
    def none(cls, confidence=0.0):
        return cls(None, confidence)

    @classmethod
    def detected(cls, frequency, confidence=1.0):
        if not frequency > 0:
            raise ValueError(f"Detected pitch must be positive, got {frequency}")
        return cls(float(frequency), float(confidence))

    @property
    def is_detected(self):
        return self.frequency is not None


NO_PITCH = PitchEstimate.none()


class PeakPickingEstimator:
    """
    Report the frequency of the loudest non-DC bin.

    Cheap, but it follows energy rather than pitch: a string whose second
    harmonic is louder than its fundamental gets reported an octave high.
    The resolution is also one bin (sample_rate / n_fft), ~21 Hz for a
    2048-sample block at 44.1kHz.
    """

    def estimate(self, block, spectrum):
        # Skip bin 0 (DC offset, not a pitch)
        magnitudes = spectrum.magnitudes[1:]
        if magnitudes.size == 0 or not np.any(magnitudes > 0):
            return NO_PITCH
        # argmax returns the first maximum, so exact ties favour the lower bin
        peak = int(np.argmax(magnitudes)) + 1
        return PitchEstimate.detected(spectrum.frequencies[peak], 1.0)


class YinEstimator:
    """
    YIN pitch detection (de Cheveigné & Kawahara, 2002).

    Works on the raw samples instead of the spectrum:
      1. Difference function: how much does the signal differ from itself
         shifted by tau samples? A periodic signal gives dips at its period.
      2. Cumulative mean normalization: divides out the general downward
         trend so the first real dip stands out (values near 0 = periodic).
      3. Absolute threshold: take the first tau whose normalized difference
         drops below `threshold`, then slide to the bottom of that dip.
      4. Parabolic interpolation: refine tau between samples.

    Taking the *first* good dip (not the deepest) is what keeps YIN from
    reporting sub-octaves at 2x, 3x the period.
    """

    def __init__(self, threshold=YIN_THRESHOLD, fmin=FMIN, fmax=FMAX,
                 silence_rms=SILENCE_RMS):
        if not 0 < fmin < fmax:
            raise ValueError(f"Need 0 < fmin < fmax, got {fmin}, {fmax}")
        self.threshold = threshold
        self.fmin = fmin
        self.fmax = fmax
        self.silence_rms = silence_rms

    def estimate(self, block, spectrum=None):
        x = block.samples
        sr = block.sample_rate
        if block.rms < self.silence_rms:
            return NO_PITCH

        # Integration window: half the block, so every lag up to W fits
        window = x.size // 2
        tau_min = max(2, int(sr / self.fmax))
        tau_max = min(window - 1, int(np.ceil(sr / self.fmin)))
        if tau_max <= tau_min:
            return NO_PITCH

        cmnd = self._normalized_difference(x, window, tau_max + 2)

        below = np.nonzero(cmnd[tau_min:tau_max + 1] < self.threshold)[0]
        if below.size == 0:
            return PitchEstimate.none(max(0.0, 1.0 - float(np.min(cmnd[tau_min:tau_max + 1]))))

        tau = tau_min + int(below[0])
        while tau + 1 <= tau_max and cmnd[tau + 1] < cmnd[tau]:
            tau += 1

        period = self._parabolic(cmnd, tau)
        confidence = float(np.clip(1.0 - cmnd[tau], 0.0, 1.0))
        return PitchEstimate.detected(sr / period, confidence)

    @staticmethod
    def _normalized_difference(x, window, n_lags):
        n_lags = min(n_lags, x.size - window + 1)
        head = x[:window]
        diff = np.zeros(n_lags)
        for tau in range(1, n_lags):
            delta = head - x[tau:tau + window]
            diff[tau] = np.dot(delta, delta)

        cmnd = np.ones(n_lags)
        running = np.cumsum(diff[1:])
        lags = np.arange(1, n_lags)
        with np.errstate(divide="ignore", invalid="ignore"):
            cmnd[1:] = np.where(running > 0, diff[1:] * lags / running, 1.0)
        return cmnd

    @staticmethod
    def _parabolic(values, i):
        if i <= 0 or i >= values.size - 1:
            return float(i)
        left, centre, right = values[i - 1], values[i], values[i + 1]
        denominator = left - 2 * centre + right
        if denominator == 0:
            return float(i)
        return i + 0.5 * (left - right) / denominator


def make_estimator(name=DEFAULT_ESTIMATOR, **kwargs):
    """
    Build a pitch estimator by name.

    Args:
        name: "yin", "peak" or "crepe"
        **kwargs: passed to the estimator's constructor

    Raises:
        ValueError for unknown names
    """
    key = name.lower()
    if key == "yin":
        return YinEstimator(**kwargs)
    if key == "peak":
        return PeakPickingEstimator(**kwargs)
    if key == "crepe":
        # torch is heavy; only pay for it when CREPE is actually chosen
        from tuner.crepe import CrepeEstimator

        return CrepeEstimator(**kwargs)
    raise ValueError(f"Unknown pitch estimator {name!r}, expected one of {ESTIMATORS}")
