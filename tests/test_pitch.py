"""
Tests for tuner/pitch.py — pitch estimation strategies.

Covers:
- PitchEstimate constructors and NoPitch
- Peak picking: DC exclusion, lower-bin tie break, silence
- YIN: accuracy on sines and harmonic tones, silence/noise -> NoPitch
- make_estimator strategy selection
"""

from typing import Optional, get_type_hints

import numpy as np
import pytest

from tuner.audio import AudioBlock
from tuner.pitch import (
    NO_PITCH,
    PeakPickingEstimator,
    PitchEstimate,
    YinEstimator,
    make_estimator,
)
from tuner.signals import harmonic_tone
from tuner.spectrum import SpectralAnalyzer, Spectrum

SR = 44100


def _cents(a, b):
    return 1200 * np.log2(a / b)


def _spectrum(magnitudes, sr=SR):
    magnitudes = np.asarray(magnitudes, dtype=float)
    n_fft = 2 * magnitudes.size
    return Spectrum(np.arange(magnitudes.size) * sr / n_fft, magnitudes, sr)


# ---------------------------------------------------------------------------
# PitchEstimate
# ---------------------------------------------------------------------------


class TestPitchEstimate:
    def test_no_pitch(self):
        assert NO_PITCH.frequency is None
        assert not NO_PITCH.is_detected

    def test_detected(self):
        estimate = PitchEstimate.detected(110.0, 0.9)
        assert estimate.is_detected
        assert estimate.frequency == 110.0
        assert estimate.confidence == 0.9

    @pytest.mark.parametrize("bad", [0.0, -5.0, float("nan")])
    def test_detected_requires_positive(self, bad):
        with pytest.raises(ValueError):
            PitchEstimate.detected(bad)

    def test_frequency_is_optional_float(self):
        assert get_type_hints(PitchEstimate)["frequency"] == Optional[float]


# ---------------------------------------------------------------------------
# Peak picking
# ---------------------------------------------------------------------------


class TestPeakPicking:
    def test_ignores_dc(self):
        spectrum = _spectrum([100.0, 1.0, 5.0, 2.0])
        estimate = PeakPickingEstimator().estimate(None, spectrum)
        assert estimate.frequency == pytest.approx(spectrum.frequencies[2])

    def test_tie_prefers_lower_bin(self):
        spectrum = _spectrum([0.0, 1.0, 7.0, 3.0, 7.0])
        estimate = PeakPickingEstimator().estimate(None, spectrum)
        assert estimate.frequency == pytest.approx(spectrum.frequencies[2])

    def test_silence_is_no_pitch(self):
        assert PeakPickingEstimator().estimate(None, _spectrum(np.zeros(16))) == NO_PITCH

    def test_sine_within_one_bin(self, make_block):
        block = make_block(440.0)
        spectrum = SpectralAnalyzer().transform(block)
        estimate = PeakPickingEstimator().estimate(block, spectrum)
        assert abs(estimate.frequency - 440.0) <= spectrum.bin_width

    def test_follows_loud_harmonic(self):
        # Fundamental quieter than its octave: peak picking reports the octave
        t = np.arange(2048) / SR
        samples = 0.4 * np.sin(2 * np.pi * 110 * t) + 0.6 * np.sin(2 * np.pi * 220 * t)
        block = AudioBlock(samples, SR)
        spectrum = SpectralAnalyzer().transform(block)
        estimate = PeakPickingEstimator().estimate(block, spectrum)
        assert abs(estimate.frequency - 220.0) <= spectrum.bin_width


# ---------------------------------------------------------------------------
# YIN
# ---------------------------------------------------------------------------


class TestYin:
    @pytest.mark.parametrize("freq", [73.42, 82.41, 110.0, 196.0, 329.63, 440.0, 987.77])
    def test_sine_accuracy(self, make_block, freq):
        estimate = YinEstimator().estimate(make_block(freq))
        assert estimate.is_detected
        assert abs(_cents(estimate.frequency, freq)) < 5
        assert estimate.confidence > 0.8

    @pytest.mark.parametrize("freq", [82.41, 110.0, 146.83, 246.94])
    def test_harmonic_tone_reports_fundamental(self, freq):
        block = AudioBlock(harmonic_tone(freq, n_samples=2048, sr=SR, n_harmonics=6), SR)
        estimate = YinEstimator().estimate(block)
        assert abs(_cents(estimate.frequency, freq)) < 10

    def test_loud_octave_still_reports_fundamental(self):
        t = np.arange(2048) / SR
        samples = 0.4 * np.sin(2 * np.pi * 110 * t) + 0.6 * np.sin(2 * np.pi * 220 * t)
        estimate = YinEstimator().estimate(AudioBlock(samples, SR))
        assert abs(_cents(estimate.frequency, 110.0)) < 10

    def test_silence_is_no_pitch(self):
        assert YinEstimator().estimate(AudioBlock(np.zeros(2048), SR)) == NO_PITCH

    def test_white_noise_is_no_pitch(self):
        rng = np.random.default_rng(1234)
        block = AudioBlock(0.5 * rng.standard_normal(2048), SR)
        assert not YinEstimator().estimate(block).is_detected

    def test_below_fmin_is_no_pitch(self, make_block):
        assert not YinEstimator(fmin=200.0).estimate(make_block(110.0)).is_detected

    def test_deterministic(self, make_block):
        block = make_block(261.63)
        assert YinEstimator().estimate(block) == YinEstimator().estimate(block)

    def test_invalid_range(self):
        with pytest.raises(ValueError):
            YinEstimator(fmin=500.0, fmax=100.0)


# ---------------------------------------------------------------------------
# Strategy selection
# ---------------------------------------------------------------------------


class TestMakeEstimator:
    def test_default_is_yin(self):
        assert isinstance(make_estimator(), YinEstimator)

    def test_peak(self):
        assert isinstance(make_estimator("peak"), PeakPickingEstimator)

    def test_case_insensitive_with_kwargs(self):
        estimator = make_estimator("YIN", threshold=0.1)
        assert estimator.threshold == 0.1

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown pitch estimator"):
            make_estimator("hps")
