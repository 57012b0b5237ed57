"""
Spectral analysis: from samples to a magnitude spectrum.

A block of N samples goes through a forward FFT. Bin i sits at
i * sample_rate / N Hz and its magnitude is the length of the complex
coefficient. For real-valued input the upper half of the FFT mirrors the
lower half, so we only keep bins 0 .. N/2 - 1 (everything below Nyquist).

No 1/N scaling is applied: a louder block gives proportionally larger
magnitudes. Blocks whose length isn't a power of two are zero-padded up to
the next one.
"""

from dataclasses import dataclass

import librosa
import numpy as np


def next_power_of_two(n):
    return 1 << (int(n) - 1).bit_length()


@dataclass(frozen=True, eq=False)
class Spectrum:
    """Read-only (frequency, magnitude) bins of one analysed block."""

    frequencies: np.ndarray
    magnitudes: np.ndarray
    sample_rate: int

    def __len__(self):
        return self.magnitudes.size

    @property
    def n_fft(self):
        return 2 * self.magnitudes.size

    @property
    def bin_width(self):
        return self.sample_rate / self.n_fft

    def to_db(self):
        """Magnitudes in decibels relative to the loudest bin (for plotting)."""
        return librosa.amplitude_to_db(self.magnitudes, ref=np.max)


class SpectralAnalyzer:
    def transform(self, block):
        """
        Compute the magnitude spectrum of an AudioBlock.

        Returns:
            Spectrum with exactly n_fft / 2 bins, where n_fft is the block
            length rounded up to a power of two.
        """
        n_fft = next_power_of_two(len(block))
        # rfft zero-pads the input when n_fft is longer than the block
        coefficients = np.fft.rfft(block.samples, n=n_fft)

        half = n_fft // 2
        magnitudes = np.abs(coefficients[:half])
        frequencies = librosa.fft_frequencies(sr=block.sample_rate, n_fft=n_fft)[:half]

        magnitudes.setflags(write=False)
        frequencies.setflags(write=False)
        return Spectrum(frequencies, magnitudes, block.sample_rate)
