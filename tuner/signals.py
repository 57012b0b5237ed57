"""
Synthetic signals with known frequencies.

Used by SyntheticSource (a stand-in microphone for demos) and by the tests.
We simulate guitar-like sounds by combining:
  1. A fundamental frequency (the note's pitch)
  2. Harmonics (integer multiples of the fundamental — this is what gives
     instruments their unique timbre/tone color)
  3. Random noise (simulates real-world recording conditions)
"""

import numpy as np

from tuner.config import SAMPLE_RATE, BLOCK_SIZE


def sine_wave(freq, n_samples=BLOCK_SIZE, sr=SAMPLE_RATE, amplitude=0.5, start=0):
    """
    A pure sine at `freq` Hz. `start` is the index of the first sample, so
    consecutive calls can continue the same wave without a phase jump.
    """
    t = (np.arange(n_samples) + start) / sr
    return amplitude * np.sin(2 * np.pi * freq * t)


def harmonic_tone(f0, n_samples=BLOCK_SIZE, sr=SAMPLE_RATE, n_harmonics=5,
                  noise_level=0.0, start=0, rng=None):
    """
    Generate an audio signal that mimics a plucked string.

    Args:
        f0: Fundamental frequency in Hz (the "pitch" we hear)
        n_samples: Length in samples
        sr: Sample rate
        n_harmonics: Number of partials including the fundamental.
                     Real guitar strings produce 5-15+ harmonics.
        noise_level: How much random noise to add (0 = clean, 1 = all noise)
        start: Index of the first sample (for phase-continuous blocks)
        rng: numpy Generator for the noise. Defaults to a fresh one.

    Returns:
        numpy array of samples in [-1, 1]
    """
    if n_harmonics < 1:
        raise ValueError("n_harmonics must be at least 1 (the fundamental)")
    t = (np.arange(n_samples) + start) / sr
    signal = np.zeros(n_samples)

    # A guitar string vibrating at 110 Hz (A2) also produces energy at
    # 220 Hz, 330 Hz, 440 Hz, etc. Each harmonic is quieter than the last.
    for h in range(1, n_harmonics + 1):
        amplitude = 1.0 / h  # 1, 1/2, 1/3, ...
        signal += amplitude * np.sin(2 * np.pi * f0 * h * t)

    # Scale by the largest peak the partials could reach together, so every
    # block of the same tone gets the same gain (no jumps between blocks)
    signal = signal / sum(1.0 / h for h in range(1, n_harmonics + 1))

    if noise_level > 0:
        rng = rng if rng is not None else np.random.default_rng()
        signal = signal + noise_level * rng.standard_normal(n_samples)

    return np.clip(signal, -1.0, 1.0)
