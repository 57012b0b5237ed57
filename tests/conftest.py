"""
Shared fixtures for the test suite.

Fake sample sources stand in for the microphone so the session can be
exercised without audio hardware.
"""

import threading
import time

import pytest

from tuner.audio import AudioBlock, SampleSource
from tuner.errors import DeviceReadTimeout, DeviceUnavailable
from tuner.signals import sine_wave

SR = 44100
BLOCK = 2048


# ---------------------------------------------------------------------------
# Fake sources
# ---------------------------------------------------------------------------


class ToneSource(SampleSource):
    """Delivers phase-continuous sine blocks as fast as they are read."""

    def __init__(self, frequency=110.0, sample_rate=SR, block_size=BLOCK):
        super().__init__(sample_rate, block_size)
        self.frequency = frequency
        self.position = 0
        self.open_calls = 0
        self.close_calls = 0
        self.reads_after_close = 0

    def open(self):
        self.open_calls += 1
        super().open()

    def close(self):
        self.close_calls += 1
        super().close()

    def read(self, timeout):
        if not self.is_open:
            self.reads_after_close += 1
            raise DeviceUnavailable("read on closed source")
        # Pretend to be a (fast) device rather than spinning the CPU
        time.sleep(0.002)
        samples = sine_wave(self.frequency, self.block_size, self.sample_rate, start=self.position)
        self.position += self.block_size
        return AudioBlock(samples, self.sample_rate)


class BrokenSource(SampleSource):
    """A device that refuses to open."""

    def open(self):
        raise DeviceUnavailable("no input device", device="fake")

    def read(self, timeout):
        raise AssertionError("read() must not be called on an unopened source")


class SilentDevice(SampleSource):
    """Opens fine but never delivers a block."""

    def read(self, timeout):
        threading.Event().wait(timeout)
        raise DeviceReadTimeout(timeout)


class ShortBlockSource(ToneSource):
    """Delivers blocks shorter than the configured block size."""

    def read(self, timeout):
        block = super().read(timeout)
        return AudioBlock(block.samples[: self.block_size // 2], self.sample_rate)


class VanishingSource(ToneSource):
    """Works for a few blocks, then the device disappears."""

    def __init__(self, good_blocks=3, **kwargs):
        super().__init__(**kwargs)
        self.good_blocks = good_blocks

    def read(self, timeout):
        if self.good_blocks <= 0:
            raise DeviceUnavailable("device unplugged")
        self.good_blocks -= 1
        return super().read(timeout)


class JammedSource(VanishingSource):
    """A device whose close() fails, as PortAudio does once it is unplugged."""

    def close(self):
        super().close()
        raise DeviceUnavailable("error closing stream: device unplugged")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_block():
    """Build an AudioBlock holding a sine at `freq` Hz."""

    def _make(freq, n=BLOCK, sr=SR, amplitude=0.5):
        return AudioBlock(sine_wave(freq, n, sr, amplitude=amplitude), sr)

    return _make


@pytest.fixture
def tone_source():
    return ToneSource()
