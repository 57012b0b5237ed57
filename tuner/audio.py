"""
Audio input: where the samples come from.

Every source hands out fixed-size mono AudioBlocks at one sample rate.
  - MicrophoneSource: a live PortAudio input through sounddevice
  - SyntheticSource: a generated tone, paced like a real device

A source is opened once, read from repeatedly, then closed. read() never
blocks longer than its timeout; it raises DeviceReadTimeout instead, or
DeviceUnavailable when the device has gone away. close() never raises.
"""

import logging
import queue
import time
from dataclasses import dataclass

import numpy as np

from tuner.config import SAMPLE_RATE, BLOCK_SIZE, QUEUE_SIZE
from tuner.errors import DeviceUnavailable, DeviceReadTimeout, MalformedBlock
from tuner.signals import harmonic_tone

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class AudioBlock:
    """
    One block of normalized mono samples (floats in [-1, 1]).

    The samples are copied into a read-only float64 array, so a block can be
    handed between threads without anyone mutating it.
    """

    samples: np.ndarray
    sample_rate: int = SAMPLE_RATE

    def __post_init__(self):
        samples = np.array(self.samples, dtype=np.float64)
        if samples.ndim != 1 or samples.size == 0:
            raise MalformedBlock(
                f"Expected a non-empty mono block, got shape {samples.shape}"
            )
        samples.setflags(write=False)
        object.__setattr__(self, "samples", samples)

    def __len__(self):
        return self.samples.size

    @property
    def duration(self):
        return self.samples.size / self.sample_rate

    @property
    def rms(self):
        return float(np.sqrt(np.mean(self.samples ** 2)))


class SampleSource:
    """Base class for anything that produces AudioBlocks."""

    def __init__(self, sample_rate=SAMPLE_RATE, block_size=BLOCK_SIZE):
        self.sample_rate = sample_rate
        self.block_size = block_size
        self._open = False

    @property
    def is_open(self):
        return self._open

    def open(self):
        self._open = True

    def close(self):
        self._open = False

    def read(self, timeout):
        """Return the next AudioBlock, or raise DeviceReadTimeout."""
        raise NotImplementedError

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, *exc):
        self.close()


class MicrophoneSource(SampleSource):
    """
    Live microphone input.

    sounddevice calls our callback from PortAudio's audio thread every time
    `block_size` frames are ready. The callback only copies the samples into
    a small queue; read() takes them out on the consumer side. If nobody
    reads fast enough, the oldest block is thrown away so that what we
    analyse is always recent.
    """

    def __init__(self, sample_rate=SAMPLE_RATE, block_size=BLOCK_SIZE,
                 device=None, buffer_blocks=QUEUE_SIZE):
        super().__init__(sample_rate, block_size)
        self.device = device
        self._blocks = queue.Queue(maxsize=buffer_blocks)
        self._stream = None
        self.overflows = 0

    def open(self):
        if self._open:
            return
        try:
            # Imported here: importing sounddevice fails outright when the
            # PortAudio shared library is missing.
            import sounddevice as sd
        except OSError as exc:
            raise DeviceUnavailable(f"PortAudio is not available: {exc}") from exc

        try:
            sd.check_input_settings(
                device=self.device,
                channels=1,
                dtype="float32",
                samplerate=self.sample_rate,
            )
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                blocksize=self.block_size,
                device=self.device,
                channels=1,
                dtype="float32",
                callback=self._on_audio,
            )
            try:
                stream.start()
            except sd.PortAudioError:
                stream.close()
                raise
        except (sd.PortAudioError, ValueError) as exc:
            raise DeviceUnavailable(
                f"Cannot open input device {self.device!r} "
                f"(mono, {self.sample_rate} Hz): {exc}",
                device=self.device,
            ) from exc

        self._stream = stream
        self._open = True
        logger.info("Opened input device %r at %d Hz", self.device, self.sample_rate)

    def close(self):
        stream = self._stream
        try:
            if stream is not None:
                # A stream only exists if this import already succeeded in open()
                import sounddevice as sd

                try:
                    try:
                        stream.stop()
                    finally:
                        stream.close()
                except sd.PortAudioError as exc:
                    # Usually the device is already gone
                    logger.warning("Error closing input device %r: %s", self.device, exc)
        finally:
            self._stream = None
            self._open = False
            # Forget anything captured before closing
            while True:
                try:
                    self._blocks.get_nowait()
                except queue.Empty:
                    break

    def read(self, timeout):
        if not self._open:
            raise DeviceUnavailable("Input device is not open", device=self.device)
        try:
            samples = self._blocks.get(timeout=timeout)
        except queue.Empty:
            # PortAudio stops calling back once the device disappears
            stream = self._stream
            if stream is None or not stream.active:
                raise DeviceUnavailable(
                    f"Input stream on device {self.device!r} is no longer running",
                    device=self.device,
                ) from None
            raise DeviceReadTimeout(timeout) from None
        return AudioBlock(samples, self.sample_rate)

    def _on_audio(self, indata, frames, time_info, status):
        # Runs on PortAudio's thread: copy and hand off, nothing else.
        if status:
            logger.debug("Input stream status: %s", status)
        samples = indata[:, 0].copy()
        try:
            self._blocks.put_nowait(samples)
        except queue.Full:
            self.overflows += 1
            try:
                self._blocks.get_nowait()
            except queue.Empty:
                pass
            self._blocks.put_nowait(samples)


class SyntheticSource(SampleSource):
    """
    A fake microphone playing a steady harmonic tone.

    Blocks are phase-continuous and, with `realtime=True`, delivered at the
    pace a real device would deliver them (one block every block_size / sr
    seconds). Handy for trying the app without an instrument.
    """

    def __init__(self, frequency, sample_rate=SAMPLE_RATE, block_size=BLOCK_SIZE,
                 n_harmonics=1, noise_level=0.0, realtime=True, seed=None):
        super().__init__(sample_rate, block_size)
        self.frequency = frequency
        self.n_harmonics = n_harmonics
        self.noise_level = noise_level
        self.realtime = realtime
        self._rng = np.random.default_rng(seed)
        self._position = 0
        self._next_due = None

    def open(self):
        self._position = 0
        self._next_due = time.monotonic()
        self._open = True

    def read(self, timeout):
        if not self._open:
            raise DeviceUnavailable("Synthetic source is not open")
        if self.realtime:
            wait = self._next_due - time.monotonic()
            if wait > timeout:
                time.sleep(timeout)
                raise DeviceReadTimeout(timeout)
            if wait > 0:
                time.sleep(wait)
            self._next_due += self.block_size / self.sample_rate

        samples = harmonic_tone(
            self.frequency,
            n_samples=self.block_size,
            sr=self.sample_rate,
            n_harmonics=self.n_harmonics,
            noise_level=self.noise_level,
            start=self._position,
            rng=self._rng,
        )
        self._position += self.block_size
        return AudioBlock(samples, self.sample_rate)
