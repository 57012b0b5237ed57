"""
TunerSession — the live listen -> analyse -> publish loop.

State machine::

    IDLE ──start()──→ LISTENING ──stop() / device lost / malformed block──→ IDLE
      ↑                                                                      │
      └──────────────────────────────────────────────────────────────────────┘

While LISTENING two threads run:
  - capture: reads blocks from the SampleSource as fast as the device
    delivers them and pushes them into a tiny BlockQueue (oldest dropped)
  - analysis: every `interval` seconds takes the newest block, runs
    spectrum -> pitch -> note, and publishes a TunerResult

Slow analysis therefore never stalls the device; it just analyses a newer
block next time. Subscribers get events through subscribe(); they are
called from the analysis thread, outside of every lock.

Usage::

    session = TunerSession(MicrophoneSource())
    unsubscribe = session.subscribe(print)
    session.start()
    ...
    session.stop()
"""

import enum
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from tuner.config import (
    ANALYSIS_INTERVAL,
    BLOCK_SIZE,
    QUEUE_SIZE,
    READ_TIMEOUT,
)
from tuner.errors import DeviceReadTimeout, DeviceUnavailable, MalformedBlock
from tuner.notes import NoteMapper, NoteResult, TuningTarget, nearest_string
from tuner.pitch import PitchEstimate, make_estimator
from tuner.spectrum import Spectrum, SpectralAnalyzer

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    IDLE = "idle"
    LISTENING = "listening"


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TunerEvent:
    timestamp: float = field(default_factory=time.time, kw_only=True)


@dataclass(frozen=True)
class TunerResult(TunerEvent):
    """One analysed block. note/target are None when no pitch was found."""

    spectrum: Spectrum
    pitch: PitchEstimate
    note: Optional[NoteResult] = None
    target: Optional[TuningTarget] = None

    @property
    def detected(self):
        return self.note is not None


@dataclass(frozen=True)
class TunerGap(TunerEvent):
    """No fresh block arrived in time for this cycle."""


@dataclass(frozen=True)
class TunerFailure(TunerEvent):
    """An error was caught. fatal=True means the session went back to IDLE."""

    error: Exception
    fatal: bool = False


# ---------------------------------------------------------------------------
# Capture -> analysis hand-off
# ---------------------------------------------------------------------------


class BlockQueue:
    """
    Bounded buffer between the capture and analysis threads.

    When full, put() discards the oldest block: for a tuner a fresh block
    is worth more than a complete history.
    """

    def __init__(self, maxsize=QUEUE_SIZE):
        if maxsize < 1:
            raise ValueError("BlockQueue needs room for at least one block")
        self._blocks = deque(maxlen=maxsize)
        self._ready = threading.Condition()
        self.dropped = 0

    def __len__(self):
        with self._ready:
            return len(self._blocks)

    def put(self, block):
        with self._ready:
            if len(self._blocks) == self._blocks.maxlen:
                self.dropped += 1
            self._blocks.append(block)
            self._ready.notify()

    def take_latest(self, timeout):
        """Newest block (older ones are discarded), or None after `timeout`."""
        with self._ready:
            if not self._ready.wait_for(lambda: self._blocks, timeout=timeout):
                return None
            block = self._blocks[-1]
            self._blocks.clear()
            return block

    def clear(self):
        with self._ready:
            self._blocks.clear()


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class _Run:
    """What one capture thread and its analysis thread share for one start()."""

    def __init__(self):
        self.stop = threading.Event()
        self.capture_error = None


class TunerSession:
    """
    Owns one SampleSource and the threads reading and analysing it.

    Args:
        source: an unopened SampleSource. The session opens it on start()
            and closes it on stop(); nobody else should touch it.
        estimator: pitch strategy (default: make_estimator(), i.e. YIN)
        analyzer: SpectralAnalyzer
        mapper: NoteMapper
        tuning: optional {label: hz} profile; results then carry the
            nearest string as `target`
        interval: seconds between analysis cycles
        read_timeout: longest wait for one block, in seconds
        queue_size: blocks buffered between capture and analysis
        block_size: expected samples per block (anything else is malformed)
    """

    def __init__(self, source, estimator=None, analyzer=None, mapper=None,
                 tuning=None, interval=ANALYSIS_INTERVAL, read_timeout=READ_TIMEOUT,
                 queue_size=QUEUE_SIZE, block_size=BLOCK_SIZE):
        self.source = source
        self.estimator = estimator if estimator is not None else make_estimator()
        self.analyzer = analyzer if analyzer is not None else SpectralAnalyzer()
        self.mapper = mapper if mapper is not None else NoteMapper()
        self.tuning = tuning
        self.interval = interval
        self.read_timeout = read_timeout
        self.block_size = block_size

        self._queue = BlockQueue(queue_size)
        self._state = SessionState.IDLE
        self._lifecycle = threading.Lock()
        self._listeners = []
        self._listeners_lock = threading.Lock()
        self._run = _Run()
        self._capture_thread = None
        self._analysis_thread = None
        self._stopping = False

    # --- state ---------------------------------------------------------------

    @property
    def state(self):
        return self._state

    @property
    def listening(self):
        return self._state is SessionState.LISTENING

    # --- subscription --------------------------------------------------------

    def subscribe(self, listener):
        """
        Register `listener(event)` for every TunerEvent.

        Returns:
            a callable that unsubscribes the listener again
        """
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, event):
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Listener %r failed on %s", listener, type(event).__name__)

    # --- commands ------------------------------------------------------------

    def start(self):
        """
        Open the source and begin listening.

        Raises:
            DeviceUnavailable if the source can't be opened. The session
            stays IDLE and a fatal TunerFailure is published as well.
        """
        with self._lifecycle:
            if self._state is SessionState.LISTENING:
                return
            try:
                self.source.open()
            except DeviceUnavailable as exc:
                error = exc
            else:
                self._launch()
                return

        # Published outside the lock so a listener may retry start()
        logger.warning("Cannot start listening: %s", error)
        self._publish(TunerFailure(error, fatal=True))
        raise error

    def _launch(self):
        # Caller holds self._lifecycle and has just opened the source
        self._queue.clear()
        # Threads of an earlier run keep their own (stopped) _Run
        self._run = run = _Run()
        self._capture_thread = threading.Thread(
            target=self._capture_loop, args=(run,), name="tuner-capture", daemon=True
        )
        self._analysis_thread = threading.Thread(
            target=self._analysis_loop, args=(run,), name="tuner-analysis", daemon=True
        )
        self._state = SessionState.LISTENING
        self._capture_thread.start()
        self._analysis_thread.start()
        logger.info("Listening (every %.3fs)", self.interval)

    def stop(self):
        """Stop listening and release the source. Safe to call when IDLE."""
        if threading.current_thread() is self._analysis_thread:
            # Called by a listener: another stop() may be joining us already
            self._stop_from_worker(self._run)
            return
        with self._lifecycle:
            self._shutdown()

    def _shutdown(self):
        # Caller holds self._lifecycle
        if self._state is SessionState.IDLE:
            return
        self._stopping = True
        self._run.stop.set()
        current = threading.current_thread()
        for thread in (self._capture_thread, self._analysis_thread):
            if thread is not None and thread is not current:
                thread.join()
        try:
            self.source.close()
        except Exception:
            # Always ends IDLE, even when the device is already gone
            logger.exception("Closing %r failed", self.source)
        finally:
            self._stopping = False
            self._capture_thread = None
            self._analysis_thread = None
            self._queue.clear()
            self._state = SessionState.IDLE
            logger.info("Stopped listening")

    def _fail(self, run, error):
        """Stop from inside the analysis thread after a fatal error."""
        if run is not self._run:
            logger.debug("Dropping %r from a run that has already ended", error)
            return
        self._publish(TunerFailure(error, fatal=True))
        self._stop_from_worker(run)

    def _stop_from_worker(self, run):
        run.stop.set()
        while not self._lifecycle.acquire(timeout=0.05):
            # stop() is running elsewhere, holds the lock and is joining us
            if self._stopping:
                return
        try:
            # A newer start() may have begun while we waited; leave it alone
            if run is self._run:
                self._shutdown()
        finally:
            self._lifecycle.release()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc):
        self.stop()

    # --- worker threads ------------------------------------------------------

    def _capture_loop(self, run):
        while not run.stop.is_set():
            try:
                block = self.source.read(self.read_timeout)
            except DeviceReadTimeout as exc:
                logger.debug("Capture glitch: %s", exc)
                continue
            except Exception as exc:
                logger.error("Audio capture failed: %s", exc)
                run.capture_error = exc
                run.stop.set()
                return
            self._queue.put(block)

    def _analysis_loop(self, run):
        stop = run.stop
        next_tick = time.monotonic()
        while not stop.is_set():
            try:
                self._run_cycle(stop)
            except MalformedBlock as exc:
                logger.error("Stopping on malformed block: %s", exc)
                self._fail(run, exc)
                return

            next_tick += self.interval
            stop.wait(max(0.0, next_tick - time.monotonic()))

        if run.capture_error is not None:
            self._fail(run, run.capture_error)

    def _run_cycle(self, stop):
        block = self._queue.take_latest(self.read_timeout)
        if block is None:
            if not stop.is_set():
                self._publish(TunerGap())
            return

        try:
            result = self.analyze(block)
        except MalformedBlock:
            raise
        except Exception as exc:
            logger.exception("Analysis cycle failed")
            self._publish(TunerFailure(exc, fatal=False))
            return
        self._publish(result)

    def analyze(self, block):
        """Run one block through spectrum -> pitch -> note."""
        if len(block) != self.block_size or block.sample_rate != self.source.sample_rate:
            raise MalformedBlock(
                f"Expected {self.block_size} samples at {self.source.sample_rate} Hz, "
                f"got {len(block)} at {block.sample_rate} Hz"
            )

        spectrum = self.analyzer.transform(block)
        pitch = self.estimator.estimate(block, spectrum)
        if not pitch.is_detected:
            return TunerResult(spectrum, pitch)

        note = self.mapper.nearest_note(pitch.frequency)
        target = nearest_string(pitch.frequency, self.tuning) if self.tuning else None
        logger.debug("%.2f Hz -> %s (%+.1f cents)", pitch.frequency, note.name, note.cents)
        return TunerResult(spectrum, pitch, note, target)
