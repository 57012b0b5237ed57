"""
Exceptions raised by the tuner core.

Three things can go wrong while listening:
  1. DeviceUnavailable: the microphone can't be opened (or disappears).
     Fatal to the current session, but you can simply call start() again.
  2. DeviceReadTimeout: one block didn't arrive in time. A transient glitch,
     the session keeps listening.
  3. MalformedBlock: a block doesn't have the shape the pipeline was
     configured for. This means a broken invariant, so the session stops.
"""


class TunerError(Exception):
    """Base class for every error the tuner core raises."""


class DeviceUnavailable(TunerError):
    """No usable input device, or the device refused to open."""

    def __init__(self, message, device=None):
        self.device = device
        super().__init__(message)


class DeviceReadTimeout(TunerError):
    """A single block read exceeded its timeout."""

    def __init__(self, timeout):
        self.timeout = timeout
        super().__init__(f"No audio block arrived within {timeout:.3f}s")


class MalformedBlock(TunerError):
    """Block length or sample rate doesn't match the configuration."""
