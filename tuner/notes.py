"""
Note mapping: frequency in Hz -> nearest equal-tempered note.

In equal temperament every semitone multiplies the frequency by 2^(1/12).
So the distance of a frequency from A4 (440 Hz) in semitones is

    12 * log2(freq / 440)

Rounding that gives the nearest note; what's left over, times 100, is how
far off we are in cents (100 cents = 1 semitone). Cents > 0 means sharp
(too high), cents < 0 means flat (too low).

The formula works for any positive frequency, so notes below E2 or above
E6 are named by extrapolation rather than clamped to the edge of a table.
"""

import math
from dataclasses import dataclass

from tuner.config import CONCERT_PITCH, STANDARD_TUNING

NOTE_NAMES = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")

A4_MIDI = 69

# A frequency exactly half way between two notes (a quarter tone) goes to
# the lower one. Float rounding in log2 would otherwise make it random.
_TIE_TOLERANCE = 1e-9


@dataclass(frozen=True)
class NoteResult:
    name: str          # e.g. "A4", "C#3"
    frequency: float   # equal-tempered frequency of that note
    cents: float       # deviation of the input from `frequency`
    octave: int
    midi: int


@dataclass(frozen=True)
class TuningTarget:
    label: str
    frequency: float
    cents: float


def midi_to_name(midi):
    return f"{NOTE_NAMES[midi % 12]}{midi // 12 - 1}"


class NoteMapper:
    def __init__(self, reference_pitch=CONCERT_PITCH):
        self.reference_pitch = reference_pitch

    def midi_to_hz(self, midi):
        return self.reference_pitch * 2.0 ** ((midi - A4_MIDI) / 12)

    def nearest_note(self, frequency):
        """
        Find the closest note to `frequency`.

        Returns:
            NoteResult(name, frequency, cents, octave, midi)

        Raises:
            ValueError if frequency isn't a positive finite number
        """
        if not (frequency > 0 and math.isfinite(frequency)):
            raise ValueError(f"Frequency must be positive and finite, got {frequency}")

        semitones = 12 * math.log2(frequency / self.reference_pitch)
        nearest = math.ceil(semitones - 0.5 - _TIE_TOLERANCE)
        midi = A4_MIDI + nearest

        return NoteResult(
            name=midi_to_name(midi),
            frequency=self.midi_to_hz(midi),
            cents=100 * (semitones - nearest),
            octave=midi // 12 - 1,
            midi=midi,
        )


def nearest_string(frequency, tuning=None):
    """
    Given a detected frequency, find the closest string of a tuning and how
    many cents sharp/flat it is.

    Args:
        frequency: Detected frequency in Hz
        tuning: Dict of {string_label: target_hz}. Defaults to STANDARD_TUNING.

    Returns:
        TuningTarget, or None for a non-positive frequency
    """
    if not frequency > 0:
        return None

    if tuning is None:
        tuning = STANDARD_TUNING

    best = None
    for label, target in tuning.items():
        # cents = 1200 * log2(detected / target)
        cents = 1200 * math.log2(frequency / target)
        if best is None or abs(cents) < abs(best.cents):
            best = TuningTarget(label, target, cents)

    return best


# Reference table E2..E6 (MIDI 40..88): 49 (frequency, name) pairs, one per
# semitone. Generated once; covers the guitar's range with room above.
NOTE_REFERENCE = tuple(
    (NoteMapper().midi_to_hz(midi), midi_to_name(midi)) for midi in range(40, 89)
)
