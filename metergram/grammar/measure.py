"""Measure value type."""

from dataclasses import dataclass, field
from functools import total_ordering


@total_ordering
@dataclass(frozen=True, eq=False)
class Measure:
    """
    A metrical structure: beats per bar and sub-beats per beat.

    length and anacrusis are optional annotations; equality, hashing and
    ordering ignore them.
    """

    beats_per_bar: int
    sub_beats_per_beat: int
    length: int = field(default=0, compare=False)
    anacrusis: int = field(default=0, compare=False)

    @property
    def sub_beats_per_bar(self) -> int:
        """Number of sub-beats in one bar."""
        return self.beats_per_bar * self.sub_beats_per_beat

    def tatums_per_bar(self, sub_beat_length: int) -> int:
        """Number of tatums in one bar at the given sub-beat length."""
        return self.sub_beats_per_bar * sub_beat_length

    def _key(self):
        return (self.beats_per_bar, self.sub_beats_per_beat)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Measure):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other) -> bool:
        if not isinstance(other, Measure):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        return f"M_{self.beats_per_bar},{self.sub_beats_per_beat}"


@dataclass(frozen=True)
class Meter:
    """A hierarchy's full metrical hypothesis: bar shape, tatums per sub-beat, anacrusis."""

    measure: Measure
    sub_beat_length: int
    anacrusis: int = 0  # In sub-beats

    @property
    def tatums_per_beat(self) -> int:
        return self.sub_beat_length * self.measure.sub_beats_per_beat

    @property
    def tatums_per_bar(self) -> int:
        return self.measure.tatums_per_bar(self.sub_beat_length)

    @property
    def anacrusis_tatums(self) -> int:
        return self.anacrusis * self.sub_beat_length
