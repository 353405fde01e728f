"""Note data class - the unit of input to every hypothesis."""

from bisect import bisect_left
from dataclasses import dataclass
from typing import Optional, Sequence

from .constants import PITCH_NAMES


@dataclass(frozen=True)
class Note:
    """A closed MIDI note. Times are in microseconds."""

    pitch: int  # MIDI pitch (0-127)
    onset_time: int  # Onset in microseconds
    offset_time: int  # Offset in microseconds
    onset_tick: int = 0
    offset_tick: int = 0
    correct_voice: int = 0  # Ground-truth voice (track/channel)
    velocity: int = 64

    @property
    def duration(self) -> int:
        """Note duration in microseconds."""
        return self.offset_time - self.onset_time

    @property
    def pitch_name(self) -> str:
        """Get note name (e.g., 'C4', 'A#3')."""
        octave = (self.pitch // 12) - 1
        return f"{PITCH_NAMES[self.pitch % 12]}{octave}"

    def onset_tatum_index(self, tatums: Sequence[int]) -> int:
        """Index of the tatum closest to this note's onset."""
        return closest_tatum_index(self.onset_time, tatums)

    def offset_tatum_index(self, tatums: Sequence[int]) -> int:
        """Index of the tatum closest to this note's offset."""
        return closest_tatum_index(self.offset_time, tatums)

    def overlaps(self, other: Optional["Note"]) -> bool:
        """True if the two notes sound at the same time for any span."""
        if other is None:
            return False
        return self.onset_time < other.offset_time and self.offset_time > other.onset_time

    def with_offset(self, offset_time: int, offset_tick: int = 0) -> "Note":
        """Copy of this note ending at the given time."""
        return Note(
            pitch=self.pitch,
            onset_time=self.onset_time,
            offset_time=offset_time,
            onset_tick=self.onset_tick,
            offset_tick=offset_tick,
            correct_voice=self.correct_voice,
            velocity=self.velocity,
        )

    def __str__(self) -> str:
        return f"({self.pitch_name} [{self.onset_time}-{self.offset_time}] {self.correct_voice})"


def first_index_around_time(time: int, tatums: Sequence[int]) -> int:
    """Index of the last tatum at or before time (0 if time precedes all)."""
    index = bisect_left(tatums, time)
    if index < len(tatums) and tatums[index] == time:
        return index
    return max(index - 1, 0)


def closest_tatum_index(time: int, tatums: Sequence[int]) -> int:
    """
    Find the tatum closest to a time.

    Ties within one microsecond go to the later tatum.

    Args:
        time: Time in microseconds
        tatums: Strictly increasing tatum times

    Returns:
        Index into tatums
    """
    index = first_index_around_time(time, tatums)
    diff = abs(time - tatums[index])
    if index + 1 < len(tatums):
        new_diff = abs(time - tatums[index + 1])
        if new_diff - 1 <= diff:
            return index + 1
    return index
