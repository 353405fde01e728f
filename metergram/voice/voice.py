"""Voice: a persistent, monophonic sequence of notes."""

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from ..core import Note


@dataclass(frozen=True)
class VoiceParameters:
    """
    Parameters of the voice-assignment model.

    Attributes:
        new_voice_probability: Probability of starting a new voice (default: 1e-9)
        pitch_history_length: Notes used for the weighted pitch (default: 6)
        gap_std: Gap length (microseconds) at which the gap score bottoms out (default: 127000)
        pitch_std: Standard deviation of the pitch window in semitones (default: 4)
        min_gap_score: Floor of the gap score (default: 8e-4)
    """

    new_voice_probability: float = 1e-9
    pitch_history_length: int = 6
    gap_std: float = 127000.0
    pitch_std: float = 4.0
    min_gap_score: float = 8e-4


class Voice:
    """
    One monophonic voice, stored as a linked list from its newest note back.

    Adding a note returns a new Voice sharing every earlier node, so voices
    can be branched freely between hypotheses.
    """

    __slots__ = ("previous", "most_recent_note", "first_note", "num_notes")

    def __init__(self, note: Note, previous: Optional["Voice"] = None):
        self.previous = previous
        self.most_recent_note = note
        self.first_note = note if previous is None else previous.first_note
        self.num_notes = 1 if previous is None else previous.num_notes + 1

    @property
    def first_note_time(self) -> int:
        return self.first_note.onset_time

    @property
    def notes(self) -> Tuple[Note, ...]:
        """All notes of this voice, oldest first."""
        notes = []
        node: Optional[Voice] = self
        while node is not None:
            notes.append(node.most_recent_note)
            node = node.previous
        return tuple(reversed(notes))

    def add(self, note: Note) -> "Voice":
        return Voice(note, self)

    def is_new(self, time: int) -> bool:
        """True if this voice began at the given onset time."""
        return self.first_note_time == time

    def contains(self, note: Note) -> bool:
        node: Optional[Voice] = self
        while node is not None and node.most_recent_note.onset_time >= note.onset_time:
            if node.most_recent_note == note:
                return True
            node = node.previous
        return False

    def weighted_last_pitch(self, params: VoiceParameters) -> float:
        """Recent pitches averaged with weights halving per note back."""
        weight = 1.0
        total_weight = 0.0
        total = 0.0
        node: Optional[Voice] = self
        for _ in range(params.pitch_history_length):
            if node is None:
                break
            total += node.most_recent_note.pitch * weight
            total_weight += weight
            weight *= 0.5
            node = node.previous
        return total / total_weight

    def probability(self, note: Note, params: VoiceParameters) -> float:
        """Probability of note continuing this voice: pitch window x gap score."""
        fraction = (note.pitch - self.weighted_last_pitch(params)) / params.pitch_std
        pitch = math.exp(-(fraction * fraction) / 2.0)

        gap = abs(self.most_recent_note.offset_time - note.onset_time)
        inside = max(0.0, 1.0 - gap / params.gap_std)
        gap_score = math.log(inside) + 1 if inside > 0 else params.min_gap_score
        return pitch * max(gap_score, params.min_gap_score)

    def can_add_note(self, note: Note) -> bool:
        """A note may overlap the newest note by at most half that note's length."""
        overlap = self.most_recent_note.offset_time - note.onset_time
        return overlap <= self.most_recent_note.duration / 2 and overlap < note.duration

    def sort_key(self):
        last = self.most_recent_note
        return (self.first_note_time, self.first_note.pitch, self.num_notes, last.onset_time, last.pitch)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Voice):
            return NotImplemented
        if self is other:
            return True
        return self.num_notes == other.num_notes and self.notes == other.notes

    def __hash__(self) -> int:
        return hash((self.first_note, self.most_recent_note, self.num_notes))

    def __str__(self) -> str:
        return "[" + ", ".join(str(n) for n in self.notes) + "]"
