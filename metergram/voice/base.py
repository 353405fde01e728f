"""Base class for voice hypotheses."""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from ..core import Note
from .voice import Voice


class VoiceState(ABC):
    """A scored assignment of the notes seen so far to voices."""

    score: float = 0.0

    @property
    @abstractmethod
    def voices(self) -> Sequence[Voice]:
        """Current voices, in a deterministic order."""
        pass

    @abstractmethod
    def handle_incoming(self, notes: List[Note]) -> List["VoiceState"]:
        """
        Assign a batch of notes (sharing one onset time).

        Returns:
            Successor states, best first
        """
        pass

    @abstractmethod
    def close(self) -> List["VoiceState"]:
        pass

    @abstractmethod
    def is_duplicate_of(self, other: "VoiceState") -> bool:
        pass

    def most_recent_note(self, voice_index: int) -> Note:
        return self.voices[voice_index].most_recent_note

    def is_new(self, voice_index: int, onset_time: int) -> bool:
        return self.voices[voice_index].is_new(onset_time)

    def voice_of(self, note: Note) -> Optional[Voice]:
        """The voice whose newest note is the given note."""
        for voice in self.voices:
            if voice.most_recent_note == note:
                return voice
        return None

    def should_remove(self, note: Note, min_note_length: int) -> bool:
        """
        True if note starts too soon after the previous note of its voice.

        Such notes are kept in the voice but not passed on to the beat and
        hierarchy models. min_note_length of -1 keeps every note.
        """
        if min_note_length == -1:
            return False
        voice = self.voice_of(note)
        if voice is None or voice.previous is None:
            return False
        previous_note = voice.previous.most_recent_note
        return note.onset_time - previous_note.onset_time < min_note_length

    def sort_key(self):
        return (-self.score, tuple(v.sort_key() for v in self.voices))

    def __str__(self) -> str:
        return "[" + ",".join(str(v) for v in self.voices) + "]"
