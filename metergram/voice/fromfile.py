"""Voices taken from the input file (ground truth)."""

from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

from ..core import Note
from .base import VoiceState
from .voice import Voice


class FromFileVoiceState(VoiceState):
    """
    Voice hypothesis that replays each note's correct_voice.

    Args:
        notes: Every note of the input
    """

    def __init__(self, notes: Sequence[Note] = (), _full: Optional[Tuple[Voice, ...]] = None, _time: int = -1):
        if _full is None:
            by_voice: Dict[int, List[Note]] = defaultdict(list)
            for note in sorted(notes, key=lambda n: (n.onset_time, n.pitch)):
                by_voice[note.correct_voice].append(note)

            full = []
            for channel in sorted(by_voice):
                voice = None
                for note in by_voice[channel]:
                    voice = Voice(note, voice)
                full.append(voice)
            _full = tuple(full)

        self._full = _full
        self.most_recent_time = _time
        self.score = 0.0

    @property
    def voices(self) -> List[Voice]:
        """Each voice rewound to the most recently seen onset."""
        current = []
        for voice in self._full:
            while voice is not None and voice.most_recent_note.onset_time > self.most_recent_time:
                voice = voice.previous
            if voice is not None:
                current.append(voice)
        return current

    def handle_incoming(self, notes: List[Note]) -> List["FromFileVoiceState"]:
        if not notes:
            return [self]
        return [FromFileVoiceState(_full=self._full, _time=notes[0].onset_time)]

    def close(self) -> List["FromFileVoiceState"]:
        return [FromFileVoiceState(_full=self._full, _time=self.most_recent_time + 1)]

    def is_duplicate_of(self, other: VoiceState) -> bool:
        return isinstance(other, FromFileVoiceState)
