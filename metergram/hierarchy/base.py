"""Base class for metrical hierarchy hypotheses."""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..beat.base import BeatState
from ..core import Note
from ..grammar.measure import Meter
from ..voice.base import VoiceState


class HierarchyState(ABC):
    """A scored meter hypothesis: bar shape, sub-beat length and anacrusis."""

    score: float = 0.0

    @property
    @abstractmethod
    def meter(self) -> Optional[Meter]:
        """The chosen meter, or None before the first branching step."""
        pass

    @property
    @abstractmethod
    def bar_count(self) -> int:
        pass

    @abstractmethod
    def handle_incoming(
        self, notes: List[Note], voice_state: VoiceState, beat_state: BeatState
    ) -> List["HierarchyState"]:
        """
        Advance with a batch of notes.

        Args:
            notes: The batch, already filtered of too-short notes
            voice_state: The voice hypothesis that assigned the batch
            beat_state: The beat hypothesis that has already seen the batch

        Returns:
            Successor states, best first
        """
        pass

    @abstractmethod
    def close(self, voice_state: VoiceState, beat_state: BeatState) -> List["HierarchyState"]:
        pass

    @abstractmethod
    def is_duplicate_of(self, other: "HierarchyState") -> bool:
        pass

    @abstractmethod
    def sort_key(self):
        pass
