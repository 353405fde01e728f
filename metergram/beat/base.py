"""Base class for beat hypotheses."""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from ..core import Note
from ..grammar.measure import Meter


class BeatState(ABC):
    """A scored tatum grid over the notes seen so far."""

    score: float = 0.0

    @property
    @abstractmethod
    def tatums(self) -> Sequence[int]:
        """Strictly increasing tatum times seen so far."""
        pass

    @property
    @abstractmethod
    def bar_count(self) -> int:
        pass

    @abstractmethod
    def handle_incoming(self, notes: List[Note], meter: Optional[Meter]) -> List["BeatState"]:
        """
        Advance the grid with a batch of notes.

        Args:
            notes: Notes sharing one onset time
            meter: The paired hierarchy's meter, or None if not yet chosen

        Returns:
            Successor states, best first
        """
        pass

    @abstractmethod
    def close(self, meter: Optional[Meter]) -> List["BeatState"]:
        pass

    @abstractmethod
    def is_duplicate_of(self, other: "BeatState") -> bool:
        pass

    @abstractmethod
    def sort_key(self):
        pass

    @property
    def num_tatums(self) -> int:
        return len(self.tatums)

    @property
    def last_tatum_time(self) -> int:
        return self.tatums[-1] if self.tatums else -1

    def sub_beat_times(self, meter: Meter) -> List[int]:
        return list(self.tatums[::meter.sub_beat_length])

    def beat_times(self, meter: Meter) -> List[int]:
        return self._aligned_times(meter.tatums_per_beat, meter.anacrusis_tatums)

    def downbeat_times(self, meter: Meter) -> List[int]:
        return self._aligned_times(meter.tatums_per_bar, meter.anacrusis_tatums)

    def _aligned_times(self, period: int, offset: int) -> List[int]:
        return [t for i, t in enumerate(self.tatums) if (i - offset) % period == 0]
