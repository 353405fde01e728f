"""Tatum grid taken from the input file (ground truth)."""

from bisect import bisect_right
from typing import List, Optional, Sequence, Tuple

from ..core import Note
from ..grammar.measure import Meter
from .base import BeatState


class FromFileBeatState(BeatState):
    """
    Beat hypothesis that replays a fixed tatum grid.

    Only tatums at or before the most recent onset are visible; close()
    exposes the whole grid.

    Args:
        tatum_times: The full ground-truth grid
        tatums_per_bar: Used to count completed bars
    """

    def __init__(self, tatum_times: Sequence[int], tatums_per_bar: int, visible: int = 0):
        self._all: Tuple[int, ...] = tuple(tatum_times)
        self.tatums_per_bar = tatums_per_bar
        self._visible = visible
        self.score = 0.0

    @property
    def tatums(self) -> Tuple[int, ...]:
        return self._all[:self._visible]

    @property
    def bar_count(self) -> int:
        return self._visible // self.tatums_per_bar if self.tatums_per_bar else 0

    def handle_incoming(self, notes: List[Note], meter: Optional[Meter]) -> List["FromFileBeatState"]:
        if not notes:
            return [self]
        visible = bisect_right(self._all, notes[0].onset_time)
        return [FromFileBeatState(self._all, self.tatums_per_bar, max(visible, self._visible))]

    def close(self, meter: Optional[Meter]) -> List["FromFileBeatState"]:
        return [FromFileBeatState(self._all, self.tatums_per_bar, len(self._all))]

    def is_duplicate_of(self, other: BeatState) -> bool:
        return isinstance(other, FromFileBeatState)

    def sort_key(self):
        return (-self.score, self._visible)

    def __str__(self) -> str:
        return f"FromFileBeat(tatums={self._visible}/{len(self._all)})"
