"""Meter taken from the input file (ground truth)."""

import sys
from typing import List

from ..beat.base import BeatState
from ..core import Note
from ..grammar.measure import Meter
from ..voice.base import VoiceState
from .base import HierarchyState


class FromFileHierarchyState(HierarchyState):
    """Hierarchy hypothesis fixed to the input's time signature."""

    def __init__(self, meter: Meter):
        self._meter = meter
        self.score = 0.0

    @property
    def meter(self) -> Meter:
        return self._meter

    @property
    def bar_count(self) -> int:
        # Always counts as started
        return sys.maxsize

    def handle_incoming(
        self, notes: List[Note], voice_state: VoiceState, beat_state: BeatState
    ) -> List["FromFileHierarchyState"]:
        return [self]

    def close(self, voice_state: VoiceState, beat_state: BeatState) -> List["FromFileHierarchyState"]:
        return [self]

    def is_duplicate_of(self, other: HierarchyState) -> bool:
        return isinstance(other, FromFileHierarchyState)

    def sort_key(self):
        meter = self._meter
        return (-self.score, meter.sub_beat_length, meter.anacrusis, meter.measure)

    def __str__(self) -> str:
        meter = self._meter
        return f"{meter.measure} length={meter.sub_beat_length} anacrusis={meter.anacrusis} (from file)"
