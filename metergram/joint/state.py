"""Joint hypothesis: one voice, beat and hierarchy state together."""

from dataclasses import dataclass
from typing import List, Optional

from ..beat.base import BeatState
from ..grammar.measure import Measure
from ..hierarchy.base import HierarchyState
from ..voice.base import VoiceState


@dataclass
class Summary:
    """Plain-data view of a decoded joint hypothesis."""

    score: float
    measure: Optional[Measure]
    sub_beat_length: int
    anacrusis: int  # In sub-beats
    num_voices: int
    tatum_times: List[int]
    sub_beat_times: List[int]
    beat_times: List[int]
    downbeat_times: List[int]

    @property
    def tempo(self) -> Optional[float]:
        """Mean beats per minute, or None with fewer than two beats."""
        if len(self.beat_times) < 2:
            return None
        mean_beat = (self.beat_times[-1] - self.beat_times[0]) / (len(self.beat_times) - 1)
        return 60_000_000 / mean_beat if mean_beat > 0 else None


@dataclass(frozen=True)
class JointState:
    """A scored triple of voice, beat and hierarchy hypotheses."""

    voice: VoiceState
    beat: BeatState
    hierarchy: HierarchyState

    @property
    def score(self) -> float:
        return self.voice.score + self.beat.score + self.hierarchy.score

    @property
    def bar_count(self) -> int:
        return min(self.beat.bar_count, self.hierarchy.bar_count)

    @property
    def is_started(self) -> bool:
        """True once both the beat grid and the hierarchy hold a bar."""
        return self.bar_count > 0

    def is_duplicate_of(self, other: "JointState", compare_voices: bool = True) -> bool:
        if compare_voices and not self.voice.is_duplicate_of(other.voice):
            return False
        return self.beat.is_duplicate_of(other.beat) and self.hierarchy.is_duplicate_of(other.hierarchy)

    def sort_key(self):
        return (-self.score, self.voice.sort_key(), self.beat.sort_key(), self.hierarchy.sort_key())

    def summary(self) -> Summary:
        meter = self.hierarchy.meter
        tatums = list(self.beat.tatums)
        if meter is None:
            return Summary(self.score, None, 0, 0, len(self.voice.voices), tatums, [], [], [])
        return Summary(
            score=self.score,
            measure=meter.measure,
            sub_beat_length=meter.sub_beat_length,
            anacrusis=meter.anacrusis,
            num_voices=len(self.voice.voices),
            tatum_times=tatums,
            sub_beat_times=self.beat.sub_beat_times(meter),
            beat_times=self.beat.beat_times(meter),
            downbeat_times=self.beat.downbeat_times(meter),
        )

    def __str__(self) -> str:
        return f"{self.voice} {self.beat} {self.hierarchy} = {self.score:.3f}"
