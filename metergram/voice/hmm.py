"""Beam-searched voice assignment."""

import logging
import math
from typing import List, Optional, Sequence, Tuple

from ..core import Note
from .base import VoiceState
from .voice import Voice, VoiceParameters

logger = logging.getLogger(__name__)


class HmmVoiceState(VoiceState):
    """
    Voice hypothesis built by assigning each note to a voice.

    Every note of a batch either continues an existing voice it can join
    monophonically, or starts a new voice. All assignments are enumerated,
    scored by log-probability, and pruned to the voice beam.

    Args:
        beam_size: Maximum successors returned per batch
        params: Voice model parameters
    """

    def __init__(
        self,
        beam_size: int = 25,
        params: Optional[VoiceParameters] = None,
        voices: Tuple[Voice, ...] = (),
        score: float = 0.0,
    ):
        self.beam_size = beam_size
        self.params = params or VoiceParameters()
        self._voices = voices
        self.score = score

    @property
    def voices(self) -> Tuple[Voice, ...]:
        return self._voices

    def _successor(self, voices: Sequence[Voice], score: float) -> "HmmVoiceState":
        ordered = tuple(sorted(voices, key=Voice.sort_key))
        return HmmVoiceState(self.beam_size, self.params, ordered, score)

    def handle_incoming(self, notes: List[Note]) -> List["HmmVoiceState"]:
        if not notes:
            return [self]

        # Partial assignments: (voices, used voice indices, log-probability)
        partials: List[Tuple[List[Voice], frozenset, float]] = [(list(self._voices), frozenset(), self.score)]
        new_voice_log = math.log(self.params.new_voice_probability)

        for note in sorted(notes, key=lambda n: (n.pitch, n.offset_time)):
            extended = []
            for voices, used, score in partials:
                for index, voice in enumerate(voices):
                    if index in used or not voice.can_add_note(note):
                        continue
                    probability = voice.probability(note, self.params)
                    if probability <= 0.0:
                        continue
                    branch = list(voices)
                    branch[index] = voice.add(note)
                    extended.append((branch, used | {index}, score + math.log(probability)))

                branch = voices + [Voice(note)]
                extended.append((branch, used | {len(voices)}, score + new_voice_log))

            extended.sort(key=lambda p: -p[2])
            partials = extended[: self.beam_size]

        successors = [self._successor(voices, score) for voices, _, score in partials]
        successors.sort(key=VoiceState.sort_key)
        return successors

    def close(self) -> List["HmmVoiceState"]:
        return [self]

    def is_duplicate_of(self, other: VoiceState) -> bool:
        if not isinstance(other, HmmVoiceState):
            return False
        return self._voices == other._voices
