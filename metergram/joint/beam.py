"""Beam pruning of joint hypotheses."""

import logging
from typing import List, Optional

from .state import JointState

logger = logging.getLogger(__name__)


def add_with_duplicate_check(states: List[JointState], state: JointState, compare_voices: bool = True) -> None:
    """Add state to states unless a duplicate scores at least as well; a worse duplicate is replaced."""
    for i, existing in enumerate(states):
        if existing.is_duplicate_of(state, compare_voices):
            if existing.score < state.score:
                states[i] = state
                logger.debug("Eliminating duplicate: %s", existing)
            else:
                logger.debug("Eliminating duplicate: %s", state)
            return
    states.append(state)


class JointBeam:
    """
    Ranked joint hypotheses of one step.

    Args:
        beam_size: Number of started hypotheses kept
        voice_beam_size: Number of distinct voice hypotheses kept
    """

    def __init__(self, beam_size: int, voice_beam_size: int):
        self.beam_size = beam_size
        self.voice_beam_size = voice_beam_size
        self._states: List[JointState] = []
        self._started: List[JointState] = []

    def __len__(self) -> int:
        return len(self._states)

    def add(self, state: JointState) -> None:
        self._states.append(state)
        if state.is_started:
            self._started.append(state)

    @property
    def is_full(self) -> bool:
        return len(self._started) >= self.beam_size

    def worst_started_score(self) -> Optional[float]:
        """Score a new hypothesis must beat to matter, or None while the beam is not full."""
        if not self.is_full:
            return None
        self._started.sort(key=JointState.sort_key)
        return self._started[self.beam_size - 1].score

    def fix_for_beam(self) -> None:
        """
        Keep the top beam_size started hypotheses.

        Once that many have started, every hypothesis ranked below the worst
        kept started one is dropped, started or not.
        """
        self._started.sort(key=JointState.sort_key)
        del self._started[self.beam_size:]

        if len(self._started) == self.beam_size:
            cutoff = self._started[-1].sort_key()
            self._states = [s for s in self._states if s.sort_key() <= cutoff]

    def fix_for_voice_beam(self) -> None:
        """Keep only the hypotheses of the best voice_beam_size voice states, down to beam_size."""
        if len(self._states) <= self.beam_size:
            return

        voice_keys = sorted({s.voice.sort_key() for s in self._states})
        if len(voice_keys) <= self.voice_beam_size:
            return
        worst_voice = voice_keys[self.voice_beam_size - 1]

        ordered = sorted(self._states, key=lambda s: (s.voice.sort_key(), s.sort_key()))
        while ordered[-1].voice.sort_key() != worst_voice and len(ordered) > self.beam_size:
            ordered.pop()

        logger.debug("Voice beam kept %d of %d hypotheses", len(ordered), len(self._states))
        self._states = ordered
        kept = {id(s) for s in ordered}
        self._started = [s for s in self._started if id(s) in kept]

    def states(self) -> List[JointState]:
        """The hypotheses, best first."""
        return sorted(self._states, key=JointState.sort_key)
