"""Joint beam-search decoding of voices, beats and meter."""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from ..beat import BeatState, FromFileBeatState, HmmBeatState
from ..core import BeatKind, DecoderConfig, HierarchyKind, Note, VoiceKind
from ..grammar import Grammar
from ..hierarchy import FromFileHierarchyState, HierarchyState, LpcfgHierarchyState
from ..input.loader import MidiInput
from ..voice import FromFileVoiceState, HmmVoiceState, VoiceState
from .beam import JointBeam, add_with_duplicate_check
from .state import JointState

logger = logging.getLogger(__name__)


def create_root_state(
    config: DecoderConfig,
    grammar: Optional[Grammar] = None,
    ground_truth: Optional[MidiInput] = None,
) -> JointState:
    """
    Build the initial joint hypothesis for the kinds chosen in config.

    Args:
        config: Decoder configuration
        grammar: Required for the LPCFG hierarchy
        ground_truth: Required for any from-file kind

    Raises:
        ValueError: If a required input is missing
    """
    needs_file = (
        config.voice_kind == VoiceKind.FROM_FILE
        or config.beat_kind == BeatKind.FROM_FILE
        or config.hierarchy_kind == HierarchyKind.FROM_FILE
    )
    if needs_file and ground_truth is None:
        raise ValueError("From-file models need the ground-truth input")

    voice: VoiceState
    if config.voice_kind == VoiceKind.FROM_FILE:
        voice = FromFileVoiceState(ground_truth.notes)
    else:
        voice = HmmVoiceState(config.voice_beam_size)

    beat: BeatState
    if config.beat_kind == BeatKind.FROM_FILE:
        beat = FromFileBeatState(ground_truth.tatum_times, ground_truth.meter.tatums_per_bar)
    else:
        beat = HmmBeatState()

    hierarchy: HierarchyState
    if config.hierarchy_kind == HierarchyKind.FROM_FILE:
        hierarchy = FromFileHierarchyState(ground_truth.meter)
    else:
        if grammar is None:
            raise ValueError("The LPCFG hierarchy needs a grammar")
        hierarchy = LpcfgHierarchyState(grammar, config)

    return JointState(voice, beat, hierarchy)


class JointDecoder:
    """
    Beam search over joint voice, beat and hierarchy hypotheses.

    Args:
        config: Decoder configuration
        root: The initial joint hypothesis
    """

    def __init__(self, config: DecoderConfig, root: JointState):
        self.config = config
        self._states: List[JointState] = [root]
        self._compare_voices = not (
            config.voice_kind == VoiceKind.HMM
            and config.beat_kind == BeatKind.HMM
            and config.hierarchy_kind == HierarchyKind.LPCFG
        )
        self._warned_empty = False

    @classmethod
    def from_config(
        cls,
        config: DecoderConfig,
        grammar: Optional[Grammar] = None,
        ground_truth: Optional[MidiInput] = None,
    ) -> "JointDecoder":
        return cls(config, create_root_state(config, grammar, ground_truth))

    def results(self) -> List[JointState]:
        """Current hypotheses, best first."""
        return list(self._states)

    def best(self) -> Optional[JointState]:
        return self._states[0] if self._states else None

    def advance(self, notes: Sequence[Note]) -> List[JointState]:
        """
        Handle one batch of notes sharing an onset time.

        Returns:
            The new hypotheses, best first
        """
        return self._step(list(notes), closing=False)

    def close(self) -> List[JointState]:
        """Finish every hypothesis; those that cannot finish are dropped."""
        return self._step([], closing=True)

    def decode(self, batches: Sequence[Sequence[Note]]) -> List[JointState]:
        """Advance through every batch, then close."""
        for batch in batches:
            self.advance(batch)
        return self.close()

    def _step(self, notes: List[Note], closing: bool) -> List[JointState]:
        beam = JointBeam(self.config.beam_size, self.config.voice_beam_size)
        voice_cache: Dict[int, Tuple[VoiceState, List[VoiceState]]] = {}

        for state in self._states:
            threshold = beam.worst_started_score()
            if threshold is not None and state.score < threshold:
                continue

            for successor in self._branch(state, notes, closing, voice_cache, threshold):
                beam.add(successor)
            beam.fix_for_beam()

        beam.fix_for_voice_beam()
        self._states = beam.states()

        logger.debug(
            "%s: %d hypotheses (%s)",
            "Close" if closing else f"{len(notes)} notes at {notes[0].onset_time if notes else '-'}",
            len(self._states),
            self._states[0] if self._states else "none",
        )
        if not self._states and not self._warned_empty:
            logger.warning("Beam is empty; no hypothesis explains the input")
            self._warned_empty = True
        return self.results()

    def _branch(
        self,
        state: JointState,
        notes: List[Note],
        closing: bool,
        voice_cache: Dict[int, Tuple[VoiceState, List[VoiceState]]],
        threshold: Optional[float],
    ) -> List[JointState]:
        cached = voice_cache.get(id(state.voice))
        if cached is None:
            successors = state.voice.close() if closing else state.voice.handle_incoming(notes)
            voice_cache[id(state.voice)] = (state.voice, successors)
        else:
            successors = cached[1]

        new_states: List[JointState] = []
        for voice in successors:
            if threshold is not None and threshold >= voice.score + state.beat.score + state.hierarchy.score:
                continue

            # Grouped per voice successor, so duplicates share a voice state
            group: List[JointState] = []
            if closing:
                kept = notes
                beats = state.beat.close(state.hierarchy.meter)
            else:
                kept = [n for n in notes if not voice.should_remove(n, self.config.min_note_length)]
                beats = state.beat.handle_incoming(kept, state.hierarchy.meter)

            for beat in beats:
                if threshold is not None and threshold >= voice.score + beat.score + state.hierarchy.score:
                    continue
                if closing:
                    hierarchies = state.hierarchy.close(voice, beat)
                else:
                    hierarchies = state.hierarchy.handle_incoming(kept, voice, beat)
                for hierarchy in hierarchies:
                    add_with_duplicate_check(group, JointState(voice, beat, hierarchy), self._compare_voices)

            new_states.extend(group)
        return new_states
