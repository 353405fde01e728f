"""Grammar-scored meter hypotheses.

An LpcfgHierarchyState commits to one Meter on its first batch of notes
(branching over every measure in the grammar, every sub-beat length and
every anacrusis). From then on, each time the beat grid completes a bar it:

1. Quantizes each voice's unfinished notes into that bar.
2. Scores the bar pattern under the global grammar.
3. Scores the bar's tree under a local grammar of this piece's own bars so
   far, then adds the tree to it.

The rule of congruence prunes hypotheses early: note lengths and positions
are checked against the hypothesized sub-beat and beat levels, and a
hypothesis that collects too many mismatches is dropped.
"""

import copy
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from ..beat.base import BeatState
from ..core import DecoderConfig, Note, WRONG_MATCH_LIMIT
from ..grammar import Grammar, Meter, Quantum, make_quantum_list, make_tree
from ..grammar.builder import is_empty_bar
from ..voice.base import VoiceState
from .base import HierarchyState

logger = logging.getLogger(__name__)


def trunc_div(a: int, b: int) -> int:
    """Integer division rounding toward zero (b > 0)."""
    quotient = abs(a) // b
    return quotient if a >= 0 else -quotient


def trunc_mod(a: int, b: int) -> int:
    """Remainder of trunc_div, carrying the sign of a."""
    return a - b * trunc_div(a, b)


class Match(Enum):
    """Evidence found by the rule of congruence."""

    SUB_BEAT = "sub_beat"
    BEAT = "beat"
    WRONG = "wrong"


@dataclass(frozen=True)
class VoiceTrack:
    """Per-voice bookkeeping of a hierarchy hypothesis. Shared between branches."""

    unfinished: Tuple[Note, ...] = ()  # Not yet fully parsed into bars
    to_check: Tuple[Note, ...] = ()  # Not yet checked for congruence
    to_check_beats: Tuple[Note, ...] = ()  # Not yet checked for beat groupings
    has_begun: bool = False


class LpcfgHierarchyState(HierarchyState):
    """
    Meter hypothesis scored by a metrical grammar.

    Args:
        grammar: The trained (global) grammar
        config: Decoder configuration
    """

    def __init__(self, grammar: Grammar, config: DecoderConfig):
        self.grammar = grammar
        self.config = config
        self._meter: Optional[Meter] = None

        self.local_grammar = Grammar(save_trees=True, lexicalize=config.lexicalize)
        self._owns_local_grammar = True

        self.global_log_prob = 0.0
        self.local_log_prob = 0.0

        self.measure_num = 0
        self.measures_used = 0
        self.next_measure_index = 0  # Tatum index of the next bar's first tatum

        initial = 0 if config.use_congruence else 1
        self.sub_beat_matches = initial
        self.beat_matches = initial
        self.wrong_matches = 0

        # Keyed by each voice's first note
        self._tracks: Dict[Note, VoiceTrack] = {}

    # ---- properties ----

    @property
    def meter(self) -> Optional[Meter]:
        return self._meter

    @property
    def bar_count(self) -> int:
        return self.measures_used

    @property
    def score(self) -> float:
        weight = self.config.global_weight
        return weight * self.global_log_prob + (1.0 - weight) * self.local_log_prob

    @property
    def is_wrong(self) -> bool:
        return self.wrong_matches >= WRONG_MATCH_LIMIT

    @property
    def is_fully_matched(self) -> bool:
        return self.sub_beat_matches > 0 and self.beat_matches > 0

    def matches(self, match: Match) -> bool:
        if match == Match.SUB_BEAT:
            return self.sub_beat_matches > 0
        if match == Match.BEAT:
            return self.beat_matches > 0
        return self.is_wrong

    def add_match(self, match: Match) -> None:
        if match == Match.SUB_BEAT:
            self.sub_beat_matches += 1
        elif match == Match.BEAT:
            self.beat_matches += 1
        else:
            self.wrong_matches += 1

    # ---- transitions ----

    def handle_incoming(
        self, notes: List[Note], voice_state: VoiceState, beat_state: BeatState
    ) -> List["LpcfgHierarchyState"]:
        if not notes:
            return [self]

        state = self._copy()
        state._add_notes(notes, voice_state)

        if state._meter is None:
            return state._first_step_branches(beat_state)

        parsed = False
        while beat_state.num_tatums > state.next_measure_index:
            state._parse_step(beat_state)
            parsed = True

        if parsed and not state.is_fully_matched:
            state._update_match_type(beat_state)

        if state.is_wrong:
            logger.debug("Eliminating (congruence): %s", state)
            return []
        return [state]

    def close(self, voice_state: VoiceState, beat_state: BeatState) -> List["LpcfgHierarchyState"]:
        if self._meter is None:
            return []

        state = self._copy()
        while state.next_measure_index <= beat_state.num_tatums:
            state._parse_step(beat_state)

        if not state.is_fully_matched:
            state._update_match_type(beat_state)

        if state.is_wrong or not state.is_fully_matched:
            logger.debug("Eliminating (no match): %s", state)
            return []
        return [state]

    def _first_step_branches(self, beat_state: BeatState) -> List["LpcfgHierarchyState"]:
        """Branch into every meter the grammar supports."""
        branches = []
        for sub_beat_length in self.config.sub_beat_lengths:
            for measure in sorted(self.grammar.measures):
                for anacrusis in range(measure.sub_beats_per_bar):
                    state = self._branch(Meter(measure, sub_beat_length, anacrusis))
                    state._update_match_type(beat_state)
                    if state.is_wrong:
                        continue

                    while beat_state.num_tatums > state.next_measure_index:
                        state._parse_step(beat_state)

                    if not state.is_fully_matched:
                        state._update_match_type(beat_state)

                    if not state.is_wrong:
                        branches.append(state)

        logger.debug("First step produced %d meter hypotheses", len(branches))
        return sorted(branches, key=LpcfgHierarchyState.sort_key)

    def _copy(self) -> "LpcfgHierarchyState":
        state = copy.copy(self)
        state._tracks = dict(self._tracks)
        state._owns_local_grammar = False
        return state

    def _branch(self, meter: Meter) -> "LpcfgHierarchyState":
        state = self._copy()
        state._meter = meter
        if state.next_measure_index == 0:
            if meter.anacrusis != 0:
                state.next_measure_index = meter.anacrusis_tatums
                state.measure_num = -1
            else:
                state.next_measure_index = meter.tatums_per_bar
        return state

    def _add_notes(self, notes: Sequence[Note], voice_state: VoiceState) -> None:
        """Append each note to the track of the voice it was assigned to."""
        beat_matched = self.matches(Match.BEAT)
        fully_matched = self.is_fully_matched

        # Pitch order keeps new tracks in the voice state's order
        for note in sorted(notes, key=lambda n: (n.onset_time, n.pitch)):
            voice = voice_state.voice_of(note)
            if voice is None:
                voice = next((v for v in voice_state.voices if v.contains(note)), None)
            if voice is None:
                logger.warning("Note %s is not in any voice; ignoring it", note)
                continue

            track = self._tracks.get(voice.first_note, VoiceTrack())
            self._tracks[voice.first_note] = replace(
                track,
                unfinished=track.unfinished + (note,),
                to_check=track.to_check + (note,) if not fully_matched else track.to_check,
                to_check_beats=track.to_check_beats + (note,) if not beat_matched else track.to_check_beats,
            )

    def _local_grammar_for_write(self) -> Grammar:
        if not self._owns_local_grammar:
            self.local_grammar = self.local_grammar.shallow_copy()
            self._owns_local_grammar = True
        return self.local_grammar

    def _parse_step(self, beat_state: BeatState) -> None:
        """Parse one bar of every voice, then move to the next bar."""
        meter = self._meter
        measure = meter.measure
        tatums = beat_state.tatums
        measure_used = False

        if self.measures_used == 0:
            self.global_log_prob = 0.0
            self.local_log_prob = 0.0

        for key, track in self._tracks.items():
            quantums = make_quantum_list(
                track.unfinished,
                tatums,
                measure,
                meter.sub_beat_length,
                meter.anacrusis,
                self.measure_num,
                track.has_begun,
                self.config.extend_notes,
            )
            if is_empty_bar(quantums):
                continue

            if not track.has_begun:
                self._tracks[key] = replace(track, has_begun=True)
                # Partial first bar
                if quantums[0] == Quantum.REST:
                    continue

            measure_used = True
            self.global_log_prob += self.grammar.bar_log_probability(quantums, measure)

            if self.config.global_weight < 1.0:
                tree = make_tree(quantums, measure.beats_per_bar, measure.sub_beats_per_beat)
                if self.local_grammar.trees:
                    self.local_log_prob += self.local_grammar.tree_log_probability(tree)
                self._local_grammar_for_write().add_tree(tree)

        self._remove_finished_notes(tatums)
        self.next_measure_index += meter.tatums_per_bar
        self.measure_num += 1
        if measure_used:
            self.measures_used += 1

    def _remove_finished_notes(self, tatums: Sequence[int]) -> None:
        if not tatums:
            return
        boundary = tatums[min(self.next_measure_index, len(tatums) - 1)]
        for key, track in self._tracks.items():
            finished = 0
            while finished < len(track.unfinished) and track.unfinished[finished].offset_time <= boundary:
                finished += 1
            if finished:
                self._tracks[key] = replace(track, unfinished=track.unfinished[finished:])

    # ---- rule of congruence ----

    def _update_match_type(self, beat_state: BeatState) -> None:
        """Check every finished, unchecked note against the hypothesized meter."""
        if beat_state.num_tatums == 0:
            return
        tatums = beat_state.tatums

        if not self.matches(Match.BEAT):
            for key, track in self._tracks.items():
                if self.is_wrong or self.matches(Match.BEAT):
                    break
                notes = track.to_check_beats
                keep_checking = True
                while keep_checking:
                    keep_checking, notes = self._check_conglomerate_beat(notes, tatums)
                self._tracks[key] = replace(track, to_check_beats=notes)
            if self.matches(Match.BEAT):
                for key, track in self._tracks.items():
                    self._tracks[key] = replace(track, to_check_beats=())

        last_time = beat_state.last_tatum_time
        for key, track in self._tracks.items():
            notes = track.to_check
            checked = 0
            while (
                not self.is_wrong
                and not self.is_fully_matched
                and checked < len(notes)
                and notes[checked].offset_time <= last_time
            ):
                note = notes[checked]
                checked += 1
                next_note = notes[checked] if checked < len(notes) else None
                self._update_note_match(note, next_note, tatums)
            if checked:
                self._tracks[key] = replace(track, to_check=notes[checked:])

    def _note_span(self, note: Note, next_note: Optional[Note], tatums: Sequence[int]) -> Tuple[int, int]:
        """
        A note's position on the hypothesized grid.

        Returns:
            (start, length) in tatums, start relative to the first downbeat
        """
        start_index = note.onset_tatum_index(tatums)
        if next_note is not None and (self.config.extend_notes or note.overlaps(next_note)):
            end_index = next_note.onset_tatum_index(tatums)
        else:
            end_index = note.offset_tatum_index(tatums)
        length = max(1, end_index - start_index)
        return start_index - self._meter.anacrusis_tatums, length

    def _partial_beat_shift(self) -> int:
        """Tatums added to positions when the anacrusis holds a partial beat."""
        sub_beats_per_beat = self._meter.measure.sub_beats_per_beat
        partial = self._meter.anacrusis % sub_beats_per_beat
        if partial == 0:
            return 0
        return self._meter.sub_beat_length * (sub_beats_per_beat - partial)

    def _check_conglomerate_beat(
        self, notes: Tuple[Note, ...], tatums: Sequence[int]
    ) -> Tuple[bool, Tuple[Note, ...]]:
        """
        Look for one beat filled exactly by notes of unequal lengths.

        Args:
            notes: Unchecked notes of one voice
            tatums: The beat grid

        Returns:
            (whether to check the next beat, the notes still unchecked)
        """
        if not notes:
            return False, notes

        extend = self.config.extend_notes
        beat_length = self._meter.tatums_per_beat
        shift = self._partial_beat_shift()
        last_beat_num = trunc_div(len(tatums) - 1 - self._meter.anacrusis_tatums + shift, beat_length)

        next_note = notes[1] if len(notes) > 1 else None
        if extend and next_note is None:
            return False, notes

        start, length = self._note_span(notes[0], next_note, tatums)
        start += shift
        beat_offset = trunc_mod(start, beat_length)
        first_beat_num = trunc_div(start, beat_length)

        # Beat not finished yet
        if first_beat_num == last_beat_num:
            return False, notes

        if beat_offset != 0:
            return next_note is not None, notes[1:]

        quantums = [Quantum.REST] * (beat_length + 1)
        quantums[0] = Quantum.ONSET
        for tatum in range(1, min(length, beat_length + 1)):
            quantums[tatum] = Quantum.TIE

        num_checked = 1
        index = 1
        while next_note is not None:
            note = next_note
            index += 1
            next_note = notes[index] if index < len(notes) else None
            if extend and next_note is None:
                # Length unknown: the beat is judged without this note, which is dropped too
                num_checked += 1
                break

            start, length = self._note_span(note, next_note, tatums)
            start += shift
            beat_offset = trunc_mod(start, beat_length)
            if trunc_div(start, beat_length) != first_beat_num:
                if beat_offset == 0:
                    quantums[beat_length] = Quantum.ONSET
                break

            num_checked += 1
            quantums[beat_offset] = Quantum.ONSET
            for tatum in range(beat_offset + 1, min(beat_offset + length, beat_length + 1)):
                quantums[tatum] = Quantum.TIE

        remaining = notes[num_checked:]

        # Tied over the beat boundary
        if quantums[beat_length] == Quantum.TIE:
            return next_note is not None, remaining

        beat = quantums[:beat_length]
        if Quantum.REST in beat:
            return next_note is not None, remaining

        onsets = [i for i, quantum in enumerate(beat) if quantum == Quantum.ONSET]
        lengths = [b - a for a, b in zip(onsets, onsets[1:])] + [beat_length - onsets[-1]]
        if len(lengths) > 1 and len(set(lengths)) > 1:
            self.add_match(Match.BEAT)
            return False, remaining
        return next_note is not None, remaining

    def _update_note_match(self, note: Note, next_note: Optional[Note], tatums: Sequence[int]) -> None:
        """Check one note, split at already-matched sub-beat or beat boundaries."""
        if self.config.extend_notes and next_note is None:
            return

        start, length = self._note_span(note, next_note, tatums)
        end = start + length
        sub_beat_length = self._meter.sub_beat_length
        beat_length = self._meter.tatums_per_beat

        prefix_start = middle_start = start
        postfix_start = end
        prefix_length = postfix_length = 0
        middle_length = length

        unit = 0
        if self.matches(Match.SUB_BEAT) and trunc_div(start, sub_beat_length) != trunc_div(end - 1, sub_beat_length):
            unit = sub_beat_length
            start_offset = trunc_mod(start, unit)
            end_offset = trunc_mod(end, unit)
        elif self.matches(Match.BEAT) and trunc_div(start, beat_length) != trunc_div(end - 1, beat_length):
            unit = beat_length
            # A partial first beat moves offsets up by one whole beat
            realign = beat_length if self._partial_beat_shift() else 0
            start_offset = trunc_mod(start + realign, unit)
            end_offset = trunc_mod(end + realign, unit)

        if unit:
            if start_offset != 0:
                prefix_length = unit - start_offset
            middle_start += prefix_length
            middle_length -= prefix_length

            postfix_start -= end_offset
            postfix_length = end_offset
            middle_length -= postfix_length

        if prefix_length != 0:
            self._classify(prefix_start, prefix_length)
        if not self.is_fully_matched and not self.is_wrong and middle_length != 0:
            self._classify(middle_start, middle_length)
        if not self.is_fully_matched and not self.is_wrong and postfix_length != 0:
            self._classify(postfix_start, postfix_length)

    def _classify(self, start: int, length: int) -> None:
        """Record the match evidence of one note segment."""
        sub_beat_length = self._meter.sub_beat_length
        beat_length = self._meter.tatums_per_beat
        bar_length = self._meter.tatums_per_bar

        sub_beat_offset = trunc_mod(start, sub_beat_length)
        beat_offset = trunc_mod(start, beat_length)
        bar_offset = trunc_mod(start, bar_length)

        if self.matches(Match.SUB_BEAT):
            if length <= sub_beat_length:
                pass
            elif length < beat_length:
                # Two sub-beats of a triple beat
                self.add_match(Match.WRONG)
            elif length == beat_length:
                self.add_match(Match.BEAT if beat_offset == 0 else Match.WRONG)
            elif length % beat_length != 0:
                self.add_match(Match.WRONG)
            return

        if length < sub_beat_length:
            if sub_beat_length % length != 0 or sub_beat_offset % length != 0:
                self.add_match(Match.WRONG)
        elif length == sub_beat_length:
            self.add_match(Match.SUB_BEAT if sub_beat_offset == 0 else Match.WRONG)
        elif length < beat_length:
            if beat_offset != 0 and beat_offset + length != beat_length:
                self.add_match(Match.WRONG)
        elif self.matches(Match.BEAT):
            pass
        elif length == beat_length:
            self.add_match(Match.BEAT if beat_offset == 0 else Match.WRONG)
        elif (
            bar_length % length != 0
            or bar_offset % length != 0
            or beat_offset != 0
            or length % beat_length != 0
        ):
            self.add_match(Match.WRONG)

    # ---- comparison ----

    def is_duplicate_of(self, other: HierarchyState) -> bool:
        if not isinstance(other, LpcfgHierarchyState):
            return False
        return self._meter == other._meter

    def sort_key(self):
        meter = self._meter
        if meter is None:
            return (-self.score, 0, 0, (0, 0))
        return (
            -self.score,
            meter.sub_beat_length,
            meter.anacrusis,
            (meter.measure.beats_per_bar, meter.measure.sub_beats_per_beat),
        )

    def __str__(self) -> str:
        meter = self._meter
        if meter is None:
            return "Lpcfg(unassigned)"
        return (
            f"{meter.measure} length={meter.sub_beat_length} anacrusis={meter.anacrusis} "
            f"score={self.global_log_prob:.3f} + {self.local_log_prob:.3f} = {self.score:.3f}"
        )
