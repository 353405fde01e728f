"""HMM-style beat tracking.

The grid is grown one bar at a time. Each new bar starts from the previous
tempo, then branches on shifting beats onto nearby onsets and nudging beats
and sub-beats toward them. Every branch is scored on:
- tempo change relative to the previous bar
- evenness of beat, sub-beat and tatum spacing
- distance from each onset to its nearest tatum
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Set, Tuple

from ..core import Note
from ..grammar.measure import Meter
from .base import BeatState

logger = logging.getLogger(__name__)


def standard_normal(x: float, mean: float, std: float) -> float:
    """Gaussian density."""
    z = (x - mean) / std
    return math.exp(-0.5 * z * z) / math.sqrt(2 * math.pi)


def safe_log(p: float) -> float:
    return math.log(p) if p > 0.0 else float("-inf")


@dataclass(frozen=True)
class BeatParameters:
    """
    Parameters of the beat-tracking model. Times are in microseconds.

    Attributes:
        tempo_percent_change_std: Std. dev. of relative tempo change per bar
        beat_spacing_std: Std. dev. of relative spacing deviation
        beat_spacing_mean: Mean relative spacing deviation
        note_std: Std. dev. of onset-to-tatum distance
        magnetism_beat: How far beats move toward nearby onsets (0-1)
        magnetism_sub_beat: How far sub-beats move toward nearby onsets (0-1)
        minimum_tempo: Shortest beat length
        maximum_tempo: Longest beat length
        initial_tempo_mean: Mean initial beat length
        initial_tempo_std: Std. dev. of initial beat length
        diff_min: Grids closer than this in tempo and last tatum are duplicates
    """

    tempo_percent_change_std: float = 0.0743
    beat_spacing_std: float = 0.0336
    beat_spacing_mean: float = 0.0181
    note_std: float = 6655.0
    magnetism_beat: float = 1.0
    magnetism_sub_beat: float = 0.5
    minimum_tempo: float = 400000.0
    maximum_tempo: float = 3000000.0
    initial_tempo_mean: float = 1088500.0
    initial_tempo_std: float = 709918.0
    diff_min: float = 1000.0

    @property
    def beat_spacing_norm_factor(self) -> float:
        return 0.5 + self.beat_spacing_mean / self.beat_spacing_std * standard_normal(
            self.beat_spacing_mean, self.beat_spacing_mean, self.beat_spacing_std
        )


DEFAULT_PARAMETERS = BeatParameters()


@dataclass(frozen=True)
class HmmBeatState(BeatState):
    """One hypothesis of the tatum grid."""

    params: BeatParameters = DEFAULT_PARAMETERS
    tatum_times: Tuple[int, ...] = ()
    unused_note_times: Tuple[int, ...] = ()
    previous_tempo: float = 0.0
    bars: int = 0
    score: float = 0.0

    @property
    def tatums(self) -> Tuple[int, ...]:
        return self.tatum_times

    @property
    def bar_count(self) -> int:
        return self.bars

    def handle_incoming(self, notes: List[Note], meter: Optional[Meter]) -> List["HmmBeatState"]:
        if not notes:
            return [self]

        state = replace(
            self, unused_note_times=self.unused_note_times + tuple(n.onset_time for n in notes)
        )
        if not state.tatum_times:
            return state._initial_step(meter)
        if state._ready_for_new_bar(meter):
            return state._add_bar(meter)
        return [state]

    def close(self, meter: Optional[Meter]) -> List["HmmBeatState"]:
        if not self.unused_note_times:
            return [self]
        if not self.tatum_times or meter is None:
            return []

        closed = []
        for state in self._add_bar(meter):
            closed.extend(state.close(meter))
        return sorted(closed, key=HmmBeatState.sort_key)

    def is_duplicate_of(self, other: BeatState) -> bool:
        if not isinstance(other, HmmBeatState):
            return False
        return (
            abs(self.previous_tempo - other.previous_tempo) < self.params.diff_min
            and abs(self.last_tatum_time - other.last_tatum_time) < self.params.diff_min
        )

    def sort_key(self):
        return (
            -self.score,
            len(self.tatum_times),
            self.tatum_times,
            len(self.unused_note_times),
            self.unused_note_times,
            self.previous_tempo,
        )

    # ---- grid construction ----

    def _initial_step(self, meter: Optional[Meter]) -> List["HmmBeatState"]:
        """Place the first (possibly partial) bar, assuming the previous onset is a downbeat."""
        if meter is None:
            return [self]

        params = self.params
        beats_per_bar = meter.measure.beats_per_bar
        sub_beats_per_beat = meter.measure.sub_beats_per_beat
        tatums_per_sub_beat = meter.sub_beat_length
        tatums_per_beat = meter.tatums_per_beat

        tatums_until_downbeat = meter.anacrusis_tatums or meter.tatums_per_bar
        sub_beats_until_downbeat = tatums_until_downbeat // tatums_per_sub_beat
        beats_until_downbeat = sub_beats_until_downbeat // sub_beats_per_beat
        sub_beats_until_first_beat = sub_beats_until_downbeat - beats_until_downbeat * sub_beats_per_beat
        tatums_until_first_beat = tatums_until_downbeat - beats_until_downbeat * tatums_per_beat

        min_time = params.minimum_tempo * sub_beats_until_downbeat / sub_beats_per_beat
        max_time = params.maximum_tempo * sub_beats_until_downbeat / sub_beats_per_beat

        first_note_time = self.unused_note_times[0]
        distinct = sorted(set(self.unused_note_times))
        downbeat_time = distinct[-2] if len(distinct) > 1 else distinct[-1]

        time_difference = downbeat_time - first_note_time
        if time_difference < min_time:
            return [replace(self, score=safe_log(standard_normal(0.0, 0.0, params.initial_tempo_std)))]
        if time_difference > max_time:
            return []

        time_per_tatum = time_difference / tatums_until_downbeat
        time_per_sub_beat = time_per_tatum * tatums_per_sub_beat
        time_per_beat = time_per_tatum * tatums_per_beat

        waiting = replace(
            self,
            score=safe_log(standard_normal(time_per_beat, params.initial_tempo_mean, params.initial_tempo_std)),
        )
        new_states = [waiting]

        first_beat = round(first_note_time + time_per_tatum * tatums_until_first_beat)
        default_beats = tuple(
            round(first_beat + beat * time_per_beat) for beat in range(beats_until_downbeat + 1)
        )
        beat_lists: Set[Tuple[int, ...]] = {default_beats}

        if tatums_until_first_beat != 0:
            shifted = set()
            for time in self._close_notes(default_beats[0], time_per_sub_beat):
                if time == first_note_time:
                    continue
                for times in beat_lists:
                    if time != times[0]:
                        shifted.add(times[:0] + (time,) + times[1:])
            beat_lists |= shifted

        for beat in range(1, beats_until_downbeat):
            beat_lists |= self._shift(beat_lists, beat, default_beats[beat], time_per_sub_beat)

        beat_lists = {
            nudged
            for times in beat_lists
            for nudged in self._nudge_times(times, 0, len(times), time_per_tatum, params.magnetism_beat)
        }

        sub_beat_lists = []
        for beats in beat_lists:
            sub_beats = [-1] * (sub_beats_until_downbeat + 1)
            for i, time in enumerate(beats):
                sub_beats[sub_beats_until_first_beat + i * sub_beats_per_beat] = time
            if sub_beats_until_first_beat > 0:
                step = (beats[0] - first_note_time) / tatums_until_first_beat * tatums_per_sub_beat
                for i in range(1, sub_beats_until_first_beat + 1):
                    sub_beats[sub_beats_until_first_beat - i] = round(beats[0] - step * i)
            for i in range(beats_until_downbeat):
                self._fill(sub_beats, sub_beats_until_first_beat + i * sub_beats_per_beat, sub_beats_per_beat)
            sub_beat_lists.append(tuple(sub_beats))

        nudge_window = time_per_tatum * 2
        if sub_beats_until_first_beat > 0:
            sub_beat_lists = self._nudge_all(
                sub_beat_lists, 0, sub_beats_until_first_beat, nudge_window, params.magnetism_sub_beat
            )
        for i in range(beats_until_downbeat):
            start = sub_beats_until_first_beat + i * sub_beats_per_beat
            sub_beat_lists = self._nudge_all(
                sub_beat_lists, start + 1, start + sub_beats_per_beat, nudge_window, params.magnetism_sub_beat
            )

        for sub_beats in sorted(sub_beat_lists):
            tatums = self._tatums_from_sub_beats(sub_beats, tatums_per_sub_beat)

            log_probability = self._spacing_log_probability(tatums[tatums_until_first_beat::tatums_per_beat])
            log_probability += self._spacing_log_probability(sub_beats[:sub_beats_until_first_beat])
            for j in range(beats_until_downbeat):
                start = sub_beats_until_first_beat + j * sub_beats_per_beat
                log_probability += self._spacing_log_probability(sub_beats[start:start + sub_beats_per_beat + 1])
            for j in range(sub_beats_until_downbeat):
                start = j * tatums_per_sub_beat
                log_probability += self._spacing_log_probability(tatums[start:start + tatums_per_sub_beat + 1])

            tempo = (tatums[-1] - tatums[0]) / (len(tatums) - 1) * tatums_per_beat
            if not params.minimum_tempo <= tempo <= params.maximum_tempo:
                continue

            log_probability += safe_log(standard_normal(tempo, params.initial_tempo_mean, params.initial_tempo_std))
            state = replace(
                self,
                tatum_times=tatums,
                previous_tempo=tempo,
                bars=1 if beats_until_downbeat == beats_per_bar else 0,
                score=log_probability,
            )
            new_states.append(state._consume_notes())

        return sorted(new_states, key=HmmBeatState.sort_key)

    def _ready_for_new_bar(self, meter: Optional[Meter]) -> bool:
        if meter is None:
            return False
        next_bar_time = self.last_tatum_time + self.previous_tempo * meter.measure.beats_per_bar
        return next_bar_time + self.previous_tempo < self.unused_note_times[-1]

    def _add_bar(self, meter: Meter) -> List["HmmBeatState"]:
        """Extend the grid by one bar at the previous tempo, with shifted and nudged variants."""
        params = self.params
        beats_per_bar = meter.measure.beats_per_bar
        sub_beats_per_beat = meter.measure.sub_beats_per_beat
        tatums_per_sub_beat = meter.sub_beat_length
        tatums_per_beat = meter.tatums_per_beat

        time_per_beat = self.previous_tempo
        time_per_sub_beat = time_per_beat / sub_beats_per_beat
        time_per_tatum = time_per_sub_beat / tatums_per_sub_beat
        last = self.last_tatum_time

        default_beats = tuple(round(last + beat * time_per_beat) for beat in range(beats_per_bar + 1))
        beat_lists: Set[Tuple[int, ...]] = {default_beats}
        shifted: Set[Tuple[int, ...]] = set()
        for beat in range(1, beats_per_bar + 1):
            shifted |= self._shift(beat_lists, beat, default_beats[beat], time_per_sub_beat)
        beat_lists |= shifted

        beat_lists = {
            nudged
            for times in beat_lists
            for nudged in self._nudge_times(times, 1, len(times), time_per_tatum, params.magnetism_beat)
        }

        sub_beat_lists = []
        for beats in beat_lists:
            sub_beats = [-1] * (beats_per_bar * sub_beats_per_beat + 1)
            for i, time in enumerate(beats):
                sub_beats[i * sub_beats_per_beat] = time
            for i in range(beats_per_bar):
                self._fill(sub_beats, i * sub_beats_per_beat, sub_beats_per_beat)
            sub_beat_lists.append(tuple(sub_beats))

        for i in range(beats_per_bar):
            start = i * sub_beats_per_beat
            sub_beat_lists = self._nudge_all(
                sub_beat_lists, start + 1, start + sub_beats_per_beat, time_per_tatum * 2, params.magnetism_sub_beat
            )

        new_states = []
        for sub_beats in sorted(sub_beat_lists):
            tatums = self._tatums_from_sub_beats(sub_beats, tatums_per_sub_beat)

            log_probability = self.score
            beats = tatums[::tatums_per_beat]
            log_probability += self._spacing_log_probability(beats)
            for beat_num in range(beats_per_bar):
                start = beat_num * tatums_per_beat
                log_probability += self._spacing_log_probability(
                    tatums[start:start + tatums_per_beat + 1:tatums_per_sub_beat]
                )
                for sub_beat_num in range(sub_beats_per_beat):
                    sub_start = start + sub_beat_num * tatums_per_sub_beat
                    log_probability += self._spacing_log_probability(
                        tatums[sub_start:sub_start + tatums_per_sub_beat + 1]
                    )

            tempo = (beats[-1] - beats[0]) / beats_per_bar
            log_probability += safe_log(
                standard_normal(0.0, (tempo - self.previous_tempo) / self.previous_tempo, params.tempo_percent_change_std)
            )

            state = replace(
                self,
                tatum_times=self.tatum_times + tatums[1:],
                previous_tempo=tempo,
                bars=self.bars + 1,
                score=log_probability,
            )
            new_states.append(state._consume_notes())

        return sorted(new_states, key=HmmBeatState.sort_key)

    def _consume_notes(self) -> "HmmBeatState":
        """Score and drop every unused onset that now lies inside the grid."""
        last = self.last_tatum_time
        log_probability = self.score
        remaining = list(self.unused_note_times)
        while remaining and remaining[0] < last:
            time = remaining.pop(0)
            error = abs(self._closest_tatum_time(time) - time)
            log_probability += safe_log(standard_normal(0.0, error, self.params.note_std))
        return replace(self, unused_note_times=tuple(remaining), score=log_probability)

    def _closest_tatum_time(self, time: int) -> int:
        tatums = self.tatum_times
        best = tatums[-1]
        for tatum in reversed(tatums):
            if abs(tatum - time) <= abs(best - time):
                best = tatum
            else:
                break
        return best

    # ---- helpers ----

    def _spacing_log_probability(self, times: Sequence[int]) -> float:
        """Penalty on uneven spacing, scaled by the mean spacing."""
        if len(times) <= 2:
            return 0.0
        params = self.params
        diffs = [times[i] - times[i - 1] for i in range(1, len(times))]
        mean = sum(diffs) / len(diffs)
        variance = sum(d * d for d in diffs) / len(diffs) - mean * mean
        percent_std = math.sqrt(max(variance, 0.0)) / mean if mean else float("inf")

        if percent_std < params.beat_spacing_mean:
            probability = standard_normal(0.0, 0.0, params.beat_spacing_std)
        else:
            probability = standard_normal(params.beat_spacing_mean, percent_std, params.beat_spacing_std)
        return safe_log(probability / params.beat_spacing_norm_factor)

    def _close_notes(self, time: float, window: float) -> List[int]:
        return [t for t in self.unused_note_times if abs(t - time) <= window / 2]

    def _shift(self, lists: Set[Tuple[int, ...]], index: int, default: int, window: float) -> Set[Tuple[int, ...]]:
        """Variants of each list with one entry moved onto a nearby onset."""
        shifted = set()
        for time in self._close_notes(default, window):
            for times in lists:
                if time != times[index]:
                    shifted.add(times[:index] + (time,) + times[index + 1:])
        return shifted

    def _nudge_all(self, lists, start: int, end: int, time_per_tatum: float, strength: float):
        nudged = set()
        for times in lists:
            nudged.update(self._nudge_times(times, start, end, time_per_tatum, strength))
        return list(nudged)

    def _nudge_times(
        self, times: Tuple[int, ...], start: int, end: int, time_per_tatum: float, strength: float
    ) -> List[Tuple[int, ...]]:
        """Every combination of nudging entries start..end-1."""
        nudged = [tuple(times)]
        for index in range(start, end):
            expanded = []
            for candidate in nudged:
                for time in self._nudge_time(candidate[index], time_per_tatum, strength):
                    expanded.append(candidate[:index] + (time,) + candidate[index + 1:])
            nudged = expanded
        return nudged

    def _nudge_time(self, time: int, time_per_tatum: float, strength: float) -> List[int]:
        """Candidate positions for one grid point pulled toward nearby onsets."""
        notes = self._close_notes(time, time_per_tatum)
        nudged = [time]
        if not notes:
            return nudged

        smallest = min((n - time for n in notes), key=abs)
        candidate = round(time + smallest * strength)
        if candidate not in nudged:
            nudged.append(candidate)

        if len(notes) > 1:
            average = sum(notes) / len(notes)
            if strength == self.params.magnetism_sub_beat:
                nudged.clear()
            candidate = round(time + (average - time) * strength)
            if candidate not in nudged:
                nudged.append(candidate)
        return nudged

    @staticmethod
    def _fill(times: List[int], start: int, count: int) -> None:
        """Interpolate count-1 points between times[start] and times[start + count]."""
        initial = times[start]
        step = (times[start + count] - initial) / count
        for j in range(1, count):
            times[start + j] = round(initial + step * j)

    @staticmethod
    def _tatums_from_sub_beats(sub_beats: Sequence[int], tatums_per_sub_beat: int) -> Tuple[int, ...]:
        tatums = [-1] * ((len(sub_beats) - 1) * tatums_per_sub_beat + 1)
        for i, time in enumerate(sub_beats):
            tatums[i * tatums_per_sub_beat] = time
        for i in range(len(sub_beats) - 1):
            HmmBeatState._fill(tatums, i * tatums_per_sub_beat, tatums_per_sub_beat)
        return tuple(tatums)

    def __str__(self) -> str:
        return f"HmmBeat(tempo={self.previous_tempo:.0f}, tatums={len(self.tatum_times)}, score={self.score:.3f})"
