"""Tests for beat (tatum grid) hypotheses."""

import math

import pytest

from metergram.beat import BeatParameters, FromFileBeatState, HmmBeatState
from metergram.beat.hmm import standard_normal
from metergram.core import Note
from metergram.grammar import Measure, Meter

from conftest import steady_notes

METER = Meter(Measure(4, 2), 1, 0)


def feed(state, notes, meter):
    """Feed notes one batch at a time, following the first successor."""
    successors = [state]
    for note in notes:
        successors = successors[0].handle_incoming([note], meter)
    return successors


class TestHmmBeatState:
    """Test grid construction from steady onsets."""

    def test_waits_without_meter(self):
        state = HmmBeatState()
        successors = state.handle_incoming(steady_notes(1), None)

        assert len(successors) == 1
        assert successors[0].tatums == ()
        assert successors[0].unused_note_times == (0,)

    def test_waits_for_enough_time(self):
        successors = feed(HmmBeatState(), steady_notes(4), METER)
        assert all(not s.tatums for s in successors)

    def test_initial_bar_on_steady_onsets(self):
        """Six quarter notes give a first bar of 120 BPM quarters."""
        successors = feed(HmmBeatState(), steady_notes(6), METER)
        grids = [s for s in successors if s.tatums]

        assert grids
        expected = tuple(range(0, 2_000_001, 250_000))
        match = [s for s in grids if s.tatums == expected]
        assert match
        state = match[0]
        assert state.bar_count == 1
        assert state.previous_tempo == pytest.approx(500_000)
        assert state.unused_note_times == (2_000_000, 2_500_000)

    def test_tempo_out_of_range_is_dropped(self):
        """Onsets fifteen seconds apart are slower than the slowest tempo."""
        notes = steady_notes(3)
        slow = [Note(n.pitch, n.onset_time * 30, n.offset_time * 30) for n in notes]
        successors = feed(HmmBeatState(), slow, METER)
        assert successors == []

    def test_grid_grows_bar_by_bar(self):
        successors = feed(HmmBeatState(), steady_notes(6), METER)
        state = next(s for s in successors if s.tatums == tuple(range(0, 2_000_001, 250_000)))

        for note in steady_notes(16)[6:]:
            successors = state.handle_incoming([note], METER)
            state = max(successors, key=lambda s: (s.bar_count, s.score))

        assert state.bar_count >= 2
        assert state.tatums[8 * 2] == 4_000_000

    def test_close_without_grid_drops_notes(self):
        state = HmmBeatState().handle_incoming(steady_notes(1), METER)[0]
        assert state.close(METER) == []

    def test_close_without_notes(self):
        state = HmmBeatState()
        assert state.close(METER) == [state]

    def test_duplicates_by_tempo_and_last_tatum(self):
        a = HmmBeatState(tatum_times=(0, 250_000), previous_tempo=500_000)
        b = HmmBeatState(tatum_times=(0, 250_500), previous_tempo=500_400, score=-3.0)
        c = HmmBeatState(tatum_times=(0, 260_000), previous_tempo=500_000)

        assert a.is_duplicate_of(b)
        assert not a.is_duplicate_of(c)

    def test_sort_key_prefers_score(self):
        better = HmmBeatState(score=-1.0)
        worse = HmmBeatState(score=-2.0)
        assert sorted([worse, better], key=HmmBeatState.sort_key) == [better, worse]


class TestSpacing:
    """Test the spacing penalty."""

    def setup_method(self):
        self.state = HmmBeatState()
        self.params = BeatParameters()

    def test_even_spacing(self):
        expected = math.log(standard_normal(0.0, 0.0, self.params.beat_spacing_std) / self.params.beat_spacing_norm_factor)
        assert self.state._spacing_log_probability([0, 100, 200, 300]) == pytest.approx(expected)

    def test_uneven_spacing_is_worse(self):
        even = self.state._spacing_log_probability([0, 100, 200, 300])
        uneven = self.state._spacing_log_probability([0, 100, 250, 300])
        assert uneven < even

    def test_two_points_are_free(self):
        assert self.state._spacing_log_probability([0, 100]) == 0.0


class TestTimes:
    """Test sub-beat, beat and downbeat extraction."""

    def test_aligned_times(self):
        state = HmmBeatState(tatum_times=tuple(range(0, 1700, 100)))
        meter = Meter(Measure(2, 2), 2, 1)

        assert state.sub_beat_times(meter) == list(range(0, 1700, 200))
        # Anacrusis of one sub-beat shifts beats by two tatums
        assert state.beat_times(meter) == [200, 600, 1000, 1400]
        assert state.downbeat_times(meter) == [200, 1000]

    def test_last_tatum_time(self):
        assert HmmBeatState().last_tatum_time == -1
        assert HmmBeatState(tatum_times=(0, 100)).last_tatum_time == 100


class TestFromFileBeatState:
    """Test ground-truth grids."""

    def setup_method(self):
        self.tatums = list(range(0, 3300, 100))
        self.state = FromFileBeatState(self.tatums, 16)

    def test_hidden_until_onset(self):
        assert self.state.tatums == ()
        assert self.state.bar_count == 0

    def test_visible_through_onset(self):
        note = steady_notes(1)[0].with_offset(100)
        state = self.state.handle_incoming([note], None)[0]
        assert state.tatums == (0,)

    def test_bar_count(self):
        later = Note(60, 1600, 1700)
        state = self.state.handle_incoming([later], None)[0]
        assert state.num_tatums == 17
        assert state.bar_count == 1

    def test_close_shows_all(self):
        state = self.state.close(None)[0]
        assert state.tatums == tuple(self.tatums)
        assert state.bar_count == 2
