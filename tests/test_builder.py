"""Tests for tree building, quantization and tatum grids."""

import pytest

from metergram.core import MalformedTreeError
from metergram.grammar import Measure, Nonterminal, NodeType, Quantum, Terminal, make_quantum_list, make_tree
from metergram.core import Note
from metergram.grammar.builder import (
    beat_node,
    best_subdivision,
    is_empty_bar,
    make_beat,
    make_measure_tree,
    onset_distance,
    subdivide,
)
from metergram.grammar.nodes import Level

from conftest import make_notes

R, O, T = Quantum.REST, Quantum.ONSET, Quantum.TIE

# 100ms tatums
TATUMS = [i * 100_000 for i in range(16)]


class TestMakeTree:
    """Test bar tree construction and node typing."""

    def test_steady_quarters_are_even_beats(self):
        tree = make_tree([O, T] * 4, 4, 2)

        assert tree.measure == Measure(4, 2)
        assert len(tree.children) == 4
        for beat in tree.children:
            assert beat.level == Level.BEAT
            assert beat.type == NodeType.EVEN
            assert len(beat.children) == 1
            assert isinstance(beat.children[0], Terminal)

    def test_long_first_beat_is_strong(self):
        """A held first beat followed by split beat: STRONG then WEAK."""
        tree = make_tree([O, T, T, T, O, T, O, T], 2, 2)
        first, second = tree.children

        assert first.type == NodeType.STRONG
        assert second.type == NodeType.WEAK

    def test_split_beat_has_sub_beats(self):
        tree = make_tree([O, T, T, T, O, T, O, T], 2, 2)
        second = tree.children[1]

        assert len(second.children) == 2
        assert all(isinstance(c, Nonterminal) and c.level == Level.SUB_BEAT for c in second.children)
        assert all(c.type == NodeType.EVEN for c in second.children)

    def test_compound_meter(self):
        tree = make_tree([O, T, T, O, T, T], 2, 3)

        assert tree.measure == Measure(2, 3)
        assert [beat.type for beat in tree.children] == [NodeType.EVEN, NodeType.EVEN]

    def test_type_strings(self):
        tree = make_tree([O, T] * 4, 4, 2)

        assert tree.type_string == "M_4,2"
        assert tree.children[0].type_string == "E_BEAT"
        assert tree.transition_string == "[E_BEAT, E_BEAT, E_BEAT, E_BEAT]"

    def test_tree_head_spans_notes_across_beats(self):
        tree = make_tree([O, T, T, T, T, T, O, T], 4, 2)
        assert tree.head.length == 6.0

    def test_indivisible_pattern_raises(self):
        with pytest.raises(MalformedTreeError):
            make_tree([O, T, T], 2, 2)

    def test_empty_pattern_raises(self):
        with pytest.raises(MalformedTreeError):
            make_tree([], 2, 2)

    def test_equal_patterns_make_equal_trees(self):
        assert make_tree([O, T, O, T], 2, 2) == make_tree([O, T, T, T, O, T, T, T], 2, 2)


class TestMakeQuantumList:
    """Test quantizing a voice's notes into one bar."""

    def setup_method(self):
        # Onset at tatum 0 ending at 3; onset at 4 ending at 6
        self.notes = [
            make_notes([(0, 3)], beat=100_000)[0],
            make_notes([(4, 2)], beat=100_000)[0],
        ]

    def test_unextended_notes(self):
        quantums = make_quantum_list(self.notes, TATUMS, Measure(2, 2), 2, 0, 0, False, extend_notes=False)
        assert quantums == [O, T, T, R, O, T, R, R]

    def test_extended_notes(self):
        quantums = make_quantum_list(self.notes, TATUMS, Measure(2, 2), 2, 0, 0, False, extend_notes=True)
        assert quantums == [O, T, T, T, O, T, T, T]

    def test_anacrusis_bar_starts_with_rest(self):
        """Tatums before the grid start are rests."""
        quantums = make_quantum_list(self.notes, TATUMS, Measure(2, 2), 2, 1, -1, False, extend_notes=True)
        assert quantums == [R, R, R, R, R, R, O, T]

    def test_begun_voice_ties_in(self):
        later = make_notes([(10, 2)], beat=100_000)
        quantums = make_quantum_list(later, TATUMS, Measure(2, 2), 2, 0, 1, True, extend_notes=True)
        assert quantums == [T, T, O, T, T, T, T, T]

    def test_no_notes_is_empty(self):
        quantums = make_quantum_list([], TATUMS, Measure(2, 2), 2, 0, 1, True, extend_notes=True)
        assert is_empty_bar(quantums)

    def test_note_after_bar_is_ignored(self):
        later = make_notes([(9, 1)], beat=100_000)
        quantums = make_quantum_list(later, TATUMS, Measure(2, 2), 2, 0, 0, False, extend_notes=True)
        assert is_empty_bar(quantums)


class TestSubdivide:
    """Test tatum grids."""

    def test_even_split(self):
        assert subdivide([0, 400], 4) == [0, 100, 200, 300, 400]

    def test_uneven_intervals(self):
        assert subdivide([0, 300, 900], 3) == [0, 100, 200, 300, 500, 700, 900]

    def test_single_time(self):
        assert subdivide([5], 4) == [5]

    def test_onset_distance(self):
        assert onset_distance([0, 150], [0, 100, 200]) == 25.0

    def test_onset_distance_outside_grid(self):
        assert onset_distance([-50, 450], [0, 100, 200]) == 150.0

    def test_onset_distance_single_tatum(self):
        assert onset_distance([100, 300], [200]) == 100.0

    def test_onset_distance_long_piece(self):
        """Distances come from the neighbouring tatums only, for any grid size."""
        tatums = list(range(0, 20_000_000, 1_000))
        onsets = [t + 100 for t in range(0, 20_000_000, 2_000)]
        assert onset_distance(onsets, tatums) == 100.0


class TestBestSubdivision:
    """Test choosing tatums per sub-beat."""

    def test_triplets_choose_three(self):
        divisions, tatums = best_subdivision([0, 300_000, 600_000], [0, 100_000, 200_000, 300_000])
        assert divisions == 3
        assert tatums[:4] == [0, 100_000, 200_000, 300_000]

    def test_straight_eighths_keep_four(self):
        divisions, _ = best_subdivision([0, 300_000, 600_000], [0, 150_000, 300_000])
        assert divisions == 4

    def test_exact_fit_keeps_first_candidate(self):
        divisions, _ = best_subdivision([0, 300_000], [0, 300_000])
        assert divisions == 4


class TestMakeBeat:
    """Test choosing each beat's own subdivision."""

    def test_whole_beat_note_follows_measure(self):
        """A beat that reduces equally either way takes the measure's sub-beat count."""
        notes = [Note(60, 0, 600_000)]

        _, duple_end = make_beat([0], 600_000, -75_000, notes, False, 2)
        _, triple_end = make_beat([0], 600_000, -75_000, notes, False, 3)

        # Last tatum of 2 x 4 tatums, then of 3 x 4 tatums
        assert duple_end == 525_000
        assert triple_end == 550_000

    def test_resolutions_share_reduced_patterns(self):
        three_per_sub_beat = beat_node([O, T, T, O, T, T, O, T, T], 3, 2)
        four_per_sub_beat = beat_node([O, T, T, T] * 3, 3, 2)
        assert three_per_sub_beat == four_per_sub_beat


class TestMakeMeasureTree:
    """Test bars whose beats are split differently."""

    def setup_method(self):
        eighths = [Note(60, 0, 300_000), Note(62, 300_000, 600_000)]
        triplets = [Note(64, 600_000, 800_000), Note(65, 800_000, 1_000_000), Note(67, 1_000_000, 1_200_000)]
        self.notes = eighths + triplets
        self.anchors = [[0, 300_000], [600_000, 900_000]]

    def test_straight_then_triplet_beat(self):
        tree, last_time = make_measure_tree(Measure(2, 2), self.anchors, 1_200_000, -150_000, self.notes, False)

        straight, triplet = tree.children
        assert len(straight.children) == 2
        assert len(triplet.children) == 3
        assert all(sub_beat.children[0].pattern == (O,) for sub_beat in triplet.children)
        assert last_time == 1_150_000

    def test_mixed_beats_concatenate(self):
        tree, _ = make_measure_tree(Measure(2, 2), self.anchors, 1_200_000, -150_000, self.notes, False)

        # 8 and 12 tatum beats meet at 24 tatums each
        assert len(tree.terminal.original) == 48
        assert tree.terminal.base_length == pytest.approx(4.0)
        assert tree.terminal.pattern == (O, T, T, O, T, T, O, T, O, T, O, T)

    def test_wrong_beat_count(self):
        with pytest.raises(MalformedTreeError):
            make_measure_tree(Measure(3, 2), self.anchors, 1_200_000, -150_000, self.notes, False)
