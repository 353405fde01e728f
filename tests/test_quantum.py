"""Tests for rhythm patterns: reduction, heads and terminals."""

import logging

from metergram.grammar import Head, Quantum, Terminal, pattern_gcf, reduce_pattern, reduces_to_one
from metergram.grammar.quantum import constituent_lengths, pattern_string

R, O, T = Quantum.REST, Quantum.ONSET, Quantum.TIE


class TestReducePattern:
    """Test reduction by the constituent-length gcf."""

    def test_even_notes_reduce(self):
        """Two half-bar notes reduce to two onsets."""
        assert reduce_pattern([O, T, O, T]) == (O, O)

    def test_single_note_reduces_to_onset(self):
        assert reduce_pattern([O, T, T, T]) == (O,)

    def test_mixed_lengths_keep_ratio(self):
        """Lengths 2 and 4 reduce to lengths 1 and 2."""
        assert reduce_pattern([O, T, O, T, T, T]) == (O, O, T)

    def test_rests_reduce(self):
        assert reduce_pattern([R, R, O, T]) == (R, O)

    def test_irreducible_pattern_unchanged(self):
        pattern = (O, T, T, O)
        assert reduce_pattern(pattern) == pattern

    def test_empty_pattern(self):
        assert reduce_pattern([]) == ()

    def test_leading_tie_kept(self):
        assert reduce_pattern([T, T, O, T]) == (T, O)

    def test_tie_after_rest_becomes_onset(self, caplog):
        """A TIE after a REST is malformed and treated as an ONSET."""
        with caplog.at_level(logging.WARNING, logger="metergram.grammar.quantum"):
            assert reduce_pattern([R, T]) == (R, O)
        assert "TIE after REST" in caplog.text


class TestConstituents:
    """Test constituent splitting."""

    def test_lengths(self):
        assert constituent_lengths([O, T, R, R, O]) == [(O, 2), (R, 2), (O, 1)]

    def test_gcf(self):
        assert pattern_gcf([O, T, O, T]) == 2
        assert pattern_gcf([O, T, T, O]) == 1
        assert pattern_gcf([]) == 1

    def test_pattern_string(self):
        assert pattern_string((O, T)) == "[ONSET, TIE]"


class TestReducesToOne:
    """Test single-constituent detection."""

    def test_single_note(self):
        assert reduces_to_one([O, T, T, T])

    def test_all_tie(self):
        assert reduces_to_one([T, T, T, T])

    def test_all_rest(self):
        assert reduces_to_one([R, R, R])

    def test_length_one(self):
        assert reduces_to_one([O])

    def test_two_notes(self):
        assert not reduces_to_one([O, T, O, T])

    def test_two_onsets(self):
        assert not reduces_to_one([O, O])


class TestHead:
    """Test head extraction and ordering."""

    def test_single_note_head(self):
        assert Terminal([O, T, T, T]).head == Head(4.0, 0.0, False)

    def test_head_scaled_to_base_length(self):
        """A whole-beat note in a 2-sub-beat beat has length 2."""
        assert Terminal([O, T, T, T], 2).head == Head(2.0, 0.0, False)

    def test_first_longest_note_wins(self):
        head = Terminal([O, T, O, T], 4).head
        assert head == Head(2.0, 0.0, False)

    def test_later_longer_note(self):
        head = Terminal([O, O, T, T], 4).head
        assert head == Head(3.0, 1.0, False)

    def test_tied_in_head(self):
        head = Terminal([T, T, T, O], 4).head
        assert head.ties_in
        assert head.length == 3.0

    def test_rest_is_not_a_note(self):
        head = Terminal([R, R, R, O], 4).head
        assert head == Head(1.0, 3.0, False)

    def test_ordering_strongest_first(self):
        """Longer first, then earlier, then not tied in."""
        heads = [Head(1.0, 0.0), Head(2.0, 1.0), Head(2.0, 0.0, True), Head(2.0, 0.0)]
        assert sorted(heads) == [Head(2.0, 0.0), Head(2.0, 0.0, True), Head(2.0, 1.0), Head(1.0, 0.0)]


class TestTerminal:
    """Test terminal equality and predicates."""

    def test_equality_uses_reduced_pattern(self):
        assert Terminal([O, T, O, T]) == Terminal([O, O])

    def test_starts_with_rest(self):
        assert Terminal([R, O]).starts_with_rest()
        assert not Terminal([O, R]).starts_with_rest()

    def test_is_empty(self):
        assert Terminal([R, R, R, R]).is_empty()
        assert not Terminal([R, O]).is_empty()

    def test_str(self):
        assert str(Terminal([O, T, T, T])) == "[ONSET]"
