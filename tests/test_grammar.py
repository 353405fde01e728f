"""Tests for measures, smoothing, count tables and the grammar."""

import math

import pytest

from metergram.core import GrammarElementNotFound, MetergramError
from metergram.grammar import Grammar, Head, Measure, Meter, ProbabilityTracker, Quantum, good_turing, make_tree
from metergram.grammar.nodes import Level

R, O, T = Quantum.REST, Quantum.ONSET, Quantum.TIE

STEADY = [O, T, T, T] * 4
SYNCOPATED = [O, T, O, T, T, T, O, T] + [O, T, T, T] * 2


def build_grammar(*patterns, measure=Measure(4, 2), **kwargs) -> Grammar:
    grammar = Grammar(**kwargs)
    for pattern in patterns:
        grammar.add_tree(make_tree(pattern, measure.beats_per_bar, measure.sub_beats_per_beat))
    return grammar


class TestMeasure:
    """Test Measure and Meter value types."""

    def test_equality_ignores_annotations(self):
        assert Measure(4, 2) == Measure(4, 2, length=3, anacrusis=1)
        assert hash(Measure(4, 2)) == hash(Measure(4, 2, length=3))

    def test_ordering(self):
        assert sorted([Measure(3, 2), Measure(2, 3), Measure(2, 2)]) == [
            Measure(2, 2),
            Measure(2, 3),
            Measure(3, 2),
        ]

    def test_str(self):
        assert str(Measure(4, 2)) == "M_4,2"

    def test_tatums_per_bar(self):
        assert Measure(4, 2).tatums_per_bar(4) == 32
        assert Measure(2, 3).sub_beats_per_bar == 6

    def test_meter_lengths(self):
        meter = Meter(Measure(3, 2), 4, 2)
        assert meter.tatums_per_beat == 8
        assert meter.tatums_per_bar == 24
        assert meter.anacrusis_tatums == 8


class TestGoodTuring:
    """Test Good-Turing smoothing."""

    def test_single_item(self):
        probabilities = good_turing([1])
        assert probabilities[0] == pytest.approx(0.5)
        assert probabilities[1] == pytest.approx(0.5)

    def test_repeated_single_item(self):
        probabilities = good_turing([16])
        assert probabilities[16] == pytest.approx(16 / 17)

    def test_probabilities_are_valid(self):
        probabilities = good_turing([1, 1, 2, 3, 5, 8])
        for probability in probabilities.values():
            assert 0.0 < probability <= 1.0

    def test_more_frequent_is_likelier(self):
        probabilities = good_turing([1, 1, 2, 3, 5, 8])
        assert probabilities[8] > probabilities[1]
        assert probabilities[1] > probabilities[0]


class TestProbabilityTracker:
    """Test count tables with backoff."""

    def setup_method(self):
        self.tracker = ProbabilityTracker()
        self.head = Head(2.0, 0.0)

    def test_encode(self):
        assert self.tracker.encode(Measure(4, 2), "E_BEAT", self.head) == "M_4,2;E_BEAT;2.0"

    def test_encode_backoff_levels(self):
        measure = Measure(4, 3)
        assert self.tracker.encode_backoff(measure, "S", self.head, Level.SUB_BEAT) == "SSB;S;2.0"
        assert self.tracker.encode_backoff(measure, "S", self.head, Level.BEAT) == "3SB;S;2.0"
        assert self.tracker.encode_backoff(measure, "M", self.head, Level.BAR) == "4B;M;2.0"

    def test_unlexicalized_heads(self):
        tracker = ProbabilityTracker(lexicalize=False)
        assert tracker.encode(Measure(4, 2), "E_BEAT", self.head).endswith(";0.0")

    def test_seen_transition(self):
        self.tracker.add_transition(Measure(4, 2), "E_BEAT", self.head, "[[ONSET]]", Level.BEAT)
        log_probability = self.tracker.transition_log_probability(
            Measure(4, 2), "E_BEAT", self.head, "[[ONSET]]", Level.BEAT
        )
        assert log_probability == pytest.approx(math.log(0.5))

    def test_unknown_condition_contributes_nothing(self):
        assert self.tracker.transition_log_probability(Measure(4, 2), "E_BEAT", self.head, "x", Level.BEAT) == 0.0

    def test_backoff_across_measures(self):
        """A condition unseen for one measure falls back to the shared backoff table."""
        self.tracker.add_transition(Measure(4, 2), "E_BEAT", self.head, "[[ONSET]]", Level.BEAT)
        seen = self.tracker.transition_log_probability(Measure(4, 2), "E_BEAT", self.head, "[[ONSET]]", Level.BEAT)
        backed_off = self.tracker.transition_log_probability(
            Measure(3, 2), "E_BEAT", self.head, "[[ONSET]]", Level.BEAT
        )
        assert backed_off == pytest.approx(seen)

    def test_unseen_item_uses_zero_count_mass_and_backoff(self):
        self.tracker.add_transition(Measure(4, 2), "E_BEAT", self.head, "[[ONSET]]", Level.BEAT)
        log_probability = self.tracker.transition_log_probability(
            Measure(4, 2), "E_BEAT", self.head, "[[REST]]", Level.BEAT
        )
        assert log_probability == pytest.approx(2 * math.log(0.5))

    def test_remove_missing_raises(self):
        with pytest.raises(GrammarElementNotFound):
            self.tracker.remove_transition(Measure(4, 2), "E_BEAT", self.head, "[[ONSET]]", Level.BEAT)

    def test_remove_deletes_empty_tables(self):
        self.tracker.add_head(Measure(4, 2), "E_BEAT", self.head, self.head, Level.BEAT)
        self.tracker.remove_head(Measure(4, 2), "E_BEAT", self.head, self.head, Level.BEAT)
        assert self.tracker.heads == {}

    def test_measures(self):
        self.tracker.add_measure_head(Measure(3, 2), self.head)
        assert self.tracker.measures == {Measure(3, 2)}

    def test_merge_sums_counts(self):
        other = ProbabilityTracker()
        self.tracker.add_measure_head(Measure(4, 2), self.head)
        other.add_measure_head(Measure(4, 2), self.head)
        self.tracker.merge(other)
        assert self.tracker.measure_heads[Measure(4, 2)][2.0] == 2

    def test_deep_copy_is_independent(self):
        self.tracker.add_measure_head(Measure(4, 2), self.head)
        copied = self.tracker.deep_copy()
        copied.add_measure_head(Measure(4, 2), self.head)
        assert self.tracker.measure_heads[Measure(4, 2)][2.0] == 1


class TestGrammar:
    """Test tree counts, probabilities and persistence."""

    def test_measures(self):
        grammar = build_grammar(STEADY)
        grammar.add_tree(make_tree([O, T, T] * 3, 3, 3))
        assert grammar.measures == {Measure(4, 2), Measure(3, 3)}

    def test_log_probability_is_finite_and_non_positive(self):
        grammar = build_grammar(STEADY, STEADY, SYNCOPATED)
        for pattern in (STEADY, SYNCOPATED, [O, O, O, O, T, T, T, T] * 2, [R] * 8 + [O] * 8):
            log_probability = grammar.tree_log_probability(make_tree(pattern, 4, 2))
            assert math.isfinite(log_probability)
            assert log_probability <= 0.0

    def test_seen_tree_is_likelier(self):
        grammar = build_grammar(STEADY, STEADY, SYNCOPATED)
        seen = grammar.tree_log_probability(make_tree(STEADY, 4, 2))
        unseen = grammar.tree_log_probability(make_tree([O] * 16, 4, 2))
        assert seen > unseen

    def test_bar_log_probability_matches_tree(self):
        grammar = build_grammar(STEADY, SYNCOPATED)
        expected = grammar.tree_log_probability(make_tree(SYNCOPATED, 4, 2))
        assert grammar.bar_log_probability(SYNCOPATED, Measure(4, 2)) == pytest.approx(expected)
        # Cached
        assert grammar.bar_log_probability(SYNCOPATED, Measure(4, 2)) == pytest.approx(expected)

    def test_add_invalidates_cache(self):
        grammar = build_grammar(STEADY)
        before = grammar.bar_log_probability(SYNCOPATED, Measure(4, 2))
        grammar.add_tree(make_tree(SYNCOPATED, 4, 2))

        after = grammar.bar_log_probability(SYNCOPATED, Measure(4, 2))
        assert after != pytest.approx(before)
        assert after == pytest.approx(grammar.tree_log_probability(make_tree(SYNCOPATED, 4, 2)))

    def test_extract_then_add_restores_tables(self):
        grammar = build_grammar(STEADY, SYNCOPATED)
        tables = {name: {k: dict(v) for k, v in t.items()} for name, t in grammar.tracker.tables().items()}

        tree = make_tree(SYNCOPATED, 4, 2)
        grammar.extract_tree(tree)
        grammar.add_tree(tree)

        assert grammar.tracker.tables() == tables
        assert len(grammar.trees) == 2

    def test_extract_removes_counts(self):
        grammar = build_grammar(STEADY)
        grammar.extract_tree(make_tree(STEADY, 4, 2))
        assert grammar.measures == set()
        assert grammar.trees == []

    def test_extract_unknown_tree_raises_and_leaves_grammar(self):
        grammar = build_grammar(STEADY)
        tables = {name: {k: dict(v) for k, v in t.items()} for name, t in grammar.tracker.tables().items()}

        with pytest.raises(GrammarElementNotFound):
            grammar.extract_tree(make_tree(SYNCOPATED, 4, 2))

        assert grammar.tracker.tables() == tables
        assert len(grammar.trees) == 1

    def test_extract_unknown_counts_without_saved_trees(self):
        """Partial removals are rolled back when a count is missing."""
        grammar = build_grammar(STEADY, save_trees=False)
        tables = {name: {k: dict(v) for k, v in t.items()} for name, t in grammar.tracker.tables().items()}

        with pytest.raises(GrammarElementNotFound):
            grammar.extract_tree(make_tree([O, T, T, T] * 3 + [O, T, O, T], 4, 2))

        assert grammar.tracker.tables() == tables

    def test_serialization_round_trip(self, tmp_path):
        grammar = build_grammar(STEADY, SYNCOPATED)
        path = tmp_path / "grammar.lpcfg"
        grammar.save(path)

        loaded = Grammar.load(path)

        assert loaded.tracker.tables() == grammar.tracker.tables()
        assert loaded.lexicalize == grammar.lexicalize
        assert len(loaded.trees) == 2
        tree = make_tree(SYNCOPATED, 4, 2)
        assert loaded.tree_log_probability(tree) == pytest.approx(grammar.tree_log_probability(tree))

    def test_from_bytes_rejects_garbage(self):
        with pytest.raises(MetergramError):
            Grammar.from_bytes(b"not a grammar")

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Grammar.load(tmp_path / "missing.lpcfg")

    def test_merge(self):
        grammar = build_grammar(STEADY)
        grammar.merge(build_grammar([O, T, T] * 3, measure=Measure(3, 3)))
        assert grammar.measures == {Measure(4, 2), Measure(3, 3)}
        assert len(grammar.trees) == 2

    def test_shallow_copy_is_independent(self):
        grammar = build_grammar(STEADY)
        copied = grammar.shallow_copy()
        copied.add_tree(make_tree(SYNCOPATED, 4, 2))

        assert len(grammar.trees) == 1
        assert len(copied.trees) == 2
        assert grammar.tracker.transitions != copied.tracker.transitions
