"""The metrical LPCFG: induced bar trees and their probabilities."""

import gzip
import logging
import pickle
from pathlib import Path
from typing import Callable, Dict, List, Set, Tuple, Union

from ..core.constants import GRAMMAR_FORMAT_VERSION
from ..core.errors import GrammarElementNotFound, MetergramError
from .builder import make_tree
from .head import Head
from .measure import Measure
from .nodes import MeasureRoot, Nonterminal
from .quantum import Quantum
from .tracker import ProbabilityTracker

logger = logging.getLogger(__name__)

CacheKey = Tuple[int, int, Tuple[Quantum, ...]]


class Grammar:
    """
    Lexicalized probabilistic grammar over bar trees.

    Args:
        save_trees: Keep every added tree (needed to list or re-extract them)
        lexicalize: Condition probabilities on node heads
    """

    def __init__(self, save_trees: bool = True, lexicalize: bool = True):
        self.save_trees = save_trees
        self.trees: List[MeasureRoot] = []
        self.tracker = ProbabilityTracker(lexicalize)
        self._cache: Dict[CacheKey, float] = {}

    @property
    def lexicalize(self) -> bool:
        return self.tracker.lexicalize

    @property
    def measures(self) -> Set[Measure]:
        """Every measure with at least one bar in the grammar."""
        return self.tracker.measures

    # ---- mutation ----

    def add_tree(self, tree: MeasureRoot) -> None:
        """Add one bar tree's counts."""
        if self.save_trees:
            self.trees.append(tree)
        for apply, _ in self._operations(tree):
            apply()
        self._cache.clear()

    def extract_tree(self, tree: MeasureRoot) -> None:
        """
        Remove a previously added tree's counts.

        Raises:
            GrammarElementNotFound: If the tree (or any of its counts) is not
                in the grammar. The grammar is left unchanged.
        """
        if self.save_trees:
            try:
                self.trees.remove(tree)
            except ValueError:
                raise GrammarElementNotFound(tree) from None

        done: List[Callable[[], None]] = []
        try:
            for apply, undo in self._operations(tree, remove=True):
                apply()
                done.append(undo)
        except GrammarElementNotFound:
            for undo in reversed(done):
                undo()
            if self.save_trees:
                self.trees.append(tree)
            raise GrammarElementNotFound(tree) from None
        finally:
            self._cache.clear()

    def _operations(self, tree: MeasureRoot, remove: bool = False):
        """Yield (apply, undo) pairs for every count in a tree."""
        tracker = self.tracker
        measure = tree.measure
        add_or_remove = (
            (tracker.remove_measure_head, tracker.add_measure_head),
            (tracker.remove_transition, tracker.add_transition),
            (tracker.remove_head, tracker.add_head),
        )
        if not remove:
            add_or_remove = tuple((add, rem) for rem, add in add_or_remove)
        (measure_head, measure_head_undo), (transition, transition_undo), (head, head_undo) = add_or_remove

        root_args = (measure, tree.head)
        yield (lambda: measure_head(*root_args)), (lambda: measure_head_undo(*root_args))

        stack: List[Tuple[Nonterminal, Head]] = [(tree, tree.head)]
        while stack:
            node, parent_head = stack.pop()
            t_args = (measure, node.type_string, node.head, node.transition_string, node.level)
            yield (lambda a=t_args: transition(*a)), (lambda a=t_args: transition_undo(*a))
            if node is not tree:
                h_args = (measure, node.type_string, parent_head, node.head, node.level)
                yield (lambda a=h_args: head(*a)), (lambda a=h_args: head_undo(*a))
            for child in reversed(node.nonterminal_children()):
                stack.append((child, node.head))

    def merge(self, other: "Grammar") -> None:
        """Add another grammar's trees and counts into this one."""
        if self.save_trees:
            self.trees.extend(other.trees)
        self.tracker.merge(other.tracker)
        self._cache.clear()

    def shallow_copy(self) -> "Grammar":
        """Copy with an independent tracker; the tree list is copied, trees are shared."""
        copied = Grammar(self.save_trees, self.lexicalize)
        copied.trees = list(self.trees)
        copied.tracker = self.tracker.deep_copy()
        return copied

    # ---- probabilities ----

    def tree_log_probability(self, tree: MeasureRoot) -> float:
        """
        Log-probability of a bar tree.

        Each nonterminal contributes its transition probability and its head
        probability given the parent's head (the bar head given the measure
        at the root).
        """
        tracker = self.tracker
        measure = tree.measure
        log_probability = tracker.measure_head_log_probability(measure, tree.head)

        stack: List[Tuple[Nonterminal, Head]] = [(tree, tree.head)]
        while stack:
            node, parent_head = stack.pop()
            log_probability += tracker.transition_log_probability(
                measure, node.type_string, node.head, node.transition_string, node.level
            )
            if node is not tree:
                log_probability += tracker.head_log_probability(
                    measure, node.type_string, parent_head, node.head, node.level
                )
            for child in node.nonterminal_children():
                stack.append((child, node.head))

        return log_probability

    def bar_log_probability(self, quantums, measure: Measure) -> float:
        """Log-probability of one bar's pattern, cached by bar shape."""
        key = (measure.beats_per_bar, measure.sub_beats_per_beat, tuple(quantums))
        cached = self._cache.get(key)
        if cached is None:
            tree = make_tree(quantums, measure.beats_per_bar, measure.sub_beats_per_beat)
            cached = self.tree_log_probability(tree)
            self._cache[key] = cached
        return cached

    # ---- persistence ----

    def __getstate__(self):
        state = self.__dict__.copy()
        state["_cache"] = {}
        return state

    def to_bytes(self) -> bytes:
        """Serialize to a compressed, versioned blob."""
        payload = {"version": GRAMMAR_FORMAT_VERSION, "grammar": self}
        return gzip.compress(pickle.dumps(payload, protocol=pickle.HIGHEST_PROTOCOL))

    @classmethod
    def from_bytes(cls, data: bytes) -> "Grammar":
        """
        Deserialize a blob written by to_bytes.

        Raises:
            MetergramError: If the blob is not a grammar of a known version
        """
        try:
            payload = pickle.loads(gzip.decompress(data))
        except (OSError, EOFError, pickle.UnpicklingError) as e:
            raise MetergramError(f"Not a grammar file: {e}") from e

        if not isinstance(payload, dict) or payload.get("version") != GRAMMAR_FORMAT_VERSION:
            raise MetergramError("Unsupported grammar file version")
        return payload["grammar"]

    def save(self, path: Union[str, Path]) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.to_bytes())
        logger.info("Saved grammar with %d measures to %s", len(self.measures), path)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Grammar":
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Grammar file not found: {path}")
        return cls.from_bytes(path.read_bytes())

    def __str__(self) -> str:
        return f"Grammar(measures={sorted(self.measures)}, trees={len(self.trees)})"
