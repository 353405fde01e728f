"""Count tables behind the grammar's probabilities.

Three tables are kept:
- transition: (measure, type, head) -> counts of transition strings
- head: (measure, type, parent head) -> counts of child head lengths
- measure head: measure -> counts of bar head lengths

Every transition and head count is also added under a coarser backoff key
(the level's sub-beat count, beat count, or nothing) in the same table.
"""

import copy
from typing import Dict, Hashable, Optional, Set

import numpy as np

from ..core.errors import GrammarElementNotFound
from .head import Head
from .measure import Measure
from .nodes import Level
from .smoothing import good_turing

CountTable = Dict[Hashable, Dict[Hashable, int]]
SmoothedTable = Dict[Hashable, Dict[int, float]]


class ProbabilityTracker:
    """
    Good-Turing smoothed count tables with backoff.

    Args:
        lexicalize: Condition on head lengths; when False every head is
            treated as length 0
    """

    def __init__(self, lexicalize: bool = True):
        self.lexicalize = lexicalize
        self.transitions: CountTable = {}
        self.heads: CountTable = {}
        self.measure_heads: CountTable = {}
        self._smoothed: Optional[Dict[str, SmoothedTable]] = None

    # ---- keys ----

    def head_length(self, head: Head) -> float:
        return float(head.length) if self.lexicalize else 0.0

    def encode(self, measure: Measure, type_string: str, head: Head) -> str:
        return f"{measure};{type_string};{self.head_length(head)}"

    def encode_backoff(self, measure: Measure, type_string: str, head: Head, level: Level) -> str:
        if level == Level.SUB_BEAT:
            measure_key = "SSB"
        elif level == Level.BEAT:
            measure_key = f"{measure.sub_beats_per_beat}SB"
        else:
            measure_key = f"{measure.beats_per_bar}B"
        return f"{measure_key};{type_string};{self.head_length(head)}"

    # ---- mutation ----

    def _invalidate(self) -> None:
        self._smoothed = None

    @staticmethod
    def _add(table: CountTable, key: Hashable, item: Hashable, amount: int = 1) -> None:
        conditioned = table.setdefault(key, {})
        conditioned[item] = conditioned.get(item, 0) + amount

    @staticmethod
    def _remove(table: CountTable, key: Hashable, item: Hashable) -> None:
        conditioned = table.get(key)
        if conditioned is None or item not in conditioned:
            raise GrammarElementNotFound((key, item))

        conditioned[item] -= 1
        if conditioned[item] == 0:
            del conditioned[item]
            if not conditioned:
                del table[key]

    @staticmethod
    def _check(table: CountTable, key: Hashable, item: Hashable) -> None:
        if item not in table.get(key, {}):
            raise GrammarElementNotFound((key, item))

    def add_transition(
        self, measure: Measure, type_string: str, head: Head, transition: str, level: Level
    ) -> None:
        self._add(self.transitions, self.encode(measure, type_string, head), transition)
        self._add(self.transitions, self.encode_backoff(measure, type_string, head, level), transition)
        self._invalidate()

    def remove_transition(
        self, measure: Measure, type_string: str, head: Head, transition: str, level: Level
    ) -> None:
        key = self.encode(measure, type_string, head)
        backoff_key = self.encode_backoff(measure, type_string, head, level)
        self._check(self.transitions, key, transition)
        self._check(self.transitions, backoff_key, transition)
        self._remove(self.transitions, key, transition)
        self._remove(self.transitions, backoff_key, transition)
        self._invalidate()

    def add_head(
        self, measure: Measure, type_string: str, parent_head: Head, head: Head, level: Level
    ) -> None:
        length = self.head_length(head)
        self._add(self.heads, self.encode(measure, type_string, parent_head), length)
        self._add(self.heads, self.encode_backoff(measure, type_string, parent_head, level), length)
        self._invalidate()

    def remove_head(
        self, measure: Measure, type_string: str, parent_head: Head, head: Head, level: Level
    ) -> None:
        length = self.head_length(head)
        key = self.encode(measure, type_string, parent_head)
        backoff_key = self.encode_backoff(measure, type_string, parent_head, level)
        self._check(self.heads, key, length)
        self._check(self.heads, backoff_key, length)
        self._remove(self.heads, key, length)
        self._remove(self.heads, backoff_key, length)
        self._invalidate()

    def add_measure_head(self, measure: Measure, head: Head) -> None:
        self._add(self.measure_heads, measure, self.head_length(head))
        self._invalidate()

    def remove_measure_head(self, measure: Measure, head: Head) -> None:
        self._remove(self.measure_heads, measure, self.head_length(head))
        self._invalidate()

    def merge(self, other: "ProbabilityTracker") -> None:
        """Add all of other's counts into this tracker."""
        for mine, theirs in (
            (self.transitions, other.transitions),
            (self.heads, other.heads),
            (self.measure_heads, other.measure_heads),
        ):
            for key, conditioned in theirs.items():
                for item, count in conditioned.items():
                    self._add(mine, key, item, count)
        self._invalidate()

    # ---- queries ----

    def smooth(self) -> None:
        """Recompute every smoothed table."""
        self._smoothed = {
            name: {key: good_turing(conditioned.values()) for key, conditioned in table.items()}
            for name, table in (
                ("transitions", self.transitions),
                ("heads", self.heads),
                ("measure_heads", self.measure_heads),
            )
        }

    def _smoothed_table(self, name: str) -> SmoothedTable:
        if self._smoothed is None:
            self.smooth()
        return self._smoothed[name]

    def _backoff_log_probability(
        self, name: str, table: CountTable, key: str, backoff_key: str, item: Hashable
    ) -> float:
        smoothed = self._smoothed_table(name)
        log_probability = 0.0
        count = 0

        conditioned = table.get(key)
        if conditioned is not None:
            count = conditioned.get(item, 0)
            log_probability = float(np.log(smoothed[key][count]))

        if count == 0:
            conditioned = table.get(backoff_key)
            if conditioned is not None:
                backoff_count = conditioned.get(item, 0)
                log_probability += float(np.log(smoothed[backoff_key][backoff_count]))

        return log_probability

    def transition_log_probability(
        self, measure: Measure, type_string: str, head: Head, transition: str, level: Level
    ) -> float:
        return self._backoff_log_probability(
            "transitions",
            self.transitions,
            self.encode(measure, type_string, head),
            self.encode_backoff(measure, type_string, head, level),
            transition,
        )

    def head_log_probability(
        self, measure: Measure, type_string: str, parent_head: Head, head: Head, level: Level
    ) -> float:
        return self._backoff_log_probability(
            "heads",
            self.heads,
            self.encode(measure, type_string, parent_head),
            self.encode_backoff(measure, type_string, parent_head, level),
            self.head_length(head),
        )

    def measure_head_log_probability(self, measure: Measure, head: Head) -> float:
        conditioned = self.measure_heads.get(measure)
        if conditioned is None:
            return 0.0
        count = conditioned.get(self.head_length(head), 0)
        return float(np.log(self._smoothed_table("measure_heads")[measure][count]))

    @property
    def measures(self) -> Set[Measure]:
        return set(self.measure_heads)

    def deep_copy(self) -> "ProbabilityTracker":
        copied = ProbabilityTracker(self.lexicalize)
        copied.transitions = copy.deepcopy(self.transitions)
        copied.heads = copy.deepcopy(self.heads)
        copied.measure_heads = copy.deepcopy(self.measure_heads)
        return copied

    def tables(self) -> Dict[str, CountTable]:
        return {
            "transitions": self.transitions,
            "heads": self.heads,
            "measure_heads": self.measure_heads,
        }

    def __getstate__(self):
        state = self.__dict__.copy()
        state["_smoothed"] = None
        return state

    def __str__(self) -> str:
        return f"{self.transitions}\n{self.heads}\n{self.measure_heads}"
