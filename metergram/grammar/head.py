"""Head: the longest-note descriptor of a grammar node."""

from dataclasses import dataclass
from functools import total_ordering


@total_ordering
@dataclass(frozen=True)
class Head:
    """
    Longest note under a grammar node.

    Ordering puts the "strongest" head first: longer notes, then earlier
    starts, then notes that do not tie in from before.
    """

    length: float  # Note length in sub-beat units
    start: float  # Start offset within the node
    ties_in: bool = False  # The note began before the node

    def sort_key(self):
        return (-self.length, self.start, self.ties_in)

    def __lt__(self, other) -> bool:
        if not isinstance(other, Head):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def __str__(self) -> str:
        return f"({self.length},{self.start},{self.ties_in})"
