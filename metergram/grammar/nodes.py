"""Grammar tree nodes.

A bar tree is a MeasureRoot whose children are BEAT-level Nonterminals. Each
beat holds either a single Terminal (when its pattern reduces to one note or
rest) or one SUB_BEAT Nonterminal per sub-beat, each holding a Terminal.
"""

from enum import Enum
from fractions import Fraction
from math import gcd
from typing import List, Optional, Sequence, Union

from .head import Head
from .measure import Measure
from .quantum import Pattern, Quantum, pattern_string, reduce_pattern


class Level(str, Enum):
    """Tree level of a nonterminal."""

    BAR = "BAR"
    BEAT = "BEAT"
    SUB_BEAT = "SUB_BEAT"


class NodeType(str, Enum):
    """Metrical typing of a nonterminal relative to its siblings."""

    MEASURE = "M"
    STRONG = "S"
    WEAK = "W"
    EVEN = "E"


class Terminal:
    """
    A rhythm pattern leaf.

    Args:
        pattern: Quantum sequence, one symbol per tatum
        base_length: Length of this leaf in sub-beats (default: pattern length)
    """

    __slots__ = ("original", "pattern", "base_length", "_head")

    def __init__(self, pattern: Sequence[Quantum], base_length: Optional[float] = None):
        self.original: Pattern = tuple(pattern)
        self.pattern: Pattern = reduce_pattern(self.original)
        self.base_length = float(len(self.original) if base_length is None else base_length)
        self._head: Optional[Head] = None

    @property
    def length(self) -> float:
        return self.base_length

    @property
    def head(self) -> Head:
        """Longest note in this pattern, scaled to base_length."""
        if self._head is None:
            self._head = self._generate_head()
        return self._head

    def _generate_head(self) -> Head:
        if not self.original:
            return Head(0.0, 0.0, False)

        max_length = 0
        max_index = 0
        current_length = 0
        current_index = 0
        for i, quantum in enumerate(self.original):
            if quantum != Quantum.TIE:
                # Note (or rest) ended
                if current_length > max_length:
                    max_length = current_length
                    max_index = current_index
                current_length = 0
                current_index = i
            if quantum != Quantum.REST:
                current_length += 1

        if current_length > max_length:
            max_length = current_length
            max_index = current_index

        size = len(self.original)
        return Head(
            max_length / size * self.base_length,
            max_index / size * self.base_length,
            self.original[max_index] == Quantum.TIE,
        )

    def reduces_to_one(self) -> bool:
        """True if this pattern is a single note, a single tied note, or all rest."""
        return reduces_to_one(self.pattern)

    def starts_with_rest(self) -> bool:
        return not self.pattern or self.pattern[0] == Quantum.REST

    def is_empty(self) -> bool:
        return self.pattern == (Quantum.REST,)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Terminal):
            return NotImplemented
        return self.pattern == other.pattern

    def __hash__(self) -> int:
        return hash(self.pattern)

    def __str__(self) -> str:
        return pattern_string(self.pattern)

    __repr__ = __str__

    def pretty(self, depth: int = 0, tab: str = "  ") -> str:
        return tab * depth + str(self)


def reduces_to_one(pattern: Sequence[Quantum]) -> bool:
    """
    Check whether a pattern collapses to a single constituent.

    True for length-1 patterns, and for patterns starting ONSET,TIE (or two
    equal non-ONSET symbols) whose remaining symbols all repeat the previous.
    """
    if len(pattern) <= 1:
        return True

    first, second = pattern[0], pattern[1]
    if (first == Quantum.ONSET and second == Quantum.TIE) or (
        first == second and first != Quantum.ONSET
    ):
        return all(pattern[i] == pattern[i - 1] for i in range(2, len(pattern)))
    return False


class Nonterminal:
    """An internal tree node at the BEAT or SUB_BEAT level."""

    def __init__(
        self,
        level: Level,
        children: Optional[List["Node"]] = None,
        node_type: NodeType = NodeType.EVEN,
    ):
        self.level = level
        self.type = node_type
        self.children: List[Node] = list(children) if children else []
        self._terminal: Optional[Terminal] = None

    def add_child(self, child: "Node") -> None:
        self.children.append(child)
        self._terminal = None

    @property
    def terminal(self) -> Terminal:
        """All children's patterns concatenated, as one terminal."""
        if self._terminal is None:
            self._terminal = concatenate(self.children)
        return self._terminal

    @property
    def head(self) -> Head:
        return self.terminal.head

    @property
    def length(self) -> float:
        return sum(child.length for child in self.children)

    @property
    def type_string(self) -> str:
        return f"{self.type.value}_{self.level.value}"

    @property
    def transition_string(self) -> str:
        """The right-hand side of this node's grammar rule."""
        return "[" + ", ".join(child_string(child) for child in self.children) + "]"

    def nonterminal_children(self) -> List["Nonterminal"]:
        return [child for child in self.children if isinstance(child, Nonterminal)]

    def fix_children_types(self) -> None:
        """
        Type nonterminal children by comparing heads.

        If every child head is equal the children are EVEN. Otherwise the
        children holding the strongest head are STRONG and the rest WEAK.
        """
        children = self.nonterminal_children()
        if not children:
            return

        heads = sorted(child.head for child in children)
        strongest, weakest = heads[0], heads[-1]

        for child in children:
            if strongest == weakest:
                child.type = NodeType.EVEN
            elif child.head == strongest:
                child.type = NodeType.STRONG
            else:
                child.type = NodeType.WEAK

    def starts_with_rest(self) -> bool:
        return self.terminal.starts_with_rest()

    def is_empty(self) -> bool:
        return all(child.is_empty() for child in self.children)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Nonterminal):
            return NotImplemented
        return (
            type(self) is type(other)
            and self.level == other.level
            and self.type == other.type
            and self.children == other.children
        )

    def __hash__(self) -> int:
        return hash((self.level, self.type, tuple(self.children)))

    def __str__(self) -> str:
        return f"{self.type_string}{self.transition_string}"

    __repr__ = __str__

    def pretty(self, depth: int = 0, tab: str = "  ") -> str:
        lines = [tab * depth + f"{self.type_string} {self.head}"]
        lines.extend(child.pretty(depth + 1, tab) for child in self.children)
        return "\n".join(lines)


class MeasureRoot(Nonterminal):
    """Root of a bar tree, typed by its Measure."""

    def __init__(self, measure: Measure, children: Optional[List["Node"]] = None):
        super().__init__(Level.BAR, children, NodeType.MEASURE)
        self.measure = measure

    @property
    def type_string(self) -> str:
        return str(self.measure)

    def __eq__(self, other) -> bool:
        if not isinstance(other, MeasureRoot):
            return NotImplemented
        return self.measure == other.measure and self.children == other.children

    def __hash__(self) -> int:
        return hash((self.measure, tuple(self.children)))


Node = Union[Terminal, Nonterminal]


def child_string(node: Node) -> str:
    if isinstance(node, Terminal):
        return str(node)
    return node.type_string


def concatenate(nodes: Sequence[Node]) -> Terminal:
    """
    Join the patterns of several nodes into one terminal.

    Each node's pattern is stretched to a common tatums-per-sub-beat
    resolution first, so children at different resolutions (such as a
    straight beat beside a triplet beat) line up.
    """
    terminals = [node if isinstance(node, Terminal) else node.terminal for node in nodes]
    if not terminals:
        return Terminal((), 0.0)

    total_length = sum(t.base_length for t in terminals)

    # Smallest resolution at which every pattern stretches by a whole factor
    numerator, denominator = 1, 0
    for t in terminals:
        if t.original and t.base_length:
            per_unit = Fraction(len(t.original)) / _fraction(t.base_length)
            numerator = _lcm(numerator, per_unit.numerator)
            denominator = gcd(denominator, per_unit.denominator)
    resolution = Fraction(numerator, denominator or 1)

    pattern: List[Quantum] = []
    for t in terminals:
        if not t.base_length:
            pattern.extend(t.original)
            continue
        pattern.extend(stretch(t.original, int(resolution * _fraction(t.base_length))))
    return Terminal(pattern, total_length)


def _fraction(length: float) -> Fraction:
    return Fraction(length).limit_denominator(1000)


def stretch(pattern: Sequence[Quantum], size: int) -> List[Quantum]:
    """Resample a pattern to size tatums, where size is a multiple of its length."""
    if not pattern or size == len(pattern):
        return list(pattern)
    factor = max(size // len(pattern), 1)
    stretched: List[Quantum] = []
    for quantum in pattern:
        stretched.append(quantum)
        filler = Quantum.REST if quantum == Quantum.REST else Quantum.TIE
        stretched.extend([filler] * (factor - 1))
    return stretched


def _lcm(a: int, b: int) -> int:
    return a * b // gcd(a, b)
