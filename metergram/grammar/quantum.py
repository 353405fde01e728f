"""Rhythm quanta and pattern reduction.

A rhythm pattern is a sequence of REST/ONSET/TIE symbols, one per tatum.
Patterns are reduced by the greatest common factor of their constituent
lengths so that e.g. [ONSET, TIE, ONSET, TIE] and [ONSET, ONSET] are the same
pattern at different resolutions.
"""

import logging
from enum import IntEnum
from math import gcd
from typing import List, Sequence, Tuple

logger = logging.getLogger(__name__)


class Quantum(IntEnum):
    """One tatum of a rhythm pattern."""

    REST = 0
    ONSET = 1
    TIE = 2

    def __str__(self) -> str:
        return self.name


Pattern = Tuple[Quantum, ...]


def constituent_lengths(pattern: Sequence[Quantum]) -> List[Tuple[Quantum, int]]:
    """
    Split a pattern into (first symbol, length) constituents.

    A constituent is a note (ONSET or leading TIE, then TIEs) or a run of
    RESTs. A TIE directly after a REST is malformed: it is logged and treated
    as an ONSET.

    Args:
        pattern: Quantum sequence

    Returns:
        List of (symbol, length) pairs
    """
    constituents: List[Tuple[Quantum, int]] = []
    for quantum in pattern:
        if not constituents:
            constituents.append((quantum, 1))
            continue

        first, length = constituents[-1]
        in_rest = first == Quantum.REST

        if quantum == Quantum.ONSET:
            constituents.append((Quantum.ONSET, 1))
        elif quantum == Quantum.REST:
            if in_rest:
                constituents[-1] = (first, length + 1)
            else:
                constituents.append((Quantum.REST, 1))
        elif in_rest:
            logger.warning("TIE after REST in %s - treating as ONSET", list(map(str, pattern)))
            constituents.append((Quantum.ONSET, 1))
        else:
            constituents[-1] = (first, length + 1)

    return constituents


def pattern_gcf(pattern: Sequence[Quantum]) -> int:
    """Greatest common factor of all constituent lengths."""
    factor = 0
    for _, length in constituent_lengths(pattern):
        factor = gcd(factor, length)
        if factor == 1:
            break
    return max(factor, 1)


def reduce_pattern(pattern: Sequence[Quantum]) -> Pattern:
    """
    Reduce a pattern to its shortest equivalent form.

    Malformed TIEs (after a REST) come out as ONSETs.

    Args:
        pattern: Quantum sequence

    Returns:
        Reduced pattern as a tuple
    """
    if not pattern:
        return ()

    constituents = constituent_lengths(pattern)
    factor = 0
    for _, length in constituents:
        factor = gcd(factor, length)

    reduced: List[Quantum] = []
    for first, length in constituents:
        reduced_length = length // factor
        if first == Quantum.REST:
            reduced.extend([Quantum.REST] * reduced_length)
        else:
            reduced.append(first)
            reduced.extend([Quantum.TIE] * (reduced_length - 1))
    return tuple(reduced)


def pattern_string(pattern: Sequence[Quantum]) -> str:
    """Printable form of a pattern, e.g. '[ONSET, TIE]'."""
    return "[" + ", ".join(str(q) for q in pattern) + "]"
