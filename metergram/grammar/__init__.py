"""Metrical LPCFG: rhythm-pattern trees, count tables and smoothing."""

from .quantum import Quantum, reduce_pattern, pattern_gcf
from .measure import Measure, Meter
from .head import Head
from .nodes import Level, NodeType, Terminal, Nonterminal, MeasureRoot, reduces_to_one
from .smoothing import good_turing
from .tracker import ProbabilityTracker
from .builder import make_tree, make_quantum_list, subdivide, best_subdivision
from .grammar import Grammar

__all__ = [
    "Quantum",
    "reduce_pattern",
    "pattern_gcf",
    "Measure",
    "Meter",
    "Head",
    "Level",
    "NodeType",
    "Terminal",
    "Nonterminal",
    "MeasureRoot",
    "reduces_to_one",
    "good_turing",
    "ProbabilityTracker",
    "make_tree",
    "make_quantum_list",
    "subdivide",
    "best_subdivision",
    "Grammar",
]
