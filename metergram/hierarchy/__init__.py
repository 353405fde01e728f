"""Metrical hierarchy (meter) hypotheses."""

from .base import HierarchyState
from .lpcfg import LpcfgHierarchyState, Match
from .fromfile import FromFileHierarchyState

__all__ = ["HierarchyState", "LpcfgHierarchyState", "Match", "FromFileHierarchyState"]
