"""Core types, configuration and errors for metergram."""

from .note import Note, closest_tatum_index, first_index_around_time
from .config import DecoderConfig, VoiceKind, BeatKind, HierarchyKind
from .errors import (
    MetergramError,
    GrammarElementNotFound,
    MalformedTreeError,
    InputFormatError,
)
from .constants import (
    PITCH_NAMES,
    DEFAULT_BEAM_SIZE,
    DEFAULT_GLOBAL_WEIGHT,
    WRONG_MATCH_LIMIT,
)

__all__ = [
    "Note",
    "closest_tatum_index",
    "first_index_around_time",
    "DecoderConfig",
    "VoiceKind",
    "BeatKind",
    "HierarchyKind",
    "MetergramError",
    "GrammarElementNotFound",
    "MalformedTreeError",
    "InputFormatError",
    "PITCH_NAMES",
    "DEFAULT_BEAM_SIZE",
    "DEFAULT_GLOBAL_WEIGHT",
    "WRONG_MATCH_LIMIT",
]
