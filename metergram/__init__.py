"""metergram - Joint voice, beat and meter inference for MIDI performances.

Architecture Layers:
    1. core/      - Notes, configuration, errors
    2. grammar/   - Metrical LPCFG: rhythm trees, count tables, smoothing
    3. voice/     - Voice separation hypotheses
    4. beat/      - Tatum grid (beat tracking) hypotheses
    5. hierarchy/ - Meter hypotheses scored by the grammar
    6. joint/     - Joint beam-search decoder
    7. input/     - MIDI loading and ground-truth grids
"""

__version__ = "0.1.0"

# Core types
from .core import (
    Note,
    DecoderConfig,
    VoiceKind,
    BeatKind,
    HierarchyKind,
    MetergramError,
    GrammarElementNotFound,
    MalformedTreeError,
    InputFormatError,
)

# Grammar layer
from .grammar import Grammar, Measure, Meter, Quantum, make_tree

# Hypothesis layers
from .voice import HmmVoiceState, FromFileVoiceState
from .beat import HmmBeatState, FromFileBeatState
from .hierarchy import LpcfgHierarchyState, FromFileHierarchyState

# Decoding
from .joint import JointDecoder, JointState, create_root_state

# Input layer
from .input import MidiInput, MidiLoader, load_midi

# Training
from .training import generate_grammar, evaluate_files, leave_one_out

__all__ = [
    # Core
    "Note",
    "DecoderConfig",
    "VoiceKind",
    "BeatKind",
    "HierarchyKind",
    "MetergramError",
    "GrammarElementNotFound",
    "MalformedTreeError",
    "InputFormatError",
    # Grammar
    "Grammar",
    "Measure",
    "Meter",
    "Quantum",
    "make_tree",
    # Hypotheses
    "HmmVoiceState",
    "FromFileVoiceState",
    "HmmBeatState",
    "FromFileBeatState",
    "LpcfgHierarchyState",
    "FromFileHierarchyState",
    # Decoding
    "JointDecoder",
    "JointState",
    "create_root_state",
    # Input
    "MidiInput",
    "MidiLoader",
    "load_midi",
    # Training
    "generate_grammar",
    "evaluate_files",
    "leave_one_out",
]
