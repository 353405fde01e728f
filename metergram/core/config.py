"""Decoder configuration.

One immutable DecoderConfig is built per run (by the CLI or a caller) and
passed explicitly to the decoder, the hierarchy states and the trainer.
"""

from dataclasses import dataclass, replace
from enum import Enum

from .constants import (
    DEFAULT_BEAM_SIZE,
    DEFAULT_GLOBAL_WEIGHT,
    DEFAULT_MIN_NOTE_LENGTH,
    DEFAULT_VOICE_BEAM_SIZE,
    MAX_SUB_BEAT_LENGTH,
    MIN_SUB_BEAT_LENGTH,
)


class VoiceKind(str, Enum):
    """Voice splitting model."""

    HMM = "hmm"
    FROM_FILE = "file"


class BeatKind(str, Enum):
    """Beat tracking model."""

    HMM = "hmm"
    FROM_FILE = "file"


class HierarchyKind(str, Enum):
    """Metrical hierarchy model."""

    LPCFG = "lpcfg"
    FROM_FILE = "file"


@dataclass(frozen=True)
class DecoderConfig:
    """
    Configuration for joint decoding and grammar training.

    Attributes:
        beam_size: Joint beam size (default: 200)
        voice_beam_size: Beam size for voice-only branching (default: 25)
        sub_beat_length: Tatums per sub-beat, or -1 to search 1..8 (default: -1)
        min_note_length: Notes shorter than this (microseconds) are not passed
            to the beat and hierarchy models (default: 100000)
        extend_notes: Extend each note to the next onset in its voice (default: True)
        use_congruence: Apply the rule of congruence (default: True)
        global_weight: Weight of the global grammar vs. the local one (default: 2/3)
        lexicalize: Condition grammar probabilities on heads (default: True)
        save_trees: Keep induced trees in the grammar (default: True)
        voice_kind: Voice model (default: HMM)
        beat_kind: Beat model (default: HMM)
        hierarchy_kind: Hierarchy model (default: LPCFG)
    """

    beam_size: int = DEFAULT_BEAM_SIZE
    voice_beam_size: int = DEFAULT_VOICE_BEAM_SIZE
    sub_beat_length: int = -1
    min_note_length: int = DEFAULT_MIN_NOTE_LENGTH
    extend_notes: bool = True
    use_congruence: bool = True
    global_weight: float = DEFAULT_GLOBAL_WEIGHT
    lexicalize: bool = True
    save_trees: bool = True
    voice_kind: VoiceKind = VoiceKind.HMM
    beat_kind: BeatKind = BeatKind.HMM
    hierarchy_kind: HierarchyKind = HierarchyKind.LPCFG

    def __post_init__(self):
        if self.beam_size < 1:
            raise ValueError(f"beam_size must be positive, got {self.beam_size}")
        if self.voice_beam_size < 1:
            raise ValueError(f"voice_beam_size must be positive, got {self.voice_beam_size}")
        if self.sub_beat_length != -1 and not (
            MIN_SUB_BEAT_LENGTH <= self.sub_beat_length <= MAX_SUB_BEAT_LENGTH
        ):
            raise ValueError(
                f"sub_beat_length must be -1 or in "
                f"[{MIN_SUB_BEAT_LENGTH}, {MAX_SUB_BEAT_LENGTH}], got {self.sub_beat_length}"
            )
        if not 0.0 <= self.global_weight <= 1.0:
            raise ValueError(f"global_weight must be in [0, 1], got {self.global_weight}")

    @property
    def sub_beat_lengths(self) -> range:
        """Sub-beat lengths a hierarchy may branch over."""
        if self.sub_beat_length == -1:
            return range(MIN_SUB_BEAT_LENGTH, MAX_SUB_BEAT_LENGTH + 1)
        return range(self.sub_beat_length, self.sub_beat_length + 1)

    def replace(self, **changes) -> "DecoderConfig":
        """Return a copy with the given fields changed."""
        return replace(self, **changes)
