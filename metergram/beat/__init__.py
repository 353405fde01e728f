"""Beat (tatum grid) hypotheses."""

from .base import BeatState
from .hmm import HmmBeatState, BeatParameters
from .fromfile import FromFileBeatState

__all__ = ["BeatState", "HmmBeatState", "BeatParameters", "FromFileBeatState"]
