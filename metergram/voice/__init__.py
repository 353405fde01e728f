"""Voice separation hypotheses."""

from .voice import Voice, VoiceParameters
from .base import VoiceState
from .hmm import HmmVoiceState
from .fromfile import FromFileVoiceState

__all__ = ["Voice", "VoiceParameters", "VoiceState", "HmmVoiceState", "FromFileVoiceState"]
