"""Joint decoding: hypotheses, beam pruning and the decoder."""

from .state import JointState, Summary
from .beam import JointBeam, add_with_duplicate_check
from .decoder import JointDecoder, create_root_state

__all__ = ["JointState", "Summary", "JointBeam", "add_with_duplicate_check", "JointDecoder", "create_root_state"]
