"""Global constants for metergram."""

# Pitch names
PITCH_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]

# Supported meters: beats per bar x sub-beats per beat
VALID_BEATS_PER_BAR = (2, 3, 4)
VALID_SUB_BEATS_PER_BEAT = (2, 3)

# Sub-beat length (tatums per sub-beat) search range
MIN_SUB_BEAT_LENGTH = 1
MAX_SUB_BEAT_LENGTH = 8

# Decoder defaults
DEFAULT_BEAM_SIZE = 200
DEFAULT_VOICE_BEAM_SIZE = 25
DEFAULT_MIN_NOTE_LENGTH = 100000  # microseconds
DEFAULT_GLOBAL_WEIGHT = 2.0 / 3.0

# Rule of congruence
WRONG_MATCH_LIMIT = 5

# Grammar file format version
GRAMMAR_FORMAT_VERSION = 1
