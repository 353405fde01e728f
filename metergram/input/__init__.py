"""Input loading."""

from .loader import MidiInput, MidiLoader, load_midi, measure_from_time_signature

__all__ = ["MidiInput", "MidiLoader", "load_midi", "measure_from_time_signature"]
