"""MIDI loading: notes, onset batches and the ground-truth metrical grid."""

import logging
from dataclasses import dataclass, field
from itertools import groupby
from pathlib import Path
from typing import List, Optional, Union

import pretty_midi

from ..core import InputFormatError, Note, closest_tatum_index, first_index_around_time
from ..core.constants import VALID_BEATS_PER_BAR, VALID_SUB_BEATS_PER_BEAT
from ..grammar import Measure, Meter, best_subdivision, subdivide

logger = logging.getLogger(__name__)


def seconds_to_micros(seconds: float) -> int:
    return int(round(seconds * 1_000_000))


def measure_from_time_signature(numerator: int) -> Measure:
    """Compound signatures (6, 9, 12) group sub-beats in threes."""
    if numerator % 3 == 0 and numerator > 3:
        return Measure(numerator // 3, 3)
    return Measure(numerator, 2)


@dataclass
class MidiInput:
    """A loaded MIDI file with its ground-truth meter."""

    notes: List[Note]
    measure: Measure
    anacrusis: int  # Sub-beats before the first downbeat
    sub_beat_times: List[int]
    sub_beat_length: int
    tatum_times: List[int]
    path: Optional[Path] = None
    num_voices: int = field(default=0)

    @property
    def meter(self) -> Meter:
        return Meter(self.measure, self.sub_beat_length, self.anacrusis)

    def batches(self) -> List[List[Note]]:
        """Notes grouped by onset time, in onset order."""
        ordered = sorted(self.notes, key=lambda n: (n.onset_time, n.pitch))
        return [list(group) for _, group in groupby(ordered, key=lambda n: n.onset_time)]

    def voice_notes(self) -> List[List[Note]]:
        """Notes of each ground-truth voice, in onset order."""
        voices = {}
        for note in sorted(self.notes, key=lambda n: (n.onset_time, n.pitch)):
            voices.setdefault(note.correct_voice, []).append(note)
        return [voices[v] for v in sorted(voices)]


class MidiLoader:
    """Loads MIDI files into notes plus their annotated metrical grid."""

    SUPPORTED_FORMATS = {".mid", ".midi"}

    def __init__(self, include_drums: bool = False):
        """
        Initialize MidiLoader.

        Args:
            include_drums: Keep notes of drum instruments
        """
        self.include_drums = include_drums

    def load(self, path: Union[str, Path]) -> MidiInput:
        """
        Load a MIDI file.

        Args:
            path: Path to a .mid/.midi file

        Returns:
            The loaded input

        Raises:
            FileNotFoundError: If the file doesn't exist
            InputFormatError: If the file can't be parsed, has no notes, or
                has an unsupported or changing time signature
        """
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"MIDI file not found: {path}")

        if path.suffix.lower() not in self.SUPPORTED_FORMATS:
            raise InputFormatError(
                f"Unsupported format: {path.suffix}. Supported: {self.SUPPORTED_FORMATS}"
            )

        try:
            midi = pretty_midi.PrettyMIDI(str(path))
        except (OSError, ValueError, EOFError, KeyError, IndexError) as e:
            raise InputFormatError(f"Cannot parse {path}: {e}") from e

        midi_input = self.from_pretty_midi(midi)
        midi_input.path = path
        logger.info(
            "Loaded %s: %d notes, %d voices, %s anacrusis=%d",
            path.name,
            len(midi_input.notes),
            midi_input.num_voices,
            midi_input.measure,
            midi_input.anacrusis,
        )
        return midi_input

    def from_pretty_midi(self, midi: pretty_midi.PrettyMIDI) -> MidiInput:
        """Build the input from an in-memory PrettyMIDI object."""
        signatures = midi.time_signature_changes
        if len(signatures) > 1:
            raise InputFormatError(f"Time signature changes are not supported ({len(signatures)} signatures)")
        numerator = signatures[0].numerator if signatures else 4
        measure = measure_from_time_signature(numerator)
        if (
            measure.beats_per_bar not in VALID_BEATS_PER_BAR
            or measure.sub_beats_per_beat not in VALID_SUB_BEATS_PER_BEAT
        ):
            raise InputFormatError(f"Unsupported meter {measure}")

        notes = self._extract_notes(midi)
        if not notes:
            raise InputFormatError("No notes found")

        beats = [seconds_to_micros(t) for t in midi.get_beats()]
        # One extra beat so the last note ends inside the grid
        while len(beats) < 2 or beats[-1] <= max(n.offset_time for n in notes):
            step = beats[-1] - beats[-2] if len(beats) > 1 else 500_000
            beats.append(beats[-1] + step)

        sub_beats = subdivide(beats, measure.sub_beats_per_beat)
        first = first_index_around_time(notes[0].onset_time, sub_beats)
        sub_beats = sub_beats[first:]

        downbeats = [seconds_to_micros(t) for t in midi.get_downbeats()]
        anacrusis = 0
        if downbeats:
            downbeat = next((d for d in downbeats if d >= sub_beats[0]), downbeats[-1])
            anacrusis = closest_tatum_index(downbeat, sub_beats) % measure.sub_beats_per_bar

        sub_beat_length, tatums = best_subdivision(sub_beats, [n.onset_time for n in notes])

        return MidiInput(
            notes=notes,
            measure=measure,
            anacrusis=anacrusis,
            sub_beat_times=sub_beats,
            sub_beat_length=sub_beat_length,
            tatum_times=tatums,
            num_voices=len({n.correct_voice for n in notes}),
        )

    def _extract_notes(self, midi: pretty_midi.PrettyMIDI) -> List[Note]:
        notes = []
        for index, instrument in enumerate(midi.instruments):
            if instrument.is_drum and not self.include_drums:
                continue
            for midi_note in instrument.notes:
                notes.append(
                    Note(
                        pitch=midi_note.pitch,
                        onset_time=seconds_to_micros(midi_note.start),
                        offset_time=seconds_to_micros(midi_note.end),
                        onset_tick=midi.time_to_tick(midi_note.start),
                        offset_tick=midi.time_to_tick(midi_note.end),
                        correct_voice=index,
                        velocity=midi_note.velocity,
                    )
                )
        notes.sort(key=lambda n: (n.onset_time, n.pitch))
        return notes


def load_midi(path: Union[str, Path]) -> MidiInput:
    """Load a MIDI file with the default loader."""
    return MidiLoader().load(path)
