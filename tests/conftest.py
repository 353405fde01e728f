"""Shared fixtures: synthetic annotated inputs and a small trained grammar."""

import math
from typing import List, Sequence, Tuple

import pretty_midi
import pytest

from metergram.core import BeatKind, DecoderConfig, Note, VoiceKind
from metergram.grammar import Grammar, Measure, subdivide
from metergram.input import MidiInput
from metergram.training import grammar_from_input

BEAT = 500_000  # 120 BPM


def make_notes(spans: Sequence[Tuple[float, float]], pitch: int = 60, voice: int = 0, beat: int = BEAT) -> List[Note]:
    """Notes from (onset, length) pairs given in beats."""
    return [
        Note(
            pitch=pitch,
            onset_time=int(onset * beat),
            offset_time=int((onset + length) * beat),
            correct_voice=voice,
        )
        for onset, length in spans
    ]


def make_input(
    notes: List[Note],
    measure: Measure,
    sub_beat_length: int = 2,
    anacrusis: int = 0,
    beat: int = BEAT,
) -> MidiInput:
    """An annotated input whose grid ends exactly at the last offset."""
    num_beats = math.ceil(max(n.offset_time for n in notes) / beat)
    beats = [i * beat for i in range(num_beats + 1)]
    sub_beats = subdivide(beats, measure.sub_beats_per_beat)
    return MidiInput(
        notes=sorted(notes, key=lambda n: (n.onset_time, n.pitch)),
        measure=measure,
        anacrusis=anacrusis,
        sub_beat_times=sub_beats,
        sub_beat_length=sub_beat_length,
        tatum_times=subdivide(sub_beats, sub_beat_length),
        num_voices=len({n.correct_voice for n in notes}),
    )


def steady_notes(count: int, pitch: int = 60) -> List[Note]:
    return make_notes([(i, 1) for i in range(count)], pitch=pitch)


def waltz_notes(bars: int) -> List[Note]:
    """Half note then quarter note, every bar of 3/4."""
    spans = []
    for bar in range(bars):
        spans.append((bar * 3, 2))
        spans.append((bar * 3 + 2, 1))
    return make_notes(spans, pitch=67)


def write_midi(path, spans, numerator: int = 4, denominator: int = 4, tempo: float = 120.0, pitch: int = 60):
    """Write a one-instrument MIDI file; spans are (start, end) in seconds."""
    midi = pretty_midi.PrettyMIDI(initial_tempo=tempo)
    midi.time_signature_changes.append(pretty_midi.TimeSignature(numerator, denominator, 0))
    instrument = pretty_midi.Instrument(program=0)
    for start, end in spans:
        instrument.notes.append(pretty_midi.Note(velocity=80, pitch=pitch, start=start, end=end))
    midi.instruments.append(instrument)
    midi.write(str(path))
    return path


@pytest.fixture
def steady_input():
    """Eight bars of steady quarter notes in 4/4."""
    return make_input(steady_notes(32), Measure(4, 2))


@pytest.fixture
def waltz_input():
    return make_input(waltz_notes(8), Measure(3, 2))


@pytest.fixture
def train_config():
    return DecoderConfig()


@pytest.fixture
def grammar(steady_input, waltz_input, train_config):
    """Grammar holding the steady 4/4 bars and the 3/4 waltz bars."""
    grammar = grammar_from_input(steady_input, train_config)
    grammar.merge(grammar_from_input(waltz_input, train_config))
    return grammar


@pytest.fixture
def file_config():
    """Ground-truth voices and beats; only the meter is searched."""
    return DecoderConfig(
        sub_beat_length=2,
        use_congruence=False,
        voice_kind=VoiceKind.FROM_FILE,
        beat_kind=BeatKind.FROM_FILE,
    )


@pytest.fixture
def empty_grammar():
    return Grammar()
