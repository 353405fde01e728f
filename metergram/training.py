"""Grammar training from annotated MIDI, and meter evaluation.

generate_grammar() induces bar trees from each file's own time signature
and beat grid and merges them into one grammar. evaluate_files() decodes
each file leave-one-out: the file's own trees are taken out of the grammar
while it is decoded, then put back.
"""

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .core import DecoderConfig, GrammarElementNotFound, InputFormatError, Note, closest_tatum_index
from .grammar import Grammar, Meter
from .grammar.builder import make_measure_tree
from .grammar.nodes import MeasureRoot
from .input import MidiInput, MidiLoader
from .joint import JointDecoder, JointState

logger = logging.getLogger(__name__)


def filter_short_notes(notes: Sequence[Note], min_note_length: int) -> List[Note]:
    """Drop notes that start less than min_note_length after the previous note of the voice."""
    if min_note_length == -1:
        return list(notes)
    kept = []
    for i, note in enumerate(notes):
        if i == 0 or note.onset_time - notes[i - 1].onset_time >= min_note_length:
            kept.append(note)
    return kept


def _grid_time(times: Sequence[int], index: int) -> int:
    """Time of a grid index, extrapolated past either end at the edge spacing."""
    if index < 0:
        return times[0] + index * (times[1] - times[0])
    if index >= len(times):
        return times[-1] + (index - len(times) + 1) * (times[-1] - times[-2])
    return times[index]


def file_trees(midi: MidiInput, config: DecoderConfig) -> List[MeasureRoot]:
    """
    Bar trees of every voice of an annotated input.

    Each beat picks its own subdivision from the notes it holds. The
    anacrusis bar is never kept, and neither is a voice's first non-empty
    bar when it starts with a rest, since either is most likely partial.
    """
    measure = midi.measure
    sub_beats = midi.sub_beat_times
    per_beat = measure.sub_beats_per_beat
    per_bar = measure.sub_beats_per_bar
    anacrusis = midi.anacrusis
    trees = []

    for voice in midi.voice_notes():
        unfinished = filter_short_notes(voice, config.min_note_length)
        has_begun = any(closest_tatum_index(n.onset_time, sub_beats) < anacrusis for n in unfinished)
        prev_time = _grid_time(sub_beats, anacrusis - 1)
        measure_num = 0

        while unfinished:
            start = anacrusis + measure_num * per_bar
            if start >= len(sub_beats) - 1:
                break

            beat_anchors = [
                [_grid_time(sub_beats, start + beat * per_beat + i) for i in range(per_beat)]
                for beat in range(measure.beats_per_bar)
            ]
            next_time = _grid_time(sub_beats, start + per_bar)
            tree, prev_time = make_measure_tree(
                measure, beat_anchors, next_time, prev_time, unfinished, has_begun, config.extend_notes
            )
            measure_num += 1
            unfinished = [n for n in unfinished if n.offset_time > next_time]

            if tree.is_empty():
                continue
            if not has_begun:
                has_begun = True
                if tree.starts_with_rest():
                    continue

            trees.append(tree)

    return trees


def grammar_from_input(midi: MidiInput, config: DecoderConfig) -> Grammar:
    grammar = Grammar(save_trees=config.save_trees, lexicalize=config.lexicalize)
    for tree in file_trees(midi, config):
        grammar.add_tree(tree)
    return grammar


def _grammar_from_path(job: Tuple[Path, DecoderConfig]) -> Tuple[Path, Optional[Grammar], Optional[str]]:
    path, config = job
    try:
        return path, grammar_from_input(MidiLoader().load(path), config), None
    except (InputFormatError, FileNotFoundError) as e:
        return path, None, str(e)


def generate_grammar(
    paths: Iterable[Path],
    config: DecoderConfig,
    workers: int = 1,
    on_file: Optional[Callable[[Path, bool], None]] = None,
) -> Grammar:
    """
    Train a grammar from annotated MIDI files.

    Args:
        paths: MIDI files
        config: Decoder configuration (note filtering, extension, lexicalization)
        workers: Worker processes; 1 runs in-process
        on_file: Called with (path, success) after each file

    Returns:
        The merged grammar. Unreadable files are logged and skipped.
    """
    jobs = [(Path(p), config) for p in paths]
    grammar = Grammar(save_trees=config.save_trees, lexicalize=config.lexicalize)

    if workers > 1 and len(jobs) > 1:
        with ProcessPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(_grammar_from_path, jobs))
    else:
        results = map(_grammar_from_path, jobs)

    for path, file_grammar, error in results:
        if file_grammar is None:
            logger.warning("Skipping %s: %s", path, error)
        else:
            grammar.merge(file_grammar)
        if on_file is not None:
            on_file(path, file_grammar is not None)

    logger.info("Generated grammar with measures %s", sorted(str(m) for m in grammar.measures))
    return grammar


@dataclass
class MeterEvaluation:
    """How a decoded meter compares with the annotated one."""

    truth: Meter
    guess: Optional[Meter]
    path: Optional[Path] = None

    @property
    def measure_correct(self) -> bool:
        return self.guess is not None and self.guess.measure == self.truth.measure

    @property
    def sub_beat_length_correct(self) -> bool:
        return self.guess is not None and self.guess.sub_beat_length == self.truth.sub_beat_length

    @property
    def anacrusis_correct(self) -> bool:
        return self.guess is not None and self.guess.anacrusis == self.truth.anacrusis

    @property
    def is_correct(self) -> bool:
        return self.measure_correct and self.sub_beat_length_correct and self.anacrusis_correct


def evaluate_meter(result: Optional[JointState], truth: MidiInput) -> MeterEvaluation:
    guess = result.hierarchy.meter if result is not None else None
    return MeterEvaluation(truth=truth.meter, guess=guess, path=truth.path)


def decode_input(midi: MidiInput, grammar: Optional[Grammar], config: DecoderConfig) -> List[JointState]:
    """Run the joint decoder over every note batch of an input."""
    decoder = JointDecoder.from_config(config, grammar, midi)
    return decoder.decode(midi.batches())


def leave_one_out(midi: MidiInput, grammar: Grammar, config: DecoderConfig) -> List[JointState]:
    """
    Decode an input with its own trees taken out of the grammar.

    The grammar is restored afterwards.

    Raises:
        GrammarElementNotFound: If one of the input's trees is not in the
            grammar; the grammar is left unchanged
    """
    trees = file_trees(midi, config)
    extracted: List[MeasureRoot] = []
    try:
        for tree in trees:
            grammar.extract_tree(tree)
            extracted.append(tree)
    except GrammarElementNotFound:
        for tree in extracted:
            grammar.add_tree(tree)
        raise

    try:
        return decode_input(midi, grammar, config)
    finally:
        for tree in extracted:
            grammar.add_tree(tree)


def evaluate_files(
    paths: Iterable[Path],
    grammar: Grammar,
    config: DecoderConfig,
    hold_out: bool = True,
    on_file: Optional[Callable[[Path, Optional[MeterEvaluation]], None]] = None,
) -> List[MeterEvaluation]:
    """
    Decode annotated files and compare the best meter with the annotation.

    Files that can't be loaded, or whose trees are missing from the grammar
    when holding out, are logged and skipped.
    """
    loader = MidiLoader()
    evaluations = []
    for path in paths:
        evaluation = None
        try:
            midi = loader.load(path)
            results = leave_one_out(midi, grammar, config) if hold_out else decode_input(midi, grammar, config)
            evaluation = evaluate_meter(results[0] if results else None, midi)
            evaluations.append(evaluation)
        except (InputFormatError, FileNotFoundError) as e:
            logger.warning("Skipping %s: %s", path, e)
        except GrammarElementNotFound as e:
            logger.warning("Skipping %s: %s", path, e)
        if on_file is not None:
            on_file(Path(path), evaluation)
    return evaluations
