"""Building bar trees from notes.

Two steps turn a voice's notes into a grammar tree:

1. make_quantum_list() quantizes the notes of one bar against a tatum grid
   into a REST/ONSET/TIE sequence.
2. make_tree() splits that sequence into beats and sub-beats and types the
   nodes STRONG/WEAK/EVEN.

Training bars are built one beat at a time instead: make_measure_tree() lets
make_beat() pick each beat's own split (2 or 3 sub-beats of 3 or 4 tatums),
so straight and triplet beats can share a bar.

subdivide() and best_subdivision() build the uniform tatum grid a file is
decoded against, choosing between candidate splits by onset-to-tatum
distance.
"""

import logging
from typing import List, Sequence, Tuple

import numpy as np

from ..core import Note, closest_tatum_index
from ..core.errors import MalformedTreeError
from .measure import Measure
from .nodes import Level, MeasureRoot, Nonterminal, Terminal, reduces_to_one
from .quantum import Quantum

logger = logging.getLogger(__name__)

DEFAULT_SUBDIVISIONS = (4, 3)

# Onsets this close (microseconds) to the next beat belong to it
ONSET_TOLERANCE = 10_000


def make_tree(quantums: Sequence[Quantum], beats_per_bar: int, sub_beats_per_beat: int) -> MeasureRoot:
    """
    Build the tree of one bar.

    Args:
        quantums: The bar's pattern; its length must be a multiple of
            beats_per_bar * sub_beats_per_beat
        beats_per_bar: Number of beats in the bar
        sub_beats_per_beat: Number of sub-beats in each beat

    Returns:
        The bar's MeasureRoot

    Raises:
        MalformedTreeError: If the pattern does not divide evenly
    """
    sub_beats_per_bar = beats_per_bar * sub_beats_per_beat
    if not quantums or len(quantums) % sub_beats_per_bar != 0:
        raise MalformedTreeError(
            f"Pattern of length {len(quantums)} cannot be split into "
            f"{beats_per_bar} beats of {sub_beats_per_beat} sub-beats"
        )

    beat_length = len(quantums) // beats_per_bar
    root = MeasureRoot(Measure(beats_per_bar, sub_beats_per_beat))

    for beat_start in range(0, len(quantums), beat_length):
        beat_pattern = quantums[beat_start:beat_start + beat_length]
        root.add_child(beat_node(beat_pattern, sub_beats_per_beat, sub_beats_per_beat))

    root.fix_children_types()
    return root


def beat_node(pattern: Sequence[Quantum], num_sub_beats: int, sub_beats_per_beat: int) -> Nonterminal:
    """
    Build one BEAT node from its pattern.

    A beat always spans sub_beats_per_beat sub-beats of the measure, however
    many sub-beats (num_sub_beats) it is actually split into.
    """
    beat = Nonterminal(Level.BEAT)
    if reduces_to_one(pattern):
        beat.add_child(Terminal(pattern, sub_beats_per_beat))
        return beat

    sub_beat_length = len(pattern) // num_sub_beats
    for sub_start in range(0, len(pattern), sub_beat_length):
        sub_beat = Nonterminal(Level.SUB_BEAT)
        sub_beat.add_child(
            Terminal(pattern[sub_start:sub_start + sub_beat_length], sub_beats_per_beat / num_sub_beats)
        )
        beat.add_child(sub_beat)
    beat.fix_children_types()
    return beat


def anchored_times(anchors: Sequence[int], num_times: int, next_time: int) -> List[int]:
    """
    Split a beat into num_times tatums.

    The tatums line up with every anchor when num_times divides evenly among
    them. Otherwise the beat is split evenly from its first anchor.
    """
    if num_times % len(anchors) == 0:
        return subdivide(list(anchors) + [next_time], num_times // len(anchors))[:-1]
    return subdivide([anchors[0], next_time], num_times)[:-1]


def beat_quantums(
    prev_time: int,
    times: Sequence[int],
    next_time: int,
    notes: Sequence[Note],
    has_begun: bool,
    extend_notes: bool = True,
) -> List[Quantum]:
    """
    Quantize a voice's notes into one beat.

    Args:
        prev_time: Last tatum time before this beat
        times: The beat's tatum times
        next_time: Time of the following beat
        notes: Notes that may sound in this beat, in onset order
        has_begun: Whether the voice has sounded before this beat
        extend_notes: Extend notes to the next onset (or the beat end)

    Returns:
        One quantum per tatum of the beat
    """
    initial = Quantum.TIE if extend_notes and has_begun else Quantum.REST
    quantums = [initial] * len(times)
    # Index 0 is the tatum before the beat and the last index the next beat
    grid = [prev_time] + list(times) + [next_time]

    for note in notes:
        onset = closest_tatum_index(note.onset_time, grid)
        if onset == len(grid) - 1:
            break
        offset = len(quantums) if extend_notes else closest_tatum_index(note.offset_time, grid) - 1

        if onset > 0:
            quantums[onset - 1] = Quantum.ONSET
        for i in range(onset, offset):
            quantums[i] = Quantum.TIE

    return quantums


def reduced_size(beat: Nonterminal) -> int:
    """Total length of a beat's children once each is fully reduced."""
    return sum(
        len(child.pattern if isinstance(child, Terminal) else child.terminal.pattern)
        for child in beat.children
    )


def make_beat(
    anchors: Sequence[int],
    next_time: int,
    prev_time: int,
    notes: Sequence[Note],
    has_begun: bool,
    sub_beats_per_beat: int,
    extend_notes: bool = True,
) -> Tuple[Nonterminal, int]:
    """
    Build one beat, choosing its own subdivision.

    The beat is tried as 2 and as 3 sub-beats, each of 3 and of 4 tatums.
    For either sub-beat count, 3 tatums win only when they halve the mean
    onset distance of 4 tatums. The two sub-beat counts are then compared the
    same way. On a near-tie the split whose patterns reduce shortest wins,
    and 3 sub-beats win an equal reduction when the measure is triple.

    Args:
        anchors: Known grid times inside the beat, the beat itself first
        next_time: Time of the next beat
        prev_time: Last tatum time of the previous beat
        notes: The voice's notes that may sound in this beat, in onset order
        has_begun: Whether the voice has sounded before this beat
        sub_beats_per_beat: Sub-beats per beat of the measure
        extend_notes: Extend notes to the next onset

    Returns:
        (the BEAT node, its last tatum time)
    """
    earliest = anchors[0] - ONSET_TOLERANCE
    onsets = [n.onset_time for n in notes if earliest <= n.onset_time <= next_time - ONSET_TOLERANCE]

    best = {}
    for num_sub_beats in (2, 3):
        choice = None
        for tatums_per_sub_beat in (4, 3):
            times = anchored_times(anchors, num_sub_beats * tatums_per_sub_beat, next_time)
            distance = onset_distance(onsets, times)
            if choice is None or distance < 0.5 * choice[2]:
                quantums = beat_quantums(prev_time, times, next_time, notes, has_begun, extend_notes)
                choice = (beat_node(quantums, num_sub_beats, sub_beats_per_beat), times, distance)
        best[num_sub_beats] = choice

    duple, duple_times, duple_distance = best[2]
    triple, triple_times, triple_distance = best[3]

    if duple_distance < 0.5 * triple_distance:
        return duple, duple_times[-1]
    if triple_distance < 0.5 * duple_distance:
        return triple, triple_times[-1]

    duple_size = reduced_size(duple)
    triple_size = reduced_size(triple)
    if triple_size < duple_size or (triple_size == duple_size and sub_beats_per_beat == 3):
        return triple, triple_times[-1]
    return duple, duple_times[-1]


def make_measure_tree(
    measure: Measure,
    beat_anchors: Sequence[Sequence[int]],
    next_time: int,
    prev_time: int,
    notes: Sequence[Note],
    has_begun: bool,
    extend_notes: bool = True,
) -> Tuple[MeasureRoot, int]:
    """
    Build the tree of one bar, one beat at a time.

    Args:
        measure: Bar shape
        beat_anchors: For each beat, its known grid times (beat first)
        next_time: Downbeat time of the following bar
        prev_time: Last tatum time of the previous bar
        notes: One voice's unfinished notes, in onset order
        has_begun: Whether the voice has sounded in an earlier bar
        extend_notes: Extend notes to the next onset

    Returns:
        (the bar's MeasureRoot, its last tatum time)

    Raises:
        MalformedTreeError: If the number of beats does not match the measure
    """
    if len(beat_anchors) != measure.beats_per_bar:
        raise MalformedTreeError(
            f"Expected {measure.beats_per_bar} beats per bar, got {len(beat_anchors)}"
        )

    root = MeasureRoot(measure)
    for beat_num, anchors in enumerate(beat_anchors):
        beat_next = beat_anchors[beat_num + 1][0] if beat_num + 1 < len(beat_anchors) else next_time
        first = next((i for i, n in enumerate(notes) if n.offset_time > prev_time), len(notes))
        beat, prev_time = make_beat(
            anchors,
            beat_next,
            prev_time,
            notes[first:],
            has_begun or not root.is_empty(),
            measure.sub_beats_per_beat,
            extend_notes,
        )
        root.add_child(beat)

    root.fix_children_types()
    return root, prev_time


def bar_start_index(measure: Measure, sub_beat_length: int, anacrusis: int, measure_num: int) -> int:
    """Tatum index at which the given bar starts (negative inside the anacrusis)."""
    return anacrusis * sub_beat_length + measure_num * measure.tatums_per_bar(sub_beat_length)


def make_quantum_list(
    notes: Sequence[Note],
    tatums: Sequence[int],
    measure: Measure,
    sub_beat_length: int,
    anacrusis: int,
    measure_num: int,
    has_begun: bool,
    extend_notes: bool = True,
) -> List[Quantum]:
    """
    Quantize one voice's notes into one bar.

    Args:
        notes: The voice's unfinished notes, in onset order
        tatums: Tatum times of the beat grid
        measure: Bar shape
        sub_beat_length: Tatums per sub-beat
        anacrusis: Anacrusis length in sub-beats
        measure_num: Bar number (-1 for the anacrusis bar)
        has_begun: Whether this voice has produced a bar already
        extend_notes: Extend notes to the next onset (or the bar end)

    Returns:
        One quantum per tatum of the bar
    """
    bar_length = measure.tatums_per_bar(sub_beat_length)
    start = bar_start_index(measure, sub_beat_length, anacrusis, measure_num)

    initial = Quantum.TIE if extend_notes and has_begun and notes else Quantum.REST
    quantums = [initial] * bar_length

    # Tatums before the start of the grid
    for i in range(min(-start, bar_length)):
        quantums[i] = Quantum.REST

    if not tatums:
        return quantums

    for note in notes:
        onset = note.onset_tatum_index(tatums) - start
        if onset >= bar_length:
            break

        offset = bar_length if extend_notes else note.offset_tatum_index(tatums) - start
        if onset >= 0:
            quantums[onset] = Quantum.ONSET
        for i in range(max(onset + 1, 0), min(offset, bar_length)):
            quantums[i] = Quantum.TIE

    return quantums


def is_empty_bar(quantums: Sequence[Quantum]) -> bool:
    return all(q == Quantum.REST for q in quantums)


def subdivide(times: Sequence[int], divisions: int) -> List[int]:
    """
    Split each interval of a time grid into equal tatums.

    Args:
        times: Strictly increasing anchor times (e.g. sub-beats)
        divisions: Tatums per interval

    Returns:
        Tatum times, starting at times[0] and ending at times[-1]
    """
    if len(times) < 2:
        return list(times)

    anchors = np.asarray(times, dtype=float)
    steps = np.arange(divisions) / divisions
    grid = (anchors[:-1, None] + np.diff(anchors)[:, None] * steps[None, :]).ravel()
    return [int(round(t)) for t in grid] + [int(times[-1])]


def onset_distance(onsets: Sequence[int], tatums: Sequence[int]) -> float:
    """Mean distance from each onset to its nearest tatum."""
    if not onsets or not tatums:
        return 0.0
    grid = np.asarray(tatums)
    points = np.asarray(onsets)
    if len(grid) == 1:
        return float(np.abs(points - grid[0]).mean())

    # Each onset only needs the tatums on either side of it
    right = np.clip(np.searchsorted(grid, points), 1, len(grid) - 1)
    left = right - 1
    nearest = np.minimum(np.abs(points - grid[left]), np.abs(grid[right] - points))
    return float(nearest.mean())


def best_subdivision(
    times: Sequence[int],
    onsets: Sequence[int],
    candidates: Tuple[int, ...] = DEFAULT_SUBDIVISIONS,
) -> Tuple[int, List[int]]:
    """
    Choose the tatum subdivision that best fits a set of onsets.

    A candidate replaces the current best only when it halves the mean
    onset distance, so earlier candidates win near-ties.

    Returns:
        (divisions, tatum times)
    """
    best_divisions = candidates[0]
    best_tatums = subdivide(times, best_divisions)
    best_distance = onset_distance(onsets, best_tatums)

    for divisions in candidates[1:]:
        tatums = subdivide(times, divisions)
        distance = onset_distance(onsets, tatums)
        if distance < 0.5 * best_distance:
            best_divisions, best_tatums, best_distance = divisions, tatums, distance

    logger.debug("Chose %d tatums per sub-beat (mean onset distance %.1f)", best_divisions, best_distance)
    return best_divisions, best_tatums
