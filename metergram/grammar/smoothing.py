"""Good-Turing smoothing over count tables."""

from collections import Counter
from typing import Dict, Iterable, Tuple

import numpy as np


def frequency_map(counts: Iterable[int]) -> Dict[int, int]:
    """Map each observed frequency to the number of items with that frequency."""
    return dict(Counter(counts))


def log_log_regression(frequencies: np.ndarray, z_values: np.ndarray) -> Tuple[float, float]:
    """
    Least-squares line through (log f, log z).

    Returns:
        (slope, intercept); slope is NaN when all frequencies are equal
    """
    x = np.log(frequencies)
    y = np.log(z_values)
    x_bar = x.mean()
    y_bar = y.mean()
    xx = np.sum((x - x_bar) ** 2)
    xy = np.sum((x - x_bar) * (y - y_bar))
    with np.errstate(divide="ignore", invalid="ignore"):
        slope = xy / xx
    return float(slope), float(y_bar - slope * x_bar)


def good_turing(counts: Iterable[int]) -> Dict[int, float]:
    """
    Simple Good-Turing estimate for one conditioned count table.

    Frequencies are bucketed, z-values are fit on a log-log line, and the
    adjusted counts are normalized together with a reserved zero-count mass
    so that the table sums to one.

    Args:
        counts: The count of each distinct item in the table

    Returns:
        Map from raw count (0 for unseen items) to smoothed probability
    """
    counts = list(counts)
    total = sum(counts)
    freq_counts = frequency_map(counts)
    frequencies = sorted(freq_counts)
    n_r = [freq_counts[f] for f in frequencies]

    size = len(frequencies)
    z_values = []
    for i, frequency in enumerate(frequencies):
        prev = 0 if i == 0 else frequencies[i - 1]
        nxt = 2 * frequency - prev if i == size - 1 else frequencies[i + 1]
        z_values.append(n_r[i] / (0.5 * (nxt - prev)))

    slope, intercept = log_log_regression(np.array(frequencies, dtype=float), np.array(z_values))
    if np.isnan(slope):
        slope = -1.0
        intercept = float(np.log(frequencies[0]) + np.log(z_values[0]))

    def estimate(frequency: int) -> float:
        return float(np.exp(slope * np.log(frequency) + intercept))

    adjusted = [(f + 1.0) * estimate(f + 1) / estimate(f) for f in frequencies]

    gt_total = n_r[0] + sum(a * n for a, n in zip(adjusted, n_r))

    probabilities = {0: n_r[0] / gt_total / total}
    for frequency, count in zip(frequencies, adjusted):
        probabilities[frequency] = count / gt_total
    return probabilities
