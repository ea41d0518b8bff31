# checkpoint_inspector/analysis/histogram.py
"""
Adaptive histogram with outlier-robust display bounds.

Large inputs estimate their display range from the 5th/95th percentiles of a
small random sample; values beyond the range are clamped into the edge bins.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from checkpoint_inspector.analysis.base import BarChart, CancelToken, Histogram
from checkpoint_inspector.errors import AnalysisError

# sample size used to estimate quantiles
QUARTILE_SAMPLES = 200
# elements processed between cancellation checks
CANCEL_CHUNK = 1 << 20
MIN_BIN_COUNT = 5


def _check(cancel: Optional[CancelToken]) -> None:
    if cancel is not None:
        cancel.check()


def _sorted_sample(data: np.ndarray, rng: Optional[np.random.Generator]) -> np.ndarray:
    if data.size > QUARTILE_SAMPLES:
        rng = rng if rng is not None else np.random.default_rng()
        sample = rng.choice(data, size=QUARTILE_SAMPLES, replace=False)
    else:
        sample = data
    # non-finite values sort as 0; they still count in min/max and binning
    keys = np.where(np.isfinite(sample), sample, 0).astype(np.float64)
    keys.sort()
    return keys


def bin_count_for(n: int, max_bin_count: int) -> int:
    """``clamp(n / 5, 5, max_bin_count)``; the upper bound wins when they cross."""
    return max(min(n // 5, max_bin_count), min(MIN_BIN_COUNT, max_bin_count))


def compute_histogram(
    data: np.ndarray,
    max_bin_count: int,
    force_min_zero: bool = False,
    cancel: Optional[CancelToken] = None,
    rng: Optional[np.random.Generator] = None,
) -> Histogram:
    """Bin ``data`` into at most ``max_bin_count`` bins.

    Args:
        data: Values to bin; any shape, flattened.
        max_bin_count: Upper bound on the number of bins (>= 1).
        force_min_zero: Pin the left bound at exactly 0 (used for spectra).
        cancel: Checked after sorting and every ``CANCEL_CHUNK`` elements.
        rng: Random generator for quantile sampling.

    Raises:
        AnalysisError: ``tensor is empty`` for empty input.
        AnalysisCancelled: When ``cancel`` fires.
    """
    if max_bin_count < 1:
        raise ValueError(f"max_bin_count must be >= 1, got {max_bin_count}")
    data = np.asarray(data).reshape(-1)
    if data.size == 0:
        raise AnalysisError("tensor is empty")

    sample = _sorted_sample(data, rng)
    _check(cancel)

    # true extremes over the full data, ignoring NaN
    lo = float(np.fmin.reduce(data))
    hi = float(np.fmax.reduce(data))

    estimated = sample.size >= QUARTILE_SAMPLES
    left = 0.0 if force_min_zero else lo
    right = hi
    if estimated:
        q05 = float(sample[int((sample.size - 1) * 0.05)])
        q95 = float(sample[int((sample.size - 1) * 0.95)])
        spread = 0.05 * (q95 - q05) / 0.90
        if not force_min_zero:
            left = q05 - spread
        right = q95 + spread
        right += 0.15 * right / 0.85

    n_bins = bin_count_for(data.size, max_bin_count)
    bins = np.zeros(n_bins, dtype=np.int64)
    bins_end = float(n_bins - 1)
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        scale = np.float64(n_bins) / np.float64(right - left)
    if not np.isfinite(scale):
        scale = 1.0

    for at in range(0, data.size, CANCEL_CHUNK):
        chunk = data[at : at + CANCEL_CHUNK].astype(np.float64, copy=False)
        with np.errstate(invalid="ignore", over="ignore"):
            pos = np.clip((chunk - left) * scale, 0.0, bins_end)
        pos = pos[np.isfinite(pos)]
        bins += np.bincount(pos.astype(np.int64), minlength=n_bins)[:n_bins]
        _check(cancel)

    return Histogram(
        min=lo,
        max=hi,
        chart=BarChart(
            bins=[int(b) for b in bins],
            left=float(left),
            right=float(right),
            continues_past_left=not force_min_zero and estimated,
            continues_past_right=estimated,
        ),
    )
