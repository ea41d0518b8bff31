# checkpoint_inspector/analysis/spectrum.py
"""
Singular-value spectrum of a 2-D tensor.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from checkpoint_inspector.analysis.base import CancelToken, Spectrum
from checkpoint_inspector.analysis.histogram import compute_histogram
from checkpoint_inspector.errors import AnalysisError


def singular_values(data: np.ndarray, rows: int, cols: int) -> np.ndarray:
    """Singular values of ``data`` read as a row-major ``rows x cols`` matrix."""
    matrix = np.asarray(data).reshape(rows, cols)
    try:
        return np.linalg.svd(matrix, compute_uv=False)
    except np.linalg.LinAlgError as e:
        raise AnalysisError(f"could not perform SVD: {e}") from e


def compute_spectrum(
    data: np.ndarray,
    shape: Sequence[int],
    max_bin_count: int,
    cancel: Optional[CancelToken] = None,
) -> Optional[Spectrum]:
    """Histogram of the singular values, left bound pinned at 0.

    Returns ``None`` unless ``shape`` is 2-D. The bin counts sum to
    ``min(rows, cols)``.
    """
    if len(shape) != 2:
        return None
    if np.asarray(data).size == 0:
        raise AnalysisError("tensor is empty")
    rows, cols = (int(d) for d in shape)
    values = singular_values(data, rows, cols)
    if cancel is not None:
        cancel.check()
    histogram = compute_histogram(values, max_bin_count, force_min_zero=True, cancel=cancel)
    return Spectrum(chart=histogram.chart)
