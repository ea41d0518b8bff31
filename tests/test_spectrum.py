import numpy as np
import pytest

from checkpoint_inspector.analysis import spectrum as spectrum_mod
from checkpoint_inspector.analysis.spectrum import compute_spectrum, singular_values
from checkpoint_inspector.errors import AnalysisError


def test_identity_spectrum():
    s = compute_spectrum(np.eye(3, dtype=np.float32).reshape(-1), (3, 3), 64)
    assert s.chart.left == 0.0
    assert s.chart.right == pytest.approx(1.0)
    assert s.chart.bins == [0, 0, 0, 0, 3]


@pytest.mark.parametrize("shape", [(4, 4), (2, 5), (7, 3)])
def test_counts_sum_to_rank(shape):
    rng = np.random.default_rng(0)
    data = rng.normal(size=shape).astype(np.float32).reshape(-1)
    s = compute_spectrum(data, shape, 16)
    assert sum(s.chart.bins) == min(shape)
    assert s.chart.left == 0.0


def test_row_major_interpretation():
    data = np.asarray([3.0, 0.0, 0.0, 0.0, 0.0, 2.0], dtype=np.float32)
    np.testing.assert_allclose(singular_values(data, 2, 3), [3.0, 2.0])


def test_non_matrix_is_noop():
    assert compute_spectrum(np.ones(8, dtype=np.float32), (8,), 16) is None
    assert compute_spectrum(np.ones(8, dtype=np.float32), (2, 2, 2), 16) is None


def test_empty_matrix():
    with pytest.raises(AnalysisError, match="tensor is empty"):
        compute_spectrum(np.zeros(0, dtype=np.float32), (0, 4), 16)


def test_svd_failure(monkeypatch):
    def broken_svd(*args, **kwargs):
        raise np.linalg.LinAlgError("SVD did not converge")

    monkeypatch.setattr(spectrum_mod.np.linalg, "svd", broken_svd)
    with pytest.raises(AnalysisError, match="could not perform SVD: SVD did not converge"):
        compute_spectrum(np.ones(4, dtype=np.float32), (2, 2), 16)
