
import numpy as np
import pytest
from numpy.testing import assert_allclose

from ivectorkit import IvectorExtractorUtteranceStats


def test_allocation():
    stats = IvectorExtractorUtteranceStats(5, 3)
    assert (stats.num_gauss, stats.feat_dim) == (5, 3)
    assert not stats.has_2nd_order_stats()
    stats = IvectorExtractorUtteranceStats(5, 3, need_2nd_order_stats=True)
    assert stats.S.shape == (5, 3, 3)


def test_scale():
    stats = IvectorExtractorUtteranceStats(2, 2, need_2nd_order_stats=True)
    stats.gamma[:] = [1.0, 2.0]
    stats.X[:] = 1.0
    stats.S[:] = np.eye(2)
    stats.scale(0.5)
    assert_allclose(stats.gamma, [0.5, 1.0])
    assert_allclose(stats.X, 0.5)
    assert_allclose(stats.S[1], 0.5 * np.eye(2))


def test_check_dims():
    stats = IvectorExtractorUtteranceStats(2, 3, need_2nd_order_stats=True)
    stats.check_dims(2, 3)
    with pytest.raises(ValueError):
        stats.check_dims(3, 3)
    with pytest.raises(ValueError):
        stats.check_dims(2, 2)

