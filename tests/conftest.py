import numpy as np
import pytest

from ivectorkit import IvectorExtractor, IvectorExtractorOptions, IvectorExtractorUtteranceStats, Mixture

NUM_GAUSS = 4
FEAT_DIM = 3
IVECTOR_DIM = 2


def random_spd(rng, dim, scale=1.0):
    a = rng.standard_normal((dim, dim))
    return scale * (a.dot(a.T) + dim * np.eye(dim))


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def ubm(rng):
    w = rng.uniform(1.0, 2.0, NUM_GAUSS)
    w /= w.sum()
    mu = 3.0 * rng.standard_normal((NUM_GAUSS, FEAT_DIM))
    cov = np.stack([random_spd(rng, FEAT_DIM, 0.1) for _ in range(NUM_GAUSS)])
    mixture = Mixture(name="test_ubm")
    mixture.init_from_parameters(w, mu, cov)
    return mixture


@pytest.fixture
def sample_utterance(rng, ubm):
    """Return a function drawing the frames of one utterance from the UBM,
    with a random per-utterance shift of the means."""
    cov = ubm.get_covariances()

    def sample(num_frames=60):
        shift = 0.5 * rng.standard_normal(FEAT_DIM)
        comps = rng.choice(NUM_GAUSS, size=num_frames, p=ubm.w)
        feats = np.empty((num_frames, FEAT_DIM))
        for t, c in enumerate(comps):
            feats[t] = rng.multivariate_normal(ubm.mu[c] + shift, cov[c])
        return feats
    return sample


@pytest.fixture
def utterances(sample_utterance):
    return [sample_utterance() for _ in range(12)]


@pytest.fixture(params=[True, False], ids=["weights", "no_weights"])
def extractor(request, ubm):
    opts = IvectorExtractorOptions(ivector_dim=IVECTOR_DIM, use_weights=request.param)
    return IvectorExtractor.from_ubm(ubm, opts, seed=7)


@pytest.fixture
def plain_extractor(ubm):
    """Extractor whose weights do not depend on the i-vector"""
    opts = IvectorExtractorOptions(ivector_dim=IVECTOR_DIM, use_weights=False)
    return IvectorExtractor.from_ubm(ubm, opts, seed=7)


@pytest.fixture
def compute_stats(ubm):
    """Return a function computing the statistics of an utterance with exact posteriors"""
    def compute(extractor, feats, second_order=True):
        post, _ = ubm.component_posteriors(feats)
        stats = IvectorExtractorUtteranceStats(extractor.num_gauss(), extractor.feat_dim(), second_order)
        extractor.get_stats(feats, post, stats)
        return stats
    return compute
