import numpy as np
import pytest
from numpy.testing import assert_allclose
from scipy.special import softmax

from ivectorkit import IvectorExtractor, IvectorExtractorOptions, IvectorExtractorUtteranceStats
from ivectorkit.sv_utils import unpack_symmetric


def test_closed_form_without_weights():
    M = np.array([[[0.5], [1.0]],
                  [[-1.0], [0.3]]])
    sigma_inv = np.stack([np.eye(2), np.array([[2.0, 0.5], [0.5, 1.0]])])
    extractor = IvectorExtractor.from_parameters(M, sigma_inv, ivector_offset=0.0)
    stats = IvectorExtractorUtteranceStats(2, 2)
    stats.gamma[:] = [1.0, 1.0]
    stats.X[:] = [[1.0, 0.0], [0.0, 1.0]]

    mean, var = extractor.get_ivector_distribution(stats)

    precision = sum(stats.gamma[i] * M[i].T.dot(sigma_inv[i]).dot(M[i]) for i in range(2)) + 1.0
    linear = sum(M[i].T.dot(sigma_inv[i]).dot(stats.X[i]) for i in range(2))
    assert mean.shape == (1,)
    assert_allclose(mean, np.linalg.solve(precision, linear))
    assert_allclose(var, np.linalg.inv(precision))


def test_from_ubm(ubm):
    opts = IvectorExtractorOptions(ivector_dim=5)
    extractor = IvectorExtractor.from_ubm(ubm, opts, seed=3)
    assert (extractor.num_gauss(), extractor.feat_dim(), extractor.ivector_dim()) == (4, 3, 5)
    assert extractor.prior_offset() == 100.0
    assert extractor.ivector_dependent_weights()
    prior_mean = np.zeros(5)
    prior_mean[0] = extractor.prior_offset()
    # at the prior mean the model is the UBM
    assert_allclose(extractor.M.dot(prior_mean), ubm.mu)
    assert_allclose(softmax(extractor.w.dot(prior_mean)), ubm.w)
    assert_allclose(extractor.sigma_inv, ubm.invcov)


def test_from_ubm_is_reproducible(ubm):
    opts = IvectorExtractorOptions(ivector_dim=2, use_weights=False)
    a = IvectorExtractor.from_ubm(ubm, opts, seed=5)
    b = IvectorExtractor.from_ubm(ubm, opts, seed=5)
    assert np.array_equal(a.M, b.M)
    assert_allclose(a.w_vec, ubm.w)


def test_from_ubm_random_part_follows_ubm_covariances(ubm):
    opts = IvectorExtractorOptions(ivector_dim=3, use_weights=False)
    extractor = IvectorExtractor.from_ubm(ubm, opts, seed=11)
    raw = np.random.default_rng(11).standard_normal((4, 3, 3))
    chol = np.linalg.cholesky(ubm.get_covariances())
    for i in range(4):
        assert_allclose(extractor.M[i][:, 1:], chol[i].dot(raw[i][:, 1:]))
        # the scaled directions have the UBM covariance as second moment
        assert_allclose(chol[i].dot(chol[i].T), ubm.get_covariances()[i], rtol=1e-10)


def test_derived_vars(extractor):
    for i in range(extractor.num_gauss()):
        M_i, P_i = extractor.M[i], extractor.sigma_inv[i]
        assert_allclose(unpack_symmetric(extractor.packed_U[i], extractor.ivector_dim()), M_i.T.dot(P_i).dot(M_i))
        assert_allclose(extractor.sigma_inv_M[i], P_i.dot(M_i))
        logdet = np.linalg.slogdet(np.linalg.inv(P_i))[1]
        assert_allclose(extractor.gconsts[i], -0.5 * (logdet + extractor.feat_dim() * np.log(2 * np.pi)))


def test_update_gaussian_recomputes_derived_vars(extractor):
    new_M = extractor.M[1] * 2.0
    new_P = extractor.sigma_inv[1] * 0.5
    extractor.update_gaussian(1, M=new_M, sigma_inv=new_P)
    assert_allclose(unpack_symmetric(extractor.packed_U[1], extractor.ivector_dim()), new_M.T.dot(new_P).dot(new_M))
    assert_allclose(extractor.sigma_inv_M[1], new_P.dot(new_M))
    logdet = np.linalg.slogdet(new_P)[1]
    assert_allclose(extractor.gconsts[1], -0.5 * (-logdet + extractor.feat_dim() * np.log(2 * np.pi)))


def test_get_stats(plain_extractor, sample_utterance):
    feats = sample_utterance(5)
    post = [[(0, 0.7), (2, 0.3)], [(1, 1.0)], [], [(3, 0.5), (0, 0.5)], [(2, 1.0)]]
    stats = IvectorExtractorUtteranceStats(4, 3, need_2nd_order_stats=True)
    plain_extractor.get_stats(feats, post, stats)

    gamma = np.zeros(4)
    X = np.zeros((4, 3))
    S = np.zeros((4, 3, 3))
    for t, frame_post in enumerate(post):
        for i, p in frame_post:
            gamma[i] += p
            X[i] += p * feats[t]
            S[i] += p * np.outer(feats[t], feats[t])
    assert_allclose(stats.gamma, gamma)
    assert_allclose(stats.X, X)
    assert_allclose(stats.S, S)


@pytest.mark.parametrize("post", [
    [[(0, 1.0)]] * 4,                 # one frame missing
    [[(4, 1.0)]] * 5,                 # Gaussian index out of range
    np.ones((5, 3)),                  # dense posteriors with wrong width
])
def test_get_stats_errors(plain_extractor, sample_utterance, post):
    stats = IvectorExtractorUtteranceStats(4, 3)
    with pytest.raises(ValueError):
        plain_extractor.get_stats(sample_utterance(5), post, stats)


def test_get_stats_feature_dimension(plain_extractor):
    stats = IvectorExtractorUtteranceStats(4, 3)
    with pytest.raises(ValueError):
        plain_extractor.get_stats(np.zeros((2, 4)), [[(0, 1.0)], [(1, 1.0)]], stats)


def test_distribution_dimension_mismatch(extractor):
    with pytest.raises(ValueError):
        extractor.get_ivector_distribution(IvectorExtractorUtteranceStats(3, 3))
    with pytest.raises(ValueError):
        extractor.get_ivector_distribution(IvectorExtractorUtteranceStats(4, 2))


def test_scaling_invariance(extractor, ubm, sample_utterance):
    feats = sample_utterance()
    post, _ = ubm.component_posteriors(feats)
    scaled = IvectorExtractorUtteranceStats(4, 3)
    extractor.get_stats(feats, post, scaled)
    scaled.scale(0.3)
    premultiplied = IvectorExtractorUtteranceStats(4, 3)
    extractor.get_stats(feats, 0.3 * post, premultiplied)

    mean_a, var_a = extractor.get_ivector_distribution(scaled)
    mean_b, var_b = extractor.get_ivector_distribution(premultiplied)
    assert_allclose(mean_a, mean_b, rtol=1e-8)
    assert_allclose(var_a, var_b, rtol=1e-8)


def test_variance_is_bounded_by_prior(extractor, compute_stats, sample_utterance):
    _, var = extractor.get_ivector_distribution(compute_stats(extractor, sample_utterance()))
    eigenvalues = np.linalg.eigvalsh(var)
    assert np.all(eigenvalues > 0)
    assert np.all(eigenvalues <= 1.0 + 1e-12)


def test_need_var_false(extractor, compute_stats, sample_utterance):
    stats = compute_stats(extractor, sample_utterance())
    mean = extractor.get_ivector_distribution(stats, need_var=False)
    assert_allclose(mean, extractor.get_ivector_distribution(stats)[0])


def test_mean_maximizes_auxf(plain_extractor, compute_stats, sample_utterance):
    stats = compute_stats(plain_extractor, sample_utterance())
    mean = plain_extractor.get_ivector_distribution(stats, need_var=False)
    best = plain_extractor.get_auxf(stats, mean)
    for delta in (np.array([0.01, 0.0]), np.array([0.0, -0.01]), np.array([-0.02, 0.02])):
        assert plain_extractor.get_auxf(stats, mean + delta) < best


def test_auxf_decomposition(extractor, compute_stats, sample_utterance):
    stats = compute_stats(extractor, sample_utterance())
    mean, var = extractor.get_ivector_distribution(stats)
    acoustic = (extractor.get_acoustic_auxf_gconst(stats)
                + extractor.get_acoustic_auxf_mean(stats, mean, var)
                + extractor.get_acoustic_auxf_weight(stats, mean, var)
                + extractor.get_acoustic_auxf_variance(stats))
    assert_allclose(extractor.get_acoustic_auxf(stats, mean, var), acoustic)
    assert_allclose(extractor.get_auxf(stats, mean, var), acoustic + extractor.get_prior_auxf(mean, var))


def test_acoustic_auxf_at_point_is_log_likelihood(plain_extractor, sample_utterance, ubm):
    """With hard posteriors and a point i-vector, the acoustic auxf is the
    log-likelihood of the frames given the adapted Gaussians."""
    feats = sample_utterance(10)
    labels = np.argmax(ubm.component_posteriors(feats)[0], axis=1)
    post = [[(int(i), 1.0)] for i in labels]
    stats = IvectorExtractorUtteranceStats(4, 3, need_2nd_order_stats=True)
    plain_extractor.get_stats(feats, post, stats)
    ivector = np.array([100.0, 0.5])

    expected = 0.0
    for t, i in enumerate(labels):
        diff = feats[t] - plain_extractor.M[i].dot(ivector)
        P = plain_extractor.sigma_inv[i]
        expected += (np.log(plain_extractor.w_vec[i]) + plain_extractor.gconsts[i] - 0.5 * diff.dot(P).dot(diff))
    assert_allclose(plain_extractor.get_acoustic_auxf(stats, ivector), expected, rtol=1e-9)


def test_prior_auxf(plain_extractor):
    mean = np.array([101.0, -2.0])
    const = 2 * np.log(2 * np.pi)
    assert_allclose(plain_extractor.get_prior_auxf(mean), -0.5 * (1.0 + 4.0 + const))
    assert_allclose(plain_extractor.get_prior_auxf(mean, 0.5 * np.eye(2)), -0.5 * (1.0 + 4.0 + 1.0 + const))


def test_weight_expansion(ubm):
    opts = IvectorExtractorOptions(ivector_dim=2, use_weights=True, weight_safety_factor=2.0)
    extractor = IvectorExtractor.from_ubm(ubm, opts, seed=1)
    gamma = np.array([10.0, 0.0, 5.0, 1.0])
    ivector = np.array([100.0, 0.0])
    linear_coeff, quadratic_coeff = extractor.weight_expansion(gamma, ivector)
    expected_count = gamma.sum() * ubm.w
    assert_allclose(quadratic_coeff, np.maximum(gamma, 2.0 * expected_count))
    assert_allclose(linear_coeff, gamma - expected_count + quadratic_coeff * extractor.w.dot(ivector))


def test_weight_iterations_converge(ubm, compute_stats, sample_utterance):
    opts = IvectorExtractorOptions(ivector_dim=2, use_weights=True, num_iters=50)
    extractor = IvectorExtractor.from_ubm(ubm, opts, seed=1)
    extractor.w += 0.001
    stats = compute_stats(extractor, sample_utterance())
    mean = extractor.get_ivector_distribution(stats, need_var=False)
    more = extractor.get_ivector_distribution(stats, need_var=False, num_iters=100)
    assert np.linalg.norm(more - mean) < 0.1


def test_transform_ivectors(extractor, compute_stats, sample_utterance):
    stats = compute_stats(extractor, sample_utterance())
    mean, var = extractor.get_ivector_distribution(stats)
    auxf = extractor.get_auxf(stats, mean, var)

    # reflection that keeps the prior unchanged
    T = np.diag([1.0, -1.0])
    extractor.transform_ivectors(T, extractor.prior_offset())
    new_mean, new_var = extractor.get_ivector_distribution(stats)
    assert_allclose(new_mean, T.dot(mean), atol=1e-8)
    assert_allclose(new_var, T.dot(var).dot(T.T), atol=1e-10)
    assert_allclose(extractor.get_auxf(stats, new_mean, new_var), auxf)


def test_transform_ivectors_dimension(extractor):
    with pytest.raises(ValueError):
        extractor.transform_ivectors(np.eye(3), 1.0)


def test_write_read(extractor, tmp_path):
    filename = str(tmp_path / "model" / "extractor.h5")
    extractor.write(filename)
    other = IvectorExtractor(filename)
    for key in ("M", "sigma_inv", "w", "w_vec"):
        a, b = getattr(extractor, key), getattr(other, key)
        assert (a is None) == (b is None)
        if a is not None:
            assert np.array_equal(a, b)
    assert other.ivector_offset == extractor.ivector_offset
    assert other.num_iters == extractor.num_iters
    assert np.array_equal(other.packed_U, extractor.packed_U)
    assert np.array_equal(other.gconsts, extractor.gconsts)
