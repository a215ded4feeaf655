import pytest

from ivectorkit import (
    IvectorEstimationOptions,
    IvectorExtractorEstimationOptions,
    IvectorExtractorOptions,
    IvectorStatsOptions,
    read_options,
)


def test_defaults():
    assert IvectorEstimationOptions().acoustic_weight == 1.0
    opts = IvectorExtractorOptions()
    assert (opts.ivector_dim, opts.num_iters, opts.use_weights) == (400, 2, True)
    stats_opts = IvectorStatsOptions()
    assert stats_opts.update_variances and stats_opts.compute_auxf
    assert (stats_opts.num_samples_for_weights, stats_opts.cache_size) == (10, 100)
    update_opts = IvectorExtractorEstimationOptions()
    assert update_opts.variance_floor_factor == 0.1
    assert update_opts.gaussian_min_count == 100.0
    assert (update_opts.tau, update_opts.rho_1, update_opts.rho_2) == (1.0, 1e-4, 0.9)
    assert not update_opts.do_orthogonalization
    assert update_opts.num_threads == 1


@pytest.mark.parametrize("cls, kwargs", [
    (IvectorExtractorOptions, {"ivector_dim": 0}),
    (IvectorExtractorOptions, {"num_iters": 0}),
    (IvectorStatsOptions, {"num_samples_for_weights": 1}),
    (IvectorStatsOptions, {"cache_size": 0}),
    (IvectorExtractorEstimationOptions, {"variance_floor_factor": 0.0}),
    (IvectorExtractorEstimationOptions, {"variance_floor_factor": 1.5}),
    (IvectorExtractorEstimationOptions, {"rho_1": 0.95}),
    (IvectorExtractorEstimationOptions, {"num_threads": 0}),
])
def test_invalid_options(cls, kwargs):
    with pytest.raises(ValueError):
        cls(**kwargs)


def test_from_dict_ignores_unknown_keys():
    opts = IvectorStatsOptions.from_dict({"cache_size": 7, "outpath": "/tmp"})
    assert opts.cache_size == 7
    assert opts.to_dict()["num_samples_for_weights"] == 10


def test_read_options(tmp_path):
    conf = tmp_path / "conf.yaml"
    conf.write_text("extractor:\n"
                    "  ivector_dim: 30\n"
                    "  use_weights: false\n"
                    "update:\n"
                    "  do_orthogonalization: true\n"
                    "  num_threads: 3\n")
    opts = read_options(str(conf))
    assert opts["extractor"].ivector_dim == 30
    assert not opts["extractor"].use_weights
    assert opts["update"].do_orthogonalization
    assert opts["update"].num_threads == 3
    # missing sections get the defaults
    assert opts["stats"].cache_size == 100
    assert opts["estimation"].acoustic_weight == 1.0
