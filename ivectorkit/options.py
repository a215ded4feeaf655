# -*- coding: utf-8 -*-
#
# This file is part of IVECTORKIT.
#
# IVECTORKIT is a python package for i-vector extraction and training.
#
# IVECTORKIT is free software: you can redistribute it and/or modify
# it under the terms of the GNU Lesser General Public License as
# published by the Free Software Foundation, either version 3 of the License,
# or (at your option) any later version.
#
# IVECTORKIT is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Lesser General Public License for more details.
#
# You should have received a copy of the GNU Lesser General Public License
# along with IVECTORKIT.  If not, see <http://www.gnu.org/licenses/>.

"""
:mod:`options` gathers the options used to estimate i-vectors and to train
the i-vector extractor. Options can be given as keyword arguments or loaded
from a section of a YAML configuration file.
"""
import yaml

__license__ = "LGPL"
__status__ = "Production"
__docformat__ = 'reStructuredText'


class _Options(object):
    """Common behaviour of the option containers"""

    _fields = ()

    @classmethod
    def from_dict(cls, conf):
        """Build the options from a dictionary, unknown keys are ignored

        :param conf: a dictionary, e.g. a section of a YAML configuration
        """
        if conf is None:
            conf = {}
        return cls(**{k: v for k, v in conf.items() if k in cls._fields})

    def to_dict(self):
        return {k: getattr(self, k) for k in self._fields}

    def __repr__(self):
        return "{}({})".format(self.__class__.__name__,
                               ", ".join("{}={!r}".format(k, getattr(self, k)) for k in self._fields))


class IvectorEstimationOptions(_Options):
    """Options used when estimating i-vectors.

    The acoustic weight is not read by the extractor: it has to be applied by
    calling :meth:`IvectorExtractorUtteranceStats.scale` before obtaining the
    i-vector. If it is small, the prior has more effect.
    """

    _fields = ("acoustic_weight",)

    def __init__(self, acoustic_weight=1.0):
        self.acoustic_weight = float(acoustic_weight)


class IvectorExtractorOptions(_Options):
    """Options of the i-vector extractor.

    :attr ivector_dim: dimension of the i-vectors
    :attr num_iters: number of iterations of i-vector estimation (more than one
        is needed when the log-weights are regressed on the i-vector)
    :attr use_weights: if True, regress the log-weights on the i-vector
    :attr weight_safety_factor: factor applied to the expected count in the
        "max" clamp of the quadratic approximation of the weight term
    """

    _fields = ("ivector_dim", "num_iters", "use_weights", "weight_safety_factor")

    def __init__(self, ivector_dim=400, num_iters=2, use_weights=True, weight_safety_factor=1.0):
        self.ivector_dim = int(ivector_dim)
        self.num_iters = int(num_iters)
        self.use_weights = bool(use_weights)
        self.weight_safety_factor = float(weight_safety_factor)
        if self.ivector_dim < 1:
            raise ValueError("ivector_dim must be a positive integer, got {}".format(ivector_dim))
        if self.num_iters < 1:
            raise ValueError("num_iters must be a positive integer, got {}".format(num_iters))
        if self.weight_safety_factor < 1.0:
            raise ValueError("weight_safety_factor must be at least 1.0, got {}".format(weight_safety_factor))


class IvectorStatsOptions(_Options):
    """Options of the accumulator used to train the extractor.

    :attr update_variances: if True, accumulate second-order statistics and
        update the Gaussian variances
    :attr compute_auxf: if True, compute the auxiliary function on the training
        data to check convergence
    :attr num_samples_for_weights: number of samples drawn from the i-vector
        distribution to accumulate statistics for the weight update, must be > 1
    :attr cache_size: number of utterances cached before updating R
    """

    _fields = ("update_variances", "compute_auxf", "num_samples_for_weights", "cache_size")

    def __init__(self, update_variances=True, compute_auxf=True, num_samples_for_weights=10, cache_size=100):
        self.update_variances = bool(update_variances)
        self.compute_auxf = bool(compute_auxf)
        self.num_samples_for_weights = int(num_samples_for_weights)
        self.cache_size = int(cache_size)
        if self.num_samples_for_weights < 2:
            raise ValueError("num_samples_for_weights must be > 1, got {}".format(num_samples_for_weights))
        if self.cache_size < 1:
            raise ValueError("cache_size must be a positive integer, got {}".format(cache_size))


class IvectorExtractorEstimationOptions(_Options):
    """Options for the update of the extractor.

    :attr variance_floor_factor: each covariance is floored to this factor
        times the global average covariance
    :attr gaussian_min_count: minimum total count per Gaussian, below which
        the associated parameters are not updated
    :attr tau: initial step of the Cayley transform
    :attr rho_1: sufficient decrease threshold of the curvilinear search
    :attr rho_2: curvature threshold of the curvilinear search
    :attr do_orthogonalization: if True, keep the projection matrices on the
        Stiefel manifold; tau, rho_1 and rho_2 have no effect otherwise
    :attr num_threads: number of threads used to update the Gaussians
    """

    _fields = ("variance_floor_factor", "gaussian_min_count", "tau", "rho_1", "rho_2",
               "do_orthogonalization", "num_threads")

    def __init__(self,
                 variance_floor_factor=0.1,
                 gaussian_min_count=100.0,
                 tau=1.0,
                 rho_1=1.0e-4,
                 rho_2=0.9,
                 do_orthogonalization=False,
                 num_threads=1):
        self.variance_floor_factor = float(variance_floor_factor)
        self.gaussian_min_count = float(gaussian_min_count)
        self.tau = float(tau)
        self.rho_1 = float(rho_1)
        self.rho_2 = float(rho_2)
        self.do_orthogonalization = bool(do_orthogonalization)
        self.num_threads = int(num_threads)
        if not 0.0 < self.variance_floor_factor <= 1.0:
            raise ValueError("variance_floor_factor must be in (0, 1], got {}".format(variance_floor_factor))
        if not 0.0 < self.rho_1 < self.rho_2 < 1.0:
            raise ValueError("line search thresholds must verify 0 < rho_1 < rho_2 < 1")
        if self.tau <= 0.0:
            raise ValueError("tau must be positive, got {}".format(tau))
        if self.num_threads < 1:
            raise ValueError("num_threads must be a positive integer, got {}".format(num_threads))


def read_options(filepath):
    """Read all option sections from a YAML configuration file.

    Expected sections are ``estimation``, ``extractor``, ``stats`` and
    ``update``; missing sections get the default values.

    :param filepath: name of the YAML file
    :return: a dictionary of option objects
    """
    with open(filepath, 'r') as fin:
        conf = yaml.safe_load(fin) or {}
    return {"estimation": IvectorEstimationOptions.from_dict(conf.get("estimation")),
            "extractor": IvectorExtractorOptions.from_dict(conf.get("extractor")),
            "stats": IvectorStatsOptions.from_dict(conf.get("stats")),
            "update": IvectorExtractorEstimationOptions.from_dict(conf.get("update"))}
