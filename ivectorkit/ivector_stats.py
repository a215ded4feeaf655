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
:mod:`ivector_stats` provides the statistics accumulated over many
utterances to re-estimate an i-vector extractor, and the update itself.

Statistics are divided in groups that are protected by their own lock so that
several threads can commit utterances at the same time:

    - gamma and Y, for the projections
    - R, through a cache of per-utterance rows (see :class:`ScatterCache`)
    - Q and G, for the weight projections
    - S, for the variances
    - num_ivectors, ivector_sum and ivector_scatter, for the prior
"""
import copy
import logging
import threading
import h5py
import numpy
import scipy.linalg
from ivectorkit import STAT_TYPE
from ivectorkit.ivector_wrappers import check_path_existance, process_parallel_lists
from ivectorkit.options import IvectorStatsOptions
from ivectorkit.stiefel import solve_quadratic_matrix_problem_on_stiefel_manifold
from ivectorkit.sv_utils import floor_eigenvalues, log_pos_def_det, pack_symmetric, packed_size
from ivectorkit.sv_utils import solve_quadratic_matrix_problem, solve_quadratic_problem, unpack_symmetric
from ivectorkit.utterance_stats import IvectorExtractorUtteranceStats

__license__ = "LGPL"
__status__ = "Production"
__docformat__ = 'reStructuredText'

# Eigenvalue floor of the covariance of the i-vectors when updating the prior
PRIOR_COVAR_FLOOR = 1.0e-07


class ScatterCache(object):
    """
    Accumulator of R_i = \\sum_utt gamma_i(utt) (var(utt) + mean(utt) mean(utt)^T),
    the packed second-order statistics of the i-vectors weighted by the counts.

    Rather than updating R for each utterance, the zero-order statistics and
    the packed scatter of each utterance are stored in a cache that is folded
    into R with one matrix product when it is full, or before R is read.
    The cache is either "accumulating" (some rows are cached) or "flushed".

    :attr R: ndarray of dimension [I, S(S+1)/2]
    """

    def __init__(self, num_gauss, ivector_dim, cache_size=100):
        self.R = numpy.zeros((num_gauss, packed_size(ivector_dim)), dtype=STAT_TYPE)
        self.cache_size = cache_size
        self.gamma_cache = numpy.zeros((cache_size, num_gauss), dtype=STAT_TYPE)
        self.scatter_cache = numpy.zeros((cache_size, packed_size(ivector_dim)), dtype=STAT_TYPE)
        self.num_cached = 0
        # the cache lock is always taken before the R lock
        self.cache_lock = threading.Lock()
        self.R_lock = threading.Lock()

    @property
    def state(self):
        return "accumulating" if self.num_cached > 0 else "flushed"

    def append(self, gamma, packed_scatter):
        """Cache the statistics of one utterance

        :param gamma: zero-order statistics of the utterance, dimension [I]
        :param packed_scatter: packed var + mean mean^T, dimension [S(S+1)/2]
        """
        with self.cache_lock:
            if self.num_cached == self.cache_size:
                self._flush()
            self.gamma_cache[self.num_cached] = gamma
            self.scatter_cache[self.num_cached] = packed_scatter
            self.num_cached += 1

    def _flush(self):
        if self.num_cached > 0:
            logging.debug("Flushing cache of %d utterances into R", self.num_cached)
            with self.R_lock:
                self.R += self.gamma_cache[:self.num_cached].T.dot(self.scatter_cache[:self.num_cached])
            self.num_cached = 0

    def flush(self):
        """Fold the cached rows into R"""
        with self.cache_lock:
            self._flush()

    def get(self):
        """Return R after flushing the cache"""
        self.flush()
        return self.R


@process_parallel_lists
def update_projections_worker(stats, extractor, opts, improvements, gaussian_indices, num_thread=1):
    """Update the projection of each Gaussian of gaussian_indices.
    Each call writes to its own Gaussians in extractor and improvements.
    """
    for i in gaussian_indices:
        improvements[i] = stats.update_projection(opts, i, extractor)


@process_parallel_lists
def update_weights_worker(stats, extractor, opts, improvements, gaussian_indices, num_thread=1):
    """Update the weight projection of each Gaussian of gaussian_indices"""
    for i in gaussian_indices:
        improvements[i] = stats.update_weight(opts, i, extractor)


class IvectorStats(object):
    """
    Statistics accumulated over utterances to re-estimate the parameters of
    an IvectorExtractor.

    :attr tot_auxf: total auxiliary function over the training data (only
        accumulated if compute_auxf is set)
    :attr gamma: total zero-order statistics, dimension [I]
    :attr Y: \\sum_utt X_i(utt) mean(utt)^T, dimension [I, D, S]
    :attr R: see :class:`ScatterCache`, dimension [I, S(S+1)/2]
    :attr Q: quadratic statistics of the weight projections, packed,
        dimension [I, S(S+1)/2], or None
    :attr G: linear statistics of the weight projections, dimension [I, S], or None
    :attr S: second-order statistics of the data, dimension [I, D, D], or None
    :attr num_ivectors: number of utterances seen
    :attr ivector_sum: sum of the i-vector means, dimension [S]
    :attr ivector_scatter: sum of var + mean mean^T, dimension [S, S]
    """

    def __init__(self, extractor=None, stats_opts=None, seed=None):
        """Initialize empty statistics, allocated for an extractor if any

        :param extractor: the IvectorExtractor that will be re-estimated
        :param stats_opts: IvectorStatsOptions
        :param seed: seed of the generator used to sample i-vectors for the
            statistics of the weights
        """
        self.opts = stats_opts if stats_opts is not None else IvectorStatsOptions()
        self.tot_auxf = 0.0
        self.gamma = None
        self.Y = None
        self.R_cache = None
        self.Q = None
        self.G = None
        self.S = None
        self.num_ivectors = 0.0
        self.ivector_sum = None
        self.ivector_scatter = None

        self.auxf_lock = threading.Lock()
        self.gamma_Y_lock = threading.Lock()
        self.weight_stats_lock = threading.Lock()
        self.variance_stats_lock = threading.Lock()
        self.prior_stats_lock = threading.Lock()
        self.rng = numpy.random.default_rng(seed)
        self.rng_lock = threading.Lock()

        if extractor is not None:
            self._allocate(extractor.num_gauss(),
                           extractor.feat_dim(),
                           extractor.ivector_dim(),
                           extractor.ivector_dependent_weights(),
                           self.opts.update_variances)

    def _allocate(self, num_gauss, feat_dim, ivector_dim, weights, variances):
        self.tot_auxf = 0.0
        self.gamma = numpy.zeros(num_gauss, dtype=STAT_TYPE)
        self.Y = numpy.zeros((num_gauss, feat_dim, ivector_dim), dtype=STAT_TYPE)
        self.R_cache = ScatterCache(num_gauss, ivector_dim, self.opts.cache_size)
        self.Q = self.G = self.S = None
        if weights:
            self.Q = numpy.zeros((num_gauss, packed_size(ivector_dim)), dtype=STAT_TYPE)
            self.G = numpy.zeros((num_gauss, ivector_dim), dtype=STAT_TYPE)
        if variances:
            self.S = numpy.zeros((num_gauss, feat_dim, feat_dim), dtype=STAT_TYPE)
        self.num_ivectors = 0.0
        self.ivector_sum = numpy.zeros(ivector_dim, dtype=STAT_TYPE)
        self.ivector_scatter = numpy.zeros((ivector_dim, ivector_dim), dtype=STAT_TYPE)

    def __repr__(self):
        if self.gamma is None:
            return "IvectorStats(empty)"
        return "IvectorStats(num_gauss={}, feat_dim={}, ivector_dim={}, num_ivectors={}, count={})".format(
            self.num_gauss(), self.feat_dim(), self.ivector_dim(), self.num_ivectors, self.gamma.sum())

    def num_gauss(self):
        return self.Y.shape[0]

    def feat_dim(self):
        return self.Y.shape[1]

    def ivector_dim(self):
        return self.Y.shape[2]

    @property
    def R(self):
        return self.R_cache.get()

    def flush_cache(self):
        self.R_cache.flush()

    def check_dims(self, extractor):
        """Raise a ValueError if the statistics were not allocated for a model
        with the dimensions of extractor
        """
        if self.gamma is None:
            raise ValueError("Statistics are not allocated")
        if (self.num_gauss(), self.feat_dim(), self.ivector_dim()) != (extractor.num_gauss(),
                                                                      extractor.feat_dim(),
                                                                      extractor.ivector_dim()):
            raise ValueError("Statistics have dimension I={}, D={}, S={}, extractor has I={}, D={}, S={}".format(
                self.num_gauss(), self.feat_dim(), self.ivector_dim(),
                extractor.num_gauss(), extractor.feat_dim(), extractor.ivector_dim()))
        if (self.Q is not None) != extractor.ivector_dependent_weights():
            raise ValueError("Statistics and extractor disagree on the weight projections")

    def _check_same_layout(self, other):
        if self.gamma is None or other.gamma is None:
            raise ValueError("Cannot add empty statistics")
        if self.Y.shape != other.Y.shape:
            raise ValueError("Cannot add statistics of dimension {} to statistics of dimension {}".format(
                other.Y.shape, self.Y.shape))
        if (self.Q is None) != (other.Q is None) or (self.S is None) != (other.S is None):
            raise ValueError("Cannot add statistics with different groups")

    def acc_stats_for_utterance(self, extractor, feats, post, acoustic_weight=1.0):
        """Compute the statistics of an utterance, scale them by the acoustic
        weight and commit them

        :param extractor: the IvectorExtractor
        :param feats: ndarray of features, one frame per row
        :param post: posteriors, one list of (gaussian index, posterior) per frame
        :param acoustic_weight: scale of the statistics of the utterance
        """
        utt_stats = IvectorExtractorUtteranceStats(extractor.num_gauss(),
                                                   extractor.feat_dim(),
                                                   self.S is not None)
        extractor.get_stats(feats, post, utt_stats)
        if acoustic_weight != 1.0:
            utt_stats.scale(acoustic_weight)
        self.commit_stats_for_utterance(extractor, utt_stats)

    def acc_stats_for_utterance_fgmm(self, extractor, feats, ubm, acoustic_weight=1.0):
        """Same as acc_stats_for_utterance but the posteriors are computed
        exactly from a full-covariance UBM, without any pruning.
        Mostly useful for testing.

        :param extractor: the IvectorExtractor
        :param feats: ndarray of features, one frame per row
        :param ubm: Mixture with the Gaussians of the extractor
        :param acoustic_weight: scale of the statistics of the utterance
        :return: the total log-likelihood of the features given the UBM
        """
        post, llk = ubm.component_posteriors(feats)
        utt_stats = IvectorExtractorUtteranceStats(extractor.num_gauss(),
                                                   extractor.feat_dim(),
                                                   self.S is not None)
        extractor.get_stats(feats, post, utt_stats)
        if acoustic_weight != 1.0:
            utt_stats.scale(acoustic_weight)
        self.commit_stats_for_utterance(extractor, utt_stats)
        return llk

    def commit_stats_for_utterance(self, extractor, utt_stats):
        """Estimate the i-vector distribution of an utterance and add its
        contribution to all groups of statistics. Can be called from several
        threads at the same time.

        :param extractor: the IvectorExtractor
        :param utt_stats: IvectorExtractorUtteranceStats of the utterance
        """
        self.check_dims(extractor)
        utt_stats.check_dims(extractor.num_gauss(), extractor.feat_dim())
        if self.S is not None and utt_stats.S is None:
            raise ValueError("Second-order statistics are needed to update the variances")

        mean, var = extractor.get_ivector_distribution(utt_stats)

        if self.opts.compute_auxf:
            auxf = extractor.get_auxf(utt_stats, mean, var)
            with self.auxf_lock:
                self.tot_auxf += auxf

        self.commit_stats_for_m(extractor, utt_stats, mean, var)
        if extractor.ivector_dependent_weights():
            self.commit_stats_for_w(extractor, utt_stats, mean, var)
        if self.S is not None:
            self.commit_stats_for_sigma(utt_stats)
        self.commit_stats_for_prior(mean, var)

    def commit_stats_for_m(self, extractor, utt_stats, mean, var):
        """Statistics for the projections: gamma, Y and R"""
        with self.gamma_Y_lock:
            self.gamma += utt_stats.gamma
            self.Y += utt_stats.X[:, :, numpy.newaxis] * mean
        self.R_cache.append(utt_stats.gamma, pack_symmetric(var + numpy.outer(mean, mean)))

    def commit_stats_for_w(self, extractor, utt_stats, mean, var):
        """Statistics for the weight projections, obtained by sampling i-vectors
        from their distribution. The samples are centered and scaled so that
        their mean and variance match the distribution exactly.
        """
        num_samples = self.opts.num_samples_for_weights
        with self.rng_lock:
            rand = self.rng.standard_normal((num_samples, extractor.ivector_dim()))
        samples = rand.dot(scipy.linalg.cholesky(var, lower=True).T)
        samples -= samples.mean(0)
        samples *= numpy.sqrt(num_samples / (num_samples - 1.0))
        samples += mean

        G = numpy.zeros((extractor.num_gauss(), extractor.ivector_dim()))
        Q = numpy.zeros((extractor.num_gauss(), packed_size(extractor.ivector_dim())))
        for sample in samples:
            linear_coeff, quadratic_coeff = extractor.weight_expansion(utt_stats.gamma, sample)
            G += numpy.outer(linear_coeff, sample)
            Q += numpy.outer(quadratic_coeff, pack_symmetric(numpy.outer(sample, sample)))
        with self.weight_stats_lock:
            self.G += G / num_samples
            self.Q += Q / num_samples

    def commit_stats_for_sigma(self, utt_stats):
        """Statistics for the variances: the raw second-order statistics, the
        terms that depend on the projections are applied at update time
        """
        with self.variance_stats_lock:
            self.S += utt_stats.S

    def commit_stats_for_prior(self, mean, var):
        with self.prior_stats_lock:
            self.num_ivectors += 1.0
            self.ivector_sum += mean
            self.ivector_scatter += var + numpy.outer(mean, mean)

    def add(self, other):
        """Add the statistics of another accumulator, typically computed by
        another job. Both caches are flushed first.

        :param other: IvectorStats with the same dimensions
        """
        self._check_same_layout(other)
        other_R = other.R
        self.flush_cache()
        with self.auxf_lock:
            self.tot_auxf += other.tot_auxf
        with self.gamma_Y_lock:
            self.gamma += other.gamma
            self.Y += other.Y
        with self.R_cache.cache_lock, self.R_cache.R_lock:
            self.R_cache.R += other_R
        if self.Q is not None:
            with self.weight_stats_lock:
                self.Q += other.Q
                self.G += other.G
        if self.S is not None:
            with self.variance_stats_lock:
                self.S += other.S
        with self.prior_stats_lock:
            self.num_ivectors += other.num_ivectors
            self.ivector_sum += other.ivector_sum
            self.ivector_scatter += other.ivector_scatter
        return self

    def __iadd__(self, other):
        return self.add(other)

    def copy(self):
        """Return a copy of the statistics with its own locks and cache"""
        other = IvectorStats(stats_opts=copy.copy(self.opts))
        if self.gamma is not None:
            other._allocate(self.num_gauss(), self.feat_dim(), self.ivector_dim(),
                            self.Q is not None, self.S is not None)
            other.add(self)
        return other

    def auxf_per_frame(self):
        """Average auxiliary function per frame of training data"""
        count = self.gamma.sum()
        if count == 0:
            return 0.0
        return self.tot_auxf / count

    @check_path_existance
    def write(self, output_file_name):
        """Write the statistics into an HDF5 file

        :param output_file_name: the name of the file to write to
        """
        R = self.R
        with h5py.File(output_file_name, "w") as fh:
            fh.create_dataset("ivector_stats/tot_auxf", data=numpy.float64(self.tot_auxf))
            fh.create_dataset("ivector_stats/num_ivectors", data=numpy.float64(self.num_ivectors))
            for key, value in (("gamma", self.gamma), ("Y", self.Y), ("R", R),
                               ("Q", self.Q), ("G", self.G), ("S", self.S),
                               ("ivector_sum", self.ivector_sum), ("ivector_scatter", self.ivector_scatter)):
                if value is not None:
                    fh.create_dataset("ivector_stats/" + key, data=value,
                                      compression="gzip",
                                      fletcher32=True)

    def read(self, input_file_name, add=False):
        """Read statistics from an HDF5 file

        :param input_file_name: the name of the file to read from
        :param add: if True, add the statistics of the file to the current ones
            instead of replacing them
        """
        other = IvectorStats(stats_opts=self.opts)
        with h5py.File(input_file_name, "r") as fh:
            grp = fh["ivector_stats"]
            num_gauss, feat_dim, ivector_dim = grp["Y"].shape
            other._allocate(num_gauss, feat_dim, ivector_dim, "Q" in grp, "S" in grp)
            other.tot_auxf = float(grp["tot_auxf"][()])
            other.num_ivectors = float(grp["num_ivectors"][()])
            other.gamma = grp["gamma"][()]
            other.Y = grp["Y"][()]
            other.R_cache.R = grp["R"][()]
            if "Q" in grp:
                other.Q = grp["Q"][()]
                other.G = grp["G"][()]
            if "S" in grp:
                other.S = grp["S"][()]
            other.ivector_sum = grp["ivector_sum"][()]
            other.ivector_scatter = grp["ivector_scatter"][()]
        if not add or self.gamma is None:
            self._allocate(num_gauss, feat_dim, ivector_dim, other.Q is not None, other.S is not None)
        self.add(other)

    def update(self, opts, extractor):
        """Re-estimate the parameters of extractor, which must be the one the
        statistics were accumulated with.

        :param opts: IvectorExtractorEstimationOptions
        :param extractor: IvectorExtractor, modified in place
        :return: the improvement of the auxiliary function per frame
        """
        self.flush_cache()
        self.check_dims(extractor)
        if self.gamma.sum() == 0:
            logging.warning("No statistics accumulated: not updating the extractor")
            return 0.0

        impr = self.update_projections(opts, extractor)
        if extractor.ivector_dependent_weights():
            impr += self.update_weights(opts, extractor)
        if self.S is not None:
            impr += self.update_variances(opts, extractor)
        # must be last, it transforms the i-vector space
        impr += self.update_prior(extractor)
        logging.info("Overall objective-function improvement per frame was %f", impr)
        return impr

    def update_projection(self, opts, i, extractor):
        """Update the projection matrix of Gaussian i

        :return: the improvement of the auxiliary function (not normalized)
        """
        gamma_i = self.gamma[i]
        if gamma_i < opts.gaussian_min_count:
            logging.warning("Skipping Gaussian index %d because count %f is below min-count.", i, gamma_i)
            return 0.0
        R_i = unpack_symmetric(self.R[i], self.ivector_dim())
        name = "M[{}]".format(i)
        if opts.do_orthogonalization:
            new_M, impr = solve_quadratic_matrix_problem_on_stiefel_manifold(R_i,
                                                                             self.Y[i],
                                                                             extractor.sigma_inv[i],
                                                                             extractor.M[i],
                                                                             tau=opts.tau,
                                                                             rho_1=opts.rho_1,
                                                                             rho_2=opts.rho_2,
                                                                             name=name)
        else:
            new_M, impr = solve_quadratic_matrix_problem(R_i, self.Y[i], extractor.sigma_inv[i], extractor.M[i], name)
        extractor.update_gaussian(i, M=new_M)
        if i < 4:
            logging.debug("Objf impr for M for Gaussian index %d is %f per frame", i, impr / gamma_i)
        return impr

    def update_projections(self, opts, extractor):
        """Update the projection matrices of all Gaussians, in opts.num_threads threads

        :return: the improvement of the auxiliary function per frame
        """
        improvements = numpy.zeros(extractor.num_gauss())
        update_projections_worker(stats=self,
                                  extractor=extractor,
                                  opts=opts,
                                  improvements=improvements,
                                  gaussian_indices=numpy.arange(extractor.num_gauss()),
                                  num_thread=opts.num_threads)
        count = self.gamma.sum()
        impr = improvements.sum() / count
        logging.info("Overall objective function improvement for M (mean projections) was %f per frame over %f frames",
                     impr, count)
        return impr

    def update_weight(self, opts, i, extractor):
        """Update the weight projection of Gaussian i

        :return: the improvement of the auxiliary function (not normalized)
        """
        gamma_i = self.gamma[i]
        if gamma_i < opts.gaussian_min_count:
            logging.warning("Skipping weight projection of Gaussian index %d because count %f is below min-count.",
                            i, gamma_i)
            return 0.0
        Q_i = unpack_symmetric(self.Q[i], self.ivector_dim())
        new_w, impr = solve_quadratic_problem(Q_i, self.G[i], extractor.w[i], "w[{}]".format(i))
        extractor.update_gaussian(i, w=new_w)
        return impr

    def update_weights(self, opts, extractor):
        """Update the weight projections of all Gaussians

        :return: the improvement of the auxiliary function per frame
        """
        improvements = numpy.zeros(extractor.num_gauss())
        update_weights_worker(stats=self,
                              extractor=extractor,
                              opts=opts,
                              improvements=improvements,
                              gaussian_indices=numpy.arange(extractor.num_gauss()),
                              num_thread=opts.num_threads)
        count = self.gamma.sum()
        impr = improvements.sum() / count
        logging.info("Overall auxf impr for w was %f per frame over %f frames", impr, count)
        return impr

    def update_variances(self, opts, extractor):
        """Update the variances of all Gaussians from the statistics and the
        projections already updated. Each covariance is floored, in the matrix
        sense, to variance_floor_factor times the average covariance.

        :return: the improvement of the auxiliary function per frame
        """
        num_gauss, feat_dim = extractor.num_gauss(), extractor.feat_dim()
        R = self.R
        covars = numpy.zeros((num_gauss, feat_dim, feat_dim))
        var_floor = numpy.zeros((feat_dim, feat_dim))
        var_floor_count = 0.0
        to_update = []
        for i in range(num_gauss):
            gamma_i = self.gamma[i]
            if gamma_i < opts.gaussian_min_count:
                logging.warning("Skipping variance of Gaussian index %d because count %f is below min-count.",
                                i, gamma_i)
                continue
            M_i = extractor.M[i]
            MY = M_i.dot(self.Y[i].T)
            covar = self.S[i] - MY - MY.T + M_i.dot(unpack_symmetric(R[i], self.ivector_dim())).dot(M_i.T)
            covars[i] = 0.5 * (covar + covar.T) / gamma_i
            var_floor += gamma_i * covars[i]
            var_floor_count += gamma_i
            to_update.append(i)
        if var_floor_count == 0:
            logging.warning("No Gaussian has enough data to update the variances")
            return 0.0
        var_floor *= opts.variance_floor_factor / var_floor_count

        # square root of the floor, so that flooring covar to var_floor is flooring the
        # eigenvalues of floor_sqrt^-1 covar floor_sqrt^-T to one
        eig, eigvec = scipy.linalg.eigh(var_floor)
        eig = numpy.maximum(eig, 1.0e-10 * eig.max())
        floor_sqrt = eigvec * numpy.sqrt(eig)
        floor_sqrt_inv = (eigvec / numpy.sqrt(eig)).T

        tot_impr = 0.0
        tot_num_floored = 0
        for i in to_update:
            covar = covars[i]
            eig_i, eigvec_i, num_floored = floor_eigenvalues(floor_sqrt_inv.dot(covar).dot(floor_sqrt_inv.T), 1.0)
            tot_num_floored += num_floored
            floored = floor_sqrt.dot((eigvec_i * eig_i).dot(eigvec_i.T)).dot(floor_sqrt.T)
            new_sigma_inv = numpy.linalg.inv(floored)
            new_sigma_inv = 0.5 * (new_sigma_inv + new_sigma_inv.T)
            old_sigma_inv = extractor.sigma_inv[i]
            old_auxf = 0.5 * self.gamma[i] * (log_pos_def_det(old_sigma_inv) - numpy.sum(old_sigma_inv * covar))
            new_auxf = 0.5 * self.gamma[i] * (log_pos_def_det(new_sigma_inv) - numpy.sum(new_sigma_inv * covar))
            tot_impr += new_auxf - old_auxf
            extractor.update_gaussian(i, sigma_inv=new_sigma_inv)
        if tot_num_floored > 0:
            logging.warning("Floored %d out of %d eigenvalues of the covariances",
                            tot_num_floored, len(to_update) * feat_dim)
        count = self.gamma.sum()
        impr = tot_impr / count
        logging.info("Overall objective function improvement for variance was %f per frame over %f frames",
                     impr, count)
        return impr

    def prior_diagnostics(self, old_offset):
        """Improvement of the auxiliary function of the prior obtained by
        replacing the old prior, a unit covariance Gaussian with mean
        (old_offset, 0, ..., 0), by the Gaussian estimated from the i-vectors.

        :param old_offset: offset of the prior before the update
        :return: the improvement per frame
        """
        mean = self.ivector_sum / self.num_ivectors
        scatter = self.ivector_scatter / self.num_ivectors
        old_mean = numpy.zeros(self.ivector_dim())
        old_mean[0] = old_offset
        # Gaussian constants are the same for both and left out
        old_covar = scatter - numpy.outer(mean, old_mean) - numpy.outer(old_mean, mean) + numpy.outer(old_mean,
                                                                                                        old_mean)
        old_like = -0.5 * numpy.trace(old_covar)
        eig, _, _ = floor_eigenvalues(scatter - numpy.outer(mean, mean), PRIOR_COVAR_FLOOR)
        new_like = -0.5 * (self.ivector_dim() + numpy.sum(numpy.log(eig)))
        impr = (new_like - old_like) * self.num_ivectors / self.gamma.sum()
        logging.info("Overall auxf improvement from prior is %f per frame, or %f per iVector",
                     impr, new_like - old_like)
        return impr

    def update_prior(self, extractor):
        """Re-estimate the prior from the i-vectors and transform the model so
        that the prior stays a unit covariance Gaussian with its mean on the
        first axis.

        :return: the improvement of the auxiliary function per frame
        """
        if self.num_ivectors == 0:
            logging.warning("No i-vector statistics: not updating the prior")
            return 0.0
        impr = self.prior_diagnostics(extractor.prior_offset())

        mean = self.ivector_sum / self.num_ivectors
        covar = self.ivector_scatter / self.num_ivectors - numpy.outer(mean, mean)
        logging.info("Norm of mean of iVector distribution is %f", numpy.linalg.norm(mean))

        eig, eigvec, num_floored = floor_eigenvalues(covar, PRIOR_COVAR_FLOOR)
        if num_floored > 0:
            logging.warning("Floored %d eigenvalues of covariance of iVectors.", num_floored)
        # whitening transform
        T = (eigvec / numpy.sqrt(eig)).T
        mean_proj = T.dot(mean)
        new_offset = numpy.linalg.norm(mean_proj)

        # Householder reflection that puts mean_proj on the first axis
        v = mean_proj.copy()
        v[0] -= new_offset
        v_norm2 = v.dot(v)
        U = numpy.eye(self.ivector_dim())
        if v_norm2 > 1.0e-20 * max(1.0, new_offset ** 2):
            U -= 2.0 * numpy.outer(v, v) / v_norm2

        extractor.transform_ivectors(U.dot(T), new_offset)
        return impr
