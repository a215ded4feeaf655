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
    :mod:`extractor` provides the i-vector extractor: the model that adapts
    the means (and optionally the weights) of a full-covariance UBM with a
    low-dimensional latent vector, and computes the posterior distribution
    of this vector given the sufficient statistics of an utterance.

    Notation: D is the feature dimension, I the number of Gaussians
    and S the i-vector dimension.
"""
import logging
import h5py
import numpy
import scipy.special
from ivectorkit import STAT_TYPE
from ivectorkit.ivector_wrappers import check_path_existance
from ivectorkit.options import IvectorExtractorOptions
from ivectorkit.sv_utils import invert_with_flooring, pack_symmetric, unpack_symmetric

__license__ = "LGPL"
__status__ = "Production"
__docformat__ = 'reStructuredText'

LOG_2PI = numpy.log(2.0 * numpy.pi)

# The i-vector estimation with weight projections stops when the i-vector
# changes by less than this (2-norm)
CHANGE_THRESHOLD = 0.1


def compute_derived_vars(M, sigma_inv):
    """Compute the quantities derived from the projections and precisions
    of one or several Gaussians.

    :param M: projection matrices, dimension [..., D, S]
    :param sigma_inv: inverse co-variance matrices, dimension [..., D, D]

    :return: a tuple (gconsts, sigma_inv_M, U) where gconsts is the constant
        term of the log-likelihood (weights excluded), sigma_inv_M = Sigma^-1 M
        and U the packed upper triangle of M^T Sigma^-1 M
    """
    sign, logdet_inv = numpy.linalg.slogdet(sigma_inv)
    if numpy.any(sign <= 0):
        raise ValueError("Inverse co-variance matrices must be positive definite")
    feat_dim = sigma_inv.shape[-1]
    gconsts = -0.5 * (-logdet_inv + feat_dim * LOG_2PI)
    sigma_inv_M = numpy.matmul(sigma_inv, M)
    MtSM = numpy.matmul(numpy.swapaxes(M, -1, -2), sigma_inv_M)
    MtSM = 0.5 * (MtSM + numpy.swapaxes(MtSM, -1, -2))
    return gconsts, sigma_inv_M, pack_symmetric(MtSM)


class IvectorExtractor(object):
    """
    Model used to estimate i-vectors. The prior over the i-vector is a unit
    covariance Gaussian whose mean is zero except for the first dimension,
    which carries the global offset of the adapted means.

    :attr M: i-vector subspace projection matrices, dimension [I, D, S];
        the i-th matrix projects from i-vector space to the mean of Gaussian i
    :attr sigma_inv: inverse co-variances of the adapted model, dimension [I, D, D]
    :attr w: weight projection vectors, dimension [I, S], or None
    :attr w_vec: UBM weights used when there are no weight projections, so that
        log-likelihoods are comparable between systems with and without them
    :attr ivector_offset: first coordinate of the prior mean
    :attr num_iters: number of iterations of i-vector estimation when the
        weights depend on the i-vector
    :attr weight_safety_factor: factor of the "max" clamp in the quadratic
        approximation of the weight term
    """

    def __init__(self, extractor_file_name=''):
        """Initialize an empty extractor or read it from an HDF5 file.

        :param extractor_file_name: name of the file to read from, if empty,
            initialize an empty extractor
        """
        self.M = None
        self.sigma_inv = None
        self.w = None
        self.w_vec = None
        self.ivector_offset = 0.0
        self.num_iters = 2
        self.weight_safety_factor = 1.0

        # Derived variables
        self._gconsts = None
        self._sigma_inv_M = None
        self._U = None

        if extractor_file_name != '':
            self.read(extractor_file_name)

    @classmethod
    def from_parameters(cls,
                        M,
                        sigma_inv,
                        w=None,
                        w_vec=None,
                        ivector_offset=100.0,
                        num_iters=2,
                        weight_safety_factor=1.0):
        """Build an extractor from its parameters and compute the derived
        variables.

        :param M: projection matrices, dimension [I, D, S]
        :param sigma_inv: inverse co-variances, dimension [I, D, D]
        :param w: weight projections, dimension [I, S]; if None the weights do
            not depend on the i-vector
        :param w_vec: Gaussian weights used when w is None, uniform by default
        :param ivector_offset: first coordinate of the prior mean
        :param num_iters: number of iterations of i-vector estimation
        :param weight_safety_factor: factor of the clamp of the weight term
        :return: an IvectorExtractor
        """
        extractor = cls()
        extractor.M = numpy.array(M, dtype=STAT_TYPE)
        extractor.sigma_inv = numpy.array(sigma_inv, dtype=STAT_TYPE)
        num_gauss, feat_dim = extractor.M.shape[:2] if extractor.M.ndim == 3 else (0, 0)
        if extractor.M.ndim != 3 or extractor.sigma_inv.shape != (num_gauss, feat_dim, feat_dim):
            raise ValueError("M must be [I, D, S] and sigma_inv [I, D, D], got {} and {}".format(
                extractor.M.shape, extractor.sigma_inv.shape))
        if w is not None:
            extractor.w = numpy.array(w, dtype=STAT_TYPE)
            if extractor.w.shape != (num_gauss, extractor.ivector_dim()):
                raise ValueError("w must be [I, S], got {}".format(extractor.w.shape))
        else:
            if w_vec is None:
                w_vec = numpy.ones(num_gauss) / num_gauss
            extractor.w_vec = numpy.array(w_vec, dtype=STAT_TYPE)
            if extractor.w_vec.shape != (num_gauss,):
                raise ValueError("w_vec must be [I], got {}".format(extractor.w_vec.shape))
        extractor.ivector_offset = float(ivector_offset)
        extractor.num_iters = int(num_iters)
        extractor.weight_safety_factor = float(weight_safety_factor)
        extractor.compute_derived_vars()
        return extractor

    @classmethod
    def from_ubm(cls, ubm, opts=None, seed=None):
        """Initialize an extractor from a full-covariance UBM.
        The projection matrices are random, scaled by the Cholesky factor of
        the UBM co-variances, except for their first column which is set to
        the UBM means divided by the prior offset.

        :param ubm: a Mixture object
        :param opts: IvectorExtractorOptions
        :param seed: seed of the random generator used to initialize M
        :return: an IvectorExtractor
        """
        if opts is None:
            opts = IvectorExtractorOptions()
        if not ubm.validate():
            raise ValueError("Second argument must be a proper Mixture")
        prior_offset = 100.0  # hardwired, must be nonzero
        num_gauss, feat_dim = ubm.mu.shape
        rng = numpy.random.default_rng(seed)
        # random directions in the units of the features
        M = numpy.matmul(numpy.linalg.cholesky(ubm.get_covariances()),
                         rng.standard_normal((num_gauss, feat_dim, opts.ivector_dim)))
        M[:, :, 0] = ubm.mu / prior_offset
        w = w_vec = None
        if opts.use_weights:
            # the initial weights are the ones of the UBM at the prior mean
            w = numpy.zeros((num_gauss, opts.ivector_dim))
            w[:, 0] = numpy.log(ubm.w) / prior_offset
        else:
            w_vec = ubm.w
        extractor = cls.from_parameters(M,
                                        ubm.invcov,
                                        w=w,
                                        w_vec=w_vec,
                                        ivector_offset=prior_offset,
                                        num_iters=opts.num_iters,
                                        weight_safety_factor=opts.weight_safety_factor)
        logging.info("Initialized i-vector extractor: %d Gaussians, feature dim %d, i-vector dim %d",
                     num_gauss, feat_dim, opts.ivector_dim)
        return extractor

    def __repr__(self):
        return "IvectorExtractor(num_gauss={}, feat_dim={}, ivector_dim={}, weights={})".format(
            self.num_gauss(), self.feat_dim(), self.ivector_dim(), self.ivector_dependent_weights())

    def num_gauss(self):
        return 0 if self.M is None else self.M.shape[0]

    def feat_dim(self):
        return 0 if self.M is None else self.M.shape[1]

    def ivector_dim(self):
        return 0 if self.M is None else self.M.shape[2]

    def ivector_dependent_weights(self):
        return self.w is not None

    def prior_offset(self):
        """The prior over i-vectors is not centered at zero: its first
        dimension has a nonzero offset.
        """
        return self.ivector_offset

    # The accumulator reads the derived quantities through these accessors

    @property
    def gconsts(self):
        return self._gconsts

    @property
    def sigma_inv_M(self):
        return self._sigma_inv_M

    @property
    def packed_U(self):
        """U_i = M_i^T Sigma_i^-1 M_i stored as the packed upper triangle in row i"""
        return self._U

    def compute_derived_vars(self):
        """Recompute gconsts, Sigma^-1 M and U for all Gaussians"""
        self._gconsts, self._sigma_inv_M, self._U = compute_derived_vars(self.M, self.sigma_inv)

    def update_gaussian(self, i, M=None, sigma_inv=None, w=None):
        """Set the parameters of Gaussian i and recompute its derived variables.
        Calls for different Gaussians write to disjoint parts of the model
        and can run in parallel.

        :param i: index of the Gaussian
        :param M: new projection matrix, dimension [D, S]
        :param sigma_inv: new inverse co-variance, dimension [D, D]
        :param w: new weight projection, dimension [S]
        """
        if M is not None:
            self.M[i] = M
        if sigma_inv is not None:
            self.sigma_inv[i] = 0.5 * (sigma_inv + sigma_inv.T)
        if w is not None:
            self.w[i] = w
        if M is not None or sigma_inv is not None:
            gconst, sigma_inv_M, U = compute_derived_vars(self.M[i], self.sigma_inv[i])
            self._gconsts[i] = gconst
            self._sigma_inv_M[i] = sigma_inv_M
            self._U[i] = U

    def transform_ivectors(self, T, new_ivector_offset):
        """Reparameterize the i-vector space as if i-vectors were projected
        with T: apply T^-1 where necessary to keep the model equivalent.
        Used to keep a unit-variance prior after its re-estimation.
        All new parameters are computed before replacing the current ones.

        :param T: transformation matrix, dimension [S, S]
        :param new_ivector_offset: new first coordinate of the prior mean
        """
        if T.shape != (self.ivector_dim(), self.ivector_dim()):
            raise ValueError("Transform has shape {}, expected {}".format(
                T.shape, (self.ivector_dim(), self.ivector_dim())))
        T_inv = numpy.linalg.inv(T)
        new_M = numpy.matmul(self.M, T_inv)
        new_w = None if self.w is None else self.w.dot(T_inv)
        gconsts, sigma_inv_M, U = compute_derived_vars(new_M, self.sigma_inv)
        logging.info("Setting iVector prior offset to %f", new_ivector_offset)
        (self.M, self.w, self.ivector_offset,
         self._gconsts, self._sigma_inv_M, self._U) = (new_M, new_w, float(new_ivector_offset),
                                                       gconsts, sigma_inv_M, U)

    def get_stats(self, feats, post, stats):
        """Add the zero, first (and if stats has them, second) order
        statistics of an utterance to stats.

        :param feats: ndarray of features, one frame per row
        :param post: posteriors of the Gaussians, either a list with, for each
            frame, a list of (gaussian index, posterior) pairs, or a dense ndarray
            of dimension [num_frames, I]
        :param stats: IvectorExtractorUtteranceStats to add to
        """
        feats = numpy.asarray(feats, dtype=STAT_TYPE)
        num_gauss, feat_dim = self.num_gauss(), self.feat_dim()
        if feats.ndim != 2 or feats.shape[1] != feat_dim:
            raise ValueError("Feature dimension mismatch, expected {}, got shape {}".format(feat_dim, feats.shape))
        if len(post) != feats.shape[0]:
            raise ValueError("Posteriors are given for {} frames, features have {}".format(
                len(post), feats.shape[0]))
        stats.check_dims(num_gauss, feat_dim)

        if isinstance(post, numpy.ndarray):
            if post.shape != (feats.shape[0], num_gauss):
                raise ValueError("Dense posteriors must have shape {}, got {}".format(
                    (feats.shape[0], num_gauss), post.shape))
            dense_post = post.astype(STAT_TYPE)
        else:
            dense_post = numpy.zeros((feats.shape[0], num_gauss), dtype=STAT_TYPE)
            for t, frame_post in enumerate(post):
                for i, weight in frame_post:
                    if not 0 <= i < num_gauss:
                        raise ValueError("Gaussian index {} out of range [0, {})".format(i, num_gauss))
                    dense_post[t, i] += weight

        gamma = dense_post.sum(0)
        stats.gamma += gamma
        stats.X += dense_post.T.dot(feats)
        if stats.S is not None:
            for i in numpy.flatnonzero(gamma):
                frames = numpy.flatnonzero(dense_post[:, i])
                frames_feats = feats[frames]
                stats.S[i] += (frames_feats.T * dense_post[frames, i]).dot(frames_feats)

    def _check_stats(self, stats):
        stats.check_dims(self.num_gauss(), self.feat_dim())

    def _check_ivector(self, mean, var=None):
        if mean.shape != (self.ivector_dim(),):
            raise ValueError("i-vector has shape {}, expected ({},)".format(mean.shape, self.ivector_dim()))
        if var is not None and var.shape != (self.ivector_dim(), self.ivector_dim()):
            raise ValueError("i-vector variance has shape {}, expected {}".format(
                var.shape, (self.ivector_dim(), self.ivector_dim())))

    def get_ivector_dist_mean(self, stats, linear, quadratic):
        """Add to linear and quadratic the terms of the i-vector distribution
        that arise from the Gaussian means, where
        log p(x) = x^T linear - 0.5 x^T quadratic x + const

        :param stats: IvectorExtractorUtteranceStats
        :param linear: linear term, dimension [S], modified in place
        :param quadratic: quadratic term, dimension [S, S], modified in place
        """
        # linear += \sum_i M_i^T Sigma_i^-1 X_i
        linear += numpy.einsum('ids,id->s', self._sigma_inv_M, stats.X)
        # quadratic += \sum_i gamma_i U_i
        quadratic += unpack_symmetric(stats.gamma.dot(self._U), self.ivector_dim())

    def get_ivector_dist_prior(self, stats, linear, quadratic):
        """Add to linear and quadratic the terms of the i-vector distribution
        that arise from the prior.
        """
        linear[0] += self.ivector_offset
        quadratic[numpy.diag_indices_from(quadratic)] += 1.0

    def weight_expansion(self, gamma, ivector):
        """Coefficients of the quadratic approximation of the weight term
        around an i-vector. For each Gaussian i, the auxiliary function of the
        weights is approximated by
        linear_coeff_i (w_i^T x) - 0.5 quadratic_coeff_i (w_i^T x)^2,
        where quadratic_coeff_i = max(gamma_i, safety * gamma * w_hat_i)
        keeps the approximation safe far from the expansion point.

        :param gamma: zero-order statistics, dimension [I]
        :param ivector: expansion point, dimension [S]
        :return: a tuple (linear_coeff, quadratic_coeff)
        """
        logw_unnorm = self.w.dot(ivector)
        w_hat = scipy.special.softmax(logw_unnorm)
        expected_count = gamma.sum() * w_hat
        quadratic_coeff = numpy.maximum(gamma, self.weight_safety_factor * expected_count)
        linear_coeff = gamma - expected_count + quadratic_coeff * logw_unnorm
        return linear_coeff, quadratic_coeff

    def get_ivector_dist_weight(self, stats, mean, linear, quadratic):
        """Add to linear and quadratic the terms of the i-vector distribution
        that arise from the weights, approximated around mean. Does nothing if
        the weights do not depend on the i-vector.
        """
        if not self.ivector_dependent_weights():
            return
        linear_coeff, quadratic_coeff = self.weight_expansion(stats.gamma, mean)
        linear += self.w.T.dot(linear_coeff)
        quadratic += (self.w.T * quadratic_coeff).dot(self.w)

    def get_ivector_distribution(self, stats, need_var=True, num_iters=None):
        """Get the (Gaussian approximation to the) posterior distribution of
        the i-vector of an utterance.

        :param stats: IvectorExtractorUtteranceStats of the utterance
        :param need_var: if False, only the mean is returned
        :param num_iters: number of iterations when the weights depend on the
            i-vector; defaults to the value of the extractor

        :return: the mean, or a tuple (mean, covariance) if need_var is True
        """
        self._check_stats(stats)
        ivector_dim = self.ivector_dim()
        linear = numpy.zeros(ivector_dim, dtype=STAT_TYPE)
        quadratic = numpy.zeros((ivector_dim, ivector_dim), dtype=STAT_TYPE)
        self.get_ivector_dist_mean(stats, linear, quadratic)
        self.get_ivector_dist_prior(stats, linear, quadratic)

        var = invert_with_flooring(quadratic)
        mean = var.dot(linear)

        if self.ivector_dependent_weights():
            if num_iters is None:
                num_iters = self.num_iters
            # Successively better approximation points for the weight term
            for it in range(num_iters):
                this_linear = linear.copy()
                this_quadratic = quadratic.copy()
                self.get_ivector_dist_weight(stats, mean, this_linear, this_quadratic)
                var = invert_with_flooring(this_quadratic)
                new_mean = var.dot(this_linear)
                change = numpy.linalg.norm(new_mean - mean)
                mean = new_mean
                logging.debug("On iteration %d, iVector changed by %f", it, change)
                if change < CHANGE_THRESHOLD:
                    break

        if need_var:
            return mean, var
        return mean

    def get_auxf(self, stats, mean, var=None):
        """Log-likelihood objective function, summed over frames, for this
        distribution of i-vectors (a point distribution if var is None).
        """
        return self.get_acoustic_auxf(stats, mean, var) + self.get_prior_auxf(mean, var)

    def get_acoustic_auxf(self, stats, mean, var=None):
        """Data-dependent part of the auxiliary function, summed over frames"""
        self._check_stats(stats)
        self._check_ivector(mean, var)
        return (self.get_acoustic_auxf_gconst(stats)
                + self.get_acoustic_auxf_mean(stats, mean, var)
                + self.get_acoustic_auxf_weight(stats, mean, var)
                + self.get_acoustic_auxf_variance(stats))

    def get_prior_auxf(self, mean, var=None):
        """Prior part of the auxiliary function. If var is given this is a
        log-probability, otherwise it is the log-likelihood of the point mean.
        The two must not be compared.
        """
        self._check_ivector(mean, var)
        offset = numpy.array(mean, dtype=STAT_TYPE)
        offset[0] -= self.ivector_offset
        ans = offset.dot(offset) + self.ivector_dim() * LOG_2PI
        if var is not None:
            ans += numpy.trace(var)
        return -0.5 * ans

    def get_acoustic_auxf_gconst(self, stats):
        """Part of the acoustic auxiliary function related to the gconsts"""
        return stats.gamma.dot(self._gconsts)

    def _data_mean_term(self, stats):
        """\\sum_i X_i^T Sigma_i^-1 X_i / gamma_i over the Gaussians with nonzero count"""
        xPx = numpy.einsum('id,ide,ie->i', stats.X, self.sigma_inv, stats.X)
        nonzero = stats.gamma != 0
        return numpy.sum(xPx[nonzero] / stats.gamma[nonzero])

    def get_acoustic_auxf_variance(self, stats):
        """Part of the acoustic auxiliary function related to the variance of
        the data around its mean (zero if the data had zero variance). It does
        not depend on the i-vector. Without second-order statistics, the data
        variance is assumed to be the one of the model.
        """
        if stats.S is None:
            return -0.5 * stats.gamma.sum() * self.feat_dim()
        return -0.5 * (numpy.sum(self.sigma_inv * stats.S) - self._data_mean_term(stats))

    def get_acoustic_auxf_mean(self, stats, mean, var=None):
        """Part of the acoustic auxiliary function related to the distance
        between the adapted means and the data means.
        """
        linear = numpy.einsum('ids,id->s', self._sigma_inv_M, stats.X)
        quadratic = unpack_symmetric(stats.gamma.dot(self._U), self.ivector_dim())
        ans = self._data_mean_term(stats) - 2.0 * mean.dot(linear) + mean.dot(quadratic).dot(mean)
        if var is not None:
            ans += numpy.sum(quadratic * var)
        return -0.5 * ans

    def get_acoustic_auxf_weight(self, stats, mean, var=None):
        """Part of the acoustic auxiliary function related to the Gaussian
        weights; depends on the i-vector only with weight projections, in which
        case var adds a second-order correction.
        """
        if not self.ivector_dependent_weights():
            nonzero = stats.gamma != 0
            return stats.gamma[nonzero].dot(numpy.log(self.w_vec[nonzero]))
        logw_unnorm = self.w.dot(mean)
        logw = logw_unnorm - scipy.special.logsumexp(logw_unnorm)
        ans = stats.gamma.dot(logw)
        if var is not None:
            # negated Hessian of \sum_i gamma_i log w_i with respect to the i-vector
            w_hat = numpy.exp(logw)
            WTw = self.w.T.dot(w_hat)
            hessian = (self.w.T * w_hat).dot(self.w) - numpy.outer(WTw, WTw)
            ans -= 0.5 * stats.gamma.sum() * numpy.sum(hessian * var)
        return ans

    @check_path_existance
    def write(self, output_file_name):
        """Write the extractor into an HDF5 file

        :param output_file_name: the name of the file to write to
        """
        with h5py.File(output_file_name, "w") as fh:
            for key, value in (("M", self.M), ("sigma_inv", self.sigma_inv), ("w", self.w), ("w_vec", self.w_vec)):
                if value is not None:
                    fh.create_dataset("ivector_extractor/" + key, data=value,
                                      compression="gzip",
                                      fletcher32=True)
            fh.create_dataset("ivector_extractor/ivector_offset", data=numpy.float64(self.ivector_offset))
            fh["ivector_extractor"].attrs["num_iters"] = self.num_iters
            fh["ivector_extractor"].attrs["weight_safety_factor"] = self.weight_safety_factor

    def read(self, input_file_name):
        """Read the extractor from an HDF5 file and compute its derived variables

        :param input_file_name: the name of the file to read from
        """
        with h5py.File(input_file_name, "r") as fh:
            grp = fh["ivector_extractor"]
            self.M = grp["M"][()]
            self.sigma_inv = grp["sigma_inv"][()]
            self.w = grp["w"][()] if "w" in grp else None
            self.w_vec = grp["w_vec"][()] if "w_vec" in grp else None
            self.ivector_offset = float(grp["ivector_offset"][()])
            self.num_iters = int(grp.attrs.get("num_iters", 2))
            self.weight_safety_factor = float(grp.attrs.get("weight_safety_factor", 1.0))
        self.compute_derived_vars()
