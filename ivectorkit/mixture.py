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
:mod:`mixture` provides methods to manage the full-covariance Gaussian
mixture model (UBM) the i-vector extractor is built from

"""
import h5py
import numpy
import scipy.special
from ivectorkit.ivector_wrappers import check_path_existance

__license__ = "LGPL"
__status__ = "Production"
__docformat__ = 'reStructuredText'

MIXTURE_KEYS = ('w', 'mu', 'invcov', 'invchol', 'cst', 'det')


class Mixture(object):
    """
    Full-covariance Gaussian mixture. The extractor only needs it to be
    initialized from and, when no frame posteriors are provided, to align the
    frames of an utterance.

    :attr w: weights of the Gaussians, dimension [I]
    :attr mu: means, one Gaussian per row, dimension [I, D]
    :attr invcov: inverse co-variance matrices, dimension [I, D, D]
    :attr invchol: lower Cholesky factors of invcov
    :attr cst: normalizing constant of each Gaussian
    :attr det: determinant of each co-variance matrix
    :attr name: free label of the model
    """

    def __init__(self, mixture_file_name='', name='empty'):
        """Create an empty Mixture or load it from an HDF5 file.

        :param mixture_file_name: HDF5 file to load, nothing is read when empty
        :param name: label of the model
        """
        self.name = name
        for key in MIXTURE_KEYS:
            setattr(self, key, numpy.array([]))
        if mixture_file_name != '':
            self.read(mixture_file_name)

    def __repr__(self):
        return "Mixture(name={}, distrib_nb={}, dim={})".format(self.name, self.distrib_nb(), self.dim())

    def init_from_parameters(self, w, mu, cov):
        """Set weights, means and full co-variances.

        :param w: weights, dimension [I]
        :param mu: means, dimension [I, D]
        :param cov: co-variance matrices, dimension [I, D, D]
        """
        invcov = numpy.linalg.inv(numpy.asarray(cov, dtype=numpy.float64))
        self._set(w, mu, 0.5 * (invcov + numpy.swapaxes(invcov, 1, 2)))

    def init_from_diag(self, w, mu, invcov):
        """Set the parameters from a diagonal model, stored as one row of
        inverse variances per Gaussian.

        :param w: weights, dimension [I]
        :param mu: means, dimension [I, D]
        :param invcov: inverse variances, dimension [I, D]
        """
        invcov = numpy.asarray(invcov, dtype=numpy.float64)
        self._set(w, mu, invcov[:, :, numpy.newaxis] * numpy.eye(invcov.shape[1]))

    def _set(self, w, mu, invcov):
        self.w = numpy.array(w, dtype=numpy.float64).ravel()
        self.mu = numpy.array(mu, dtype=numpy.float64)
        self.invcov = invcov
        if not self.validate():
            raise ValueError("Inconsistent dimensions of weights, means and co-variances")
        self.invchol = numpy.linalg.cholesky(self.invcov)
        # log|invcov| from the Cholesky diagonal
        logdet_inv = 2.0 * numpy.log(numpy.diagonal(self.invchol, axis1=1, axis2=2)).sum(axis=1)
        self.det = numpy.exp(-logdet_inv)
        self.cst = numpy.exp(0.5 * logdet_inv - 0.5 * self.dim() * numpy.log(2.0 * numpy.pi))

    def read(self, mixture_file_name):
        """Load the Mixture from an HDF5 file. A file storing diagonal
        inverse co-variances is expanded to full matrices.

        :param mixture_file_name: name of the file to read
        """
        with h5py.File(mixture_file_name, 'r') as f:
            w, mu, invcov = f['w'][()], f['mu'][()], f['invcov'][()]
        if invcov.ndim == 2:
            self.init_from_diag(w, mu, invcov)
        else:
            self._set(w, mu, invcov)

    @check_path_existance
    def write(self, mixture_file_name):
        """Save the Mixture in HDF5 format

        :param mixture_file_name: name of the file to write
        """
        with h5py.File(mixture_file_name, 'w') as f:
            for key in MIXTURE_KEYS:
                value = getattr(self, key)
                f.create_dataset(key, value.shape, "d", value,
                                 compression="gzip",
                                 fletcher32=True)

    def distrib_nb(self):
        """Number of Gaussians"""
        return self.w.shape[0]

    def dim(self):
        """Feature dimension"""
        return self.mu.shape[1] if self.mu.ndim == 2 else 0

    def get_covariances(self):
        return numpy.linalg.inv(self.invcov)

    def validate(self):
        """Check that the shapes of the parameters agree.

        :return: True when weights, means and inverse co-variances are consistent
        """
        if self.w.ndim != 1 or self.mu.ndim != 2 or self.invcov.ndim != 3:
            return False
        num_gauss, dim = self.mu.shape
        return self.w.shape[0] == num_gauss and self.invcov.shape == (num_gauss, dim, dim)

    def log_likelihoods(self, cep):
        """Weighted log-likelihood of every frame under every Gaussian.

        :param cep: feature frames, one per row, dimension [T, D]
        :return: ndarray of dimension [T, I]
        """
        cep = numpy.atleast_2d(cep)
        if cep.shape[1] != self.dim():
            raise ValueError('dimension of ubm and features differ: {:d} / {:d}'.format(self.dim(), cep.shape[1]))
        centered = cep[numpy.newaxis, :, :] - self.mu[:, numpy.newaxis, :]
        # invcov = L L^T so the Mahalanobis distance is |L^T (x - mu)|^2
        proj = numpy.matmul(centered, self.invchol)
        lp = numpy.log(self.w * self.cst)[:, numpy.newaxis] - 0.5 * (proj ** 2).sum(axis=-1)
        return lp.T

    def component_posteriors(self, cep):
        """Posterior probability of each Gaussian for each frame.

        :param cep: feature frames, one per row, dimension [T, D]
        :return: a tuple (posteriors of dimension [T, I], total log-likelihood)
        """
        lp = self.log_likelihoods(cep)
        frame_llk = scipy.special.logsumexp(lp, axis=1)
        return numpy.exp(lp - frame_llk[:, numpy.newaxis]), frame_llk.sum()
