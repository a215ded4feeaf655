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
:mod:`sv_utils` provides linear algebra utilities shared by the i-vector
extractor and its accumulators: packed storage of symmetric matrices,
eigenvalue flooring and robust solvers for quadratic problems.
"""
import logging
import numpy
import scipy.linalg

__license__ = "LGPL"
__status__ = "Production"
__docformat__ = 'reStructuredText'


def packed_size(dim):
    """Return the number of coefficients needed to store the upper triangle
    of a symmetric matrix of dimension dim

    :param dim: dimension of the symmetric matrix
    :return: dim * (dim + 1) // 2
    """
    return dim * (dim + 1) // 2


def pack_symmetric(mat):
    """Store the upper triangle of one or several symmetric matrices
    row by row, as done for the accumulators of the total variability matrix.

    :param mat: ndarray of shape (..., dim, dim)
    :return: ndarray of shape (..., dim * (dim + 1) // 2)
    """
    upper_triangle_indices = numpy.triu_indices(mat.shape[-1])
    return mat[..., upper_triangle_indices[0], upper_triangle_indices[1]]


def unpack_symmetric(vec, dim):
    """Rebuild full symmetric matrices from their packed upper triangle

    :param vec: ndarray of shape (..., dim * (dim + 1) // 2)
    :param dim: dimension of the symmetric matrices
    :return: ndarray of shape (..., dim, dim)
    """
    upper_triangle_indices = numpy.triu_indices(dim)
    mat = numpy.zeros(vec.shape[:-1] + (dim, dim), dtype=vec.dtype)
    mat[..., upper_triangle_indices[0], upper_triangle_indices[1]] = vec
    mat[..., upper_triangle_indices[1], upper_triangle_indices[0]] = vec
    return mat


def floor_eigenvalues(mat, floor=1.0):
    """Floor the eigenvalues of a symmetric matrix.

    :param mat: symmetric matrix
    :param floor: value under which eigenvalues are raised
    :return: a tuple (eigen_values, eigen_vectors, num_floored) where
        eigen_values are the floored eigenvalues
    """
    eigen_values, eigen_vectors = scipy.linalg.eigh(mat)
    num_floored = int(numpy.sum(eigen_values < floor))
    eigen_values = numpy.maximum(eigen_values, floor)
    return eigen_values, eigen_vectors, num_floored


def invert_with_flooring(quadratic_term):
    """Invert the precision of an i-vector posterior after flooring its
    eigenvalues to 1.0, which is the least they can be because of the
    unit-precision prior.

    :param quadratic_term: symmetric precision matrix
    :return: the covariance matrix
    """
    eigen_values, eigen_vectors, num_floored = floor_eigenvalues(quadratic_term, 1.0)
    if num_floored > 0:
        logging.warning("Floored %d eigenvalues of the variance of the iVector", num_floored)
    return (eigen_vectors / eigen_values).dot(eigen_vectors.T)


def log_pos_def_det(mat):
    """Log-determinant of a symmetric positive definite matrix

    :param mat: symmetric positive definite matrix
    :return: the log-determinant
    """
    return 2.0 * numpy.sum(numpy.log(numpy.diag(scipy.linalg.cholesky(mat))))


def floored_inverse(mat, max_cond=1.0e+04, epsilon=1.0e-40):
    """Pseudo-inverse of a symmetric matrix whose eigenvalues are floored
    to max_eig / max_cond so that the condition number is bounded.

    :param mat: symmetric matrix
    :param max_cond: maximum condition number
    :param epsilon: absolute floor applied to the eigenvalues
    :return: a tuple (inverse, num_floored)
    """
    eigen_values, eigen_vectors = scipy.linalg.eigh(mat)
    floor = max(epsilon, eigen_values.max() / max_cond)
    num_floored = int(numpy.sum(eigen_values < floor))
    eigen_values = numpy.maximum(eigen_values, floor)
    return (eigen_vectors / eigen_values).dot(eigen_vectors.T), num_floored


def solve_quadratic_problem(H, g, x, name="x", max_cond=1.0e+04):
    """Maximize the auxiliary function g^T x - 0.5 x^T H x.
    H is symmetric and supposed positive semi-definite; its eigenvalues are
    floored to keep the solution bounded. The previous value is kept if the
    new one does not improve the auxiliary function.

    :param H: quadratic term (symmetric matrix)
    :param g: linear term
    :param x: current value
    :param name: name of the variable, used for logging
    :param max_cond: maximum condition number for H
    :return: a tuple (new value, improvement of the auxiliary function)
    """
    if not numpy.any(H):
        logging.warning("Zero quadratic term in quadratic problem for %s: leaving it unchanged", name)
        return x, 0.0
    H_inv, num_floored = floored_inverse(H, max_cond)
    if num_floored > 0:
        logging.debug("Floored %d eigenvalues of quadratic term for %s", num_floored, name)
    new_x = H_inv.dot(g)

    def auxf(v):
        return g.dot(v) - 0.5 * v.dot(H).dot(v)

    impr = auxf(new_x) - auxf(x)
    if impr < 0:
        if impr < -1.0e-04 * abs(auxf(x)):
            logging.warning("Objective function decreased for %s (%f): not updating", name, impr)
        return x, 0.0
    return new_x, impr


def quadratic_matrix_auxf(Q, Y, P, M):
    """Auxiliary function tr(M^T P Y) - 0.5 tr(M^T P M Q)

    :param Q: symmetric matrix, quadratic term
    :param Y: linear term
    :param P: symmetric matrix
    :param M: the matrix to evaluate
    """
    PM = P.dot(M)
    return numpy.sum(PM * Y) - 0.5 * numpy.sum(PM * M.dot(Q))


def solve_quadratic_matrix_problem(Q, Y, P, M, name="M", max_cond=1.0e+04):
    """Maximize tr(M^T P Y) - 0.5 tr(M^T P M Q) for M. The unconstrained
    solution is Y Q^{-1}; Q is inverted after flooring its eigenvalues.
    The previous value is kept if the auxiliary function would decrease.

    :param Q: symmetric matrix of dimension S
    :param Y: linear term, matrix of dimension D x S
    :param P: symmetric positive definite matrix of dimension D
    :param M: current value, matrix of dimension D x S
    :param name: name of the variable, used for logging
    :param max_cond: maximum condition number for Q
    :return: a tuple (new value, improvement of the auxiliary function)
    """
    if not numpy.any(Q):
        logging.warning("Zero quadratic term in quadratic matrix problem for %s: leaving it unchanged", name)
        return M, 0.0
    Q_inv, num_floored = floored_inverse(Q, max_cond)
    if num_floored > 0:
        logging.debug("Floored %d eigenvalues of quadratic term for %s", num_floored, name)
    new_M = Y.dot(Q_inv)
    impr = quadratic_matrix_auxf(Q, Y, P, new_M) - quadratic_matrix_auxf(Q, Y, P, M)
    if impr < 0:
        old_auxf = quadratic_matrix_auxf(Q, Y, P, M)
        if impr < -1.0e-04 * abs(old_auxf):
            logging.warning("Objective function decreased for %s (%f): not updating", name, impr)
        return M, 0.0
    return new_M, impr
