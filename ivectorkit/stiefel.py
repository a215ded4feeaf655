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
:mod:`stiefel` provides the update of a projection matrix constrained to
have orthonormal columns, following the curvilinear search of
Wen and Yin, "A feasible method for optimization with orthogonality
constraints", Mathematical Programming, 2013.
"""
import logging
import numpy
import scipy.linalg
from ivectorkit.sv_utils import floored_inverse, quadratic_matrix_auxf, solve_quadratic_matrix_problem

__license__ = "LGPL"
__status__ = "Production"
__docformat__ = 'reStructuredText'


def polar_factor(M):
    """Closest matrix with orthonormal columns to M (Frobenius norm)"""
    u, _, vt = scipy.linalg.svd(M, full_matrices=False)
    return u.dot(vt)


def _objective(Q, Y, P, M):
    return -quadratic_matrix_auxf(Q, Y, P, M)


def _gradient(Q, Y, P, M):
    return P.dot(M.dot(Q) - Y)


def _cayley_curve(M, A, tau):
    """Point and derivative of the curve Y(tau) = (I + tau/2 A)^-1 (I - tau/2 A) M"""
    eye = numpy.eye(M.shape[0])
    lhs = eye + 0.5 * tau * A
    Y_tau = scipy.linalg.solve(lhs, (eye - 0.5 * tau * A).dot(M))
    dY_tau = -scipy.linalg.solve(lhs, A.dot(0.5 * (M + Y_tau)))
    return Y_tau, dY_tau


def _projected_gradient(Q, Y, P, X):
    """Euclidean gradient G, skew matrix A = G X^T - X G^T and the gradient
    A X of the objective along the manifold"""
    G = _gradient(Q, Y, P, X)
    A = G.dot(X.T) - X.dot(G.T)
    return G, A, A.dot(X)


def solve_quadratic_matrix_problem_on_stiefel_manifold(Q, Y, P, M,
                                                       tau=1.0,
                                                       rho_1=1.0e-4,
                                                       rho_2=0.9,
                                                       max_iters=1000,
                                                       max_halvings=40,
                                                       tolerance=1.0e-06,
                                                       eta=0.85,
                                                       name="M"):
    """Maximize tr(M^T P Y) - 0.5 tr(M^T P M Q) for M under the constraint
    M^T M = I.

    The search starts from whichever is better of the projections of the
    current value and of the unconstrained solution on the manifold, then
    follows Cayley-transform curves. The first trial step is tau divided by
    the norm of the projected gradient, the next ones are Barzilai-Borwein
    steps. A trial step is halved until it gives sufficient decrease (rho_1)
    with respect to a running average of the past objective values (eta), and
    doubled while it still gives sufficient decrease and misses the curvature
    condition (rho_2). The search stops when the norm of the projected
    gradient falls below tolerance times its initial norm.

    :param Q: symmetric matrix of dimension S
    :param Y: linear term, matrix of dimension D x S
    :param P: symmetric positive definite matrix of dimension D
    :param M: current value, matrix of dimension D x S
    :param tau: initial step length, relative to the norm of the gradient
    :param rho_1: sufficient decrease threshold
    :param rho_2: curvature threshold
    :param max_iters: maximum number of iterations
    :param max_halvings: maximum number of halvings (or doublings) of a step
    :param tolerance: relative decrease of the projected gradient norm at
        which the search stops
    :param eta: weight of the past in the reference value of the sufficient
        decrease condition, 0 gives a monotone search
    :param name: name of the variable, used for logging

    :return: a tuple (new value, improvement of the auxiliary function)
    """
    feat_dim, ivector_dim = M.shape
    if ivector_dim > feat_dim:
        logging.warning("Cannot orthonormalize %s: %d columns for dimension %d, using unconstrained update",
                        name, ivector_dim, feat_dim)
        return solve_quadratic_matrix_problem(Q, Y, P, M, name)

    Q_inv, _ = floored_inverse(Q)
    candidates = [polar_factor(Y.dot(Q_inv)), polar_factor(M)]
    values = [_objective(Q, Y, P, c) for c in candidates]
    X = candidates[int(numpy.argmin(values))]
    F = min(values)
    best_X, best_F = X, F
    # reference value and weight of the non-monotone sufficient decrease condition
    C, weight = F, 1.0

    G, A, AX = _projected_gradient(Q, Y, P, X)
    grad_norm_0 = numpy.linalg.norm(A)
    step = tau / grad_norm_0 if grad_norm_0 > 0 else tau
    for it in range(max_iters):
        grad_norm = numpy.linalg.norm(A)
        if grad_norm <= tolerance * grad_norm_0:
            best_X = X
            logging.debug("Stiefel search for %s converged after %d iterations", name, it)
            break
        # derivative of F along the curve at tau = 0
        dF_0 = numpy.sum(G * -AX)

        this_tau = step
        accepted = None
        for _ in range(max_halvings + 1):
            X_tau, dX_tau = _cayley_curve(X, A, this_tau)
            F_tau = _objective(Q, Y, P, X_tau)
            if F_tau <= C + rho_1 * this_tau * dF_0:
                accepted = (this_tau, X_tau, dX_tau, F_tau)
                break
            this_tau *= 0.5
        if accepted is None:
            logging.warning("Line search on the Stiefel manifold failed for %s after %d halvings", name, max_halvings)
            break
        if this_tau == step:
            # the trial step may be too short: lengthen it while the curvature condition fails
            for _ in range(max_halvings):
                tau_a, X_a, dX_a, F_a = accepted
                if numpy.sum(_gradient(Q, Y, P, X_a) * dX_a) >= rho_2 * dF_0:
                    break
                longer = 2.0 * tau_a
                X_l, dX_l = _cayley_curve(X, A, longer)
                F_l = _objective(Q, Y, P, X_l)
                if F_l > C + rho_1 * longer * dF_0:
                    break
                accepted = (longer, X_l, dX_l, F_l)

        _, X_new, _, F = accepted
        X_prev, AX_prev = X, AX
        X = X_new
        if F < best_F:
            best_X, best_F = X, F
        weight_new = eta * weight + 1.0
        C = (eta * weight * C + F) / weight_new
        weight = weight_new

        G, A, AX = _projected_gradient(Q, Y, P, X)
        # Barzilai-Borwein step, alternating between its two forms
        S_diff = X - X_prev
        Y_diff = AX - AX_prev
        sy = abs(numpy.sum(S_diff * Y_diff))
        if sy > 0:
            if it % 2 == 0:
                step = numpy.sum(S_diff * S_diff) / sy
            else:
                step = sy / numpy.sum(Y_diff * Y_diff)
            step = min(max(step, 1.0e-20), 1.0e20)
    else:
        if numpy.linalg.norm(A) > tolerance * grad_norm_0:
            logging.warning("Stiefel search for %s stopped after %d iterations with relative gradient norm %g",
                            name, max_iters, numpy.linalg.norm(A) / grad_norm_0)

    impr = quadratic_matrix_auxf(Q, Y, P, best_X) - quadratic_matrix_auxf(Q, Y, P, M)
    logging.debug("Objective improvement for %s on the Stiefel manifold is %f", name, impr)
    return best_X, impr
