import numpy as np
from numpy.testing import assert_allclose

from ivectorkit.sv_utils import (
    floored_inverse,
    invert_with_flooring,
    log_pos_def_det,
    pack_symmetric,
    packed_size,
    quadratic_matrix_auxf,
    solve_quadratic_matrix_problem,
    solve_quadratic_problem,
    unpack_symmetric,
)


def test_packed_size():
    assert packed_size(1) == 1
    assert packed_size(3) == 6
    assert packed_size(400) == 80200


def test_pack_unpack_batch():
    rng = np.random.default_rng(0)
    a = rng.standard_normal((5, 4, 4))
    sym = a + np.transpose(a, (0, 2, 1))
    packed = pack_symmetric(sym)
    assert packed.shape == (5, 10)
    assert_allclose(unpack_symmetric(packed, 4), sym)
    # rows of the upper triangle
    assert_allclose(packed[0, :4], sym[0, 0])


def test_flooring_raises_small_eigenvalues_to_one():
    rng = np.random.default_rng(1)
    basis, _ = np.linalg.qr(rng.standard_normal((4, 4)))
    eigenvalues = np.array([0.01, 0.5, 2.0, 7.0])
    quadratic = (basis * eigenvalues).dot(basis.T)

    var = invert_with_flooring(quadratic)
    floored = np.sort(np.linalg.eigvalsh(np.linalg.inv(var)))
    assert_allclose(floored, [1.0, 1.0, 2.0, 7.0], rtol=1e-10)


def test_flooring_is_identity_above_one():
    quadratic = np.array([[3.0, 1.0], [1.0, 2.0]])
    assert_allclose(invert_with_flooring(quadratic), np.linalg.inv(quadratic), rtol=1e-10)


def test_log_pos_def_det():
    mat = np.array([[4.0, 1.0], [1.0, 3.0]])
    assert_allclose(log_pos_def_det(mat), np.log(np.linalg.det(mat)))


def test_floored_inverse_bounds_condition():
    mat = np.diag([1.0, 1e-8])
    inv, num_floored = floored_inverse(mat, max_cond=100.0)
    assert num_floored == 1
    assert_allclose(inv, np.diag([1.0, 100.0]))


def test_solve_quadratic_problem():
    H = np.array([[2.0, 0.5], [0.5, 1.0]])
    g = np.array([1.0, -1.0])
    x, impr = solve_quadratic_problem(H, g, np.zeros(2))
    assert_allclose(x, np.linalg.solve(H, g))
    assert impr > 0
    # already at the optimum: nothing to gain
    x2, impr2 = solve_quadratic_problem(H, g, x)
    assert_allclose(x2, x)
    assert abs(impr2) < 1e-12


def test_solve_quadratic_problem_zero_hessian():
    x, impr = solve_quadratic_problem(np.zeros((2, 2)), np.ones(2), np.ones(2))
    assert_allclose(x, np.ones(2))
    assert impr == 0.0


def test_solve_quadratic_matrix_problem():
    rng = np.random.default_rng(2)
    a = rng.standard_normal((3, 3))
    Q = a.dot(a.T) + 3 * np.eye(3)
    b = rng.standard_normal((4, 4))
    P = b.dot(b.T) + 4 * np.eye(4)
    Y = rng.standard_normal((4, 3))
    M0 = rng.standard_normal((4, 3))

    M, impr = solve_quadratic_matrix_problem(Q, Y, P, M0)
    assert_allclose(M, Y.dot(np.linalg.inv(Q)))
    assert_allclose(impr, quadratic_matrix_auxf(Q, Y, P, M) - quadratic_matrix_auxf(Q, Y, P, M0))
    assert impr > 0
