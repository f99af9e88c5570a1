"""Solving small dense linear systems in several ways."""

from __future__ import annotations

import argparse

import numpy as np
import scipy.linalg


class SingularMatrixError(ValueError):
    """Raised when a solver meets a zero pivot or a zero eigenvalue."""


def _check_system(a, b) -> tuple[np.ndarray, np.ndarray]:
    matrix = np.asarray(a, dtype=float)
    rhs = np.asarray(b, dtype=float)
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise ValueError(f"matrix must be square, got shape {matrix.shape}")
    if rhs.shape != (matrix.shape[0],):
        raise ValueError(f"right-hand side must have shape ({matrix.shape[0]},), got {rhs.shape}")
    return matrix, rhs


def gaussian_elimination(a, b) -> np.ndarray:
    """Solve ``a x = b`` by elimination without row exchanges, then back substitution."""
    matrix, rhs = _check_system(a, b)
    n = matrix.shape[0]
    augmented = np.column_stack([matrix, rhs])
    for k in range(n):
        if augmented[k, k] == 0.0:
            raise SingularMatrixError("Zero pivot encountered. Matrix is singular!")
        factors = augmented[k + 1:, k] / augmented[k, k]
        augmented[k + 1:, k:] -= np.outer(factors, augmented[k, k:])

    x = np.zeros(n)
    for i in reversed(range(n)):
        x[i] = (augmented[i, n] - augmented[i, i + 1:n] @ x[i + 1:]) / augmented[i, i]
    return x


def solve_by_eigendecomposition(a, b) -> np.ndarray:
    """Solve ``a x = b`` through the real parts of the eigen-decomposition of ``a``."""
    matrix, rhs = _check_system(a, b)
    eigenvalues, eigenvectors = np.linalg.eig(matrix)
    vectors = eigenvectors.real
    values = eigenvalues.real
    if np.any(values == 0.0):
        raise SingularMatrixError("Zero eigenvalue encountered!")
    y = np.linalg.inv(vectors) @ rhs
    return vectors @ (y / values)


def compare_solvers(a, b) -> dict[str, np.ndarray | None]:
    """Solve ``a x = b`` with each method; the Cholesky entry is None when ``a`` is not positive definite."""
    matrix, rhs = _check_system(a, b)
    solutions: dict[str, np.ndarray | None] = {
        "gaussian_elimination": gaussian_elimination(matrix, rhs),
        "lu": scipy.linalg.lu_solve(scipy.linalg.lu_factor(matrix), rhs),
    }
    try:
        factor = scipy.linalg.cho_factor(matrix, lower=True)
    except np.linalg.LinAlgError:
        solutions["llt"] = None
    else:
        solutions["llt"] = scipy.linalg.cho_solve(factor, rhs)
    q, r = np.linalg.qr(matrix)
    solutions["qr"] = scipy.linalg.solve_triangular(r, q.T @ rhs)
    solutions["svd"] = np.linalg.lstsq(matrix, rhs, rcond=None)[0]
    solutions["eigen"] = solve_by_eigendecomposition(matrix, rhs)
    return solutions


_LABELS = {
    "gaussian_elimination": "Gaussian Elimination",
    "lu": "lu decomposition",
    "llt": "LLT decomposition",
    "qr": "QR decomposition",
    "svd": "SVD",
    "eigen": "Eigen Value Decomposition",
}


def main(argv=None) -> int:
    """Build a random positive definite system and print each solver's answer."""
    parser = argparse.ArgumentParser(description="Compare linear system solvers.")
    parser.add_argument("--seed", type=int, default=None, help="random seed")
    parser.add_argument("--size", type=int, default=3, help="system size")
    args = parser.parse_args(argv)

    rng = np.random.default_rng(args.seed)
    base = rng.uniform(-1.0, 1.0, size=(args.size, args.size))
    a = base.T @ base + 0.1 * np.eye(args.size)
    b = rng.uniform(-1.0, 1.0, size=args.size)

    with np.printoptions(precision=3, suppress=True):
        print(f"eigenValue of A = \n{np.linalg.eigvals(a)}")
        for key, solution in compare_solvers(a, b).items():
            if solution is None:
                print("Matrix A is not positive definite!")
            else:
                print(f"Solution of {_LABELS[key]}: x = \n{solution}")
        print(f"Singular values of A:\n{np.linalg.svd(a, compute_uv=False)}")
    return 0