"""Fitting y = exp(a x^2 + b x + c) to noisy samples."""

from __future__ import annotations

import argparse
import time
from dataclasses import dataclass

import numpy as np
from scipy.optimize import least_squares

TRUE_PARAMS = (1.0, 2.0, 1.0)
INITIAL_PARAMS = (2.0, -1.0, 5.0)
DEFAULT_SAMPLES = 100
DEFAULT_SIGMA = 1.0


@dataclass(frozen=True)
class FitResult:
    """Estimated (a, b, c), the squared-error cost there, and how many steps were taken."""

    params: np.ndarray
    cost: float
    iterations: int
    history: tuple[float, ...] = ()


def _check(x, y) -> tuple[np.ndarray, np.ndarray]:
    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    if xs.ndim != 1 or xs.shape != ys.shape:
        raise ValueError("x and y must be one-dimensional and of equal length")
    return xs, ys


def _initial(initial) -> np.ndarray:
    params = np.array(initial, dtype=float)
    if params.shape != (3,):
        raise ValueError(f"initial must hold three values, got shape {params.shape}")
    return params


def _model(params: np.ndarray, x: np.ndarray) -> np.ndarray:
    a, b, c = params
    return np.exp(a * x * x + b * x + c)


def _jacobian(params: np.ndarray, x: np.ndarray) -> np.ndarray:
    f = _model(params, x)
    return np.column_stack([-x * x * f, -x * f, -f])


def generate_data(a, b, c, n=DEFAULT_SAMPLES, sigma=DEFAULT_SIGMA, rng=None):
    """Sample x = i / 100 for i < n and y = exp(a x^2 + b x + c) plus noise.

    The noise is Gaussian with standard deviation ``sigma * sigma``.
    """
    if n < 0:
        raise ValueError("n must not be negative")
    generator = rng if rng is not None else np.random.default_rng()
    x = np.arange(n) / 100.0
    y = _model(np.array([a, b, c], dtype=float), x)
    if sigma != 0:
        y = y + generator.normal(0.0, sigma * sigma, size=n)
    return x, y


def gauss_newton_fit(x, y, initial=INITIAL_PARAMS, iterations=100, inv_sigma=1.0) -> FitResult:
    """Plain Gauss-Newton; stops when the step is not finite or the cost stops falling."""
    xs, ys = _check(x, y)
    params = _initial(initial)
    weight = inv_sigma * inv_sigma
    history: list[float] = []
    last_cost = 0.0
    for iteration in range(iterations):
        error = ys - _model(params, xs)
        jacobian = _jacobian(params, xs)
        hessian = weight * jacobian.T @ jacobian
        gradient = -weight * jacobian.T @ error
        cost = float(error @ error)
        try:
            step = np.linalg.solve(hessian, gradient)
        except np.linalg.LinAlgError:
            break
        if np.isnan(step[0]):
            break
        if iteration > 0 and cost >= last_cost:
            break
        params = params + step
        last_cost = cost
        history.append(cost)
    final_error = ys - _model(params, xs)
    return FitResult(params, float(final_error @ final_error), len(history), tuple(history))


def least_squares_fit(x, y, initial=INITIAL_PARAMS) -> FitResult:
    """Levenberg-Marquardt fit with an analytic Jacobian."""
    xs, ys = _check(x, y)
    params = _initial(initial)
    if len(xs) < 3:
        raise ValueError("at least three samples are needed")
    result = least_squares(
        lambda p: ys - _model(p, xs),
        params,
        jac=lambda p: _jacobian(p, xs),
        method="lm",
    )
    return FitResult(np.asarray(result.x), float(2.0 * result.cost), int(result.nfev))


def main(argv=None) -> int:
    """Generate noisy samples and fit the curve with the chosen method."""
    parser = argparse.ArgumentParser(description="Fit y = exp(a x^2 + b x + c).")
    parser.add_argument("--method", choices=("gauss-newton", "least-squares"),
                        default="gauss-newton")
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("--samples", type=int, default=DEFAULT_SAMPLES)
    args = parser.parse_args(argv)

    x, y = generate_data(*TRUE_PARAMS, n=args.samples, sigma=DEFAULT_SIGMA,
                         rng=np.random.default_rng(args.seed))
    start = time.perf_counter()
    if args.method == "gauss-newton":
        result = gauss_newton_fit(x, y, INITIAL_PARAMS, 100, 1.0 / DEFAULT_SIGMA)
        for number, cost in enumerate(result.history):
            print(f"iteration {number}: total cost: {cost:g}")
    else:
        result = least_squares_fit(x, y, INITIAL_PARAMS)
    elapsed = time.perf_counter() - start
    print(f"solve time cost = {elapsed:g} seconds. ")
    a, b, c = result.params
    print(f"estimated abc = {a:g}, {b:g}, {c:g}")
    return 0