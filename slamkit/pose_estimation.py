"""Camera pose from 3D-2D correspondences (PnP) and from 3D-3D correspondences (ICP)."""

from __future__ import annotations

from typing import Callable, Sequence

import numpy as np

from slamkit.lie import SE3, hat
from slamkit.orb import KeyPoint, Match

DEPTH_SCALE = 5000.0
DEFAULT_ITERATIONS = 10
CONVERGENCE_THRESHOLD = 1e-6
_DOF = 6
_MAX_TRIALS = 10

_Terms = Callable[[SE3], "tuple[np.ndarray, np.ndarray]"]


def _identity() -> SE3:
    return SE3.exp(np.zeros(_DOF))


def _intrinsics(k) -> tuple[float, float, float, float]:
    matrix = np.asarray(k, dtype=float)
    if matrix.shape != (3, 3):
        raise ValueError(f"camera matrix must have shape (3, 3), got {matrix.shape}")
    return float(matrix[0, 0]), float(matrix[1, 1]), float(matrix[0, 2]), float(matrix[1, 2])


def _check_pairs(first, second, second_width: int) -> tuple[np.ndarray, np.ndarray]:
    a = np.asarray(first, dtype=float)
    b = np.asarray(second, dtype=float)
    if a.ndim != 2 or a.shape[1] != 3:
        raise ValueError(f"3D points must have shape (n, 3), got {a.shape}")
    if b.ndim != 2 or b.shape[1] != second_width:
        raise ValueError(f"points must have shape (n, {second_width}), got {b.shape}")
    if len(a) != len(b):
        raise ValueError("point sets must have the same length")
    if len(a) == 0:
        raise ValueError("at least one point pair is needed")
    return a, b


def _transform(pose: SE3, points: np.ndarray) -> np.ndarray:
    return points @ pose.rotation.as_matrix().T + np.asarray(pose.translation, dtype=float)


def pixel_to_camera(point, k) -> np.ndarray:
    """Convert pixel coordinates to normalised camera coordinates."""
    fx, fy, cx, cy = _intrinsics(k)
    u, v = (float(value) for value in point)
    return np.array([(u - cx) / fx, (v - cy) / fy])


def build_3d_2d_pairs(matches: Sequence[Match], keypoints1: Sequence[KeyPoint],
                      keypoints2: Sequence[KeyPoint], depth, k) -> tuple[np.ndarray, np.ndarray]:
    """Lift matched first-image keypoints to 3D with a depth image (scale 1/5000).

    Matches with invalid indices, keypoints outside the depth image and zero depth are
    skipped. Returns ``(points_3d, points_2d)`` where the 2D points come from the second image.
    """
    depths = np.asarray(depth)
    if depths.ndim != 2:
        raise ValueError(f"depth must be two-dimensional, got shape {depths.shape}")
    rows, cols = depths.shape
    points_3d = []
    points_2d = []
    for match in matches:
        if not (0 <= match.query_idx < len(keypoints1) and 0 <= match.train_idx < len(keypoints2)):
            continue
        first = keypoints1[match.query_idx]
        x, y = int(first.x), int(first.y)
        if not (0 <= y < rows and 0 <= x < cols):
            continue
        d = depths[y, x]
        if d == 0:
            continue
        dd = float(d) / DEPTH_SCALE
        normalised = pixel_to_camera((first.x, first.y), k)
        points_3d.append((normalised[0] * dd, normalised[1] * dd, dd))
        second = keypoints2[match.train_idx]
        points_2d.append((second.x, second.y))
    return (np.array(points_3d, dtype=float).reshape(-1, 3),
            np.array(points_2d, dtype=float).reshape(-1, 2))


def _projection_terms(pose: SE3, points_3d: np.ndarray, points_2d: np.ndarray,
                      fx: float, fy: float, cx: float, cy: float) -> tuple[np.ndarray, np.ndarray]:
    """Reprojection errors (observed minus projected) and their left-perturbation Jacobians."""
    pc = _transform(pose, points_3d)
    x, y, z = pc[:, 0], pc[:, 1], pc[:, 2]
    inv_z = 1.0 / z
    inv_z2 = inv_z * inv_z
    projected = np.column_stack([fx * x * inv_z + cx, fy * y * inv_z + cy])
    errors = points_2d - projected
    zeros = np.zeros_like(x)
    row0 = np.column_stack([
        -fx * inv_z, zeros, fx * x * inv_z2,
        fx * x * y * inv_z2, -fx - fx * x * x * inv_z2, fx * y * inv_z,
    ])
    row1 = np.column_stack([
        zeros, -fy * inv_z, fy * y * inv_z2,
        fy + fy * y * y * inv_z2, -fy * x * y * inv_z2, -fy * x * inv_z,
    ])
    return errors, np.stack([row0, row1], axis=1)


def _normal_equations(errors: np.ndarray, jacobians: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    hessian = np.einsum("nij,nik->jk", jacobians, jacobians)
    gradient = np.einsum("nij,ni->j", jacobians, errors)
    return hessian, gradient


def pnp_gauss_newton(points_3d, points_2d, k, pose: SE3 | None = None,
                     iterations: int = DEFAULT_ITERATIONS) -> SE3:
    """Refine a camera pose by Gauss-Newton on the reprojection error.

    Stops when the step is not finite, the cost stops falling or the step is below 1e-6.
    """
    p3, p2 = _check_pairs(points_3d, points_2d, 2)
    fx, fy, cx, cy = _intrinsics(k)
    current = pose if pose is not None else _identity()
    last_cost = 0.0
    for iteration in range(iterations):
        errors, jacobians = _projection_terms(current, p3, p2, fx, fy, cx, cy)
        cost = float((errors * errors).sum())
        hessian, gradient = _normal_equations(errors, jacobians)
        try:
            step = np.linalg.solve(hessian, -gradient)
        except np.linalg.LinAlgError:
            break
        if np.isnan(step[0]):
            break
        if iteration > 0 and cost >= last_cost:
            break
        current = SE3.exp(step) * current
        last_cost = cost
        if np.linalg.norm(step) < CONVERGENCE_THRESHOLD:
            break
    return current


def _levenberg(terms: _Terms, pose: SE3, iterations: int) -> SE3:
    """Levenberg-Marquardt over left-multiplicative SE(3) updates."""
    if iterations < 0:
        raise ValueError("iterations must not be negative")
    current = pose
    errors, jacobians = terms(current)
    cost = float((errors * errors).sum())
    identity = np.eye(_DOF)
    damping: float | None = None
    growth = 2.0
    for _ in range(iterations):
        hessian, gradient = _normal_equations(errors, jacobians)
        if damping is None:
            damping = 1e-5 * max(float(np.diag(hessian).max()), 1e-12)
        improved = False
        step = np.zeros(_DOF)
        for _trial in range(_MAX_TRIALS):
            try:
                step = np.linalg.solve(hessian + damping * identity, -gradient)
            except np.linalg.LinAlgError:
                damping *= growth
                growth *= 2.0
                continue
            if not np.all(np.isfinite(step)):
                damping *= growth
                growth *= 2.0
                continue
            candidate = SE3.exp(step) * current
            new_errors, new_jacobians = terms(candidate)
            new_cost = float((new_errors * new_errors).sum())
            if np.isfinite(new_cost) and new_cost < cost:
                current, errors, jacobians, cost = candidate, new_errors, new_jacobians, new_cost
                damping = max(damping / 3.0, 1e-15)
                growth = 2.0
                improved = True
                break
            damping *= growth
            growth *= 2.0
        if not improved or np.linalg.norm(step) < 1e-12:
            break
    return current


def pnp_levenberg(points_3d, points_2d, k, pose: SE3 | None = None,
                  iterations: int = DEFAULT_ITERATIONS) -> SE3:
    """Refine a camera pose by Levenberg-Marquardt on the reprojection error."""
    p3, p2 = _check_pairs(points_3d, points_2d, 2)
    fx, fy, cx, cy = _intrinsics(k)
    start = pose if pose is not None else _identity()
    return _levenberg(lambda p: _projection_terms(p, p3, p2, fx, fy, cx, cy), start, iterations)


def icp_svd(points1, points2) -> tuple[np.ndarray, np.ndarray]:
    """Closed-form alignment ``p1 = R p2 + t`` via the SVD of the cross-covariance."""
    p1, p2 = _check_pairs(points1, points2, 3)
    center1 = p1.mean(axis=0)
    center2 = p2.mean(axis=0)
    w = (p1 - center1).T @ (p2 - center2)
    u, _, vt = np.linalg.svd(w)
    rotation = u @ vt
    if np.linalg.det(rotation) < 0:
        rotation = -rotation
    translation = center1 - rotation @ center2
    return rotation, translation


def _icp_terms(pose: SE3, p1: np.ndarray, p2: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    transformed = _transform(pose, p2)
    errors = p1 - transformed
    minus_identity = np.broadcast_to(-np.eye(3), (len(p1), 3, 3))
    skews = np.stack([hat(point) for point in transformed])
    return errors, np.concatenate([minus_identity, skews], axis=2)


def icp_bundle_adjustment(points1, points2,
                          iterations: int = DEFAULT_ITERATIONS) -> tuple[np.ndarray, np.ndarray]:
    """Iterative alignment ``p1 = R p2 + t`` from the identity; returns ``(R, t)``."""
    p1, p2 = _check_pairs(points1, points2, 3)
    pose = _levenberg(lambda p: _icp_terms(p, p1, p2), _identity(), iterations)
    return pose.rotation.as_matrix(), np.asarray(pose.translation, dtype=float)