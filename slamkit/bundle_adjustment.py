"""Bundle adjustment of BAL problems with a robust (Huber) least-squares solver."""

from __future__ import annotations

import argparse
import random
import sys
from dataclasses import dataclass, field

import numpy as np
import scipy.sparse
from scipy.optimize import OptimizeResult, least_squares

from slamkit.bal import BALProblem, BALFormatError
from slamkit.lie import SO3
from slamkit.rotation import angle_axis_to_quaternion, quaternion_to_angle_axis

_EPSILON = sys.float_info.epsilon
_CAMERA_SIZE = 9
_POINT_SIZE = 3
_HUBER_DELTA = 1.0
DEFAULT_ITERATIONS = 40


@dataclass
class PoseAndIntrinsics:
    """A camera: rotation, translation, focal length and two radial distortion terms."""

    rotation: SO3 = field(default_factory=SO3)
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    focal: float = 0.0
    k1: float = 0.0
    k2: float = 0.0

    @classmethod
    def from_camera(cls, data) -> "PoseAndIntrinsics":
        """Build from the 9 BAL camera parameters (angle-axis, t, f, k1, k2)."""
        values = np.asarray(data, dtype=float)
        if values.shape != (_CAMERA_SIZE,):
            raise ValueError(f"camera must have shape (9,), got {values.shape}")
        return cls(
            rotation=SO3.exp(values[:3]),
            translation=values[3:6].copy(),
            focal=float(values[6]),
            k1=float(values[7]),
            k2=float(values[8]),
        )

    def to_camera(self) -> np.ndarray:
        """Return the 9 BAL camera parameters."""
        return np.concatenate([
            self.rotation.log(),
            np.asarray(self.translation, dtype=float),
            [self.focal, self.k1, self.k2],
        ])

    def project(self, point) -> np.ndarray:
        """Project a world point to image coordinates relative to the image centre."""
        p = self.rotation * np.asarray(point, dtype=float) + self.translation
        xp = -p[0] / p[2]
        yp = -p[1] / p[2]
        r2 = xp * xp + yp * yp
        distortion = 1.0 + r2 * (self.k1 + self.k2 * r2)
        return np.array([self.focal * distortion * xp, self.focal * distortion * yp])


def _rotate_points(angle_axes: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Rotate each row of ``points`` by the matching angle-axis row."""
    theta2 = np.einsum("ij,ij->i", angle_axes, angle_axes)
    large = theta2 > _EPSILON
    theta = np.sqrt(np.where(large, theta2, 1.0))
    w = angle_axes / theta[:, None]
    cos_theta = np.cos(theta)[:, None]
    sin_theta = np.sin(theta)[:, None]
    dot = np.einsum("ij,ij->i", w, points)[:, None]
    rodrigues = points * cos_theta + np.cross(w, points) * sin_theta + w * dot * (1.0 - cos_theta)
    first_order = points + np.cross(angle_axes, points)
    return np.where(large[:, None], rodrigues, first_order)


def _project_all(cameras: np.ndarray, points: np.ndarray) -> np.ndarray:
    p = _rotate_points(cameras[:, :3], points) + cameras[:, 3:6]
    xp = -p[:, 0] / p[:, 2]
    yp = -p[:, 1] / p[:, 2]
    r2 = xp * xp + yp * yp
    scale = cameras[:, 6] * (1.0 + r2 * (cameras[:, 7] + cameras[:, 8] * r2))
    return np.column_stack([scale * xp, scale * yp])


def _angle_axis_cameras(problem: BALProblem) -> np.ndarray:
    if problem.use_quaternions:
        return np.array(
            [np.concatenate([quaternion_to_angle_axis(c[:4]), c[4:]]) for c in problem.cameras]
        ).reshape(problem.num_cameras, _CAMERA_SIZE)
    return problem.cameras.copy()


def reprojection_residuals(problem: BALProblem) -> np.ndarray:
    """Return predicted minus observed image coordinates, one row per observation."""
    cameras = _angle_axis_cameras(problem)
    predicted = _project_all(cameras[problem.camera_index], problem.points[problem.point_index])
    return predicted - problem.observations


def _jacobian_sparsity(problem: BALProblem) -> scipy.sparse.csr_matrix:
    m = problem.num_observations
    offset = _CAMERA_SIZE * problem.num_cameras
    cam_cols = _CAMERA_SIZE * problem.camera_index[:, None] + np.arange(_CAMERA_SIZE)
    pt_cols = offset + _POINT_SIZE * problem.point_index[:, None] + np.arange(_POINT_SIZE)
    cols = np.hstack([cam_cols, pt_cols])
    width = cols.shape[1]
    rows = np.concatenate([
        np.repeat(2 * np.arange(m) + r, width) for r in (0, 1)
    ])
    all_cols = np.concatenate([cols.ravel(), cols.ravel()])
    shape = (2 * m, offset + _POINT_SIZE * problem.num_points)
    return scipy.sparse.coo_matrix((np.ones(len(rows)), (rows, all_cols)), shape=shape).tocsr()


def solve_ba(problem: BALProblem, max_iterations: int = DEFAULT_ITERATIONS) -> OptimizeResult:
    """Refine cameras and points in place; returns the solver's result.

    Residuals use a Huber loss of width one, as each observation is a robust edge.
    """
    if problem.num_observations == 0:
        raise ValueError("problem has no observations")
    if max_iterations < 1:
        raise ValueError("max_iterations must be positive")

    num_cameras = problem.num_cameras
    split = _CAMERA_SIZE * num_cameras
    camera_index = problem.camera_index
    point_index = problem.point_index
    observations = problem.observations

    def residuals(params: np.ndarray) -> np.ndarray:
        cameras = params[:split].reshape(num_cameras, _CAMERA_SIZE)
        points = params[split:].reshape(-1, _POINT_SIZE)
        predicted = _project_all(cameras[camera_index], points[point_index])
        return (predicted - observations).ravel()

    x0 = np.concatenate([_angle_axis_cameras(problem).ravel(), problem.points.ravel()])
    result = least_squares(
        residuals,
        x0,
        jac_sparsity=_jacobian_sparsity(problem),
        loss="huber",
        f_scale=_HUBER_DELTA,
        method="trf",
        x_scale="jac",
        max_nfev=max_iterations,
    )

    cameras = result.x[:split].reshape(num_cameras, _CAMERA_SIZE)
    if problem.use_quaternions:
        problem.cameras[:] = np.array(
            [np.concatenate([angle_axis_to_quaternion(c[:3]), c[3:]]) for c in cameras]
        ).reshape(problem.cameras.shape)
    else:
        problem.cameras[:] = cameras
    problem.points[:] = result.x[split:].reshape(-1, _POINT_SIZE)
    return result


def main(argv=None) -> int:
    """Load a BAL file, perturb it, bundle-adjust it and write PLY snapshots."""
    parser = argparse.ArgumentParser(
        prog="bundle_adjustment", description="Bundle adjustment of a BAL dataset.")
    parser.add_argument("bal_data", help="BAL problem text file")
    parser.add_argument("--iterations", type=int, default=DEFAULT_ITERATIONS)
    parser.add_argument("--seed", type=int, default=None, help="seed for the perturbation")
    args = parser.parse_args(argv)

    try:
        problem = BALProblem.load(args.bal_data)
    except (OSError, BALFormatError) as error:
        print(f"Error: {error}", file=sys.stderr)
        return 1

    problem.normalize()
    problem.perturb(0.1, 0.5, 0.5, random.Random(args.seed))
    problem.write_to_ply("initial.ply")

    print("bal problem file loaded...")
    print(f"bal problem have {problem.num_cameras} cameras and {problem.num_points} points. ")
    print(f"Forming {problem.num_observations} observations. ")
    print("Solving BA ... ")
    result = solve_ba(problem, args.iterations)
    print(f"evaluations: {result.nfev}, final cost: {result.cost:g}, status: {result.message}")

    problem.write_to_ply("final.ply")
    return 0