"""Bundle-adjustment problems in the BAL text format."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Callable, Iterator, TypeVar

import numpy as np

from slamkit.rotation import (
    angle_axis_rotate_point,
    angle_axis_to_quaternion,
    quaternion_to_angle_axis,
    rand_normal,
)

_T = TypeVar("_T")

POINT_BLOCK_SIZE = 3
_ANGLE_AXIS_CAMERA_SIZE = 9
_QUATERNION_CAMERA_SIZE = 10


class BALFormatError(ValueError):
    """Raised when a BAL data file is truncated or holds a malformed value."""


def median(values) -> float:
    """Return the element at position ``n // 2`` of the sorted values."""
    ordered = sorted(float(v) for v in values)
    if not ordered:
        raise ValueError("median of an empty sequence")
    return ordered[len(ordered) // 2]


def project_with_distortion(camera, point) -> np.ndarray:
    """Project ``point`` with a 9-parameter camera (angle-axis, translation, f, k1, k2).

    The result is relative to the image centre, with the camera looking down -z.
    """
    cam = np.asarray(camera, dtype=float)
    if cam.shape != (_ANGLE_AXIS_CAMERA_SIZE,):
        raise ValueError(f"camera must have shape (9,), got {cam.shape}")
    p = angle_axis_rotate_point(cam[:3], point) + cam[3:6]
    xp = -p[0] / p[2]
    yp = -p[1] / p[2]
    focal, l1, l2 = cam[6], cam[7], cam[8]
    r2 = xp * xp + yp * yp
    distortion = 1.0 + r2 * (l1 + l2 * r2)
    return np.array([focal * distortion * xp, focal * distortion * yp])


def _take(tokens: Iterator[str], convert: Callable[[str], _T], what: str) -> _T:
    try:
        token = next(tokens)
    except StopIteration:
        raise BALFormatError(f"Invalid BAL data file: missing {what}") from None
    try:
        return convert(token)
    except ValueError:
        raise BALFormatError(f"Invalid BAL data file: bad {what} {token!r}") from None


@dataclass
class BALProblem:
    """Cameras, 3D points and their 2D observations."""

    cameras: np.ndarray
    points: np.ndarray
    camera_index: np.ndarray
    point_index: np.ndarray
    observations: np.ndarray
    use_quaternions: bool = False

    def __post_init__(self) -> None:
        self.cameras = np.array(self.cameras, dtype=float)
        self.points = np.array(self.points, dtype=float)
        self.camera_index = np.array(self.camera_index, dtype=int)
        self.point_index = np.array(self.point_index, dtype=int)
        self.observations = np.array(self.observations, dtype=float)
        block = self.camera_block_size()
        if self.cameras.ndim != 2 or self.cameras.shape[1] != block:
            raise ValueError(f"cameras must have shape (n, {block}), got {self.cameras.shape}")
        if self.points.ndim != 2 or self.points.shape[1] != POINT_BLOCK_SIZE:
            raise ValueError(f"points must have shape (n, 3), got {self.points.shape}")
        if self.observations.ndim != 2 or self.observations.shape[1] != 2:
            raise ValueError(f"observations must have shape (n, 2), got {self.observations.shape}")
        count = self.observations.shape[0]
        if self.camera_index.shape != (count,) or self.point_index.shape != (count,):
            raise ValueError("camera_index and point_index need one entry per observation")
        if count and (self.camera_index.min() < 0 or self.camera_index.max() >= len(self.cameras)):
            raise ValueError("camera index out of range")
        if count and (self.point_index.min() < 0 or self.point_index.max() >= len(self.points)):
            raise ValueError("point index out of range")

    @classmethod
    def load(cls, path, use_quaternions: bool = False) -> "BALProblem":
        """Read a BAL text file; with ``use_quaternions`` rotations are stored as quaternions."""
        with open(path, encoding="ascii") as handle:
            tokens = iter(handle.read().split())

        num_cameras = _take(tokens, int, "camera count")
        num_points = _take(tokens, int, "point count")
        num_observations = _take(tokens, int, "observation count")
        if min(num_cameras, num_points, num_observations) < 0:
            raise BALFormatError("Invalid BAL data file: negative count in header")

        camera_index = []
        point_index = []
        observations = []
        for _ in range(num_observations):
            camera_index.append(_take(tokens, int, "camera index"))
            point_index.append(_take(tokens, int, "point index"))
            observations.append((_take(tokens, float, "observation"),
                                 _take(tokens, float, "observation")))

        num_parameters = _ANGLE_AXIS_CAMERA_SIZE * num_cameras + POINT_BLOCK_SIZE * num_points
        parameters = np.array([_take(tokens, float, "parameter") for _ in range(num_parameters)])

        split = _ANGLE_AXIS_CAMERA_SIZE * num_cameras
        cameras = parameters[:split].reshape(num_cameras, _ANGLE_AXIS_CAMERA_SIZE)
        points = parameters[split:].reshape(num_points, POINT_BLOCK_SIZE)
        if use_quaternions:
            cameras = np.array(
                [np.concatenate([angle_axis_to_quaternion(camera[:3]), camera[3:]])
                 for camera in cameras]
            ).reshape(num_cameras, _QUATERNION_CAMERA_SIZE)

        return cls(
            cameras=cameras,
            points=points,
            camera_index=np.array(camera_index, dtype=int),
            point_index=np.array(point_index, dtype=int),
            observations=np.array(observations, dtype=float).reshape(num_observations, 2),
            use_quaternions=use_quaternions,
        )

    def camera_block_size(self) -> int:
        """Number of parameters per camera: 10 with quaternions, 9 otherwise."""
        return _QUATERNION_CAMERA_SIZE if self.use_quaternions else _ANGLE_AXIS_CAMERA_SIZE

    @property
    def num_cameras(self) -> int:
        return len(self.cameras)

    @property
    def num_points(self) -> int:
        return len(self.points)

    @property
    def num_observations(self) -> int:
        return len(self.observations)

    @property
    def num_parameters(self) -> int:
        return self.camera_block_size() * self.num_cameras + POINT_BLOCK_SIZE * self.num_points

    def camera_for_observation(self, index: int) -> np.ndarray:
        """Return a writable view of the camera seen in observation ``index``."""
        return self.cameras[self.camera_index[index]]

    def point_for_observation(self, index: int) -> np.ndarray:
        """Return a writable view of the point seen in observation ``index``."""
        return self.points[self.point_index[index]]

    def _translation_slice(self) -> slice:
        block = self.camera_block_size()
        return slice(block - 6, block - 3)

    def _angle_axis(self, camera: np.ndarray) -> np.ndarray:
        if self.use_quaternions:
            return quaternion_to_angle_axis(camera[:4])
        return camera[:3].copy()

    def _angle_axis_and_center(self, camera: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        angle_axis = self._angle_axis(camera)
        # c = -R^T t
        center = -angle_axis_rotate_point(-angle_axis, camera[self._translation_slice()])
        return angle_axis, center

    def _set_angle_axis_and_center(self, camera: np.ndarray, angle_axis, center) -> None:
        if self.use_quaternions:
            camera[:4] = angle_axis_to_quaternion(angle_axis)
        else:
            camera[:3] = angle_axis
        # t = -R c
        camera[self._translation_slice()] = -angle_axis_rotate_point(angle_axis, center)

    def write_to_file(self, path) -> None:
        """Write the problem in BAL text form, cameras always in angle-axis form."""
        lines = [f"{self.num_cameras} {self.num_cameras} {self.num_points} {self.num_observations}"]
        for cam, pt, (x, y) in zip(self.camera_index, self.point_index, self.observations):
            lines.append(f"{cam} {pt} {x:g} {y:g}")
        for camera in self.cameras:
            if self.use_quaternions:
                values = np.concatenate([quaternion_to_angle_axis(camera[:4]), camera[4:]])
            else:
                values = camera
            lines.extend(f"{value:.16g}" for value in values)
        lines.extend(f"{value:.16g}" for point in self.points for value in point)
        with open(path, "w", encoding="ascii") as handle:
            handle.write("\n".join(lines) + "\n")

    def write_to_ply(self, path) -> None:
        """Write camera centres (green) and points (white) as an ASCII PLY point cloud."""
        header = [
            "ply",
            "format ascii 1.0",
            f"element vertex {self.num_cameras + self.num_points}",
            "property float x",
            "property float y",
            "property float z",
            "property uchar red",
            "property uchar green",
            "property uchar blue",
            "end_header",
        ]
        with open(path, "w", encoding="ascii") as handle:
            handle.write("\n".join(header) + "\n")
            for camera in self.cameras:
                _, center = self._angle_axis_and_center(camera)
                handle.write(f"{center[0]:g} {center[1]:g} {center[2]:g} 0 255 0\n")
            for point in self.points:
                handle.write("".join(f"{value:g} " for value in point) + " 255 255 255\n")

    def normalize(self) -> None:
        """Centre the scene on the median point and scale its median absolute deviation to 100."""
        if self.num_points == 0:
            raise ValueError("cannot normalize a problem without points")
        center_point = np.array([median(self.points[:, axis]) for axis in range(POINT_BLOCK_SIZE)])
        deviation = median(np.abs(self.points - center_point).sum(axis=1))
        scale = 100.0 / float(deviation)

        self.points[:] = scale * (self.points - center_point)
        for camera in self.cameras:
            angle_axis, center = self._angle_axis_and_center(camera)
            self._set_angle_axis_and_center(camera, angle_axis, scale * (center - center_point))

    def perturb(self, rotation_sigma: float, translation_sigma: float, point_sigma: float,
                rng: random.Random | None = None) -> None:
        """Add Gaussian noise to points, camera rotations and camera translations."""
        if point_sigma < 0.0 or rotation_sigma < 0.0 or translation_sigma < 0.0:
            raise ValueError("noise sigmas must not be negative")

        def noise(sigma: float) -> np.ndarray:
            return np.array([rand_normal(rng) * sigma for _ in range(3)])

        if point_sigma > 0.0:
            for point in self.points:
                point += noise(point_sigma)

        translation = self._translation_slice()
        for camera in self.cameras:
            angle_axis, center = self._angle_axis_and_center(camera)
            if rotation_sigma > 0.0:
                angle_axis = angle_axis + noise(rotation_sigma)
            self._set_angle_axis_and_center(camera, angle_axis, center)
            if translation_sigma > 0.0:
                camera[translation] += noise(translation_sigma)