"""Angle-axis and quaternion conversions, point rotation and a polar normal sampler."""

from __future__ import annotations

import math
import random
import sys

import numpy as np

_EPSILON = sys.float_info.epsilon


def _as_vector(values, size: int, name: str) -> np.ndarray:
    array = np.asarray(values, dtype=float)
    if array.shape != (size,):
        raise ValueError(f"{name} must have shape ({size},), got {array.shape}")
    return array


def angle_axis_to_quaternion(angle_axis) -> np.ndarray:
    """Convert an angle-axis vector to a quaternion ``(w, x, y, z)``."""
    axis = _as_vector(angle_axis, 3, "angle_axis")
    theta_squared = float(axis @ axis)
    if theta_squared > _EPSILON:
        theta = math.sqrt(theta_squared)
        half_theta = 0.5 * theta
        k = math.sin(half_theta) / theta
        return np.array([math.cos(half_theta), *(axis * k)])
    # First-order approximation near the identity.
    return np.array([1.0, *(axis * 0.5)])


def quaternion_to_angle_axis(quaternion) -> np.ndarray:
    """Convert a quaternion ``(w, x, y, z)`` to an angle-axis vector."""
    q = _as_vector(quaternion, 4, "quaternion")
    imaginary = q[1:]
    sin_squared_theta = float(imaginary @ imaginary)
    if sin_squared_theta > _EPSILON:
        sin_theta = math.sqrt(sin_squared_theta)
        cos_theta = q[0]
        if cos_theta < 0.0:
            two_theta = 2.0 * math.atan2(-sin_theta, -cos_theta)
        else:
            two_theta = 2.0 * math.atan2(sin_theta, cos_theta)
        return imaginary * (two_theta / sin_theta)
    return imaginary * 2.0


def angle_axis_rotate_point(angle_axis, point) -> np.ndarray:
    """Rotate ``point`` by the rotation that ``angle_axis`` describes (Rodrigues)."""
    axis = _as_vector(angle_axis, 3, "angle_axis")
    pt = _as_vector(point, 3, "point")
    theta_squared = float(axis @ axis)
    if theta_squared > _EPSILON:
        theta = math.sqrt(theta_squared)
        cos_theta = math.cos(theta)
        sin_theta = math.sin(theta)
        w = axis / theta
        w_cross_pt = np.cross(w, pt)
        tmp = float(w @ pt) * (1.0 - cos_theta)
        return pt * cos_theta + w_cross_pt * sin_theta + w * tmp
    # Near zero: R * pt ~ pt + w x pt.
    return pt + np.cross(axis, pt)


def rand_normal(rng: random.Random | None = None) -> float:
    """Draw a standard normal sample with the Marsaglia polar method."""
    source = rng if rng is not None else random
    while True:
        x1 = 2.0 * source.random() - 1.0
        x2 = 2.0 * source.random() - 1.0
        w = x1 * x1 + x2 * x2
        if 0.0 < w < 1.0:
            break
    return x1 * math.sqrt((-2.0 * math.log(w)) / w)