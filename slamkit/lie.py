"""Rotation and rigid-motion groups SO(3) and SE(3) with their Lie algebras."""

from __future__ import annotations

import math

import numpy as np

from slamkit.rotation import angle_axis_to_quaternion, quaternion_to_angle_axis

_ORTHOGONALITY_TOLERANCE = 1e-6


def _as_array(values, shape: tuple[int, ...], name: str) -> np.ndarray:
    array = np.asarray(values, dtype=float)
    if array.shape != shape:
        raise ValueError(f"{name} must have shape {shape}, got {array.shape}")
    return array


def hat(vector) -> np.ndarray:
    """Return the skew-symmetric matrix of a 3-vector."""
    x, y, z = _as_array(vector, (3,), "vector")
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def vee(matrix) -> np.ndarray:
    """Return the 3-vector of a skew-symmetric matrix."""
    m = _as_array(matrix, (3, 3), "matrix")
    return np.array([m[2, 1], m[0, 2], m[1, 0]])


def euler_angles_zyx(matrix) -> np.ndarray:
    """Return (yaw, pitch, roll) with R = Rz(yaw) Ry(pitch) Rx(roll); yaw lies in [0, pi]."""
    m = _as_array(matrix, (3, 3), "matrix")
    first = math.atan2(m[1, 0], m[0, 0])
    c2 = math.hypot(m[2, 2], m[2, 1])
    if first < 0.0:
        first += math.pi
        second = math.atan2(-m[2, 0], -c2)
    else:
        second = math.atan2(-m[2, 0], c2)
    s1, c1 = math.sin(first), math.cos(first)
    third = math.atan2(s1 * m[0, 2] - c1 * m[1, 2], c1 * m[1, 1] - s1 * m[0, 1])
    return np.array([first, second, third])


def _quaternion_product(p: np.ndarray, q: np.ndarray) -> np.ndarray:
    pw, px, py, pz = p
    qw, qx, qy, qz = q
    return np.array([
        pw * qw - px * qx - py * qy - pz * qz,
        pw * qx + px * qw + py * qz - pz * qy,
        pw * qy - px * qz + py * qw + pz * qx,
        pw * qz + px * qy - py * qx + pz * qw,
    ])


def _matrix_to_quaternion(m: np.ndarray) -> np.ndarray:
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0.0:
        s = math.sqrt(trace + 1.0) * 2.0
        return np.array([0.25 * s, (m[2, 1] - m[1, 2]) / s,
                         (m[0, 2] - m[2, 0]) / s, (m[1, 0] - m[0, 1]) / s])
    if m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
        s = math.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2]) * 2.0
        return np.array([(m[2, 1] - m[1, 2]) / s, 0.25 * s,
                         (m[0, 1] + m[1, 0]) / s, (m[0, 2] + m[2, 0]) / s])
    if m[1, 1] > m[2, 2]:
        s = math.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2]) * 2.0
        return np.array([(m[0, 2] - m[2, 0]) / s, (m[0, 1] + m[1, 0]) / s,
                         0.25 * s, (m[1, 2] + m[2, 1]) / s])
    s = math.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1]) * 2.0
    return np.array([(m[1, 0] - m[0, 1]) / s, (m[0, 2] + m[2, 0]) / s,
                     (m[1, 2] + m[2, 1]) / s, 0.25 * s])


def _left_jacobian(omega: np.ndarray) -> np.ndarray:
    theta = float(np.linalg.norm(omega))
    phi = hat(omega)
    if theta < 1e-8:
        return np.eye(3) + 0.5 * phi + (phi @ phi) / 6.0
    theta2 = theta * theta
    return (np.eye(3)
            + (1.0 - math.cos(theta)) / theta2 * phi
            + (theta - math.sin(theta)) / (theta2 * theta) * (phi @ phi))


class SO3:
    """A 3D rotation stored as a unit quaternion ``(w, x, y, z)``."""

    __slots__ = ("_q",)

    def __init__(self, quaternion=(1.0, 0.0, 0.0, 0.0)):
        q = _as_array(quaternion, (4,), "quaternion")
        norm = float(np.linalg.norm(q))
        if norm < 1e-12:
            raise ValueError("quaternion must not be zero")
        self._q = q / norm

    @classmethod
    def exp(cls, omega) -> "SO3":
        """Map a rotation vector to a rotation."""
        return cls(angle_axis_to_quaternion(omega))

    @classmethod
    def from_quaternion(cls, quaternion) -> "SO3":
        """Build a rotation from a quaternion ``(w, x, y, z)``; it is normalised."""
        return cls(quaternion)

    @classmethod
    def from_matrix(cls, matrix) -> "SO3":
        """Build a rotation from an orthogonal matrix with determinant one."""
        m = _as_array(matrix, (3, 3), "matrix")
        if (not np.allclose(m @ m.T, np.eye(3), atol=_ORTHOGONALITY_TOLERANCE)
                or abs(np.linalg.det(m) - 1.0) > _ORTHOGONALITY_TOLERANCE):
            raise ValueError("matrix is not a rotation matrix")
        return cls(_matrix_to_quaternion(m))

    def log(self) -> np.ndarray:
        """Return the rotation vector of this rotation."""
        return quaternion_to_angle_axis(self._q)

    def inverse(self) -> "SO3":
        w, x, y, z = self._q
        return SO3((w, -x, -y, -z))

    def as_matrix(self) -> np.ndarray:
        w, x, y, z = self._q
        return np.array([
            [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
            [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
            [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
        ])

    def unit_quaternion(self) -> np.ndarray:
        return self._q.copy()

    def __mul__(self, other):
        if isinstance(other, SO3):
            return SO3(_quaternion_product(self._q, other._q))
        if isinstance(other, (np.ndarray, list, tuple)):
            return self.as_matrix() @ _as_array(other, (3,), "point")
        return NotImplemented

    def __repr__(self) -> str:
        return f"SO3(quaternion={self._q.tolist()})"


class SE3:
    """A rigid motion: a rotation followed by a translation."""

    __slots__ = ("rotation", "translation")

    def __init__(self, rotation: SO3 | None = None, translation=None):
        self.rotation = rotation if rotation is not None else SO3()
        self.translation = (np.zeros(3) if translation is None
                            else _as_array(translation, (3,), "translation").copy())

    @classmethod
    def exp(cls, xi) -> "SE3":
        """Map a twist ``(rho, omega)`` (translation part first) to a motion."""
        twist = _as_array(xi, (6,), "xi")
        rho, omega = twist[:3], twist[3:]
        return cls(SO3.exp(omega), _left_jacobian(omega) @ rho)

    @classmethod
    def from_quaternion_translation(cls, quaternion, translation) -> "SE3":
        return cls(SO3.from_quaternion(quaternion), translation)

    def log(self) -> np.ndarray:
        """Return the twist ``(rho, omega)`` of this motion."""
        omega = self.rotation.log()
        rho = np.linalg.solve(_left_jacobian(omega), self.translation)
        return np.concatenate([rho, omega])

    def inverse(self) -> "SE3":
        inverse_rotation = self.rotation.inverse()
        return SE3(inverse_rotation, -(inverse_rotation * self.translation))

    def as_matrix(self) -> np.ndarray:
        matrix = np.eye(4)
        matrix[:3, :3] = self.rotation.as_matrix()
        matrix[:3, 3] = self.translation
        return matrix

    def adjoint(self) -> np.ndarray:
        """Return the 6x6 adjoint matrix acting on twists ``(rho, omega)``."""
        r = self.rotation.as_matrix()
        adj = np.zeros((6, 6))
        adj[:3, :3] = r
        adj[:3, 3:] = hat(self.translation) @ r
        adj[3:, 3:] = r
        return adj

    def __mul__(self, other):
        if isinstance(other, SE3):
            return SE3(self.rotation * other.rotation,
                       self.rotation * other.translation + self.translation)
        if isinstance(other, (np.ndarray, list, tuple)):
            return self.rotation * other + self.translation
        return NotImplemented

    def __repr__(self) -> str:
        return f"SE3(rotation={self.rotation!r}, translation={self.translation.tolist()})"


def change_frame(q1, t1, q2, t2, point) -> np.ndarray:
    """Move ``point`` from frame 1 to frame 2, both given as world-to-frame poses.

    Quaternions are ``(w, x, y, z)`` and are normalised first.
    """
    t1w = SE3.from_quaternion_translation(q1, t1)
    t2w = SE3.from_quaternion_translation(q2, t2)
    return (t2w * t1w.inverse()) * _as_array(point, (3,), "point")