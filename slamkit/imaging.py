"""Image undistortion and point clouds from RGB-D and stereo images."""

from __future__ import annotations

from typing import Sequence, TextIO

import numpy as np

from slamkit.lie import SE3

_POSE_FIELDS = 7
_MAX_DISPARITY = 96.0


def undistort_image(image, k1=-0.28340811, k2=0.07395907, p1=0.00019359, p2=1.76187114e-05,
                    fx=458.654, fy=457.296, cx=367.215, cy=248.375) -> np.ndarray:
    """Undistort a grey image with a radial-tangential model; pixels from outside become 0."""
    source = np.asarray(image)
    if source.ndim != 2:
        raise ValueError(f"image must be two-dimensional, got shape {source.shape}")
    rows, cols = source.shape
    v, u = np.mgrid[0:rows, 0:cols].astype(float)
    x = (u - cx) / fx
    y = (v - cy) / fy
    r2 = x * x + y * y
    radial = 1.0 + k1 * r2 + k2 * r2 * r2
    x_distorted = x * radial + 2.0 * p1 * x * y + p2 * (r2 + 2.0 * x * x)
    y_distorted = y * radial + p1 * (r2 + 2.0 * y * y) + 2.0 * p2 * x * y
    u_distorted = fx * x_distorted + cx
    v_distorted = fy * y_distorted + cy
    valid = (u_distorted >= 0) & (v_distorted >= 0) & (u_distorted < cols) & (v_distorted < rows)
    result = np.zeros_like(source)
    result[valid] = source[v_distorted[valid].astype(int), u_distorted[valid].astype(int)]
    return result


def read_poses(stream: TextIO) -> list[SE3]:
    """Read poses given as ``tx ty tz qx qy qz qw`` groups of whitespace-separated numbers."""
    tokens = stream.read().split()
    if len(tokens) % _POSE_FIELDS:
        raise ValueError(f"pose data must come in groups of {_POSE_FIELDS} numbers")
    try:
        values = [float(token) for token in tokens]
    except ValueError:
        raise ValueError("malformed number in pose data") from None
    poses = []
    for start in range(0, len(values), _POSE_FIELDS):
        tx, ty, tz, qx, qy, qz, qw = values[start:start + _POSE_FIELDS]
        poses.append(SE3.from_quaternion_translation((qw, qx, qy, qz), (tx, ty, tz)))
    return poses


def depth_to_point_cloud(color, depth, pose: SE3, fx=518.0, fy=519.0, cx=325.5, cy=253.5,
                         depth_scale=1000.0) -> np.ndarray:
    """Back-project every pixel with non-zero depth into the world.

    ``color`` is (H, W, 3) in RGB order; rows of the result are ``(x, y, z, r, g, b)``.
    """
    colors = np.asarray(color)
    depths = np.asarray(depth)
    if depths.ndim != 2:
        raise ValueError(f"depth must be two-dimensional, got shape {depths.shape}")
    if colors.ndim != 3 or colors.shape[:2] != depths.shape or colors.shape[2] < 3:
        raise ValueError("color must be (H, W, 3) with the same size as depth")
    v, u = np.nonzero(depths)
    z = depths[v, u].astype(float) / depth_scale
    x = (u - cx) * z / fx
    y = (v - cy) * z / fy
    camera_points = np.column_stack([x, y, z])
    world = camera_points @ pose.rotation.as_matrix().T + pose.translation
    rgb = colors[v, u, :3].astype(float)
    return np.hstack([world, rgb])


def join_map(colors: Sequence, depths: Sequence, poses: Sequence[SE3], fx=518.0, fy=519.0,
             cx=325.5, cy=253.5, depth_scale=1000.0) -> np.ndarray:
    """Merge the point clouds of several RGB-D frames taken from the given poses."""
    if not len(colors) == len(depths) == len(poses):
        raise ValueError("colors, depths and poses must have the same length")
    clouds = [
        depth_to_point_cloud(color, depth, pose, fx, fy, cx, cy, depth_scale)
        for color, depth, pose in zip(colors, depths, poses)
    ]
    if not clouds:
        return np.empty((0, 6))
    return np.vstack(clouds)


def disparity_to_point_cloud(left, disparity, fx=718.856, fy=718.856, cx=607.1928,
                             cy=185.2157, baseline=0.573) -> np.ndarray:
    """Triangulate pixels with disparity in (0, 96); rows are ``(x, y, z, intensity)``.

    The intensity is the left image value divided by 255.
    """
    grey = np.asarray(left)
    disparities = np.asarray(disparity, dtype=float)
    if grey.ndim != 2 or grey.shape != disparities.shape:
        raise ValueError("left and disparity must be two-dimensional and of the same shape")
    valid = (disparities > 0.0) & (disparities < _MAX_DISPARITY)
    v, u = np.nonzero(valid)
    depth = fx * baseline / disparities[v, u]
    x = (u - cx) / fx
    y = (v - cy) / fy
    intensity = grey[v, u].astype(float) / 255.0
    return np.column_stack([x * depth, y * depth, depth, intensity])