import numpy as np
import pytest

from slamkit.lie import SE3
from slamkit.orb import KeyPoint, Match
from slamkit.pose_estimation import (
    build_3d_2d_pairs,
    icp_bundle_adjustment,
    icp_svd,
    pixel_to_camera,
    pnp_gauss_newton,
    pnp_levenberg,
)

K = np.array([[520.9, 0.0, 325.1], [0.0, 521.0, 249.7], [0.0, 0.0, 1.0]])
TRUTH = SE3.exp(np.array([0.05, -0.1, 0.2, 0.1, -0.05, 0.08]))


def _scene(count=20, seed=3):
    rng = np.random.default_rng(seed)
    points = rng.uniform([-1.0, -1.0, 4.0], [1.0, 1.0, 8.0], size=(count, 3))
    camera = points @ TRUTH.rotation.as_matrix().T + TRUTH.translation
    pixels = np.column_stack([
        K[0, 0] * camera[:, 0] / camera[:, 2] + K[0, 2],
        K[1, 1] * camera[:, 1] / camera[:, 2] + K[1, 2],
    ])
    return points, pixels


def test_pixel_to_camera_principal_point_is_origin():
    assert np.allclose(pixel_to_camera((325.1, 249.7), K), [0.0, 0.0])


def test_pixel_to_camera_one_focal_length_away():
    assert np.allclose(pixel_to_camera((325.1 + 520.9, 249.7 + 521.0), K), [1.0, 1.0])


def test_pixel_to_camera_rejects_bad_matrix():
    with pytest.raises(ValueError):
        pixel_to_camera((1.0, 2.0), np.eye(2))


def test_build_pairs_filters_and_lifts():
    k = np.array([[100.0, 0.0, 2.0], [0.0, 100.0, 2.0], [0.0, 0.0, 1.0]])
    depth = np.zeros((5, 5), dtype=np.uint16)
    depth[2, 2] = 10000
    keypoints1 = [KeyPoint(2.0, 2.0), KeyPoint(1.0, 1.0), KeyPoint(9.0, 9.0)]
    keypoints2 = [KeyPoint(7.0, 8.0), KeyPoint(3.0, 4.0)]
    matches = [
        Match(0, 0, 5),   # valid
        Match(1, 1, 5),   # zero depth
        Match(2, 0, 5),   # outside the depth image
        Match(0, 5, 5),   # invalid train index
    ]
    points_3d, points_2d = build_3d_2d_pairs(matches, keypoints1, keypoints2, depth, k)
    assert points_3d.shape == (1, 3)
    assert np.allclose(points_3d[0], [0.0, 0.0, 2.0])
    assert np.allclose(points_2d[0], [7.0, 8.0])


def test_build_pairs_empty_when_nothing_matches():
    depth = np.zeros((4, 4))
    points_3d, points_2d = build_3d_2d_pairs([], [], [], depth, K)
    assert points_3d.shape == (0, 3)
    assert points_2d.shape == (0, 2)


def test_pnp_gauss_newton_recovers_pose():
    points, pixels = _scene()
    pose = pnp_gauss_newton(points, pixels, K)
    assert np.allclose(pose.as_matrix(), TRUTH.as_matrix(), atol=1e-6)


def test_pnp_gauss_newton_keeps_exact_pose():
    points, pixels = _scene()
    pose = pnp_gauss_newton(points, pixels, K, TRUTH, 5)
    assert np.allclose(pose.as_matrix(), TRUTH.as_matrix(), atol=1e-9)


def test_pnp_levenberg_recovers_pose():
    points, pixels = _scene()
    pose = pnp_levenberg(points, pixels, K)
    assert np.allclose(pose.as_matrix(), TRUTH.as_matrix(), atol=1e-6)


def test_pnp_rejects_mismatched_lengths():
    points, pixels = _scene()
    with pytest.raises(ValueError):
        pnp_gauss_newton(points, pixels[:-1], K)
    with pytest.raises(ValueError):
        pnp_levenberg(points[:, :2], pixels, K)


def _icp_scene(seed=5):
    rng = np.random.default_rng(seed)
    points2 = rng.uniform(-2.0, 2.0, size=(30, 3))
    rotation = TRUTH.rotation.as_matrix()
    points1 = points2 @ rotation.T + TRUTH.translation
    return points1, points2


def test_icp_svd_recovers_transform():
    points1, points2 = _icp_scene()
    rotation, translation = icp_svd(points1, points2)
    assert np.allclose(rotation, TRUTH.rotation.as_matrix(), atol=1e-9)
    assert np.allclose(translation, TRUTH.translation, atol=1e-9)
    assert np.isclose(np.linalg.det(rotation), 1.0)


def test_icp_svd_identical_sets_give_identity():
    points, _ = _icp_scene()
    rotation, translation = icp_svd(points, points)
    assert np.allclose(rotation, np.eye(3), atol=1e-9)
    assert np.allclose(translation, np.zeros(3), atol=1e-9)


def test_icp_svd_rejects_bad_input():
    with pytest.raises(ValueError):
        icp_svd(np.zeros((3, 3)), np.zeros((4, 3)))
    with pytest.raises(ValueError):
        icp_svd(np.zeros((0, 3)), np.zeros((0, 3)))


def test_icp_bundle_adjustment_recovers_transform():
    points1, points2 = _icp_scene()
    rotation, translation = icp_bundle_adjustment(points1, points2)
    assert np.allclose(rotation, TRUTH.rotation.as_matrix(), atol=1e-6)
    assert np.allclose(translation, TRUTH.translation, atol=1e-6)


def test_icp_methods_agree():
    points1, points2 = _icp_scene(seed=11)
    r_svd, t_svd = icp_svd(points1, points2)
    r_ba, t_ba = icp_bundle_adjustment(points1, points2, 20)
    assert np.allclose(r_svd, r_ba, atol=1e-6)
    assert np.allclose(t_svd, t_ba, atol=1e-6)


def test_icp_bundle_adjustment_rejects_negative_iterations():
    points1, points2 = _icp_scene()
    with pytest.raises(ValueError):
        icp_bundle_adjustment(points1, points2, -1)