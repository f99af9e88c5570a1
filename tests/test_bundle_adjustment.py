import numpy as np
import pytest

from slamkit.bal import BALProblem, project_with_distortion
from slamkit.bundle_adjustment import (
    PoseAndIntrinsics,
    main,
    reprojection_residuals,
    solve_ba,
)
from slamkit.rotation import angle_axis_to_quaternion

CAMERAS = np.array([
    [0.0, 0.0, 0.0, 0.0, 0.0, -10.0, 500.0, 0.0, 0.0],
    [0.1, -0.05, 0.02, 0.5, 0.2, -12.0, 480.0, 0.01, 0.001],
])
POINTS = np.array([
    [-1.0, -1.0, 0.5],
    [1.0, -1.0, -0.5],
    [-1.0, 1.0, 0.2],
    [1.0, 1.0, -0.3],
    [0.0, 0.5, 1.0],
    [0.5, 0.0, -1.0],
    [-0.5, 0.3, 0.0],
    [0.2, -0.7, 0.4],
])


def _problem(use_quaternions=False, points=POINTS):
    camera_index, point_index, observations = [], [], []
    for ci, camera in enumerate(CAMERAS):
        for pi, point in enumerate(POINTS):
            camera_index.append(ci)
            point_index.append(pi)
            observations.append(project_with_distortion(camera, point))
    cameras = CAMERAS
    if use_quaternions:
        cameras = np.array([np.concatenate([angle_axis_to_quaternion(c[:3]), c[3:]])
                            for c in CAMERAS])
    return BALProblem(cameras=cameras, points=points, camera_index=camera_index,
                      point_index=point_index, observations=observations,
                      use_quaternions=use_quaternions)


def test_pose_round_trip():
    camera = CAMERAS[1]
    pose = PoseAndIntrinsics.from_camera(camera)
    np.testing.assert_allclose(pose.to_camera(), camera, atol=1e-12)


def test_from_camera_rejects_wrong_size():
    with pytest.raises(ValueError):
        PoseAndIntrinsics.from_camera([0.0] * 8)


def test_project_matches_bal_model():
    pose = PoseAndIntrinsics.from_camera(CAMERAS[1])
    for point in POINTS:
        np.testing.assert_allclose(pose.project(point),
                                   project_with_distortion(CAMERAS[1], point), atol=1e-9)


def test_identity_camera_projection():
    pose = PoseAndIntrinsics.from_camera(CAMERAS[0])
    # Point on the optical axis lands on the image centre.
    np.testing.assert_allclose(pose.project([0.0, 0.0, 0.0]), [0.0, 0.0], atol=1e-12)


def test_residuals_zero_for_exact_observations():
    residuals = reprojection_residuals(_problem())
    assert residuals.shape == (len(CAMERAS) * len(POINTS), 2)
    assert np.max(np.abs(residuals)) < 1e-9


def test_residuals_agree_between_rotation_forms():
    shifted = POINTS + 0.1
    plain = reprojection_residuals(_problem(points=shifted))
    quaternion = reprojection_residuals(_problem(use_quaternions=True, points=shifted))
    np.testing.assert_allclose(plain, quaternion, atol=1e-9)
    assert np.max(np.abs(plain)) > 1.0


@pytest.mark.parametrize("use_quaternions", [False, True])
def test_solve_reduces_residuals(use_quaternions):
    problem = _problem(use_quaternions=use_quaternions, points=POINTS + 0.05)
    before = np.max(np.abs(reprojection_residuals(problem)))
    solve_ba(problem, 40)
    after = np.max(np.abs(reprojection_residuals(problem)))
    assert after < 1e-3
    assert after < before
    assert problem.cameras.shape == (2, 10 if use_quaternions else 9)


def test_solve_rejects_empty_problem():
    problem = BALProblem(cameras=CAMERAS, points=POINTS, camera_index=[], point_index=[],
                         observations=np.zeros((0, 2)))
    with pytest.raises(ValueError):
        solve_ba(problem, 10)


def _write_bal(path, problem):
    lines = [f"{problem.num_cameras} {problem.num_points} {problem.num_observations}"]
    for ci, pi, (x, y) in zip(problem.camera_index, problem.point_index, problem.observations):
        lines.append(f"{ci} {pi} {x!r} {y!r}")
    lines.extend(repr(float(v)) for v in problem.cameras.ravel())
    lines.extend(repr(float(v)) for v in problem.points.ravel())
    path.write_text("\n".join(lines) + "\n")


def test_main_writes_ply_files(tmp_path, monkeypatch):
    data = tmp_path / "problem.txt"
    _write_bal(data, _problem())
    monkeypatch.chdir(tmp_path)
    assert main([str(data), "--seed", "1", "--iterations", "20"]) == 0
    for name in ("initial.ply", "final.ply"):
        lines = (tmp_path / name).read_text().splitlines()
        assert lines[0] == "ply"
        assert "element vertex 10" in lines


def test_main_missing_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert main([str(tmp_path / "absent.txt")]) == 1