import random

import numpy as np
import pytest

from slamkit.bal import BALFormatError, BALProblem, median, project_with_distortion
from slamkit.rotation import angle_axis_to_quaternion

CAMERAS = [
    [0.01, -0.02, 0.03, 0.1, -0.2, -5.0, 500.0, 0.0, 0.0],
    [-0.05, 0.04, 0.02, 0.3, 0.1, -6.0, 480.0, 0.0, 0.0],
]
POINTS = [
    [0.5, 0.2, 1.0],
    [-0.4, 0.6, 0.8],
    [0.1, -0.3, 1.5],
]
OBSERVATIONS = [
    (0, 0, -10.5, 20.25),
    (0, 1, 3.0, -4.0),
    (1, 1, 7.5, 8.5),
    (1, 2, -1.0, 2.0),
]


def _write_bal(path, cameras=CAMERAS, points=POINTS, observations=OBSERVATIONS):
    lines = [f"{len(cameras)} {len(points)} {len(observations)}"]
    lines += [f"{c} {p} {x} {y}" for c, p, x, y in observations]
    lines += [repr(v) for camera in cameras for v in camera]
    lines += [repr(v) for point in points for v in point]
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def bal_file(tmp_path):
    return _write_bal(tmp_path / "problem.txt")


def _projections(problem):
    return np.array([
        project_with_distortion(problem.camera_for_observation(i), problem.point_for_observation(i))
        for i in range(problem.num_observations)
    ])


def test_load_reads_counts_and_blocks(bal_file):
    problem = BALProblem.load(bal_file)
    assert problem.num_cameras == 2
    assert problem.num_points == 3
    assert problem.num_observations == 4
    assert problem.camera_block_size() == 9
    assert problem.num_parameters == 2 * 9 + 3 * 3
    np.testing.assert_allclose(problem.cameras, CAMERAS)
    np.testing.assert_allclose(problem.points, POINTS)
    np.testing.assert_allclose(problem.observations[0], [-10.5, 20.25])


def test_observation_accessors_follow_indices(bal_file):
    problem = BALProblem.load(bal_file)
    np.testing.assert_allclose(problem.camera_for_observation(2), CAMERAS[1])
    np.testing.assert_allclose(problem.point_for_observation(3), POINTS[2])


def test_observation_accessors_return_views(bal_file):
    problem = BALProblem.load(bal_file)
    problem.point_for_observation(0)[0] = 42.0
    assert problem.points[0, 0] == 42.0


def test_load_with_quaternions(bal_file):
    problem = BALProblem.load(bal_file, use_quaternions=True)
    assert problem.camera_block_size() == 10
    assert problem.cameras.shape == (2, 10)
    np.testing.assert_allclose(problem.cameras[0, :4], angle_axis_to_quaternion(CAMERAS[0][:3]))
    np.testing.assert_allclose(problem.cameras[0, 4:], CAMERAS[0][3:])


def test_truncated_file_raises(tmp_path):
    path = tmp_path / "bad.txt"
    path.write_text("1 1 1\n0 0 1.0 2.0\n0.1 0.2\n")
    with pytest.raises(BALFormatError):
        BALProblem.load(path)


def test_malformed_value_raises(tmp_path):
    path = tmp_path / "bad.txt"
    path.write_text("1 x 1\n")
    with pytest.raises(BALFormatError):
        BALProblem.load(path)


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        BALProblem.load(tmp_path / "absent.txt")


def test_median_takes_upper_middle_element():
    assert median([4.0, 1.0, 3.0, 2.0]) == 3.0
    assert median([5.0, -1.0, 2.0]) == 2.0


def test_median_of_empty_raises():
    with pytest.raises(ValueError):
        median([])


def test_projection_with_identity_camera():
    camera = [0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0]
    np.testing.assert_allclose(project_with_distortion(camera, [1.0, 2.0, -1.0]), [1.0, 2.0])


def test_projection_rejects_wrong_camera_size():
    with pytest.raises(ValueError):
        project_with_distortion([0.0] * 10, [1.0, 2.0, 3.0])


def test_normalize_scales_deviation_and_centres(bal_file):
    problem = BALProblem.load(bal_file)
    problem.normalize()
    for axis in range(3):
        assert median(problem.points[:, axis]) == pytest.approx(0.0, abs=1e-9)
    assert median(np.abs(problem.points).sum(axis=1)) == pytest.approx(100.0)


def test_normalize_preserves_projections(bal_file):
    problem = BALProblem.load(bal_file)
    before = _projections(problem)
    problem.normalize()
    np.testing.assert_allclose(_projections(problem), before, rtol=1e-9, atol=1e-9)


def test_normalize_with_quaternions_matches_angle_axis(bal_file):
    plain = BALProblem.load(bal_file)
    quaternion = BALProblem.load(bal_file, use_quaternions=True)
    plain.normalize()
    quaternion.normalize()
    np.testing.assert_allclose(quaternion.points, plain.points)
    np.testing.assert_allclose(quaternion.cameras[:, 4:7], plain.cameras[:, 3:6], atol=1e-9)


def test_perturb_with_zero_sigma_keeps_problem(bal_file):
    problem = BALProblem.load(bal_file)
    cameras = problem.cameras.copy()
    points = problem.points.copy()
    problem.perturb(0.0, 0.0, 0.0)
    np.testing.assert_allclose(problem.cameras, cameras, atol=1e-12)
    np.testing.assert_allclose(problem.points, points)


def test_perturb_is_reproducible_with_seed(bal_file):
    first = BALProblem.load(bal_file)
    second = BALProblem.load(bal_file)
    first.perturb(0.1, 0.5, 0.5, random.Random(7))
    second.perturb(0.1, 0.5, 0.5, random.Random(7))
    np.testing.assert_allclose(first.cameras, second.cameras)
    np.testing.assert_allclose(first.points, second.points)
    assert not np.allclose(first.points, POINTS)


def test_perturb_leaves_intrinsics_alone(bal_file):
    problem = BALProblem.load(bal_file)
    problem.perturb(0.1, 0.5, 0.5, random.Random(3))
    np.testing.assert_allclose(problem.cameras[:, 6:], np.array(CAMERAS)[:, 6:])


def test_perturb_rejects_negative_sigma(bal_file):
    problem = BALProblem.load(bal_file)
    with pytest.raises(ValueError):
        problem.perturb(-0.1, 0.5, 0.5)


def test_write_to_file_layout(bal_file, tmp_path):
    problem = BALProblem.load(bal_file, use_quaternions=True)
    out = tmp_path / "out.txt"
    problem.write_to_file(out)
    lines = out.read_text().splitlines()
    assert lines[0] == "2 2 3 4"
    assert lines[1] == "0 0 -10.5 20.25"
    assert len(lines) == 1 + 4 + 2 * 9 + 3 * 3
    camera_values = [float(v) for v in lines[5:14]]
    np.testing.assert_allclose(camera_values, CAMERAS[0], atol=1e-12)
    point_values = [float(v) for v in lines[-9:]]
    np.testing.assert_allclose(point_values, np.ravel(POINTS))


def test_write_to_ply_layout(bal_file, tmp_path):
    problem = BALProblem.load(bal_file)
    out = tmp_path / "cloud.ply"
    problem.write_to_ply(out)
    lines = out.read_text().splitlines()
    assert lines[0] == "ply"
    assert lines[2] == "element vertex 5"
    assert lines[9] == "end_header"
    body = lines[10:]
    assert len(body) == 5
    assert all(line.endswith(" 0 255 0") for line in body[:2])
    assert all(line.endswith("  255 255 255") for line in body[2:])
    coordinates = [float(v) for v in body[2].split()[:3]]
    np.testing.assert_allclose(coordinates, POINTS[0])


def test_ply_camera_centre_projects_through_camera(bal_file, tmp_path):
    problem = BALProblem.load(bal_file)
    out = tmp_path / "cloud.ply"
    problem.write_to_ply(out)
    centre = np.array([float(v) for v in out.read_text().splitlines()[10].split()[:3]])
    camera = problem.cameras[0]
    from slamkit.rotation import angle_axis_rotate_point
    in_camera = angle_axis_rotate_point(camera[:3], centre) + camera[3:6]
    np.testing.assert_allclose(in_camera, np.zeros(3), atol=1e-4)


def test_invalid_index_rejected():
    with pytest.raises(ValueError):
        BALProblem(
            cameras=np.zeros((1, 9)),
            points=np.zeros((1, 3)),
            camera_index=[1],
            point_index=[0],
            observations=[[0.0, 0.0]],
        )