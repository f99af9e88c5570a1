# slamkit

Building blocks for visual SLAM on top of NumPy and SciPy, with Pillow for
reading and drawing images.

## What is in it

- **`slamkit.rotation`**: `angle_axis_to_quaternion`, `quaternion_to_angle_axis`
  and `angle_axis_rotate_point` (Rodrigues, with a first-order branch near
  zero). Quaternions are `(w, x, y, z)`. `rand_normal(rng)` draws a standard
  normal sample by the polar method from a `random.Random` (or the global one).
- **`slamkit.lie`**: `SO3` (stored as a unit quaternion) and `SE3` with `exp`,
  `log`, `inverse`, `as_matrix`, composition and point transformation by `*`,
  and `SE3.adjoint`. Twists are ordered `(rho, omega)`, translation part
  first. Also `hat`, `vee`, `euler_angles_zyx` (yaw, pitch, roll) and
  `change_frame`, which moves a point between two world-to-frame poses.
- **`slamkit.linalg`**: `gaussian_elimination` (no row exchanges; raises
  `SingularMatrixError` on a zero pivot), `solve_by_eigendecomposition`, and
  `compare_solvers`, which returns the solution from elimination, LU,
  Cholesky (`None` if the matrix is not positive definite), QR, SVD and the
  eigen-decomposition.
- **`slamkit.bal`**: `BALProblem` for Bundle Adjustment in the Large text
  files: `load` (optionally storing rotations as quaternions), `normalize`,
  `perturb`, `write_to_file`, `write_to_ply`. Malformed files raise
  `BALFormatError`. `project_with_distortion` projects a point with the
  9-parameter camera (angle-axis, translation, focal length, two radial terms);
  `median` returns the element at position `n // 2` of the sorted values.
- **`slamkit.bundle_adjustment`**: `PoseAndIntrinsics` (camera as an `SO3`,
  translation, focal length, `k1`, `k2`), `reprojection_residuals`, and
  `solve_ba`, which refines all cameras and points of a `BALProblem` in place
  with a sparse trust-region least-squares solver and a Huber loss of width 1.
- **`slamkit.curve_fitting`**: `generate_data` samples
  `y = exp(a x² + b x + c)` with Gaussian noise; `gauss_newton_fit` is a
  hand-written Gauss–Newton loop and `least_squares_fit` uses SciPy's
  Levenberg–Marquardt. Both return a `FitResult`.
- **`slamkit.pose_graph`**: `PoseGraph` reads and writes `.g2o` files with
  `VERTEX_SE3:QUAT` and `EDGE_SE3:QUAT` records (vertex 0 is fixed; an edge
  without an information matrix gets the identity), reports `total_error`,
  and `optimize` runs Levenberg–Marquardt with Lie-algebra errors and returns
  the error after each iteration. `Vertex` and `Edge` hold the graph.
- **`slamkit.trajectory`**: `parse_trajectory` and `read_trajectory` read
  lines of `time tx ty tz qx qy qz qw`; `trajectory_rmse` gives the RMSE of
  `log(gt⁻¹ · est)` over matching poses.
- **`slamkit.imaging`**: `undistort_image` (radial–tangential model),
  `read_poses`, `depth_to_point_cloud` and `join_map` for RGB-D frames
  (rows `x, y, z, r, g, b`), and `disparity_to_point_cloud` for stereo
  (rows `x, y, z, intensity`).
- **`slamkit.orb`**: `fast_detect` (FAST-9 with non-maximum suppression),
  `compute_orb` (256-bit oriented BRIEF as eight 32-bit words; `None` for
  keypoints within 16 pixels of the border), `hamming_distance` and
  `bf_match`, with `KeyPoint` and `Match` records.
- **`slamkit.pose_estimation`**: `pixel_to_camera`, `build_3d_2d_pairs`
  (lifts matches with a depth image scaled by 1/5000), `pnp_gauss_newton` and
  `pnp_levenberg` for 3D–2D pose, `icp_svd` and `icp_bundle_adjustment` for
  3D–3D alignment `p1 = R p2 + t`.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Library use

```python
import numpy as np

from slamkit.lie import SO3, SE3, hat, vee
from slamkit.rotation import angle_axis_to_quaternion, angle_axis_rotate_point

rotation = SO3.exp(np.array([0.0, 0.0, np.pi / 2]))   # quarter turn about z
print(rotation.as_matrix())
print(vee(hat(rotation.log())))
print(angle_axis_rotate_point([0.0, 0.0, np.pi / 2], [1.0, 0.0, 0.0]))
print(angle_axis_to_quaternion([0.0, 0.0, np.pi / 2]))

pose = SE3.exp(np.array([0.1, 0.2, 0.3, 0.0, 0.0, 0.1]))
print((pose.inverse() * pose).log())
```

Bundle adjustment on a BAL file:

```python
from slamkit.bal import BALProblem
from slamkit.bundle_adjustment import solve_ba

problem = BALProblem.load("problem-16-22106-pre.txt", False)
problem.normalize()
problem.write_to_ply("initial.ply")
solve_ba(problem, 40)
problem.write_to_ply("final.ply")
```

Pose-graph optimisation:

```python
from slamkit.pose_graph import PoseGraph

graph = PoseGraph.load("sphere.g2o")
print(graph.total_error())
graph.optimize(30)
with open("result.g2o", "w") as stream:
    graph.write(stream)
```

Trajectory error:

```python
from slamkit.trajectory import read_trajectory, trajectory_rmse

print(trajectory_rmse(read_trajectory("groundtruth.txt"), read_trajectory("estimated.txt")))
```

## Command-line tools

| Command | What it does |
| --- | --- |
| `slamkit-hello` | Prints `Hello SLAM`; `--student` and `--year N` print the student greeting instead. |
| `slamkit-linalg` | Builds a random positive-definite system (`--size`, `--seed`) and prints each solver's answer and the singular values. |
| `slamkit-curve-fit` | Samples noisy `exp(x² + 2x + 1)` and fits it; `--method gauss-newton` (default) or `least-squares`, `--seed`, `--samples`. |
| `slamkit-bundle-adjust BAL_FILE` | Normalises and perturbs a BAL problem (`--seed`), optimises it (`--iterations`, default 40) and writes `initial.ply` and `final.ply`. |
| `slamkit-pose-graph G2O_FILE` | Optimises a pose graph (`--iterations`, default 30) and saves it to `--output` (default `result_lie.g2o`). |
| `slamkit-trajectory-error [GROUNDTRUTH] [ESTIMATED]` | Prints the RMSE between two trajectory files (defaults under `./build/src/example/`). |
| `slamkit-orb [FIRST] [SECOND]` | Detects and matches ORB features between two images (defaults `./1.png`, `./2.png`) and draws the matches to `--output` (default `matches.png`). |

For example:

```
slamkit-curve-fit
slamkit-bundle-adjust problem-16-22106-pre.txt
slamkit-pose-graph sphere.g2o
```

## What it does not do

- There is no viewer. Point clouds, trajectories and undistorted images are
  returned as NumPy arrays or written to files; nothing opens a window or
  renders in 3D.
- The imaging and pose-estimation functions have no command of their own;
  they are used from Python.
- Features come only from the built-in FAST and ORB code. There is no
  essential-matrix, homography or 2D–2D pose estimation and no triangulation.