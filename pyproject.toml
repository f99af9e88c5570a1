[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "slamkit"
version = "0.1.0"
description = "Geometry, optimisation and visual-odometry building blocks for SLAM: rotations, Lie groups, bundle adjustment, pose graphs, point clouds and ORB features."
requires-python = ">=3.10"
keywords = [
    "slam",
    "bundle adjustment",
    "pose graph",
    "lie groups",
    "SO3",
    "SE3",
    "ORB",
    "PnP",
    "ICP",
    "point cloud",
    "computer vision",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
    "Topic :: Scientific/Engineering :: Mathematics",
]
dependencies = [
    "numpy",
    "scipy",
    "pillow",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
slamkit-hello = "slamkit.hello:main"
slamkit-linalg = "slamkit.linalg:main"
slamkit-trajectory-error = "slamkit.trajectory:main"
slamkit-bundle-adjust = "slamkit.bundle_adjustment:main"
slamkit-curve-fit = "slamkit.curve_fitting:main"
slamkit-pose-graph = "slamkit.pose_graph:main"
slamkit-orb = "slamkit.orb:main"

[tool.hatch.build.targets.wheel]
packages = ["slamkit"]

[tool.hatch.build.targets.sdist]
include = ["slamkit", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
warn_unused_ignores = true
