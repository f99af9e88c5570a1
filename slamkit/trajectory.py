"""Reading pose trajectories and measuring the error between two of them."""

from __future__ import annotations

import argparse
import math
import sys
from typing import Iterable

import numpy as np

from slamkit.lie import SE3

_FIELDS = 8
DEFAULT_GROUNDTRUTH = "./build/src/example/groundtruth.txt"
DEFAULT_ESTIMATED = "./build/src/example/estimated.txt"


def parse_trajectory(lines: Iterable[str]) -> list[SE3]:
    """Parse lines of ``time tx ty tz qx qy qz qw`` into poses; blank lines are skipped."""
    poses = []
    for number, line in enumerate(lines, start=1):
        fields = line.split()
        if not fields:
            continue
        if len(fields) != _FIELDS:
            raise ValueError(f"line {number}: expected {_FIELDS} values, got {len(fields)}")
        try:
            _, tx, ty, tz, qx, qy, qz, qw = (float(field) for field in fields)
        except ValueError:
            raise ValueError(f"line {number}: malformed number") from None
        poses.append(SE3.from_quaternion_translation((qw, qx, qy, qz), (tx, ty, tz)))
    return poses


def read_trajectory(path) -> list[SE3]:
    """Read a trajectory file."""
    with open(path, encoding="utf-8") as handle:
        return parse_trajectory(handle)


def trajectory_rmse(groundtruth: list[SE3], estimated: list[SE3]) -> float:
    """Root-mean-square of the norms of ``log(gt^-1 * est)`` over matching poses."""
    if not groundtruth or not estimated:
        raise ValueError("trajectories must not be empty")
    if len(groundtruth) != len(estimated):
        raise ValueError("trajectories must have the same length")
    total = sum(
        float(np.linalg.norm((truth.inverse() * estimate).log())) ** 2
        for truth, estimate in zip(groundtruth, estimated)
    )
    return math.sqrt(total / len(estimated))


def main(argv=None) -> int:
    """Print the RMSE between a ground-truth and an estimated trajectory."""
    parser = argparse.ArgumentParser(description="Absolute trajectory error on SE(3).")
    parser.add_argument("groundtruth", nargs="?", default=DEFAULT_GROUNDTRUTH)
    parser.add_argument("estimated", nargs="?", default=DEFAULT_ESTIMATED)
    args = parser.parse_args(argv)

    try:
        groundtruth = read_trajectory(args.groundtruth)
        estimated = read_trajectory(args.estimated)
        rmse = trajectory_rmse(groundtruth, estimated)
    except (OSError, ValueError) as error:
        print(error, file=sys.stderr)
        return 1
    print(f"RMSE = {rmse:g}")
    return 0