"""Pose-graph optimisation on SE(3) with Lie-algebra errors, in the g2o text format."""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, field
from typing import Iterable, TextIO

import numpy as np
import scipy.sparse
import scipy.sparse.linalg

from slamkit.lie import SE3

VERTEX_TAG = "VERTEX_SE3:QUAT"
EDGE_TAG = "EDGE_SE3:QUAT"
DEFAULT_ITERATIONS = 30
DEFAULT_OUTPUT = "result_lie.g2o"

_DOF = 6
_POSE_FIELDS = 7
_INFORMATION_FIELDS = 21
_MAX_TRIALS = 10
_UPPER = np.triu_indices(_DOF)


def _format_number(value: float) -> str:
    return format(float(value), ".15g")


def _pose_from_fields(values: list[float]) -> SE3:
    tx, ty, tz, qx, qy, qz, qw = values
    return SE3.from_quaternion_translation((qw, qx, qy, qz), (tx, ty, tz))


def _format_pose(pose: SE3) -> str:
    w, x, y, z = pose.rotation.unit_quaternion()
    return " ".join(_format_number(v) for v in (*pose.translation, x, y, z, w))


def _floats(fields: list[str], number: int) -> list[float]:
    try:
        return [float(value) for value in fields]
    except ValueError:
        raise ValueError(f"line {number}: malformed number") from None


def _ints(fields: list[str], number: int) -> list[int]:
    try:
        return [int(value) for value in fields]
    except ValueError:
        raise ValueError(f"line {number}: malformed vertex id") from None


@dataclass
class Vertex:
    """A pose in the graph; a fixed vertex is never moved by the optimiser."""

    id: int
    pose: SE3
    fixed: bool = False


@dataclass
class Edge:
    """A relative-pose measurement between two vertices with its information matrix."""

    first: int
    second: int
    measurement: SE3
    information: np.ndarray = field(default_factory=lambda: np.eye(_DOF))

    def error(self, first: SE3, second: SE3) -> np.ndarray:
        """Return ``log(measurement^-1 * first^-1 * second)`` as a twist ``(rho, omega)``."""
        return (self.measurement.inverse() * first.inverse() * second).log()


@dataclass
class PoseGraph:
    """Vertices keyed by id, in the order they were added, and the edges between them."""

    vertices: dict[int, Vertex] = field(default_factory=dict)
    edges: list[Edge] = field(default_factory=list)

    @classmethod
    def read(cls, stream: Iterable[str]) -> "PoseGraph":
        """Parse g2o ``VERTEX_SE3:QUAT`` and ``EDGE_SE3:QUAT`` lines; other lines are ignored.

        The vertex with id 0 is fixed. An edge without an information matrix gets the identity.
        """
        graph = cls()
        for number, line in enumerate(stream, start=1):
            fields = line.split()
            if not fields:
                continue
            tag, rest = fields[0], fields[1:]
            if tag == VERTEX_TAG:
                if len(rest) != 1 + _POSE_FIELDS:
                    raise ValueError(f"line {number}: vertex needs an id and {_POSE_FIELDS} values")
                (index,) = _ints(rest[:1], number)
                if index in graph.vertices:
                    raise ValueError(f"line {number}: duplicate vertex {index}")
                pose = _pose_from_fields(_floats(rest[1:], number))
                graph.vertices[index] = Vertex(index, pose, fixed=index == 0)
            elif tag == EDGE_TAG:
                if len(rest) not in (2 + _POSE_FIELDS, 2 + _POSE_FIELDS + _INFORMATION_FIELDS):
                    raise ValueError(f"line {number}: malformed edge")
                first, second = _ints(rest[:2], number)
                for index in (first, second):
                    if index not in graph.vertices:
                        raise ValueError(f"line {number}: unknown vertex {index}")
                values = _floats(rest[2:], number)
                measurement = _pose_from_fields(values[:_POSE_FIELDS])
                information = np.eye(_DOF)
                if len(values) > _POSE_FIELDS:
                    upper = np.zeros((_DOF, _DOF))
                    upper[_UPPER] = values[_POSE_FIELDS:]
                    information = upper + upper.T - np.diag(np.diag(upper))
                graph.edges.append(Edge(first, second, measurement, information))
        return graph

    @classmethod
    def load(cls, path) -> "PoseGraph":
        """Read a g2o file."""
        with open(path, encoding="utf-8") as handle:
            return cls.read(handle)

    def total_error(self) -> float:
        """Sum of ``e^T Omega e`` over all edges."""
        total = 0.0
        for edge in self.edges:
            e = edge.error(self.vertices[edge.first].pose, self.vertices[edge.second].pose)
            total += float(e @ edge.information @ e)
        return total

    def _linearize(self, index: dict[int, int]) -> tuple[scipy.sparse.csc_matrix, np.ndarray]:
        size = _DOF * len(index)
        gradient = np.zeros(size)
        block = np.arange(_DOF)
        rows: list[np.ndarray] = []
        cols: list[np.ndarray] = []
        data: list[np.ndarray] = []
        for edge in self.edges:
            first = self.vertices[edge.first].pose
            second = self.vertices[edge.second].pose
            e = edge.error(first, second)
            adjoint = second.inverse().adjoint()
            jacobians: dict[int, np.ndarray] = {}
            jacobians[edge.first] = jacobians.get(edge.first, 0.0) - adjoint
            jacobians[edge.second] = jacobians.get(edge.second, 0.0) + adjoint
            terms = [(_DOF * index[vid], jac) for vid, jac in jacobians.items() if vid in index]
            weighted = edge.information @ e
            for start_a, jac_a in terms:
                gradient[start_a:start_a + _DOF] += jac_a.T @ weighted
                for start_b, jac_b in terms:
                    rows.append(np.repeat(start_a + block, _DOF))
                    cols.append(np.tile(start_b + block, _DOF))
                    data.append((jac_a.T @ edge.information @ jac_b).ravel())
        if data:
            hessian = scipy.sparse.coo_matrix(
                (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
                shape=(size, size),
            ).tocsc()
        else:
            hessian = scipy.sparse.csc_matrix((size, size))
        return hessian, gradient

    def _apply(self, index: dict[int, int], step: np.ndarray) -> None:
        for vid, k in index.items():
            vertex = self.vertices[vid]
            vertex.pose = SE3.exp(step[_DOF * k:_DOF * (k + 1)]) * vertex.pose

    def optimize(self, iterations: int = DEFAULT_ITERATIONS) -> list[float]:
        """Run Levenberg-Marquardt with left-multiplicative updates; returns the error per iteration."""
        if iterations < 0:
            raise ValueError("iterations must not be negative")
        free = [vid for vid, vertex in self.vertices.items() if not vertex.fixed]
        index = {vid: k for k, vid in enumerate(free)}
        history: list[float] = []
        if not index or not self.edges:
            return history

        chi2 = self.total_error()
        identity = scipy.sparse.identity(_DOF * len(index), format="csc")
        damping: float | None = None
        growth = 2.0
        for _ in range(iterations):
            hessian, gradient = self._linearize(index)
            if damping is None:
                damping = 1e-5 * max(float(hessian.diagonal().max()), 1e-12)
            improved = False
            for _trial in range(_MAX_TRIALS):
                step = np.atleast_1d(scipy.sparse.linalg.spsolve(hessian + damping * identity, -gradient))
                if not np.all(np.isfinite(step)):
                    damping *= growth
                    growth *= 2.0
                    continue
                saved = {vid: self.vertices[vid].pose for vid in index}
                self._apply(index, step)
                new_chi2 = self.total_error()
                scale = float(step @ (damping * step - gradient)) + 1e-3
                rho = (chi2 - new_chi2) / scale
                if np.isfinite(new_chi2) and new_chi2 < chi2:
                    damping *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                    growth = 2.0
                    chi2 = new_chi2
                    improved = True
                    break
                for vid, pose in saved.items():
                    self.vertices[vid].pose = pose
                damping *= growth
                growth *= 2.0
            history.append(chi2)
            if not improved:
                break
        return history

    def write(self, stream: TextIO) -> None:
        """Write vertices, then edges with the upper triangle of their information matrices."""
        for vertex in self.vertices.values():
            stream.write(f"{VERTEX_TAG} {vertex.id} {_format_pose(vertex.pose)}\n")
        for edge in self.edges:
            information = " ".join(_format_number(v) for v in edge.information[_UPPER])
            stream.write(
                f"{EDGE_TAG} {edge.first} {edge.second} "
                f"{_format_pose(edge.measurement)} {information}\n"
            )


def main(argv=None) -> int:
    """Optimise a g2o pose graph and save the result."""
    parser = argparse.ArgumentParser(prog="pose_graph", description="SE(3) pose-graph optimisation.")
    parser.add_argument("graph", help="g2o file, for example sphere.g2o")
    parser.add_argument("--output", default=DEFAULT_OUTPUT)
    parser.add_argument("--iterations", type=int, default=DEFAULT_ITERATIONS)
    args = parser.parse_args(argv)

    try:
        graph = PoseGraph.load(args.graph)
    except FileNotFoundError:
        print(f"file {args.graph} does not exist.")
        return 1
    except (OSError, ValueError) as error:
        print(error, file=sys.stderr)
        return 1

    print(f"read total {len(graph.vertices)} vertices, {len(graph.edges)} edges.")
    print("optimizing ...")
    for number, chi2 in enumerate(graph.optimize(args.iterations)):
        print(f"iteration= {number}\t chi2= {chi2:g}")
    print("saving optimization results ...")
    with open(args.output, "w", encoding="utf-8") as handle:
        graph.write(handle)
    return 0