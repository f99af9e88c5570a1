import io

import numpy as np
import pytest

from slamkit.lie import SE3
from slamkit.pose_graph import Edge, PoseGraph, main

IDENTITY_INFO = " ".join("1" if i == j else "0" for i in range(6) for j in range(i, 6))

CONSISTENT = f"""VERTEX_SE3:QUAT 0 0 0 0 0 0 0 1
VERTEX_SE3:QUAT 1 1 0 0 0 0 0 1
EDGE_SE3:QUAT 0 1 1 0 0 0 0 0 1 {IDENTITY_INFO}
"""

PERTURBED = f"""VERTEX_SE3:QUAT 0 0 0 0 0 0 0 1
VERTEX_SE3:QUAT 1 1.3 0.2 0 0 0 0.1 1
VERTEX_SE3:QUAT 2 1.8 -0.1 0.1 0.05 0 0 1
EDGE_SE3:QUAT 0 1 1 0 0 0 0 0 1 {IDENTITY_INFO}
EDGE_SE3:QUAT 1 2 1 0 0 0 0 0 1 {IDENTITY_INFO}
EDGE_SE3:QUAT 0 2 2 0 0 0 0 0 1 {IDENTITY_INFO}
"""


def _read(text):
    return PoseGraph.read(io.StringIO(text))


def test_read_builds_vertices_and_edges():
    graph = _read(CONSISTENT)
    assert list(graph.vertices) == [0, 1]
    assert len(graph.edges) == 1
    assert graph.vertices[0].fixed
    assert not graph.vertices[1].fixed
    np.testing.assert_allclose(graph.vertices[1].pose.translation, [1, 0, 0])
    np.testing.assert_allclose(graph.edges[0].information, np.eye(6))


def test_consistent_graph_has_zero_error():
    assert _read(CONSISTENT).total_error() == pytest.approx(0.0, abs=1e-20)


def test_edge_error_zero_only_when_measurement_matches():
    edge = Edge(0, 1, SE3(translation=[1.0, 0.0, 0.0]))
    matching = edge.error(SE3(), SE3(translation=[1.0, 0.0, 0.0]))
    np.testing.assert_allclose(matching, np.zeros(6), atol=1e-12)
    mismatching = edge.error(SE3(), SE3())
    assert np.linalg.norm(mismatching) > 0.5


def test_information_is_symmetric_from_upper_triangle():
    values = " ".join(str(v) for v in range(1, 22))
    text = ("VERTEX_SE3:QUAT 0 0 0 0 0 0 0 1\n"
            "VERTEX_SE3:QUAT 1 0 0 0 0 0 0 1\n"
            f"EDGE_SE3:QUAT 0 1 0 0 0 0 0 0 1 {values}\n")
    info = _read(text).edges[0].information
    np.testing.assert_array_equal(info, info.T)
    assert info[0, 1] == 2.0
    assert info[5, 5] == 21.0


def test_edge_without_information_uses_identity():
    text = ("VERTEX_SE3:QUAT 0 0 0 0 0 0 0 1\n"
            "VERTEX_SE3:QUAT 1 0 0 0 0 0 0 1\n"
            "EDGE_SE3:QUAT 0 1 0 0 0 0 0 0 1\n")
    np.testing.assert_array_equal(_read(text).edges[0].information, np.eye(6))


def test_unknown_vertex_raises():
    text = "VERTEX_SE3:QUAT 0 0 0 0 0 0 0 1\nEDGE_SE3:QUAT 0 7 0 0 0 0 0 0 1\n"
    with pytest.raises(ValueError):
        _read(text)


def test_malformed_vertex_raises():
    with pytest.raises(ValueError):
        _read("VERTEX_SE3:QUAT 0 0 0 zero 0 0 0 1\n")


def test_unrelated_lines_are_ignored():
    graph = _read("FIX 0\n" + CONSISTENT)
    assert len(graph.vertices) == 2


def test_write_read_round_trip():
    graph = _read(PERTURBED)
    buffer = io.StringIO()
    graph.write(buffer)
    again = _read(buffer.getvalue())
    assert list(again.vertices) == list(graph.vertices)
    for vid, vertex in graph.vertices.items():
        np.testing.assert_allclose(again.vertices[vid].pose.as_matrix(), vertex.pose.as_matrix(), atol=1e-12)
    for original, copy in zip(graph.edges, again.edges):
        assert (copy.first, copy.second) == (original.first, original.second)
        np.testing.assert_allclose(copy.information, original.information)
        np.testing.assert_allclose(copy.measurement.as_matrix(), original.measurement.as_matrix(), atol=1e-12)


def test_written_vertex_line_has_tag_and_fields():
    buffer = io.StringIO()
    _read(CONSISTENT).write(buffer)
    first = buffer.getvalue().splitlines()[0].split()
    assert first[0] == "VERTEX_SE3:QUAT"
    assert len(first) == 9


def test_optimize_reduces_error_to_zero():
    graph = _read(PERTURBED)
    start = graph.total_error()
    history = graph.optimize(30)
    assert history
    assert all(later <= earlier for earlier, later in zip(history, history[1:]))
    assert graph.total_error() < 1e-6 < start
    np.testing.assert_allclose(graph.vertices[1].pose.translation, [1, 0, 0], atol=1e-3)
    np.testing.assert_allclose(graph.vertices[2].pose.translation, [2, 0, 0], atol=1e-3)


def test_optimize_keeps_fixed_vertex():
    graph = _read(PERTURBED)
    before = graph.vertices[0].pose.as_matrix()
    graph.optimize(5)
    np.testing.assert_array_equal(graph.vertices[0].pose.as_matrix(), before)


def test_optimize_rejects_negative_iterations():
    with pytest.raises(ValueError):
        _read(CONSISTENT).optimize(-1)


def test_main_missing_file(tmp_path, capsys):
    missing = tmp_path / "missing.g2o"
    assert main([str(missing)]) == 1
    assert "does not exist" in capsys.readouterr().out


def test_main_writes_result(tmp_path, capsys):
    source = tmp_path / "graph.g2o"
    source.write_text(PERTURBED)
    output = tmp_path / "out.g2o"
    assert main([str(source), "--output", str(output), "--iterations", "10"]) == 0
    assert "read total 3 vertices, 3 edges." in capsys.readouterr().out
    result = PoseGraph.load(output)
    assert len(result.vertices) == 3
    assert result.total_error() < _read(PERTURBED).total_error()