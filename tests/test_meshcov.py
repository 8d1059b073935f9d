"""Tests for binary mesh files, the coverage descriptor, loading and the CLI."""

import json

import numpy as np
import pytest

import meshcov
from dcel import MeshCoverage
from meshcov import (
    CoverageDescriptor,
    load_mesh,
    load_project,
    mesh_descriptors,
    mesh_paths,
    prepare_render_data,
    read_coverage_descriptor,
    read_face_file,
    read_node_file,
    save_mesh,
    write_face_file,
    write_node_file,
)


class TestBinaryFiles:
    def test_node_file_layout(self, tmp_path):
        path = tmp_path / "a.node"
        write_node_file(str(path), np.array([[1.0, 2.0, 3.0], [-4.5, 0.0, 1e10]]))

        data = path.read_bytes()
        assert len(data) == 48
        assert np.frombuffer(data, dtype='<f8').tolist() == [1.0, 2.0, 3.0, -4.5, 0.0, 1e10]
        np.testing.assert_array_equal(read_node_file(str(path)),
                                      [[1.0, 2.0, 3.0], [-4.5, 0.0, 1e10]])

    def test_face_file_layout(self, tmp_path):
        path = tmp_path / "a.face"
        path.write_bytes(np.array([1, 2, 3, 0, 4, 5, 6, 7], dtype='<u4').tobytes())
        faces = read_face_file(str(path))
        assert faces.dtype == np.uint32
        assert faces.tolist() == [[1, 2, 3, 0], [4, 5, 6, 7]]

    def test_trailing_bytes_are_dropped(self, tmp_path):
        path = tmp_path / "a.node"
        path.write_bytes(np.arange(4, dtype='<f8').tobytes() + b"\x00\x01")
        assert read_node_file(str(path)).tolist() == [[0.0, 1.0, 2.0]]

    def test_empty_file(self, tmp_path):
        path = tmp_path / "a.face"
        path.write_bytes(b"")
        assert read_face_file(str(path)).shape == (0, 4)


class TestDescriptor:
    def test_reads_and_filters(self, project):
        descriptors = read_coverage_descriptor(str(project))
        assert [d.id for d in descriptors] == ["m1", "m2", "s1"]
        assert [d.id for d in mesh_descriptors(descriptors)] == ["m1", "m2"]
        assert descriptors[2] == CoverageDescriptor("s1", "Scatter", "scatter", "point")

    def test_missing_descriptor(self, tmp_path):
        assert read_coverage_descriptor(str(tmp_path / "none.grmsp")) == []
        assert load_project(str(tmp_path / "none.grmsp")) == {}

    def test_entry_missing_field(self, tmp_path):
        (tmp_path / "coverage.json").write_text(json.dumps([{"id": "m1", "name": "x"}]))
        with pytest.raises(ValueError):
            read_coverage_descriptor(str(tmp_path / "p.grmsp"))

    def test_not_an_array(self, tmp_path):
        (tmp_path / "coverage.json").write_text(json.dumps({"id": "m1"}))
        with pytest.raises(ValueError):
            read_coverage_descriptor(str(tmp_path / "p.grmsp"))


class TestLoading:
    def test_load_project(self, project):
        coverages = load_project(str(project))
        assert list(coverages) == ["m1", "m2"]

        m1 = coverages["m1"]
        assert m1.n_nodes == 6
        assert m1.n_faces == 2
        assert all(face.is_quad for face in m1.face_map.values())
        first = m1.query_face(1)
        assert first.nodes == (1, 2, 5, 4)
        assert m1.query_node(6).z == 5.0

    def test_coverages_share_id_space(self, project):
        coverages = load_project(str(project))
        m2 = coverages["m2"]
        assert sorted(m2.node_map) == [7, 8, 9]
        face = next(iter(m2.face_map.values()))
        assert face.nodes == (7, 8, 9)
        assert not face.is_quad
        assert set(m2.face_map).isdisjoint(coverages["m1"].face_map)

    def test_load_single_coverage(self, project):
        coverages = load_project(str(project), only="m2")
        assert list(coverages) == ["m2"]
        assert sorted(coverages["m2"].node_map) == [1, 2, 3]

    def test_face_position_out_of_range(self, tmp_path):
        node_file, face_file = mesh_paths(str(tmp_path), "bad")
        (tmp_path / "Geometry" / "Mesh").mkdir(parents=True)
        write_node_file(node_file, np.zeros((3, 3)))
        write_face_file(face_file, np.array([[1, 2, 4, 0]]))
        with pytest.raises(ValueError, match="references node 4"):
            load_mesh(str(tmp_path), "bad", MeshCoverage("bad"))

    def test_save_then_load(self, tmp_path, unit_quad):
        coverage, (a, b, c, d), _ = unit_quad
        e = coverage.create_node(2.0, 0.0, 0.0)
        f = coverage.create_node(2.0, 1.0, 0.0)
        coverage.create_face(b, e, f)
        coverage.remove_node(a)

        save_mesh(str(tmp_path), coverage)
        loaded = load_mesh(str(tmp_path), coverage.name, MeshCoverage("copy"))

        assert loaded.n_nodes == coverage.n_nodes == 5
        assert loaded.n_faces == 1
        triangle = next(iter(loaded.face_map.values()))
        coords = [loaded.query_node(n) for n in triangle.nodes]
        assert [(p.x, p.y) for p in coords] == [(1.0, 0.0), (2.0, 0.0), (2.0, 1.0)]


    def test_save_face_with_missing_node(self, tmp_path, unit_quad):
        coverage, (a, b, c, d), _ = unit_quad
        coverage.create_face(a, c, 99)
        with pytest.raises(ValueError, match="missing node 99"):
            save_mesh(str(tmp_path), coverage)


class TestRenderData:
    def test_centred_on_bbox(self, project):
        m1 = load_project(str(project), only="m1")["m1"]
        vertices, node_ids, indices = prepare_render_data(m1)

        assert vertices.shape == (6, 3)
        assert vertices.dtype == np.float32
        assert node_ids.tolist() == [1, 2, 3, 4, 5, 6]
        # bbox x 0..2, y 0..1: shift by (1, 0.5); z is left alone
        np.testing.assert_allclose(vertices[0], [-1.0, -0.5, 0.0])
        np.testing.assert_allclose(vertices[5], [1.0, 0.5, 5.0])
        assert len(indices) == 16
        assert indices.max() < 6

    def test_empty_coverage(self, coverage):
        vertices, node_ids, indices = prepare_render_data(coverage)
        assert vertices.shape == (0, 3)
        assert len(node_ids) == 0
        assert len(indices) == 0


class TestCLI:
    @pytest.fixture(autouse=True)
    def quiet_logging(self, monkeypatch):
        monkeypatch.setattr(meshcov, "setup_logging", lambda *args, **kwargs: None)

    def test_no_arguments(self, capsys):
        assert meshcov.main([]) == 1
        assert "Usage" in capsys.readouterr().out

    def test_summary(self, project, capsys):
        assert meshcov.main([str(project), "--half-edges"]) == 0
        out = capsys.readouterr().out
        assert "m1: Nodes: 6, Triangles: 0, Quads: 2, Half-edges: 8" in out
        assert "m2: Nodes: 3, Triangles: 1, Quads: 0, Half-edges: 3" in out

    def test_vtk_needs_single_coverage(self, project, tmp_path, capsys):
        assert meshcov.main([str(project), "--vtk", str(tmp_path / "out.vtu")]) == 1
        assert "--coverage" in capsys.readouterr().out

    def test_vtk_export(self, project, tmp_path):
        out = tmp_path / "m1.vtk"
        assert meshcov.main([str(project), "--coverage", "m1", "--vtk", str(out), "--faces"]) == 0
        assert "CELLS 4 16" in out.read_text()

    def test_missing_project(self, tmp_path, capsys):
        assert meshcov.main([str(tmp_path / "nothing.grmsp")]) == 1
        assert "No mesh coverages" in capsys.readouterr().out
