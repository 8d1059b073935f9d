"""Pytest configuration and fixtures for mesh coverage tests."""

import json
import sys
from pathlib import Path

import numpy as np
import pytest

# Add repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dcel import MeshCoverage  # noqa: E402
from meshcov import mesh_paths, write_face_file, write_node_file  # noqa: E402


@pytest.fixture
def coverage():
    """Empty coverage with its own id space."""
    return MeshCoverage("test")


@pytest.fixture
def unit_quad(coverage):
    """Single quad over (0,0,0), (1,0,0), (1,1,0), (0,1,0)."""
    a = coverage.create_node(0.0, 0.0, 0.0)
    b = coverage.create_node(1.0, 0.0, 0.0)
    c = coverage.create_node(1.0, 1.0, 0.0)
    d = coverage.create_node(0.0, 1.0, 0.0)
    face = coverage.create_face(a, b, c, d)
    return coverage, (a, b, c, d), face


@pytest.fixture
def triangle_pair(coverage):
    """Triangles (A, B, C) and (B, A, D) sharing edge A-B."""
    a = coverage.create_node(0.0, 0.0, 0.0)
    b = coverage.create_node(1.0, 0.0, 0.0)
    c = coverage.create_node(0.5, 1.0, 0.0)
    d = coverage.create_node(0.5, -1.0, 0.0)
    f1 = coverage.create_face(a, b, c)
    f2 = coverage.create_face(b, a, d)
    return coverage, (a, b, c, d), (f1, f2)


@pytest.fixture
def project(tmp_path):
    """
    Project with two mesh coverages and one non-mesh coverage.

    m1: 2x1 strip of two quads (6 nodes)
    m2: single triangle
    """
    project_file = tmp_path / "demo.grmsp"
    project_file.write_text("")

    descriptor = [
        {"id": "m1", "name": "Strip", "module": "mesh", "type": "quad"},
        {"id": "m2", "name": "Tri", "module": "mesh", "type": "tri"},
        {"id": "s1", "name": "Scatter", "module": "scatter", "type": "point"},
    ]
    (tmp_path / "coverage.json").write_text(json.dumps(descriptor))

    node_file, face_file = mesh_paths(str(tmp_path), "m1")
    Path(node_file).parent.mkdir(parents=True)
    write_node_file(node_file, np.array([
        [0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0],
        [0.0, 1.0, 0.0], [1.0, 1.0, 0.0], [2.0, 1.0, 5.0],
    ]))
    write_face_file(face_file, np.array([
        [1, 2, 5, 4],
        [2, 3, 6, 5],
    ]))

    node_file, face_file = mesh_paths(str(tmp_path), "m2")
    write_node_file(node_file, np.array([
        [10.0, 10.0, 0.0], [11.0, 10.0, 0.0], [10.0, 11.0, 0.0],
    ]))
    write_face_file(face_file, np.array([[1, 2, 3, 0]]))

    return project_file
