#!/usr/bin/env python3
"""
MeshCov - Mesh Coverage Loader

Loads the mesh coverages of a project into half-edge topology:
  - coverage.json   descriptor listing the project's coverages
  - <id>.node       little-endian float64 triples (x, y, z) per node
  - <id>.face       little-endian uint32 quadruples (n0, n1, n2, n3) per face,
                    1-based node positions, n3 == 0 for triangles

Project layout:
  <root>/<project file>
  <root>/coverage.json
  <root>/Geometry/Mesh/<id>.node
  <root>/Geometry/Mesh/<id>.face

Usage:
  meshcov <project-file> [options]
"""

import json
import logging
import os
import sys
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np

from dcel import MeshCoverage
from idalloc import NO_ID, IdSpace
from vtk_writer import write_coverage_vtk

logger = logging.getLogger(__name__)


MESH_MODULE = 'mesh'
MESH_DIR = os.path.join('Geometry', 'Mesh')
NODE_EXT = '.node'
FACE_EXT = '.face'
DESCRIPTOR_NAME = 'coverage.json'

NODE_DTYPE = np.dtype('<f8')
FACE_DTYPE = np.dtype('<u4')


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> None:
    """
    Configure the root logger.

    Args:
        level: Logging level (e.g. logging.DEBUG, logging.INFO)
        log_file: Optional path to also write logs to
    """
    root = logging.getLogger()
    root.setLevel(level)

    if root.hasHandlers():
        root.handlers.clear()

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


# =============================================================================
# BINARY FILES
# =============================================================================

def _read_records(filename: str, dtype: np.dtype, width: int) -> np.ndarray:
    with open(filename, 'rb') as f:
        data = f.read()

    record_size = dtype.itemsize * width
    n_records = len(data) // record_size
    if len(data) % record_size:
        logger.warning(f"{filename}: ignoring {len(data) % record_size} trailing bytes")

    if n_records == 0:
        return np.zeros((0, width), dtype=dtype)

    values = np.frombuffer(data, dtype=dtype, count=n_records * width)
    return values.reshape(n_records, width)


def read_node_file(filename: str) -> np.ndarray:
    """Read a .node file as an Nx3 float64 array"""
    return _read_records(filename, NODE_DTYPE, 3).astype(np.float64)


def read_face_file(filename: str) -> np.ndarray:
    """Read a .face file as an Mx4 uint32 array"""
    return _read_records(filename, FACE_DTYPE, 4).astype(np.uint32)


def write_node_file(filename: str, nodes: np.ndarray):
    """Write an Nx3 array of coordinates as a .node file"""
    np.asarray(nodes, dtype=NODE_DTYPE).reshape(-1, 3).tofile(filename)


def write_face_file(filename: str, faces: np.ndarray):
    """Write an Mx4 array of 1-based node positions as a .face file"""
    np.asarray(faces, dtype=FACE_DTYPE).reshape(-1, 4).tofile(filename)


def mesh_paths(root: str, coverage_id: str) -> Tuple[str, str]:
    """Return (node_file, face_file) for a coverage under a project root"""
    base = os.path.join(root, MESH_DIR, coverage_id)
    return base + NODE_EXT, base + FACE_EXT


# =============================================================================
# COVERAGE DESCRIPTOR
# =============================================================================

@dataclass
class CoverageDescriptor:
    id: str
    name: str
    module: str
    type: str

    @classmethod
    def from_dict(cls, item: Dict) -> 'CoverageDescriptor':
        try:
            return cls(id=str(item['id']), name=str(item['name']),
                       module=str(item['module']), type=str(item['type']))
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid coverage entry {item!r}: missing {e}") from e

    @property
    def is_mesh(self) -> bool:
        return self.module == MESH_MODULE


def descriptor_path(project_file: str) -> str:
    return os.path.join(os.path.dirname(os.path.abspath(project_file)), DESCRIPTOR_NAME)


def read_coverage_descriptor(project_file: str) -> List[CoverageDescriptor]:
    """Read coverage.json next to a project file. Missing file -> empty list."""
    path = descriptor_path(project_file)
    if not os.path.exists(path):
        logger.warning(f"No coverage descriptor at {path}")
        return []

    with open(path, 'r', encoding='utf-8') as f:
        items = json.load(f)

    if not isinstance(items, list):
        raise ValueError(f"{path}: expected a JSON array of coverages")

    return [CoverageDescriptor.from_dict(item) for item in items]


def mesh_descriptors(descriptors: List[CoverageDescriptor]) -> List[CoverageDescriptor]:
    return [d for d in descriptors if d.is_mesh]


# =============================================================================
# LOADING
# =============================================================================

def load_mesh(root: str, coverage_id: str, coverage: MeshCoverage) -> MeshCoverage:
    """Create the nodes and faces of one coverage from its .node/.face files"""
    node_file, face_file = mesh_paths(root, coverage_id)

    logger.info(f"Loading node file: {node_file}")
    nodes = read_node_file(node_file)
    node_ids = [coverage.create_node(x, y, z) for x, y, z in nodes.tolist()]

    logger.info(f"Loading face file: {face_file}")
    faces = read_face_file(face_file)
    n_nodes = len(node_ids)
    for row, face in enumerate(faces.tolist()):
        for pos in face[:3]:
            if not 1 <= pos <= n_nodes:
                raise ValueError(f"{face_file}: face {row} references node {pos}, "
                                 f"file has {n_nodes} nodes")
        if face[3] > n_nodes:
            raise ValueError(f"{face_file}: face {row} references node {face[3]}, "
                             f"file has {n_nodes} nodes")
        n0, n1, n2 = (node_ids[pos - 1] for pos in face[:3])
        n3 = node_ids[face[3] - 1] if face[3] != NO_ID else NO_ID
        coverage.create_face(n0, n1, n2, n3)

    logger.info(f"Mesh coverage {coverage_id} loaded: "
                f"{coverage.n_nodes} nodes, {coverage.n_faces} faces")
    return coverage


def save_mesh(root: str, coverage: MeshCoverage):
    """Write a coverage as .node/.face files under root, renumbering nodes 1..N"""
    node_file, face_file = mesh_paths(root, coverage.name)
    os.makedirs(os.path.dirname(node_file), exist_ok=True)

    position = {node_id: i + 1 for i, node_id in enumerate(coverage.node_map)}
    nodes = np.array([(n.x, n.y, n.z) for n in coverage.node_map.values()],
                     dtype=np.float64).reshape(-1, 3)
    rows = []
    for face_id, face in coverage.face_map.items():
        for node_id in face.nodes:
            if node_id not in position:
                raise ValueError(f"Coverage {coverage.name!r}: face {face_id} "
                                 f"references missing node {node_id}")
        row = [position[node_id] for node_id in face.nodes]
        rows.append(row + [NO_ID] * (4 - len(row)))
    faces = np.array(rows, dtype=np.uint32).reshape(-1, 4)

    write_node_file(node_file, nodes)
    write_face_file(face_file, faces)
    logger.info(f"Saved {coverage.name}: {len(nodes)} nodes, {len(faces)} faces")


def load_project(project_file: str, only: Optional[str] = None,
                 ids: Optional[IdSpace] = None) -> Dict[str, MeshCoverage]:
    """
    Load every mesh coverage listed for a project.

    All coverages share one IdSpace, so entity ids are unique across them.
    """
    root = os.path.dirname(os.path.abspath(project_file))
    ids = ids if ids is not None else IdSpace()

    coverages = {}
    for desc in mesh_descriptors(read_coverage_descriptor(project_file)):
        if only is not None and desc.id != only:
            continue
        coverages[desc.id] = load_mesh(root, desc.id, MeshCoverage(desc.id, ids))
    return coverages


# =============================================================================
# RENDER DATA
# =============================================================================

def prepare_render_data(coverage: MeshCoverage,
                        kind: str = 'lines') -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Vertex and index data for drawing a coverage near the origin.

    Returns:
        vertices: Nx3 float32, x and y shifted by the bounding-box centre
        node_ids: N uint32, node id of each vertex row
        indices: uint32 positions into vertices
    """
    coordinates, indices = coverage.generate_buffer(kind)
    vertices = coordinates.reshape(-1, 3)

    bbox = coverage.get_bbox3()
    if not bbox.is_empty:
        cx, cy, _ = bbox.center
        vertices[:, 0] -= np.float32(cx)
        vertices[:, 1] -= np.float32(cy)
        logger.debug(f"{coverage.name}: {bbox}, extent {bbox.extent}")

    node_ids = np.fromiter(coverage.node_map.keys(), dtype=np.uint32, count=coverage.n_nodes)
    return vertices, node_ids, indices


# =============================================================================
# CLI
# =============================================================================

def info(coverage: MeshCoverage) -> str:
    """Return coverage statistics as a string"""
    n_quads = sum(1 for f in coverage.face_map.values() if f.is_quad)
    return (f"Nodes: {coverage.n_nodes}, "
            f"Triangles: {coverage.n_faces - n_quads}, "
            f"Quads: {n_quads}, "
            f"Half-edges: {coverage.n_half_edges}")


def print_usage():
    print("MeshCov - Mesh Coverage Loader")
    print("=" * 50)
    print("\nUsage:")
    print("  meshcov <project-file> [options]")
    print("\nOptions:")
    print("  --coverage <id>   Load only this coverage")
    print("  --half-edges      Build half-edges and pair twins")
    print("  --vtk <file>      Export the loaded coverage (.vtk or .vtu)")
    print("  --faces           Export triangles instead of the wireframe")
    print("  -v, --verbose     Debug logging")
    print("\nExamples:")
    print("  meshcov project.grmsp")
    print("  meshcov project.grmsp --half-edges")
    print("  meshcov project.grmsp --coverage m1 --vtk m1.vtu --faces")


def main(argv: Optional[List[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        print_usage()
        return 1

    project_file = None
    only = None
    vtk_file = None
    kind = 'lines'
    build_half_edges = False
    level = logging.INFO

    i = 0
    while i < len(args):
        arg = args[i]
        if arg == '--coverage':
            i += 1
            only = args[i] if i < len(args) else None
        elif arg == '--vtk':
            i += 1
            vtk_file = args[i] if i < len(args) else None
        elif arg == '--faces':
            kind = 'triangles'
        elif arg == '--half-edges':
            build_half_edges = True
        elif arg in ['-v', '--verbose']:
            level = logging.DEBUG
        elif arg in ['-h', '--help']:
            print_usage()
            return 0
        elif project_file is None:
            project_file = arg
        else:
            print(f"Error: Unexpected argument {arg}")
            return 1
        i += 1

    if project_file is None:
        print("Error: No project file specified")
        return 1

    setup_logging(level)

    try:
        coverages = load_project(project_file, only=only)
    except (OSError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    if not coverages:
        print("Error: No mesh coverages found")
        return 1

    for cov_id, coverage in coverages.items():
        if build_half_edges:
            coverage.generate_half_edges()
        bbox = coverage.get_bbox3()
        print(f"{cov_id}: {info(coverage)}")
        print(f"  {bbox}")

    if vtk_file is not None:
        if len(coverages) > 1:
            print("Error: --vtk needs a single coverage, use --coverage <id>")
            return 1
        coverage = next(iter(coverages.values()))
        try:
            write_coverage_vtk(coverage, vtk_file, kind=kind)
        except ValueError as e:
            print(f"Error: {e}")
            return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
