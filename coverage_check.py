#!/usr/bin/env python3
"""
Coverage Consistency Checker

Audits a mesh coverage's adjacency indices and half-edges.

Checks performed:
  1. node -> face index mirrors the node ids stored on faces
  2. face -> half-edge index mirrors the face ids stored on half-edges
  3. every half-edge belongs to a live face
  4. twin links are symmetric

Also reports boundary/paired half-edge counts and the Euler characteristic.

Usage:
  coverage_check.py <project-file> [--half-edges]
"""

import sys
from typing import Dict, List, Optional

from dcel import MeshCoverage, make_edge
from idalloc import NO_ID
from meshcov import load_project


def check_coverage_topology(coverage: MeshCoverage) -> Dict:
    """
    Check a coverage's indices against its entity maps.

    Returns a dict with:
        - consistent: bool, True if no mismatches were found
        - n_nodes, n_faces, n_triangles, n_quads, n_half_edges, n_edges
        - n_paired_half_edges, n_boundary_half_edges
        - missing_node_bindings: (node, face) pairs a face implies but the index lacks
        - stale_node_bindings: (node, face) pairs in the index with no matching face
        - missing_half_edge_bindings: (face, half-edge) pairs the index lacks
        - stale_half_edge_bindings: (face, half-edge) pairs with no matching half-edge
        - orphan_half_edges: half-edges whose face is gone
        - asymmetric_twins: half-edges whose twin does not point back
    """
    missing_node_bindings = []
    stale_node_bindings = []
    missing_half_edge_bindings = []
    stale_half_edge_bindings = []
    orphan_half_edges = []
    asymmetric_twins = []

    edges = set()
    n_quads = 0
    for face_id, face in coverage.face_map.items():
        if face.is_quad:
            n_quads += 1
        loop = face.nodes
        for i, node_id in enumerate(loop):
            edges.add(make_edge(node_id, loop[(i + 1) % len(loop)]))
            if face_id not in coverage.node_faces(node_id):
                missing_node_bindings.append((node_id, face_id))

    for node_id in coverage.node_face_adj:
        for face_id in coverage.node_faces(node_id):
            face = coverage.face_map.get(face_id)
            if face is None or node_id not in face.nodes:
                stale_node_bindings.append((node_id, face_id))

    n_paired = 0
    for he_id, he in coverage.half_edge_map.items():
        if he.face_id not in coverage.face_map:
            orphan_half_edges.append(he_id)
        bound = coverage.face_half_edge_adj.get(he.face_id)
        if bound is None or he_id not in bound:
            missing_half_edge_bindings.append((he.face_id, he_id))
        if he.twin_id != NO_ID:
            twin = coverage.half_edge_map.get(he.twin_id)
            if twin is None or twin.twin_id != he_id:
                asymmetric_twins.append(he_id)
            else:
                n_paired += 1

    for face_id in coverage.face_half_edge_adj:
        for he_id in coverage.face_half_edge_adj.get(face_id):
            he = coverage.half_edge_map.get(he_id)
            if he is None or he.face_id != face_id:
                stale_half_edge_bindings.append((face_id, he_id))

    problems = (missing_node_bindings, stale_node_bindings,
                missing_half_edge_bindings, stale_half_edge_bindings,
                orphan_half_edges, asymmetric_twins)

    return {
        'consistent': not any(problems),
        'n_nodes': coverage.n_nodes,
        'n_faces': coverage.n_faces,
        'n_triangles': coverage.n_faces - n_quads,
        'n_quads': n_quads,
        'n_edges': len(edges),
        'n_half_edges': coverage.n_half_edges,
        'n_paired_half_edges': n_paired,
        'n_boundary_half_edges': coverage.n_half_edges - n_paired - len(asymmetric_twins),
        'missing_node_bindings': missing_node_bindings,
        'stale_node_bindings': stale_node_bindings,
        'missing_half_edge_bindings': missing_half_edge_bindings,
        'stale_half_edge_bindings': stale_half_edge_bindings,
        'orphan_half_edges': orphan_half_edges,
        'asymmetric_twins': asymmetric_twins,
    }


def check_euler_characteristic(result: Dict) -> int:
    """V - E + F, with quads counted as one face"""
    return result['n_nodes'] - result['n_edges'] + result['n_faces']


def _print_problems(label: str, items: List):
    if not items:
        return
    print(f"  WARNING: {len(items)} {label}")
    for item in items[:10]:
        print(f"    {item}")
    if len(items) > 10:
        print("  (Too many to list, showing first 10)")


def print_report(coverage: MeshCoverage, result: Dict) -> bool:
    """Print a human-readable consistency report"""
    print("=" * 60)
    print(f"COVERAGE CHECK: {coverage.name}")
    print("=" * 60)

    print(f"\nCoverage Statistics:")
    print(f"  Nodes:      {result['n_nodes']}")
    print(f"  Triangles:  {result['n_triangles']}")
    print(f"  Quads:      {result['n_quads']}")
    print(f"  Edges:      {result['n_edges']}")
    print(f"  Half-edges: {result['n_half_edges']}")

    if result['n_half_edges'] > 0:
        print(f"\nHalf-edge Analysis:")
        print(f"  Paired half-edges:   {result['n_paired_half_edges']}")
        print(f"  Boundary half-edges: {result['n_boundary_half_edges']}")

    chi = check_euler_characteristic(result)
    print(f"\nEuler Characteristic (V - E + F): {chi}")

    print(f"\nIndex Check:")
    _print_problems("faces missing from node -> face index", result['missing_node_bindings'])
    _print_problems("stale node -> face bindings", result['stale_node_bindings'])
    _print_problems("half-edges missing from face -> half-edge index",
                    result['missing_half_edge_bindings'])
    _print_problems("stale face -> half-edge bindings", result['stale_half_edge_bindings'])
    _print_problems("orphan half-edges", result['orphan_half_edges'])
    _print_problems("asymmetric twin links", result['asymmetric_twins'])
    if result['consistent']:
        print("  Indices mirror the entity maps")

    print("\n" + "=" * 60)
    if result['consistent']:
        print("RESULT: PASS - Coverage is consistent")
    else:
        print("RESULT: FAIL - Coverage has index mismatches")
    print("=" * 60)

    return result['consistent']


def main(argv: Optional[List[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args or args[0] in ['-h', '--help']:
        print(__doc__)
        return 1

    project_file = args[0]
    build_half_edges = '--half-edges' in args[1:]

    print(f"Reading {project_file}...")
    try:
        coverages = load_project(project_file)
    except (OSError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    if not coverages:
        print("Error: Project has no mesh coverages")
        return 1

    success = True
    for coverage in coverages.values():
        if build_half_edges:
            coverage.generate_half_edges()
        result = check_coverage_topology(coverage)
        success = print_report(coverage, result) and success

    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
