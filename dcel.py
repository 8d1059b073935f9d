"""
DCEL - Half-Edge Mesh Topology

Doubly-connected edge list over triangle/quad surface meshes.

A MeshCoverage owns:
  - node_map:       node id -> Node (x, y, z)
  - face_map:       face id -> Face (n0, n1, n2, n3), n3 == 0 for triangles
  - half_edge_map:  half-edge id -> HalfEdge
  - node_face_adj:  node id -> {face ids touching the node}
  - face_half_edge_adj: face id -> {half-edge ids bounding the face}

Entities are only created and removed through MeshCoverage methods so the
two adjacency indices always mirror face_map and half_edge_map.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterator, List, Optional, Set, Tuple

import numpy as np

from idalloc import NO_ID, FaceId, HalfEdgeId, IdSpace, NodeId

logger = logging.getLogger(__name__)


BUFFER_KINDS = ('lines', 'triangles')


def make_edge(v1: int, v2: int) -> Tuple[int, int]:
    """Canonical (sorted) key of an undirected edge"""
    return (min(v1, v2), max(v1, v2))


# =============================================================================
# ENTITIES
# =============================================================================

@dataclass
class Node:
    x: float
    y: float
    z: float


@dataclass
class Face:
    """Triangle (n3 == NO_ID) or quad, as an ordered loop of node ids"""
    n0: NodeId
    n1: NodeId
    n2: NodeId
    n3: NodeId = NodeId(NO_ID)

    @property
    def is_quad(self) -> bool:
        return self.n3 != NO_ID

    @property
    def nodes(self) -> Tuple[NodeId, ...]:
        if self.is_quad:
            return (self.n0, self.n1, self.n2, self.n3)
        return (self.n0, self.n1, self.n2)


@dataclass
class HalfEdge:
    """Directed edge start -> end bounding one face. twin_id == NO_ID on boundaries."""
    start_id: NodeId
    end_id: NodeId
    face_id: FaceId
    prev_id: HalfEdgeId = HalfEdgeId(NO_ID)
    next_id: HalfEdgeId = HalfEdgeId(NO_ID)
    twin_id: HalfEdgeId = HalfEdgeId(NO_ID)

    @property
    def key(self) -> Tuple[int, int]:
        return make_edge(self.start_id, self.end_id)


# =============================================================================
# ADJACENCY INDICES
# =============================================================================

class AdjacencyIndex:
    """Key -> de-duplicated set of values"""

    def __init__(self):
        self._map: Dict[int, Set[int]] = {}

    def bind(self, key: int, value: int):
        self._map.setdefault(key, set()).add(value)

    def unbind(self, key: int, value: int):
        values = self._map.get(key)
        if values is not None:
            values.discard(value)

    def remove_key(self, key: int):
        self._map.pop(key, None)

    def get(self, key: int) -> Optional[FrozenSet[int]]:
        values = self._map.get(key)
        if values is None:
            return None
        return frozenset(values)

    def __contains__(self, key) -> bool:
        return key in self._map

    def __iter__(self) -> Iterator[int]:
        return iter(self._map)

    def __len__(self) -> int:
        return len(self._map)

    def __repr__(self):
        return f"{type(self).__name__}({len(self._map)} keys)"


class NodeFaceAdj(AdjacencyIndex):
    """node id -> faces incident to it"""


class FaceHalfEdgeAdj(AdjacencyIndex):
    """face id -> half-edges bounding it"""


# =============================================================================
# BOUNDING BOX
# =============================================================================

class BBox3:
    """Running axis-aligned bounding box over nodes"""

    def __init__(self):
        self.min_x = self.min_y = self.min_z = float('inf')
        self.max_x = self.max_y = self.max_z = float('-inf')

    def eat(self, node: Node):
        if node.x < self.min_x:
            self.min_x = node.x
        if node.x > self.max_x:
            self.max_x = node.x
        if node.y < self.min_y:
            self.min_y = node.y
        if node.y > self.max_y:
            self.max_y = node.y
        if node.z < self.min_z:
            self.min_z = node.z
        if node.z > self.max_z:
            self.max_z = node.z

    @property
    def is_empty(self) -> bool:
        return self.min_x > self.max_x

    @property
    def min(self) -> Tuple[float, float, float]:
        return (self.min_x, self.min_y, self.min_z)

    @property
    def max(self) -> Tuple[float, float, float]:
        return (self.max_x, self.max_y, self.max_z)

    @property
    def center(self) -> Tuple[float, float, float]:
        return ((self.min_x + self.max_x) / 2.0,
                (self.min_y + self.max_y) / 2.0,
                (self.min_z + self.max_z) / 2.0)

    @property
    def extent(self) -> Tuple[float, float, float]:
        return (self.max_x - self.min_x,
                self.max_y - self.min_y,
                self.max_z - self.min_z)

    def __repr__(self):
        if self.is_empty:
            return "BBox3(empty)"
        return f"BBox3(min={self.min}, max={self.max})"


# =============================================================================
# MESH COVERAGE
# =============================================================================

class MeshCoverage:
    """
    One named mesh dataset.

    Attributes:
        name: coverage id (as listed in the coverage descriptor)
        ids: IdSpace the coverage draws entity ids from
        node_map, face_map, half_edge_map: id -> entity
        node_face_adj, face_half_edge_adj: adjacency indices

    Not thread-safe: callers need exclusive access while mutating.
    """

    def __init__(self, name: str, ids: Optional[IdSpace] = None):
        self.name = name
        self.ids = ids if ids is not None else IdSpace()
        self.node_map: Dict[NodeId, Node] = {}
        self.face_map: Dict[FaceId, Face] = {}
        self.half_edge_map: Dict[HalfEdgeId, HalfEdge] = {}
        self.node_face_adj = NodeFaceAdj()
        self.face_half_edge_adj = FaceHalfEdgeAdj()

    @property
    def n_nodes(self) -> int:
        return len(self.node_map)

    @property
    def n_faces(self) -> int:
        return len(self.face_map)

    @property
    def n_half_edges(self) -> int:
        return len(self.half_edge_map)

    def __len__(self):
        return len(self.node_map)

    def __repr__(self):
        return (f"MeshCoverage({self.name!r}, nodes={self.n_nodes}, "
                f"faces={self.n_faces}, half_edges={self.n_half_edges})")

    # --- Queries ---

    def query_node(self, node_id: int) -> Optional[Node]:
        return self.node_map.get(node_id)

    def query_face(self, face_id: int) -> Optional[Face]:
        return self.face_map.get(face_id)

    def query_half_edge(self, half_edge_id: int) -> Optional[HalfEdge]:
        return self.half_edge_map.get(half_edge_id)

    def node_faces(self, node_id: int) -> FrozenSet[int]:
        return self.node_face_adj.get(node_id) or frozenset()

    def face_half_edges(self, face_id: int) -> List[HalfEdgeId]:
        """Half-edges of a face in loop order, starting from the one leaving n0"""
        bound = self.face_half_edge_adj.get(face_id)
        face = self.face_map.get(face_id)
        if not bound or face is None:
            return []

        first = None
        for he_id in bound:
            he = self.half_edge_map.get(he_id)
            if he is not None and he.start_id == face.n0:
                first = he_id
                break
        if first is None:
            first = min(bound)

        loop = [first]
        he = self.half_edge_map[first]
        while he.next_id != first and he.next_id in bound and len(loop) < len(bound):
            loop.append(he.next_id)
            he = self.half_edge_map[he.next_id]
        return loop

    # --- Creation ---

    def create_node(self, x: float, y: float, z: float) -> NodeId:
        node_id = self.ids.next_node_id()
        self.node_map[node_id] = Node(float(x), float(y), float(z))
        return node_id

    def create_face(self, n0: int, n1: int, n2: int, n3: int = NO_ID) -> FaceId:
        """Store a face and bind it to its nodes. Node ids are not validated."""
        face_id = self.ids.next_face_id()
        face = Face(NodeId(int(n0)), NodeId(int(n1)), NodeId(int(n2)), NodeId(int(n3)))
        for node_id in face.nodes:
            self.node_face_adj.bind(node_id, face_id)
        self.face_map[face_id] = face
        return face_id

    # --- Removal ---

    def remove_face(self, face_id: int) -> bool:
        """
        Remove a face, unbinding it from its nodes and deleting its half-edges.
        Twins that pointed at the deleted half-edges fall back to NO_ID.
        """
        face = self.face_map.get(face_id)
        if face is not None:
            for node_id in face.nodes:
                self.node_face_adj.unbind(node_id, face_id)
            del self.face_map[face_id]
        self._drop_face_half_edges(face_id)
        return face is not None

    def remove_node(self, node_id: int) -> List[FaceId]:
        """Remove a node and every face touching it. Returns the removed face ids."""
        self.node_map.pop(node_id, None)
        removed = []
        for face_id in sorted(self.node_faces(node_id)):
            if self.remove_face(face_id):
                removed.append(FaceId(face_id))
        self.node_face_adj.remove_key(node_id)
        if removed:
            logger.debug(f"{self.name}: node {node_id} removed with {len(removed)} faces")
        return removed

    def _drop_face_half_edges(self, face_id: int):
        edges = []
        for he_id in self.face_half_edge_adj.get(face_id) or ():
            he = self.half_edge_map.pop(he_id, None)
            if he is None:
                continue
            edges.append((he.start_id, he.end_id))
            if he.twin_id == NO_ID:
                continue
            twin = self.half_edge_map.get(he.twin_id)
            if twin is not None and twin.twin_id == he_id:
                twin.twin_id = HalfEdgeId(NO_ID)
        self.face_half_edge_adj.remove_key(face_id)

        # an edge left with exactly two half-edges may pair now
        for start_id, end_id in edges:
            self._link_edge(start_id, end_id)

    # --- Half-edges ---

    def create_face_half_edges(self, face_id: int, resolve_twins: bool = True) -> List[HalfEdgeId]:
        """
        Build the half-edge loop of one face.

        Existing half-edges of the face are replaced. With resolve_twins, every
        edge of the loop is re-paired under the same rule as resolve_twins, so
        the result does not depend on the order faces are built in.
        """
        face = self.face_map.get(face_id)
        if face is None:
            raise KeyError(f"Face {face_id} not in coverage {self.name!r}")

        self._drop_face_half_edges(face_id)

        loop = face.nodes
        k = len(loop)
        he_ids = [self.ids.next_half_edge_id() for _ in loop]

        for i, he_id in enumerate(he_ids):
            self.half_edge_map[he_id] = HalfEdge(
                start_id=loop[i],
                end_id=loop[(i + 1) % k],
                face_id=FaceId(face_id),
                prev_id=he_ids[i - 1],
                next_id=he_ids[(i + 1) % k],
            )
            self.face_half_edge_adj.bind(face_id, he_id)

        if resolve_twins:
            for i in range(k):
                self._link_edge(loop[i], loop[(i + 1) % k])

        return he_ids

    def find_twin(self, start_id: int, end_id: int, face_id: int) -> HalfEdgeId:
        """
        Twin of the half-edge start -> end on face_id.

        That is the only half-edge of the edge on another face, provided it
        runs end -> start and face_id holds at most one half-edge of the edge
        itself. Returns NO_ID otherwise (boundary, neighbour not built,
        non-manifold edge or inconsistent winding).
        """
        own, others = [], []
        for he_id in self._edge_half_edges(start_id, end_id):
            he = self.half_edge_map[he_id]
            (own if he.face_id == face_id else others).append((he_id, he))
        if len(own) > 1 or len(others) != 1:
            return HalfEdgeId(NO_ID)
        if own and (own[0][1].start_id, own[0][1].end_id) != (start_id, end_id):
            return HalfEdgeId(NO_ID)
        twin_id, twin = others[0]
        if (twin.start_id, twin.end_id) != (end_id, start_id):
            return HalfEdgeId(NO_ID)
        return twin_id

    def _edge_half_edges(self, start_id: int, end_id: int) -> List[HalfEdgeId]:
        """Ids of every half-edge on the undirected edge start-end"""
        key = make_edge(start_id, end_id)
        found = []
        for face_id in sorted(self.node_faces(start_id)):
            for he_id in sorted(self.face_half_edge_adj.get(face_id) or ()):
                he = self.half_edge_map.get(he_id)
                if he is not None and he.key == key:
                    found.append(HalfEdgeId(he_id))
        return found

    def _is_twin_pair(self, a: HalfEdge, b: HalfEdge) -> bool:
        return (a.face_id != b.face_id
                and a.start_id == b.end_id and a.end_id == b.start_id)

    def _link_edge(self, start_id: int, end_id: int) -> bool:
        """Reset the twins of one edge and pair them if the edge is manifold"""
        he_ids = self._edge_half_edges(start_id, end_id)
        for he_id in he_ids:
            self.half_edge_map[he_id].twin_id = HalfEdgeId(NO_ID)
        if len(he_ids) != 2:
            return False
        a = self.half_edge_map[he_ids[0]]
        b = self.half_edge_map[he_ids[1]]
        if not self._is_twin_pair(a, b):
            return False
        a.twin_id = he_ids[1]
        b.twin_id = he_ids[0]
        return True

    def generate_half_edges(self) -> int:
        """
        Build half-edges for every face that has none, then pair twins.

        Phase 1 creates all loops without twins; phase 2 (resolve_twins)
        pairs them by undirected edge key, so build order does not matter.
        Returns the number of half-edges created.
        """
        created = 0
        for face_id in list(self.face_map):
            if self.face_half_edge_adj.get(face_id):
                continue
            created += len(self.create_face_half_edges(face_id, resolve_twins=False))
        pairs = self.resolve_twins()
        logger.debug(f"{self.name}: built {created} half-edges, {pairs} twin pairs")
        return created

    def resolve_twins(self) -> int:
        """
        Re-pair every half-edge with its twin. Returns the number of pairs.

        An edge key gets a pair only when exactly two half-edges share it,
        they run in opposite directions and they bound different faces.
        Everything else is left at NO_ID.
        """
        edge_half_edges = defaultdict(list)
        for face_id in self.face_map:
            for he_id in sorted(self.face_half_edge_adj.get(face_id) or ()):
                he = self.half_edge_map.get(he_id)
                if he is None:
                    continue
                he.twin_id = HalfEdgeId(NO_ID)
                edge_half_edges[he.key].append(he_id)

        pairs = 0
        for he_ids in edge_half_edges.values():
            if len(he_ids) != 2:
                continue
            a = self.half_edge_map[he_ids[0]]
            b = self.half_edge_map[he_ids[1]]
            if not self._is_twin_pair(a, b):
                continue
            a.twin_id = he_ids[1]
            b.twin_id = he_ids[0]
            pairs += 1
        return pairs

    # --- Bounding box ---

    def get_bbox3(self) -> BBox3:
        bbox = BBox3()
        for node in self.node_map.values():
            bbox.eat(node)
        return bbox

    # --- Buffers ---

    def generate_face_buffer(self) -> np.ndarray:
        """Triangle index triples in raw node ids; quads split along n0-n2"""
        ids = []
        for face in self.face_map.values():
            if face.is_quad:
                ids.extend((face.n0, face.n1, face.n2, face.n2, face.n3, face.n0))
            else:
                ids.extend((face.n0, face.n1, face.n2))
        return np.array(ids, dtype=np.uint32)

    def generate_half_edge_buffer(self) -> np.ndarray:
        """Node id pairs for every edge of every face, closing edge included"""
        ids = []
        for face in self.face_map.values():
            loop = face.nodes
            for i in range(len(loop)):
                ids.append(loop[i])
                ids.append(loop[(i + 1) % len(loop)])
        return np.array(ids, dtype=np.uint32)

    def generate_buffer(self, kind: str = 'lines') -> Tuple[np.ndarray, np.ndarray]:
        """
        Dense render buffers.

        Returns:
            coordinates: float32 array, (x, y, z) per node in node_map order
            indices: uint32 array of row positions into coordinates
                     ('lines' = edge pairs, 'triangles' = triangle triples)
        """
        if kind not in BUFFER_KINDS:
            raise ValueError(f"Unknown buffer kind: {kind}")

        coordinates = np.zeros(len(self.node_map) * 3, dtype=np.float32)
        position = {}
        for i, (node_id, node) in enumerate(self.node_map.items()):
            coordinates[3*i:3*i + 3] = (node.x, node.y, node.z)
            position[node_id] = i

        raw = self.generate_half_edge_buffer() if kind == 'lines' else self.generate_face_buffer()
        indices = np.zeros(len(raw), dtype=np.uint32)
        for i, node_id in enumerate(raw.tolist()):
            if node_id not in position:
                raise ValueError(f"Coverage {self.name!r}: face references missing node {node_id}")
            indices[i] = position[node_id]

        return coordinates, indices
