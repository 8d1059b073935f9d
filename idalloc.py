"""
Identifier Allocation

Issues unique 32-bit identifiers for mesh entities (nodes, faces, half-edges).

  - 0 is reserved as "no entity" and is never issued
  - each kind of entity draws from its own counter
  - counters only move forward; ids are never reclaimed
"""

import threading
from typing import NewType


NodeId = NewType('NodeId', int)
FaceId = NewType('FaceId', int)
HalfEdgeId = NewType('HalfEdgeId', int)

NO_ID = 0
MAX_ID = 2**32 - 1


class IdOverflowError(RuntimeError):
    """Raised when a counter has issued every id in the 32-bit range"""


class IdCounter:
    """
    Monotonic id counter, safe to share between threads.

    Attributes:
        name: label used in error messages
        last: most recently issued id (NO_ID if none yet)
    """

    def __init__(self, name: str = 'id', start: int = NO_ID):
        if not NO_ID <= start <= MAX_ID:
            raise ValueError(f"Counter start {start} outside [0, {MAX_ID}]")
        self.name = name
        self._value = start
        self._lock = threading.Lock()

    @property
    def last(self) -> int:
        return self._value

    def allocate(self) -> int:
        """Return the next id and advance the counter"""
        with self._lock:
            if self._value >= MAX_ID:
                raise IdOverflowError(f"{self.name} ids exhausted (max {MAX_ID})")
            self._value += 1
            return self._value

    def __repr__(self):
        return f"IdCounter({self.name!r}, last={self._value})"


class IdSpace:
    """One counter per entity kind. Coverages sharing an IdSpace never collide."""

    def __init__(self):
        self.node = IdCounter('node')
        self.face = IdCounter('face')
        self.half_edge = IdCounter('half_edge')

    def next_node_id(self) -> NodeId:
        return NodeId(self.node.allocate())

    def next_face_id(self) -> FaceId:
        return FaceId(self.face.allocate())

    def next_half_edge_id(self) -> HalfEdgeId:
        return HalfEdgeId(self.half_edge.allocate())

    def __repr__(self):
        return (f"IdSpace(node={self.node.last}, face={self.face.last}, "
                f"half_edge={self.half_edge.last})")
