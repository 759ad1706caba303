"""
Edge-based triangle adjacency for feature detection.

Two triangles are neighbours when they share an edge. Vertices are welded
by position before edges are compared, so triangle-soup buffers (STL
files, implicit triangulation) get the same adjacency as indexed meshes:

1. Vertices closer than ``weld_tolerance * bbox diagonal`` are grouped
   with a KD-tree pair query and connected components.
2. Each non-degenerate triangle contributes its three welded edges to
   an edge -> triangles map.
3. Every pair of triangles on a shared edge becomes adjacent. Edges with
   more than two triangles (non-manifold) connect all of them.

Degenerate triangles (zero area or a repeated welded vertex) are kept out
of the graph and reported separately.

Usage:
    graph = TriangleAdjacencyGraph.from_buffers(buffers)
    for neighbour in graph.neighbors(face):
        ...
    pieces = graph.connected_components(residual)
"""

import logging
from collections import deque
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

import numpy as np
from numpy.typing import NDArray
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components as _sparse_components
from scipy.spatial import cKDTree as KDTree

from mesh_features.geometry.bounds import BoundingBox
from mesh_features.geometry.buffers import MeshBuffers, TriangleSet

logger = logging.getLogger(__name__)

# Triangles with area below this fraction of diagonal^2 are degenerate
AREA_EPSILON = 1e-12


def weld_vertices(vertices: NDArray[np.float64], tolerance: float) -> NDArray[np.int64]:
    """Label vertices so that positions within tolerance share a label.

    Args:
        vertices: (N, 3) vertex positions
        tolerance: Absolute weld distance; 0 merges exact duplicates only

    Returns:
        (N,) array of welded vertex labels, numbered from 0
    """
    n = len(vertices)
    if n == 0:
        return np.zeros(0, dtype=np.int64)

    if tolerance <= 0:
        _, labels = np.unique(vertices, axis=0, return_inverse=True)
        return labels.reshape(-1).astype(np.int64)

    tree = KDTree(vertices)
    pairs = tree.query_pairs(tolerance, output_type='ndarray')
    if len(pairs) == 0:
        return np.arange(n, dtype=np.int64)

    graph = coo_matrix(
        (np.ones(len(pairs), dtype=np.int8), (pairs[:, 0], pairs[:, 1])),
        shape=(n, n),
    )
    _, labels = _sparse_components(graph, directed=False)
    return labels.astype(np.int64)


class TriangleAdjacencyGraph:
    """Read-only triangle adjacency over shared welded edges.

    Attributes:
        triangles: Per-triangle geometry the graph was built from
        welded_faces: (M, 3) welded vertex labels per triangle
        diagonal: Bounding box diagonal of the mesh
        edge_count: Number of distinct welded edges
        boundary_edge_count: Edges used by exactly one triangle
        non_manifold_edge_count: Edges used by more than two triangles
    """

    def __init__(self, triangles: TriangleSet, weld_tolerance: float = 1e-6):
        """Build the graph.

        Args:
            triangles: Per-triangle geometry
            weld_tolerance: Weld distance as a fraction of the bbox diagonal
        """
        self.triangles = triangles
        n_tri = len(triangles)

        self.diagonal = BoundingBox.from_points(triangles.vertices).diagonal
        labels = weld_vertices(triangles.vertices, weld_tolerance * self.diagonal)
        self.welded_vertex_count = int(labels.max()) + 1 if len(labels) else 0

        welded = labels[triangles.faces] if n_tri else np.zeros((0, 3), dtype=np.int64)
        welded.setflags(write=False)
        self.welded_faces = welded

        repeated = ((welded[:, 0] == welded[:, 1]) |
                    (welded[:, 1] == welded[:, 2]) |
                    (welded[:, 2] == welded[:, 0]))
        tiny = triangles.areas <= AREA_EPSILON * self.diagonal ** 2
        degenerate_mask = repeated | tiny
        self._degenerate_mask = degenerate_mask
        self.degenerate_triangles: Tuple[int, ...] = tuple(
            int(t) for t in np.flatnonzero(degenerate_mask))

        self._edge_map: Dict[Tuple[int, int], Tuple[int, ...]] = {}
        neighbour_sets: List[set] = [set() for _ in range(n_tri)]
        self.edge_count = 0
        self.boundary_edge_count = 0
        self.non_manifold_edge_count = 0

        valid = np.flatnonzero(~degenerate_mask)
        if len(valid):
            self._build_edges(welded[valid], valid, neighbour_sets)

        self._neighbors: List[FrozenSet[int]] = [frozenset(s) for s in neighbour_sets]
        self._ordered: List[Tuple[int, ...]] = [tuple(sorted(s)) for s in neighbour_sets]

        logger.debug(
            "Adjacency graph built",
            extra={
                'triangles': n_tri,
                'welded_vertices': self.welded_vertex_count,
                'edges': self.edge_count,
                'boundary_edges': self.boundary_edge_count,
                'non_manifold_edges': self.non_manifold_edge_count,
                'degenerate': len(self.degenerate_triangles),
            }
        )

    def _build_edges(
        self,
        faces: NDArray[np.int64],
        tri_ids: NDArray[np.int64],
        neighbour_sets: List[set],
    ) -> None:
        edges = np.concatenate([faces[:, [0, 1]], faces[:, [1, 2]], faces[:, [2, 0]]])
        edges.sort(axis=1)
        owners = np.tile(tri_ids, 3)

        unique_edges, inverse, counts = np.unique(
            edges, axis=0, return_inverse=True, return_counts=True)
        inverse = inverse.reshape(-1)

        order = np.argsort(inverse, kind='stable')
        grouped = owners[order]
        starts = np.concatenate([[0], np.cumsum(counts)[:-1]])

        self.edge_count = len(unique_edges)
        self.boundary_edge_count = int(np.count_nonzero(counts == 1))
        self.non_manifold_edge_count = int(np.count_nonzero(counts > 2))

        for (a, b), start, count in zip(unique_edges.tolist(), starts.tolist(), counts.tolist()):
            shared = tuple(sorted(set(grouped[start:start + count].tolist())))
            self._edge_map[(a, b)] = shared
            if len(shared) < 2:
                continue
            for t in shared:
                neighbour_sets[t].update(shared)
                neighbour_sets[t].discard(t)

    @classmethod
    def from_buffers(cls, buffers: MeshBuffers, weld_tolerance: float = 1e-6) -> 'TriangleAdjacencyGraph':
        """Validate buffers, compute triangle geometry and build the graph."""
        buffers.validate()
        return cls(buffers.triangles(), weld_tolerance=weld_tolerance)

    def __len__(self) -> int:
        return len(self._neighbors)

    @property
    def triangle_count(self) -> int:
        return len(self._neighbors)

    def neighbors(self, triangle: int) -> FrozenSet[int]:
        """Triangles sharing an edge with triangle."""
        return self._neighbors[triangle]

    def ordered_neighbors(self, triangle: int) -> Tuple[int, ...]:
        """Neighbours in ascending index order."""
        return self._ordered[triangle]

    def degree(self, triangle: int) -> int:
        return len(self._neighbors[triangle])

    def is_degenerate(self, triangle: int) -> bool:
        return bool(self._degenerate_mask[triangle])

    def edge_triangles(self, u: int, v: int) -> Tuple[int, ...]:
        """Triangles using the welded edge (u, v), in ascending order."""
        key = (u, v) if u <= v else (v, u)
        return self._edge_map.get(key, ())

    def dihedral_angle(self, a: int, b: int) -> float:
        """Angle between the normals of two triangles, in radians."""
        normals = self.triangles.normals
        cos_angle = float(np.clip(np.dot(normals[a], normals[b]), -1.0, 1.0))
        return float(np.arccos(cos_angle))

    @property
    def is_closed(self) -> bool:
        """True when every edge has exactly two triangles."""
        return self.boundary_edge_count == 0 and self.non_manifold_edge_count == 0

    def connected_components(
        self,
        subset: Iterable[int],
        max_size: Optional[int] = None,
        max_angle: Optional[float] = None,
    ) -> List[List[int]]:
        """Split a triangle subset into edge-connected pieces.

        Breadth-first search restricted to the subset, seeded in ascending
        index order, visiting neighbours in ascending order.

        Args:
            subset: Triangle indices to split
            max_size: Cap on component size; triangles left over start new
                components
            max_angle: When given, only cross edges whose dihedral angle is
                at most this (radians)

        Returns:
            Components as sorted index lists, ordered by smallest member
        """
        members = {int(t) for t in subset}
        normals = self.triangles.normals
        cos_limit = None if max_angle is None else float(np.cos(max_angle))

        visited: set = set()
        components: List[List[int]] = []
        for seed in sorted(members):
            if seed in visited:
                continue
            visited.add(seed)
            component = [seed]
            queue = deque([seed])
            while queue:
                current = queue.popleft()
                for neighbour in self._ordered[current]:
                    if max_size is not None and len(component) >= max_size:
                        break
                    if neighbour in visited or neighbour not in members:
                        continue
                    if cos_limit is not None and float(
                            np.dot(normals[current], normals[neighbour])) < cos_limit:
                        continue
                    visited.add(neighbour)
                    component.append(neighbour)
                    queue.append(neighbour)
            components.append(sorted(component))

        components.sort(key=lambda c: c[0])
        return components

    def summary(self) -> str:
        """Human-readable topology report."""
        lines = [
            "Adjacency Graph",
            "=" * 40,
            f"Triangles:          {self.triangle_count:,}",
            f"Welded vertices:    {self.welded_vertex_count:,}",
            f"Edges:              {self.edge_count:,}",
            f"Boundary edges:     {self.boundary_edge_count:,}",
            f"Non-manifold edges: {self.non_manifold_edge_count:,}",
            f"Degenerate:         {len(self.degenerate_triangles):,}",
            f"Closed:             {'Yes' if self.is_closed else 'No'}",
        ]
        return "\n".join(lines)
