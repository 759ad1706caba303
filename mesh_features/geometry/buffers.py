"""
Immutable mesh buffers and per-triangle geometry.

MeshBuffers is the input record for detection and for the feature pool:
flat position, index and normal arrays, copied and frozen on construction
so that a registered mesh can never change underneath its content id.

Construction is lenient (anything array-like is accepted); ``validate()``
is strict and raises InvalidGeometry with a description of the first
problem found.

Usage:
    buffers = MeshBuffers.from_arrays(vertices, faces)
    buffers.validate()
    mesh_id = buffers.content_hash()
    tris = buffers.triangles()
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
from numpy.typing import NDArray

from mesh_features.errors import InvalidGeometry

logger = logging.getLogger(__name__)

MESH_ID_PREFIX = "mesh_"


def _frozen(values: Any, dtype: Any = None) -> NDArray:
    """Flat read-only copy of values; None becomes an empty array."""
    if values is None:
        arr = np.zeros(0, dtype=dtype or np.float64)
    else:
        try:
            arr = np.array(values, dtype=dtype).reshape(-1)
        except (TypeError, ValueError) as e:
            raise InvalidGeometry(f"Buffer is not numeric: {e}") from e
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class TriangleSet:
    """Per-triangle geometry computed once per mesh.

    Attributes:
        vertices: (N, 3) vertex positions
        faces: (M, 3) vertex indices per triangle
        normals: (M, 3) unit normals (zero rows for zero-area triangles)
        centroids: (M, 3) triangle centroids
        areas: (M,) triangle areas
    """
    vertices: NDArray[np.float64]
    faces: NDArray[np.int64]
    normals: NDArray[np.float64]
    centroids: NDArray[np.float64]
    areas: NDArray[np.float64]

    def __len__(self) -> int:
        return len(self.faces)

    @property
    def total_area(self) -> float:
        return float(self.areas.sum())


@dataclass(frozen=True, eq=False)
class MeshBuffers:
    """Flat vertex/index/normal buffers of a triangle mesh.

    Attributes:
        positions: Flat float array, 3 values per vertex
        indices: Flat index array, 3 per triangle, or empty for implicit
            triangulation (triangle i uses vertices 3i, 3i+1, 3i+2)
        normals: Optional flat per-vertex normals, same length as positions
    """
    positions: NDArray[np.float64]
    indices: Optional[NDArray] = None
    normals: Optional[NDArray[np.float64]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "positions", _frozen(self.positions, np.float64))
        if self.indices is not None:
            object.__setattr__(self, "indices", _frozen(self.indices))
        if self.normals is not None:
            object.__setattr__(self, "normals", _frozen(self.normals, np.float64))

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_arrays(
        cls,
        vertices: NDArray[np.float64],
        faces: Optional[NDArray] = None,
        normals: Optional[NDArray[np.float64]] = None,
    ) -> 'MeshBuffers':
        """Build buffers from (N, 3) vertices and optional (M, 3) faces."""
        return cls(positions=vertices, indices=faces, normals=normals)

    @classmethod
    def from_triangles(cls, triangles: NDArray[np.float64]) -> 'MeshBuffers':
        """Build implicit-triangulation buffers from an (M, 3, 3) triangle soup.

        This is the layout numpy-stl exposes as ``Mesh.vectors``.
        """
        return cls(positions=np.asarray(triangles, dtype=np.float64).reshape(-1))

    # ------------------------------------------------------------------
    # Shape queries
    # ------------------------------------------------------------------

    @property
    def has_indices(self) -> bool:
        return self.indices is not None and self.indices.size > 0

    @property
    def vertex_count(self) -> int:
        return self.positions.size // 3

    @property
    def triangle_count(self) -> int:
        if self.has_indices:
            return self.indices.size // 3
        return self.vertex_count // 3

    @property
    def vertices(self) -> NDArray[np.float64]:
        """(N, 3) read-only view of positions."""
        return self.positions[: self.vertex_count * 3].reshape(-1, 3)

    def faces(self) -> NDArray[np.int64]:
        """(M, 3) vertex indices per triangle."""
        if self.has_indices:
            return self.indices.astype(np.int64).reshape(-1, 3)
        return np.arange(self.triangle_count * 3, dtype=np.int64).reshape(-1, 3)

    def vertex_normals(self) -> Optional[NDArray[np.float64]]:
        """(N, 3) per-vertex normals, or None when none were supplied."""
        if self.normals is None or self.normals.size == 0:
            return None
        return self.normals.reshape(-1, 3)

    # ------------------------------------------------------------------
    # Validation and identity
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Check that the buffers describe a usable triangle mesh.

        Raises:
            InvalidGeometry: On missing or empty positions, lengths that are not
                multiples of 3, non-finite values, malformed or out-of-range
                indices, or mismatched normals
        """
        positions = self.positions
        if positions.size == 0:
            raise InvalidGeometry("Position buffer is empty")
        if positions.size % 3 != 0:
            raise InvalidGeometry(
                f"Position buffer length {positions.size} is not a multiple of 3")
        if not np.all(np.isfinite(positions)):
            raise InvalidGeometry("Position buffer contains NaN or infinite values")

        n_vertices = self.vertex_count
        if self.has_indices:
            indices = self.indices
            if indices.dtype.kind == 'f':
                if not np.all(np.isfinite(indices)) or np.any(indices != np.round(indices)):
                    raise InvalidGeometry("Index buffer contains non-integral values")
            elif indices.dtype.kind not in 'iu':
                raise InvalidGeometry(f"Index buffer has unsupported dtype {indices.dtype}")
            if indices.size % 3 != 0:
                raise InvalidGeometry(
                    f"Index buffer length {indices.size} is not a multiple of 3")
            if indices.min() < 0 or indices.max() >= n_vertices:
                raise InvalidGeometry(
                    f"Index out of range: valid range is [0, {n_vertices - 1}], "
                    f"got [{int(indices.min())}, {int(indices.max())}]")
        elif n_vertices % 3 != 0:
            raise InvalidGeometry(
                f"Implicit triangulation needs a vertex count divisible by 3, got {n_vertices}")

        if self.normals is not None and self.normals.size > 0:
            if self.normals.size != positions.size:
                raise InvalidGeometry(
                    f"Normal buffer length {self.normals.size} does not match "
                    f"position buffer length {positions.size}")
            if not np.all(np.isfinite(self.normals)):
                raise InvalidGeometry("Normal buffer contains NaN or infinite values")

        if self.triangle_count == 0:
            raise InvalidGeometry("Mesh has no triangles")

    def content_hash(self) -> str:
        """Content id of the buffers.

        BLAKE2b over canonical little-endian bytes and shapes, so equal
        geometry gives the same id regardless of input dtype or memory layout.
        """
        h = hashlib.blake2b(digest_size=16)

        # +0.0 folds negative zero into zero
        positions = np.ascontiguousarray(self.positions + 0.0, dtype='<f8')
        h.update(b"positions:%d;" % positions.size)
        h.update(positions.tobytes())

        if self.has_indices:
            indices = np.ascontiguousarray(self.indices, dtype='<i8')
            h.update(b"indices:%d;" % indices.size)
            h.update(indices.tobytes())
        else:
            h.update(b"indices:implicit;")

        if self.normals is not None and self.normals.size > 0:
            normals = np.ascontiguousarray(self.normals + 0.0, dtype='<f8')
            h.update(b"normals:%d;" % normals.size)
            h.update(normals.tobytes())

        return MESH_ID_PREFIX + h.hexdigest()

    # ------------------------------------------------------------------
    # Per-triangle geometry
    # ------------------------------------------------------------------

    def triangles(self) -> TriangleSet:
        """Compute normals, centroids and areas for every triangle.

        Normals follow the winding order. When per-vertex normals are
        supplied, a face normal pointing against their sum is flipped.
        """
        vertices = np.array(self.vertices, dtype=np.float64)
        faces = self.faces()

        v0 = vertices[faces[:, 0]]
        v1 = vertices[faces[:, 1]]
        v2 = vertices[faces[:, 2]]

        cross = np.cross(v1 - v0, v2 - v0)
        lengths = np.linalg.norm(cross, axis=1)
        areas = 0.5 * lengths

        normals = np.zeros_like(cross)
        nonzero = lengths > 0
        normals[nonzero] = cross[nonzero] / lengths[nonzero, np.newaxis]

        vertex_normals = self.vertex_normals()
        if vertex_normals is not None:
            reference = vertex_normals[faces].sum(axis=1)
            flip = np.einsum('ij,ij->i', normals, reference) < 0
            normals[flip] *= -1.0

        centroids = (v0 + v1 + v2) / 3.0

        for arr in (vertices, faces, normals, centroids, areas):
            arr.setflags(write=False)

        return TriangleSet(
            vertices=vertices,
            faces=faces,
            normals=normals,
            centroids=centroids,
            areas=areas,
        )
