"""
Pytest configuration and fixtures for mesh_features.

Provides:
- Synthetic mesh builders (cylinders, boxes, spheres, tori, cones, prisms)
- STL file fixtures written with numpy-stl
- Feature pool fixtures
- Common assertion helpers
"""

import logging
from pathlib import Path
from typing import Callable, Optional, Sequence, Tuple

import numpy as np
import pytest
from stl import mesh as stl_mesh

from mesh_features.geometry.buffers import MeshBuffers
from mesh_features.logging_config import PACKAGE_LOGGER
from mesh_features.pool import FeaturePool
from mesh_features.project_config import PoolConfig

MeshArrays = Tuple[np.ndarray, np.ndarray]


# ============================================================================
# Mesh Builders
# ============================================================================

def _indexed(vertices: np.ndarray, faces: np.ndarray) -> MeshArrays:
    """Merge coincident vertices so that faces share indices."""
    vertices = np.asarray(vertices, dtype=np.float64)
    unique, inverse = np.unique(np.round(vertices, 9), axis=0, return_inverse=True)
    return unique, inverse.reshape(-1)[np.asarray(faces)].astype(np.uint32)


def _transform(vertices: np.ndarray, rotation: Optional[np.ndarray],
               offset: Sequence[float]) -> np.ndarray:
    if rotation is not None:
        vertices = vertices @ np.asarray(rotation).T
    return vertices + np.asarray(offset, dtype=np.float64)


def cylinder_arrays(
    radius: float = 2.0,
    height: float = 5.0,
    segments: int = 16,
    caps: bool = True,
    rotation: Optional[np.ndarray] = None,
    offset: Sequence[float] = (0.0, 0.0, 0.0),
) -> MeshArrays:
    """Faceted cylinder along +z from z=0, side triangles first, then top and bottom fans."""
    angles = np.linspace(0, 2 * np.pi, segments, endpoint=False)
    ring = np.column_stack([radius * np.cos(angles), radius * np.sin(angles)])
    bottom = np.column_stack([ring, np.zeros(segments)])
    top = np.column_stack([ring, np.full(segments, height)])
    vertices = np.vstack([bottom, top, [[0, 0, 0]], [[0, 0, height]]])

    n = segments
    faces = []
    for i in range(n):
        j = (i + 1) % n
        faces.append([i, j, n + j])
        faces.append([i, n + j, n + i])
    if caps:
        for i in range(n):
            j = (i + 1) % n
            faces.append([2 * n + 1, n + i, n + j])
        for i in range(n):
            j = (i + 1) % n
            faces.append([2 * n, j, i])

    vertices = _transform(vertices, rotation, offset)
    used = np.unique(np.array(faces))
    remap = np.full(len(vertices), -1)
    remap[used] = np.arange(len(used))
    return vertices[used], remap[np.array(faces)].astype(np.uint32)


def box_arrays(
    size: Sequence[float] = (10.0, 10.0, 10.0),
    subdivisions: int = 2,
    offset: Sequence[float] = (0.0, 0.0, 0.0),
) -> MeshArrays:
    """Axis-aligned box with each face split into a subdivisions x subdivisions grid."""
    sx, sy, sz = size
    X, Y, Z = np.array([sx, 0, 0.]), np.array([0, sy, 0.]), np.array([0, 0, sz])
    O = np.zeros(3)
    # (origin, u, v) with u x v pointing outward
    sides = [(O, Y, X), (Z, X, Y), (O, X, Z), (Y, Z, X), (O, Z, Y), (X, Y, Z)]

    n = subdivisions
    vertices, faces = [], []
    for origin, u, v in sides:
        base = len(vertices)
        for a in range(n + 1):
            for b in range(n + 1):
                vertices.append(origin + u * a / n + v * b / n)
        for a in range(n):
            for b in range(n):
                p00 = base + a * (n + 1) + b
                p10 = p00 + (n + 1)
                p11 = p10 + 1
                p01 = p00 + 1
                faces.append([p00, p10, p11])
                faces.append([p00, p11, p01])

    vertices = np.array(vertices) + np.asarray(offset, dtype=np.float64)
    return _indexed(vertices, np.array(faces))


def sphere_arrays(radius: float = 1.0, segments: int = 16, rings: int = 8) -> MeshArrays:
    """UV sphere centred at the origin."""
    vertices = [[0.0, 0.0, radius]]
    for k in range(1, rings):
        phi = np.pi * k / rings
        for i in range(segments):
            theta = 2 * np.pi * i / segments
            vertices.append([radius * np.sin(phi) * np.cos(theta),
                             radius * np.sin(phi) * np.sin(theta),
                             radius * np.cos(phi)])
    vertices.append([0.0, 0.0, -radius])
    south = len(vertices) - 1

    def ring_vertex(k: int, i: int) -> int:
        return 1 + (k - 1) * segments + (i % segments)

    faces = []
    for i in range(segments):
        faces.append([0, ring_vertex(1, i), ring_vertex(1, i + 1)])
    for k in range(1, rings - 1):
        for i in range(segments):
            a, b = ring_vertex(k, i), ring_vertex(k, i + 1)
            c, d = ring_vertex(k + 1, i), ring_vertex(k + 1, i + 1)
            faces.append([a, c, d])
            faces.append([a, d, b])
    for i in range(segments):
        faces.append([south, ring_vertex(rings - 1, i + 1), ring_vertex(rings - 1, i)])

    return np.array(vertices), np.array(faces, dtype=np.uint32)


def torus_arrays(major: float = 3.0, minor: float = 1.0,
                 major_segments: int = 16, minor_segments: int = 8) -> MeshArrays:
    """Torus around the z axis."""
    vertices = []
    for i in range(major_segments):
        theta = 2 * np.pi * i / major_segments
        for k in range(minor_segments):
            phi = 2 * np.pi * k / minor_segments
            r = major + minor * np.cos(phi)
            vertices.append([r * np.cos(theta), r * np.sin(theta), minor * np.sin(phi)])

    def vid(i: int, k: int) -> int:
        return (i % major_segments) * minor_segments + (k % minor_segments)

    faces = []
    for i in range(major_segments):
        for k in range(minor_segments):
            a, b = vid(i, k), vid(i + 1, k)
            c, d = vid(i + 1, k + 1), vid(i, k + 1)
            faces.append([a, b, c])
            faces.append([a, c, d])

    return np.array(vertices), np.array(faces, dtype=np.uint32)


def cone_arrays(radius: float = 2.0, height: float = 4.0, segments: int = 16) -> MeshArrays:
    """Cone with its base on z=0 and apex on +z."""
    angles = np.linspace(0, 2 * np.pi, segments, endpoint=False)
    ring = np.column_stack([radius * np.cos(angles), radius * np.sin(angles),
                            np.zeros(segments)])
    vertices = np.vstack([ring, [[0, 0, height]], [[0, 0, 0]]])
    apex, center = segments, segments + 1

    faces = []
    for i in range(segments):
        j = (i + 1) % segments
        faces.append([i, j, apex])
    for i in range(segments):
        j = (i + 1) % segments
        faces.append([center, j, i])

    return vertices, np.array(faces, dtype=np.uint32)


def merge_arrays(*parts: MeshArrays) -> MeshArrays:
    """Concatenate several meshes into one buffer pair."""
    vertices, faces, base = [], [], 0
    for v, f in parts:
        vertices.append(np.asarray(v, dtype=np.float64))
        faces.append(np.asarray(f, dtype=np.int64) + base)
        base += len(v)
    return np.vstack(vertices), np.vstack(faces).astype(np.uint32)


def soup(vertices: np.ndarray, faces: np.ndarray) -> MeshBuffers:
    """Implicit-triangulation buffers (every triangle has its own corners)."""
    return MeshBuffers.from_triangles(np.asarray(vertices)[np.asarray(faces, dtype=np.int64)])


# ============================================================================
# Mesh Fixtures
# ============================================================================

@pytest.fixture
def make_cylinder() -> Callable[..., MeshBuffers]:
    """Factory for indexed cylinder buffers (see cylinder_arrays)."""
    def factory(**kwargs) -> MeshBuffers:
        return MeshBuffers.from_arrays(*cylinder_arrays(**kwargs))
    return factory


@pytest.fixture
def make_box() -> Callable[..., MeshBuffers]:
    """Factory for indexed box buffers (see box_arrays)."""
    def factory(**kwargs) -> MeshBuffers:
        return MeshBuffers.from_arrays(*box_arrays(**kwargs))
    return factory


@pytest.fixture
def cylinder_buffers() -> MeshBuffers:
    """Closed cylinder r=2, h=5, 16 sides."""
    return MeshBuffers.from_arrays(*cylinder_arrays(radius=2.0, height=5.0, segments=16))


@pytest.fixture
def box_buffers() -> MeshBuffers:
    """10 mm cube with 2x2 subdivided faces (48 triangles)."""
    return MeshBuffers.from_arrays(*box_arrays())


@pytest.fixture
def coarse_box_buffers() -> MeshBuffers:
    """10 mm cube with one quad per face (12 triangles)."""
    return MeshBuffers.from_arrays(*box_arrays(subdivisions=1))


@pytest.fixture
def sphere_buffers() -> MeshBuffers:
    return MeshBuffers.from_arrays(*sphere_arrays())


@pytest.fixture
def torus_buffers() -> MeshBuffers:
    return MeshBuffers.from_arrays(*torus_arrays())


@pytest.fixture
def cone_buffers() -> MeshBuffers:
    return MeshBuffers.from_arrays(*cone_arrays())


# ============================================================================
# Logging
# ============================================================================

@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo setup_logging so later tests see mesh_features records in caplog."""
    yield
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(logging.NOTSET)
    package_logger.propagate = True


# ============================================================================
# Pool Fixtures
# ============================================================================

@pytest.fixture
def events() -> list:
    """Event sink passed as an observer."""
    return []


@pytest.fixture
def pool(events):
    """Feature pool without background preprocessing on registration."""
    config = PoolConfig(auto_preprocess=False, max_workers=4, time_budget_seconds=30.0)
    with FeaturePool(config, observer=events.append) as p:
        yield p


# ============================================================================
# STL File Fixtures
# ============================================================================

@pytest.fixture
def tmp_stl_dir(tmp_path: Path) -> Path:
    """Temporary directory for STL files created during tests."""
    return tmp_path


@pytest.fixture
def cube_stl_path(tmp_stl_dir: Path) -> Path:
    """Binary STL of a 10 mm cube centred at the origin (12 triangles)."""
    path = tmp_stl_dir / "cube.stl"
    vertices, faces = box_arrays(subdivisions=1, offset=(-5.0, -5.0, -5.0))
    write_stl(path, vertices, faces)
    return path


@pytest.fixture
def ascii_stl_path(tmp_stl_dir: Path) -> Path:
    """ASCII STL of the same cube, solid name 'cube'."""
    path = tmp_stl_dir / "ascii_cube.stl"
    vertices, faces = box_arrays(subdivisions=1, offset=(-5.0, -5.0, -5.0))
    write_stl(path, vertices, faces, binary=False, name="cube")
    return path


@pytest.fixture
def cylinder_stl_path(tmp_stl_dir: Path) -> Path:
    """Binary STL of a closed cylinder r=5, h=20, 32 sides."""
    path = tmp_stl_dir / "cylinder.stl"
    write_stl(path, *cylinder_arrays(radius=5.0, height=20.0, segments=32))
    return path


@pytest.fixture
def empty_stl_path(tmp_stl_dir: Path) -> Path:
    """Binary STL with 0 triangles."""
    path = tmp_stl_dir / "empty.stl"
    m = stl_mesh.Mesh(np.zeros(0, dtype=stl_mesh.Mesh.dtype))
    m.save(str(path))
    return path


# ============================================================================
# Helper Functions
# ============================================================================

def write_stl(path: Path, vertices: np.ndarray, faces: np.ndarray,
              binary: bool = True, name: str = "solid") -> None:
    """Write a mesh as an STL file."""
    triangles = np.asarray(vertices, dtype=np.float64)[np.asarray(faces, dtype=np.int64)]

    if binary:
        m = stl_mesh.Mesh(np.zeros(len(triangles), dtype=stl_mesh.Mesh.dtype))
        m.vectors[:] = triangles
        m.save(str(path))
        return

    with open(str(path), 'w') as f:
        f.write(f"solid {name}\n")
        for tri in triangles:
            normal = np.cross(tri[1] - tri[0], tri[2] - tri[0])
            norm = np.linalg.norm(normal)
            normal = normal / norm if norm > 1e-10 else np.array([0.0, 0.0, 1.0])
            f.write(f"  facet normal {normal[0]} {normal[1]} {normal[2]}\n")
            f.write("    outer loop\n")
            for v in tri:
                f.write(f"      vertex {v[0]} {v[1]} {v[2]}\n")
            f.write("    endloop\n")
            f.write("  endfacet\n")
        f.write(f"endsolid {name}\n")


def feature_by_scan(features, face: int):
    """Feature containing face found by linear scan of the feature list."""
    for feature in features.features:
        if face in feature.triangles:
            return feature
    return None
