"""
STL file loading into MeshBuffers.

Supports:
- Binary STL (auto-detected)
- ASCII STL (auto-detected)

Vertices are deduplicated on coordinates rounded to 6 decimals, so the
returned buffers are indexed. Pass ``weld=False`` to keep the raw
triangle soup (implicit triangulation).
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
from stl import mesh

from mesh_features.errors import FeatureDetectionError
from mesh_features.geometry.buffers import MeshBuffers
from mesh_features.logging_config import timed

logger = logging.getLogger(__name__)

DEDUP_DECIMALS = 6


class STLFormat(Enum):
    """STL file format type."""
    BINARY = "binary"
    ASCII = "ascii"
    UNKNOWN = "unknown"


@dataclass
class STLInfo:
    """Metadata about a loaded STL file."""
    filepath: str
    format: STLFormat
    file_size_bytes: int
    n_triangles: int
    n_unique_vertices: int
    solid_name: Optional[str] = None

    @property
    def file_size_kb(self) -> float:
        return self.file_size_bytes / 1024


class STLLoadError(FeatureDetectionError):
    """STL file is missing, unreadable or has no triangles."""


def detect_stl_format(filepath: Union[str, Path]) -> Tuple[STLFormat, Optional[str]]:
    """Detect STL file format (binary vs ASCII).

    ASCII files start with ``solid`` and contain ``facet``/``endsolid``
    keywords. Binary files have an 80-byte header that may also start with
    ``solid``, so the keyword alone is not enough.

    Args:
        filepath: Path to STL file

    Returns:
        Tuple of (format, solid_name or None)

    Raises:
        STLLoadError: If the file cannot be read
    """
    try:
        with open(filepath, 'rb') as f:
            head = f.read(1024)
    except FileNotFoundError:
        raise STLLoadError(f"File not found: {str(filepath)!r}")
    except OSError as exc:
        raise STLLoadError(f"Cannot read file {str(filepath)!r}: {exc}") from exc

    if head.isascii():
        text = head.decode('ascii')
        first_line = text.lstrip().split('\n', 1)[0].strip()
        lowered = text.lower()
        if first_line.lower().startswith('solid') and ('facet' in lowered or 'endsolid' in lowered):
            return STLFormat.ASCII, first_line[5:].strip() or None

    if len(head) < 84:
        return STLFormat.UNKNOWN, None

    header = head[:80].split(b'\x00')[0].decode('ascii', errors='ignore').strip()
    solid_name = None
    if header.startswith('solid'):
        solid_name = header[5:].strip() or None
    return STLFormat.BINARY, solid_name


def _read_vectors(filepath: Union[str, Path]) -> np.ndarray:
    try:
        stl_mesh = mesh.Mesh.from_file(str(filepath))
    except FileNotFoundError:
        raise STLLoadError(f"File not found: {str(filepath)!r}")
    except Exception as exc:
        raise STLLoadError(f"Cannot parse STL file {str(filepath)!r}: {exc}") from exc

    if len(stl_mesh.vectors) == 0:
        raise STLLoadError(f"STL file {str(filepath)!r} contains no triangles")
    return np.asarray(stl_mesh.vectors, dtype=np.float64)


@timed(logger=logger, operation="Building mesh buffers")
def buffers_from_vectors(vectors: np.ndarray, weld: bool = True) -> MeshBuffers:
    """Convert an (M, 3, 3) triangle array to MeshBuffers.

    Args:
        vectors: Triangle corner coordinates, as numpy-stl ``Mesh.vectors``
        weld: Merge corners equal after rounding to DEDUP_DECIMALS

    Returns:
        Indexed buffers when weld is True, implicit triangulation otherwise
    """
    vectors = np.asarray(vectors, dtype=np.float64).reshape(-1, 3, 3)
    if not weld:
        return MeshBuffers.from_triangles(vectors)

    corners = np.round(vectors.reshape(-1, 3), DEDUP_DECIMALS)
    vertices, inverse = np.unique(corners, axis=0, return_inverse=True)
    faces = inverse.reshape(-1, 3).astype(np.uint32)
    return MeshBuffers.from_arrays(vertices, faces)


def load_stl(filepath: Union[str, Path], weld: bool = True) -> MeshBuffers:
    """Load an STL file.

    Args:
        filepath: Path to STL file (binary or ASCII)
        weld: Deduplicate vertices (see buffers_from_vectors)

    Returns:
        MeshBuffers of the file's triangles

    Raises:
        STLLoadError: If the file is missing, corrupt or has no triangles
    """
    stl_format, solid_name = detect_stl_format(filepath)
    file_size = os.path.getsize(filepath)

    logger.info("Loading STL: %s (format: %s, size: %.1f KB)",
                filepath, stl_format.value, file_size / 1024)
    if solid_name:
        logger.debug("Solid name: %s", solid_name)

    buffers = buffers_from_vectors(_read_vectors(filepath), weld=weld)

    logger.info("Loaded %d vertices, %d triangles",
                buffers.vertex_count, buffers.triangle_count)
    return buffers


def load_stl_with_info(filepath: Union[str, Path], weld: bool = True) -> Tuple[MeshBuffers, STLInfo]:
    """Load an STL file and return buffers plus file metadata.

    Raises:
        STLLoadError: If the file is missing, corrupt or has no triangles
    """
    stl_format, solid_name = detect_stl_format(filepath)
    buffers = load_stl(filepath, weld=weld)

    info = STLInfo(
        filepath=str(filepath),
        format=stl_format,
        file_size_bytes=os.path.getsize(filepath),
        n_triangles=buffers.triangle_count,
        n_unique_vertices=buffers.vertex_count,
        solid_name=solid_name,
    )
    return buffers, info
