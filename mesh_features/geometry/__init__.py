"""Mesh buffers and bounding boxes."""

from mesh_features.geometry.bounds import BoundingBox
from mesh_features.geometry.buffers import MeshBuffers, TriangleSet

__all__ = [
    "BoundingBox",
    "MeshBuffers",
    "TriangleSet",
]
