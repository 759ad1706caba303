"""
Cylinder fitting for residual triangle components.

Each edge-connected component left over after plane growing is tested as
a whole:

1. Axis candidates: the three eigenvectors of the covariance of the member
   centroids, plus the normal-scatter direction (smallest eigenvector of
   sum(n n^T), which is the axis whenever all normals are perpendicular
   to it).
2. For each candidate the member vertices are projected onto the plane
   perpendicular to it and a least-squares circle gives the axis line.
   The candidate with the smallest variance of radial distances wins.
3. radius = mean radial distance, confidence = 1 - std/mean,
   height = extent along the axis, center = axis point at mid-height.

The fit is rejected unless every member vertex is within
``radius_tolerance`` of the radius, every member normal is perpendicular
to the axis within ``axis_angle_tolerance``, and no two adjacent members
meet at more than ``max_facet_angle`` (so square and hexagonal prisms are
not reported as cylinders).
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
from numpy.typing import NDArray
from scipy.linalg import eigh

from mesh_features.project_config import DetectorConfig
from mesh_features.topology.adjacency import TriangleAdjacencyGraph

logger = logging.getLogger(__name__)


class RejectionReason(Enum):
    """Why a component is not a cylinder."""
    TOO_FEW_TRIANGLES = "too_few_triangles"
    DEGENERATE_AXIS = "degenerate_axis"
    LOW_CONFIDENCE = "low_confidence"
    RADIUS_OUT_OF_TOLERANCE = "radius_out_of_tolerance"
    NORMALS_NOT_PERPENDICULAR = "normals_not_perpendicular"
    FACET_ANGLE_TOO_LARGE = "facet_angle_too_large"


@dataclass(frozen=True, eq=False)
class CylinderFit:
    """Accepted cylinder before it is given an id."""
    triangles: Tuple[int, ...]
    axis: NDArray[np.float64]
    center: NDArray[np.float64]
    radius: float
    height: float
    confidence: float
    area: float
    vertices: NDArray[np.float64]


@dataclass(frozen=True)
class FitRejection:
    """A component that failed one of the cylinder rules."""
    reason: RejectionReason
    triangle_count: int
    detail: str = ""

    def __str__(self) -> str:
        text = f"{self.reason.value} ({self.triangle_count} triangles)"
        return f"{text}: {self.detail}" if self.detail else text


FitResult = Union[CylinderFit, FitRejection]


def canonical_axis(axis: NDArray[np.float64]) -> NDArray[np.float64]:
    """Unit axis with its largest-magnitude component positive."""
    axis = np.asarray(axis, dtype=np.float64)
    axis = axis / np.linalg.norm(axis)
    if axis[int(np.argmax(np.abs(axis)))] < 0:
        axis = -axis
    return axis


def _plane_basis(axis: NDArray[np.float64]) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
    u = np.array([1.0, 0.0, 0.0])
    if abs(np.dot(u, axis)) > 0.9:
        u = np.array([0.0, 1.0, 0.0])
    u -= np.dot(u, axis) * axis
    u /= np.linalg.norm(u)
    return u, np.cross(axis, u)


def _fit_circle_lsq(pts: NDArray[np.float64]) -> Optional[Tuple[float, float, float]]:
    """Least squares circle fit. Returns (cx, cy, radius) or None."""
    n = len(pts)
    if n < 3:
        return None
    x, y = pts[:, 0], pts[:, 1]
    A = np.column_stack([2 * x, 2 * y, np.ones(n)])
    b = x ** 2 + y ** 2
    try:
        res, _, rank, _ = np.linalg.lstsq(A, b, rcond=None)
    except np.linalg.LinAlgError:
        return None
    if rank < 3:
        return None
    cx, cy = res[0], res[1]
    r2 = res[2] + cx ** 2 + cy ** 2
    return (float(cx), float(cy), float(np.sqrt(r2))) if r2 > 0 else None


class CylinderFitter:
    """Fits one cylinder per triangle component, all or nothing.

    Example:
        fitter = CylinderFitter.from_config(graph, config)
        result = fitter.fit(component)
        if isinstance(result, CylinderFit):
            print(result.radius, result.axis)
    """

    def __init__(
        self,
        graph: TriangleAdjacencyGraph,
        radius_tolerance: float = 0.01,
        axis_angle_tolerance: float = 0.15,
        min_cylinder_triangles: int = 6,
        min_cylinder_confidence: float = 0.7,
        max_facet_angle: float = math.radians(50.0),
    ):
        self.graph = graph
        self.radius_tolerance = radius_tolerance
        self.axis_angle_tolerance = axis_angle_tolerance
        self.max_normal_dot = math.sin(axis_angle_tolerance)
        self.min_cylinder_triangles = min_cylinder_triangles
        self.min_cylinder_confidence = min_cylinder_confidence
        self.max_facet_angle = max_facet_angle

    @classmethod
    def from_config(cls, graph: TriangleAdjacencyGraph, config: DetectorConfig) -> 'CylinderFitter':
        return cls(
            graph,
            radius_tolerance=config.radius_tolerance,
            axis_angle_tolerance=config.axis_angle_tolerance,
            min_cylinder_triangles=config.min_cylinder_triangles,
            min_cylinder_confidence=config.min_cylinder_confidence,
            max_facet_angle=config.max_facet_angle,
        )

    def member_vertices(self, idx: NDArray[np.int64]) -> NDArray[np.float64]:
        """Positions of the distinct welded vertices used by the members."""
        tris = self.graph.triangles
        raw = tris.faces[idx].reshape(-1)
        labels = self.graph.welded_faces[idx].reshape(-1)
        _, first = np.unique(labels, return_index=True)
        return tris.vertices[raw[np.sort(first)]]

    def _axis_candidates(self, idx: NDArray[np.int64]) -> List[NDArray[np.float64]]:
        tris = self.graph.triangles
        centroids = tris.centroids[idx]
        centred = centroids - centroids.mean(axis=0)
        _, vecs = eigh(centred.T @ centred / len(idx))
        candidates = [vecs[:, i] for i in range(3)]

        normals = tris.normals[idx]
        _, normal_vecs = eigh(normals.T @ normals)
        candidates.append(normal_vecs[:, 0])
        return candidates

    def _radial_profile(
        self,
        points: NDArray[np.float64],
        origin: NDArray[np.float64],
        axis: NDArray[np.float64],
    ) -> Tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]]:
        """Axis point, radial distances and axial coordinates for one direction."""
        rel = points - origin
        u, v = _plane_basis(axis)
        p2d = np.column_stack([rel @ u, rel @ v])

        point = origin
        circle = _fit_circle_lsq(p2d)
        if circle is not None:
            cx, cy, _ = circle
            point = origin + cx * u + cy * v

        rel = points - point
        along = rel @ axis
        radial = np.linalg.norm(rel - np.outer(along, axis), axis=1)
        return point, radial, along

    def _max_facet_angle(self, idx: NDArray[np.int64]) -> float:
        members = set(idx.tolist())
        normals = self.graph.triangles.normals
        min_cos = 1.0
        for t in idx.tolist():
            for neighbour in self.graph.ordered_neighbors(t):
                if neighbour > t and neighbour in members:
                    min_cos = min(min_cos, float(np.dot(normals[t], normals[neighbour])))
        return math.acos(max(-1.0, min(1.0, min_cos)))

    def fit(self, component: Sequence[int]) -> FitResult:
        """Fit a cylinder to all triangles of component.

        Args:
            component: Edge-connected triangle indices

        Returns:
            CylinderFit on success, FitRejection with the first failed rule otherwise
        """
        idx = np.array(sorted(int(t) for t in component), dtype=np.int64)
        n = len(idx)
        if n < self.min_cylinder_triangles or n == 0:
            return self._reject(RejectionReason.TOO_FEW_TRIANGLES, n)

        tris = self.graph.triangles
        points = self.member_vertices(idx)
        origin = tris.centroids[idx].mean(axis=0)

        best = None
        best_var = math.inf
        for candidate in self._axis_candidates(idx):
            length = float(np.linalg.norm(candidate))
            if length < 1e-12:
                continue
            axis = candidate / length
            point, radial, along = self._radial_profile(points, origin, axis)
            variance = float(radial.var())
            if variance < best_var:
                best, best_var = (axis, point, radial, along), variance

        if best is None:
            return self._reject(RejectionReason.DEGENERATE_AXIS, n, "no usable axis candidate")
        axis, point, radial, along = best

        radius = float(radial.mean())
        if radius <= 1e-12 * self.graph.diagonal:
            return self._reject(RejectionReason.DEGENERATE_AXIS, n, "zero radius")

        confidence = float(np.clip(1.0 - radial.std() / radius, 0.0, 1.0))
        if confidence < self.min_cylinder_confidence:
            return self._reject(RejectionReason.LOW_CONFIDENCE, n,
                                f"confidence {confidence:.3f} < {self.min_cylinder_confidence:.3f}")

        deviation = float(np.max(np.abs(radial - radius)) / radius)
        if deviation > self.radius_tolerance:
            return self._reject(RejectionReason.RADIUS_OUT_OF_TOLERANCE, n,
                                f"radial deviation {deviation:.4f} > {self.radius_tolerance:.4f}")

        normal_dot = float(np.max(np.abs(tris.normals[idx] @ axis)))
        if normal_dot > self.max_normal_dot:
            return self._reject(RejectionReason.NORMALS_NOT_PERPENDICULAR, n,
                                f"max |n.a| {normal_dot:.4f} > {self.max_normal_dot:.4f}")

        facet_angle = self._max_facet_angle(idx)
        if facet_angle > self.max_facet_angle:
            return self._reject(RejectionReason.FACET_ANGLE_TOO_LARGE, n,
                                f"{math.degrees(facet_angle):.1f} deg > "
                                f"{math.degrees(self.max_facet_angle):.1f} deg")

        lo, hi = float(along.min()), float(along.max())
        oriented = canonical_axis(axis)
        center = point + axis * (lo + hi) / 2.0

        fit = CylinderFit(
            triangles=tuple(int(t) for t in idx),
            axis=oriented,
            center=center,
            radius=radius,
            height=hi - lo,
            confidence=confidence,
            area=float(tris.areas[idx].sum()),
            vertices=points,
        )
        logger.debug("Cylinder fitted: %d triangles, r=%.4f, h=%.4f, confidence=%.3f",
                     n, radius, fit.height, confidence)
        return fit

    @staticmethod
    def _reject(reason: RejectionReason, count: int, detail: str = "") -> FitRejection:
        rejection = FitRejection(reason=reason, triangle_count=count, detail=detail)
        logger.debug("Cylinder rejected: %s", rejection)
        return rejection
