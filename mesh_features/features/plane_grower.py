"""
Planar region growing over the triangle adjacency graph.

Seeds are taken in ascending triangle order. From each unassigned seed a
breadth-first search admits a neighbour when

- its normal is within ``angle_tolerance`` of the running region normal, and
- its centroid lies within ``plane_distance_tolerance * bbox diagonal`` of
  the running plane.

The running normal is the renormalised sum of admitted normals; the plane
passes through the mean of admitted centroids. Finely faceted curved
surfaces pass both tests between neighbours, so a grown region must also
be flat: its member vertices lie within ``plane_flatness_tolerance`` times
the region width of their best-fit plane. A region that is not flat is cut
back to the triangles connected to the seed that lie on the seed plane.

A region becomes a plane when it has at least ``min_plane_triangles``
members and more than ``min_feature_area * diagonal^2`` area. Everything
else is residual and goes on to cylinder fitting.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
from numpy.typing import NDArray
from scipy.linalg import eigh

from mesh_features.features.deadline import Deadline
from mesh_features.project_config import DetectorConfig
from mesh_features.topology.adjacency import TriangleAdjacencyGraph

logger = logging.getLogger(__name__)

# Seeds processed between deadline checks
_CHECK_EVERY = 256


@dataclass(frozen=True, eq=False)
class PlaneRegion:
    """An accepted planar region before it is given an id."""
    triangles: Tuple[int, ...]
    normal: NDArray[np.float64]
    center: NDArray[np.float64]
    area: float


@dataclass(frozen=True)
class PlaneGrowthResult:
    """Accepted regions plus the sorted residual triangle set."""
    regions: Tuple[PlaneRegion, ...]
    residual: Tuple[int, ...]

    @property
    def classified_count(self) -> int:
        return sum(len(r.triangles) for r in self.regions)


class PlaneRegionGrower:
    """Grows co-planar regions from ascending seeds.

    Example:
        grower = PlaneRegionGrower.from_config(graph, config)
        result = grower.grow()
        for region in result.regions:
            print(region.normal, len(region.triangles))
    """

    def __init__(
        self,
        graph: TriangleAdjacencyGraph,
        angle_tolerance: float = 0.1,
        plane_distance_tolerance: float = 0.01,
        min_plane_triangles: int = 3,
        min_feature_area: float = 1e-9,
        max_triangles_per_feature: int = 10000,
        plane_flatness_tolerance: float = 1e-4,
    ):
        self.graph = graph
        self.angle_tolerance = angle_tolerance
        self.cos_tolerance = math.cos(angle_tolerance)
        self.distance_limit = plane_distance_tolerance * graph.diagonal
        self.min_plane_triangles = min_plane_triangles
        self.min_area = min_feature_area * graph.diagonal ** 2
        self.max_triangles = max_triangles_per_feature
        self.flatness_tolerance = plane_flatness_tolerance

    @classmethod
    def from_config(cls, graph: TriangleAdjacencyGraph, config: DetectorConfig) -> 'PlaneRegionGrower':
        return cls(
            graph,
            angle_tolerance=config.angle_tolerance,
            plane_distance_tolerance=config.plane_distance_tolerance,
            min_plane_triangles=config.min_plane_triangles,
            min_feature_area=config.min_feature_area,
            max_triangles_per_feature=config.max_triangles_per_feature,
            plane_flatness_tolerance=config.plane_flatness_tolerance,
        )

    def grow_region(self, seed: int, assigned: NDArray[np.bool_]) -> List[int]:
        """Grow one region from seed over triangles not yet assigned.

        Args:
            seed: Starting triangle
            assigned: Mask of triangles already in accepted planes

        Returns:
            Member triangles in admission order, seed first
        """
        tris = self.graph.triangles
        normals, centroids = tris.normals, tris.centroids

        normal_sum = normals[seed].copy()
        centroid_sum = centroids[seed].copy()
        members = [seed]
        in_region = {seed}
        queue = deque([seed])

        while queue and len(members) < self.max_triangles:
            current = queue.popleft()
            for neighbour in self.graph.ordered_neighbors(current):
                if len(members) >= self.max_triangles:
                    break
                if neighbour in in_region or assigned[neighbour]:
                    continue

                mean_normal = normal_sum / np.linalg.norm(normal_sum)
                if float(np.dot(normals[neighbour], mean_normal)) <= self.cos_tolerance:
                    continue
                plane_point = centroid_sum / len(members)
                offset = abs(float(np.dot(centroids[neighbour] - plane_point, mean_normal)))
                if offset > self.distance_limit:
                    continue

                in_region.add(neighbour)
                members.append(neighbour)
                normal_sum += normals[neighbour]
                centroid_sum += centroids[neighbour]
                queue.append(neighbour)

        return members

    def _corners(self, members: List[int]) -> NDArray[np.float64]:
        tris = self.graph.triangles
        return tris.vertices[tris.faces[np.asarray(members, dtype=np.int64)]].reshape(-1, 3)

    def _thickness_and_width(self, members: List[int]) -> Tuple[float, float]:
        """Extents of the member vertices along the smallest and middle principal axes."""
        corners = self._corners(members)
        centred = corners - corners.mean(axis=0)
        _, vecs = eigh(centred.T @ centred)
        coords = centred @ vecs
        return float(np.ptp(coords[:, 0])), float(np.ptp(coords[:, 1]))

    def is_flat(self, members: List[int]) -> bool:
        """True when the member vertices lie on a common plane.

        The allowed thickness is ``plane_flatness_tolerance`` times the
        region width, so the test does not depend on the model scale.
        """
        thickness, width = self._thickness_and_width(members)
        return thickness <= self.flatness_tolerance * width

    def flat_core(self, seed: int, members: List[int]) -> List[int]:
        """Members connected to seed whose vertices all lie on the seed plane.

        Args:
            seed: Seed of the grown region
            members: Grown region, seed first

        Returns:
            Core triangles in breadth-first order, seed first
        """
        tris = self.graph.triangles
        _, width = self._thickness_and_width(members)
        limit = self.flatness_tolerance * width

        corners = self._corners(members).reshape(-1, 3, 3)
        offsets = np.abs((corners - tris.centroids[seed]) @ tris.normals[seed]).max(axis=1)
        on_plane = {t for t, offset in zip(members, offsets) if offset <= limit}
        on_plane.add(seed)

        core = [seed]
        seen = {seed}
        queue = deque([seed])
        while queue:
            current = queue.popleft()
            for neighbour in self.graph.ordered_neighbors(current):
                if neighbour in on_plane and neighbour not in seen:
                    seen.add(neighbour)
                    core.append(neighbour)
                    queue.append(neighbour)
        return core

    def _accepts(self, members: List[int]) -> bool:
        area = float(self.graph.triangles.areas[members].sum())
        return len(members) >= self.min_plane_triangles and area > self.min_area

    def _make_region(self, members: List[int]) -> PlaneRegion:
        tris = self.graph.triangles
        idx = np.array(sorted(members), dtype=np.int64)
        areas = tris.areas[idx]
        total_area = float(areas.sum())

        normal = tris.normals[idx].sum(axis=0)
        normal /= np.linalg.norm(normal)
        if total_area > 0:
            center = (tris.centroids[idx] * areas[:, np.newaxis]).sum(axis=0) / total_area
        else:
            center = tris.centroids[idx].mean(axis=0)

        return PlaneRegion(
            triangles=tuple(int(t) for t in idx),
            normal=normal,
            center=center,
            area=total_area,
        )

    def grow(self, deadline: Optional[Deadline] = None) -> PlaneGrowthResult:
        """Run region growing over the whole mesh.

        Args:
            deadline: Optional budget polled between seeds

        Returns:
            PlaneGrowthResult with regions in seed order

        Raises:
            DetectionTimeout: If the deadline passes
        """
        n_tri = self.graph.triangle_count
        assigned = np.zeros(n_tri, dtype=bool)
        # Members of rejected regions are not used as seeds again
        tried = np.zeros(n_tri, dtype=bool)
        for t in self.graph.degenerate_triangles:
            tried[t] = True

        regions: List[PlaneRegion] = []
        rejected = 0
        curved = 0
        for seed in range(n_tri):
            if deadline is not None and seed % _CHECK_EVERY == 0:
                deadline.check("plane growing")
            if assigned[seed] or tried[seed]:
                continue

            members = self.grow_region(seed, assigned)
            candidate = members
            if self._accepts(members) and not self.is_flat(members):
                curved += 1
                candidate = self.flat_core(seed, members)
                if not self.is_flat(candidate):
                    candidate = []

            if candidate and self._accepts(candidate):
                assigned[candidate] = True
                regions.append(self._make_region(candidate))
            else:
                tried[members] = True
                rejected += 1

        degenerate = np.zeros(n_tri, dtype=bool)
        degenerate[np.array(self.graph.degenerate_triangles, dtype=np.int64)] = True
        residual = tuple(int(t) for t in np.flatnonzero(~assigned & ~degenerate))

        logger.debug(
            "Plane growing finished",
            extra={
                'planes': len(regions),
                'rejected_regions': rejected,
                'curved_regions': curved,
                'residual': len(residual),
            }
        )
        return PlaneGrowthResult(regions=tuple(regions), residual=residual)
