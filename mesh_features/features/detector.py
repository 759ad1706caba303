"""
Feature detection pipeline.

    buffers -> adjacency graph -> plane growing -> residual components
            -> cylinder fitting -> MeshFeatures

Components that fail the cylinder fit are split once more along edges
sharper than ``max_facet_angle`` and each piece is fitted on its own, so a
boss standing on a curved blend still gets recognized.

Usage:
    detector = FeatureDetector(DetectorConfig(angle_tolerance=0.05))
    features = detector.detect_features(buffers)
    print(features.summary())
"""

import logging
import time
from typing import List, Optional, Tuple

from mesh_features.errors import DetectionTimeout
from mesh_features.events import (
    DetectionCompleted,
    DetectionFailed,
    DetectionStarted,
    Observer,
    emit,
)
from mesh_features.features.cylinder_fitter import (
    CylinderFit,
    CylinderFitter,
    FitRejection,
    RejectionReason,
)
from mesh_features.features.deadline import Deadline
from mesh_features.features.naming import feature_id
from mesh_features.features.plane_grower import PlaneRegion, PlaneRegionGrower
from mesh_features.features.types import (
    CylinderFeature,
    FeatureType,
    MeshFeatures,
    PlaneFeature,
)
from mesh_features.geometry.bounds import BoundingBox
from mesh_features.geometry.buffers import MeshBuffers
from mesh_features.logging_config import log_timing
from mesh_features.project_config import DetectorConfig
from mesh_features.topology.adjacency import TriangleAdjacencyGraph

logger = logging.getLogger(__name__)


class FeatureDetector:
    """Recognizes planes and cylinders on a triangle mesh.

    The detector holds no per-mesh state; one instance can serve several
    threads at once.
    """

    def __init__(
        self,
        config: Optional[DetectorConfig] = None,
        observer: Optional[Observer] = None,
    ):
        """Initialize detector.

        Args:
            config: Detection thresholds (defaults if None)
            observer: Receives DetectionStarted/Completed/Failed events

        Raises:
            ValueError: If the configuration is unusable
        """
        self.config = config or DetectorConfig()
        self.config.validate()
        self.observer = observer

    def _plane_feature(self, graph: TriangleAdjacencyGraph, region: PlaneRegion) -> PlaneFeature:
        vertices = graph.triangles.vertices[graph.triangles.faces[list(region.triangles)].reshape(-1)]
        return PlaneFeature(
            id=feature_id(FeatureType.PLANE.value, region.triangles),
            normal=region.normal,
            center=region.center,
            triangles=region.triangles,
            area=region.area,
            bounds=BoundingBox.from_points(vertices),
        )

    @staticmethod
    def _cylinder_feature(fit: CylinderFit) -> CylinderFeature:
        return CylinderFeature(
            id=feature_id(FeatureType.CYLINDER.value, fit.triangles),
            axis=fit.axis,
            center=fit.center,
            radius=fit.radius,
            height=fit.height,
            triangles=fit.triangles,
            confidence=fit.confidence,
            area=fit.area,
            bounds=BoundingBox.from_points(fit.vertices),
        )

    def fit_cylinders(
        self,
        graph: TriangleAdjacencyGraph,
        residual: Tuple[int, ...],
        deadline: Deadline,
    ) -> Tuple[List[CylinderFit], List[FitRejection]]:
        """Fit cylinders to every connected piece of the residual set."""
        fitter = CylinderFitter.from_config(graph, self.config)
        components = graph.connected_components(
            residual, max_size=self.config.max_triangles_per_feature)

        fits: List[CylinderFit] = []
        rejections: List[FitRejection] = []
        for component in components:
            deadline.check("cylinder fitting")
            result = fitter.fit(component)
            if isinstance(result, CylinderFit):
                fits.append(result)
                continue

            pieces = []
            if (self.config.resplit_failed_components
                    and result.reason is not RejectionReason.TOO_FEW_TRIANGLES):
                pieces = graph.connected_components(
                    component, max_angle=self.config.max_facet_angle)
            if len(pieces) < 2:
                rejections.append(result)
                continue

            for piece in pieces:
                deadline.check("cylinder fitting")
                piece_result = fitter.fit(piece)
                if isinstance(piece_result, CylinderFit):
                    fits.append(piece_result)
                else:
                    rejections.append(piece_result)

        return fits, rejections

    def detect_features(
        self,
        buffers: MeshBuffers,
        mesh_id: Optional[str] = None,
        deadline: Optional[Deadline] = None,
    ) -> MeshFeatures:
        """Detect planes and cylinders.

        Args:
            buffers: Mesh to analyse
            mesh_id: Id to record (content hash of buffers if None)
            deadline: Optional time budget polled between phases and components

        Returns:
            MeshFeatures with stable feature ids and a face -> feature map

        Raises:
            InvalidGeometry: If the buffers are malformed
            DetectionTimeout: If the deadline passes
        """
        buffers.validate()
        if mesh_id is None:
            mesh_id = buffers.content_hash()
        if deadline is None:
            deadline = Deadline.unbounded(mesh_id)
        elif deadline.mesh_id is None:
            deadline.mesh_id = mesh_id

        start = time.perf_counter()
        emit(self.observer, DetectionStarted(mesh_id=mesh_id,
                                             triangle_count=buffers.triangle_count))
        try:
            features = self._detect(buffers, mesh_id, deadline, start)
        except Exception as e:
            emit(self.observer, DetectionFailed(
                mesh_id=mesh_id,
                error_type=type(e).__name__,
                error=str(e),
                duration_seconds=time.perf_counter() - start,
                timed_out=isinstance(e, DetectionTimeout),
            ))
            raise

        emit(self.observer, DetectionCompleted(
            mesh_id=mesh_id,
            planes=len(features.planes),
            cylinders=len(features.cylinders),
            classified_faces=features.classified_count,
            duration_seconds=features.detection_seconds,
        ))
        return features

    def _detect(
        self,
        buffers: MeshBuffers,
        mesh_id: str,
        deadline: Deadline,
        start: float,
    ) -> MeshFeatures:
        config = self.config
        with log_timing(logger, "Detecting features", mesh_id=mesh_id) as timing:
            graph = TriangleAdjacencyGraph(buffers.triangles(), weld_tolerance=config.weld_tolerance)
            deadline.check("adjacency")

            growth = PlaneRegionGrower.from_config(graph, config).grow(deadline)
            deadline.check("plane growing")

            fits, rejections = self.fit_cylinders(graph, growth.residual, deadline)

            planes = [self._plane_feature(graph, region) for region in growth.regions]
            cylinders = [self._cylinder_feature(fit) for fit in fits]

            timing.update(planes=len(planes), cylinders=len(cylinders),
                          rejected_components=len(rejections))

        return MeshFeatures.build(
            mesh_id=mesh_id,
            triangle_count=graph.triangle_count,
            planes=planes,
            cylinders=cylinders,
            degenerate_triangles=graph.degenerate_triangles,
            detection_seconds=time.perf_counter() - start,
        )


def detect_features(
    buffers: MeshBuffers,
    config: Optional[DetectorConfig] = None,
    mesh_id: Optional[str] = None,
    time_budget: Optional[float] = None,
) -> MeshFeatures:
    """One-shot detection with an optional time budget in seconds."""
    deadline = Deadline(time_budget, mesh_id=mesh_id) if time_budget is not None else None
    return FeatureDetector(config).detect_features(buffers, mesh_id=mesh_id, deadline=deadline)
