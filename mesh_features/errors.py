"""
Exception types raised by the feature recognition pipeline.

Library code raises these; batch code (FeaturePool.batch_preprocess,
mesh_features.batch) converts them into per-mesh failure records instead of
aborting the whole run.
"""

from typing import Optional


class FeatureDetectionError(Exception):
    """Base class for all mesh_features errors."""


class InvalidGeometry(FeatureDetectionError, ValueError):
    """Mesh buffers are missing, empty or structurally malformed."""


class DetectionTimeout(FeatureDetectionError, TimeoutError):
    """Detection of a single mesh exceeded its time budget."""

    def __init__(
        self,
        mesh_id: Optional[str],
        budget_seconds: Optional[float] = None,
        stage: str = "",
        elapsed_seconds: Optional[float] = None,
    ):
        self.mesh_id = mesh_id
        self.budget_seconds = budget_seconds
        self.stage = stage
        self.elapsed_seconds = elapsed_seconds
        where = f" during {stage}" if stage else ""
        if budget_seconds is not None:
            message = (f"Detection of {mesh_id} exceeded its "
                       f"{budget_seconds:.3f}s budget{where}")
        else:
            message = f"Detection of {mesh_id} passed its deadline{where}"
        super().__init__(message)


class MeshNotRegistered(FeatureDetectionError, LookupError):
    """A mesh id was used that the pool has never seen."""

    def __init__(self, mesh_id: str):
        self.mesh_id = mesh_id
        super().__init__(f"Mesh is not registered: {mesh_id}")
