"""
mesh_features: plane and cylinder recognition on triangle meshes.

Detection runs through FeatureDetector; FeaturePool caches the result per
mesh content hash and answers face -> feature lookups.
"""

from mesh_features.errors import (
    DetectionTimeout,
    FeatureDetectionError,
    InvalidGeometry,
    MeshNotRegistered,
)
from mesh_features.features.detector import FeatureDetector, detect_features
from mesh_features.features.types import (
    UNCLASSIFIED,
    CylinderFeature,
    FeatureInfo,
    FeatureType,
    MeshFeatures,
    PlaneFeature,
)
from mesh_features.geometry.buffers import MeshBuffers
from mesh_features.logging_config import (
    setup_logging,
    get_logger,
    configure_default_logging,
    log_timing,
    timed,
    LogContext,
)
from mesh_features.pool import FeaturePool
from mesh_features.project_config import DetectorConfig, PoolConfig, ProjectConfig

__version__ = "0.3.0"

__all__ = [
    "MeshBuffers",
    "FeatureDetector",
    "detect_features",
    "FeaturePool",
    "DetectorConfig",
    "PoolConfig",
    "ProjectConfig",
    "FeatureType",
    "PlaneFeature",
    "CylinderFeature",
    "MeshFeatures",
    "FeatureInfo",
    "UNCLASSIFIED",
    "FeatureDetectionError",
    "InvalidGeometry",
    "DetectionTimeout",
    "MeshNotRegistered",
    "setup_logging",
    "get_logger",
    "configure_default_logging",
    "log_timing",
    "timed",
    "LogContext",
]
