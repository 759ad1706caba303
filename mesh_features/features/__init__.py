"""
Feature recognition.

Modules:
    plane_grower: Region growing of coplanar triangles
    cylinder_fitter: Cylinder fitting of the non-planar remainder
    detector: Pipeline producing MeshFeatures
    validation: Integrity checks of detected or imported features
"""

from .detector import FeatureDetector, detect_features
from .types import CylinderFeature, FeatureType, MeshFeatures, PlaneFeature

__all__ = [
    "FeatureDetector",
    "detect_features",
    "FeatureType",
    "PlaneFeature",
    "CylinderFeature",
    "MeshFeatures",
]
