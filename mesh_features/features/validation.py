"""
Integrity checks for detected features.

Checks a MeshFeatures value (for example one loaded with
``FeaturePool.import_features``) for:
- Face map size and value range
- Faces claimed by more than one feature, or mapped to the wrong feature
- Duplicate or mismatched feature ids
- Non-unit normals and axes, bad radii and confidences
- Edge connectivity of each feature (when an adjacency graph is given)

An empty face map or an empty feature list is reported as a warning;
neither is an error.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np

from mesh_features.features.naming import feature_id
from mesh_features.features.types import (
    UNCLASSIFIED,
    CylinderFeature,
    MeshFeatures,
    PlaneFeature,
)
from mesh_features.topology.adjacency import TriangleAdjacencyGraph

logger = logging.getLogger(__name__)

_UNIT_TOLERANCE = 1e-6


class ValidationSeverity(Enum):
    """Severity level of validation issues."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class ValidationIssue:
    """A single problem found in a feature set."""
    code: str
    severity: ValidationSeverity
    message: str
    count: int = 1
    details: List[Any] = field(default_factory=list)  # feature ids or face indices

    def __str__(self) -> str:
        if self.count > 1:
            return f"[{self.severity.value.upper()}] {self.code}: {self.message} ({self.count} occurrences)"
        return f"[{self.severity.value.upper()}] {self.code}: {self.message}"


@dataclass
class FeatureValidationReport:
    """Validation report for one mesh's features."""
    mesh_id: str
    n_faces: int
    n_features: int
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.WARNING]

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.ERROR]

    def summary(self) -> str:
        """Generate human-readable summary."""
        lines = [
            "Feature Validation Report",
            "=" * 40,
            f"Mesh: {self.mesh_id}",
            f"Faces: {self.n_faces}",
            f"Features: {self.n_features}",
        ]
        if self.issues:
            lines.append("")
            lines.append("Issues:")
            for issue in self.issues:
                lines.append(f"  - {issue}")
        lines.append("")
        lines.append(f"Overall: {'VALID' if self.is_valid else 'INVALID'}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mesh_id': self.mesh_id,
            'is_valid': self.is_valid,
            'n_faces': self.n_faces,
            'n_features': self.n_features,
            'errors': [str(i) for i in self.errors],
            'warnings': [str(i) for i in self.warnings],
        }


def validate_mesh_features(
    features: MeshFeatures,
    graph: Optional[TriangleAdjacencyGraph] = None,
) -> FeatureValidationReport:
    """Validate a feature set.

    Args:
        features: Features to check
        graph: Adjacency of the source mesh; enables connectivity checks

    Returns:
        FeatureValidationReport
    """
    all_features = features.features
    face_map = features.face_to_feature
    n_faces = features.triangle_count
    report = FeatureValidationReport(
        mesh_id=features.mesh_id, n_faces=n_faces, n_features=len(all_features))
    issues = report.issues

    if face_map.size == 0:
        issues.append(ValidationIssue(
            code="EMPTY_FACE_MAP",
            severity=ValidationSeverity.WARNING,
            message="Mesh has an empty face map",
        ))
    if not all_features:
        issues.append(ValidationIssue(
            code="NO_FEATURES",
            severity=ValidationSeverity.WARNING,
            message="Mesh has no features",
        ))

    if face_map.size != n_faces:
        issues.append(ValidationIssue(
            code="FACE_MAP_SIZE",
            severity=ValidationSeverity.ERROR,
            message=f"Face map has {face_map.size} entries for {n_faces} faces",
        ))

    bad_values = np.flatnonzero((face_map < UNCLASSIFIED) | (face_map >= len(all_features)))
    if len(bad_values):
        issues.append(ValidationIssue(
            code="FACE_MAP_RANGE",
            severity=ValidationSeverity.ERROR,
            message="Face map entries point outside the feature list",
            count=len(bad_values),
            details=bad_values[:10].tolist(),
        ))

    seen_ids: Dict[str, int] = {}
    owner = np.full(n_faces, UNCLASSIFIED, dtype=np.int64)
    overlapping: List[int] = []
    out_of_range: List[str] = []
    mismatched: List[int] = []

    for position, feature in enumerate(all_features):
        if feature.id in seen_ids:
            issues.append(ValidationIssue(
                code="DUPLICATE_ID",
                severity=ValidationSeverity.ERROR,
                message=f"Feature id {feature.id} is used twice",
                details=[feature.id],
            ))
        seen_ids[feature.id] = position

        if not feature.triangles:
            issues.append(ValidationIssue(
                code="EMPTY_FEATURE",
                severity=ValidationSeverity.ERROR,
                message=f"Feature {feature.id} has no triangles",
                details=[feature.id],
            ))
            continue

        if feature.id != feature_id(feature.type.value, feature.triangles):
            issues.append(ValidationIssue(
                code="ID_MISMATCH",
                severity=ValidationSeverity.ERROR,
                message=f"Feature id {feature.id} does not match its triangles",
                details=[feature.id],
            ))

        members = np.array(feature.triangles, dtype=np.int64)
        if members.min() < 0 or members.max() >= n_faces:
            out_of_range.append(feature.id)
            continue

        claimed = members[owner[members] != UNCLASSIFIED]
        overlapping.extend(claimed.tolist())
        owner[members] = position

        if face_map.size == n_faces:
            wrong = members[face_map[members] != position]
            mismatched.extend(wrong.tolist())

        _check_geometry(feature, issues)

        if graph is not None and len(graph) == n_faces:
            pieces = graph.connected_components(feature.triangles)
            if len(pieces) > 1:
                issues.append(ValidationIssue(
                    code="DISCONNECTED_FEATURE",
                    severity=ValidationSeverity.ERROR,
                    message=f"Feature {feature.id} splits into {len(pieces)} pieces",
                    details=[feature.id],
                ))

    if out_of_range:
        issues.append(ValidationIssue(
            code="TRIANGLE_RANGE",
            severity=ValidationSeverity.ERROR,
            message="Features reference triangles outside the mesh",
            count=len(out_of_range),
            details=out_of_range[:10],
        ))
    if overlapping:
        issues.append(ValidationIssue(
            code="OVERLAPPING_FEATURES",
            severity=ValidationSeverity.ERROR,
            message="Faces belong to more than one feature",
            count=len(overlapping),
            details=overlapping[:10],
        ))
    if mismatched:
        issues.append(ValidationIssue(
            code="FACE_MAP_MISMATCH",
            severity=ValidationSeverity.ERROR,
            message="Face map disagrees with feature membership",
            count=len(mismatched),
            details=mismatched[:10],
        ))

    if face_map.size == n_faces:
        orphans = np.flatnonzero((face_map != UNCLASSIFIED) & (owner == UNCLASSIFIED))
        if len(orphans):
            issues.append(ValidationIssue(
                code="FACE_MAP_ORPHANS",
                severity=ValidationSeverity.ERROR,
                message="Face map assigns faces no feature lists",
                count=len(orphans),
                details=orphans[:10].tolist(),
            ))

    degenerate_claimed = [t for t in features.degenerate_triangles
                          if 0 <= t < n_faces and owner[t] != UNCLASSIFIED]
    if degenerate_claimed:
        issues.append(ValidationIssue(
            code="DEGENERATE_IN_FEATURE",
            severity=ValidationSeverity.WARNING,
            message="Degenerate triangles are assigned to features",
            count=len(degenerate_claimed),
            details=degenerate_claimed[:10],
        ))

    logger.debug("Validated features of %s: %d errors, %d warnings",
                 features.mesh_id, len(report.errors), len(report.warnings))
    return report


def _check_geometry(feature: Any, issues: List[ValidationIssue]) -> None:
    if isinstance(feature, PlaneFeature):
        if abs(np.linalg.norm(feature.normal) - 1.0) > _UNIT_TOLERANCE:
            issues.append(ValidationIssue(
                code="NON_UNIT_NORMAL",
                severity=ValidationSeverity.ERROR,
                message=f"Plane {feature.id} normal is not unit length",
                details=[feature.id],
            ))
    elif isinstance(feature, CylinderFeature):
        if abs(np.linalg.norm(feature.axis) - 1.0) > _UNIT_TOLERANCE:
            issues.append(ValidationIssue(
                code="NON_UNIT_AXIS",
                severity=ValidationSeverity.ERROR,
                message=f"Cylinder {feature.id} axis is not unit length",
                details=[feature.id],
            ))
        if not feature.radius > 0:
            issues.append(ValidationIssue(
                code="BAD_RADIUS",
                severity=ValidationSeverity.ERROR,
                message=f"Cylinder {feature.id} has radius {feature.radius}",
                details=[feature.id],
            ))
        if not 0.0 <= feature.confidence <= 1.0:
            issues.append(ValidationIssue(
                code="BAD_CONFIDENCE",
                severity=ValidationSeverity.ERROR,
                message=f"Cylinder {feature.id} confidence {feature.confidence} outside [0, 1]",
                details=[feature.id],
            ))
