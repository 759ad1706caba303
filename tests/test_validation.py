"""
Unit tests for mesh_features.features.validation module.
"""

import numpy as np
import pytest

from mesh_features.features.detector import FeatureDetector
from mesh_features.features.naming import feature_id
from mesh_features.features.types import CylinderFeature, MeshFeatures, PlaneFeature
from mesh_features.features.validation import (
    FeatureValidationReport,
    ValidationIssue,
    ValidationSeverity,
    validate_mesh_features,
)
from mesh_features.geometry.bounds import BoundingBox
from mesh_features.topology.adjacency import TriangleAdjacencyGraph


def _bounds():
    return BoundingBox.from_points(np.zeros((1, 3)))


def _plane(triangles, normal=(0.0, 0.0, 1.0), fid=None):
    return PlaneFeature(
        id=fid or feature_id("plane", triangles),
        normal=normal, center=[0, 0, 0], triangles=triangles, area=1.0, bounds=_bounds())


def _cylinder(triangles, radius=1.0, confidence=0.9):
    return CylinderFeature(
        id=feature_id("cylinder", triangles), axis=[0, 0, 1], center=[0, 0, 0],
        radius=radius, height=1.0, triangles=triangles, confidence=confidence,
        area=1.0, bounds=_bounds())


def _codes(report):
    return {issue.code for issue in report.issues}


class TestValidFeatures:
    """Tests for feature sets that pass."""

    def test_detected_box(self, box_buffers):
        """Test detected features validate cleanly with connectivity checks."""
        features = FeatureDetector().detect_features(box_buffers)
        graph = TriangleAdjacencyGraph.from_buffers(box_buffers)
        report = validate_mesh_features(features, graph)
        assert report.is_valid
        assert report.issues == []
        assert report.n_features == 6

    def test_no_features_warning(self):
        """Test an empty feature list is a warning, not an error."""
        report = validate_mesh_features(MeshFeatures.build("mesh_x", 4, [], []))
        assert report.is_valid
        assert "NO_FEATURES" in _codes(report)
        assert len(report.warnings) == 1

    def test_empty_face_map_warning(self):
        """Test a zero-face mesh warns twice and stays valid."""
        report = validate_mesh_features(MeshFeatures.build("mesh_x", 0, [], []))
        assert report.is_valid
        assert {"NO_FEATURES", "EMPTY_FACE_MAP"} <= _codes(report)


class TestInvalidFeatures:
    """Tests for each error check."""

    def test_overlap(self):
        """Test a face claimed by two features."""
        features = MeshFeatures.build("mesh_x", 6, [_plane([0, 1, 2]), _plane([2, 3, 4])], [])
        report = validate_mesh_features(features)
        assert not report.is_valid
        assert "OVERLAPPING_FEATURES" in _codes(report)

    def test_id_mismatch(self):
        """Test an id that does not belong to its members."""
        features = MeshFeatures.build("mesh_x", 4, [_plane([0, 1, 2], fid="plane_0000")], [])
        assert "ID_MISMATCH" in _codes(validate_mesh_features(features))

    def test_duplicate_id(self):
        """Test two features with one id."""
        features = MeshFeatures.build(
            "mesh_x", 6, [_plane([0, 1], fid="plane_dup"), _plane([3, 4], fid="plane_dup")], [])
        assert "DUPLICATE_ID" in _codes(validate_mesh_features(features))

    def test_triangle_out_of_range(self):
        """Test members beyond the triangle count."""
        features = MeshFeatures(
            mesh_id="mesh_x", triangle_count=3, planes=(_plane([1, 2, 7]),), cylinders=(),
            face_to_feature=np.array([-1, 0, 0]))
        assert "TRIANGLE_RANGE" in _codes(validate_mesh_features(features))

    def test_face_map_size(self):
        """Test a face map with the wrong length."""
        features = MeshFeatures(
            mesh_id="mesh_x", triangle_count=5, planes=(_plane([0, 1]),), cylinders=(),
            face_to_feature=np.array([0, 0, -1]))
        assert "FACE_MAP_SIZE" in _codes(validate_mesh_features(features))

    def test_face_map_range_and_orphans(self):
        """Test face map values that point nowhere or at the wrong feature."""
        features = MeshFeatures(
            mesh_id="mesh_x", triangle_count=4, planes=(_plane([0, 1]),), cylinders=(),
            face_to_feature=np.array([0, 0, 5, 0]))
        codes = _codes(validate_mesh_features(features))
        assert "FACE_MAP_RANGE" in codes
        assert "FACE_MAP_ORPHANS" in codes

    def test_face_map_mismatch(self):
        """Test a member mapped to another position."""
        features = MeshFeatures(
            mesh_id="mesh_x", triangle_count=4, planes=(_plane([0, 1]), _plane([2, 3])),
            cylinders=(), face_to_feature=np.array([0, 1, 1, 1]))
        assert "FACE_MAP_MISMATCH" in _codes(validate_mesh_features(features))

    def test_non_unit_normal(self):
        """Test plane normals must be unit length."""
        features = MeshFeatures.build("mesh_x", 3, [_plane([0, 1, 2], normal=(0, 0, 2))], [])
        assert "NON_UNIT_NORMAL" in _codes(validate_mesh_features(features))

    @pytest.mark.parametrize("radius,confidence,code", [
        (0.0, 0.9, "BAD_RADIUS"),
        (-1.0, 0.9, "BAD_RADIUS"),
        (1.0, 1.5, "BAD_CONFIDENCE"),
    ])
    def test_bad_cylinder(self, radius, confidence, code):
        """Test cylinder radius and confidence checks."""
        features = MeshFeatures.build(
            "mesh_x", 6, [], [_cylinder(range(6), radius=radius, confidence=confidence)])
        assert code in _codes(validate_mesh_features(features))

    def test_disconnected_feature(self, box_buffers):
        """Test a feature spanning two box faces that share no edge."""
        graph = TriangleAdjacencyGraph.from_buffers(box_buffers)
        # faces 0-7 and 8-15 are the opposite bottom and top of the box
        features = MeshFeatures.build("mesh_x", 48, [_plane([0, 8])], [])
        report = validate_mesh_features(features, graph)
        assert "DISCONNECTED_FEATURE" in _codes(report)

    def test_degenerate_in_feature(self):
        """Test degenerate members are flagged as a warning."""
        features = MeshFeatures.build("mesh_x", 4, [_plane([0, 1, 2])], [],
                                      degenerate_triangles=(1,))
        report = validate_mesh_features(features)
        assert report.is_valid
        assert "DEGENERATE_IN_FEATURE" in _codes(report)


class TestReport:
    """Tests for report formatting."""

    def test_issue_str(self):
        """Test severity and occurrence count formatting."""
        issue = ValidationIssue("X", ValidationSeverity.ERROR, "broken", count=3)
        assert str(issue) == "[ERROR] X: broken (3 occurrences)"
        single = ValidationIssue("Y", ValidationSeverity.WARNING, "odd")
        assert str(single) == "[WARNING] Y: odd"

    def test_summary_and_dict(self):
        """Test summary text and dictionary form."""
        report = FeatureValidationReport(mesh_id="mesh_x", n_faces=4, n_features=0)
        report.issues.append(ValidationIssue("X", ValidationSeverity.ERROR, "broken"))
        assert "Overall: INVALID" in report.summary()
        data = report.to_dict()
        assert data['is_valid'] is False
        assert data['errors'] == ["[ERROR] X: broken"]
