"""
Unit tests for mesh_features.features.cylinder_fitter module.

Tests:
- Fits of full, partial and tilted faceted cylinders
- Rejection rules (size, radius, normals, facet angle)
- Axis orientation
"""

import math

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from mesh_features.features.cylinder_fitter import (
    CylinderFit,
    CylinderFitter,
    FitRejection,
    RejectionReason,
    canonical_axis,
)
from mesh_features.geometry.buffers import MeshBuffers
from mesh_features.project_config import DetectorConfig
from mesh_features.topology.adjacency import TriangleAdjacencyGraph

from conftest import cone_arrays, cylinder_arrays, sphere_arrays


def _fitter(vertices, faces, **kwargs) -> CylinderFitter:
    graph = TriangleAdjacencyGraph.from_buffers(MeshBuffers.from_arrays(vertices, faces))
    return CylinderFitter(graph, **kwargs)


def _side_fit(radius=2.0, height=5.0, segments=16, **kwargs):
    fitter = _fitter(*cylinder_arrays(radius=radius, height=height, segments=segments, **kwargs))
    return fitter.fit(range(2 * segments))


class TestCylinderFit:
    """Tests for accepted fits."""

    def test_upright_cylinder(self):
        """Test radius, height, axis and center of an upright cylinder."""
        fit = _side_fit()
        assert isinstance(fit, CylinderFit)
        assert fit.radius == pytest.approx(2.0)
        assert fit.height == pytest.approx(5.0)
        np.testing.assert_allclose(fit.axis, [0.0, 0.0, 1.0], atol=1e-9)
        np.testing.assert_allclose(fit.center, [0.0, 0.0, 2.5], atol=1e-9)
        assert fit.confidence == pytest.approx(1.0)
        assert fit.triangles == tuple(range(32))

    def test_side_area(self):
        """Test area is the sum of the facet rectangles."""
        fit = _side_fit()
        chord = 2 * 2.0 * math.sin(math.pi / 16)
        assert fit.area == pytest.approx(16 * chord * 5.0)

    @pytest.mark.parametrize("segments", [8, 12, 16, 24, 32])
    def test_facet_counts(self, segments):
        """Test cylinders with eight or more sides are accepted."""
        fit = _side_fit(radius=3.0, height=7.0, segments=segments)
        assert isinstance(fit, CylinderFit)
        assert fit.radius == pytest.approx(3.0)
        assert fit.height == pytest.approx(7.0)

    def test_tilted_cylinder(self):
        """Test a rotated and shifted cylinder recovers its axis and center."""
        rotation = Rotation.from_euler('xyz', [30, 45, 10], degrees=True).as_matrix()
        offset = np.array([4.0, -2.0, 1.5])
        fit = _side_fit(radius=1.5, height=6.0, rotation=rotation, offset=offset)
        assert isinstance(fit, CylinderFit)
        expected_axis = rotation @ np.array([0.0, 0.0, 1.0])
        assert abs(float(np.dot(fit.axis, expected_axis))) == pytest.approx(1.0)
        np.testing.assert_allclose(fit.center, offset + rotation @ [0.0, 0.0, 3.0], atol=1e-6)
        assert fit.radius == pytest.approx(1.5)

    def test_half_cylinder(self):
        """Test a half-circle arc still finds the true axis and radius."""
        fitter = _fitter(*cylinder_arrays(radius=2.0, height=5.0, segments=16, caps=False))
        fit = fitter.fit(range(16))
        assert isinstance(fit, CylinderFit)
        assert fit.radius == pytest.approx(2.0)
        np.testing.assert_allclose(fit.axis, [0.0, 0.0, 1.0], atol=1e-9)

    def test_axis_candidates(self):
        """Test three centroid eigenvectors plus the normal-scatter minor axis are tried."""
        fitter = _fitter(*cylinder_arrays(radius=2.0, height=5.0, segments=16, caps=False))
        candidates = fitter._axis_candidates(np.arange(16))
        assert len(candidates) == 4
        assert all(np.linalg.norm(c) == pytest.approx(1.0) for c in candidates)
        assert abs(float(candidates[3][2])) == pytest.approx(1.0)

    def test_quarter_arc_anchored_by_circle(self):
        """Test a 90 degree arc is anchored on the true axis, not on its centroid."""
        fitter = _fitter(*cylinder_arrays(radius=2.0, height=5.0, segments=16, caps=False))
        fit = fitter.fit(range(8))
        assert isinstance(fit, CylinderFit)
        assert fit.radius == pytest.approx(2.0)
        np.testing.assert_allclose(fit.center, [0.0, 0.0, 2.5], atol=1e-9)

    def test_bounds_vertices(self):
        """Test the fit carries the distinct member vertices."""
        fit = _side_fit()
        assert len(fit.vertices) == 32
        radial = np.linalg.norm(fit.vertices[:, :2], axis=1)
        np.testing.assert_allclose(radial, 2.0)


class TestRejections:
    """Tests for rejection rules."""

    def test_too_few_triangles(self):
        """Test components below min_cylinder_triangles are rejected."""
        fitter = _fitter(*cylinder_arrays())
        result = fitter.fit(range(4))
        assert isinstance(result, FitRejection)
        assert result.reason is RejectionReason.TOO_FEW_TRIANGLES
        assert result.triangle_count == 4

    def test_empty_component(self):
        """Test an empty component is rejected."""
        fitter = _fitter(*cylinder_arrays())
        result = fitter.fit([])
        assert result.reason is RejectionReason.TOO_FEW_TRIANGLES

    @pytest.mark.parametrize("segments", [4, 6])
    def test_prisms_rejected(self, segments):
        """Test square and hexagonal prisms fail on facet angle."""
        result = _side_fit(segments=segments)
        assert isinstance(result, FitRejection)
        assert result.reason is RejectionReason.FACET_ANGLE_TOO_LARGE

    def test_prism_accepted_with_wider_limit(self):
        """Test the facet angle limit is configurable."""
        fitter = _fitter(*cylinder_arrays(segments=6), max_facet_angle=math.radians(61))
        assert isinstance(fitter.fit(range(12)), CylinderFit)

    def test_sphere_rejected(self):
        """Test a sphere is not a cylinder."""
        vertices, faces = sphere_arrays()
        result = _fitter(vertices, faces).fit(range(len(faces)))
        assert isinstance(result, FitRejection)

    def test_cone_rejected(self):
        """Test a cone side is not a cylinder."""
        vertices, faces = cone_arrays(segments=16)
        result = _fitter(vertices, faces).fit(range(16))
        assert isinstance(result, FitRejection)

    def test_tight_radius_tolerance(self):
        """Test an elliptic tube fails the radius check."""
        vertices, faces = cylinder_arrays(radius=2.0, segments=24, caps=False)
        vertices = vertices * np.array([1.2, 1.0, 1.0])
        result = _fitter(vertices, faces).fit(range(48))
        assert isinstance(result, FitRejection)
        assert result.reason in (RejectionReason.RADIUS_OUT_OF_TOLERANCE,
                                 RejectionReason.LOW_CONFIDENCE)

    def test_rejection_str(self):
        """Test rejection text names the reason and size."""
        rejection = FitRejection(RejectionReason.LOW_CONFIDENCE, 12, "confidence 0.5")
        assert str(rejection) == "low_confidence (12 triangles): confidence 0.5"


class TestConfiguration:
    """Tests for fitter configuration."""

    def test_from_config(self):
        """Test thresholds come from DetectorConfig."""
        graph = TriangleAdjacencyGraph.from_buffers(
            MeshBuffers.from_arrays(*cylinder_arrays()))
        config = DetectorConfig(min_cylinder_triangles=40, max_facet_angle_deg=30.0)
        fitter = CylinderFitter.from_config(graph, config)
        assert fitter.min_cylinder_triangles == 40
        assert fitter.max_facet_angle == pytest.approx(math.radians(30.0))
        assert fitter.fit(range(32)).reason is RejectionReason.TOO_FEW_TRIANGLES


class TestCanonicalAxis:
    """Tests for canonical_axis."""

    def test_flip_negative(self):
        """Test the largest component is made positive."""
        np.testing.assert_allclose(canonical_axis(np.array([0.0, 0.0, -2.0])), [0, 0, 1])
        np.testing.assert_allclose(canonical_axis(np.array([0.6, -0.8, 0.0])), [-0.6, 0.8, 0.0])

    def test_keeps_positive(self):
        """Test an already canonical axis is unchanged."""
        np.testing.assert_allclose(canonical_axis(np.array([0.0, 1.0, 0.0])), [0, 1, 0])
