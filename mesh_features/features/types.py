"""
Recognized feature records.

All records are frozen dataclasses holding read-only numpy arrays, so a
published MeshFeatures value can be shared between threads without
copying or locking.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from mesh_features.geometry.bounds import BoundingBox

# Value of face_to_feature for faces that belong to no feature
UNCLASSIFIED = -1


class FeatureType(str, Enum):
    """Kind of surface feature."""
    PLANE = "plane"
    CYLINDER = "cylinder"


def _vec3(values: Any) -> NDArray[np.float64]:
    arr = np.array(values, dtype=np.float64).reshape(3)
    arr.setflags(write=False)
    return arr


def _members(values: Sequence[int]) -> Tuple[int, ...]:
    return tuple(sorted(int(v) for v in values))


@dataclass(frozen=True, eq=False)
class PlaneFeature:
    """A connected planar region.

    Attributes:
        id: Stable id derived from the member triangles
        normal: Unit normal of the region
        center: Area-weighted centroid of the members
        triangles: Sorted member triangle indices
        area: Total member area
        bounds: Bounding box of the member vertices
    """
    id: str
    normal: NDArray[np.float64]
    center: NDArray[np.float64]
    triangles: Tuple[int, ...]
    area: float
    bounds: BoundingBox

    def __post_init__(self) -> None:
        object.__setattr__(self, "normal", _vec3(self.normal))
        object.__setattr__(self, "center", _vec3(self.center))
        object.__setattr__(self, "triangles", _members(self.triangles))
        object.__setattr__(self, "area", float(self.area))

    @property
    def type(self) -> FeatureType:
        return FeatureType.PLANE

    @property
    def triangle_count(self) -> int:
        return len(self.triangles)

    def to_dict(self, include_triangles: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'id': self.id,
            'type': self.type.value,
            'normal': self.normal.tolist(),
            'center': self.center.tolist(),
            'area': self.area,
            'triangle_count': self.triangle_count,
            'bounds': self.bounds.to_dict(),
        }
        if include_triangles:
            data['triangles'] = list(self.triangles)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PlaneFeature':
        return cls(
            id=data['id'],
            normal=data['normal'],
            center=data['center'],
            triangles=data['triangles'],
            area=data['area'],
            bounds=BoundingBox.from_dict(data['bounds']),
        )


@dataclass(frozen=True, eq=False)
class CylinderFeature:
    """A connected region lying on a circular cylinder.

    Attributes:
        id: Stable id derived from the member triangles
        axis: Unit axis direction, largest component positive
        center: Point on the axis at mid-height of the members
        radius: Mean radial distance of the member vertices
        height: Extent of the member vertices along the axis
        triangles: Sorted member triangle indices
        confidence: 1 - std/mean of the radial distances, in [0, 1]
        area: Total member area
        bounds: Bounding box of the member vertices
    """
    id: str
    axis: NDArray[np.float64]
    center: NDArray[np.float64]
    radius: float
    height: float
    triangles: Tuple[int, ...]
    confidence: float
    area: float
    bounds: BoundingBox

    def __post_init__(self) -> None:
        object.__setattr__(self, "axis", _vec3(self.axis))
        object.__setattr__(self, "center", _vec3(self.center))
        object.__setattr__(self, "triangles", _members(self.triangles))
        for name in ("radius", "height", "confidence", "area"):
            object.__setattr__(self, name, float(getattr(self, name)))

    @property
    def type(self) -> FeatureType:
        return FeatureType.CYLINDER

    @property
    def triangle_count(self) -> int:
        return len(self.triangles)

    @property
    def diameter(self) -> float:
        return 2.0 * self.radius

    def to_dict(self, include_triangles: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'id': self.id,
            'type': self.type.value,
            'axis': self.axis.tolist(),
            'center': self.center.tolist(),
            'radius': self.radius,
            'height': self.height,
            'confidence': self.confidence,
            'area': self.area,
            'triangle_count': self.triangle_count,
            'bounds': self.bounds.to_dict(),
        }
        if include_triangles:
            data['triangles'] = list(self.triangles)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CylinderFeature':
        return cls(
            id=data['id'],
            axis=data['axis'],
            center=data['center'],
            radius=data['radius'],
            height=data['height'],
            triangles=data['triangles'],
            confidence=data['confidence'],
            area=data['area'],
            bounds=BoundingBox.from_dict(data['bounds']),
        )


Feature = Union[PlaneFeature, CylinderFeature]


def build_face_map(triangle_count: int, features: Sequence[Feature]) -> NDArray[np.int32]:
    """Face -> feature position array; UNCLASSIFIED where no feature claims a face."""
    face_map = np.full(triangle_count, UNCLASSIFIED, dtype=np.int32)
    for position, feature in enumerate(features):
        if feature.triangles:
            face_map[np.fromiter(feature.triangles, dtype=np.int64)] = position
    face_map.setflags(write=False)
    return face_map


@dataclass(frozen=True, eq=False)
class MeshFeatures:
    """All features recognized on one mesh.

    ``features`` lists the planes followed by the cylinders, each group
    ordered by smallest member triangle; ``face_to_feature[face]`` is a
    position in that list or UNCLASSIFIED.
    """
    mesh_id: str
    triangle_count: int
    planes: Tuple[PlaneFeature, ...]
    cylinders: Tuple[CylinderFeature, ...]
    face_to_feature: NDArray[np.int32]
    degenerate_triangles: Tuple[int, ...] = ()
    created_at: float = field(default_factory=time.time)
    detection_seconds: float = 0.0
    _by_id: Dict[str, Feature] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "planes", tuple(self.planes))
        object.__setattr__(self, "cylinders", tuple(self.cylinders))
        face_map = np.array(self.face_to_feature, dtype=np.int32).reshape(-1)
        face_map.setflags(write=False)
        object.__setattr__(self, "face_to_feature", face_map)
        object.__setattr__(self, "degenerate_triangles",
                           tuple(int(t) for t in self.degenerate_triangles))
        object.__setattr__(self, "_by_id", {f.id: f for f in self.features})

    @classmethod
    def build(
        cls,
        mesh_id: str,
        triangle_count: int,
        planes: Sequence[PlaneFeature],
        cylinders: Sequence[CylinderFeature],
        **kwargs: Any,
    ) -> 'MeshFeatures':
        """Order features canonically and derive the face map."""
        planes = tuple(sorted(planes, key=lambda f: f.triangles[0] if f.triangles else -1))
        cylinders = tuple(sorted(cylinders, key=lambda f: f.triangles[0] if f.triangles else -1))
        face_map = build_face_map(triangle_count, planes + cylinders)
        return cls(
            mesh_id=mesh_id,
            triangle_count=triangle_count,
            planes=planes,
            cylinders=cylinders,
            face_to_feature=face_map,
            **kwargs,
        )

    @property
    def features(self) -> Tuple[Feature, ...]:
        return self.planes + self.cylinders

    @property
    def feature_count(self) -> int:
        return len(self.planes) + len(self.cylinders)

    @property
    def classified_count(self) -> int:
        return int(np.count_nonzero(self.face_to_feature != UNCLASSIFIED))

    @property
    def unclassified_count(self) -> int:
        return self.triangle_count - self.classified_count

    def feature_at(self, position: int) -> Feature:
        """Feature at a position of the face map."""
        n_planes = len(self.planes)
        if position < n_planes:
            return self.planes[position]
        return self.cylinders[position - n_planes]

    def feature_for_face(self, face_index: int) -> Optional[Feature]:
        """Feature containing face_index, None if unclassified or out of range."""
        if face_index < 0 or face_index >= len(self.face_to_feature):
            return None
        position = int(self.face_to_feature[face_index])
        if position == UNCLASSIFIED:
            return None
        return self.feature_at(position)

    def get_feature(self, feature_id: str) -> Optional[Feature]:
        return self._by_id.get(feature_id)

    def summary(self) -> str:
        """Generate human-readable summary."""
        lines = [
            f"Mesh Features: {self.mesh_id}",
            "=" * 40,
            f"Triangles:    {self.triangle_count:,}",
            f"Planes:       {len(self.planes)}",
            f"Cylinders:    {len(self.cylinders)}",
            f"Classified:   {self.classified_count:,}",
            f"Unclassified: {self.unclassified_count:,}",
            f"Degenerate:   {len(self.degenerate_triangles):,}",
        ]
        for plane in self.planes:
            n = plane.normal
            lines.append(f"  {plane.id}: {plane.triangle_count} tris, area {plane.area:.3f}, "
                         f"normal ({n[0]:.3f}, {n[1]:.3f}, {n[2]:.3f})")
        for cyl in self.cylinders:
            a = cyl.axis
            lines.append(f"  {cyl.id}: {cyl.triangle_count} tris, r={cyl.radius:.3f}, "
                         f"h={cyl.height:.3f}, axis ({a[0]:.3f}, {a[1]:.3f}, {a[2]:.3f}), "
                         f"confidence {cyl.confidence:.3f}")
        return "\n".join(lines)

    def to_dict(self, include_triangles: bool = True) -> Dict[str, Any]:
        """Convert to a JSON-ready dictionary."""
        return {
            'mesh_id': self.mesh_id,
            'triangle_count': self.triangle_count,
            'planes': [p.to_dict(include_triangles) for p in self.planes],
            'cylinders': [c.to_dict(include_triangles) for c in self.cylinders],
            'degenerate_triangles': list(self.degenerate_triangles),
            'created_at': self.created_at,
            'detection_seconds': self.detection_seconds,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MeshFeatures':
        """Rebuild from to_dict output; the face map is derived from the members.

        Raises:
            KeyError: If a required field or member list is missing
        """
        planes = [PlaneFeature.from_dict(p) for p in data.get('planes', [])]
        cylinders = [CylinderFeature.from_dict(c) for c in data.get('cylinders', [])]
        return cls.build(
            mesh_id=data['mesh_id'],
            triangle_count=int(data['triangle_count']),
            planes=planes,
            cylinders=cylinders,
            degenerate_triangles=data.get('degenerate_triangles', ()),
            created_at=float(data.get('created_at', time.time())),
            detection_seconds=float(data.get('detection_seconds', 0.0)),
        )


@dataclass(frozen=True, eq=False)
class FeatureInfo:
    """Result of a face lookup."""
    mesh_id: str
    face_index: int
    feature: Feature

    @property
    def type(self) -> FeatureType:
        return self.feature.type

    @property
    def id(self) -> str:
        return self.feature.id

    @property
    def triangles(self) -> Tuple[int, ...]:
        return self.feature.triangles

    def to_dict(self, include_triangles: bool = False) -> Dict[str, Any]:
        return {
            'mesh_id': self.mesh_id,
            'face_index': self.face_index,
            'type': self.type.value,
            'id': self.id,
            'feature': self.feature.to_dict(include_triangles),
        }
