"""
Axis-aligned bounding boxes for meshes and recognized features.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Sequence

import numpy as np
from numpy.typing import NDArray

logger = logging.getLogger(__name__)


def _readonly(values: Any) -> NDArray[np.float64]:
    arr = np.array(values, dtype=np.float64).reshape(3)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class BoundingBox:
    """Axis-Aligned Bounding Box (AABB).

    Attributes:
        min_point: Minimum corner (x_min, y_min, z_min)
        max_point: Maximum corner (x_max, y_max, z_max)
    """
    min_point: NDArray[np.float64]
    max_point: NDArray[np.float64]

    def __post_init__(self) -> None:
        object.__setattr__(self, "min_point", _readonly(self.min_point))
        object.__setattr__(self, "max_point", _readonly(self.max_point))

    @classmethod
    def from_points(cls, points: NDArray[np.float64]) -> 'BoundingBox':
        """Bounding box of an (N, 3) point array; empty input gives a zero box."""
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if len(points) == 0:
            return cls(min_point=np.zeros(3), max_point=np.zeros(3))
        return cls(min_point=points.min(axis=0), max_point=points.max(axis=0))

    @classmethod
    def from_dict(cls, data: Dict[str, Sequence[float]]) -> 'BoundingBox':
        return cls(min_point=data['min'], max_point=data['max'])

    @property
    def dimensions(self) -> NDArray[np.float64]:
        """Box dimensions along x, y and z."""
        return self.max_point - self.min_point

    @property
    def center(self) -> NDArray[np.float64]:
        return (self.min_point + self.max_point) / 2

    @property
    def diagonal(self) -> float:
        return float(np.linalg.norm(self.dimensions))

    def contains_point(self, point: NDArray[np.float64], tol: float = 0.0) -> bool:
        """Check if point is inside the box, optionally widened by tol."""
        point = np.asarray(point, dtype=np.float64)
        return bool(
            np.all(point >= self.min_point - tol) and
            np.all(point <= self.max_point + tol)
        )

    def contains(self, other: 'BoundingBox', tol: float = 0.0) -> bool:
        """Check if other lies entirely inside this box."""
        return (self.contains_point(other.min_point, tol) and
                self.contains_point(other.max_point, tol))

    def intersects(self, other: 'BoundingBox') -> bool:
        return bool(
            np.all(self.min_point <= other.max_point) and
            np.all(self.max_point >= other.min_point)
        )

    def expand(self, margin: float) -> 'BoundingBox':
        """Return box grown by margin on all sides."""
        return BoundingBox(
            min_point=self.min_point - margin,
            max_point=self.max_point + margin
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'min': self.min_point.tolist(),
            'max': self.max_point.tolist(),
            'dimensions': self.dimensions.tolist(),
            'center': self.center.tolist(),
            'diagonal': self.diagonal,
        }
