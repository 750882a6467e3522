"""
Axis-aligned bounding volumes.

Boxes are (center, half_extent) pairs derived on demand from a node's
geometry. A box scaled below 1.0 about its own center is the "tolerant"
collision volume used by placement and contact tests.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .scene import SceneNode


@dataclass
class BoundingBox:
    center: np.ndarray  # (3,)
    half_extent: np.ndarray  # (3,), non-negative

    @classmethod
    def from_points(cls, points: np.ndarray) -> Optional["BoundingBox"]:
        if len(points) == 0:
            return None
        lo = points.min(axis=0)
        hi = points.max(axis=0)
        return cls(center=(lo + hi) / 2, half_extent=(hi - lo) / 2)

    @classmethod
    def from_node(cls, node: SceneNode, scale: float = 1.0) -> Optional["BoundingBox"]:
        """Box around the node's geometry in its parent frame, None if it has no vertices."""
        box = cls.from_points(node.transformed_vertices(include_self=True))
        if box is None or scale == 1.0:
            return box
        return box.scaled(scale)

    @property
    def min(self) -> np.ndarray:
        return self.center - self.half_extent

    @property
    def max(self) -> np.ndarray:
        return self.center + self.half_extent

    @property
    def size(self) -> np.ndarray:
        return self.half_extent * 2

    def scaled(self, factor: float) -> "BoundingBox":
        return BoundingBox(center=self.center.copy(), half_extent=self.half_extent * factor)

    def intersects(self, other: "BoundingBox") -> bool:
        """Closed-interval overlap test (touching faces count)."""
        return bool(np.all(np.abs(self.center - other.center) <= self.half_extent + other.half_extent))

    def projected_half_extent(self, direction: np.ndarray) -> float:
        """Support distance of the box along a unit direction."""
        return float(np.abs(direction) @ self.half_extent)

    def translated(self, offset: np.ndarray) -> "BoundingBox":
        return BoundingBox(center=self.center + offset, half_extent=self.half_extent.copy())
