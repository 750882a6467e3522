"""
Minimal scene graph for fragment assembly.

Nodes are owned, value-like trees: ``clone()`` is a full structural copy
(geometry buffers and materials included), so a placed fragment never
aliases the catalog's master copy.

Transforms follow the usual T * R * S composition with intrinsic XYZ Euler
angles.
"""

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np
import trimesh
from scipy.spatial.transform import Rotation

logger = logging.getLogger(__name__)


class NodeKind(Enum):
    GROUP = "group"
    MESH = "mesh"
    POINTS = "points"


@dataclass
class Material:
    """Surface appearance of a mesh or point node."""
    color: Tuple[float, float, float] = (1.0, 1.0, 1.0)  # RGB, 0-1
    opacity: float = 1.0
    roughness: float = 0.4
    transparent: bool = False
    flat_shading: bool = True

    def copy(self) -> "Material":
        return Material(
            color=tuple(self.color),
            opacity=self.opacity,
            roughness=self.roughness,
            transparent=self.transparent,
            flat_shading=self.flat_shading,
        )


@dataclass(eq=False)
class PointGeometry:
    """
    Per-point buffers of a point-cloud skin.

    positions/normals are (N, 3), colors (N, 3) RGB in 0-1, sizes (N,).
    """
    positions: np.ndarray
    colors: np.ndarray
    sizes: np.ndarray
    normals: np.ndarray
    point_size: float = 0.05
    opacity: float = 0.85

    def __len__(self) -> int:
        return len(self.positions)

    def copy(self) -> "PointGeometry":
        return PointGeometry(
            positions=self.positions.copy(),
            colors=self.colors.copy(),
            sizes=self.sizes.copy(),
            normals=self.normals.copy(),
            point_size=self.point_size,
            opacity=self.opacity,
        )


def compose_matrix(position: np.ndarray, rotation: np.ndarray, scale: np.ndarray) -> np.ndarray:
    """4x4 transform from translation, XYZ Euler rotation and scale."""
    matrix = np.eye(4)
    matrix[:3, :3] = Rotation.from_euler('XYZ', rotation).as_matrix() * np.asarray(scale, dtype=float)
    matrix[:3, 3] = position
    return matrix


@dataclass(eq=False)
class SceneNode:
    """
    A group, mesh or point-cloud node.

    ``geometry`` holds a ``trimesh.Trimesh`` for MESH nodes and a
    ``PointGeometry`` for POINTS nodes; groups carry none.
    """
    name: str = ""
    kind: NodeKind = NodeKind.GROUP
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    rotation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    scale: np.ndarray = field(default_factory=lambda: np.ones(3))
    visible: bool = True
    geometry: Any = None
    material: Optional[Material] = None
    children: List["SceneNode"] = field(default_factory=list)
    user_data: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=float).copy()
        self.rotation = np.asarray(self.rotation, dtype=float).copy()
        self.scale = np.asarray(self.scale, dtype=float).copy()

    @classmethod
    def group(cls, name: str = "group") -> "SceneNode":
        return cls(name=name, kind=NodeKind.GROUP)

    @classmethod
    def from_mesh(
        cls,
        mesh: "trimesh.Trimesh",
        name: str = "mesh",
        material: Optional[Material] = None
    ) -> "SceneNode":
        return cls(name=name, kind=NodeKind.MESH, geometry=mesh, material=material or Material())

    @classmethod
    def from_points(cls, points: PointGeometry, name: str = "point_skin",
                    material: Optional[Material] = None) -> "SceneNode":
        return cls(name=name, kind=NodeKind.POINTS, geometry=points, material=material)

    @property
    def is_mesh(self) -> bool:
        return self.kind is NodeKind.MESH

    @property
    def is_points(self) -> bool:
        return self.kind is NodeKind.POINTS

    def local_matrix(self) -> np.ndarray:
        return compose_matrix(self.position, self.rotation, self.scale)

    def add(self, child: "SceneNode") -> "SceneNode":
        self.children.append(child)
        return child

    def traverse(self) -> Iterator["SceneNode"]:
        """Pre-order walk including this node."""
        yield self
        for child in self.children:
            yield from child.traverse()

    def iter_meshes(self, include_self: bool = True) -> Iterator[Tuple["SceneNode", np.ndarray]]:
        """
        Yield (mesh node, transform) pairs for every mesh in the subtree.

        The transform maps the mesh's vertices into this node's parent frame
        when ``include_self`` is set, otherwise into this node's own frame.
        """
        base = self.local_matrix() if include_self else np.eye(4)
        yield from self._iter_meshes(base)

    def _iter_meshes(self, matrix: np.ndarray) -> Iterator[Tuple["SceneNode", np.ndarray]]:
        if self.is_mesh:
            yield self, matrix
        for child in self.children:
            yield from child._iter_meshes(matrix @ child.local_matrix())

    def transformed_vertices(self, include_self: bool = True) -> np.ndarray:
        """All mesh vertices of the subtree, stacked as (N, 3)."""
        stacks = []
        for node, matrix in self.iter_meshes(include_self=include_self):
            vertices = getattr(node.geometry, "vertices", None)
            if vertices is None or len(vertices) == 0:
                continue
            stacks.append(trimesh.transform_points(np.asarray(vertices, dtype=float), matrix))
        if not stacks:
            return np.empty((0, 3))
        return np.vstack(stacks)

    def hide_meshes(self) -> int:
        """Hide every mesh in the subtree; returns how many were hidden."""
        hidden = 0
        for node in self.traverse():
            if node.is_mesh:
                node.visible = False
                hidden += 1
        return hidden

    def set_material(self, color: Optional[Tuple[float, float, float]] = None,
                     **properties) -> None:
        """Override color and/or material properties on every mesh."""
        for node in self.traverse():
            if not node.is_mesh:
                continue
            if node.material is None:
                node.material = Material()
            if color is not None:
                node.material.color = tuple(float(c) for c in color)
            for key, value in properties.items():
                if not hasattr(node.material, key):
                    raise ValueError(f"Unknown material property: {key}")
                setattr(node.material, key, value)

    def clone(self) -> "SceneNode":
        """Deep structural copy with no shared buffers."""
        geometry = self.geometry.copy() if self.geometry is not None else None
        return SceneNode(
            name=self.name,
            kind=self.kind,
            position=self.position,
            rotation=self.rotation,
            scale=self.scale,
            visible=self.visible,
            geometry=geometry,
            material=self.material.copy() if self.material is not None else None,
            children=[child.clone() for child in self.children],
            user_data=copy.deepcopy(self.user_data),
        )
