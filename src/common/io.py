"""
Creature I/O.

Handles baking a SceneNode tree into a trimesh scene and saving it as GLB
with metadata (both embedded in the GLB asset extras and as a JSON
sidecar, matching the exported file name).
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import trimesh
from pygltflib import GLTF2

from .scene import SceneNode

logger = logging.getLogger(__name__)


@dataclass
class CreatureMetadata:
    """
    Metadata written next to every exported creature.

    ``roles`` counts placed fragments per role; ``unresolved`` lists nodes
    the contact pass could not attach.
    """
    name: str
    seed: Optional[int]
    fragment_count: int
    roles: Dict[str, int] = field(default_factory=dict)
    part_types: List[str] = field(default_factory=list)
    point_count: int = 0
    n_vertices: int = 0
    n_triangles: int = 0
    unresolved: List[str] = field(default_factory=list)
    generation_params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "seed": self.seed,
            "fragment_count": self.fragment_count,
            "roles": dict(self.roles),
            "part_types": list(self.part_types),
            "point_count": self.point_count,
            "n_vertices": self.n_vertices,
            "n_triangles": self.n_triangles,
            "unresolved": list(self.unresolved),
            "generation_params": self.generation_params,
        }

    def save(self, path: Path) -> None:
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CreatureMetadata":
        return cls(**data)


def _rgba(color, opacity: float) -> np.ndarray:
    rgba = np.append(np.clip(np.asarray(color, dtype=float)[:3], 0.0, 1.0), np.clip(opacity, 0.0, 1.0))
    return np.round(rgba * 255).astype(np.uint8)


def node_to_scene(root: SceneNode) -> trimesh.Scene:
    """
    Bake every visible mesh and point cloud under ``root`` into world space.

    Hidden nodes (and their subtrees) are skipped.
    """
    scene = trimesh.Scene()
    _bake(root, root.local_matrix(), scene)
    return scene


def _unique_name(node: SceneNode, scene: trimesh.Scene) -> str:
    # fragment-internal names repeat across fragments and mirrored copies
    return f"{node.name or node.kind.value}_{len(scene.geometry)}"


def _bake(node: SceneNode, matrix: np.ndarray, scene: trimesh.Scene) -> None:
    if not node.visible:
        return
    if node.is_mesh and node.geometry is not None and len(node.geometry.faces) > 0:
        mesh = node.geometry.copy()
        mesh.apply_transform(matrix)
        if node.material is not None:
            mesh.visual = trimesh.visual.ColorVisuals(
                mesh, face_colors=np.tile(_rgba(node.material.color, node.material.opacity),
                                          (len(mesh.faces), 1)))
        name = _unique_name(node, scene)
        scene.add_geometry(mesh, node_name=name, geom_name=name)
    elif node.is_points and node.geometry is not None and len(node.geometry) > 0:
        points = node.geometry
        colors = np.column_stack([
            np.clip(points.colors, 0.0, 1.0),
            np.full(len(points), points.opacity),
        ])
        cloud = trimesh.PointCloud(
            trimesh.transform_points(points.positions, matrix),
            colors=np.round(colors * 255).astype(np.uint8),
        )
        name = _unique_name(node, scene)
        scene.add_geometry(cloud, node_name=name, geom_name=name)
    for child in node.children:
        _bake(child, matrix @ child.local_matrix(), scene)


def scene_stats(scene: trimesh.Scene) -> Tuple[int, int, int]:
    """(vertices, triangles, points) across the baked scene."""
    n_vertices = n_triangles = n_points = 0
    for geometry in scene.geometry.values():
        if isinstance(geometry, trimesh.PointCloud):
            n_points += len(geometry.vertices)
        else:
            n_vertices += len(geometry.vertices)
            n_triangles += len(geometry.faces)
    return n_vertices, n_triangles, n_points


def embed_metadata(path: Path, metadata: CreatureMetadata) -> None:
    """Store metadata in the GLB ``asset.extras`` block."""
    gltf = GLTF2().load(str(path))
    gltf.asset.extras = {"creature": metadata.to_dict()}
    gltf.save(str(path))


def save_creature(
    root: SceneNode,
    path: Path,
    metadata: CreatureMetadata
) -> CreatureMetadata:
    """
    Save a creature to GLB with metadata sidecar.

    Args:
        root: Creature root node
        path: Output path (should end in .glb)
        metadata: CreatureMetadata; geometry counts are filled in here

    Returns:
        The metadata as written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    scene = node_to_scene(root)
    if len(scene.geometry) == 0:
        raise ValueError(f"Creature '{root.name}' has no visible geometry to export")
    metadata.n_vertices, metadata.n_triangles, metadata.point_count = scene_stats(scene)

    scene.export(str(path), file_type="glb")
    embed_metadata(path, metadata)
    logger.info(f"Saved creature: {path} ({metadata.n_vertices} verts, "
                f"{metadata.n_triangles} tris, {metadata.point_count} points)")

    meta_path = path.with_suffix('.json')
    metadata.save(meta_path)
    logger.info(f"Saved metadata: {meta_path}")
    return metadata


def load_creature_metadata(path: Path) -> Optional[CreatureMetadata]:
    """Read metadata embedded in a GLB, falling back to the JSON sidecar."""
    path = Path(path)
    gltf = GLTF2().load(str(path))
    extras = (gltf.asset.extras or {}) if gltf is not None else {}
    if "creature" in extras:
        return CreatureMetadata.from_dict(extras["creature"])

    meta_path = path.with_suffix('.json')
    if meta_path.exists():
        with open(meta_path) as f:
            return CreatureMetadata.from_dict(json.load(f))
    return None
