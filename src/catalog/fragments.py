"""
Fragment factory: one body-part subtree per call.

Catalog fragments are preferred; when the catalog is unloaded or has no
component for the requested part, a primitive stand-in is built with
trimesh so a creature can always be assembled.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import trimesh

from common.config import make_rng
from common.scene import Material, SceneNode
from point_skin import apply_point_skin
from .library import FragmentCatalog, canonical_category

logger = logging.getLogger(__name__)

EYE_COLOR = (0.12, 0.13, 0.125)


def _seed_tag(rng: np.random.Generator) -> str:
    return f"{int(rng.integers(0, 2 ** 32)):08x}"


def _mesh_node(mesh: trimesh.Trimesh, name: str, material: Material,
               position=(0.0, 0.0, 0.0), rotation=(0.0, 0.0, 0.0)) -> SceneNode:
    node = SceneNode.from_mesh(mesh, name=name, material=material)
    node.position = np.asarray(position, dtype=float)
    node.rotation = np.asarray(rotation, dtype=float)
    return node


def create_fallback_fragment(
    part_type: str,
    rng: Optional[np.random.Generator] = None,
    color: Optional[Tuple[float, float, float]] = None,
    material_props: Optional[Dict[str, Any]] = None
) -> SceneNode:
    """Primitive stand-in for ``part_type`` (sphere, half-sphere, box or cylinder)."""
    rng = rng if rng is not None else make_rng()
    part = canonical_category(part_type)
    if part is None:
        raise ValueError(f"Unknown part type: {part_type}")

    props = dict(material_props or {})
    base_color = tuple(color) if color is not None else tuple(rng.random(3))
    base = 0.5 + rng.random() * 0.3
    group = SceneNode.group(f"{part}_fragment")

    def material(**defaults) -> Material:
        values = {"roughness": 0.4, "opacity": 1.0, "transparent": False, "flat_shading": True}
        values.update(defaults)
        values.update(props)
        return Material(color=base_color, **values)

    if part == "head":
        radius = base * (0.37 + rng.random() * 0.13)
        head = trimesh.creation.uv_sphere(radius=radius, count=[13, 11])
        group.add(_mesh_node(head, "head", material(roughness=0.33 + rng.random() * 0.16),
                             rotation=(rng.random() * 0.2, 0.0, 0.0)))
        if rng.random() < 0.6:
            eye = trimesh.creation.uv_sphere(radius=radius * 0.15, count=[8, 8])
            position = (0.15 - rng.random() * 0.12, 0.1, radius * 0.9 - rng.random() * 0.08)
            group.add(_mesh_node(eye, "eye", Material(color=EYE_COLOR, roughness=0.2),
                                 position=position))

    elif part in ("torso", "belly"):
        scale = (0.8 + rng.random() * 0.4) if part == "torso" else (0.6 + rng.random() * 0.3)
        body = trimesh.creation.uv_sphere(radius=base * scale, count=[28, 28])
        group.add(_mesh_node(body, part, material()))

    elif part == "wing":
        for i in range(1 + int(rng.integers(0, 2))):
            radius = base * (0.3 + rng.random() * 0.15)
            sphere = trimesh.creation.uv_sphere(radius=radius, count=[16, 12])
            half = sphere.slice_plane(plane_origin=[0.0, 0.0, 0.0], plane_normal=[1.0, 0.0, 0.0])
            position = ((rng.random() - 0.5) * 0.5, (rng.random() - 0.5) * 0.3,
                        (rng.random() - 0.5) * 0.2)
            rotation = (0.0, rng.random() * np.pi * 2, (rng.random() - 0.4) * 1.1)
            opacity = 0.7 + 0.3 * rng.random()
            group.add(_mesh_node(half, f"wing_{i}", material(opacity=opacity, transparent=True),
                                 position=position, rotation=rotation))

    elif part == "tail":
        size = base * 0.4
        tail = trimesh.creation.box(extents=[size * 0.5, size * 0.3, size * 0.7])
        opacity = 0.7 + 0.3 * rng.random()
        group.add(_mesh_node(tail, "tail", material(opacity=opacity, transparent=True),
                             rotation=(rng.random() * np.pi, rng.random() * np.pi, 0.0)))

    elif part == "foot":
        if rng.random() < 0.5:
            foot = trimesh.creation.cylinder(radius=base * 0.1, height=base * 0.3, sections=8)
            rotation = (rng.random() * np.pi * 2, 0.0, 0.0)
        else:
            foot = trimesh.creation.uv_sphere(radius=base * 0.15, count=[10, 8])
            rotation = (0.0, 0.0, 0.0)
        group.add(_mesh_node(foot, "foot", material(), rotation=rotation))

    group.user_data.update({"part_type": part, "component_id": None,
                            "fallback": True, "seed": _seed_tag(rng)})
    return group


def create_fragment(
    part_type: str,
    catalog: Optional[FragmentCatalog] = None,
    rng: Optional[np.random.Generator] = None,
    color: Optional[Tuple[float, float, float]] = None,
    material_props: Optional[Dict[str, Any]] = None,
    use_point_skin: bool = False
) -> SceneNode:
    """
    One fragment for ``part_type``, from the catalog when possible.

    ``color`` and ``material_props`` override the appearance of every mesh.
    With ``use_point_skin`` the meshes are hidden behind a sparse skin
    (800-2000 points).
    """
    rng = rng if rng is not None else make_rng()

    entry = None
    if catalog is not None and catalog.is_loaded():
        entry = catalog.get_random_component(part_type, rng)
        if entry is None:
            logger.debug(f"No catalog component for '{part_type}', using primitive")

    if entry is not None:
        node = SceneNode.group(f"{entry.category}_fragment")
        node.add(entry.node)
        if color is not None or material_props:
            node.set_material(color=color, **dict(material_props or {}))
        node.user_data.update({"part_type": entry.category, "component_id": entry.id,
                               "fallback": False, "seed": _seed_tag(rng)})
    else:
        node = create_fallback_fragment(part_type, rng, color, material_props)

    if use_point_skin:
        opacity = (material_props or {}).get("opacity")
        apply_point_skin(
            node,
            rng=rng,
            point_count=800 + int(rng.integers(0, 1200)),
            point_size=0.04 + rng.random() * 0.06,
            skin_thickness=0.008 + rng.random() * 0.015,
            opacity=opacity * 0.9 if opacity is not None else 0.75 + rng.random() * 0.2,
        )
    return node


def draw_fragments(
    categories: Sequence[str],
    catalog: Optional[FragmentCatalog] = None,
    rng: Optional[np.random.Generator] = None,
    **options
) -> List[Dict[str, Any]]:
    """Create one fragment per category, as ``{category, node}`` mappings."""
    rng = rng if rng is not None else make_rng()
    drawn = []
    for category in categories:
        node = create_fragment(category, catalog, rng, **options)
        drawn.append({"category": node.user_data["part_type"], "node": node})
    return drawn
