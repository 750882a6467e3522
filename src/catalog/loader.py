"""
Populate a FragmentCatalog from a directory of GLB fragments.

Expected layout (folder names are matched case-insensitively, and
``chest`` is accepted for the torso)::

    <root>/
        torso/torso (1).glb, torso (2).glb, ...
        head/head (1).glb, ...
        ...

Files are numbered sequentially from 1. There is no manifest, so each
category is probed index by index until ``miss_limit`` consecutive indices
are missing or fail to decode. A missing or broken file is never fatal: it
is logged and counted as a miss.

Files that declare a required glTF extension nobody registered a decoder
for (e.g. meshopt compression) are rejected up front using pygltflib.
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

import numpy as np
import trimesh
from pygltflib import GLTF2

from common.bounds import BoundingBox
from common.scene import Material, SceneNode
from .library import CATEGORIES, CATEGORY_ALIASES, FragmentCatalog

logger = logging.getLogger(__name__)

DEFAULT_MISS_LIMIT = 10
DEFAULT_MAX_INDEX = 500
DEFAULT_MAX_IN_FLIGHT = 50

# Extensions trimesh reads natively
_DECODERS: Set[str] = {
    "KHR_materials_pbrSpecularGlossiness",
    "KHR_texture_transform",
    "KHR_mesh_quantization",
}


class FragmentDecodeError(Exception):
    """A fragment file exists but could not be turned into geometry."""


def register_decoder(extension: str) -> None:
    """Declare that files requiring ``extension`` can be decoded."""
    _DECODERS.add(extension)
    logger.debug(f"Registered glTF decoder for {extension}")


def registered_decoders() -> Set[str]:
    return set(_DECODERS)


def required_extensions(path: Path) -> List[str]:
    gltf = GLTF2().load(str(path))
    if gltf is None:
        raise ValueError("not a glTF/GLB file")
    return list(gltf.extensionsRequired or [])


def _material_from_visual(mesh: trimesh.Trimesh) -> Material:
    visual = mesh.visual
    color = None
    material = getattr(visual, "material", None)
    if material is not None and getattr(material, "main_color", None) is not None:
        color = material.main_color
    elif getattr(visual, "kind", None) in ("face", "vertex"):
        color = visual.main_color
    if color is None:
        return Material()
    rgba = np.asarray(color, dtype=float) / 255.0
    opacity = float(rgba[3]) if len(rgba) > 3 else 1.0
    return Material(color=rgba[:3], opacity=opacity, transparent=opacity < 1.0)


def scene_to_node(scene: trimesh.Scene, name: str) -> SceneNode:
    """Flatten a trimesh scene into a group of mesh nodes (transforms baked)."""
    root = SceneNode.group(name)
    for node_name in scene.graph.nodes_geometry:
        transform, geometry_name = scene.graph[node_name]
        geometry = scene.geometry.get(geometry_name)
        if not isinstance(geometry, trimesh.Trimesh) or len(geometry.faces) == 0:
            continue
        mesh = geometry.copy()
        mesh.apply_transform(transform)
        root.add(SceneNode.from_mesh(mesh, name=str(node_name),
                                     material=_material_from_visual(geometry)))
    return root


def recenter(node: SceneNode) -> SceneNode:
    """Shift the node so its bounding box is centred on its parent origin."""
    box = BoundingBox.from_node(node)
    if box is not None:
        node.position = node.position - box.center
    return node


def decode_fragment(path: Path) -> SceneNode:
    """Load a single GLB into a recentred SceneNode; raises FragmentDecodeError."""
    path = Path(path)
    try:
        missing = [ext for ext in required_extensions(path) if ext not in _DECODERS]
    except Exception as e:
        raise FragmentDecodeError(f"{path.name}: unreadable glTF container ({e})") from e
    if missing:
        raise FragmentDecodeError(f"{path.name}: no decoder for {', '.join(missing)}")

    try:
        scene = trimesh.load(str(path), force="scene")
    except Exception as e:
        raise FragmentDecodeError(f"{path.name}: {e}") from e

    node = scene_to_node(scene, path.stem)
    if not node.children:
        raise FragmentDecodeError(f"{path.name}: no mesh geometry")
    return recenter(node)


def _try_decode(path: Path) -> Optional[SceneNode]:
    if not path.exists():
        return None
    try:
        return decode_fragment(path)
    except FragmentDecodeError as e:
        logger.warning(f"Skipping fragment: {e}")
        return None


def category_folders(root: Path) -> Dict[str, Tuple[Path, str]]:
    """Map each category to ``(folder, file_prefix)`` present under ``root``."""
    root = Path(root)
    found = {}
    if not root.is_dir():
        logger.warning(f"Catalog directory not found: {root}")
        return found
    for child in sorted(root.iterdir()):
        if not child.is_dir():
            continue
        name = child.name.lower()
        category = CATEGORY_ALIASES.get(name, name)
        if category in CATEGORIES and category not in found:
            found[category] = (child, child.name)
    return found


def scan_category(
    folder: Path,
    prefix: str,
    miss_limit: int = DEFAULT_MISS_LIMIT,
    max_index: int = DEFAULT_MAX_INDEX
) -> List[Tuple[Path, SceneNode]]:
    """Probe ``<prefix> (i).glb`` sequentially until ``miss_limit`` misses in a row."""
    loaded = []
    misses = 0
    for i in range(1, max_index + 1):
        if misses >= miss_limit:
            break
        path = Path(folder) / f"{prefix} ({i}).glb"
        node = _try_decode(path)
        if node is None:
            misses += 1
            continue
        misses = 0
        loaded.append((path, node))
    logger.debug(f"{prefix}: {len(loaded)} fragments from {folder}")
    return loaded


def _fill(catalog: FragmentCatalog, category: str, loaded: Iterable[Tuple[Path, SceneNode]]) -> None:
    for path, node in loaded:
        node.user_data["source_file"] = str(path)
        catalog.add(category, node, source_file=path)


def populate_catalog(
    root: Path,
    catalog: Optional[FragmentCatalog] = None,
    miss_limit: int = DEFAULT_MISS_LIMIT,
    max_index: int = DEFAULT_MAX_INDEX
) -> FragmentCatalog:
    """Load every category folder under ``root`` into ``catalog``."""
    catalog = catalog if catalog is not None else FragmentCatalog()
    folders = category_folders(root)
    logger.info(f"Loading fragments from {root} ({len(folders)} category folders)")

    for category, (folder, prefix) in folders.items():
        _fill(catalog, category, scan_category(folder, prefix, miss_limit, max_index))

    catalog.mark_loaded()
    return catalog


async def scan_category_async(
    folder: Path,
    prefix: str,
    max_in_flight: int = DEFAULT_MAX_IN_FLIGHT,
    miss_limit: int = DEFAULT_MISS_LIMIT,
    max_index: int = DEFAULT_MAX_INDEX
) -> List[Tuple[Path, SceneNode]]:
    """
    Concurrent variant of ``scan_category``.

    At most ``max_in_flight`` decodes run at once. New probes stop being
    launched once ``miss_limit`` consecutive completions were misses. The
    sequential miss rule is then re-applied over the probed indices, so a
    hit that only a slow neighbour kept in reach is dropped and the result
    matches ``scan_category``.
    """
    semaphore = asyncio.Semaphore(max_in_flight)
    results: Dict[int, Tuple[Path, SceneNode]] = {}
    misses = 0

    async def probe(index: int) -> None:
        nonlocal misses
        path = Path(folder) / f"{prefix} ({index}).glb"
        try:
            node = await asyncio.to_thread(_try_decode, path)
        finally:
            semaphore.release()
        if node is None:
            misses += 1
        else:
            misses = 0
            results[index] = (path, node)

    tasks = []
    for i in range(1, max_index + 1):
        await semaphore.acquire()
        if misses >= miss_limit:
            semaphore.release()
            break
        tasks.append(asyncio.create_task(probe(i)))
    await asyncio.gather(*tasks)

    loaded = []
    misses = 0
    for i in range(1, len(tasks) + 1):
        if misses >= miss_limit:
            break
        if i in results:
            loaded.append(results[i])
            misses = 0
        else:
            misses += 1

    logger.debug(f"{prefix}: {len(loaded)} fragments from {folder}")
    return loaded


async def populate_catalog_async(
    root: Path,
    catalog: Optional[FragmentCatalog] = None,
    max_in_flight: int = DEFAULT_MAX_IN_FLIGHT,
    miss_limit: int = DEFAULT_MISS_LIMIT,
    max_index: int = DEFAULT_MAX_INDEX
) -> FragmentCatalog:
    """Load all categories concurrently; the catalog is marked loaded at the end."""
    catalog = catalog if catalog is not None else FragmentCatalog()
    folders = category_folders(root)
    logger.info(f"Loading fragments from {root} ({len(folders)} category folders, "
                f"{max_in_flight} in flight)")

    scans = await asyncio.gather(*(
        scan_category_async(folder, prefix, max_in_flight, miss_limit, max_index)
        for folder, prefix in folders.values()
    ))
    for category, loaded in zip(folders, scans):
        _fill(catalog, category, loaded)

    catalog.mark_loaded()
    return catalog
