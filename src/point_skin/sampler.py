"""
Surface Point-Cloud Sampler.

Re-skins a mesh hierarchy as a sparse, jittered point cloud:

- Point budget per sub-mesh is proportional to a cheap area proxy,
  xy + yz + xz of its bounding-box extents (not true surface area).
- 30% of each budget strides through the vertex buffer.
- 70% is surface projection: a random probe inside the sub-mesh's box
  (enlarged 10%) casts rays along the six axis directions and keeps the
  nearest hit within the mesh's largest extent. Probes that hit nothing
  fall back to the nearest of the first 100 vertices.
- Every point is pushed along its normal by a random two-sided fraction of
  the skin thickness, and gets color/size jitter.
- Any shortfall is padded with random points inside a random sub-mesh box.

Positions are expressed in the sampled object's own frame; the returned
node carries the object's position/rotation/scale.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
import trimesh
from scipy.spatial import cKDTree

from common.config import SkinParams, make_rng
from common.scene import Material, PointGeometry, SceneNode

logger = logging.getLogger(__name__)

AXIS_DIRECTIONS = np.array([
    [1.0, 0.0, 0.0],
    [-1.0, 0.0, 0.0],
    [0.0, 1.0, 0.0],
    [0.0, -1.0, 0.0],
    [0.0, 0.0, 1.0],
    [0.0, 0.0, -1.0],
])

WHITE = (1.0, 1.0, 1.0)


@dataclass
class _SubMesh:
    mesh: "trimesh.Trimesh"  # already in the object's frame
    color: np.ndarray
    lo: np.ndarray
    hi: np.ndarray
    area: float

    @property
    def size(self) -> np.ndarray:
        return self.hi - self.lo

    @property
    def center(self) -> np.ndarray:
        return (self.lo + self.hi) / 2

    @property
    def has_faces(self) -> bool:
        return len(self.mesh.faces) > 0


def area_proxy(extents: np.ndarray) -> float:
    """xy + yz + xz of a bounding-box extent vector."""
    x, y, z = extents
    return float(x * y + y * z + x * z)


def _collect_submeshes(obj: SceneNode, color: Optional[Tuple[float, float, float]]) -> List[_SubMesh]:
    subs = []
    for node, matrix in obj.iter_meshes(include_self=False):
        mesh = node.geometry
        if mesh is None or getattr(mesh, "vertices", None) is None or len(mesh.vertices) == 0:
            logger.warning(f"Skipping sub-mesh '{node.name}': no position data")
            continue
        local = mesh.copy()
        local.apply_transform(matrix)
        lo, hi = local.bounds
        if color is not None:
            base = color
        elif node.material is not None:
            base = node.material.color
        else:
            base = WHITE
        subs.append(_SubMesh(mesh=local, color=np.asarray(base, dtype=float),
                             lo=lo, hi=hi, area=area_proxy(hi - lo)))
    return subs


def allocate_budgets(areas: List[float], point_count: int) -> List[int]:
    """Floor of each sub-mesh's area share of ``point_count``."""
    total = float(sum(areas))
    if total <= 0:
        shares = np.full(len(areas), 1.0 / len(areas))
    else:
        shares = np.asarray(areas, dtype=float) / total
    return [int(np.floor(share * point_count)) for share in shares]


def _vertex_normals(sub: _SubMesh, indices: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    if sub.has_faces:
        return np.asarray(sub.mesh.vertex_normals)[indices]
    return _upward_random_normals(len(indices), rng)


def _upward_random_normals(count: int, rng: np.random.Generator) -> np.ndarray:
    normals = rng.uniform(-1.0, 1.0, size=(count, 3))
    normals[:, 1] = np.abs(normals[:, 1])
    return normals


def sample_vertices(sub: _SubMesh, count: int, rng: np.random.Generator) -> Tuple[np.ndarray, np.ndarray]:
    """Stride through the vertex buffer; returns (positions, normals)."""
    n_vertices = len(sub.mesh.vertices)
    stride = max(1, n_vertices // count)
    # Wrap around once the budget exceeds the vertex buffer
    indices = (np.arange(count) * stride) % n_vertices
    return np.asarray(sub.mesh.vertices)[indices], _vertex_normals(sub, indices, rng)


def sample_surface(
    sub: _SubMesh,
    count: int,
    rng: np.random.Generator,
    params: SkinParams
) -> Tuple[np.ndarray, np.ndarray]:
    """Ray-projection samples; returns (positions, normals)."""
    probes = sub.center + (rng.random((count, 3)) - 0.5) * sub.size * params.probe_box_scale
    positions = np.empty((count, 3))
    normals = np.tile([0.0, 1.0, 0.0], (count, 1))
    hit = np.zeros(count, dtype=bool)

    if sub.has_faces:
        origins = np.repeat(probes, len(AXIS_DIRECTIONS), axis=0)
        directions = np.tile(AXIS_DIRECTIONS, (count, 1))
        locations, index_ray, index_tri = sub.mesh.ray.intersects_location(
            ray_origins=origins,
            ray_directions=directions,
            multiple_hits=False
        )
        if len(locations) > 0:
            distances = np.linalg.norm(locations - origins[index_ray], axis=1)
            keep = distances < sub.size.max()
            locations, index_ray, index_tri, distances = (
                locations[keep], index_ray[keep], index_tri[keep], distances[keep])
            probe_of = index_ray // len(AXIS_DIRECTIONS)
            order = np.lexsort((distances, probe_of))
            probes_hit, first = np.unique(probe_of[order], return_index=True)
            nearest = order[first]
            positions[probes_hit] = locations[nearest]
            normals[probes_hit] = np.asarray(sub.mesh.face_normals)[index_tri[nearest]]
            hit[probes_hit] = True

    missed = np.flatnonzero(~hit)
    if len(missed) > 0:
        scan = min(len(sub.mesh.vertices), params.fallback_vertex_scan)
        tree = cKDTree(np.asarray(sub.mesh.vertices)[:scan])
        _, nearest_vertex = tree.query(probes[missed])
        positions[missed] = np.asarray(sub.mesh.vertices)[nearest_vertex]
        if sub.has_faces:
            normals[missed] = np.asarray(sub.mesh.vertex_normals)[nearest_vertex]

    return positions, normals


def _finish(
    positions: np.ndarray,
    normals: np.ndarray,
    base_color: np.ndarray,
    point_size: float,
    skin_thickness: float,
    rng: np.random.Generator,
    params: SkinParams
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Apply two-sided fuzz, color and size jitter; returns (positions, colors, sizes)."""
    count = len(positions)
    fuzz = (rng.random(count) - 0.5) * skin_thickness
    positions = positions + normals * fuzz[:, None]
    colors = np.clip(base_color * rng.uniform(*params.color_jitter, size=(count, 3)), 0.0, 1.0)
    sizes = point_size * rng.uniform(*params.size_jitter, size=count)
    return positions, colors, sizes


def sample_skin(
    obj: SceneNode,
    point_count: Optional[int] = None,
    point_size: Optional[float] = None,
    skin_thickness: Optional[float] = None,
    color: Optional[Tuple[float, float, float]] = None,
    opacity: Optional[float] = None,
    rng: Optional[np.random.Generator] = None,
    params: Optional[SkinParams] = None
) -> Optional[SceneNode]:
    """
    Build a point-cloud skin for every mesh under ``obj``.

    Returns a POINTS node with exactly ``point_count`` points, or None if
    ``obj`` holds no usable mesh. Unset options are randomised (2000-5000
    points, size 0.03-0.08, thickness 0.01-0.03, opacity 0.7-0.9).
    """
    rng = rng if rng is not None else make_rng()
    params = params or SkinParams()

    if point_count is None:
        point_count = 2000 + int(rng.integers(0, 3000))
    if point_size is None:
        point_size = 0.03 + rng.random() * 0.05
    if skin_thickness is None:
        skin_thickness = 0.01 + rng.random() * 0.02
    if opacity is None:
        opacity = 0.7 + rng.random() * 0.2
    if point_count <= 0:
        raise ValueError(f"point_count must be positive, got {point_count}")

    subs = _collect_submeshes(obj, color)
    if not subs:
        logger.warning(f"No renderable meshes under '{obj.name}', skipping skin")
        return None

    budgets = allocate_budgets([s.area for s in subs], point_count)

    chunks_pos, chunks_col, chunks_size, chunks_norm = [], [], [], []

    def emit(positions, normals, base_color):
        positions, colors, sizes = _finish(positions, normals, base_color, point_size,
                                           skin_thickness, rng, params)
        chunks_pos.append(positions)
        chunks_col.append(colors)
        chunks_size.append(sizes)
        chunks_norm.append(normals)

    for sub, budget in zip(subs, budgets):
        n_vertex = int(np.floor(budget * params.vertex_share))
        n_surface = budget - n_vertex
        if n_vertex > 0:
            emit(*sample_vertices(sub, n_vertex, rng), sub.color)
        if n_surface > 0:
            emit(*sample_surface(sub, n_surface, rng, params), sub.color)

    sampled = sum(len(c) for c in chunks_pos)
    shortfall = point_count - sampled
    if shortfall > 0:
        picks = rng.integers(0, len(subs), size=shortfall)
        positions = np.empty((shortfall, 3))
        colors = np.empty((shortfall, 3))
        for i, pick in enumerate(picks):
            sub = subs[pick]
            positions[i] = sub.center + (rng.random(3) - 0.5) * sub.size
            colors[i] = sub.color
        chunks_pos.append(positions)
        chunks_col.append(np.clip(colors * rng.uniform(*params.color_jitter, size=(shortfall, 3)), 0.0, 1.0))
        chunks_size.append(point_size * rng.uniform(*params.size_jitter, size=shortfall))
        chunks_norm.append(_upward_random_normals(shortfall, rng))

    geometry = PointGeometry(
        positions=np.vstack(chunks_pos)[:point_count],
        colors=np.vstack(chunks_col)[:point_count],
        sizes=np.concatenate(chunks_size)[:point_count],
        normals=np.vstack(chunks_norm)[:point_count],
        point_size=point_size,
        opacity=opacity,
    )

    base = color if color is not None else tuple(subs[0].color)
    skin = SceneNode.from_points(
        geometry,
        name=f"{obj.name}_point_skin",
        material=Material(color=tuple(base), opacity=opacity, transparent=True),
    )
    skin.position = obj.position.copy()
    skin.rotation = obj.rotation.copy()
    skin.scale = obj.scale.copy()
    skin.user_data.update({"point_count": point_count, "sampled": sampled, "padded": max(shortfall, 0)})

    logger.debug(f"Skin for '{obj.name}': {len(subs)} sub-meshes, {sampled} sampled, "
                 f"{max(shortfall, 0)} padded")
    return skin


def apply_point_skin(obj: SceneNode, rng: Optional[np.random.Generator] = None,
                     **options) -> Optional[SceneNode]:
    """
    Replace the solid look of ``obj`` with a point skin.

    The skin is attached as a child with an identity transform (its points
    already live in ``obj``'s frame) and every mesh under ``obj`` is hidden.
    Nothing changes if sampling returns None.
    """
    skin = sample_skin(obj, rng=rng, **options)
    if skin is None:
        return None
    obj.hide_meshes()
    skin.position = np.zeros(3)
    skin.rotation = np.zeros(3)
    skin.scale = np.ones(3)
    obj.add(skin)
    obj.user_data["point_cloud"] = skin.name
    return skin


def vertex_point_cloud(node: SceneNode, density: float = 0.8,
                       rng: Optional[np.random.Generator] = None) -> Optional[SceneNode]:
    """
    Plain vertex-subsampled point cloud (no projection, no fuzz).

    Keeps ``density`` of each mesh's vertices at an even stride, baked into
    the node's parent frame.
    """
    rng = rng if rng is not None else make_rng()
    positions, colors, normals = [], [], []
    for mesh_node, matrix in node.iter_meshes(include_self=True):
        mesh = mesh_node.geometry
        if mesh is None or len(mesh.vertices) == 0:
            logger.warning(f"Skipping sub-mesh '{mesh_node.name}': no position data")
            continue
        local = mesh.copy()
        local.apply_transform(matrix)
        count = max(1, int(len(local.vertices) * density))
        step = max(1, len(local.vertices) // count)
        indices = np.minimum(np.arange(count) * step, len(local.vertices) - 1)
        base = np.asarray(mesh_node.material.color if mesh_node.material else WHITE)
        positions.append(np.asarray(local.vertices)[indices])
        colors.append(np.tile(base, (count, 1)))
        if len(local.faces) > 0:
            normals.append(np.asarray(local.vertex_normals)[indices])
        else:
            normals.append(_upward_random_normals(count, rng))

    if not positions:
        return None

    count = sum(len(p) for p in positions)
    geometry = PointGeometry(
        positions=np.vstack(positions),
        colors=np.vstack(colors),
        sizes=rng.uniform(0.8, 1.2, size=count),
        normals=np.vstack(normals),
        point_size=0.15,
        opacity=1.0,
    )
    return SceneNode.from_points(geometry, name=f"{node.name}_points")
