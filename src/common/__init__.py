"""
Common modules shared by every synthesis stage.

Scene model:
- SceneNode trees (group / mesh / points), transforms as XYZ Euler + scale
- Axis-aligned boxes are always taken in the parent frame of a node
- One numpy Generator is threaded through every randomized operation
"""

from .config import Config, make_rng
from .scene import SceneNode, NodeKind, Material, PointGeometry
from .bounds import BoundingBox
from .io import save_creature, load_creature_metadata, CreatureMetadata

__all__ = [
    'Config', 'make_rng',
    'SceneNode', 'NodeKind', 'Material', 'PointGeometry',
    'BoundingBox',
    'save_creature', 'load_creature_metadata', 'CreatureMetadata',
]
