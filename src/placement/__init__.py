"""Placement Engine: overlap tests and directional snapping for one fragment."""

from .engine import (
    overlaps,
    nodes_overlap,
    snap_position,
    snap_node,
    resolve_placement,
    normalize,
)

__all__ = [
    "overlaps",
    "nodes_overlap",
    "snap_position",
    "snap_node",
    "resolve_placement",
    "normalize",
]
