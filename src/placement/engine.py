"""
Placement Engine: bounding-volume overlap tests and directional snapping.

A fragment is placed by starting it at a hint position and repeatedly
snapping it off whatever it collides with, along a preferred direction:

1. Test the fragment's tolerant collision volume (80% of its extent by
   default) against every placed fragment.
2. For every collision, compute where the fragment would sit if it just
   touched that neighbour along the preferred direction, minus a
   penetration allowance so parts visibly interlock.
3. Keep the candidate closest to the hint, repeat until nothing collides
   or the round budget is spent.

This is a bounded local search, not a solver. It can finish with residual
overlap and that is accepted.
"""

import logging
from typing import Iterable, List, Optional

import numpy as np

from common.bounds import BoundingBox
from common.config import PlacementParams
from common.scene import SceneNode

logger = logging.getLogger(__name__)


def normalize(direction: np.ndarray) -> Optional[np.ndarray]:
    """Unit vector, or None for a zero-length input."""
    direction = np.asarray(direction, dtype=float)
    length = np.linalg.norm(direction)
    if length < 1e-12:
        return None
    return direction / length


def overlaps(box_a: BoundingBox, box_b: BoundingBox, tolerance_scale: float = 1.0) -> bool:
    """
    Test two boxes for intersection after shrinking both about their centers.

    tolerance_scale < 1 lets parts that visually touch or slightly
    interpenetrate pass as non-colliding.
    """
    return box_a.scaled(tolerance_scale).intersects(box_b.scaled(tolerance_scale))


def nodes_overlap(node_a: SceneNode, node_b: SceneNode, tolerance_scale: float = 1.0) -> bool:
    box_a = BoundingBox.from_node(node_a)
    box_b = BoundingBox.from_node(node_b)
    if box_a is None or box_b is None:
        return False
    return overlaps(box_a, box_b, tolerance_scale)


def snap_position(
    new_box: BoundingBox,
    anchor_box: BoundingBox,
    direction: np.ndarray,
    penetration_factor: float,
    penetration_gain: float = 1.5
) -> Optional[np.ndarray]:
    """
    Center for ``new_box`` so it sits against ``anchor_box`` along ``direction``.

    The touching separation is the sum of both boxes' support distances
    along the direction. A negative ``penetration_factor`` pulls the boxes
    into each other by that fraction of the average support distance,
    times ``penetration_gain``.

    Returns None when the direction has zero length.
    """
    unit = normalize(direction)
    if unit is None:
        return None

    new_projection = new_box.projected_half_extent(unit)
    anchor_projection = anchor_box.projected_half_extent(unit)
    average = (new_projection + anchor_projection) / 2

    separation = new_projection + anchor_projection + penetration_factor * average * penetration_gain
    return anchor_box.center + unit * separation


def snap_node(
    node: SceneNode,
    anchor: SceneNode,
    direction: np.ndarray,
    penetration_factor: float,
    penetration_gain: float = 1.5
) -> Optional[np.ndarray]:
    """Node position that moves its box center onto the snap target."""
    node_box = BoundingBox.from_node(node)
    anchor_box = BoundingBox.from_node(anchor)
    if node_box is None or anchor_box is None:
        return None
    target = snap_position(node_box, anchor_box, direction, penetration_factor, penetration_gain)
    if target is None:
        return None
    return node.position + (target - node_box.center)


def resolve_placement(
    node: SceneNode,
    placed: List[SceneNode],
    initial_position: np.ndarray,
    preferred_direction: np.ndarray,
    penetration_factor: float = -0.25,
    params: Optional[PlacementParams] = None
) -> np.ndarray:
    """
    Move ``node`` out of collision with ``placed`` and return its final position.

    The node's position is mutated in place. With nothing placed yet, the
    initial position is accepted as-is.
    """
    params = params or PlacementParams()
    initial_position = np.asarray(initial_position, dtype=float)
    node.position = initial_position.copy()

    if not placed:
        return initial_position.copy()

    preferred = normalize(preferred_direction)

    for round_index in range(params.max_rounds):
        colliding = _colliding(node, placed, params.collision_tolerance)
        if not colliding:
            logger.debug(f"{node.name}: placed after {round_index} round(s)")
            break

        best_position = None
        best_distance = np.inf
        for other in colliding:
            candidate = snap_node(node, other, preferred_direction, penetration_factor,
                                  params.snap_penetration_gain)
            if candidate is None:
                continue
            distance = np.linalg.norm(candidate - initial_position)
            if distance < best_distance:
                best_distance = distance
                best_position = candidate

        if best_position is not None:
            node.position = best_position
        elif preferred is not None:
            node.position = node.position + preferred * params.nudge_step
    else:
        logger.debug(f"{node.name}: round budget exhausted, keeping best effort position")

    return node.position.copy()


def _colliding(node: SceneNode, placed: Iterable[SceneNode], tolerance: float) -> List[SceneNode]:
    box = BoundingBox.from_node(node)
    if box is None:
        return []
    hits = []
    for other in placed:
        other_box = BoundingBox.from_node(other)
        if other_box is not None and overlaps(box, other_box, tolerance):
            hits.append(other)
    return hits
