"""
Contact Enforcement Pass.

After assembly every fragment should touch at least one sibling. Any
fragment whose contact volume (90% of its extent) meets nobody is snapped
onto its nearest neighbour and, if that is not enough, pulled further
toward it by a growing step each round.

A second pass looks at the left/right groups of wing-like and foot-like
fragments so chained parts on the same side touch each other and not just
the torso. Classification is positional (box center), not role-based, so
the pass also works on creatures assembled elsewhere.

Both passes are bounded; a fragment can stay disconnected and that is only
a weaker visual result, never an error.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np

from common.bounds import BoundingBox
from common.config import ContactParams
from common.scene import SceneNode
from placement.engine import nodes_overlap, normalize, snap_node

logger = logging.getLogger(__name__)

_FALLBACK_DIRECTION = np.array([0.0, 1.0, 0.0])


@dataclass
class ContactReport:
    """Outcome of a connectivity pass."""
    adjusted: List[str] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)

    @property
    def fully_connected(self) -> bool:
        return not self.unresolved


def has_contact(node: SceneNode, others: List[SceneNode], tolerance: float) -> bool:
    return any(nodes_overlap(node, other, tolerance) for other in others)


def nearest_by_center(node: SceneNode, others: List[SceneNode]) -> Optional[SceneNode]:
    box = BoundingBox.from_node(node)
    if box is None:
        return None
    nearest = None
    best = np.inf
    for other in others:
        other_box = BoundingBox.from_node(other)
        if other_box is None:
            continue
        distance = np.linalg.norm(other_box.center - box.center)
        if distance < best:
            best = distance
            nearest = other
    return nearest


def ensure_contact(
    node: SceneNode,
    others: List[SceneNode],
    params: Optional[ContactParams] = None
) -> bool:
    """
    Make ``node`` touch at least one of ``others``. Returns whether it does.

    Each round snaps the node against its nearest neighbour from the side
    it currently sits on, then pulls it further in by the accumulated
    nudge (0.03, 0.03 + 0.06, ...) until the contact volumes meet.
    """
    params = params or ContactParams()
    if not others:
        return True
    if has_contact(node, others, params.contact_tolerance):
        return True

    pull = 0.0
    for attempt in range(1, params.max_rounds + 1):
        nearest = nearest_by_center(node, others)
        if nearest is None:
            return False

        node_center = BoundingBox.from_node(node).center
        nearest_center = BoundingBox.from_node(nearest).center
        away = normalize(node_center - nearest_center)
        if away is None:
            away = _FALLBACK_DIRECTION

        snapped = snap_node(node, nearest, away, params.penetration)
        if snapped is not None:
            node.position = snapped - away * pull

        if nodes_overlap(node, nearest, params.contact_tolerance):
            logger.debug(f"{node.name}: contact with {nearest.name} after {attempt} round(s)")
            return True

        pull += params.nudge_step * attempt

    logger.debug(f"{node.name}: no contact after {params.max_rounds} rounds")
    return False


def classify_sides(
    placed: List[SceneNode],
    params: Optional[ContactParams] = None
) -> Dict[str, Dict[str, List[SceneNode]]]:
    """
    Group wing-like and foot-like fragments by the sign of their x center.

    wing-like: |x| > 0.2 and |y| < 0.5
    foot-like: |y| > 0.3 and y < 0
    A fragment may land in both groups.
    """
    params = params or ContactParams()
    groups = {
        "wing": {"left": [], "right": []},
        "foot": {"left": [], "right": []},
    }
    for node in placed:
        box = BoundingBox.from_node(node)
        if box is None:
            continue
        x, y = box.center[0], box.center[1]
        side = "left" if x < 0 else "right"
        if abs(x) > params.wing_min_abs_x and abs(y) < params.wing_max_abs_y:
            groups["wing"][side].append(node)
        if abs(y) > params.foot_min_abs_y and y < 0:
            groups["foot"][side].append(node)
    return groups


def ensure_connectivity(
    placed: List[SceneNode],
    params: Optional[ContactParams] = None,
    fixed: Sequence[SceneNode] = ()
) -> ContactReport:
    """
    Run the general and side-aware contact passes over ``placed`` in place.

    Nodes in ``fixed`` (the torso anchor) are never moved; the others are
    pulled onto them instead.
    """
    params = params or ContactParams()
    report = ContactReport()
    if len(placed) <= 1:
        return report
    fixed_ids = {id(node) for node in fixed}

    for i, node in enumerate(placed):
        if id(node) in fixed_ids:
            continue
        others = placed[:i] + placed[i + 1:]
        if has_contact(node, others, params.contact_tolerance):
            continue
        report.adjusted.append(node.name)
        ensure_contact(node, others, params)

    for sides in classify_sides(placed, params).values():
        for members in sides.values():
            if len(members) <= 1:
                continue
            for i in range(1, len(members)):
                if id(members[i]) in fixed_ids:
                    continue
                if not has_contact(members[i], members[:i], params.contact_tolerance):
                    report.adjusted.append(members[i].name)
                    ensure_contact(members[i], members[:i], params)

    for i, node in enumerate(placed):
        if not has_contact(node, placed[:i] + placed[i + 1:], params.contact_tolerance):
            report.unresolved.append(node.name)

    logger.info(f"Contact pass: {len(report.adjusted)} adjusted, "
                f"{len(report.unresolved)} still disconnected")
    return report
