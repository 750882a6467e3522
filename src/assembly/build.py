"""
Assembly Orchestrator: turn an unordered bag of fragments into one bird.

Role assignment ignores each fragment's source category beyond selection
order, which maximises recombination:

1. fragment 0 is the torso, placed unscaled at the origin (never shuffled)
2. the rest are shuffled
3. next -> head, next -> belly
4. of the R remaining, reserve 2 (tail + foot) if R > 2, else 1 (foot) if R > 0
5. R - reserve fragments become wings, alternating left/right
6. reserve 2: tail then foot; reserve 1: foot only

Wings and feet are mirrored when only one side is populated.

Each role is then placed through the Placement Engine with its own hint
position, preferred direction and penetration factor, and the Contact
Enforcement Pass repairs anything left floating.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from common.bounds import BoundingBox
from common.config import Config, make_rng
from common.scene import SceneNode
from contact.enforce import ensure_connectivity, ContactReport
from placement.engine import resolve_placement

logger = logging.getLogger(__name__)

UP = np.array([0.0, 1.0, 0.0])
DOWN = np.array([0.0, -1.0, 0.0])
BACK = np.array([0.0, 0.0, 1.0])

SIDES = (("left", -1.0), ("right", 1.0))


class Role(Enum):
    TORSO = "torso"
    HEAD = "head"
    BELLY = "belly"
    WING = "wing"
    TAIL = "tail"
    FOOT = "foot"


@dataclass
class Fragment:
    """A body-part subtree plus the catalog category it was drawn from."""
    category: str
    node: SceneNode

    @classmethod
    def coerce(cls, item: Any) -> "Fragment":
        """Accept a Fragment or a ``{category, node|mesh}`` mapping."""
        if isinstance(item, Fragment):
            return item
        if isinstance(item, dict):
            node = item.get("node", item.get("mesh"))
            if node is None:
                raise ValueError(f"Fragment mapping has no node: {sorted(item)}")
            return cls(category=str(item.get("category", "unknown")), node=node)
        raise ValueError(f"Cannot interpret {type(item).__name__} as a fragment")


@dataclass
class PlacedFragment:
    node: SceneNode
    role: Role
    category: str
    side: Optional[str] = None
    mirrored: bool = False


@dataclass
class RoleAssignment:
    torso: Optional[Fragment] = None
    head: Optional[Fragment] = None
    belly: Optional[Fragment] = None
    wings: List[Fragment] = field(default_factory=list)
    tail: Optional[Fragment] = None
    feet: List[Fragment] = field(default_factory=list)
    reserve: int = 0


@dataclass
class Creature:
    """Placed fragments rooted at the torso, in placement order."""
    root: SceneNode
    placed: List[PlacedFragment] = field(default_factory=list)
    contact: Optional[ContactReport] = None

    def __len__(self) -> int:
        return len(self.placed)

    @property
    def torso(self) -> Optional[PlacedFragment]:
        return self.placed[0] if self.placed else None

    @property
    def nodes(self) -> List[SceneNode]:
        return [p.node for p in self.placed]

    def with_role(self, role: Role) -> List[PlacedFragment]:
        return [p for p in self.placed if p.role is role]

    def role_counts(self) -> Dict[str, int]:
        counts = {role.value: 0 for role in Role}
        for p in self.placed:
            counts[p.role.value] += 1
        return counts


def assign_roles(fragments: Sequence[Fragment], rng: np.random.Generator) -> RoleAssignment:
    """Split fragments into anatomical roles (see module docstring)."""
    assignment = RoleAssignment()
    if not fragments:
        return assignment

    order = [0] + [int(i) + 1 for i in rng.permutation(len(fragments) - 1)]
    queue = [fragments[i] for i in order]

    assignment.torso = queue.pop(0)
    if queue:
        assignment.head = queue.pop(0)
    if queue:
        assignment.belly = queue.pop(0)

    remaining = len(queue)
    reserve = 2 if remaining > 2 else (1 if remaining > 0 else 0)
    assignment.reserve = reserve

    for _ in range(remaining - reserve):
        assignment.wings.append(queue.pop(0))

    if reserve == 2:
        assignment.tail = queue.pop(0)
    if queue:
        assignment.feet.append(queue.pop(0))

    return assignment


def split_sides(parts: List[Fragment]) -> Dict[str, List[Tuple[Fragment, bool]]]:
    """
    Alternate parts left/right; mirror the first part onto an empty side.

    Returns ``{"left": [(fragment, mirrored)], "right": [...]}``.
    """
    sides = {"left": [], "right": []}
    for i, part in enumerate(parts):
        sides["left" if i % 2 == 0 else "right"].append((part, False))

    if sides["left"] and not sides["right"]:
        sides["right"].append((sides["left"][0][0], True))
    elif sides["right"] and not sides["left"]:
        sides["left"].append((sides["right"][0][0], True))
    return sides


class _Assembler:
    """Placement state for a single creature."""

    def __init__(self, config: Config):
        self.config = config
        self.root = SceneNode.group("creature")
        self.placed: List[PlacedFragment] = []

    @property
    def placed_nodes(self) -> List[SceneNode]:
        return [p.node for p in self.placed]

    def place(
        self,
        fragment: Fragment,
        role: Role,
        initial: np.ndarray,
        direction: Optional[np.ndarray],
        penetration: float = 0.0,
        side: Optional[str] = None,
        mirrored: bool = False,
        rotation: Optional[np.ndarray] = None,
        prepared: Optional[SceneNode] = None
    ) -> SceneNode:
        node = prepared if prepared is not None else self.prepare(fragment, role, side, rotation)
        if direction is None:
            node.position = np.asarray(initial, dtype=float)
        else:
            resolve_placement(node, self.placed_nodes, initial, direction, penetration,
                              self.config.placement)
        self.root.add(node)
        self.placed.append(PlacedFragment(node=node, role=role, category=fragment.category,
                                          side=side, mirrored=mirrored))
        return node

    def prepare(self, fragment: Fragment, role: Role, side: Optional[str] = None,
                rotation: Optional[np.ndarray] = None) -> SceneNode:
        node = fragment.node.clone()
        suffix = f"_{side}" if side else ""
        node.name = f"{role.value}{suffix}_{len(self.placed)}"
        node.position = np.zeros(3)
        if rotation is not None:
            node.rotation = np.asarray(rotation, dtype=float)
        node.user_data["role"] = role.value
        node.user_data["source_category"] = fragment.category
        return node


def _size(node: SceneNode) -> np.ndarray:
    box = BoundingBox.from_node(node)
    return box.size if box is not None else np.zeros(3)


def assemble(
    fragments: Sequence[Any],
    rng: Optional[np.random.Generator] = None,
    config: Optional[Config] = None,
    enforce_contact: bool = True
) -> Creature:
    """
    Build one creature from ``fragments`` (first one is the torso).

    Input fragments are never mutated; every placed part is a clone.
    An empty input yields an empty creature.
    """
    config = config or Config()
    rng = rng if rng is not None else make_rng(config.seed)
    fragments = [Fragment.coerce(f) for f in fragments]

    if not fragments:
        return Creature(root=SceneNode.group("creature"))

    roles = assign_roles(fragments, rng)
    params = config.assembly
    asm = _Assembler(config)

    # Torso: unscaled anchor at the origin
    torso = asm.place(roles.torso, Role.TORSO, np.zeros(3), direction=None)
    torso_size = _size(torso)
    torso_half_h = torso_size[1] / 2

    belly_size = None

    if roles.head is not None:
        node = asm.prepare(roles.head, Role.HEAD)
        head_h = _size(node)[1]
        initial = np.array([0.0, torso_half_h + head_h / 2 * params.initial_embed, 0.0])
        asm.place(roles.head, Role.HEAD, initial, UP, params.head_penetration, prepared=node)

    if roles.belly is not None:
        node = asm.prepare(roles.belly, Role.BELLY)
        belly_size = _size(node)
        initial = np.array([0.0, -torso_half_h - belly_size[1] / 2 * params.initial_embed, 0.0])
        asm.place(roles.belly, Role.BELLY, initial, DOWN, params.belly_penetration, prepared=node)

    if roles.wings:
        _place_wings(asm, roles.wings, torso_size)

    if roles.tail is not None:
        rotation = np.array([params.tail_tilt, 0.0, 0.0])
        node = asm.prepare(roles.tail, Role.TAIL, rotation=rotation)
        tail_depth = _size(node)[2]
        tail_y = -torso_half_h
        if belly_size is not None:
            tail_y -= belly_size[1] / 2 * params.initial_embed
        initial = np.array([0.0, tail_y - params.tail_drop,
                            tail_depth / 2 * params.tail_depth_factor])
        asm.place(roles.tail, Role.TAIL, initial, BACK, params.tail_penetration, prepared=node)

    if roles.feet:
        bottom_y = -torso_half_h
        if belly_size is not None:
            bottom_y -= belly_size[1] / 2
        _place_feet(asm, roles.feet, bottom_y)

    creature = Creature(root=asm.root, placed=asm.placed)
    if enforce_contact and len(creature) > 1:
        creature.contact = ensure_connectivity(creature.nodes, config.contact, fixed=[torso])

    present = {role: n for role, n in creature.role_counts().items() if n}
    logger.info(f"Assembled creature from {len(fragments)} fragments: {present}")
    return creature


def _place_wings(asm: _Assembler, wings: List[Fragment], torso_size: np.ndarray) -> None:
    params = asm.config.assembly
    spacing = torso_size[0] / 2
    sides = split_sides(wings)

    for side, sign in SIDES:
        last: Optional[SceneNode] = None
        for i, (fragment, mirrored) in enumerate(sides[side]):
            rotation = np.array([
                0.0,
                sign * (params.wing_spread - i * params.wing_spread_step),
                -sign * params.wing_lift,
            ])
            node = asm.prepare(fragment, Role.WING, side, rotation)
            x = sign * spacing * params.wing_offset_factor
            if last is not None:
                last_center = BoundingBox.from_node(last).center
                x = last_center[0] + sign * _size(node)[0] * params.wing_chain_factor
            initial = np.array([x, 0.0, 0.0])
            last = asm.place(fragment, Role.WING, initial, np.array([sign, 0.0, 0.0]),
                             params.wing_penetration, side=side, mirrored=mirrored,
                             prepared=node)


def _place_feet(asm: _Assembler, feet: List[Fragment], bottom_y: float) -> None:
    params = asm.config.assembly
    sides = split_sides(feet)

    for side, sign in SIDES:
        last: Optional[SceneNode] = None
        for fragment, mirrored in sides[side]:
            rotation = np.array([0.0, 0.0, sign * params.foot_tilt])
            node = asm.prepare(fragment, Role.FOOT, side, rotation)
            foot_size = _size(node)
            x = sign * params.foot_offset_x
            y = bottom_y - foot_size[1] / 2 * params.initial_embed
            if last is not None:
                last_center = BoundingBox.from_node(last).center
                x = last_center[0] + sign * foot_size[0] * params.foot_chain_factor
                y = last_center[1]
            last = asm.place(fragment, Role.FOOT, np.array([x, y, 0.0]), DOWN,
                             params.foot_penetration, side=side, mirrored=mirrored,
                             prepared=node)
