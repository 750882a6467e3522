"""
Assembly Orchestrator: fragments in, one placed and connected creature out.
"""

from .build import (
    assemble, assign_roles, split_sides,
    Creature, Fragment, PlacedFragment, RoleAssignment, Role,
)
from .synthesis import synthesize_creature, synthesize_creature_async, paced, apply_point_skin

__all__ = [
    'assemble', 'assign_roles', 'split_sides',
    'Creature', 'Fragment', 'PlacedFragment', 'RoleAssignment', 'Role',
    'synthesize_creature', 'synthesize_creature_async', 'paced', 'apply_point_skin',
]
