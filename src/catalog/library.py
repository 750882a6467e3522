"""
Fragment Catalog: read-only registry of body-part meshes per category.

Constructed explicitly and passed to whoever needs it; populated once
(see ``catalog.loader``) and only read afterwards. Every lookup hands out a
clone so callers can place and mutate fragments freely.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

from common.config import make_rng
from common.scene import SceneNode

logger = logging.getLogger(__name__)

CATEGORIES = ("torso", "head", "belly", "wing", "tail", "foot")

# Asset folders name the torso "chest"
CATEGORY_ALIASES = {"chest": "torso"}


def canonical_category(name: str) -> Optional[str]:
    """Map a folder/part name to a catalog category, None if unknown."""
    name = CATEGORY_ALIASES.get(name.lower(), name.lower())
    return name if name in CATEGORIES else None


@dataclass
class CatalogEntry:
    node: SceneNode
    id: str
    category: str
    source_file: Optional[Path] = None

    def clone(self) -> "CatalogEntry":
        return CatalogEntry(node=self.node.clone(), id=self.id, category=self.category,
                            source_file=self.source_file)


class FragmentCatalog:
    """
    Per-category lists of master fragments.

    ``get_random_component`` returns None for an empty or unknown category;
    callers omit the role or substitute a primitive.
    """

    def __init__(self):
        self._components: Dict[str, List[CatalogEntry]] = {c: [] for c in CATEGORIES}
        self._loaded = False

    def add(
        self,
        category: str,
        node: SceneNode,
        source_file: Optional[Path] = None,
        component_id: Optional[str] = None
    ) -> CatalogEntry:
        key = canonical_category(category)
        if key is None:
            raise ValueError(f"Unknown fragment category: {category}")
        if component_id is None:
            stem = Path(source_file).stem if source_file else str(len(self._components[key]) + 1)
            component_id = f"{key}_{stem}"
        entry = CatalogEntry(node=node, id=component_id, category=key,
                             source_file=Path(source_file) if source_file else None)
        self._components[key].append(entry)
        return entry

    def mark_loaded(self) -> None:
        self._loaded = True
        logger.info(f"Fragment catalog ready: {self.stats()}")
        for category, entries in self._components.items():
            if not entries:
                logger.warning(f"{category}: no components found")

    def is_loaded(self) -> bool:
        return self._loaded

    def get_random_component(
        self,
        category: str,
        rng: Optional[np.random.Generator] = None
    ) -> Optional[CatalogEntry]:
        key = canonical_category(category)
        if key is None:
            logger.warning(f"Unknown fragment category requested: {category}")
            return None
        entries = self._components[key]
        if not entries:
            return None
        rng = rng if rng is not None else make_rng()
        return entries[int(rng.integers(0, len(entries)))].clone()

    def get_component(self, category: str, component_id: str) -> Optional[CatalogEntry]:
        key = canonical_category(category)
        if key is None:
            return None
        for entry in self._components[key]:
            if entry.id == component_id:
                return entry.clone()
        return None

    def all_components(self, category: str) -> List[CatalogEntry]:
        key = canonical_category(category)
        return list(self._components[key]) if key else []

    def stats(self) -> Dict[str, int]:
        return {category: len(entries) for category, entries in self._components.items()}

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._components.values())
