"""
Fragment catalog: categorised body-part meshes and the factory that draws them.
"""

from .library import FragmentCatalog, CatalogEntry, CATEGORIES, canonical_category
from .loader import (
    populate_catalog, populate_catalog_async, scan_category, decode_fragment,
    register_decoder, FragmentDecodeError,
)
from .fragments import create_fragment, create_fallback_fragment, draw_fragments

__all__ = [
    'FragmentCatalog', 'CatalogEntry', 'CATEGORIES', 'canonical_category',
    'populate_catalog', 'populate_catalog_async', 'scan_category', 'decode_fragment',
    'register_decoder', 'FragmentDecodeError',
    'create_fragment', 'create_fallback_fragment', 'draw_fragments',
]
