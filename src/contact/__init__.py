"""Contact Enforcement Pass: every fragment touches at least one sibling (best effort)."""

from .enforce import ensure_connectivity, ensure_contact, classify_sides, ContactReport

__all__ = ["ensure_connectivity", "ensure_contact", "classify_sides", "ContactReport"]
