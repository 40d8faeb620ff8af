"""Credential collections — registry, supply accounting, wrapped pointers."""

from patronage.credentials.registry import CollectionRegistry

__all__ = ["CollectionRegistry"]
