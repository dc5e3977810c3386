"""Protocols for collaborators outside the domain core."""

from __future__ import annotations

from .persistence import AggregateOp, FilterEngine, PersistenceBackend
from .schema import NOT_LOADED, AssociationDescriptor, Cardinality, NotLoaded, Relation, Schema

__all__ = [
    "NOT_LOADED",
    "AggregateOp",
    "AssociationDescriptor",
    "Cardinality",
    "FilterEngine",
    "NotLoaded",
    "PersistenceBackend",
    "Relation",
    "Schema",
]
