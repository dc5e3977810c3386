"""Changesets, association reconciliation and batched CRUD actions."""

__version__ = "0.1.0"
