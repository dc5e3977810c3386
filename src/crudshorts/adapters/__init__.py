"""Concrete collaborators for the domain ports."""
