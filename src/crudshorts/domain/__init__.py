"""Backend-agnostic core: changesets, association reconciliation, actions and batches."""
