"""Save/sync pipeline and ``epistemic`` CLI."""
