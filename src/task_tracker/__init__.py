"""Owner-scoped task records with optimistic concurrency."""

__version__ = "1.0.0"
