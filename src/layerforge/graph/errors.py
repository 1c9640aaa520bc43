from __future__ import annotations


class GraphConstructionError(ValueError):
    """Raised while building a graph, before anything is executed."""


class GraphExecutionError(RuntimeError):
    """Raised when a built graph cannot be fed (missing inputs or parameters)."""
