"""Core modules for the partition data displacer."""

__all__ = [
    "chain",
    "displacer",
    "exceptions",
    "filling",
    "graph",
    "inversion",
    "ir",
    "memory",
    "op_meta",
    "propagate",
    "reference",
]
