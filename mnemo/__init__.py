"""Mnemo adaptive memory retention engine."""

__all__ = [
    "config",
    "runtime",
]
