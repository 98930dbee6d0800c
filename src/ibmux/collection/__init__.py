"""
Request-tracking collections.

Items multiplexes gateway replies across many sinks and signals readiness
once every sink has completed.
"""

from ibmux.collection.items import ItemStartError, Items, Sink, make, wait


__all__ = [
    "Items",
    "ItemStartError",
    "Sink",
    "make",
    "wait",
]
