"""Dependency model: items, topological sorter and solution graph builder.

Everything in this package is a pure, synchronous computation over an
in-memory snapshot of parsed solutions. Consumers rebuild a
``DependencyContext`` whenever the underlying solutions change.
"""

__version__ = "1.0.0"
