"""World shared constants, persistence helpers, logging and settings.

This package provides the foundational layer for the dependency model and
the world orchestrator. It has no dependency on either of them.
"""

__version__ = "1.0.0"
