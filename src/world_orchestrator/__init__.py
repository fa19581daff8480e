"""World orchestrator: resumable build and release workflow of a world.

The :class:`~src.world_orchestrator.world.World` drives a persisted work
status through a ``transitions`` state machine, delegating git, build and
feed work to injected collaborators.
"""

__version__ = "1.0.0"
