"""World work-status state machine using the ``transitions`` library.

Defines the 8 work statuses, the transitions between them (guarded by model
conditions) and the handler that concludes each interrupted status.
Idle is the only status a new operation may start from.
"""

from __future__ import annotations

import logging
from typing import Any

from transitions import Machine, State

from src.world_orchestrator.state import GlobalWorkStatus

logger = logging.getLogger(__name__)

IDLE = GlobalWorkStatus.IDLE.value
SWITCHING_TO_LOCAL = GlobalWorkStatus.SWITCHING_TO_LOCAL.value
SWITCHING_TO_DEVELOP = GlobalWorkStatus.SWITCHING_TO_DEVELOP.value
RELEASING = GlobalWorkStatus.RELEASING.value
WAITING_RELEASE_CONFIRMATION = GlobalWorkStatus.WAITING_RELEASE_CONFIRMATION.value
CANCELLING_RELEASE = GlobalWorkStatus.CANCELLING_RELEASE.value
PUBLISHING_RELEASE = GlobalWorkStatus.PUBLISHING_RELEASE.value
OTHER_OPERATION = GlobalWorkStatus.OTHER_OPERATION.value

# ---------------------------------------------------------------------------
# States -- one per GlobalWorkStatus
# ---------------------------------------------------------------------------
STATES: list[State] = [State(status.value) for status in GlobalWorkStatus]

# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------
TRANSITIONS: list[dict[str, Any]] = [
    {
        "trigger": "start_switch_to_local",
        "source": IDLE,
        "dest": SWITCHING_TO_LOCAL,
        "conditions": ["all_on_develop"],
    },
    {
        "trigger": "start_switch_to_develop",
        "source": IDLE,
        "dest": SWITCHING_TO_DEVELOP,
        "conditions": ["all_on_local"],
    },
    {
        "trigger": "start_release",
        "source": IDLE,
        "dest": RELEASING,
        "conditions": ["all_on_develop", "has_version_selector"],
    },
    {
        "trigger": "release_built",
        "source": RELEASING,
        "dest": WAITING_RELEASE_CONFIRMATION,
    },
    {
        "trigger": "start_cancel_release",
        "source": [RELEASING, WAITING_RELEASE_CONFIRMATION],
        "dest": CANCELLING_RELEASE,
    },
    {
        "trigger": "start_publish_release",
        "source": WAITING_RELEASE_CONFIRMATION,
        "dest": PUBLISHING_RELEASE,
    },
    {
        "trigger": "start_other_operation",
        "source": IDLE,
        "dest": OTHER_OPERATION,
    },
    {
        "trigger": "work_done",
        "source": [
            SWITCHING_TO_LOCAL,
            SWITCHING_TO_DEVELOP,
            CANCELLING_RELEASE,
            PUBLISHING_RELEASE,
            OTHER_OPERATION,
        ],
        "dest": IDLE,
    },
]

# ---------------------------------------------------------------------------
# Conclude handlers -- persisted status -> World method resuming the work
# ---------------------------------------------------------------------------
CONCLUDE_HANDLERS: dict[str, str | None] = {
    IDLE: None,
    SWITCHING_TO_LOCAL: "_do_switch_to_local",
    SWITCHING_TO_DEVELOP: "_do_switch_to_develop",
    RELEASING: "_do_releasing",
    WAITING_RELEASE_CONFIRMATION: None,
    CANCELLING_RELEASE: "_do_cancel_release",
    PUBLISHING_RELEASE: "_do_publish_release",
    OTHER_OPERATION: "_do_other_operation",
}


def create_world_machine(model: Any, initial_state: str = IDLE) -> Machine:
    """Create and return a ``Machine`` bound to *model*.

    The model must implement the guard methods referenced in
    ``TRANSITIONS`` (``all_on_develop``, ``all_on_local``,
    ``has_version_selector``) and a ``persist_status`` method, called after
    every state change so the new status is saved before any work runs.

    Invalid triggers raise ``MachineError``; a failing guard makes the
    trigger return False without changing the state.

    Args:
        model: The world model.
        initial_state: The persisted work status to start from.

    Returns:
        The configured machine.
    """
    machine = Machine(
        model=model,
        states=STATES,
        transitions=TRANSITIONS,
        initial=initial_state,
        auto_transitions=False,
        send_event=True,
        ignore_invalid_triggers=False,
        after_state_change="persist_status",
    )
    logger.debug("World machine created in state '%s'", initial_state)
    return machine
