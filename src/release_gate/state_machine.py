"""Gate state machine using the ``transitions`` library.

Defines 5 states and 6 transitions.  ``polling`` is the initial state;
``passed``, ``failed`` and ``error_exhausted`` are terminal.
"""

from __future__ import annotations

import logging
from typing import Any

from transitions.extensions.asyncio import AsyncMachine

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------
STATES: list[str] = [
    "polling",
    "hold_wait",
    "passed",
    "failed",
    "error_exhausted",
]

TERMINAL_STATES: frozenset[str] = frozenset({"passed", "failed", "error_exhausted"})

# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------
TRANSITIONS: list[dict[str, Any]] = [
    {
        "trigger": "hold",
        "source": "polling",
        "dest": "hold_wait",
        "conditions": ["attempts_remaining"],
    },
    {
        "trigger": "back_off",
        "source": "polling",
        "dest": "hold_wait",
        "conditions": ["attempts_remaining"],
    },
    {
        "trigger": "resume_polling",
        "source": "hold_wait",
        "dest": "polling",
        "after": "advance_attempt",
    },
    {
        "trigger": "pass_gate",
        "source": "polling",
        "dest": "passed",
    },
    {
        "trigger": "fail_gate",
        "source": "polling",
        "dest": "failed",
    },
    {
        "trigger": "exhaust",
        "source": "polling",
        "dest": "error_exhausted",
        "unless": ["attempts_remaining"],
    },
]


class GateModel:
    """Model object for the gate ``AsyncMachine``.

    Tracks the attempt counter; the ``state`` attribute is managed by the
    machine.
    """

    def __init__(self, attempt_ceiling: int) -> None:
        self.state: str = "polling"
        self.attempt_index = 1
        self.attempt_ceiling = max(1, attempt_ceiling)

    # ---- Guard methods ---------------------------------------------------

    def attempts_remaining(self, *args, **kwargs) -> bool:
        """True while another attempt is permitted after the current one."""
        return self.attempt_index < self.attempt_ceiling

    # ---- Callbacks -------------------------------------------------------

    def advance_attempt(self, *args, **kwargs) -> None:
        self.attempt_index += 1
        logger.debug(
            "Advancing to attempt %d/%d", self.attempt_index, self.attempt_ceiling
        )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


def create_gate_machine(model: GateModel) -> AsyncMachine:
    """Create and return an ``AsyncMachine`` bound to *model*.

    Args:
        model: The :class:`GateModel` whose state the machine manages.

    Returns:
        Configured ``AsyncMachine`` instance.
    """
    machine = AsyncMachine(
        model=model,
        states=STATES,
        transitions=TRANSITIONS,
        initial="polling",
        auto_transitions=False,
        send_event=True,
        queued=False,
        ignore_invalid_triggers=True,
    )
    return machine
