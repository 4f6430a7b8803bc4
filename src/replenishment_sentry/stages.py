"""
Replenishment order stages and the allowed transitions between them.

The table below is the only place that decides whether an order may move
from one stage to another. It has no side effects and does no I/O.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Union


class Stage(str, Enum):
    ALERT_RAISED = "ALERT_RAISED"
    AWAITING_STOCK = "AWAITING_STOCK"
    PENDING_PICKING = "PENDING_PICKING"
    IN_TRANSIT = "IN_TRANSIT"
    COMPLETED = "COMPLETED"

    def __str__(self) -> str:
        return self.value


TERMINAL_STAGES: frozenset[Stage] = frozenset({Stage.COMPLETED})

# Key   : current stage
# Value : stages the order may move to next
ALLOWED_TRANSITIONS: dict[Stage, frozenset[Stage]] = {
    Stage.ALERT_RAISED: frozenset({Stage.AWAITING_STOCK, Stage.PENDING_PICKING}),
    Stage.AWAITING_STOCK: frozenset({Stage.PENDING_PICKING}),
    Stage.PENDING_PICKING: frozenset({Stage.IN_TRANSIT}),
    Stage.IN_TRANSIT: frozenset({Stage.COMPLETED}),
    Stage.COMPLETED: frozenset(),
}

StageLike = Union[Stage, str, None]


def coerce_stage(value: StageLike) -> Optional[Stage]:
    """Return the matching Stage, or None for empty and unknown values."""
    if value is None or isinstance(value, Stage):
        return value
    try:
        return Stage(value)
    except ValueError:
        return None


def can_transition(current: StageLike, target: StageLike) -> bool:
    """Return True if the transition current -> target is allowed."""
    current_stage = coerce_stage(current)
    target_stage = coerce_stage(target)
    if current_stage is None or target_stage is None:
        return False
    return target_stage in ALLOWED_TRANSITIONS.get(current_stage, frozenset())


def is_terminal(stage: StageLike) -> bool:
    """Return True if the given stage is terminal."""
    return coerce_stage(stage) in TERMINAL_STAGES
