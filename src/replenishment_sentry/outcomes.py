"""Results returned by orchestrator transitions.

Every transition ends in exactly one of three ways:

* ``Transitioned`` - the order moved to the stage that was asked for.
* ``Redirected`` - the order moved somewhere else instead (insufficient
  stock sends an allocation to AWAITING_STOCK).
* ``Rejected`` - nothing changed; the order is unknown or the stage is not
  reachable from where the order is.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .exceptions import IllegalTransitionError, OrderNotFoundError, ReplenishmentError
from .schemas import OrderRead
from .stages import Stage


class RejectionReason(str, Enum):
    ORDER_NOT_FOUND = "order_not_found"
    ILLEGAL_TRANSITION = "illegal_transition"


@dataclass(frozen=True, slots=True)
class Transitioned:
    order: OrderRead

    @property
    def stage(self) -> Stage:
        return self.order.status


@dataclass(frozen=True, slots=True)
class Redirected:
    order: OrderRead
    requested: Stage
    reason: str

    @property
    def stage(self) -> Stage:
        return self.order.status


@dataclass(frozen=True, slots=True)
class Rejected:
    replenishment_id: str
    reason: RejectionReason
    target: Stage
    current: Optional[Stage] = None

    @property
    def message(self) -> str:
        if self.reason is RejectionReason.ORDER_NOT_FOUND:
            return f"replenishment {self.replenishment_id} not found"
        return f"cannot transition {self.current} -> {self.target}"

    def to_error(self) -> ReplenishmentError:
        if self.reason is RejectionReason.ORDER_NOT_FOUND:
            return OrderNotFoundError(self.replenishment_id)
        return IllegalTransitionError(
            self.current.value if self.current is not None else None, self.target.value
        )


TransitionOutcome = Union[Transitioned, Redirected, Rejected]
