"""Error taxonomy for the replenishment service."""

from __future__ import annotations

from typing import Any, Optional


class ReplenishmentError(RuntimeError):
    """Base class for errors raised by the replenishment core."""

    code = "replenishment_error"

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.code, "message": self.message}
        payload.update(self.details)
        return payload


class InvalidRequestError(ReplenishmentError):
    """Raised when required input fields are missing or malformed."""

    code = "validation_error"


class OrderNotFoundError(ReplenishmentError):
    """Raised when no replenishment order matches the identifier."""

    code = "order_not_found"

    def __init__(self, replenishment_id: str) -> None:
        super().__init__(
            f"replenishment {replenishment_id} not found",
            details={"replenishment_id": replenishment_id},
        )
        self.replenishment_id = replenishment_id


class IllegalTransitionError(ReplenishmentError):
    """Raised when the requested stage is not reachable from the current one."""

    code = "illegal_transition"

    def __init__(self, current: Optional[str], target: str) -> None:
        super().__init__(
            f"cannot transition {current} -> {target}",
            details={"current_status": current, "target_status": target},
        )
        self.current = current
        self.target = target


class ConcurrentModificationError(ReplenishmentError):
    """Raised when an order changed between load and conditional update."""

    code = "concurrent_modification"


class DependencyUnavailableError(ReplenishmentError):
    """Raised when the ledger store or event log cannot be reached."""

    code = "dependency_unavailable"


class EventPublishError(DependencyUnavailableError):
    """Raised when an event could not be appended to the event log."""

    code = "event_publish_failed"
