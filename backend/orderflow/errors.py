"""
Failure taxonomy and the Result type returned by every engine operation.

Service bodies raise an ``EngineFailure`` at the point a guard fails.
``concurrency.run_action`` rolls the session back and turns the raise into
``Result.fail(...)``, so callers get a value, never an exception, for an
expected business condition.

``StorageError`` is different: it is raised and propagates, because a storage
failure means nothing about the operation can be assumed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar


T = TypeVar("T")


class EngineFailure(Exception):
    """Base class for classified business failures."""

    kind = "ENGINE_FAILURE"

    def to_dict(self) -> dict:
        return {"kind": self.kind, "error": str(self)}


class GuardViolation(EngineFailure):
    """A transition's precondition was not met. Nothing was changed."""

    kind = "GUARD_VIOLATION"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class OrderCancelled(GuardViolation):
    """Raised for any gated action on an order that has been cancelled."""

    kind = "ORDER_CANCELLED"

    def __init__(self, order_id: int):
        super().__init__("order is cancelled")
        self.order_id = order_id


class NotPermitted(GuardViolation):
    """The actor's role or ownership does not allow the action."""

    kind = "NOT_PERMITTED"


class AlreadyClaimed(EngineFailure):
    kind = "ALREADY_CLAIMED"

    def __init__(self, by: int, *, role: Optional[str] = None):
        role_label = f"another {role.lower()}" if role else "another actor"
        super().__init__(f"{role_label} ({by}) already holds this claim")
        self.by = by
        self.role = role

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["by"] = self.by
        return data


class LimitExceeded(EngineFailure):
    kind = "LIMIT_EXCEEDED"

    def __init__(self, resource: str, limit: int):
        super().__init__(f"{resource} limit of {limit} reached")
        self.resource = resource
        self.limit = limit


class NotFound(EngineFailure):
    kind = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class StorageError(Exception):
    """Persistence failure. Propagated as-is, never returned."""


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    failure: Optional[EngineFailure] = None

    @classmethod
    def success(cls, value: T = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, failure: EngineFailure) -> "Result[T]":
        return cls(failure=failure)

    @property
    def ok(self) -> bool:
        return self.failure is None

    def unwrap(self) -> T:
        """Return the value, or raise the failure (for callers that prefer exceptions)."""
        if self.failure is not None:
            raise self.failure
        return self.value
