"""
Actors and role-slot assignments.

The engine never authenticates anybody. The identity collaborator resolves a
request to an ``Actor`` and the services only ever look at that tuple.

Role slots on an order (storekeeper, checker, biller) and the decision slot on
a line are either ``UNASSIGNED`` or ``Assigned(actor_id)``; the database keeps
them as nullable integer columns.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from .flags import Role


@dataclass(frozen=True)
class Actor:
    actor_id: int
    role: Role
    is_admin: bool = False

    @property
    def acts_as_admin(self) -> bool:
        return self.is_admin or self.role == Role.ADMIN


class _Unassigned:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNASSIGNED"

    def __bool__(self) -> bool:
        return False


UNASSIGNED = _Unassigned()


@dataclass(frozen=True)
class Assigned:
    actor_id: int

    def __bool__(self) -> bool:
        return True


Assignment = Union[_Unassigned, Assigned]


def assignment_from_column(value: Optional[int]) -> Assignment:
    if value is None:
        return UNASSIGNED
    return Assigned(int(value))


def is_held_by(assignment: Assignment, actor_id: int) -> bool:
    return isinstance(assignment, Assigned) and assignment.actor_id == actor_id
