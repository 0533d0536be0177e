# Overview: Claim guard; one compare-and-set per claim on an order role slot or a line decision slot.

"""
Claim Guard

================================================================================
PURPOSE: Exactly one actor per role may own an order (or a shortage decision)
================================================================================

WHY THIS EXISTS:
- Two storekeepers opening the same order must not both start ticking items
- Two checkers must not both count the same packed order
- Two admins must not both decide the same disputed shortage

CONTRACT:
    claim(resource, role, actor) ->
        slot unassigned          -> take it, succeed
        slot held by actor       -> succeed, owner unchanged (idempotent)
        slot held by someone else -> AlreadyClaimed(by=other)

HOW:
    One UPDATE ... WHERE id = :id AND (owner IS NULL OR owner = :actor).
    rowcount 1 means we own it. rowcount 0 means someone else does, and we
    read who for the failure. There is never a read-then-write window.

    The UPDATE also bumps version_id, so any concurrent ORM write built on
    the pre-claim row fails with StaleDataError and is retried against the
    new owner.

STALENESS:
    The engine has no timeouts. A caller policy may pass stale_after; the
    WHERE clause then also matches a claim older than that age, still in the
    same single statement.
================================================================================
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import case, or_, select, update

from ..errors import AlreadyClaimed, GuardViolation, NotFound, NotPermitted, Result
from ..extensions import db
from ..flags import Role
from ..models import ORDER_ROLE_SLOTS, Order, OrderLine
from orderflow.time_utils import is_older_than, to_utc_z, utcnow
from .concurrency import run_action


class ResourceKind(str, enum.Enum):
    ORDER = "ORDER"
    LINE = "LINE"


# Roles that decide a disputed shortage on a line
LINE_DECISION_ROLES = (Role.SALESMAN, Role.ADMIN)


@dataclass(frozen=True)
class ClaimToken:
    """Who holds a slot, and since when. A projection of the owner columns."""
    resource_kind: ResourceKind
    resource_id: int
    role: Role
    actor_id: int
    claimed_at: Optional[datetime]

    def is_stale(self, max_age: timedelta, *, now: Optional[datetime] = None) -> bool:
        return is_older_than(self.claimed_at, max_age, now=now)

    def to_dict(self) -> dict:
        return {
            "resource_kind": self.resource_kind.value,
            "resource_id": self.resource_id,
            "role": self.role.value,
            "actor_id": self.actor_id,
            "claimed_at": to_utc_z(self.claimed_at),
        }


def _slot(kind: ResourceKind, role: Role):
    """Return (model, owner column, claimed-at column) for a claimable slot."""
    if kind == ResourceKind.ORDER:
        if role not in ORDER_ROLE_SLOTS:
            raise NotPermitted(f"role {role.value} has no claimable slot on an order")
        owner_attr, claimed_attr = ORDER_ROLE_SLOTS[role]
        return Order, getattr(Order, owner_attr), getattr(Order, claimed_attr)

    if role not in LINE_DECISION_ROLES:
        raise NotPermitted(f"role {role.value} cannot claim a shortage decision")
    return OrderLine, OrderLine.resolver_id, OrderLine.resolver_claimed_at


def claim(
    kind: ResourceKind,
    resource_id: int,
    role: Role,
    actor_id: int,
    *,
    stale_after: Optional[timedelta] = None,
) -> ClaimToken:
    """
    Take (or re-enter) a slot inside the caller's unit of work.

    Raises:
        AlreadyClaimed: slot held by a different actor
        NotFound: resource does not exist
        NotPermitted: role has no such slot
    """
    model, owner_col, claimed_col = _slot(kind, role)
    now = utcnow()

    # Pending ORM changes must hit the row before we bump its version.
    db.session.flush()

    condition = or_(owner_col.is_(None), owner_col == actor_id)
    if stale_after is not None:
        condition = or_(condition, claimed_col < now - stale_after)

    stmt = (
        update(model)
        .where(model.id == resource_id, condition)
        .values(
            {
                owner_col: actor_id,
                claimed_col: case((owner_col == actor_id, claimed_col), else_=now),
                model.version_id: model.version_id + 1,
            }
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)

    if result.rowcount:
        instance = db.session.get(model, resource_id)
        if instance is not None:
            db.session.refresh(instance)
        claimed_at = db.session.execute(
            select(claimed_col).where(model.id == resource_id)
        ).scalar()
        return ClaimToken(kind, resource_id, role, actor_id, claimed_at)

    row = db.session.execute(select(owner_col).where(model.id == resource_id)).first()
    if row is None:
        raise NotFound("Order" if kind == ResourceKind.ORDER else "OrderLine", resource_id)
    current_owner = row[0]
    if current_owner is None:
        # Only reachable if the row changed between the UPDATE and this read.
        raise GuardViolation("claim changed concurrently, retry")
    raise AlreadyClaimed(by=current_owner, role=role.value)


def try_claim(
    kind: ResourceKind,
    resource_id: int,
    role: Role,
    actor_id: int,
    *,
    stale_after: Optional[timedelta] = None,
) -> Result[ClaimToken]:
    """Claim as a standalone operation: Result[ClaimToken], never raises for contention."""
    return run_action(lambda: claim(kind, resource_id, role, actor_id, stale_after=stale_after))


def current_claim(kind: ResourceKind, resource_id: int, role: Role) -> Optional[ClaimToken]:
    """Read the current holder of a slot, or None if unassigned."""
    model, owner_col, claimed_col = _slot(kind, role)
    row = db.session.execute(
        select(owner_col, claimed_col).where(model.id == resource_id)
    ).first()
    if row is None:
        raise NotFound("Order" if kind == ResourceKind.ORDER else "OrderLine", resource_id)
    owner, claimed_at = row
    if owner is None:
        return None
    return ClaimToken(kind, resource_id, role, owner, claimed_at)


def order_claims(order_id: int) -> list[ClaimToken]:
    """All held role slots on an order."""
    tokens = []
    for role in ORDER_ROLE_SLOTS:
        token = current_claim(ResourceKind.ORDER, order_id, role)
        if token is not None:
            tokens.append(token)
    return tokens
