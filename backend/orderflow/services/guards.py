# Overview: Shared preconditions for order and line operations.

from __future__ import annotations

from ..errors import GuardViolation, NotPermitted, OrderCancelled
from ..flags import ApprovalFlag, Role
from ..identity import Actor
from ..models import Order
from orderflow.time_utils import utcnow
from . import notification_service


def ensure_open(order: Order) -> None:
    """
    Fail fast on terminal orders.

    Cancelled orders get their own failure so the caller can say so plainly.
    """
    if order.approval_flag == ApprovalFlag.CANCELLED:
        raise OrderCancelled(order.id)
    if order.approval_flag.is_terminal:
        raise GuardViolation(f"order is {order.approval_flag.value.lower()}")


def ensure_not_cancelled(order: Order) -> None:
    if order.approval_flag == ApprovalFlag.CANCELLED:
        raise OrderCancelled(order.id)


def ensure_state(order: Order, allowed: tuple[ApprovalFlag, ...], action: str) -> None:
    if order.approval_flag not in allowed:
        raise GuardViolation(
            f"cannot {action} while order is {order.approval_flag.value}"
        )


def ensure_role(actor: Actor, *roles: Role, allow_admin: bool = True) -> None:
    if actor.role in roles:
        return
    if allow_admin and actor.acts_as_admin:
        return
    allowed = ", ".join(r.value for r in roles)
    raise NotPermitted(f"role {actor.role.value} cannot perform this action (requires {allowed})")


def ensure_order_owner(order: Order, actor: Actor) -> None:
    """Salesman who created the order, or an admin."""
    if actor.acts_as_admin:
        return
    if actor.role == Role.SALESMAN and order.salesman_id == actor.actor_id:
        return
    raise NotPermitted(f"actor {actor.actor_id} does not own order {order.id}")


def touch(order: Order) -> None:
    order.updated_at = utcnow()
    notification_service.mark_changed(order.id)
