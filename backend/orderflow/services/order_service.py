# Overview: Order state machine; approval-flag transitions driven by role actions.

"""
Order State Machine

================================================================================
PURPOSE: Move an order through salesman -> storekeeper -> checker -> biller
================================================================================

TRANSITIONS:
    NEW                      submit_order            -> SENT_TO_STOREKEEPER
    SENT_TO_STOREKEEPER      claim_as_storekeeper    (slot only)
    SENT_TO_STOREKEEPER      inform_updates          -> VERIFIED_BY_STOREKEEPER
    STOREKEEPER stage        send_to_checker         -> SENT_TO_CHECKER
    VERIFIED_BY_STOREKEEPER  complete_order          -> COMPLETED
    SENT_TO_CHECKER          claim_as_checker        -> CHECKER_IS_CHECKING
    CHECKER_IS_CHECKING      submit_checked_report   -> COMPLETED
    any non-terminal         cancel_order            -> CANCELLED
    any non-terminal         reject_order (admin)    -> REJECTED

RULES:
1. A failed guard raises inside run_action, which rolls back. Nothing about
   the order or its lines changes on a GuardViolation.
2. Once CANCELLED, every gated action fails with OrderCancelled ("order is
   cancelled"), checked before any other guard.
3. Estimates are frozen when the order is forwarded to the checker or the
   biller, and at completion for anything not yet frozen.
4. Notifications are queued during the transition and delivered after commit.
================================================================================
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from ..errors import GuardViolation, NotPermitted, OrderCancelled, Result
from ..flags import ApprovalFlag, FulfillmentFlag, Role
from ..identity import Actor
from ..models import ORDER_ROLE_SLOTS, Order, OrderLine
from orderflow.time_utils import utcnow
from . import claim_service, notification_service
from .billing_service import BillSummary, bill_for
from .claim_service import ClaimToken, ResourceKind
from .concurrency import engine_operation
from .guards import (
    ensure_not_cancelled,
    ensure_open,
    ensure_order_owner,
    ensure_role,
    ensure_state,
    touch,
)
from .line_rules import (
    flag_of,
    indicates_in_stock,
    is_countable,
    is_live,
    parse_quantity,
)
from .line_service import (
    CHECKER_STAGE,
    STOREKEEPER_STAGE,
    authorize_checker,
    merge_checker_edits,
    snapshot_estimate,
)
from .repository import load_lines, load_order, save_line, save_order


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _new_line(order: Order, item: Mapping) -> OrderLine:
    product_ref = (item.get("product_ref") or "").strip()
    if not product_ref:
        raise GuardViolation("product_ref is required")

    ordered_qty = parse_quantity(item.get("ordered_qty"), "ordered_qty")
    if ordered_qty <= 0:
        raise GuardViolation(f"ordered_qty for {product_ref} must be positive")

    rate = parse_quantity(item.get("rate", 0), "rate")
    if rate < 0:
        raise GuardViolation(f"rate for {product_ref} cannot be negative")

    line = OrderLine(
        order_id=order.id,
        product_ref=product_ref,
        ordered_qty=ordered_qty,
        available_qty=Decimal("0"),
        rate=rate,
        fulfillment_flag=FulfillmentFlag.NEW_ITEM,
        note=item.get("note"),
        created_at=utcnow(),
    )
    return save_line(line)


def _freight(value) -> Decimal:
    amount = parse_quantity(value, "freight_charge")
    if amount < 0:
        raise GuardViolation("freight charge cannot be negative")
    return amount


def _live_lines(order: Order) -> list[OrderLine]:
    return [line for line in load_lines(order.id) if is_live(line)]


def _ensure_all_in_stock(order: Order) -> list[OrderLine]:
    live = _live_lines(order)
    if not live or not all(indicates_in_stock(line) for line in live):
        raise GuardViolation("not all items in stock")
    return live


def _freeze_estimates(order: Order) -> int:
    return sum(1 for line in load_lines(order.id) if snapshot_estimate(line))


def _set_approval(order: Order, flag: ApprovalFlag) -> None:
    order.approval_flag = flag
    touch(order)


# ---------------------------------------------------------------------------
# Salesman drafting
# ---------------------------------------------------------------------------

@engine_operation
def create_order(
    actor: Actor,
    *,
    customer_ref: Optional[str] = None,
    lines: Iterable[Mapping] = (),
    freight_charge=0,
    note: Optional[str] = None,
) -> Order:
    """
    Create a NEW order owned by the acting salesman.

    Args:
        actor: salesman (or admin drafting on their own account)
        customer_ref: opaque customer reference
        lines: mappings with product_ref, ordered_qty, rate and optional note
        freight_charge: non-negative amount added to both bills
        note: free text

    Returns:
        The persisted Order with its lines
    """
    ensure_role(actor, Role.SALESMAN)
    order = Order(
        customer_ref=customer_ref,
        approval_flag=ApprovalFlag.NEW,
        salesman_id=actor.actor_id,
        freight_charge=_freight(freight_charge),
        note=note,
        created_at=utcnow(),
    )
    save_order(order)
    for item in lines:
        _new_line(order, item)
    touch(order)
    return order


@engine_operation
def add_line(
    order_id: int,
    actor: Actor,
    product_ref: str,
    ordered_qty,
    rate=0,
    note: Optional[str] = None,
) -> OrderLine:
    order = load_order(order_id, for_update=True)
    ensure_open(order)
    ensure_order_owner(order, actor)
    ensure_state(order, (ApprovalFlag.NEW,), "add lines")
    line = _new_line(
        order, {"product_ref": product_ref, "ordered_qty": ordered_qty, "rate": rate, "note": note}
    )
    touch(order)
    return line


@engine_operation
def update_freight(order_id: int, actor: Actor, freight_charge) -> Order:
    order = load_order(order_id, for_update=True)
    ensure_open(order)
    ensure_order_owner(order, actor)
    order.freight_charge = _freight(freight_charge)
    touch(order)
    return order


@engine_operation
def update_note(order_id: int, actor: Actor, note: Optional[str]) -> Order:
    order = load_order(order_id, for_update=True)
    ensure_open(order)
    ensure_order_owner(order, actor)
    order.note = note
    touch(order)
    return order


@engine_operation
def submit_order(order_id: int, actor: Actor) -> Order:
    """Hand a NEW order to the storekeeper pool; every NEW_ITEM line becomes NOT_CHECKED."""
    order = load_order(order_id, for_update=True)
    ensure_open(order)
    ensure_order_owner(order, actor)
    ensure_state(order, (ApprovalFlag.NEW,), "submit")

    live = _live_lines(order)
    if not live:
        raise GuardViolation("order has no line items")

    now = utcnow()
    for line in live:
        if flag_of(line) == FulfillmentFlag.NEW_ITEM:
            line.fulfillment_flag = FulfillmentFlag.NOT_CHECKED
            line.updated_at = now

    order.submitted_at = now
    _set_approval(order, ApprovalFlag.SENT_TO_STOREKEEPER)
    notification_service.queue(
        Role.STOREKEEPER, order.id, f"order {order.id} has {len(live)} item(s) to check"
    )
    return order


# ---------------------------------------------------------------------------
# Storekeeper stage
# ---------------------------------------------------------------------------

@engine_operation
def claim_as_storekeeper(order_id: int, actor: Actor, stale_after: Optional[timedelta] = None) -> ClaimToken:
    ensure_role(actor, Role.STOREKEEPER, allow_admin=False)
    order = load_order(order_id, for_update=True)
    ensure_open(order)
    ensure_state(order, STOREKEEPER_STAGE, "claim as storekeeper")
    token = claim_service.claim(
        ResourceKind.ORDER, order.id, Role.STOREKEEPER, actor.actor_id, stale_after=stale_after
    )
    touch(order)
    return token


@engine_operation
def inform_updates(order_id: int, actor: Actor) -> Order:
    """Storekeeper is done: every live line has a stock decision."""
    order = load_order(order_id, for_update=True)
    ensure_open(order)
    ensure_role(actor, Role.STOREKEEPER)
    ensure_state(order, (ApprovalFlag.SENT_TO_STOREKEEPER,), "inform updates")
    if actor.role == Role.STOREKEEPER:
        claim_service.claim(ResourceKind.ORDER, order.id, Role.STOREKEEPER, actor.actor_id)

    if any(not flag_of(line).has_stock_decision for line in _live_lines(order)):
        raise GuardViolation("unchecked items remain")

    _set_approval(order, ApprovalFlag.VERIFIED_BY_STOREKEEPER)
    notification_service.queue(
        Role.SALESMAN, order.id, f"order {order.id} verified by storekeeper", actor_id=order.salesman_id
    )
    return order


# ---------------------------------------------------------------------------
# Hand-offs
# ---------------------------------------------------------------------------

@engine_operation
def send_to_checker(order_id: int, actor: Actor, checker_id: Optional[int] = None) -> Order:
    """
    Forward the order for physical checking.

    Allowed from the storekeeper stage, or again from SENT_TO_CHECKER to
    re-notify. Passing checker_id pre-assigns the checker slot.
    """
    order = load_order(order_id, for_update=True)
    ensure_not_cancelled(order)
    ensure_open(order)
    ensure_order_owner(order, actor)
    _ensure_all_in_stock(order)
    ensure_state(
        order, STOREKEEPER_STAGE + (ApprovalFlag.SENT_TO_CHECKER,), "send to checker"
    )

    if checker_id is not None:
        claim_service.claim(ResourceKind.ORDER, order.id, Role.CHECKER, checker_id)

    _freeze_estimates(order)
    _set_approval(order, ApprovalFlag.SENT_TO_CHECKER)
    notification_service.queue(
        Role.CHECKER, order.id, f"order {order.id} is ready to check", actor_id=order.checker_id
    )
    return order


@engine_operation
def send_to_biller(order_id: int, actor: Actor, biller_id: int) -> Order:
    """Assign the biller slot. Independent of the checker hand-off."""
    order = load_order(order_id, for_update=True)
    ensure_not_cancelled(order)
    ensure_order_owner(order, actor)
    ensure_state(
        order,
        STOREKEEPER_STAGE + CHECKER_STAGE + (ApprovalFlag.COMPLETED,),
        "send to biller",
    )
    if order.approval_flag != ApprovalFlag.COMPLETED:
        _ensure_all_in_stock(order)

    claim_service.claim(ResourceKind.ORDER, order.id, Role.BILLER, biller_id)
    _freeze_estimates(order)
    touch(order)
    notification_service.queue(
        Role.BILLER, order.id, f"order {order.id} assigned for billing", actor_id=biller_id
    )
    return order


def send_to_biller_and_checker(
    order_id: int,
    actor: Actor,
    *,
    checker_id: Optional[int] = None,
    biller_id: Optional[int] = None,
) -> dict[str, Result]:
    """
    Both hand-offs, each in its own transaction.

    A failure in one does not undo the other. Returns {"checker": Result,
    "biller": Result}; "biller" is omitted when no biller_id is given.
    """
    results = {"checker": send_to_checker(order_id, actor, checker_id)}
    if biller_id is not None:
        results["biller"] = send_to_biller(order_id, actor, biller_id)
    return results


# ---------------------------------------------------------------------------
# Checker stage
# ---------------------------------------------------------------------------

@engine_operation
def claim_as_checker(order_id: int, actor: Actor, stale_after: Optional[timedelta] = None) -> ClaimToken:
    """Take the checker slot and start checking. Re-claiming your own order succeeds."""
    ensure_role(actor, Role.CHECKER, allow_admin=False)
    order = load_order(order_id, for_update=True)
    ensure_open(order)
    ensure_state(order, CHECKER_STAGE, "claim as checker")

    token = claim_service.claim(
        ResourceKind.ORDER, order.id, Role.CHECKER, actor.actor_id, stale_after=stale_after
    )
    if order.approval_flag == ApprovalFlag.SENT_TO_CHECKER:
        _set_approval(order, ApprovalFlag.CHECKER_IS_CHECKING)
    else:
        touch(order)
    return token


@engine_operation
def submit_checked_report(
    order_id: int,
    actor: Actor,
    edited_qty: Optional[Mapping[int, object]] = None,
    checked: Optional[Iterable[int]] = None,
) -> Order:
    """
    Finish checking and complete the order.

    The final round of edits and ticks is merged first; if any countable line
    is still unchecked afterwards, the whole submission rolls back.
    """
    order = load_order(order_id, for_update=True)
    authorize_checker(order, actor)
    lines = merge_checker_edits(order, actor, edited_qty, checked)

    countable = [line for line in lines if is_countable(line)]
    if not countable:
        raise GuardViolation("order has no items to complete")
    if any(not line.is_checked for line in countable):
        raise GuardViolation("unchecked items remain")

    return _complete(order)


@engine_operation
def complete_order(order_id: int, actor: Actor) -> Order:
    """Complete a storekeeper-verified order without a checker pass."""
    order = load_order(order_id, for_update=True)
    ensure_open(order)
    ensure_order_owner(order, actor)
    ensure_state(order, (ApprovalFlag.VERIFIED_BY_STOREKEEPER,), "complete")
    _ensure_all_in_stock(order)
    return _complete(order)


def _complete(order: Order) -> Order:
    _freeze_estimates(order)
    order.completed_at = utcnow()
    _set_approval(order, ApprovalFlag.COMPLETED)
    notification_service.queue(
        Role.BILLER, order.id, f"order {order.id} completed, ready to bill", actor_id=order.biller_id
    )
    notification_service.queue(
        Role.SALESMAN, order.id, f"order {order.id} completed", actor_id=order.salesman_id
    )
    return order


# ---------------------------------------------------------------------------
# Terminal transitions
# ---------------------------------------------------------------------------

@engine_operation
def cancel_order(order_id: int, actor: Actor) -> Order:
    order = load_order(order_id, for_update=True)
    if order.approval_flag == ApprovalFlag.CANCELLED:
        raise OrderCancelled(order.id)
    ensure_open(order)
    ensure_order_owner(order, actor)

    order.cancelled_at = utcnow()
    order.cancelled_by_id = actor.actor_id
    _set_approval(order, ApprovalFlag.CANCELLED)

    for role, (owner_attr, _) in ORDER_ROLE_SLOTS.items():
        holder = getattr(order, owner_attr)
        if holder is not None:
            notification_service.queue(role, order.id, f"order {order.id} cancelled", actor_id=holder)
    return order


@engine_operation
def reject_order(order_id: int, actor: Actor, reason: Optional[str] = None) -> Order:
    """Administrative override; no guard beyond the actor being an admin."""
    if not actor.acts_as_admin:
        raise NotPermitted("only an admin can reject an order")
    order = load_order(order_id, for_update=True)
    ensure_open(order)

    order.rejected_at = utcnow()
    order.rejected_by_id = actor.actor_id
    order.rejection_reason = reason
    _set_approval(order, ApprovalFlag.REJECTED)
    notification_service.queue(
        Role.SALESMAN, order.id, f"order {order.id} rejected: {reason or 'no reason given'}",
        actor_id=order.salesman_id,
    )
    return order


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------

@engine_operation
def mark_billed(order_id: int, actor: Actor) -> Order:
    ensure_role(actor, Role.BILLER)
    order = load_order(order_id, for_update=True)
    ensure_not_cancelled(order)
    ensure_state(order, (ApprovalFlag.COMPLETED,), "bill")
    if order.is_billed:
        raise GuardViolation(f"order {order.id} is already billed")
    if actor.role == Role.BILLER:
        claim_service.claim(ResourceKind.ORDER, order.id, Role.BILLER, actor.actor_id)

    order.is_billed = True
    order.billed_at = utcnow()
    touch(order)
    return order


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

@engine_operation
def get_order(order_id: int) -> Order:
    return load_order(order_id)


@engine_operation
def get_bill(order_id: int) -> BillSummary:
    order = load_order(order_id)
    return bill_for(order, load_lines(order.id))


def stale_after_from_config(config) -> Optional[timedelta]:
    """Claim takeover age configured for this deployment, or None."""
    hours = config.get("ORDERFLOW_CLAIM_STALE_AFTER_HOURS")
    return timedelta(hours=hours) if hours else None
