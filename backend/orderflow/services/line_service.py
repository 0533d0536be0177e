# Overview: Line resolution engine; fulfillment flags, shortage negotiation, suggestions, checker edits.

"""
Line Resolution Engine

================================================================================
PURPOSE: Drive each line's fulfillment flag from "not checked" to a decision
================================================================================

SEVERITY (monotonic, see flags.FulfillmentFlag):
    NEW_ITEM < NOT_CHECKED < IN_STOCK < OUT_OF_STOCK < REPORTED < NOT_AVAILABLE
    CANCELLED / REPLACED are side states reachable from any live flag.

    No operation here lowers a line's severity. The one exception is a
    replacement, which leaves the original REPLACED and starts a fresh
    NEW_ITEM line.

SHORTAGE NEGOTIATION:
    1. report_shortage              storekeeper/checker: OUT_OF_STOCK + available_qty
    2. escalate_to_supplier         admin picks a supplier (report AWAITING_SUPPLIER)
    3. record_availability_response supplier answers Available(qty) | Unavailable
       Unavailable -> admin may escalate again to another supplier
    4. accept_availability          salesman/admin: line goes ahead with available_qty
       reject_availability          salesman/admin: REPORTED, available_qty back to 0
    5. mark_not_available           nothing was ever found: NOT_AVAILABLE

    Decisions in 4 and 5 first claim the line's resolver slot, so two admins
    cannot decide the same shortage.

Every public function is an engine_operation: it runs as one transaction and
returns a Result. The undecorated helpers (authorize_checker,
merge_checker_edits, snapshot_estimate) raise EngineFailure and run inside
the order state machine's own transaction.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping, Optional, Union

from flask import current_app

from ..errors import GuardViolation, LimitExceeded, NotPermitted
from ..extensions import db
from ..flags import ApprovalFlag, FulfillmentFlag, Role, ShortageStatus, SuggestionStatus
from ..identity import Actor
from ..models import LineImage, Order, OrderLine, ShortageReport, Suggestion
from orderflow.time_utils import utcnow
from . import claim_service, notification_service
from .billing_service import diff_quantity_edits
from .claim_service import ResourceKind
from .concurrency import engine_operation
from .guards import ensure_open, ensure_order_owner, ensure_role, ensure_state, touch
from .line_rules import (
    ORIGINAL_REPLACED_LABEL,
    base_qty,
    flag_of,
    format_qty,
    is_countable,
    is_live,
    parse_quantity,
    quantity_changed,
    to_decimal,
)
from .repository import load_line, load_lines, load_order, load_suggestion, open_shortage_report


STOREKEEPER_STAGE = (ApprovalFlag.SENT_TO_STOREKEEPER, ApprovalFlag.VERIFIED_BY_STOREKEEPER)
CHECKER_STAGE = (ApprovalFlag.SENT_TO_CHECKER, ApprovalFlag.CHECKER_IS_CHECKING)
RESOLUTION_STAGE = STOREKEEPER_STAGE + CHECKER_STAGE


@dataclass(frozen=True)
class Available:
    qty: Decimal


@dataclass(frozen=True)
class Unavailable:
    pass


AvailabilityResponse = Union[Available, Unavailable]


# ---------------------------------------------------------------------------
# Authorization helpers
# ---------------------------------------------------------------------------

def _authorize_stock_actor(order: Order, actor: Actor) -> None:
    """
    Who may record stock facts on a line right now.

    A storekeeper works while the order is with the storekeepers and takes the
    storekeeper slot on first touch. A checker works while checking and must
    hold the checker slot. Admins may act at either stage without a claim.
    """
    ensure_open(order)
    if actor.role == Role.STOREKEEPER:
        ensure_state(order, STOREKEEPER_STAGE, "record stock as storekeeper")
        claim_service.claim(ResourceKind.ORDER, order.id, Role.STOREKEEPER, actor.actor_id)
        return
    if actor.role == Role.CHECKER:
        ensure_state(order, (ApprovalFlag.CHECKER_IS_CHECKING,), "record stock as checker")
        claim_service.claim(ResourceKind.ORDER, order.id, Role.CHECKER, actor.actor_id)
        return
    if actor.acts_as_admin:
        ensure_state(order, RESOLUTION_STAGE, "record stock")
        return
    raise NotPermitted(f"role {actor.role.value} cannot record stock")


def authorize_checker(order: Order, actor: Actor) -> None:
    ensure_open(order)
    ensure_role(actor, Role.CHECKER)
    ensure_state(order, (ApprovalFlag.CHECKER_IS_CHECKING,), "check lines")
    if actor.role == Role.CHECKER:
        claim_service.claim(ResourceKind.ORDER, order.id, Role.CHECKER, actor.actor_id)


def _claim_decision(line: OrderLine, actor: Actor) -> None:
    """Take the resolver slot on a disputed line (salesman owner or admin)."""
    order = line.order
    ensure_open(order)
    ensure_order_owner(order, actor)
    ensure_state(order, RESOLUTION_STAGE, "decide a shortage")
    role = actor.role if actor.role in claim_service.LINE_DECISION_ROLES else Role.ADMIN
    claim_service.claim(ResourceKind.LINE, line.id, role, actor.actor_id)


def _ensure_live(line: OrderLine) -> None:
    if not is_live(line):
        raise GuardViolation(f"line {line.id} is {flag_of(line).value.lower()}")


def _ensure_open_shortage(line: OrderLine) -> None:
    _ensure_live(line)
    if not flag_of(line).is_shortage:
        raise GuardViolation(f"line {line.id} has no shortage")
    if line.availability_accepted:
        raise GuardViolation(f"availability for line {line.id} was already accepted")


def _downstream_role(order: Order) -> Role:
    if order.approval_flag in CHECKER_STAGE:
        return Role.CHECKER
    return Role.STOREKEEPER


def _set_flag(line: OrderLine, flag: FulfillmentFlag) -> None:
    line.fulfillment_flag = flag
    line.updated_at = utcnow()


def _close_report(line: OrderLine) -> None:
    report = open_shortage_report(line.id)
    if report is not None:
        report.status = ShortageStatus.CLOSED
        report.closed_at = utcnow()


def _discard_open_suggestions(line: OrderLine, actor: Actor, *, keep: Optional[Suggestion] = None) -> None:
    now = utcnow()
    for suggestion in line.suggestions:
        if suggestion is keep or suggestion.status != SuggestionStatus.PROPOSED:
            continue
        suggestion.status = SuggestionStatus.DISCARDED
        suggestion.resolved_by_id = actor.actor_id
        suggestion.resolved_at = now


# ---------------------------------------------------------------------------
# Stock facts (storekeeper / checker)
# ---------------------------------------------------------------------------

@engine_operation
def mark_in_stock(line_id: int, actor: Actor) -> OrderLine:
    """Record that the full ordered quantity is on the shelf. Re-marking is a no-op."""
    line = load_line(line_id, for_update=True)
    order = line.order
    _authorize_stock_actor(order, actor)
    _ensure_live(line)

    flag = flag_of(line)
    if flag == FulfillmentFlag.IN_STOCK:
        return line
    if flag.at_least(FulfillmentFlag.OUT_OF_STOCK):
        raise GuardViolation(
            f"line {line.id} is {flag.value}; a shortage cannot revert to in stock"
        )

    _set_flag(line, FulfillmentFlag.IN_STOCK)
    touch(order)
    return line


@engine_operation
def report_shortage(line_id: int, actor: Actor, available_qty, note: Optional[str] = None) -> OrderLine:
    """
    Record that less than the ordered quantity is on hand.

    Opens (or refreshes) the line's ShortageReport and tells the salesman and
    the admins. The flag does not move again until someone decides.
    """
    line = load_line(line_id, for_update=True)
    order = line.order
    _authorize_stock_actor(order, actor)
    _ensure_live(line)

    flag = flag_of(line)
    if line.availability_accepted or flag.at_least(FulfillmentFlag.REPORTED):
        raise GuardViolation(f"line {line.id} is {flag.value}; shortage already decided or escalated")

    qty = parse_quantity(available_qty, "available_qty")
    ordered = to_decimal(line.ordered_qty)
    if qty < 0:
        raise GuardViolation("available quantity cannot be negative")
    if qty >= ordered:
        raise GuardViolation("available quantity must be below the ordered quantity")

    now = utcnow()
    _set_flag(line, FulfillmentFlag.OUT_OF_STOCK)
    line.available_qty = qty
    if note:
        line.note = note

    report = open_shortage_report(line.id)
    if report is None:
        report = ShortageReport(
            line_id=line.id,
            order_id=order.id,
            product_ref=line.product_ref,
            requested_qty=ordered,
            reported_available_qty=qty,
            note=note,
            status=ShortageStatus.OPEN,
            reported_by_id=actor.actor_id,
            created_at=now,
        )
        db.session.add(report)
    else:
        report.reported_available_qty = qty
        report.note = note or report.note

    message = f"{line.product_ref}: only {format_qty(qty)} of {format_qty(ordered)} available"
    notification_service.queue(Role.SALESMAN, order.id, message, actor_id=order.salesman_id)
    notification_service.queue(Role.ADMIN, order.id, message)
    touch(order)
    return line


# ---------------------------------------------------------------------------
# Supplier cycle
# ---------------------------------------------------------------------------

@engine_operation
def escalate_to_supplier(line_id: int, actor: Actor, supplier_ref: str) -> ShortageReport:
    """Ask a supplier about a shortage. Only from OPEN, or UNAVAILABLE for another try."""
    ensure_role(actor, Role.ADMIN)
    line = load_line(line_id, for_update=True)
    order = line.order
    ensure_open(order)
    _ensure_open_shortage(line)

    supplier_ref = (supplier_ref or "").strip()
    if not supplier_ref:
        raise GuardViolation("supplier_ref is required")

    report = open_shortage_report(line.id)
    if report is None:
        raise GuardViolation(f"line {line.id} has no open shortage report")
    if report.status not in (ShortageStatus.OPEN, ShortageStatus.UNAVAILABLE):
        raise GuardViolation(f"cannot select a supplier while report is {report.status.value}")

    report.status = ShortageStatus.AWAITING_SUPPLIER
    report.supplier_ref = supplier_ref
    report.supplier_attempts = (report.supplier_attempts or 0) + 1
    report.escalated_by_id = actor.actor_id
    report.escalated_at = utcnow()
    report.response_qty = None
    report.responded_at = None

    requested = to_decimal(line.ordered_qty)
    notification_service.queue(
        Role.SUPPLIER,
        order.id,
        f"{supplier_ref}: availability of {format_qty(requested)} x {line.product_ref}?",
    )
    touch(order)
    return report


def _record_response(line: OrderLine, actor: Actor, response: AvailabilityResponse) -> ShortageReport:
    order = line.order
    ensure_open(order)
    _ensure_open_shortage(line)

    report = open_shortage_report(line.id)
    if report is None or report.status != ShortageStatus.AWAITING_SUPPLIER:
        raise GuardViolation(f"line {line.id} is not awaiting a supplier response")

    now = utcnow()
    report.responded_at = now

    if isinstance(response, Available):
        qty = parse_quantity(response.qty, "qty")
        if qty <= 0:
            raise GuardViolation("available quantity must be positive; report Unavailable instead")
        qty = min(qty, to_decimal(line.ordered_qty))
        report.status = ShortageStatus.AVAILABLE
        report.response_qty = qty
        line.available_qty = qty
        line.updated_at = now
        message = f"{line.product_ref}: supplier can provide {format_qty(qty)}, accept or reject"
        notification_service.queue(Role.SALESMAN, order.id, message, actor_id=order.salesman_id)
        notification_service.queue(Role.ADMIN, order.id, message)
    elif isinstance(response, Unavailable):
        report.status = ShortageStatus.UNAVAILABLE
        report.response_qty = Decimal("0")
        notification_service.queue(
            Role.ADMIN,
            order.id,
            f"{line.product_ref}: {report.supplier_ref} has none, pick another supplier or mark not available",
        )
    else:
        raise TypeError(f"unknown availability response: {response!r}")

    touch(order)
    return report


@engine_operation
def record_availability_response(line_id: int, actor: Actor, response: AvailabilityResponse) -> ShortageReport:
    ensure_role(actor, Role.SUPPLIER)
    return _record_response(load_line(line_id, for_update=True), actor, response)


# ---------------------------------------------------------------------------
# Availability decision (salesman / admin)
# ---------------------------------------------------------------------------

def _ensure_not_awaiting(line: OrderLine) -> None:
    report = open_shortage_report(line.id)
    if report is not None and report.status == ShortageStatus.AWAITING_SUPPLIER:
        raise GuardViolation(f"line {line.id} is waiting for {report.supplier_ref}")


@engine_operation
def accept_availability(line_id: int, actor: Actor) -> OrderLine:
    """
    Go ahead with the reduced quantity.

    The flag stays a shortage with availability_accepted set, so base_qty is
    available_qty everywhere. The downstream role hears the reduced quantity.
    """
    line = load_line(line_id, for_update=True)
    order = line.order
    _claim_decision(line, actor)
    _ensure_open_shortage(line)
    _ensure_not_awaiting(line)

    available = to_decimal(line.available_qty)
    if available <= 0:
        raise GuardViolation(f"nothing available to accept on line {line.id}")

    line.availability_accepted = True
    line.updated_at = utcnow()
    _close_report(line)

    notification_service.queue(
        _downstream_role(order),
        order.id,
        f"{line.product_ref}: proceed with {format_qty(available)} of {format_qty(line.ordered_qty)}",
    )
    touch(order)
    return line


@engine_operation
def reject_availability(line_id: int, actor: Actor) -> OrderLine:
    """Refuse the offered quantity and push the shortage back to the admins."""
    line = load_line(line_id, for_update=True)
    order = line.order
    _claim_decision(line, actor)
    _ensure_open_shortage(line)
    _ensure_not_awaiting(line)

    if to_decimal(line.available_qty) <= 0:
        raise GuardViolation(f"nothing available to reject on line {line.id}")

    _set_flag(line, FulfillmentFlag.REPORTED)
    line.available_qty = Decimal("0")

    report = open_shortage_report(line.id)
    if report is None:
        report = ShortageReport(
            line_id=line.id,
            order_id=order.id,
            product_ref=line.product_ref,
            requested_qty=to_decimal(line.ordered_qty),
            reported_available_qty=Decimal("0"),
            reported_by_id=actor.actor_id,
            created_at=utcnow(),
        )
        db.session.add(report)
    report.status = ShortageStatus.OPEN

    notification_service.queue(Role.ADMIN, order.id, f"{line.product_ref}: offered quantity rejected")
    touch(order)
    return line


@engine_operation
def mark_not_available(line_id: int, actor: Actor) -> OrderLine:
    """No stock anywhere. The line leaves the live total but stays on the order."""
    line = load_line(line_id, for_update=True)
    order = line.order
    _claim_decision(line, actor)
    _ensure_open_shortage(line)

    if to_decimal(line.available_qty) > 0:
        raise GuardViolation(f"line {line.id} has stock available; accept or reject it first")

    _set_flag(line, FulfillmentFlag.NOT_AVAILABLE)
    _close_report(line)
    _discard_open_suggestions(line, actor)

    notification_service.queue(
        _downstream_role(order), order.id, f"{line.product_ref}: not available, skip this item"
    )
    touch(order)
    return line


@engine_operation
def cancel_line(line_id: int, actor: Actor) -> OrderLine:
    line = load_line(line_id, for_update=True)
    order = line.order
    ensure_open(order)
    ensure_order_owner(order, actor)
    _ensure_live(line)

    _set_flag(line, FulfillmentFlag.CANCELLED)
    _close_report(line)
    _discard_open_suggestions(line, actor)
    touch(order)
    return line


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------

@engine_operation
def add_suggestion(
    line_id: int,
    actor: Actor,
    proposed_product_ref: str,
    price,
    note: Optional[str] = None,
) -> Suggestion:
    ensure_role(actor, Role.STOREKEEPER, Role.CHECKER)
    line = load_line(line_id, for_update=True)
    order = line.order
    ensure_open(order)
    _ensure_live(line)

    proposed_product_ref = (proposed_product_ref or "").strip()
    if not proposed_product_ref:
        raise GuardViolation("proposed_product_ref is required")
    price = parse_quantity(price, "price")
    if price < 0:
        raise GuardViolation("price cannot be negative")

    suggestion = Suggestion(
        line_id=line.id,
        proposed_product_ref=proposed_product_ref,
        price=price,
        note=note,
        status=SuggestionStatus.PROPOSED,
        created_by_id=actor.actor_id,
        created_at=utcnow(),
    )
    db.session.add(suggestion)
    db.session.flush()

    notification_service.queue(
        Role.SALESMAN,
        order.id,
        f"{line.product_ref}: substitute {proposed_product_ref} suggested",
        actor_id=order.salesman_id,
    )
    touch(order)
    return suggestion


@engine_operation
def discard_suggestion(suggestion_id: int, actor: Actor) -> Suggestion:
    suggestion = load_suggestion(suggestion_id)
    order = suggestion.line.order
    ensure_open(order)
    ensure_order_owner(order, actor)
    if suggestion.status != SuggestionStatus.PROPOSED:
        raise GuardViolation(f"suggestion {suggestion.id} is already {suggestion.status.value}")

    suggestion.status = SuggestionStatus.DISCARDED
    suggestion.resolved_by_id = actor.actor_id
    suggestion.resolved_at = utcnow()
    touch(order)
    return suggestion


@engine_operation
def accept_suggestion(suggestion_id: int, actor: Actor, quantity=None) -> OrderLine:
    """
    Replace a line with the suggested product.

    Returns the new line. The original becomes REPLACED, keeps every field
    it had, and points forward at its replacement; the replacement points
    back. Neither owns the other.
    """
    suggestion = load_suggestion(suggestion_id)
    original = suggestion.line
    order = original.order
    ensure_open(order)
    ensure_order_owner(order, actor)
    _ensure_live(original)
    if suggestion.status != SuggestionStatus.PROPOSED:
        raise GuardViolation(f"suggestion {suggestion.id} is already {suggestion.status.value}")
    if order.approval_flag != ApprovalFlag.NEW:
        role = actor.role if actor.role in claim_service.LINE_DECISION_ROLES else Role.ADMIN
        claim_service.claim(ResourceKind.LINE, original.id, role, actor.actor_id)

    qty = parse_quantity(quantity) if quantity is not None else to_decimal(original.ordered_qty)
    if qty <= 0:
        raise GuardViolation("replacement quantity must be positive")

    now = utcnow()
    replacement = OrderLine(
        order_id=order.id,
        product_ref=suggestion.proposed_product_ref,
        ordered_qty=qty,
        available_qty=Decimal("0"),
        rate=to_decimal(suggestion.price),
        fulfillment_flag=FulfillmentFlag.NEW_ITEM,
        note=suggestion.note,
        replaces_line_id=original.id,
        created_at=now,
    )
    db.session.add(replacement)
    db.session.flush()

    _set_flag(original, FulfillmentFlag.REPLACED)
    original.replaced_by_line_id = replacement.id
    original.narration = ORIGINAL_REPLACED_LABEL
    _close_report(original)

    suggestion.status = SuggestionStatus.ACCEPTED
    suggestion.resolved_by_id = actor.actor_id
    suggestion.resolved_at = now
    suggestion.resulting_line_id = replacement.id
    _discard_open_suggestions(original, actor, keep=suggestion)

    if order.approval_flag != ApprovalFlag.NEW:
        notification_service.queue(
            _downstream_role(order),
            order.id,
            f"{original.product_ref} replaced by {replacement.product_ref}, check stock",
        )
    touch(order)
    return replacement


# ---------------------------------------------------------------------------
# Checker review
# ---------------------------------------------------------------------------

@engine_operation
def attach_image(line_id: int, actor: Actor, content: bytes, content_type: Optional[str] = None) -> LineImage:
    line = load_line(line_id, for_update=True)
    authorize_checker(line.order, actor)
    if not content:
        raise GuardViolation("image content is empty")

    limit = int(current_app.config.get("ORDERFLOW_MAX_LINE_IMAGES", 3))
    count = db.session.query(LineImage).filter_by(line_id=line.id).count()
    if count >= limit:
        raise LimitExceeded("line images", limit)

    image = LineImage(
        line_id=line.id,
        content=bytes(content),
        content_type=content_type,
        attached_by_id=actor.actor_id,
        created_at=utcnow(),
    )
    db.session.add(image)
    db.session.flush()
    return image


def _apply_quantity(line: OrderLine, qty: Decimal) -> None:
    if qty <= 0:
        raise GuardViolation(f"quantity for line {line.id} must be positive; report a shortage instead")
    if flag_of(line).is_shortage:
        # Up to the full ordered qty: the checker may find all of it on the
        # shelf. report_shortage is stricter because it opens a shortage.
        if qty > to_decimal(line.ordered_qty):
            raise GuardViolation(f"available quantity for line {line.id} exceeds the ordered quantity")
        line.available_qty = qty
    else:
        line.ordered_qty = qty
    line.updated_at = utcnow()


def _check_line(line: OrderLine, actor: Actor, quantity=None) -> OrderLine:
    if not is_countable(line):
        raise GuardViolation(f"line {line.id} has nothing to check")

    if quantity is not None:
        qty = parse_quantity(quantity)
        if quantity_changed(base_qty(line), qty):
            _apply_quantity(line, qty)

    if flag_of(line).below(FulfillmentFlag.IN_STOCK):
        _set_flag(line, FulfillmentFlag.IN_STOCK)

    line.is_checked = True
    line.checked_by_id = actor.actor_id
    line.checked_at = utcnow()
    return line


@engine_operation
def check_line(line_id: int, actor: Actor, quantity=None) -> OrderLine:
    line = load_line(line_id, for_update=True)
    authorize_checker(line.order, actor)
    _check_line(line, actor, quantity)
    touch(line.order)
    return line


def merge_checker_edits(
    order: Order,
    actor: Actor,
    edited_qty: Optional[Mapping[int, object]],
    checked: Optional[Iterable[int]],
) -> list[OrderLine]:
    """
    Apply one round of checker input against a fresh load of the lines.

    Edits and ticks for ids that are no longer on the order are ignored.
    Only real quantity changes (>= QTY_EPSILON) are written.
    """
    lines = load_lines(order.id)
    edits = {edit.line_id: edit.new_qty for edit in diff_quantity_edits(lines, edited_qty or {})}
    checked_ids = set(checked or ())

    for line in lines:
        if line.id in checked_ids:
            _check_line(line, actor, edits.get(line.id))
        elif line.id in edits:
            if not is_countable(line):
                raise GuardViolation(f"line {line.id} has nothing to edit")
            _apply_quantity(line, edits[line.id])
    return lines


@engine_operation
def apply_checker_edits(
    order_id: int,
    actor: Actor,
    edited_qty: Optional[Mapping[int, object]] = None,
    checked: Optional[Iterable[int]] = None,
) -> list[OrderLine]:
    order = load_order(order_id)
    authorize_checker(order, actor)
    lines = merge_checker_edits(order, actor, edited_qty, checked)
    touch(order)
    return lines


def snapshot_estimate(line: OrderLine) -> bool:
    """
    Freeze estimated_qty / estimated_total for a countable line.

    Returns False if the line was already snapshotted; a snapshot is never
    overwritten.
    """
    if line.estimated_qty is not None or line.estimated_total is not None:
        return False
    if not is_countable(line):
        return False
    qty = base_qty(line)
    line.estimated_qty = qty
    line.estimated_total = to_decimal(line.rate) * qty
    return True
