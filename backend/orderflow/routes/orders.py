# backend/orderflow/routes/orders.py
"""
Order API Routes

Thin JSON layer over the order state machine:
- POST /api/orders                          - Create an order (salesman)
- GET  /api/orders/:id                      - Order with lines, display items and bill
- PATCH /api/orders/:id                     - Update freight charge / note
- POST /api/orders/:id/lines                - Add a line while NEW
- POST /api/orders/:id/submit               - NEW -> SENT_TO_STOREKEEPER
- POST /api/orders/:id/claim                - Storekeeper or checker takes the order
- POST /api/orders/:id/inform-updates       - SENT_TO_STOREKEEPER -> VERIFIED_BY_STOREKEEPER
- POST /api/orders/:id/send-to-checker      - Checker and (optional) biller hand-offs
- POST /api/orders/:id/send-to-biller       - Biller hand-off alone
- POST /api/orders/:id/checker-edits        - Save a round of checker edits/ticks
- POST /api/orders/:id/running-total        - Checker running total (read only)
- POST /api/orders/:id/submit-checked       - CHECKER_IS_CHECKING -> COMPLETED
- POST /api/orders/:id/complete             - VERIFIED_BY_STOREKEEPER -> COMPLETED
- POST /api/orders/:id/cancel               - Cancel (owner or admin)
- POST /api/orders/:id/reject               - Reject (admin)
- POST /api/orders/:id/billed               - Biller marks billed
- GET  /api/orders/:id/claims               - Current role-slot holders
- GET  /api/orders/:id/audit                - Every line including replaced originals
- GET  /api/orders/:id/bill                 - Estimated and final totals

SECURITY:
- The acting identity comes from require_actor (g.actor), never from the body.
- Business failures are mapped by kind: 404 / 403 / 409 / 422.
"""

from flask import Blueprint, current_app, g, jsonify

from ..flags import Role
from ..services import billing_service, claim_service, line_rules, line_service, order_service
from ..services.billing_service import bill_for
from ..services.line_rules import snapshot_lines
from ..services.repository import load_lines, load_order
from ..errors import NotFound, NotPermitted
from ..decorators import require_actor, require_admin
from . import (
    BadRequest,
    decimal_field,
    failure_response,
    handle_errors,
    id_list,
    id_map,
    int_field,
    json_body,
    respond,
    status_for,
)


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _stale_after():
    return order_service.stale_after_from_config(current_app.config)


def order_payload(order) -> dict:
    lines = list(order.lines)
    data = order.to_dict(include_lines=True)
    data["display_items"] = [
        {
            "line_id": item.line.id,
            "replaces_line_id": item.replaces.id if item.replaces is not None else None,
            "label": line_rules.status_label(item.line),
        }
        for item in line_rules.display_items(lines)
    ]
    data["bill"] = bill_for(order, lines).to_dict()
    return data


def _order_response(result, status: int = 200):
    return respond(result, lambda order: {"order": order_payload(order)}, status)


@orders_bp.post("")
@require_actor
@handle_errors("create order")
def create_order_route():
    """
    Create a NEW order owned by the acting salesman.

    Request body:
        {
            "customer_ref": "CUST-9",
            "freight_charge": "12.50",
            "note": "deliver before noon",
            "lines": [{"product_ref": "SKU-1", "ordered_qty": "10", "rate": "5"}]
        }
    """
    data = json_body()
    raw_lines = data.get("lines") or []
    if not isinstance(raw_lines, list):
        raise BadRequest("lines must be a list")
    lines = []
    for item in raw_lines:
        if not isinstance(item, dict):
            raise BadRequest("each line must be an object")
        lines.append({
            "product_ref": item.get("product_ref"),
            "ordered_qty": decimal_field(item, "ordered_qty"),
            "rate": decimal_field(item, "rate", required=False, default=0),
            "note": item.get("note"),
        })

    result = order_service.create_order(
        g.actor,
        customer_ref=data.get("customer_ref"),
        lines=lines,
        freight_charge=decimal_field(data, "freight_charge", required=False, default=0),
        note=data.get("note"),
    )
    return _order_response(result, 201)


@orders_bp.get("/<int:order_id>")
@require_actor
@handle_errors("load order")
def get_order_route(order_id: int):
    return _order_response(order_service.get_order(order_id))


@orders_bp.patch("/<int:order_id>")
@require_actor
@handle_errors("update order")
def update_order_route(order_id: int):
    data = json_body()
    if "freight_charge" not in data and "note" not in data:
        raise BadRequest("nothing to update")

    result = None
    if "freight_charge" in data:
        result = order_service.update_freight(order_id, g.actor, decimal_field(data, "freight_charge"))
        if not result.ok:
            return failure_response(result.failure)
    if "note" in data:
        result = order_service.update_note(order_id, g.actor, data.get("note"))
    return _order_response(result)


@orders_bp.post("/<int:order_id>/lines")
@require_actor
@handle_errors("add line")
def add_line_route(order_id: int):
    data = json_body()
    result = order_service.add_line(
        order_id,
        g.actor,
        data.get("product_ref"),
        decimal_field(data, "ordered_qty"),
        decimal_field(data, "rate", required=False, default=0),
        data.get("note"),
    )
    return respond(result, lambda line: {"line": line.to_dict()}, 201)


@orders_bp.post("/<int:order_id>/submit")
@require_actor
@handle_errors("submit order")
def submit_order_route(order_id: int):
    return _order_response(order_service.submit_order(order_id, g.actor))


@orders_bp.post("/<int:order_id>/claim")
@require_actor
@handle_errors("claim order")
def claim_order_route(order_id: int):
    """
    Take the order for the actor's role.

    Storekeepers claim the storekeeper slot; checkers claim the checker slot
    and start checking. A second actor of the same role gets 409 with "by".
    """
    if g.actor.role == Role.STOREKEEPER:
        result = order_service.claim_as_storekeeper(order_id, g.actor, _stale_after())
    elif g.actor.role == Role.CHECKER:
        result = order_service.claim_as_checker(order_id, g.actor, _stale_after())
    else:
        return failure_response(NotPermitted(f"role {g.actor.role.value} cannot claim an order"))
    return respond(result, lambda token: {"claim": token.to_dict()})


@orders_bp.post("/<int:order_id>/inform-updates")
@require_actor
@handle_errors("inform updates")
def inform_updates_route(order_id: int):
    return _order_response(order_service.inform_updates(order_id, g.actor))


@orders_bp.post("/<int:order_id>/send-to-checker")
@require_actor
@handle_errors("send order to checker")
def send_to_checker_route(order_id: int):
    """
    Send to checker, and to biller when biller_id is given.

    The two hand-offs commit independently. Response:
        {"checker": {"ok": true, ...}, "biller": {"ok": false, "error": ..., "kind": ...}}
    Status is 200 when every hand-off succeeded, 207 when some did, and the
    checker failure's status when none did.
    """
    data = json_body()
    results = order_service.send_to_biller_and_checker(
        order_id,
        g.actor,
        checker_id=int_field(data, "checker_id", required=False),
        biller_id=int_field(data, "biller_id", required=False),
    )

    body = {}
    for name, result in results.items():
        if result.ok:
            body[name] = {"ok": True, "order_id": result.value.id}
        else:
            body[name] = {"ok": False, **result.failure.to_dict()}

    failures = [result for result in results.values() if not result.ok]
    if not failures:
        body["order"] = order_payload(load_order(order_id))
        return jsonify(body), 200
    if len(failures) < len(results):
        return jsonify(body), 207
    return jsonify(body), status_for(failures[0].failure)


@orders_bp.post("/<int:order_id>/send-to-biller")
@require_actor
@handle_errors("send order to biller")
def send_to_biller_route(order_id: int):
    data = json_body()
    result = order_service.send_to_biller(order_id, g.actor, int_field(data, "biller_id"))
    return _order_response(result)


def _checker_input(data: dict):
    return id_map(data.get("edited_qty"), "edited_qty"), id_list(data.get("checked"), "checked")


@orders_bp.post("/<int:order_id>/checker-edits")
@require_actor
@handle_errors("save checker edits")
def checker_edits_route(order_id: int):
    edited_qty, checked = _checker_input(json_body())
    result = line_service.apply_checker_edits(order_id, g.actor, edited_qty, checked)
    return respond(result, lambda lines: {"lines": [line.to_dict() for line in lines]})


@orders_bp.post("/<int:order_id>/running-total")
@require_actor
@handle_errors("compute running total")
def running_total_route(order_id: int):
    """Checker's live total for unsaved edits and ticks. Nothing is written."""
    edited_qty, checked = _checker_input(json_body())
    try:
        load_order(order_id)
    except NotFound as failure:
        return failure_response(failure)
    lines = snapshot_lines(load_lines(order_id))
    total = billing_service.checker_running_total(lines, edited_qty, checked)
    return jsonify({
        "order_id": order_id,
        "running_total": str(billing_service.quantize_money(total)),
        "checked_count": sum(1 for line in lines if line.id in set(checked)),
    }), 200


@orders_bp.post("/<int:order_id>/submit-checked")
@require_actor
@handle_errors("submit checked report")
def submit_checked_route(order_id: int):
    edited_qty, checked = _checker_input(json_body())
    return _order_response(order_service.submit_checked_report(order_id, g.actor, edited_qty, checked))


@orders_bp.post("/<int:order_id>/complete")
@require_actor
@handle_errors("complete order")
def complete_order_route(order_id: int):
    return _order_response(order_service.complete_order(order_id, g.actor))


@orders_bp.post("/<int:order_id>/cancel")
@require_actor
@handle_errors("cancel order")
def cancel_order_route(order_id: int):
    return _order_response(order_service.cancel_order(order_id, g.actor))


@orders_bp.post("/<int:order_id>/reject")
@require_actor
@require_admin
@handle_errors("reject order")
def reject_order_route(order_id: int):
    data = json_body()
    return _order_response(order_service.reject_order(order_id, g.actor, data.get("reason")))


@orders_bp.post("/<int:order_id>/billed")
@require_actor
@handle_errors("mark order billed")
def mark_billed_route(order_id: int):
    return _order_response(order_service.mark_billed(order_id, g.actor))


@orders_bp.get("/<int:order_id>/claims")
@require_actor
@handle_errors("list claims")
def claims_route(order_id: int):
    try:
        tokens = claim_service.order_claims(order_id)
    except NotFound as failure:
        return failure_response(failure)
    return jsonify({"order_id": order_id, "claims": [token.to_dict() for token in tokens]}), 200


@orders_bp.get("/<int:order_id>/audit")
@require_actor
@handle_errors("load audit trail")
def audit_route(order_id: int):
    try:
        load_order(order_id)
    except NotFound as failure:
        return failure_response(failure)
    entries = line_rules.audit_trail(load_lines(order_id))
    return jsonify({
        "order_id": order_id,
        "entries": [
            {
                "line": entry.line.to_dict(),
                "label": entry.label,
                "replaced_by_line_id": entry.replaced_by.id if entry.replaced_by is not None else None,
            }
            for entry in entries
        ],
    }), 200


@orders_bp.get("/<int:order_id>/bill")
@require_actor
@handle_errors("load bill")
def bill_route(order_id: int):
    """Estimated and final totals, both including freight."""
    return respond(order_service.get_bill(order_id), lambda bill: {"bill": bill.to_dict()})
