# backend/orderflow/routes/lines.py
"""
Line and Suggestion API Routes

Stock facts (storekeeper / checker):
- POST /api/lines/:id/in-stock
- POST /api/lines/:id/shortage                 {"available_qty": "4", "note": "..."}
- POST /api/lines/:id/check                    {"quantity": "7"} (optional)
- POST /api/lines/:id/images                   raw bytes, Content-Type kept as-is

Supplier cycle:
- POST /api/lines/:id/escalate                 {"supplier_ref": "ACME"} (admin)
- POST /api/lines/:id/availability-response    {"available": true, "qty": "6"}

Decisions (salesman owner / admin):
- POST /api/lines/:id/accept-availability
- POST /api/lines/:id/reject-availability
- POST /api/lines/:id/not-available
- POST /api/lines/:id/cancel

Suggestions:
- POST /api/lines/:id/suggestions              {"proposed_product_ref", "price", "note"}
- POST /api/suggestions/:id/accept             {"quantity": "5"} (optional)
- POST /api/suggestions/:id/discard
"""

from flask import Blueprint, g, request

from ..services import line_service
from ..services.line_service import Available, Unavailable
from ..decorators import require_actor
from . import BadRequest, decimal_field, handle_errors, json_body, respond


lines_bp = Blueprint("lines", __name__, url_prefix="/api/lines")
suggestions_bp = Blueprint("suggestions", __name__, url_prefix="/api/suggestions")


def _line_response(result, status: int = 200):
    return respond(result, lambda line: {"line": line.to_dict()}, status)


def _report_response(result):
    return respond(result, lambda report: {"shortage_report": report.to_dict()})


@lines_bp.post("/<int:line_id>/in-stock")
@require_actor
@handle_errors("mark line in stock")
def mark_in_stock_route(line_id: int):
    return _line_response(line_service.mark_in_stock(line_id, g.actor))


@lines_bp.post("/<int:line_id>/shortage")
@require_actor
@handle_errors("report shortage")
def report_shortage_route(line_id: int):
    data = json_body()
    result = line_service.report_shortage(
        line_id, g.actor, decimal_field(data, "available_qty"), data.get("note")
    )
    return _line_response(result)


@lines_bp.post("/<int:line_id>/check")
@require_actor
@handle_errors("check line")
def check_line_route(line_id: int):
    data = json_body()
    quantity = decimal_field(data, "quantity", required=False)
    return _line_response(line_service.check_line(line_id, g.actor, quantity))


@lines_bp.post("/<int:line_id>/images")
@require_actor
@handle_errors("attach image")
def attach_image_route(line_id: int):
    """Attach one evidence image. A line holds at most ORDERFLOW_MAX_LINE_IMAGES (422 beyond)."""
    content = request.get_data()
    if not content:
        raise BadRequest("image body is empty")
    result = line_service.attach_image(line_id, g.actor, content, request.mimetype or None)
    return respond(result, lambda image: {"image": image.to_dict()}, 201)


@lines_bp.post("/<int:line_id>/escalate")
@require_actor
@handle_errors("escalate shortage")
def escalate_route(line_id: int):
    data = json_body()
    return _report_response(line_service.escalate_to_supplier(line_id, g.actor, data.get("supplier_ref")))


@lines_bp.post("/<int:line_id>/availability-response")
@require_actor
@handle_errors("record availability response")
def availability_response_route(line_id: int):
    data = json_body()
    if "available" not in data:
        raise BadRequest("available is required")
    if data.get("available"):
        response = Available(decimal_field(data, "qty"))
    else:
        response = Unavailable()
    return _report_response(line_service.record_availability_response(line_id, g.actor, response))


@lines_bp.post("/<int:line_id>/accept-availability")
@require_actor
@handle_errors("accept availability")
def accept_availability_route(line_id: int):
    return _line_response(line_service.accept_availability(line_id, g.actor))


@lines_bp.post("/<int:line_id>/reject-availability")
@require_actor
@handle_errors("reject availability")
def reject_availability_route(line_id: int):
    return _line_response(line_service.reject_availability(line_id, g.actor))


@lines_bp.post("/<int:line_id>/not-available")
@require_actor
@handle_errors("mark line not available")
def not_available_route(line_id: int):
    return _line_response(line_service.mark_not_available(line_id, g.actor))


@lines_bp.post("/<int:line_id>/cancel")
@require_actor
@handle_errors("cancel line")
def cancel_line_route(line_id: int):
    return _line_response(line_service.cancel_line(line_id, g.actor))


@lines_bp.post("/<int:line_id>/suggestions")
@require_actor
@handle_errors("add suggestion")
def add_suggestion_route(line_id: int):
    data = json_body()
    result = line_service.add_suggestion(
        line_id,
        g.actor,
        data.get("proposed_product_ref"),
        decimal_field(data, "price"),
        data.get("note"),
    )
    return respond(result, lambda suggestion: {"suggestion": suggestion.to_dict()}, 201)


@suggestions_bp.post("/<int:suggestion_id>/accept")
@require_actor
@handle_errors("accept suggestion")
def accept_suggestion_route(suggestion_id: int):
    data = json_body()
    quantity = decimal_field(data, "quantity", required=False)
    result = line_service.accept_suggestion(suggestion_id, g.actor, quantity)
    return respond(result, lambda line: {"replacement": line.to_dict()}, 201)


@suggestions_bp.post("/<int:suggestion_id>/discard")
@require_actor
@handle_errors("discard suggestion")
def discard_suggestion_route(suggestion_id: int):
    result = line_service.discard_suggestion(suggestion_id, g.actor)
    return respond(result, lambda suggestion: {"suggestion": suggestion.to_dict()})
