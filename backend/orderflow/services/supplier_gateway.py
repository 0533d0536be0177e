# Overview: Supplier/inventory collaborator contract and the bridge that records its answer.

"""
The engine never blocks on a supplier. Asking (escalate_to_supplier) and
answering (record_availability_response) are separate operations; whatever
integration polls or receives supplier answers calls the second one.

query_and_record() is the synchronous bridge for integrations that can answer
immediately (a stock API, a test double).
"""

from __future__ import annotations

import logging
from typing import Protocol

from ..errors import NotFound, Result
from ..identity import Actor
from .line_rules import to_decimal
from .line_service import Available, AvailabilityResponse, Unavailable, record_availability_response
from .repository import load_line


logger = logging.getLogger(__name__)


class SupplierGateway(Protocol):
    def query_availability(self, product_ref: str, requested_qty) -> AvailabilityResponse:
        ...


class FixedStockGateway:
    """Answers from a static {product_ref: qty} table."""

    def __init__(self, stock: dict):
        self.stock = {ref: to_decimal(qty) for ref, qty in stock.items()}

    def query_availability(self, product_ref: str, requested_qty) -> AvailabilityResponse:
        on_hand = self.stock.get(product_ref, to_decimal(0))
        if on_hand <= 0:
            return Unavailable()
        return Available(min(on_hand, to_decimal(requested_qty)))


def query_and_record(line_id: int, actor: Actor, gateway: SupplierGateway) -> Result:
    """
    Ask the gateway about a line awaiting a supplier and record the answer.

    Gateway errors are logged and propagate; nothing is recorded for them.
    """
    try:
        line = load_line(line_id)
    except NotFound as exc:
        return Result.fail(exc)
    requested = to_decimal(line.ordered_qty)
    product_ref = line.product_ref
    try:
        response = gateway.query_availability(product_ref, requested)
    except Exception:
        logger.exception("Supplier query failed for line %s (%s)", line_id, product_ref)
        raise
    logger.info("Supplier answered %r for line %s", response, line_id)
    return record_availability_response(line_id, actor, response)
