# Overview: Persistence collaborator backed by Flask-SQLAlchemy.

"""
Load/save calls the engine makes against storage.

Each call is atomic on its own; the surrounding action (concurrency.run_action)
decides when the unit of work commits. A missing row is a NotFound failure.
SQLAlchemy errors are left to run_action, which re-raises them as StorageError.
"""

from __future__ import annotations

from ..errors import NotFound
from ..extensions import db
from ..models import Order, OrderLine, Suggestion, ShortageReport
from ..flags import ShortageStatus
from .concurrency import lock_for_update


def load_order(order_id: int, *, for_update: bool = False) -> Order:
    query = db.session.query(Order).filter_by(id=order_id)
    if for_update:
        query = lock_for_update(query)
    order = query.first()
    if order is None:
        raise NotFound("Order", order_id)
    return order


def save_order(order: Order) -> Order:
    db.session.add(order)
    db.session.flush()
    return order


def load_lines(order_id: int) -> list[OrderLine]:
    return (
        db.session.query(OrderLine)
        .filter_by(order_id=order_id)
        .order_by(OrderLine.id.asc())
        .all()
    )


def load_line(line_id: int, *, for_update: bool = False) -> OrderLine:
    query = db.session.query(OrderLine).filter_by(id=line_id)
    if for_update:
        query = lock_for_update(query)
    line = query.first()
    if line is None:
        raise NotFound("OrderLine", line_id)
    return line


def save_line(line: OrderLine) -> OrderLine:
    db.session.add(line)
    db.session.flush()
    return line


def load_suggestion(suggestion_id: int) -> Suggestion:
    suggestion = db.session.get(Suggestion, suggestion_id)
    if suggestion is None:
        raise NotFound("Suggestion", suggestion_id)
    return suggestion


def open_shortage_report(line_id: int) -> ShortageReport | None:
    """Latest report for a line that is not CLOSED."""
    return (
        db.session.query(ShortageReport)
        .filter(ShortageReport.line_id == line_id)
        .filter(ShortageReport.status != ShortageStatus.CLOSED)
        .order_by(ShortageReport.id.desc())
        .first()
    )
