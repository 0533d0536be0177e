# Overview: Billing calculator; pure read-side totals over a snapshot of order lines.

"""
Billing Calculator

WHY: The salesman sees an estimated bill, the biller needs the final bill,
and the checker wants a running total while ticking boxes. All three are
projections of the current lines and never write anything back.

RULES:
- Sums use Decimal end to end. Nothing is rounded until quantize_money()
  is called for display.
- estimated_total: per line, the frozen estimated_total if > 0, else
  rate * estimated_qty if estimated_qty > 0, else nothing. Replaced and
  cancelled lines are skipped so a replacement is never counted twice.
- final_total: countable lines only, rate * (available_qty for a shortage,
  ordered_qty otherwise).
- checker_running_total: countable lines in the checked set, with the
  operator's edited quantity when present. A replaced original stays out
  even if it is ticked.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Optional

from .line_rules import (
    base_qty,
    flag_of,
    is_countable,
    parse_quantity,
    quantity_changed,
    snapshot_lines,
    to_decimal,
)


MONEY_PLACES = Decimal("0.01")


def quantize_money(amount) -> Decimal:
    return to_decimal(amount).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def line_estimate(line) -> Optional[Decimal]:
    """Estimated amount for one line, or None if the line has no snapshot."""
    if flag_of(line).is_side_state:
        return None
    estimated_total = to_decimal(line.estimated_total)
    if estimated_total > 0:
        return estimated_total
    estimated_qty = to_decimal(line.estimated_qty)
    if estimated_qty > 0:
        return to_decimal(line.rate) * estimated_qty
    return None


def line_final_amount(line) -> Decimal:
    if not is_countable(line):
        return Decimal("0")
    return to_decimal(line.rate) * base_qty(line)


def estimated_total(lines: Iterable, freight_charge=0) -> Decimal:
    total = Decimal("0")
    for line in lines:
        amount = line_estimate(line)
        if amount is not None:
            total += amount
    return total + to_decimal(freight_charge)


def final_total(lines: Iterable, freight_charge=0) -> Decimal:
    total = sum((line_final_amount(line) for line in lines), Decimal("0"))
    return total + to_decimal(freight_charge)


def checker_running_total(
    lines: Iterable,
    edited_qty: Optional[Mapping[int, object]] = None,
    checked: Optional[Iterable[int]] = None,
) -> Decimal:
    """
    Live total while checking is in progress.

    Args:
        lines: current lines (rows or snapshots)
        edited_qty: line id -> quantity typed by the operator, not yet saved
        checked: ids of lines ticked so far

    Returns:
        Sum of rate * quantity over ticked countable lines only
    """
    edited_qty = edited_qty or {}
    checked_ids = set(checked or ())
    total = Decimal("0")
    for line in lines:
        if line.id not in checked_ids or not is_countable(line):
            continue
        if line.id in edited_qty:
            qty = to_decimal(edited_qty[line.id])
        else:
            qty = base_qty(line)
        total += to_decimal(line.rate) * qty
    return total


@dataclass(frozen=True)
class QtyEdit:
    line_id: int
    old_qty: Decimal
    new_qty: Decimal


def diff_quantity_edits(lines: Iterable, edited_qty: Mapping[int, object]) -> list[QtyEdit]:
    """
    Operator edits that actually change a line.

    Edits for ids not in ``lines`` (stale keys from a previous load) are
    ignored, as are differences below QTY_EPSILON.
    """
    edits = []
    for line in lines:
        if line.id not in edited_qty:
            continue
        old = base_qty(line)
        new = parse_quantity(edited_qty[line.id], f"quantity for line {line.id}")
        if quantity_changed(old, new):
            edits.append(QtyEdit(line_id=line.id, old_qty=old, new_qty=new))
    return edits


@dataclass(frozen=True)
class BillSummary:
    order_id: int
    freight_charge: Decimal
    estimated_total: Decimal
    final_total: Decimal
    line_count: int
    countable_count: int

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "freight_charge": str(quantize_money(self.freight_charge)),
            "estimated_total": str(quantize_money(self.estimated_total)),
            "final_total": str(quantize_money(self.final_total)),
            "line_count": self.line_count,
            "countable_count": self.countable_count,
        }


def bill_for(order, lines: Optional[Iterable] = None) -> BillSummary:
    """Both totals for an order, computed over one immutable snapshot of its lines."""
    snapshot = snapshot_lines(order.lines if lines is None else lines)
    freight = to_decimal(order.freight_charge)
    return BillSummary(
        order_id=order.id,
        freight_charge=freight,
        estimated_total=estimated_total(snapshot, freight),
        final_total=final_total(snapshot, freight),
        line_count=len(snapshot),
        countable_count=sum(1 for line in snapshot if is_countable(line)),
    )
