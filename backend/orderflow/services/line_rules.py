# Overview: Pure predicates and projections over order lines (no session access).

"""
Line classification rules shared by the resolution engine and the billing
calculator. Every function here reads attributes only, so it works on ORM
rows and on LineSnapshot copies alike.

    live       not CANCELLED / REPLACED / NOT_AVAILABLE
    countable  live, and either severity <= IN_STOCK or some stock available
    in stock   live, and IN_STOCK or an accepted shortage with stock available
    base qty   available_qty for a shortage, ordered_qty otherwise
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from ..errors import GuardViolation
from ..flags import FulfillmentFlag


# Quantity edits smaller than this are float noise, not edits
QTY_EPSILON = Decimal("0.0001")

ORIGINAL_REPLACED_LABEL = "Original item replaced"


def to_decimal(value) -> Decimal:
    """Convert a quantity/amount to Decimal without going through binary float digits."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("boolean is not a quantity")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(str(value).strip())


def parse_quantity(value, name: str = "quantity") -> Decimal:
    """to_decimal for caller input: anything unparseable is a GuardViolation."""
    try:
        qty = to_decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise GuardViolation(f"{name} must be a number: {value!r}")
    if not qty.is_finite():
        raise GuardViolation(f"{name} must be a finite number: {value!r}")
    return qty


def format_qty(value) -> str:
    """Plain digits for messages and labels: 10, 2.5, never 1E+1."""
    return f"{to_decimal(value).normalize():f}"


def flag_of(line) -> FulfillmentFlag:
    return FulfillmentFlag(line.fulfillment_flag)


def is_live(line) -> bool:
    flag = flag_of(line)
    return not flag.is_side_state and flag != FulfillmentFlag.NOT_AVAILABLE


def is_countable(line) -> bool:
    if not is_live(line):
        return False
    flag = flag_of(line)
    if not flag.at_least(FulfillmentFlag.OUT_OF_STOCK):
        return True
    return to_decimal(line.available_qty) > 0


def indicates_in_stock(line) -> bool:
    if not is_live(line):
        return False
    flag = flag_of(line)
    if flag == FulfillmentFlag.IN_STOCK:
        return True
    return (
        flag.is_shortage
        and bool(line.availability_accepted)
        and to_decimal(line.available_qty) > 0
    )


def base_qty(line) -> Decimal:
    if flag_of(line).is_shortage:
        return to_decimal(line.available_qty)
    return to_decimal(line.ordered_qty)


def quantity_changed(old, new) -> bool:
    return abs(to_decimal(new) - to_decimal(old)) >= QTY_EPSILON


@dataclass(frozen=True)
class LineSnapshot:
    """Immutable copy of the fields billing and display read."""
    id: int
    order_id: int
    product_ref: str
    ordered_qty: Decimal
    available_qty: Decimal
    rate: Decimal
    fulfillment_flag: FulfillmentFlag
    availability_accepted: bool
    is_checked: bool
    estimated_qty: Optional[Decimal]
    estimated_total: Optional[Decimal]
    replaces_line_id: Optional[int]
    replaced_by_line_id: Optional[int]

    @classmethod
    def of(cls, line) -> "LineSnapshot":
        return cls(
            id=line.id,
            order_id=line.order_id,
            product_ref=line.product_ref,
            ordered_qty=to_decimal(line.ordered_qty),
            available_qty=to_decimal(line.available_qty),
            rate=to_decimal(line.rate),
            fulfillment_flag=flag_of(line),
            availability_accepted=bool(line.availability_accepted),
            is_checked=bool(line.is_checked),
            estimated_qty=to_decimal(line.estimated_qty) if line.estimated_qty is not None else None,
            estimated_total=to_decimal(line.estimated_total) if line.estimated_total is not None else None,
            replaces_line_id=line.replaces_line_id,
            replaced_by_line_id=line.replaced_by_line_id,
        )


def snapshot_lines(lines: Iterable) -> tuple[LineSnapshot, ...]:
    return tuple(LineSnapshot.of(line) for line in lines)


@dataclass(frozen=True)
class DisplayItem:
    line: object
    replaces: Optional[object] = None


@dataclass(frozen=True)
class AuditEntry:
    line: object
    label: str
    replaced_by: Optional[object] = None


def _index(lines) -> dict:
    return {line.id: line for line in lines}


def display_items(lines: Iterable) -> list[DisplayItem]:
    """
    Lines to show on an order screen.

    A replaced original is hidden; its replacement is shown with a
    back-reference to it. Cancelled and not-available lines stay visible.
    """
    lines = list(lines)
    by_id = _index(lines)
    items = []
    for line in lines:
        if flag_of(line) == FulfillmentFlag.REPLACED:
            continue
        original = by_id.get(line.replaces_line_id) if line.replaces_line_id else None
        items.append(DisplayItem(line=line, replaces=original))
    return items


def audit_trail(lines: Iterable) -> list[AuditEntry]:
    """Every line, replaced originals included, with a status label."""
    lines = list(lines)
    by_id = _index(lines)
    entries = []
    for line in lines:
        flag = flag_of(line)
        if flag == FulfillmentFlag.REPLACED:
            entries.append(
                AuditEntry(
                    line=line,
                    label=ORIGINAL_REPLACED_LABEL,
                    replaced_by=by_id.get(line.replaced_by_line_id),
                )
            )
        else:
            entries.append(AuditEntry(line=line, label=status_label(line)))
    return entries


def status_label(line) -> str:
    flag = flag_of(line)
    if flag == FulfillmentFlag.REPLACED:
        return ORIGINAL_REPLACED_LABEL
    if flag == FulfillmentFlag.CANCELLED:
        return "Cancelled"
    if flag == FulfillmentFlag.NOT_AVAILABLE:
        return "Not available"
    if flag.is_shortage:
        available = to_decimal(line.available_qty)
        status = f"Only {format_qty(available)} available" if available > 0 else "Out of stock"
        if line.availability_accepted:
            return f"{status} (accepted)"
        if flag == FulfillmentFlag.REPORTED:
            return f"{status} (reported)"
        return status
    if flag == FulfillmentFlag.IN_STOCK:
        return "Available"
    return "Not checked"
