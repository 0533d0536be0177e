from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..flags import ApprovalFlag, FulfillmentFlag, Role, SuggestionStatus
from ..identity import Assignment, assignment_from_column
from orderflow.time_utils import to_utc_z


def flag_column_type(enum_cls, length: int = 32):
    """Store a str-enum by value and load it back as the enum member."""
    return db.Enum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


def _dec(value) -> str | None:
    return str(value) if value is not None else None


# Role slot columns on Order, keyed by the role that claims them
ORDER_ROLE_SLOTS = {
    Role.STOREKEEPER: ("storekeeper_id", "storekeeper_claimed_at"),
    Role.CHECKER: ("checker_id", "checker_claimed_at"),
    Role.BILLER: ("biller_id", "biller_claimed_at"),
}


class Order(db.Model):
    """
    Purchase order travelling salesman -> storekeeper -> checker -> biller.

    WHY: One row carries the approval flag and the owner of each role slot.
    Role slots only move from unassigned to an actor through the claim guard
    (see services/claim_service.py), never by plain attribute assignment.

    LIFECYCLE:
    1. NEW: salesman drafting lines
    2. SENT_TO_STOREKEEPER: waiting for / under stock check
    3. VERIFIED_BY_STOREKEEPER: every line has a stock decision
    4. SENT_TO_CHECKER -> CHECKER_IS_CHECKING: physical check of the packed goods
    5. COMPLETED: checked report submitted, estimate frozen
    6. REJECTED / CANCELLED: absorbing
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_flag_created", "approval_flag", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_ref = db.Column(db.String(64), nullable=True, index=True)

    approval_flag = db.Column(
        flag_column_type(ApprovalFlag), nullable=False, default=ApprovalFlag.NEW, index=True
    )

    # Role slots (NULL = unassigned)
    salesman_id = db.Column(db.Integer, nullable=False, index=True)
    storekeeper_id = db.Column(db.Integer, nullable=True, index=True)
    storekeeper_claimed_at = db.Column(db.DateTime, nullable=True)
    checker_id = db.Column(db.Integer, nullable=True, index=True)
    checker_claimed_at = db.Column(db.DateTime, nullable=True)
    biller_id = db.Column(db.Integer, nullable=True, index=True)
    biller_claimed_at = db.Column(db.DateTime, nullable=True)

    is_billed = db.Column(db.Boolean, nullable=False, default=False)
    billed_at = db.Column(db.DateTime, nullable=True)

    freight_charge = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    note = db.Column(db.Text, nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=True)
    submitted_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    # Terminal audit trail
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancelled_by_id = db.Column(db.Integer, nullable=True)
    rejected_at = db.Column(db.DateTime, nullable=True)
    rejected_by_id = db.Column(db.Integer, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "OrderLine",
        backref=db.backref("order", lazy=True),
        lazy=True,
        order_by="OrderLine.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def slot(self, role: Role) -> Assignment:
        owner_attr, _ = ORDER_ROLE_SLOTS[role]
        return assignment_from_column(getattr(self, owner_attr))

    @property
    def storekeeper(self) -> Assignment:
        return self.slot(Role.STOREKEEPER)

    @property
    def checker(self) -> Assignment:
        return self.slot(Role.CHECKER)

    @property
    def biller(self) -> Assignment:
        return self.slot(Role.BILLER)

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "customer_ref": self.customer_ref,
            "approval_flag": self.approval_flag.value,
            "approval_code": self.approval_flag.code,
            "salesman_id": self.salesman_id,
            "storekeeper_id": self.storekeeper_id,
            "checker_id": self.checker_id,
            "biller_id": self.biller_id,
            "is_billed": self.is_billed,
            "freight_charge": _dec(self.freight_charge),
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "submitted_at": to_utc_z(self.submitted_at),
            "completed_at": to_utc_z(self.completed_at),
            "billed_at": to_utc_z(self.billed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by_id": self.cancelled_by_id,
            "rejected_at": to_utc_z(self.rejected_at),
            "rejected_by_id": self.rejected_by_id,
            "rejection_reason": self.rejection_reason,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class OrderLine(db.Model):
    """
    One product on an order.

    ordered_qty / rate are live and drive the final bill. estimated_qty /
    estimated_total are a snapshot taken when the order is forwarded to the
    checker or biller (or at completion) and never change afterwards.

    A replacement line points at the line it replaces (replaces_line_id) and
    the original points forward (replaced_by_line_id). Both are plain ids
    resolved by lookup; neither line owns the other and the original is kept.
    """
    __tablename__ = "order_lines"
    __table_args__ = (
        db.Index("ix_order_lines_order_flag", "order_id", "fulfillment_flag"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_ref = db.Column(db.String(64), nullable=False)

    ordered_qty = db.Column(db.Numeric(14, 4), nullable=False)
    available_qty = db.Column(db.Numeric(14, 4), nullable=False, default=Decimal("0"))
    rate = db.Column(db.Numeric(14, 4), nullable=False, default=Decimal("0"))

    fulfillment_flag = db.Column(
        flag_column_type(FulfillmentFlag), nullable=False, default=FulfillmentFlag.NEW_ITEM
    )
    # Accepted shortage: the line goes ahead with available_qty
    availability_accepted = db.Column(db.Boolean, nullable=False, default=False)

    note = db.Column(db.Text, nullable=True)
    narration = db.Column(db.Text, nullable=True)

    is_checked = db.Column(db.Boolean, nullable=False, default=False)
    checked_by_id = db.Column(db.Integer, nullable=True)
    checked_at = db.Column(db.DateTime, nullable=True)

    # Decision slot for a disputed shortage (salesman / admin)
    resolver_id = db.Column(db.Integer, nullable=True)
    resolver_claimed_at = db.Column(db.DateTime, nullable=True)

    # Point-in-time snapshot for the estimated bill
    estimated_qty = db.Column(db.Numeric(14, 4), nullable=True)
    estimated_total = db.Column(db.Numeric(14, 4), nullable=True)

    replaces_line_id = db.Column(db.Integer, db.ForeignKey("order_lines.id"), nullable=True)
    replaced_by_line_id = db.Column(db.Integer, db.ForeignKey("order_lines.id"), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    suggestions = db.relationship(
        "Suggestion",
        backref=db.backref("line", lazy=True),
        foreign_keys="Suggestion.line_id",
        lazy=True,
        order_by="Suggestion.id",
    )
    images = db.relationship(
        "LineImage",
        backref=db.backref("line", lazy=True),
        lazy=True,
        order_by="LineImage.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def resolver(self) -> Assignment:
        return assignment_from_column(self.resolver_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_ref": self.product_ref,
            "ordered_qty": _dec(self.ordered_qty),
            "available_qty": _dec(self.available_qty),
            "rate": _dec(self.rate),
            "fulfillment_flag": self.fulfillment_flag.value,
            "fulfillment_code": self.fulfillment_flag.code,
            "availability_accepted": self.availability_accepted,
            "note": self.note,
            "narration": self.narration,
            "is_checked": self.is_checked,
            "checked_by_id": self.checked_by_id,
            "checked_at": to_utc_z(self.checked_at),
            "resolver_id": self.resolver_id,
            "estimated_qty": _dec(self.estimated_qty),
            "estimated_total": _dec(self.estimated_total),
            "replaces_line_id": self.replaces_line_id,
            "replaced_by_line_id": self.replaced_by_line_id,
            "image_count": len(self.images),
            "suggestions": [s.to_dict() for s in self.suggestions],
            "version_id": self.version_id,
        }


class Suggestion(db.Model):
    """
    Substitute product proposed for a short line.

    Content is never edited. Only the status moves PROPOSED -> ACCEPTED | DISCARDED.
    """
    __tablename__ = "line_suggestions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    line_id = db.Column(db.Integer, db.ForeignKey("order_lines.id"), nullable=False, index=True)
    proposed_product_ref = db.Column(db.String(64), nullable=False)
    price = db.Column(db.Numeric(14, 4), nullable=False)
    note = db.Column(db.Text, nullable=True)

    status = db.Column(
        flag_column_type(SuggestionStatus, length=16), nullable=False, default=SuggestionStatus.PROPOSED
    )
    created_by_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    resolved_by_id = db.Column(db.Integer, nullable=True)
    resolved_at = db.Column(db.DateTime, nullable=True)
    resulting_line_id = db.Column(db.Integer, db.ForeignKey("order_lines.id"), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "line_id": self.line_id,
            "proposed_product_ref": self.proposed_product_ref,
            "price": _dec(self.price),
            "note": self.note,
            "status": self.status.value,
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
            "resolved_by_id": self.resolved_by_id,
            "resolved_at": to_utc_z(self.resolved_at),
            "resulting_line_id": self.resulting_line_id,
        }


class LineImage(db.Model):
    """Checker evidence image. Opaque bytes; encoding is the client's business."""
    __tablename__ = "line_images"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    line_id = db.Column(db.Integer, db.ForeignKey("order_lines.id"), nullable=False, index=True)
    content = db.Column(db.LargeBinary, nullable=False)
    content_type = db.Column(db.String(64), nullable=True)
    attached_by_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "line_id": self.line_id,
            "content_type": self.content_type,
            "size_bytes": len(self.content or b""),
            "attached_by_id": self.attached_by_id,
            "created_at": to_utc_z(self.created_at),
        }
