from __future__ import annotations

from ..extensions import db
from ..flags import ShortageStatus
from .orders import flag_column_type
from orderflow.time_utils import to_utc_z


class ShortageReport(db.Model):
    """
    Supplier-resolution record for one short line.

    LIFECYCLE:
    1. OPEN: storekeeper/checker reported the shortage
    2. AWAITING_SUPPLIER: admin picked a supplier and asked for availability
    3. AVAILABLE / UNAVAILABLE: supplier answered
       (UNAVAILABLE may go back to AWAITING_SUPPLIER with another supplier)
    4. CLOSED: the line was accepted, rejected into REPORTED, or marked not available
    """
    __tablename__ = "shortage_reports"
    __table_args__ = (
        db.Index("ix_shortage_reports_line_status", "line_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    line_id = db.Column(db.Integer, db.ForeignKey("order_lines.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_ref = db.Column(db.String(64), nullable=False)

    requested_qty = db.Column(db.Numeric(14, 4), nullable=False)
    reported_available_qty = db.Column(db.Numeric(14, 4), nullable=False)
    note = db.Column(db.Text, nullable=True)

    status = db.Column(
        flag_column_type(ShortageStatus, length=24), nullable=False, default=ShortageStatus.OPEN, index=True
    )
    supplier_ref = db.Column(db.String(64), nullable=True)
    supplier_attempts = db.Column(db.Integer, nullable=False, default=0)
    response_qty = db.Column(db.Numeric(14, 4), nullable=True)

    reported_by_id = db.Column(db.Integer, nullable=False)
    escalated_by_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    escalated_at = db.Column(db.DateTime, nullable=True)
    responded_at = db.Column(db.DateTime, nullable=True)
    closed_at = db.Column(db.DateTime, nullable=True)

    line = db.relationship("OrderLine", backref=db.backref("shortage_reports", lazy=True, order_by="ShortageReport.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "line_id": self.line_id,
            "order_id": self.order_id,
            "product_ref": self.product_ref,
            "requested_qty": str(self.requested_qty),
            "reported_available_qty": str(self.reported_available_qty),
            "note": self.note,
            "status": self.status.value,
            "supplier_ref": self.supplier_ref,
            "supplier_attempts": self.supplier_attempts,
            "response_qty": str(self.response_qty) if self.response_qty is not None else None,
            "reported_by_id": self.reported_by_id,
            "escalated_by_id": self.escalated_by_id,
            "created_at": to_utc_z(self.created_at),
            "escalated_at": to_utc_z(self.escalated_at),
            "responded_at": to_utc_z(self.responded_at),
            "closed_at": to_utc_z(self.closed_at),
        }
