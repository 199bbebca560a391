from __future__ import annotations

from ..extensions import db
from ..money import format_money as _money
from ..time_utils import now, to_utc_z


class InventorySession(db.Model):
    """
    Physical stock count for one location.

    LIFECYCLE:
    1. IN_PROGRESS: snapshot taken, counts being entered
    2. PENDING_APPROVAL: submitted; every discrepancy carries a reason
    3. APPROVED: corrections posted to the stock ledger
    4. REJECTED: closed without any stock change
    """
    __tablename__ = "inventory_sessions"
    __table_args__ = (
        db.UniqueConstraint("location_id", "session_number", name="uq_inventory_sessions_location_number"),
        db.Index("ix_inventory_sessions_location_status", "location_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    session_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(24), nullable=False, default="IN_PROGRESS", index=True)
    notes = db.Column(db.Text, nullable=True)

    started_at = db.Column(db.DateTime(timezone=True), nullable=False, default=now)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    submitted_by = db.Column(db.String(64), nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    decided_by = db.Column(db.String(64), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    # Computed on submit
    total_items_counted = db.Column(db.Integer, nullable=True)
    total_discrepancies = db.Column(db.Integer, nullable=True)
    total_value_difference_cents = db.Column(db.Integer, nullable=True)

    created_by = db.Column(db.String(64), nullable=False)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    location = db.relationship("Location", backref=db.backref("inventory_sessions", lazy=True))
    counts = db.relationship(
        "InventoryCount",
        backref="session",
        lazy=True,
        order_by="InventoryCount.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_counts: bool = False) -> dict:
        data = {
            "id": self.id,
            "location_id": self.location_id,
            "session_number": self.session_number,
            "status": self.status,
            "notes": self.notes,
            "started_at": to_utc_z(self.started_at),
            "submitted_at": to_utc_z(self.submitted_at),
            "submitted_by": self.submitted_by,
            "decided_at": to_utc_z(self.decided_at),
            "decided_by": self.decided_by,
            "rejection_reason": self.rejection_reason,
            "total_items_counted": self.total_items_counted,
            "total_discrepancies": self.total_discrepancies,
            "total_value_difference": _money(self.total_value_difference_cents),
            "created_by": self.created_by,
            "version_id": self.version_id,
        }
        if include_counts:
            data["counts"] = [row.to_dict() for row in self.counts]
        return data


class InventoryCount(db.Model):
    __tablename__ = "inventory_counts"
    __table_args__ = (
        db.UniqueConstraint("session_id", "part_id", name="uq_inventory_counts_session_part"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("inventory_sessions.id"), nullable=False, index=True)
    part_id = db.Column(db.Integer, db.ForeignKey("parts.id"), nullable=False, index=True)

    expected_quantity = db.Column(db.Integer, nullable=False)
    counted_quantity = db.Column(db.Integer, nullable=False)
    unit_value_cents = db.Column(db.Integer, nullable=False, default=0)
    discrepancy_reason = db.Column(db.Text, nullable=True)

    counted_by = db.Column(db.String(64), nullable=True)
    counted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Set when the approval posts the correction
    movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    part = db.relationship("Part")

    @property
    def difference(self) -> int:
        return self.counted_quantity - self.expected_quantity

    @property
    def value_difference_cents(self) -> int:
        return self.difference * self.unit_value_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "part_id": self.part_id,
            "expected_quantity": self.expected_quantity,
            "counted_quantity": self.counted_quantity,
            "difference": self.difference,
            "unit_value": _money(self.unit_value_cents),
            "value_difference": _money(self.value_difference_cents),
            "discrepancy_reason": self.discrepancy_reason,
            "counted_by": self.counted_by,
            "counted_at": to_utc_z(self.counted_at),
            "movement_id": self.movement_id,
        }
