from __future__ import annotations

from ..extensions import db
from ..money import format_money as _money
from ..time_utils import now, to_utc_z
from .base import append_only


class RepairOrder(db.Model):
    """
    A device repair ticket.

    LIFECYCLE: see workflow.py for the status table. Orders are never
    deleted; CANCELLED is the terminal status for abandoned work.

    ESTIMATE FIELDS:
    requires_estimate, estimate_approval, estimated_price_cents and
    estimate_fee_due_cents are written by the cost estimate workflow only.
    estimate_approval is tri-state: NULL (no decision), True, False.
    """
    __tablename__ = "repair_orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_repair_orders_number"),
        db.Index("ix_repair_orders_location_status", "location_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)

    # Human-readable ticket number (e.g., "R-001-00042")
    order_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(32), nullable=False, index=True)
    is_b2b = db.Column(db.Boolean, nullable=False, default=False)

    device_manufacturer = db.Column(db.String(128), nullable=True)
    device_model = db.Column(db.String(128), nullable=True)
    error_description = db.Column(db.Text, nullable=True)

    assigned_technician_id = db.Column(db.String(64), nullable=True, index=True)

    requires_estimate = db.Column(db.Boolean, nullable=False, default=False)
    estimate_approval = db.Column(db.Boolean, nullable=True)
    estimate_decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    estimated_price_cents = db.Column(db.Integer, nullable=True)
    estimate_fee_due_cents = db.Column(db.Integer, nullable=True)
    disposal_option = db.Column(db.String(32), nullable=True)

    final_price_cents = db.Column(db.Integer, nullable=True)

    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=now, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=now, onupdate=now)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    location = db.relationship("Location", backref=db.backref("repair_orders", lazy=True))
    checklist_items = db.relationship(
        "QualityChecklistItem",
        backref="order",
        lazy=True,
        order_by="QualityChecklistItem.sort_order",
    )
    history = db.relationship(
        "StatusHistoryEntry",
        backref="order",
        lazy=True,
        order_by="StatusHistoryEntry.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<RepairOrder id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self, include_checklist: bool = False) -> dict:
        data = {
            "id": self.id,
            "location_id": self.location_id,
            "order_number": self.order_number,
            "status": self.status,
            "is_b2b": self.is_b2b,
            "device_manufacturer": self.device_manufacturer,
            "device_model": self.device_model,
            "error_description": self.error_description,
            "assigned_technician_id": self.assigned_technician_id,
            "requires_estimate": self.requires_estimate,
            "estimate_approval": self.estimate_approval,
            "estimate_decided_at": to_utc_z(self.estimate_decided_at),
            "estimated_price": _money(self.estimated_price_cents),
            "estimate_fee_due": _money(self.estimate_fee_due_cents),
            "disposal_option": self.disposal_option,
            "final_price": _money(self.final_price_cents),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_checklist:
            data["checklist"] = [item.to_dict() for item in self.checklist_items]
        return data


class QualityChecklistItem(db.Model):
    __tablename__ = "quality_checklist_items"
    __table_args__ = (
        db.UniqueConstraint("order_id", "label", name="uq_checklist_order_label"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("repair_orders.id"), nullable=False, index=True)
    label = db.Column(db.String(255), nullable=False)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    checked = db.Column(db.Boolean, nullable=False, default=False)
    checked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    checked_by = db.Column(db.String(64), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "label": self.label,
            "sort_order": self.sort_order,
            "checked": self.checked,
            "checked_at": to_utc_z(self.checked_at),
            "checked_by": self.checked_by,
        }


@append_only
class StatusHistoryEntry(db.Model):
    """
    One row per status change of a repair order (plus the intake row,
    whose old_status is NULL). Read in id order, the rows replay a path
    the state machine accepts.
    """
    __tablename__ = "status_history_entries"
    __table_args__ = (
        db.Index("ix_status_history_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("repair_orders.id"), nullable=False, index=True)
    old_status = db.Column(db.String(32), nullable=True)
    new_status = db.Column(db.String(32), nullable=False)
    actor_id = db.Column(db.String(64), nullable=False)
    note = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "actor_id": self.actor_id,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }
