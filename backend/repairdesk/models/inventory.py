from __future__ import annotations

from ..extensions import db
from ..money import format_money as _money
from ..time_utils import now, to_utc_z
from .base import append_only


class Part(db.Model):
    """
    Spare part master data with its on-hand quantity.

    APPLICABILITY SCOPE:
    - model-specific: manufacturer and device_model both set
    - manufacturer-wide: manufacturer only
    - generic: neither
    A device_model without a manufacturer is never stored.

    on_hand is owned by the stock ledger; nothing else writes it.
    """
    __tablename__ = "parts"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_parts_sku"),
        db.Index("ix_parts_scope", "manufacturer", "device_model"),
        db.Index("ix_parts_location_active", "location_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    manufacturer = db.Column(db.String(128), nullable=True)
    device_model = db.Column(db.String(128), nullable=True)

    on_hand = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)

    purchase_price_cents = db.Column(db.Integer, nullable=False, default=0)
    sale_price_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=now)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=now, onupdate=now)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    location = db.relationship("Location", backref=db.backref("parts", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def scope(self) -> str:
        if self.manufacturer and self.device_model:
            return "MODEL"
        if self.manufacturer:
            return "MANUFACTURER"
        return "GENERIC"

    def __repr__(self) -> str:
        return f"<Part id={self.id} sku={self.sku!r} on_hand={self.on_hand}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "location_id": self.location_id,
            "sku": self.sku,
            "name": self.name,
            "manufacturer": self.manufacturer,
            "device_model": self.device_model,
            "scope": self.scope,
            "on_hand": self.on_hand,
            "min_stock": self.min_stock,
            "purchase_price": _money(self.purchase_price_cents),
            "sale_price": _money(self.sale_price_cents),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class PartUsageReservation(db.Model):
    """
    A quantity of a part booked against a repair order.

    Booking already takes the stock out (consumption movement). Rejection
    and removal put it back with a reversal movement; approval only marks
    the usage as accepted.

    Unit prices are snapshotted at booking so later price edits never
    change what an order was estimated or charged.
    """
    __tablename__ = "part_usage_reservations"
    __table_args__ = (
        db.Index("ix_part_usage_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("repair_orders.id"), nullable=False, index=True)
    part_id = db.Column(db.Integer, db.ForeignKey("parts.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    unit_purchase_cents = db.Column(db.Integer, nullable=False, default=0)
    unit_sale_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    reason = db.Column(db.Text, nullable=True)

    booked_by = db.Column(db.String(64), nullable=False)
    booked_at = db.Column(db.DateTime(timezone=True), nullable=False, default=now)
    decided_by = db.Column(db.String(64), nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    removed_by = db.Column(db.String(64), nullable=True)
    removed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("RepairOrder", backref=db.backref("part_usages", lazy=True))
    part = db.relationship("Part")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "part_id": self.part_id,
            "quantity": self.quantity,
            "unit_purchase_price": _money(self.unit_purchase_cents),
            "unit_sale_price": _money(self.unit_sale_cents),
            "status": self.status,
            "reason": self.reason,
            "booked_by": self.booked_by,
            "booked_at": to_utc_z(self.booked_at),
            "decided_by": self.decided_by,
            "decided_at": to_utc_z(self.decided_at),
            "rejection_reason": self.rejection_reason,
            "removed_by": self.removed_by,
            "removed_at": to_utc_z(self.removed_at),
            "version_id": self.version_id,
        }


@append_only
class StockMovement(db.Model):
    """
    Immutable stock ledger row. For every part, on_hand equals the sum of
    quantity_delta over its movements.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_part_created", "part_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    part_id = db.Column(db.Integer, db.ForeignKey("parts.id"), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(32), nullable=False, index=True)
    reason_text = db.Column(db.Text, nullable=True)

    stock_before = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)

    actor_id = db.Column(db.String(64), nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("repair_orders.id"), nullable=True, index=True)
    reservation_id = db.Column(db.Integer, db.ForeignKey("part_usage_reservations.id"), nullable=True, index=True)
    inventory_session_id = db.Column(db.Integer, db.ForeignKey("inventory_sessions.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=now, index=True)

    part = db.relationship("Part", backref=db.backref("movements", lazy=True, order_by="StockMovement.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "part_id": self.part_id,
            "quantity_delta": self.quantity_delta,
            "reason": self.reason,
            "reason_text": self.reason_text,
            "stock_before": self.stock_before,
            "balance_after": self.balance_after,
            "actor_id": self.actor_id,
            "order_id": self.order_id,
            "reservation_id": self.reservation_id,
            "inventory_session_id": self.inventory_session_id,
            "created_at": to_utc_z(self.created_at),
        }
