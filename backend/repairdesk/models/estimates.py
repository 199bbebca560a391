from __future__ import annotations

import json

from sqlalchemy import text

from ..extensions import db
from ..money import format_money as _money
from ..time_utils import now, to_utc_z
from .base import append_only


class CostEstimate(db.Model):
    """
    Cost estimate (KVA) version for a repair order.

    VERSIONING:
    - Versions are immutable in their pricing; a change means a new version.
    - version_number starts at 1 and grows by one per order; parent_id points
      at the version it replaced.
    - Exactly one version per order has is_current = True. The partial unique
      index below makes the database reject a second current row, which is
      what catches two clerks creating a version at the same moment.

    LIFECYCLE:
    DRAFT/CREATED -> SENT -> AWAITING_RESPONSE -> APPROVED | REJECTED
    SENT/AWAITING_RESPONSE <-> QUESTION, and any open version may EXPIRE.

    FEE:
    fee_cents is charged when the customer rejects, unless waived. The
    waiver belongs to this version only.
    """
    __tablename__ = "cost_estimates"
    __table_args__ = (
        db.UniqueConstraint("order_id", "version_number", name="uq_cost_estimates_order_version"),
        db.Index(
            "uq_cost_estimates_one_current",
            "order_id",
            unique=True,
            sqlite_where=text("is_current = 1"),
            postgresql_where=text("is_current"),
        ),
        db.Index("ix_cost_estimates_status_valid", "status", "valid_until"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("repair_orders.id"), nullable=False, index=True)
    version_number = db.Column(db.Integer, nullable=False)
    parent_id = db.Column(db.Integer, db.ForeignKey("cost_estimates.id"), nullable=True)
    is_current = db.Column(db.Boolean, nullable=False, default=True)

    estimate_type = db.Column(db.String(16), nullable=False)  # FIXED, VARIABLE, UP_TO
    status = db.Column(db.String(24), nullable=False, index=True)

    # Pricing (cents)
    labor_cents = db.Column(db.Integer, nullable=False, default=0)
    parts_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    min_cents = db.Column(db.Integer, nullable=True)
    max_cents = db.Column(db.Integer, nullable=True)

    # B2B pricing
    internal_price_cents = db.Column(db.Integer, nullable=True)
    end_customer_price_cents = db.Column(db.Integer, nullable=True)
    end_customer_price_released = db.Column(db.Boolean, nullable=False, default=False)

    diagnosis = db.Column(db.Text, nullable=True)
    repair_description = db.Column(db.Text, nullable=True)

    # Delivery
    valid_until = db.Column(db.DateTime(timezone=True), nullable=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sent_via = db.Column(db.String(32), nullable=True)
    reminder_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expired_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Customer Q&A
    customer_question = db.Column(db.Text, nullable=True)
    staff_answer = db.Column(db.Text, nullable=True)

    # Decision
    decision = db.Column(db.String(16), nullable=True)  # APPROVED, REJECTED
    decision_at = db.Column(db.DateTime(timezone=True), nullable=True)
    decision_by_customer = db.Column(db.Boolean, nullable=True)
    decision_channel = db.Column(db.String(32), nullable=True)
    decision_note = db.Column(db.Text, nullable=True)
    decision_actor_id = db.Column(db.String(64), nullable=True)
    disposal_option = db.Column(db.String(32), nullable=True)

    # Rejection fee
    fee_cents = db.Column(db.Integer, nullable=False, default=0)
    fee_waived = db.Column(db.Boolean, nullable=False, default=False)
    fee_waiver_reason = db.Column(db.Text, nullable=True)
    fee_waived_by = db.Column(db.String(64), nullable=True)
    fee_waived_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=now)
    updated_by = db.Column(db.String(64), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=now, onupdate=now)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("RepairOrder", backref=db.backref("estimates", lazy=True, order_by="CostEstimate.version_number"))
    parent = db.relationship("CostEstimate", remote_side=[id])
    history = db.relationship(
        "CostEstimateHistoryEntry",
        backref="estimate",
        lazy=True,
        order_by="CostEstimateHistoryEntry.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<CostEstimate id={self.id} order_id={self.order_id} "
            f"v{self.version_number} status={self.status} current={self.is_current}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "version_number": self.version_number,
            "parent_id": self.parent_id,
            "is_current": self.is_current,
            "estimate_type": self.estimate_type,
            "status": self.status,
            "labor": _money(self.labor_cents),
            "parts": _money(self.parts_cents),
            "total": _money(self.total_cents),
            "min": _money(self.min_cents),
            "max": _money(self.max_cents),
            "internal_price": _money(self.internal_price_cents),
            "end_customer_price": _money(self.end_customer_price_cents),
            "end_customer_price_released": self.end_customer_price_released,
            "diagnosis": self.diagnosis,
            "repair_description": self.repair_description,
            "valid_until": to_utc_z(self.valid_until),
            "sent_at": to_utc_z(self.sent_at),
            "sent_via": self.sent_via,
            "reminder_sent_at": to_utc_z(self.reminder_sent_at),
            "expired_at": to_utc_z(self.expired_at),
            "customer_question": self.customer_question,
            "staff_answer": self.staff_answer,
            "decision": self.decision,
            "decision_at": to_utc_z(self.decision_at),
            "decision_by_customer": self.decision_by_customer,
            "decision_channel": self.decision_channel,
            "decision_note": self.decision_note,
            "decision_actor_id": self.decision_actor_id,
            "disposal_option": self.disposal_option,
            "fee": _money(self.fee_cents),
            "fee_waived": self.fee_waived,
            "fee_waiver_reason": self.fee_waiver_reason,
            "fee_waived_by": self.fee_waived_by,
            "fee_waived_at": to_utc_z(self.fee_waived_at),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_by": self.updated_by,
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


@append_only
class CostEstimateHistoryEntry(db.Model):
    __tablename__ = "cost_estimate_history"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    estimate_id = db.Column(db.Integer, db.ForeignKey("cost_estimates.id"), nullable=False, index=True)
    action = db.Column(db.String(32), nullable=False, index=True)
    actor_id = db.Column(db.String(64), nullable=False)
    note = db.Column(db.Text, nullable=True)

    # JSON object of the values the action changed
    payload = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "estimate_id": self.estimate_id,
            "action": self.action,
            "actor_id": self.actor_id,
            "note": self.note,
            "payload": json.loads(self.payload) if self.payload else None,
            "created_at": to_utc_z(self.created_at),
        }
