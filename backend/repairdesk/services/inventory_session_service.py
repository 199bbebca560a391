# backend/repairdesk/services/inventory_session_service.py
"""
Physical inventory sessions.

Regular counts keep the stock ledger honest. A session snapshots every
active part at a location, staff enter what is actually on the shelf, and
after approval each discrepancy is posted as an inventory-correction
movement.

LIFECYCLE:
1. IN_PROGRESS: Snapshot taken, counts being entered
2. PENDING_APPROVAL: Submitted, every discrepancy explained
3. APPROVED: Corrections posted to the ledger (all rows or none)
4. REJECTED: Closed without stock changes

One open (IN_PROGRESS or PENDING_APPROVAL) session per location.
"""
from __future__ import annotations

from flask import current_app

from ..errors import (
    InvalidStateTransitionError,
    MissingReasonError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)
from ..extensions import db
from ..models import InventoryCount, InventorySession, Location, Part
from ..permissions import Actor, require_permission
from ..time_utils import now
from ..validation import clean_str, to_int
from ..workflow import SessionStatus
from .concurrency import atomic, run_with_retry
from .document_service import DOC_INVENTORY_SESSION, next_document_number
from .ledger_service import REASON_INVENTORY_CORRECTION, apply_movement
from .lookup import get_or_404

OPEN_STATUSES = (SessionStatus.IN_PROGRESS.value, SessionStatus.PENDING_APPROVAL.value)


def _require_status(session: InventorySession, status: SessionStatus, action: str) -> None:
    if session.status != status.value:
        raise InvalidStateTransitionError(
            f"Cannot {action} inventory session {session.session_number} in {session.status} status"
        )


def start_session(location, actor: Actor, notes=None) -> InventorySession:
    """
    Open a count for a location and snapshot its active parts.

    Args:
        location: Location instance or id
        actor: User starting the count
        notes: Optional free text

    Returns:
        InventorySession: IN_PROGRESS, one row per active part with
        expected = counted = current on_hand

    Raises:
        PreconditionFailedError: Location already has an open session
    """
    require_permission(actor, "COUNT_INVENTORY")
    notes = clean_str(notes, field="notes")

    def _op() -> InventorySession:
        with atomic():
            loc = get_or_404(Location, location, lock=True)
            open_session = (
                db.session.query(InventorySession.session_number)
                .filter(
                    InventorySession.location_id == loc.id,
                    InventorySession.status.in_(OPEN_STATUSES),
                )
                .first()
            )
            if open_session:
                raise PreconditionFailedError(
                    f"Inventory session {open_session[0]} is still open for this location"
                )

            ts = now()
            session = InventorySession(
                location_id=loc.id,
                session_number=next_document_number(location_id=loc.id, document_type=DOC_INVENTORY_SESSION),
                status=SessionStatus.IN_PROGRESS.value,
                notes=notes,
                started_at=ts,
                created_by=actor.id,
            )
            db.session.add(session)
            db.session.flush()

            parts = (
                db.session.query(Part)
                .filter(Part.location_id == loc.id, Part.is_active.is_(True))
                .order_by(Part.id.asc())
                .all()
            )
            for part in parts:
                db.session.add(InventoryCount(
                    session_id=session.id,
                    part_id=part.id,
                    expected_quantity=part.on_hand,
                    counted_quantity=part.on_hand,
                    unit_value_cents=part.purchase_price_cents,
                ))
            db.session.flush()
            return session

    return run_with_retry(_op)


def record_count(session, part, counted, actor: Actor, reason=None) -> InventoryCount:
    """Enter the physical quantity for one part; re-entering overwrites."""
    require_permission(actor, "COUNT_INVENTORY")
    counted = to_int(counted, field="counted_quantity", min_value=0)
    reason = clean_str(reason, field="reason")

    def _op() -> InventoryCount:
        with atomic():
            sess = get_or_404(InventorySession, session, lock=True, label="Inventory session")
            _require_status(sess, SessionStatus.IN_PROGRESS, "record counts on")
            part_row = get_or_404(Part, part)
            if part_row.location_id != sess.location_id:
                raise ValidationError(f"Part {part_row.sku} does not belong to this location")

            row = (
                db.session.query(InventoryCount)
                .filter_by(session_id=sess.id, part_id=part_row.id)
                .first()
            )
            if row is None:
                # Part created after the snapshot
                row = InventoryCount(
                    session_id=sess.id,
                    part_id=part_row.id,
                    expected_quantity=part_row.on_hand,
                    unit_value_cents=part_row.purchase_price_cents,
                )
                db.session.add(row)

            row.counted_quantity = counted
            row.discrepancy_reason = reason
            row.counted_by = actor.id
            row.counted_at = now()
            db.session.flush()
            return row

    return run_with_retry(_op)


def submit(session, actor: Actor) -> InventorySession:
    """
    Close counting and hand the session over for approval.

    Raises:
        MissingReasonError: Some discrepancies have no reason (rows listed)
    """
    require_permission(actor, "COUNT_INVENTORY")

    def _op() -> InventorySession:
        with atomic():
            sess = get_or_404(InventorySession, session, lock=True, label="Inventory session")
            _require_status(sess, SessionStatus.IN_PROGRESS, "submit")
            rows = list(sess.counts)
            if not rows:
                raise ValidationError("Inventory session has no counted parts")

            unexplained = [
                {
                    "count_id": row.id,
                    "part_id": row.part_id,
                    "expected_quantity": row.expected_quantity,
                    "counted_quantity": row.counted_quantity,
                }
                for row in rows
                if row.difference != 0 and not row.discrepancy_reason
            ]
            if unexplained:
                raise MissingReasonError(
                    f"{len(unexplained)} discrepancy row(s) need a reason",
                    rows=unexplained,
                )

            sess.total_items_counted = len(rows)
            sess.total_discrepancies = sum(1 for row in rows if row.difference != 0)
            sess.total_value_difference_cents = sum(row.value_difference_cents for row in rows)
            sess.status = SessionStatus.PENDING_APPROVAL.value
            sess.submitted_at = now()
            sess.submitted_by = actor.id
            return sess

    return run_with_retry(_op)


def approve(session, actor: Actor) -> InventorySession:
    """Post one inventory-correction movement per discrepancy; all or nothing."""
    require_permission(actor, "APPROVE_INVENTORY")

    def _op() -> InventorySession:
        with atomic():
            sess = get_or_404(InventorySession, session, lock=True, label="Inventory session")
            _require_status(sess, SessionStatus.PENDING_APPROVAL, "approve")

            corrections = 0
            for row in sess.counts:
                if row.difference == 0:
                    continue
                movement = apply_movement(
                    row.part_id,
                    row.difference,
                    REASON_INVENTORY_CORRECTION,
                    actor,
                    session=sess,
                    reason_text=row.discrepancy_reason,
                )
                row.movement_id = movement.id
                corrections += 1

            sess.status = SessionStatus.APPROVED.value
            sess.decided_at = now()
            sess.decided_by = actor.id
            db.session.flush()
            current_app.logger.info(
                "Inventory session %s approved with %d correction(s)", sess.session_number, corrections
            )
            return sess

    return run_with_retry(_op)


def reject(session, actor: Actor, reason) -> InventorySession:
    require_permission(actor, "APPROVE_INVENTORY")
    reason = clean_str(reason, field="reason")
    if not reason:
        raise MissingReasonError("A rejection reason is required")

    def _op() -> InventorySession:
        with atomic():
            sess = get_or_404(InventorySession, session, lock=True, label="Inventory session")
            _require_status(sess, SessionStatus.PENDING_APPROVAL, "reject")
            sess.status = SessionStatus.REJECTED.value
            sess.rejection_reason = reason
            sess.decided_at = now()
            sess.decided_by = actor.id
            return sess

    return run_with_retry(_op)


def get_session(session_id) -> InventorySession:
    return get_or_404(InventorySession, session_id, label="Inventory session")


def list_sessions(location_id: int | None = None, status: str | None = None) -> list[InventorySession]:
    q = db.session.query(InventorySession)
    if location_id is not None:
        q = q.filter(InventorySession.location_id == location_id)
    if status:
        try:
            status = SessionStatus(status.strip().upper()).value
        except ValueError:
            raise ValidationError(f"Invalid session status '{status}'")
        q = q.filter(InventorySession.status == status)
    return q.order_by(InventorySession.started_at.desc(), InventorySession.id.desc()).all()


def get_count_row(session_id: int, part_id: int) -> InventoryCount:
    row = db.session.query(InventoryCount).filter_by(session_id=session_id, part_id=part_id).first()
    if row is None:
        raise NotFoundError(f"Part {part_id} is not on inventory session {session_id}")
    return row
