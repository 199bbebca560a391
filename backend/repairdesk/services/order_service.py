# Overview: Repair order intake, validated status transitions, quality checklist and order edits.

from __future__ import annotations

from ..errors import (
    NotFoundError,
    PreconditionFailedError,
    TerminalStateError,
    ValidationError,
)
from ..extensions import db
from ..models import Location, QualityChecklistItem, RepairOrder, StatusHistoryEntry
from ..money import to_cents
from ..notifications import (
    EVENT_AWAITING_APPROVAL,
    EVENT_READY_FOR_PICKUP,
    queue_notification,
)
from ..permissions import Actor, require_permission
from ..time_utils import now
from ..validation import clean_str
from ..workflow import (
    CHECKLIST_GATE,
    ESTIMATE_GATE,
    OrderStatus,
    check_transition,
    coerce_status,
    is_terminal,
    path_is_valid,
    reaches,
)
from .concurrency import atomic, run_with_retry
from .document_service import DOC_REPAIR_ORDER, next_document_number
from .lookup import get_or_404


def _ensure_open(order: RepairOrder) -> None:
    if is_terminal(OrderStatus(order.status)):
        raise TerminalStateError(f"Order {order.order_number} is {order.status}")


def _record_history(order: RepairOrder, old: OrderStatus | None, new: OrderStatus, actor: Actor, note) -> StatusHistoryEntry:
    entry = StatusHistoryEntry(
        order_id=order.id,
        old_status=old.value if old is not None else None,
        new_status=new.value,
        actor_id=actor.id,
        note=note,
        created_at=now(),
    )
    db.session.add(entry)
    return entry


def create_order(
    location,
    actor: Actor,
    *,
    device_manufacturer=None,
    device_model=None,
    error_description=None,
    is_b2b: bool = False,
    mail_in: bool = False,
    checklist=None,
) -> RepairOrder:
    """
    Intake a device.

    Regular orders start RECEIVED. B2B mail-in orders start SUBMITTED and are
    moved to RECEIVED once the parcel arrives. The first history entry has
    no old status.
    """
    require_permission(actor, "MANAGE_ORDERS")
    if mail_in and not is_b2b:
        raise ValidationError("Only B2B orders can be submitted by mail")

    device_manufacturer = clean_str(device_manufacturer, field="device_manufacturer", max_len=128)
    device_model = clean_str(device_model, field="device_model", max_len=128)
    error_description = clean_str(error_description, field="error_description")

    labels = []
    for raw in checklist or []:
        label = clean_str(raw, field="checklist item", required=True, max_len=255)
        if label in labels:
            raise ValidationError(f"Duplicate checklist item '{label}'")
        labels.append(label)

    initial = OrderStatus.SUBMITTED if mail_in else OrderStatus.RECEIVED

    def _op() -> RepairOrder:
        with atomic():
            loc = get_or_404(Location, location)
            order = RepairOrder(
                location_id=loc.id,
                order_number=next_document_number(location_id=loc.id, document_type=DOC_REPAIR_ORDER),
                status=initial.value,
                is_b2b=bool(is_b2b),
                device_manufacturer=device_manufacturer,
                device_model=device_model,
                error_description=error_description,
                created_by=actor.id,
                created_at=now(),
            )
            db.session.add(order)
            db.session.flush()

            for position, label in enumerate(labels):
                db.session.add(QualityChecklistItem(order_id=order.id, label=label, sort_order=position))

            _record_history(order, None, initial, actor, "Order created")
            return order

    return run_with_retry(_op)


def _check_gates(order: RepairOrder, target: OrderStatus) -> None:
    if reaches(target, CHECKLIST_GATE):
        unchecked = [item.label for item in order.checklist_items if not item.checked]
        if unchecked:
            raise PreconditionFailedError(
                f"Quality checklist incomplete: {', '.join(unchecked)}"
            )
    if reaches(target, ESTIMATE_GATE) and order.requires_estimate and order.estimate_approval is not True:
        raise PreconditionFailedError(
            f"Cost estimate must be approved before the order can move to {target.value}"
        )


def apply_transition(order: RepairOrder, target, actor: Actor, note=None) -> StatusHistoryEntry:
    """
    Move an already-loaded (and locked) order to `target` inside the
    caller's transaction. Does not commit.

    Raises the workflow errors from workflow.check_transition and
    PreconditionFailedError when a gate is not met.
    """
    target = coerce_status(target)
    current = OrderStatus(order.status)
    note = clean_str(note, field="note")

    check_transition(current, target, is_b2b=order.is_b2b, note=note)
    _check_gates(order, target)

    order.status = target.value
    order.updated_at = now()
    entry = _record_history(order, current, target, actor, note)

    if target is OrderStatus.AWAITING_PART_OR_APPROVAL and order.requires_estimate:
        queue_notification(EVENT_AWAITING_APPROVAL, order.id, order_number=order.order_number)
    elif target is OrderStatus.READY_FOR_PICKUP:
        queue_notification(EVENT_READY_FOR_PICKUP, order.id, order_number=order.order_number)

    db.session.flush()
    return entry


def transition(order, target, actor: Actor, note=None) -> StatusHistoryEntry:
    """
    Change an order's status.

    Args:
        order: RepairOrder instance or id
        target: OrderStatus or its name
        actor: Acting user
        note: Required when moving backward

    Returns:
        The StatusHistoryEntry written for this move

    Raises:
        TerminalStateError: Order already closed
        InvalidStateTransitionError: Same status, or B2B-only status on a regular order
        JustificationRequiredError: Backward move without note
        PreconditionFailedError: Checklist or estimate gate not met
        ConcurrentModificationError: Order changed concurrently
    """
    require_permission(actor, "MANAGE_ORDERS")

    def _op() -> StatusHistoryEntry:
        with atomic():
            row = get_or_404(RepairOrder, order, lock=True, label="Order")
            return apply_transition(row, target, actor, note)

    return run_with_retry(_op)


def add_checklist_item(order, label, actor: Actor) -> QualityChecklistItem:
    require_permission(actor, "MANAGE_ORDERS")
    label = clean_str(label, field="label", required=True, max_len=255)

    def _op() -> QualityChecklistItem:
        with atomic():
            row = get_or_404(RepairOrder, order, lock=True, label="Order")
            _ensure_open(row)
            if any(item.label == label for item in row.checklist_items):
                raise ValidationError(f"Duplicate checklist item '{label}'")
            position = max((item.sort_order for item in row.checklist_items), default=-1) + 1
            item = QualityChecklistItem(order_id=row.id, label=label, sort_order=position)
            db.session.add(item)
            row.updated_at = now()
            db.session.flush()
            return item

    return run_with_retry(_op)


def check_checklist_item(item, actor: Actor, checked: bool = True, *, order_id: int | None = None) -> QualityChecklistItem:
    require_permission(actor, "MANAGE_ORDERS")

    def _op() -> QualityChecklistItem:
        with atomic():
            row = get_or_404(QualityChecklistItem, item, label="Checklist item")
            if order_id is not None and row.order_id != order_id:
                raise NotFoundError(f"Checklist item {row.id} does not belong to order {order_id}")
            order = get_or_404(RepairOrder, row.order_id, lock=True, label="Order")
            _ensure_open(order)
            row.checked = bool(checked)
            row.checked_at = now() if checked else None
            row.checked_by = actor.id if checked else None
            order.updated_at = now()
            return row

    return run_with_retry(_op)


def assign_technician(order, technician_id, actor: Actor) -> RepairOrder:
    require_permission(actor, "MANAGE_ORDERS")
    technician_id = clean_str(technician_id, field="technician_id", max_len=64)

    def _op() -> RepairOrder:
        with atomic():
            row = get_or_404(RepairOrder, order, lock=True, label="Order")
            _ensure_open(row)
            row.assigned_technician_id = technician_id
            row.updated_at = now()
            return row

    return run_with_retry(_op)


def set_final_price(order, amount, actor: Actor) -> RepairOrder:
    require_permission(actor, "MANAGE_ORDERS")
    cents = to_cents(amount, field="final_price")

    def _op() -> RepairOrder:
        with atomic():
            row = get_or_404(RepairOrder, order, lock=True, label="Order")
            _ensure_open(row)
            row.final_price_cents = cents
            row.updated_at = now()
            return row

    return run_with_retry(_op)


def get_order(order_id) -> RepairOrder:
    return get_or_404(RepairOrder, order_id, label="Order")


def list_orders(location_id: int | None = None, status=None, *, limit: int = 100, offset: int = 0):
    q = db.session.query(RepairOrder)
    if location_id is not None:
        q = q.filter(RepairOrder.location_id == location_id)
    if status:
        q = q.filter(RepairOrder.status == coerce_status(status).value)
    total = q.count()
    rows = q.order_by(RepairOrder.created_at.desc(), RepairOrder.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def get_history(order_id) -> list[StatusHistoryEntry]:
    return (
        db.session.query(StatusHistoryEntry)
        .filter_by(order_id=order_id)
        .order_by(StatusHistoryEntry.id.asc())
        .all()
    )


def replay_history(order) -> bool:
    """True when the recorded history is a path the state machine accepts and ends at the current status."""
    row = get_or_404(RepairOrder, order, label="Order")
    entries = get_history(row.id)
    steps = [
        (
            OrderStatus(e.old_status) if e.old_status else None,
            OrderStatus(e.new_status),
            e.note,
        )
        for e in entries
    ]
    if not path_is_valid(steps, is_b2b=row.is_b2b):
        return False
    return steps[-1][1].value == row.status
