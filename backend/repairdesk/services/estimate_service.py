# Overview: Versioned cost estimates (KVA): creation, delivery, customer decision, fee waiver, reminders and expiry.

"""
Cost Estimate Workflow

Versions:
- A new version always supersedes the current one (is_current moves to the
  new row, old row gets a SUPERSEDED history entry). Pricing of a version is
  never edited afterwards.
- Version creation locks the order row and bumps its version counter; the
  partial unique index uq_cost_estimates_one_current rejects a second
  concurrent "current" row. Both surface as ConcurrentModificationError.

Order coupling:
- create_version / send put the order into AWAITING_PART_OR_APPROVAL.
- An approval sets estimate_approval=True and moves the order to REPAIRING.
- A rejection sets estimate_approval=False, leaves the status alone and
  makes the rejection fee due (unless waived later).
- Estimate-driven moves that go backward carry a system note.

Decisions are idempotent: replaying the same decision is a no-op, a
different decision on a decided version is refused.
"""

from __future__ import annotations

import json
from datetime import timedelta

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import (
    ConcurrentModificationError,
    InvalidStateTransitionError,
    MissingReasonError,
    TerminalStateError,
    ValidationError,
)
from ..extensions import db
from ..models import CostEstimate, CostEstimateHistoryEntry, RepairOrder
from ..money import optional_cents, to_cents
from ..notifications import (
    EVENT_ESTIMATE_APPROVED,
    EVENT_ESTIMATE_REJECTED,
    EVENT_ESTIMATE_REMINDER,
    EVENT_ESTIMATE_SENT,
    queue_notification,
)
from ..permissions import SYSTEM_ACTOR, Actor, require_permission
from ..time_utils import now
from ..validation import clean_str
from ..workflow import (
    ESTIMATE_DECIDABLE,
    ESTIMATE_OPEN,
    ESTIMATE_SENDABLE,
    EstimateStatus,
    EstimateType,
    OrderStatus,
    is_terminal,
)
from .concurrency import atomic, run_with_retry
from .lookup import get_or_404
from .order_service import apply_transition
from .reservation_service import reserved_sale_total_cents

ACTION_CREATED = "CREATED"
ACTION_SENT = "SENT"
ACTION_APPROVED = "APPROVED"
ACTION_REJECTED = "REJECTED"
ACTION_FEE_WAIVED = "FEE_WAIVED"
ACTION_PRICE_RELEASED = "PRICE_RELEASED"
ACTION_QUESTION_RAISED = "QUESTION_RAISED"
ACTION_QUESTION_ANSWERED = "QUESTION_ANSWERED"
ACTION_REMINDER_SENT = "REMINDER_SENT"
ACTION_EXPIRED = "EXPIRED"
ACTION_SUPERSEDED = "SUPERSEDED"

DECISION_APPROVED = "APPROVED"
DECISION_REJECTED = "REJECTED"

SEND_CHANNELS = {"EMAIL", "SMS", "WHATSAPP"}
DECISION_CHANNELS = {"ONLINE", "PHONE", "IN_PERSON", "EMAIL", "SMS"}
DISPOSAL_OPTIONS = {"DISPOSE_FREE", "RETURN_DEVICE"}


def _log(estimate: CostEstimate, action: str, actor: Actor, note=None, **payload) -> CostEstimateHistoryEntry:
    entry = CostEstimateHistoryEntry(
        estimate_id=estimate.id,
        action=action,
        actor_id=actor.id,
        note=note,
        payload=json.dumps(payload, sort_keys=True, default=str) if payload else None,
        created_at=now(),
    )
    db.session.add(entry)
    return entry


def _choice(value, *, field: str, allowed: set[str]) -> str:
    cleaned = clean_str(value, field=field, required=True)
    cleaned = cleaned.upper()
    if cleaned not in allowed:
        raise ValidationError(f"Invalid {field} '{value}'. Must be one of: {', '.join(sorted(allowed))}")
    return cleaned


def _load_order(order_id) -> RepairOrder:
    order = get_or_404(RepairOrder, order_id, lock=True, label="Order")
    if is_terminal(OrderStatus(order.status)):
        raise TerminalStateError(f"Order {order.order_number} is {order.status}")
    return order


def _ensure_current(estimate: CostEstimate) -> None:
    if not estimate.is_current:
        raise InvalidStateTransitionError(
            f"Cost estimate v{estimate.version_number} has been superseded"
        )


def _drive_order(order: RepairOrder, target: OrderStatus, actor: Actor, note: str) -> None:
    if order.status == target.value:
        return
    apply_transition(order, target, actor, note)


def _validity_end(start):
    return start + timedelta(days=int(current_app.config["KVA_VALIDITY_DAYS"]))


def _price_fields(order: RepairOrder, fields: dict) -> dict:
    raw_type = fields.get("estimate_type") or EstimateType.FIXED.value
    try:
        estimate_type = EstimateType(str(raw_type).strip().upper())
    except ValueError:
        raise ValidationError(
            f"Invalid estimate_type '{raw_type}'. Must be one of: {', '.join(t.value for t in EstimateType)}"
        )

    labor = to_cents(fields.get("labor", 0), field="labor")
    if fields.get("parts") is None:
        parts = reserved_sale_total_cents(order.id)
    else:
        parts = to_cents(fields["parts"], field="parts")
    min_cents = optional_cents(fields.get("min"), field="min")
    max_cents = optional_cents(fields.get("max"), field="max")

    if estimate_type is EstimateType.UP_TO:
        if max_cents is None:
            raise ValidationError("max is required for an UP_TO estimate")
        total = max_cents
    else:
        total = labor + parts

    if min_cents is not None and max_cents is not None and min_cents > max_cents:
        raise ValidationError("min cannot exceed max")

    return {
        "estimate_type": estimate_type.value,
        "labor_cents": labor,
        "parts_cents": parts,
        "total_cents": total,
        "min_cents": min_cents,
        "max_cents": max_cents,
    }


def create_version(order, fields: dict, actor: Actor) -> CostEstimate:
    """
    Create the next estimate version for an order.

    Args:
        order: RepairOrder instance or id
        fields: estimate_type (FIXED | VARIABLE | UP_TO), labor, parts, min,
            max, fee, diagnosis, repair_description, draft
        actor: Acting user

    Returns:
        The new current CostEstimate

    Raises:
        ValidationError: Bad amounts or type
        TerminalStateError: Order closed
        ConcurrentModificationError: Another version was created concurrently
    """
    require_permission(actor, "MANAGE_ESTIMATES")
    fields = dict(fields or {})
    diagnosis = clean_str(fields.get("diagnosis"), field="diagnosis")
    repair_description = clean_str(fields.get("repair_description"), field="repair_description")
    draft = bool(fields.get("draft"))

    def _op() -> CostEstimate:
        with atomic():
            order_row = _load_order(order)
            prices = _price_fields(order_row, fields)
            fee_cents = to_cents(
                fields["fee"] if fields.get("fee") is not None else current_app.config["KVA_DEFAULT_FEE"],
                field="fee",
            )
            ts = now()

            previous = (
                db.session.query(CostEstimate)
                .filter_by(order_id=order_row.id, is_current=True)
                .first()
            )
            last_number = (
                db.session.query(func.max(CostEstimate.version_number))
                .filter_by(order_id=order_row.id)
                .scalar()
            ) or 0

            if previous is not None:
                previous.is_current = False
                previous.updated_by = actor.id
                _log(previous, ACTION_SUPERSEDED, actor, superseded_by_version=last_number + 1)

            estimate = CostEstimate(
                order_id=order_row.id,
                version_number=last_number + 1,
                parent_id=previous.id if previous is not None else None,
                is_current=True,
                status=(EstimateStatus.DRAFT if draft else EstimateStatus.CREATED).value,
                fee_cents=fee_cents,
                valid_until=_validity_end(ts),
                diagnosis=diagnosis,
                repair_description=repair_description,
                internal_price_cents=prices["total_cents"] if order_row.is_b2b else None,
                created_by=actor.id,
                created_at=ts,
                **prices,
            )

            order_row.requires_estimate = True
            order_row.estimated_price_cents = prices["total_cents"]
            order_row.estimate_approval = None
            order_row.estimate_decided_at = None
            order_row.estimate_fee_due_cents = None
            order_row.disposal_option = None
            order_row.updated_at = ts

            try:
                # Old row must stop being current before the new one is inserted
                db.session.flush()
                db.session.add(estimate)
                db.session.flush()
            except IntegrityError as exc:
                raise ConcurrentModificationError(
                    "Another cost estimate version was created concurrently; reload and retry"
                ) from exc

            _log(
                estimate,
                ACTION_CREATED,
                actor,
                version_number=estimate.version_number,
                estimate_type=estimate.estimate_type,
                total_cents=estimate.total_cents,
            )
            _drive_order(
                order_row,
                OrderStatus.AWAITING_PART_OR_APPROVAL,
                actor,
                f"Cost estimate v{estimate.version_number} created",
            )
            return estimate

    return run_with_retry(_op)


def send(estimate, channel, actor: Actor) -> CostEstimate:
    require_permission(actor, "MANAGE_ESTIMATES")
    channel = _choice(channel, field="channel", allowed=SEND_CHANNELS)

    def _op() -> CostEstimate:
        with atomic():
            est = get_or_404(CostEstimate, estimate, lock=True, label="Cost estimate")
            _ensure_current(est)
            if EstimateStatus(est.status) not in ESTIMATE_SENDABLE:
                raise InvalidStateTransitionError(
                    f"Cost estimate v{est.version_number} is {est.status}; it cannot be sent"
                )
            order_row = _load_order(est.order_id)

            ts = now()
            est.status = EstimateStatus.SENT.value
            est.sent_via = channel
            est.sent_at = ts
            est.valid_until = _validity_end(ts)
            est.updated_by = actor.id
            _log(est, ACTION_SENT, actor, channel=channel)

            _drive_order(
                order_row,
                OrderStatus.AWAITING_PART_OR_APPROVAL,
                actor,
                f"Cost estimate v{est.version_number} sent to customer",
            )
            queue_notification(
                EVENT_ESTIMATE_SENT,
                order_row.id,
                estimate_id=est.id,
                version_number=est.version_number,
                channel=channel,
            )
            return est

    return run_with_retry(_op)


def record_decision(
    estimate,
    approved: bool,
    channel,
    note,
    is_customer: bool,
    actor: Actor,
    disposal_option=None,
) -> CostEstimate:
    """
    Record the customer's answer to a sent estimate.

    Replaying an identical decision (same outcome, channel, note, decider
    and disposal option) returns the estimate unchanged. Any other decision
    on a decided estimate, a decision on a superseded version or on an
    estimate that was never sent raises InvalidStateTransitionError.
    """
    require_permission(actor, "MANAGE_ESTIMATES")
    if not isinstance(approved, bool):
        raise ValidationError("approved must be true or false")
    channel = _choice(channel, field="channel", allowed=DECISION_CHANNELS)
    note = clean_str(note, field="note")
    if disposal_option is not None:
        if approved:
            raise ValidationError("disposal_option only applies to a rejection")
        disposal_option = _choice(disposal_option, field="disposal_option", allowed=DISPOSAL_OPTIONS)
    decision = DECISION_APPROVED if approved else DECISION_REJECTED

    def _op() -> CostEstimate:
        with atomic():
            est = get_or_404(CostEstimate, estimate, lock=True, label="Cost estimate")

            if est.decision is not None:
                replay = (
                    est.decision == decision
                    and est.decision_channel == channel
                    and est.decision_note == note
                    and est.decision_by_customer == bool(is_customer)
                    and est.disposal_option == disposal_option
                )
                if replay:
                    return est
                raise InvalidStateTransitionError(
                    f"Cost estimate v{est.version_number} was already {est.decision.lower()}"
                )

            _ensure_current(est)
            if EstimateStatus(est.status) not in ESTIMATE_DECIDABLE:
                raise InvalidStateTransitionError(
                    f"Cost estimate v{est.version_number} is {est.status}; no decision can be recorded"
                )
            order_row = _load_order(est.order_id)

            ts = now()
            est.decision = decision
            est.status = (EstimateStatus.APPROVED if approved else EstimateStatus.REJECTED).value
            est.decision_at = ts
            est.decision_by_customer = bool(is_customer)
            est.decision_channel = channel
            est.decision_note = note
            est.decision_actor_id = actor.id
            est.disposal_option = disposal_option
            est.updated_by = actor.id

            order_row.estimate_approval = approved
            order_row.estimate_decided_at = ts
            order_row.updated_at = ts

            if approved:
                order_row.estimate_fee_due_cents = None
                order_row.disposal_option = None
                _log(est, ACTION_APPROVED, actor, note, channel=channel, by_customer=bool(is_customer))
                _drive_order(
                    order_row,
                    OrderStatus.REPAIRING,
                    actor,
                    f"Cost estimate v{est.version_number} approved",
                )
                event = EVENT_ESTIMATE_APPROVED
            else:
                order_row.estimate_fee_due_cents = est.fee_cents or None
                order_row.disposal_option = disposal_option
                _log(
                    est,
                    ACTION_REJECTED,
                    actor,
                    note,
                    channel=channel,
                    by_customer=bool(is_customer),
                    disposal_option=disposal_option,
                    fee_cents=est.fee_cents,
                )
                event = EVENT_ESTIMATE_REJECTED

            queue_notification(
                event,
                order_row.id,
                estimate_id=est.id,
                version_number=est.version_number,
                channel=channel,
            )
            return est

    return run_with_retry(_op)


def waive_fee(estimate, reason, actor: Actor) -> CostEstimate:
    """Waive the rejection fee of the current (rejected) version."""
    require_permission(actor, "MANAGE_ESTIMATES")
    reason = clean_str(reason, field="reason")
    if not reason:
        raise MissingReasonError("A reason is required to waive the estimate fee")

    def _op() -> CostEstimate:
        with atomic():
            est = get_or_404(CostEstimate, estimate, lock=True, label="Cost estimate")
            _ensure_current(est)
            if est.decision != DECISION_REJECTED:
                raise InvalidStateTransitionError("Only a rejected cost estimate has a fee to waive")
            if est.fee_waived:
                raise InvalidStateTransitionError("The fee of this cost estimate is already waived")
            order_row = get_or_404(RepairOrder, est.order_id, lock=True, label="Order")

            ts = now()
            est.fee_waived = True
            est.fee_waiver_reason = reason
            est.fee_waived_by = actor.id
            est.fee_waived_at = ts
            est.updated_by = actor.id
            order_row.estimate_fee_due_cents = None
            order_row.updated_at = ts
            _log(est, ACTION_FEE_WAIVED, actor, reason, fee_cents=est.fee_cents)
            return est

    return run_with_retry(_op)


def raise_question(estimate, question, actor: Actor) -> CostEstimate:
    require_permission(actor, "MANAGE_ESTIMATES")
    question = clean_str(question, field="question", required=True)

    def _op() -> CostEstimate:
        with atomic():
            est = get_or_404(CostEstimate, estimate, lock=True, label="Cost estimate")
            _ensure_current(est)
            if EstimateStatus(est.status) not in ESTIMATE_OPEN:
                raise InvalidStateTransitionError(
                    f"Cost estimate v{est.version_number} is {est.status}; questions need a sent estimate"
                )
            est.status = EstimateStatus.QUESTION.value
            est.customer_question = question
            est.staff_answer = None
            est.updated_by = actor.id
            _log(est, ACTION_QUESTION_RAISED, actor, question)
            return est

    return run_with_retry(_op)


def answer_question(estimate, answer, actor: Actor) -> CostEstimate:
    require_permission(actor, "MANAGE_ESTIMATES")
    answer = clean_str(answer, field="answer", required=True)

    def _op() -> CostEstimate:
        with atomic():
            est = get_or_404(CostEstimate, estimate, lock=True, label="Cost estimate")
            _ensure_current(est)
            if est.status != EstimateStatus.QUESTION.value:
                raise InvalidStateTransitionError(
                    f"Cost estimate v{est.version_number} has no open question"
                )
            est.status = EstimateStatus.AWAITING_RESPONSE.value
            est.staff_answer = answer
            est.updated_by = actor.id
            _log(est, ACTION_QUESTION_ANSWERED, actor, answer)
            return est

    return run_with_retry(_op)


def release_end_customer_price(estimate, price, actor: Actor) -> CostEstimate:
    """B2B only: publish the price the partner's end customer will be quoted."""
    require_permission(actor, "MANAGE_ESTIMATES")
    cents = to_cents(price, field="end_customer_price")
    if cents <= 0:
        raise ValidationError("end_customer_price must be greater than zero")

    def _op() -> CostEstimate:
        with atomic():
            est = get_or_404(CostEstimate, estimate, lock=True, label="Cost estimate")
            _ensure_current(est)
            order_row = _load_order(est.order_id)
            if not order_row.is_b2b:
                raise ValidationError("End-customer prices only exist for B2B orders")
            est.end_customer_price_cents = cents
            est.end_customer_price_released = True
            est.updated_by = actor.id
            _log(est, ACTION_PRICE_RELEASED, actor, end_customer_price_cents=cents)
            return est

    return run_with_retry(_op)


def send_due_reminders(as_of=None, actor: Actor = SYSTEM_ACTOR) -> list[CostEstimate]:
    """
    Remind customers about open estimates that expire within the reminder
    window. Each version is reminded at most once; a SENT version moves to
    AWAITING_RESPONSE.
    """
    def _op() -> list[CostEstimate]:
        with atomic():
            ts = as_of or now()
            window_end = ts + timedelta(days=int(current_app.config["KVA_REMINDER_WINDOW_DAYS"]))
            due = (
                db.session.query(CostEstimate)
                .filter(
                    CostEstimate.is_current.is_(True),
                    CostEstimate.status.in_([s.value for s in ESTIMATE_OPEN]),
                    CostEstimate.reminder_sent_at.is_(None),
                    CostEstimate.valid_until.isnot(None),
                    CostEstimate.valid_until > ts,
                    CostEstimate.valid_until <= window_end,
                )
                .order_by(CostEstimate.valid_until.asc(), CostEstimate.id.asc())
                .all()
            )
            for est in due:
                est.reminder_sent_at = ts
                est.status = EstimateStatus.AWAITING_RESPONSE.value
                est.updated_by = actor.id
                _log(est, ACTION_REMINDER_SENT, actor, valid_until=est.valid_until)
                queue_notification(
                    EVENT_ESTIMATE_REMINDER,
                    est.order_id,
                    estimate_id=est.id,
                    version_number=est.version_number,
                    valid_until=est.valid_until.isoformat(),
                )
            if due:
                current_app.logger.info("Sent %d cost estimate reminder(s)", len(due))
            return due

    return run_with_retry(_op)


def expire_overdue(as_of=None, actor: Actor = SYSTEM_ACTOR) -> list[CostEstimate]:
    """Mark undecided estimates past their validity as EXPIRED."""
    def _op() -> list[CostEstimate]:
        with atomic():
            ts = as_of or now()
            overdue = (
                db.session.query(CostEstimate)
                .filter(
                    CostEstimate.status.in_([s.value for s in ESTIMATE_DECIDABLE]),
                    CostEstimate.valid_until.isnot(None),
                    CostEstimate.valid_until < ts,
                )
                .order_by(CostEstimate.id.asc())
                .all()
            )
            for est in overdue:
                est.status = EstimateStatus.EXPIRED.value
                est.expired_at = ts
                est.updated_by = actor.id
                _log(est, ACTION_EXPIRED, actor, valid_until=est.valid_until)
            if overdue:
                current_app.logger.info("Expired %d cost estimate(s)", len(overdue))
            return overdue

    return run_with_retry(_op)


def get_estimate(estimate_id) -> CostEstimate:
    return get_or_404(CostEstimate, estimate_id, label="Cost estimate")


def get_current(order_id: int) -> CostEstimate | None:
    return db.session.query(CostEstimate).filter_by(order_id=order_id, is_current=True).first()


def list_versions(order_id: int) -> list[CostEstimate]:
    return (
        db.session.query(CostEstimate)
        .filter_by(order_id=order_id)
        .order_by(CostEstimate.version_number.asc())
        .all()
    )


def get_history(estimate_id: int) -> list[CostEstimateHistoryEntry]:
    return (
        db.session.query(CostEstimateHistoryEntry)
        .filter_by(estimate_id=estimate_id)
        .order_by(CostEstimateHistoryEntry.id.asc())
        .all()
    )
