"""
Cost estimate (KVA) tests.

Verifies:
- Versioning keeps exactly one current estimate per order
- Order coupling (estimated price, approval gate, status moves)
- Decision idempotence and conflict detection
- Fee waivers scoped to one version
- Reminders and expiry against a pinned clock
"""

from datetime import timedelta

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from repairdesk.errors import (
    ConcurrentModificationError,
    InvalidStateTransitionError,
    MissingReasonError,
    TerminalStateError,
    ValidationError,
)
from repairdesk.models import CostEstimate
from repairdesk.notifications import (
    EVENT_AWAITING_APPROVAL,
    EVENT_ESTIMATE_APPROVED,
    EVENT_ESTIMATE_REMINDER,
    EVENT_ESTIMATE_SENT,
)
from repairdesk.services import estimate_service, order_service, reservation_service
from repairdesk.workflow import OrderStatus


def _sent_estimate(order, actor, **fields):
    fields.setdefault("labor", "100.00")
    fields.setdefault("parts", "0")
    est = estimate_service.create_version(order, fields, actor)
    return estimate_service.send(est, "EMAIL", actor)


def _current_count(db_session, order_id):
    return db_session.query(CostEstimate).filter_by(order_id=order_id, is_current=True).count()


# =============================================================================
# VERSIONING
# =============================================================================


class TestVersions:

    def test_first_version_couples_the_order(self, order, standard):
        est = estimate_service.create_version(order, {"labor": "100.00", "parts": "0"}, standard)

        assert est.version_number == 1
        assert est.is_current is True
        assert est.status == "CREATED"
        assert est.total_cents == 10000

        refreshed = order_service.get_order(order.id)
        assert refreshed.estimated_price_cents == 10000
        assert refreshed.requires_estimate is True
        assert refreshed.status == OrderStatus.AWAITING_PART_OR_APPROVAL.value

    def test_new_version_supersedes_current(self, db_session, order, standard):
        v1 = estimate_service.create_version(order, {"labor": "100.00", "parts": "0"}, standard)
        v2 = estimate_service.create_version(order, {"labor": "150.00", "parts": "0"}, standard)

        v1 = estimate_service.get_estimate(v1.id)
        assert v1.is_current is False
        assert v2.is_current is True
        assert v2.version_number == 2
        assert v2.parent_id == v1.id
        assert order_service.get_order(order.id).estimated_price_cents == 15000
        assert _current_count(db_session, order.id) == 1

        actions = [h.action for h in estimate_service.get_history(v1.id)]
        assert actions == ["CREATED", "SUPERSEDED"]

    def test_exactly_one_current_after_many_versions(self, db_session, order, standard):
        for labor in ("10", "20", "30", "40"):
            estimate_service.create_version(order, {"labor": labor, "parts": "0"}, standard)

        assert _current_count(db_session, order.id) == 1
        assert estimate_service.get_current(order.id).version_number == 4
        assert [v.version_number for v in estimate_service.list_versions(order.id)] == [1, 2, 3, 4]

    def test_database_refuses_second_current_row(self, db_session, order, standard):
        estimate_service.create_version(order, {"labor": "10", "parts": "0"}, standard)

        db_session.add(CostEstimate(
            order_id=order.id,
            version_number=99,
            is_current=True,
            estimate_type="FIXED",
            status="CREATED",
            created_by="tech-1",
        ))
        with pytest.raises(IntegrityError):
            db_session.flush()
        db_session.rollback()

    def test_parts_default_to_booked_usage(self, order, part, standard):
        reservation_service.book(order, part, 1, None, standard)

        est = estimate_service.create_version(order, {"labor": "50.00"}, standard)

        assert est.parts_cents == 8990
        assert est.total_cents == 13990

    def test_up_to_requires_max(self, order, standard):
        with pytest.raises(ValidationError):
            estimate_service.create_version(order, {"estimate_type": "UP_TO"}, standard)

        est = estimate_service.create_version(order, {"estimate_type": "up_to", "max": "250"}, standard)
        assert est.estimate_type == "UP_TO"
        assert est.total_cents == 25000

    def test_min_above_max(self, order, standard):
        with pytest.raises(ValidationError):
            estimate_service.create_version(
                order, {"estimate_type": "VARIABLE", "min": "300", "max": "200"}, standard
            )

    def test_draft_version(self, order, standard):
        est = estimate_service.create_version(order, {"labor": "10", "draft": True}, standard)
        assert est.status == "DRAFT"

    def test_default_fee_and_validity(self, order, standard, clock):
        est = estimate_service.create_version(order, {"labor": "10"}, standard)

        assert est.fee_cents == 3500
        assert est.valid_until == clock.current + timedelta(days=14)

    def test_closed_order(self, order, standard):
        order_service.transition(order, OrderStatus.CANCELLED, standard)
        with pytest.raises(TerminalStateError):
            estimate_service.create_version(order, {"labor": "10"}, standard)

    def test_estimate_on_repairing_order_moves_it_back(self, order, standard):
        order_service.transition(order, OrderStatus.REPAIRING, standard)

        estimate_service.create_version(order, {"labor": "80"}, standard)

        assert order_service.get_order(order.id).status == "AWAITING_PART_OR_APPROVAL"
        last = order_service.get_history(order.id)[-1]
        assert last.note == "Cost estimate v1 created"
        assert order_service.replay_history(order.id) is True

    def test_concurrent_order_change_aborts_version(self, db_session, order, standard):
        order.version_id  # load before the other writer
        db_session.execute(
            text("UPDATE repair_orders SET version_id = version_id + 1 WHERE id = :id"),
            {"id": order.id},
        )

        with pytest.raises(ConcurrentModificationError):
            estimate_service.create_version(order, {"labor": "10"}, standard)

        assert estimate_service.list_versions(order.id) == []


# =============================================================================
# DECISIONS
# =============================================================================


class TestDecisions:

    def test_approval_starts_repair(self, order, standard, sink):
        est = _sent_estimate(order, standard)
        assert sink.types == [EVENT_AWAITING_APPROVAL, EVENT_ESTIMATE_SENT]

        est = estimate_service.record_decision(est, True, "PHONE", "go ahead", True, standard)

        assert est.status == "APPROVED"
        assert est.decision_channel == "PHONE"
        refreshed = order_service.get_order(order.id)
        assert refreshed.estimate_approval is True
        assert refreshed.status == "REPAIRING"
        assert sink.types[-1] == EVENT_ESTIMATE_APPROVED

    def test_same_decision_twice_is_a_no_op(self, order, standard):
        est = _sent_estimate(order, standard)
        estimate_service.record_decision(est, True, "PHONE", "go ahead", True, standard)
        history_before = len(estimate_service.get_history(est.id))

        again = estimate_service.record_decision(est.id, True, "phone", "go ahead", True, standard)

        assert again.status == "APPROVED"
        assert len(estimate_service.get_history(est.id)) == history_before

    def test_conflicting_decision_is_refused(self, order, standard):
        est = _sent_estimate(order, standard)
        estimate_service.record_decision(est, True, "PHONE", None, True, standard)

        with pytest.raises(InvalidStateTransitionError):
            estimate_service.record_decision(est, False, "PHONE", None, True, standard)
        assert estimate_service.get_estimate(est.id).decision == "APPROVED"

    def test_replay_by_other_decider_is_refused(self, order, standard):
        est = _sent_estimate(order, standard)
        estimate_service.record_decision(est, True, "PHONE", None, True, standard)

        with pytest.raises(InvalidStateTransitionError):
            estimate_service.record_decision(est, True, "PHONE", None, False, standard)
        assert estimate_service.get_estimate(est.id).decision_by_customer is True

    def test_replay_with_other_disposal_is_refused(self, order, standard):
        est = _sent_estimate(order, standard)
        estimate_service.record_decision(
            est, False, "PHONE", None, True, standard, disposal_option="RETURN_DEVICE"
        )

        with pytest.raises(InvalidStateTransitionError):
            estimate_service.record_decision(
                est, False, "PHONE", None, True, standard, disposal_option="DISPOSE_FREE"
            )
        assert order_service.get_order(order.id).disposal_option == "RETURN_DEVICE"

    def test_concurrent_estimate_change_records_nothing(self, db_session, order, standard, sink):
        est = _sent_estimate(order, standard)
        est_id = est.id
        est.version_id  # load before the other writer
        db_session.execute(
            text("UPDATE cost_estimates SET version_id = version_id + 1 WHERE id = :id"),
            {"id": est_id},
        )
        events_before = list(sink.types)

        with pytest.raises(ConcurrentModificationError):
            estimate_service.record_decision(est, True, "PHONE", None, True, standard)

        db_session.expire_all()
        fresh = estimate_service.get_estimate(est_id)
        assert fresh.decision is None
        assert fresh.status == "SENT"
        refreshed = order_service.get_order(order.id)
        assert refreshed.estimate_approval is None
        assert refreshed.status == "AWAITING_PART_OR_APPROVAL"
        assert sink.types == events_before

        # Reloading and retrying goes through
        est = estimate_service.record_decision(est_id, True, "PHONE", None, True, standard)
        assert est.status == "APPROVED"
        assert order_service.get_order(order.id).status == "REPAIRING"

    def test_unsent_estimate_cannot_be_decided(self, order, standard):
        est = estimate_service.create_version(order, {"labor": "10"}, standard)
        with pytest.raises(InvalidStateTransitionError):
            estimate_service.record_decision(est, True, "PHONE", None, True, standard)

    def test_superseded_version_cannot_be_decided(self, order, standard):
        v1 = _sent_estimate(order, standard)
        estimate_service.create_version(order, {"labor": "120"}, standard)

        with pytest.raises(InvalidStateTransitionError):
            estimate_service.record_decision(v1, True, "PHONE", None, True, standard)

    def test_unknown_channel(self, order, standard):
        est = _sent_estimate(order, standard)
        with pytest.raises(ValidationError):
            estimate_service.record_decision(est, True, "PIGEON", None, True, standard)

    def test_rejection_makes_fee_due(self, order, standard):
        est = _sent_estimate(order, standard, fee="25.00")

        est = estimate_service.record_decision(
            est, False, "ONLINE", "too expensive", True, standard, disposal_option="return_device"
        )

        assert est.status == "REJECTED"
        refreshed = order_service.get_order(order.id)
        assert refreshed.estimate_approval is False
        assert refreshed.estimate_fee_due_cents == 2500
        assert refreshed.disposal_option == "RETURN_DEVICE"
        assert refreshed.status == "AWAITING_PART_OR_APPROVAL"

    def test_disposal_option_only_on_rejection(self, order, standard):
        est = _sent_estimate(order, standard)
        with pytest.raises(ValidationError):
            estimate_service.record_decision(
                est, True, "ONLINE", None, True, standard, disposal_option="DISPOSE_FREE"
            )

    def test_question_round_trip(self, order, standard):
        est = _sent_estimate(order, standard)

        est = estimate_service.raise_question(est, "Does this include the battery?", standard)
        assert est.status == "QUESTION"

        est = estimate_service.answer_question(est, "No, battery is separate.", standard)
        assert est.status == "AWAITING_RESPONSE"
        assert est.staff_answer == "No, battery is separate."

        est = estimate_service.record_decision(est, True, "EMAIL", None, True, standard)
        assert est.status == "APPROVED"

    def test_answer_without_question(self, order, standard):
        est = _sent_estimate(order, standard)
        with pytest.raises(InvalidStateTransitionError):
            estimate_service.answer_question(est, "Nothing asked", standard)


# =============================================================================
# FEES
# =============================================================================


class TestFeeWaiver:

    def test_waiver_clears_fee_due(self, order, standard):
        est = _sent_estimate(order, standard)
        estimate_service.record_decision(est, False, "PHONE", None, True, standard)

        est = estimate_service.waive_fee(est, "regular customer", standard)

        assert est.fee_waived is True
        assert est.fee_waived_by == "tech-1"
        assert order_service.get_order(order.id).estimate_fee_due_cents is None

    def test_waiver_needs_reason(self, order, standard):
        est = _sent_estimate(order, standard)
        estimate_service.record_decision(est, False, "PHONE", None, True, standard)
        with pytest.raises(MissingReasonError):
            estimate_service.waive_fee(est, "  ", standard)

    def test_waiver_needs_rejection(self, order, standard):
        est = _sent_estimate(order, standard)
        with pytest.raises(InvalidStateTransitionError):
            estimate_service.waive_fee(est, "goodwill", standard)

    def test_waiver_does_not_carry_to_new_version(self, order, standard):
        v1 = _sent_estimate(order, standard)
        estimate_service.record_decision(v1, False, "PHONE", None, True, standard)
        estimate_service.waive_fee(v1, "goodwill", standard)

        v2 = estimate_service.create_version(order, {"labor": "60"}, standard)

        assert v2.fee_waived is False
        assert estimate_service.get_estimate(v1.id).fee_waived is True
        refreshed = order_service.get_order(order.id)
        assert refreshed.estimate_fee_due_cents is None
        assert refreshed.estimate_approval is None


# =============================================================================
# B2B
# =============================================================================


class TestB2BPricing:

    def test_internal_price_and_release(self, b2b_order, standard):
        est = estimate_service.create_version(b2b_order, {"labor": "120"}, standard)
        assert est.internal_price_cents == 12000
        assert est.end_customer_price_released is False

        est = estimate_service.release_end_customer_price(est, "199.00", standard)
        assert est.end_customer_price_cents == 19900
        assert est.end_customer_price_released is True
        assert est.to_dict()["end_customer_price"] == "199.00"

    def test_release_only_for_b2b(self, order, standard):
        est = estimate_service.create_version(order, {"labor": "120"}, standard)
        assert est.internal_price_cents is None
        with pytest.raises(ValidationError):
            estimate_service.release_end_customer_price(est, "199.00", standard)


# =============================================================================
# SCHEDULED JOBS
# =============================================================================


class TestReminderAndExpiry:

    def test_reminder_sent_once_inside_window(self, order, standard, clock, sink):
        est = _sent_estimate(order, standard)
        start = clock.current

        assert estimate_service.send_due_reminders(as_of=start + timedelta(days=5)) == []

        reminded = estimate_service.send_due_reminders(as_of=start + timedelta(days=12))
        assert [r.id for r in reminded] == [est.id]
        assert estimate_service.get_estimate(est.id).status == "AWAITING_RESPONSE"
        assert sink.types[-1] == EVENT_ESTIMATE_REMINDER

        assert estimate_service.send_due_reminders(as_of=start + timedelta(days=13)) == []

    def test_overdue_estimate_expires(self, order, standard, clock):
        est = _sent_estimate(order, standard)

        expired = estimate_service.expire_overdue(as_of=clock.current + timedelta(days=15))

        assert [e.id for e in expired] == [est.id]
        est = estimate_service.get_estimate(est.id)
        assert est.status == "EXPIRED"
        with pytest.raises(InvalidStateTransitionError):
            estimate_service.record_decision(est, True, "PHONE", None, True, standard)

    def test_decided_estimate_never_expires(self, order, standard, clock):
        est = _sent_estimate(order, standard)
        estimate_service.record_decision(est, True, "PHONE", None, True, standard)

        assert estimate_service.expire_overdue(as_of=clock.current + timedelta(days=30)) == []
        assert estimate_service.get_estimate(est.id).status == "APPROVED"

    def test_expiry_uses_the_clock_by_default(self, order, standard, clock):
        est = _sent_estimate(order, standard)
        clock.advance(days=15)

        expired = estimate_service.expire_overdue()

        assert [e.id for e in expired] == [est.id]
