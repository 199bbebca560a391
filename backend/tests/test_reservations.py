"""
Part usage reservation tests.

Verifies:
- Booking takes stock out through the ledger, rejection puts it back
- Stock boundary at exactly on_hand
- PENDING-only approve/reject and role checks
- Removal never restores stock twice
- Candidate part lookup by device scope
"""

import pytest
from sqlalchemy import text

from repairdesk.errors import (
    ConcurrentModificationError,
    InsufficientStockError,
    InvalidStateTransitionError,
    MissingReasonError,
    PermissionDeniedError,
    TerminalStateError,
    ValidationError,
)
from repairdesk.models import Part, StockMovement
from repairdesk.services import ledger_service, order_service, parts_service, reservation_service
from repairdesk.services.lookup import get_or_404
from repairdesk.workflow import OrderStatus


def _deltas(db_session, part_id):
    return [
        m.quantity_delta
        for m in db_session.query(StockMovement).filter_by(part_id=part_id).order_by(StockMovement.id)
    ]


def _on_hand(part_id):
    return get_or_404(Part, part_id).on_hand


# =============================================================================
# BOOK / REJECT
# =============================================================================


class TestBookAndReject:

    def test_book_then_reject_restores_stock(self, db_session, order, part, standard, privileged):
        """Display-X: 3 on hand, book 3, reject -> back to 3 with [-3, +3] in the ledger."""
        reservation = reservation_service.book(order, part, 3, None, standard)

        assert reservation.status == "PENDING"
        assert _on_hand(part.id) == 0

        reservation = reservation_service.reject(reservation, privileged, "wrong part")

        assert reservation.status == "REJECTED"
        assert reservation.rejection_reason == "wrong part"
        assert _on_hand(part.id) == 3
        assert _deltas(db_session, part.id) == [3, -3, 3]
        assert ledger_service.verify_ledger(part.id) == []

    def test_booking_snapshots_prices(self, order, part, standard, privileged):
        reservation = reservation_service.book(order, part, 1, "screen swap", standard)
        parts_service.update_part(part, privileged, sale_price="120.00")

        reservation = reservation_service.list_for_order(order.id)[0]
        assert reservation.unit_sale_cents == 8990
        assert reservation.unit_purchase_cents == 4000
        assert reservation_service.reserved_sale_total_cents(order.id) == 8990

    def test_movement_links_order_and_reservation(self, db_session, order, part, standard):
        reservation = reservation_service.book(order, part, 2, None, standard)

        movement = (
            db_session.query(StockMovement)
            .filter_by(reservation_id=reservation.id)
            .one()
        )
        assert movement.reason == "consumption"
        assert movement.order_id == order.id
        assert movement.stock_before == 3
        assert movement.balance_after == 1

    def test_reject_needs_reason(self, order, part, standard, privileged):
        reservation = reservation_service.book(order, part, 1, None, standard)
        with pytest.raises(MissingReasonError):
            reservation_service.reject(reservation, privileged, "")
        assert _on_hand(part.id) == 2


class TestStockBoundary:

    def test_exactly_on_hand_is_allowed(self, order, part, standard):
        reservation_service.book(order, part, 3, None, standard)
        assert _on_hand(part.id) == 0

    def test_one_more_than_on_hand_fails(self, db_session, order, part, standard):
        with pytest.raises(InsufficientStockError) as exc:
            reservation_service.book(order, part, 4, None, standard)

        assert exc.value.requested == 4
        assert exc.value.available == 3
        assert _on_hand(part.id) == 3
        assert reservation_service.list_for_order(order.id) == []

    @pytest.mark.parametrize("quantity", [0, -1, "2.5", True, None])
    def test_quantity_must_be_positive_integer(self, order, part, standard, quantity):
        with pytest.raises(ValidationError):
            reservation_service.book(order, part, quantity, None, standard)

    def test_closed_order(self, order, part, standard):
        order_service.transition(order, OrderStatus.CANCELLED, standard)
        with pytest.raises(TerminalStateError):
            reservation_service.book(order, part, 1, None, standard)

    def test_inactive_part(self, order, part, standard, privileged):
        parts_service.update_part(part, privileged, is_active=False)
        with pytest.raises(ValidationError):
            reservation_service.book(order, part, 1, None, standard)


# =============================================================================
# APPROVAL
# =============================================================================


class TestApproval:

    def test_approve_leaves_stock_alone(self, db_session, order, part, standard, privileged):
        reservation = reservation_service.book(order, part, 1, None, standard)
        reservation = reservation_service.approve(reservation, privileged)

        assert reservation.status == "APPROVED"
        assert reservation.decided_by == "manager-1"
        assert _on_hand(part.id) == 2
        assert _deltas(db_session, part.id) == [3, -1]

    def test_standard_role_cannot_approve(self, order, part, standard):
        reservation = reservation_service.book(order, part, 1, None, standard)
        with pytest.raises(PermissionDeniedError):
            reservation_service.approve(reservation, standard)

    def test_second_decision_fails_cleanly(self, order, part, standard, privileged):
        reservation = reservation_service.book(order, part, 1, None, standard)
        reservation_service.approve(reservation, privileged)

        with pytest.raises(InvalidStateTransitionError):
            reservation_service.reject(reservation, privileged, "changed my mind")
        with pytest.raises(InvalidStateTransitionError):
            reservation_service.approve(reservation, privileged)
        assert _on_hand(part.id) == 2


# =============================================================================
# REMOVAL
# =============================================================================


class TestRemoval:

    def test_remove_pending_restores_stock(self, order, part, standard):
        reservation = reservation_service.book(order, part, 2, None, standard)
        reservation = reservation_service.remove(reservation, standard)

        assert reservation.status == "REMOVED"
        assert _on_hand(part.id) == 3
        assert reservation_service.list_for_order(order.id) == []
        assert len(reservation_service.list_for_order(order.id, include_removed=True)) == 1

    def test_remove_approved_needs_privilege(self, order, part, standard, privileged):
        reservation = reservation_service.book(order, part, 2, None, standard)
        reservation_service.approve(reservation, privileged)

        with pytest.raises(PermissionDeniedError):
            reservation_service.remove(reservation, standard)

        reservation_service.remove(reservation, privileged)
        assert _on_hand(part.id) == 3

    def test_remove_rejected_does_not_restore_twice(self, db_session, order, part, standard, privileged):
        reservation = reservation_service.book(order, part, 2, None, standard)
        reservation_service.reject(reservation, privileged, "wrong colour")
        reservation_service.remove(reservation, standard)

        assert _on_hand(part.id) == 3
        assert _deltas(db_session, part.id) == [3, -2, 2]
        assert ledger_service.verify_ledger() == []

    def test_remove_twice(self, order, part, standard):
        reservation = reservation_service.book(order, part, 1, None, standard)
        reservation_service.remove(reservation, standard)
        with pytest.raises(InvalidStateTransitionError):
            reservation_service.remove(reservation, standard)


# =============================================================================
# CANDIDATES
# =============================================================================


class TestCandidateParts:

    @pytest.fixture
    def catalog(self, db_session, location, privileged, part):
        battery = parts_service.create_part(
            location, privileged, sku="BAT-APL", name="Battery", manufacturer="apple", initial_stock=0
        )
        other_model = parts_service.create_part(
            location, privileged, sku="DSP-14", name="Display 14",
            manufacturer="Apple", device_model="iPhone 14", initial_stock=2,
        )
        screws = parts_service.create_part(
            location, privileged, sku="SCR-01", name="Screw set", initial_stock=50
        )
        return {"display": part, "battery": battery, "other_model": other_model, "screws": screws}

    def test_groups_by_scope(self, catalog):
        groups = reservation_service.find_candidate_parts("APPLE", "iphone 13")

        assert [p.id for p in groups["model"]] == [catalog["display"].id]
        assert [p.id for p in groups["manufacturer"]] == [catalog["battery"].id]
        assert [p.id for p in groups["generic"]] == [catalog["screws"].id]

    def test_only_available(self, catalog):
        groups = reservation_service.find_candidate_parts("Apple", "iPhone 13", only_available=True)
        assert groups["manufacturer"] == []

    def test_search_filters_all_groups(self, catalog):
        groups = reservation_service.find_candidate_parts("Apple", "iPhone 13", search="scr")
        assert groups["model"] == []
        assert [p.sku for p in groups["generic"]] == ["SCR-01"]

    def test_unknown_device_gets_generic_only(self, catalog):
        groups = reservation_service.find_candidate_parts(None, None)
        assert groups["model"] == []
        assert groups["manufacturer"] == []
        assert [p.sku for p in groups["generic"]] == ["SCR-01"]


# =============================================================================
# CLOSED ORDERS AND CONCURRENCY
# =============================================================================


class TestClosedOrder:

    def test_reject_on_closed_order_is_refused(self, order, part, standard, privileged):
        reservation = reservation_service.book(order, part, 2, None, standard)
        order_service.transition(order, OrderStatus.CANCELLED, standard)

        with pytest.raises(TerminalStateError):
            reservation_service.reject(reservation, privileged, "order cancelled")

        assert reservation_service.list_for_order(order.id)[0].status == "PENDING"
        assert _on_hand(part.id) == 1

    def test_remove_on_closed_order_is_refused(self, db_session, order, part, standard, privileged):
        reservation = reservation_service.book(order, part, 1, None, standard)
        reservation_service.approve(reservation, privileged)
        order_service.transition(order, OrderStatus.CANCELLED, standard)

        with pytest.raises(TerminalStateError):
            reservation_service.remove(reservation, privileged)

        assert _deltas(db_session, part.id) == [3, -1]


class TestConcurrentBooking:

    def test_stale_part_version_books_nothing(self, db_session, order, part, standard):
        part_id = part.id
        part.version_id  # load before the other writer
        db_session.execute(
            text("UPDATE parts SET version_id = version_id + 1 WHERE id = :id"), {"id": part_id}
        )

        with pytest.raises(ConcurrentModificationError):
            reservation_service.book(order, part, 2, None, standard)

        db_session.expire_all()
        assert _on_hand(part_id) == 3
        assert reservation_service.list_for_order(order.id, include_removed=True) == []
        assert _deltas(db_session, part_id) == [3]
        assert ledger_service.verify_ledger() == []

        # Reloading and retrying goes through
        reservation_service.book(order, part_id, 2, None, standard)
        assert _on_hand(part_id) == 1
        assert ledger_service.verify_ledger() == []
