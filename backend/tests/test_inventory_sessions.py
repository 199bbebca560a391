"""
Physical inventory session tests.

Verifies:
- Snapshot at start, one open session per location
- Discrepancies need reasons before submit
- Approval posts one correction per discrepancy, all or nothing
"""

import pytest
from sqlalchemy import text

from repairdesk.errors import (
    ConcurrentModificationError,
    InvalidStateTransitionError,
    MissingReasonError,
    PermissionDeniedError,
    PreconditionFailedError,
    ValidationError,
)
from repairdesk.models import Part, StockMovement
from repairdesk.services import inventory_session_service, ledger_service, parts_service
from repairdesk.services.lookup import get_or_404


@pytest.fixture
def shelf(db_session, location, privileged):
    """Two counted parts at the location."""
    return [
        parts_service.create_part(
            location, privileged, sku="BAT-13", name="Battery 13", purchase_price="12.50", initial_stock=10
        ),
        parts_service.create_part(
            location, privileged, sku="CAM-13", name="Camera 13", purchase_price="30.00", initial_stock=4
        ),
    ]


def _corrections(db_session, session_id):
    return (
        db_session.query(StockMovement)
        .filter_by(inventory_session_id=session_id)
        .order_by(StockMovement.id)
        .all()
    )


class TestStartSession:

    def test_snapshot_of_active_parts(self, shelf, location, standard, privileged):
        parts_service.update_part(shelf[1], privileged, is_active=False)

        session = inventory_session_service.start_session(location, standard, "Quarterly count")

        assert session.status == "IN_PROGRESS"
        assert session.session_number == f"INV-{location.id:03d}-00001"
        rows = list(session.counts)
        assert [(r.part_id, r.expected_quantity, r.counted_quantity) for r in rows] == [
            (shelf[0].id, 10, 10),
        ]
        assert rows[0].unit_value_cents == 1250

    def test_one_open_session_per_location(self, shelf, location, other_location, standard):
        inventory_session_service.start_session(location, standard)

        with pytest.raises(PreconditionFailedError):
            inventory_session_service.start_session(location, standard)

        elsewhere = inventory_session_service.start_session(other_location, standard)
        assert elsewhere.status == "IN_PROGRESS"


class TestCountsAndSubmit:

    def test_discrepancy_needs_reason_then_approval_corrects_stock(self, db_session, shelf, location, standard, privileged):
        """Expected 10, counted 8: submit refuses until explained, approval books -2."""
        battery = shelf[0]
        session = inventory_session_service.start_session(location, standard)
        inventory_session_service.record_count(session, battery, 8, standard)

        with pytest.raises(MissingReasonError) as exc:
            inventory_session_service.submit(session, standard)
        assert [r["part_id"] for r in exc.value.rows] == [battery.id]
        assert inventory_session_service.get_session(session.id).status == "IN_PROGRESS"

        inventory_session_service.record_count(session, battery, 8, standard, reason="damaged stock found")
        session = inventory_session_service.submit(session, standard)

        assert session.status == "PENDING_APPROVAL"
        assert session.total_items_counted == 2
        assert session.total_discrepancies == 1
        assert session.total_value_difference_cents == -2500

        session = inventory_session_service.approve(session, privileged)

        assert session.status == "APPROVED"
        corrections = _corrections(db_session, session.id)
        assert [(m.quantity_delta, m.reason) for m in corrections] == [(-2, "inventory-correction")]
        assert get_or_404(Part, battery.id).on_hand == 8
        assert get_or_404(Part, shelf[1].id).on_hand == 4
        row = inventory_session_service.get_count_row(session.id, battery.id)
        assert row.movement_id == corrections[0].id
        assert ledger_service.verify_ledger() == []

    def test_count_for_part_created_after_snapshot(self, shelf, location, standard, privileged):
        session = inventory_session_service.start_session(location, standard)
        late = parts_service.create_part(location, privileged, sku="LATE", name="Late arrival", initial_stock=2)

        row = inventory_session_service.record_count(session, late, 2, standard)

        assert row.expected_quantity == 2
        assert len(inventory_session_service.get_session(session.id).counts) == 3

    def test_part_from_other_location(self, shelf, location, other_location, standard, privileged):
        foreign = parts_service.create_part(other_location, privileged, sku="FOREIGN", name="Elsewhere")
        session = inventory_session_service.start_session(location, standard)

        with pytest.raises(ValidationError):
            inventory_session_service.record_count(session, foreign, 1, standard)

    def test_negative_count(self, shelf, location, standard):
        session = inventory_session_service.start_session(location, standard)
        with pytest.raises(ValidationError):
            inventory_session_service.record_count(session, shelf[0], -1, standard)

    def test_empty_session_cannot_be_submitted(self, db_session, location, standard):
        session = inventory_session_service.start_session(location, standard)
        with pytest.raises(ValidationError):
            inventory_session_service.submit(session, standard)

    def test_no_counts_after_submit(self, shelf, location, standard):
        session = inventory_session_service.start_session(location, standard)
        inventory_session_service.submit(session, standard)

        with pytest.raises(InvalidStateTransitionError):
            inventory_session_service.record_count(session, shelf[0], 9, standard, reason="late")


class TestApproval:

    def test_standard_role_cannot_approve(self, shelf, location, standard):
        session = inventory_session_service.start_session(location, standard)
        inventory_session_service.submit(session, standard)

        with pytest.raises(PermissionDeniedError):
            inventory_session_service.approve(session, standard)

    def test_correction_uses_snapshot_difference(self, db_session, shelf, location, standard, privileged):
        """Stock used during counting is not counted twice."""
        battery = shelf[0]
        session = inventory_session_service.start_session(location, standard)
        inventory_session_service.record_count(session, battery, 9, standard, reason="one missing")
        inventory_session_service.submit(session, standard)
        parts_service.take_out(battery, 3, privileged, reason_text="sent to partner")

        inventory_session_service.approve(session, privileged)

        assert [m.quantity_delta for m in _corrections(db_session, session.id)] == [-1]
        assert get_or_404(Part, battery.id).on_hand == 6

    def test_approval_is_all_or_nothing(self, db_session, shelf, location, standard, privileged):
        battery, camera = shelf
        session = inventory_session_service.start_session(location, standard)
        inventory_session_service.record_count(session, battery, 7, standard, reason="broken")
        inventory_session_service.record_count(session, camera, 5, standard, reason="found in drawer")
        inventory_session_service.submit(session, standard)

        camera_id = camera.id
        camera.version_id  # load before the other writer
        db_session.execute(
            text("UPDATE parts SET version_id = version_id + 1 WHERE id = :id"), {"id": camera_id}
        )

        with pytest.raises(ConcurrentModificationError):
            inventory_session_service.approve(session, privileged)

        db_session.expire_all()
        assert _corrections(db_session, session.id) == []
        assert get_or_404(Part, battery.id).on_hand == 10
        assert get_or_404(Part, camera_id).on_hand == 4
        assert inventory_session_service.get_session(session.id).status == "PENDING_APPROVAL"

    def test_reject_needs_reason_and_changes_nothing(self, db_session, shelf, location, standard, privileged):
        session = inventory_session_service.start_session(location, standard)
        inventory_session_service.record_count(session, shelf[0], 1, standard, reason="??")
        inventory_session_service.submit(session, standard)

        with pytest.raises(MissingReasonError):
            inventory_session_service.reject(session, privileged, None)

        session = inventory_session_service.reject(session, privileged, "recount the battery shelf")

        assert session.status == "REJECTED"
        assert _corrections(db_session, session.id) == []
        assert get_or_404(Part, shelf[0].id).on_hand == 10

    def test_closed_session_frees_the_location(self, shelf, location, standard, privileged):
        session = inventory_session_service.start_session(location, standard)
        inventory_session_service.submit(session, standard)
        inventory_session_service.reject(session, privileged, "start over")

        again = inventory_session_service.start_session(location, standard)
        assert again.session_number == f"INV-{location.id:03d}-00002"
