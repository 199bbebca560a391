"""
HTTP API and CLI tests.

Verifies:
- Actor headers are required and validated
- Domain errors map to their HTTP status codes
- Health and ledger endpoints
- Flask CLI commands for locations, estimates and the ledger
"""

from datetime import timedelta

from sqlalchemy import text

from repairdesk.models import Location
from repairdesk.services import estimate_service, reservation_service


class TestActorHeaders:

    def test_missing_actor_is_401(self, client, db_session, location):
        response = client.post('/api/orders', json={"location_id": location.id})
        assert response.status_code == 401

    def test_unknown_role_is_400(self, client, db_session, location):
        response = client.post(
            '/api/orders',
            json={"location_id": location.id},
            headers={"X-Actor-Id": "tech-1", "X-Actor-Role": "admin"},
        )
        assert response.status_code == 400
        assert response.get_json()["type"] == "ValidationError"


class TestOrderRoutes:

    def test_create_order(self, client, location, standard_headers):
        response = client.post(
            '/api/orders',
            json={
                "location_id": location.id,
                "device_manufacturer": "Apple",
                "device_model": "iPhone 13",
                "checklist": ["Display works"],
            },
            headers=standard_headers,
        )

        assert response.status_code == 201
        data = response.get_json()
        assert data["status"] == "RECEIVED"
        assert data["order_number"] == f"R-{location.id:03d}-00001"
        assert [item["label"] for item in data["checklist"]] == ["Display works"]
        assert data["current_estimate"] is None

    def test_unknown_location_is_404(self, client, db_session, standard_headers):
        response = client.post('/api/orders', json={"location_id": 999}, headers=standard_headers)
        assert response.status_code == 404

    def test_backward_without_note_is_400(self, client, order, standard_headers):
        client.post(f'/api/orders/{order.id}/status', json={"status": "REPAIRING"}, headers=standard_headers)

        response = client.post(
            f'/api/orders/{order.id}/status', json={"status": "DIAGNOSING"}, headers=standard_headers
        )

        assert response.status_code == 400
        assert response.get_json()["type"] == "JustificationRequiredError"

    def test_terminal_order_is_409(self, client, order, standard_headers):
        response = client.post(
            f'/api/orders/{order.id}/status', json={"status": "CANCELLED"}, headers=standard_headers
        )
        assert response.status_code == 200

        response = client.post(
            f'/api/orders/{order.id}/status', json={"status": "DIAGNOSING"}, headers=standard_headers
        )
        assert response.status_code == 409

    def test_history(self, client, order, standard_headers):
        client.post(f'/api/orders/{order.id}/status', json={"status": "DIAGNOSING"}, headers=standard_headers)

        response = client.get(f'/api/orders/{order.id}/history', headers=standard_headers)

        assert response.status_code == 200
        assert [h["new_status"] for h in response.get_json()["items"]] == ["RECEIVED", "DIAGNOSING"]


class TestReservationRoutes:

    def test_standard_role_cannot_approve(self, client, order, part, standard, standard_headers):
        reservation = reservation_service.book(order, part, 1, None, standard)

        response = client.post(f'/api/reservations/{reservation.id}/approve', headers=standard_headers)

        assert response.status_code == 403

    def test_book_beyond_stock_is_409(self, client, order, part, standard_headers):
        response = client.post(
            '/api/reservations',
            json={"order_id": order.id, "part_id": part.id, "quantity": 4},
            headers=standard_headers,
        )
        assert response.status_code == 409
        assert response.get_json()["type"] == "InsufficientStockError"


class TestInventoryRoutes:

    def test_submit_lists_unexplained_rows(self, client, location, part, standard_headers):
        response = client.post(
            '/api/inventory-sessions', json={"location_id": location.id}, headers=standard_headers
        )
        assert response.status_code == 201
        session_id = response.get_json()["id"]

        client.post(
            f'/api/inventory-sessions/{session_id}/counts',
            json={"part_id": part.id, "counted_quantity": 1},
            headers=standard_headers,
        )
        response = client.post(f'/api/inventory-sessions/{session_id}/submit', headers=standard_headers)

        assert response.status_code == 400
        data = response.get_json()
        assert data["type"] == "MissingReasonError"
        assert [row["part_id"] for row in data["rows"]] == [part.id]


class TestSystemRoutes:

    def test_health(self, client, db_session):
        response = client.get('/api/health')

        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert set(data["checks"]) == {"database", "stock_ledger"}

    def test_health_degraded_on_ledger_mismatch(self, client, db_session, part):
        db_session.execute(text("UPDATE parts SET on_hand = 7 WHERE id = :id"), {"id": part.id})
        db_session.commit()

        response = client.get('/api/health')

        assert response.status_code == 200
        assert response.get_json()["checks"]["stock_ledger"]["status"] == "degraded"

    def test_ledger_verify_and_movements(self, client, part, standard_headers):
        response = client.get('/api/ledger/verify', headers=standard_headers)
        assert response.get_json() == {"consistent": True, "discrepancies": []}

        response = client.get(f'/api/ledger/movements?part_id={part.id}', headers=standard_headers)
        data = response.get_json()
        assert data["total"] == 1
        assert data["items"][0]["reason"] == "initial-stock"


class TestCli:

    def test_create_and_list_locations(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=['locations', 'create', '--name', 'Munich', '--code', 'muc'])
        assert result.exit_code == 0
        assert "Code: MUC" in result.output
        assert db_session.query(Location).filter_by(code="MUC").count() == 1

        result = runner.invoke(args=['locations', 'create', '--name', 'Munich 2', '--code', 'MUC'])
        assert result.exit_code != 0

        result = runner.invoke(args=['locations', 'list'])
        assert "Munich" in result.output

    def test_ledger_verify_exit_codes(self, app, db_session, part):
        runner = app.test_cli_runner()

        result = runner.invoke(args=['ledger', 'verify'])
        assert result.exit_code == 0
        assert "Ledger consistent" in result.output

        db_session.execute(text("UPDATE parts SET on_hand = 0 WHERE id = :id"), {"id": part.id})
        db_session.commit()

        result = runner.invoke(args=['ledger', 'verify'])
        assert result.exit_code == 1
        assert "DSP-X" in result.output

    def test_expire_as_of(self, app, order, standard, clock):
        estimate = estimate_service.create_version(order, {"labor": "100.00", "parts": "0"}, standard)
        estimate_service.send(estimate, "EMAIL", standard)
        as_of = (clock.current + timedelta(days=15)).isoformat()

        result = app.test_cli_runner().invoke(args=['estimates', 'expire', '--as-of', as_of])

        assert result.exit_code == 0
        assert "Expired 1 estimate(s)" in result.output
        assert estimate_service.get_estimate(estimate.id).status == "EXPIRED"

    def test_bad_as_of(self, app, db_session):
        result = app.test_cli_runner().invoke(args=['estimates', 'send-reminders', '--as-of', 'soon'])
        assert result.exit_code == 2
