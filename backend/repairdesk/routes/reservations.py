# backend/repairdesk/routes/reservations.py
"""
Part usage reservation API routes.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..errors import WorkflowError
from ..extensions import db
from ..services import reservation_service

reservations_bp = Blueprint("reservations", __name__, url_prefix="/api/reservations")


@reservations_bp.route("", methods=["POST"])
@require_actor
def book():
    """
    Book part usage on an order.

    Request body:
    {
        "order_id": int,
        "part_id": int,
        "quantity": int,
        "reason": str (optional)
    }

    Returns:
        201: Reservation (PENDING)
        400: Invalid quantity
        404: Order or part not found
        409: Insufficient stock, closed order or concurrent change
    """
    data = request.get_json(silent=True) or {}

    try:
        reservation = reservation_service.book(
            data.get("order_id"),
            data.get("part_id"),
            data.get("quantity"),
            data.get("reason"),
            g.actor,
        )
        return jsonify(reservation.to_dict()), 201

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to book part usage")
        return jsonify({"error": "Internal server error"}), 500


@reservations_bp.route("", methods=["GET"])
@require_actor
def list_for_order():
    order_id = request.args.get("order_id", type=int)
    if order_id is None:
        return jsonify({"error": "order_id is required"}), 400
    include_removed = (request.args.get("include_removed") or "").lower() in ("1", "true", "yes")
    rows = reservation_service.list_for_order(order_id, include_removed=include_removed)
    return jsonify({"items": [r.to_dict() for r in rows], "count": len(rows)}), 200


@reservations_bp.route("/<int:reservation_id>/approve", methods=["POST"])
@require_actor
def approve(reservation_id: int):
    try:
        reservation = reservation_service.approve(reservation_id, g.actor)
        return jsonify(reservation.to_dict()), 200

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to approve reservation %s", reservation_id)
        return jsonify({"error": "Internal server error"}), 500


@reservations_bp.route("/<int:reservation_id>/reject", methods=["POST"])
@require_actor
def reject(reservation_id: int):
    data = request.get_json(silent=True) or {}

    try:
        reservation = reservation_service.reject(reservation_id, g.actor, data.get("reason"))
        return jsonify(reservation.to_dict()), 200

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reject reservation %s", reservation_id)
        return jsonify({"error": "Internal server error"}), 500


@reservations_bp.route("/<int:reservation_id>", methods=["DELETE"])
@require_actor
def remove(reservation_id: int):
    try:
        reservation = reservation_service.remove(reservation_id, g.actor)
        return jsonify(reservation.to_dict()), 200

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to remove reservation %s", reservation_id)
        return jsonify({"error": "Internal server error"}), 500
