# backend/repairdesk/routes/inventory_sessions.py
"""
Physical inventory session API routes.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..errors import WorkflowError
from ..extensions import db
from ..services import inventory_session_service

inventory_sessions_bp = Blueprint("inventory_sessions", __name__, url_prefix="/api/inventory-sessions")


@inventory_sessions_bp.route("", methods=["POST"])
@require_actor
def start_session():
    """
    Start a count for a location.

    Request body:
    {
        "location_id": int,
        "notes": str (optional)
    }

    Returns:
        201: Session with its snapshot rows
        404: Location not found
        409: Location already has an open session
    """
    data = request.get_json(silent=True) or {}

    try:
        session = inventory_session_service.start_session(data.get("location_id"), g.actor, data.get("notes"))
        return jsonify(session.to_dict(include_counts=True)), 201

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to start inventory session")
        return jsonify({"error": "Internal server error"}), 500


@inventory_sessions_bp.route("", methods=["GET"])
@require_actor
def list_sessions():
    try:
        sessions = inventory_session_service.list_sessions(
            request.args.get("location_id", type=int),
            request.args.get("status"),
        )
        return jsonify({"items": [s.to_dict() for s in sessions], "count": len(sessions)}), 200
    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_sessions_bp.route("/<int:session_id>", methods=["GET"])
@require_actor
def get_session(session_id: int):
    try:
        session = inventory_session_service.get_session(session_id)
        return jsonify(session.to_dict(include_counts=True)), 200
    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_sessions_bp.route("/<int:session_id>/counts", methods=["POST"])
@require_actor
def record_count(session_id: int):
    """
    Request body:
    {
        "part_id": int,
        "counted_quantity": int,
        "reason": str (required at submit time when counted != expected)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        row = inventory_session_service.record_count(
            session_id,
            data.get("part_id"),
            data.get("counted_quantity"),
            g.actor,
            reason=data.get("reason"),
        )
        return jsonify(row.to_dict()), 200

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record count on inventory session %s", session_id)
        return jsonify({"error": "Internal server error"}), 500


@inventory_sessions_bp.route("/<int:session_id>/submit", methods=["POST"])
@require_actor
def submit(session_id: int):
    try:
        session = inventory_session_service.submit(session_id, g.actor)
        return jsonify(session.to_dict()), 200

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to submit inventory session %s", session_id)
        return jsonify({"error": "Internal server error"}), 500


@inventory_sessions_bp.route("/<int:session_id>/approve", methods=["POST"])
@require_actor
def approve(session_id: int):
    try:
        session = inventory_session_service.approve(session_id, g.actor)
        return jsonify(session.to_dict(include_counts=True)), 200

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to approve inventory session %s", session_id)
        return jsonify({"error": "Internal server error"}), 500


@inventory_sessions_bp.route("/<int:session_id>/reject", methods=["POST"])
@require_actor
def reject(session_id: int):
    data = request.get_json(silent=True) or {}

    try:
        session = inventory_session_service.reject(session_id, g.actor, data.get("reason"))
        return jsonify(session.to_dict()), 200

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reject inventory session %s", session_id)
        return jsonify({"error": "Internal server error"}), 500
