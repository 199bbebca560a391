# backend/repairdesk/routes/orders.py
"""
Repair order API: intake, status changes, checklist and order edits.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..errors import WorkflowError
from ..extensions import db
from ..services import estimate_service, order_service

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _order_payload(order) -> dict:
    data = order.to_dict(include_checklist=True)
    current = estimate_service.get_current(order.id)
    data["current_estimate"] = current.to_dict() if current else None
    return data


@orders_bp.route("", methods=["POST"])
@require_actor
def create_order():
    """
    Intake a device.

    Request body:
    {
        "location_id": int,
        "device_manufacturer": str (optional),
        "device_model": str (optional),
        "error_description": str (optional),
        "is_b2b": bool (optional),
        "mail_in": bool (optional, B2B only),
        "checklist": [str] (optional)
    }

    Returns:
        201: Order created
        400: Invalid request
        403: Forbidden
        404: Location not found
    """
    data = request.get_json(silent=True) or {}

    try:
        order = order_service.create_order(
            data.get("location_id"),
            g.actor,
            device_manufacturer=data.get("device_manufacturer"),
            device_model=data.get("device_model"),
            error_description=data.get("error_description"),
            is_b2b=bool(data.get("is_b2b", False)),
            mail_in=bool(data.get("mail_in", False)),
            checklist=data.get("checklist"),
        )
        return jsonify(_order_payload(order)), 201

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create repair order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.route("", methods=["GET"])
@require_actor
def list_orders():
    location_id = request.args.get("location_id", type=int)
    status = request.args.get("status")
    limit = min(request.args.get("limit", 100, type=int), 500)
    offset = request.args.get("offset", 0, type=int)

    try:
        rows, total = order_service.list_orders(location_id, status, limit=limit, offset=offset)
        return jsonify({
            "items": [o.to_dict() for o in rows],
            "count": len(rows),
            "total": total,
            "limit": limit,
            "offset": offset,
        }), 200
    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.route("/<int:order_id>", methods=["GET"])
@require_actor
def get_order(order_id: int):
    try:
        order = order_service.get_order(order_id)
        return jsonify(_order_payload(order)), 200
    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.route("/<int:order_id>/status", methods=["POST"])
@require_actor
def change_status(order_id: int):
    """
    Move an order to another status.

    Request body:
    {
        "status": str,
        "note": str (required when moving backward)
    }

    Returns:
        200: History entry and updated order
        400: Missing note or bad status
        404: Order not found
        409: Transition not allowed, gate not met or concurrent change
    """
    data = request.get_json(silent=True) or {}

    try:
        entry = order_service.transition(order_id, data.get("status"), g.actor, note=data.get("note"))
        order = order_service.get_order(order_id)
        return jsonify({"history_entry": entry.to_dict(), "order": _order_payload(order)}), 200

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to change status of order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.route("/<int:order_id>/history", methods=["GET"])
@require_actor
def get_history(order_id: int):
    try:
        order_service.get_order(order_id)
        entries = order_service.get_history(order_id)
        return jsonify({
            "items": [e.to_dict() for e in entries],
            "path_valid": order_service.replay_history(order_id),
        }), 200
    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.route("/<int:order_id>/checklist", methods=["POST"])
@require_actor
def add_checklist_item(order_id: int):
    data = request.get_json(silent=True) or {}

    try:
        item = order_service.add_checklist_item(order_id, data.get("label"), g.actor)
        return jsonify(item.to_dict()), 201

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to add checklist item to order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.route("/<int:order_id>/checklist/<int:item_id>", methods=["POST"])
@require_actor
def check_checklist_item(order_id: int, item_id: int):
    data = request.get_json(silent=True) or {}

    try:
        item = order_service.check_checklist_item(
            item_id, g.actor, checked=bool(data.get("checked", True)), order_id=order_id
        )
        return jsonify(item.to_dict()), 200

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update checklist item %s", item_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.route("/<int:order_id>/technician", methods=["POST"])
@require_actor
def assign_technician(order_id: int):
    data = request.get_json(silent=True) or {}

    try:
        order = order_service.assign_technician(order_id, data.get("technician_id"), g.actor)
        return jsonify(order.to_dict()), 200

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to assign technician to order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.route("/<int:order_id>/final-price", methods=["POST"])
@require_actor
def set_final_price(order_id: int):
    data = request.get_json(silent=True) or {}

    try:
        order = order_service.set_final_price(order_id, data.get("amount"), g.actor)
        return jsonify(order.to_dict()), 200

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to set final price of order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500
