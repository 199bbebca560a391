# backend/repairdesk/routes/parts.py
"""
Part catalog and stock receipt API routes.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..errors import WorkflowError
from ..extensions import db
from ..models import Part
from ..services import parts_service, reservation_service
from ..services.lookup import get_or_404

parts_bp = Blueprint("parts", __name__, url_prefix="/api/parts")

_EDITABLE = ("name", "purchase_price", "sale_price", "min_stock", "is_active", "on_hand")


def _flag(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in ("1", "true", "yes")


@parts_bp.route("", methods=["POST"])
@require_actor
def create_part():
    """
    Create a part.

    Request body:
    {
        "location_id": int,
        "sku": str,
        "name": str,
        "manufacturer": str (optional),
        "device_model": str (optional, needs manufacturer),
        "purchase_price": decimal (optional),
        "sale_price": decimal (optional),
        "min_stock": int (optional),
        "initial_stock": int (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        part = parts_service.create_part(
            data.get("location_id"),
            g.actor,
            sku=data.get("sku"),
            name=data.get("name"),
            manufacturer=data.get("manufacturer"),
            device_model=data.get("device_model"),
            purchase_price=data.get("purchase_price", 0),
            sale_price=data.get("sale_price", 0),
            min_stock=data.get("min_stock", 0),
            initial_stock=data.get("initial_stock", 0),
        )
        return jsonify(part.to_dict()), 201

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create part")
        return jsonify({"error": "Internal server error"}), 500


@parts_bp.route("", methods=["GET"])
@require_actor
def list_parts():
    location_id = request.args.get("location_id", type=int)
    parts = parts_service.list_parts(location_id, include_inactive=_flag("include_inactive"))
    return jsonify({"items": [p.to_dict() for p in parts], "count": len(parts)}), 200


@parts_bp.route("/low-stock", methods=["GET"])
@require_actor
def low_stock():
    location_id = request.args.get("location_id", type=int)
    parts = parts_service.list_low_stock_parts(location_id)
    return jsonify({"items": [p.to_dict() for p in parts], "count": len(parts)}), 200


@parts_bp.route("/candidates", methods=["GET"])
@require_actor
def candidate_parts():
    """
    Parts that fit a device, grouped by priority.

    Query params: manufacturer, model, search, only_available, location_id
    """
    groups = reservation_service.find_candidate_parts(
        request.args.get("manufacturer"),
        request.args.get("model"),
        search=request.args.get("search"),
        only_available=_flag("only_available"),
        location_id=request.args.get("location_id", type=int),
    )
    return jsonify({key: [p.to_dict() for p in parts] for key, parts in groups.items()}), 200


@parts_bp.route("/<int:part_id>", methods=["GET"])
@require_actor
def get_part(part_id: int):
    try:
        return jsonify(get_or_404(Part, part_id).to_dict()), 200
    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code


@parts_bp.route("/<int:part_id>", methods=["PATCH"])
@require_actor
def update_part(part_id: int):
    data = request.get_json(silent=True) or {}
    fields = {key: data[key] for key in _EDITABLE if key in data}

    try:
        part = parts_service.update_part(part_id, g.actor, **fields)
        return jsonify(part.to_dict()), 200

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update part %s", part_id)
        return jsonify({"error": "Internal server error"}), 500


@parts_bp.route("/<int:part_id>/receive", methods=["POST"])
@require_actor
def receive_stock(part_id: int):
    data = request.get_json(silent=True) or {}

    try:
        movement = parts_service.receive_stock(part_id, data.get("quantity"), g.actor, note=data.get("note"))
        return jsonify(movement.to_dict()), 201

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to receive stock for part %s", part_id)
        return jsonify({"error": "Internal server error"}), 500


@parts_bp.route("/<int:part_id>/take-out", methods=["POST"])
@require_actor
def take_out(part_id: int):
    """
    Manual stock-out or write-off.

    Request body:
    {
        "quantity": int,
        "reason": str,
        "write_off": bool (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        movement = parts_service.take_out(
            part_id,
            data.get("quantity"),
            g.actor,
            reason_text=data.get("reason"),
            write_off=bool(data.get("write_off", False)),
        )
        return jsonify(movement.to_dict()), 201

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to take out stock for part %s", part_id)
        return jsonify({"error": "Internal server error"}), 500
