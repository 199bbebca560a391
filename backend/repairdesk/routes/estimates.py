# backend/repairdesk/routes/estimates.py
"""
Cost estimate (KVA) API routes.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..errors import WorkflowError
from ..extensions import db
from ..services import estimate_service

estimates_bp = Blueprint("estimates", __name__, url_prefix="/api/estimates")

_VERSION_FIELDS = (
    "estimate_type",
    "labor",
    "parts",
    "min",
    "max",
    "fee",
    "diagnosis",
    "repair_description",
    "draft",
)


@estimates_bp.route("", methods=["POST"])
@require_actor
def create_version():
    """
    Create the next estimate version for an order.

    Request body:
    {
        "order_id": int,
        "estimate_type": "FIXED" | "VARIABLE" | "UP_TO",
        "labor": decimal (optional),
        "parts": decimal (optional, defaults to booked parts),
        "min": decimal (optional),
        "max": decimal (required for UP_TO),
        "fee": decimal (optional),
        "diagnosis": str (optional),
        "repair_description": str (optional)
    }

    Returns:
        201: New current version
        400: Invalid amounts
        404: Order not found
        409: Order closed or concurrent version creation
    """
    data = request.get_json(silent=True) or {}
    fields = {key: data[key] for key in _VERSION_FIELDS if key in data}

    try:
        estimate = estimate_service.create_version(data.get("order_id"), fields, g.actor)
        return jsonify(estimate.to_dict()), 201

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create cost estimate")
        return jsonify({"error": "Internal server error"}), 500


@estimates_bp.route("", methods=["GET"])
@require_actor
def list_versions():
    order_id = request.args.get("order_id", type=int)
    if order_id is None:
        return jsonify({"error": "order_id is required"}), 400
    versions = estimate_service.list_versions(order_id)
    return jsonify({"items": [v.to_dict() for v in versions], "count": len(versions)}), 200


@estimates_bp.route("/<int:estimate_id>", methods=["GET"])
@require_actor
def get_estimate(estimate_id: int):
    try:
        estimate = estimate_service.get_estimate(estimate_id)
        return jsonify(estimate.to_dict()), 200
    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code


@estimates_bp.route("/<int:estimate_id>/history", methods=["GET"])
@require_actor
def get_history(estimate_id: int):
    try:
        estimate_service.get_estimate(estimate_id)
        entries = estimate_service.get_history(estimate_id)
        return jsonify({"items": [e.to_dict() for e in entries]}), 200
    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code


@estimates_bp.route("/<int:estimate_id>/send", methods=["POST"])
@require_actor
def send_estimate(estimate_id: int):
    data = request.get_json(silent=True) or {}

    try:
        estimate = estimate_service.send(estimate_id, data.get("channel"), g.actor)
        return jsonify(estimate.to_dict()), 200

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to send cost estimate %s", estimate_id)
        return jsonify({"error": "Internal server error"}), 500


@estimates_bp.route("/<int:estimate_id>/decision", methods=["POST"])
@require_actor
def record_decision(estimate_id: int):
    """
    Record the customer's decision.

    Request body:
    {
        "approved": bool,
        "channel": "ONLINE" | "PHONE" | "IN_PERSON" | "EMAIL" | "SMS",
        "note": str (optional),
        "is_customer": bool (optional, default true),
        "disposal_option": "DISPOSE_FREE" | "RETURN_DEVICE" (optional, rejections only)
    }

    Returns:
        200: Estimate (unchanged when the same decision is replayed)
        400: Invalid request
        404: Estimate not found
        409: Conflicting decision, superseded version or concurrent decision
    """
    data = request.get_json(silent=True) or {}

    try:
        estimate = estimate_service.record_decision(
            estimate_id,
            approved=data.get("approved"),
            channel=data.get("channel"),
            note=data.get("note"),
            is_customer=bool(data.get("is_customer", True)),
            actor=g.actor,
            disposal_option=data.get("disposal_option"),
        )
        return jsonify(estimate.to_dict()), 200

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record decision on cost estimate %s", estimate_id)
        return jsonify({"error": "Internal server error"}), 500


@estimates_bp.route("/<int:estimate_id>/waive-fee", methods=["POST"])
@require_actor
def waive_fee(estimate_id: int):
    data = request.get_json(silent=True) or {}

    try:
        estimate = estimate_service.waive_fee(estimate_id, data.get("reason"), g.actor)
        return jsonify(estimate.to_dict()), 200

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to waive fee of cost estimate %s", estimate_id)
        return jsonify({"error": "Internal server error"}), 500


@estimates_bp.route("/<int:estimate_id>/question", methods=["POST"])
@require_actor
def raise_question(estimate_id: int):
    data = request.get_json(silent=True) or {}

    try:
        estimate = estimate_service.raise_question(estimate_id, data.get("question"), g.actor)
        return jsonify(estimate.to_dict()), 200

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record question on cost estimate %s", estimate_id)
        return jsonify({"error": "Internal server error"}), 500


@estimates_bp.route("/<int:estimate_id>/answer", methods=["POST"])
@require_actor
def answer_question(estimate_id: int):
    data = request.get_json(silent=True) or {}

    try:
        estimate = estimate_service.answer_question(estimate_id, data.get("answer"), g.actor)
        return jsonify(estimate.to_dict()), 200

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to answer question on cost estimate %s", estimate_id)
        return jsonify({"error": "Internal server error"}), 500


@estimates_bp.route("/<int:estimate_id>/release-price", methods=["POST"])
@require_actor
def release_end_customer_price(estimate_id: int):
    data = request.get_json(silent=True) or {}

    try:
        estimate = estimate_service.release_end_customer_price(estimate_id, data.get("price"), g.actor)
        return jsonify(estimate.to_dict()), 200

    except WorkflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to release end-customer price of cost estimate %s", estimate_id)
        return jsonify({"error": "Internal server error"}), 500
