# Overview: Flask API routes for the stock ledger; read-only listing and consistency check.

from flask import Blueprint, request, jsonify

from ..decorators import require_actor
from ..errors import WorkflowError
from ..services import ledger_service

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


@ledger_bp.get("/movements")
@require_actor
def list_movements_route():
    limit = request.args.get("limit", default=100, type=int)
    limit = max(1, min(limit, 500))
    offset = max(0, request.args.get("offset", default=0, type=int))

    try:
        rows, total = ledger_service.list_movements(
            request.args.get("part_id", type=int),
            order_id=request.args.get("order_id", type=int),
            reason=request.args.get("reason"),
            limit=limit,
            offset=offset,
        )
    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code

    return jsonify({
        "items": [m.to_dict() for m in rows],
        "count": len(rows),
        "total": total,
        "limit": limit,
        "offset": offset,
    }), 200


@ledger_bp.get("/verify")
@require_actor
def verify_route():
    discrepancies = ledger_service.verify_ledger(request.args.get("part_id", type=int))
    return jsonify({
        "consistent": not discrepancies,
        "discrepancies": discrepancies,
    }), 200
