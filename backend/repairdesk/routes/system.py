# backend/repairdesk/routes/system.py
"""
System health endpoint.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Location, RepairOrder
from ..services.ledger_service import verify_ledger
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def _run_check(name: str, check) -> dict:
    """
    Time a check and wrap its outcome.

    check() returns (status, extra_fields). Any exception marks the check
    unhealthy and is logged.
    """
    start_time = time.time()
    try:
        status, extra = check()
    except Exception:
        current_app.logger.exception("%s health check failed", name)
        status, extra = "unhealthy", {"error": f"{name} check error"}

    result = {
        "status": status,
        "latency_ms": round((time.time() - start_time) * 1000, 2),
    }
    result.update(extra)
    return result


def check_database_health() -> dict:
    def run():
        return "healthy", {
            "details": {
                "locations": db.session.query(Location).count(),
                "repair_orders": db.session.query(RepairOrder).count(),
            }
        }

    return _run_check("Database", run)


def check_ledger_health() -> dict:
    """Every part's on_hand must match the sum of its movements; a mismatch is degraded."""
    def run():
        discrepancies = verify_ledger()
        if not discrepancies:
            return "healthy", {}
        return "degraded", {
            "warning": f"{len(discrepancies)} part(s) out of balance",
            "details": {"discrepancies": discrepancies},
        }

    return _run_check("Ledger", run)


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: Healthy or degraded
    - 503: One or more checks unhealthy
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "stock_ledger": check_ledger_health(),
    }
    statuses = {check["status"] for check in checks.values()}

    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }

    return response, http_status
