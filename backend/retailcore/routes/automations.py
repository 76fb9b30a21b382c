# backend/retailcore/routes/automations.py
"""
Automation trigger endpoints.

Every job is reachable at /api/automations/<job path> with GET (query
string) and POST (JSON body); both accept the same parameters. The
response body is always a JobRunResult.

Status codes:
- 200: run completed (even when some entities failed)
- 400: malformed parameters or unknown/inactive tenant
- 401: trigger authentication failed
- 404: no job at that path
- 500: unexpected error before the run could start
"""

from datetime import timedelta

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from ..decorators import require_trigger_auth
from ..extensions import db
from ..jobs import JobParameterError, JobRunResult, UnknownJobError
from ..models import Attendance, Booking, CashDrawerSession, Discount, StockAlert, SyncConflict, Tenant
from ..models.bookings import BOOKING_OPEN_STATUSES
from ..models.sales import DRAWER_OPEN
from ..models.sync import CONFLICT_OPEN
from ..services.tenant_service import ACTIVE_STATUSES, TenantNotFound
from ..time_utils import utcnow, to_utc_z

automations_bp = Blueprint("automations", __name__, url_prefix="/api/automations")


def get_job_runner():
    return current_app.extensions["job_runner"]


def _request_params() -> dict:
    if request.method == "POST":
        body = request.get_json(silent=True)
        if body is None:
            body = {}
        if not isinstance(body, dict):
            raise JobParameterError("request body must be a JSON object")
        params = dict(body)
    else:
        params = request.args.to_dict()
    params.pop("secret", None)
    return params


@automations_bp.get("/status")
@require_trigger_auth
def status():
    """Registered jobs plus a snapshot of the work waiting for them."""
    now = utcnow()
    try:
        stats = {
            "tenants": {
                "total": db.session.query(Tenant).count(),
                "active": db.session.query(Tenant).filter(Tenant.status.in_(ACTIVE_STATUSES)).count(),
            },
            "bookings": {
                "pending_reminders": db.session.query(Booking).filter(
                    Booking.status.in_(BOOKING_OPEN_STATUSES),
                    Booking.reminder_sent.is_(False),
                    Booking.start_time >= now,
                    Booking.start_time <= now + timedelta(hours=24),
                ).count(),
            },
            "attendance": {
                "open_sessions": db.session.query(Attendance).filter(Attendance.clock_out.is_(None)).count(),
            },
            "cash_drawers": {
                "open_sessions": db.session.query(CashDrawerSession).filter(
                    CashDrawerSession.status == DRAWER_OPEN
                ).count(),
            },
            "discounts": {
                "active": db.session.query(Discount).filter(Discount.is_active.is_(True)).count(),
            },
            "inventory": {
                "open_low_stock_alerts": db.session.query(StockAlert).filter(StockAlert.resolved_at.is_(None)).count(),
            },
            "sync": {
                "open_conflicts": db.session.query(SyncConflict).filter(SyncConflict.status == CONFLICT_OPEN).count(),
            },
        }
    except SQLAlchemyError:
        current_app.logger.exception("Failed to build automation status")
        return jsonify({"success": False, "error": "Database error"}), 500

    return jsonify({
        "success": True,
        "timestamp": to_utc_z(now),
        "jobs": [job.describe() for job in get_job_runner().jobs()],
        "stats": stats,
    })


@automations_bp.route("/<path:job_path>", methods=["GET", "POST"])
@require_trigger_auth
def trigger(job_path):
    runner = get_job_runner()
    job = next((j for j in runner.jobs() if j.path == job_path.strip("/")), None)
    if job is None:
        result = JobRunResult.setup_failure(f"No automation at {job_path!r}")
        return jsonify(result.to_dict()), 404

    try:
        params = _request_params()
        result = runner.run(job.name, params)
    except (JobParameterError, TenantNotFound, UnknownJobError) as e:
        db.session.rollback()
        return jsonify(JobRunResult.setup_failure(str(e)).to_dict()), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Automation %s failed", job.name)
        return jsonify(JobRunResult.setup_failure("Internal error").to_dict()), 500

    return jsonify(result.to_dict()), 200
