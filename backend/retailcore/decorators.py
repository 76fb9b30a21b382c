# Overview: Trigger authentication for scheduler/admin calls to automation endpoints.

from __future__ import annotations

import hmac
from functools import wraps

from flask import current_app, jsonify, request

from .config import AutomationConfig


def _secret_matches(candidate, secret: str) -> bool:
    if not isinstance(candidate, str) or not candidate:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), secret.encode("utf-8"))


def authenticate_trigger(req, config: AutomationConfig) -> bool:
    """
    Decide whether a request may trigger an automation job.

    Precedence:
    1. trusted scheduler header (only when TRUST_SCHEDULER_HEADER is on)
    2. Authorization: Bearer <secret>
    3. "secret" field of a JSON body
    4. "secret" query parameter

    With no CRON_SECRET configured every caller is allowed.
    """
    if not config.cron_secret:
        return True

    if config.trust_scheduler_header and req.headers.get(config.scheduler_header_name):
        return True

    auth_header = req.headers.get("Authorization", "")
    if auth_header.startswith("Bearer ") and _secret_matches(auth_header.split(" ", 1)[1], config.cron_secret):
        return True

    body = req.get_json(silent=True) if req.is_json else None
    if isinstance(body, dict) and _secret_matches(body.get("secret"), config.cron_secret):
        return True

    return _secret_matches(req.args.get("secret"), config.cron_secret)


def get_automation_config() -> AutomationConfig:
    return current_app.extensions["automation_config"]


def require_trigger_auth(f):
    """
    Reject unauthenticated trigger calls with 401 and a JobRunResult-shaped body.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not authenticate_trigger(request, get_automation_config()):
            current_app.logger.warning("unauthorized automation trigger %s %s", request.method, request.path)
            return jsonify({
                "success": False,
                "message": "Unauthorized",
                "processed": 0,
                "failed": 0,
                "errors": ["Unauthorized"],
            }), 401
        return f(*args, **kwargs)

    return decorated_function
