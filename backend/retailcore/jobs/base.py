# Overview: Shared execution contract for automation jobs (options, per-tenant context, results).

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping

from flask import current_app

from ..config import AutomationConfig
from ..extensions import db
from ..models import Tenant
from ..services.audit_service import append_audit_entry
from ..services.concurrency import Deadline, apply_statement_timeout
from ..services.notifications import NotificationError, Notifier, send_with_retry
from ..services.tenant_settings import TenantSettings


class JobError(ValueError):
    pass


class JobParameterError(JobError):
    """Malformed trigger parameters; raised before any tenant is touched."""


class UnknownJobError(JobError):
    pass


class TenantTimeout(JobError):
    pass


@dataclass
class JobRunResult:
    success: bool = True
    message: str = ""
    processed: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    @classmethod
    def setup_failure(cls, message: str) -> "JobRunResult":
        return cls(success=False, message=message, errors=[message])

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "processed": self.processed,
            "failed": self.failed,
            "errors": list(self.errors),
        }


_TRUE = {"1", "true", "t", "yes", "y", "on"}
_FALSE = {"0", "false", "f", "no", "n", "off"}


def snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


@dataclass(frozen=True)
class OptionSpec:
    """
    One job option as it appears on the wire (camelCase).

    Values may arrive as JSON scalars (POST) or strings (GET query); both
    are coerced to `type`. Parsed options are keyed by snake_case name.
    """
    name: str
    type: type
    default: Any = None
    minimum: float | None = None
    maximum: float | None = None
    choices: tuple | None = None

    @property
    def key(self) -> str:
        return snake_case(self.name)

    def parse(self, raw: Any) -> Any:
        if raw is None or raw == "":
            return self.default
        value = self._coerce(raw)
        if self.minimum is not None and value < self.minimum:
            raise JobParameterError(f"{self.name} must be >= {self.minimum}")
        if self.maximum is not None and value > self.maximum:
            raise JobParameterError(f"{self.name} must be <= {self.maximum}")
        if self.choices is not None and value not in self.choices:
            raise JobParameterError(f"{self.name} must be one of: {', '.join(self.choices)}")
        return value

    def _coerce(self, raw: Any) -> Any:
        if self.type is bool:
            if isinstance(raw, bool):
                return raw
            if isinstance(raw, str) and raw.strip().lower() in _TRUE:
                return True
            if isinstance(raw, str) and raw.strip().lower() in _FALSE:
                return False
            raise JobParameterError(f"{self.name} must be a boolean")

        if self.type is int:
            if isinstance(raw, bool):
                raise JobParameterError(f"{self.name} must be an integer")
            if isinstance(raw, int):
                return raw
            if isinstance(raw, float) and raw.is_integer():
                return int(raw)
            if isinstance(raw, str):
                try:
                    return int(raw.strip())
                except ValueError:
                    pass
            raise JobParameterError(f"{self.name} must be an integer")

        if self.type is float:
            if isinstance(raw, bool):
                raise JobParameterError(f"{self.name} must be a number")
            try:
                value = float(raw)
            except (TypeError, ValueError):
                raise JobParameterError(f"{self.name} must be a number")
            if not math.isfinite(value):
                raise JobParameterError(f"{self.name} must be a finite number")
            return value

        if not isinstance(raw, str):
            raise JobParameterError(f"{self.name} must be a string")
        return raw.strip()


@dataclass
class JobContext:
    """Everything one job needs while processing one tenant."""
    job_name: str
    tenant: Tenant
    settings: TenantSettings
    options: dict[str, Any]
    now: datetime
    config: AutomationConfig
    notifier: Notifier
    deadline: Deadline
    result: JobRunResult
    _after_commit: list = field(default_factory=list)

    @property
    def tenant_id(self) -> int:
        return self.tenant.id

    @property
    def company_name(self) -> str:
        return self.settings.company_name or self.tenant.name or "Business"

    def check_deadline(self) -> None:
        if self.deadline.expired():
            raise TenantTimeout(f"timed out after {self.deadline.seconds:g}s")

    def attempt(self, label: str, fn: Callable[[], Any]) -> bool:
        """
        Run one unit of work in its own DB transaction.

        fn() returning False means the entity was examined but needed no
        change; it is committed but not counted. Any exception rolls the unit
        back and is folded into failed/errors; the loop carries on. Callbacks
        registered with defer() run only once the unit has committed.
        """
        self.check_deadline()
        apply_statement_timeout(self.deadline.remaining())
        self._after_commit = []
        try:
            outcome = fn()
            db.session.commit()
        except Exception as exc:
            db.session.rollback()
            self._after_commit = []
            self.result.failed += 1
            self.result.errors.append(f"{label}: {exc}")
            current_app.logger.warning(
                "job %s tenant=%s %s failed: %s", self.job_name, self.tenant_id, label, exc
            )
            return False
        callbacks, self._after_commit = self._after_commit, []
        for callback in callbacks:
            callback()
        if outcome is False:
            return False
        self.result.processed += 1
        return True

    def defer(self, callback: Callable[[], Any]) -> None:
        """Run callback after the current unit commits (best-effort notifications)."""
        self._after_commit.append(callback)

    def audit(self, action: str, entity_type: str, entity_id: int | None, changes: dict | None = None):
        return append_audit_entry(
            tenant_id=self.tenant_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            changes=changes,
            actor=f"system:{self.job_name}",
            created_at=self.now,
        )

    def send_email(self, to: str | None, subject: str, message: str, *, required: bool = False) -> bool:
        """
        Send through the notifier with one retry.

        Best-effort by default: a failure is logged and False returned. With
        required=True the NotificationError propagates so the caller's unit
        of work fails.
        """
        if not to:
            return False
        return self._deliver(self.notifier.send_email, (to, subject, message), required)

    def send_sms(self, to: str | None, message: str, *, required: bool = False) -> bool:
        if not to:
            return False
        return self._deliver(self.notifier.send_sms, (to, message), required)

    def _deliver(self, send, args, required: bool) -> bool:
        try:
            send_with_retry(send, *args)
        except NotificationError as exc:
            if required:
                raise
            current_app.logger.warning(
                "job %s tenant=%s notification skipped: %s", self.job_name, self.tenant_id, exc
            )
            return False
        return True


class AutomationJob:
    """
    Base class of every automation job.

    Subclasses set `name`, `path` and `options`, and implement
    run_for_tenant(ctx). They must be idempotent: a persisted guard (status
    transition, flag, unique row) keeps a re-run from acting twice.
    """
    name: str = ""
    path: str = ""
    description: str = ""
    options: tuple[OptionSpec, ...] = ()

    def parse_options(self, params: Mapping[str, Any]) -> dict[str, Any]:
        return {spec.key: spec.parse(params.get(spec.name)) for spec in self.options}

    def run_for_tenant(self, ctx: JobContext) -> None:
        raise NotImplementedError

    def summarize(self, result: JobRunResult, options: dict[str, Any]) -> str:
        message = f"Processed {result.processed}"
        if result.failed:
            message += f", {result.failed} failed"
        return message

    def describe(self) -> dict:
        return {
            "name": self.name,
            "path": self.path,
            "description": self.description,
            "options": [
                {"name": spec.name, "type": spec.type.__name__, "default": spec.default}
                for spec in self.options
            ],
        }
