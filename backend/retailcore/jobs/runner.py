# Overview: Job runner; resolves the tenant set, isolates failures and aggregates results.

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Mapping

from flask import current_app

from ..config import AutomationConfig
from ..extensions import db
from ..services.concurrency import Deadline
from ..services.notifications import Notifier
from ..services.tenant_service import resolve_tenants
from ..services.tenant_settings import TenantSettings
from ..time_utils import to_naive_utc, utcnow
from .base import AutomationJob, JobContext, JobRunResult, UnknownJobError


class JobRunner:
    """
    Executes registered jobs.

    Failure isolation:
    - setup errors (bad parameters, unknown tenant) raise before any tenant
      is processed;
    - an exception escaping one tenant (bad settings document, timeout,
      query failure) counts that tenant as failed and the next tenant runs;
    - entity-level failures are handled inside JobContext.attempt.
    """

    def __init__(self, jobs: Iterable[AutomationJob], config: AutomationConfig, notifier: Notifier):
        self._jobs: dict[str, AutomationJob] = {}
        for job in jobs:
            if job.name in self._jobs:
                raise ValueError(f"duplicate job name {job.name!r}")
            self._jobs[job.name] = job
        self.config = config
        self.notifier = notifier

    def job_names(self) -> list[str]:
        return sorted(self._jobs)

    def jobs(self) -> list[AutomationJob]:
        return [self._jobs[name] for name in self.job_names()]

    def get(self, job_name: str) -> AutomationJob:
        job = self._jobs.get(job_name)
        if job is None:
            raise UnknownJobError(f"Unknown job {job_name!r}")
        return job

    def run(self, job_name: str, params: Mapping[str, Any] | None = None, now: datetime | None = None) -> JobRunResult:
        """
        Run one job over the requested tenant (params["tenantId"]) or every
        active tenant.

        Raises UnknownJobError, JobParameterError or TenantNotFound before any
        work is done; everything after that is reported in the result.
        """
        job = self.get(job_name)
        params = dict(params or {})
        options = job.parse_options(params)
        tenants = resolve_tenants(params.get("tenantId"))
        now = to_naive_utc(now) if now is not None else utcnow()

        result = JobRunResult()
        if not tenants:
            result.message = "No tenants found to process"
            return result

        current_app.logger.info("job %s started tenants=%s", job.name, len(tenants))

        for tenant in tenants:
            tenant_name = tenant.name
            try:
                ctx = JobContext(
                    job_name=job.name,
                    tenant=tenant,
                    settings=TenantSettings.from_document(tenant.settings),
                    options=options,
                    now=now,
                    config=self.config,
                    notifier=self.notifier,
                    deadline=Deadline(self.config.tenant_timeout_seconds),
                    result=result,
                )
                job.run_for_tenant(ctx)
                db.session.commit()
            except Exception as exc:
                db.session.rollback()
                result.failed += 1
                result.errors.append(f"Tenant {tenant_name}: {exc}")
                current_app.logger.warning("job %s tenant %s failed: %s", job.name, tenant_name, exc)

        result.message = job.summarize(result, options)
        current_app.logger.info(
            "job %s finished processed=%s failed=%s", job.name, result.processed, result.failed
        )
        return result
