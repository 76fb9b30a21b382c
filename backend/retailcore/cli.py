# Overview: Flask CLI command groups for bootstrap, tenants and automation runs.

# backend/retailcore/cli.py
# Commands Legend (run with FLASK_APP=retailcore):
#
# System bootstrap:
# - flask system init-db
#   Create all tables (idempotent). Use `flask db upgrade` once migrations exist.
#
# Tenant management:
# - flask tenants list
# - flask tenants create --name "Acme Corp" --slug acme [--status trial]
#
# Automations:
# - flask automations list
#   Show every registered job with its options.
# - flask automations run no-show --tenant-id 1 --param gracePeriodMinutes=30
#   Run a job exactly as the HTTP trigger would (without authentication).

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Tenant
from .services.tenant_service import create_tenant
from .time_utils import parse_iso_datetime


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@click.group('tenants')
def tenants_group():
    """Tenant management commands."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    """List all tenants."""
    tenants = db.session.query(Tenant).order_by(Tenant.id.asc()).all()
    if not tenants:
        click.echo("No tenants found.")
        return
    for t in tenants:
        click.echo(f"{t.id:>4}  {t.slug:<24} {t.status:<10} {t.name}")


@tenants_group.command('create')
@click.option('--name', required=True, help='Business name')
@click.option('--slug', required=True, help='URL slug (lowercase letters, digits, -)')
@click.option('--status', default='active', type=click.Choice(['active', 'trial', 'suspended']))
@click.option('--settings', 'settings_json', default=None, help='Settings document as JSON')
@with_appcontext
def create_tenant_cmd(name, slug, status, settings_json):
    """Create a tenant."""
    try:
        settings = json.loads(settings_json) if settings_json else None
        tenant = create_tenant(name=name, slug=slug, status=status, settings=settings)
        db.session.commit()
    except (ValueError, json.JSONDecodeError) as e:
        db.session.rollback()
        raise click.ClickException(str(e))
    click.echo(f"PASS Created tenant {tenant.name} (ID: {tenant.id}, slug: {tenant.slug})")


@click.group('automations')
def automations_group():
    """Automation job commands."""


@automations_group.command('list')
@with_appcontext
def list_jobs():
    """List registered automation jobs."""
    for job in current_app.extensions["job_runner"].jobs():
        opts = ", ".join(f"{o.name}={o.default!r}" for o in job.options) or "-"
        click.echo(f"{job.name:<22} /api/automations/{job.path:<30} {opts}")


def _parse_param(value: str):
    key, sep, raw = value.partition("=")
    if not sep or not key:
        raise click.BadParameter(f"expected key=value, got {value!r}")
    return key.strip(), raw.strip()


@automations_group.command('run')
@click.argument('job_name')
@click.option('--tenant-id', type=int, default=None, help='Run for one tenant (default: all active)')
@click.option('--param', 'params', multiple=True, help='Job option as key=value (repeatable)')
@click.option('--now', 'now_value', default=None, help='Override the current time (ISO-8601, UTC)')
@with_appcontext
def run_job(job_name, tenant_id, params, now_value):
    """Run one automation job and print its JobRunResult."""
    options = dict(_parse_param(p) for p in params)
    if tenant_id is not None:
        options["tenantId"] = tenant_id

    runner = current_app.extensions["job_runner"]
    try:
        now = parse_iso_datetime(now_value) if now_value else None
        result = runner.run(job_name, options, now=now)
    except ValueError as e:  # unknown job, bad option, unknown tenant, bad --now
        db.session.rollback()
        raise click.ClickException(str(e))

    click.echo(json.dumps(result.to_dict(), indent=2))
    if result.failed:
        raise SystemExit(1)


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(automations_group)
