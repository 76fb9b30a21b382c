# backend/retailcore/__init__.py
from flask import Flask

from .config import AutomationConfig, Config
from .extensions import db, migrate


def create_app(config_overrides=None, *, notifier=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import every model up front so metadata (and Alembic) sees all tables
    from . import models  # noqa: F401

    # Automation engine: config is read once here and injected into the runner
    from .jobs import JobRunner, default_jobs
    from .services.notifications import build_notifier

    automation_config = AutomationConfig.from_mapping(app.config)
    app.extensions["automation_config"] = automation_config
    app.extensions["job_runner"] = JobRunner(
        default_jobs(),
        automation_config,
        notifier or build_notifier(automation_config),
    )

    # Register blueprints
    from .routes.system import system_bp
    from .routes.automations import automations_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(automations_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
