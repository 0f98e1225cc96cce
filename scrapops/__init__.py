"""
Scrap Operations Platform
Flask Application Factory.

The platform has no HTTP surface of its own; the app exists to carry
configuration, the database session and the operator CLI.

Usage:
    from scrapops import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config

    flask --app wsgi seed-default-fields --tenant <tenant_id>
"""

import logging
import os

import click
from flask import Flask
from flask_migrate import Migrate

from scrapops.config import config
from scrapops.core.logging_config import configure_logging
from scrapops.models import db

logger = logging.getLogger(__name__)

migrate = Migrate()


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    config_cls = config[config_name]
    app.config.from_object(config_cls() if config_name == "production" else config_cls)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)

    # ── Models (register tables on db.metadata) ──────────────────────────
    from scrapops.models import transaction as _transaction_models          # noqa: F401
    from scrapops.models import workflow_config as _workflow_config_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    db_uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if db_uri.startswith("sqlite:///") and ":memory:" not in db_uri:
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        db.create_all()
        app.logger.debug("db.create_all() completed")

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-default-fields")
    @click.option("--tenant", "tenant_id", required=True, help="Tenant to seed.")
    def seed_default_fields_cmd(tenant_id):
        """Create the default field configuration set for a tenant."""
        from scrapops.services.field_configuration_service import seed_default_field_configurations
        created = seed_default_field_configurations(tenant_id)
        click.echo(f"Seeded {len(created)} field configurations for tenant {tenant_id}.")

    return app
