import os
import logging
import random
from datetime import datetime, timedelta, timezone

import click
from flask import Flask, jsonify

from vault.config import config_by_name
from vault.extensions import db, migrate, limiter


def create_app(config_name=None, provider=None):
    """Application factory.

    Args:
        config_name: Key into config_by_name (defaults to $FLASK_ENV).
        provider:    PaymentProvider to charge through. Defaults to a
                     MockProvider built from PROVIDER_* config.
    """

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from vault import models  # noqa: F401

    # --- Payment provider ---
    if provider is None:
        provider = build_provider(app.config)
    app.extensions["payment_provider"] = provider

    # --- Register blueprints ---
    from vault.blueprints.charges import charges_bp

    app.register_blueprint(charges_bp)

    # --- Error handlers (JSON API, no templates) ---
    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests"}), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def build_provider(config):
    """Create the MockProvider described by PROVIDER_* settings."""
    from vault.services.provider import MockProvider

    seed = config.get("PROVIDER_SEED")
    rng = random.Random(seed) if seed is not None else None
    return MockProvider(rng=rng, latency=config.get("PROVIDER_LATENCY_SECONDS", 0.5))


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("stuck-requests")
    @click.option(
        "--minutes",
        type=int,
        default=None,
        help="Age threshold (defaults to STUCK_AFTER_MINUTES).",
    )
    def stuck_requests(minutes):
        """List payment requests stuck in STARTED.

        A STARTED record older than a few minutes means the charge may have
        happened but its outcome was never saved. Every retry of that key
        gets a 409 until the record is reconciled with the provider by hand.
        Nothing is modified.

        Usage:
            flask stuck-requests
            flask stuck-requests --minutes 60
        """
        from vault.services.idempotency_store import IdempotencyStore

        if minutes is None:
            minutes = app.config["STUCK_AFTER_MINUTES"]
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=minutes)

        stuck = IdempotencyStore(db.session).find_stuck(cutoff)
        if not stuck:
            click.echo(f"No STARTED requests older than {minutes} minutes.")
            return

        click.echo(f"{len(stuck)} request(s) stuck in STARTED for over {minutes} minutes:")
        for record in stuck:
            click.echo(
                f"  {record.idempotency_key}  user={record.user_id}  "
                f"{record.amount} {record.currency}  created={record.created_at}"
            )

    @app.cli.command("show-request")
    @click.argument("key")
    def show_request(key):
        """Show the stored record for an Idempotency-Key.

        Usage:
            flask show-request order-1234
        """
        from vault.services.idempotency_store import IdempotencyStore

        record = IdempotencyStore(db.session).get(key)
        if record is None:
            click.echo(f"No request found for key {key}")
            raise SystemExit(1)

        click.echo(f"Key:       {record.idempotency_key}")
        click.echo(f"User:      {record.user_id}")
        click.echo(f"Amount:    {record.amount} {record.currency}")
        click.echo(f"Status:    {record.status}")
        if not record.is_finalized:
            click.echo("           (not finalized: retries of this key get 409)")
        click.echo(f"Response:  {record.response_body or '(none)'}")
        click.echo(f"Created:   {record.created_at}")
        click.echo(f"Updated:   {record.updated_at}")
