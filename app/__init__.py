from __future__ import annotations

import click
from flask import Flask, jsonify

from app.collective_burial import collective_burial_bp
from app.core.auth import auth_bp
from app.core.config import Config
from app.core.extensions import db, login_manager, migrate
from app.core.log import configure_logging
from app.core.models import User, seed_demo_data


def create_app(config_object: type[Config] | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    configure_logging(app)
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(collective_burial_bp)

    register_cli(app)
    register_routes(app)
    return app


def _json_error(code: str, message: str, status: int):
    return jsonify({"success": False, "error": {"code": code, "message": message}}), status


def register_routes(app: Flask) -> None:
    @app.get("/")
    def home():
        return jsonify({"success": True, "data": {"service": "collective-burial"}})

    @app.errorhandler(401)
    def unauthorized(_error):
        return _json_error("UNAUTHORIZED", "Authentication required", 401)

    @app.errorhandler(403)
    def forbidden(_error):
        return _json_error("FORBIDDEN", "Insufficient permissions", 403)

    @app.errorhandler(404)
    def not_found(_error):
        return _json_error("NOT_FOUND", "Resource not found", 404)


def register_cli(app: Flask) -> None:
    @app.cli.command("seed-demo")
    @click.option("--reset", is_flag=True, help="Delete existing data before seed.")
    def seed_demo(reset: bool) -> None:
        """Seed demo users, slots and applications."""
        if reset:
            db.drop_all()
            db.create_all()
        if not User.query.first():
            seed_demo_data(db.session)
            click.echo("Demo data seeded.")
        else:
            click.echo("Seed skipped: existing users found.")

    @app.cli.command("sync-burial-counts")
    def sync_burial_counts() -> None:
        """Recount completed persons for every slot."""
        from app.collective_burial.services import sync_all_burial_counts

        synced, failed = sync_all_burial_counts()
        for row in synced:
            click.echo(
                f"slot={row['id']} count={row['currentBurialCount']}/{row['burialCapacity']} "
                f"reached={row['capacityReachedDate'] or '-'} billing={row['billingScheduledDate'] or '-'}"
            )
        for slot_id, exc in failed:
            click.echo(f"slot={slot_id} failed: {exc.code} {exc}")
        click.echo(f"Synced {len(synced)} slots, {len(failed)} failed.")

    @app.cli.command("consolidation-schedule")
    @click.option("--year", type=int, default=None, help="Only show this consolidation year.")
    def consolidation_schedule(year: int | None) -> None:
        """Print slots grouped by consolidation target year."""
        from app.collective_burial.services import consolidation_timeline

        groups = consolidation_timeline({"year": str(year) if year else ""})
        if not groups:
            click.echo("No slots scheduled for consolidation.")
            return
        for group in groups:
            click.echo(f"{group['year']}: {len(group['records'])} slots, {group['totalCount']} persons")
            for record in group["records"]:
                click.echo(f"  {record['contractPlotId']} {record['plotNumber']} ({record['consolidation']['periodType']})")


@login_manager.user_loader
def load_user(user_id: str) -> User | None:
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized_request():
    return _json_error("UNAUTHORIZED", "Authentication required", 401)
