"""Typer CLI for Soirée."""

from __future__ import annotations

import json
import os
import shutil
import subprocess
import sys
from pathlib import Path

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .catalog import load_catalog
from .config import (
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .database import get_session
from .identity import issue_token, upsert_member
from .models import Member
from .scheduler import start_scheduler, stop_scheduler
from .seed import seed_fake_data
from .storage import init_db, rotate_signing_secret, upgrade_database

app = typer.Typer(help="Soirée command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _exit_if_readonly(exc: OperationalError, action: str) -> None:
    message = str(getattr(exc, "orig", exc)).lower()
    if "readonly" in message or "read-only" in message:
        typer.secho(
            f"Unable to {action} because the database is read-only. "
            f"Ensure write access to {settings.database_path}.",
            err=True,
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)


@app.command("issue-token")
def issue_member_token(uid: str = typer.Argument(..., help="Member uid")) -> None:
    """Print a signed bearer token for an existing member."""
    init_db()
    with get_session() as session:
        member = session.get(Member, uid)
    if member is None:
        typer.secho(f"No member with uid {uid!r}.", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    token, expires_at = issue_token(uid)
    typer.echo(token)
    typer.echo(f"Expires at {expires_at}", err=True)


@app.command("rotate-signing-secret")
def rotate_secret() -> None:
    """Rotate the token signing secret, invalidating every issued token."""
    try:
        init_db()
        rotate_signing_secret()
    except OperationalError as exc:
        _exit_if_readonly(exc, "rotate the signing secret")
        raise
    typer.echo("Signing secret rotated; previously issued tokens are now invalid.")


@app.command("add-member")
def add_member(
    uid: str = typer.Argument(..., help="Stable member identifier"),
    email: str = typer.Argument(..., help="Member email address"),
    name: str = typer.Option("", "--name", help="Display name"),
    badges: list[str] = typer.Option(
        [], "--badge", help="Trust badge to attach (repeatable)"
    ),
) -> None:
    """Create or update a member profile."""
    init_db()
    try:
        with get_session() as session:
            member = upsert_member(
                session, uid=uid, email=email, display_name=name, trust_badges=badges
            )
            summary = f"{member.uid} <{member.email}>"
    except ValueError as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Saved member {summary}")


@app.command("import-events")
def import_events(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON catalog")
) -> None:
    """Create or update catalog events from a JSON file."""
    init_db()
    try:
        with get_session() as session:
            stats = load_catalog(session, path)
    except (ValueError, TypeError) as exc:
        typer.secho(f"Import failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(
        f"Import complete: {stats['created']} created, {stats['updated']} updated."
    )


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the SQLite database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        _exit_if_readonly(exc, "upgrade")
        raise

    if not actions:
        typer.echo("Database already up to date.")
        return

    init_db()
    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start FastAPI with APScheduler."""
    init_db()
    if settings.enable_scheduler:
        start_scheduler()
    config = uvicorn.Config(
        "soiree.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    try:
        typer.echo(f"Starting Soirée on {host}:{port}")
        server.run()
    finally:
        stop_scheduler()


@app.command("seed-data")
def seed_data(
    members: int = typer.Option(
        settings.seed_members, "--members", min=1, help="Number of members to create"
    ),
    events: int = typer.Option(
        settings.seed_events, "--events", min=0, help="Number of events to create"
    ),
    max_rsvps: int = typer.Option(
        settings.seed_rsvps_per_event,
        "--max-rsvps",
        min=0,
        help="Maximum RSVPs to attach to each event",
    ),
):
    """Populate the database with fake members, events and RSVPs for testing."""
    stats = seed_fake_data(
        member_count=members,
        event_count=events,
        max_rsvps_per_event=max_rsvps,
    )
    typer.echo(
        f"Seed complete: {stats['members']} members, {stats['events']} events, "
        f"{stats['rsvps']} RSVPs created."
    )


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to soiree.toml (default: ./soiree.toml)"
    ),
    enable_scheduler: bool | None = typer.Option(
        None,
        "--enable-scheduler/--disable-scheduler",
        help="Toggle background scheduler (cache pruning/vacuum)",
    ),
    vacuum_hours: int | None = typer.Option(
        None, "--vacuum-hours", min=1, help="Hours between SQLite VACUUM runs"
    ),
    events_per_page: int | None = typer.Option(
        None, "--events-per-page", min=1, help="Event listing pagination size"
    ),
    status_cache_max_entries: int | None = typer.Option(
        None, "--status-cache-max-entries", min=1, help="Live status cache size"
    ),
    status_cache_ttl_hours: int | None = typer.Option(
        None, "--status-cache-ttl-hours", min=1, help="Live status expiry"
    ),
    fuzz_min_meters: float | None = typer.Option(
        None, "--fuzz-min-meters", min=0.0, help="Smallest coordinate offset"
    ),
    fuzz_max_meters: float | None = typer.Option(
        None, "--fuzz-max-meters", min=0.0, help="Largest coordinate offset"
    ),
    location_fuzz_salt: str | None = typer.Option(
        None, "--location-fuzz-salt", help="Secret mixed into coordinate offsets"
    ),
    admin_emails: list[str] | None = typer.Option(
        None, "--admin-email", help="Admin identity email (repeatable, replaces list)"
    ),
    token_ttl_hours: int | None = typer.Option(
        None, "--token-ttl-hours", min=1, help="Bearer token lifetime"
    ),
    allow_insecure_token_fallback: bool | None = typer.Option(
        None,
        "--allow-insecure-token-fallback/--deny-insecure-token-fallback",
        help="Permit non-cryptographic check-in tokens when no secure source exists",
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "app_host": host,
        "app_port": port,
        "enable_scheduler": enable_scheduler,
        "sqlite_vacuum_hours": vacuum_hours,
        "events_per_page": events_per_page,
        "status_cache_max_entries": status_cache_max_entries,
        "status_cache_ttl_hours": status_cache_ttl_hours,
        "fuzz_min_meters": fuzz_min_meters,
        "fuzz_max_meters": fuzz_max_meters,
        "location_fuzz_salt": location_fuzz_salt,
        "admin_emails": admin_emails or None,
        "token_ttl_hours": token_ttl_hours,
        "allow_insecure_token_fallback": allow_insecure_token_fallback,
    }
    clean_updates = {k: v for k, v in updates.items() if v is not None}

    target_path = config_path or settings.config_path
    if clean_updates:
        try:
            settings_ref = update_config_file(clean_updates, path=target_path)
        except ValueError as exc:
            typer.secho(str(exc), err=True, fg=typer.colors.RED)
            raise typer.Exit(code=1)
        typer.echo(f"Updated configuration in {target_path}")
    else:
        settings_ref = load_settings(target_path)
    if show or not clean_updates:
        effective = settings_as_dict(settings_ref)
        effective["config_path"] = str(target_path)
        typer.echo(json.dumps(effective, indent=2, default=str))


@app.command("test")
def run_tests(pytest_args: list[str] = typer.Argument(None, help="Extra pytest args")):
    """Run the test suite with helpful defaults."""
    env = os.environ.copy()
    env.setdefault("PYTHONPATH", ".")
    env.setdefault("UV_CACHE_DIR", ".uv-cache")
    uv_path = shutil.which("uv")
    if uv_path:
        cmd = [uv_path, "run", "pytest"]
    else:
        typer.echo("uv not found, falling back to python -m pytest")
        cmd = [sys.executable, "-m", "pytest"]
    if pytest_args:
        cmd.extend(pytest_args)
    typer.echo(f"Running tests: {' '.join(cmd)}")
    result = subprocess.run(cmd, env=env)
    raise typer.Exit(code=result.returncode)


if __name__ == "__main__":
    app()
